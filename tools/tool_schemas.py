"""
Tool schema definitions for the browser tool registry.
Parameter declarations used for input validation, and the normalized
result envelope every tool call returns.
"""

import time
from typing import Any, Dict, List, Mapping, Optional
from dataclasses import dataclass, field
from enum import Enum


class ToolCategory(str, Enum):
    """Categories of browser tools."""
    NAVIGATION = "navigation"
    INTERACTION = "interaction"
    EXTRACTION = "extraction"
    TABS = "tabs"
    RESEARCH = "research"
    CUSTOM = "custom"


class ParameterType(str, Enum):
    """Supported parameter types."""
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


def json_type_of(value: Any) -> str:
    """JSON-ish type name of a Python value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""
    name: str
    type: ParameterType
    description: str = ""
    required: bool = False
    max_length: Optional[int] = None
    enum: Optional[List[Any]] = None

    def to_json_schema(self) -> Dict[str, Any]:
        """Convert to JSON Schema format."""
        schema: Dict[str, Any] = {
            "type": self.type.value,
            "description": self.description,
        }
        if self.enum:
            schema["enum"] = self.enum
        if self.max_length is not None:
            schema["maxLength"] = self.max_length
        return schema

    def validate(self, value: Any) -> List[str]:
        """
        Validate a value supplied for this parameter.

        Returns:
            List of error messages (empty when valid)
        """
        errors = []
        actual = json_type_of(value)
        accepted = {self.type.value}
        if self.type == ParameterType.NUMBER:
            accepted.add("integer")

        if actual not in accepted:
            errors.append(
                f"Invalid type for '{self.name}': expected {self.type.value} got {actual}"
            )
            return errors

        if self.max_length is not None and isinstance(value, str) and len(value) > self.max_length:
            errors.append(f"'{self.name}' exceeds maxLength={self.max_length}")

        if self.enum and value not in self.enum:
            errors.append(f"'{self.name}' must be one of {self.enum}")

        return errors


_ARTIFACT_KEYS = ("tabs", "links", "report", "data", "content")


@dataclass
class ToolResult:
    """Normalized result of a tool execution."""
    ok: bool
    observation: str
    duration_ms: float = 0
    artifacts: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        return "success" if self.ok else "error"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire dictionary returned by ``run_tool``."""
        out: Dict[str, Any] = {
            "ok": self.ok,
            "status": self.status,
            "durationMs": self.duration_ms,
            "observation": self.observation,
        }
        if self.artifacts:
            out["artifacts"] = self.artifacts
        if self.errors:
            out["errors"] = self.errors
        if self.warnings:
            out["warnings"] = self.warnings
        return out

    @classmethod
    def normalize(cls, raw: Any, started_at: Optional[float] = None) -> "ToolResult":
        """
        Normalize a raw tool return value.

        Anything but an explicit ``ok: False`` counts as success.

        Args:
            raw: Value returned by the tool's run function
            started_at: ``time.monotonic()`` at the start of the call
        """
        now = time.monotonic()
        duration_ms = max(0.0, (now - (started_at if started_at is not None else now)) * 1000)

        if not isinstance(raw, Mapping):
            text = "OK" if raw is None else str(raw)
            return cls(ok=True, observation=text, duration_ms=duration_ms)

        ok = raw.get("ok") is not False
        observation = raw.get("observation")
        if not isinstance(observation, str):
            observation = "OK" if ok else "ERROR"

        artifacts = {key: raw[key] for key in _ARTIFACT_KEYS if raw.get(key)}
        if raw.get("dataUrl"):
            artifacts["screenshot"] = True

        warnings = raw.get("warnings")
        if warnings is None:
            warnings = []
        elif isinstance(warnings, (list, tuple)):
            warnings = [str(w) for w in warnings]
        else:
            warnings = [str(warnings)]

        return cls(
            ok=ok,
            observation=observation,
            duration_ms=duration_ms,
            artifacts=artifacts,
            errors=[str(raw["error"])] if raw.get("error") else [],
            warnings=warnings,
        )

    @classmethod
    def error_result(cls, observation: str, errors: Optional[List[str]] = None) -> "ToolResult":
        """Create a failed result without running anything."""
        return cls(ok=False, observation=observation, errors=list(errors or []))
