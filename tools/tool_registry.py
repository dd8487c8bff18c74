"""
Tool Registry for browser tools.
In-process implementation of the registry contract the task graph engine
calls: ``run_tool(tool_id, ctx, input)`` and ``get_capabilities(tool_id)``.
"""

from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union
import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field

from errors import UnknownToolError

from .tool_schemas import ToolCategory, ToolParameter, ToolResult

logger = logging.getLogger(__name__)


# run(ctx, input) -> {ok, observation, ...}, sync or async
ToolRunFunc = Callable[[Any, Dict[str, Any]], Union[Any, Awaitable[Any]]]

PreconditionFunc = Callable[[Any, Dict[str, Any]], Union[Any, Awaitable[Any]]]


@dataclass
class ToolDefinition:
    """Registration record for a tool."""
    tool_id: str
    run: ToolRunFunc
    description: str = ""
    category: ToolCategory = ToolCategory.CUSTOM
    parameters: List[ToolParameter] = field(default_factory=list)
    max_attempts: int = 1
    backoff_ms: float = 0
    preconditions: Optional[PreconditionFunc] = None
    capabilities: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.tool_id, str) or not self.tool_id:
            raise ValueError("Tool id is required")
        if not callable(self.run):
            raise ValueError(f"Tool '{self.tool_id}' must define a callable run")
        self.max_attempts = max(1, int(self.max_attempts or 1))
        self.backoff_ms = max(0.0, float(self.backoff_ms or 0))


class ToolRegistry:
    """
    Registry of browser tools.

    Provides:
    - Tool registration and lookup
    - Input validation against declared parameters
    - Preconditions and per-tool retry
    - Normalized results

    Example:
        registry = ToolRegistry()

        @registry.tool("readPageContent", category=ToolCategory.EXTRACTION)
        async def read_page(ctx, input):
            return {"ok": True, "observation": "...", "content": "..."}

        result = await registry.run_tool("readPageContent", {"tab_id": 3}, {"maxChars": 5000})
    """

    def __init__(self):
        """Initialize the registry."""
        self._tools: Dict[str, ToolDefinition] = {}

    def register_tool(self, definition: ToolDefinition) -> bool:
        """
        Register a tool.

        Args:
            definition: The tool definition

        Returns:
            True once registered
        """
        if not isinstance(definition, ToolDefinition):
            raise ValueError("Tool definition required")

        if definition.tool_id in self._tools:
            logger.warning(f"Tool '{definition.tool_id}' is already registered, overwriting")

        self._tools[definition.tool_id] = definition
        logger.info(
            f"Registered tool: {definition.tool_id} ({definition.category.value}, "
            f"params={len(definition.parameters)}, retry={definition.max_attempts})"
        )
        return True

    def tool(
        self,
        tool_id: str,
        description: str = "",
        category: ToolCategory = ToolCategory.CUSTOM,
        parameters: Optional[List[ToolParameter]] = None,
        max_attempts: int = 1,
        backoff_ms: float = 0,
        preconditions: Optional[PreconditionFunc] = None,
        capabilities: Optional[Dict[str, Any]] = None,
    ):
        """
        Decorator to register a function as a tool.

        Example:
            @registry.tool("navigateToUrl", parameters=[
                ToolParameter("url", ParameterType.STRING, required=True),
            ])
            async def navigate(ctx, input):
                ...
        """
        def decorator(func: ToolRunFunc) -> ToolRunFunc:
            self.register_tool(ToolDefinition(
                tool_id=tool_id,
                run=func,
                description=description or (func.__doc__ or "").strip(),
                category=category,
                parameters=list(parameters or []),
                max_attempts=max_attempts,
                backoff_ms=backoff_ms,
                preconditions=preconditions,
                capabilities=dict(capabilities or {}),
            ))
            return func
        return decorator

    def unregister(self, tool_id: str) -> bool:
        """
        Unregister a tool.

        Returns:
            True if the tool was unregistered, False if not found
        """
        if tool_id not in self._tools:
            return False
        del self._tools[tool_id]
        logger.info(f"Unregistered tool: {tool_id}")
        return True

    def get_tool(self, tool_id: str) -> Optional[ToolDefinition]:
        """Get a tool definition by id."""
        return self._tools.get(tool_id)

    def list_tools(self) -> List[ToolDefinition]:
        """Get all registered tools, in registration order."""
        return list(self._tools.values())

    def get_names(self) -> List[str]:
        return list(self._tools.keys())

    def get_capabilities(self, tool_id: str) -> Optional[Dict[str, Any]]:
        """
        Metadata about a tool for telemetry enrichment.

        Returns:
            Capabilities dict, or None for unknown tools
        """
        definition = self._tools.get(tool_id)
        if not definition:
            return None
        return {
            "tool_id": definition.tool_id,
            "category": definition.category.value,
            "description": definition.description,
            "max_attempts": definition.max_attempts,
            **definition.capabilities,
        }

    def validate_input(self, definition: ToolDefinition, tool_input: Mapping[str, Any]) -> List[str]:
        """
        Validate tool input against the declared parameters.

        Only declared parameters are checked; unknown keys pass through.

        Returns:
            List of error messages (empty when valid)
        """
        errors: List[str] = []
        for param in definition.parameters:
            if param.name not in tool_input:
                if param.required:
                    errors.append(f"Missing required property '{param.name}'")
                continue
            errors.extend(param.validate(tool_input[param.name]))
        return errors

    async def run_tool(
        self,
        tool_id: str,
        ctx: Any,
        tool_input: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Run a registered tool.

        Args:
            tool_id: Id of the tool
            ctx: Execution context (e.g. the browser tab), passed through
            tool_input: Tool arguments

        Returns:
            Normalized result dict ``{ok, status, durationMs, observation, ...}``

        Raises:
            UnknownToolError: If the tool is not registered
        """
        definition = self._tools.get(tool_id)
        if not definition:
            raise UnknownToolError(tool_id)

        tool_input = dict(tool_input or {})

        errors = self.validate_input(definition, tool_input)
        if errors:
            logger.warning(f"Validation failed for tool {tool_id}: {errors}")
            return ToolResult.error_result(
                f"Invalid input for '{tool_id}': {'; '.join(errors)}",
                errors=errors,
            ).to_dict()

        started_at = time.monotonic()
        try:
            result = await self._run_with_retry(definition, ctx, tool_input)
        except Exception as e:
            logger.error(f"Tool {tool_id} errored: {e}")
            raise

        logger.info(
            f"Tool {tool_id} result: ok={result.ok} "
            f"{(time.monotonic() - started_at) * 1000:.0f}ms - {result.observation[:160]}"
        )
        return result.to_dict()

    async def _run_with_retry(
        self,
        definition: ToolDefinition,
        ctx: Any,
        tool_input: Dict[str, Any],
    ) -> ToolResult:
        if definition.preconditions is not None:
            pre = await _maybe_await(definition.preconditions(ctx, tool_input))
            if isinstance(pre, Mapping) and pre.get("ok") is False:
                logger.warning(f"Preconditions failed for tool {definition.tool_id}: {pre.get('observation')}")
                return ToolResult.error_result(
                    pre.get("observation") or "Preconditions failed",
                    errors=[str(pre.get("error") or "preconditions_failed")],
                )

        attempts = definition.max_attempts
        started_at = time.monotonic()
        last: Optional[ToolResult] = None

        for attempt in range(1, attempts + 1):
            logger.debug(f"Tool {definition.tool_id} attempt {attempt}/{attempts}")
            try:
                raw = await _maybe_await(definition.run(ctx, tool_input))
                last = ToolResult.normalize(raw, started_at)
                if last.ok:
                    return last
                logger.warning(
                    f"Tool {definition.tool_id} returned an error "
                    f"(attempt {attempt}/{attempts}): {last.observation[:160]}"
                )
            except Exception as e:
                last = ToolResult.normalize({"ok": False, "observation": str(e), "error": e}, started_at)
                logger.warning(
                    f"Tool {definition.tool_id} raised (attempt {attempt}/{attempts}): {e}"
                )

            if attempt < attempts and definition.backoff_ms > 0:
                await asyncio.sleep(definition.backoff_ms * attempt / 1000)

        return last

    def clear(self) -> None:
        """Clear all registered tools."""
        self._tools.clear()
        logger.info("Cleared all tools from registry")


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
