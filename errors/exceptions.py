"""
Exceptions - task graph error taxonomy

Structural problems (malformed graphs, unknown tools) are raised as these
exceptions. Per-node failures are never raised to the caller; they are
recorded in the run result instead.
"""

from typing import Optional, Dict, Any, List


class TaskGraphError(Exception):
    """Base class for all task graph errors"""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Args:
            message: Human readable message
            code: Machine readable error code
            details: Extra structured context
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class GraphConstructionError(TaskGraphError):
    """Raised when a node list cannot be turned into a graph"""

    def __init__(
        self,
        message: str,
        code: str = "GRAPH_CONSTRUCTION_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message=message, code=code, details=details)


class InvalidNodeError(GraphConstructionError):
    """A node is not a mapping, has no id, or carries invalid fields"""

    def __init__(self, message: str, node_id: Optional[str] = None, index: Optional[int] = None):
        details: Dict[str, Any] = {}
        if node_id is not None:
            details["node_id"] = node_id
        if index is not None:
            details["index"] = index
        super().__init__(message=message, code="INVALID_NODE", details=details)


class DuplicateNodeError(GraphConstructionError):
    def __init__(self, node_id: str):
        super().__init__(
            message=f"Duplicate node id: {node_id}",
            code="DUPLICATE_NODE",
            details={"node_id": node_id}
        )


class MissingDependencyError(GraphConstructionError):
    def __init__(self, node_id: str, dependency_id: str):
        super().__init__(
            message=f"Node '{node_id}' depends on missing node '{dependency_id}'",
            code="MISSING_DEPENDENCY",
            details={"node_id": node_id, "dependency_id": dependency_id}
        )


class CycleDetectedError(GraphConstructionError):
    def __init__(self, node_ids: List[str]):
        super().__init__(
            message=f"Graph contains a dependency cycle involving: {', '.join(node_ids)}",
            code="CYCLE_DETECTED",
            details={"node_ids": list(node_ids)}
        )


class NodeTimeoutError(TaskGraphError):
    """A tool call did not complete within its allotted time"""

    def __init__(self, label: str, timeout_ms: float, node_id: Optional[str] = None):
        super().__init__(
            message=f"{label} timed out after {_format_ms(timeout_ms)}ms",
            code="NODE_TIMEOUT",
            details={"label": label, "timeout_ms": timeout_ms, "node_id": node_id}
        )
        self.timeout_ms = timeout_ms


class ToolCancelledError(TaskGraphError):
    """A tool call ended cancelled without the run asking for it"""

    def __init__(self, label: str, node_id: Optional[str] = None):
        super().__init__(
            message=f"{label} was cancelled",
            code="TOOL_CANCELLED",
            details={"label": label, "node_id": node_id}
        )


class UnknownToolError(TaskGraphError):
    def __init__(self, tool_id: str):
        super().__init__(
            message=f"Unknown tool '{tool_id}'",
            code="UNKNOWN_TOOL",
            details={"tool_id": tool_id}
        )


def _format_ms(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)
