"""
Errors - error handling module

Exception taxonomy for graph construction and tool lookup, plus the
suppression decorator used by best-effort boundaries.
"""

from .exceptions import (
    TaskGraphError,
    GraphConstructionError,
    InvalidNodeError,
    DuplicateNodeError,
    MissingDependencyError,
    CycleDetectedError,
    NodeTimeoutError,
    ToolCancelledError,
    UnknownToolError,
)

from .decorators import suppress_errors

__all__ = [
    # Exceptions
    "TaskGraphError",
    "GraphConstructionError",
    "InvalidNodeError",
    "DuplicateNodeError",
    "MissingDependencyError",
    "CycleDetectedError",
    "NodeTimeoutError",
    "ToolCancelledError",
    "UnknownToolError",

    # Decorators
    "suppress_errors",
]
