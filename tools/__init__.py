"""
Tool System for the task graph engine.
In-process registry of browser tools behind the ``run_tool`` contract.
"""

from .tool_registry import ToolRegistry, ToolDefinition
from .tool_schemas import ToolCategory, ParameterType, ToolParameter, ToolResult

__all__ = [
    "ToolRegistry",
    "ToolDefinition",
    "ToolCategory",
    "ParameterType",
    "ToolParameter",
    "ToolResult",
]
