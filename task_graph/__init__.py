"""
Task Graph engine.
Dependency-aware, concurrency-limited, retrying execution of node graphs.
"""

from .dag import (
    NodeKind,
    NodeStatus,
    RetryPolicy,
    ToolNode,
    DelayNode,
    NoopNode,
    Node,
    TaskGraph,
    ExecutionResult,
    NodeState,
    RunResult,
)
from .builder import create_graph
from .planner import (
    LinearPlanner,
    SubTaskIntent,
    plan_linear_from_sub_tasks,
    create_linear_graph_from_sub_tasks,
)
from .executor import NodeExecutor, NodeRunContext, compute_backoff_delay
from .scheduler import GraphScheduler
from .telemetry import Observer, SafeObserver, InMemoryObserver
from .config import EngineSettings, RunOptions, setup_logging

__all__ = [
    # DAG
    "NodeKind",
    "NodeStatus",
    "RetryPolicy",
    "ToolNode",
    "DelayNode",
    "NoopNode",
    "Node",
    "TaskGraph",
    "ExecutionResult",
    "NodeState",
    "RunResult",
    # Builder
    "create_graph",
    # Planner
    "LinearPlanner",
    "SubTaskIntent",
    "plan_linear_from_sub_tasks",
    "create_linear_graph_from_sub_tasks",
    # Execution
    "NodeExecutor",
    "NodeRunContext",
    "compute_backoff_delay",
    "GraphScheduler",
    # Telemetry
    "Observer",
    "SafeObserver",
    "InMemoryObserver",
    # Config
    "EngineSettings",
    "RunOptions",
    "setup_logging",
]
