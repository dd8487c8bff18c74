"""
Graph model for the task graph engine.
Nodes, their dependency structure, and the per-run execution records.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from errors import CycleDetectedError


class NodeKind(str, Enum):
    """Variant tag of a node."""
    TOOL = "tool"
    DELAY = "delay"
    NOOP = "noop"


class NodeStatus(str, Enum):
    """Status of a node within one run."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeStatus.SUCCESS, NodeStatus.ERROR, NodeStatus.SKIPPED)


# Unknown keys (descriptions, planner notes) are dropped
_NODE_CONFIG = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

# Fields owned by exactly one node kind, under both spellings
_KIND_SPECIFIC_KEYS = frozenset({"toolId", "tool_id", "input", "delayMs", "delay_ms"})


class RetryPolicy(BaseModel):
    """How many times a node may be attempted and the base backoff between attempts."""
    model_config = _NODE_CONFIG

    max_attempts: int = Field(default=1, alias="maxAttempts")
    backoff_ms: float = Field(default=0, alias="backoffMs")

    @field_validator("max_attempts", mode="before")
    @classmethod
    def _clamp_attempts(cls, value: Any) -> int:
        return max(1, int(value or 1))

    @field_validator("backoff_ms", mode="before")
    @classmethod
    def _clamp_backoff(cls, value: Any) -> float:
        return max(0.0, float(value or 0))


class _NodeBase(BaseModel):
    model_config = _NODE_CONFIG

    id: str = Field(min_length=1)
    depends_on: Tuple[str, ...] = Field(default=(), alias="dependsOn")
    timeout_ms: float = Field(default=0, alias="timeoutMs")
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy, alias="retryPolicy")

    @model_validator(mode="before")
    @classmethod
    def _reject_foreign_fields(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        own = set()
        for name, info in cls.model_fields.items():
            own.add(name)
            if info.alias:
                own.add(info.alias)
        foreign = sorted(key for key in data if key in _KIND_SPECIFIC_KEYS and key not in own)
        if foreign:
            kind = cls.model_fields["kind"].default
            raise ValueError(f"{', '.join(foreign)} not allowed on a {kind} node")
        return data

    @field_validator("depends_on", mode="before")
    @classmethod
    def _normalize_depends_on(cls, value: Any) -> Tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError("dependsOn must be a list of node ids")
        # Order preserving de-duplication
        return tuple(dict.fromkeys(value))

    @field_validator("timeout_ms", mode="before")
    @classmethod
    def _clamp_timeout(cls, value: Any) -> float:
        return max(0.0, float(value or 0))

    @field_validator("retry_policy", mode="before")
    @classmethod
    def _default_retry_policy(cls, value: Any) -> Any:
        return {} if value is None else value


class ToolNode(_NodeBase):
    """Invokes a named capability on the tool registry."""
    kind: Literal["tool"] = "tool"
    tool_id: str = Field(min_length=1, alias="toolId")
    input: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("input", mode="before")
    @classmethod
    def _default_input(cls, value: Any) -> Any:
        return {} if value is None else value


class DelayNode(_NodeBase):
    """Suspends for a fixed amount of time, then succeeds."""
    kind: Literal["delay"] = "delay"
    delay_ms: float = Field(default=0, alias="delayMs")

    @field_validator("delay_ms", mode="before")
    @classmethod
    def _clamp_delay(cls, value: Any) -> float:
        return max(0.0, float(value or 0))


class NoopNode(_NodeBase):
    """Succeeds immediately. Useful as a join point."""
    kind: Literal["noop"] = "noop"


Node = Annotated[Union[ToolNode, DelayNode, NoopNode], Field(discriminator="kind")]

NODE_TYPES = (ToolNode, DelayNode, NoopNode)

NODE_ADAPTER: TypeAdapter = TypeAdapter(Node)


def new_graph_id() -> str:
    """Generate a graph identifier of the form ``tg_<epoch ms>_<hex>``."""
    return f"tg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True)
class TaskGraph:
    """
    Immutable graph of nodes and their dependency edges.

    Instances are produced by ``create_graph``; the scheduler only reads
    them, so one graph may be run any number of times, concurrently.

    Example:
        graph = create_graph([
            {"id": "open", "kind": "tool", "toolId": "navigateToUrl",
             "input": {"url": "https://example.com"}},
            {"id": "read", "kind": "tool", "toolId": "readPageContent",
             "dependsOn": ["open"]},
        ], meta={"request_id": "req-1"})
    """
    id: str
    nodes: Tuple[Any, ...]
    meta: Mapping[str, Any]
    node_map: Mapping[str, Any]
    in_degree: Mapping[str, int]

    def __len__(self) -> int:
        return len(self.nodes)

    def get_node(self, node_id: str) -> Optional[Any]:
        """Get a node by ID."""
        return self.node_map.get(node_id)

    @property
    def correlation_id(self) -> str:
        """Caller supplied request id when present, else the graph id."""
        request_id = self.meta.get("request_id") or self.meta.get("requestId")
        return str(request_id) if request_id else self.id

    def build_dependents(self) -> Dict[str, List[str]]:
        """
        Build the reverse edges of the graph.

        Returns a fresh dict on every call so each run may consume it freely.
        """
        dependents: Dict[str, List[str]] = {node.id: [] for node in self.nodes}
        for node in self.nodes:
            for dep_id in node.depends_on:
                dependents[dep_id].append(node.id)
        return dependents

    def topological_order(self) -> List[str]:
        """
        Get node IDs in topological order (dependencies first).

        Raises:
            CycleDetectedError: If the graph contains a cycle
        """
        # Kahn's algorithm
        in_degree = dict(self.in_degree)
        dependents = self.build_dependents()
        queue = [node.id for node in self.nodes if in_degree[node.id] == 0]
        order: List[str] = []

        while queue:
            node_id = queue.pop(0)
            order.append(node_id)
            for dependent_id in dependents[node_id]:
                in_degree[dependent_id] -= 1
                if in_degree[dependent_id] == 0:
                    queue.append(dependent_id)

        if len(order) != len(self.nodes):
            visited = set(order)
            remaining = [node.id for node in self.nodes if node.id not in visited]
            raise CycleDetectedError(remaining)

        return order

    def to_dict(self) -> Dict[str, Any]:
        """Convert graph to dictionary."""
        return {
            "id": self.id,
            "meta": dict(self.meta),
            "nodes": [node.model_dump(by_alias=True) for node in self.nodes],
        }


@dataclass
class ExecutionResult:
    """Outcome of one node. Failures are values, never exceptions."""
    ok: bool
    observation: str = ""
    duration_ms: float = 0
    error: Optional[str] = None
    skipped: bool = False
    timed_out: bool = False
    retryable: bool = True
    attempts: int = 0
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, observation: str = "OK", **data) -> "ExecutionResult":
        return cls(ok=True, observation=observation, data=data)

    @classmethod
    def failure(
        cls,
        observation: str,
        error: Optional[str] = None,
        retryable: bool = True,
        **data,
    ) -> "ExecutionResult":
        return cls(
            ok=False,
            observation=observation,
            error=error or observation,
            retryable=retryable,
            data=data,
        )

    @classmethod
    def skipped_result(cls, reason: str) -> "ExecutionResult":
        return cls(ok=False, observation=reason, skipped=True, retryable=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire dictionary ``{ok, observation, durationMs, ...}``."""
        out = dict(self.data)
        out.update({
            "ok": self.ok,
            "observation": self.observation,
            "durationMs": self.duration_ms,
            "attempts": self.attempts,
        })
        if self.error is not None:
            out["error"] = self.error
        if self.skipped:
            out["skipped"] = True
        if self.timed_out:
            out["timedOut"] = True
        return out


@dataclass
class NodeState:
    """Execution state of a node, scoped to one run."""
    status: NodeStatus = NodeStatus.PENDING
    attempts: int = 0
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "attempts": self.attempts,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


@dataclass
class RunResult:
    """Aggregated result of one ``GraphScheduler.run`` call."""
    graph_id: str
    ok: bool
    duration_ms: float
    results: Dict[str, ExecutionResult]
    state: Dict[str, NodeState]
    cancelled: bool = False

    def node_ids_with_status(self, status: NodeStatus) -> List[str]:
        return [node_id for node_id, s in self.state.items() if s.status == status]

    def succeeded(self) -> List[str]:
        return self.node_ids_with_status(NodeStatus.SUCCESS)

    def failed(self) -> List[str]:
        return self.node_ids_with_status(NodeStatus.ERROR)

    def skipped(self) -> List[str]:
        return self.node_ids_with_status(NodeStatus.SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graph_id": self.graph_id,
            "ok": self.ok,
            "durationMs": self.duration_ms,
            "cancelled": self.cancelled,
            "results": {node_id: r.to_dict() for node_id, r in self.results.items()},
            "state": {node_id: s.to_dict() for node_id, s in self.state.items()},
        }
