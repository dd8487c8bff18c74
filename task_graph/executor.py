"""
Node executor for task graphs.
Runs a single node (noop, delay or tool) with timeout and retry/backoff.
"""

import asyncio
import inspect
import logging
import math
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from errors import NodeTimeoutError, ToolCancelledError

from .dag import DelayNode, ExecutionResult, NodeState, NoopNode, ToolNode
from .telemetry import SafeObserver

logger = logging.getLogger(__name__)


# Source of uniform floats in [0, 1)
RandomSource = Callable[[], float]

_RESERVED_RESULT_KEYS = ("ok", "observation", "error", "durationMs", "duration_ms")


@dataclass(frozen=True)
class NodeRunContext:
    """Everything a node needs from its run, shared by all nodes of that run."""
    graph_id: str
    correlation_id: str
    ctx: Any = None
    tab_id: Any = None
    default_tool_timeout_ms: float = 0
    signal: Any = None

    @property
    def cancel_requested(self) -> bool:
        return self.signal is not None and bool(self.signal.is_set())

    def event_fields(self) -> Dict[str, Any]:
        return {"graph_id": self.graph_id, "correlation_id": self.correlation_id}


def compute_backoff_delay(
    backoff_ms: float,
    attempt: int,
    rng: RandomSource = random.random,
) -> int:
    """
    Delay before the next attempt, in milliseconds.

    Linear in the attempt number with a jitter factor in [0.5, 1.5).

    Args:
        backoff_ms: Base backoff from the retry policy
        attempt: 1-based index of the attempt that just failed
        rng: Random source

    Returns:
        Delay in whole milliseconds
    """
    jitter = 0.5 + rng()
    return max(0, int(math.floor(backoff_ms * attempt * jitter)))


async def with_timeout(awaitable: Awaitable[Any], timeout_ms: float, label: str) -> Any:
    """
    Await ``awaitable`` for at most ``timeout_ms`` milliseconds.

    A timeout of 0 (or less) waits indefinitely. On timeout the call is
    asked to cancel but is not waited for; a call that ignores the
    cancellation keeps running detached.

    Raises:
        NodeTimeoutError: If the deadline passes first
        ToolCancelledError: If the call cancelled itself
    """
    task = asyncio.ensure_future(awaitable)
    timeout = timeout_ms / 1000 if timeout_ms and timeout_ms > 0 else None
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if not done:
        task.cancel()
        task.add_done_callback(_discard_outcome)
        raise NodeTimeoutError(label, timeout_ms)

    if task.cancelled():
        raise ToolCancelledError(label)
    return task.result()


def _discard_outcome(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"Detached call finished with error after timeout: {task.exception()}")


def normalize_tool_output(raw: Any) -> ExecutionResult:
    """Turn whatever a tool registry returned into an ExecutionResult."""
    if isinstance(raw, ExecutionResult):
        return raw

    if isinstance(raw, Mapping):
        ok = raw.get("ok") is not False
        observation = raw.get("observation")
        observation = str(observation) if observation is not None else ("OK" if ok else "ERROR")
        error = raw.get("error")
        if error is not None:
            error = str(error)
        elif not ok:
            error = observation
        data = {k: v for k, v in raw.items() if k not in _RESERVED_RESULT_KEYS}
        return ExecutionResult(ok=ok, observation=observation, error=error, data=data)

    if raw is None:
        return ExecutionResult.success("OK")

    return ExecutionResult.success(str(raw))


class NodeExecutor:
    """
    Executes individual graph nodes.

    Tool nodes are delegated to a tool registry exposing
    ``run_tool(tool_id, ctx, input)`` (sync or async) and optionally
    ``get_capabilities(tool_id)``.

    Example:
        executor = NodeExecutor(registry, SafeObserver(observer), rng=lambda: 0.5)
        result = await executor.execute(node, run_ctx, NodeState())
    """

    def __init__(
        self,
        tool_registry: Any = None,
        observer: Optional[SafeObserver] = None,
        rng: Optional[RandomSource] = None,
        observation_preview_chars: int = 200,
    ):
        """
        Initialize the node executor.

        Args:
            tool_registry: Collaborator that performs tool calls
            observer: Telemetry boundary
            rng: Random source for backoff jitter (defaults to random.random)
            observation_preview_chars: Length of observations in tool telemetry
        """
        self.tool_registry = tool_registry
        self.observer = observer or SafeObserver()
        self._rng = rng or random.random
        self._preview_chars = max(0, int(observation_preview_chars))

    async def execute(
        self,
        node: Any,
        run_ctx: NodeRunContext,
        state: Optional[NodeState] = None,
    ) -> ExecutionResult:
        """
        Execute a node with its retry policy.

        Attempts stop at the first outcome that is not a failure, at a
        non-retryable failure, or when cancellation is requested.

        Args:
            node: Node to execute
            run_ctx: Run wide context
            state: Execution state whose ``attempts`` counter is updated

        Returns:
            ExecutionResult of the last attempt
        """
        policy = getattr(node, "retry_policy", None)
        max_attempts = max(1, int(getattr(policy, "max_attempts", 1) or 1))
        backoff_ms = max(0.0, float(getattr(policy, "backoff_ms", 0) or 0))

        result: Optional[ExecutionResult] = None

        for attempt in range(1, max_attempts + 1):
            if run_ctx.cancel_requested:
                logger.info(f"Node {node.id} aborted before attempt {attempt}/{max_attempts}")
                if result is None:
                    result = ExecutionResult.failure("Aborted", error="cancelled", retryable=False)
                break

            if state is not None:
                state.attempts = attempt

            try:
                result = await self.run_node(node, run_ctx, attempt=attempt)
            except Exception as e:
                logger.exception(f"Node {node.id} raised during attempt {attempt}")
                result = ExecutionResult.failure(str(e) or type(e).__name__)

            result.attempts = attempt

            if result.ok or not result.retryable:
                break

            if attempt < max_attempts:
                logger.warning(
                    f"Node failed (attempt {attempt}/{max_attempts}): "
                    f"{node.id} - {result.observation}"
                )
                if backoff_ms > 0:
                    delay = compute_backoff_delay(backoff_ms, attempt, self._rng)
                    await asyncio.sleep(delay / 1000)

        return result

    async def run_node(
        self,
        node: Any,
        run_ctx: NodeRunContext,
        attempt: int = 1,
    ) -> ExecutionResult:
        """
        Run one attempt of a node, without retries.

        Emits ``graph_node_started`` and ``graph_node_finished`` around the
        attempt.
        """
        started = time.monotonic()
        kind = getattr(node, "kind", None)
        event = {"node_id": node.id, "node_kind": kind, "attempt": attempt, **run_ctx.event_fields()}

        logger.debug(f"Dispatching node {node.id} ({kind}), attempt {attempt}")
        await self.observer.emit_generic(run_ctx.tab_id, "graph_node_started", event)

        if isinstance(node, NoopNode):
            result = ExecutionResult.success("noop")
        elif isinstance(node, DelayNode):
            await asyncio.sleep(node.delay_ms / 1000)
            result = ExecutionResult.success(f"delay {_format_ms(node.delay_ms)}ms", delay_ms=node.delay_ms)
        elif isinstance(node, ToolNode):
            result = await self._run_tool(node, run_ctx, attempt)
        else:
            result = ExecutionResult.failure(
                f"Unknown node kind: {kind}",
                error="unknown_kind",
                retryable=False,
            )

        result.duration_ms = 0 if isinstance(node, NoopNode) else _elapsed_ms(started)

        finished = {
            **event,
            "status": "success" if result.ok else "error",
            "duration_ms": result.duration_ms,
        }
        if not result.ok:
            finished["error"] = result.error
        await self.observer.emit_generic(run_ctx.tab_id, "graph_node_finished", finished)

        return result

    async def _run_tool(self, node: ToolNode, run_ctx: NodeRunContext, attempt: int) -> ExecutionResult:
        registry = self.tool_registry
        if registry is None or not callable(getattr(registry, "run_tool", None)):
            return ExecutionResult.failure("ToolRegistry unavailable", retryable=False)

        tool_id = node.tool_id
        capabilities = self._get_capabilities(tool_id)
        meta = {"node_id": node.id, "attempt": attempt, "capabilities": capabilities, **run_ctx.event_fields()}

        logger.info(f"Tool started: {tool_id} (node {node.id}, attempt {attempt})")
        await self.observer.emit_tool_started(run_ctx.tab_id, tool_id, {**node.input, "__meta": meta})

        started = time.monotonic()
        timeout_ms = node.timeout_ms or run_ctx.default_tool_timeout_ms or 0
        try:
            raw = await with_timeout(
                self._call_tool(tool_id, run_ctx.ctx, dict(node.input)),
                timeout_ms,
                f"tool:{tool_id}",
            )
            result = normalize_tool_output(raw)
        except NodeTimeoutError as e:
            result = ExecutionResult.failure(e.message)
            result.timed_out = True
        except Exception as e:
            result = ExecutionResult.failure(str(e) or type(e).__name__)

        duration_ms = _elapsed_ms(started)
        preview = result.observation[:self._preview_chars]
        logger.info(
            f"Tool result: {tool_id} (node {node.id}) ok={result.ok} "
            f"{duration_ms:.0f}ms - {preview}"
        )
        await self.observer.emit_tool_result(run_ctx.tab_id, tool_id, {
            **result.data,
            "ok": result.ok,
            "observation": preview,
            "durationMs": duration_ms,
            "error": result.error,
            "timedOut": result.timed_out,
            **meta,
        })
        return result

    async def _call_tool(self, tool_id: str, ctx: Any, tool_input: Dict[str, Any]) -> Any:
        outcome = self.tool_registry.run_tool(tool_id, ctx, tool_input)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    def _get_capabilities(self, tool_id: str) -> Any:
        get_capabilities = getattr(self.tool_registry, "get_capabilities", None)
        if not callable(get_capabilities):
            return None
        try:
            return get_capabilities(tool_id)
        except Exception as e:
            logger.warning(f"get_capabilities failed for {tool_id}: {e}")
            return None


def _elapsed_ms(started: float) -> float:
    return max(0.0, (time.monotonic() - started) * 1000)


def _format_ms(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
