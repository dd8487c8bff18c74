"""
Graph scheduler for executing task graphs.
Dispatches ready nodes under a concurrency bound, propagates failures as
skips, and aggregates the final run result.
"""

import asyncio
import inspect
import logging
import time
from collections import deque
from dataclasses import replace
from typing import Any, Deque, Dict, List, Mapping, Optional, Set

from errors import suppress_errors

from .config import EngineSettings, RunOptions
from .dag import ExecutionResult, NodeState, NodeStatus, RunResult, TaskGraph
from .executor import NodeExecutor, NodeRunContext, RandomSource
from .telemetry import SafeObserver

logger = logging.getLogger(__name__)

SKIPPED_FAILED_DEPENDENCY = "Skipped due to failed dependency"
SKIPPED_CANCELLED = "Skipped due to cancellation"
SKIPPED_UNREACHABLE = "Skipped: dependencies never completed"

_FAILED_STATUSES = (NodeStatus.ERROR, NodeStatus.SKIPPED)


class _GraphRun:
    """Mutable bookkeeping owned by exactly one ``run()`` invocation."""

    def __init__(self, graph: TaskGraph, options: RunOptions):
        self.graph = graph
        self.options = options
        self.in_degree: Dict[str, int] = dict(graph.in_degree)
        self.dependents: Dict[str, List[str]] = graph.build_dependents()
        self.state: Dict[str, NodeState] = {node.id: NodeState() for node in graph.nodes}
        self.results: Dict[str, ExecutionResult] = {}
        self.ready: Deque[str] = deque(node.id for node in graph.nodes if self.in_degree[node.id] == 0)
        self.pending: Set[str] = set(graph.node_map)
        self.in_flight: Dict[asyncio.Task, str] = {}
        self.cancelled = False
        self.started_at = time.monotonic()

    @property
    def running_count(self) -> int:
        return len(self.in_flight)

    def has_failed_dependency(self, node_id: str) -> bool:
        node = self.graph.node_map[node_id]
        return any(self.state[dep_id].status in _FAILED_STATUSES for dep_id in node.depends_on)


class GraphScheduler:
    """
    Executes a task graph respecting dependencies and a concurrency bound.

    Features:
    - Ready-queue dispatch, FIFO among eligible nodes
    - Per-node retry with jittered backoff and timeouts
    - Skip cascade below failed or skipped nodes
    - Cooperative cancellation (token or fail-fast)

    Example:
        scheduler = GraphScheduler(tool_registry, observer=InMemoryObserver())
        result = await scheduler.run(
            graph,
            RunOptions(concurrency=3, ctx={"tab_id": 7}, fail_fast=True),
        )
        if not result.ok:
            print(result.failed())
    """

    def __init__(
        self,
        tool_registry: Any = None,
        observer: Any = None,
        settings: Optional[EngineSettings] = None,
        rng: Optional[RandomSource] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            tool_registry: Collaborator exposing ``run_tool(tool_id, ctx, input)``
            observer: Optional telemetry sink (wrapped in a SafeObserver)
            settings: Engine defaults (EngineSettings() when omitted)
            rng: Random source for backoff jitter
        """
        self.settings = settings or EngineSettings()
        self.observer = observer if isinstance(observer, SafeObserver) else SafeObserver(observer)
        self.node_executor = NodeExecutor(
            tool_registry,
            self.observer,
            rng=rng,
            observation_preview_chars=self.settings.observation_preview_chars,
        )

    async def run(
        self,
        graph: TaskGraph,
        options: Optional[RunOptions] = None,
        **overrides: Any,
    ) -> RunResult:
        """
        Execute all nodes of the graph.

        Node failures never raise; they are reported through the result.

        Args:
            graph: Graph built by ``create_graph``
            options: Run options
            **overrides: Individual RunOptions fields, applied on top of ``options``

        Returns:
            RunResult once every node is terminal
        """
        options = replace(options or RunOptions(), **overrides).resolve(self.settings)
        run = _GraphRun(graph, options)
        tab_id = _extract_tab_id(options.ctx)
        node_ctx = NodeRunContext(
            graph_id=graph.id,
            correlation_id=graph.correlation_id,
            ctx=options.ctx,
            tab_id=tab_id,
            default_tool_timeout_ms=options.default_tool_timeout_ms,
            signal=options.signal,
        )
        request_id = graph.meta.get("request_id") or graph.meta.get("requestId")

        logger.info(
            f"Starting graph '{graph.id}' ({len(graph)} node(s), "
            f"concurrency={options.concurrency}, correlation={node_ctx.correlation_id})"
        )
        await self.observer.emit_run_state(tab_id, "started", {
            "graph_id": graph.id,
            "nodes": len(graph),
            "correlation_id": node_ctx.correlation_id,
            "request_id": request_id,
            "goal": graph.meta.get("goal"),
        })

        try:
            while True:
                self._check_cancellation(run)
                skipped = self._dispatch_ready(run, node_ctx)
                await self._emit_skipped(run, skipped, node_ctx)

                if not run.in_flight:
                    break

                done, _ = await asyncio.wait(
                    list(run.in_flight),
                    return_when=asyncio.FIRST_COMPLETED,
                )
                self._check_cancellation(run)
                for task in done:
                    node_id = run.in_flight.pop(task)
                    if task.cancelled():
                        logger.warning(f"Node {node_id} ended cancelled outside of run cancellation")
                        outcome = ExecutionResult.failure("Node task was cancelled", error="cancelled")
                    else:
                        try:
                            outcome = task.result()
                        except Exception as e:
                            logger.exception(f"Node {node_id} crashed outside its retry loop")
                            outcome = ExecutionResult.failure(str(e) or type(e).__name__)
                    skipped = self._complete_node(run, node_id, outcome)
                    await self._emit_skipped(run, skipped, node_ctx)
        finally:
            for task in run.in_flight:
                task.cancel()

        if run.pending:
            # Only reachable for graphs that bypassed create_graph's cycle check
            logger.error(f"Graph '{graph.id}' stalled with {len(run.pending)} unreachable node(s)")
            for node_id in [node.id for node in graph.nodes if node.id in run.pending]:
                self._mark_skipped(run, node_id, SKIPPED_UNREACHABLE)

        duration_ms = max(0.0, (time.monotonic() - run.started_at) * 1000)
        all_ok = all(s.status in (NodeStatus.SUCCESS, NodeStatus.SKIPPED) for s in run.state.values())
        result = RunResult(
            graph_id=graph.id,
            ok=all_ok,
            duration_ms=duration_ms,
            results=run.results,
            state=run.state,
            cancelled=run.cancelled,
        )

        failed_count = len(result.failed())
        logger.info(
            f"Graph '{graph.id}' finished: ok={all_ok}, "
            f"{len(result.succeeded())} succeeded, {failed_count} failed, "
            f"{len(result.skipped())} skipped in {duration_ms:.0f}ms"
        )
        finished_meta = {
            "graph_id": graph.id,
            "duration_ms": duration_ms,
            "ok": all_ok,
            "correlation_id": node_ctx.correlation_id,
            "request_id": request_id,
        }
        await self.observer.emit_generic(tab_id, "graph_finished", finished_meta)
        await self.observer.emit_run_state(tab_id, "finished", finished_meta)

        return result

    def _check_cancellation(self, run: _GraphRun) -> None:
        signal = run.options.signal
        if not run.cancelled and signal is not None and signal.is_set():
            logger.warning(f"Graph '{run.graph.id}' cancelled, no further nodes will be dispatched")
            run.cancelled = True

    def _dispatch_ready(self, run: _GraphRun, node_ctx: NodeRunContext) -> List[str]:
        """Start ready nodes up to the concurrency bound; returns newly skipped ids."""
        skipped: List[str] = []
        while run.ready and (run.cancelled or run.running_count < run.options.concurrency):
            node_id = run.ready.popleft()
            if run.state[node_id].status != NodeStatus.PENDING:
                continue

            failed_dependency = run.has_failed_dependency(node_id)
            if run.cancelled or failed_dependency:
                reason = SKIPPED_FAILED_DEPENDENCY if failed_dependency else SKIPPED_CANCELLED
                self._mark_skipped(run, node_id, reason)
                skipped.append(node_id)
                skipped.extend(self._release_dependents(run, node_id))
                continue

            self._start_node(run, node_id, node_ctx)
        return skipped

    def _start_node(self, run: _GraphRun, node_id: str, node_ctx: NodeRunContext) -> None:
        state = run.state[node_id]
        state.status = NodeStatus.RUNNING
        state.started_at = time.monotonic()
        node = run.graph.node_map[node_id]
        task = asyncio.create_task(self._run_one(run, node, node_ctx))
        run.in_flight[task] = node_id

    async def _run_one(self, run: _GraphRun, node: Any, node_ctx: NodeRunContext) -> ExecutionResult:
        await _invoke_callback(run.options.on_node_start, node)
        result = await self.node_executor.execute(node, node_ctx, run.state[node.id])
        await _invoke_callback(run.options.on_node_finish, node, result)
        return result

    def _complete_node(self, run: _GraphRun, node_id: str, result: ExecutionResult) -> List[str]:
        """Record a finished node and unblock its dependents; returns newly skipped ids."""
        state = run.state[node_id]
        state.status = NodeStatus.SUCCESS if result.ok else NodeStatus.ERROR
        state.finished_at = time.monotonic()
        run.results[node_id] = result
        run.pending.discard(node_id)

        logger.debug(f"Node {node_id} finished: {state.status.value} after {state.attempts} attempt(s)")

        if run.options.fail_fast and state.status == NodeStatus.ERROR and not run.cancelled:
            logger.warning(f"Node {node_id} failed with fail_fast set, cancelling remaining nodes")
            run.cancelled = True

        return self._release_dependents(run, node_id)

    def _release_dependents(self, run: _GraphRun, node_id: str) -> List[str]:
        """
        Decrement in-degrees below ``node_id``.

        Dependents reaching zero are queued, or skipped when the run is
        cancelled or one of their dependencies failed; skips cascade.
        """
        skipped: List[str] = []
        stack = [node_id]
        while stack:
            current = stack.pop()
            for dependent_id in run.dependents[current]:
                run.in_degree[dependent_id] = max(0, run.in_degree[dependent_id] - 1)
                if run.in_degree[dependent_id] != 0:
                    continue

                failed_dependency = run.has_failed_dependency(dependent_id)
                if run.cancelled or failed_dependency:
                    reason = SKIPPED_FAILED_DEPENDENCY if failed_dependency else SKIPPED_CANCELLED
                    self._mark_skipped(run, dependent_id, reason)
                    skipped.append(dependent_id)
                    stack.append(dependent_id)
                else:
                    run.ready.append(dependent_id)
        return skipped

    def _mark_skipped(self, run: _GraphRun, node_id: str, reason: str) -> None:
        state = run.state[node_id]
        state.status = NodeStatus.SKIPPED
        state.finished_at = time.monotonic()
        run.results[node_id] = ExecutionResult.skipped_result(reason)
        run.pending.discard(node_id)
        logger.debug(f"Node {node_id} skipped: {reason}")

    async def _emit_skipped(self, run: _GraphRun, node_ids: List[str], node_ctx: NodeRunContext) -> None:
        for node_id in node_ids:
            await self.observer.emit_generic(node_ctx.tab_id, "graph_node_skipped", {
                "node_id": node_id,
                "reason": run.results[node_id].observation,
                **node_ctx.event_fields(),
            })


@suppress_errors(default_return=None)
async def _invoke_callback(callback: Any, *args: Any) -> None:
    if callback is None:
        return
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        await outcome


def _extract_tab_id(ctx: Any) -> Any:
    if isinstance(ctx, Mapping):
        if "tab_id" in ctx:
            return ctx["tab_id"]
        return ctx.get("tabId")
    return getattr(ctx, "tab_id", None)
