"""
Telemetry for graph runs.
Lifecycle events are forwarded to an observer on a best-effort basis;
nothing an observer does can change a scheduling outcome.
"""

import inspect
import logging
import time
from collections import deque
from typing import Any, Dict, List, Mapping

from errors import suppress_errors

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 500


class Observer:
    """
    Base observer. Every hook is optional and does nothing by default.

    Subclasses override the hooks they care about; hooks may be sync or
    async.
    """

    async def emit_generic(self, tab_id: Any, kind: str, data: Mapping[str, Any]) -> Any:
        return None

    async def emit_run_state(self, tab_id: Any, state: str, meta: Mapping[str, Any]) -> Any:
        return None

    async def emit_tool_started(self, tab_id: Any, tool_id: str, input: Mapping[str, Any]) -> Any:
        return None

    async def emit_tool_result(self, tab_id: Any, tool_id: str, output: Mapping[str, Any]) -> Any:
        return None


class SafeObserver:
    """
    Never-throws boundary around an observer.

    Wraps any object (or ``None``). Missing hooks are skipped, sync and
    async hooks are both supported, and every failure is logged and
    swallowed here so call sites never need their own guards.
    """

    def __init__(self, observer: Any = None):
        self._observer = observer

    @property
    def wrapped(self) -> Any:
        return self._observer

    @suppress_errors(default_return=None)
    async def _call(self, hook: str, *args) -> Any:
        if self._observer is None:
            return None
        method = getattr(self._observer, hook, None)
        if not callable(method):
            return None
        result = method(*args)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def emit_generic(self, tab_id: Any, kind: str, data: Mapping[str, Any]) -> Any:
        return await self._call("emit_generic", tab_id, kind, dict(data))

    async def emit_run_state(self, tab_id: Any, state: str, meta: Mapping[str, Any]) -> Any:
        return await self._call("emit_run_state", tab_id, state, dict(meta or {}))

    async def emit_tool_started(self, tab_id: Any, tool_id: str, input: Mapping[str, Any]) -> Any:
        return await self._call("emit_tool_started", tab_id, tool_id, dict(input or {}))

    async def emit_tool_result(self, tab_id: Any, tool_id: str, output: Mapping[str, Any]) -> Any:
        return await self._call("emit_tool_result", tab_id, tool_id, dict(output or {}))


class InMemoryObserver(Observer):
    """
    Observer that keeps a bounded timeline of structured events.

    Example:
        observer = InMemoryObserver(max_events=100)
        scheduler = GraphScheduler(registry, observer=observer)
        await scheduler.run(graph)
        kinds = [e["kind"] for e in observer.list_recent()]
    """

    def __init__(self, max_events: int = DEFAULT_MAX_EVENTS):
        self._events: deque = deque(maxlen=max(1, int(max_events)))

    async def emit_generic(self, tab_id: Any, kind: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        return self._emit(tab_id, kind, data)

    async def emit_run_state(self, tab_id: Any, state: str, meta: Mapping[str, Any]) -> Dict[str, Any]:
        return self._emit(tab_id, "run_state", {"state": state, "meta": dict(meta or {})})

    async def emit_tool_started(self, tab_id: Any, tool_id: str, input: Mapping[str, Any]) -> Dict[str, Any]:
        return self._emit(tab_id, "tool_started", {"tool_id": tool_id, "input": dict(input or {})})

    async def emit_tool_result(self, tab_id: Any, tool_id: str, output: Mapping[str, Any]) -> Dict[str, Any]:
        output = dict(output or {})
        status = "error" if output.get("ok") is False else "success"
        return self._emit(tab_id, "tool_result", {"tool_id": tool_id, "status": status, "output": output})

    def list_recent(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Get the last ``limit`` events, oldest first."""
        events = list(self._events)
        if not isinstance(limit, int) or limit <= 0:
            limit = 100
        return events[-limit:]

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)

    def _emit(self, tab_id: Any, kind: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        event = {
            "ts": int(time.time() * 1000),
            "tab_id": tab_id if isinstance(tab_id, int) and not isinstance(tab_id, bool) else -1,
            "kind": kind,
        }
        event.update(data)
        logger.debug(f"emit {kind} (tab {event['tab_id']})")
        self._events.append(event)
        return event
