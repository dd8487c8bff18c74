"""
Configuration for the task graph engine.
Engine-wide settings come from the environment (optionally a .env file);
per-run options override them.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


NodeCallback = Callable[..., Union[None, Awaitable[None]]]

_LOGGER_NAMES = ("task_graph", "tools", "errors")


@dataclass(frozen=True)
class EngineSettings:
    """Engine-wide defaults."""
    concurrency: int = 2
    default_tool_timeout_ms: float = 0
    fail_fast: bool = False
    planner_max_chars: int = 15000
    observation_preview_chars: int = 200
    log_level: str = "INFO"

    @classmethod
    def from_env(
        cls,
        env_file: Optional[str] = None,
        override: bool = False,
    ) -> "EngineSettings":
        """
        Load settings from environment variables.

        Args:
            env_file: Optional path to a .env file (searched for when omitted)
            override: Whether values in the .env file replace existing variables

        Returns:
            EngineSettings
        """
        load_dotenv(env_file, override=override)

        defaults = cls()
        return cls(
            concurrency=max(1, _env_int("TASK_GRAPH_CONCURRENCY", defaults.concurrency)),
            default_tool_timeout_ms=max(
                0.0,
                _env_float("TASK_GRAPH_DEFAULT_TOOL_TIMEOUT_MS", defaults.default_tool_timeout_ms),
            ),
            fail_fast=_env_bool("TASK_GRAPH_FAIL_FAST", defaults.fail_fast),
            planner_max_chars=_env_int("TASK_GRAPH_PLANNER_MAX_CHARS", defaults.planner_max_chars),
            observation_preview_chars=_env_int(
                "TASK_GRAPH_OBSERVATION_PREVIEW_CHARS", defaults.observation_preview_chars
            ),
            log_level=os.getenv("TASK_GRAPH_LOG_LEVEL", defaults.log_level).upper(),
        )


@dataclass
class RunOptions:
    """
    Options for a single run.

    Fields left as ``None`` fall back to the engine settings.

    Attributes:
        concurrency: Maximum number of nodes in flight at once
        ctx: Execution context forwarded verbatim to every tool call
            (minimally carries a ``tab_id``)
        on_node_start: Called with the node when it is dispatched
        on_node_finish: Called with the node and its ExecutionResult
        signal: Cancellation token exposing ``is_set()`` (e.g. asyncio.Event)
        default_tool_timeout_ms: Timeout for tool nodes without their own
        fail_fast: Stop dispatching new nodes after the first failure
    """
    concurrency: Optional[int] = None
    ctx: Any = None
    on_node_start: Optional[NodeCallback] = None
    on_node_finish: Optional[NodeCallback] = None
    signal: Any = None
    default_tool_timeout_ms: Optional[float] = None
    fail_fast: Optional[bool] = None

    def resolve(self, settings: EngineSettings) -> "RunOptions":
        """Return a copy with every default filled in from ``settings``."""
        concurrency = self.concurrency if self.concurrency else settings.concurrency
        timeout = (
            self.default_tool_timeout_ms
            if self.default_tool_timeout_ms is not None
            else settings.default_tool_timeout_ms
        )
        return RunOptions(
            concurrency=max(1, int(concurrency)),
            ctx=self.ctx if self.ctx is not None else {"tab_id": None},
            on_node_start=self.on_node_start,
            on_node_finish=self.on_node_finish,
            signal=self.signal,
            default_tool_timeout_ms=max(0.0, float(timeout or 0)),
            fail_fast=settings.fail_fast if self.fail_fast is None else bool(self.fail_fast),
        )


def setup_logging(
    level: Union[int, str, None] = None,
    settings: Optional[EngineSettings] = None,
) -> None:
    """
    Attach a console handler to the engine loggers.

    Loggers that already have handlers keep them; only the level changes.

    Args:
        level: Logging level (defaults to ``settings.log_level``)
        settings: Engine settings (EngineSettings() when omitted)
    """
    if level is None:
        level = (settings or EngineSettings()).log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    for name in _LOGGER_NAMES:
        engine_logger = logging.getLogger(name)
        engine_logger.setLevel(level)
        if not engine_logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('[%(name)s] %(message)s'))
            engine_logger.addHandler(handler)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}: {raw!r}, using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")
