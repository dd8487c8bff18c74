"""
Linear plan compiler.
Turns an ordered list of free-text sub-tasks into a strictly linear chain
of tool nodes. Used as the fallback graph shape when the planning layer
hands over a flat plan instead of an explicit DAG.
"""

import logging
import re
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .builder import create_graph
from .config import EngineSettings
from .dag import TaskGraph, ToolNode

logger = logging.getLogger(__name__)


NAVIGATE_TOOL = "navigateToUrl"
READ_TOOL = "readPageContent"
EXTRACT_TOOL = "extractStructuredContent"
ANALYZE_TOOL = "analyzeUrls"

DEFAULT_MAX_CHARS = 15000

_URL_PATTERN = re.compile(r"https?://[^\s\"'()<>]+", re.IGNORECASE)
_ANALYZE_KEYWORDS = ("analyze", "analysis", "links")


class SubTaskIntent(str, Enum):
    """What a sub-task is asking for, as far as the heuristics can tell."""
    VISIT_URL = "visit_url"  # navigate -> read -> extract
    ANALYZE = "analyze"  # read -> analyze links
    READ = "read"  # read -> extract (default)


def extract_first_url(text: str) -> Optional[str]:
    """Return the first http(s) URL embedded in ``text``."""
    match = _URL_PATTERN.search(text or "")
    return match.group(0) if match else None


class LinearPlanner:
    """
    Heuristic sub-task to node compiler.

    Every generated node depends on the node generated just before it, so
    the result never branches.

    Example:
        planner = LinearPlanner(max_chars=8000)
        nodes = planner.plan(["open https://example.com and read the price"])
        # s1_nav -> s1_read -> s1_extract
    """

    def __init__(self, max_chars: int = DEFAULT_MAX_CHARS):
        """
        Args:
            max_chars: Character bound passed to every read-page-content node
        """
        self.max_chars = int(max_chars or DEFAULT_MAX_CHARS)

    @classmethod
    def from_settings(cls, settings: Optional[EngineSettings] = None) -> "LinearPlanner":
        """Planner bounded by ``settings.planner_max_chars``."""
        return cls(max_chars=(settings or EngineSettings()).planner_max_chars)

    def classify(self, text: str) -> Tuple[SubTaskIntent, Optional[str]]:
        """
        Classify a sub-task.

        Returns:
            Tuple of the intent and the embedded URL (if any)
        """
        url = extract_first_url(text)
        if url:
            return SubTaskIntent.VISIT_URL, url

        lower = text.lower()
        if any(keyword in lower for keyword in _ANALYZE_KEYWORDS):
            return SubTaskIntent.ANALYZE, None

        return SubTaskIntent.READ, None

    def plan(self, sub_tasks: Any) -> List[ToolNode]:
        """
        Compile sub-tasks into a linear chain of tool nodes.

        Args:
            sub_tasks: Ordered sub-task descriptions. ``None`` yields an
                empty plan and a bare string counts as one sub-task.

        Returns:
            List of nodes, each depending on its predecessor
        """
        nodes: List[ToolNode] = []

        for index, raw in enumerate(_as_task_list(sub_tasks), 1):
            text = str(raw if raw is not None else "").strip()
            intent, url = self.classify(text)

            for suffix, tool_id, tool_input in self._steps_for(intent, url):
                depends_on = (nodes[-1].id,) if nodes else ()
                nodes.append(ToolNode(
                    id=f"s{index}_{suffix}",
                    tool_id=tool_id,
                    input=tool_input,
                    depends_on=depends_on,
                ))

            logger.debug(f"Sub-task {index} classified as {intent.value}: {text[:80]}")

        logger.info(f"Planned {len(nodes)} node(s) from sub-tasks")
        return nodes

    def _steps_for(
        self,
        intent: SubTaskIntent,
        url: Optional[str],
    ) -> List[Tuple[str, str, Dict[str, Any]]]:
        read_step = ("read", READ_TOOL, {"maxChars": self.max_chars})

        if intent == SubTaskIntent.VISIT_URL:
            return [
                ("nav", NAVIGATE_TOOL, {"url": url}),
                read_step,
                ("extract", EXTRACT_TOOL, {}),
            ]
        if intent == SubTaskIntent.ANALYZE:
            return [read_step, ("analyze", ANALYZE_TOOL, {})]
        return [read_step, ("extract", EXTRACT_TOOL, {})]


def plan_linear_from_sub_tasks(
    sub_tasks: Any,
    max_chars: Optional[int] = None,
    settings: Optional[EngineSettings] = None,
) -> List[ToolNode]:
    """
    Compile sub-tasks into a linear list of tool nodes.

    An explicit ``max_chars`` wins over ``settings.planner_max_chars``.
    """
    if max_chars:
        planner = LinearPlanner(max_chars=max_chars)
    else:
        planner = LinearPlanner.from_settings(settings)
    return planner.plan(sub_tasks)


def create_linear_graph_from_sub_tasks(
    sub_tasks: Any,
    meta: Optional[Mapping[str, Any]] = None,
    max_chars: Optional[int] = None,
    settings: Optional[EngineSettings] = None,
) -> TaskGraph:
    """Compile sub-tasks and build the resulting graph in one step."""
    nodes = plan_linear_from_sub_tasks(sub_tasks, max_chars=max_chars, settings=settings)
    return create_graph(nodes, meta or {})


def _as_task_list(sub_tasks: Any) -> Iterable[Any]:
    if sub_tasks is None:
        return []
    if isinstance(sub_tasks, str):
        return [sub_tasks]
    if isinstance(sub_tasks, (list, tuple)):
        return sub_tasks
    return []
