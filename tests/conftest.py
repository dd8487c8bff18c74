"""
Pytest Configuration and Fixtures

테스트 전역 설정 및 공유 fixtures입니다.
"""

import pytest
import asyncio
from typing import Any, Callable, Dict, List, Optional

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from task_graph import EngineSettings, GraphScheduler, InMemoryObserver


class ScriptedToolRegistry:
    """
    스크립트 기반 ToolRegistry 대역

    tool_id별로 순서대로 반환할 결과(dict, 예외, 또는 callable)를 지정합니다.
    마지막 항목은 소진 후에도 계속 반환됩니다.
    """

    def __init__(self, scripts: Optional[Dict[str, List[Any]]] = None, delay: float = 0.0):
        self.scripts: Dict[str, List[Any]] = {k: list(v) for k, v in (scripts or {}).items()}
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.active = 0
        self.max_active = 0

    async def run_tool(self, tool_id: str, ctx: Any, tool_input: Dict[str, Any]) -> Any:
        self.calls.append({"tool_id": tool_id, "ctx": ctx, "input": tool_input})
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            script = self.scripts.get(tool_id)
            if not script:
                return {"ok": True, "observation": f"{tool_id} done"}
            step = script.pop(0) if len(script) > 1 else script[0]
            if isinstance(step, BaseException):
                raise step
            if callable(step):
                step = step(ctx, tool_input)
                if asyncio.iscoroutine(step):
                    step = await step
            return step
        finally:
            self.active -= 1

    def calls_for(self, tool_id: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["tool_id"] == tool_id]

    def call_order(self) -> List[str]:
        return [c["tool_id"] for c in self.calls]


@pytest.fixture
def fixed_rng() -> Callable[[], float]:
    """지터 없는 난수 소스 (0.5 → 배율 1.0)"""
    return lambda: 0.5


@pytest.fixture
def make_registry() -> Callable[..., ScriptedToolRegistry]:
    """스크립트 레지스트리 팩토리"""
    return ScriptedToolRegistry


@pytest.fixture
def tool_registry() -> ScriptedToolRegistry:
    """기본 성공 응답의 스크립트 레지스트리"""
    return ScriptedToolRegistry()


@pytest.fixture
def observer() -> InMemoryObserver:
    """메모리 Observer"""
    return InMemoryObserver()


@pytest.fixture
def settings() -> EngineSettings:
    """기본 엔진 설정"""
    return EngineSettings()


@pytest.fixture
def scheduler(tool_registry, observer, settings, fixed_rng) -> GraphScheduler:
    """기본 설정의 GraphScheduler"""
    return GraphScheduler(tool_registry, observer=observer, settings=settings, rng=fixed_rng)


@pytest.fixture
def sample_nodes() -> List[Dict[str, Any]]:
    """샘플 다이아몬드 그래프 노드"""
    return [
        {"id": "open", "kind": "tool", "toolId": "navigateToUrl", "input": {"url": "https://example.com"}},
        {"id": "read", "kind": "tool", "toolId": "readPageContent", "dependsOn": ["open"]},
        {"id": "links", "kind": "tool", "toolId": "analyzeUrls", "dependsOn": ["open"]},
        {"id": "join", "kind": "noop", "dependsOn": ["read", "links"]},
    ]
