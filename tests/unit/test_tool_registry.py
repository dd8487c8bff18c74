"""
Tool Registry Unit Tests

브라우저 도구 레지스트리 단위 테스트입니다.
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from tools import (
    ParameterType,
    ToolCategory,
    ToolDefinition,
    ToolParameter,
    ToolRegistry,
    ToolResult,
)
from task_graph import GraphScheduler, create_graph
from errors import UnknownToolError


@pytest.fixture
def registry():
    """빈 ToolRegistry"""
    return ToolRegistry()


class TestRegistration:
    """도구 등록 테스트"""

    def test_register_and_lookup(self, registry):
        """등록 및 조회"""
        definition = ToolDefinition("navigateToUrl", run=lambda ctx, inp: None, category=ToolCategory.NAVIGATION)

        assert registry.register_tool(definition) is True
        assert registry.get_tool("navigateToUrl") is definition
        assert registry.get_names() == ["navigateToUrl"]
        assert registry.list_tools() == [definition]

    def test_decorator(self, registry):
        """데코레이터 등록"""
        @registry.tool("readPageContent", category=ToolCategory.EXTRACTION)
        async def read_page(ctx, tool_input):
            """Read the visible text of the page"""
            return {"ok": True}

        definition = registry.get_tool("readPageContent")
        assert definition.run is read_page
        assert definition.description == "Read the visible text of the page"

    def test_overwrite(self, registry):
        """같은 ID 재등록 시 덮어쓰기"""
        registry.register_tool(ToolDefinition("x", run=lambda ctx, inp: "first"))
        second = ToolDefinition("x", run=lambda ctx, inp: "second")
        registry.register_tool(second)

        assert registry.get_tool("x") is second
        assert len(registry.list_tools()) == 1

    def test_unregister_and_clear(self, registry):
        """등록 해제 및 초기화"""
        registry.register_tool(ToolDefinition("a", run=lambda ctx, inp: None))
        registry.register_tool(ToolDefinition("b", run=lambda ctx, inp: None))

        assert registry.unregister("a") is True
        assert registry.unregister("a") is False
        registry.clear()
        assert registry.list_tools() == []

    @pytest.mark.parametrize("kwargs", [
        {"tool_id": "", "run": lambda ctx, inp: None},
        {"tool_id": "x", "run": "not callable"},
    ])
    def test_invalid_definition(self, kwargs):
        """잘못된 정의 거부"""
        with pytest.raises(ValueError):
            ToolDefinition(**kwargs)

    def test_register_requires_definition(self, registry):
        """정의 객체 필수"""
        with pytest.raises(ValueError):
            registry.register_tool({"tool_id": "x"})

    def test_capabilities(self, registry):
        """capabilities 조회"""
        registry.register_tool(ToolDefinition(
            "captureScreenshot",
            run=lambda ctx, inp: None,
            description="Capture the visible tab",
            category=ToolCategory.TABS,
            max_attempts=2,
            capabilities={"produces": "image"},
        ))

        caps = registry.get_capabilities("captureScreenshot")

        assert caps == {
            "tool_id": "captureScreenshot",
            "category": "tabs",
            "description": "Capture the visible tab",
            "max_attempts": 2,
            "produces": "image",
        }
        assert registry.get_capabilities("missing") is None


class TestValidation:
    """입력 검증 테스트"""

    @pytest.fixture
    def definition(self):
        return ToolDefinition(
            "navigateToUrl",
            run=lambda ctx, inp: None,
            parameters=[
                ToolParameter("url", ParameterType.STRING, required=True, max_length=20),
                ToolParameter("wait", ParameterType.NUMBER),
                ToolParameter("mode", ParameterType.STRING, enum=["tab", "window"]),
            ],
        )

    def test_valid(self, registry, definition):
        """정상 입력"""
        assert registry.validate_input(definition, {"url": "https://a.io", "wait": 3, "extra": True}) == []

    def test_missing_required(self, registry, definition):
        """필수 값 누락"""
        assert registry.validate_input(definition, {}) == ["Missing required property 'url'"]

    def test_wrong_type(self, registry, definition):
        """타입 불일치"""
        errors = registry.validate_input(definition, {"url": 5, "wait": "soon"})
        assert errors == [
            "Invalid type for 'url': expected string got integer",
            "Invalid type for 'wait': expected number got string",
        ]

    def test_max_length_and_enum(self, registry, definition):
        """길이 및 enum 제한"""
        errors = registry.validate_input(definition, {"url": "https://" + "a" * 30, "mode": "popup"})
        assert errors[0] == "'url' exceeds maxLength=20"
        assert errors[1].startswith("'mode' must be one of")

    def test_bool_is_not_integer(self):
        """bool은 정수로 보지 않음"""
        param = ToolParameter("n", ParameterType.INTEGER)
        assert param.validate(True) == ["Invalid type for 'n': expected integer got boolean"]

    def test_json_schema(self):
        """JSON Schema 변환"""
        param = ToolParameter("url", ParameterType.STRING, "Target", max_length=10)
        assert param.to_json_schema() == {"type": "string", "description": "Target", "maxLength": 10}


class TestRunTool:
    """도구 실행 테스트"""

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        """미등록 도구"""
        with pytest.raises(UnknownToolError) as exc_info:
            await registry.run_tool("ghost", {}, {})
        assert exc_info.value.message == "Unknown tool 'ghost'"

    @pytest.mark.asyncio
    async def test_success_normalized(self, registry):
        """성공 결과 정규화"""
        @registry.tool("readPageContent")
        async def read_page(ctx, tool_input):
            return {"ok": True, "observation": f"read tab {ctx['tab_id']}", "content": "hello", "dataUrl": "x"}

        result = await registry.run_tool("readPageContent", {"tab_id": 2}, {})

        assert result["ok"] is True
        assert result["status"] == "success"
        assert result["observation"] == "read tab 2"
        assert result["artifacts"] == {"content": "hello", "screenshot": True}
        assert result["durationMs"] >= 0

    @pytest.mark.asyncio
    async def test_sync_tool(self, registry):
        """동기 도구"""
        registry.register_tool(ToolDefinition("echo", run=lambda ctx, inp: inp["text"]))

        result = await registry.run_tool("echo", None, {"text": "hi"})

        assert result["observation"] == "hi"

    @pytest.mark.asyncio
    async def test_validation_failure(self, registry):
        """검증 실패는 실행하지 않음"""
        calls = []
        registry.register_tool(ToolDefinition(
            "navigateToUrl",
            run=lambda ctx, inp: calls.append(inp),
            parameters=[ToolParameter("url", ParameterType.STRING, required=True)],
        ))

        result = await registry.run_tool("navigateToUrl", {}, {})

        assert result["ok"] is False
        assert result["status"] == "error"
        assert result["observation"] == "Invalid input for 'navigateToUrl': Missing required property 'url'"
        assert result["errors"] == ["Missing required property 'url'"]
        assert calls == []

    @pytest.mark.asyncio
    async def test_preconditions_block(self, registry):
        """사전 조건 실패"""
        calls = []

        async def needs_tab(ctx, tool_input):
            return {"ok": False, "observation": "No active tab"}

        registry.register_tool(ToolDefinition(
            "clickElement",
            run=lambda ctx, inp: calls.append(inp),
            preconditions=needs_tab,
        ))

        result = await registry.run_tool("clickElement", {}, {})

        assert result["ok"] is False
        assert result["observation"] == "No active tab"
        assert calls == []

    @pytest.mark.asyncio
    async def test_internal_retry(self, registry):
        """도구 내부 재시도"""
        outcomes = [RuntimeError("flaky"), {"ok": False, "observation": "still bad"}, {"ok": True}]

        def flaky(ctx, tool_input):
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        registry.register_tool(ToolDefinition("flaky", run=flaky, max_attempts=3, backoff_ms=1))

        result = await registry.run_tool("flaky", {}, {})

        assert result["ok"] is True
        assert outcomes == []

    @pytest.mark.asyncio
    async def test_exception_normalized(self, registry):
        """예외는 실패 결과로"""
        def broken(ctx, tool_input):
            raise RuntimeError("tab crashed")

        registry.register_tool(ToolDefinition("broken", run=broken))

        result = await registry.run_tool("broken", {}, {})

        assert result["ok"] is False
        assert result["observation"] == "tab crashed"
        assert result["errors"] == ["tab crashed"]

    @pytest.mark.asyncio
    async def test_drives_scheduler(self, registry):
        """스케줄러와 연동"""
        @registry.tool("navigateToUrl", parameters=[ToolParameter("url", ParameterType.STRING, required=True)])
        def navigate(ctx, tool_input):
            return {"ok": True, "observation": f"Navigated to {tool_input['url']}"}

        graph = create_graph([
            {"id": "nav", "kind": "tool", "toolId": "navigateToUrl", "input": {"url": "https://example.com"}},
            {"id": "bad", "kind": "tool", "toolId": "navigateToUrl", "input": {}},
            {"id": "ghost", "kind": "tool", "toolId": "missingTool"},
        ])

        result = await GraphScheduler(registry, rng=lambda: 0.5).run(graph, ctx={"tab_id": 1})

        assert result.results["nav"].ok is True
        assert result.results["nav"].observation == "Navigated to https://example.com"
        assert result.results["bad"].ok is False
        assert result.results["ghost"].observation == "Unknown tool 'missingTool'"
        assert result.failed() == ["bad", "ghost"]


class TestToolResult:
    """ToolResult 테스트"""

    def test_non_mapping(self):
        """dict가 아닌 반환값"""
        assert ToolResult.normalize(None).observation == "OK"
        assert ToolResult.normalize(["a"]).ok is True

    def test_warnings_normalized(self):
        """경고 정규화"""
        assert ToolResult.normalize({"warnings": "slow"}).warnings == ["slow"]
        result = ToolResult.normalize({"ok": True, "warnings": ["a", 1]})
        assert result.to_dict()["warnings"] == ["a", "1"]

    def test_error_result(self):
        """실패 결과 생성"""
        result = ToolResult.error_result("nope", ["E1"])
        assert result.to_dict() == {
            "ok": False,
            "status": "error",
            "durationMs": 0,
            "observation": "nope",
            "errors": ["E1"],
        }
