"""
Config Unit Tests

환경 변수 기반 엔진 설정 및 실행 옵션 단위 테스트입니다.
"""

import pytest
import logging

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from task_graph import EngineSettings, RunOptions, plan_linear_from_sub_tasks, setup_logging


ENV_KEYS = [
    "TASK_GRAPH_CONCURRENCY",
    "TASK_GRAPH_DEFAULT_TOOL_TIMEOUT_MS",
    "TASK_GRAPH_FAIL_FAST",
    "TASK_GRAPH_PLANNER_MAX_CHARS",
    "TASK_GRAPH_OBSERVATION_PREVIEW_CHARS",
    "TASK_GRAPH_LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """엔진 환경 변수 초기화 후 빈 .env 경로 반환"""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("")
    return env_file


class TestEngineSettings:
    """EngineSettings 테스트"""

    def test_defaults(self, clean_env):
        """기본값"""
        settings = EngineSettings.from_env(str(clean_env))

        assert settings == EngineSettings()
        assert settings.concurrency == 2
        assert settings.default_tool_timeout_ms == 0
        assert settings.fail_fast is False
        assert settings.planner_max_chars == 15000
        assert settings.observation_preview_chars == 200

    def test_from_environment(self, clean_env, monkeypatch):
        """환경 변수에서 로드"""
        monkeypatch.setenv("TASK_GRAPH_CONCURRENCY", "4")
        monkeypatch.setenv("TASK_GRAPH_DEFAULT_TOOL_TIMEOUT_MS", "1500")
        monkeypatch.setenv("TASK_GRAPH_FAIL_FAST", "true")
        monkeypatch.setenv("TASK_GRAPH_LOG_LEVEL", "debug")

        settings = EngineSettings.from_env(str(clean_env))

        assert settings.concurrency == 4
        assert settings.default_tool_timeout_ms == 1500
        assert settings.fail_fast is True
        assert settings.log_level == "DEBUG"

    def test_from_env_file(self, clean_env, monkeypatch):
        """.env 파일에서 로드"""
        monkeypatch.setenv("TASK_GRAPH_PLANNER_MAX_CHARS", "1")
        monkeypatch.setenv("TASK_GRAPH_OBSERVATION_PREVIEW_CHARS", "1")
        clean_env.write_text("TASK_GRAPH_PLANNER_MAX_CHARS=8000\nTASK_GRAPH_OBSERVATION_PREVIEW_CHARS=50\n")

        settings = EngineSettings.from_env(str(clean_env), override=True)

        assert settings.planner_max_chars == 8000
        assert settings.observation_preview_chars == 50

    def test_invalid_values_fall_back(self, clean_env, monkeypatch):
        """잘못된 값은 기본값 사용"""
        monkeypatch.setenv("TASK_GRAPH_CONCURRENCY", "many")
        monkeypatch.setenv("TASK_GRAPH_DEFAULT_TOOL_TIMEOUT_MS", "soon")

        settings = EngineSettings.from_env(str(clean_env))

        assert settings.concurrency == 2
        assert settings.default_tool_timeout_ms == 0

    def test_values_clamped(self, clean_env, monkeypatch):
        """하한 보정"""
        monkeypatch.setenv("TASK_GRAPH_CONCURRENCY", "0")
        monkeypatch.setenv("TASK_GRAPH_DEFAULT_TOOL_TIMEOUT_MS", "-10")

        settings = EngineSettings.from_env(str(clean_env))

        assert settings.concurrency == 1
        assert settings.default_tool_timeout_ms == 0

    def test_planner_uses_env_max_chars(self, clean_env, monkeypatch):
        """환경 변수의 글자 수 제한이 계획에 반영"""
        monkeypatch.setenv("TASK_GRAPH_PLANNER_MAX_CHARS", "500")

        settings = EngineSettings.from_env(str(clean_env))
        nodes = plan_linear_from_sub_tasks(["read the page"], settings=settings)

        assert nodes[0].input == {"maxChars": 500}


class TestRunOptions:
    """RunOptions 테스트"""

    def test_resolve_defaults(self):
        """설정값으로 기본값 채움"""
        options = RunOptions().resolve(EngineSettings(concurrency=3, default_tool_timeout_ms=500, fail_fast=True))

        assert options.concurrency == 3
        assert options.default_tool_timeout_ms == 500
        assert options.fail_fast is True
        assert options.ctx == {"tab_id": None}

    def test_explicit_values_win(self):
        """명시값 우선"""
        options = RunOptions(concurrency=5, fail_fast=False, default_tool_timeout_ms=0, ctx={"tab_id": 9})
        resolved = options.resolve(EngineSettings(fail_fast=True, default_tool_timeout_ms=100))

        assert resolved.concurrency == 5
        assert resolved.fail_fast is False
        assert resolved.default_tool_timeout_ms == 0
        assert resolved.ctx == {"tab_id": 9}

    def test_resolve_does_not_mutate(self):
        """원본 옵션 유지"""
        options = RunOptions()
        options.resolve(EngineSettings())
        assert options.concurrency is None
        assert options.ctx is None


class TestSetupLogging:
    """setup_logging 테스트"""

    def test_configures_engine_loggers(self):
        """엔진 로거 설정"""
        setup_logging("debug")

        for name in ("task_graph", "tools", "errors"):
            engine_logger = logging.getLogger(name)
            assert engine_logger.level == logging.DEBUG
            assert engine_logger.handlers

        setup_logging()
        assert logging.getLogger("task_graph").level == logging.INFO

    def test_handlers_not_duplicated(self):
        """핸들러 중복 추가 없음"""
        setup_logging()
        count = len(logging.getLogger("task_graph").handlers)
        setup_logging()
        assert len(logging.getLogger("task_graph").handlers) == count

    def test_level_from_settings(self, clean_env, monkeypatch):
        """환경 변수의 로그 레벨 적용"""
        monkeypatch.setenv("TASK_GRAPH_LOG_LEVEL", "debug")
        settings = EngineSettings.from_env(str(clean_env))

        try:
            setup_logging(settings=settings)
            for name in ("task_graph", "tools", "errors"):
                assert logging.getLogger(name).level == logging.DEBUG
        finally:
            setup_logging("INFO")

    def test_unknown_level_falls_back_to_info(self):
        """알 수 없는 레벨은 INFO"""
        setup_logging(settings=EngineSettings(log_level="LOUD"))
        assert logging.getLogger("task_graph").level == logging.INFO
