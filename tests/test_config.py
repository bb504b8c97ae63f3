"""Tests for configuration loading."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from agent.config import AgentConfig, ExecutorConfig, Settings, load_settings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("TASKLOOP_"):
            monkeypatch.delenv(key)


class TestDefaults:
    def test_component_defaults(self):
        assert ExecutorConfig().max_retries == 3
        assert ExecutorConfig().retry_delay == 1.0
        assert AgentConfig().max_iterations == 10
        assert AgentConfig().max_corrections == 3

    def test_settings_defaults(self):
        settings = load_settings()
        assert settings.log_level == "INFO"
        assert settings.llm.model == "gpt-4o"
        assert settings.memory.persist_path == ".taskloop"

    def test_validation(self):
        with pytest.raises(ValidationError):
            ExecutorConfig(max_retries=0)
        with pytest.raises(ValidationError):
            AgentConfig(max_iterations=0)


class TestEnvironment:
    def test_nested_env_overrides(self, monkeypatch):
        monkeypatch.setenv("TASKLOOP_AGENT__MAX_ITERATIONS", "5")
        monkeypatch.setenv("TASKLOOP_LLM__BASE_URL", "http://localhost:1234/v1")
        monkeypatch.setenv("TASKLOOP_LOG_LEVEL", "debug")

        settings = Settings()

        assert settings.agent.max_iterations == 5
        assert settings.llm.base_url == "http://localhost:1234/v1"
        assert settings.log_level == "DEBUG"

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("TASKLOOP_EXECUTOR__RETRY_DELAY=0.25\n", encoding="utf-8")
        assert Settings().executor.retry_delay == 0.25

    def test_invalid_log_level(self, monkeypatch):
        monkeypatch.setenv("TASKLOOP_LOG_LEVEL", "chatty")
        with pytest.raises(ValidationError):
            Settings()

    def test_explicit_overrides_win(self, monkeypatch):
        monkeypatch.setenv("TASKLOOP_LOG_LEVEL", "ERROR")
        assert load_settings(log_level="WARNING").log_level == "WARNING"
