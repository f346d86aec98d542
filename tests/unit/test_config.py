"""Unit tests for environment-driven configuration."""

from __future__ import annotations

import pytest

from polyexec.config import PolyExecConfig, load_config


def test_defaults() -> None:
    config = PolyExecConfig(_env_file=None)
    assert config.port == 3001
    assert config.network_mode == "none"
    assert config.terminate_grace_seconds == 3.0
    assert config.allowed_languages == []
    assert not config.screen_dangerous_patterns
    assert config.rate_limit_enabled
    assert config.execute_rate_limit == "20/5 minutes"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("POLYEXEC_MAX_CONCURRENT_SESSIONS", "7")
    monkeypatch.setenv("POLYEXEC_ALLOWED_LANGUAGES", '["python", "go"]')
    monkeypatch.setenv("POLYEXEC_API_KEY", "k")
    config = load_config()
    assert config.max_concurrent_sessions == 7
    assert config.allowed_languages == ["python", "go"]
    assert config.api_key == "k"
