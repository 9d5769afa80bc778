"""Tests for app/config.py -- settings and model resolution."""

import pytest
from pydantic import ValidationError

from app.config import Settings, resolve_model, resolve_provider, settings


def test_defaults():
    fresh = Settings(_env_file=None)
    assert fresh.DEFAULT_FRAMEWORK == "paper"
    assert fresh.LLM_MAX_ATTEMPTS == 3
    assert fresh.FILE_ERROR_DECISION_TIMEOUT_SECONDS == 300.0
    assert fresh.MAX_EVENT_SUBSCRIBERS == 50


def test_env_override(monkeypatch):
    monkeypatch.setenv("AGENTIC_MAX_STEPS", "7")
    monkeypatch.setenv("LLM_RETRY_DELAYS", "[1, 4]")
    fresh = Settings(_env_file=None)
    assert fresh.AGENTIC_MAX_STEPS == 7
    assert fresh.LLM_RETRY_DELAYS == [1.0, 4.0]


def test_empty_retry_delays_normalized(monkeypatch):
    monkeypatch.setenv("LLM_RETRY_DELAYS", "[]")
    assert Settings(_env_file=None).LLM_RETRY_DELAYS == [1.0]


def test_bounds_are_validated(monkeypatch):
    monkeypatch.setenv("LLM_MAX_ATTEMPTS", "0")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_resolve_model_order(monkeypatch):
    assert resolve_model("gpt-4o") == "gpt-4o"
    assert resolve_model(None) == settings.DEFAULT_MODEL
    monkeypatch.setattr("app.config.settings.FORCE_MODEL", "claude-sonnet-4-5")
    assert resolve_model("gpt-4o") == "claude-sonnet-4-5"


@pytest.mark.parametrize("model,provider", [
    ("claude-haiku-4-5", "anthropic"),
    ("gemini-2.0-flash", "google"),
    ("models/gemini-pro", "google"),
    ("gpt-4o", "openai"),
    ("llama-3-70b", "openai"),
])
def test_resolve_provider_from_model(model, provider):
    assert resolve_provider(model) == provider


def test_resolve_provider_pinned(monkeypatch):
    monkeypatch.setattr("app.config.settings.LLM_PROVIDER", "Google")
    assert resolve_provider("claude-haiku-4-5") == "google"
