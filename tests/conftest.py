"""Shared test fixtures.

Provides:
- ``set_test_config`` -- autouse fixture that patches common settings
- ``USER_ID`` / ``SESSION_ID`` / ``BUILD_ID`` -- reusable IDs
- ``auth_header`` -- helper to generate JWT auth headers
- ``fresh_registry`` -- an empty RunnerRegistry per test
"""

from uuid import UUID

import pytest

from app.api.rate_limit import build_limiter
from app.auth import create_token
from app.services.build.registry import RunnerRegistry


def pytest_configure(config):
    """Register custom markers.

    Tests that need a real PostgreSQL should be decorated with
    ``@pytest.mark.integration`` and skipped with ``-m 'not integration'``.
    """
    config.addinivalue_line(
        "markers",
        "integration: tests requiring external services (database, LLM backends)",
    )


# ---------------------------------------------------------------------------
# Canonical test identifiers
# ---------------------------------------------------------------------------

USER_ID = "22222222-2222-2222-2222-222222222222"
OTHER_USER_ID = "99999999-9999-9999-9999-999999999999"
SESSION_ID = UUID("33333333-3333-3333-3333-333333333333")
BUILD_ID = UUID("55555555-5555-5555-5555-555555555555")

# ---------------------------------------------------------------------------
# Environment patching
# ---------------------------------------------------------------------------

_SETTINGS_PATCHES: dict[str, object] = {
    "app.config.settings.JWT_SECRET": "test-secret-key-for-unit-tests",
    "app.config.settings.FRONTEND_URL": "http://localhost:5173",
    "app.config.settings.ANTHROPIC_API_KEY": "test-key",
    "app.config.settings.OPENAI_API_KEY": "test-key",
    "app.config.settings.GOOGLE_API_KEY": "test-key",
    "app.config.settings.LLM_PROVIDER": "",
    "app.config.settings.FORCE_MODEL": "",
    "app.config.settings.DEFAULT_MODEL": "claude-haiku-4-5",
    "app.config.settings.LLM_MAX_ATTEMPTS": 3,
    "app.config.settings.LLM_RETRY_DELAYS": [0.0],
    "app.config.settings.LLM_RETRY_ALL_ERRORS": False,
    "app.config.settings.LLM_MAX_CONTINUATIONS": 3,
    "app.config.settings.FILE_ERROR_DECISION_TIMEOUT_SECONDS": 5.0,
    "app.config.settings.AGENTIC_MAX_STEPS": 20,
    "app.config.settings.CHECKPOINT_MAX_ATTEMPTS": 3,
    "app.config.settings.CHECKPOINT_RETRY_DELAY": 0.0,
}


@pytest.fixture(autouse=True)
def set_test_config(monkeypatch):
    """Deterministic, fast, non-production configuration for every test."""
    for target, value in _SETTINGS_PATCHES.items():
        monkeypatch.setattr(target, value)
    monkeypatch.setenv("TESTING", "1")
    build_limiter.reset()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def auth_header(user_id: str = USER_ID) -> dict:
    """Return an ``Authorization`` header dict with a valid JWT."""
    return {"Authorization": f"Bearer {create_token(user_id)}"}


@pytest.fixture
def fresh_registry() -> RunnerRegistry:
    return RunnerRegistry()
