"""Application configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  Validates required settings on import and fails
fast if critical vars are missing outside of tests.
"""

VERSION = "0.1.0"

import sys

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Required var names, checked after instantiation (not during), so tests
# that leave them blank still work.
# ---------------------------------------------------------------------------
_REQUIRED_VARS: list[str] = [
    "DATABASE_URL",
    "JWT_SECRET",
]


class Settings(BaseSettings):
    """Application settings, sourced from environment / ``.env`` file.

    Required vars (must be set in production, may be blank in test):
      DATABASE_URL, JWT_SECRET
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- required in production (default empty so tests don't fail) --
    DATABASE_URL: str = ""
    JWT_SECRET: str = ""

    # -- optional with sensible defaults --
    FRONTEND_URL: str = "http://localhost:5173"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10

    # -------------------------------------------------------------------------
    # Generation backends.  LLM_PROVIDER pins every call to one backend;
    # leave blank to pick the backend from the model id ("claude-*" →
    # anthropic, "gemini-*" → google, anything else → openai-compatible).
    # -------------------------------------------------------------------------
    LLM_PROVIDER: str = ""  # "anthropic" | "openai" | "google" | auto
    ANTHROPIC_API_KEY: str = ""
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    GOOGLE_API_KEY: str = ""
    GOOGLE_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/"
    LLM_REQUEST_TIMEOUT: float = 300.0
    DEFAULT_MODEL: str = "claude-haiku-4-5"

    # FORCE_MODEL: hard override for ALL model calls regardless of the
    # model id stored on the build.  Leave blank to disable.
    FORCE_MODEL: str = ""

    # -------------------------------------------------------------------------
    # Build pipeline tunables
    # -------------------------------------------------------------------------
    BUILD_MAX_TOKENS: int = Field(default=4096, ge=256)
    LLM_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    # Backoff between attempts (seconds); the last value repeats.
    LLM_RETRY_DELAYS: list[float] = [0.5, 2.0]
    # Retry auth / not-found / bad-request failures too (uniform retry).
    LLM_RETRY_ALL_ERRORS: bool = False
    LLM_MAX_CONTINUATIONS: int = Field(default=3, ge=0)
    CONTINUATION_TAIL_CHARS: int = 2000

    # How long a failed file waits for a retry/cancel decision before the
    # pipeline skips it and moves on.
    FILE_ERROR_DECISION_TIMEOUT_SECONDS: float = 300.0
    AGENTIC_MAX_STEPS: int = Field(default=20, ge=1)
    # Attempts to save a checkpoint before the run is failed.
    CHECKPOINT_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    CHECKPOINT_RETRY_DELAY: float = 0.5
    # Character budget for "files so far" context in generation prompts.
    CONTEXT_CHAR_BUDGET: int = 120_000
    ERROR_MESSAGE_MAX_CHARS: int = 300
    DEFAULT_FRAMEWORK: str = "paper"

    # Event stream
    MAX_EVENT_SUBSCRIBERS: int = 50
    EVENT_QUEUE_SIZE: int = 1000
    WS_HEARTBEAT_INTERVAL: float = 30.0

    # Build starts per user per hour
    BUILD_RATE_LIMIT_PER_HOUR: int = 10

    @model_validator(mode="after")
    def _normalize_retry_delays(self) -> "Settings":
        """Guarantee at least one backoff delay so the retry loop can index it."""
        if not self.LLM_RETRY_DELAYS:
            self.LLM_RETRY_DELAYS = [1.0]
        return self


settings = Settings()


def resolve_model(model_id: str | None) -> str:
    """Return the model id a build should call.

    Resolution order:
      1. FORCE_MODEL (absolute override)
      2. The model id stored on the build
      3. DEFAULT_MODEL
    """
    if settings.FORCE_MODEL:
        return settings.FORCE_MODEL
    return model_id or settings.DEFAULT_MODEL


def resolve_provider(model: str) -> str:
    """Return the backend name for *model*, honouring LLM_PROVIDER."""
    if settings.LLM_PROVIDER:
        return settings.LLM_PROVIDER.lower()
    lowered = model.lower()
    if lowered.startswith("claude"):
        return "anthropic"
    if lowered.startswith("gemini") or lowered.startswith("models/gemini"):
        return "google"
    return "openai"


# Validate at import time, but only when NOT running under pytest.
if "pytest" not in sys.modules:
    _missing = [v for v in _REQUIRED_VARS if not getattr(settings, v)]
    if _missing:
        print(
            f"[config] FATAL: missing required environment variables: "
            f"{', '.join(_missing)}",
            file=sys.stderr,
        )
        sys.exit(1)
