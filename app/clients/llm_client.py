"""LLM client -- one-shot text generation against Anthropic, OpenAI-compatible
and Google Gemini backends.

Every backend's response is normalized into a :class:`GenerationResult`.
This module never retries: the build pipeline owns retry and continuation
policy (see ``app.services.build.generation``).  Upstream failures are
raised as :class:`~app.errors.GenerationError` with a ``kind`` so callers
can tell rate limits from bad credentials.
"""

import logging
from dataclasses import dataclass

import httpx

from app.config import resolve_provider, settings
from app.errors import GenerationError

logger = logging.getLogger(__name__)

# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for LLM API calls."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=settings.LLM_REQUEST_TIMEOUT)
    return _client


async def close_client() -> None:
    """Close the shared LLM HTTP client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


@dataclass
class GenerationResult:
    """Normalized output of a single generation request."""

    text: str
    input_chars: int
    output_chars: int
    finish_reason: str = "stop"


# Provider-specific stop reasons that mean "cut off by the token limit".
_LENGTH_REASONS = frozenset({"length", "max_tokens", "MAX_TOKENS"})


def _normalize_finish_reason(reason: str | None) -> str:
    if not reason:
        return "stop"
    if reason in _LENGTH_REASONS:
        return "length"
    return reason


def _classify_status(status: int) -> str:
    """Map an upstream HTTP status code to a GenerationError kind."""
    if status in (401, 403):
        return "auth"
    if status == 404:
        return "not_found"
    if status == 429:
        return "rate_limit"
    if status >= 500:
        return "server"
    return "bad_request"


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return min(float(value), 120.0)
    except (ValueError, TypeError):
        return None


def _raise_for_status(provider: str, response: httpx.Response) -> None:
    """Raise a classified GenerationError for any >= 400 response."""
    if response.status_code < 400:
        return
    try:
        body = response.json()
        err = body.get("error", {}) if isinstance(body, dict) else {}
        message = err.get("message") if isinstance(err, dict) else str(err)
        message = message or response.text
    except ValueError:
        message = response.text
    raise GenerationError(
        f"{provider} API {response.status_code}: {message}",
        kind=_classify_status(response.status_code),
        status=response.status_code,
        retry_after=_retry_after(response),
    )


async def _post(provider: str, url: str, *, headers: dict, body: dict) -> dict:
    """POST *body* and return the decoded JSON, classifying every failure."""
    client = _get_client()
    try:
        response = await client.post(url, headers=headers, json=body)
    except httpx.TimeoutException as exc:
        raise GenerationError(f"{provider} request timed out", kind="network") from exc
    except httpx.TransportError as exc:
        raise GenerationError(
            f"{provider} transport error: {type(exc).__name__}", kind="network",
        ) from exc

    _raise_for_status(provider, response)
    try:
        data = response.json()
    except ValueError as exc:
        raise GenerationError(f"{provider} returned a non-JSON body", kind="malformed") from exc
    if not isinstance(data, dict):
        raise GenerationError(f"{provider} returned an unexpected body", kind="malformed")
    return data


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"


def _anthropic_headers(api_key: str) -> dict:
    """Return standard Anthropic API headers."""
    return {
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_API_VERSION,
        "Content-Type": "application/json",
    }


async def generate_anthropic(
    model: str,
    system_prompt: str,
    messages: list[dict],
    max_tokens: int,
) -> tuple[str, str]:
    """Call the Anthropic Messages API; return ``(text, stop_reason)``."""
    if not settings.ANTHROPIC_API_KEY:
        raise GenerationError("API key not configured for anthropic", kind="auth")
    data = await _post(
        "Anthropic",
        ANTHROPIC_MESSAGES_URL,
        headers=_anthropic_headers(settings.ANTHROPIC_API_KEY),
        body={
            "model": model,
            "max_tokens": max_tokens,
            "system": system_prompt,
            "messages": messages,
        },
    )
    blocks = data.get("content") or []
    text_parts = [b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text"]
    if not text_parts:
        raise GenerationError("No text block in Anthropic API response", kind="malformed")
    return "\n".join(text_parts), data.get("stop_reason") or "end_turn"


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------


def _openai_headers(api_key: str) -> dict:
    """Return standard OpenAI API headers."""
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


async def generate_openai(
    model: str,
    system_prompt: str,
    messages: list[dict],
    max_tokens: int,
) -> tuple[str, str]:
    """Call an OpenAI-compatible Chat Completions endpoint."""
    if not settings.OPENAI_API_KEY:
        raise GenerationError("API key not configured for openai", kind="auth")
    url = settings.OPENAI_BASE_URL.rstrip("/") + "/chat/completions"
    data = await _post(
        "OpenAI",
        url,
        headers=_openai_headers(settings.OPENAI_API_KEY),
        body={
            "model": model,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "max_completion_tokens": max_tokens,
        },
    )
    choices = data.get("choices") or []
    if choices:
        choice = choices[0] or {}
        content = (choice.get("message") or {}).get("content")
        if content is None:
            raise GenerationError("No content in OpenAI API response", kind="malformed")
        return content, choice.get("finish_reason") or "stop"
    # Some self-hosted gateways answer with a flat body instead of choices.
    for key in ("output", "response"):
        if isinstance(data.get(key), str):
            return data[key], "stop"
    raise GenerationError("Empty response from OpenAI API", kind="malformed")


# ---------------------------------------------------------------------------
# Google Gemini
# ---------------------------------------------------------------------------


async def generate_google(
    model: str,
    system_prompt: str,
    messages: list[dict],
    max_tokens: int,
) -> tuple[str, str]:
    """Call the Gemini ``generateContent`` endpoint."""
    if not settings.GOOGLE_API_KEY:
        raise GenerationError("API key not configured for google", kind="auth")
    model_name = model.rsplit("/", 1)[-1]
    url = f"{settings.GOOGLE_BASE_URL.rstrip('/')}/models/{model_name}:generateContent"
    contents = [
        {
            "role": "model" if m["role"] == "assistant" else "user",
            "parts": [{"text": m["content"]}],
        }
        for m in messages
    ]
    data = await _post(
        "Google",
        url,
        headers={"Content-Type": "application/json", "x-goog-api-key": settings.GOOGLE_API_KEY},
        body={
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": contents,
            "generationConfig": {"maxOutputTokens": max_tokens},
        },
    )
    candidates = data.get("candidates") or []
    if not candidates:
        raise GenerationError("No candidates in Gemini API response", kind="malformed")
    candidate = candidates[0] or {}
    parts = (candidate.get("content") or {}).get("parts") or []
    text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
    return text, candidate.get("finishReason") or "STOP"


_PROVIDERS = {
    "anthropic": generate_anthropic,
    "openai": generate_openai,
    "google": generate_google,
}


# ---------------------------------------------------------------------------
# Unified entry point
# ---------------------------------------------------------------------------


async def generate(
    model: str,
    system_prompt: str,
    messages: list[dict],
    max_tokens: int = 4096,
) -> GenerationResult:
    """Send one generation request to the backend that serves *model*.

    Parameters
    ----------
    model : str
        Model identifier; also selects the backend unless LLM_PROVIDER is set.
    system_prompt : str
        System-level instructions for the model.
    messages : list[dict]
        Conversation as ``[{"role": "user"|"assistant", "content": str}]``.
    max_tokens : int
        Maximum tokens in the response.

    Returns
    -------
    GenerationResult
        Text plus character counts and a normalized finish reason
        (``"length"`` whenever the output was truncated).
    """
    provider = resolve_provider(model)
    handler = _PROVIDERS.get(provider)
    if handler is None:
        raise GenerationError(f"Unknown LLM provider: {provider}", kind="bad_request")

    input_chars = len(system_prompt) + sum(len(m.get("content", "")) for m in messages)
    text, reason = await handler(model, system_prompt, messages, max_tokens)
    finish_reason = _normalize_finish_reason(reason)
    logger.debug(
        "LLM %s/%s: %d chars in, %d chars out (%s)",
        provider, model, input_chars, len(text), finish_reason,
    )
    return GenerationResult(
        text=text,
        input_chars=input_chars,
        output_chars=len(text),
        finish_reason=finish_reason,
    )
