"""Domain exception hierarchy for PlugForge.

Services raise these instead of bare ``ValueError`` so that the global
exception handler in ``main.py`` can map them to the correct HTTP status
code without fragile string matching.  The build pipeline uses the same
classes internally to decide whether a failure is retried, suspended on,
or terminal.
"""

import re


class ForgeError(Exception):
    """Base for all domain exceptions."""

    def __init__(self, message: str = "An unexpected error occurred", *, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(ForgeError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class BadRequestError(ForgeError):
    """Client sent an invalid request (400)."""

    def __init__(self, message: str = "Bad request"):
        super().__init__(message, status_code=400)


class BuildConflictError(ForgeError):
    """Another build is already active for the session (409)."""

    def __init__(self, message: str = "A build is already in progress for this session"):
        super().__init__(message, status_code=409)


# ---------------------------------------------------------------------------
# Build pipeline errors
# ---------------------------------------------------------------------------


class PlanParseError(ForgeError):
    """Model output could not be coerced into the expected JSON shape."""

    def __init__(self, message: str = "Failed to parse structured output from the model", *, raw: str = ""):
        super().__init__(message, status_code=502)
        self.raw = raw


class EmptyPlanError(ForgeError):
    """A build plan was produced but lists no files to generate."""

    def __init__(self, message: str = "Build plan contains no files to generate"):
        super().__init__(message, status_code=422)


class BuildCancelledError(ForgeError):
    """Raised at a cancellation checkpoint; always terminates the run."""

    def __init__(self, message: str = "Build cancelled"):
        super().__init__(message, status_code=409)


# Upstream failure kinds reported by the generation gateway.
TRANSIENT_KINDS = frozenset({"rate_limit", "server", "network", "malformed"})
PERMANENT_KINDS = frozenset({"auth", "not_found", "bad_request"})


class GenerationError(ForgeError):
    """An upstream text-generation call failed.

    ``kind`` is one of ``auth``, ``rate_limit``, ``not_found``, ``server``,
    ``network``, ``malformed`` or ``bad_request``.  ``retry_after`` carries
    the upstream hint (seconds) when the provider sent one.
    """

    def __init__(
        self,
        message: str = "Generation request failed",
        *,
        kind: str = "server",
        status: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, status_code=502)
        self.kind = kind
        self.status = status
        self.retry_after = retry_after

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS


class FileStoreError(ForgeError):
    """Writing or deleting a project file failed."""

    def __init__(self, message: str = "File store operation failed", *, path: str = ""):
        super().__init__(message, status_code=500)
        self.path = path


class CheckpointError(ForgeError):
    """Build progress could not be saved to the build record."""

    def __init__(self, message: str = "Could not save build progress"):
        super().__init__(message, status_code=503)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


def sanitize_error_message(message: str | None, max_chars: int = 300) -> str:
    """Return a bounded, markup-free version of *message* for end users.

    Upstream failures often embed HTML error pages or multi-line traces;
    neither is allowed to reach the event stream.
    """
    if not message:
        return "An unknown error occurred"
    clean = _TAG_RE.sub("", message)
    clean = _WS_RE.sub(" ", clean).strip()
    if not clean:
        return "An unknown error occurred"
    if len(clean) > max_chars:
        clean = clean[: max_chars - 3].rstrip() + "..."
    return clean


def format_error_response(
    *,
    error: str,
    detail: object = None,
    request_id: str = "",
) -> dict:
    """Build a structured error response dict.

    Parameters
    ----------
    error : str
        Short error title (e.g. ``"Internal Server Error"``).
    detail : object
        Human-readable detail string or validation error list.
    request_id : str
        The request ID for tracing.

    Returns
    -------
    dict
        ``{"error": ..., "detail": ..., "request_id": ...}``
    """
    return {
        "error": error,
        "detail": detail if detail is not None else error,
        "request_id": request_id,
    }
