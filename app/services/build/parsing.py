"""Parsers for structured model output.

Models are asked for bare JSON but routinely wrap it in code fences, add a
sentence of preamble, leave trailing commas or use single quotes.  Every
parser here goes through :func:`load_model_json`, which tries a strict parse
first and then a bounded repair pass, and finally validates the result
against one of the known shapes.  Unusable input raises
:class:`~app.errors.PlanParseError`; nothing silently defaults to an empty
plan.
"""

import json
import re

from pydantic import ValidationError

from app.errors import EmptyPlanError, PlanParseError
from app.services.build.models import (
    AGENT_ACTIONS,
    AgentAction,
    BuildPlan,
    ConversationReply,
    PlanKind,
    QuickChangeRequest,
    ReviewResult,
)

_FENCE_OPEN_RE = re.compile(r"^\s*```[\w-]*\s*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?\s*```\s*$")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def strip_code_fence(text: str) -> str:
    """Strip an optional markdown code fence wrapping the whole of *text*."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = _FENCE_OPEN_RE.sub("", stripped, count=1)
        stripped = _FENCE_CLOSE_RE.sub("", stripped, count=1)
    return stripped


def clean_file_content(text: str) -> str:
    """Normalize generated file content: no wrapping fence, one final newline."""
    body = strip_code_fence(text)
    return body.rstrip("\n") + "\n" if body.strip() else ""


def _outermost(text: str, opener: str, closer: str) -> str | None:
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def _repair(candidate: str) -> str:
    fixed = _TRAILING_COMMA_RE.sub(r"\1", candidate)
    if '"' not in fixed:
        fixed = fixed.replace("'", '"')
    return fixed


def load_model_json(text: str, *, expect: str = "object"):
    """Parse JSON out of model output, repairing common damage.

    *expect* is ``"object"`` or ``"array"`` and selects which outermost
    bracket pair the repair pass extracts.
    """
    if not text or not text.strip():
        raise PlanParseError("Model returned an empty response", raw=text or "")
    cleaned = strip_code_fence(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    opener, closer = ("[", "]") if expect == "array" else ("{", "}")
    candidate = _outermost(cleaned, opener, closer)
    if candidate is not None:
        for attempt in (candidate, _repair(candidate), _repair(candidate).replace("'", '"')):
            try:
                return json.loads(attempt)
            except json.JSONDecodeError:
                continue
    raise PlanParseError("Failed to parse structured output from the model", raw=text)


def _load_object(text: str) -> dict:
    data = load_model_json(text, expect="object")
    if not isinstance(data, dict):
        raise PlanParseError("Expected a JSON object from the model", raw=text)
    return data


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

PlanningResult = ConversationReply | QuickChangeRequest | BuildPlan


def parse_planning_response(text: str) -> PlanningResult:
    """Classify planning output into one of the three planning shapes.

    A response without a ``type`` that carries ``phases`` is treated as a
    build plan.  Build plans are validated non-empty.
    """
    data = _load_object(text)
    kind = str(data.get("type") or "").strip().lower()
    try:
        if kind == "conversation":
            reply = ConversationReply.model_validate(data)
            if not reply.response:
                raise PlanParseError("Conversation response was empty", raw=text)
            return reply
        if kind in ("quick-change", "quick_change", "quickchange"):
            return QuickChangeRequest.model_validate(data)
        if kind == "build" or "phases" in data:
            plan = BuildPlan.model_validate({**data, "kind": PlanKind.BUILD})
            if plan.file_count == 0:
                raise EmptyPlanError()
            return plan
    except ValidationError as exc:
        raise PlanParseError(f"Planning response had an invalid shape: {exc.error_count()} error(s)", raw=text) from exc
    raise PlanParseError(f"Unknown planning response type: {kind or 'missing'}", raw=text)


# ---------------------------------------------------------------------------
# Review / agentic steps / dependency reads
# ---------------------------------------------------------------------------


def parse_review(text: str) -> ReviewResult:
    """Parse a phase review.  Fix entries without a path are dropped."""
    data = _load_object(text)
    fixes = data.get("fixes")
    if isinstance(fixes, list):
        data = {**data, "fixes": [f for f in fixes if isinstance(f, dict) and f.get("path")]}
    else:
        data = {**data, "fixes": []}
    try:
        return ReviewResult.model_validate(data)
    except ValidationError as exc:
        raise PlanParseError("Review response had an invalid shape", raw=text) from exc


def parse_agent_action(text: str) -> AgentAction:
    data = _load_object(text)
    action = str(data.get("action") or "").strip().lower()
    if action not in AGENT_ACTIONS:
        raise PlanParseError(f"Unknown agent action: {action or 'missing'}", raw=text)
    if action != "done" and not data.get("path"):
        raise PlanParseError(f"Agent action '{action}' is missing a path", raw=text)
    try:
        return AgentAction.model_validate({**data, "action": action})
    except ValidationError as exc:
        raise PlanParseError("Agent action had an invalid shape", raw=text) from exc


def parse_path_list(text: str) -> list[str]:
    """Parse the dependency-read answer: a JSON array of file paths."""
    data = load_model_json(text, expect="array")
    if isinstance(data, dict):
        data = data.get("files") or data.get("paths") or []
    if not isinstance(data, list):
        raise PlanParseError("Expected a JSON array of paths", raw=text)
    seen: list[str] = []
    for item in data:
        if isinstance(item, str) and item and item not in seen:
            seen.append(item)
    return seen


def summarize_file_analysis(text: str, limit: int = 200) -> str:
    """Condense a file-read analysis into one line of prompt context.

    Falls back to the head of the raw answer when it is not valid JSON.
    """
    try:
        data = _load_object(text)
    except PlanParseError:
        return text.strip()[:limit]
    purpose = str(data.get("purpose") or "").strip().rstrip(".")
    exports = data.get("exports") or []
    if not isinstance(exports, list):
        exports = [str(exports)]
    summary = f"{purpose}. Exports: {', '.join(str(e) for e in exports)}"
    version = data.get("version")
    if version:
        summary += f". Version: {version}"
    return summary
