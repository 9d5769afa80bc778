"""Build repository -- database reads and writes for the builds table."""

import json
from datetime import datetime, timezone
from uuid import UUID

from app.repos.db import get_pool

_BUILD_COLUMNS = """
    id, session_id, user_id, status, user_request, model_id, framework,
    plan, plan_approved, phases, file_memory, summary, error, thinking_message,
    current_phase_index, current_file_index, created_at, updated_at, completed_at
"""

_JSON_COLUMNS = ("plan", "phases", "file_memory")

# Columns update_build() may touch.  Anything else is a programming error.
_UPDATABLE = frozenset({
    "status",
    "plan",
    "plan_approved",
    "phases",
    "file_memory",
    "summary",
    "error",
    "thinking_message",
    "current_phase_index",
    "current_file_index",
})

_TERMINAL = ("complete", "error", "cancelled")

ACTIVE_STATUSES = ("planning", "awaiting-approval", "building", "reviewing")


def _row_to_build(row) -> dict | None:
    if row is None:
        return None
    d = dict(row)
    for col in _JSON_COLUMNS:
        val = d.get(col)
        if isinstance(val, str):
            d[col] = json.loads(val)
    return d


def _count(result: str) -> int:
    """asyncpg returns "UPDATE N" as a string."""
    try:
        return int(result.split()[-1])
    except (ValueError, IndexError, AttributeError):
        return 0


async def create_build(
    session_id: UUID,
    user_id: UUID,
    user_request: str,
    *,
    model_id: str | None = None,
    framework: str = "paper",
) -> dict:
    """Create a new build record in planning status."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        INSERT INTO builds (session_id, user_id, status, user_request, model_id, framework)
        VALUES ($1, $2, 'planning', $3, $4, $5)
        RETURNING {_BUILD_COLUMNS}
        """,
        session_id,
        user_id,
        user_request,
        model_id,
        framework,
    )
    return _row_to_build(row)


async def get_build_by_id(build_id: UUID) -> dict | None:
    """Fetch a single build by ID."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"SELECT {_BUILD_COLUMNS} FROM builds WHERE id = $1",
        build_id,
    )
    return _row_to_build(row)


async def get_active_build_for_session(session_id: UUID) -> dict | None:
    """Fetch the non-terminal build for a session, if any."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        SELECT {_BUILD_COLUMNS} FROM builds
         WHERE session_id = $1 AND status = ANY($2::text[])
         ORDER BY created_at DESC LIMIT 1
        """,
        session_id,
        list(ACTIVE_STATUSES),
    )
    return _row_to_build(row)


async def get_latest_build_for_session(session_id: UUID) -> dict | None:
    """Fetch the most recent build for a session regardless of status."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        SELECT {_BUILD_COLUMNS} FROM builds
         WHERE session_id = $1
         ORDER BY created_at DESC LIMIT 1
        """,
        session_id,
    )
    return _row_to_build(row)


async def update_build(build_id: UUID, **fields) -> None:
    """Apply a partial update to a build.

    JSON columns are serialized here; ``completed_at`` is stamped whenever
    the status moves to a terminal value.
    """
    unknown = set(fields) - _UPDATABLE
    if unknown:
        raise ValueError(f"Unknown build fields: {', '.join(sorted(unknown))}")
    if not fields:
        return

    pool = await get_pool()
    now = datetime.now(timezone.utc)
    sets = ["updated_at = $2"]
    params: list = [build_id, now]
    idx = 3

    for col, value in fields.items():
        if col in _JSON_COLUMNS:
            sets.append(f"{col} = ${idx}::jsonb")
            params.append(json.dumps(value) if value is not None else None)
        else:
            sets.append(f"{col} = ${idx}")
            params.append(value)
        idx += 1

    if fields.get("status") in _TERMINAL:
        sets.append(f"completed_at = ${idx}")
        params.append(now)
    elif "status" in fields:
        sets.append("completed_at = NULL")

    query = f"UPDATE builds SET {', '.join(sets)} WHERE id = $1"
    await pool.execute(query, *params)


async def interrupt_stale_builds() -> int:
    """Handle active builds on server startup.

    Builds that were running inside a previous process (planning, building,
    reviewing) are marked ``error`` so they can be resumed.  Builds waiting
    for plan approval are left alone: the decision can still be made and the
    service spawns a resumed runner for it.

    Returns the number of builds interrupted.
    """
    pool = await get_pool()
    now = datetime.now(timezone.utc)
    result = await pool.execute(
        """
        UPDATE builds
           SET status           = 'error',
               error            = 'Interrupted by server restart',
               thinking_message = NULL,
               updated_at       = $1,
               completed_at     = $1
         WHERE status IN ('planning', 'building', 'reviewing')
        """,
        now,
    )
    return _count(result)
