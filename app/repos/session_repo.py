"""Chat session repository -- ownership lookups for build routes."""

from uuid import UUID

from app.repos.db import get_pool


async def get_session_for_user(session_id: UUID, user_id: UUID) -> dict | None:
    """Fetch a chat session if it belongs to *user_id*."""
    pool = await get_pool()
    row = await pool.fetchrow(
        """
        SELECT id, user_id, name, framework, created_at
          FROM chat_sessions
         WHERE id = $1 AND user_id = $2
        """,
        session_id,
        user_id,
    )
    return dict(row) if row else None
