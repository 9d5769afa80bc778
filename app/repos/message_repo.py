"""Chat message repository -- assistant replies produced by builds."""

from uuid import UUID

from app.repos.db import get_pool


async def create_message(
    session_id: UUID,
    role: str,
    content: str,
    *,
    model_id: str | None = None,
) -> dict:
    """Append a message to a chat session."""
    pool = await get_pool()
    row = await pool.fetchrow(
        """
        INSERT INTO chat_messages (session_id, role, content, model_id)
        VALUES ($1, $2, $3, $4)
        RETURNING id, session_id, role, content, model_id, created_at
        """,
        session_id,
        role,
        content,
        model_id,
    )
    return dict(row)


async def get_messages_for_session(session_id: UUID, limit: int = 200) -> list[dict]:
    """Fetch the most recent messages of a session in chronological order."""
    pool = await get_pool()
    rows = await pool.fetch(
        """
        SELECT id, session_id, role, content, model_id, created_at
          FROM (
            SELECT * FROM chat_messages
             WHERE session_id = $1
             ORDER BY created_at DESC
             LIMIT $2
          ) recent
         ORDER BY created_at
        """,
        session_id,
        limit,
    )
    return [dict(r) for r in rows]
