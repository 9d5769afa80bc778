"""Project file repository -- CRUD for the project_files table."""

from datetime import datetime, timezone
from uuid import UUID

from app.repos.db import get_pool

_FILE_COLUMNS = "id, session_id, path, name, content, is_folder, created_at, updated_at"


async def get_files_for_session(session_id: UUID) -> list[dict]:
    """Fetch every file and folder of a session, ordered by path."""
    pool = await get_pool()
    rows = await pool.fetch(
        f"SELECT {_FILE_COLUMNS} FROM project_files WHERE session_id = $1 ORDER BY path",
        session_id,
    )
    return [dict(r) for r in rows]


async def create_file(
    session_id: UUID,
    path: str,
    name: str,
    content: str,
    *,
    is_folder: bool = False,
) -> dict:
    """Insert a file.  An existing row at the same path is overwritten."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        INSERT INTO project_files (session_id, path, name, content, is_folder)
        VALUES ($1, $2, $3, $4, $5)
        ON CONFLICT (session_id, path)
        DO UPDATE SET name = EXCLUDED.name, content = EXCLUDED.content, updated_at = now()
        RETURNING {_FILE_COLUMNS}
        """,
        session_id,
        path,
        name,
        content,
        is_folder,
    )
    return dict(row)


async def update_file(file_id: UUID, *, path: str, name: str, content: str) -> dict | None:
    """Replace a file's content.  Returns None if the row no longer exists."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        UPDATE project_files
           SET path = $2, name = $3, content = $4, updated_at = $5
         WHERE id = $1
        RETURNING {_FILE_COLUMNS}
        """,
        file_id,
        path,
        name,
        content,
        datetime.now(timezone.utc),
    )
    return dict(row) if row else None


async def delete_file(file_id: UUID) -> bool:
    """Delete a file by id.  Returns True when a row was removed."""
    pool = await get_pool()
    result = await pool.execute("DELETE FROM project_files WHERE id = $1", file_id)
    return result.endswith(" 1")
