"""File Store adapter -- the only place the build pipeline mutates files.

Every write goes to the ``project_files`` table first; Project Memory is
updated only after the write succeeded, so memory never claims content
the store does not have.  Failures surface as
:class:`~app.errors.FileStoreError`.
"""

import logging
from uuid import UUID

import asyncpg

from app.errors import FileStoreError
from app.repos import file_repo
from app.services.build.memory import ProjectMemory

logger = logging.getLogger(__name__)

_STORE_EXCEPTIONS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class FileStore:
    """Session-scoped file writes that keep a :class:`ProjectMemory` in step."""

    def __init__(self, session_id: UUID, memory: ProjectMemory) -> None:
        self.session_id = session_id
        self.memory = memory

    async def load(self) -> int:
        """Rebuild memory from the stored files.  Returns files loaded.

        Raises :class:`~app.errors.FileStoreError` when the files cannot be
        read; memory is left untouched in that case.
        """
        try:
            rows = await file_repo.get_files_for_session(self.session_id)
        except _STORE_EXCEPTIONS as exc:
            raise FileStoreError(f"Failed to load project files: {exc}") from exc
        loaded = self.memory.hydrate(rows)
        logger.debug("Loaded %d files for session %s", loaded, self.session_id)
        return loaded

    async def write(self, path: str, name: str, content: str) -> None:
        """Create or update *path*, then record the content in memory."""
        file_id = self.memory.file_id(path)
        try:
            row = None
            if file_id is not None:
                row = await file_repo.update_file(file_id, path=path, name=name, content=content)
            if row is None:
                row = await file_repo.create_file(self.session_id, path, name, content)
        except _STORE_EXCEPTIONS as exc:
            raise FileStoreError(f"Failed to write {path}: {exc}", path=path) from exc
        self.memory.put(path, content, row["id"])

    async def delete(self, path: str) -> bool:
        """Delete *path* if stored.  Returns False when there was nothing to delete."""
        file_id = self.memory.file_id(path)
        if file_id is None:
            self.memory.remove(path)
            return False
        try:
            await file_repo.delete_file(file_id)
        except _STORE_EXCEPTIONS as exc:
            raise FileStoreError(f"Failed to delete {path}: {exc}", path=path) from exc
        self.memory.remove(path)
        return True
