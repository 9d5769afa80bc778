"""Project Memory -- the runner's view of what every file currently contains.

Rebuilt from the File Store before any generation step (on start and on
resume alike), then kept in step with every write the runner performs.
The copy serialized on the build record is never read back.  Also tracks
the File Store id of each path so updates and deletes can target the
stored row.
"""

from uuid import UUID


class ProjectMemory:
    """In-process ``path -> content`` map plus ``path -> file id`` index."""

    def __init__(self) -> None:
        self._content: dict[str, str] = {}
        self._file_ids: dict[str, UUID] = {}

    def __len__(self) -> int:
        return len(self._content)

    def __contains__(self, path: str) -> bool:
        return path in self._content

    def __bool__(self) -> bool:
        return bool(self._content)

    # -- loading ----------------------------------------------------------

    def hydrate(self, rows: list[dict]) -> int:
        """Replace memory with the File Store rows; nothing else survives.

        Returns the number of files loaded.
        """
        self._content.clear()
        self._file_ids.clear()
        for row in rows:
            if row.get("is_folder"):
                continue
            self._content[row["path"]] = row.get("content") or ""
            self._file_ids[row["path"]] = row["id"]
        return len(self._content)

    # -- access -----------------------------------------------------------

    def get(self, path: str) -> str | None:
        return self._content.get(path)

    def file_id(self, path: str) -> UUID | None:
        return self._file_ids.get(path)

    def paths(self) -> list[str]:
        return list(self._content)

    def items(self) -> dict[str, str]:
        return dict(self._content)

    def put(self, path: str, content: str, file_id: UUID | None = None) -> None:
        self._content[path] = content
        if file_id is not None:
            self._file_ids[path] = file_id

    def remove(self, path: str) -> None:
        self._content.pop(path, None)
        self._file_ids.pop(path, None)

    def to_dict(self) -> dict[str, str]:
        """Serialized form persisted on the build record."""
        return dict(self._content)

    # -- prompt context ---------------------------------------------------

    def build_context(
        self,
        priority_paths: list[str] | None = None,
        *,
        summaries: dict[str, str] | None = None,
        budget: int = 120_000,
    ) -> str:
        """Render "files so far" for a generation prompt.

        *priority_paths* are emitted first, then everything else in
        insertion order.  Once *budget* characters of content have been
        used, remaining files are listed by path only.
        """
        if not self._content and not summaries:
            return "No files created yet."

        priority = set(priority_paths or [])
        ordered = sorted(self._content, key=lambda p: 0 if p in priority else 1)

        parts = ["Files created so far:"]
        used = 0
        omitted: list[str] = []
        for path in ordered:
            block = f"\n--- {path} ---\n{self._content[path]}\n"
            if used + len(block) > budget:
                omitted.append(path)
                continue
            parts.append(block)
            used += len(block)

        if omitted:
            parts.append("\nOther files (content omitted):\n" + "\n".join(f"- {p}" for p in omitted))
        if summaries:
            parts.append(
                "\nContext from existing files:\n"
                + "\n".join(f"- `{p}`: {s}" for p, s in summaries.items())
            )
        return "\n".join(parts)
