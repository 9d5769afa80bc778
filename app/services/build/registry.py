"""Registry of live build runners, keyed by build id.

A runner is registered for exactly the duration of its ``start`` or
``resume`` call.  HTTP and WebSocket handlers reach it through
:func:`get_registry` (a FastAPI dependency) rather than a module global.
"""

import logging
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from app.services.build.runner import BuildRunner

logger = logging.getLogger(__name__)


class RunnerRegistry:
    def __init__(self) -> None:
        self._runners: dict[str, "BuildRunner"] = {}

    def register(self, runner: "BuildRunner") -> None:
        key = str(runner.build_id)
        if key in self._runners and self._runners[key] is not runner:
            logger.warning("Replacing live runner for build %s", key)
        self._runners[key] = runner

    def lookup(self, build_id: UUID | str) -> "BuildRunner | None":
        return self._runners.get(str(build_id))

    def unregister(self, runner: "BuildRunner") -> None:
        """Remove *runner*; a newer runner for the same build is left alone."""
        key = str(runner.build_id)
        if self._runners.get(key) is runner:
            del self._runners[key]

    def __len__(self) -> int:
        return len(self._runners)

    def __contains__(self, build_id: object) -> bool:
        return str(build_id) in self._runners


_registry = RunnerRegistry()


def get_registry() -> RunnerRegistry:
    """Process-wide registry (FastAPI dependency)."""
    return _registry
