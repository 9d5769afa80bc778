"""Build pipeline data model.

Declarative plan types (``BuildPlan`` → ``Phase`` → ``PlannedFile``) describe
*what* to build and are produced once by the planning step.  Runtime types
(``PhaseState`` / ``FileState``) track progress and are what the build
record, the snapshot and the event stream carry.

Model output is loose JSON, so the plan models accept the camelCase keys the
prompts ask for and fill in defaults for anything missing.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Status vocabularies
# ---------------------------------------------------------------------------

class BuildStatus:
    PLANNING = "planning"
    AWAITING_APPROVAL = "awaiting-approval"
    BUILDING = "building"
    REVIEWING = "reviewing"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


ACTIVE_BUILD_STATUSES = frozenset({
    BuildStatus.PLANNING,
    BuildStatus.AWAITING_APPROVAL,
    BuildStatus.BUILDING,
    BuildStatus.REVIEWING,
})
RESUMABLE_BUILD_STATUSES = frozenset({BuildStatus.ERROR, BuildStatus.CANCELLED})


class PhaseStatus:
    PENDING = "pending"
    ACTIVE = "active"
    REVIEWING = "reviewing"
    COMPLETE = "complete"


PHASE_ORDER = {
    PhaseStatus.PENDING: 0,
    PhaseStatus.ACTIVE: 1,
    PhaseStatus.REVIEWING: 2,
    PhaseStatus.COMPLETE: 3,
}


class FileStatus:
    PENDING = "pending"
    GENERATING = "generating"
    CREATED = "created"
    UPDATING = "updating"
    UPDATED = "updated"
    READING = "reading"
    READ = "read"
    DELETING = "deleting"
    DELETED = "deleted"
    ERROR = "error"


DONE_FILE_STATUSES = frozenset({FileStatus.CREATED, FileStatus.UPDATED})


class PlanKind:
    BUILD = "build"
    QUICK_CHANGE = "quick-change"


# ---------------------------------------------------------------------------
# Plan (declarative)
# ---------------------------------------------------------------------------

def _basename(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1] if path else ""


class PlannedFile(BaseModel):
    """One file the plan asks for."""

    model_config = ConfigDict(extra="ignore")

    path: str = ""
    name: str = ""
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _fill_names(cls, data):
        if not isinstance(data, dict):
            return data
        data = {k: v for k, v in data.items() if v is not None}
        path = str(data.get("path") or data.get("name") or "unknown")
        name = str(data.get("name") or _basename(path) or "unknown")
        return {**data, "path": path, "name": name}


class Phase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = "Phase"
    description: str = ""
    files: list[PlannedFile] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data):
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class BuildPlan(BaseModel):
    """The structured plan a build executes."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    plugin_name: str = Field(default="Plugin", alias="pluginName")
    package_name: str = Field(default="com.example.plugin", alias="packageName")
    description: str = ""
    phases: list[Phase] = Field(default_factory=list)
    kind: str = PlanKind.BUILD

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data):
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None and v != ""}
        return data

    @property
    def file_count(self) -> int:
        return sum(len(p.files) for p in self.phases)

    def to_record(self) -> dict:
        """Serialize for persistence / the wire (camelCase keys)."""
        return self.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Runtime state
# ---------------------------------------------------------------------------

class FileState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path: str
    name: str
    description: str = ""
    status: str = FileStatus.PENDING
    error: str | None = None


class PhaseState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    description: str = ""
    status: str = PhaseStatus.PENDING
    files: list[FileState] = Field(default_factory=list)


def phase_states_for(plan: BuildPlan) -> list[PhaseState]:
    """Derive fresh, all-pending runtime state for *plan* (same indices)."""
    return [
        PhaseState(
            name=p.name,
            description=p.description,
            files=[
                FileState(path=f.path, name=f.name, description=f.description)
                for f in p.files
            ],
        )
        for p in plan.phases
    ]


# ---------------------------------------------------------------------------
# Structured model responses
# ---------------------------------------------------------------------------

class ConversationReply(BaseModel):
    """Planning answered with prose: not a build request."""

    model_config = ConfigDict(extra="ignore")

    response: str = ""


class QuickChangeRequest(BaseModel):
    """Planning chose the approval-free agentic path."""

    model_config = ConfigDict(extra="ignore")

    description: str = "Applying changes"
    files: list[PlannedFile] = Field(default_factory=list)


class ReviewFix(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path: str
    reason: str = "Review requested a fix"


class ReviewResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    passed: bool = True
    fixes: list[ReviewFix] = Field(default_factory=list)


AGENT_ACTIONS = frozenset({"read", "update", "create", "delete", "done"})


class AgentAction(BaseModel):
    """One step chosen by the model in the quick-change loop."""

    model_config = ConfigDict(extra="ignore")

    action: str
    path: str = ""
    reason: str = ""
    summary: str = ""
