"""Build runner -- the state machine that takes one build from request to summary.

One runner instance drives one build through::

    planning -> awaiting-approval -> building (-> reviewing) -> complete
                                   \\-> error | cancelled

Everything happens in a single asyncio task, strictly in order: one file
is in flight at a time.  Two rules hold throughout:

* the file is written to the File Store *before* its state says
  created/updated/deleted, and
* every state change is checkpointed to the build record *before* the
  matching event is published,

so an observer that reconnects and reads the record never sees progress
that was not durably recorded.  A checkpoint that still fails after
``CHECKPOINT_MAX_ATTEMPTS`` tries ends the run in ``error`` and its event is
never published.

Cancellation is cooperative: :meth:`BuildRunner.cancel` sets a flag that is
checked at the top of every loop iteration, before every generation attempt
and after every generation returns (before its result is written).
"""

import asyncio
import logging
from uuid import UUID

import asyncpg

from app.config import resolve_model, settings
from app.errors import (
    BuildCancelledError,
    CheckpointError,
    FileStoreError,
    ForgeError,
    GenerationError,
    PlanParseError,
    sanitize_error_message,
)
from app.repos import build_repo, message_repo
from app.services.build.decisions import DecisionGate
from app.services.build.events import BuildEvent, EventChannel, Subscription
from app.services.build.file_store import FileStore
from app.services.build.generation import GenerationCaller
from app.services.build.memory import ProjectMemory
from app.services.build.models import (
    DONE_FILE_STATUSES,
    PHASE_ORDER,
    AgentAction,
    BuildPlan,
    BuildStatus,
    ConversationReply,
    FileState,
    FileStatus,
    Phase,
    PhaseState,
    PhaseStatus,
    PlanKind,
    QuickChangeRequest,
    phase_states_for,
)
from app.services.build.parsing import (
    clean_file_content,
    parse_agent_action,
    parse_path_list,
    parse_planning_response,
    parse_review,
    summarize_file_analysis,
)
from app.services.build.prompts import (
    build_agentic_step_prompt,
    build_dependency_read_prompt,
    build_file_generation_prompt,
    build_file_read_prompt,
    build_patch_prompt,
    build_planning_prompt,
    build_review_prompt,
    build_summary_prompt,
    revision_request,
)
from app.services.build.registry import RunnerRegistry

logger = logging.getLogger(__name__)

DEFAULT_PACKAGE = "com.example.plugin"

_CHECKPOINT_EXCEPTIONS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

# Agentic action -> (in-progress status, in-progress event, verb)
_AGENT_STEPS = {
    "read": (FileStatus.READING, "file-reading", "Reading"),
    "update": (FileStatus.UPDATING, "file-updating", "Updating"),
    "create": (FileStatus.GENERATING, "file-generating", "Generating"),
    "delete": (FileStatus.DELETING, "file-deleting", "Deleting"),
}

_DONE_EVENTS = {
    FileStatus.READ: "file-read",
    FileStatus.UPDATED: "file-updated",
    FileStatus.CREATED: "file-created",
    FileStatus.DELETED: "file-deleted",
}

# Completed FileState status -> the agentic action that produced it.
_REPLAYED_ACTIONS = {
    FileStatus.READ: "read",
    FileStatus.UPDATED: "update",
    FileStatus.CREATED: "create",
    FileStatus.DELETED: "delete",
}


def _basename(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1] or path


def _load_plan(raw) -> BuildPlan | None:
    if not raw:
        return None
    return BuildPlan.model_validate(raw)


def _load_phases(raw) -> list[PhaseState]:
    return [PhaseState.model_validate(p) for p in raw or []]


def snapshot_from_record(record: dict) -> dict:
    """Snapshot of a build with no live runner, built from its durable record."""
    return {
        "build_id": str(record["id"]),
        "session_id": str(record["session_id"]),
        "status": record["status"],
        "plan": record.get("plan"),
        "phases": record.get("phases") or [],
        "pending_file_error": None,
        "summary": record.get("summary"),
        "error": record.get("error"),
        "thinking_message": record.get("thinking_message"),
    }


class BuildRunner:
    """Drives a single build.  Construct from the build record."""

    def __init__(self, record: dict, registry: RunnerRegistry) -> None:
        self.build_id: UUID = record["id"]
        self.session_id: UUID = record["session_id"]
        self.user_id: UUID = record["user_id"]
        self.user_request: str = record["user_request"]
        self.model_id: str | None = record.get("model_id")
        self.framework: str = record.get("framework") or settings.DEFAULT_FRAMEWORK

        self.status: str = record.get("status") or BuildStatus.PLANNING
        self.plan: BuildPlan | None = _load_plan(record.get("plan"))
        self.phases: list[PhaseState] = _load_phases(record.get("phases"))
        self.summary: str | None = record.get("summary")
        self.error: str | None = record.get("error")
        self.thinking_message: str | None = record.get("thinking_message")
        self.current_phase_index: int = record.get("current_phase_index") or 0
        self.current_file_index: int = record.get("current_file_index") or 0
        self.pending_file_error: dict | None = None

        # Set once the plan is approved; persisted with every checkpoint.
        self.plan_approved: bool = bool(record.get("plan_approved"))

        self.memory = ProjectMemory()
        self.file_store = FileStore(self.session_id, self.memory)

        self.registry = registry
        self.channel = EventChannel(
            self.build_id,
            max_subscribers=settings.MAX_EVENT_SUBSCRIBERS,
            queue_size=settings.EVENT_QUEUE_SIZE,
        )
        self.cancel_event = asyncio.Event()
        self.approval_gate = DecisionGate("plan-approval")
        self.file_error_gate = DecisionGate("file-error")
        self.caller = GenerationCaller(resolve_model(self.model_id), self.cancel_event)

        # path -> summary of existing files read for context in this run
        self.context_summaries: dict[str, str] = {}

    # ── external interface ────────────────────────────────────────────

    async def start(self) -> None:
        """Run the build from planning to a terminal state."""
        await self._run(self._start_body)

    async def resume(self) -> None:
        """Continue a persisted build after an error, a cancel or a restart."""
        await self._run(self._resume_body)

    def cancel(self) -> bool:
        """Request cancellation.  Returns False if already requested."""
        if self.cancel_event.is_set():
            return False
        self.cancel_event.set()
        self.approval_gate.resolve({"action": "cancel"})
        self.file_error_gate.resolve("cancel")
        logger.info("Build %s: cancellation requested", self.build_id)
        return True

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def awaiting_approval(self) -> bool:
        return self.approval_gate.pending is not None

    def resolve_approval(self, action: str, instructions: str | None = None) -> bool:
        """Deliver a plan decision.  False when no approval is pending."""
        return self.approval_gate.resolve({"action": action, "instructions": instructions})

    def resolve_file_error(self, decision: str) -> bool:
        """Deliver a file-error decision.  False when none is pending."""
        return self.file_error_gate.resolve(decision)

    def snapshot(self) -> dict:
        return {
            "build_id": str(self.build_id),
            "session_id": str(self.session_id),
            "status": self.status,
            "plan": self.plan.to_record() if self.plan else None,
            "phases": [p.model_dump() for p in self.phases],
            "pending_file_error": self.pending_file_error,
            "summary": self.summary,
            "error": self.error,
            "thinking_message": self.thinking_message,
        }

    def subscribe(self) -> Subscription:
        return self.channel.subscribe(self.snapshot())

    # ── run lifecycle ─────────────────────────────────────────────────

    async def _run(self, body) -> None:
        self.registry.register(self)
        try:
            await body()
        except BuildCancelledError as exc:
            await self._finish_cancelled(str(exc))
        except ForgeError as exc:
            logger.warning("Build %s failed: %s", self.build_id, exc)
            await self._finish_error(exc)
        except Exception as exc:
            logger.exception("Build %s crashed", self.build_id)
            await self._finish_error(exc)
        finally:
            self.registry.unregister(self)
            self.channel.close()

    async def _start_body(self) -> None:
        loaded = await self.file_store.load()
        logger.info("Build %s: starting with %d existing files", self.build_id, loaded)
        await self._plan()

    async def _resume_body(self) -> None:
        if self.plan is None:
            raise ForgeError("No plan to resume from", status_code=400)
        loaded = await self.file_store.load()
        logger.info("Build %s: resuming with %d stored files", self.build_id, loaded)
        for state in self.phases:
            if state.status == PhaseStatus.REVIEWING:
                state.status = PhaseStatus.ACTIVE
            for fs in state.files:
                if fs.status in (FileStatus.GENERATING, FileStatus.UPDATING):
                    fs.status = FileStatus.PENDING
        self.pending_file_error = None

        if not self.plan_approved:
            # Stopped before approval: offer the same plan again.
            await self._checkpoint(
                status=BuildStatus.AWAITING_APPROVAL, error=None, thinking_message=None,
            )
            self._emit("plan-ready", plan=self.plan.to_record())
            await self._await_approval()

        await self._checkpoint(
            status=BuildStatus.BUILDING, plan_approved=True, error=None, thinking_message=None,
        )
        self._emit("plan-approved")
        if self.plan.kind == PlanKind.QUICK_CHANGE:
            await self._agentic_loop()
        else:
            await self._execute_phases()

    async def _finish_cancelled(self, message: str) -> None:
        self.pending_file_error = None
        try:
            await self._checkpoint(status=BuildStatus.CANCELLED, thinking_message=None)
        except CheckpointError:
            logger.error("Build %s: could not record cancellation", self.build_id)
            return
        self._emit("build-cancelled", message=message or "Build was cancelled")

    async def _finish_error(self, exc: BaseException) -> None:
        message = sanitize_error_message(str(exc) or "Build failed", settings.ERROR_MESSAGE_MAX_CHARS)
        self.pending_file_error = None
        try:
            await self._checkpoint(status=BuildStatus.ERROR, error=message, thinking_message=None)
        except CheckpointError:
            logger.error("Build %s: could not record failure: %s", self.build_id, message)
            return
        self._emit("build-error", error=message)

    # ── state helpers ─────────────────────────────────────────────────

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise BuildCancelledError()

    def _record_fields(self) -> dict:
        return {
            "status": self.status,
            "plan": self.plan.to_record() if self.plan else None,
            "plan_approved": self.plan_approved,
            "phases": [p.model_dump() for p in self.phases],
            "file_memory": self.memory.to_dict(),
            "summary": self.summary,
            "error": self.error,
            "thinking_message": self.thinking_message,
            "current_phase_index": self.current_phase_index,
            "current_file_index": self.current_file_index,
        }

    async def _checkpoint(self, **changes) -> None:
        """Apply *changes* to the runner and persist the full state."""
        for key, value in changes.items():
            setattr(self, key, value)
        fields = self._record_fields()
        attempts = settings.CHECKPOINT_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            try:
                await build_repo.update_build(self.build_id, **fields)
                return
            except _CHECKPOINT_EXCEPTIONS as exc:
                logger.warning(
                    "Build %s: checkpoint failed (attempt %d/%d): %s",
                    self.build_id, attempt, attempts, exc,
                )
                if attempt < attempts:
                    await asyncio.sleep(settings.CHECKPOINT_RETRY_DELAY)
        raise CheckpointError()

    def _advance_phase(self, state: PhaseState, status: str) -> None:
        """Move *state* to *status*; phases never move backwards within a run."""
        if PHASE_ORDER[status] < PHASE_ORDER.get(state.status, 0):
            raise ForgeError(f"Phase '{state.name}' cannot go from {state.status} to {status}")
        state.status = status

    def _emit(self, event_type: str, **data) -> None:
        self.channel.publish(BuildEvent(event_type, data))

    async def _think(self, message: str) -> None:
        await self._checkpoint(thinking_message=message)
        self._emit("thinking", message=message)

    async def _save_message(self, content: str) -> None:
        await message_repo.create_message(
            self.session_id, "assistant", content, model_id=self.model_id,
        )

    @property
    def _package(self) -> str:
        return (self.plan.package_name if self.plan else "") or DEFAULT_PACKAGE

    # ── planning ──────────────────────────────────────────────────────

    async def _request_plan(self, request: str, user_turn: str):
        prompt = build_planning_prompt(request, self.framework, self.memory.items() or None)
        raw = await self.caller.call(prompt, user_turn, label="the build plan")
        return parse_planning_response(raw)

    async def _plan(self) -> None:
        await self._checkpoint(status=BuildStatus.PLANNING, thinking_message="Analyzing your request...")
        self._emit("planning")

        result = await self._request_plan(self.user_request, self.user_request)

        if isinstance(result, ConversationReply):
            await self._save_message(result.response)
            await self._checkpoint(status=BuildStatus.COMPLETE, thinking_message=None)
            self._emit("conversation-response", content=result.response)
            return

        if isinstance(result, QuickChangeRequest):
            await self._start_quick_change(result)
            return

        await self._propose(result)
        await self._await_approval()
        await self._checkpoint(status=BuildStatus.BUILDING, plan_approved=True, thinking_message=None)
        self._emit("plan-approved")
        await self._execute_phases()

    async def _propose(self, plan: BuildPlan) -> None:
        self.plan = plan
        self.phases = phase_states_for(plan)
        await self._save_message(self._plan_message(plan))
        await self._checkpoint(status=BuildStatus.AWAITING_APPROVAL, thinking_message=None)
        self._emit("plan-ready", plan=plan.to_record())

    @staticmethod
    def _plan_message(plan: BuildPlan) -> str:
        sections = []
        for i, phase in enumerate(plan.phases, 1):
            files = "\n".join(f"- `{f.path}`: {f.description}" for f in phase.files)
            sections.append(f"**Phase {i}: {phase.name}**\n{files}")
        return f"**Build Plan: {plan.plugin_name}**\n\n{plan.description}\n\n" + "\n\n".join(sections)

    async def _await_approval(self) -> None:
        """Suspend until the plan is approved.  Edits re-suspend."""
        while True:
            token = self.approval_gate.suspend("plan-approval")
            self._check_cancelled()
            decision = await token.wait()
            self._check_cancelled()
            action = (decision or {}).get("action")
            instructions = ((decision or {}).get("instructions") or "").strip()
            if action == "cancel":
                raise BuildCancelledError("Plan was cancelled by user.")
            if action == "edit" and instructions:
                await self._revise(instructions)
                continue
            return

    async def _revise(self, instructions: str) -> None:
        await self._think("Revising plan...")
        try:
            result = await self._request_plan(
                revision_request(self.user_request, instructions),
                "Revise the build plan with these modifications.",
            )
        except BuildCancelledError:
            raise
        except ForgeError as exc:
            logger.warning("Build %s: plan revision failed, keeping previous plan: %s", self.build_id, exc)
            result = None

        if isinstance(result, BuildPlan):
            await self._propose(result)
            return
        await self._checkpoint(status=BuildStatus.AWAITING_APPROVAL, thinking_message=None)
        self._emit("plan-ready", plan=self.plan.to_record())

    # ── phased execution ──────────────────────────────────────────────

    async def _execute_phases(self) -> None:
        for pi, phase in enumerate(self.plan.phases):
            self._check_cancelled()
            state = self.phases[pi]
            if state.status == PhaseStatus.COMPLETE:
                continue

            self._advance_phase(state, PhaseStatus.ACTIVE)
            await self._checkpoint(status=BuildStatus.BUILDING, current_phase_index=pi)
            self._emit("phase-start", phaseIndex=pi)

            await self._read_dependencies(pi, phase)
            await self._generate_files(pi, phase)
            await self._review_phase(pi, phase)

            self._advance_phase(state, PhaseStatus.COMPLETE)
            await self._checkpoint(status=BuildStatus.BUILDING, thinking_message=None)
            self._emit("phase-complete", phaseIndex=pi)

        await self._summarize()

    async def _read_dependencies(self, pi: int, phase: Phase) -> None:
        """Read and summarize existing files the phase depends on.  Never fatal."""
        state = self.phases[pi]
        # Reads from an earlier run of this phase are redone.
        del state.files[len(phase.files):]
        if not self.memory:
            return

        current: FileState | None = None
        try:
            await self._think("Analyzing dependencies...")
            prompt = build_dependency_read_prompt(
                phase.name,
                phase.description,
                [(f.path, f.description) for f in phase.files],
                self.memory.paths(),
            )
            raw = await self.caller.call(prompt, "Which files should I read?", label="the dependency list")
            for path in parse_path_list(raw):
                self._check_cancelled()
                content = self.memory.get(path)
                if not content:
                    continue
                current = FileState(
                    path=path, name=_basename(path),
                    description="Reading for context", status=FileStatus.READING,
                )
                state.files.append(current)
                fi = len(state.files) - 1
                await self._checkpoint(thinking_message=f"Reading {current.name}...")
                self._emit("dynamic-file", phaseIndex=pi, file=current.model_dump())
                self._emit("file-reading", phaseIndex=pi, fileIndex=fi)

                analysis = await self.caller.call(
                    build_file_read_prompt(path, content, self.user_request, self.framework),
                    f"Analyze {path}",
                    label=f"the analysis of {path}",
                )
                self.context_summaries[path] = summarize_file_analysis(analysis)
                current.status = FileStatus.READ
                await self._checkpoint(thinking_message=None)
                self._emit("file-read", phaseIndex=pi, fileIndex=fi, path=path)
                current = None
        except (GenerationError, PlanParseError) as exc:
            logger.warning("Build %s: dependency read skipped: %s", self.build_id, exc)
            if current is not None:
                current.status = FileStatus.ERROR
                current.error = sanitize_error_message(str(exc), settings.ERROR_MESSAGE_MAX_CHARS)
            await self._checkpoint(thinking_message=None)

    async def _generate_files(self, pi: int, phase: Phase) -> None:
        state = self.phases[pi]
        fi = 0
        while fi < len(phase.files):
            self._check_cancelled()
            fs = state.files[fi]
            if fs.status in DONE_FILE_STATUSES:
                fi += 1
                continue

            planned = phase.files[fi]
            fs.status = FileStatus.GENERATING
            fs.error = None
            await self._checkpoint(current_file_index=fi, thinking_message=f"Generating {planned.name}...")
            self._emit("file-generating", phaseIndex=pi, fileIndex=fi)

            try:
                context = self.memory.build_context(
                    [f.path for f in phase.files[:fi]],
                    summaries=self.context_summaries,
                    budget=settings.CONTEXT_CHAR_BUDGET,
                )
                prompt = build_file_generation_prompt(
                    planned.path, planned.description, phase.name,
                    context, self.framework, self._package,
                )
                content = await self.caller.call(prompt, f"Generate {planned.path}", label=planned.path)
                await self._commit_write(planned.path, planned.name, content)
            except (GenerationError, FileStoreError) as exc:
                if await self._file_failed(pi, fi, exc) == "retry":
                    continue
                fi += 1
                continue

            fs.status = FileStatus.CREATED
            await self._checkpoint(thinking_message=None)
            self._emit("file-created", phaseIndex=pi, fileIndex=fi, path=planned.path)
            fi += 1

    async def _commit_write(self, path: str, name: str, raw: str) -> None:
        """Write generated output unless the build was cancelled meanwhile."""
        self._check_cancelled()
        content = clean_file_content(raw)
        if not content:
            raise GenerationError(f"Model returned empty content for {path}", kind="malformed")
        await self.file_store.write(path, name, content)

    async def _file_failed(self, pi: int, fi: int, exc: Exception) -> str:
        """Mark a file failed and suspend for a retry/cancel decision.

        Returns ``"retry"`` or ``"skip"``; ``cancel`` raises.
        """
        fs = self.phases[pi].files[fi]
        message = sanitize_error_message(str(exc), settings.ERROR_MESSAGE_MAX_CHARS)
        logger.warning("Build %s: %s failed: %s", self.build_id, fs.path, message)
        fs.status = FileStatus.ERROR
        fs.error = message
        self.pending_file_error = {"file_path": fs.path, "error": message}
        token = self.file_error_gate.suspend("file-error", self.pending_file_error)
        await self._checkpoint(thinking_message=None)
        self._emit("file-error", phaseIndex=pi, fileIndex=fi, error=message)

        self._check_cancelled()
        decision = await token.wait(settings.FILE_ERROR_DECISION_TIMEOUT_SECONDS, default="skip")
        self.file_error_gate.clear(token)
        self.pending_file_error = None
        if decision == "cancel" or self.cancelled:
            raise BuildCancelledError()
        return "retry" if decision == "retry" else "skip"

    # ── review ────────────────────────────────────────────────────────

    async def _review_phase(self, pi: int, phase: Phase) -> None:
        """Ask for a review and apply fixes anywhere in the plan.  Advisory."""
        self._check_cancelled()
        self._advance_phase(self.phases[pi], PhaseStatus.REVIEWING)
        await self._checkpoint(status=BuildStatus.REVIEWING, thinking_message="Reviewing phase...")
        self._emit("phase-reviewing", phaseIndex=pi)

        phase_files = {f.path: self.memory.get(f.path) for f in phase.files if f.path in self.memory}
        if not phase_files:
            return
        try:
            raw = await self.caller.call(
                build_review_prompt(phase_files, self.framework, self.memory.items()),
                "Review these files.",
                label="the phase review",
            )
            review = parse_review(raw)
        except (GenerationError, PlanParseError) as exc:
            logger.warning("Build %s: review of phase %d skipped: %s", self.build_id, pi, exc)
            return
        if review.passed:
            return

        for fix in review.fixes:
            self._check_cancelled()
            location = self._locate(fix.path, pi)
            if location is None:
                logger.info("Build %s: review fix for unknown file %s ignored", self.build_id, fix.path)
                continue
            await self._apply_fix(*location, fix.reason, phase.name)

    def _locate(self, path: str, pi: int) -> tuple[int, int] | None:
        """Find *path* in the plan: current phase first, then plan order."""
        order = [pi] + [i for i in range(len(self.plan.phases)) if i != pi]
        for i in order:
            for j, f in enumerate(self.plan.phases[i].files):
                if f.path == path:
                    return i, j
        return None

    async def _apply_fix(self, pi: int, fi: int, reason: str, phase_name: str) -> None:
        planned = self.plan.phases[pi].files[fi]
        fs = self.phases[pi].files[fi]
        fs.status = FileStatus.UPDATING
        await self._checkpoint(thinking_message=f"Updating {planned.name}...")
        self._emit("file-updating", phaseIndex=pi, fileIndex=fi)

        try:
            existing = self.memory.get(planned.path)
            if existing:
                prompt = build_patch_prompt(planned.path, existing, reason, self.framework, self._package)
            else:
                context = self.memory.build_context(budget=settings.CONTEXT_CHAR_BUDGET)
                prompt = build_file_generation_prompt(
                    planned.path, f"{planned.description}. FIX REQUIRED: {reason}",
                    phase_name, context, self.framework, self._package,
                )
            content = await self.caller.call(prompt, f"Fix {planned.path}: {reason}", label=planned.path)
            await self._commit_write(planned.path, planned.name, content)
        except (GenerationError, FileStoreError) as exc:
            fs.status = FileStatus.ERROR
            fs.error = sanitize_error_message(str(exc) or "Fix failed", settings.ERROR_MESSAGE_MAX_CHARS)
            await self._checkpoint(thinking_message=None)
            self._emit("file-error", phaseIndex=pi, fileIndex=fi, error=fs.error)
            return

        fs.status = FileStatus.UPDATED
        fs.error = None
        await self._checkpoint(thinking_message=None)
        self._emit("file-updated", phaseIndex=pi, fileIndex=fi, path=planned.path)

    # ── summary ───────────────────────────────────────────────────────

    async def _summarize(self) -> None:
        self._check_cancelled()
        await self._think("Generating build summary...")
        paths = [f.path for p in self.plan.phases for f in p.files]
        summary = await self.caller.call(
            build_summary_prompt(self.plan.plugin_name, self.plan.description, paths, self.framework),
            "Generate the build completion summary.",
            label="the build summary",
        )
        summary = summary.strip()
        await self._save_message(summary)
        await self._checkpoint(status=BuildStatus.COMPLETE, summary=summary, thinking_message=None)
        self._emit("build-complete", summary=summary)

    # ── agentic quick-change ──────────────────────────────────────────

    async def _start_quick_change(self, request: QuickChangeRequest) -> None:
        description = request.description or "Applying changes"
        self.plan = BuildPlan(
            plugin_name="Quick Change",
            description=description,
            phases=[Phase(name="Quick Change", description=description)],
            kind=PlanKind.QUICK_CHANGE,
        )
        self.phases = phase_states_for(self.plan)
        self._advance_phase(self.phases[0], PhaseStatus.ACTIVE)
        await self._checkpoint(
            status=BuildStatus.BUILDING, plan_approved=True, thinking_message="Applying changes...",
        )
        self._emit(
            "quick-change-start",
            description=description,
            files=[f.model_dump() for f in request.files],
        )
        await self._agentic_loop()

    async def _agentic_loop(self) -> None:
        state = self.phases[0]
        self._advance_phase(state, PhaseStatus.ACTIVE)
        summaries: list[tuple[str, str]] = []
        actions = [
            {"action": _REPLAYED_ACTIONS[f.status], "path": f.path, "reason": f.description}
            for f in state.files if f.status in _REPLAYED_ACTIONS
        ]

        for _ in range(settings.AGENTIC_MAX_STEPS):
            self._check_cancelled()
            await self._think("Deciding next action...")
            raw = await self.caller.call(
                build_agentic_step_prompt(self.user_request, self.memory.paths(), summaries, actions),
                "Decide the next action.",
                label="the next action",
            )
            try:
                action = parse_agent_action(raw)
            except PlanParseError as exc:
                logger.warning("Build %s: unusable agent step, finishing: %s", self.build_id, exc)
                break
            if action.action == "done":
                await self._finish_quick_change(action.summary or self.plan.description, actions)
                return
            actions.append(await self._run_agent_action(action, summaries))

        await self._finish_quick_change(self.plan.description, actions)

    async def _run_agent_action(self, action: AgentAction, summaries: list[tuple[str, str]]) -> dict:
        busy_status, busy_event, verb = _AGENT_STEPS[action.action]
        state = self.phases[0]
        record = {"action": action.action, "path": action.path, "reason": action.reason}
        fs = FileState(
            path=action.path, name=_basename(action.path),
            description=action.reason, status=busy_status,
        )
        state.files.append(fs)
        fi = len(state.files) - 1
        await self._checkpoint()
        self._emit("dynamic-file", phaseIndex=0, file=fs.model_dump())

        while True:
            fs.status = busy_status
            fs.error = None
            await self._checkpoint(thinking_message=f"{verb} {fs.name}...")
            self._emit(busy_event, phaseIndex=0, fileIndex=fi)
            try:
                done_status = await self._perform(action, fs, summaries)
            except (GenerationError, FileStoreError) as exc:
                if await self._file_failed(0, fi, exc) == "retry":
                    continue
                record["reason"] = f"{action.reason} (failed: {fs.error})"
                return record
            break

        if done_status == FileStatus.ERROR:
            fs.status = FileStatus.ERROR
            fs.error = "File not found for update"
            await self._checkpoint(thinking_message=None)
            self._emit("file-error", phaseIndex=0, fileIndex=fi, error=fs.error)
            record["reason"] = f"{action.reason} (failed: file not found)"
            return record

        fs.status = done_status
        await self._checkpoint(thinking_message=None)
        self._emit(_DONE_EVENTS[done_status], phaseIndex=0, fileIndex=fi, path=fs.path)
        return record

    async def _perform(self, action: AgentAction, fs: FileState, summaries: list[tuple[str, str]]) -> str:
        """Carry out one agent action; returns the resulting file status."""
        path = action.path
        if action.action == "read":
            content = self.memory.get(path)
            if content is None:
                summaries.append((path, "File does not exist."))
                return FileStatus.READ
            analysis = await self.caller.call(
                build_file_read_prompt(path, content, self.user_request, self.framework),
                f"Analyze {path}",
                label=f"the analysis of {path}",
            )
            summaries.append((path, summarize_file_analysis(analysis)))
            return FileStatus.READ

        if action.action == "update":
            existing = self.memory.get(path)
            if existing is None:
                return FileStatus.ERROR
            prompt = build_patch_prompt(
                path, existing, f"{self.user_request}: specifically: {action.reason}",
                self.framework, self._package,
            )
            content = await self.caller.call(prompt, f"Apply this change: {action.reason}", label=path)
            await self._commit_write(path, fs.name, content)
            return FileStatus.UPDATED

        if action.action == "create":
            context = self.memory.build_context(budget=settings.CONTEXT_CHAR_BUDGET)
            prompt = build_file_generation_prompt(
                path, action.reason, "Quick Change", context, self.framework, self._package,
            )
            content = await self.caller.call(prompt, f"Generate {path}", label=path)
            await self._commit_write(path, fs.name, content)
            return FileStatus.CREATED

        self._check_cancelled()
        await self.file_store.delete(path)
        return FileStatus.DELETED

    async def _finish_quick_change(self, summary_text: str, actions: list[dict]) -> None:
        changes = "\n".join(
            f"- `{a['path']}`: {a['reason']}" for a in actions if a["action"] != "read"
        )
        summary = f"**Quick Change Applied**\n\n{summary_text or 'Changes applied'}\n\n{changes}".rstrip()
        await self._save_message(summary)
        self._advance_phase(self.phases[0], PhaseStatus.COMPLETE)
        await self._checkpoint(status=BuildStatus.COMPLETE, summary=summary, thinking_message=None)
        self._emit("build-complete", summary=summary)
