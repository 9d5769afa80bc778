"""Build service -- the operations the HTTP and WebSocket layers call.

Validates ownership and build state, creates build records, and spawns a
:class:`~app.services.build.runner.BuildRunner` per build as a background
asyncio task.  Live runners are reached through the
:class:`~app.services.build.registry.RunnerRegistry`; when none exists
(the run finished, or the process restarted) the durable record is used
instead.

No SQL, no HTTP framework.
"""

import asyncio
import logging
from uuid import UUID

import asyncpg

from app.config import settings
from app.errors import BadRequestError, BuildConflictError, NotFoundError
from app.repos import build_repo, session_repo
from app.services.build.events import Subscription
from app.services.build.models import (
    ACTIVE_BUILD_STATUSES,
    RESUMABLE_BUILD_STATUSES,
    BuildStatus,
)
from app.services.build.registry import RunnerRegistry, get_registry
from app.services.build.runner import BuildRunner, snapshot_from_record

logger = logging.getLogger(__name__)

PLAN_ACTIONS = ("approve", "edit", "cancel")
FILE_ERROR_DECISIONS = ("retry", "cancel")

# Background tasks keyed by build id (keeps references alive).
_active_tasks: dict[str, asyncio.Task] = {}


def _spawn(runner: BuildRunner, coro) -> asyncio.Task:
    bid = str(runner.build_id)
    task = asyncio.create_task(coro, name=f"build-{bid}")
    _active_tasks[bid] = task

    def _done(t: asyncio.Task) -> None:
        if _active_tasks.get(bid) is t:
            _active_tasks.pop(bid, None)

    task.add_done_callback(_done)
    return task


async def shutdown() -> None:
    """Cancel every running build task.  Called during app shutdown."""
    tasks = list(_active_tasks.values())
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    _active_tasks.clear()


async def _owned_session(session_id: UUID, user_id: UUID) -> dict:
    session = await session_repo.get_session_for_user(session_id, user_id)
    if not session:
        raise NotFoundError("Session not found")
    return session


async def _owned_build(build_id: UUID, user_id: UUID) -> dict:
    build = await build_repo.get_build_by_id(build_id)
    if not build or str(build["user_id"]) != str(user_id):
        raise NotFoundError("Build not found")
    return build


# ---------------------------------------------------------------------------
# Start / current
# ---------------------------------------------------------------------------


async def start_build(
    session_id: UUID,
    user_id: UUID,
    user_request: str,
    *,
    model_id: str | None = None,
    registry: RunnerRegistry | None = None,
) -> dict:
    """Create a build in ``planning`` and run it in the background.

    Raises:
        BadRequestError: The request text is empty.
        NotFoundError: The session does not exist or is not owned.
        BuildConflictError: The session already has an active build.
    """
    registry = registry or get_registry()
    user_request = (user_request or "").strip()
    if not user_request:
        raise BadRequestError("Build request must not be empty")

    session = await _owned_session(session_id, user_id)
    if await build_repo.get_active_build_for_session(session_id):
        raise BuildConflictError()

    try:
        build = await build_repo.create_build(
            session_id,
            user_id,
            user_request,
            model_id=model_id,
            framework=session.get("framework") or settings.DEFAULT_FRAMEWORK,
        )
    except asyncpg.UniqueViolationError as exc:
        # Lost a race with a concurrent start for the same session.
        raise BuildConflictError() from exc

    runner = BuildRunner(build, registry)
    registry.register(runner)
    _spawn(runner, runner.start())
    logger.info("Build %s started for session %s", build["id"], session_id)
    return build


async def get_current_build(session_id: UUID, user_id: UUID) -> dict | None:
    """The session's active build, else its most recent one, else None."""
    await _owned_session(session_id, user_id)
    build = await build_repo.get_active_build_for_session(session_id)
    if build is None:
        build = await build_repo.get_latest_build_for_session(session_id)
    return build


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


async def decide_plan(
    build_id: UUID,
    user_id: UUID,
    action: str,
    instructions: str | None = None,
    *,
    registry: RunnerRegistry | None = None,
) -> dict:
    """Approve, edit or cancel a plan awaiting approval.

    With a live runner the decision resumes it.  Without one (the process
    restarted while waiting) ``cancel`` marks the record cancelled and
    ``approve`` starts a resumed runner; ``edit`` needs the live runner.
    """
    registry = registry or get_registry()
    if action not in PLAN_ACTIONS:
        raise BadRequestError(f"Invalid action: {action}. Must be one of: {', '.join(PLAN_ACTIONS)}")

    build = await _owned_build(build_id, user_id)
    if build["status"] != BuildStatus.AWAITING_APPROVAL:
        raise BuildConflictError(f"Build is not awaiting plan approval (status: {build['status']})")

    runner = registry.lookup(build_id)
    if runner is not None:
        if not runner.resolve_approval(action, instructions):
            raise BuildConflictError("The plan is being revised; wait for the new plan")
        return {"build_id": str(build_id), "action": action, "live": True}

    if action == "cancel":
        await build_repo.update_build(build_id, status=BuildStatus.CANCELLED, thinking_message=None)
    elif action == "approve":
        if not build.get("plan"):
            raise BadRequestError("Build has no plan to approve")
        runner = BuildRunner({**build, "plan_approved": True}, registry)
        registry.register(runner)
        _spawn(runner, runner.resume())
    else:
        raise BuildConflictError("This build is no longer live; approve or cancel the plan instead")
    return {"build_id": str(build_id), "action": action, "live": False}


async def cancel_build(
    build_id: UUID,
    user_id: UUID,
    *,
    registry: RunnerRegistry | None = None,
) -> dict:
    """Signal the live runner (if any) and mark the record cancelled."""
    registry = registry or get_registry()
    build = await _owned_build(build_id, user_id)
    if build["status"] not in ACTIVE_BUILD_STATUSES:
        raise BuildConflictError("No active build to cancel")

    runner = registry.lookup(build_id)
    if runner is not None:
        runner.cancel()
    await build_repo.update_build(build_id, status=BuildStatus.CANCELLED, thinking_message=None)
    logger.info("Build %s cancelled by user", build_id)
    return await build_repo.get_build_by_id(build_id)


async def resume_build(
    build_id: UUID,
    user_id: UUID,
    *,
    registry: RunnerRegistry | None = None,
) -> dict:
    """Start a fresh runner for an ``error``/``cancelled`` build.

    A plan that was never approved goes back to ``awaiting-approval``
    instead of being built.

    Raises:
        BuildConflictError: Wrong status, still live, or the session has
            another active build.
        BadRequestError: The build never got a plan.
    """
    registry = registry or get_registry()
    build = await _owned_build(build_id, user_id)
    if build["status"] not in RESUMABLE_BUILD_STATUSES:
        raise BuildConflictError(f"Cannot resume build: status is '{build['status']}'")
    if not build.get("plan"):
        raise BadRequestError("Build has no plan to resume from")
    if registry.lookup(build_id) is not None:
        raise BuildConflictError("Build is still shutting down; try again shortly")
    active = await build_repo.get_active_build_for_session(build["session_id"])
    if active and str(active["id"]) != str(build_id):
        raise BuildConflictError()

    runner = BuildRunner(build, registry)
    registry.register(runner)
    _spawn(runner, runner.resume())
    logger.info("Build %s resumed", build_id)
    return runner.snapshot()


async def decide_file_error(
    build_id: UUID,
    user_id: UUID,
    decision: str,
    *,
    registry: RunnerRegistry | None = None,
) -> dict:
    """Resolve a pending file-error decision.  A no-op if none is pending."""
    registry = registry or get_registry()
    if decision not in FILE_ERROR_DECISIONS:
        raise BadRequestError(
            f"Invalid decision: {decision}. Must be one of: {', '.join(FILE_ERROR_DECISIONS)}"
        )
    await _owned_build(build_id, user_id)
    runner = registry.lookup(build_id)
    resolved = runner.resolve_file_error(decision) if runner is not None else False
    return {"build_id": str(build_id), "decision": decision, "resolved": resolved}


# ---------------------------------------------------------------------------
# Observation
# ---------------------------------------------------------------------------


async def get_snapshot(
    build_id: UUID,
    user_id: UUID,
    *,
    registry: RunnerRegistry | None = None,
) -> dict:
    registry = registry or get_registry()
    build = await _owned_build(build_id, user_id)
    runner = registry.lookup(build_id)
    if runner is not None:
        return runner.snapshot()
    return snapshot_from_record(build)


async def subscribe(
    build_id: UUID,
    user_id: UUID,
    *,
    registry: RunnerRegistry | None = None,
) -> Subscription:
    """Subscribe to a build's events; the first event is a snapshot.

    Builds without a live runner yield their stored snapshot and ``done``.
    """
    registry = registry or get_registry()
    build = await _owned_build(build_id, user_id)
    runner = registry.lookup(build_id)
    if runner is not None:
        return runner.subscribe()
    return Subscription.detached(snapshot_from_record(build))
