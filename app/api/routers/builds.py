"""Builds router -- start, inspect and steer builds."""

from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.api.deps import get_current_user, get_runner_registry
from app.api.rate_limit import build_limiter
from app.services import build_service
from app.services.build.registry import RunnerRegistry

router = APIRouter(tags=["builds"])


class StartBuildRequest(BaseModel):
    """Request body for starting a build."""
    user_request: str = Field(..., min_length=1, max_length=20_000)
    model_id: str | None = None


class PlanDecisionRequest(BaseModel):
    """Request body for a plan approval decision."""
    action: Literal["approve", "edit", "cancel"]
    edit_instructions: str | None = Field(default=None, max_length=5000)


class FileErrorDecisionRequest(BaseModel):
    """Request body for a failed-file decision."""
    decision: Literal["retry", "cancel"]


def _public(build: dict | None) -> dict | None:
    """Drop the serialized file memory; clients read files elsewhere."""
    if build is None:
        return None
    return {k: v for k, v in build.items() if k != "file_memory"}


# ── POST /sessions/{session_id}/builds ───────────────────────────────────


@router.post("/sessions/{session_id}/builds", status_code=201)
async def start_build(
    session_id: UUID,
    body: StartBuildRequest,
    user: dict = Depends(get_current_user),
    registry: RunnerRegistry = Depends(get_runner_registry),
):
    """Start a build for a chat session."""
    if not build_limiter.is_allowed(str(user["id"])):
        raise HTTPException(status_code=429, detail="Build rate limit exceeded")
    build = await build_service.start_build(
        session_id,
        user["id"],
        body.user_request,
        model_id=body.model_id,
        registry=registry,
    )
    return _public(build)


# ── GET /sessions/{session_id}/builds/current ────────────────────────────


@router.get("/sessions/{session_id}/builds/current")
async def get_current_build(
    session_id: UUID,
    user: dict = Depends(get_current_user),
):
    """The active (or most recent) build of a session, or null."""
    build = await build_service.get_current_build(session_id, user["id"])
    return {"build": _public(build)}


# ── POST /builds/{build_id}/plan-decision ────────────────────────────────


@router.post("/builds/{build_id}/plan-decision")
async def plan_decision(
    build_id: UUID,
    body: PlanDecisionRequest,
    user: dict = Depends(get_current_user),
    registry: RunnerRegistry = Depends(get_runner_registry),
):
    """Approve, edit or cancel the plan of a build awaiting approval."""
    return await build_service.decide_plan(
        build_id,
        user["id"],
        body.action,
        body.edit_instructions,
        registry=registry,
    )


# ── POST /builds/{build_id}/cancel ───────────────────────────────────────


@router.post("/builds/{build_id}/cancel")
async def cancel_build(
    build_id: UUID,
    user: dict = Depends(get_current_user),
    registry: RunnerRegistry = Depends(get_runner_registry),
):
    """Cancel an active build."""
    build = await build_service.cancel_build(build_id, user["id"], registry=registry)
    return _public(build)


# ── POST /builds/{build_id}/resume ───────────────────────────────────────


@router.post("/builds/{build_id}/resume")
async def resume_build(
    build_id: UUID,
    user: dict = Depends(get_current_user),
    registry: RunnerRegistry = Depends(get_runner_registry),
):
    """Resume a build that ended in error or was cancelled."""
    return await build_service.resume_build(build_id, user["id"], registry=registry)


# ── POST /builds/{build_id}/file-error-decision ──────────────────────────


@router.post("/builds/{build_id}/file-error-decision")
async def file_error_decision(
    build_id: UUID,
    body: FileErrorDecisionRequest,
    user: dict = Depends(get_current_user),
    registry: RunnerRegistry = Depends(get_runner_registry),
):
    """Retry or cancel after a file failed to generate."""
    return await build_service.decide_file_error(
        build_id, user["id"], body.decision, registry=registry,
    )


# ── GET /builds/{build_id}/snapshot ──────────────────────────────────────


@router.get("/builds/{build_id}/snapshot")
async def get_snapshot(
    build_id: UUID,
    user: dict = Depends(get_current_user),
    registry: RunnerRegistry = Depends(get_runner_registry),
):
    """Full current state of a build."""
    return await build_service.get_snapshot(build_id, user["id"], registry=registry)
