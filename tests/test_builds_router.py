"""Tests for app/api/routers/builds.py -- build endpoints."""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.auth import create_token
from app.errors import BuildConflictError, NotFoundError
from app.main import create_app

_USER_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"
_SESSION_ID = uuid.uuid4()
_BUILD_ID = uuid.uuid4()


def _build(**overrides):
    defaults = {
        "id": _BUILD_ID,
        "session_id": _SESSION_ID,
        "user_id": uuid.UUID(_USER_ID),
        "status": "planning",
        "user_request": "Make a homes plugin",
        "plan": None,
        "phases": [],
        "file_memory": {"a.java": "class A {}"},
        "created_at": datetime.now(timezone.utc),
    }
    defaults.update(overrides)
    return defaults


@pytest.fixture
def client():
    return TestClient(create_app())


def _auth_header(user_id: str = _USER_ID):
    return {"Authorization": f"Bearer {create_token(user_id)}"}


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


def test_requires_token(client):
    resp = client.get(f"/sessions/{_SESSION_ID}/builds/current")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Missing authentication token"


def test_rejects_bad_token(client):
    resp = client.get(
        f"/sessions/{_SESSION_ID}/builds/current",
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert resp.status_code == 401


# ---------------------------------------------------------------------------
# POST /sessions/{id}/builds
# ---------------------------------------------------------------------------


@patch("app.api.routers.builds.build_service.start_build", new_callable=AsyncMock)
def test_start_build(mock_start, client):
    mock_start.return_value = _build()

    resp = client.post(
        f"/sessions/{_SESSION_ID}/builds",
        json={"user_request": "Make a homes plugin", "model_id": "gpt-4o"},
        headers=_auth_header(),
    )

    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "planning"
    assert "file_memory" not in data
    args, kwargs = mock_start.call_args
    assert args[0] == _SESSION_ID
    assert args[1] == uuid.UUID(_USER_ID)
    assert args[2] == "Make a homes plugin"
    assert kwargs["model_id"] == "gpt-4o"


def test_start_build_empty_request_is_422(client):
    resp = client.post(f"/sessions/{_SESSION_ID}/builds", json={"user_request": ""}, headers=_auth_header())
    assert resp.status_code == 422
    assert resp.json()["error"] == "Validation failed"


@patch("app.api.routers.builds.build_service.start_build", new_callable=AsyncMock)
def test_start_build_conflict_is_409(mock_start, client):
    mock_start.side_effect = BuildConflictError()
    resp = client.post(f"/sessions/{_SESSION_ID}/builds", json={"user_request": "x"}, headers=_auth_header())
    assert resp.status_code == 409
    assert resp.json()["detail"] == "A build is already in progress for this session"


@patch("app.api.routers.builds.build_service.start_build", new_callable=AsyncMock)
def test_start_build_rate_limited(mock_start, client, monkeypatch):
    monkeypatch.setattr("app.api.routers.builds.build_limiter._max", 1)
    mock_start.return_value = _build()
    first = client.post(f"/sessions/{_SESSION_ID}/builds", json={"user_request": "x"}, headers=_auth_header())
    second = client.post(f"/sessions/{_SESSION_ID}/builds", json={"user_request": "x"}, headers=_auth_header())
    assert first.status_code == 201
    assert second.status_code == 429


# ---------------------------------------------------------------------------
# GET /sessions/{id}/builds/current
# ---------------------------------------------------------------------------


@patch("app.api.routers.builds.build_service.get_current_build", new_callable=AsyncMock)
def test_current_build(mock_current, client):
    mock_current.return_value = _build(status="complete")
    resp = client.get(f"/sessions/{_SESSION_ID}/builds/current", headers=_auth_header())
    assert resp.status_code == 200
    assert resp.json()["build"]["status"] == "complete"
    assert "file_memory" not in resp.json()["build"]


@patch("app.api.routers.builds.build_service.get_current_build", new_callable=AsyncMock)
def test_current_build_none(mock_current, client):
    mock_current.return_value = None
    resp = client.get(f"/sessions/{_SESSION_ID}/builds/current", headers=_auth_header())
    assert resp.json() == {"build": None}


@patch("app.api.routers.builds.build_service.get_current_build", new_callable=AsyncMock)
def test_current_build_unknown_session_is_404(mock_current, client):
    mock_current.side_effect = NotFoundError("Session not found")
    resp = client.get(f"/sessions/{_SESSION_ID}/builds/current", headers=_auth_header())
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Session not found"


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


@patch("app.api.routers.builds.build_service.decide_plan", new_callable=AsyncMock)
def test_plan_decision_edit(mock_decide, client):
    mock_decide.return_value = {"build_id": str(_BUILD_ID), "action": "edit", "live": True}
    resp = client.post(
        f"/builds/{_BUILD_ID}/plan-decision",
        json={"action": "edit", "edit_instructions": "add a limit"},
        headers=_auth_header(),
    )
    assert resp.status_code == 200
    args = mock_decide.call_args.args
    assert args[2:] == ("edit", "add a limit")


def test_plan_decision_rejects_unknown_action(client):
    resp = client.post(f"/builds/{_BUILD_ID}/plan-decision", json={"action": "maybe"}, headers=_auth_header())
    assert resp.status_code == 422


@patch("app.api.routers.builds.build_service.decide_file_error", new_callable=AsyncMock)
def test_file_error_decision(mock_decide, client):
    mock_decide.return_value = {"build_id": str(_BUILD_ID), "decision": "retry", "resolved": True}
    resp = client.post(
        f"/builds/{_BUILD_ID}/file-error-decision", json={"decision": "retry"}, headers=_auth_header(),
    )
    assert resp.status_code == 200
    assert resp.json()["resolved"] is True


def test_file_error_decision_rejects_skip(client):
    resp = client.post(
        f"/builds/{_BUILD_ID}/file-error-decision", json={"decision": "skip"}, headers=_auth_header(),
    )
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Cancel / resume / snapshot
# ---------------------------------------------------------------------------


@patch("app.api.routers.builds.build_service.cancel_build", new_callable=AsyncMock)
def test_cancel_build(mock_cancel, client):
    mock_cancel.return_value = _build(status="cancelled")
    resp = client.post(f"/builds/{_BUILD_ID}/cancel", headers=_auth_header())
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert "file_memory" not in resp.json()


@patch("app.api.routers.builds.build_service.resume_build", new_callable=AsyncMock)
def test_resume_build(mock_resume, client):
    mock_resume.return_value = {"build_id": str(_BUILD_ID), "status": "error"}
    resp = client.post(f"/builds/{_BUILD_ID}/resume", headers=_auth_header())
    assert resp.status_code == 200
    assert resp.json()["build_id"] == str(_BUILD_ID)


@patch("app.api.routers.builds.build_service.resume_build", new_callable=AsyncMock)
def test_resume_build_conflict(mock_resume, client):
    mock_resume.side_effect = BuildConflictError("Cannot resume build: status is 'complete'")
    resp = client.post(f"/builds/{_BUILD_ID}/resume", headers=_auth_header())
    assert resp.status_code == 409


@patch("app.api.routers.builds.build_service.get_snapshot", new_callable=AsyncMock)
def test_snapshot(mock_snapshot, client):
    mock_snapshot.return_value = {"build_id": str(_BUILD_ID), "status": "building", "pending_file_error": None}
    resp = client.get(f"/builds/{_BUILD_ID}/snapshot", headers=_auth_header())
    assert resp.status_code == 200
    assert resp.json()["status"] == "building"


def test_invalid_build_id_is_422(client):
    resp = client.get("/builds/not-a-uuid/snapshot", headers=_auth_header())
    assert resp.status_code == 422
