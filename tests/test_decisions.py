"""Tests for app/services/build/decisions.py -- decision gates."""

import asyncio

import pytest

from app.services.build.decisions import DecisionGate


@pytest.mark.asyncio
async def test_resolve_wakes_waiter():
    gate = DecisionGate("plan-approval")
    token = gate.suspend("plan-approval")
    assert gate.pending is token

    async def decide():
        await asyncio.sleep(0)
        assert gate.resolve({"action": "approve"}) is True

    asyncio.create_task(decide())
    assert await token.wait() == {"action": "approve"}
    assert token.resolved
    assert gate.pending is None


def test_resolve_without_pending_returns_false():
    assert DecisionGate("file-error").resolve("retry") is False


def test_resolve_only_once():
    gate = DecisionGate("file-error")
    gate.suspend("file-error", {"file_path": "a"})
    assert gate.resolve("retry") is True
    assert gate.resolve("cancel") is False


@pytest.mark.asyncio
async def test_wait_timeout_returns_default():
    gate = DecisionGate("file-error")
    token = gate.suspend("file-error")
    assert await token.wait(0.01, default="skip") == "skip"
    gate.clear(token)
    assert gate.pending is None


def test_clear_ignores_stale_token():
    gate = DecisionGate("file-error")
    old = gate.suspend("file-error")
    new = gate.suspend("file-error")
    gate.clear(old)
    assert gate.pending is new


def test_payload_is_kept():
    token = DecisionGate("file-error").suspend("file-error", {"file_path": "a", "error": "x"})
    assert token.payload == {"file_path": "a", "error": "x"}
