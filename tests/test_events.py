"""Tests for app/services/build/events.py -- per-build event channel."""

import pytest

from app.services.build.events import DONE, SNAPSHOT, BuildEvent, EventChannel, Subscription


def _drain(sub: Subscription) -> list[BuildEvent]:
    events = []
    while not sub._queue.empty():
        events.append(sub._queue.get_nowait())
    return events


def test_event_to_dict_flattens_data():
    assert BuildEvent("file-created", {"phaseIndex": 0, "path": "a"}).to_dict() == {
        "type": "file-created", "phaseIndex": 0, "path": "a",
    }


def test_subscriber_gets_snapshot_then_events_in_order():
    channel = EventChannel("b1")
    sub = channel.subscribe({"status": "building"})
    channel.publish(BuildEvent("phase-start", {"phaseIndex": 0}))
    channel.publish(BuildEvent("file-generating", {"phaseIndex": 0, "fileIndex": 0}))

    events = _drain(sub)
    assert [e.type for e in events] == [SNAPSHOT, "phase-start", "file-generating"]
    assert events[0].data == {"status": "building"}


def test_close_delivers_done_to_all():
    channel = EventChannel("b1")
    a = channel.subscribe({})
    b = channel.subscribe({})
    channel.close()

    assert _drain(a)[-1].type == DONE
    assert _drain(b)[-1].type == DONE
    assert channel.subscriber_count == 0


def test_publish_after_close_is_ignored():
    channel = EventChannel("b1")
    sub = channel.subscribe({})
    channel.close()
    channel.publish(BuildEvent("thinking", {"message": "late"}))
    assert [e.type for e in _drain(sub)] == [SNAPSHOT, DONE]


def test_subscribe_after_close_gets_snapshot_and_done():
    channel = EventChannel("b1")
    channel.close()
    sub = channel.subscribe({"status": "complete"})
    assert [e.type for e in _drain(sub)] == [SNAPSHOT, DONE]


def test_oldest_subscriber_evicted_at_limit():
    channel = EventChannel("b1", max_subscribers=2)
    first = channel.subscribe({})
    channel.subscribe({})
    channel.subscribe({})

    assert channel.subscriber_count == 2
    assert first.finished
    assert _drain(first)[-1].type == DONE


def test_slow_subscriber_is_dropped_without_blocking_others():
    channel = EventChannel("b1", queue_size=3)
    slow = channel.subscribe({})
    fast = channel.subscribe({})
    for i in range(2):
        channel.publish(BuildEvent("thinking", {"i": i}))
    _drain(fast)
    channel.publish(BuildEvent("thinking", {"i": 2}))

    assert slow.finished
    assert channel.subscriber_count == 1
    assert _drain(slow)[-1].type == DONE
    assert [e.data["i"] for e in _drain(fast)] == [2]


def test_close_subscription_unsubscribes():
    channel = EventChannel("b1")
    sub = channel.subscribe({})
    sub.close()
    assert channel.subscriber_count == 0
    sub.close()


@pytest.mark.asyncio
async def test_detached_subscription_iterates_snapshot_then_done():
    sub = Subscription.detached({"status": "error"})
    seen = [e.type async for e in sub]
    assert seen == [SNAPSHOT, DONE]


@pytest.mark.asyncio
async def test_get_awaits_published_event():
    channel = EventChannel("b1")
    sub = channel.subscribe({})
    assert (await sub.get()).type == SNAPSHOT
    channel.publish(BuildEvent("planning"))
    assert (await sub.get()).type == "planning"


def test_unknown_event_type_is_rejected():
    with pytest.raises(ValueError, match="Unknown build event type"):
        BuildEvent("file-exploded")


def test_dropped_subscriber_loses_oldest_event_to_done(caplog):
    channel = EventChannel("b1", queue_size=2)
    slow = channel.subscribe({})
    channel.publish(BuildEvent("planning"))
    with caplog.at_level("WARNING", logger="app.services.build.events"):
        channel.publish(BuildEvent("plan-ready"))

    assert [e.type for e in _drain(slow)] == ["planning", DONE]
    assert "dropped 'snapshot' event to deliver done" in caplog.text
