"""
Tests for the in-process lock event bus.
"""

from src.core.events import ALL_RESOURCES, LOCK_ACQUIRED, LockEventBus


def test_subscriber_receives_events_for_its_resource():
    bus = LockEventBus()
    received = []
    bus.subscribe("memo:1", received.append)

    assert bus.publish(LOCK_ACQUIRED, "memo:1", {"by": "admin1"}) == 1
    assert bus.publish(LOCK_ACQUIRED, "memo:2", {"by": "admin1"}) == 0

    assert received == [{"type": LOCK_ACQUIRED, "resource_id": "memo:1", "by": "admin1"}]


def test_wildcard_subscriber_sees_everything():
    bus = LockEventBus()
    received = []
    bus.subscribe(ALL_RESOURCES, received.append)

    bus.publish(LOCK_ACQUIRED, "memo:1")
    bus.publish(LOCK_ACQUIRED, "user:7")

    assert [event["resource_id"] for event in received] == ["memo:1", "user:7"]


def test_unsubscribe():
    bus = LockEventBus()
    received = []
    unsubscribe = bus.subscribe("memo:1", received.append)
    unsubscribe()

    bus.publish(LOCK_ACQUIRED, "memo:1")
    assert received == []
    assert bus.subscriber_count("memo:1") == 0


def test_failing_subscriber_does_not_block_others():
    bus = LockEventBus()
    received = []

    def broken(event):
        raise RuntimeError("socket closed")

    bus.subscribe("memo:1", broken)
    bus.subscribe("memo:1", received.append)

    assert bus.publish(LOCK_ACQUIRED, "memo:1") == 1
    assert len(received) == 1
