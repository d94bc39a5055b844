"""Tests for ChangeBroadcaster and RecentChangeLog."""

from __future__ import annotations

import pytest

from vaultsync.vault.events import ChangeBroadcaster, RecentChangeLog
from vaultsync.vault.models import ChangeKind, ExternalChangeEvent


def _event(path: str) -> ExternalChangeEvent:
    return ExternalChangeEvent(path=path, kind=ChangeKind.MODIFIED)


class TestChangeBroadcaster:
    def test_subscribe_and_publish(self) -> None:
        bus = ChangeBroadcaster()
        received: list[ExternalChangeEvent] = []
        bus.subscribe(received.append)

        bus.publish(_event("a.md"))

        assert [e.path for e in received] == ["a.md"]

    def test_subscriber_error_isolated(self) -> None:
        bus = ChangeBroadcaster()
        good: list[ExternalChangeEvent] = []

        def bad(event: ExternalChangeEvent) -> None:
            raise RuntimeError("boom")

        bus.subscribe(bad)
        bus.subscribe(good.append)
        bus.publish(_event("a.md"))

        assert len(good) == 1

    def test_unsubscribe_only_own_handle(self) -> None:
        bus = ChangeBroadcaster()
        received: list[ExternalChangeEvent] = []
        first = bus.subscribe(received.append)
        bus.subscribe(received.append)

        first()
        bus.publish(_event("a.md"))

        assert len(received) == 1
        assert bus.subscriber_count == 1

    def test_unsubscribe_twice_harmless(self) -> None:
        bus = ChangeBroadcaster()
        unsubscribe = bus.subscribe(lambda event: None)
        unsubscribe()
        unsubscribe()
        assert bus.subscriber_count == 0

    def test_unsubscribe_during_publish(self) -> None:
        bus = ChangeBroadcaster()
        received: list[str] = []
        handles: list = []

        def once(event: ExternalChangeEvent) -> None:
            received.append("once")
            handles[0]()

        handles.append(bus.subscribe(once))
        bus.subscribe(lambda event: received.append("always"))

        bus.publish(_event("a.md"))
        bus.publish(_event("b.md"))

        assert received == ["once", "always", "always"]


class TestRecentChangeLog:
    def test_newest_first(self) -> None:
        log = RecentChangeLog()
        log.add(_event("a.md"))
        log.add(_event("b.md"))
        assert [e.path for e in log.snapshot()] == ["b.md", "a.md"]

    def test_eleven_inserts_keep_last_ten(self) -> None:
        log = RecentChangeLog()
        events = [_event(f"n{i}.md") for i in range(11)]
        for event in events:
            log.add(event)

        assert len(log) == 10
        assert log.snapshot() == list(reversed(events[1:]))

    def test_never_exceeds_limit(self) -> None:
        log = RecentChangeLog(limit=3)
        for i in range(50):
            log.add(_event(f"n{i}.md"))
            assert len(log) <= 3
        assert log.limit == 3

    def test_clear(self) -> None:
        log = RecentChangeLog()
        log.add(_event("a.md"))
        log.clear()
        assert log.snapshot() == []
        assert len(log) == 0

    def test_snapshot_is_copy(self) -> None:
        log = RecentChangeLog()
        log.add(_event("a.md"))
        snapshot = log.snapshot()
        snapshot.clear()
        assert len(log) == 1

    def test_invalid_limit(self) -> None:
        with pytest.raises(ValueError):
            RecentChangeLog(limit=0)

    def test_events_are_immutable(self) -> None:
        event = _event("a.md")
        with pytest.raises(AttributeError):
            event.path = "b.md"  # type: ignore[misc]
