"""Change broadcasting and the bounded recent-change log.

Watch consumers (controllers, UI badges, reloaders) subscribe to a
:class:`ChangeBroadcaster` without coupling to the watcher or to each other.
"""

from __future__ import annotations

import itertools
import logging
from collections import deque
from typing import TYPE_CHECKING, TypeAlias

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from vaultsync.vault.models import ExternalChangeEvent

logger = logging.getLogger(__name__)

ChangeCallback: TypeAlias = "Callable[[ExternalChangeEvent], None]"
Unsubscribe: TypeAlias = "Callable[[], None]"

DEFAULT_RECENT_LIMIT = 10


class ChangeBroadcaster:
    """Publish/subscribe fan-out for external change events.

    Every subscriber gets its own handle, so the same callable may be
    registered twice and removed independently. Subscriber errors are
    logged and do not propagate.
    """

    def __init__(self) -> None:
        self._subscribers: dict[int, ChangeCallback] = {}
        self._handles = itertools.count()

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        """Register *callback*; returns a function that removes only this registration."""
        handle = next(self._handles)
        self._subscribers[handle] = callback
        logger.debug("Subscriber registered: #%d → %s", handle, _name(callback))

        def _unsubscribe() -> None:
            if self._subscribers.pop(handle, None) is not None:
                logger.debug("Subscriber removed: #%d", handle)

        return _unsubscribe

    def publish(self, event: ExternalChangeEvent) -> None:
        """Deliver *event* to every current subscriber."""
        for callback in list(self._subscribers.values()):
            try:
                callback(event)
            except Exception:
                logger.exception("Subscriber %s failed on %s", _name(callback), event.path)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class RecentChangeLog:
    """Newest-first history of change events with fixed capacity.

    Adding past capacity evicts the oldest entry.
    """

    def __init__(self, limit: int = DEFAULT_RECENT_LIMIT) -> None:
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        self._events: deque[ExternalChangeEvent] = deque(maxlen=limit)

    def add(self, event: ExternalChangeEvent) -> None:
        self._events.appendleft(event)

    def clear(self) -> None:
        self._events.clear()

    def snapshot(self) -> list[ExternalChangeEvent]:
        return list(self._events)

    @property
    def limit(self) -> int:
        return self._events.maxlen or DEFAULT_RECENT_LIMIT

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[ExternalChangeEvent]:
        return iter(list(self._events))


def _name(callback: Callable[..., object]) -> str:
    return getattr(callback, "__qualname__", repr(callback))
