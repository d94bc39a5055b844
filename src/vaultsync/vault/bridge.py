"""Native capability bridge — the minimal OS surface the vault core consumes.

The core only depends on the :class:`PlatformBridge` protocol.
:class:`WatchdogBridge` implements it on top of ``watchdog`` for desktop
filesystems. Native payloads are plain mappings::

    {"type": "create" | "modify" | "remove" | "rename", "paths": [...]}
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Protocol, TypeAlias
from urllib.parse import quote

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)

NativePayload: TypeAlias = "Mapping[str, Any]"
NativeCallback: TypeAlias = "Callable[[NativePayload], None]"
Unsubscribe: TypeAlias = "Callable[[], None]"

# watchdog event_type → native payload type
_EVENT_TYPES = {
    "created": "create",
    "modified": "modify",
    "deleted": "remove",
    "moved": "rename",
}


class PlatformBridge(Protocol):
    """Protocol for native capability providers.

    ``subscribe_watch`` callbacks may be invoked from a thread other than
    the caller's.
    """

    def is_native_environment(self) -> bool: ...

    def start_watch(self, path: str) -> bool: ...

    def stop_watch(self) -> None: ...

    def subscribe_watch(self, callback: NativeCallback) -> Unsubscribe: ...

    def to_asset_url(self, absolute_path: str) -> str: ...


class _PayloadEventHandler(FileSystemEventHandler):
    """Turns watchdog events into native payloads for the bridge's subscribers."""

    def __init__(self, dispatch: NativeCallback) -> None:
        self._dispatch = dispatch

    def on_any_event(self, event: FileSystemEvent) -> None:
        payload_type = _EVENT_TYPES.get(event.event_type)
        if payload_type is None or event.is_directory:
            return
        paths = [str(event.src_path)]
        dest = getattr(event, "dest_path", "")
        if dest:
            paths.append(str(dest))
        self._dispatch({"type": payload_type, "paths": paths})


class WatchdogBridge:
    """Desktop bridge backed by a single recursive watchdog observer.

    Usage:
        bridge = WatchdogBridge()
        unsubscribe = bridge.subscribe_watch(print)
        bridge.start_watch("/path/to/vault")  # non-blocking
        ...
        bridge.stop_watch()
    """

    def __init__(self, url_scheme: Literal["file", "asset"] = "file") -> None:
        self.url_scheme = url_scheme
        self._observer: BaseObserver | None = None
        self._callbacks: dict[int, NativeCallback] = {}
        self._next_handle = 0
        self._lock = threading.Lock()
        self._handler = _PayloadEventHandler(self._dispatch)

    def is_native_environment(self) -> bool:
        return True

    def start_watch(self, path: str) -> bool:
        """Start watching *path* recursively. Returns False if it cannot be watched."""
        if self._observer is not None:
            logger.warning("Native watch already active — refusing second handle for %s", path)
            return False
        if not Path(path).is_dir():
            logger.warning("Cannot watch %s: not a directory", path)
            return False
        observer = Observer()
        observer.schedule(self._handler, path, recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Native watch started at %s", path)
        return True

    def stop_watch(self) -> None:
        """Stop the observer, if any."""
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join()
            logger.info("Native watch stopped")

    def subscribe_watch(self, callback: NativeCallback) -> Unsubscribe:
        with self._lock:
            handle = self._next_handle
            self._next_handle += 1
            self._callbacks[handle] = callback

        def _unsubscribe() -> None:
            with self._lock:
                self._callbacks.pop(handle, None)

        return _unsubscribe

    def to_asset_url(self, absolute_path: str) -> str:
        if self.url_scheme == "asset":
            return f"asset://localhost/{quote(absolute_path, safe='')}"
        return Path(absolute_path).absolute().as_uri()

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    def _dispatch(self, payload: NativePayload) -> None:
        with self._lock:
            callbacks = list(self._callbacks.values())
        for cb in callbacks:
            try:
                cb(payload)
            except Exception:
                logger.exception("Native watch subscriber %r failed", cb)
