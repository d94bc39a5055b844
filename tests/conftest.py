"""Shared test fixtures."""

from __future__ import annotations

import json
import threading
import time
from typing import TYPE_CHECKING, Any

import pytest

from vaultsync.vault.id_map import IdMap

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


class FakeBridge:
    """In-memory PlatformBridge that counts native handles.

    Flip ``native``, ``start_result``, ``start_error`` or ``start_delay``
    to simulate platform behaviour.
    """

    def __init__(self) -> None:
        self.native = True
        self.start_result = True
        self.start_error: Exception | None = None
        self.start_delay = 0.0

        self.started_paths: list[str] = []
        self.stop_calls = 0
        self.active_handles = 0
        self.max_active_handles = 0
        self.registered: list[Callable[[Any], None]] = []

        self._callbacks: dict[int, Callable[[Any], None]] = {}
        self._next = 0
        self._lock = threading.Lock()

    def is_native_environment(self) -> bool:
        return self.native

    def start_watch(self, path: str) -> bool:
        if self.start_delay:
            time.sleep(self.start_delay)
        with self._lock:
            self.started_paths.append(path)
            if self.start_error is not None:
                raise self.start_error
            if not self.start_result:
                return False
            self.active_handles += 1
            self.max_active_handles = max(self.max_active_handles, self.active_handles)
        return True

    def stop_watch(self) -> None:
        with self._lock:
            self.stop_calls += 1
            self.active_handles = max(0, self.active_handles - 1)

    def subscribe_watch(self, callback: Callable[[Any], None]) -> Callable[[], None]:
        with self._lock:
            handle = self._next
            self._next += 1
            self._callbacks[handle] = callback
            self.registered.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                self._callbacks.pop(handle, None)

        return _unsubscribe

    def to_asset_url(self, absolute_path: str) -> str:
        return f"asset://localhost{absolute_path}"

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    def emit(self, payload: Any) -> None:
        with self._lock:
            callbacks = list(self._callbacks.values())
        for cb in callbacks:
            cb(payload)


@pytest.fixture
def bridge() -> FakeBridge:
    return FakeBridge()


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    """Vault with one system/project/note hierarchy and its id-map."""
    vault = tmp_path / "vault"
    note_dir = vault / "work" / "website" / "launch-plan"
    note_dir.mkdir(parents=True)
    (note_dir / "launch-plan.md").write_text("# Launch plan\n")
    config_dir = vault / ".kol-noter"
    config_dir.mkdir()
    (config_dir / "id-map.json").write_text(
        json.dumps(
            {
                "notes": {"note1": "work/website/launch-plan"},
                "systems": {"sys1": "work"},
                "projects": {"proj1": "work/website"},
            }
        )
    )
    return vault


@pytest.fixture
def id_map() -> IdMap:
    return IdMap(notes={"note1": "work/website/launch-plan"})
