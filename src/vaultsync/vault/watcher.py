"""Vault file watcher — single native handle, debounced broadcast of external changes.

Bridges raw native payloads from a :class:`PlatformBridge` to any number of
listeners. Key properties:

* **One handle** — ``start`` fully stops the previous session before
  starting a new one; restarting the path already watched is a no-op.
* **Generation token** — bumped on every start and stop. Native callbacks
  are bound to the generation they were registered under, and anything
  carrying an older generation is dropped on delivery.
* **Debounce** — editors fire several events per save; events are coalesced
  per path for ``debounce_ms`` before broadcast.
* **Leases** — consumers sharing the service hold a lease from
  :meth:`FileWatcherService.acquire`. The native watch stops when the last
  lease is released; switching paths revokes every outstanding lease.
* **Resilience** — malformed payloads are dropped, start failures are
  recorded as :attr:`FileWatcherService.last_error` rather than raised.
"""

from __future__ import annotations

import asyncio
import functools
import itertools
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, TypeAlias

from vaultsync.config import WatchConfig
from vaultsync.vault.assets import ASSETS_DIR
from vaultsync.vault.events import ChangeBroadcaster
from vaultsync.vault.models import ChangeKind, ExternalChangeEvent, ItemType, WatchHandleState

if TYPE_CHECKING:
    from collections.abc import Callable

    from vaultsync.vault.bridge import NativePayload, PlatformBridge
    from vaultsync.vault.events import ChangeCallback, Unsubscribe

logger = logging.getLogger(__name__)

# Called with the vault path whose watch was torn down under the lease holder
LeaseRevoked: TypeAlias = "Callable[[str], None]"

_KIND_ALIASES = {
    "create": ChangeKind.CREATED,
    "created": ChangeKind.CREATED,
    "modify": ChangeKind.MODIFIED,
    "modified": ChangeKind.MODIFIED,
    "remove": ChangeKind.DELETED,
    "removed": ChangeKind.DELETED,
    "delete": ChangeKind.DELETED,
    "deleted": ChangeKind.DELETED,
    "rename": ChangeKind.RENAMED,
    "renamed": ChangeKind.RENAMED,
    "moved": ChangeKind.RENAMED,
}

_INACTIVE = (WatchHandleState.IDLE, WatchHandleState.FAILED)


class WatchStartError(Exception):
    """A native watch could not be started. Recorded, never raised by ``start``."""

    def __init__(
        self, message: str, vault_path: str | None, original: Exception | None = None
    ) -> None:
        super().__init__(message)
        self.vault_path = vault_path
        self.original = original


def payload_kind(raw: Any) -> ChangeKind | None:
    """Map a native ``type`` field to a ChangeKind.

    Accepts plain strings (``"modify"``) and nested mappings
    (``{"modify": {"kind": "rename"}}``). Returns None for anything else.
    """
    if isinstance(raw, str):
        return _KIND_ALIASES.get(raw.lower())
    if isinstance(raw, Mapping) and raw:
        key = next(iter(raw))
        if not isinstance(key, str):
            return None
        detail = raw[key]
        if isinstance(detail, Mapping) and detail.get("kind") == "rename":
            return ChangeKind.RENAMED
        return _KIND_ALIASES.get(key.lower())
    return None


def payload_paths(raw: Any) -> list[str]:
    """Extract the non-empty string paths of a native ``paths`` field."""
    if isinstance(raw, str):
        return [raw] if raw else []
    if isinstance(raw, (list, tuple)):
        return [p for p in raw if isinstance(p, str) and p]
    return []


class FileWatcherService:
    """Watches one vault at a time and fans changes out to subscribers.

    Owned by the application's composition root and shared by reference;
    every consumer multiplexes onto the same native handle, holding it
    through :meth:`acquire` and listening through :meth:`subscribe`.

    Parameters
    ----------
    bridge:
        Native capability provider.
    config:
        Debounce and file-classification settings.
    config_dir:
        Vault configuration directory whose changes are never reported.
    assets_dir:
        Attachment directory name whose changes are never reported.
    """

    def __init__(
        self,
        bridge: PlatformBridge,
        config: WatchConfig | None = None,
        config_dir: str = ".kol-noter",
        assets_dir: str = ASSETS_DIR,
    ) -> None:
        self._bridge = bridge
        self._config = config or WatchConfig()
        self._config_dir = config_dir
        self._assets_dir = assets_dir

        self._broadcaster = ChangeBroadcaster()
        self._lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

        self._state = WatchHandleState.IDLE
        self._vault_path: str | None = None
        self._generation = 0
        self._native_unsubscribe: Unsubscribe | None = None

        # Consumers sharing the current session: lease token → revocation callback
        self._leases: dict[int, LeaseRevoked | None] = {}
        self._lease_ids = itertools.count(1)

        # Debounce buffer: relative path → scheduled emission
        self._pending: dict[str, asyncio.TimerHandle] = {}

        self.last_error: WatchStartError | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self, vault_path: str) -> bool:
        """Watch *vault_path*, replacing any current session.

        Returns whether the native watch is active afterwards.
        """
        async with self._lock:
            if self._state is WatchHandleState.WATCHING and self._vault_path == vault_path:
                logger.debug("Already watching %s", vault_path)
                return True

            await self._teardown()

            if not self._bridge.is_native_environment():
                self._fail(vault_path, "File watching requires a native environment")
                return False

            self._loop = asyncio.get_running_loop()
            self._state = WatchHandleState.STARTING
            self._generation += 1
            self._vault_path = vault_path
            self._native_unsubscribe = self._bridge.subscribe_watch(
                functools.partial(self._on_native, self._generation)
            )

            try:
                started = await asyncio.to_thread(self._bridge.start_watch, vault_path)
            except Exception as exc:
                logger.exception("Failed to start file watcher for %s", vault_path)
                self._release_native_subscription()
                self._fail(vault_path, f"Failed to start file watcher: {exc}", exc)
                return False

            if not started:
                self._release_native_subscription()
                self._fail(vault_path, "Failed to start file watcher")
                return False

            self._state = WatchHandleState.WATCHING
            self.last_error = None
            logger.info("File watcher started for %s", vault_path)
            return True

    async def stop(self) -> None:
        """Release the native handle. Safe to call when idle.

        Events of the stopped session are rejected from this call on, even
        if native teardown completes later.
        """
        if self._state in _INACTIVE and not self._lock.locked():
            return
        self._generation += 1
        self._cancel_pending()
        async with self._lock:
            await self._teardown()

    async def acquire(
        self, vault_path: str, on_revoked: LeaseRevoked | None = None
    ) -> int | None:
        """Join the watch on *vault_path*, starting it if needed.

        Returns a lease token, or None when the watch could not be started
        (see :attr:`last_error`). Acquiring a different path than the one
        being watched tears the current session down and calls *on_revoked*
        of every outstanding lease with the old path.
        """
        if not await self.start(vault_path):
            return None
        token = next(self._lease_ids)
        self._leases[token] = on_revoked
        logger.debug("Lease %d acquired on %s (%d held)", token, vault_path, len(self._leases))
        return token

    async def release(self, token: int) -> None:
        """Give up a lease. The native watch stops with the last lease.

        Releasing an unknown or already revoked token does nothing.
        """
        if token not in self._leases:
            return
        del self._leases[token]
        if not self._leases:
            await self.stop()

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        """Register a listener for change events. Does not start watching."""
        return self._broadcaster.subscribe(callback)

    @property
    def native_available(self) -> bool:
        return self._bridge.is_native_environment()

    @property
    def state(self) -> WatchHandleState:
        return self._state

    @property
    def is_watching(self) -> bool:
        return self._state is WatchHandleState.WATCHING

    @property
    def watched_path(self) -> str | None:
        return self._vault_path if self.is_watching else None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def listener_count(self) -> int:
        return self._broadcaster.subscriber_count

    @property
    def lease_count(self) -> int:
        return len(self._leases)

    @property
    def pending_count(self) -> int:
        """Number of paths awaiting debounce resolution."""
        return len(self._pending)

    # ------------------------------------------------------------------
    # Session management (call with the lock held)
    # ------------------------------------------------------------------

    async def _teardown(self) -> None:
        if self._state in _INACTIVE and self._native_unsubscribe is None:
            return
        previous = self._vault_path
        self._state = WatchHandleState.STOPPING
        self._generation += 1
        self._cancel_pending()
        self._release_native_subscription()
        if previous is not None:
            self._revoke_leases(previous)
        try:
            await asyncio.to_thread(self._bridge.stop_watch)
        except Exception:
            logger.exception("Native watch teardown failed for %s", previous)
        finally:
            self._vault_path = None
            self._state = WatchHandleState.IDLE
        logger.info("File watcher stopped for %s", previous)

    def _revoke_leases(self, vault_path: str) -> None:
        leases, self._leases = self._leases, {}
        for token, on_revoked in leases.items():
            logger.debug("Revoking lease %d on %s", token, vault_path)
            if on_revoked is None:
                continue
            try:
                on_revoked(vault_path)
            except Exception:
                logger.exception("Lease revocation handler failed for %s", vault_path)

    def _fail(self, vault_path: str, message: str, original: Exception | None = None) -> None:
        self._state = WatchHandleState.FAILED
        self._vault_path = None
        self.last_error = WatchStartError(message, vault_path, original)
        logger.warning("%s (%s)", message, vault_path)

    def _release_native_subscription(self) -> None:
        unsubscribe, self._native_unsubscribe = self._native_unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    def _cancel_pending(self) -> None:
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()

    # ------------------------------------------------------------------
    # Native event intake
    # ------------------------------------------------------------------

    def _on_native(self, generation: int, payload: NativePayload) -> None:
        """Bridge callback; may run on a native thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._accept, generation, payload)
        except RuntimeError:
            logger.debug("Event loop closed — dropping native event")

    def _accept(self, generation: int, payload: NativePayload) -> None:
        if generation != self._generation or self._state not in (
            WatchHandleState.STARTING,
            WatchHandleState.WATCHING,
        ):
            logger.debug("Dropping event from stale watch session %d", generation)
            return

        for event in self._translate(payload):
            if self._config.debounce_ms <= 0:
                self._broadcaster.publish(event)
                continue

            existing = self._pending.pop(event.path, None)
            if existing is not None:
                existing.cancel()
            assert self._loop is not None
            self._pending[event.path] = self._loop.call_later(
                self._config.debounce_ms / 1000.0, self._emit, generation, event
            )

    def _emit(self, generation: int, event: ExternalChangeEvent) -> None:
        self._pending.pop(event.path, None)
        if generation != self._generation:
            return
        logger.debug("External change: %s %s", event.kind, event.path)
        self._broadcaster.publish(event)

    def _translate(self, payload: NativePayload) -> list[ExternalChangeEvent]:
        """Native payload → events for vault items. Malformed payloads yield nothing."""
        if not isinstance(payload, Mapping):
            logger.debug("Dropping malformed native payload: %r", payload)
            return []
        kind = payload_kind(payload.get("type"))
        paths = payload_paths(payload.get("paths"))
        if kind is None or not paths:
            logger.debug("Dropping malformed native payload: %r", payload)
            return []

        events = []
        for path in paths:
            classified = self._classify(path)
            if classified is not None:
                relative, item_type = classified
                events.append(ExternalChangeEvent(path=relative, kind=kind, item_type=item_type))
        return events

    def _classify(self, path: str) -> tuple[str, ItemType] | None:
        if self._vault_path is None:
            return None
        root = self._vault_path.rstrip("/") + "/"
        if not path.startswith(root):
            return None
        relative = path[len(root) :]
        *folders, name = relative.split("/")

        if any(part.startswith(".") or part == self._config_dir for part in (*folders, name)):
            return None
        if self._assets_dir in folders:
            return None
        if name.endswith(self._config.sidecar_suffix):
            return None
        if name == self._config.system_metadata_file:
            return relative, ItemType.SYSTEM
        if name == self._config.project_metadata_file:
            return relative, ItemType.PROJECT
        if name.endswith(".md") and not name.startswith("_"):
            return relative, ItemType.NOTE
        return None
