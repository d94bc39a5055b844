"""Vault watch controller — binds the watcher lifecycle to the active vault.

The controller is a small state machine over ``(vault_path, enabled)``.
:meth:`VaultWatchController.update` is its only coordination point: calls are
serialized, and inputs that change while a start is in flight are reconciled
once that start resolves (tear down, then start again) instead of racing a
second start against the first.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import TYPE_CHECKING, TypeAlias

from vaultsync.vault.events import DEFAULT_RECENT_LIMIT, RecentChangeLog
from vaultsync.vault.models import WatchHandleState
from vaultsync.vault.watcher import WatchStartError

if TYPE_CHECKING:
    from collections.abc import Callable

    from vaultsync.vault.events import Unsubscribe
    from vaultsync.vault.models import ExternalChangeEvent
    from vaultsync.vault.watcher import FileWatcherService

logger = logging.getLogger(__name__)

ChangeHandler: TypeAlias = "Callable[[ExternalChangeEvent], None]"


class VaultWatchController:
    """Starts and stops a shared :class:`FileWatcherService` as inputs change.

    Usage:
        controller = VaultWatchController(watcher, on_change=reload_note)
        await controller.update("/path/to/vault", enabled=True)
        ...
        await controller.close()

    Watch failures never raise; they land in :attr:`error` and the
    controller waits in ``failed`` until the inputs change.
    """

    def __init__(
        self,
        watcher: FileWatcherService,
        on_change: ChangeHandler | None = None,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
    ) -> None:
        self._watcher = watcher
        self._on_change = on_change
        self._recent = RecentChangeLog(recent_limit)
        self._lock = asyncio.Lock()

        # Desired inputs
        self._vault_path: str | None = None
        self._enabled = False

        self._state = WatchHandleState.IDLE
        self._active_path: str | None = None
        self._failed_path: str | None = None
        self._session = 0
        self._unsubscribe: Unsubscribe | None = None
        self._lease: int | None = None

        self.error: WatchStartError | None = None
        self.transitions: list[WatchHandleState] = [WatchHandleState.IDLE]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def update(self, vault_path: str | None, enabled: bool = True) -> WatchHandleState:
        """Apply new inputs and drive the watcher to match them."""
        self._vault_path = vault_path or None
        self._enabled = enabled
        async with self._lock:
            await self._reconcile()
        return self._state

    async def close(self) -> None:
        """Tear down any session and leave the controller idle."""
        await self.update(None, enabled=False)

    def clear_recent_changes(self) -> None:
        self._recent.clear()

    @property
    def recent_changes(self) -> list[ExternalChangeEvent]:
        """Most recent external changes, newest first."""
        return self._recent.snapshot()

    @property
    def state(self) -> WatchHandleState:
        return self._state

    @property
    def is_watching(self) -> bool:
        return self._state is WatchHandleState.WATCHING

    @property
    def active_path(self) -> str | None:
        return self._active_path

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _target_path(self) -> str | None:
        if not self._enabled or not self._vault_path:
            return None
        if not self._watcher.native_available:
            return None
        return self._vault_path

    async def _reconcile(self) -> None:
        while True:
            target = self._target_path()

            if self._state is WatchHandleState.WATCHING:
                if target == self._active_path:
                    return
                await self._end_session()

            if target is None:
                self._enter(WatchHandleState.IDLE)
                return

            if self._state is WatchHandleState.FAILED and target == self._failed_path:
                # Retry only on an input change
                return

            await self._begin_session(target)
            if self._target_path() == target:
                return
            logger.debug("Watch inputs changed during start — reconciling again")

    async def _begin_session(self, target: str) -> bool:
        self._enter(WatchHandleState.STARTING)
        self._session += 1
        session = self._session

        error: WatchStartError | None = None
        lease: int | None = None
        try:
            lease = await self._watcher.acquire(
                target, on_revoked=functools.partial(self._handle_revoked, session)
            )
        except Exception as exc:
            logger.exception("Watcher start raised for %s", target)
            error = WatchStartError(f"Failed to start file watcher: {exc}", target, exc)

        if lease is None:
            self.error = (
                error
                or self._watcher.last_error
                or WatchStartError("Failed to start file watcher", target)
            )
            self._failed_path = target
            self._enter(WatchHandleState.FAILED)
            return False

        self.error = None
        self._failed_path = None
        self._active_path = target
        self._lease = lease
        self._unsubscribe = self._watcher.subscribe(
            functools.partial(self._handle_change, session)
        )
        self._enter(WatchHandleState.WATCHING)
        return True

    async def _end_session(self) -> None:
        self._enter(WatchHandleState.STOPPING)
        self._detach()
        lease, self._lease = self._lease, None
        if lease is not None:
            await self._watcher.release(lease)

    def _detach(self) -> None:
        self._session += 1
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
        self._active_path = None

    def _handle_revoked(self, session: int, vault_path: str) -> None:
        """The shared watch was torn down by another consumer of the service."""
        if session != self._session or self._state is not WatchHandleState.WATCHING:
            return
        logger.warning("Watch on %s was taken over by another consumer", vault_path)
        self._detach()
        self._lease = None
        self.error = WatchStartError(
            f"Watch on {vault_path} was stopped by another consumer", vault_path
        )
        self._failed_path = vault_path
        self._enter(WatchHandleState.FAILED)

    def _enter(self, state: WatchHandleState) -> None:
        if state is self._state:
            return
        logger.debug("Watch controller: %s → %s", self._state, state)
        self._state = state
        self.transitions.append(state)

    # ------------------------------------------------------------------
    # Event delivery
    # ------------------------------------------------------------------

    def _handle_change(self, session: int, event: ExternalChangeEvent) -> None:
        if session != self._session or self._state is not WatchHandleState.WATCHING:
            logger.debug("Ignoring change from stale session %d: %s", session, event.path)
            return

        self._recent.add(event)

        if self._on_change is not None:
            try:
                self._on_change(event)
            except Exception:
                logger.exception("Change callback failed on %s", event.path)
