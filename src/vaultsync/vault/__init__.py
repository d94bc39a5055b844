"""Vault synchronization — watching, attachments, and asset resolution."""

from vaultsync.vault.assets import (
    generate_attachment_filename,
    get_note_asset_base_path,
    resolve_asset_url,
)
from vaultsync.vault.attachments import AttachmentIOError, AttachmentManager
from vaultsync.vault.bridge import PlatformBridge, WatchdogBridge
from vaultsync.vault.controller import VaultWatchController
from vaultsync.vault.events import ChangeBroadcaster, RecentChangeLog
from vaultsync.vault.id_map import IdMap, NoteNotFoundError
from vaultsync.vault.models import (
    AttachmentRecord,
    ChangeKind,
    ExternalChangeEvent,
    ItemType,
    SaveAttachmentResult,
    WatchHandleState,
)
from vaultsync.vault.security import PathTraversalError, validate_attachment_path
from vaultsync.vault.watcher import FileWatcherService, WatchStartError

__all__ = [
    "AttachmentIOError",
    "AttachmentManager",
    "AttachmentRecord",
    "ChangeBroadcaster",
    "ChangeKind",
    "ExternalChangeEvent",
    "FileWatcherService",
    "IdMap",
    "ItemType",
    "NoteNotFoundError",
    "PathTraversalError",
    "PlatformBridge",
    "RecentChangeLog",
    "SaveAttachmentResult",
    "VaultWatchController",
    "WatchHandleState",
    "WatchStartError",
    "WatchdogBridge",
    "generate_attachment_filename",
    "get_note_asset_base_path",
    "resolve_asset_url",
    "validate_attachment_path",
]
