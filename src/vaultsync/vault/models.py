"""Data models for vault change events and attachments."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from time import time

from pydantic import BaseModel, Field


class ChangeKind(StrEnum):
    """What happened to a file outside the application."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class ItemType(StrEnum):
    """Vault item a changed file belongs to."""

    NOTE = "note"
    SYSTEM = "system"
    PROJECT = "project"


class WatchHandleState(StrEnum):
    """Lifecycle of a native watch handle."""

    IDLE = "idle"
    STARTING = "starting"
    WATCHING = "watching"
    STOPPING = "stopping"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ExternalChangeEvent:
    """A change made to the vault by another process.

    ``path`` is relative to the vault root.
    """

    path: str
    kind: ChangeKind
    item_type: ItemType = ItemType.NOTE
    timestamp: float = field(default_factory=time)


class AttachmentRecord(BaseModel):
    """Metadata about a stored attachment. Bytes are never retained."""

    note_id: str
    filename: str
    content_type: str = "application/octet-stream"
    byte_length: int = 0


class SaveAttachmentResult(BaseModel):
    """Outcome of a successful attachment save."""

    filename: str
    url: str
    bytes_written: int = Field(ge=0)
