"""Read-only view of the vault's logical → physical id-map."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, ValidationError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class NoteNotFoundError(KeyError):
    """Raised when a NoteId has no folder in the id-map."""

    def __init__(self, note_id: str) -> None:
        self.note_id = note_id
        super().__init__(note_id)

    def __str__(self) -> str:
        return f"Note {self.note_id!r} not found in id-map"


class IdMap(BaseModel):
    """Maps NoteIds to folders relative to the vault root.

    ``notes`` values look like ``"system-slug/project-slug/note-slug"``.
    ``systems`` and ``projects`` mirror the on-disk file and are carried
    for completeness; this package never writes the map.
    """

    notes: dict[str, str] = Field(default_factory=dict)
    systems: dict[str, str] = Field(default_factory=dict)
    projects: dict[str, str] = Field(default_factory=dict)

    def note_path(self, note_id: str) -> str:
        """Relative folder for *note_id*. Raises NoteNotFoundError."""
        try:
            return self.notes[note_id]
        except KeyError:
            raise NoteNotFoundError(note_id) from None

    def __contains__(self, note_id: object) -> bool:
        return note_id in self.notes

    @classmethod
    def load(cls, path: Path) -> IdMap:
        """Read an id-map file. A missing or unreadable file yields an empty map."""
        if not path.exists():
            logger.debug("No id-map at %s", path)
            return cls()
        try:
            return cls.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError):
            logger.warning("Cannot read id-map at %s — using empty map", path, exc_info=True)
            return cls()
