"""Attachment storage for notes.

Attachments live at ``{vault}/{note folder}/_assets/{filename}``, where the
note folder comes from the vault's id-map. Writes are not locked: two
writers targeting the same filename race and the last write wins. New
attachments avoid this by taking a generated, collision-checked filename.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import unquote_to_bytes

from vaultsync.config import AttachmentConfig
from vaultsync.vault.assets import (
    content_type_for,
    extension_for,
    generate_attachment_filename,
    get_note_asset_base_path,
    resolve_asset_url,
)
from vaultsync.vault.id_map import NoteNotFoundError
from vaultsync.vault.models import AttachmentRecord, SaveAttachmentResult
from vaultsync.vault.security import validate_attachment_path

if TYPE_CHECKING:
    from collections.abc import Mapping

    from vaultsync.vault.bridge import PlatformBridge
    from vaultsync.vault.id_map import IdMap

logger = logging.getLogger(__name__)

# ![[filename]] or ![[path/to/filename|alt text]]
_EMBED_PATTERN = re.compile(r"!\[\[([^\]|]+)(?:\|([^\]]*))?\]\]")
_DATA_URL_PATTERN = re.compile(r"^data:([^;,]+)(;base64)?,(.*)$", re.DOTALL)


class AttachmentIOError(OSError):
    """An attachment read, write, or listing failed on disk."""

    def __init__(self, operation: str, path: Path, original: OSError) -> None:
        self.operation = operation
        self.path = path
        self.original = original
        super().__init__(original.errno, f"Attachment {operation} failed for {path}: {original}")


def decode_data_url(data_url: str) -> tuple[bytes, str]:
    """Split a ``data:`` URL into (bytes, content type). Raises ValueError."""
    match = _DATA_URL_PATTERN.match(data_url)
    if not match:
        raise ValueError("Invalid data URL format")
    content_type, is_base64, payload = match.groups()
    if not is_base64:
        return unquote_to_bytes(payload), content_type
    try:
        return base64.b64decode(payload, validate=True), content_type
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 payload in data URL: {exc}") from exc


def reference_filename(reference: str) -> str:
    """Last path segment of an inline reference (``assets/a.png`` → ``a.png``)."""
    return reference.strip().rsplit("/", 1)[-1]


class AttachmentManager:
    """Saves, loads, lists, deletes and resolves attachments of one vault.

    Construct a new manager when the active vault changes; the id-map is
    consumed read-only.
    """

    def __init__(
        self,
        vault_path: str,
        id_map: IdMap,
        bridge: PlatformBridge,
        config: AttachmentConfig | None = None,
    ) -> None:
        self.vault_path = vault_path
        self.id_map = id_map
        self._bridge = bridge
        self._config = config or AttachmentConfig()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def asset_base_path(self, note_id: str) -> str:
        """Absolute ``_assets`` directory for *note_id*. Raises NoteNotFoundError."""
        return get_note_asset_base_path(
            self.vault_path, self.id_map.note_path(note_id), self._config.assets_dir
        )

    def _attachment_path(self, note_id: str, filename: str) -> Path:
        return validate_attachment_path(filename, Path(self.asset_base_path(note_id)))

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    async def save_attachment(
        self,
        note_id: str,
        data: bytes | str,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> SaveAttachmentResult:
        """Write *data* into the note's assets and return its display URL.

        *data* is raw bytes or a ``data:`` URL. Without *filename* a fresh
        name is generated and never overwrites an existing file; its
        extension comes from the data URL's MIME type, else *content_type*,
        else the configured default. A caller-supplied *filename* is
        overwritten if present.
        """
        if isinstance(data, str):
            payload, content_type = decode_data_url(data)
        else:
            payload = bytes(data)
        if content_type:
            extension = extension_for(content_type, default=self._config.default_extension)
        else:
            extension = self._config.default_extension

        base_path = self.asset_base_path(note_id)
        assets_dir = Path(base_path)

        if filename is None:
            target = await self._unused_path(assets_dir, extension)
        else:
            target = validate_attachment_path(filename, assets_dir)

        try:
            await asyncio.to_thread(_write_bytes, target, payload)
        except OSError as exc:
            raise AttachmentIOError("write", target, exc) from exc

        logger.info("Saved attachment %s (%d bytes) for note %s", target.name, len(payload), note_id)
        return SaveAttachmentResult(
            filename=target.name,
            url=resolve_asset_url(base_path, target.name, self._bridge),
            bytes_written=len(payload),
        )

    async def _unused_path(self, assets_dir: Path, extension: str) -> Path:
        for _ in range(self._config.max_filename_attempts):
            candidate = assets_dir / generate_attachment_filename(extension=extension)
            if not await asyncio.to_thread(candidate.exists):
                return candidate
            logger.debug("Generated attachment name collided: %s", candidate.name)
        raise AttachmentIOError(
            "name generation",
            assets_dir,
            FileExistsError(f"no free filename after {self._config.max_filename_attempts} tries"),
        )

    async def migrate_attachments(
        self, note_id: str, attachments: Mapping[str, str]
    ) -> dict[str, str]:
        """Move inline ``data:`` entries of an override table onto disk.

        Each data URL is saved under its own filename and replaced by the
        stored file's URL. Entries that are already URLs or paths are kept.
        Entries that cannot be decoded or written are dropped and logged.
        """
        migrated: dict[str, str] = {}
        saved = 0
        for filename, value in attachments.items():
            if not value.startswith("data:"):
                migrated[filename] = value
                continue
            try:
                result = await self.save_attachment(note_id, value, filename)
            except (ValueError, AttachmentIOError) as exc:
                logger.warning("Dropping attachment %s of note %s: %s", filename, note_id, exc)
                continue
            migrated[filename] = result.url
            saved += 1
        if saved:
            logger.info("Migrated %d inline attachment(s) for note %s", saved, note_id)
        return migrated

    async def load_attachment(self, note_id: str, filename: str) -> bytes:
        """Read an attachment's bytes. Raises AttachmentIOError if unreadable."""
        path = self._attachment_path(note_id, filename)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise AttachmentIOError("read", path, exc) from exc

    async def list_attachments(self, note_id: str) -> list[AttachmentRecord]:
        """Visible files in the note's assets directory, sorted by name."""
        assets_dir = Path(self.asset_base_path(note_id))
        try:
            entries = await asyncio.to_thread(_scan_assets, assets_dir)
        except OSError as exc:
            raise AttachmentIOError("list", assets_dir, exc) from exc
        return [
            AttachmentRecord(
                note_id=note_id,
                filename=name,
                content_type=content_type_for(name),
                byte_length=size,
            )
            for name, size in entries
        ]

    async def delete_attachment(self, note_id: str, filename: str) -> None:
        """Remove an attachment. Missing files and unknown notes are not errors."""
        try:
            path = self._attachment_path(note_id, filename)
        except NoteNotFoundError:
            logger.debug("Delete of %s skipped: note %s not in id-map", filename, note_id)
            return
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            raise AttachmentIOError("delete", path, exc) from exc
        logger.info("Deleted attachment %s for note %s", filename, note_id)

    # ------------------------------------------------------------------
    # URL resolution
    # ------------------------------------------------------------------

    def resolve_attachment_url(
        self,
        note_id: str,
        filename: str,
        attachments: Mapping[str, str] | None = None,
    ) -> str:
        """Displayable URL for an attachment reference.

        An *attachments* override entry wins; otherwise the URL is computed
        from the note's assets directory. Unknown notes fall back to the
        reference itself.
        """
        name = reference_filename(filename)
        if attachments:
            override = attachments.get(name)
            if override:
                return override
        try:
            return resolve_asset_url(self.asset_base_path(note_id), name, self._bridge)
        except NoteNotFoundError:
            logger.warning("Cannot resolve %s: note %s not in id-map", filename, note_id)
            return filename

    def resolve_images_in_content(
        self,
        content: str,
        note_id: str,
        attachments: Mapping[str, str] | None = None,
    ) -> str:
        """Rewrite every ``![[filename]]`` to ``![alt](url)``; nothing else changes."""

        def _replace(match: re.Match[str]) -> str:
            url = self.resolve_attachment_url(note_id, match.group(1), attachments)
            alt = match.group(2) or ""
            return f"![{alt}]({url})"

        return _EMBED_PATTERN.sub(_replace, content)


def _write_bytes(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)


def _scan_assets(assets_dir: Path) -> list[tuple[str, int]]:
    if not assets_dir.is_dir():
        return []
    return sorted(
        (entry.name, entry.stat().st_size)
        for entry in assets_dir.iterdir()
        if entry.is_file() and not entry.name.startswith(".")
    )
