"""Asset path resolution — where a note's attachments live and how to render them.

Everything here is pure string work; the only collaborator is the bridge's
path-to-URL conversion in :func:`resolve_asset_url`.
"""

from __future__ import annotations

import itertools
import mimetypes
import re
import secrets
import threading
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vaultsync.vault.bridge import PlatformBridge

ASSETS_DIR = "_assets"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_MIME_TO_EXT = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "application/pdf": "pdf",
    "text/plain": "txt",
    "application/json": "json",
}

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")
_REPEATED_DASHES = re.compile(r"-+")

# Process-wide sequence; guarantees distinct names within one process
_sequence = itertools.count(1)
_sequence_lock = threading.Lock()
# Distinguishes this process from others writing into the same vault
_process_token = secrets.token_hex(2)


def get_note_asset_base_path(
    vault_path: str, note_relative_path: str, assets_dir: str = ASSETS_DIR
) -> str:
    """Absolute path of a note's attachment directory.

    *note_relative_path* is the note's folder from the id-map
    (``system/project/note``). Older maps point at the ``.md`` file itself;
    its containing folder is used then.
    """
    relative = note_relative_path.strip("/")
    if relative.endswith(".md"):
        relative = relative.rpartition("/")[0]
    if not relative:
        return f"{vault_path}/{assets_dir}"
    return f"{vault_path}/{relative}/{assets_dir}"


def resolve_asset_url(note_asset_base_path: str, filename: str, bridge: PlatformBridge) -> str:
    """Renderable URL for *filename* inside a note's attachment directory."""
    return bridge.to_asset_url(f"{note_asset_base_path}/{filename}")


def _sanitize_hint(hint: str) -> str:
    slug = _REPEATED_DASHES.sub("-", _UNSAFE_CHARS.sub("-", hint)).strip("-.").lower()
    return slug or "attachment"


def generate_attachment_filename(
    base_name_hint: str | None = None, extension: str | None = None
) -> str:
    """Produce a new attachment filename.

    Without a hint: ``Pasted-image-<timestamp>-<token><seq>.<ext>``.
    With a hint: ``<timestamp>-<token><seq>-<sanitized hint stem>.<ext>``;
    the hint's own suffix is used when *extension* is not given.
    """
    stem_hint = None
    if base_name_hint:
        stem, dot, suffix = base_name_hint.rpartition(".")
        if dot and stem:
            stem_hint = stem
            extension = extension or suffix
        else:
            stem_hint = base_name_hint
    ext = (extension or "png").lstrip(".").lower()

    with _sequence_lock:
        seq = next(_sequence)
    stamp = datetime.now().strftime("%Y%m%d%H%M%S")
    unique = f"{stamp}-{_process_token}{seq:04d}"

    if stem_hint is not None:
        return f"{unique}-{_sanitize_hint(stem_hint)}.{ext}"
    return f"Pasted-image-{unique}.{ext}"


def extension_for(content_type: str, default: str = "bin") -> str:
    """File extension (without dot) for a MIME type."""
    content_type = content_type.split(";", 1)[0].strip().lower()
    if content_type in _MIME_TO_EXT:
        return _MIME_TO_EXT[content_type]
    guessed = mimetypes.guess_extension(content_type)
    return guessed.lstrip(".") if guessed else default


def content_type_for(filename: str) -> str:
    """MIME type guessed from a filename's extension."""
    ext = filename.rpartition(".")[2].lower() if "." in filename else ""
    for mime, known_ext in _MIME_TO_EXT.items():
        if known_ext == ext:
            return mime
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or DEFAULT_CONTENT_TYPE
