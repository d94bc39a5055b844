"""Path traversal protection for attachment operations."""

from __future__ import annotations

from pathlib import Path


class PathTraversalError(ValueError):
    """Raised when an attachment filename escapes its assets directory."""

    def __init__(self, filename: str, assets_dir: Path) -> None:
        self.filename = filename
        self.assets_dir = assets_dir
        super().__init__(
            f"Path traversal blocked: '{filename}' escapes assets directory '{assets_dir}'"
        )


def validate_attachment_path(filename: str, assets_dir: Path) -> Path:
    """Join *filename* onto *assets_dir* and verify it names a direct child.

    Returns the joined path (not symlink-resolved, so the caller writes where
    the vault layout says). Raises PathTraversalError for empty names,
    separators, parent references, or absolute paths.
    """
    if not filename or filename in {".", ".."}:
        raise PathTraversalError(filename, assets_dir)
    candidate = Path(filename)
    if candidate.is_absolute() or len(candidate.parts) != 1 or "\\" in filename:
        raise PathTraversalError(filename, assets_dir)
    return assets_dir / filename
