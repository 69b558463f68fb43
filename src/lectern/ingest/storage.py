"""Filesystem blob store for uploaded files and pasted text sources."""

from __future__ import annotations

from pathlib import Path

from lectern.log import get_logger

log = get_logger(__name__)


class LocalBlobStore:
    """Store objects as files under *root*, addressed by slash-separated names.

    Names such as ``sources/{id}/report.pdf`` map to ``root/sources/{id}/report.pdf``.
    A name that would resolve outside *root* raises ValueError.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()

    def put(self, name: str, data: bytes) -> Path:
        path = self._path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        log.debug("stored blob %s (%d bytes)", name, len(data))
        return path

    def get(self, name: str) -> bytes:
        """Return the object's bytes; FileNotFoundError if absent."""
        return self._path(name).read_bytes()

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    def delete(self, name: str) -> bool:
        """Remove the object and any now-empty parent directories."""
        path = self._path(name)
        if not path.is_file():
            return False
        path.unlink()
        parent = path.parent
        while parent != self.root and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent
        return True

    def _path(self, name: str) -> Path:
        if not name or name.startswith("/"):
            raise ValueError(f"Invalid object name: {name!r}")
        path = (self.root / name).resolve()
        if not path.is_relative_to(self.root):
            raise ValueError(f"Object name escapes the blob store: {name!r}")
        return path
