"""
File-backed key-value store.

Each key becomes one file under a root directory, so ``quickbooks/token/123``
is stored at ``<root>/quickbooks/token/123.json``. Files are written with
owner-only permissions since they hold live OAuth tokens.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from qbolink.errors import StoreError

logger = logging.getLogger("qbolink.storage.file")

# Default storage location
DEFAULT_STORE_DIR = Path.home() / ".qbolink" / "store"


class FileKeyValueStore:
    def __init__(self, root: Path | str | None = None) -> None:
        self.root = Path(root) if root else DEFAULT_STORE_DIR

    def _path_for(self, key: str) -> Path:
        parts = key.split("/")
        if not key or any(part in ("", ".", "..") for part in parts) or key.startswith(os.sep):
            raise StoreError(f"Invalid store key: {key!r}")
        return self.root.joinpath(*parts[:-1], f"{parts[-1]}.json")

    async def get(self, key: str) -> str | None:
        path = self._path_for(key)
        return await asyncio.to_thread(_read, path)

    async def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        await asyncio.to_thread(_write, path, value)
        logger.debug("Saved %s to %s", key, path)

    async def delete(self, key: str) -> bool:
        path = self._path_for(key)
        deleted = await asyncio.to_thread(_delete, path)
        if deleted:
            logger.debug("Deleted %s", key)
        return deleted


# Blocking file operations, run off the event loop via asyncio.to_thread


def _read(path: Path) -> str | None:
    try:
        return path.read_text()
    except FileNotFoundError:
        return None


def _write(path: Path, value: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)

    # Created owner-only so the token is never readable by others, then
    # renamed so readers never see a half-written file
    tmp = path.with_suffix(".tmp")
    tmp.unlink(missing_ok=True)
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(value)
    tmp.replace(path)


def _delete(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
