"""Local filesystem storage for snapshot documents."""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from schoolsheets.lib.storage.base import FileInfo, StorageResult

logger = logging.getLogger(__name__)

__all__ = ["LocalStorage"]


class LocalStorage:
    """Reads and atomically replaces files under one directory.

    Example:
        >>> storage = LocalStorage("./data")
        >>> storage.write_atomic("snapshot.json", b"{}").success
        True
        >>> storage.read_bytes("snapshot.json")
        b'{}'
    """

    def __init__(self, base_path: str = ".") -> None:
        self.base_path = base_path

    def _resolve_path(self, path: str) -> Path:
        return (Path(self.base_path) / path).resolve()

    def exists(self, path: str) -> bool:
        return self._resolve_path(path).is_file()

    def read_bytes(self, path: str) -> bytes:
        return self._resolve_path(path).read_bytes()

    def write_atomic(self, path: str, data: bytes) -> StorageResult:
        """Replace ``path`` with ``data`` so readers never see a partial file.

        The bytes go to a hidden sibling that is fsynced and then renamed
        over the target; on failure the sibling is removed and the previous
        file is left as it was.
        """
        target = self._resolve_path(path)
        staging: Optional[str] = None

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, staging = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
            )
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(staging, target)
            staging = None
        except OSError as exc:
            logger.error("Failed to write %s: %s", target, exc)
            return StorageResult.failed(str(target), exc)
        finally:
            if staging is not None and os.path.exists(staging):
                os.unlink(staging)

        logger.debug("Wrote %d bytes to %s", len(data), target)
        return StorageResult(success=True, path=str(target), bytes_written=len(data))

    def delete(self, path: str) -> bool:
        target = self._resolve_path(path)
        if not target.is_file():
            return False
        target.unlink()
        return True

    def get_file_info(self, path: str) -> Optional[FileInfo]:
        """Size and mtime of ``path``, or None when it is not a file."""
        target = self._resolve_path(path)
        if not target.is_file():
            return None

        stat = target.stat()
        return FileInfo(
            path=str(target),
            size=stat.st_size,
            modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )
