"""Result types returned by the storage helpers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

__all__ = ["FileInfo", "StorageResult"]


@dataclass(frozen=True)
class FileInfo:
    """Size and modification time of a stored file."""

    path: str
    size: int
    modified: Optional[datetime] = None  # UTC

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "size": self.size,
            "modified": self.modified.isoformat() if self.modified else None,
        }


@dataclass(frozen=True)
class StorageResult:
    """Outcome of a write. Failures are reported here instead of raised."""

    success: bool
    path: str
    bytes_written: int = 0
    error: Optional[str] = None

    @classmethod
    def failed(cls, path: str, error: BaseException) -> "StorageResult":
        return cls(success=False, path=path, error=str(error))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "path": self.path,
            "bytes_written": self.bytes_written,
            "error": self.error,
        }
