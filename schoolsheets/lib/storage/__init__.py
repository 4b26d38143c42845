"""Durable storage for snapshot documents."""

from schoolsheets.lib.storage.base import FileInfo, StorageResult
from schoolsheets.lib.storage.local import LocalStorage

__all__ = ["FileInfo", "LocalStorage", "StorageResult"]
