"""Snapshot mode: a manually refreshed, disk-backed copy of every view.

State machine for the in-memory snapshot:

    empty --(startup load or refresh)--> populated
    populated --(refresh)--> populated (all fields replaced together)

Saving is a side effect and never changes the in-memory value.

A refresh fetches both sheets and computes the join into a brand-new
``Snapshot`` before anything is published. Publishing is one reference
assignment, so a reader that grabbed the previous snapshot keeps a
consistent Profile/Performance/Joined triple for the rest of its request.
Refreshes (and saves) are serialized so two writers never interleave on
the durable file.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from schoolsheets.lib.config import CacheMode, Settings
from schoolsheets.lib.datasets import build_performance, build_profile, performance_key_subset
from schoolsheets.lib.errors import PersistenceError, SchoolSheetsError, UpstreamFetchError
from schoolsheets.lib.join import JoinResult, join_datasets
from schoolsheets.lib.manager import DataManager
from schoolsheets.lib.metrics import PhaseTimer
from schoolsheets.lib.records import Dataset
from schoolsheets.lib.storage import LocalStorage

logger = logging.getLogger(__name__)

__all__ = [
    "RefreshRequest",
    "RefreshResult",
    "Snapshot",
    "SnapshotFile",
    "SnapshotManager",
]

SNAPSHOT_FORMAT_VERSION = 1

T = TypeVar("T")


@dataclass(frozen=True)
class Snapshot:
    """Every derived view from one refresh."""

    profile: Optional[Dataset] = None
    performance: Optional[Dataset] = None
    joined: Optional[JoinResult] = None
    last_updated: Optional[datetime] = None
    last_refresh_reason: Optional[str] = None

    @property
    def populated(self) -> bool:
        return self.profile is not None and self.performance is not None and self.joined is not None

    def summary(self) -> Dict[str, Any]:
        return {
            "populated": self.populated,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
            "lastRefreshReason": self.last_refresh_reason,
            "profileRows": self.profile.row_count if self.profile else 0,
            "performanceRows": self.performance.row_count if self.performance else 0,
            "joinedCount": self.joined.count if self.joined else 0,
        }

    def to_document(self, stats: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return {
            "version": SNAPSHOT_FORMAT_VERSION,
            "profile": self.profile.to_document() if self.profile else None,
            "performance": self.performance.to_document() if self.performance else None,
            "joined": self.joined.to_dict() if self.joined else None,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
            "lastRefreshReason": self.last_refresh_reason,
            "stats": stats or {},
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Snapshot":
        version = doc.get("version")
        if version != SNAPSHOT_FORMAT_VERSION:
            raise ValueError(f"Unsupported snapshot version: {version!r}")
        last_updated = doc.get("lastUpdated")
        return cls(
            profile=Dataset.from_document(doc["profile"]) if doc.get("profile") else None,
            performance=Dataset.from_document(doc["performance"]) if doc.get("performance") else None,
            joined=JoinResult.from_document(doc["joined"]) if doc.get("joined") else None,
            last_updated=datetime.fromisoformat(last_updated) if last_updated else None,
            last_refresh_reason=doc.get("lastRefreshReason"),
        )


@dataclass(frozen=True)
class RefreshRequest:
    """Command to rebuild the snapshot from the spreadsheet."""

    reason: str = "manual"


@dataclass
class RefreshResult:
    """Outcome of a refresh action."""

    ok: bool
    reason: str
    duration_seconds: float
    snapshot: Dict[str, Any] = field(default_factory=dict)
    persisted: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    exception: Optional[SchoolSheetsError] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "ok": self.ok,
            "reason": self.reason,
            "durationMs": round(self.duration_seconds * 1000),
            "snapshot": self.snapshot,
            "persisted": self.persisted,
        }
        if self.error:
            result["error"] = self.error
        return result


class SnapshotFile:
    """JSON snapshot document on local disk."""

    def __init__(self, path: str) -> None:
        target = Path(path)
        self.path = path
        self.name = target.name
        self.storage = LocalStorage(str(target.parent))

    def save(self, snapshot: Snapshot, stats: Dict[str, Any]) -> Dict[str, Any]:
        """Atomically replace the file with ``snapshot``.

        Raises:
            PersistenceError: the document could not be written
        """
        try:
            payload = json.dumps(snapshot.to_document(stats), ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise PersistenceError("Snapshot is not serializable", path=self.path, cause=exc) from exc

        result = self.storage.write_atomic(self.name, payload)
        if not result.success:
            raise PersistenceError(
                f"Could not write snapshot: {result.error}",
                path=result.path,
            )
        return {"ok": True, "path": result.path, "bytes": result.bytes_written}

    def load(self) -> Tuple[Snapshot, Dict[str, Any]]:
        """Read the snapshot and its saved counters.

        Raises:
            PersistenceError: the file is missing, unreadable or malformed
        """
        try:
            raw = self.storage.read_bytes(self.name)
        except FileNotFoundError as exc:
            raise PersistenceError("Snapshot file not found", path=self.path, cause=exc) from exc
        except OSError as exc:
            raise PersistenceError("Could not read snapshot file", path=self.path, cause=exc) from exc

        try:
            doc = json.loads(raw.decode("utf-8"))
            snapshot = Snapshot.from_document(doc)
        except (UnicodeDecodeError, ValueError, KeyError, TypeError, AttributeError) as exc:
            raise PersistenceError(
                f"Snapshot file is corrupt: {exc}", path=self.path, cause=exc
            ) from exc
        return snapshot, doc.get("stats") or {}

    def info(self) -> Dict[str, Any]:
        info = self.storage.get_file_info(self.name)
        if info is None:
            return {"path": self.path, "exists": False}
        data = info.to_dict()
        data["exists"] = True
        return data


class SnapshotManager(DataManager):
    """Serves every view from one process-wide snapshot.

    Example:
        manager = SnapshotManager(settings, source=fake_source)
        manager.startup()  # load from disk, else refresh("startup")
        manager.refresh(RefreshRequest(reason="nightly"))
    """

    mode = CacheMode.SNAPSHOT

    def __init__(self, settings: Settings, **kwargs: Any) -> None:
        super().__init__(settings, **kwargs)
        self._snapshot = Snapshot()
        self._state_lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self.snapshot_file: Optional[SnapshotFile] = (
            SnapshotFile(settings.snapshot_path) if settings.snapshot_path else None
        )

    # ----------------------------------------------------------------- state

    def current(self) -> Snapshot:
        with self._state_lock:
            return self._snapshot

    def _publish(self, snapshot: Snapshot) -> None:
        with self._state_lock:
            self._snapshot = snapshot

    def reset(self) -> None:
        """Forget the in-memory snapshot. Intended for tests."""
        self._publish(Snapshot())

    # --------------------------------------------------------------- actions

    def _build_snapshot(self, reason: str) -> Snapshot:
        profile = build_profile(self.source, self.settings)
        performance = build_performance(self.source, self.settings)
        joined = join_datasets(profile, performance, only_matched=True)
        return Snapshot(
            profile=profile,
            performance=performance,
            joined=joined,
            last_updated=datetime.now(timezone.utc),
            last_refresh_reason=reason,
        )

    def _persist(self, snapshot: Snapshot) -> Optional[Dict[str, Any]]:
        if self.snapshot_file is None:
            return None
        try:
            return self.snapshot_file.save(snapshot, self.metrics.persisted_subset())
        except PersistenceError as exc:
            logger.error("Snapshot persistence failed: %s", exc.message)
            return {"ok": False, "error": exc.message}

    def _failed(
        self, request: RefreshRequest, timer: PhaseTimer, exc: SchoolSheetsError
    ) -> RefreshResult:
        logger.error("Snapshot refresh failed; keeping previous snapshot: %s", exc.message)
        return RefreshResult(
            ok=False,
            reason=request.reason,
            duration_seconds=timer.stop(),
            snapshot=self.current().summary(),
            error=exc.message,
            exception=exc,
        )

    def _refresh(self, request: RefreshRequest) -> RefreshResult:
        timer = PhaseTimer(name="refresh")
        logger.info("Refreshing snapshot (reason: %s)", request.reason)

        try:
            snapshot = self._build_snapshot(request.reason)
        except SchoolSheetsError as exc:
            return self._failed(request, timer, exc)
        except Exception as exc:
            logger.exception("Unexpected error while building snapshot")
            error = UpstreamFetchError(f"Snapshot refresh failed: {exc}", cause=exc)
            return self._failed(request, timer, error)

        self._publish(snapshot)
        persisted = self._persist(snapshot)
        duration = timer.stop()

        logger.info(
            "Snapshot refreshed in %.2fs: %d profile rows, %d performance rows, %d joined",
            duration,
            snapshot.profile.row_count if snapshot.profile else 0,
            snapshot.performance.row_count if snapshot.performance else 0,
            snapshot.joined.count if snapshot.joined else 0,
        )
        return RefreshResult(
            ok=True,
            reason=request.reason,
            duration_seconds=duration,
            snapshot=snapshot.summary(),
            persisted=persisted,
        )

    def refresh(self, request: Optional[RefreshRequest] = None) -> RefreshResult:
        """Re-fetch every view and replace the snapshot as one unit.

        On failure the previous snapshot (in memory and on disk) is kept and
        the result carries ``ok=False``.
        """
        with self._refresh_lock:
            result = self._refresh(request or RefreshRequest())
        if not result.ok:
            self.metrics.record_error(request=False)
        return result

    def save(self) -> Dict[str, Any]:
        """Write the current snapshot to disk."""
        if self.snapshot_file is None:
            return {"ok": False, "error": "Snapshot persistence is disabled (SNAPSHOT_PATH is empty)"}
        with self._refresh_lock:
            snapshot = self.current()
            if not snapshot.populated:
                return {"ok": False, "error": "Snapshot is empty; refresh first"}
            try:
                return self.snapshot_file.save(snapshot, self.metrics.persisted_subset())
            except PersistenceError as exc:
                logger.error("Snapshot save failed: %s", exc.message)
                return {"ok": False, "error": exc.message}

    def load(self) -> Dict[str, Any]:
        """Replace the in-memory snapshot with the one on disk."""
        if self.snapshot_file is None:
            return {"ok": False, "error": "Snapshot persistence is disabled (SNAPSHOT_PATH is empty)"}
        with self._refresh_lock:
            try:
                snapshot, stats = self.snapshot_file.load()
            except PersistenceError as exc:
                logger.warning("Snapshot load failed: %s", exc.message)
                return {"ok": False, "error": exc.message}
            self._publish(snapshot)
            self.metrics.restore(
                api_calls=stats.get("apiCalls", 0),
                last_api_call=stats.get("lastApiCall"),
            )
        logger.info("Loaded snapshot from %s", self.snapshot_file.path)
        return {"ok": True, "path": self.snapshot_file.path, "snapshot": snapshot.summary()}

    def startup(self) -> None:
        """Restore from disk, or refresh once with reason "startup"."""
        loaded = self.load()
        if loaded["ok"]:
            return
        result = self.refresh(RefreshRequest(reason="startup"))
        if not result.ok:
            logger.error("Startup refresh failed; views will retry on first access: %s", result.error)

    def status(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "snapshot": self.current().summary(),
            "stats": self.stats(),
            "file": self.snapshot_file.info() if self.snapshot_file else None,
        }

    # ----------------------------------------------------------------- reads

    def _ensure_populated(self) -> Tuple[Snapshot, bool]:
        """Return ``(snapshot, hit)``, populating once on first access."""
        snapshot = self.current()
        if snapshot.populated:
            return snapshot, True

        with self._refresh_lock:
            snapshot = self.current()
            if snapshot.populated:
                return snapshot, True
            result = self._refresh(RefreshRequest(reason="first-access"))
        if not result.ok:
            raise result.exception or UpstreamFetchError(result.error or "Snapshot refresh failed")
        return self.current(), False

    def _read(self, view: Callable[[Snapshot], T]) -> T:
        try:
            snapshot, hit = self._ensure_populated()
            value = view(snapshot)
        except Exception:
            self.metrics.record_error()
            raise
        self.metrics.record_request(hit=hit)
        return value

    def profile(self) -> Dataset:
        return self._read(lambda s: s.profile)

    def performance(self) -> Dataset:
        return self._read(lambda s: s.performance)

    def performance_key(self) -> Dataset:
        return self._read(
            lambda s: performance_key_subset(s.performance, self.settings.performance_key_columns)
        )

    def schools(self, only_matched: bool = True) -> JoinResult:
        if only_matched:
            return self._read(lambda s: s.joined)
        return self._read(lambda s: join_datasets(s.profile, s.performance, only_matched=False))
