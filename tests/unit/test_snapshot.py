"""Tests for schoolsheets.lib.snapshot module (snapshot mode)."""

import json
import threading
from pathlib import Path

import pytest

from schoolsheets.lib.config import CacheMode, Settings
from schoolsheets.lib.errors import UpstreamFetchError
from schoolsheets.lib.snapshot import (
    RefreshRequest,
    Snapshot,
    SnapshotFile,
    SnapshotManager,
)
from tests.conftest import PERFORMANCE_RANGE, PROFILE_RANGE


@pytest.fixture
def manager(snapshot_settings, fake_source, metrics):
    return SnapshotManager(snapshot_settings, source=fake_source, metrics=metrics)


def _saved(settings):
    snapshot, _ = SnapshotFile(settings.snapshot_path).load()
    return snapshot


def _add_school(source, school_id):
    source.ranges[PROFILE_RANGE] = source.ranges[PROFILE_RANGE] + [[school_id, "New School", "Capital"]]
    source.ranges[PERFORMANCE_RANGE] = source.ranges[PERFORMANCE_RANGE] + [[school_id, "0.90", "0.91"]]


# ============================================
# Refresh action
# ============================================


class TestRefresh:
    """Tests for SnapshotManager.refresh()."""

    def test_populates_every_field(self, manager):
        result = manager.refresh(RefreshRequest(reason="nightly"))

        assert result.ok is True
        snapshot = manager.current()
        assert snapshot.populated
        assert snapshot.last_refresh_reason == "nightly"
        assert snapshot.last_updated is not None
        assert snapshot.profile.row_count == 3
        assert snapshot.performance.row_count == 3
        assert snapshot.joined.count == 2

    def test_result_payload(self, manager):
        payload = manager.refresh(RefreshRequest(reason="nightly")).to_dict()

        assert payload["ok"] is True
        assert payload["reason"] == "nightly"
        assert isinstance(payload["durationMs"], int)
        assert payload["snapshot"]["joinedCount"] == 2
        assert payload["persisted"]["ok"] is True
        assert "error" not in payload

    def test_default_reason(self, manager):
        assert manager.refresh().reason == "manual"

    def test_persists_to_disk(self, manager, snapshot_settings):
        manager.refresh()
        assert Path(snapshot_settings.snapshot_path).exists()
        assert _saved(snapshot_settings) == manager.current()

    def test_refresh_replaces_previous_values(self, manager, fake_source):
        manager.refresh()
        _add_school(fake_source, "5")
        manager.refresh()

        snapshot = manager.current()
        assert snapshot.profile.row_count == 4
        assert snapshot.joined.count == 3

    def test_reader_keeps_consistent_triple(self, manager, fake_source):
        manager.refresh()
        held = manager.current()
        _add_school(fake_source, "5")
        manager.refresh()

        assert held.profile.row_count == 3
        assert held.performance.row_count == 3
        assert held.joined.count == 2
        assert manager.current() is not held

    def test_concurrent_refreshes_leave_a_complete_file(self, manager, snapshot_settings):
        threads = [
            threading.Thread(target=manager.refresh, args=(RefreshRequest(reason=f"r{i}"),))
            for i in range(5)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        saved = _saved(snapshot_settings)
        assert saved.populated
        assert saved == manager.current()


class TestRefreshAtomicity:
    """A failed refresh never leaves memory and disk out of step."""

    def test_fetch_failure_changes_nothing(self, manager, fake_source, snapshot_settings, metrics):
        manager.refresh(RefreshRequest(reason="first"))
        before = manager.current()

        _add_school(fake_source, "5")
        fake_source.fail(PERFORMANCE_RANGE)
        result = manager.refresh(RefreshRequest(reason="second"))

        assert result.ok is False
        assert "503" in result.error
        assert result.persisted is None
        assert manager.current() is before
        assert _saved(snapshot_settings) == before
        assert metrics.errors == 1
        assert metrics.total_requests == 0

    def test_unexpected_error_is_reported_and_counted(self, manager, fake_source, snapshot_settings, metrics):
        manager.refresh(RefreshRequest(reason="first"))
        before = manager.current()

        fake_source.fail_on[PROFILE_RANGE] = RuntimeError("boom")
        result = manager.refresh(RefreshRequest(reason="second"))

        assert result.ok is False
        assert "boom" in result.error
        assert isinstance(result.exception, UpstreamFetchError)
        assert manager.current() is before
        assert _saved(snapshot_settings) == before
        assert metrics.errors == 1

    def test_profile_failure_changes_nothing(self, manager, fake_source, snapshot_settings):
        manager.refresh()
        before = manager.current()

        fake_source.fail(PROFILE_RANGE)
        assert manager.refresh().ok is False
        assert manager.current() is before
        assert _saved(snapshot_settings) == before

    def test_persist_failure_keeps_complete_file(self, manager, fake_source, snapshot_settings, monkeypatch):
        manager.refresh(RefreshRequest(reason="first"))
        first = manager.current()

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("schoolsheets.lib.storage.local.os.replace", broken_replace)
        _add_school(fake_source, "5")
        result = manager.refresh(RefreshRequest(reason="second"))

        assert result.ok is True
        assert result.persisted["ok"] is False
        assert "disk full" in result.persisted["error"]

        # Memory advanced as one unit; disk still holds the whole previous snapshot.
        current = manager.current()
        assert current.last_refresh_reason == "second"
        assert current.profile.row_count == 4
        assert current.joined.count == 3
        assert _saved(snapshot_settings) == first

    def test_failure_on_empty_snapshot_stays_empty(self, manager, fake_source, snapshot_settings):
        fake_source.fail(PROFILE_RANGE)
        result = manager.refresh()

        assert result.ok is False
        assert result.snapshot["populated"] is False
        assert not manager.current().populated
        assert not Path(snapshot_settings.snapshot_path).exists()


# ============================================
# Save / load
# ============================================


class TestSaveAndLoad:
    """Tests for the durable snapshot file."""

    def test_round_trip(self, manager):
        manager.refresh(RefreshRequest(reason="round-trip"))
        saved = manager.current()
        assert manager.save()["ok"] is True

        manager.reset()
        assert not manager.current().populated

        loaded = manager.load()
        assert loaded["ok"] is True
        assert manager.current() == saved

    def test_document_shape(self, manager, snapshot_settings):
        manager.refresh()
        doc = json.loads(Path(snapshot_settings.snapshot_path).read_text(encoding="utf-8"))

        assert doc["version"] == 1
        assert set(doc) >= {"profile", "performance", "joined", "lastUpdated", "lastRefreshReason", "stats"}
        assert doc["joined"]["count"] == 2
        assert doc["stats"]["apiCalls"] == 0  # fake source bypasses the client counters

    def test_save_requires_populated_snapshot(self, manager):
        result = manager.save()
        assert result["ok"] is False
        assert "empty" in result["error"]

    def test_load_missing_file(self, manager):
        result = manager.load()
        assert result == {"ok": False, "error": "Snapshot file not found"}

    def test_load_corrupt_file(self, manager, snapshot_settings):
        path = Path(snapshot_settings.snapshot_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{not json", encoding="utf-8")

        result = manager.load()
        assert result["ok"] is False
        assert "corrupt" in result["error"]

    def test_load_wrong_version(self, manager, snapshot_settings):
        path = Path(snapshot_settings.snapshot_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"version": 99}), encoding="utf-8")
        assert manager.load()["ok"] is False

    def test_load_restores_api_counters(self, manager, snapshot_settings, metrics):
        manager.refresh()
        path = Path(snapshot_settings.snapshot_path)
        doc = json.loads(path.read_text(encoding="utf-8"))
        doc["stats"] = {"apiCalls": 7, "lastApiCall": "2024-05-01T12:00:00+00:00"}
        path.write_text(json.dumps(doc), encoding="utf-8")

        manager.load()
        assert metrics.api_calls == 7

    def test_persistence_disabled(self, fake_source):
        settings = Settings(
            spreadsheet_id="abc",
            api_key="k",
            cache_mode=CacheMode.SNAPSHOT,
            snapshot_path="",
        )
        manager = SnapshotManager(settings, source=fake_source)

        result = manager.refresh()
        assert result.ok is True
        assert result.persisted is None
        assert manager.save()["ok"] is False
        assert manager.load()["ok"] is False
        assert manager.status()["file"] is None

    def test_snapshot_from_document_empty(self):
        empty = Snapshot()
        assert Snapshot.from_document(empty.to_document()) == empty


# ============================================
# Startup and reads
# ============================================


class TestStartup:
    """Tests for SnapshotManager.startup()."""

    def test_refreshes_when_no_file(self, manager, fake_source, snapshot_settings):
        manager.startup()

        assert manager.current().last_refresh_reason == "startup"
        assert Path(snapshot_settings.snapshot_path).exists()
        assert len(fake_source.calls) == 2

    def test_loads_existing_file_without_fetching(self, snapshot_settings, fake_source):
        SnapshotManager(snapshot_settings, source=fake_source).refresh(RefreshRequest(reason="earlier"))
        fake_source.calls.clear()

        restarted = SnapshotManager(snapshot_settings, source=fake_source)
        restarted.startup()

        assert fake_source.calls == []
        assert restarted.current().last_refresh_reason == "earlier"

    def test_refreshes_when_file_is_corrupt(self, manager, snapshot_settings):
        path = Path(snapshot_settings.snapshot_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("garbage", encoding="utf-8")

        manager.startup()
        assert manager.current().last_refresh_reason == "startup"
        assert _saved(snapshot_settings).populated

    def test_startup_failure_does_not_raise(self, manager, fake_source):
        fake_source.fail(PROFILE_RANGE)
        manager.startup()
        assert not manager.current().populated


class TestReads:
    """Tests for dataset reads in snapshot mode."""

    def test_first_access_populates_once(self, manager, fake_source, metrics):
        manager.profile()
        manager.performance()
        manager.schools()

        assert fake_source.calls == [PROFILE_RANGE, PERFORMANCE_RANGE]
        assert manager.current().last_refresh_reason == "first-access"
        assert metrics.cache_misses == 1
        assert metrics.cache_hits == 2

    def test_reads_never_expire(self, manager, fake_source):
        manager.refresh()
        fake_source.calls.clear()
        for _ in range(3):
            manager.profile()
        assert fake_source.calls == []

    def test_derived_views_come_from_snapshot(self, manager, fake_source):
        manager.refresh()
        fake_source.calls.clear()

        outer = manager.schools(only_matched=False)
        subset = manager.performance_key()

        assert fake_source.calls == []
        assert outer.count == 4
        assert subset.headers == ["School ID |  | "]

    def test_first_access_failure_raises_and_counts(self, manager, fake_source, metrics):
        fake_source.fail(PERFORMANCE_RANGE)

        with pytest.raises(UpstreamFetchError):
            manager.profile()

        assert metrics.errors == 1
        assert metrics.total_requests == 1
        assert not manager.current().populated

        fake_source.recover()
        assert manager.profile().row_count == 3

    def test_first_access_unexpected_error_raises_upstream_error(self, manager, fake_source, metrics):
        fake_source.fail_on[PERFORMANCE_RANGE] = RuntimeError("boom")

        with pytest.raises(UpstreamFetchError, match="boom"):
            manager.schools()

        assert metrics.errors == 1
        assert not manager.current().populated

    def test_status(self, manager):
        manager.refresh()
        status = manager.status()

        assert status["mode"] == "snapshot"
        assert status["snapshot"]["populated"] is True
        assert status["file"]["exists"] is True
        assert status["stats"]["mode"] == "snapshot"

    def test_raw_sheets_still_ttl_cached(self, manager, fake_source):
        fake_source.ranges["Sheet2!A:C"] = [["x"]]
        manager.sheet("Sheet2")
        manager.sheet("Sheet2")
        assert fake_source.calls == ["Sheet2!A:C"]
