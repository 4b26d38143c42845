"""Tests for schoolsheets.lib.storage module."""

import os

from schoolsheets.lib.storage import LocalStorage


class TestLocalStorage:
    """Tests for LocalStorage reads and atomic writes."""

    def test_write_then_read(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        result = storage.write_atomic("snapshot.json", b'{"a": 1}')

        assert result.success is True
        assert result.bytes_written == 8
        assert storage.read_bytes("snapshot.json") == b'{"a": 1}'

    def test_creates_parent_directories(self, tmp_path):
        storage = LocalStorage(str(tmp_path / "nested" / "dir"))
        assert storage.write_atomic("file.json", b"{}").success
        assert (tmp_path / "nested" / "dir" / "file.json").exists()

    def test_replaces_existing_file(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        storage.write_atomic("f.json", b"old")
        storage.write_atomic("f.json", b"new")
        assert storage.read_bytes("f.json") == b"new"

    def test_no_temp_files_left_behind(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        storage.write_atomic("f.json", b"data")
        assert os.listdir(tmp_path) == ["f.json"]

    def test_failed_replace_keeps_previous_file(self, tmp_path, monkeypatch):
        storage = LocalStorage(str(tmp_path))
        storage.write_atomic("f.json", b"complete")

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("schoolsheets.lib.storage.local.os.replace", broken_replace)
        result = storage.write_atomic("f.json", b"partial")

        assert result.success is False
        assert "disk full" in result.error
        assert storage.read_bytes("f.json") == b"complete"
        assert os.listdir(tmp_path) == ["f.json"]

    def test_file_info(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        assert storage.get_file_info("missing.json") is None

        storage.write_atomic("f.json", b"12345")
        info = storage.get_file_info("f.json")
        assert info.size == 5
        assert info.to_dict()["modified"] is not None

    def test_exists_and_delete(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        storage.write_atomic("f.json", b"x")
        assert storage.exists("f.json")
        assert storage.delete("f.json") is True
        assert storage.delete("f.json") is False
        assert not storage.exists("f.json")
