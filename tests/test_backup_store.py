"""
Unit tests for BackupStore.
"""

import json
from datetime import datetime

import pytest

from goswitch.core.backup_store import BackupStore, NoBackupAvailableError, SnapshotWriteError

FIXED = datetime(2024, 1, 1, 12, 0, 0)


def read_backup(backup_dir, timestamp):
    return json.loads((backup_dir / f"env_backup_{timestamp}.json").read_text(encoding="utf-8"))


@pytest.fixture
def fixed_store(tmp_path):
    return BackupStore(tmp_path / "backup_env", clock=lambda: FIXED)


class TestWriteSnapshot:
    """写前快照。"""

    def test_file_contents(self, fixed_store):
        snapshot = fixed_store.write_snapshot(r"C:\go", "amd64", r"C:\go\bin;C:\Windows")

        path = fixed_store.backup_dir / "env_backup_20240101_120000_000000.json"
        assert snapshot.backup_file == str(path)
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["install_root"] == r"C:\go"
        assert data["architecture"] == "amd64"
        assert data["search_path"] == r"C:\go\bin;C:\Windows"
        assert data["timestamp"] == "20240101_120000_000000"

    def test_same_instant_gets_distinct_timestamps(self, fixed_store):
        first = fixed_store.write_snapshot(r"C:\go", "amd64", "P1")
        second = fixed_store.write_snapshot(r"C:\go", "amd64", "P2")

        assert first.timestamp == "20240101_120000_000000"
        assert second.timestamp == "20240101_120000_000001"
        assert len(list(fixed_store.backup_dir.iterdir())) == 2

    def test_existing_file_is_never_overwritten(self, tmp_path):
        backup_dir = tmp_path / "backup_env"
        BackupStore(backup_dir, clock=lambda: FIXED).write_snapshot(r"C:\go", "amd64", "P1")

        snapshot = BackupStore(backup_dir, clock=lambda: FIXED).write_snapshot(r"C:\go", "386", "P2")

        assert snapshot.timestamp == "20240101_120000_000001"
        assert read_backup(backup_dir, "20240101_120000_000000")["search_path"] == "P1"

    def test_empty_values_make_invalid_snapshot(self, fixed_store):
        snapshot = fixed_store.write_snapshot(None, None, r"C:\Windows")

        assert snapshot.install_root == ""
        assert not snapshot.is_valid

    def test_unwritable_directory(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        store = BackupStore(blocker / "backup_env")

        with pytest.raises(SnapshotWriteError):
            store.write_snapshot(r"C:\go", "amd64", "P")


class TestSelection:
    """快照列举与最新有效快照的选择。"""

    def test_no_directory(self, tmp_path):
        store = BackupStore(tmp_path / "missing")

        assert store.list_snapshots() == []
        with pytest.raises(NoBackupAvailableError):
            store.latest()

    def test_latest_skips_invalid(self, fixed_store):
        valid = fixed_store.write_snapshot(r"C:\go", "amd64", "P1")
        fixed_store.write_snapshot("", "", "P2")

        assert fixed_store.latest() == valid
        assert len(fixed_store.list_snapshots()) == 2

    def test_only_invalid_snapshots(self, fixed_store):
        fixed_store.write_snapshot("", "amd64", "P1")

        with pytest.raises(NoBackupAvailableError):
            fixed_store.latest()

    def test_unreadable_file_is_skipped(self, fixed_store):
        good = fixed_store.write_snapshot(r"C:\go", "amd64", "P1")
        (fixed_store.backup_dir / "env_backup_29991231_235959_999999.json").write_text("{broken", encoding="utf-8")

        snapshots = fixed_store.list_snapshots()

        assert snapshots == [good]
        assert fixed_store.latest() == good

    def test_listing_is_ascending(self, tmp_path):
        backup_dir = tmp_path / "backup_env"
        for i, moment in enumerate([datetime(2024, 3, 1), datetime(2024, 1, 1), datetime(2024, 2, 1)]):
            BackupStore(backup_dir, clock=lambda m=moment: m).write_snapshot(r"C:\go", "amd64", f"P{i}")
        store = BackupStore(backup_dir)

        timestamps = [s.timestamp for s in store.list_snapshots()]

        assert timestamps == sorted(timestamps)
        assert store.latest().search_path == "P0"
