"""Tests for backup retention, compression and lookup."""

import gzip
import logging
import os
import time

import pytest

from roadmap_engine.core.exceptions import BackupNotFoundError
from roadmap_engine.roadmap import backups as backups_module
from roadmap_engine.roadmap.backups import BackupManager, backup_timestamp

DAY = 24 * 60 * 60


def _age(path, seconds):
    stamp = time.time() - seconds
    os.utime(path, (stamp, stamp))
    return stamp


class TestBackupTimestamp:
    def test_filename_safe(self):
        stamp = backup_timestamp()
        assert ":" not in stamp
        assert "." not in stamp
        assert stamp.endswith("Z")


class TestRetention:
    def test_keeps_newest_five(self, tmp_path):
        manager = BackupManager(tmp_path / "backups", max_backups=5)
        created = []
        for i in range(7):
            path = manager.create_backup(f'{{"n": {i}}}')
            _age(path, 100 - i)
            created.append(path.name)
            manager.cleanup_backups()

        names = [entry.filename for entry in manager.list_backups()]
        assert len(names) == 5
        assert names == list(reversed(created[2:]))

    def test_name_collisions_get_suffix(self, tmp_path, monkeypatch):
        monkeypatch.setattr(backups_module, "backup_timestamp", lambda: "fixed")
        manager = BackupManager(tmp_path)

        first = manager.create_backup("a")
        second = manager.create_backup("b")

        assert first.name == "roadmap-state-fixed.json"
        assert second.name == "roadmap-state-fixed-1.json"
        assert first.read_text(encoding="utf-8") == "a"


class TestCompression:
    def test_old_backups_gzipped(self, tmp_path):
        manager = BackupManager(tmp_path, gzip_after_seconds=DAY)
        old = manager.create_backup('{"old": true}')
        stamp = _age(old, DAY + 3600)
        fresh = manager.create_backup('{"fresh": true}')

        manager.cleanup_backups()

        gz_path = old.with_name(old.name + ".gz")
        assert not old.exists()
        assert gz_path.exists()
        assert abs(gz_path.stat().st_mtime - stamp) < 1
        with gzip.open(gz_path, "rb") as f:
            assert f.read() == b'{"old": true}'
        assert fresh.exists()

    def test_gzip_failure_keeps_plaintext(self, tmp_path, monkeypatch, caplog):
        manager = BackupManager(tmp_path, gzip_after_seconds=DAY)
        old = manager.create_backup("{}")
        _age(old, 2 * DAY)

        def failing_open(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(backups_module.gzip, "open", failing_open)

        with caplog.at_level(logging.WARNING, logger="roadmap_engine.roadmap.backups"):
            manager.cleanup_backups()

        assert old.exists()
        assert not old.with_name(old.name + ".gz").exists()
        assert any("Failed to gzip backup" in r.getMessage() for r in caplog.records)


class TestReadBackup:
    def test_reads_plain_and_compressed(self, tmp_path):
        manager = BackupManager(tmp_path, gzip_after_seconds=DAY)
        path = manager.create_backup('{"v": 1}')
        assert manager.read_backup(path.name) == '{"v": 1}'

        _age(path, 2 * DAY)
        manager.cleanup_backups()
        assert manager.read_backup(path.name + ".gz") == '{"v": 1}'

    def test_unknown_backup_raises(self, tmp_path):
        manager = BackupManager(tmp_path)
        with pytest.raises(BackupNotFoundError, match="Unknown roadmap backup: nope.json"):
            manager.read_backup("nope.json")

    def test_path_outside_directory_not_served(self, tmp_path):
        (tmp_path / "secret.json").write_text("{}", encoding="utf-8")
        manager = BackupManager(tmp_path / "backups")
        with pytest.raises(BackupNotFoundError):
            manager.read_backup("../secret.json")

    def test_list_versions_shape(self, tmp_path):
        manager = BackupManager(tmp_path)
        manager.create_backup("{}")
        entry = manager.list_backups()[0].to_dict()
        assert set(entry) == {"filename", "size", "modifiedAt"}
        assert entry["size"] == 2
        assert entry["modifiedAt"].endswith("Z")
