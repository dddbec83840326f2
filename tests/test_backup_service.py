import json
from datetime import datetime, timedelta

import pytest

from conftest import FakeRunner
from nodedeploy.exceptions import BackupError, ParameterError
from nodedeploy.services.backup_service import BackupManager
from nodedeploy.utils.files import file_mode


def ticking_clock(start=datetime(2026, 3, 1, 12, 0, 0)):
    moments = (start + timedelta(seconds=i) for i in range(1000))
    return lambda: next(moments)


def make_backup(paths, logger, runner=None):
    return BackupManager(paths, runner or FakeRunner(), logger, clock=ticking_clock())


def write_artifacts(paths, env="NODE_ID=1\n", proxy='{"inbounds": []}\n'):
    paths.agent_config.parent.mkdir(parents=True, exist_ok=True)
    paths.agent_config.write_text(env)
    paths.proxy_config.parent.mkdir(parents=True, exist_ok=True)
    paths.proxy_config.write_text(proxy)


class TestSnapshot:
    def test_nothing_to_back_up(self, paths, logger):
        assert make_backup(paths, logger).snapshot() is None
        assert not paths.backup_dir.exists()

    def test_snapshot_copies_existing_files(self, paths, logger):
        write_artifacts(paths)
        snapshot = make_backup(paths, logger).snapshot()

        assert snapshot.snapshot_id == "backup_20260301_120000_000000"
        assert snapshot.files == ["config.env", "xray_config.json"]
        assert (snapshot.path / "config.env").read_text() == "NODE_ID=1\n"
        manifest = json.loads((snapshot.path / "manifest.json").read_text())
        assert manifest["existing"] == ["config.env", "xray_config.json"]

    def test_list_is_newest_first(self, paths, logger):
        write_artifacts(paths)
        backup = make_backup(paths, logger)
        first = backup.snapshot()
        second = backup.snapshot()

        listed = [s.snapshot_id for s in backup.list_snapshots()]
        assert listed == [second.snapshot_id, first.snapshot_id]
        assert backup.latest().snapshot_id == second.snapshot_id


class TestRestore:
    def test_restore_reverts_and_removes_new_files(self, paths, logger):
        paths.agent_config.parent.mkdir(parents=True)
        paths.agent_config.write_text("NODE_ID=old\n")
        backup = make_backup(paths, logger)
        snapshot = backup.snapshot()

        paths.agent_config.write_text("NODE_ID=new\n")
        paths.service_unit.parent.mkdir(parents=True)
        paths.service_unit.write_text("[Unit]\n")

        restored = backup.restore(snapshot)

        assert restored == ["config.env"]
        assert paths.agent_config.read_text() == "NODE_ID=old\n"
        assert file_mode(paths.agent_config) == 0o600
        assert not paths.service_unit.exists()
        assert backup.runner.called("systemctl", "daemon-reload")

    def test_restore_latest_without_backups(self, paths, logger):
        with pytest.raises(BackupError, match="No backups found"):
            make_backup(paths, logger).restore_latest()


class TestCheckpoint:
    def test_checkpoint_taken_once_per_run(self, paths, logger):
        write_artifacts(paths)
        backup = make_backup(paths, logger)

        first = backup.checkpoint()
        assert backup.checkpoint() is first
        assert len(backup.list_snapshots()) == 1

        backup.reset_checkpoint()
        assert not backup.has_checkpoint
        backup.checkpoint()
        assert len(backup.list_snapshots()) == 2

    def test_rollback_without_checkpoint(self, paths, logger):
        assert not make_backup(paths, logger).rollback_checkpoint()

    def test_rollback_restores_previous_contents(self, paths, logger):
        write_artifacts(paths, env="NODE_ID=1\n")
        backup = make_backup(paths, logger)
        backup.checkpoint()
        paths.agent_config.write_text("NODE_ID=2\n")

        assert backup.rollback_checkpoint()
        assert paths.agent_config.read_text() == "NODE_ID=1\n"

    def test_rollback_of_fresh_host_removes_created_files(self, paths, logger):
        backup = make_backup(paths, logger)
        assert backup.checkpoint() is None
        write_artifacts(paths)

        assert backup.rollback_checkpoint()
        assert not paths.agent_config.exists()
        assert not paths.proxy_config.exists()


class TestPrune:
    def test_keeps_newest(self, paths, logger):
        write_artifacts(paths)
        backup = make_backup(paths, logger)
        snapshots = [backup.snapshot() for _ in range(4)]

        removed = backup.prune(keep=1)

        assert [s.snapshot_id for s in removed] == [
            s.snapshot_id for s in reversed(snapshots[:3])
        ]
        assert [s.snapshot_id for s in backup.list_snapshots()] == [snapshots[3].snapshot_id]

    def test_negative_keep(self, paths, logger):
        with pytest.raises(ParameterError):
            make_backup(paths, logger).prune(keep=-1)

    def test_remove_all(self, paths, logger):
        write_artifacts(paths)
        backup = make_backup(paths, logger)
        backup.snapshot()
        backup.remove_all()
        assert backup.list_snapshots() == []
