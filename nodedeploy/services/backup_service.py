"""Snapshot and restore of node configuration artifacts."""

import json
import shutil
from datetime import datetime
from typing import Callable, List, Optional

from nodedeploy.constants import (
    BACKUP_MANIFEST,
    BACKUP_PREFIX,
    BACKUP_TIMESTAMP_FORMAT,
    PUBLIC_FILE_MODE,
    SECRET_FILE_MODE,
)
from nodedeploy.exceptions import BackupError, ParameterError
from nodedeploy.logger import DeployLogger
from nodedeploy.models.deployment import BackupSnapshot
from nodedeploy.models.paths import NodePaths
from nodedeploy.services.command_runner import CommandRunner

# Restored files are left with these modes
ARTIFACT_MODES = {
    "config.env": SECRET_FILE_MODE,
    "xray_config.json": SECRET_FILE_MODE,
    "node-agent.service": PUBLIC_FILE_MODE,
}


class BackupManager:
    """
    Service for managing configuration snapshots.

    Snapshots live in timestamped directories under the backup root and are
    never deleted implicitly; pruning is an explicit operator action.
    """

    def __init__(
        self,
        paths: NodePaths,
        runner: Optional[CommandRunner] = None,
        logger: Optional[DeployLogger] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.paths = paths
        self.runner = runner
        self.logger = logger
        self.clock = clock
        self._checkpoint_taken = False
        self._checkpoint: Optional[BackupSnapshot] = None

    def _log(self, message: str, level: str = "INFO") -> None:
        if self.logger:
            self.logger.log(message, level)

    def snapshot(self) -> Optional[BackupSnapshot]:
        """
        Copy every existing artifact into a new snapshot directory.

        Returns:
            The snapshot, or None when there was nothing to back up
        """
        existing = [
            (name, live) for name, live in self.paths.backup_artifacts() if live.exists()
        ]
        if not existing:
            self._log("No existing configuration to back up")
            return None

        now = self.clock()
        snapshot_id = f"{BACKUP_PREFIX}{now.strftime(BACKUP_TIMESTAMP_FORMAT)}"
        snapshot_path = self.paths.backup_dir / snapshot_id

        try:
            self.paths.backup_dir.mkdir(parents=True, exist_ok=True)
            snapshot_path.mkdir(mode=0o700)
            for name, live in existing:
                shutil.copy2(live, snapshot_path / name)
        except OSError as e:
            raise BackupError(
                f"Failed to create backup {snapshot_id}", context=str(e)
            ) from e

        snapshot = BackupSnapshot(
            snapshot_id=snapshot_id,
            path=snapshot_path,
            created_at=now.isoformat(),
            files=[name for name, _ in existing],
            existing=[name for name, _ in existing],
        )
        (snapshot_path / BACKUP_MANIFEST).write_text(
            json.dumps(snapshot.to_dict(), indent=2)
        )

        self._log(f"Created backup: {snapshot_path} ({', '.join(snapshot.files)})")
        return snapshot

    def list_snapshots(self) -> List[BackupSnapshot]:
        """All snapshots, newest first."""
        if not self.paths.backup_dir.exists():
            return []

        snapshots = []
        for path in sorted(self.paths.backup_dir.glob(f"{BACKUP_PREFIX}*"), reverse=True):
            if not path.is_dir():
                continue
            manifest = path / BACKUP_MANIFEST
            if manifest.exists():
                try:
                    data = json.loads(manifest.read_text())
                except ValueError:
                    self._log(f"Ignoring unreadable manifest: {manifest}", "WARNING")
                    data = {}
                snapshots.append(BackupSnapshot.from_dict(path, data))
            else:
                # Snapshot without manifest: whatever files it holds existed
                names = [n for n, _ in self.paths.backup_artifacts() if (path / n).exists()]
                snapshots.append(
                    BackupSnapshot(path.name, path, "", files=names, existing=names)
                )
        return snapshots

    def latest(self) -> Optional[BackupSnapshot]:
        snapshots = self.list_snapshots()
        return snapshots[0] if snapshots else None

    def restore(self, snapshot: BackupSnapshot) -> List[str]:
        """
        Put the live artifacts back to the state captured in ``snapshot``.

        Files that did not exist when the snapshot was taken are removed.

        Returns:
            Names of the artifacts that were restored
        """
        restored = []
        try:
            for name, live in self.paths.backup_artifacts():
                saved = snapshot.path / name
                if name in snapshot.existing and saved.exists():
                    live.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(saved, live)
                    live.chmod(ARTIFACT_MODES[name])
                    restored.append(name)
                    self._log(f"Restored {live} from {snapshot.snapshot_id}")
                elif live.exists():
                    live.unlink()
                    self._log(f"Removed {live} (absent in {snapshot.snapshot_id})")
        except OSError as e:
            raise BackupError(
                f"Failed to restore backup {snapshot.snapshot_id}", context=str(e)
            ) from e

        self._daemon_reload()
        return restored

    def restore_latest(self) -> BackupSnapshot:
        snapshot = self.latest()
        if snapshot is None:
            raise BackupError(
                "No backups found",
                context=f"Backup directory: {self.paths.backup_dir}",
            )
        self.restore(snapshot)
        return snapshot

    def checkpoint(self) -> Optional[BackupSnapshot]:
        """Snapshot the current artifacts once per run."""
        if not self._checkpoint_taken:
            self._checkpoint = self.snapshot()
            self._checkpoint_taken = True
        return self._checkpoint

    def reset_checkpoint(self) -> None:
        """Forget the checkpoint so the next run takes its own."""
        self._checkpoint_taken = False
        self._checkpoint = None

    @property
    def has_checkpoint(self) -> bool:
        return self._checkpoint_taken

    def rollback_checkpoint(self) -> bool:
        """
        Return the artifacts to their state at checkpoint time.

        Returns:
            False if no checkpoint was taken in this run
        """
        if not self._checkpoint_taken:
            self._log("No checkpoint taken in this run, nothing to restore")
            return False

        if self._checkpoint is not None:
            self.restore(self._checkpoint)
            return True

        # Nothing existed at checkpoint time: remove what this run created
        for _, live in self.paths.backup_artifacts():
            if live.exists():
                live.unlink()
                self._log(f"Removed {live} (created during failed run)")
        self._daemon_reload()
        return True

    def prune(self, keep: int) -> List[BackupSnapshot]:
        """Delete all but the ``keep`` newest snapshots."""
        if keep < 0:
            raise ParameterError("--keep must be zero or a positive number")

        removed = self.list_snapshots()[keep:]
        for snapshot in removed:
            shutil.rmtree(snapshot.path)
            self._log(f"Pruned backup {snapshot.snapshot_id}")
        return removed

    def remove_all(self) -> None:
        if self.paths.backup_dir.exists():
            shutil.rmtree(self.paths.backup_dir)
            self._log(f"Removed backup directory {self.paths.backup_dir}")

    def _daemon_reload(self) -> None:
        if self.runner is None:
            return
        result = self.runner.run(["systemctl", "daemon-reload"])
        if result.is_failure:
            self._log(f"systemctl daemon-reload failed: {result.output}", "WARNING")
