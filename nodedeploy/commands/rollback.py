"""nodedeploy - Rollback command"""

from typing import Optional

import click

from nodedeploy.base import BaseCommand
from nodedeploy.constants import AGENT_SERVICE, PROXY_SERVICE
from nodedeploy.core.environment import EnvironmentProbe
from nodedeploy.exceptions import BackupError
from nodedeploy.models.paths import NodePaths
from nodedeploy.services.backup_service import BackupManager
from nodedeploy.services.command_runner import CommandRunner
from nodedeploy.services.installer import InstallManager
from nodedeploy.services.supervisor import ServiceSupervisor
from nodedeploy.utils.locking import deployment_lock


class RollbackCommand(BaseCommand):
    """Restore the newest configuration snapshot and restart services."""

    def __init__(
        self,
        force: bool = False,
        verbose: bool = False,
        paths: Optional[NodePaths] = None,
        runner: Optional[CommandRunner] = None,
        probe: Optional[EnvironmentProbe] = None,
    ):
        super().__init__(verbose=verbose, paths=paths)
        self.force = force
        self.runner = runner
        self.probe = probe

    def execute(self) -> None:
        """Execute rollback command."""
        self.show_header(title="Rollback Node", details={"Backups": self.paths.backup_dir})
        logger = self.init_logger("rollback")
        runner = self.runner or CommandRunner(logger)
        probe = self.probe or EnvironmentProbe(self.paths, runner, logger)
        probe.check_root()

        backup = BackupManager(self.paths, runner, logger)
        snapshot = backup.latest()
        if snapshot is None:
            raise BackupError(
                "No backups found, cannot roll back",
                context=f"Backup directory: {self.paths.backup_dir}",
            )

        self.console.print(f"Latest backup: [cyan]{snapshot.snapshot_id}[/cyan]")
        for name in snapshot.files:
            self.print_dim(f"  {name}")

        if not self.force and not self.confirm("Restore this backup and restart services?"):
            self.print_dim("Rollback cancelled")
            return

        supervisor = ServiceSupervisor(self.paths, runner, logger)
        installer = InstallManager(self.paths, runner, logger)

        with deployment_lock(self.paths.lock_file):
            logger.step("Stopping services")
            supervisor.stop_all()

            logger.step(f"Restoring {snapshot.snapshot_id}")
            restored = backup.restore(snapshot)
            installer.secure_config_files()
            logger.success(f"Restored: {', '.join(restored) if restored else 'nothing'}")

            if not self.paths.service_unit.exists():
                logger.warning("Backup has no systemd unit, services were left stopped")
                return

            logger.step("Starting services")
            for service in (PROXY_SERVICE, AGENT_SERVICE):
                supervisor.start(service)
            supervisor.wait_until_active(PROXY_SERVICE)
            supervisor.wait_until_active(AGENT_SERVICE)

        self.print_success(f"Rolled back to {snapshot.snapshot_id}")
        self.print_dim(f"Log: {logger.log_path}")


@click.command()
@click.option("--force", is_flag=True, help="Skip the confirmation prompt")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def rollback(force, verbose):
    """
    Restore the latest configuration backup

    \b
    Stops services, restores agent config, Xray config and unit from
    the newest backup, then starts services again.

    \b
    Examples:
      nodedeploy rollback
      nodedeploy rollback --force
    """
    cmd = RollbackCommand(force=force, verbose=verbose)
    cmd.run()
