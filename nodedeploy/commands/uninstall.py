"""nodedeploy - Uninstall command"""

from typing import Optional

import click

from nodedeploy.base import BaseCommand
from nodedeploy.constants import AGENT_SERVICE, PROXY_BINARY
from nodedeploy.core.environment import EnvironmentProbe
from nodedeploy.models.paths import NodePaths
from nodedeploy.services.backup_service import BackupManager
from nodedeploy.services.command_runner import CommandRunner
from nodedeploy.services.installer import InstallManager
from nodedeploy.services.supervisor import ServiceSupervisor
from nodedeploy.utils.locking import deployment_lock


class UninstallCommand(BaseCommand):
    """Remove the node agent, its configuration and unit from this host."""

    def __init__(
        self,
        force: bool = False,
        remove_binaries: bool = False,
        remove_backups: bool = False,
        verbose: bool = False,
        paths: Optional[NodePaths] = None,
        runner: Optional[CommandRunner] = None,
        probe: Optional[EnvironmentProbe] = None,
    ):
        super().__init__(verbose=verbose, paths=paths)
        self.force = force
        self.remove_binaries = remove_binaries
        self.remove_backups = remove_backups
        self.runner = runner
        self.probe = probe

    def execute(self) -> None:
        """Execute uninstall command."""
        self.show_header(
            title="Uninstall Node",
            details={
                "Remove binaries": "yes" if self.remove_binaries else "no",
                "Remove backups": "yes" if self.remove_backups else "no",
            },
        )
        logger = self.init_logger("uninstall")
        runner = self.runner or CommandRunner(logger)
        probe = self.probe or EnvironmentProbe(self.paths, runner, logger)
        probe.check_root()

        if not self.force:
            self.print_warning("This removes the node agent, its configuration and systemd unit")
            if not self.confirm("Proceed with uninstall?"):
                self.print_dim("Uninstall cancelled")
                return

        supervisor = ServiceSupervisor(self.paths, runner, logger)
        installer = InstallManager(self.paths, runner, logger)
        backup = BackupManager(self.paths, runner, logger)

        with deployment_lock(self.paths.lock_file):
            logger.step("Stopping services")
            stopped = supervisor.stop_all()
            logger.success(f"Stopped: {', '.join(stopped)}" if stopped else "No services were running")
            supervisor.disable(AGENT_SERVICE)

            logger.step("Removing files")
            if supervisor.remove_unit():
                logger.success(f"Removed {self.paths.service_unit}")
            if installer.remove_agent_config():
                logger.success(f"Removed {self.paths.agent_config_dir}")

            if self.remove_binaries:
                if installer.remove_agent():
                    logger.success(f"Removed {self.paths.agent_binary}")
                logger.log(f"{PROXY_BINARY} is left installed, it may serve other services")

            if self.remove_backups:
                backup.remove_all()
                logger.success(f"Removed {self.paths.backup_dir}")
            elif self.paths.backup_dir.exists():
                logger.log(f"Keeping backups in {self.paths.backup_dir}")

        self.console.print("\n[color(248)]Node deployment removed from this host.[/color(248)]")
        if not self.remove_binaries:
            self.print_dim(f"Binaries kept: {self.paths.agent_binary}, {self.paths.proxy_binary}")
        if not self.remove_backups and self.paths.backup_dir.exists():
            self.print_dim(f"Backups kept: {self.paths.backup_dir}")
        self.print_dim(f"Log: {logger.log_path}")


@click.command()
@click.option("--force", is_flag=True, help="Skip the confirmation prompt")
@click.option("--remove-binaries", is_flag=True, help="Also remove the node-agent binary")
@click.option("--remove-backups", is_flag=True, help="Also remove configuration backups")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def uninstall(force, remove_binaries, remove_backups, verbose):
    """
    Remove the node deployment from this host

    \b
    Stops and disables node-agent, removes its unit and configuration.
    Xray-core is never removed; backups are kept unless asked.

    \b
    Examples:
      nodedeploy uninstall
      nodedeploy uninstall --force --remove-binaries
    """
    cmd = UninstallCommand(
        force=force,
        remove_binaries=remove_binaries,
        remove_backups=remove_backups,
        verbose=verbose,
    )
    cmd.run()
