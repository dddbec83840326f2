"""nodedeploy - Backup management commands"""

from typing import Optional

import click
from rich.table import Table

from nodedeploy.base import BaseCommand
from nodedeploy.exceptions import ParameterError
from nodedeploy.models.paths import NodePaths
from nodedeploy.services.backup_service import BackupManager


class BackupsListCommand(BaseCommand):
    """List configuration snapshots, newest first."""

    def __init__(
        self,
        verbose: bool = False,
        json_output: bool = False,
        paths: Optional[NodePaths] = None,
    ):
        super().__init__(verbose=verbose, json_output=json_output, paths=paths)

    def execute(self) -> None:
        """Execute backups:list command."""
        snapshots = BackupManager(self.paths).list_snapshots()

        if self.json_output:
            self.output_json({"backups": [s.to_dict() for s in snapshots]})
            return

        self.show_header(title="Backups", details={"Directory": self.paths.backup_dir})
        if not snapshots:
            self.print_dim("No backups found")
            return

        table = Table(show_header=True, padding=(0, 1))
        table.add_column("Backup", style="cyan", no_wrap=True)
        table.add_column("Created", style="white")
        table.add_column("Files", style="dim")
        for snapshot in snapshots:
            table.add_row(
                snapshot.snapshot_id,
                snapshot.created_at or "-",
                ", ".join(snapshot.files) or "-",
            )
        self.console.print(table)


class BackupsPruneCommand(BaseCommand):
    """Delete all but the newest N snapshots."""

    def __init__(
        self,
        keep: int,
        force: bool = False,
        verbose: bool = False,
        paths: Optional[NodePaths] = None,
    ):
        super().__init__(verbose=verbose, paths=paths)
        self.keep = keep
        self.force = force

    def execute(self) -> None:
        """Execute backups:prune command."""
        self.show_header(title="Prune Backups", details={"Keep": self.keep})
        logger = self.init_logger("backups-prune")
        backup = BackupManager(self.paths, logger=logger)

        if self.keep < 0:
            raise ParameterError("--keep must be zero or a positive number")

        candidates = backup.list_snapshots()[self.keep:]
        if not candidates:
            self.print_dim("Nothing to prune")
            return

        if not self.force and not self.confirm(f"Delete {len(candidates)} backup(s)?"):
            self.print_dim("Prune cancelled")
            return

        removed = backup.prune(self.keep)
        for snapshot in removed:
            logger.success(f"Removed {snapshot.snapshot_id}")
        self.print_success(f"Pruned {len(removed)} backup(s), kept {self.keep}")


@click.command(name="backups:list")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def backups_list(json_output, verbose):
    """
    List configuration backups

    \b
    Examples:
      nodedeploy backups:list
      nodedeploy backups:list --json
    """
    cmd = BackupsListCommand(verbose=verbose, json_output=json_output)
    cmd.run()


@click.command(name="backups:prune")
@click.option("--keep", type=int, required=True, help="Number of newest backups to keep")
@click.option("--force", is_flag=True, help="Skip the confirmation prompt")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def backups_prune(keep, force, verbose):
    """
    Delete old configuration backups

    \b
    Backups are never removed automatically.

    \b
    Examples:
      nodedeploy backups:prune --keep 5
    """
    cmd = BackupsPruneCommand(keep=keep, force=force, verbose=verbose)
    cmd.run()
