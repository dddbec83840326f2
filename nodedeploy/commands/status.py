"""nodedeploy - Status command"""

from typing import Any, Dict, Optional

import click
from rich.table import Table

from nodedeploy.base import BaseCommand
from nodedeploy.constants import AGENT_SERVICE, PROXY_SERVICE
from nodedeploy.models.paths import NodePaths
from nodedeploy.services.backup_service import BackupManager
from nodedeploy.services.command_runner import CommandRunner
from nodedeploy.services.detector import ExistingDeploymentDetector
from nodedeploy.services.supervisor import ServiceSupervisor


class StatusCommand(BaseCommand):
    """Show services, configuration presence, identity and latest backup."""

    def __init__(
        self,
        verbose: bool = False,
        json_output: bool = False,
        paths: Optional[NodePaths] = None,
        runner: Optional[CommandRunner] = None,
    ):
        super().__init__(verbose=verbose, json_output=json_output, paths=paths)
        self.runner = runner
        self.table = Table(
            title="Node Status",
            title_justify="left",
            padding=(0, 1),
        )
        self.table.add_column("Component", style="cyan", no_wrap=True)
        self.table.add_column("Status", style="green")
        self.table.add_column("Details", style="dim")

    def collect(self) -> Dict[str, Any]:
        """Gather everything the status view shows."""
        runner = self.runner or CommandRunner()
        supervisor = ServiceSupervisor(self.paths, runner, logger=None)
        existing = ExistingDeploymentDetector(self.paths).detect()
        latest = BackupManager(self.paths).latest()

        return {
            "deployed": existing.exists,
            "services": {
                AGENT_SERVICE: supervisor.status(AGENT_SERVICE),
                PROXY_SERVICE: supervisor.status(PROXY_SERVICE),
            },
            "files": {
                "agent_config": str(self.paths.agent_config) if existing.agent_config else None,
                "proxy_config": str(self.paths.proxy_config)
                if self.paths.proxy_config.exists()
                else None,
                "service_unit": str(self.paths.service_unit) if existing.service_unit else None,
            },
            "node": existing.to_dict(),
            "latest_backup": latest.to_dict() if latest else None,
        }

    def execute(self) -> None:
        """Execute status command."""
        data = self.collect()
        if self.json_output:
            self.output_json(data)
            return

        self.show_header(title="Node Status")

        for name, service in data["services"].items():
            active = service["active"]
            marker = "[green]●[/green]" if active == "active" else "[red]●[/red]"
            self.table.add_row(
                name, f"{marker} {active}/{service['sub']}", service["enabled"]
            )

        for label, path in data["files"].items():
            self.table.add_row(
                label.replace("_", " "),
                "[green]present[/green]" if path else "[yellow]missing[/yellow]",
                path or "-",
            )

        node = data["node"]
        self.table.add_row(
            "identity",
            "[green]registered[/green]" if node["node_id"] else "[yellow]none[/yellow]",
            f"id={node['node_id'] or '-'} secret={node['node_secret']}",
        )
        if node["node_port"]:
            self.table.add_row("inbound", node["protocol"] or "-", f"port {node['node_port']}")

        backup = data["latest_backup"]
        self.table.add_row(
            "latest backup",
            backup["snapshot_id"] if backup else "-",
            ", ".join(backup["files"]) if backup else "no backups",
        )

        self.console.print(self.table)
        if not data["deployed"]:
            self.console.print("\n[dim]No node deployed. Run[/dim] [cyan]nodedeploy deploy --help[/cyan]\n")


@click.command()
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def status(json_output, verbose):
    """
    Show node deployment status

    \b
    Examples:
      nodedeploy status
      nodedeploy status --json
    """
    cmd = StatusCommand(verbose=verbose, json_output=json_output)
    cmd.run()
