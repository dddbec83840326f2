"""nodedeploy - Deploy command (single node or batch)"""

from typing import Any, Callable, Dict, Optional

import click
import inquirer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from nodedeploy.base import BaseCommand
from nodedeploy.constants import AGENT_RELEASE_ENV_VAR, AGENT_SERVICE, EXIT_PARAMETER_ERROR
from nodedeploy.core.batch import BatchOrchestrator
from nodedeploy.core.batch_config import check_batch_target, load_batch_config
from nodedeploy.core.deployer import DeploymentOutcome, NodeDeployer
from nodedeploy.core.params import ParameterResolver, load_environment
from nodedeploy.core.secret_generator import mask_secret
from nodedeploy.models.deployment import DeploymentMode, ExistingDeployment
from nodedeploy.models.paths import NodePaths
from nodedeploy.models.results import BatchReport
from nodedeploy.utils.locking import deployment_lock


def node_options(func):
    """Node parameter flags shared by deploy and update."""
    options = [
        click.option("--api-url", help="Control-plane API base URL (https)"),
        click.option("--admin-token", help="Admin JWT used to register the node"),
        click.option("--node-name", help="Node name shown in the admin panel"),
        click.option("--node-host", help="Public address (default: auto-detect)"),
        click.option("--node-port", help="Proxy listen port (default: 443)"),
        click.option(
            "--node-protocol",
            help="vless, vmess, trojan, shadowsocks or hysteria2 (default: vless)",
        ),
        click.option("--node-config", help="Protocol settings as a JSON object"),
        click.option("--env-file", type=click.Path(), help="Read parameters from a .env file"),
        click.option("--verbose", "-v", is_flag=True, help="Show all command output"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def node_values(**kwargs) -> Dict[str, Any]:
    """Map click keyword arguments to resolver parameter names."""
    return {
        "api_url": kwargs.get("api_url"),
        "admin_token": kwargs.get("admin_token"),
        "node_name": kwargs.get("node_name"),
        "node_host": kwargs.get("node_host"),
        "node_port": kwargs.get("node_port"),
        "node_protocol": kwargs.get("node_protocol"),
        "node_config": kwargs.get("node_config"),
    }


def show_deployment_summary(
    console: Console, outcome: DeploymentOutcome, log_path=None
) -> None:
    """Display the final node details and next steps."""
    config = outcome.config

    table = Table(title="Node Deployment Summary", title_justify="left", padding=(0, 1))
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    table.add_row("Mode", outcome.mode.value)
    table.add_row("Node Name", config.node_name)
    table.add_row("Node ID", str(config.node_id))
    table.add_row("Node Secret", mask_secret(config.node_secret))
    table.add_row("Host", str(config.node_host or "-"))
    table.add_row("Port", str(config.node_port))
    table.add_row("Protocol", config.protocol.value)
    table.add_row("Duration", f"{outcome.state.duration_seconds:.1f}s")
    table.add_row("Warnings", str(outcome.state.warning_count))
    for result in outcome.installs:
        table.add_row(result.component, result.status.value)

    console.print()
    console.print(table)
    console.print("\n[white]Next steps:[/white]")
    console.print("  1. Verify the node in the admin panel")
    console.print(f"  2. Follow agent logs: [cyan]journalctl -u {AGENT_SERVICE} -f[/cyan]")
    console.print("  3. Check status: [cyan]nodedeploy status[/cyan]")
    if log_path:
        console.print(f"\n[dim]Logs saved to:[/dim] {log_path}\n")


def show_batch_report(console: Console, report: BatchReport, log_path=None) -> None:
    """Display per-node results, totals and follow-up steps."""
    table = Table(title="Batch Deployment Results", title_justify="left", padding=(0, 1))
    table.add_column("#", style="dim")
    table.add_column("Node", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Exit", style="dim")
    table.add_column("Details", style="white")

    for index, result in enumerate(report.results, start=1):
        status = "[green]✓ success[/green]" if result.is_success else "[red]✗ failed[/red]"
        table.add_row(
            str(index), result.node_name, status, str(result.exit_code), escape(result.message)
        )

    console.print()
    console.print(table)
    console.print(
        f"\nTotal: {report.total}  "
        f"[green]Success: {report.success_count}[/green]  "
        f"[red]Failed: {report.failed_count}[/red]"
    )

    if report.failed_count == 0:
        console.print("[green]All nodes deployed successfully[/green]")
    elif report.success_count == 0:
        console.print("[red]All nodes failed to deploy[/red]")
    else:
        console.print("[yellow]Partial success: some nodes failed[/yellow]")

    if report.failed:
        console.print("\n[white]Troubleshooting failed nodes:[/white]")
        if log_path:
            console.print(f"  1. Check the deployment log: {log_path}")
        else:
            console.print("  1. Check the deployment log")
        console.print("  2. Review the error messages above")
        console.print("  3. Retry failed nodes individually for detailed errors")

    if report.succeeded:
        console.print("\n[white]Next steps for successful nodes:[/white]")
        console.print("  1. Verify the nodes in the admin panel")
        console.print(f"  2. Monitor agent logs: [cyan]journalctl -u {AGENT_SERVICE} -f[/cyan]")
    console.print()


class DeployCommand(BaseCommand):
    """Deploy a node on this host, or every node of a batch file."""

    def __init__(
        self,
        values: Dict[str, Any],
        env_file: Optional[str] = None,
        batch_config: Optional[str] = None,
        batch_target: Optional[str] = None,
        force: bool = False,
        verbose: bool = False,
        paths: Optional[NodePaths] = None,
        deployer_factory: Optional[Callable[..., NodeDeployer]] = None,
    ):
        super().__init__(verbose=verbose, paths=paths)
        self.values = values
        self.env_file = env_file
        self.batch_config = batch_config
        self.batch_target = batch_target
        self.force = force
        self.deployer_factory = deployer_factory or NodeDeployer.create

    def execute(self) -> None:
        """Execute deploy command."""
        if self.batch_config:
            self._deploy_batch()
        else:
            self._deploy_single()

    def _create_deployer(self, environ: Dict[str, str]) -> NodeDeployer:
        return self.deployer_factory(
            paths=self.paths,
            logger=self.logger,
            force=self.force,
            release_url=environ.get(AGENT_RELEASE_ENV_VAR),
        )

    def choose_mode(self, existing: ExistingDeployment) -> DeploymentMode:
        """Ask how to treat an existing deployment; --force means redeploy."""
        if self.force:
            self.logger.log("Force mode enabled (--force), proceeding with redeployment")
            return DeploymentMode.REDEPLOY

        self.console.print("\n[yellow]An existing node deployment was found on this host[/yellow]")
        if existing.node_id:
            self.console.print(f"  Node ID: [cyan]{escape(existing.node_id)}[/cyan]")
        if existing.api_url:
            self.console.print(f"  API URL: [cyan]{escape(existing.api_url)}[/cyan]")
        self.console.print()

        questions = [
            inquirer.List(
                "mode",
                message="How do you want to proceed?",
                choices=[
                    ("Update (keep node identity, refresh configuration)", "update"),
                    ("Redeploy (register a new node)", "redeploy"),
                    ("Cancel", "cancel"),
                ],
                default="update",
                carousel=True,
            )
        ]
        answers = inquirer.prompt(questions, raise_keyboard_interrupt=True)
        mode = DeploymentMode(answers["mode"]) if answers else DeploymentMode.CANCEL
        self.logger.log(f"Operator chose: {mode.value}")
        return mode

    def _deploy_single(self) -> None:
        environ = load_environment(self.env_file)
        config = ParameterResolver(environ).resolve(self.values)
        self.api_url = config.api_url
        self.node_port = config.node_port

        self.show_header(
            title="Deploy Node",
            node=config.node_name,
            details={
                "Protocol": config.protocol.value,
                "Port": config.node_port,
                "Host": config.node_host or "auto-detect",
            },
        )
        logger = self.init_logger("deploy", config.node_name)

        with deployment_lock(self.paths.lock_file):
            deployer = self._create_deployer(environ)
            deployer.check_environment()

            mode = DeploymentMode.FRESH
            existing = deployer.detector.detect()
            if existing.exists:
                logger.log(f"Existing deployment detected: {existing.to_dict()}")
                mode = self.choose_mode(existing)
                if mode == DeploymentMode.CANCEL:
                    self.print_warning("Deployment cancelled, nothing was changed")
                    return

            outcome = deployer.deploy(config, mode=mode, check_environment=False)

        show_deployment_summary(self.console, outcome, logger.log_path)

    def _deploy_batch(self) -> None:
        environ = load_environment(self.env_file)
        batch = load_batch_config(self.batch_config)
        check_batch_target(batch, self.batch_target)
        self.api_url = batch.api_url

        self.show_header(
            title="Batch Deployment",
            details={"Config": batch.source, "Nodes": len(batch.nodes)},
        )
        logger = self.init_logger("deploy", "batch")

        with deployment_lock(self.paths.lock_file):
            deployer = self._create_deployer(environ)
            deployer.check_environment()
            report = BatchOrchestrator(deployer, logger).run(batch)

        logger.set_summary(
            total=report.total, success=report.success_count, failed=report.failed_count
        )
        show_batch_report(self.console, report, logger.log_path)
        if not report.is_success:
            raise SystemExit(EXIT_PARAMETER_ERROR)


@click.command()
@node_options
@click.option(
    "--batch-config",
    type=click.Path(),
    help="YAML/JSON file listing several nodes to deploy",
)
@click.option(
    "--batch-target",
    type=click.Choice(["local", "remote"]),
    help="Where batch nodes are provisioned (only 'local' is supported)",
)
@click.option("--force", is_flag=True, help="Redeploy over an existing node without asking")
def deploy(env_file, verbose, batch_config, batch_target, force, **kwargs):
    """
    Deploy a VPN node on this host

    \b
    Examples:
      nodedeploy deploy --api-url https://panel.example.com \\
        --admin-token <JWT> --node-name edge-1
      nodedeploy deploy --env-file node.env --node-protocol trojan
      nodedeploy deploy --batch-config nodes.yml --batch-target local

    \b
    Exit codes:
      0 success, 1 parameter, 2 environment, 3 network,
      4 API, 5 install, 6 service, 130 interrupted
    """
    cmd = DeployCommand(
        node_values(**kwargs),
        env_file=env_file,
        batch_config=batch_config,
        batch_target=batch_target,
        force=force,
        verbose=verbose,
    )
    cmd.run()
