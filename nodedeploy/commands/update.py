"""nodedeploy - Update command"""

from typing import Any, Callable, Dict, Optional

import click

from nodedeploy.base import BaseCommand
from nodedeploy.commands.deploy import node_options, node_values, show_deployment_summary
from nodedeploy.constants import AGENT_RELEASE_ENV_VAR
from nodedeploy.core.deployer import NodeDeployer
from nodedeploy.core.params import ParameterResolver, load_environment
from nodedeploy.exceptions import ParameterError
from nodedeploy.models.deployment import DeploymentMode
from nodedeploy.models.paths import NodePaths
from nodedeploy.services.detector import ExistingDeploymentDetector
from nodedeploy.utils.locking import deployment_lock


class UpdateCommand(BaseCommand):
    """Refresh configuration and services of an existing node, keeping its identity."""

    def __init__(
        self,
        values: Dict[str, Any],
        env_file: Optional[str] = None,
        verbose: bool = False,
        paths: Optional[NodePaths] = None,
        deployer_factory: Optional[Callable[..., NodeDeployer]] = None,
    ):
        super().__init__(verbose=verbose, paths=paths)
        self.values = values
        self.env_file = env_file
        self.deployer_factory = deployer_factory or NodeDeployer.create

    def execute(self) -> None:
        """Execute update command."""
        environ = load_environment(self.env_file)

        existing = ExistingDeploymentDetector(self.paths).detect()
        if not existing.exists:
            raise ParameterError(
                "No existing node deployment found on this host",
                context="Run 'nodedeploy deploy' for a fresh deployment",
            )

        config = ParameterResolver(environ).resolve_update(self.values, existing)
        self.api_url = config.api_url
        self.node_port = config.node_port

        self.show_header(
            title="Update Node",
            node=config.node_name,
            details={"Node ID": existing.node_id or "unknown", "Protocol": config.protocol.value},
        )
        logger = self.init_logger("update", config.node_name)

        with deployment_lock(self.paths.lock_file):
            deployer = self.deployer_factory(
                paths=self.paths,
                logger=logger,
                release_url=environ.get(AGENT_RELEASE_ENV_VAR),
            )
            deployer.check_environment()
            outcome = deployer.deploy(
                config, mode=DeploymentMode.UPDATE, check_environment=False
            )

        show_deployment_summary(self.console, outcome, logger.log_path)


@click.command()
@node_options
def update(env_file, verbose, **kwargs):
    """
    Update an existing node in place

    Regenerates the proxy config, agent config and systemd unit, then
    restarts services. Node ID and secret are kept.

    \b
    Examples:
      nodedeploy update
      nodedeploy update --node-port 8443 --node-protocol trojan
    """
    cmd = UpdateCommand(node_values(**kwargs), env_file=env_file, verbose=verbose)
    cmd.run()
