"""
Batch Orchestrator

Runs the single-node pipeline once per batch entry and records one result
per node, continuing past failures.
"""

from typing import Optional

from nodedeploy.constants import EXIT_SUCCESS
from nodedeploy.core.batch_config import BatchConfig
from nodedeploy.core.deployer import NodeDeployer
from nodedeploy.core.params import ParameterResolver
from nodedeploy.exceptions import NodeDeployError
from nodedeploy.logger import DeployLogger
from nodedeploy.models.deployment import DeploymentMode
from nodedeploy.models.results import BatchReport, BatchResult, BatchStatus


class BatchOrchestrator:
    """Deploys every node of a BatchConfig in file order."""

    def __init__(
        self,
        deployer: NodeDeployer,
        logger: DeployLogger,
        resolver: Optional[ParameterResolver] = None,
    ):
        self.deployer = deployer
        self.logger = logger
        # Batch entries carry their own values; the process env must not leak in
        self.resolver = resolver or ParameterResolver(environ={})

    def run(
        self, batch: BatchConfig, mode: DeploymentMode = DeploymentMode.FRESH
    ) -> BatchReport:
        """
        Deploy each node and collect the results.

        KeyboardInterrupt is not recorded; it stops the whole batch.
        """
        report = BatchReport()
        total = len(batch.nodes)
        self.logger.add_sensitive(batch.admin_token)

        for index, spec in enumerate(batch.nodes, start=1):
            self.logger.step(f"[{index}/{total}] Deploying node '{spec.name}'")
            try:
                config = self.resolver.resolve(
                    spec.cli_values(batch.api_url, batch.admin_token)
                )
                outcome = self.deployer.deploy(config, mode=mode, check_environment=False)
            except NodeDeployError as e:
                self.logger.log_error(f"Node '{spec.name}' failed: {e.message}", context=e.context)
                report.add(
                    BatchResult(
                        node_name=spec.name,
                        status=BatchStatus.FAILED,
                        message=e.message,
                        exit_code=e.exit_code,
                    )
                )
                continue

            report.add(
                BatchResult(
                    node_name=spec.name,
                    status=BatchStatus.SUCCESS,
                    message=f"Node ID: {outcome.config.node_id}",
                    exit_code=EXIT_SUCCESS,
                )
            )

        self.logger.log(
            f"Batch finished: {report.success_count}/{report.total} succeeded"
        )
        return report
