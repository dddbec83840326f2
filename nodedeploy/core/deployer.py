"""
Deployment State Machine

Drives one node through env_check -> api_call -> install -> config ->
start -> verify -> complete, recording the phase in DeploymentState and
rolling back according to the phase that failed.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional

import requests

from nodedeploy.constants import AGENT_SERVICE, PROXY_SERVICE
from nodedeploy.core.environment import EnvironmentProbe, OSInfo
from nodedeploy.core.public_ip import PublicIPDetector
from nodedeploy.core.secret_generator import generate_node_secret, mask_secret
from nodedeploy.exceptions import (
    APIError,
    EnvironmentCheckError,
    InstallError,
    NodeDeployError,
    ParameterError,
    ServiceError,
)
from nodedeploy.logger import DeployLogger
from nodedeploy.models.deployment import (
    DeploymentConfig,
    DeploymentMode,
    DeploymentState,
    Phase,
)
from nodedeploy.models.paths import NodePaths
from nodedeploy.models.results import InstallResult
from nodedeploy.services.api_client import ControlPlaneClient
from nodedeploy.services.backup_service import BackupManager
from nodedeploy.services.command_runner import CommandRunner
from nodedeploy.services.detector import ExistingDeploymentDetector
from nodedeploy.services.installer import InstallManager
from nodedeploy.services.supervisor import ServiceSupervisor
from nodedeploy.utils.files import TempFileRegistry

PHASE_TITLES = {
    Phase.ENV_CHECK: "Checking environment",
    Phase.API_CALL: "Registering node with control plane",
    Phase.INSTALL: "Installing components",
    Phase.CONFIG: "Writing configuration",
    Phase.START: "Starting services",
    Phase.VERIFY: "Verifying deployment",
}

# Unclassified exceptions inside a phase are reported as this error type
PHASE_ERRORS = {
    Phase.ENV_CHECK: EnvironmentCheckError,
    Phase.API_CALL: APIError,
    Phase.INSTALL: InstallError,
    Phase.CONFIG: InstallError,
    Phase.START: ServiceError,
    Phase.VERIFY: ServiceError,
}

ROLLBACK_PHASES = (Phase.INSTALL, Phase.CONFIG, Phase.START)


@dataclass
class VerificationReport:
    """Post-start health checks."""

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.errors


@dataclass
class DeploymentOutcome:
    """Everything a caller needs after a successful run."""

    config: DeploymentConfig
    state: DeploymentState
    mode: DeploymentMode
    installs: List[InstallResult] = field(default_factory=list)
    verification: Optional[VerificationReport] = None


class NodeDeployer:
    """
    Single-node deployment pipeline.

    Collaborators are injected so the whole pipeline can run against a
    sandbox root with fake commands and HTTP sessions.
    """

    def __init__(
        self,
        logger: DeployLogger,
        probe: EnvironmentProbe,
        ip_detector: PublicIPDetector,
        installer: InstallManager,
        supervisor: ServiceSupervisor,
        backup: BackupManager,
        detector: ExistingDeploymentDetector,
        temp_files: TempFileRegistry,
        client_factory: Callable[[DeploymentConfig], ControlPlaneClient],
        secret_factory: Callable[[], str] = generate_node_secret,
    ):
        self.logger = logger
        self.probe = probe
        self.ip_detector = ip_detector
        self.installer = installer
        self.supervisor = supervisor
        self.backup = backup
        self.detector = detector
        self.temp_files = temp_files
        self.client_factory = client_factory
        self.secret_factory = secret_factory
        self.state: Optional[DeploymentState] = None

    @classmethod
    def create(
        cls,
        paths: NodePaths,
        logger: DeployLogger,
        force: bool = False,
        session: Optional[requests.Session] = None,
        release_url: Optional[str] = None,
    ) -> "NodeDeployer":
        """Wire the production collaborators."""
        session = session or requests.Session()
        runner = CommandRunner(logger)
        temp_files = TempFileRegistry(paths.temp_dir)
        backup = BackupManager(paths, runner, logger)

        return cls(
            logger=logger,
            probe=EnvironmentProbe(paths, runner, logger),
            ip_detector=PublicIPDetector(logger, session=session),
            installer=InstallManager(
                paths,
                runner,
                logger,
                backup=backup,
                force=force,
                session=session,
                temp_files=temp_files,
                release_url=release_url,
            ),
            supervisor=ServiceSupervisor(paths, runner, logger, backup=backup),
            backup=backup,
            detector=ExistingDeploymentDetector(paths),
            temp_files=temp_files,
            client_factory=lambda config: ControlPlaneClient(
                config.api_url, config.admin_token, logger=logger, session=session
            ),
        )

    def check_environment(self) -> OSInfo:
        """
        Run the env_check phase ahead of the pipeline.

        Used when the operator has to be asked about an existing deployment
        before deploy() starts. A failure is recorded on self.state and in
        the log summary like any other phase failure.
        """
        state = DeploymentState()
        state.start()
        self.state = state
        try:
            with self._phase(state, Phase.ENV_CHECK):
                return self.probe.probe()
        except (Exception, KeyboardInterrupt) as exc:
            self._handle_failure(state, exc)
            self._finish(state)
            raise

    @contextmanager
    def _phase(self, state: DeploymentState, phase: Phase) -> Iterator[None]:
        state.advance(phase)
        self.logger.step(PHASE_TITLES[phase])
        self.logger.log(f"Phase: {phase.value}")
        try:
            yield
        except NodeDeployError:
            raise
        except Exception as e:
            raise PHASE_ERRORS[phase](
                f"Unexpected error during {phase.value}: {e}",
                context=type(e).__name__,
            ) from e

    def deploy(
        self,
        config: DeploymentConfig,
        mode: DeploymentMode = DeploymentMode.FRESH,
        check_environment: bool = True,
    ) -> DeploymentOutcome:
        """
        Run the pipeline for one node.

        Args:
            config: Resolved node parameters
            mode: FRESH, REDEPLOY or UPDATE
            check_environment: Run the environment probe inside the pipeline

        Returns:
            DeploymentOutcome with the final config (including identity)

        Raises:
            NodeDeployError: Classified failure, after phase-appropriate rollback
        """
        if mode == DeploymentMode.CANCEL:
            raise ParameterError("A cancelled deployment cannot be run")

        state = DeploymentState()
        state.start()
        self.state = state
        self.backup.reset_checkpoint()
        self.logger.add_sensitive(config.admin_token)
        self.logger.add_sensitive(config.node_secret)
        self.logger.log(f"Deployment started ({mode.value}): {config!r}")

        try:
            if mode == DeploymentMode.UPDATE:
                outcome = self._run_update(config, state, check_environment)
            else:
                outcome = self._run_fresh(config, state, mode, check_environment)
            state.advance(Phase.COMPLETE)
        except (Exception, KeyboardInterrupt) as exc:
            self._handle_failure(state, exc)
            raise
        finally:
            self._finish(state)

        self.logger.success(
            f"Node '{outcome.config.node_name}' deployed "
            f"(id: {outcome.config.node_id}, {state.warning_count} warning(s))"
        )
        return outcome

    def _env_check(self, check_environment: bool) -> None:
        if check_environment:
            self.probe.probe()
        else:
            self.logger.log("Environment already verified for this run")

    def _run_fresh(
        self,
        config: DeploymentConfig,
        state: DeploymentState,
        mode: DeploymentMode,
        check_environment: bool,
    ) -> DeploymentOutcome:
        with self._phase(state, Phase.ENV_CHECK):
            self._env_check(check_environment)
            if mode == DeploymentMode.REDEPLOY:
                self.logger.log("Redeploy: stopping services and backing up configuration")
                self.supervisor.stop_all()
                self.backup.checkpoint()

        with self._phase(state, Phase.API_CALL):
            if not config.node_host:
                config = config.with_host(self.ip_detector.detect())
                self.logger.success(f"Detected public IP: {config.node_host}")

            secret = self.secret_factory()
            self.logger.add_sensitive(secret)
            client = self.client_factory(config)
            registration = client.register_node(config, secret)
            config = config.with_identity(registration.node_id, registration.node_secret)
            self.logger.add_sensitive(config.node_secret)
            self.logger.success(
                f"Node registered (id: {config.node_id}, secret: {mask_secret(config.node_secret)})"
            )

        installs = self._install(state)
        self._configure(state, config)
        self._start(state)
        verification = self._verify_phase(state, config, client)

        return DeploymentOutcome(config, state, mode, installs, verification)

    def _run_update(
        self, config: DeploymentConfig, state: DeploymentState, check_environment: bool
    ) -> DeploymentOutcome:
        with self._phase(state, Phase.ENV_CHECK):
            self._env_check(check_environment)
            if not config.has_identity:
                existing = self.detector.detect()
                if not existing.has_identity:
                    raise ParameterError(
                        "No existing node identity to update",
                        context="NODE_ID/NODE_SECRET missing from agent config; "
                        "run 'nodedeploy deploy --force' to redeploy",
                    )
                config = config.with_identity(existing.node_id, existing.node_secret)
            self.logger.add_sensitive(config.node_secret)
            self.logger.success(
                f"Keeping node identity (id: {config.node_id}, secret: {mask_secret(config.node_secret)})"
            )

        installs = self._install(state)
        self._configure(state, config)
        self._start(state, restart=True)
        verification = self._verify_phase(state, config, self.client_factory(config))

        return DeploymentOutcome(config, state, DeploymentMode.UPDATE, installs, verification)

    def _install(self, state: DeploymentState) -> List[InstallResult]:
        with self._phase(state, Phase.INSTALL):
            self.backup.checkpoint()
            return [
                self.installer.ensure_proxy_engine().raise_for_status(),
                self.installer.ensure_agent().raise_for_status(),
            ]

    def _configure(self, state: DeploymentState, config: DeploymentConfig) -> None:
        with self._phase(state, Phase.CONFIG):
            self.installer.render_proxy_config(config)
            self.installer.render_agent_config(config.node_id, config.node_secret, config.api_url)
            self.installer.secure_config_files()

            permissions = self.installer.verify_config_permissions()
            if permissions.has_errors:
                raise InstallError(
                    "Configuration files are readable by other users",
                    context="; ".join(permissions.errors),
                )
            for warning in permissions.warnings:
                state.record_warning()
                self.logger.warning(warning)

            self.supervisor.write_service_unit()

    def _start(self, state: DeploymentState, restart: bool = False) -> None:
        with self._phase(state, Phase.START):
            for service in (PROXY_SERVICE, AGENT_SERVICE):
                state.services_started = True
                if restart or self.supervisor.is_active(service):
                    self.supervisor.restart(service)
                else:
                    self.supervisor.start(service)
            self.supervisor.wait_until_active(PROXY_SERVICE)
            self.supervisor.wait_until_active(AGENT_SERVICE)

    def _verify_phase(
        self, state: DeploymentState, config: DeploymentConfig, client: ControlPlaneClient
    ) -> VerificationReport:
        with self._phase(state, Phase.VERIFY):
            report = self.verify(config, client)
            for warning in report.warnings:
                state.record_warning()
                self.logger.warning(warning)
            if not report.passed:
                raise ServiceError(
                    "Deployment verification failed",
                    context="; ".join(report.errors),
                    recent_logs=self.supervisor.recent_logs(),
                )
            self.logger.success("Verification passed")
            return report

    def verify(
        self, config: DeploymentConfig, client: ControlPlaneClient
    ) -> VerificationReport:
        """Service state is an error; port, API and journal checks are warnings."""
        report = VerificationReport()

        service_state = self.supervisor.service_state(AGENT_SERVICE)
        if service_state["ActiveState"] != "active":
            report.errors.append(
                f"{AGENT_SERVICE} is not active (ActiveState={service_state['ActiveState']})"
            )
        elif service_state["SubState"] != "running":
            report.warnings.append(
                f"{AGENT_SERVICE} is active but not running (SubState={service_state['SubState']})"
            )

        if not self.supervisor.is_port_listening(config.node_port):
            report.warnings.append(f"Port {config.node_port} is not listening yet")

        if not client.check_reachable():
            report.warnings.append(f"Control plane API not reachable: {config.api_url}")

        error_lines = self.supervisor.scan_logs_for_errors()
        if error_lines:
            report.warnings.append(
                f"Found {error_lines} error line(s) in recent {AGENT_SERVICE} logs"
            )

        return report

    def _handle_failure(self, state: DeploymentState, error: BaseException) -> None:
        state.record_error(error)
        phase = state.phase
        self.logger.log(f"Deployment failed during '{phase.value}': {error}", "ERROR")

        if phase in ROLLBACK_PHASES:
            self.rollback(state)
        elif phase == Phase.API_CALL:
            self.logger.log("No local changes were made, rollback not needed")
        elif phase == Phase.VERIFY:
            state.record_warning()
            self.logger.warning("Services were started but verification failed, no rollback performed")

    def rollback(self, state: DeploymentState) -> bool:
        """Stop started services and restore the checkpoint of this run."""
        self.logger.step("Rolling back")
        try:
            if state.services_started:
                stopped = self.supervisor.stop_all()
                if stopped:
                    self.logger.log(f"Stopped: {', '.join(stopped)}")
            if self.backup.rollback_checkpoint():
                self.logger.success("Configuration restored to pre-deployment state")
        except (NodeDeployError, OSError) as e:
            self.logger.log_error(f"Rollback incomplete: {e}", context="Restore manually with 'nodedeploy rollback'")
            return False
        return True

    def _finish(self, state: DeploymentState) -> None:
        try:
            removed = self.temp_files.cleanup()
        except OSError as e:
            self.logger.warning(f"Failed to remove temporary files: {e}")
        else:
            if removed:
                self.logger.log(f"Removed {len(removed)} temporary file(s)")

        state.finish()
        self.logger.set_summary(
            phase=state.phase.value,
            errors=state.error_count,
            warnings=state.warning_count,
            duration=f"{state.duration_seconds:.1f}s",
        )
