"""
Install Manager

Idempotent installation of the proxy engine and node agent binaries, and
rendering of their configuration files.
"""

import platform
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import requests

from nodedeploy.constants import (
    ACCEPTED_SECRET_MODES,
    AGENT_BINARY,
    AGENT_LOG_LEVEL,
    AGENT_RELEASE_URL,
    DOWNLOAD_CHUNK_SIZE,
    DOWNLOAD_MAX_ATTEMPTS,
    DOWNLOAD_RETRY_DELAY,
    DOWNLOAD_TIMEOUT,
    EXECUTABLE_MODE,
    HEARTBEAT_INTERVAL,
    MIN_BINARY_SIZE,
    PROXY_BINARY,
    PROXY_SERVICE,
    PUBLIC_FILE_MODE,
    SECRET_FILE_MODE,
    SUPPORTED_ARCHITECTURES,
    TRAFFIC_REPORT_INTERVAL,
    XRAY_API_PORT,
    XRAY_INSTALL_SCRIPT_URL,
)
from nodedeploy.exceptions import InstallError, NetworkError, NodeDeployError
from nodedeploy.logger import DeployLogger
from nodedeploy.models.deployment import DeploymentConfig
from nodedeploy.models.paths import NodePaths
from nodedeploy.models.results import InstallResult, InstallStatus, ValidationResult
from nodedeploy.services.command_runner import CommandRunner
from nodedeploy.services.detector import binary_available
from nodedeploy.services.proxy_config import build_proxy_config, serialize_proxy_config
from nodedeploy.utils.files import TempFileRegistry, file_mode, write_file
from nodedeploy.utils.retry import retry_call
from nodedeploy.utils.templates import render_template


class IdempotentInstall:
    """
    Runs an install step only when its component is missing.

    ``install`` returns an optional version string; any nodedeploy or OS
    error it raises is reported as a failed result.
    """

    def __init__(
        self,
        component: str,
        is_present: Callable[[], bool],
        install: Callable[[], Optional[str]],
        logger: DeployLogger,
        force: bool = False,
    ):
        self.component = component
        self.is_present = is_present
        self.install = install
        self.logger = logger
        self.force = force

    def ensure(self) -> InstallResult:
        if self.is_present() and not self.force:
            self.logger.success(f"{self.component} already installed, skipping")
            return InstallResult(
                self.component,
                InstallStatus.ALREADY_PRESENT,
                f"{self.component} already installed",
            )

        if self.force:
            self.logger.log(f"Force flag set, (re)installing {self.component}")

        try:
            version = self.install()
        except (NodeDeployError, OSError) as e:
            self.logger.log(f"{self.component} installation failed: {e}", "ERROR")
            return InstallResult(self.component, InstallStatus.FAILED, str(e))

        self.logger.success(f"{self.component} installed")
        return InstallResult(
            self.component, InstallStatus.INSTALLED, f"{self.component} installed", version
        )


class InstallManager:
    """Service for installing binaries and writing node configuration."""

    def __init__(
        self,
        paths: NodePaths,
        runner: CommandRunner,
        logger: DeployLogger,
        backup=None,
        force: bool = False,
        session: Optional[requests.Session] = None,
        temp_files: Optional[TempFileRegistry] = None,
        release_url: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
        machine: Callable[[], str] = platform.machine,
        which: Callable[..., Optional[str]] = shutil.which,
    ):
        """
        Initialize install manager.

        Args:
            paths: Filesystem layout
            runner: Command runner for installer scripts and systemctl
            logger: Deployment logger
            backup: BackupManager checkpointed before configs are overwritten
            force: Reinstall even if binaries are present
            session: requests session used for downloads
            temp_files: Registry receiving every downloaded temp file
            release_url: Base URL of node-agent release assets
            sleep: Sleep function between download attempts
            machine: Returns the CPU architecture (uname -m)
            which: Executable lookup
        """
        self.paths = paths
        self.runner = runner
        self.logger = logger
        self.backup = backup
        self.force = force
        self.session = session or requests.Session()
        self.temp_files = temp_files or TempFileRegistry(paths.temp_dir)
        self.release_url = (release_url or AGENT_RELEASE_URL).rstrip("/")
        self.sleep = sleep
        self.machine = machine
        self.which = which

        self._proxy_install = IdempotentInstall(
            "Xray-core", self.proxy_engine_present, self._install_proxy_engine, logger, force
        )
        self._agent_install = IdempotentInstall(
            "Node Agent", self.agent_present, self._install_agent, logger, force
        )

    # ------------------------------------------------------------------
    # Binaries
    # ------------------------------------------------------------------

    def proxy_engine_present(self) -> bool:
        return binary_available(PROXY_BINARY, self.paths.proxy_binary, self.paths, self.which)

    def agent_present(self) -> bool:
        return binary_available(AGENT_BINARY, self.paths.agent_binary, self.paths, self.which)

    def ensure_proxy_engine(self) -> InstallResult:
        return self._proxy_install.ensure()

    def ensure_agent(self) -> InstallResult:
        return self._agent_install.ensure()

    def detect_architecture(self) -> str:
        machine = self.machine()
        arch = SUPPORTED_ARCHITECTURES.get(machine)
        if arch is None:
            raise InstallError(
                f"Unsupported architecture: {machine}",
                context=f"Supported: {', '.join(sorted(set(SUPPORTED_ARCHITECTURES.values())))}",
            )
        self.logger.log(f"Detected architecture: {machine} -> {arch}")
        return arch

    def download(self, url: str, destination: Path) -> Path:
        """
        Download ``url`` to ``destination`` with fixed-delay retries.

        Raises:
            NetworkError: If every attempt fails
        """

        def attempt(number: int) -> Path:
            self.logger.log(f"Download attempt {number}/{DOWNLOAD_MAX_ATTEMPTS}: {url}")
            try:
                response = self.session.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT)
                try:
                    response.raise_for_status()
                    with open(destination, "wb") as f:
                        for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                            if chunk:
                                f.write(chunk)
                finally:
                    response.close()
            except requests.exceptions.RequestException as e:
                raise NetworkError(f"Download failed: {url}", context=str(e), retryable=True)
            return destination

        def on_retry(number: int, exc: Exception) -> None:
            self.logger.log(
                f"Download attempt {number} failed, retrying in {DOWNLOAD_RETRY_DELAY}s...",
                "WARNING",
            )

        return retry_call(
            attempt,
            attempts=DOWNLOAD_MAX_ATTEMPTS,
            delay=DOWNLOAD_RETRY_DELAY,
            is_retryable=lambda exc: getattr(exc, "retryable", False),
            sleep=self.sleep,
            on_retry=on_retry,
        )

    def _install_proxy_engine(self) -> Optional[str]:
        script = self.temp_files.new_path("xray-install.sh")
        self.download(XRAY_INSTALL_SCRIPT_URL, script)

        result = self.runner.run(
            ["bash", str(script), "install"],
            timeout=600,
            description="Installing Xray-core",
        )
        if result.is_failure:
            raise InstallError(
                "Xray-core installation script failed", context=result.output[-500:]
            )

        if not self.proxy_engine_present():
            raise InstallError(
                "Xray-core binary not found after installation",
                context="Check the installer output in the deployment log",
            )

        enable = self.runner.run(["systemctl", "enable", PROXY_SERVICE])
        if enable.is_failure:
            self.logger.warning(f"Failed to enable {PROXY_SERVICE} service")

        return self._proxy_version()

    def _proxy_version(self) -> Optional[str]:
        result = self.runner.run([PROXY_BINARY, "version"], timeout=10)
        if result.is_failure or not result.stdout.strip():
            return None
        return result.stdout.strip().splitlines()[0]

    def _install_agent(self) -> Optional[str]:
        arch = self.detect_architecture()
        url = f"{self.release_url}/node-agent-{arch}"
        download_path = self.temp_files.new_path(f"node-agent-{arch}")
        self.download(url, download_path)

        size = download_path.stat().st_size
        if size < MIN_BINARY_SIZE:
            raise InstallError(
                f"Downloaded node-agent is too small ({size} bytes)",
                context=f"Expected at least {MIN_BINARY_SIZE} bytes from {url}",
            )

        download_path.chmod(EXECUTABLE_MODE)
        self.paths.agent_binary.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(download_path), str(self.paths.agent_binary))
        self.paths.agent_binary.chmod(EXECUTABLE_MODE)
        self.logger.log(f"Installed node-agent to {self.paths.agent_binary} ({size} bytes)")
        return None

    def remove_agent(self) -> bool:
        if not self.paths.agent_binary.exists():
            return False
        self.paths.agent_binary.unlink()
        self.logger.log(f"Removed {self.paths.agent_binary}")
        return True

    # ------------------------------------------------------------------
    # Configuration files
    # ------------------------------------------------------------------

    def _checkpoint(self) -> None:
        if self.backup is not None:
            self.backup.checkpoint()

    def render_proxy_config(self, config: DeploymentConfig) -> Path:
        """Write the Xray config for ``config``; requires the node secret."""
        if not config.node_secret:
            raise InstallError("Cannot generate proxy configuration without a node secret")

        self._checkpoint()

        document = build_proxy_config(
            config.protocol, config.node_port, config.node_secret, config.protocol_config
        )
        text = serialize_proxy_config(document)
        write_file(self.paths.proxy_config, text, mode=PUBLIC_FILE_MODE)

        self.logger.success(
            f"Xray configuration written ({config.protocol.value} on port {config.node_port})"
        )
        return self.paths.proxy_config

    def render_agent_config(self, node_id: str, node_secret: str, api_url: str) -> Path:
        """Write the agent's environment file with owner-only permissions."""
        missing = [
            name
            for name, value in (
                ("node id", node_id),
                ("node secret", node_secret),
                ("API URL", api_url),
            )
            if not value
        ]
        if missing:
            raise InstallError(
                f"Cannot write agent configuration: missing {', '.join(missing)}"
            )

        self._checkpoint()

        content = render_template(
            "config.env.j2",
            generated_at=datetime.now().isoformat(timespec="seconds"),
            api_url=api_url,
            node_id=node_id,
            node_secret=node_secret,
            xray_api_port=XRAY_API_PORT,
            traffic_report_interval=TRAFFIC_REPORT_INTERVAL,
            heartbeat_interval=HEARTBEAT_INTERVAL,
            log_level=AGENT_LOG_LEVEL,
        )
        path = write_file(self.paths.agent_config, content, mode=SECRET_FILE_MODE)

        mode = file_mode(path)
        if mode != SECRET_FILE_MODE:
            raise InstallError(
                f"Agent configuration has mode {oct(mode)}, expected {oct(SECRET_FILE_MODE)}",
                context=str(path),
            )

        self.logger.success(f"Agent configuration written: {path}")
        return path

    def secure_config_files(self) -> None:
        """Restrict both configuration files to owner read/write."""
        for path in (self.paths.agent_config, self.paths.proxy_config):
            if path.exists():
                path.chmod(SECRET_FILE_MODE)
                self.logger.log(f"Secured {path} (600)")

    def verify_config_permissions(self) -> ValidationResult:
        """Error on group/other access, warn on unusual owner modes."""
        result = ValidationResult()
        for path in (self.paths.agent_config, self.paths.proxy_config):
            if not path.exists():
                continue
            mode = file_mode(path)
            if mode & 0o077:
                result.add_error(f"{path} is accessible by group or others ({oct(mode)})")
            elif mode not in ACCEPTED_SECRET_MODES:
                result.add_warning(f"{path} has unusual permissions ({oct(mode)})")
        return result

    def remove_agent_config(self) -> bool:
        if not self.paths.agent_config_dir.exists():
            return False
        shutil.rmtree(self.paths.agent_config_dir)
        self.logger.log(f"Removed {self.paths.agent_config_dir}")
        return True
