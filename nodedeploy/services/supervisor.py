"""systemd supervision of the node agent and proxy engine."""

import re
import time
from typing import Callable, Dict, List, Optional

from nodedeploy.constants import (
    AGENT_BINARY_PATH,
    AGENT_CONFIG_DIR,
    AGENT_CONFIG_FILE,
    AGENT_SERVICE,
    JOURNAL_ERROR_MARKERS,
    JOURNAL_LINES,
    PROXY_CONFIG_DIR,
    PROXY_SERVICE,
    PUBLIC_FILE_MODE,
    SERVICE_POLL_INTERVAL,
    SERVICE_START_TIMEOUT,
)
from nodedeploy.exceptions import ServiceError
from nodedeploy.logger import DeployLogger
from nodedeploy.models.paths import NodePaths
from nodedeploy.services.command_runner import CommandRunner
from nodedeploy.utils.files import write_file
from nodedeploy.utils.templates import render_template


class ServiceSupervisor:
    """Service for installing and controlling the node-agent systemd unit."""

    def __init__(
        self,
        paths: NodePaths,
        runner: CommandRunner,
        logger: DeployLogger,
        backup=None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize supervisor.

        Args:
            paths: Filesystem layout
            runner: Command runner used for systemctl/journalctl
            logger: Deployment logger
            backup: BackupManager checkpointed before the unit is overwritten
            sleep: Sleep function (injectable for tests)
            clock: Monotonic clock (injectable for tests)
        """
        self.paths = paths
        self.runner = runner
        self.logger = logger
        self.backup = backup
        self.sleep = sleep
        self.clock = clock

    def _systemctl(self, *args: str):
        return self.runner.run(["systemctl", *args])

    def write_service_unit(self) -> None:
        """Render the unit file, reload systemd and enable the agent."""
        if self.backup is not None:
            self.backup.checkpoint()

        content = render_template(
            "node-agent.service.j2",
            agent_service=AGENT_SERVICE,
            proxy_service=PROXY_SERVICE,
            agent_binary=AGENT_BINARY_PATH,
            config_dir=AGENT_CONFIG_DIR,
            config_file=AGENT_CONFIG_FILE,
            proxy_config_dir=PROXY_CONFIG_DIR,
        )
        write_file(self.paths.service_unit, content, mode=PUBLIC_FILE_MODE)
        self.logger.log(f"Wrote systemd unit: {self.paths.service_unit}")

        self.daemon_reload()

        result = self._systemctl("enable", AGENT_SERVICE)
        if result.is_failure:
            raise ServiceError(
                f"Failed to enable {AGENT_SERVICE} service", context=result.output
            )
        self.logger.success(f"{AGENT_SERVICE} service installed and enabled")

    def daemon_reload(self) -> None:
        result = self._systemctl("daemon-reload")
        if result.is_failure:
            raise ServiceError("systemctl daemon-reload failed", context=result.output)

    def start(self, service: str = AGENT_SERVICE) -> None:
        self.logger.log(f"Starting {service}")
        result = self._systemctl("start", service)
        if result.is_failure:
            raise ServiceError(
                f"Failed to start {service}",
                context=result.output,
                recent_logs=self.recent_logs(service=service),
            )

    def restart(self, service: str = AGENT_SERVICE) -> None:
        self.logger.log(f"Restarting {service}")
        result = self._systemctl("restart", service)
        if result.is_failure:
            raise ServiceError(
                f"Failed to restart {service}",
                context=result.output,
                recent_logs=self.recent_logs(service=service),
            )

    def stop(self, service: str = AGENT_SERVICE) -> bool:
        """Stop a service if it is running. Returns True if it was stopped."""
        if not self.is_active(service):
            return False
        result = self._systemctl("stop", service)
        if result.is_failure:
            self.logger.warning(f"Failed to stop {service}: {result.output}")
            return False
        self.logger.log(f"Stopped {service}")
        return True

    def stop_all(self) -> List[str]:
        """Stop the agent then the proxy engine."""
        return [s for s in (AGENT_SERVICE, PROXY_SERVICE) if self.stop(s)]

    def disable(self, service: str = AGENT_SERVICE) -> None:
        result = self._systemctl("disable", service)
        if result.is_failure:
            self.logger.warning(f"Failed to disable {service}: {result.output}")

    def remove_unit(self) -> bool:
        if not self.paths.service_unit.exists():
            return False
        self.paths.service_unit.unlink()
        self.logger.log(f"Removed {self.paths.service_unit}")
        self.daemon_reload()
        return True

    def is_active(self, service: str = AGENT_SERVICE) -> bool:
        return self._systemctl("is-active", "--quiet", service).is_success

    def is_enabled(self, service: str = AGENT_SERVICE) -> bool:
        return self._systemctl("is-enabled", "--quiet", service).is_success

    def service_state(self, service: str = AGENT_SERVICE) -> Dict[str, str]:
        """ActiveState and SubState as reported by systemctl show."""
        result = self._systemctl(
            "show", service, "--property=ActiveState", "--property=SubState"
        )
        state = {"ActiveState": "unknown", "SubState": "unknown"}
        if result.is_failure:
            return state
        for line in result.stdout.splitlines():
            key, sep, value = line.partition("=")
            if sep and key.strip() in state:
                state[key.strip()] = value.strip()
        return state

    def wait_until_active(
        self,
        service: str = AGENT_SERVICE,
        timeout: float = SERVICE_START_TIMEOUT,
        interval: float = SERVICE_POLL_INTERVAL,
    ) -> Dict[str, str]:
        """
        Poll until the service is active and running.

        Raises:
            ServiceError: If the service is not running when the budget runs out
        """
        deadline = self.clock() + timeout
        state = self.service_state(service)
        while not (state["ActiveState"] == "active" and state["SubState"] == "running"):
            if self.clock() >= deadline:
                raise ServiceError(
                    f"{service} did not become active within {timeout}s",
                    context=f"ActiveState={state['ActiveState']}, SubState={state['SubState']}",
                    recent_logs=self.recent_logs(service=service),
                )
            self.sleep(interval)
            state = self.service_state(service)

        self.logger.success(f"{service} is running")
        return state

    def is_port_listening(self, port: int) -> bool:
        """Check ss (or netstat) output for a listener on `port`."""
        pattern = re.compile(rf"[:.]{port}\s")
        for tool in ("ss", "netstat"):
            result = self.runner.run([tool, "-tuln"])
            if result.is_success:
                return any(pattern.search(line + " ") for line in result.stdout.splitlines())
        self.logger.log("Neither ss nor netstat available for port check", "WARNING")
        return False

    def recent_logs(self, lines: int = JOURNAL_LINES, service: str = AGENT_SERVICE) -> str:
        result = self.runner.run(
            ["journalctl", "-u", service, "-n", str(lines), "--no-pager"]
        )
        return result.stdout if result.is_success else ""

    def scan_logs_for_errors(
        self, lines: int = JOURNAL_LINES, service: str = AGENT_SERVICE
    ) -> int:
        """Count recent journal lines mentioning error, fatal or panic."""
        logs = self.recent_logs(lines, service)
        return sum(
            1
            for line in logs.splitlines()
            if any(marker in line.lower() for marker in JOURNAL_ERROR_MARKERS)
        )

    def status(self, service: str = AGENT_SERVICE) -> Dict[str, Optional[str]]:
        state = self.service_state(service)
        return {
            "service": service,
            "active": state["ActiveState"],
            "sub": state["SubState"],
            "enabled": "enabled" if self.is_enabled(service) else "disabled",
        }
