"""
Environment Probe

Checks that the host can receive a node: root privileges, a supported
distribution, and the command-line tools the deployment relies on.
"""

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from nodedeploy.constants import OS_FAMILIES, REQUIRED_TOOLS, TOOL_PACKAGES
from nodedeploy.exceptions import EnvironmentCheckError
from nodedeploy.logger import DeployLogger
from nodedeploy.models.paths import NodePaths
from nodedeploy.services.command_runner import CommandRunner


@dataclass
class OSInfo:
    """Detected operating system."""

    os_type: str
    os_id: str
    version: str = ""
    pretty_name: str = ""

    @property
    def is_debian_family(self) -> bool:
        return self.os_type in ("ubuntu", "debian")

    def __repr__(self) -> str:
        return f"OSInfo(type={self.os_type}, id={self.os_id}, version={self.version})"


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse /etc/os-release KEY=value lines, unquoting values."""
    values = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


class EnvironmentProbe:
    """Validates the local host before anything is changed."""

    def __init__(
        self,
        paths: NodePaths,
        runner: CommandRunner,
        logger: DeployLogger,
        geteuid: Callable[[], int] = os.geteuid,
        which: Callable[..., Optional[str]] = shutil.which,
    ):
        self.paths = paths
        self.runner = runner
        self.logger = logger
        self.geteuid = geteuid
        self.which = which

    def check_root(self) -> None:
        if self.geteuid() != 0:
            raise EnvironmentCheckError(
                "This command must be run as root",
                context="Re-run with sudo",
            )
        self.logger.log("Running as root")

    def detect_os(self, os_release: Optional[Path] = None) -> OSInfo:
        """
        Identify the distribution from os-release.

        Raises:
            EnvironmentCheckError: Missing file or unsupported distribution
        """
        os_release = os_release or self.paths.os_release
        if not os_release.exists():
            raise EnvironmentCheckError(
                "Cannot detect operating system",
                context=f"{os_release} not found",
            )

        values = parse_os_release(os_release.read_text())
        os_id = values.get("ID", "").lower()
        os_type = OS_FAMILIES.get(os_id)
        if os_type is None:
            raise EnvironmentCheckError(
                f"Unsupported operating system: {os_id or 'unknown'}",
                context="Supported: Ubuntu, Debian, CentOS, RHEL",
            )

        info = OSInfo(
            os_type=os_type,
            os_id=os_id,
            version=values.get("VERSION_ID", ""),
            pretty_name=values.get("PRETTY_NAME", ""),
        )
        self.logger.log(f"Detected OS: {info.pretty_name or os_id} ({os_type})")
        return info

    def missing_tools(self) -> List[str]:
        return [tool for tool in REQUIRED_TOOLS if self.which(tool) is None]

    def check_dependencies(self, os_info: OSInfo) -> List[str]:
        """
        Install any missing required tools.

        Returns:
            Names of the tools that were installed
        """
        missing = self.missing_tools()
        if not missing:
            self.logger.log(f"All required tools present: {', '.join(REQUIRED_TOOLS)}")
            return []

        packages = [TOOL_PACKAGES.get(tool, tool) for tool in missing]
        self.logger.log(f"Missing tools: {', '.join(missing)}; installing {', '.join(packages)}")

        if os_info.is_debian_family:
            update = self.runner.run(["apt-get", "update", "-qq"], timeout=600)
            if update.is_failure:
                raise EnvironmentCheckError(
                    "apt-get update failed", context=update.output[-500:]
                )
            install_cmd = ["apt-get", "install", "-y", "-qq", *packages]
        else:
            install_cmd = ["yum", "install", "-y", "-q", *packages]

        result = self.runner.run(
            install_cmd, timeout=600, description="Installing required packages"
        )
        if result.is_failure:
            raise EnvironmentCheckError(
                f"Failed to install required packages: {', '.join(packages)}",
                context=result.output[-500:],
            )

        still_missing = self.missing_tools()
        if still_missing:
            raise EnvironmentCheckError(
                f"Required tools still missing after install: {', '.join(still_missing)}"
            )

        self.logger.success(f"Installed {', '.join(packages)}")
        return missing

    def probe(self) -> OSInfo:
        """Run all checks in order; nothing is installed before root and OS pass."""
        self.check_root()
        os_info = self.detect_os()
        self.check_dependencies(os_info)
        self.logger.success(f"Environment OK ({os_info.os_id} {os_info.version})".strip())
        return os_info
