"""Detection of a previous deployment on this host."""

import json
import shutil
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from dotenv import dotenv_values

from nodedeploy.constants import AGENT_BINARY, PROXY_BINARY
from nodedeploy.models.deployment import ExistingDeployment
from nodedeploy.models.paths import NodePaths


def read_agent_config(path: Path) -> Dict[str, Optional[str]]:
    """Parse the agent's KEY=VALUE environment file."""
    if not Path(path).exists():
        return {}
    return dict(dotenv_values(path))


def read_proxy_inbound(path: Path) -> Dict[str, Any]:
    """The client-facing inbound of an existing Xray config, or {}."""
    if not Path(path).exists():
        return {}
    try:
        document = json.loads(Path(path).read_text())
    except ValueError:
        return {}
    for inbound in document.get("inbounds", []):
        if isinstance(inbound, dict) and inbound.get("tag") != "api":
            return inbound
    return {}


def binary_available(
    name: str,
    install_path: Path,
    paths: NodePaths,
    which: Callable[..., Optional[str]] = shutil.which,
) -> bool:
    """A binary counts as installed if it sits at its install path or is on PATH."""
    if install_path.exists():
        return True
    return which(name, path=paths.binary_search_path) is not None


class ExistingDeploymentDetector:
    """Inspects the agent config, unit file and binaries left by earlier runs."""

    def __init__(self, paths: NodePaths, which: Callable[..., Optional[str]] = shutil.which):
        self.paths = paths
        self.which = which

    def detect(self) -> ExistingDeployment:
        agent_config = self.paths.agent_config.exists()
        values = read_agent_config(self.paths.agent_config) if agent_config else {}
        inbound = read_proxy_inbound(self.paths.proxy_config)
        port = inbound.get("port")

        return ExistingDeployment(
            agent_config=agent_config,
            service_unit=self.paths.service_unit.exists(),
            agent_binary=binary_available(
                AGENT_BINARY, self.paths.agent_binary, self.paths, self.which
            ),
            proxy_binary=binary_available(
                PROXY_BINARY, self.paths.proxy_binary, self.paths, self.which
            ),
            node_id=values.get("NODE_ID") or None,
            node_secret=values.get("NODE_SECRET") or None,
            api_url=values.get("API_URL") or None,
            node_port=port if isinstance(port, int) else None,
            protocol=inbound.get("protocol"),
        )
