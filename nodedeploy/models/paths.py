"""
Filesystem Layout

Every system location the deployer touches, optionally re-rooted under a
staging directory (NODEDEPLOY_ROOT) so a whole deployment can be rehearsed
or tested without touching the real /etc.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional

from nodedeploy import constants


@dataclass(frozen=True)
class NodePaths:
    """System paths resolved against a root prefix."""

    root: Path = Path("/")

    @classmethod
    def under(cls, root) -> "NodePaths":
        return cls(root=Path(root))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "NodePaths":
        environ = os.environ if environ is None else environ
        root = environ.get(constants.ROOT_ENV_VAR)
        return cls.under(root) if root else cls()

    @property
    def is_sandboxed(self) -> bool:
        return self.root != Path("/")

    def resolve(self, system_path: str) -> Path:
        """Map an absolute system path into this root."""
        return self.root / system_path.lstrip("/")

    @property
    def agent_binary(self) -> Path:
        return self.resolve(constants.AGENT_BINARY_PATH)

    @property
    def proxy_binary(self) -> Path:
        return self.resolve(constants.PROXY_BINARY_PATH)

    @property
    def agent_config_dir(self) -> Path:
        return self.resolve(constants.AGENT_CONFIG_DIR)

    @property
    def agent_config(self) -> Path:
        return self.resolve(constants.AGENT_CONFIG_FILE)

    @property
    def proxy_config_dir(self) -> Path:
        return self.resolve(constants.PROXY_CONFIG_DIR)

    @property
    def proxy_config(self) -> Path:
        return self.resolve(constants.PROXY_CONFIG_FILE)

    @property
    def service_unit(self) -> Path:
        return self.resolve(constants.SERVICE_UNIT_FILE)

    @property
    def backup_dir(self) -> Path:
        return self.resolve(constants.BACKUP_DIR)

    @property
    def log_dir(self) -> Path:
        return self.resolve(constants.LOG_DIR)

    @property
    def lock_file(self) -> Path:
        return self.resolve(constants.LOCK_FILE)

    @property
    def temp_dir(self) -> Path:
        return self.resolve(constants.TEMP_DIR)

    @property
    def os_release(self) -> Path:
        return self.resolve(constants.OS_RELEASE_FILE)

    @property
    def binary_search_path(self) -> Optional[str]:
        """PATH string for shutil.which; None means the process PATH."""
        if not self.is_sandboxed:
            return None
        dirs: List[str] = [str(self.resolve(d)) for d in constants.BINARY_SEARCH_DIRS]
        return os.pathsep.join(dirs)

    def backup_artifacts(self) -> List[tuple]:
        """(name inside a snapshot, live path) for every backed-up file."""
        return [
            ("config.env", self.agent_config),
            ("xray_config.json", self.proxy_config),
            ("node-agent.service", self.service_unit),
        ]
