"""
Deployment State Models

Dataclass models for node configuration and deployment lifecycle state.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from nodedeploy.core.secret_generator import mask_secret
from nodedeploy.exceptions import StateError


class Protocol(Enum):
    """Proxy protocol served by a node."""

    VLESS = "vless"
    VMESS = "vmess"
    TROJAN = "trojan"
    SHADOWSOCKS = "shadowsocks"
    HYSTERIA2 = "hysteria2"

    @classmethod
    def values(cls) -> List[str]:
        return [p.value for p in cls]


class Phase(Enum):
    """Deployment phases in execution order."""

    INIT = "init"
    ENV_CHECK = "env_check"
    API_CALL = "api_call"
    INSTALL = "install"
    CONFIG = "config"
    START = "start"
    VERIFY = "verify"
    COMPLETE = "complete"

    @property
    def order(self) -> int:
        return list(Phase).index(self)


class DeploymentMode(Enum):
    """How to treat a host that already carries a deployment."""

    FRESH = "fresh"
    UPDATE = "update"
    REDEPLOY = "redeploy"
    CANCEL = "cancel"


@dataclass(frozen=True)
class DeploymentConfig:
    """Resolved, validated parameters for one node."""

    api_url: str
    admin_token: str
    node_name: str
    node_port: int
    protocol: Protocol
    node_host: Optional[str] = None
    protocol_config: Dict[str, Any] = field(default_factory=dict)
    node_id: Optional[str] = None
    node_secret: Optional[str] = None

    @property
    def has_identity(self) -> bool:
        """Check if the node id and secret are known."""
        return bool(self.node_id) and bool(self.node_secret)

    def with_host(self, host: str) -> "DeploymentConfig":
        return replace(self, node_host=host)

    def with_identity(self, node_id: str, node_secret: str) -> "DeploymentConfig":
        return replace(self, node_id=str(node_id), node_secret=node_secret)

    def registration_payload(self, secret: str) -> Dict[str, Any]:
        """Build the control-plane node creation body."""
        return {
            "name": self.node_name,
            "host": self.node_host,
            "port": self.node_port,
            "protocol": self.protocol.value,
            "secret": secret,
            "config": dict(self.protocol_config),
        }

    def to_dict(self, masked: bool = True) -> Dict[str, Any]:
        """Convert to dictionary, masking credentials unless told otherwise."""
        return {
            "api_url": self.api_url,
            "admin_token": mask_secret(self.admin_token) if masked else self.admin_token,
            "node_name": self.node_name,
            "node_host": self.node_host,
            "node_port": self.node_port,
            "protocol": self.protocol.value,
            "protocol_config": dict(self.protocol_config),
            "node_id": self.node_id,
            "node_secret": mask_secret(self.node_secret) if masked else self.node_secret,
        }

    def __repr__(self) -> str:
        return (
            f"DeploymentConfig(node_name={self.node_name}, host={self.node_host}, "
            f"port={self.node_port}, protocol={self.protocol.value}, "
            f"token={mask_secret(self.admin_token)}, secret={mask_secret(self.node_secret)})"
        )


@dataclass
class DeploymentState:
    """Mutable progress record owned by the deployer."""

    phase: Phase = Phase.INIT
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error_count: int = 0
    warning_count: int = 0
    last_error: Optional[BaseException] = None
    services_started: bool = False

    def start(self) -> None:
        self.started_at = datetime.now()

    def advance(self, phase: Phase) -> None:
        """Move to a later phase. Moving backwards is a programming error."""
        if phase.order < self.phase.order:
            raise StateError(
                f"Cannot move deployment from '{self.phase.value}' back to '{phase.value}'"
            )
        self.phase = phase

    def record_error(self, error: BaseException) -> None:
        self.error_count += 1
        self.last_error = error

    def record_warning(self) -> None:
        self.warning_count += 1

    def finish(self) -> None:
        self.finished_at = datetime.now()

    @property
    def duration_seconds(self) -> float:
        if not self.started_at:
            return 0.0
        end = self.finished_at or datetime.now()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "errors": self.error_count,
            "warnings": self.warning_count,
            "last_error": str(self.last_error) if self.last_error else None,
            "services_started": self.services_started,
        }

    def __repr__(self) -> str:
        return f"DeploymentState(phase={self.phase.value}, errors={self.error_count}, warnings={self.warning_count})"


@dataclass
class ExistingDeployment:
    """What a previous deployment left on this host."""

    agent_config: bool = False
    service_unit: bool = False
    agent_binary: bool = False
    proxy_binary: bool = False
    node_id: Optional[str] = None
    node_secret: Optional[str] = None
    api_url: Optional[str] = None
    node_port: Optional[int] = None
    protocol: Optional[str] = None

    @property
    def exists(self) -> bool:
        """Any agent artifact counts as an existing deployment."""
        return self.agent_config or self.service_unit or self.agent_binary

    @property
    def has_identity(self) -> bool:
        return bool(self.node_id) and bool(self.node_secret)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_config": self.agent_config,
            "service_unit": self.service_unit,
            "agent_binary": self.agent_binary,
            "proxy_binary": self.proxy_binary,
            "node_id": self.node_id,
            "node_secret": mask_secret(self.node_secret),
            "api_url": self.api_url,
            "node_port": self.node_port,
            "protocol": self.protocol,
        }


@dataclass
class BackupSnapshot:
    """A directory of saved configuration artifacts."""

    snapshot_id: str
    path: Path
    created_at: str
    files: List[str] = field(default_factory=list)
    existing: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "created_at": self.created_at,
            "files": list(self.files),
            "existing": list(self.existing),
        }

    @classmethod
    def from_dict(cls, path: Path, data: Dict[str, Any]) -> "BackupSnapshot":
        return cls(
            snapshot_id=data.get("snapshot_id", path.name),
            path=path,
            created_at=data.get("created_at", ""),
            files=list(data.get("files", [])),
            existing=list(data.get("existing", [])),
        )

    def __repr__(self) -> str:
        return f"BackupSnapshot(id={self.snapshot_id}, files={len(self.files)})"
