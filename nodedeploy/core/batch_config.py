"""Batch configuration file loading and validation."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from nodedeploy.constants import (
    AUTO_HOST,
    BATCH_CONFIG_FORBIDDEN_MODE,
    BATCH_TARGET_LOCAL,
    BATCH_TARGET_REMOTE,
    BATCH_TARGETS,
    DEFAULT_NODE_PORT,
    DEFAULT_NODE_PROTOCOL,
)
from nodedeploy.exceptions import ParameterError
from nodedeploy.utils.files import file_mode


@dataclass
class BatchNodeSpec:
    """One node entry of a batch file."""

    name: str
    host: Optional[str] = AUTO_HOST
    port: Any = DEFAULT_NODE_PORT
    protocol: Any = DEFAULT_NODE_PROTOCOL
    config: Dict[str, Any] = field(default_factory=dict)
    target: Optional[str] = None

    def cli_values(self, api_url: str, admin_token: str) -> Dict[str, Any]:
        """Shape the entry like command-line input for the parameter resolver."""
        return {
            "api_url": api_url,
            "admin_token": admin_token,
            "node_name": self.name,
            "node_host": self.host,
            "node_port": self.port,
            "node_protocol": self.protocol,
            "node_config": self.config,
        }


@dataclass
class BatchConfig:
    """Parsed batch file: shared credentials plus node entries in file order."""

    api_url: str
    admin_token: str
    nodes: List[BatchNodeSpec]
    target: Optional[str] = None
    source: Optional[Path] = None

    def __repr__(self) -> str:
        return f"BatchConfig(nodes={len(self.nodes)}, target={self.target})"


def _parse_target(value: Any, where: str) -> Optional[str]:
    if value is None:
        return None
    target = str(value).strip().lower()
    if target not in BATCH_TARGETS:
        raise ParameterError(
            f"Invalid target '{value}' in {where}",
            context=f"Allowed: {', '.join(BATCH_TARGETS)}",
        )
    return target


def _parse_node(index: int, raw: Any) -> BatchNodeSpec:
    where = f"nodes[{index}]"
    if not isinstance(raw, dict):
        raise ParameterError(f"Invalid batch entry {where}: must be a mapping")

    name = str(raw.get("name") or "").strip()
    if not name:
        raise ParameterError(f"Missing required field: '{where}.name'")

    config = raw.get("config") or {}
    if not isinstance(config, dict):
        raise ParameterError(f"Invalid '{where}.config': must be a mapping")

    return BatchNodeSpec(
        name=name,
        host=raw.get("host", AUTO_HOST),
        port=raw.get("port", DEFAULT_NODE_PORT),
        protocol=raw.get("protocol", DEFAULT_NODE_PROTOCOL),
        config=config,
        target=_parse_target(raw.get("target"), where),
    )


def load_batch_config(path) -> BatchConfig:
    """
    Load a YAML (or JSON) batch file.

    Args:
        path: Path to the batch file

    Returns:
        BatchConfig with node entries in file order

    Raises:
        ParameterError: Missing file, loose permissions, bad syntax or fields
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise ParameterError(f"Batch config not found: {path}")

    mode = file_mode(path)
    if mode & BATCH_CONFIG_FORBIDDEN_MODE:
        raise ParameterError(
            f"Batch config {path} is readable by other users (mode {oct(mode)})",
            context=f"It contains the admin token; run: chmod 600 {path}",
        )

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ParameterError(f"Invalid batch config syntax: {path}", context=str(e)) from e

    if not isinstance(data, dict):
        raise ParameterError(f"Batch config {path} must be a mapping")

    for required in ("api_url", "admin_token"):
        if not data.get(required):
            raise ParameterError(f"Missing required field: '{required}'")

    nodes = data.get("nodes")
    if not isinstance(nodes, list) or not nodes:
        raise ParameterError("Batch config must contain a non-empty 'nodes' list")

    return BatchConfig(
        api_url=str(data["api_url"]),
        admin_token=str(data["admin_token"]),
        nodes=[_parse_node(i, raw) for i, raw in enumerate(nodes)],
        target=_parse_target(data.get("target"), "top level"),
        source=path,
    )


def check_batch_target(batch: BatchConfig, cli_target: Optional[str] = None) -> None:
    """
    Make sure every entry is explicitly provisioned on this host.

    All entries share the same unit, config and binary paths, so a batch
    only makes sense when each node is declared local.

    Raises:
        ParameterError: If any entry is remote or has no target at all
    """
    default = _parse_target(cli_target, "--batch-target") or batch.target

    for spec in batch.nodes:
        target = spec.target or default
        if target == BATCH_TARGET_REMOTE:
            raise ParameterError(
                f"Node '{spec.name}' targets a remote host",
                context="Remote provisioning is not supported; run nodedeploy on each host",
            )
        if target != BATCH_TARGET_LOCAL:
            raise ParameterError(
                f"Node '{spec.name}' has no deployment target",
                context="Add 'target: local' to the batch file or pass --batch-target local",
            )
