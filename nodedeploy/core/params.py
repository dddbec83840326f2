"""
Parameter Resolver

Merges CLI values, environment variables and defaults into a validated
DeploymentConfig. Never touches the network or the filesystem.
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

from dotenv import dotenv_values

from nodedeploy.constants import (
    AUTO_HOST,
    DEFAULT_NODE_PORT,
    DEFAULT_NODE_PROTOCOL,
    PARAMETER_ENV_VARS,
)
from nodedeploy.exceptions import ParameterError
from nodedeploy.models.deployment import DeploymentConfig, ExistingDeployment, Protocol
from nodedeploy.models.results import ValidationResult

TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+$")
HOSTNAME_PATTERN = re.compile(
    r"^(?=.{1,253}$)([A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)(\.[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$"
)

DEFAULTS: Dict[str, Any] = {
    "node_port": DEFAULT_NODE_PORT,
    "node_protocol": DEFAULT_NODE_PROTOCOL,
    "node_config": {},
}


def load_environment(
    env_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> Dict[str, str]:
    """
    Build the environment the resolver reads from.

    Values from ``env_file`` are loaded with python-dotenv and then
    overridden by the process environment.

    Raises:
        ParameterError: If ``env_file`` is given but missing
    """
    merged: Dict[str, str] = {}
    if env_file:
        path = Path(env_file).expanduser()
        if not path.exists():
            raise ParameterError(f"Environment file not found: {path}")
        merged.update({k: v for k, v in dotenv_values(path).items() if v is not None})

    merged.update(os.environ if environ is None else environ)
    return merged


def validate_api_url(value: Optional[str]) -> Optional[str]:
    """Return an error message, or None if the URL is acceptable."""
    if not value:
        return "API URL is required (--api-url or API_URL)"

    parsed = urlparse(value)
    if not parsed.scheme or not parsed.netloc:
        return f"Invalid API URL format: {value}"
    if parsed.scheme == "http":
        return f"API URL must use HTTPS for security: {value}"
    if parsed.scheme != "https":
        return f"Invalid API URL format: {value}"

    try:
        hostname = parsed.hostname
        port = parsed.port
    except ValueError:
        return f"Invalid API URL format: {value}"
    if port == 0:
        return f"Invalid API URL port: {value}"
    if not hostname or not HOSTNAME_PATTERN.match(hostname):
        return f"Invalid API URL host: {value}"
    return None


def validate_admin_token(value: Optional[str]) -> Optional[str]:
    if not value:
        return "Admin token is required (--admin-token or ADMIN_TOKEN)"
    if not TOKEN_PATTERN.match(value):
        return "Invalid admin token format (expected a JWT: header.payload.signature)"
    return None


def parse_port(value: Any) -> int:
    """
    Parse a port number from CLI/env text.

    Raises:
        ValueError: If the value is not an integer in 1-65535
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid port: {value}")
    if isinstance(value, int):
        port = value
    else:
        text = str(value).strip()
        if not text.isdigit():
            raise ValueError(f"Invalid port: {value} (must be a number)")
        port = int(text)
    if not 1 <= port <= 65535:
        raise ValueError(f"Invalid port: {value} (must be between 1 and 65535)")
    return port


def parse_protocol(value: Any) -> Protocol:
    text = str(value).strip().lower()
    try:
        return Protocol(text)
    except ValueError:
        raise ValueError(
            f"Invalid protocol: {value} (supported: {', '.join(Protocol.values())})"
        )


def parse_node_config(value: Any) -> Dict[str, Any]:
    """Accept a dict or a JSON object string."""
    if value is None or value == "":
        return {}
    if isinstance(value, dict):
        return dict(value)
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid node configuration JSON: {e}")
    if not isinstance(parsed, dict):
        raise ValueError("Node configuration must be a JSON object")
    return parsed


def normalize_host(value: Optional[str]) -> Optional[str]:
    """Empty or 'auto' means detect the public IP later."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() == AUTO_HOST:
        return None
    return text


class ParameterResolver:
    """Resolves deployment parameters with CLI > environment > default precedence."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = dict(os.environ if environ is None else environ)

    def merge(
        self, cli_values: Mapping[str, Any], fallbacks: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        """Pick each parameter from CLI, then environment, then fallbacks, then defaults."""
        fallbacks = fallbacks or {}
        merged: Dict[str, Any] = {}
        for name, env_var in PARAMETER_ENV_VARS.items():
            value = cli_values.get(name)
            if value is None or value == "":
                value = self.environ.get(env_var) or None
            if value is None:
                value = fallbacks.get(name)
            if value is None:
                value = DEFAULTS.get(name)
            merged[name] = value
        return merged

    def _validate(
        self, merged: Mapping[str, Any], require_credentials: bool = True
    ) -> DeploymentConfig:
        validation = ValidationResult()

        error = validate_api_url(merged["api_url"])
        if error:
            validation.add_error(error)

        token = merged["admin_token"] or ""
        if require_credentials or token:
            error = validate_admin_token(token)
            if error:
                validation.add_error(error)

        node_name = str(merged["node_name"] or "").strip()
        if not node_name:
            validation.add_error("Node name is required (--node-name or NODE_NAME)")

        port = protocol = None
        node_config: Dict[str, Any] = {}
        try:
            port = parse_port(merged["node_port"])
        except ValueError as e:
            validation.add_error(str(e))
        try:
            protocol = parse_protocol(merged["node_protocol"])
        except ValueError as e:
            validation.add_error(str(e))
        try:
            node_config = parse_node_config(merged["node_config"])
        except ValueError as e:
            validation.add_error(str(e))

        if validation.has_errors:
            raise ParameterError(
                "Parameter validation failed",
                context="; ".join(validation.errors),
                errors=validation.errors,
            )

        return DeploymentConfig(
            api_url=merged["api_url"].rstrip("/"),
            admin_token=token,
            node_name=node_name,
            node_host=normalize_host(merged["node_host"]),
            node_port=port,
            protocol=protocol,
            protocol_config=node_config,
        )

    def resolve(self, cli_values: Mapping[str, Any]) -> DeploymentConfig:
        """
        Resolve and validate parameters for a fresh deployment.

        Args:
            cli_values: Values from the command line (None for unset flags)

        Returns:
            Immutable DeploymentConfig

        Raises:
            ParameterError: Listing every violation found
        """
        return self._validate(self.merge(cli_values))

    def resolve_update(
        self, cli_values: Mapping[str, Any], existing: ExistingDeployment
    ) -> DeploymentConfig:
        """
        Resolve parameters for refreshing an existing node.

        Port, protocol and API URL fall back to what the host already runs,
        the admin token is optional since no registration happens, and the
        node identity comes from the existing agent config.
        """
        fallbacks = {
            "api_url": existing.api_url,
            "node_name": f"node-{existing.node_id}" if existing.node_id else None,
            "node_port": existing.node_port,
            "node_protocol": existing.protocol,
        }
        config = self._validate(
            self.merge(cli_values, fallbacks), require_credentials=False
        )
        if existing.has_identity:
            config = config.with_identity(existing.node_id, existing.node_secret)
        return config
