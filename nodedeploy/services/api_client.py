"""Control-plane API client: node registration with retries."""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests

from nodedeploy.constants import (
    API_HEAD_TIMEOUT,
    API_MAX_ATTEMPTS,
    API_RETRY_DELAY,
    API_TIMEOUT,
    NODES_ENDPOINT,
    RETRYABLE_STATUS_CODES,
)
from nodedeploy.core.secret_generator import mask_secret
from nodedeploy.exceptions import APIError, NetworkError, NodeConflictError
from nodedeploy.logger import DeployLogger
from nodedeploy.models.deployment import DeploymentConfig
from nodedeploy.utils.retry import retry_call


@dataclass
class NodeRegistration:
    """Identity assigned by the control plane."""

    node_id: str
    node_secret: str
    secret_from_server: bool = False

    def __repr__(self) -> str:
        return f"NodeRegistration(node_id={self.node_id}, secret={mask_secret(self.node_secret)})"


def _is_retryable(exc: Exception) -> bool:
    return getattr(exc, "retryable", False)


class ControlPlaneClient:
    """Client for the control-plane admin API."""

    def __init__(
        self,
        api_url: str,
        admin_token: str,
        logger: Optional[DeployLogger] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        attempts: int = API_MAX_ATTEMPTS,
        delay: float = API_RETRY_DELAY,
        timeout: float = API_TIMEOUT,
    ):
        self.api_url = api_url.rstrip("/")
        self.admin_token = admin_token
        self.logger = logger
        self.session = session or requests.Session()
        self.sleep = sleep
        self.attempts = attempts
        self.delay = delay
        self.timeout = timeout

    @property
    def nodes_endpoint(self) -> str:
        return f"{self.api_url}{NODES_ENDPOINT}"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.admin_token}",
            "Content-Type": "application/json",
        }

    def _log(self, message: str, level: str = "INFO") -> None:
        if self.logger:
            self.logger.log(message, level)

    def register_node(self, config: DeploymentConfig, secret: str) -> NodeRegistration:
        """
        Create the node on the control plane.

        Args:
            config: Resolved node parameters (host must be known)
            secret: Locally generated node secret

        Returns:
            NodeRegistration with the server-assigned id and effective secret

        Raises:
            NodeConflictError: A node with this name already exists (409)
            APIError: Rejected request, malformed response or repeated 5xx
            NetworkError: Transport failures on every attempt
        """
        payload = config.registration_payload(secret)
        self._log(
            f"Registering node '{config.node_name}' at {self.nodes_endpoint} "
            f"({config.node_host}:{config.node_port}, {config.protocol.value})"
        )

        def attempt(number: int) -> NodeRegistration:
            self._log(f"API call attempt {number}/{self.attempts}")
            try:
                response = self.session.post(
                    self.nodes_endpoint,
                    json=payload,
                    headers=self._headers(),
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                raise NetworkError(
                    f"Failed to reach control plane: {type(e).__name__}",
                    context=f"{self.nodes_endpoint}: {e}",
                    retryable=True,
                )
            return self._handle_response(response, config, secret)

        def on_retry(number: int, exc: Exception) -> None:
            self._log(
                f"Attempt {number} failed ({getattr(exc, 'message', exc)}), "
                f"retrying in {self.delay}s...",
                "WARNING",
            )

        return retry_call(
            attempt,
            attempts=self.attempts,
            delay=self.delay,
            is_retryable=_is_retryable,
            sleep=self.sleep,
            on_retry=on_retry,
        )

    def _handle_response(
        self, response: requests.Response, config: DeploymentConfig, secret: str
    ) -> NodeRegistration:
        status = response.status_code
        self._log(f"HTTP Status: {status}")

        if status in (200, 201):
            data = self._parse_json(response)
            node_id = data.get("id")
            if node_id is None:
                node_id = data.get("node_id")
            if node_id is None or node_id == "":
                raise APIError(
                    "Control plane response is missing the node id",
                    context=f"Expected 'id' or 'node_id' in: {self._preview(response)}",
                    status_code=status,
                )

            server_secret = data.get("secret")
            if server_secret:
                self._log("Using secret returned by the control plane")
                return NodeRegistration(str(node_id), str(server_secret), True)
            return NodeRegistration(str(node_id), secret, False)

        detail = self._error_detail(response)

        if status == 400:
            raise APIError(
                "Invalid node data rejected by the control plane",
                context=detail,
                status_code=status,
            )
        if status in (401, 403):
            raise APIError(
                "Authentication failed: invalid or expired admin token",
                context=detail,
                status_code=status,
            )
        if status == 409:
            raise NodeConflictError(config.node_name, detail)
        if status in RETRYABLE_STATUS_CODES:
            raise APIError(
                f"Control plane server error (HTTP {status})",
                context=detail,
                status_code=status,
                retryable=True,
            )
        raise APIError(
            f"Unexpected HTTP status {status} from control plane",
            context=detail,
            status_code=status,
            retryable=True,
        )

    def _parse_json(self, response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            raise APIError(
                "Control plane returned a non-JSON response",
                context=self._preview(response),
                status_code=response.status_code,
            )
        if not isinstance(data, dict):
            raise APIError(
                "Control plane returned an unexpected JSON document",
                context=self._preview(response),
                status_code=response.status_code,
            )
        return data

    def _error_detail(self, response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return self._preview(response)
        if isinstance(data, dict):
            detail = data.get("error") or data.get("message")
            if detail:
                return str(detail)
        return self._preview(response)

    @staticmethod
    def _preview(response: requests.Response) -> str:
        text = response.text or ""
        return text[:200] if text else "(empty body)"

    def check_reachable(self) -> bool:
        """HEAD the API base URL; any HTTP answer counts as reachable."""
        try:
            self.session.head(self.api_url, timeout=API_HEAD_TIMEOUT)
        except requests.exceptions.RequestException as e:
            self._log(f"API reachability check failed: {e}", "WARNING")
            return False
        return True
