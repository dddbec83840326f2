"""
nodedeploy Exception Hierarchy

Every error carries the process exit code it maps to, so commands can turn
any failure into the documented exit status.
"""

import signal
from typing import List, Optional

from nodedeploy.constants import (
    EXIT_API_ERROR,
    EXIT_ENVIRONMENT_ERROR,
    EXIT_INSTALL_ERROR,
    EXIT_NETWORK_ERROR,
    EXIT_PARAMETER_ERROR,
    EXIT_SERVICE_ERROR,
)


class NodeDeployError(Exception):
    """Base exception for all nodedeploy errors."""

    exit_code = EXIT_PARAMETER_ERROR
    category = "error"

    def __init__(
        self, message: str, context: Optional[str] = None, retryable: bool = False
    ):
        self.message = message
        self.context = context
        self.retryable = retryable
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with optional context."""
        if self.context:
            return f"{self.message}\nContext: {self.context}"
        return self.message


class ParameterError(NodeDeployError):
    """Raised when deployment parameters are missing or invalid."""

    exit_code = EXIT_PARAMETER_ERROR
    category = "parameter"

    def __init__(
        self,
        message: str,
        context: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ):
        self.errors = list(errors or [])
        super().__init__(message, context)


class StateError(NodeDeployError):
    """Raised when the deployment state machine is driven out of order."""

    exit_code = EXIT_PARAMETER_ERROR
    category = "state"


class EnvironmentCheckError(NodeDeployError):
    """Raised when the host does not satisfy deployment prerequisites."""

    exit_code = EXIT_ENVIRONMENT_ERROR
    category = "environment"


class NetworkError(NodeDeployError):
    """Raised when a remote endpoint cannot be reached."""

    exit_code = EXIT_NETWORK_ERROR
    category = "network"


class APIError(NodeDeployError):
    """Raised when the control-plane API rejects or garbles a request."""

    exit_code = EXIT_API_ERROR
    category = "api"

    def __init__(
        self,
        message: str,
        context: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        self.status_code = status_code
        super().__init__(message, context, retryable=retryable)


class NodeConflictError(APIError):
    """Raised when the control plane already knows a node with this name."""

    def __init__(self, node_name: str, detail: Optional[str] = None):
        self.node_name = node_name
        message = f"Node '{node_name}' already exists on the control plane"
        context = detail or "Remove it in the admin panel or pick another name"
        super().__init__(message, context, status_code=409)


class InstallError(NodeDeployError):
    """Raised when installing binaries or writing configuration fails."""

    exit_code = EXIT_INSTALL_ERROR
    category = "install"


class SecretError(InstallError):
    """Raised when a node secret cannot be generated."""

    category = "secret"


class BackupError(InstallError):
    """Raised when snapshot or restore operations fail."""

    category = "backup"


class ServiceError(NodeDeployError):
    """Raised when systemd services fail to start or verify."""

    exit_code = EXIT_SERVICE_ERROR
    category = "service"

    def __init__(
        self,
        message: str,
        context: Optional[str] = None,
        recent_logs: Optional[str] = None,
    ):
        self.recent_logs = recent_logs
        super().__init__(message, context)


class TerminatedError(KeyboardInterrupt):
    """
    Raised from a signal handler when the process is told to stop.

    Subclasses KeyboardInterrupt so termination unwinds through the same
    rollback and cleanup paths as Ctrl-C.
    """

    def __init__(self, signum: int):
        self.signum = signum
        self.exit_code = 128 + signum
        try:
            self.signal_name = signal.Signals(signum).name
        except ValueError:
            self.signal_name = str(signum)
        super().__init__(f"Terminated by {self.signal_name}")
