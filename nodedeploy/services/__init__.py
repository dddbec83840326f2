"""
nodedeploy Services Layer

Host-facing operations: commands, control-plane API, installs, systemd and backups.
"""

from .command_runner import CommandRunner
from .api_client import ControlPlaneClient, NodeRegistration
from .backup_service import BackupManager
from .detector import ExistingDeploymentDetector
from .installer import IdempotentInstall, InstallManager
from .supervisor import ServiceSupervisor

__all__ = [
    "CommandRunner",
    "ControlPlaneClient",
    "NodeRegistration",
    "BackupManager",
    "ExistingDeploymentDetector",
    "IdempotentInstall",
    "InstallManager",
    "ServiceSupervisor",
]
