"""
nodedeploy Domain Models

Clean dataclass-based models for type-safe data handling.
"""

from .results import (
    InstallStatus,
    InstallResult,
    ValidationResult,
    ExecutionResult,
    BatchStatus,
    BatchResult,
    BatchReport,
)
from .deployment import (
    Protocol,
    Phase,
    DeploymentMode,
    DeploymentConfig,
    DeploymentState,
    ExistingDeployment,
    BackupSnapshot,
)
from .paths import NodePaths

__all__ = [
    # Results
    "InstallStatus",
    "InstallResult",
    "ValidationResult",
    "ExecutionResult",
    "BatchStatus",
    "BatchResult",
    "BatchReport",
    # Deployment
    "Protocol",
    "Phase",
    "DeploymentMode",
    "DeploymentConfig",
    "DeploymentState",
    "ExistingDeployment",
    "BackupSnapshot",
    # Paths
    "NodePaths",
]
