"""
Result Models

Dataclass models for operation results and command outputs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from nodedeploy.exceptions import InstallError


class InstallStatus(Enum):
    """Outcome of an idempotent install step."""

    ALREADY_PRESENT = "already_present"
    INSTALLED = "installed"
    FAILED = "failed"


@dataclass
class InstallResult:
    """Result of ensuring a component is installed."""

    component: str
    status: InstallStatus
    message: str = ""
    version: Optional[str] = None

    @property
    def is_failure(self) -> bool:
        """Check if the install failed."""
        return self.status == InstallStatus.FAILED

    @property
    def changed(self) -> bool:
        """Check if the host was modified."""
        return self.status == InstallStatus.INSTALLED

    def raise_for_status(self) -> "InstallResult":
        """Raise InstallError if the install failed, otherwise return self."""
        if self.is_failure:
            raise InstallError(
                f"Failed to install {self.component}", context=self.message
            )
        return self

    def __repr__(self) -> str:
        return f"InstallResult(component={self.component}, status={self.status.value})"


@dataclass
class ValidationResult:
    """Result of a validation operation."""

    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if validation has errors."""
        return len(self.errors) > 0

    @property
    def has_warnings(self) -> bool:
        """Check if validation has warnings."""
        return len(self.warnings) > 0

    def add_error(self, error: str) -> None:
        """Add an error to the validation result."""
        self.errors.append(error)
        self.is_valid = False

    def add_warning(self, warning: str) -> None:
        """Add a warning to the validation result."""
        self.warnings.append(warning)

    def __repr__(self) -> str:
        return f"ValidationResult(valid={self.is_valid}, errors={len(self.errors)}, warnings={len(self.warnings)})"


@dataclass
class ExecutionResult:
    """Result of a local subprocess execution."""

    returncode: int
    stdout: str = ""
    stderr: str = ""
    command: str = ""

    @property
    def is_success(self) -> bool:
        """Check if execution succeeded."""
        return self.returncode == 0

    @property
    def is_failure(self) -> bool:
        """Check if execution failed."""
        return self.returncode != 0

    @property
    def output(self) -> str:
        """Get combined output (stdout + stderr)."""
        return f"{self.stdout}\n{self.stderr}".strip()

    def __repr__(self) -> str:
        return f"ExecutionResult(returncode={self.returncode}, command='{self.command[:50]}')"


class BatchStatus(Enum):
    """Outcome of a single node in a batch run."""

    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class BatchResult:
    """Result for one node of a batch deployment."""

    node_name: str
    status: BatchStatus
    message: str = ""
    exit_code: int = 0

    @property
    def is_success(self) -> bool:
        return self.status == BatchStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_name": self.node_name,
            "status": self.status.value,
            "message": self.message,
            "exit_code": self.exit_code,
        }


@dataclass
class BatchReport:
    """Aggregate of batch results in input order."""

    results: List[BatchResult] = field(default_factory=list)

    def add(self, result: BatchResult) -> None:
        self.results.append(result)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.is_success)

    @property
    def failed_count(self) -> int:
        return self.total - self.success_count

    @property
    def is_success(self) -> bool:
        """At least one node deployed."""
        return self.success_count > 0

    @property
    def failed(self) -> List[BatchResult]:
        return [r for r in self.results if not r.is_success]

    @property
    def succeeded(self) -> List[BatchResult]:
        return [r for r in self.results if r.is_success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "success": self.success_count,
            "failed": self.failed_count,
            "results": [r.to_dict() for r in self.results],
        }

    def __repr__(self) -> str:
        return f"BatchReport(total={self.total}, success={self.success_count}, failed={self.failed_count})"
