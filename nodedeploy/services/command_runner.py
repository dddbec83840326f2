"""Local subprocess execution with logging."""

import subprocess
from typing import Optional, Sequence

from nodedeploy.logger import DeployLogger, run_with_progress
from nodedeploy.models.results import ExecutionResult


class CommandRunner:
    """Service for running host commands (systemctl, package managers, installers)."""

    def __init__(self, logger: Optional[DeployLogger] = None):
        """
        Initialize command runner.

        Args:
            logger: Logger receiving the command line and its output
        """
        self.logger = logger

    def run(
        self,
        args: Sequence[str],
        timeout: Optional[int] = 300,
        description: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Execute a command without a shell.

        Args:
            args: Command and arguments
            timeout: Command timeout in seconds
            description: When set, show a spinner with this text

        Returns:
            ExecutionResult with execution details
        """
        command = " ".join(args)

        if description and self.logger:
            try:
                returncode, stdout, stderr = run_with_progress(
                    self.logger, args, description, timeout=timeout
                )
            except subprocess.TimeoutExpired:
                return self._timed_out(command, timeout)
            except FileNotFoundError as e:
                return ExecutionResult(returncode=127, stderr=str(e), command=command)
            return ExecutionResult(
                returncode=returncode, stdout=stdout, stderr=stderr, command=command
            )

        if self.logger:
            self.logger.log_command(command)

        try:
            result = subprocess.run(
                list(args), capture_output=True, text=True, timeout=timeout
            )
        except subprocess.TimeoutExpired:
            return self._timed_out(command, timeout)
        except FileNotFoundError as e:
            return ExecutionResult(returncode=127, stderr=str(e), command=command)

        if self.logger:
            self.logger.log_output(result.stdout, "stdout")
            self.logger.log_output(result.stderr, "stderr")

        return ExecutionResult(
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            command=command,
        )

    def _timed_out(self, command: str, timeout: Optional[int]) -> ExecutionResult:
        if self.logger:
            self.logger.log(f"Command timed out after {timeout}s: {command}", "WARNING")
        return ExecutionResult(
            returncode=124, stderr=f"Timed out after {timeout}s", command=command
        )
