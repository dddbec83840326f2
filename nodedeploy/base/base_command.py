"""
Base Command Class

Abstract base for all nodedeploy CLI commands.
Provides common functionality and structure.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from rich.console import Console
from rich.markup import escape

from nodedeploy.constants import EXIT_INTERRUPTED, EXIT_PARAMETER_ERROR
from nodedeploy.exceptions import NodeDeployError, TerminatedError
from nodedeploy.logger import DeployLogger
from nodedeploy.models.paths import NodePaths
from nodedeploy.troubleshooting import show_troubleshooting
from nodedeploy.ui_components import show_header


class BaseCommand(ABC):
    """
    Abstract base command class.

    Provides:
    - Logger initialization
    - Header display
    - Exit code mapping for NodeDeployError
    - JSON output support
    """

    def __init__(
        self,
        verbose: bool = False,
        json_output: bool = False,
        paths: Optional[NodePaths] = None,
    ):
        self.verbose = verbose
        self.json_output = json_output
        self.console = Console()
        self.paths = paths or NodePaths.from_env()
        self.logger: Optional[DeployLogger] = None
        # Filled in by commands once known, used in troubleshooting output
        self.api_url: Optional[str] = None
        self.node_port: Optional[int] = None

    def init_logger(self, operation: str, node_name: str = "local") -> DeployLogger:
        """
        Initialize command logger.

        Args:
            operation: Operation name (deploy, update, uninstall, ...)
            node_name: Node name, or 'batch' for batch runs

        Returns:
            DeployLogger instance
        """
        self.logger = DeployLogger(
            operation, node_name, verbose=self.verbose, log_dir=self.paths.log_dir
        )
        return self.logger

    def output_json(self, data: Dict[str, Any], exit_code: int = 0) -> None:
        """
        Output data as JSON and exit.

        Args:
            data: Data to output as JSON
            exit_code: Exit code (0 for success, non-zero for error)
        """
        print(json.dumps(data, indent=2))
        if exit_code != 0:
            raise SystemExit(exit_code)

    def show_header(
        self,
        title: str,
        subtitle: Optional[str] = None,
        node: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Show command header (skip in JSON or verbose mode)."""
        if not self.verbose and not self.json_output:
            show_header(
                title=title,
                subtitle=subtitle,
                node=node,
                details=details,
                console=self.console,
            )

    def print_success(self, message: str) -> None:
        """Print success message (skip in JSON mode)."""
        if not self.json_output:
            self.console.print(f"[green]✓ {escape(message)}[/green]")

    def print_warning(self, message: str) -> None:
        """Print warning message (skip in JSON mode)."""
        if not self.json_output:
            self.console.print(f"[yellow]⚠ {escape(message)}[/yellow]")

    def print_dim(self, message: str) -> None:
        """Print dim message (skip in JSON mode)."""
        if not self.json_output:
            self.console.print(f"[dim]{escape(message)}[/dim]")

    def confirm(self, question: str, default: bool = False) -> bool:
        """
        Ask for user confirmation.

        Args:
            question: Question to ask
            default: Default answer

        Returns:
            True if confirmed
        """
        default_str = "y" if default else "n"
        self.console.print(
            f"{question} [bold bright_white]\\[y/n][/bold bright_white] [dim]({default_str})[/dim]: ",
            end="",
        )
        answer = input().strip().lower()

        if not answer:
            return default

        return answer in ["y", "yes"]

    def _show_log_path(self) -> None:
        if self.logger and self.logger.log_path:
            self.console.print(f"\n[dim]Logs saved to:[/dim] {self.logger.log_path}\n")

    def _close_logger(self) -> None:
        if self.logger:
            self.logger.close()

    @abstractmethod
    def execute(self, **kwargs) -> None:
        """
        Execute command logic.

        Must be implemented by subclasses.
        """
        pass

    def run(self, **kwargs) -> None:
        """
        Run command with error handling.

        Every NodeDeployError becomes its documented exit code.
        """
        try:
            self.execute(**kwargs)
        except TerminatedError as e:
            self.console.print(f"\n[yellow]⚠️  Operation terminated ({e.signal_name})[/yellow]")
            if self.logger:
                self.logger.log(f"Terminated by {e.signal_name}", "WARNING")
            self._show_log_path()
            raise SystemExit(e.exit_code)
        except KeyboardInterrupt:
            self.console.print("\n[yellow]⚠️  Operation cancelled by user[/yellow]")
            if self.logger:
                self.logger.log("Interrupted by user", "WARNING")
            self._show_log_path()
            raise SystemExit(EXIT_INTERRUPTED)
        except SystemExit:
            raise
        except NodeDeployError as e:
            if self.logger:
                self.logger.log_error(e.message, context=e.context)
            else:
                self.console.print(f"\n[bold red]✗ {escape(e.message)}[/bold red]")
                if e.context:
                    self.console.print(f"  [color(208)]{escape(e.context)}[/color(208)]")
            recent_logs = getattr(e, "recent_logs", None)
            if recent_logs:
                self.console.print("\n[white]Recent service logs:[/white]")
                if self.logger:
                    recent_logs = self.logger.redact(recent_logs)
                self.console.print(escape(recent_logs), highlight=False)

            if not self.json_output:
                show_troubleshooting(
                    e.exit_code,
                    self.console,
                    api_url=self.api_url,
                    node_port=self.node_port,
                    log_path=self.logger.log_path if self.logger else None,
                )
            self._show_log_path()
            raise SystemExit(e.exit_code)
        except Exception as e:
            error_type = type(e).__name__
            self.console.print(f"\n[bold red]✗ {error_type}:[/bold red] {escape(str(e))}\n")
            if self.logger:
                self.logger.log_error(f"{error_type}: {e}")
            self._show_log_path()
            raise SystemExit(EXIT_PARAMETER_ERROR)
        finally:
            self._close_logger()
