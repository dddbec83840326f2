"""
Logging system for nodedeploy
Provides real-time logging to files with clean console output
"""

import re
import subprocess
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, TextIO, Tuple

from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.padding import Padding
from rich.spinner import Spinner
from rich.text import Text

from nodedeploy.constants import LOG_DATE_FORMAT, LOG_TIME_FORMAT
from nodedeploy.core.secret_generator import mask_secret
from nodedeploy.models.paths import NodePaths

console = Console()

# Seconds to keep reading output after a verbose command exits
OUTPUT_DRAIN_TIMEOUT = 5

ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


class DeployLogger:
    """
    Manages logging for node deployment operations
    - Writes all output to log files in real-time
    - Shows clean progress UI in console (unless verbose)
    - Captures errors with context
    - Masks registered secrets in everything it writes
    """

    def __init__(
        self,
        operation: str,
        node_name: str = "local",
        verbose: bool = False,
        log_dir: Optional[Path] = None,
    ):
        """
        Initialize logger

        Args:
            operation: Operation name (e.g., 'deploy', 'uninstall', 'update')
            node_name: Node being deployed (or 'batch' / 'local')
            verbose: If True, show all output in console
            log_dir: Root log directory (default: /var/log/nodedeploy)
        """
        self.operation = operation
        self.node_name = node_name
        self.verbose = verbose
        self.log_file: Optional[TextIO] = None
        self.log_path: Optional[Path] = None
        self.current_step = ""
        self.has_errors = False
        self.summary: Dict[str, object] = {}
        self._sensitive: List[str] = []

        if log_dir is None:
            log_dir = NodePaths.from_env().log_dir

        # Structure: {log_dir}/{date}/{time}_{operation}.log
        now = datetime.now()
        day_dir = Path(log_dir) / now.strftime(LOG_DATE_FORMAT)
        day_dir.mkdir(parents=True, exist_ok=True)

        self.log_path = day_dir / f"{now.strftime(LOG_TIME_FORMAT)}_{operation}.log"

        # Open log file for writing (line buffered for real-time)
        self.log_file = open(self.log_path, "a", buffering=1)
        self.log_path.chmod(0o600)

        self._write_log_header()

    def _write_log_header(self):
        """Write log file header"""
        header = f"""
{"=" * 80}
nodedeploy Deployment Log
{"=" * 80}
Node: {self.node_name}
Operation: {self.operation}
Started: {datetime.now().isoformat()}
{"=" * 80}

"""
        self.log_file.write(header)
        self.log_file.flush()

    def add_sensitive(self, value: Optional[str]) -> None:
        """Register a secret so it is masked wherever it appears."""
        if value and value not in self._sensitive:
            self._sensitive.append(value)
            # Longest first so a secret containing another is masked whole
            self._sensitive.sort(key=len, reverse=True)

    def redact(self, text: str) -> str:
        """Replace every registered secret in ``text`` with its masked form."""
        for value in self._sensitive:
            if value in text:
                text = text.replace(value, mask_secret(value))
        return text

    def log(self, message: str, level: str = "INFO"):
        """
        Log a message to file and optionally console

        Args:
            message: Message to log
            level: Log level (INFO, WARNING, ERROR, DEBUG)
        """
        message = self.redact(message)
        timestamp = datetime.now().strftime("%H:%M:%S")
        log_line = f"[{timestamp}] [{level}] {message}\n"

        if self.log_file:
            self.log_file.write(log_line)
            self.log_file.flush()

        if self.verbose:
            if level == "ERROR":
                console.print(f"[red]{escape(message)}[/red]")
            elif level == "WARNING":
                console.print(f"[yellow]{escape(message)}[/yellow]")
            elif level == "DEBUG":
                console.print(f"[dim]{escape(message)}[/dim]")
            else:
                console.print(escape(message))

    def log_command(self, command: str):
        """Log a command being executed"""
        self.log(f"Executing: {command}", "DEBUG")

    def log_output(self, output: str, stream: str = "stdout"):
        """
        Log command output

        Always written to the log file; shown in console only if verbose.

        Args:
            output: Command output (single line or multiline)
            stream: Stream name (stdout, stderr)
        """
        if not output:
            return

        clean_output = self.redact(ANSI_ESCAPE.sub("", output))

        if self.log_file:
            for line in clean_output.splitlines():
                self.log_file.write(f"  [{stream}] {line}\n")
            self.log_file.flush()

        if self.verbose:
            console.print(clean_output, markup=False, highlight=False)

    def log_error(self, error: str, context: Optional[str] = None):
        """
        Log an error with context

        Args:
            error: Error message
            context: Additional context (e.g., command that failed)
        """
        self.has_errors = True
        error = self.redact(error)
        context = self.redact(context) if context else None

        error_block = f"""
{"!" * 80}
ERROR OCCURRED
{"!" * 80}
{error}
"""
        if context:
            error_block += f"\nContext: {context}\n"

        error_block += f"{'!' * 80}\n\n"

        if self.log_file:
            self.log_file.write(error_block)
            self.log_file.flush()

        if not self.verbose:
            console.print()

        console.print(f"[bold red]✗ {escape(error)}[/bold red]", highlight=False)
        if context:
            console.print(f"  [color(208)]{escape(context)}[/color(208)]", highlight=False)

    def step(self, step_name: str):
        """
        Start a new step

        Args:
            step_name: Name of the step
        """
        if self.current_step and not self.verbose:
            console.print()

        self.current_step = step_name
        self.log(f"Step: {step_name}", "INFO")

        if not self.verbose:
            console.print(f"[color(214)]▶[/color(214)] [white]{step_name}[/white]")

    def success(self, message: str):
        """Log a success message"""
        self.log(message, "INFO")

        if not self.verbose:
            console.print(f"  [dim]✓ {escape(self.redact(message))}[/dim]")

    def warning(self, message: str):
        """Log a warning message"""
        self.log(message, "WARNING")

        if not self.verbose:
            console.print(f"  [yellow]⚠[/yellow] [dim]{escape(self.redact(message))}[/dim]")

    def set_summary(self, **fields) -> None:
        """Extra key/value lines for the log footer (phase, counters)."""
        self.summary.update(fields)

    def close(self):
        """Close log file"""
        if self.log_file:
            summary_lines = "".join(
                f"{key.replace('_', ' ').title()}: {value}\n"
                for key, value in self.summary.items()
            )
            footer = f"""
{"=" * 80}
Completed: {datetime.now().isoformat()}
Status: {"FAILED" if self.has_errors else "SUCCESS"}
{summary_lines}{"=" * 80}
"""
            self.log_file.write(footer)
            self.log_file.close()
            self.log_file = None

    def __enter__(self):
        """Context manager entry"""
        return self

    def __exit__(self, exc_type, exc_val, _exc_tb):
        """Context manager exit"""
        if exc_type is not None and exc_type != SystemExit:
            # Log unhandled exception (but not SystemExit - that's expected)
            self.log_error(
                str(exc_val) if exc_val else "Operation failed",
                context=f"{exc_type.__name__}",
            )
        self.close()
        return False


def run_with_progress(
    logger: DeployLogger,
    args: Sequence[str],
    description: str,
    cwd: Optional[Path] = None,
    timeout: Optional[int] = None,
) -> Tuple[int, str, str]:
    """
    Run a command with progress indicator

    Args:
        logger: DeployLogger instance
        args: Command and arguments
        description: Description for progress indicator
        cwd: Working directory
        timeout: Seconds before the command is killed

    Returns:
        Tuple of (return_code, stdout, stderr)
    """
    logger.log_command(" ".join(args))

    if logger.verbose:
        # Verbose mode: stream output while logging it
        process = subprocess.Popen(
            list(args),
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )

        stdout_lines = []

        def pump():
            for line in process.stdout:
                line_stripped = line.rstrip()
                stdout_lines.append(line_stripped)
                logger.log_output(line_stripped, "stdout")

        # wait() owns the deadline, the reader only drains output
        reader = threading.Thread(target=pump, daemon=True)
        reader.start()
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            raise
        finally:
            # Grandchildren may keep the pipe open after the child exits
            reader.join(timeout=OUTPUT_DRAIN_TIMEOUT)
            if not reader.is_alive():
                process.stdout.close()

        return process.returncode, "\n".join(stdout_lines), ""

    # Non-verbose: show spinner, capture output
    spinner = Spinner("dots", text=f"[cyan]{description}...[/cyan]")
    padded_spinner = Padding(spinner, (0, 0, 0, 2))

    with Live(padded_spinner, console=console, refresh_per_second=10) as live:
        result = subprocess.run(
            list(args), cwd=cwd, capture_output=True, text=True, timeout=timeout
        )

        if result.stdout:
            logger.log_output(result.stdout, "stdout")
        if result.stderr:
            logger.log_output(result.stderr, "stderr")

        if result.returncode == 0:
            checkmark = Text("  ✓ ", style="dim")
            checkmark.append(description, style="dim")
            live.update(checkmark)
        else:
            x_mark = Text("  ✗ ", style="red")
            x_mark.append(description, style="dim")
            live.update(x_mark)

    return result.returncode, result.stdout, result.stderr
