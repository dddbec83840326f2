"""
nodedeploy - UI Components
Standardized headers and colors
"""

from rich.console import Console
from rich.markup import escape

BRAND = "nodedeploy"

# Color scheme
BRAND_COLOR = "cyan"
SUCCESS_COLOR = "green"
WARNING_COLOR = "yellow"
ERROR_COLOR = "red"


def _prefix() -> str:
    return f" [bold color(214)]{BRAND}[/bold color(214)] [dim]›[/dim]"


def show_header(
    title: str,
    subtitle: str = None,
    node: str = None,
    details: dict = None,
    console: Console = None,
):
    """
    Display a standardized command header.

    Args:
        title: Main title (e.g., "Deploy Node")
        subtitle: Optional subtitle line
        node: Node name (if applicable)
        details: Additional key-value pairs to display
        console: Rich Console instance (creates new if None)

    Example:
        show_header(
            title="Deploy Node",
            node="edge-1",
            details={"Protocol": "vless", "Port": 443}
        )
    """
    if console is None:
        console = Console()

    console.print(f"{_prefix()} [bold white]{escape(title)}[/bold white]")

    if subtitle:
        console.print(f"{_prefix()} [dim]{escape(subtitle)}[/dim]")

    if node:
        console.print(f"{_prefix()} Node: [cyan]{escape(node)}[/cyan]")

    if details:
        for key, value in details.items():
            console.print(f"{_prefix()} {key}: [cyan]{escape(str(value))}[/cyan]")

    console.print()
