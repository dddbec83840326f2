#!/usr/bin/env python3
"""nodedeploy CLI - Main entry point"""

import rich_click as click
from rich.console import Console

from nodedeploy import __version__
from nodedeploy.commands.backups import backups_list, backups_prune
from nodedeploy.commands.deploy import deploy
from nodedeploy.commands.rollback import rollback
from nodedeploy.commands.status import status
from nodedeploy.commands.uninstall import uninstall
from nodedeploy.commands.update import update
from nodedeploy.constants import EXIT_INTERRUPTED
from nodedeploy.exceptions import TerminatedError
from nodedeploy.utils.signals import termination_signals

click.rich_click.USE_RICH_MARKUP = True
click.rich_click.USE_MARKDOWN = False
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.MAX_WIDTH = 100

# Commands and options
click.rich_click.STYLE_COMMAND = "bold cyan"
click.rich_click.STYLE_OPTION = "bold magenta"
click.rich_click.STYLE_SWITCH = "bold green"
click.rich_click.STYLE_ARGUMENT = "bold yellow"

# Headers and help text
click.rich_click.STYLE_HEADER_TEXT = "bold cyan"
click.rich_click.STYLE_USAGE = "bold yellow"
click.rich_click.STYLE_USAGE_COMMAND = "bold cyan"
click.rich_click.STYLE_HELPTEXT_FIRST_LINE = "bold white"
click.rich_click.STYLE_HELPTEXT = ""
click.rich_click.STYLE_OPTION_HELP = ""
click.rich_click.STYLE_METAVAR = "bold yellow"
click.rich_click.STYLE_OPTION_DEFAULT = "dim cyan"
click.rich_click.STYLE_EPILOG_TEXT = "dim"

# Panels
click.rich_click.STYLE_OPTIONS_PANEL_BORDER = "cyan"
click.rich_click.STYLE_COMMANDS_PANEL_BORDER = "cyan"
click.rich_click.ALIGN_OPTIONS_PANEL = "left"
click.rich_click.ALIGN_ERRORS_PANEL = "left"
click.rich_click.ERRORS_EPILOGUE = ""

console = Console()

BANNER = """
[bold cyan]╔═══════════════════════════════════════════════════════════╗[/bold cyan]
[bold cyan]║[/bold cyan]  [bold white]nodedeploy[/bold white] - VPN node provisioning for the control plane [bold cyan]║[/bold cyan]
[bold cyan]╚═══════════════════════════════════════════════════════════╝[/bold cyan]
"""


@click.group(cls=click.RichGroup, invoke_without_command=True)
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """
    nodedeploy - Provision VPN nodes and register them with the control plane.

    \b
    Quick Start:
      nodedeploy deploy --api-url https://panel.example.com \\
        --admin-token <JWT> --node-name edge-1
      nodedeploy status

    \b
    Maintenance:
      nodedeploy update                 # Refresh config, keep node identity
      nodedeploy rollback               # Restore the latest backup
      nodedeploy backups:list           # Show configuration backups
      nodedeploy backups:prune --keep 5 # Delete old backups
      nodedeploy uninstall              # Remove the node from this host
    """
    if ctx.invoked_subcommand is None:
        console.print(BANNER)
        console.print("[yellow]Run 'nodedeploy --help' for usage[/yellow]\n")


# Register commands
cli.add_command(deploy)
cli.add_command(update)
cli.add_command(uninstall)
cli.add_command(status)
cli.add_command(rollback)
# Backups (Heroku-style with colons)
cli.add_command(backups_list)
cli.add_command(backups_prune)


def main():
    """Main entry point."""
    try:
        with termination_signals():
            cli()
    except TerminatedError as e:
        console.print(f"\n\n[yellow]⚠️  Operation terminated ({e.signal_name})[/yellow]")
        raise SystemExit(e.exit_code)
    except KeyboardInterrupt:
        console.print("\n\n[yellow]⚠️  Operation cancelled by user[/yellow]")
        raise SystemExit(EXIT_INTERRUPTED)


if __name__ == "__main__":
    main()
