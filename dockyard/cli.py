#!/usr/bin/env python3
"""Dockyard CLI - zero-downtime Docker deployments on a single VPS."""
from typing import Optional

import typer
from rich.console import Console

from dockyard.cli_deploy_commands import register_deploy_commands
from dockyard.cli_fleet_commands import register_fleet_commands
from dockyard.cli_setup_commands import register_setup_commands
from dockyard.cli_support import set_verbose, setup_file_logging
from dockyard.cli_vpn_commands import register_vpn_commands
from dockyard.core.logger import get_logger

app = typer.Typer(
    name="dockyard",
    help="""Dockyard - deploy Rails, Next.js and cron-job apps on one Docker host

One app.yml per app under $DOCKYARD_HOME/apps/<name>/.

Quick start:
  dockyard setup my-api           # Directories, repo, database, nginx, SSL
  dockyard deploy my-api          # Pull, build, zero-downtime rollout
  dockyard scale my-api 3         # Run three web containers
  dockyard rollback my-api        # Back to the previous image
  dockyard status my-api          # Containers, ports and uptime

Fleet: dockyard apps | fleet-status | releases | cleanup-all
""",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging and tracebacks on errors"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
) -> None:
    set_verbose(verbose)
    setup_file_logging(log_file=log_file, verbose=verbose)


# Attach modular subcommands
register_setup_commands(app, console)
register_deploy_commands(app, console)
register_fleet_commands(app, console)
register_vpn_commands(app, console)

if __name__ == "__main__":
    app()
