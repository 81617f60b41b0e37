"""Per-app provisioning commands: setup, info and cleanup."""
import typer
from rich.console import Console

from dockyard.cli_support import (
    CLI_ERRORS,
    handle_cli_error,
    is_mock,
    load_app,
    print_info,
    print_success,
)
from dockyard.core.retention import run_app_cleanup
from dockyard.core.setup import INFO_FILENAME, SetupOrchestrator
from dockyard.services.docker import DockerClient


def register_setup_commands(root: typer.Typer, console: Console) -> None:
    """Attach setup, info and cleanup to the main CLI."""

    @root.command()
    def setup(
        app_name: str = typer.Argument(..., metavar="APP", help="App name"),
        skip_ssl: bool = typer.Option(False, "--skip-ssl", help="Do not request a certificate yet"),
    ) -> None:
        """Provision an app: directories, repo, database, env file, nginx, cron and SSL.

        Safe to run again; existing resources are reused.
        """
        try:
            app = load_app(app_name)
            info_path = SetupOrchestrator(app, mock=is_mock()).run(skip_ssl=skip_ssl)
        except CLI_ERRORS as e:
            handle_cli_error(e, console)

        print_success(console, f"{app.display_name} is set up")
        print_info(console, f"Deployment info: {info_path}")
        console.print(f"\nNext: [bold]dockyard deploy {app_name}[/bold]")

    @root.command()
    def info(app_name: str = typer.Argument(..., metavar="APP", help="App name")) -> None:
        """Show paths, domains, database and commands for an app."""
        try:
            app = load_app(app_name)
            info_path = app.paths.app_dir / INFO_FILENAME
            if info_path.exists():
                content = info_path.read_text()
            else:
                content = SetupOrchestrator(app, mock=is_mock()).render_info()
        except CLI_ERRORS as e:
            handle_cli_error(e, console)

        console.print(content, highlight=False, markup=False)

    @root.command()
    def cleanup(app_name: str = typer.Argument(..., metavar="APP", help="App name")) -> None:
        """Prune old images, image backups, database backups and logs."""
        try:
            app = load_app(app_name)
            run_app_cleanup(app, DockerClient(mock=is_mock()))
        except (*CLI_ERRORS, OSError) as e:
            handle_cli_error(e, console)
        print_success(console, f"Cleanup complete for {app_name}")
