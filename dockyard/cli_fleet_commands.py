"""Commands spanning every configured app."""
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from dockyard.app_types import HookContext
from dockyard.cli_support import (
    CLI_ERRORS,
    handle_cli_error,
    is_mock,
    load_app,
    print_error,
    print_success,
    print_warning,
)
from dockyard.config.loader import AppConfigLoader
from dockyard.core.release_log import ReleaseLog
from dockyard.core.retention import run_fleet_cleanup
from dockyard.models.config import ConfigValidationError
from dockyard.services.docker import DockerClient
from dockyard.services.notifier import DeploymentNotifier


def _count(value: int, expected: int = 0) -> str:
    if expected and value < expected:
        return f"[yellow]{value}/{expected}[/yellow]"
    return str(value) if value else "[dim]-[/dim]"


def register_fleet_commands(root: typer.Typer, console: Console) -> None:
    """Attach fleet-wide commands to the main CLI."""

    @root.command("apps")
    def list_apps() -> None:
        """List configured apps."""
        loader = AppConfigLoader()
        names = loader.list_apps()
        if not names:
            print_warning(console, f"No apps configured in {loader.apps_dir}")
            return

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("App")
        table.add_column("Type")
        table.add_column("Domain")
        table.add_column("Directory")
        for name in names:
            try:
                app = loader.load(name)
            except ConfigValidationError:
                table.add_row(name, "[red]invalid config[/red]", "", str(loader.config_path(name)))
                continue
            table.add_row(name, app.type.value, app.domain or "-", str(app.paths.app_dir))
        console.print(table)

    @root.command("fleet-status")
    def fleet_status() -> None:
        """Running containers of every app."""
        loader = AppConfigLoader()
        docker = DockerClient(mock=is_mock())

        table = Table(title="Fleet status", show_header=True, header_style="bold cyan")
        table.add_column("App")
        table.add_column("Type")
        table.add_column("Running", justify="center")
        table.add_column("Web", justify="right")
        table.add_column("Workers", justify="right")
        table.add_column("Scheduler", justify="center")

        for name in loader.list_apps():
            try:
                app = loader.load(name)
            except ConfigValidationError:
                table.add_row(name, "[red]invalid config[/red]", "", "", "", "")
                continue

            containers = HookContext.for_app(app, mock=is_mock()).containers
            if app.cron is not None:
                running = docker.is_running(app.cron.container_name)
                table.add_row(name, app.type.value, "[green]yes[/green]" if running else "[red]no[/red]", "", "", "")
                continue

            web = len(containers.running_web_containers())
            workers = len(containers.running_worker_containers())
            scheduler = ""
            if app.has_scheduler:
                scheduler = "[green]yes[/green]" if docker.is_running(app.scheduler_container_name()) else "[red]no[/red]"
            table.add_row(
                name,
                app.type.value,
                "[green]yes[/green]" if web else "[red]no[/red]",
                _count(web),
                _count(workers, app.containers.worker_count),
                scheduler,
            )
        console.print(table)

    @root.command("cleanup-all")
    def cleanup_all() -> None:
        """Run the daily cleanup for every configured app."""
        processed, failed = run_fleet_cleanup(AppConfigLoader(), DockerClient(mock=is_mock()))
        if failed:
            print_error(console, f"Cleanup failed for {failed} app(s), {processed} processed")
            raise typer.Exit(1)
        print_success(console, f"Cleaned up {processed} app(s)")

    @root.command()
    def releases(count: int = typer.Option(10, "--count", "-n", help="Number of entries to show")) -> None:
        """Show the latest entries of the release log."""
        release_log = ReleaseLog()
        entries = release_log.recent(count)
        if not entries:
            print_warning(console, f"No releases recorded in {release_log.path}")
            return
        for entry in entries:
            style = "red" if "FAILED" in entry else "green" if "SUCCESS" in entry else "cyan"
            console.print(entry, style=style, highlight=False, markup=False)

    @root.command("notify-test")
    def notify_test(
        app_name: Optional[str] = typer.Argument(None, metavar="[APP]", help="Use this app's notification settings"),
    ) -> None:
        """Send a test deployment email."""
        try:
            app = load_app(app_name) if app_name else None
        except CLI_ERRORS as e:
            handle_cli_error(e, console)

        if not DeploymentNotifier(app, mock=is_mock()).send_test():
            print_error(console, "Test email was not sent, check the log output above")
            raise typer.Exit(1)
        print_success(console, "Test email sent")
