"""Per-app deployment commands: deploy, restart, scale, rollback and friends."""
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from dockyard.cli_support import (
    CLI_ERRORS,
    confirm_action,
    get_deployer,
    handle_cli_error,
    is_mock,
    print_info,
    print_success,
    print_warning,
)
from dockyard.core.lock import check_lock_status

APP_ARGUMENT = typer.Argument(..., metavar="APP", help="App name (directory under $DOCKYARD_HOME/apps)")

STATUS_STYLES = {"running": "green", "exited": "red", "restarting": "yellow"}


def register_deploy_commands(root: typer.Typer, console: Console) -> None:
    """Attach the per-app deployment commands to the main CLI."""

    @root.command()
    def deploy(
        app_name: str = APP_ARGUMENT,
        scale: Optional[int] = typer.Option(None, "--scale", "-s", help="Web containers to run (default: keep current)"),
    ) -> None:
        """Pull, build and roll out a new version with zero downtime."""
        try:
            deployer = get_deployer(app_name)
            result = deployer.deploy(scale=scale)
        except CLI_ERRORS as e:
            handle_cli_error(e, console)

        console.print()
        for line in deployer.summary(result):
            console.print(line, highlight=False)
        print_success(console, f"Deployed {app_name} ({result.image_tag}) in {result.duration_seconds}s")

    @root.command()
    def restart(app_name: str = APP_ARGUMENT) -> None:
        """Rolling restart of the current image."""
        try:
            result = get_deployer(app_name).restart()
        except CLI_ERRORS as e:
            handle_cli_error(e, console)
        print_success(console, f"Restarted {app_name} ({result.scale} container(s))")

    @root.command()
    def stop(
        app_name: str = APP_ARGUMENT,
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    ) -> None:
        """Stop and remove all of the app's containers."""
        if not confirm_action(f"Stop all containers of {app_name}?", yes_flag=yes, mock=is_mock()):
            print_info(console, "Cancelled")
            raise typer.Exit(0)
        try:
            count = get_deployer(app_name).stop()
        except CLI_ERRORS as e:
            handle_cli_error(e, console)
        print_success(console, f"Stopped {count} container(s)")

    @root.command()
    def scale(
        app_name: str = APP_ARGUMENT,
        count: int = typer.Argument(..., metavar="N", help="Number of web containers"),
    ) -> None:
        """Run exactly N web containers of the current image."""
        try:
            ports = get_deployer(app_name).scale(count)
        except CLI_ERRORS as e:
            handle_cli_error(e, console)
        ports_label = ", ".join(str(p) for p in ports) or "-"
        print_success(console, f"Scaled {app_name} to {count} web container(s) (ports: {ports_label})")

    @root.command()
    def status(app_name: str = APP_ARGUMENT) -> None:
        """Show the app's containers."""
        try:
            deployer = get_deployer(app_name)
            rows = deployer.status()
        except CLI_ERRORS as e:
            handle_cli_error(e, console)

        app = deployer.app
        console.print(f"\n[bold]{app.display_name}[/bold] ({app.type.value})")
        if app.domain:
            console.print(f"[dim]https://{app.domain}[/dim]")

        if not rows:
            print_warning(console, "No containers found")
        else:
            table = Table(show_header=True, header_style="bold cyan")
            table.add_column("Container")
            table.add_column("Status")
            table.add_column("Port")
            table.add_column("Started")
            table.add_column("Uptime", justify="right")
            for row in rows:
                style = STATUS_STYLES.get(row.status, "white")
                table.add_row(row.name, f"[{style}]{row.status}[/{style}]", row.ports, row.started, row.uptime)
            console.print(table)

        holder = check_lock_status(app.paths.app_dir)
        if holder:
            print_warning(console, f"{holder['operation']} in progress (PID {holder['pid']} since {holder['time']})")

    @root.command()
    def logs(
        app_name: str = APP_ARGUMENT,
        container: Optional[str] = typer.Argument(None, help="Container, e.g. web_2 or worker_1 (default: web_1)"),
        tail: Optional[int] = typer.Option(None, "--tail", "-n", help="Number of lines to show"),
        follow: bool = typer.Option(True, "--follow/--no-follow", help="Stream new log lines"),
    ) -> None:
        """Show a container's logs."""
        try:
            returncode = get_deployer(app_name).logs(container, follow=follow, tail=tail)
        except CLI_ERRORS as e:
            handle_cli_error(e, console)
        if returncode != 0:
            raise typer.Exit(returncode)

    @root.command()
    def rollback(
        app_name: str = APP_ARGUMENT,
        steps: int = typer.Option(1, "--steps", help="Image backups to go back from the current one"),
        tag: Optional[str] = typer.Option(None, "--tag", "-t", help="Roll back to this image tag"),
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    ) -> None:
        """Redeploy a previous image from its saved backup."""
        try:
            deployer = get_deployer(app_name)
            target = deployer.resolve_rollback_target(steps=steps, tag=tag)
        except CLI_ERRORS as e:
            handle_cli_error(e, console)

        console.print(f"Rolling back [bold]{app_name}[/bold] to [cyan]{target.tag}[/cyan] ({target.size_human})")
        if not confirm_action("Continue with rollback?", yes_flag=yes, mock=is_mock()):
            print_info(console, "Rollback cancelled")
            raise typer.Exit(0)

        try:
            result = deployer.rollback(steps=steps, tag=tag)
        except CLI_ERRORS as e:
            handle_cli_error(e, console)
        print_success(console, f"Rolled back {app_name} to {result.image_tag}")

    @root.command()
    def images(app_name: str = APP_ARGUMENT) -> None:
        """List saved image backups available for rollback."""
        try:
            deployer = get_deployer(app_name)
            backups = deployer.list_image_backups()
            current = deployer.current_image_tag(backups)
        except CLI_ERRORS as e:
            handle_cli_error(e, console)

        if not backups:
            print_warning(console, "No image backups found")
            return

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("#", justify="right")
        table.add_column("Tag")
        table.add_column("Size", justify="right")
        table.add_column("Created")
        for index, backup in enumerate(backups):
            label = f"{backup.tag} [green](current)[/green]" if backup.tag == current else backup.tag
            table.add_row(str(index), label, backup.size_human, backup.created.strftime("%Y-%m-%d %H:%M"))
        console.print(table)
        console.print(f"[dim]Roll back with: dockyard rollback {app_name} --steps N[/dim]")

    @root.command("ssl-setup")
    def ssl_setup(
        app_name: str = APP_ARGUMENT,
        email: Optional[str] = typer.Option(None, "--email", help="Let's Encrypt account email"),
    ) -> None:
        """Obtain a certificate and enable HTTPS for the app's domains."""
        try:
            get_deployer(app_name).ssl_setup(email=email)
        except CLI_ERRORS as e:
            handle_cli_error(e, console)
        print_success(console, "SSL configured")

    @root.command("console")
    def rails_console(app_name: str = APP_ARGUMENT) -> None:
        """Open a Rails console in the first web container."""
        try:
            returncode = get_deployer(app_name).console()
        except CLI_ERRORS as e:
            handle_cli_error(e, console)
        if returncode != 0:
            raise typer.Exit(returncode)

    @root.command()
    def task(
        app_name: str = APP_ARGUMENT,
        name: str = typer.Argument(..., metavar="TASK", help="Rails task, e.g. db:seed"),
    ) -> None:
        """Run a Rails task in the first web container."""
        try:
            result = get_deployer(app_name).task(name)
        except CLI_ERRORS as e:
            handle_cli_error(e, console)
        _print_output(console, result)
        if result.returncode != 0:
            raise typer.Exit(result.returncode)

    @root.command("run")
    def run_job(app_name: str = APP_ARGUMENT) -> None:
        """Run a cron-job app's job once, right now."""
        try:
            result = get_deployer(app_name).run_once()
        except CLI_ERRORS as e:
            handle_cli_error(e, console)
        _print_output(console, result)
        if result.returncode != 0:
            raise typer.Exit(result.returncode)


def _print_output(console: Console, result) -> None:
    if result.stdout:
        console.print(result.stdout.rstrip(), highlight=False, markup=False)
    if result.stderr:
        console.print(result.stderr.rstrip(), style="red", highlight=False, markup=False)
