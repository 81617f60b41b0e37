"""NordVPN rotation commands for scraper hosts."""
import typer
from rich.console import Console

from dockyard.cli_support import is_mock, print_error, print_info
from dockyard.services.vpn import DEFAULT_COUNTRY, DEFAULT_INTERVAL_MINUTES, VpnRotator

VpnTyper = typer.Typer(help="Rotate the NordVPN exit IP for scrapers")


def register_vpn_commands(root: typer.Typer, console: Console) -> None:
    """Attach the vpn sub-commands to the main CLI."""

    @VpnTyper.command("rotate")
    def rotate(
        country: str = typer.Option(DEFAULT_COUNTRY, "--country", "-c", help="Country to connect to"),
        interval: int = typer.Option(
            DEFAULT_INTERVAL_MINUTES, "--interval", "-i", min=1, help="Minutes between rotations"
        ),
        once: bool = typer.Option(False, "--once", help="Rotate a single time and exit"),
    ) -> None:
        """Reconnect on a fixed interval until stopped (SIGTERM/SIGINT)."""
        returncode = VpnRotator(country=country, mock=is_mock()).run(interval_minutes=interval, once=once)
        if returncode != 0:
            print_error(console, "VPN rotation failed")
            raise typer.Exit(returncode)

    @VpnTyper.command("status")
    def status() -> None:
        """Show the VPN connection state and public IP."""
        rotator = VpnRotator(mock=is_mock())
        if not rotator.is_logged_in():
            print_error(console, "NordVPN not logged in, run 'nordvpn login' first")
            raise typer.Exit(1)
        state = rotator.status()
        colour = "green" if state == "Connected" else "red"
        console.print(f"Status: [{colour}]{state}[/{colour}]")
        print_info(console, f"Public IP: {rotator.current_ip()}")

    root.add_typer(VpnTyper, name="vpn")
