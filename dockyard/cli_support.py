"""Shared utilities for dockyard CLI modules."""
from __future__ import annotations

import os
from typing import Optional

import typer
from rich.console import Console

from dockyard.config.loader import AppConfigLoader
from dockyard.core.errors import DockyardError
from dockyard.core.lock import LockError
from dockyard.models.app import AppConfig
from dockyard.models.config import ConfigValidationError
from dockyard.services.vpn import VpnError

# Errors reported as "Error: ..." with exit code 1
CLI_ERRORS = (DockyardError, LockError, ConfigValidationError, VpnError)

# Set by the --verbose root option
_verbose = False


def is_mock() -> bool:
    """Return True when CLI runs in mock mode."""
    return os.environ.get("DOCKYARD_MOCK") == "1"


def set_verbose(value: bool) -> None:
    global _verbose
    _verbose = value


def is_verbose() -> bool:
    return _verbose


def setup_file_logging(log_file: Optional[str] = None, verbose: bool = False) -> None:
    """Set up file logging for CLI commands.

    Args:
        log_file: Path to log file (optional)
        verbose: Enable verbose logging
    """
    from dockyard.core.logger import setup_file_logging as _setup_file_logging
    _setup_file_logging(log_file=log_file, verbose=verbose)


def load_app(name: str) -> AppConfig:
    """Load an app config by name from <DOCKYARD_HOME>/apps."""
    return AppConfigLoader().load(name)


def get_deployer(name: str, mock: Optional[bool] = None):
    """Return a DeployOrchestrator for the named app with mock defaults."""
    from dockyard.core.deployer import DeployOrchestrator

    if mock is None:
        mock = is_mock()
    return DeployOrchestrator(load_app(name), mock=mock)


def confirm_action(message: str, yes_flag: bool = False, mock: bool = False) -> bool:
    """Prompt user for confirmation unless --yes or mock mode.

    Args:
        message: Confirmation message to display
        yes_flag: Skip prompt if True (from --yes flag)
        mock: Skip prompt if True (mock mode)

    Returns:
        True if confirmed, False otherwise
    """
    if yes_flag or mock:
        return True
    return typer.confirm(message)


def handle_cli_error(
    e: Exception,
    console: Console,
    verbose: Optional[bool] = None,
    exit_code: int = 1
) -> None:
    """Handle CLI errors with consistent formatting.

    Args:
        e: Exception to handle
        console: Rich console for output
        verbose: Show exception traceback if True (default: the --verbose option)
        exit_code: Exit code to use
    """
    if verbose is None:
        verbose = _verbose
    console.print(f"[red]Error:[/red] {e}")
    if verbose:
        console.print_exception()
    raise typer.Exit(exit_code)


def print_success(console: Console, message: str, prefix: str = "✓") -> None:
    console.print(f"[green]{prefix}[/green] {message}")


def print_error(console: Console, message: str, prefix: str = "✗") -> None:
    console.print(f"[red]{prefix}[/red] {message}")


def print_warning(console: Console, message: str, prefix: str = "⚠") -> None:
    console.print(f"[yellow]{prefix}[/yellow] {message}")


def print_info(console: Console, message: str, prefix: str = "ℹ") -> None:
    console.print(f"[cyan]{prefix}[/cyan] {message}")
