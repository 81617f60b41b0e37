"""Tests for CLI support utilities."""
from unittest.mock import Mock, patch

import pytest
import typer
from rich.console import Console

from dockyard.cli_support import (
    confirm_action,
    get_deployer,
    handle_cli_error,
    is_mock,
    load_app,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from dockyard.core.errors import DeployError
from dockyard.models.config import ConfigValidationError

from conftest import write_app_config


class TestIsMock:
    """Test mock mode detection."""

    def test_mock_enabled(self, monkeypatch):
        """Should return True when DOCKYARD_MOCK=1."""
        monkeypatch.setenv("DOCKYARD_MOCK", "1")
        assert is_mock() is True

    def test_mock_disabled(self, monkeypatch):
        """Should return False when DOCKYARD_MOCK is not set."""
        monkeypatch.delenv("DOCKYARD_MOCK", raising=False)
        assert is_mock() is False

    def test_mock_other_value(self, monkeypatch):
        """Should return False when DOCKYARD_MOCK has other value."""
        monkeypatch.setenv("DOCKYARD_MOCK", "0")
        assert is_mock() is False


class TestConfirmAction:
    """Test confirmation prompt helper."""

    def test_yes_flag_skips_prompt(self):
        assert confirm_action("Continue?", yes_flag=True) is True

    def test_mock_skips_prompt(self):
        assert confirm_action("Continue?", mock=True) is True

    @patch("typer.confirm", return_value=False)
    def test_user_declines(self, mock_confirm):
        """Should return False when user declines."""
        assert confirm_action("Continue?") is False
        mock_confirm.assert_called_once_with("Continue?")


class TestLoadApp:

    def test_loads_from_apps_dir(self, dockyard_config):
        write_app_config(dockyard_config.apps_config_dir, "shop-web", {
            "type": "nextjs",
            "domain": "shop.com",
            "repo": {"url": "https://github.com/acme/shop-web.git"},
        })

        app = load_app("shop-web")

        assert app.name == "shop-web"
        assert app.config_dir == dockyard_config.apps_config_dir / "shop-web"

    def test_missing_app(self):
        with pytest.raises(ConfigValidationError, match="App config not found"):
            load_app("nope")

    def test_get_deployer_uses_env_mock(self, dockyard_config, monkeypatch):
        """Should respect DOCKYARD_MOCK when mock flag not provided."""
        monkeypatch.setenv("DOCKYARD_MOCK", "1")
        write_app_config(dockyard_config.apps_config_dir, "shop-web", {
            "type": "nextjs",
            "domain": "shop.com",
            "repo": {"url": "https://github.com/acme/shop-web.git"},
        })

        deployer = get_deployer("shop-web")

        assert deployer.mock is True
        assert deployer.docker.mock is True


class TestHandleCliError:

    def test_prints_and_exits(self):
        console = Mock(spec=Console)

        with pytest.raises(typer.Exit) as exc_info:
            handle_cli_error(DeployError("Health check failed"), console, verbose=False)

        assert exc_info.value.exit_code == 1
        console.print.assert_called_once_with("[red]Error:[/red] Health check failed")

    def test_verbose_prints_traceback(self):
        console = Mock(spec=Console)

        with pytest.raises(typer.Exit):
            handle_cli_error(DeployError("boom"), console, verbose=True, exit_code=2)

        console.print_exception.assert_called_once()


class TestPrintHelpers:
    """Test print helper functions."""

    def test_print_success(self):
        console = Mock(spec=Console)
        print_success(console, "Operation complete")
        console.print.assert_called_once_with("[green]✓[/green] Operation complete")

    def test_print_error(self):
        console = Mock(spec=Console)
        print_error(console, "Failed to connect")
        console.print.assert_called_once_with("[red]✗[/red] Failed to connect")

    def test_print_warning(self):
        console = Mock(spec=Console)
        print_warning(console, "Low disk space")
        console.print.assert_called_once_with("[yellow]⚠[/yellow] Low disk space")

    def test_print_info(self):
        console = Mock(spec=Console)
        print_info(console, "Processing data")
        console.print.assert_called_once_with("[cyan]ℹ[/cyan] Processing data")
