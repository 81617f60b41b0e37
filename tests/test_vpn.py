"""Tests for NordVPN rotation."""
import subprocess
from unittest.mock import patch

import pytest

from dockyard.services.vpn import VpnRotator


def completed(stdout="", returncode=0):
    return subprocess.CompletedProcess(["nordvpn"], returncode, stdout=stdout, stderr="")


class FakeNordvpn:
    """subprocess.run side effect scripting nordvpn answers per subcommand."""

    def __init__(self, logged_in=True, status="Connected", connect_outputs=("You are connected to Poland #42",)):
        self.logged_in = logged_in
        self.status = status
        self.connect_outputs = list(connect_outputs)
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(cmd[1:])
        subcommand = cmd[1]
        if subcommand == "account":
            return completed("Account Information:" if self.logged_in else "You are not logged in.")
        if subcommand == "status":
            return completed(f"Status: {self.status}\nServer: Poland #42\n")
        if subcommand == "connect":
            output = self.connect_outputs.pop(0) if self.connect_outputs else "Whoops! Connection failed"
            return completed(output)
        return completed("You are disconnected from NordVPN.")


@pytest.fixture
def rotator():
    return VpnRotator(country="Germany", sleep=lambda seconds: None)


@pytest.fixture(autouse=True)
def no_public_ip_lookup():
    with patch.object(VpnRotator, "current_ip", side_effect=["198.51.100.1", "198.51.100.2", "198.51.100.3"]):
        yield


def test_status(rotator):
    with patch('subprocess.run', side_effect=FakeNordvpn(status="Disconnected")):
        assert rotator.status() == "Disconnected"


def test_rotate_reconnects_to_country(rotator):
    nordvpn = FakeNordvpn()
    with patch('subprocess.run', side_effect=nordvpn):
        assert rotator.rotate()

    assert nordvpn.calls == [["disconnect"], ["connect", "Germany"]]


@patch('dockyard.core.retry.time.sleep')
def test_connect_retries(mock_sleep, rotator):
    nordvpn = FakeNordvpn(connect_outputs=["Whoops! Connection failed", "You are connected to Germany #7"])
    with patch('subprocess.run', side_effect=nordvpn):
        assert rotator.connect()

    assert nordvpn.calls.count(["connect", "Germany"]) == 2
    mock_sleep.assert_called_once_with(5.0)


@patch('dockyard.core.retry.time.sleep')
def test_connect_gives_up(mock_sleep, rotator):
    with patch('subprocess.run', side_effect=FakeNordvpn(connect_outputs=[])):
        assert rotator.connect() is False

    assert mock_sleep.call_count == 2


def test_run_requires_login(rotator):
    nordvpn = FakeNordvpn(logged_in=False)
    with patch('subprocess.run', side_effect=nordvpn):
        assert rotator.run(once=True) == 1

    assert nordvpn.calls == [["account"]]


def test_run_once(rotator):
    with patch('subprocess.run', side_effect=FakeNordvpn()):
        assert rotator.run(once=True) == 0


def test_loop_exits_when_stopped(rotator):
    rotator.stop()
    nordvpn = FakeNordvpn()
    with patch('subprocess.run', side_effect=nordvpn), patch('signal.signal'):
        assert rotator.run(interval_minutes=1) == 0

    assert ["connect", "Germany"] not in nordvpn.calls


def test_mock_mode_runs_no_commands():
    with patch('subprocess.run') as mock_run:
        assert VpnRotator(mock=True, sleep=lambda s: None).run(once=True) == 0
    mock_run.assert_not_called()
