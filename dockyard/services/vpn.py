"""NordVPN rotation for scraper hosts.

Reconnects to a country on a fixed interval so scrapers get a fresh exit
IP. The loop stops cleanly on SIGTERM or SIGINT.
"""
import signal
import subprocess
import threading
import time
from typing import Callable, Optional

import requests

from dockyard.core.logger import get_logger
from dockyard.core.retry import retry

logger = get_logger(__name__)

IP_SERVICE = "https://api.ipify.org"
DEFAULT_COUNTRY = "Poland"
DEFAULT_INTERVAL_MINUTES = 15
CONNECT_ATTEMPTS = 3
CONNECT_RETRY_DELAY = 5.0
SETTLE_DELAY = 3


class VpnError(Exception):
    """Raised when the VPN cannot be (re)connected."""
    pass


class VpnRotator:
    """Drives the nordvpn CLI."""

    def __init__(
        self,
        country: str = DEFAULT_COUNTRY,
        mock: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.country = country
        self.mock = mock
        self.sleep = sleep
        self._stop = threading.Event()

    def _nordvpn(self, *args: str) -> subprocess.CompletedProcess:
        if self.mock:
            logger.info(f"MOCK: Would run nordvpn {' '.join(args)}")
            return subprocess.CompletedProcess(["nordvpn", *args], 0, stdout="Connected", stderr="")
        return subprocess.run(["nordvpn", *args], capture_output=True, text=True, check=False)

    def is_logged_in(self) -> bool:
        result = self._nordvpn("account")
        return "You are not logged in" not in (result.stdout or "")

    def status(self) -> str:
        """Connection status word from `nordvpn status`, e.g. Connected."""
        result = self._nordvpn("status")
        for line in (result.stdout or "").splitlines():
            if line.strip().lower().startswith("status:"):
                return line.split(":", 1)[1].strip()
        return "Unknown"

    def current_ip(self) -> str:
        if self.mock:
            return "unknown"
        try:
            response = requests.get(IP_SERVICE, timeout=10)
            response.raise_for_status()
            return response.text.strip()
        except requests.RequestException:
            return "unknown"

    def disconnect(self) -> bool:
        logger.info("Disconnecting from VPN...")
        if self._nordvpn("disconnect").returncode != 0:
            logger.error("✗ Failed to disconnect from VPN")
            return False
        logger.info("✓ Disconnected from VPN")
        return True

    @retry(exceptions=(VpnError,), max_attempts=CONNECT_ATTEMPTS, delay=CONNECT_RETRY_DELAY, backoff=1.0,
           action="VPN connect")
    def _connect_once(self, country: str) -> None:
        result = self._nordvpn("connect", country)
        output = (result.stdout or "") + (result.stderr or "")
        if "Connected" not in output:
            raise VpnError(output.strip() or f"nordvpn connect {country} failed")

    def connect(self, country: Optional[str] = None) -> bool:
        country = country or self.country
        logger.info(f"Connecting to NordVPN in {country}...")
        try:
            self._connect_once(country)
        except VpnError:
            logger.error(f"✗ Failed to connect to VPN after {CONNECT_ATTEMPTS} attempts")
            return False
        logger.info(f"✓ Connected to VPN in {country}. New IP: {self.current_ip()}")
        return True

    def rotate(self) -> bool:
        """Disconnect and reconnect, reporting whether the exit IP changed."""
        logger.info("Starting VPN rotation...")
        old_ip = self.current_ip()
        logger.info(f"Current IP: {old_ip}")

        if not self.disconnect():
            logger.warning("Disconnect failed, attempting to continue anyway...")
        self.sleep(SETTLE_DELAY)

        if not self.connect():
            logger.error("✗ VPN rotation failed")
            return False

        new_ip = self.current_ip()
        if new_ip != old_ip:
            logger.info(f"✓ IP rotated: {old_ip} → {new_ip}")
        else:
            logger.warning(f"IP remained the same after rotation: {new_ip}")
        return True

    def stop(self, *_args) -> None:
        """Signal handler: finish the current step, then leave the loop."""
        logger.info("VPN rotation stopping...")
        self._stop.set()

    def run(self, interval_minutes: int = DEFAULT_INTERVAL_MINUTES, once: bool = False) -> int:
        """Rotate forever (or once), returning a process exit code."""
        if not self.is_logged_in():
            logger.error("✗ NordVPN not logged in, run 'nordvpn login' first")
            return 1

        if once:
            return 0 if self.rotate() else 1

        signal.signal(signal.SIGTERM, self.stop)
        signal.signal(signal.SIGINT, self.stop)

        logger.info(f"VPN rotation started: country {self.country}, every {interval_minutes} minutes")
        if self.status() != "Connected":
            logger.info("VPN not connected, establishing initial connection...")
            if not self.connect():
                return 1
        else:
            logger.info(f"✓ VPN already connected, current IP: {self.current_ip()}")

        while not self._stop.is_set():
            logger.info(f"Sleeping for {interval_minutes} minutes until next rotation...")
            if self._stop.wait(interval_minutes * 60):
                break

            if self.status() != "Connected":
                logger.warning("VPN disconnected unexpectedly, reconnecting...")
                if not self.connect():
                    continue
            self.rotate()

        return 0
