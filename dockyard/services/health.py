"""HTTP health checks against freshly started containers."""
import time
from typing import Callable, Optional

import requests

from dockyard.core.logger import get_logger

logger = get_logger(__name__)


class HealthChecker:
    """Polls an app's health endpoint over HTTP."""

    def __init__(self, mock: bool = False, request_timeout: float = 5.0, sleep: Callable[[float], None] = time.sleep):
        self.mock = mock
        self.request_timeout = request_timeout
        self.sleep = sleep

    def check(self, url: str) -> bool:
        """One request. Any response below 400 counts as healthy."""
        if self.mock:
            logger.info(f"MOCK: Would check health at {url}")
            return True

        try:
            response = requests.get(url, timeout=self.request_timeout, allow_redirects=False)
        except requests.RequestException as e:
            logger.debug(f"Health check {url} failed: {e}")
            return False
        return response.status_code < 400

    def wait_for(
        self,
        url: str,
        timeout: float,
        interval: float = 2.0,
        still_running: Optional[Callable[[], bool]] = None,
    ) -> bool:
        """Poll url every interval seconds until healthy or timeout elapses.

        Stops early when still_running reports the container has exited.
        """
        attempts = max(1, int(timeout // interval) if interval > 0 else 1)

        for attempt in range(1, attempts + 1):
            if still_running is not None and not still_running():
                logger.error(f"✗ Container stopped while waiting for {url}")
                return False

            if self.check(url):
                logger.info(f"✓ Healthy: {url} (attempt {attempt}/{attempts})")
                return True

            if attempt < attempts:
                self.sleep(interval)

        logger.error(f"✗ Health check failed after {attempts} attempts: {url}")
        return False
