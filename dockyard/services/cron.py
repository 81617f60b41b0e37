"""User crontab management for scheduled maintenance."""
import subprocess
from typing import List

from dockyard.core.logger import get_logger

logger = get_logger(__name__)


class CrontabManager:
    """Edits the invoking user's crontab through `crontab -l` / `crontab -`."""

    def __init__(self, mock: bool = False):
        self.mock = mock

    def read(self) -> List[str]:
        if self.mock:
            return []

        result = subprocess.run(["crontab", "-l"], capture_output=True, text=True, check=False)
        if result.returncode != 0:
            # "no crontab for <user>"
            return []
        return result.stdout.splitlines()

    def _write(self, lines: List[str]) -> bool:
        content = "\n".join(lines) + "\n" if lines else ""
        try:
            subprocess.run(["crontab", "-"], input=content, capture_output=True, text=True, check=True)
            return True
        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to write crontab: {e}")
            if e.stderr:
                logger.error(f"Error output: {e.stderr}")
            return False

    def install(self, marker: str, line: str) -> bool:
        """Replace any entry containing marker with line."""
        if self.mock:
            logger.info(f"MOCK: Would install cron entry: {line}")
            return True

        lines = [existing for existing in self.read() if marker not in existing]
        lines.append(line)
        if not self._write(lines):
            return False
        logger.info(f"✓ Installed cron entry: {line}")
        return True

    def remove(self, marker: str) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would remove cron entries matching {marker}")
            return True

        current = self.read()
        lines = [existing for existing in current if marker not in existing]
        if len(lines) == len(current):
            return True
        return self._write(lines)
