"""Append-only release log shared by every app on the host."""
import getpass
import re
import socket
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dockyard.core.config import get_config
from dockyard.models.app import AppConfig
from dockyard.models.deployment import DeploymentResult

HEAVY_RULE = "=" * 104
LIGHT_RULE = "-" * 104
SECTION_RULE = "-" * 60
MARKER_PATTERN = re.compile(r"DEPLOYMENT (STARTED|SUCCESS|FAILED)")

HEADER = (
    "# Deployment Release Log\n"
    "# Format: [TIMESTAMP] [STATUS] [APP] [VERSION] [DETAILS]\n"
    f"# {'=' * 76}\n"
    "\n"
)


def _timestamp() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")


def _user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


class ReleaseLog:
    """Writes STARTED / SUCCESS / FAILED blocks for each deployment."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_config().release_log

    def _append(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.write_text(HEADER)
        with open(self.path, "a") as f:
            f.write(text)

    def log_start(self, app: AppConfig, commit: Optional[str] = None) -> None:
        self._append(
            f"{HEAVY_RULE}\n"
            f"[{_timestamp()}] DEPLOYMENT STARTED - {app.display_name}\n"
            f"{HEAVY_RULE}\n"
            f"  App ID:        {app.name}\n"
            f"  Git Commit:    {commit[:7] if commit else 'N/A'}\n"
            f"  Server:        {socket.gethostname()}\n"
            f"  User:          {_user()}\n"
            f"{LIGHT_RULE}\n"
        )

    def log_success(self, app: AppConfig, result: DeploymentResult) -> None:
        self._append(
            f"[{_timestamp()}] ✓ DEPLOYMENT SUCCESS - {app.display_name}\n"
            f"{LIGHT_RULE}\n"
            f"  App ID:        {app.name}\n"
            f"  Domain:        {app.domain or 'N/A'}\n"
            f"  Git Commit:    {result.short_commit}\n"
            f"  Image Tag:     {result.image_tag}\n"
            f"  Scale:         {result.scale} containers\n"
            f"  Migrations:    {result.migrations_label}\n"
            f"  SSL:           {result.ssl_status}\n"
            f"  Duration:      {result.duration_seconds}s\n"
            f"  Server:        {socket.gethostname()}\n"
            f"  User:          {_user()}\n"
            f"{LIGHT_RULE}\n"
        )

    def log_failure(self, app: AppConfig, message: str, commit: Optional[str] = None) -> None:
        timestamp = _timestamp()
        self._append(
            f"[{timestamp}] ✗ DEPLOYMENT FAILED - {app.display_name}\n"
            f"{HEAVY_RULE}\n"
            f"{SECTION_RULE}\n"
            "APPLICATION DETAILS\n"
            f"{SECTION_RULE}\n"
            f" Application:      {app.display_name}\n"
            f" App ID:           {app.name}\n"
            f" Server:           {socket.gethostname()}\n"
            f" User:             {_user()}\n"
            f" Git Commit:       {commit[:7] if commit else 'N/A'}\n"
            f" Timestamp:        {timestamp}\n"
            f"{SECTION_RULE}\n"
            "ERROR DETAILS\n"
            f"{SECTION_RULE}\n"
            f"{message}\n"
            f"{SECTION_RULE}\n"
            "RECOMMENDED ACTIONS\n"
            f"{SECTION_RULE}\n"
            " 1. Check the deployment logs for detailed error information\n"
            " 2. Verify database connectivity, Redis availability and the env file\n"
            " 3. Check for port conflicts and nginx configuration errors\n"
            " 4. Review recent code changes and migration compatibility\n"
            f"{SECTION_RULE}\n"
            "TROUBLESHOOTING COMMANDS\n"
            f"{SECTION_RULE}\n"
            f" View Container Logs:\n   dockyard logs {app.name}\n"
            f" Check Deployment Status:\n   dockyard status {app.name}\n"
            f" View All Containers:\n   docker ps -a | grep {app.name}\n"
            " Check Docker Resources:\n   docker system df\n   docker stats --no-stream\n"
            f"{HEAVY_RULE}\n"
        )

    def recent(self, count: int = 10) -> List[str]:
        """Last count STARTED/SUCCESS/FAILED marker lines."""
        if not self.path.exists():
            return []
        with open(self.path) as f:
            markers = [line.rstrip("\n") for line in f if MARKER_PATTERN.search(line)]
        return markers[-count:] if count > 0 else []
