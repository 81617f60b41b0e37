"""Runtime container and image backup models."""
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

ONE_YEAR = 365 * 86400


@dataclass
class ContainerInfo:
    """One row of `dockyard status`."""
    name: str
    status: str
    ports: str = ""
    started: str = "-"
    uptime: str = "-"


@dataclass
class ImageBackup:
    """A saved `docker save` archive under the app's image backup dir."""
    tag: str
    path: Path
    size: int
    created: datetime

    @property
    def size_human(self) -> str:
        size = float(self.size)
        for unit in ("B", "K", "M"):
            if size < 1024:
                return f"{size:.0f}B" if unit == "B" else f"{size:.1f}{unit}"
            size /= 1024
        return f"{size:.1f}G"


def format_uptime(seconds: Optional[float]) -> str:
    """Format a container's uptime for display.

    Negative values or anything over a year point at a bad clock or a
    parse failure and are shown as '?'.
    """
    if seconds is None or seconds < 0 or seconds > ONE_YEAR:
        return "?"

    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"
    return f"{seconds // 86400}d {(seconds % 86400) // 3600}h"
