"""Outcome of a deploy, restart, scale or rollback run."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class DeploymentResult:
    app_name: str
    image_tag: str
    scale: int = 0
    ports: List[int] = field(default_factory=list)
    commit: Optional[str] = None
    previous_commit: Optional[str] = None
    fresh: bool = False
    migrations_run: Optional[bool] = None
    ssl_status: str = "skipped"
    ssl_message: str = ""
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> int:
        end = self.finished_at or datetime.now()
        return int((end - self.started_at).total_seconds())

    @property
    def short_commit(self) -> str:
        return self.commit[:7] if self.commit else "N/A"

    @property
    def migrations_label(self) -> str:
        if self.migrations_run is None:
            return "N/A"
        return "yes" if self.migrations_run else "no"
