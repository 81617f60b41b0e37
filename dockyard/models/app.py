"""App configuration models, one YAML file per deployed application."""
import re
from enum import Enum
from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dockyard.core.config import get_config

NAME_PATTERN = re.compile(r'^[a-z0-9][a-z0-9-]*[a-z0-9]$')
GIT_URL_PREFIXES = ('https://', 'http://', 'git@', 'file://')


class AppType(str, Enum):
    """Supported application types."""

    RAILS = "rails"
    NEXTJS = "nextjs"
    CRON_JOB = "cron-job"


def _validate_git_url(url: str) -> str:
    if not url.startswith(GIT_URL_PREFIXES):
        raise ValueError(
            f"Git URL must start with https://, http://, git@ or file://. Got: {url}"
        )
    return url


class RepoSettings(BaseModel):
    """Source repository for the app."""

    model_config = ConfigDict(extra='forbid')

    url: str
    branch: str = "main"

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        return _validate_git_url(v)


class ContainerSettings(BaseModel):
    """Container topology: web instances, workers and scheduler."""

    model_config = ConfigDict(extra='forbid')

    default_scale: int = Field(2, ge=1, le=10, description="Web containers on a fresh deploy")
    base_port: int = Field(3000, ge=1, le=65535, description="First host port for web containers")
    container_port: int = Field(3000, ge=1, le=65535, description="Port the app listens on inside the container")
    network: Literal["bridge", "host"] = "bridge"
    workdir: str = Field("/rails", description="App root inside the image")

    worker_count: int = Field(0, ge=0, le=10)
    worker_command: str = "bundle exec sidekiq"
    worker_shutdown_timeout: int = Field(90, ge=1)

    scheduler_enabled: bool = False
    scheduler_command: str = "bundle exec clockwork lib/clock.rb"


class DeploySettings(BaseModel):
    """Zero-downtime and health check behaviour."""

    model_config = ConfigDict(extra='forbid')

    zero_downtime: bool = True
    health_check_path: Optional[str] = None
    health_check_timeout: int = Field(60, ge=1, description="Seconds to wait for a healthy container")

    @field_validator('health_check_path')
    @classmethod
    def validate_path(cls, v):
        if v is not None and not v.startswith('/'):
            raise ValueError(f"health_check_path must start with '/'. Got: {v}")
        return v


class BackupSettings(BaseModel):
    model_config = ConfigDict(extra='forbid')

    enabled: bool = True
    migration_backup: bool = True
    retention_days: int = Field(30, ge=1)


class ImageSettings(BaseModel):
    """Docker image versions and on-disk image backups."""

    model_config = ConfigDict(extra='forbid')

    name: Optional[str] = None
    save_backups: bool = True
    max_backups: int = Field(20, ge=1)
    auto_cleanup: bool = True
    max_versions: int = Field(20, ge=1)


class DatabaseSettings(BaseModel):
    model_config = ConfigDict(extra='forbid')

    name: Optional[str] = None
    user: Optional[str] = None
    host: str = "localhost"
    port: int = Field(5432, ge=1, le=65535)


class RedisSettings(BaseModel):
    model_config = ConfigDict(extra='forbid')

    db_number: int = Field(0, ge=0, le=15)
    url: Optional[str] = None


class NginxSettings(BaseModel):
    model_config = ConfigDict(extra='forbid')

    upstream_name: Optional[str] = None


class PathSettings(BaseModel):
    """On-disk layout of a deployed app. Unset paths derive from app_dir."""

    model_config = ConfigDict(extra='forbid')

    app_dir: Optional[Path] = None
    repo_dir: Optional[Path] = None
    env_file: Optional[Path] = None
    backup_dir: Optional[Path] = None
    log_dir: Optional[Path] = None
    image_backup_dir: Optional[Path] = None


class NotificationSettings(BaseModel):
    model_config = ConfigDict(extra='forbid')

    email_enabled: bool = True
    email_to: Optional[str] = None
    notify_on_start: bool = False
    mailgun_api_key: Optional[str] = None
    mailgun_domain: Optional[str] = None


class CronSource(BaseModel):
    """A repository copied into the cron-job build context."""

    model_config = ConfigDict(extra='forbid')

    name: str = Field(..., description="Directory name inside the build context")
    url: Optional[str] = None
    branch: str = "main"
    path: Optional[Path] = Field(None, description="Local checkout (default: <app_dir>/sources/<name>)")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not re.match(r'^[A-Za-z0-9._-]+$', v):
            raise ValueError(f"Source name '{v}' must be a plain directory name")
        return v

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        return _validate_git_url(v) if v else v


class CronSettings(BaseModel):
    """Scheduled job container built from one or more repositories."""

    model_config = ConfigDict(extra='forbid')

    container_name: str
    dockerfile: str = "Dockerfile"
    build_context: Optional[Path] = None
    schedule: str = ""
    run_command: Optional[str] = None
    network: Literal["bridge", "host"] = "host"
    log_mount: str = "/app/logs"
    sources: List[CronSource] = Field(default_factory=list)


class AppConfig(BaseModel):
    """Complete configuration for one deployed application."""

    model_config = ConfigDict(extra='forbid')

    type: AppType
    name: str
    display_name: Optional[str] = None
    domain: Optional[str] = None
    domain_internal: Optional[str] = None

    repo: Optional[RepoSettings] = None
    containers: ContainerSettings = Field(default_factory=ContainerSettings)
    deploy: DeploySettings = Field(default_factory=DeploySettings)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    images: ImageSettings = Field(default_factory=ImageSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    nginx: NginxSettings = Field(default_factory=NginxSettings)
    paths: PathSettings = Field(default_factory=PathSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    cron: Optional[CronSettings] = None
    env: Dict[str, str] = Field(default_factory=dict, description="Extra variables for the generated env file")

    # Directory holding app.yml, set by the loader
    config_dir: Optional[Path] = Field(None, exclude=True)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not NAME_PATTERN.match(v):
            raise ValueError(
                f"App name '{v}' must be lowercase letters, numbers and hyphens "
                "(not starting or ending with a hyphen)"
            )
        return v

    @field_validator('domain', 'domain_internal')
    @classmethod
    def validate_domain(cls, v):
        if v is not None and not re.match(r'^[a-z0-9]([a-z0-9.-]*[a-z0-9])?\.[a-z]{2,}$', v):
            raise ValueError(f"Invalid domain name: {v}")
        return v

    @field_validator('env')
    @classmethod
    def validate_env(cls, v):
        for key in v:
            if not re.match(r'^[A-Z_][A-Z0-9_]*$', key):
                raise ValueError(
                    f"Env key '{key}' is not a valid env var name. "
                    "Must be uppercase letters, numbers, and underscores only."
                )
        return v

    @model_validator(mode='after')
    def apply_type_requirements(self) -> 'AppConfig':
        """Check per-type required sections and fill derived defaults."""
        if self.type in (AppType.RAILS, AppType.NEXTJS):
            if not self.domain:
                raise ValueError(f"{self.type.value} apps require 'domain'")
            if self.repo is None:
                raise ValueError(f"{self.type.value} apps require 'repo.url'")
        if self.type == AppType.CRON_JOB and self.cron is None:
            raise ValueError("cron-job apps require a 'cron' section with container_name")

        slug = self.name.replace('-', '_')
        self.display_name = self.display_name or self.name
        self.images.name = self.images.name or self.name
        self.nginx.upstream_name = self.nginx.upstream_name or f"{slug}_backend"
        self.database.name = self.database.name or f"{slug}_production"
        self.database.user = self.database.user or f"{slug}_user"
        self.redis.url = self.redis.url or f"redis://localhost:6379/{self.redis.db_number}"
        if self.deploy.health_check_path is None:
            self.deploy.health_check_path = "/up" if self.type == AppType.RAILS else "/"

        paths = self.paths
        paths.app_dir = paths.app_dir or get_config().apps_root / self.name
        paths.repo_dir = paths.repo_dir or paths.app_dir / "repo"
        paths.env_file = paths.env_file or paths.app_dir / ".env.production"
        paths.backup_dir = paths.backup_dir or paths.app_dir / "backups"
        paths.log_dir = paths.log_dir or paths.app_dir / "logs"
        paths.image_backup_dir = paths.image_backup_dir or paths.app_dir / "docker-images"

        if self.cron is not None:
            self.cron.build_context = self.cron.build_context or paths.app_dir / "build"
            for source in self.cron.sources:
                source.path = source.path or paths.app_dir / "sources" / source.name
        return self

    @property
    def slug(self) -> str:
        """Name usable in SQL identifiers and env keys."""
        return self.name.replace('-', '_')

    @property
    def image_name(self) -> str:
        return self.images.name

    @property
    def has_web(self) -> bool:
        return self.type in (AppType.RAILS, AppType.NEXTJS)

    @property
    def has_database(self) -> bool:
        return self.type == AppType.RAILS

    @property
    def has_workers(self) -> bool:
        return self.type == AppType.RAILS and self.containers.worker_count > 0

    @property
    def has_scheduler(self) -> bool:
        return self.type == AppType.RAILS and self.containers.scheduler_enabled

    def image_ref(self, tag: str = "latest") -> str:
        return f"{self.image_name}:{tag}"

    def web_container_name(self, index: int) -> str:
        return f"{self.name}_web_{index}"

    def candidate_container_name(self, index: int) -> str:
        return f"{self.name}_web_new_{index}"

    def worker_container_name(self, index: int) -> str:
        return f"{self.name}_worker_{index}"

    def scheduler_container_name(self) -> str:
        return f"{self.name}_scheduler"

    def migration_check_container_name(self) -> str:
        return f"{self.name}_migration_check"

    def cert_domains(self) -> List[str]:
        """Domains the TLS certificate must cover.

        www.<domain> is included unless the domain is an api host or
        already a www host.
        """
        if not self.domain:
            return []
        domains = [self.domain]
        if not self.domain.startswith(("api", "www.")):
            domains.append(f"www.{self.domain}")
        if self.domain_internal:
            domains.append(self.domain_internal)
        return domains

    def database_url(self, password: str) -> str:
        return (
            f"postgresql://{self.database.user}:{password}"
            f"@{self.database.host}/{self.database.name}"
        )
