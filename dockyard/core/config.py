"""Dockyard runtime configuration and settings."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def _env_path(name: str, default: str) -> Path:
    return Path(os.path.expanduser(os.getenv(name, default)))


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _read_system_environment(key: str, path: Path) -> str:
    """Read KEY=value from /etc/environment style files."""
    try:
        with open(path) as f:
            for line in f:
                line = line.strip()
                if line.startswith(f"{key}="):
                    return line.split("=", 1)[1].strip().strip('"').strip("'")
    except OSError:
        return ""
    return ""


@dataclass
class DockyardConfig:
    """Runtime configuration for dockyard operations.

    Attributes:
        devops_dir: Root holding apps/<name>/app.yml, release.log and logs/
        apps_root: Root of the deployed application directories
        nginx_available: nginx sites-available directory
        nginx_enabled: nginx sites-enabled directory
        health_interval: Seconds between health check polls (default: 2)
        stop_timeout: Seconds given to web containers on docker stop (default: 30)
        max_scale: Upper bound for web container scaling (default: 10)
        sendgrid_api_key: SendGrid API key for deployment notifications
        email_from: Sender address for deployment notifications
        email_to: Recipient address for deployment notifications
        email_enabled: Global switch for deployment notifications
    """

    devops_dir: Path = field(default_factory=lambda: Path.home() / "DevOps")
    apps_root: Path = field(default_factory=lambda: Path.home() / "apps")
    nginx_available: Path = Path("/etc/nginx/sites-available")
    nginx_enabled: Path = Path("/etc/nginx/sites-enabled")

    health_interval: float = 2.0
    stop_timeout: int = 30
    max_scale: int = 10

    sendgrid_api_key: str = ""
    email_from: str = ""
    email_to: str = ""
    email_enabled: bool = True

    @property
    def apps_config_dir(self) -> Path:
        return self.devops_dir / "apps"

    @property
    def release_log(self) -> Path:
        return self.devops_dir / "release.log"

    @classmethod
    def from_env(cls, system_environment: Path = Path("/etc/environment")) -> "DockyardConfig":
        """Create config from environment variables.

        Environment variables:
            DOCKYARD_HOME: DevOps directory (default: ~/DevOps)
            DOCKYARD_APPS_ROOT: Deployed apps directory (default: ~/apps)
            DOCKYARD_NGINX_AVAILABLE / DOCKYARD_NGINX_ENABLED: nginx site directories
            DOCKYARD_HEALTH_INTERVAL: Seconds between health polls
            DOCKYARD_STOP_TIMEOUT: Web container stop timeout in seconds
            DOCKYARD_MAX_SCALE: Maximum web container count
            SENDGRID_API_KEY: Falls back to /etc/environment when unset
            DEPLOYMENT_EMAIL_FROM / DEPLOYMENT_EMAIL_TO / DEPLOYMENT_EMAIL_ENABLED

        Returns:
            DockyardConfig instance with values from environment or defaults
        """
        api_key = os.getenv("SENDGRID_API_KEY") or _read_system_environment(
            "SENDGRID_API_KEY", system_environment
        )
        return cls(
            devops_dir=_env_path("DOCKYARD_HOME", "~/DevOps"),
            apps_root=_env_path("DOCKYARD_APPS_ROOT", "~/apps"),
            nginx_available=_env_path("DOCKYARD_NGINX_AVAILABLE", str(cls.nginx_available)),
            nginx_enabled=_env_path("DOCKYARD_NGINX_ENABLED", str(cls.nginx_enabled)),
            health_interval=float(os.getenv("DOCKYARD_HEALTH_INTERVAL", cls.health_interval)),
            stop_timeout=int(os.getenv("DOCKYARD_STOP_TIMEOUT", cls.stop_timeout)),
            max_scale=int(os.getenv("DOCKYARD_MAX_SCALE", cls.max_scale)),
            sendgrid_api_key=api_key,
            email_from=os.getenv("DEPLOYMENT_EMAIL_FROM", ""),
            email_to=os.getenv("DEPLOYMENT_EMAIL_TO", ""),
            email_enabled=_env_bool("DEPLOYMENT_EMAIL_ENABLED", True),
        )


# Global config instance (can be overridden)
_config: Optional[DockyardConfig] = None


def get_config() -> DockyardConfig:
    """Get the global dockyard configuration.

    Returns:
        DockyardConfig instance (creates from environment if not set)
    """
    global _config
    if _config is None:
        _config = DockyardConfig.from_env()
    return _config


def set_config(config: Optional[DockyardConfig]):
    """Set the global dockyard configuration.

    Args:
        config: DockyardConfig instance to use globally (None re-reads the environment)
    """
    global _config
    _config = config
