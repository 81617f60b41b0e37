"""First-time (and repeatable) provisioning of an app on the host."""
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dockyard.app_types import AppTypeHooks, get_app_type, resolve_app_type
from dockyard.core.config import get_config
from dockyard.core.errors import SetupError
from dockyard.core.logger import get_logger
from dockyard.core.template_loader import TemplateLoader
from dockyard.models.app import AppConfig
from dockyard.models.config import ConfigValidationError
from dockyard.services.cron import CrontabManager
from dockyard.services.nginx import NginxManager
from dockyard.services.ssl import SslManager

logger = get_logger(__name__)

INFO_FILENAME = "deployment-info.txt"
TOTAL_STEPS = 11


def cleanup_cron_marker(app: AppConfig) -> str:
    return f"dockyard cleanup {app.name} "


def cleanup_cron_line(app: AppConfig) -> str:
    # cron starts commands with a bare environment
    config = get_config()
    executable = shutil.which("dockyard") or "dockyard"
    env = f"DOCKYARD_HOME={config.devops_dir} DOCKYARD_APPS_ROOT={config.apps_root}"
    return f"0 2 * * * {env} {executable} cleanup {app.name} >> {app.paths.log_dir}/cleanup.log 2>&1"


class SetupOrchestrator:
    """Runs the setup steps for one app. Every step is safe to repeat."""

    def __init__(
        self,
        app: AppConfig,
        hooks: Optional[AppTypeHooks] = None,
        nginx: Optional[NginxManager] = None,
        ssl: Optional[SslManager] = None,
        crontab: Optional[CrontabManager] = None,
        templates: Optional[TemplateLoader] = None,
        mock: bool = False,
    ):
        self.app = app
        self.mock = mock
        self.hooks = hooks or get_app_type(app, mock=mock)
        self.git = self.hooks.git
        self.nginx = nginx or NginxManager(mock=mock)
        self.ssl = ssl or SslManager(nginx=self.nginx, mock=mock)
        self.crontab = crontab or CrontabManager(mock=mock)
        self.templates = templates or TemplateLoader()
        self.nginx_status = "not configured"

    def _step(self, number: int, title: str) -> None:
        logger.info(f"Step {number}/{TOTAL_STEPS}: {title}")

    def validate(self) -> None:
        """Raises ConfigValidationError for an unusable app config."""
        resolve_app_type(self.app.type)
        if self.app.has_web and not self.app.domain:
            raise ConfigValidationError(f"{self.app.type.value} apps require a domain")

    def run(self, skip_ssl: bool = False) -> Path:
        """Provision the app and return the path of its deployment info file.

        Raises:
            SetupError: When a mandatory step fails
            ConfigValidationError: When the app config is unusable
        """
        self.validate()
        logger.info(f"Setting up {self.app.display_name} ({self.app.type.value})")

        self._step(1, "Creating directories")
        self.create_directories()

        self._step(2, "Preparing repository")
        self.prepare_repository()

        self._step(3, "Checking prerequisites")
        self.hooks.check_prerequisites()

        self._step(4, "Setting up database")
        self.hooks.setup_database()

        self._step(5, "Creating environment file")
        self.hooks.create_env_file()

        self._step(6, "Setting up type-specific requirements")
        self.hooks.setup_requirements()

        self._step(7, "Configuring nginx")
        self.configure_nginx()

        self._step(8, "Configuring default catch-all server")
        if self.app.has_web and not self.nginx.install_default_server():
            logger.warning("Default catch-all server could not be configured")

        self._step(9, "Installing cleanup cron job")
        self.install_cleanup_cron()

        self._step(10, "Setting up SSL")
        self.setup_ssl(skip_ssl)

        self._step(11, "Writing deployment info")
        info = self.write_info()

        logger.info(f"✓ Setup complete for {self.app.name}")
        return info

    def create_directories(self) -> List[Path]:
        paths = self.app.paths
        directories = [paths.app_dir, paths.log_dir, paths.image_backup_dir]
        if self.app.has_database:
            directories.append(paths.backup_dir)

        if self.mock:
            logger.info(f"MOCK: Would create {', '.join(str(d) for d in directories)}")
            return directories

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

        if self.app.config_dir is not None:
            link = paths.app_dir / "config"
            if not link.exists() and not link.is_symlink():
                os.symlink(self.app.config_dir, link)
                logger.info(f"Linked {link} -> {self.app.config_dir}")
        return directories

    def prepare_repository(self) -> None:
        if self.app.repo is None:
            logger.info(f"{self.app.type.value} apps have no primary repository, skipping")
            return

        repo_dir = self.app.paths.repo_dir
        branch = self.app.repo.branch
        if self.git.is_repo(repo_dir):
            logger.info(f"Repository already exists at {repo_dir}")
            if not self.git.checkout(repo_dir, branch):
                raise SetupError(f"Failed to check out {branch} in {repo_dir}")
            return

        if not self.mock and repo_dir.exists() and any(repo_dir.iterdir()):
            raise SetupError(f"{repo_dir} exists but is not a git repository")
        if not self.git.clone_repo(self.app.repo.url, repo_dir, branch):
            raise SetupError(f"Failed to clone {self.app.repo.url}")

    def configure_nginx(self) -> None:
        if not self.app.has_web:
            logger.info("No web containers, skipping nginx")
            return
        scale = self.app.containers.default_scale
        ports = [self.app.containers.base_port + i for i in range(scale)]
        self.nginx_status = self.nginx.install_site(self.app, ports)

    def install_cleanup_cron(self) -> None:
        if not self.crontab.install(cleanup_cron_marker(self.app), cleanup_cron_line(self.app)):
            logger.warning("Could not install the cleanup cron job, run 'dockyard cleanup' manually")

    def setup_ssl(self, skip: bool = False) -> None:
        if not self.app.has_web:
            logger.info("No domain, skipping SSL")
            return
        if skip:
            logger.info(f"Skipping SSL, run 'dockyard ssl-setup {self.app.name}' later")
            return
        if self.ssl.setup(self.app):
            self.nginx_status = "enabled"
        else:
            logger.warning(f"SSL not set up yet, run 'dockyard ssl-setup {self.app.name}' once DNS is ready")

    def render_info(self) -> str:
        return self.templates.render(
            "info/deployment-info.txt.j2",
            app=self.app,
            generated=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            nginx_status=self.nginx_status,
        )

    def write_info(self) -> Path:
        target = self.app.paths.app_dir / INFO_FILENAME
        content = self.render_info()
        if self.mock:
            logger.info(f"MOCK: Would write {target}")
            return target
        target.write_text(content)
        logger.info(f"✓ Deployment info written to {target}")
        return target
