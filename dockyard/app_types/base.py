"""Base class for app-type hooks.

The setup and deploy orchestrators are generic; everything that differs
between a Rails API, a Next.js frontend and a cron job lives in a hooks
class registered for that type.
"""
from abc import ABC, abstractmethod
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from dockyard.core.errors import DeployError
from dockyard.core.logger import get_logger
from dockyard.core.retention import cleanup_old_image_backups, image_backup_path
from dockyard.core.template_loader import TemplateLoader
from dockyard.config.env_file import backup_env_file, staged_file
from dockyard.models.app import AppConfig
from dockyard.models.deployment import DeploymentResult
from dockyard.services.containers import ContainerManager
from dockyard.services.database import PostgresManager
from dockyard.services.docker import DockerClient
from dockyard.services.git_manager import GitManager

logger = get_logger(__name__)

PortsCallback = Callable[[List[int]], bool]


@dataclass
class HookContext:
    """Services shared by the hooks of one app."""
    docker: DockerClient
    containers: ContainerManager
    git: GitManager = field(default_factory=GitManager)
    db: PostgresManager = field(default_factory=PostgresManager)
    templates: TemplateLoader = field(default_factory=TemplateLoader)

    @property
    def mock(self) -> bool:
        return self.docker.mock

    @classmethod
    def for_app(cls, app: AppConfig, mock: bool = False) -> "HookContext":
        docker = DockerClient(mock=mock)
        return cls(
            docker=docker,
            containers=ContainerManager(app, docker),
            git=GitManager(mock=mock),
            db=PostgresManager(mock=mock),
        )


class AppTypeHooks(ABC):
    """Setup and deploy hooks for one application type."""

    label = "Application"
    # Packaged directory holding Dockerfile and dockerignore, if any
    docker_template_dir: Optional[str] = None

    def __init__(self, app: AppConfig, context: HookContext):
        self.app = app
        self.context = context
        self.docker = context.docker
        self.containers = context.containers
        self.git = context.git
        self.db = context.db
        self.templates = context.templates
        # Set by deploy hooks that run migrations
        self.migrations_run: Optional[bool] = None
        self.commit: Optional[str] = None

    @property
    def mock(self) -> bool:
        return self.context.mock

    # Setup hooks

    def check_prerequisites(self) -> None:
        """Raise SetupError when the host lacks something the app needs."""
        logger.info(f"✓ All {self.label} prerequisites satisfied")

    def setup_database(self) -> None:
        logger.info(f"{self.label} apps don't require database setup")

    @abstractmethod
    def create_env_file(self) -> Path:
        """Write (or verify) the production env file and return its path."""
        pass

    def setup_requirements(self) -> None:
        self.copy_docker_files()

    # Deploy hooks

    def pull_code(self) -> Optional[str]:
        """Bring the repository to origin/<branch>, returning the new commit."""
        repo_dir = self.app.paths.repo_dir
        if not self.mock and not self.git.is_repo(repo_dir):
            raise DeployError(f"No repository at {repo_dir}, run 'dockyard setup {self.app.name}' first")

        synced = self.git.sync_to_remote(repo_dir, self.app.repo.branch)
        if synced is None:
            raise DeployError(f"Failed to update {repo_dir} from origin/{self.app.repo.branch}")
        _, self.commit = synced
        return self.commit

    @abstractmethod
    def build_image(self, tag: str) -> None:
        pass

    def running_count(self) -> int:
        """Running instances that decide between fresh and rolling deploys."""
        return len(self.containers.running_web_containers())

    def deploy_fresh(self, scale: int, tag: str) -> List[int]:
        return self.containers.deploy_fresh(self.app.image_ref(tag), scale)

    def deploy_rolling(self, scale: int, tag: str, before_cutover: Optional[PortsCallback] = None) -> List[int]:
        image = self.app.image_ref(tag)
        if not self.app.deploy.zero_downtime:
            logger.warning("Zero-downtime deploys are disabled, replacing containers in place")
            self.stop_containers()
            ports = self.containers.deploy_fresh(image, scale)
            if before_cutover is not None and not before_cutover(ports):
                raise DeployError("Routing update failed after redeploy")
            return ports
        return self.containers.rolling_restart(image, scale, before_cutover=before_cutover)

    def restart_extras(self, image: str) -> None:
        """Restart containers other than the web fleet after a restart."""
        pass

    def stop_containers(self) -> int:
        logger.info(f"Stopping all {self.app.name} containers")
        count = self.containers.stop_all()
        if count:
            logger.info(f"✓ Stopped {count} container(s)")
        else:
            logger.info("No containers found")
        return count

    def summary_lines(self, result: DeploymentResult) -> List[str]:
        """Deployment summary shown after a successful deploy."""
        lines = [
            "APPLICATION:",
            f"  Name: {self.app.display_name}",
            f"  Type: {self.label}",
            f"  App ID: {self.app.name}",
            f"  Git Commit: {result.short_commit}",
            f"  Image Tag: {result.image_tag}",
            "",
        ]
        if self.app.domain:
            lines += ["AVAILABILITY:", f"  Primary URL: https://{self.app.domain}"]
            for alias in self.app.cert_domains()[1:]:
                lines.append(f"  Alternative: https://{alias}")
            lines += [f"  Health Check: https://{self.app.domain}{self.app.deploy.health_check_path}", ""]
        if self.app.has_web:
            lines += [
                "WEB CONTAINERS:",
                f"  Count: {result.scale} instances",
                f"  Ports: {', '.join(map(str, result.ports)) or '-'}",
                "",
            ]
        return lines

    # Shared building blocks

    def copy_docker_files(self) -> None:
        """Install the packaged Dockerfile and .dockerignore into the repo."""
        if self.docker_template_dir is None:
            return
        if self.mock:
            logger.info(f"MOCK: Would copy {self.docker_template_dir} Docker files into {self.app.paths.repo_dir}")
            return
        repo_dir = self.app.paths.repo_dir
        self.templates.copy(f"{self.docker_template_dir}/Dockerfile", repo_dir / "Dockerfile")
        self.templates.copy(f"{self.docker_template_dir}/dockerignore", repo_dir / ".dockerignore")
        logger.info(f"✓ Copied Dockerfile and .dockerignore into {repo_dir}")

    def render_env_template(self, name: str, **context) -> Path:
        """Back up any existing env file, then render a fresh one."""
        env_file = self.app.paths.env_file
        if self.mock:
            logger.info(f"MOCK: Would write {env_file}")
            return env_file

        if env_file.exists():
            logger.warning("Environment file already exists. Backing up...")
            backup_env_file(env_file)

        content = self.templates.render(
            name,
            app=self.app,
            generated=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            **context,
        )
        env_file.parent.mkdir(parents=True, exist_ok=True)
        env_file.write_text(content)
        env_file.chmod(0o600)
        logger.info(f"✓ Environment file created: {env_file}")
        return env_file

    def build_from_repo(self, tag: str, staged: Optional[Dict[str, str]] = None) -> None:
        """docker build the repo with files staged for the build only.

        The image is tagged <tag> and latest, then optionally archived
        to the image backup dir.
        """
        repo_dir = self.app.paths.repo_dir
        self.copy_docker_files()

        with ExitStack() as stack:
            if not self.mock:
                for relative, content in (staged or {}).items():
                    stack.enter_context(staged_file(repo_dir / relative, content))
            if not self.docker.build_image(repo_dir, [self.app.image_ref(tag)]):
                raise DeployError(f"Docker build failed for {self.app.image_ref(tag)}")

        self.tag_latest(tag)
        self.save_image_backup(tag)

    def tag_latest(self, tag: str) -> None:
        if not self.docker.tag_image(self.app.image_ref(tag), self.app.image_ref()):
            raise DeployError(f"Failed to tag {self.app.image_ref(tag)} as latest")

    def save_image_backup(self, tag: str) -> None:
        if not self.app.images.save_backups:
            return
        target = image_backup_path(self.app, tag)
        if not self.docker.save_image(self.app.image_ref(tag), target):
            logger.warning(f"Image backup failed, rollback to {tag} will need a rebuild")
            return
        if not self.mock:
            cleanup_old_image_backups(self.app.paths.image_backup_dir, self.app.images.max_backups)

    def install_helper(self, template: str, name: str) -> None:
        """Render a packaged helper script into the app dir as an executable."""
        target = self.app.paths.app_dir / name
        if self.mock:
            logger.info(f"MOCK: Would write helper {target}")
            return
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.templates.render(template, app=self.app))
        target.chmod(0o755)
        logger.info(f"✓ Helper created: {target}")

    def require_env_file(self, error=DeployError) -> Path:
        env_file = self.app.paths.env_file
        if not self.mock and not env_file.exists():
            raise error(f"Environment file not found: {env_file}")
        return env_file
