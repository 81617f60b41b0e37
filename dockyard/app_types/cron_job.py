"""Cron-job hooks: one long-lived container that runs scheduled work.

The image is built from a context assembled out of one or more source
repositories plus the app's config directory. There is no nginx, TLS
or database setup.
"""
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

from dockyard.app_types.base import AppTypeHooks, PortsCallback
from dockyard.core.errors import DeployError, SetupError
from dockyard.core.logger import get_logger
from dockyard.models.deployment import DeploymentResult
from dockyard.services.system import command_exists

logger = get_logger(__name__)

# Seconds before checking that the container stayed up
STARTUP_GRACE = 5
ENV_EXAMPLE = ".env.example"


class CronJobHooks(AppTypeHooks):
    label = "Cron Job"

    @property
    def container_name(self) -> str:
        return self.app.cron.container_name

    def check_prerequisites(self) -> None:
        if not self.mock and not command_exists("docker"):
            raise SetupError("Docker is not installed")
        logger.info("✓ All cron-job prerequisites satisfied")

    def setup_database(self) -> None:
        logger.info("Cron jobs connect to an existing database, no setup needed")

    def create_env_file(self) -> Path:
        env_file = self.app.paths.env_file
        if self.mock or env_file.exists():
            logger.info(f"✓ Environment file exists: {env_file}")
            return env_file

        example = self.app.config_dir / ENV_EXAMPLE if self.app.config_dir else None
        if example is not None and example.exists():
            env_file.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(example, env_file)
            env_file.chmod(0o600)
            raise SetupError(f"Created {env_file} from {example}; edit it, then run setup again")

        raise SetupError(f"Environment file not found: {env_file} (provide {ENV_EXAMPLE} in the config dir)")

    def setup_requirements(self) -> None:
        if not self.mock:
            self.app.cron.build_context.mkdir(parents=True, exist_ok=True)

    # Deploy

    def pull_code(self) -> Optional[str]:
        """Sync every source repo and copy it into the build context."""
        context = self.app.cron.build_context
        commit = None

        for source in self.app.cron.sources:
            if self.git.is_repo(source.path):
                synced = self.git.sync_to_remote(source.path, source.branch)
                if synced is None:
                    raise DeployError(f"Failed to update {source.path}")
                commit = commit or synced[1]
            elif source.url:
                if not self.git.clone_repo(source.url, source.path, source.branch):
                    raise DeployError(f"Failed to clone {source.url}")
                commit = commit or self.git.current_commit(source.path)
            else:
                logger.info(f"Using local copy of {source.name} at {source.path}")

            if self.mock:
                logger.info(f"MOCK: Would copy {source.path} into {context / source.name}")
                continue
            if not source.path.is_dir():
                raise DeployError(f"Source {source.name} not found at {source.path}")
            target = context / source.name
            shutil.rmtree(target, ignore_errors=True)
            shutil.copytree(source.path, target, ignore=shutil.ignore_patterns(".git"))
            logger.info(f"✓ Copied {source.name} into build context")

        if not self.mock and self.app.config_dir is not None:
            target = context / "config"
            shutil.rmtree(target, ignore_errors=True)
            shutil.copytree(self.app.config_dir, target)

        self.commit = commit
        return commit

    def _dockerfile(self) -> Path:
        dockerfile = Path(self.app.cron.dockerfile)
        return dockerfile if dockerfile.is_absolute() else self.app.cron.build_context / dockerfile

    def build_image(self, tag: str) -> None:
        logger.info(f"Building cron-job image with tag {tag}")
        built = self.docker.build_image(
            self.app.cron.build_context,
            [self.app.image_ref(tag), self.app.image_ref()],
            dockerfile=self._dockerfile(),
        )
        if not built:
            raise DeployError(f"Docker build failed for {self.app.image_ref(tag)}")
        self.save_image_backup(tag)

    def running_count(self) -> int:
        return 1 if self.docker.is_running(self.container_name) else 0

    def deploy_fresh(self, scale: int, tag: str) -> List[int]:
        """Replace the single container; scale is ignored."""
        name = self.container_name
        if self.docker.exists(name):
            logger.info("Stopping existing container...")
            self.containers.stop(name)

        log_dir = self.app.paths.log_dir
        if not self.mock:
            log_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"Starting container {name}")
        started = self.docker.run_container(
            name,
            self.app.image_ref(tag),
            env_file=self.app.paths.env_file,
            network=self.app.cron.network,
            volumes={str(log_dir): self.app.cron.log_mount},
        )
        if not started:
            raise DeployError(f"Failed to start {name}")

        self.containers.sleep(STARTUP_GRACE)
        if not self.mock and not self.docker.is_running(name):
            logs = self.docker.tail_logs(name, 50)
            if logs:
                logger.error(f"Last log lines of {name}:\n{logs}")
            raise DeployError(f"Container {name} exited right after start")

        logger.info(f"✓ Container {name} started successfully")
        return []

    def deploy_rolling(self, scale: int, tag: str, before_cutover: Optional[PortsCallback] = None) -> List[int]:
        return self.deploy_fresh(scale, tag)

    def stop_containers(self) -> int:
        if not self.docker.exists(self.container_name):
            logger.info("Container not running")
            return 0
        self.containers.stop(self.container_name)
        return 1

    def run_once(self) -> subprocess.CompletedProcess:
        """Run the job now inside the running container."""
        command = self.app.cron.run_command
        if not command:
            raise DeployError(f"No cron.run_command configured for {self.app.name}")
        if not self.mock and not self.docker.is_running(self.container_name):
            raise DeployError(f"Container {self.container_name} is not running, deploy first")
        logger.info(f"Running '{command}' in {self.container_name}")
        return self.docker.exec(self.container_name, shlex.split(command))

    def summary_lines(self, result: DeploymentResult) -> List[str]:
        lines = super().summary_lines(result)
        lines += [
            "CONTAINER:",
            f"  Name: {self.container_name}",
            f"  Network: {self.app.cron.network}",
            f"  Logs: {self.app.paths.log_dir} -> {self.app.cron.log_mount}",
            "",
            "SCHEDULE:",
            f"  Cron: {self.app.cron.schedule or 'Not configured'}",
            "",
        ]
        return lines
