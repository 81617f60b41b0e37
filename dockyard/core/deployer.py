"""Deploy, restart, scale and rollback workflows for one app.

Every mutating operation holds the app's deploy lock, so two runs cannot
interleave container changes.
"""
import subprocess
from datetime import datetime
from typing import List, Optional

from dockyard.app_types import AppTypeHooks, get_app_type
from dockyard.app_types.cron_job import CronJobHooks
from dockyard.app_types.rails import RailsHooks
from dockyard.core.config import DockyardConfig, get_config
from dockyard.core.errors import DeployError, DockyardError
from dockyard.core.lock import deploy_lock
from dockyard.core.logger import get_logger
from dockyard.core.release_log import ReleaseLog
from dockyard.core.retention import cleanup_old_images, list_image_backups
from dockyard.models.app import AppConfig
from dockyard.models.container import ContainerInfo, ImageBackup
from dockyard.models.deployment import DeploymentResult
from dockyard.services.nginx import NginxManager
from dockyard.services.notifier import DeploymentNotifier
from dockyard.services.ssl import SslManager, SslStatus

logger = get_logger(__name__)

IMAGE_TAG_FORMAT = "%Y%m%d_%H%M%S"
DEPLOYMENTS_LOG = "deployments.log"


def new_image_tag() -> str:
    return datetime.now().strftime(IMAGE_TAG_FORMAT)


class DeployOrchestrator:
    """Runs the per-app deployment commands."""

    def __init__(
        self,
        app: AppConfig,
        hooks: Optional[AppTypeHooks] = None,
        nginx: Optional[NginxManager] = None,
        ssl: Optional[SslManager] = None,
        notifier: Optional[DeploymentNotifier] = None,
        release_log: Optional[ReleaseLog] = None,
        config: Optional[DockyardConfig] = None,
        mock: bool = False,
    ):
        self.app = app
        self.mock = mock
        self.config = config or get_config()
        self.hooks = hooks or get_app_type(app, mock=mock)
        self.docker = self.hooks.docker
        self.containers = self.hooks.containers
        self.nginx = nginx or NginxManager(mock=mock, config=self.config)
        self.ssl = ssl or SslManager(nginx=self.nginx, mock=mock)
        self.notifier = notifier or DeploymentNotifier(app, config=self.config, mock=mock)
        self.release_log = release_log or ReleaseLog(self.config.release_log)

    def _check_scale(self, count: int) -> None:
        if not 1 <= count <= self.config.max_scale:
            raise DeployError(f"Scale must be between 1 and {self.config.max_scale}, got {count}")

    def _lock(self, operation: str):
        return deploy_lock(self.app.paths.app_dir, operation)

    def _route(self, ports: List[int]) -> bool:
        """Point the nginx upstream at the given web ports."""
        return self.nginx.update_upstream(self.app, ports)

    def _require_latest_image(self) -> str:
        image = self.app.image_ref()
        if not self.docker.image_exists(image):
            raise DeployError(f"Image {image} not found, run 'dockyard deploy {self.app.name}' first")
        return image

    def _check_ssl(self, result: DeploymentResult) -> None:
        outcome = self.ssl.check_and_setup(self.app)
        result.ssl_status = outcome.status.value
        result.ssl_message = outcome.message
        if outcome.status == SslStatus.FAILED:
            logger.warning(f"⚠ SSL: {outcome.message}")
        else:
            logger.info(f"SSL {outcome.status.value}: {outcome.message}")

    def _previous_commit(self) -> Optional[str]:
        if self.app.repo is None or not self.hooks.git.is_repo(self.app.paths.repo_dir):
            return None
        return self.hooks.git.current_commit(self.app.paths.repo_dir)

    def _append_deployments_log(self, result: DeploymentResult) -> None:
        line = f"[{datetime.now().strftime('%a %b %d %H:%M:%S %Y')}] Deployed {self.app.image_ref(result.image_tag)} with scale={result.scale}"
        if result.migrations_run is not None:
            line += f", migrations={result.migrations_label}"
        line += f" ssl={result.ssl_status}"

        if self.mock:
            logger.info(f"MOCK: Would append to deployments log: {line}")
            return
        log_dir = self.app.paths.log_dir
        log_dir.mkdir(parents=True, exist_ok=True)
        with open(log_dir / DEPLOYMENTS_LOG, "a") as f:
            f.write(line + "\n")

    def _fail(self, error: Exception, commit: Optional[str]) -> None:
        logger.error(f"✗ Deployment of {self.app.name} failed: {error}")
        self.release_log.log_failure(self.app, str(error), commit)
        self.notifier.send_failure(str(error), commit)

    # Deploy

    def deploy(self, scale: Optional[int] = None) -> DeploymentResult:
        """Pull, build and roll out a new image.

        Starts fresh with default_scale when nothing runs; otherwise a
        rolling restart keeps the current count unless scale is given.

        Raises:
            DeployError: When any mandatory step fails
            LockError: When another operation holds the app's lock
        """
        if scale is not None:
            self._check_scale(scale)
        with self._lock("deploy"):
            result = DeploymentResult(app_name=self.app.name, image_tag=new_image_tag())
            result.previous_commit = self._previous_commit()
            self.release_log.log_start(self.app, result.previous_commit)
            if self.app.notifications.notify_on_start:
                self.notifier.send_started(result.previous_commit)

            try:
                self._run_deploy(result, scale)
            except DockyardError as e:
                self._fail(e, result.commit or result.previous_commit)
                raise
            except Exception as e:
                self._fail(e, result.commit or result.previous_commit)
                raise DeployError(f"Deployment of {self.app.name} failed: {e}") from e

            result.finished_at = datetime.now()
            self.release_log.log_success(self.app, result)
            self.notifier.send_success(result)
            logger.info(f"✓ Deployed {self.app.name} ({result.image_tag}) in {result.duration_seconds}s")
            return result

    def _run_deploy(self, result: DeploymentResult, scale: Optional[int]) -> None:
        result.commit = self.hooks.pull_code()
        self.hooks.build_image(result.image_tag)

        running = self.hooks.running_count()
        if running == 0:
            result.fresh = True
            target = scale or self.app.containers.default_scale
            logger.info(f"No running containers, deploying fresh with {target} container(s)")
            result.ports = self.hooks.deploy_fresh(target, result.image_tag)
            if self.app.has_web and not self._route(result.ports):
                raise DeployError("Nginx upstream update failed")
        else:
            target = scale or running
            logger.info(f"{running} container(s) running, performing rolling deployment")
            before_cutover = self._route if self.app.has_web else None
            result.ports = self.hooks.deploy_rolling(target, result.image_tag, before_cutover)

        result.scale = len(result.ports) if self.app.has_web else 1
        result.migrations_run = self.hooks.migrations_run

        if self.app.images.auto_cleanup:
            cleanup_old_images(self.docker, self.app.image_name, self.app.images.max_versions)

        if self.app.has_web:
            self._check_ssl(result)

        self._append_deployments_log(result)

    def summary(self, result: DeploymentResult) -> List[str]:
        return self.hooks.summary_lines(result)

    # Fleet changes on the current image

    def restart(self) -> DeploymentResult:
        """Rolling restart of the current image at the current scale."""
        with self._lock("restart"):
            if not self.app.has_web:
                if self.hooks.running_count() == 0:
                    raise DeployError(f"No containers running, use 'dockyard deploy {self.app.name}'")
                self.hooks.deploy_fresh(1, "latest")
                return DeploymentResult(app_name=self.app.name, image_tag="latest", scale=1, finished_at=datetime.now())

            running = self.containers.running_web_containers()
            if not running and not self.mock:
                raise DeployError(f"No containers running, use 'dockyard deploy {self.app.name}'")
            image = self._require_latest_image()

            ports = self.containers.rolling_restart(
                image, len(running) or self.app.containers.default_scale, before_cutover=self._route
            )
            self.hooks.restart_extras(image)
            logger.info(f"✓ Restarted {self.app.name} with {len(ports)} container(s)")
            return DeploymentResult(
                app_name=self.app.name,
                image_tag="latest",
                scale=len(ports),
                ports=ports,
                finished_at=datetime.now(),
            )

    def scale(self, count: int) -> List[int]:
        """Run exactly count web containers of the latest image."""
        self._check_scale(count)
        if not self.app.has_web:
            raise DeployError(f"{self.app.type.value} apps run a single container and cannot be scaled")

        with self._lock("scale"):
            image = self._require_latest_image()
            ports = self.containers.scale_to(image, count, on_ports_changed=self._route)
            result = DeploymentResult(app_name=self.app.name, image_tag="latest", scale=count, ports=ports)
            self._check_ssl(result)
            return ports

    def stop(self) -> int:
        with self._lock("stop"):
            return self.hooks.stop_containers()

    # Inspection

    def status(self) -> List[ContainerInfo]:
        return self.containers.status()

    def default_container(self) -> str:
        if isinstance(self.hooks, CronJobHooks):
            return self.hooks.container_name
        return self.app.web_container_name(1)

    def logs(self, container: Optional[str] = None, follow: bool = True, tail: Optional[int] = None) -> int:
        """Stream a container's logs; short names like worker_1 get the app prefix."""
        name = container or self.default_container()
        if not name.startswith(f"{self.app.name}_") and name != self.default_container():
            name = f"{self.app.name}_{name}"
        return self.docker.logs(name, follow=follow, tail=tail)

    def list_image_backups(self) -> List[ImageBackup]:
        return list_image_backups(self.app)

    def current_image_tag(self, backups: List[ImageBackup]) -> Optional[str]:
        """Tag of the backup whose image the first running container uses."""
        running = self.docker.container_image_id(self.default_container())
        if running is None:
            return None
        for backup in backups:
            if self.docker.image_id(self.app.image_ref(backup.tag)) == running:
                return backup.tag
        return None

    # Type-specific commands

    def _rails_hooks(self, command: str) -> RailsHooks:
        if not isinstance(self.hooks, RailsHooks):
            raise DeployError(f"'{command}' is only available for rails apps")
        return self.hooks

    def console(self) -> int:
        return self._rails_hooks("console").console()

    def task(self, name: str) -> subprocess.CompletedProcess:
        return self._rails_hooks("task").run_task(name)

    def run_once(self) -> subprocess.CompletedProcess:
        if not isinstance(self.hooks, CronJobHooks):
            raise DeployError("'run' is only available for cron-job apps")
        return self.hooks.run_once()

    # Rollback

    def resolve_rollback_target(self, steps: int = 1, tag: Optional[str] = None) -> ImageBackup:
        """Pick the image backup to roll back to.

        The newest backup is the running deployment, so steps=1 selects
        the one before it.
        """
        backups = self.list_image_backups()
        if tag is not None:
            for backup in backups:
                if backup.tag == tag:
                    return backup
            raise DeployError(f"No image backup with tag {tag} in {self.app.paths.image_backup_dir}")

        if steps < 1:
            raise DeployError("Rollback steps must be at least 1")
        if len(backups) <= steps:
            raise DeployError(
                f"Cannot roll back {steps} step(s): only {len(backups)} image backup(s) available"
            )
        return backups[steps]

    def rollback(self, steps: int = 1, tag: Optional[str] = None) -> DeploymentResult:
        target = self.resolve_rollback_target(steps, tag)
        with self._lock("rollback"):
            result = DeploymentResult(app_name=self.app.name, image_tag=target.tag)
            self.release_log.log_start(self.app, None)
            try:
                self._run_rollback(target, result)
            except DockyardError as e:
                self._fail(e, None)
                raise
            except Exception as e:
                self._fail(e, None)
                raise DeployError(f"Rollback of {self.app.name} failed: {e}") from e

            result.finished_at = datetime.now()
            self.release_log.log_success(self.app, result)
            self.notifier.send_success(result)
            logger.info(f"✓ Rolled back {self.app.name} to {target.tag}")
            return result

    def _run_rollback(self, target: ImageBackup, result: DeploymentResult) -> None:
        image = self.app.image_ref(target.tag)
        if not self.docker.image_exists(image):
            logger.info(f"Image {image} not present, loading {target.path.name}")
            if not self.docker.load_image(target.path):
                raise DeployError(f"Failed to load image backup {target.path}")
        if not self.docker.tag_image(image, self.app.image_ref()):
            raise DeployError(f"Failed to tag {image} as latest")

        if not self.app.has_web:
            self.hooks.deploy_fresh(1, "latest")
            result.scale = 1
            return

        running = self.containers.running_web_containers()
        result.ports = self.containers.rolling_restart(
            self.app.image_ref(),
            len(running) or self.app.containers.default_scale,
            before_cutover=self._route,
        )
        result.scale = len(result.ports)
        self.hooks.restart_extras(self.app.image_ref())

    def ssl_setup(self, email: Optional[str] = None) -> None:
        if not self.app.has_web:
            raise DeployError(f"{self.app.type.value} apps have no domain to secure")
        if not self.ssl.setup(self.app, email=email):
            raise DeployError(f"SSL setup for {self.app.domain} did not complete")
