"""Web, worker and scheduler container lifecycle for one app.

Web containers are named <app>_web_<n>. During a rolling restart the
replacements run as <app>_web_new_<n> until every one of them is healthy,
then the old set is stopped and the replacements take over the names.
"""
import re
import shlex
import socket
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from dockyard.core.config import DockyardConfig, get_config
from dockyard.core.errors import DeployError
from dockyard.core.logger import get_logger
from dockyard.models.app import AppConfig
from dockyard.models.container import ContainerInfo, format_uptime
from dockyard.services.docker import DockerClient
from dockyard.services.health import HealthChecker

logger = get_logger(__name__)

# Pause between stopping consecutive old containers
STOP_PAUSE = 2
# Given to sidekiq after TSTP before the stop signal
WORKER_QUIET_PAUSE = 2

PortsCallback = Callable[[List[int]], bool]


def port_in_use(port: int, host: str = "127.0.0.1") -> bool:
    """True if something accepts TCP connections on host:port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(0.5)
        return sock.connect_ex((host, port)) == 0


def parse_started_at(value: str) -> Optional[datetime]:
    """Parse docker's RFC 3339 StartedAt (nanosecond precision) as UTC."""
    if not value or value.startswith("0001-"):
        return None
    try:
        return datetime.strptime(value[:19], "%Y-%m-%dT%H:%M:%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


class ContainerManager:
    """Starts, stops, health-checks and scales an app's containers."""

    def __init__(
        self,
        app: AppConfig,
        docker: DockerClient,
        health: Optional[HealthChecker] = None,
        config: Optional[DockyardConfig] = None,
        port_taken: Callable[[int], bool] = port_in_use,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.app = app
        self.docker = docker
        self.health = health or HealthChecker(mock=docker.mock)
        self.config = config or get_config()
        self.port_taken = port_taken
        self.sleep = sleep
        self._web_pattern = re.compile(rf"^{re.escape(app.name)}_web_(\d+)$")

    # Discovery

    def running_web_containers(self) -> List[str]:
        """Running <app>_web_<n> containers ordered by n."""
        indexed = []
        for name in self.docker.list_containers(f"^{self.app.name}_web_"):
            match = self._web_pattern.match(name)
            if match:
                indexed.append((int(match.group(1)), name))
        return [name for _, name in sorted(indexed)]

    def _web_index(self, name: str) -> Optional[int]:
        match = self._web_pattern.match(name)
        return int(match.group(1)) if match else None

    def free_web_indexes(self, count: int, taken) -> List[int]:
        """The count lowest web indexes not held by a running container."""
        indexes = []
        index = 1
        while len(indexes) < count:
            if index not in taken:
                indexes.append(index)
            index += 1
        return indexes

    def running_worker_containers(self) -> List[str]:
        return sorted(self.docker.list_containers(f"^{self.app.name}_worker_"))

    def live_ports(self, names: Optional[List[str]] = None) -> Dict[str, int]:
        """Host port of each running web container."""
        ports = {}
        for name in names if names is not None else self.running_web_containers():
            port = self.docker.host_port(name, self.app.containers.container_port)
            if port is not None:
                ports[name] = port
        return ports

    def find_free_port(self, start: int, exclude=(), max_attempts: int = 100) -> int:
        """First port from start that is neither excluded nor accepting connections."""
        for port in range(start, start + max_attempts):
            if port in exclude:
                continue
            if not self.port_taken(port):
                return port
        raise DeployError(f"No free port in range {start}-{start + max_attempts - 1}")

    # Single containers

    def _volumes(self) -> Dict[str, str]:
        if self.app.has_database:
            return {str(self.app.paths.log_dir): f"{self.app.containers.workdir}/log"}
        return {}

    def _remove_stale(self, name: str) -> None:
        if self.docker.exists(name):
            logger.info(f"Removing stale container {name}")
            self.docker.remove_container(name, force=True)

    def start_web(self, name: str, image: str, port: int) -> bool:
        """Start one web container publishing the given host port."""
        self._remove_stale(name)
        logger.info(f"Starting {name} on port {port}")
        return self.docker.run_container(
            name,
            image,
            port=port,
            container_port=self.app.containers.container_port,
            env_file=self.app.paths.env_file,
            network=self.app.containers.network,
            volumes=self._volumes(),
        )

    def stop(self, name: str, timeout: Optional[int] = None) -> bool:
        """Stop and remove a container.

        A container that does not exist counts as stopped. When the
        graceful stop fails the container is force-removed and False is
        returned.
        """
        timeout = self.config.stop_timeout if timeout is None else timeout

        if not self.docker.exists(name):
            logger.warning(f"Container {name} not found, nothing to stop")
            return True

        logger.info(f"Stopping {name} (timeout {timeout}s)")
        if self.docker.stop_container(name, timeout) and self.docker.remove_container(name):
            logger.info(f"✓ Stopped {name}")
            return True

        logger.warning(f"Graceful stop failed for {name}, forcing removal")
        self.docker.remove_container(name, force=True)
        return False

    def wait_healthy(self, name: str, port: int, timeout: Optional[int] = None) -> bool:
        url = f"http://localhost:{port}{self.app.deploy.health_check_path}"
        still_running = None if self.docker.mock else (lambda: self.docker.is_running(name))
        healthy = self.health.wait_for(
            url,
            timeout=timeout or self.app.deploy.health_check_timeout,
            interval=self.config.health_interval,
            still_running=still_running,
        )
        if not healthy and not self.docker.mock:
            logs = self.docker.tail_logs(name, 50)
            if logs:
                logger.error(f"Last log lines of {name}:\n{logs}")
        return healthy

    def _discard(self, names: List[str]) -> None:
        for name in names:
            self.docker.remove_container(name, force=True)

    # Web fleet

    def deploy_fresh(self, image: str, scale: int) -> List[int]:
        """Start <app>_web_1..scale, each health-checked before the next."""
        logger.info(f"Fresh deployment of {scale} web container(s) from {image}")
        ports: List[int] = []
        for index in range(1, scale + 1):
            name = self.app.web_container_name(index)
            port = self.find_free_port(self.app.containers.base_port, exclude=set(ports))
            if not self.start_web(name, image, port):
                raise DeployError(f"Failed to start {name}")
            if not self.wait_healthy(name, port):
                raise DeployError(f"{name} failed its health check on port {port}")
            ports.append(port)
        return ports

    def rolling_restart(
        self,
        image: str,
        scale: Optional[int] = None,
        before_cutover: Optional[PortsCallback] = None,
    ) -> List[int]:
        """Replace the running web containers with ones built from image.

        All replacements must pass their health check before any old
        container is stopped. before_cutover receives the replacement
        ports and can point the proxy at them; returning False aborts the
        restart with the old containers untouched.
        """
        current = self.running_web_containers()
        if not current:
            ports = self.deploy_fresh(image, scale or self.app.containers.default_scale)
            if before_cutover is not None and not before_cutover(ports):
                raise DeployError("Routing update failed after fresh deployment")
            return ports

        scale = scale or len(current)
        in_use = set(self.live_ports(current).values())
        logger.info(f"Rolling restart: {len(current)} running, starting {scale} replacement(s)")

        candidates: List[Tuple[int, str, int]] = []
        for index in range(1, scale + 1):
            name = self.app.candidate_container_name(index)
            port = self.find_free_port(self.app.containers.base_port, exclude=in_use)
            in_use.add(port)
            started = self.start_web(name, image, port)
            if not started or not self.wait_healthy(name, port):
                logger.error(f"✗ Replacement {name} is unhealthy, keeping current containers")
                self._discard([candidate for _, candidate, _ in candidates] + [name])
                raise DeployError(f"Rolling restart aborted: {name} failed its health check")
            candidates.append((index, name, port))

        new_ports = [port for _, _, port in candidates]
        if before_cutover is not None and not before_cutover(new_ports):
            self._discard([name for _, name, _ in candidates])
            raise DeployError("Rolling restart aborted: routing update failed")

        for position, old in enumerate(current):
            self.stop(old)
            if position < len(current) - 1:
                self.sleep(STOP_PAUSE)

        for index, name, _ in candidates:
            # An exited container can still hold the final name
            self._remove_stale(self.app.web_container_name(index))
            if not self.docker.rename_container(name, self.app.web_container_name(index)):
                raise DeployError(f"Failed to rename {name}")

        logger.info(f"✓ Rolling restart complete: {scale} container(s) on ports {new_ports}")
        return new_ports

    def scale_to(
        self,
        image: str,
        target: int,
        on_ports_changed: Optional[PortsCallback] = None,
    ) -> List[int]:
        """Grow or shrink the web fleet to exactly target containers."""
        current = self.running_web_containers()
        ports = self.live_ports(current)
        count = len(current)

        if target == count:
            logger.info(f"Already running {count} web container(s)")
            return list(ports.values())

        if target > count:
            in_use = set(ports.values())
            taken = {self._web_index(name) for name in current}
            started: List[str] = []
            for index in self.free_web_indexes(target - count, taken):
                name = self.app.web_container_name(index)
                port = self.find_free_port(self.app.containers.base_port, exclude=in_use)
                in_use.add(port)
                started.append(name)
                if not self.start_web(name, image, port) or not self.wait_healthy(name, port):
                    for new in reversed(started):
                        self.stop(new)
                    raise DeployError(f"Scale up failed: {name} is unhealthy")
                ports[name] = port
            if on_ports_changed is not None and not on_ports_changed(list(ports.values())):
                logger.warning("New containers are running but routing was not updated")
            logger.info(f"✓ Scaled up from {count} to {target}")
            return list(ports.values())

        removed = current[target:]
        remaining = {name: port for name, port in ports.items() if name not in removed}
        if on_ports_changed is not None and not on_ports_changed(list(remaining.values())):
            raise DeployError("Scale down aborted: routing update failed")
        for name in reversed(removed):
            self.stop(name)
        logger.info(f"✓ Scaled down from {count} to {target}")
        return list(remaining.values())

    # Workers and scheduler

    def _start_background(self, name: str, image: str, command: str) -> None:
        self._remove_stale(name)
        started = self.docker.run_container(
            name,
            image,
            env_file=self.app.paths.env_file,
            network="host",
            volumes=self._volumes(),
            command=shlex.split(command),
        )
        if not started:
            raise DeployError(f"Failed to start {name}")

    def start_workers(self, image: str) -> int:
        count = self.app.containers.worker_count
        for index in range(1, count + 1):
            self._start_background(
                self.app.worker_container_name(index), image, self.app.containers.worker_command
            )
        return count

    def restart_workers(self, image: str) -> int:
        """Quiet sidekiq, stop old workers with the long timeout, start new ones."""
        workers = self.running_worker_containers()
        for name in workers:
            logger.info(f"Sending TSTP to sidekiq in {name}")
            self.docker.exec(name, ["pkill", "-TSTP", "-f", "sidekiq"])
        if workers:
            self.sleep(WORKER_QUIET_PAUSE)
        for name in workers:
            self.stop(name, timeout=self.app.containers.worker_shutdown_timeout)
        return self.start_workers(image)

    def start_scheduler(self, image: str) -> None:
        self._start_background(
            self.app.scheduler_container_name(), image, self.app.containers.scheduler_command
        )

    def restart_scheduler(self, image: str) -> None:
        self.stop(self.app.scheduler_container_name())
        self.start_scheduler(image)

    # Whole app

    def app_containers(self) -> List[str]:
        """Every container of the app, stopped ones and a cron job's container included."""
        names = set(self.docker.list_containers(f"^{self.app.name}_", include_stopped=True))
        if self.app.cron is not None:
            names.update(self.docker.list_containers(f"^{self.app.cron.container_name}$", include_stopped=True))
        return sorted(names)

    def stop_all(self) -> int:
        """Stop every container belonging to the app."""
        names = self.app_containers()
        for name in names:
            self.stop(name)
        return len(names)

    def status(self, now: Optional[datetime] = None) -> List[ContainerInfo]:
        now = now or datetime.now(timezone.utc)
        rows = []
        for name in self.app_containers():
            state = self.docker.inspect_state(name) or {}
            status = state.get("status", "unknown")
            started = parse_started_at(state.get("started_at", ""))

            port = None
            if self._web_pattern.match(name) and status == "running":
                port = self.docker.host_port(name, self.app.containers.container_port)

            rows.append(ContainerInfo(
                name=name,
                status=status,
                ports=str(port) if port else "",
                started=started.strftime("%Y-%m-%d %H:%M:%S") if started else "-",
                uptime=format_uptime((now - started).total_seconds()) if started and status == "running" else "-",
            ))
        return rows
