"""Shared test fixtures for dockyard tests."""
import re
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import yaml

from dockyard.app_types import HookContext
from dockyard.core.config import DockyardConfig, set_config
from dockyard.core.template_loader import TemplateLoader
from dockyard.models.app import AppConfig
from dockyard.services.containers import ContainerManager


class FakeDocker:
    """In-memory stand-in for DockerClient.

    Containers are dicts keyed by name; images map refs to ids.
    """

    mock = False

    def __init__(self):
        self.containers: Dict[str, dict] = {}
        self.images: Dict[str, str] = {}
        self.fail_start: set = set()
        self.builds: List[tuple] = []
        self.execs: List[tuple] = []
        self.exec_results: Dict[str, subprocess.CompletedProcess] = {}
        self.saved: List[Path] = []
        self.loaded: List[Path] = []
        self.removed_images: List[str] = []
        self.log_calls: List[tuple] = []
        self.renames: List[tuple] = []
        self._image_counter = 0

    # Test helpers

    def add_container(self, name: str, port: Optional[int] = None, image: str = "app:old", running: bool = True):
        self.containers[name] = {"image": image, "port": port, "running": running, "command": None}

    def add_image(self, ref: str) -> str:
        self._image_counter += 1
        image_id = f"id{self._image_counter:03d}"
        self.images[ref] = image_id
        return image_id

    def bound_port(self, port: int) -> bool:
        return any(c["running"] and c["port"] == port for c in self.containers.values())

    def running(self) -> List[str]:
        return sorted(name for name, c in self.containers.items() if c["running"])

    # DockerClient interface

    def list_containers(self, name_filter: str, include_stopped: bool = False) -> List[str]:
        pattern = re.compile(name_filter)
        return [
            name for name, c in self.containers.items()
            if pattern.search(name) and (include_stopped or c["running"])
        ]

    def is_running(self, name: str) -> bool:
        return name in self.containers and self.containers[name]["running"]

    def exists(self, name: str) -> bool:
        return name in self.containers

    def run_container(self, name, image, port=None, container_port=None, env_file=None, network="bridge",
                      volumes=None, env=None, command=None, restart="unless-stopped") -> bool:
        if name in self.fail_start:
            return False
        self.containers[name] = {
            "image": image,
            "port": port,
            "running": True,
            "command": command,
            "network": network,
            "volumes": volumes,
            "restart": restart,
        }
        return True

    def stop_container(self, name: str, timeout: int = 30) -> bool:
        self.containers[name]["running"] = False
        self.containers[name]["stop_timeout"] = timeout
        return True

    def start_container(self, name: str) -> bool:
        self.containers[name]["running"] = True
        return True

    def remove_container(self, name: str, force: bool = False) -> bool:
        self.containers.pop(name, None)
        return True

    def rename_container(self, old: str, new: str) -> bool:
        if new in self.containers:
            return False
        self.renames.append((old, new))
        self.containers[new] = self.containers.pop(old)
        return True

    def host_port(self, name: str, container_port: int) -> Optional[int]:
        container = self.containers.get(name)
        return container["port"] if container else None

    def inspect_state(self, name: str) -> Optional[Dict[str, str]]:
        container = self.containers.get(name)
        if container is None:
            return None
        status = "running" if container["running"] else "exited"
        return {"status": status, "started_at": "2026-10-18T10:00:00.123456789Z"}

    def exec(self, name: str, command: List[str], interactive: bool = False) -> subprocess.CompletedProcess:
        self.execs.append((name, command))
        joined = " ".join(command)
        for fragment, result in self.exec_results.items():
            if fragment in joined:
                return result
        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

    def logs(self, name: str, follow: bool = True, tail: Optional[int] = None) -> int:
        self.log_calls.append((name, follow, tail))
        return 0

    def tail_logs(self, name: str, lines: int = 50) -> str:
        return ""

    def build_image(self, context, tags, dockerfile=None) -> bool:
        self.builds.append((Path(context), list(tags), dockerfile))
        image_id = self.add_image(tags[0])
        for tag in tags[1:]:
            self.images[tag] = image_id
        return True

    def tag_image(self, source: str, target: str) -> bool:
        if source not in self.images:
            return False
        self.images[target] = self.images[source]
        return True

    def image_exists(self, ref: str) -> bool:
        return ref in self.images

    def image_id(self, ref: str) -> Optional[str]:
        return self.images.get(ref)

    def container_image_id(self, name: str) -> Optional[str]:
        if name not in self.containers:
            return None
        return self.images.get(self.containers[name]["image"])

    def list_image_ids(self, repository: str) -> List[str]:
        ids = {image_id for ref, image_id in self.images.items() if ref.split(":")[0] == repository}
        return sorted(ids, reverse=True)

    def remove_images(self, image_ids: List[str]) -> int:
        self.removed_images.extend(image_ids)
        return len(image_ids)

    def save_image(self, ref: str, destination: Path) -> bool:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"image archive")
        self.saved.append(destination)
        return True

    def load_image(self, archive: Path) -> bool:
        # <image>_<YYYYmmdd>_<HHMMSS>.tar.gz
        archive = Path(archive)
        self.loaded.append(archive)
        stem = archive.name[:-len(".tar.gz")]
        tag = "_".join(stem.split("_")[-2:])
        self.add_image(f"{stem[:-len(tag) - 1]}:{tag}")
        return True


class StubHealth:
    """HealthChecker replacement; ports listed in unhealthy never pass."""

    def __init__(self, unhealthy=()):
        self.unhealthy = set(unhealthy)
        self.checked: List[str] = []

    def wait_for(self, url, timeout, interval=2.0, still_running=None) -> bool:
        self.checked.append(url)
        port = int(url.split(":")[2].split("/")[0])
        return port not in self.unhealthy


class FakeGit:
    mock = False

    def __init__(self, commit: str = "abc1234def5678"):
        self.commit = commit
        self.repos: set = set()
        self.cloned: List[tuple] = []
        self.checkouts: List[tuple] = []
        self.synced: List[Path] = []

    def is_repo(self, path) -> bool:
        return Path(path) in self.repos

    def clone_repo(self, url, path, branch="main") -> bool:
        self.cloned.append((url, Path(path), branch))
        Path(path).mkdir(parents=True, exist_ok=True)
        self.repos.add(Path(path))
        return True

    def checkout(self, path, branch) -> bool:
        self.checkouts.append((Path(path), branch))
        return True

    def current_commit(self, path) -> Optional[str]:
        return self.commit

    def sync_to_remote(self, path, branch="main"):
        self.synced.append(Path(path))
        return "0000000old", self.commit


class FakeDb:
    mock = False

    def __init__(self, problems=()):
        self.problems = list(problems)
        self.ensured: List[tuple] = []
        self.backups: List[str] = []
        self.backup_ok = True

    def check_prerequisites(self) -> List[str]:
        return list(self.problems)

    def ensure_database(self, database, user, password) -> bool:
        self.ensured.append((database, user, password))
        return True

    def backup(self, database, backup_dir):
        self.backups.append(database)
        if not self.backup_ok:
            return None
        return Path(backup_dir) / f"{database}_20261018_100000.sql.gz"


@pytest.fixture(autouse=True)
def dockyard_config(tmp_path):
    """Point every dockyard path at tmp_path."""
    config = DockyardConfig(
        devops_dir=tmp_path / "DevOps",
        apps_root=tmp_path / "apps",
        nginx_available=tmp_path / "nginx" / "sites-available",
        nginx_enabled=tmp_path / "nginx" / "sites-enabled",
        health_interval=0.01,
        email_enabled=False,
    )
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def rails_app():
    return AppConfig(
        type="rails",
        name="shop-api",
        domain="api.shop.com",
        repo={"url": "https://github.com/acme/shop-api.git"},
        containers={"worker_count": 1, "scheduler_enabled": True},
    )


@pytest.fixture
def nextjs_app():
    return AppConfig(
        type="nextjs",
        name="shop-web",
        domain="shop.com",
        repo={"url": "https://github.com/acme/shop-web.git"},
    )


@pytest.fixture
def cron_app(tmp_path):
    return AppConfig(
        type="cron-job",
        name="price-scraper",
        cron={
            "container_name": "price_scraper",
            "schedule": "0 * * * *",
            "run_command": "python run.py --once",
            "sources": [{"name": "scraper", "url": "https://github.com/acme/scraper.git"}],
        },
    )


@pytest.fixture
def fake_docker():
    return FakeDocker()


@pytest.fixture
def fake_git():
    return FakeGit()


@pytest.fixture
def fake_db():
    return FakeDb()


def make_manager(app, docker, health=None, config=None):
    """ContainerManager wired to a FakeDocker without sleeping."""
    return ContainerManager(
        app,
        docker,
        health=health or StubHealth(),
        config=config,
        port_taken=docker.bound_port,
        sleep=lambda seconds: None,
    )


def make_context(app, docker, git=None, db=None, health=None):
    return HookContext(
        docker=docker,
        containers=make_manager(app, docker, health=health),
        git=git or FakeGit(),
        db=db or FakeDb(),
        templates=TemplateLoader(),
    )


def write_app_config(apps_dir: Path, name: str, data: dict) -> Path:
    """Write <apps_dir>/<name>/app.yml."""
    app_dir = Path(apps_dir) / name
    app_dir.mkdir(parents=True, exist_ok=True)
    path = app_dir / "app.yml"
    path.write_text(yaml.safe_dump(data))
    return path
