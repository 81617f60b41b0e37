"""Thin wrapper over the docker CLI."""
import gzip
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from dockyard.core.logger import get_logger

logger = get_logger(__name__)


class DockerClient:
    """Runs docker commands for container and image lifecycle."""

    def __init__(self, mock: bool = False):
        self.mock = mock

    def _docker(self, args: Sequence[str], quiet: bool = False) -> Optional[subprocess.CompletedProcess]:
        """Run `docker <args>`, returning None when it fails."""
        cmd = ["docker", *args]
        try:
            return subprocess.run(cmd, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            if not quiet:
                logger.error(f"docker {args[0]} failed: {e}")
                if e.stderr:
                    logger.error(f"Error output: {e.stderr.strip()}")
            return None

    # Containers

    def list_containers(self, name_filter: str, include_stopped: bool = False) -> List[str]:
        """Names of containers whose name matches the docker name filter."""
        if self.mock:
            return []

        args = ["ps", "--filter", f"name={name_filter}", "--format", "{{.Names}}"]
        if include_stopped:
            args.insert(1, "-a")
        result = self._docker(args)
        if result is None:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def is_running(self, name: str) -> bool:
        return name in self.list_containers(f"^{name}$")

    def exists(self, name: str) -> bool:
        return name in self.list_containers(f"^{name}$", include_stopped=True)

    def run_container(
        self,
        name: str,
        image: str,
        port: Optional[int] = None,
        container_port: Optional[int] = None,
        env_file: Optional[Path] = None,
        network: str = "bridge",
        volumes: Optional[Dict[str, str]] = None,
        env: Optional[Dict[str, str]] = None,
        command: Optional[List[str]] = None,
        restart: str = "unless-stopped",
    ) -> bool:
        """Start a detached container.

        On the host network there is no port publishing, so the instance
        is told which port to bind through PORT.
        """
        args = ["run", "-d", "--name", name, "--restart", restart]
        if network == "host":
            args += ["--network", "host"]
            if port is not None:
                args += ["-e", f"PORT={port}"]
        elif port is not None:
            args += ["-p", f"{port}:{container_port or port}"]

        if env_file is not None:
            args += ["--env-file", str(env_file)]
        for key, value in (env or {}).items():
            args += ["-e", f"{key}={value}"]
        for host_path, container_path in (volumes or {}).items():
            args += ["-v", f"{host_path}:{container_path}"]

        args.append(image)
        if command:
            args += command

        if self.mock:
            logger.info(f"MOCK: Would run container {name} from {image}")
            return True

        if self._docker(args) is None:
            return False
        logger.info(f"✓ Started container {name}")
        return True

    def stop_container(self, name: str, timeout: int = 30) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would stop container {name} (timeout {timeout}s)")
            return True
        return self._docker(["stop", "-t", str(timeout), name]) is not None

    def start_container(self, name: str) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would start container {name}")
            return True
        return self._docker(["start", name]) is not None

    def remove_container(self, name: str, force: bool = False) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would remove container {name}")
            return True
        args = ["rm", "-f", name] if force else ["rm", name]
        return self._docker(args, quiet=force) is not None

    def rename_container(self, old: str, new: str) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would rename container {old} -> {new}")
            return True
        return self._docker(["rename", old, new]) is not None

    def host_port(self, name: str, container_port: int) -> Optional[int]:
        """Host port bound to container_port, or PORT for host networking."""
        if self.mock:
            return None

        result = self._docker(["port", name, f"{container_port}/tcp"], quiet=True)
        if result is not None and result.stdout.strip():
            # "0.0.0.0:3001" and possibly "[::]:3001" lines
            first = result.stdout.strip().splitlines()[0]
            return int(first.rsplit(":", 1)[1])

        env = self._docker(
            ["inspect", "--format", "{{range .Config.Env}}{{println .}}{{end}}", name],
            quiet=True,
        )
        if env is None:
            return None
        for line in env.stdout.splitlines():
            if line.startswith("PORT="):
                return int(line.split("=", 1)[1])
        return None

    def inspect_state(self, name: str) -> Optional[Dict[str, str]]:
        """Return {'status': ..., 'started_at': ...} for a container."""
        if self.mock:
            return None

        result = self._docker(
            ["inspect", "--format", "{{.State.Status}}|{{.State.StartedAt}}", name],
            quiet=True,
        )
        if result is None:
            return None
        status, _, started_at = result.stdout.strip().partition("|")
        return {"status": status, "started_at": started_at}

    def exec(self, name: str, command: List[str], interactive: bool = False) -> subprocess.CompletedProcess:
        """Run a command inside a running container.

        Interactive sessions inherit the terminal; otherwise output is
        captured. The caller inspects the return code.
        """
        if self.mock:
            logger.info(f"MOCK: Would exec in {name}: {' '.join(command)}")
            return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

        if interactive:
            return subprocess.run(["docker", "exec", "-it", name, *command], check=False)
        return subprocess.run(
            ["docker", "exec", name, *command], capture_output=True, text=True, check=False
        )

    def logs(self, name: str, follow: bool = True, tail: Optional[int] = None) -> int:
        """Stream container logs to the terminal, returning docker's exit code."""
        args = ["docker", "logs"]
        if follow:
            args.append("-f")
        if tail is not None:
            args += ["--tail", str(tail)]
        args.append(name)

        if self.mock:
            logger.info(f"MOCK: Would run {' '.join(args)}")
            return 0
        return subprocess.run(args, check=False).returncode

    def tail_logs(self, name: str, lines: int = 50) -> str:
        """Return the last lines of a container's log output."""
        if self.mock:
            return ""
        result = subprocess.run(
            ["docker", "logs", "--tail", str(lines), name],
            capture_output=True,
            text=True,
            check=False,
        )
        return (result.stdout or "") + (result.stderr or "")

    # Images

    def build_image(
        self,
        context: Path,
        tags: List[str],
        dockerfile: Optional[Path] = None,
    ) -> bool:
        args = ["docker", "build"]
        for tag in tags:
            args += ["-t", tag]
        if dockerfile is not None:
            args += ["-f", str(dockerfile)]
        args.append(str(context))

        if self.mock:
            logger.info(f"MOCK: Would build {', '.join(tags)} from {context}")
            return True

        logger.info(f"Building {tags[0]} from {context}...")
        # Build output goes straight to the terminal
        result = subprocess.run(args, check=False)
        if result.returncode != 0:
            logger.error(f"✗ docker build failed for {tags[0]}")
            return False
        logger.info(f"✓ Built image {tags[0]}")
        return True

    def tag_image(self, source: str, target: str) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would tag {source} as {target}")
            return True
        return self._docker(["tag", source, target]) is not None

    def image_exists(self, ref: str) -> bool:
        if self.mock:
            return True
        return self._docker(["image", "inspect", ref], quiet=True) is not None

    def image_id(self, ref: str) -> Optional[str]:
        if self.mock:
            return None
        result = self._docker(["image", "inspect", "--format", "{{.Id}}", ref], quiet=True)
        if result is None:
            return None
        return result.stdout.strip() or None

    def container_image_id(self, name: str) -> Optional[str]:
        """ID of the image a container was started from."""
        if self.mock:
            return None
        result = self._docker(["inspect", "--format", "{{.Image}}", name], quiet=True)
        if result is None:
            return None
        return result.stdout.strip() or None

    def list_image_ids(self, repository: str) -> List[str]:
        """Unique image IDs of a repository, newest first."""
        if self.mock:
            return []

        result = self._docker(["images", repository, "--format", "{{.ID}}"])
        if result is None:
            return []

        ids: List[str] = []
        for line in result.stdout.splitlines():
            image_id = line.strip()
            if image_id and image_id not in ids:
                ids.append(image_id)
        return ids

    def remove_images(self, image_ids: List[str]) -> int:
        """Force-remove images, returning how many were removed."""
        if self.mock:
            logger.info(f"MOCK: Would remove {len(image_ids)} image(s)")
            return len(image_ids)

        removed = 0
        for image_id in image_ids:
            # Images still used by a container refuse removal; that is fine
            if self._docker(["rmi", "-f", image_id], quiet=True) is not None:
                removed += 1
        return removed

    def save_image(self, ref: str, destination: Path) -> bool:
        """docker save piped into a gzip archive."""
        destination = Path(destination)
        if self.mock:
            logger.info(f"MOCK: Would save {ref} to {destination}")
            return True

        destination.parent.mkdir(parents=True, exist_ok=True)
        partial = destination.with_name(destination.name + ".partial")
        try:
            with subprocess.Popen(["docker", "save", ref], stdout=subprocess.PIPE) as proc:
                with gzip.open(partial, "wb") as out:
                    shutil.copyfileobj(proc.stdout, out)
            if proc.returncode != 0:
                logger.error(f"✗ docker save failed for {ref}")
                partial.unlink(missing_ok=True)
                return False
        except OSError as e:
            logger.error(f"✗ Failed to save image {ref}: {e}")
            partial.unlink(missing_ok=True)
            return False

        partial.rename(destination)
        logger.info(f"✓ Saved image backup {destination}")
        return True

    def load_image(self, archive: Path) -> bool:
        """docker load from a gzip archive written by save_image."""
        if self.mock:
            logger.info(f"MOCK: Would load image from {archive}")
            return True

        # docker load reads gzip archives directly
        if self._docker(["load", "-i", str(archive)]) is None:
            return False
        logger.info(f"✓ Loaded image from {archive}")
        return True
