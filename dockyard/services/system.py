"""Host command helpers shared by the service wrappers."""
import os
import shutil
import subprocess
from pathlib import Path
from typing import List


def command_exists(name: str) -> bool:
    return shutil.which(name) is not None


def privileged(cmd: List[str]) -> List[str]:
    """Prefix cmd with sudo unless already running as root."""
    if os.geteuid() == 0:
        return list(cmd)
    return ["sudo", *cmd]


def write_privileged(path: Path, content: str) -> None:
    """Write a root-owned file such as an nginx site config.

    Raises:
        subprocess.CalledProcessError: If sudo tee fails
    """
    path = Path(path)
    try:
        path.write_text(content)
    except PermissionError:
        subprocess.run(
            privileged(["tee", str(path)]),
            input=content,
            capture_output=True,
            text=True,
            check=True,
        )
