"""Git repository management for app deployment."""
import subprocess
from pathlib import Path
from typing import Optional, Tuple

from dockyard.core.logger import get_logger

logger = get_logger(__name__)


def short(commit: Optional[str]) -> str:
    """First seven characters of a commit hash."""
    return commit[:7] if commit else "unknown"


class GitManager:
    """Manages the app repositories checked out on the host."""

    def __init__(self, mock: bool = False):
        self.mock = mock

    def is_repo(self, path: Path) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would check for git repo at {path}")
            return False
        return (Path(path) / ".git").is_dir()

    def clone_repo(self, url: str, path: Path, branch: str = "main") -> bool:
        """Clone a git repository.

        Args:
            url: Git repository URL
            path: Destination directory
            branch: Branch to clone (default: main)

        Returns:
            True if successful, False otherwise
        """
        if self.mock:
            logger.info(f"MOCK: Would clone {url} ({branch}) to {path}")
            return True

        Path(path).parent.mkdir(parents=True, exist_ok=True)
        cmd = ['git', 'clone', '--branch', branch, url, str(path)]

        try:
            logger.info(f"Cloning {url} (branch: {branch}) to {path}")
            subprocess.run(cmd, capture_output=True, text=True, check=True)
            logger.info(f"✓ Successfully cloned repository to {path}")
            return True
        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to clone repository: {e}")
            if e.stderr:
                logger.error(f"Error output: {e.stderr}")
            return False

    def checkout(self, path: Path, branch: str) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would checkout {branch} in {path}")
            return True

        try:
            subprocess.run(
                ['git', '-C', str(path), 'checkout', branch],
                capture_output=True,
                text=True,
                check=True,
            )
            return True
        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to checkout {branch} in {path}: {e}")
            if e.stderr:
                logger.error(f"Error output: {e.stderr}")
            return False

    def current_commit(self, path: Path) -> Optional[str]:
        """Get the current commit hash of a repository."""
        if self.mock:
            return "mock1234567890"

        try:
            result = subprocess.run(
                ['git', '-C', str(path), 'rev-parse', 'HEAD'],
                capture_output=True,
                text=True,
                check=True,
            )
            return result.stdout.strip()
        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to get current commit in {path}: {e}")
            return None

    def sync_to_remote(self, path: Path, branch: str = "main") -> Optional[Tuple[Optional[str], Optional[str]]]:
        """Hard-reset the checkout to origin/<branch>.

        Local changes in the deployment checkout are discarded.

        Returns:
            (old_commit, new_commit), or None if fetch or reset failed
        """
        if self.mock:
            logger.info(f"MOCK: Would fetch and reset {path} to origin/{branch}")
            return ("mock1234567890", "mock1234567890")

        old_commit = self.current_commit(path)
        try:
            logger.info(f"Fetching origin/{branch} in {path}")
            subprocess.run(
                ['git', '-C', str(path), 'fetch', 'origin', branch],
                capture_output=True,
                text=True,
                check=True,
            )
            subprocess.run(
                ['git', '-C', str(path), 'reset', '--hard', f'origin/{branch}'],
                capture_output=True,
                text=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to update repository {path}: {e}")
            if e.stderr:
                logger.error(f"Error output: {e.stderr}")
            return None

        new_commit = self.current_commit(path)
        if old_commit == new_commit:
            logger.info(f"Already up to date ({short(new_commit)})")
        else:
            logger.info(f"✓ Updated {short(old_commit)} → {short(new_commit)}")
        return old_commit, new_commit
