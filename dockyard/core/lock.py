"""Per-app locking for deploy operations.

Prevents two deploy, restart, scale or rollback runs from mutating the
same app's containers at once.
"""
import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from dockyard.core.logger import get_logger

logger = get_logger(__name__)

LOCK_FILENAME = ".dockyard.lock"


class LockError(Exception):
    """Raised when unable to acquire lock."""
    pass


class DeployLock:
    """File-based lock held for the duration of a mutating app operation."""

    def __init__(self, lock_file: Path, operation: str = "deploy", timeout: int = 0):
        """Initialize lock.

        Args:
            lock_file: Path to lock file (usually <app_dir>/.dockyard.lock)
            operation: Name of the operation recorded in the lock file
            timeout: Seconds to wait for lock (0 = fail immediately)
        """
        self.lock_file = Path(lock_file)
        self.operation = operation
        self.timeout = timeout
        self.lock_fd = None

    def acquire(self) -> bool:
        """Acquire the lock.

        Returns:
            True if lock acquired successfully

        Raises:
            LockError: If unable to acquire lock
        """
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)

        # Append mode keeps the holder's info readable until we own the lock
        self.lock_fd = open(self.lock_file, 'a+')

        start_time = time.time()
        while True:
            try:
                fcntl.flock(self.lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)

                if not self._holds_current_file():
                    # The previous holder removed the file between our open and flock
                    self.lock_fd.close()
                    self.lock_fd = open(self.lock_file, 'a+')
                    continue

                self.lock_fd.seek(0)
                self.lock_fd.truncate()
                self.lock_fd.write(f"{os.getpid()}\n")
                self.lock_fd.write(f"{time.strftime('%Y-%m-%d %H:%M:%S')}\n")
                self.lock_fd.write(f"{self.operation}\n")
                self.lock_fd.flush()

                logger.debug(f"Acquired lock: {self.lock_file}")
                return True

            except OSError:
                lock_info = self._read_lock_info()
                if self.timeout == 0 or time.time() - start_time >= self.timeout:
                    self.lock_fd.close()
                    self.lock_fd = None
                    raise LockError(
                        f"Another {lock_info['operation']} is in progress.\n"
                        f"Lock held by PID {lock_info['pid']} since {lock_info['time']}\n"
                        f"Wait for the other operation to complete, or remove {self.lock_file} if stale."
                    )

                time.sleep(0.5)

    def release(self):
        """Release the lock."""
        if self.lock_fd is None:
            return

        # Remove the file while still holding it
        try:
            self.lock_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Error removing lock file: {e}")

        try:
            fcntl.flock(self.lock_fd.fileno(), fcntl.LOCK_UN)
            self.lock_fd.close()
            logger.debug(f"Released lock: {self.lock_file}")
        except OSError as e:
            logger.warning(f"Error releasing lock: {e}")
        finally:
            self.lock_fd = None

    def _holds_current_file(self) -> bool:
        try:
            return os.stat(self.lock_file).st_ino == os.fstat(self.lock_fd.fileno()).st_ino
        except FileNotFoundError:
            return False

    def _read_lock_info(self) -> dict:
        """Read info from lock file about who holds it."""
        info = {'pid': 'unknown', 'time': 'unknown', 'operation': 'operation'}
        try:
            with open(self.lock_file) as f:
                lines = [line.strip() for line in f.readlines()]
        except OSError:
            return info

        if len(lines) >= 2:
            info['pid'], info['time'] = lines[0], lines[1]
        if len(lines) >= 3 and lines[2]:
            info['operation'] = lines[2]
        return info

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


@contextmanager
def deploy_lock(app_dir: Path, operation: str = "deploy", timeout: int = 0):
    """Context manager guarding a mutating operation on one app.

    Usage:
        with deploy_lock(app.paths.app_dir, "scale"):
            ...

    Raises:
        LockError: If another operation holds the app's lock
    """
    lock = DeployLock(Path(app_dir) / LOCK_FILENAME, operation=operation, timeout=timeout)
    lock.acquire()
    try:
        yield lock
    finally:
        lock.release()


def check_lock_status(app_dir: Path) -> Optional[dict]:
    """Return holder info if the app's lock is held, None if free."""
    lock_path = Path(app_dir) / LOCK_FILENAME
    if not lock_path.exists():
        return None

    with open(lock_path) as f:
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
            # Stale lock file
            return None
        except OSError:
            lines = [line.strip() for line in f.readlines()]

    info = {'pid': 'unknown', 'time': 'unknown', 'operation': 'unknown', 'lock_file': str(lock_path)}
    if len(lines) >= 2:
        info['pid'], info['time'] = lines[0], lines[1]
    if len(lines) >= 3:
        info['operation'] = lines[2]
    return info
