"""Retention for docker images, image archives, database dumps and logs."""
import time
from datetime import datetime
from pathlib import Path
from typing import List, Tuple

from dockyard.core.logger import get_logger
from dockyard.models.app import AppConfig
from dockyard.models.config import ConfigValidationError
from dockyard.models.container import ImageBackup
from dockyard.services.docker import DockerClient

logger = get_logger(__name__)

LOG_RETENTION_DAYS = 30
BACKUP_SUFFIX = ".tar.gz"


def image_backup_path(app: AppConfig, tag: str) -> Path:
    return app.paths.image_backup_dir / f"{app.image_name}_{tag}{BACKUP_SUFFIX}"


def cleanup_old_images(docker: DockerClient, image: str, keep: int) -> int:
    """Remove all but the newest keep image IDs of a repository."""
    stale = docker.list_image_ids(image)[keep:]
    if not stale:
        logger.info(f"No old images to clean up for {image}")
        return 0
    removed = docker.remove_images(stale)
    logger.info(f"✓ Removed {removed} old image(s) of {image}")
    return removed


def cleanup_old_image_backups(backup_dir: Path, keep: int) -> int:
    """Keep the newest keep *.tar.gz archives by modification time."""
    backup_dir = Path(backup_dir)
    if not backup_dir.is_dir():
        return 0

    archives = sorted(
        backup_dir.glob(f"*{BACKUP_SUFFIX}"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    removed = 0
    for archive in archives[keep:]:
        archive.unlink()
        logger.info(f"Removed old image backup {archive.name}")
        removed += 1
    return removed


def _remove_older_than(directory: Path, pattern: str, days: int) -> int:
    directory = Path(directory)
    if not directory.is_dir():
        return 0

    cutoff = time.time() - days * 86400
    removed = 0
    for path in directory.glob(pattern):
        if path.is_file() and path.stat().st_mtime < cutoff:
            path.unlink()
            removed += 1
    return removed


def cleanup_old_backups(backup_dir: Path, retention_days: int) -> int:
    """Delete *.sql.gz database dumps older than retention_days."""
    removed = _remove_older_than(backup_dir, "*.sql.gz", retention_days)
    if removed:
        logger.info(f"✓ Removed {removed} database backup(s) older than {retention_days} days")
    return removed


def cleanup_old_logs(log_dir: Path, days: int = LOG_RETENTION_DAYS) -> int:
    removed = _remove_older_than(log_dir, "*.log", days)
    if removed:
        logger.info(f"✓ Removed {removed} log file(s) older than {days} days")
    return removed


def list_image_backups(app: AppConfig) -> List[ImageBackup]:
    """Saved image archives of an app, newest first."""
    backup_dir = app.paths.image_backup_dir
    if not backup_dir.is_dir():
        return []

    prefix = f"{app.image_name}_"
    backups = []
    for path in backup_dir.glob(f"{prefix}*{BACKUP_SUFFIX}"):
        tag = path.name[len(prefix):-len(BACKUP_SUFFIX)]
        stat = path.stat()
        backups.append(ImageBackup(
            tag=tag,
            path=path,
            size=stat.st_size,
            created=datetime.fromtimestamp(stat.st_mtime),
        ))
    return sorted(backups, key=lambda b: b.created, reverse=True)


def run_app_cleanup(app: AppConfig, docker: DockerClient) -> None:
    """Daily maintenance for one app, run from its crontab entry."""
    logger.info(f"Cleaning up {app.name}")

    if app.images.save_backups:
        cleanup_old_image_backups(app.paths.image_backup_dir, app.images.max_backups)
    if app.images.auto_cleanup:
        cleanup_old_images(docker, app.image_name, app.images.max_versions)
    if app.has_database and app.backup.enabled:
        cleanup_old_backups(app.paths.backup_dir, app.backup.retention_days)
    cleanup_old_logs(app.paths.log_dir)

    logger.info(f"✓ Cleanup complete for {app.name}")


def run_fleet_cleanup(loader, docker: DockerClient) -> Tuple[int, int]:
    """Clean up every configured app.

    A failing app is logged and counted; the remaining apps still run.

    Returns:
        (processed, failed)
    """
    processed = failed = 0
    for name in loader.list_apps():
        try:
            run_app_cleanup(loader.load(name), docker)
            processed += 1
        except (ConfigValidationError, OSError) as e:
            logger.error(f"✗ Cleanup failed for {name}: {e}")
            failed += 1
    logger.info(f"Fleet cleanup finished: {processed} processed, {failed} failed")
    return processed, failed
