"""Tests for image, backup and log retention."""
import os
import time

from dockyard.config.loader import AppConfigLoader
from dockyard.core.retention import (
    cleanup_old_backups,
    cleanup_old_image_backups,
    cleanup_old_images,
    cleanup_old_logs,
    image_backup_path,
    list_image_backups,
    run_app_cleanup,
    run_fleet_cleanup,
)

from conftest import write_app_config

DAY = 86400


def touch(path, age_days=0.0, content=b"x"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    mtime = time.time() - age_days * DAY
    os.utime(path, (mtime, mtime))
    return path


def test_cleanup_old_images_keeps_newest(fake_docker):
    for tag in ("1", "2", "3", "4"):
        fake_docker.add_image(f"shop-api:{tag}")

    assert cleanup_old_images(fake_docker, "shop-api", keep=2) == 2
    assert fake_docker.removed_images == ["id002", "id001"]


def test_cleanup_old_images_nothing_to_do(fake_docker):
    fake_docker.add_image("shop-api:1")

    assert cleanup_old_images(fake_docker, "shop-api", keep=5) == 0
    assert fake_docker.removed_images == []


def test_cleanup_old_image_backups_by_mtime(tmp_path):
    newest = touch(tmp_path / "shop-api_20261018_100000.tar.gz", 0)
    middle = touch(tmp_path / "shop-api_20261017_100000.tar.gz", 1)
    oldest = touch(tmp_path / "shop-api_20261016_100000.tar.gz", 2)
    notes = touch(tmp_path / "notes.txt", 10)

    assert cleanup_old_image_backups(tmp_path, keep=2) == 1
    assert newest.exists() and middle.exists() and notes.exists()
    assert not oldest.exists()


def test_cleanup_old_backups_and_logs(tmp_path):
    old_dump = touch(tmp_path / "backups" / "shop_api_production_20260801_030000.sql.gz", 40)
    new_dump = touch(tmp_path / "backups" / "shop_api_production_20261017_030000.sql.gz", 1)
    old_log = touch(tmp_path / "logs" / "production.log", 31)
    new_log = touch(tmp_path / "logs" / "deploy.log", 2)

    assert cleanup_old_backups(tmp_path / "backups", retention_days=30) == 1
    assert cleanup_old_logs(tmp_path / "logs") == 1
    assert not old_dump.exists() and not old_log.exists()
    assert new_dump.exists() and new_log.exists()


def test_missing_directories_are_fine(tmp_path):
    assert cleanup_old_image_backups(tmp_path / "none", keep=1) == 0
    assert cleanup_old_backups(tmp_path / "none", 7) == 0


def test_list_image_backups_newest_first(rails_app):
    touch(image_backup_path(rails_app, "20261016_100000"), 2, b"a" * 10)
    touch(image_backup_path(rails_app, "20261018_100000"), 0, b"b" * 20)
    touch(rails_app.paths.image_backup_dir / "other-app_20261018_120000.tar.gz", 0)

    backups = list_image_backups(rails_app)

    assert [b.tag for b in backups] == ["20261018_100000", "20261016_100000"]
    assert backups[0].size == 20
    assert backups[0].path.name == "shop-api_20261018_100000.tar.gz"


def test_run_app_cleanup(rails_app, fake_docker):
    for index in range(22):
        touch(image_backup_path(rails_app, f"202610{index:02d}_100000"), 30 - index)
    touch(rails_app.paths.backup_dir / "shop_api_production_20260101_030000.sql.gz", 60)
    for tag in range(21):
        fake_docker.add_image(f"shop-api:{tag}")

    run_app_cleanup(rails_app, fake_docker)

    assert len(list(rails_app.paths.image_backup_dir.iterdir())) == 20
    assert list(rails_app.paths.backup_dir.iterdir()) == []
    assert fake_docker.removed_images == ["id001"]


def test_run_fleet_cleanup_counts_failures(dockyard_config, fake_docker):
    apps_dir = dockyard_config.apps_config_dir
    write_app_config(apps_dir, "shop-web", {
        "type": "nextjs", "domain": "shop.com", "repo": {"url": "https://x.org/w.git"},
    })
    write_app_config(apps_dir, "broken", {"type": "rails"})

    assert run_fleet_cleanup(AppConfigLoader(), fake_docker) == (1, 1)
