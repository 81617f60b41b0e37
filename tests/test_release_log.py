"""Tests for the shared release log."""
from dockyard.core.release_log import HEADER, ReleaseLog
from dockyard.models.deployment import DeploymentResult


def test_entries_are_appended_after_header(tmp_path, rails_app):
    log = ReleaseLog(tmp_path / "release.log")
    result = DeploymentResult(app_name="shop-api", image_tag="20261018_100000", scale=2, commit="abc1234def")

    log.log_start(rails_app, commit="abc1234def")
    log.log_success(rails_app, result)

    content = (tmp_path / "release.log").read_text()
    assert content.startswith(HEADER)
    assert "DEPLOYMENT STARTED - shop-api" in content
    assert "✓ DEPLOYMENT SUCCESS - shop-api" in content
    assert "  Image Tag:     20261018_100000" in content
    assert "  Scale:         2 containers" in content
    assert content.count("# Deployment Release Log") == 1


def test_failure_block(tmp_path, nextjs_app):
    log = ReleaseLog(tmp_path / "release.log")

    log.log_failure(nextjs_app, "Health check failed on port 3001")

    content = log.path.read_text()
    assert "✗ DEPLOYMENT FAILED - shop-web" in content
    assert "ERROR DETAILS\n" in content
    assert "Health check failed on port 3001\n" in content
    assert " Git Commit:       N/A" in content
    assert "dockyard logs shop-web" in content


def test_recent_returns_last_markers(tmp_path, rails_app, nextjs_app):
    log = ReleaseLog(tmp_path / "release.log")
    log.log_start(rails_app)
    log.log_failure(rails_app, "boom")
    log.log_start(nextjs_app)

    recent = log.recent(2)

    assert len(recent) == 2
    assert "DEPLOYMENT FAILED - shop-api" in recent[0]
    assert "DEPLOYMENT STARTED - shop-web" in recent[1]


def test_recent_without_log(tmp_path):
    assert ReleaseLog(tmp_path / "missing.log").recent() == []


def test_default_path_comes_from_config(dockyard_config):
    assert ReleaseLog().path == dockyard_config.devops_dir / "release.log"
