"""Tests for app config loading and runtime settings."""
import pytest

from dockyard.config.loader import AppConfigLoader
from dockyard.core.config import DockyardConfig, get_config, set_config
from dockyard.models.config import ConfigValidationError

from conftest import write_app_config

RAILS_CONFIG = {
    "type": "rails",
    "domain": "api.shop.com",
    "repo": {"url": "https://github.com/acme/shop-api.git"},
    "containers": {"default_scale": 3, "worker_count": 2},
}


@pytest.fixture
def apps_dir(tmp_path):
    return tmp_path / "DevOps" / "apps"


class TestAppConfigLoader:

    def test_default_apps_dir_comes_from_config(self, dockyard_config):
        assert AppConfigLoader().apps_dir == dockyard_config.devops_dir / "apps"

    def test_load(self, apps_dir):
        write_app_config(apps_dir, "shop-api", RAILS_CONFIG)

        app = AppConfigLoader(apps_dir).load("shop-api")

        assert app.name == "shop-api"
        assert app.containers.default_scale == 3
        assert app.containers.worker_count == 2
        assert app.config_dir == apps_dir / "shop-api"

    def test_missing_config_lists_available_apps(self, apps_dir):
        write_app_config(apps_dir, "shop-api", RAILS_CONFIG)

        with pytest.raises(ConfigValidationError, match="Configured apps: shop-api"):
            AppConfigLoader(apps_dir).load("blog")

    def test_name_must_match_directory(self, apps_dir):
        write_app_config(apps_dir, "shop-api", {**RAILS_CONFIG, "name": "other-api"})

        with pytest.raises(ConfigValidationError, match="does not match directory"):
            AppConfigLoader(apps_dir).load("shop-api")

    def test_invalid_yaml(self, apps_dir):
        path = apps_dir / "broken" / "app.yml"
        path.parent.mkdir(parents=True)
        path.write_text("type: rails\n  domain: [unclosed\n")

        with pytest.raises(ConfigValidationError, match="Invalid YAML"):
            AppConfigLoader(apps_dir).load("broken")

    def test_empty_file(self, apps_dir):
        path = apps_dir / "empty" / "app.yml"
        path.parent.mkdir(parents=True)
        path.write_text("")

        with pytest.raises(ConfigValidationError, match="empty"):
            AppConfigLoader(apps_dir).load("empty")

    def test_validation_errors_name_the_field(self, apps_dir):
        write_app_config(apps_dir, "shop-api", {**RAILS_CONFIG, "containers": {"default_scale": 0}})

        with pytest.raises(ConfigValidationError) as exc_info:
            AppConfigLoader(apps_dir).load("shop-api")

        assert "containers.default_scale" in str(exc_info.value)

    def test_list_apps_skips_templates_and_dirs_without_config(self, apps_dir):
        write_app_config(apps_dir, "shop-api", RAILS_CONFIG)
        write_app_config(apps_dir, "_template", RAILS_CONFIG)
        (apps_dir / "notes").mkdir()

        assert AppConfigLoader(apps_dir).list_apps() == ["shop-api"]

    def test_list_apps_without_directory(self, tmp_path):
        assert AppConfigLoader(tmp_path / "missing").list_apps() == []


class TestDockyardConfig:

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DOCKYARD_HOME", str(tmp_path / "ops"))
        monkeypatch.setenv("DOCKYARD_APPS_ROOT", str(tmp_path / "srv"))
        monkeypatch.setenv("DOCKYARD_MAX_SCALE", "4")
        monkeypatch.setenv("SENDGRID_API_KEY", "SG.key")
        monkeypatch.setenv("DEPLOYMENT_EMAIL_ENABLED", "false")

        config = DockyardConfig.from_env(system_environment=tmp_path / "environment")

        assert config.devops_dir == tmp_path / "ops"
        assert config.apps_root == tmp_path / "srv"
        assert config.max_scale == 4
        assert config.sendgrid_api_key == "SG.key"
        assert config.email_enabled is False
        assert config.release_log == tmp_path / "ops" / "release.log"

    def test_sendgrid_key_falls_back_to_system_environment(self, monkeypatch, tmp_path):
        monkeypatch.delenv("SENDGRID_API_KEY", raising=False)
        environment = tmp_path / "environment"
        environment.write_text('PATH="/usr/bin"\nSENDGRID_API_KEY="SG.from-file"\n')

        config = DockyardConfig.from_env(system_environment=environment)

        assert config.sendgrid_api_key == "SG.from-file"

    def test_set_config_overrides_global(self, tmp_path):
        custom = DockyardConfig(devops_dir=tmp_path / "custom")
        set_config(custom)
        assert get_config() is custom
