"""Tests for nginx site rendering and upstream updates."""
from unittest.mock import Mock, patch

import pytest

from dockyard.core.errors import SetupError
from dockyard.models.app import AppConfig
from dockyard.services.nginx import NginxManager, replace_upstream, upstream_servers

SITE_WITH_TLS = """upstream shop_api_backend {
    least_conn;
    server localhost:3000 max_fails=3 fail_timeout=30s;
    server localhost:3001 max_fails=3 fail_timeout=30s;
}

server {
    listen 443 ssl;
    server_name api.shop.com;
    ssl_certificate /etc/letsencrypt/live/api.shop.com/fullchain.pem; # managed by Certbot
    location / {
        proxy_pass http://shop_api_backend;
    }
}
"""


def nginx_run(test_output="nginx: configuration file /etc/nginx/nginx.conf test is successful", test_code=0):
    """subprocess.run side effect answering nginx -t with the given result."""
    calls = []

    def run(cmd, **kwargs):
        calls.append(cmd)
        if "nginx" in cmd and "-t" in cmd:
            return Mock(returncode=test_code, stdout="", stderr=test_output)
        return Mock(returncode=0, stdout="", stderr="")

    run.calls = calls
    return run


@pytest.fixture
def nginx(dockyard_config):
    dockyard_config.nginx_available.mkdir(parents=True)
    dockyard_config.nginx_enabled.mkdir(parents=True)
    return NginxManager()


class TestUpstream:

    def test_upstream_servers(self):
        assert upstream_servers([3000, 3002]) == (
            "    server localhost:3000 max_fails=3 fail_timeout=30s;\n"
            "    server localhost:3002 max_fails=3 fail_timeout=30s;\n"
        )

    def test_replace_keeps_directives_and_tls(self):
        updated = replace_upstream(SITE_WITH_TLS, "shop_api_backend", [3004, 3005])

        assert "localhost:3000" not in updated
        assert "server localhost:3004 max_fails=3 fail_timeout=30s;" in updated
        assert "server localhost:3005 max_fails=3 fail_timeout=30s;" in updated
        assert "least_conn;" in updated
        assert "# managed by Certbot" in updated
        assert updated.endswith(SITE_WITH_TLS[SITE_WITH_TLS.index("}\n\nserver"):])

    def test_replace_missing_block(self):
        assert replace_upstream(SITE_WITH_TLS, "blog_backend", [3000]) is None


class TestRenderSite:

    def test_packaged_template(self, nginx, nextjs_app):
        content = nginx.render_site(nextjs_app, [3100, 3101])

        assert "upstream shop_web_backend {" in content
        assert "server_name shop.com www.shop.com;" in content
        assert "server localhost:3101 max_fails=3 fail_timeout=30s;" in content
        assert "proxy_pass http://shop_web_backend;" in content

    def test_app_template_wins(self, nginx, tmp_path):
        config_dir = tmp_path / "DevOps" / "apps" / "shop-web"
        config_dir.mkdir(parents=True)
        (config_dir / "nginx.conf.template").write_text(
            "upstream {{NGINX_UPSTREAM_NAME}} {\n{{UPSTREAM_SERVERS}}\n}\n# {{DOMAIN}}\n"
        )
        app = AppConfig(type="nextjs", name="shop-web", domain="shop.com", repo={"url": "https://x.org/w.git"})
        app.config_dir = config_dir

        content = nginx.render_site(app, [3000])

        assert content == (
            "upstream shop_web_backend {\n"
            "    server localhost:3000 max_fails=3 fail_timeout=30s;\n"
            "}\n# shop.com\n"
        )


class TestDomainConflicts:

    def test_other_site_claiming_domain(self, nginx, rails_app, dockyard_config):
        (dockyard_config.nginx_enabled / "legacy-api").write_text("server {\n    server_name api.shop.com;\n}\n")
        (dockyard_config.nginx_enabled / "shop-api").write_text("server_name api.shop.com;\n")
        (dockyard_config.nginx_enabled / "blog").write_text("server_name blog.io;\n")

        assert nginx.find_domain_conflicts(rails_app) == ["legacy-api"]

    def test_install_refuses_conflicting_domain(self, nginx, rails_app, dockyard_config):
        (dockyard_config.nginx_enabled / "legacy-api").write_text("server_name api.shop.com;\n")

        with pytest.raises(SetupError, match="legacy-api"):
            nginx.install_site(rails_app, [3000])


class TestInstallSite:

    def test_enabled(self, nginx, rails_app):
        run = nginx_run()
        with patch('subprocess.run', side_effect=run):
            assert nginx.install_site(rails_app, [3000, 3001]) == "enabled"

        assert "localhost:3001" in nginx.site_path(rails_app).read_text()
        assert any("ln" in cmd for cmd in run.calls)
        assert any("reload" in cmd for cmd in run.calls)

    def test_deferred_until_certificate_exists(self, nginx, rails_app):
        run = nginx_run(test_output='cannot load certificate "/etc/letsencrypt/live/api.shop.com/fullchain.pem"', test_code=1)
        with patch('subprocess.run', side_effect=run):
            assert nginx.install_site(rails_app, [3000]) == "deferred"

        assert any("rm" in cmd for cmd in run.calls)
        assert not any("reload" in cmd for cmd in run.calls)

    def test_other_test_failures_raise(self, nginx, rails_app):
        run = nginx_run(test_output="unknown directive \"proxy_pas\"", test_code=1)
        with patch('subprocess.run', side_effect=run):
            with pytest.raises(SetupError, match="unknown directive"):
                nginx.install_site(rails_app, [3000])

    def test_existing_tls_site_only_gets_new_upstream(self, nginx, rails_app):
        nginx.site_path(rails_app).write_text(SITE_WITH_TLS)

        with patch('subprocess.run', side_effect=nginx_run()):
            assert nginx.install_site(rails_app, [3007]) == "enabled"

        content = nginx.site_path(rails_app).read_text()
        assert "localhost:3007" in content
        assert "ssl_certificate" in content


class TestUpdateUpstream:

    def test_rewrites_and_reloads(self, nginx, rails_app):
        nginx.site_path(rails_app).write_text(SITE_WITH_TLS)
        run = nginx_run()

        with patch('subprocess.run', side_effect=run):
            assert nginx.update_upstream(rails_app, [3002, 3003])

        content = nginx.site_path(rails_app).read_text()
        assert "localhost:3002" in content and "localhost:3000" not in content
        assert any("reload" in cmd for cmd in run.calls)

    def test_failed_test_restores_previous(self, nginx, rails_app):
        nginx.site_path(rails_app).write_text(SITE_WITH_TLS)

        with patch('subprocess.run', side_effect=nginx_run(test_output="emerg", test_code=1)):
            assert not nginx.update_upstream(rails_app, [3002])

        assert nginx.site_path(rails_app).read_text() == SITE_WITH_TLS

    def test_unchanged_ports_skip_reload(self, nginx, rails_app):
        nginx.site_path(rails_app).write_text(SITE_WITH_TLS)

        with patch('subprocess.run') as mock_run:
            assert nginx.update_upstream(rails_app, [3000, 3001])
        mock_run.assert_not_called()

    def test_missing_site_is_skipped(self, nginx, rails_app):
        with patch('subprocess.run') as mock_run:
            assert nginx.update_upstream(rails_app, [3000])
        mock_run.assert_not_called()

    def test_missing_upstream_block(self, nginx, rails_app):
        nginx.site_path(rails_app).write_text("server { listen 80; }\n")

        assert not nginx.update_upstream(rails_app, [3000])


def test_mock_mode_touches_nothing(rails_app, dockyard_config):
    nginx = NginxManager(mock=True)
    with patch('subprocess.run') as mock_run:
        assert nginx.install_site(rails_app, [3000]) == "enabled"
        assert nginx.update_upstream(rails_app, [3001])
    mock_run.assert_not_called()
    assert not nginx.site_path(rails_app).exists()
