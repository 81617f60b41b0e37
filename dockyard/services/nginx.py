"""Nginx site configuration for web apps."""
import re
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from dockyard.core.config import DockyardConfig, get_config
from dockyard.core.errors import SetupError
from dockyard.core.logger import get_logger
from dockyard.core.template_loader import TemplateLoader
from dockyard.models.app import AppConfig
from dockyard.services.system import privileged, write_privileged

logger = get_logger(__name__)

APP_TEMPLATE_NAME = "nginx.conf.template"
DEFAULT_SITE_NAME = "000-default"


def upstream_servers(ports: Iterable[int]) -> str:
    """Upstream block body, one server line per web container port."""
    return "".join(
        f"    server localhost:{port} max_fails=3 fail_timeout=30s;\n" for port in ports
    )


def replace_upstream(content: str, upstream_name: str, ports: Iterable[int]) -> Optional[str]:
    """Swap the server lines inside `upstream <name> { ... }`.

    Other directives in the block (least_conn, keepalive) are kept.
    Returns None when the block is missing.
    """
    pattern = re.compile(rf"(upstream\s+{re.escape(upstream_name)}\s*\{{)(.*?)(\}})", re.S)
    match = pattern.search(content)
    if match is None:
        return None

    kept = [
        line for line in match.group(2).splitlines()
        if line.strip() and not line.strip().startswith("server ")
    ]
    body = "\n" + "".join(f"{line}\n" for line in kept) + upstream_servers(ports)
    return content[:match.start(2)] + body + content[match.end(2):]


class NginxManager:
    """Renders, installs, tests and reloads nginx site configs."""

    def __init__(
        self,
        mock: bool = False,
        config: Optional[DockyardConfig] = None,
        templates: Optional[TemplateLoader] = None,
    ):
        self.mock = mock
        config = config or get_config()
        self.available_dir = config.nginx_available
        self.enabled_dir = config.nginx_enabled
        self.templates = templates or TemplateLoader()

    def site_path(self, app: AppConfig) -> Path:
        return self.available_dir / app.name

    def enabled_path(self, app: AppConfig) -> Path:
        return self.enabled_dir / app.name

    def is_enabled(self, app: AppConfig) -> bool:
        return self.enabled_path(app).exists()

    def render_site(self, app: AppConfig, ports: Iterable[int]) -> str:
        """Fill the app's nginx.conf.template, or the packaged default."""
        context = {
            "NGINX_UPSTREAM_NAME": app.nginx.upstream_name,
            "DOMAIN": app.domain,
            "DOMAIN_INTERNAL": app.domain_internal or "",
            "SERVER_NAMES": " ".join(app.cert_domains()),
            "APP_NAME": app.name,
            "UPSTREAM_SERVERS": upstream_servers(ports).rstrip("\n"),
        }
        if app.config_dir is not None:
            custom = app.config_dir / APP_TEMPLATE_NAME
            if custom.exists():
                return self.templates.render_string(custom.read_text(), **context)
        return self.templates.render("nginx/app.conf.j2", **context)

    def find_domain_conflicts(self, app: AppConfig) -> List[str]:
        """Names of other enabled sites whose server_name claims the app's domain."""
        if not self.enabled_dir.is_dir():
            return []

        pattern = re.compile(rf"server_name.*{re.escape(app.domain)}")
        conflicts = []
        for site in sorted(self.enabled_dir.iterdir()):
            if site.name == app.name or not site.is_file():
                continue
            try:
                content = site.read_text()
            except OSError as e:
                logger.warning(f"Cannot read {site}: {e}")
                continue
            if any(pattern.search(line) for line in content.splitlines()):
                conflicts.append(site.name)
        return conflicts

    def test_config(self) -> Tuple[bool, str]:
        """Run nginx -t, returning (ok, combined output)."""
        if self.mock:
            logger.info("MOCK: Would run nginx -t")
            return True, ""

        result = subprocess.run(
            privileged(["nginx", "-t"]), capture_output=True, text=True, check=False
        )
        output = (result.stdout or "") + (result.stderr or "")
        return result.returncode == 0 and "successful" in output, output

    def reload(self) -> bool:
        if self.mock:
            logger.info("MOCK: Would reload nginx")
            return True

        try:
            subprocess.run(
                privileged(["systemctl", "reload", "nginx"]),
                capture_output=True,
                text=True,
                check=True,
            )
            return True
        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to reload nginx: {e}")
            if e.stderr:
                logger.error(f"Error output: {e.stderr}")
            return False

    def _write(self, path: Path, content: str) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would write {path}")
            return True
        try:
            write_privileged(path, content)
            return True
        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to write {path}: {e}")
            return False

    def _link(self, source: Path, link: Path) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would link {link} -> {source}")
            return True
        try:
            subprocess.run(
                privileged(["ln", "-sf", str(source), str(link)]),
                capture_output=True,
                text=True,
                check=True,
            )
            return True
        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to enable {source.name}: {e}")
            return False

    def enable_site(self, app: AppConfig) -> bool:
        """Symlink the site into sites-enabled, test and reload."""
        if not self._link(self.site_path(app), self.enabled_path(app)):
            return False
        ok, output = self.test_config()
        if not ok:
            logger.error(f"✗ nginx config test failed after enabling {app.name}:\n{output}")
            return False
        if not self.reload():
            return False
        logger.info(f"✓ Enabled nginx site {app.name}")
        return True

    def install_site(self, app: AppConfig, ports: Iterable[int]) -> str:
        """Write the site config at setup time.

        Returns:
            "enabled" when the site is live, "deferred" when it references a
            certificate that does not exist yet

        Raises:
            SetupError: On domain conflicts or any other nginx test failure
        """
        conflicts = self.find_domain_conflicts(app)
        if conflicts:
            raise SetupError(
                f"Domain conflict: {app.domain} is already claimed by "
                f"{', '.join(conflicts)}. Remove it from those configs first."
            )
        logger.info("✓ No domain conflicts found")

        site = self.site_path(app)
        if not self.mock and site.exists() and "ssl_certificate" in site.read_text():
            logger.info(f"{site} already carries TLS settings, refreshing upstream only")
            if not self.update_upstream(app, list(ports)):
                raise SetupError(f"Could not update upstream in {site}")
            return "enabled"

        if not self._write(self.site_path(app), self.render_site(app, ports)):
            raise SetupError(f"Could not write {self.site_path(app)}")

        # Test with the site enabled; nginx only reads sites-enabled
        if not self._link(self.site_path(app), self.enabled_path(app)):
            raise SetupError(f"Could not enable nginx site {app.name}")

        ok, output = self.test_config()
        if ok:
            self.reload()
            logger.info("✓ Nginx configuration created and loaded")
            return "enabled"

        self._unlink(self.enabled_path(app))
        if "cannot load certificate" in output:
            logger.warning("Nginx config references SSL certificates that don't exist yet")
            logger.info("The site will be enabled after SSL setup completes")
            return "deferred"

        raise SetupError(f"Nginx configuration test failed:\n{output}")

    def _unlink(self, path: Path) -> None:
        if self.mock:
            return
        subprocess.run(privileged(["rm", "-f", str(path)]), capture_output=True, check=False)

    def update_upstream(self, app: AppConfig, ports: List[int]) -> bool:
        """Point the app's upstream at ports, restoring the old config on failure.

        Only the server lines of the upstream block change, so TLS blocks
        added by certbot survive.
        """
        site = self.site_path(app)
        if self.mock:
            logger.info(f"MOCK: Would point {app.nginx.upstream_name} at ports {ports}")
            return True
        if not site.exists():
            logger.warning(f"No nginx site for {app.name} at {site}, skipping upstream update")
            return True

        previous = site.read_text()
        updated = replace_upstream(previous, app.nginx.upstream_name, ports)
        if updated is None:
            logger.error(f"✗ No upstream {app.nginx.upstream_name} block in {site}")
            return False
        if updated == previous:
            logger.info(f"Nginx upstream {app.nginx.upstream_name} already up to date")
            return True
        if not self._write(site, updated):
            return False

        ok, output = self.test_config()
        if ok:
            if not self.reload():
                return False
            logger.info(f"✓ Nginx upstream {app.nginx.upstream_name} → ports {', '.join(map(str, ports))}")
            return True

        logger.error(f"✗ Nginx config test failed, restoring previous config:\n{output}")
        self._write(site, previous)
        self.reload()
        return False

    def install_default_server(self) -> bool:
        """Install the catch-all server that rejects unknown hosts, once."""
        target = self.available_dir / DEFAULT_SITE_NAME
        if not self.mock and target.exists():
            logger.info("Default catch-all server already configured")
            return True

        content = self.templates.path("nginx/default-server.conf").read_text()
        if not self._write(target, content):
            return False
        if not self._link(target, self.enabled_dir / DEFAULT_SITE_NAME):
            return False

        ok, output = self.test_config()
        if not ok:
            logger.error(f"✗ Default server configuration test failed:\n{output}")
            return False
        self.reload()
        logger.info("✓ Default catch-all server configured (rejects unknown domains)")
        return True
