"""Let's Encrypt certificates via certbot, with DNS pre-checks."""
import ipaddress
import socket
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Tuple

import requests

from dockyard.core.logger import get_logger
from dockyard.models.app import AppConfig
from dockyard.services.nginx import NginxManager
from dockyard.services.system import command_exists, privileged

logger = get_logger(__name__)

PUBLIC_IP_SERVICES = ("https://ifconfig.me/ip", "https://api.ipify.org")
EXPIRY_WARNING_DAYS = 30


class SslStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SslResult:
    status: SslStatus
    message: str = ""


@dataclass
class Certificate:
    """One entry of `certbot certificates`."""
    name: str
    domains: List[str] = field(default_factory=list)
    expiry: Optional[datetime] = None

    def missing(self, required: List[str]) -> List[str]:
        return [domain for domain in required if domain not in self.domains]

    def days_left(self, now: Optional[datetime] = None) -> Optional[int]:
        if self.expiry is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (self.expiry - now).days


def parse_certificates(output: str) -> List[Certificate]:
    """Parse the human-readable output of `certbot certificates`."""
    certificates: List[Certificate] = []
    current: Optional[Certificate] = None

    for raw_line in output.splitlines():
        line = raw_line.strip()
        if line.startswith("Certificate Name:"):
            current = Certificate(name=line.split(":", 1)[1].strip())
            certificates.append(current)
        elif current is None:
            continue
        elif line.startswith("Domains:"):
            current.domains = line.split(":", 1)[1].split()
        elif line.startswith("Expiry Date:"):
            # "Expiry Date: 2025-03-01 12:00:00+00:00 (VALID: 89 days)"
            value = line.split(":", 1)[1].split("(")[0].strip()
            try:
                expiry = datetime.fromisoformat(value)
                current.expiry = expiry if expiry.tzinfo else expiry.replace(tzinfo=timezone.utc)
            except ValueError:
                logger.debug(f"Unparseable expiry date: {value}")

    return certificates


class CertbotManager:
    """Wraps the certbot CLI."""

    def __init__(self, mock: bool = False):
        self.mock = mock

    def installed(self) -> bool:
        return True if self.mock else command_exists("certbot")

    def _certbot(self, args: List[str]) -> subprocess.CompletedProcess:
        return subprocess.run(
            privileged(["certbot", *args]), capture_output=True, text=True, check=False
        )

    def certificates(self) -> List[Certificate]:
        if self.mock:
            return []
        result = self._certbot(["certificates"])
        if result.returncode != 0:
            logger.error(f"certbot certificates failed: {result.stderr.strip()}")
            return []
        return parse_certificates(result.stdout)

    def find(self, name: str) -> Optional[Certificate]:
        for certificate in self.certificates():
            if certificate.name == name:
                return certificate
        return None

    def account_email(self) -> Optional[str]:
        """Email of the registered ACME account, None without an account."""
        if self.mock:
            return "mock@example.com"

        result = self._certbot(["show_account"])
        if result.returncode != 0:
            return None
        for line in result.stdout.splitlines():
            if "Email contact:" in line:
                return line.split(":", 1)[1].strip() or None
        return None

    def obtain(self, domains: List[str], email: Optional[str] = None, expand: bool = False) -> Tuple[bool, str]:
        """Request (or expand) a certificate and let certbot wire up nginx."""
        args = ["--nginx"]
        for domain in domains:
            args += ["-d", domain]
        args += ["--email", email] if email else ["--register-unsafely-without-email"]
        args += ["--non-interactive", "--agree-tos", "--redirect"]
        if expand:
            args.append("--expand")

        if self.mock:
            logger.info(f"MOCK: Would run certbot {' '.join(args)}")
            return True, ""

        logger.info(f"Requesting certificate for {', '.join(domains)}")
        result = self._certbot(args)
        output = (result.stdout or "") + (result.stderr or "")
        return result.returncode == 0, output

    def install(self) -> bool:
        if self.mock:
            logger.info("MOCK: Would install certbot")
            return True
        try:
            subprocess.run(
                privileged(["apt-get", "install", "-y", "certbot", "python3-certbot-nginx"]),
                capture_output=True,
                text=True,
                check=True,
            )
            logger.info("✓ Installed certbot")
            return True
        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to install certbot: {e}")
            return False

    def ensure_renewal_timer(self) -> bool:
        if self.mock:
            logger.info("MOCK: Would enable certbot.timer")
            return True

        active = subprocess.run(
            ["systemctl", "is-active", "--quiet", "certbot.timer"], check=False
        )
        if active.returncode == 0:
            logger.info("✓ Certificate auto-renewal is active")
            return True

        result = subprocess.run(
            privileged(["systemctl", "enable", "--now", "certbot.timer"]),
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            logger.warning(f"Could not enable certbot.timer: {result.stderr.strip()}")
            return False
        logger.info("✓ Enabled certificate auto-renewal (certbot.timer)")
        return True


class DnsChecker:
    """Verifies that domains point at this server before asking for a certificate."""

    def __init__(
        self,
        mock: bool = False,
        resolver: Callable[[str], Tuple[str, List[str], List[str]]] = socket.gethostbyname_ex,
    ):
        self.mock = mock
        self.resolver = resolver

    def public_ipv4(self) -> Optional[str]:
        if self.mock:
            return "203.0.113.10"

        for url in PUBLIC_IP_SERVICES:
            try:
                response = requests.get(url, timeout=10)
                response.raise_for_status()
                candidate = response.text.strip()
                ipaddress.IPv4Address(candidate)
                return candidate
            except (requests.RequestException, ValueError) as e:
                logger.debug(f"Public IP lookup via {url} failed: {e}")
        return None

    def resolve(self, domain: str) -> Optional[str]:
        """Last A record of domain, None when it does not resolve."""
        try:
            _, _, addresses = self.resolver(domain)
        except (socket.gaierror, socket.herror):
            return None
        return addresses[-1] if addresses else None

    def check(self, domains: List[str], server_ip: Optional[str] = None) -> List[str]:
        """Return DNS problems for domains; www. aliases are not required."""
        if self.mock:
            return []

        server_ip = server_ip or self.public_ipv4()
        issues = []
        for domain in domains:
            if domain.startswith("www."):
                continue
            resolved = self.resolve(domain)
            if resolved is None:
                issues.append(f"{domain}: not configured")
            elif server_ip and resolved != server_ip:
                issues.append(f"{domain}: wrong IP (points to {resolved}, server is {server_ip})")
        return issues


class SslManager:
    """Certificate checks run on deploy and the interactive ssl-setup."""

    def __init__(
        self,
        certbot: Optional[CertbotManager] = None,
        dns: Optional[DnsChecker] = None,
        nginx: Optional[NginxManager] = None,
        mock: bool = False,
    ):
        self.certbot = certbot or CertbotManager(mock=mock)
        self.dns = dns or DnsChecker(mock=mock)
        self.nginx = nginx or NginxManager(mock=mock)

    def check_and_setup(self, app: AppConfig) -> SslResult:
        """Automated check after deploy: never fails the deploy itself."""
        if not self.certbot.installed():
            return SslResult(SslStatus.SKIPPED, "certbot is not installed")

        domains = app.cert_domains()
        certificate = self.certbot.find(app.domain)

        if certificate is not None:
            missing = certificate.missing(domains)
            if missing:
                return SslResult(
                    SslStatus.SKIPPED,
                    f"Certificate {certificate.name} does not cover: {', '.join(missing)}. "
                    f"Run 'dockyard ssl-setup {app.name}'",
                )
            days = certificate.days_left()
            if days is not None:
                if days < EXPIRY_WARNING_DAYS:
                    logger.warning(f"⚠ Certificate for {app.domain} expires in {days} days")
                else:
                    logger.info(f"✓ Certificate valid for {days} more days")
            return SslResult(SslStatus.SUCCESS, f"Certificate valid ({days} days left)")

        issues = self.dns.check(domains)
        if issues:
            return SslResult(SslStatus.SKIPPED, "DNS not ready: " + "; ".join(issues))

        email = self.certbot.account_email()
        if not email:
            return SslResult(
                SslStatus.SKIPPED,
                f"No certbot account registered. Run 'dockyard ssl-setup {app.name}'",
            )

        ok, output = self.certbot.obtain(domains, email=email, expand=True)
        if ok:
            return SslResult(SslStatus.SUCCESS, f"Certificate obtained for {', '.join(domains)}")

        errors = [line for line in output.splitlines() if "error" in line.lower()][:3]
        return SslResult(SslStatus.FAILED, "certbot failed: " + (" | ".join(errors) or "see certbot logs"))

    def setup(self, app: AppConfig, email: Optional[str] = None) -> bool:
        """Set up HTTPS for an app; prints DNS instructions when not ready."""
        if not self.certbot.installed():
            logger.info("Installing certbot...")
            if not self.certbot.install():
                return False

        domains = app.cert_domains()
        server_ip = self.dns.public_ipv4()
        issues = self.dns.check(domains, server_ip=server_ip)
        if issues:
            logger.warning("DNS is not configured for this server yet:")
            for issue in issues:
                logger.warning(f"  {issue}")
            logger.info("Create these A records, then run ssl-setup again:")
            for domain in domains:
                logger.info(f"  {domain} → {server_ip or '<server IP>'}")
            return False

        certificate = self.certbot.find(app.domain)
        if certificate is not None and not certificate.missing(domains):
            logger.info(f"✓ Certificate {certificate.name} already covers {', '.join(domains)}")
        else:
            email = email or self.certbot.account_email() or app.notifications.email_to
            ok, output = self.certbot.obtain(domains, email=email, expand=certificate is not None)
            if not ok:
                logger.error(f"✗ certbot failed:\n{output}")
                return False
            logger.info(f"✓ Certificate obtained for {', '.join(domains)}")

        if not self.nginx.mock and not self.nginx.is_enabled(app):
            if not self.nginx.enable_site(app):
                return False

        self.certbot.ensure_renewal_timer()
        return True
