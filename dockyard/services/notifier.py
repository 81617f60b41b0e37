"""Deployment email notifications via SendGrid or Mailgun."""
import socket
from datetime import datetime
from typing import Optional

import requests

from dockyard.core.config import DockyardConfig, get_config
from dockyard.core.logger import get_logger
from dockyard.core.retry import retry
from dockyard.core.template_loader import TemplateLoader
from dockyard.models.app import AppConfig
from dockyard.models.deployment import DeploymentResult

logger = get_logger(__name__)

SENDER_NAME = "Deployment Bot"


@retry(exceptions=(requests.ConnectionError, requests.Timeout), max_attempts=3, delay=2.0,
       action="Email API request")
def _post(url: str, **kwargs) -> requests.Response:
    return requests.post(url, **kwargs)


class SendGridClient:
    """SendGrid v3 mail/send with plain text bodies."""

    API_URL = "https://api.sendgrid.com/v3/mail/send"
    name = "SendGrid"

    def __init__(self, api_key: str, sender_name: str = SENDER_NAME, timeout: int = 30):
        self.api_key = api_key
        self.sender_name = sender_name
        self.timeout = timeout

    def send(self, from_email: str, to_email: str, subject: str, text: str) -> bool:
        payload = {
            "personalizations": [{"to": [{"email": to_email}], "subject": subject}],
            "from": {"email": from_email, "name": self.sender_name},
            "content": [{"type": "text/plain", "value": text}],
        }
        try:
            response = _post(
                self.API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"✗ SendGrid request failed: {e}")
            return False

        if response.status_code == 202:
            logger.info(f"✓ Email sent to {to_email}: {subject}")
            return True

        logger.error(f"✗ SendGrid returned HTTP {response.status_code}: {response.text.strip()}")
        return False


class MailgunClient:
    """Mailgun messages API."""

    API_URL = "https://api.mailgun.net/v3/{domain}/messages"
    name = "Mailgun"

    def __init__(self, api_key: str, domain: str, sender_name: str = SENDER_NAME, timeout: int = 30):
        self.api_key = api_key
        self.domain = domain
        self.sender_name = sender_name
        self.timeout = timeout

    def send(self, from_email: str, to_email: str, subject: str, text: str) -> bool:
        try:
            response = _post(
                self.API_URL.format(domain=self.domain),
                auth=("api", self.api_key),
                data={
                    "from": f"{self.sender_name} <{from_email}>",
                    "to": to_email,
                    "subject": subject,
                    "text": text,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"✗ Mailgun request failed: {e}")
            return False

        if response.ok:
            logger.info(f"✓ Email sent to {to_email}: {subject}")
            return True

        logger.error(f"✗ Mailgun returned HTTP {response.status_code}: {response.text.strip()}")
        return False


class DeploymentNotifier:
    """Renders and sends deployment emails.

    A notification failure is logged and reported as False; it never
    raises into the deploy that triggered it.
    """

    def __init__(
        self,
        app: Optional[AppConfig] = None,
        config: Optional[DockyardConfig] = None,
        templates: Optional[TemplateLoader] = None,
        mock: bool = False,
    ):
        self.app = app
        self.config = config or get_config()
        self.templates = templates or TemplateLoader()
        self.mock = mock

    @property
    def recipient(self) -> str:
        if self.app is not None and self.app.notifications.email_to:
            return self.app.notifications.email_to
        return self.config.email_to

    def _transport(self):
        """Return (client, from_address), preferring SendGrid."""
        if self.config.sendgrid_api_key and self.config.email_from:
            return SendGridClient(self.config.sendgrid_api_key), self.config.email_from

        notifications = self.app.notifications if self.app is not None else None
        if notifications and notifications.mailgun_api_key and notifications.mailgun_domain:
            sender = self.config.email_from or f"noreply@{notifications.mailgun_domain}"
            return MailgunClient(notifications.mailgun_api_key, notifications.mailgun_domain), sender

        return None, None

    def enabled(self) -> bool:
        if not self.config.email_enabled:
            logger.info("Email notifications disabled (DEPLOYMENT_EMAIL_ENABLED=false)")
            return False
        if self.app is not None and not self.app.notifications.email_enabled:
            logger.info(f"Email notifications disabled for {self.app.name}")
            return False
        return True

    def _send(self, subject: str, body: str) -> bool:
        client, sender = self._transport()
        if client is None or not self.recipient:
            logger.warning(
                "No email transport configured (SENDGRID_API_KEY + DEPLOYMENT_EMAIL_FROM, "
                "or Mailgun settings) or no recipient, skipping notification"
            )
            return False

        if self.mock:
            logger.info(f"MOCK: Would email {self.recipient} via {client.name}: {subject}")
            return True

        return client.send(sender, self.recipient, subject, body)

    def _context(self, **extra) -> dict:
        return {
            "app": self.app,
            "timestamp": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            "hostname": socket.gethostname(),
            **extra,
        }

    def send_started(self, commit: Optional[str] = None) -> bool:
        if not self.enabled():
            return False
        body = self.templates.render("email/started.txt.j2", **self._context(commit=commit))
        return self._send(f"Deployment Starting: {self.app.display_name}", body)

    def send_success(self, result: DeploymentResult) -> bool:
        if not self.enabled():
            return False
        body = self.templates.render("email/success.txt.j2", **self._context(result=result))
        return self._send(f"Deployment Successful: {self.app.display_name}", body)

    def send_failure(self, message: str, commit: Optional[str] = None) -> bool:
        if not self.enabled():
            return False
        body = self.templates.render(
            "email/failure.txt.j2", **self._context(message=message, commit=commit)
        )
        return self._send(f"Deployment Failed: {self.app.display_name}", body)

    def send_test(self) -> bool:
        client, _ = self._transport()
        transport = client.name if client is not None else "none"
        body = self.templates.render("email/test.txt.j2", **self._context(transport=transport))
        return self._send("Test Email from dockyard", body)
