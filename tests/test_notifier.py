"""Tests for deployment email notifications."""
from unittest.mock import Mock, patch

import pytest
import requests

from dockyard.core.config import DockyardConfig
from dockyard.models.app import AppConfig
from dockyard.models.deployment import DeploymentResult
from dockyard.services.notifier import DeploymentNotifier, MailgunClient, SendGridClient


@pytest.fixture
def sendgrid_config(tmp_path):
    return DockyardConfig(
        devops_dir=tmp_path / "DevOps",
        sendgrid_api_key="SG.test",
        email_from="deploy@shop.com",
        email_to="ops@shop.com",
    )


@pytest.fixture
def result():
    return DeploymentResult(
        app_name="shop-api",
        image_tag="20261018_100000",
        scale=2,
        ports=[3000, 3001],
        commit="abc1234def5678",
        migrations_run=True,
        ssl_status="success",
    )


class TestSendGrid:

    @patch('requests.post')
    def test_accepted(self, mock_post):
        mock_post.return_value = Mock(status_code=202)

        assert SendGridClient("SG.key").send("from@x.com", "to@x.com", "Hi", "Body")

        payload = mock_post.call_args[1]["json"]
        assert payload["personalizations"] == [{"to": [{"email": "to@x.com"}], "subject": "Hi"}]
        assert payload["from"] == {"email": "from@x.com", "name": "Deployment Bot"}
        assert payload["content"] == [{"type": "text/plain", "value": "Body"}]
        assert mock_post.call_args[1]["headers"] == {"Authorization": "Bearer SG.key"}

    @patch('requests.post')
    def test_rejected(self, mock_post):
        mock_post.return_value = Mock(status_code=401, text="unauthorized")

        assert not SendGridClient("bad").send("from@x.com", "to@x.com", "Hi", "Body")

    @patch('dockyard.core.retry.time.sleep')
    @patch('requests.post')
    def test_network_error(self, mock_post, mock_sleep):
        mock_post.side_effect = requests.ConnectionError("offline")

        assert not SendGridClient("SG.key").send("from@x.com", "to@x.com", "Hi", "Body")
        assert mock_post.call_count == 3

    @patch('dockyard.core.retry.time.sleep')
    @patch('requests.post')
    def test_timeout_is_retried(self, mock_post, mock_sleep):
        mock_post.side_effect = [requests.Timeout("slow"), Mock(status_code=202)]

        assert SendGridClient("SG.key").send("from@x.com", "to@x.com", "Hi", "Body")
        mock_sleep.assert_called_once_with(2.0)

    @patch('requests.post')
    def test_invalid_url_is_not_retried(self, mock_post):
        mock_post.side_effect = requests.exceptions.InvalidURL("bad url")

        assert not SendGridClient("SG.key").send("from@x.com", "to@x.com", "Hi", "Body")
        assert mock_post.call_count == 1


@patch('requests.post')
def test_mailgun(mock_post):
    mock_post.return_value = Mock(ok=True, status_code=200)

    assert MailgunClient("key-1", "mg.shop.com").send("noreply@mg.shop.com", "ops@shop.com", "Hi", "Body")

    assert mock_post.call_args[0][0] == "https://api.mailgun.net/v3/mg.shop.com/messages"
    assert mock_post.call_args[1]["auth"] == ("api", "key-1")
    assert mock_post.call_args[1]["data"]["from"] == "Deployment Bot <noreply@mg.shop.com>"


class TestDeploymentNotifier:

    @patch('requests.post')
    def test_success_email(self, mock_post, rails_app, sendgrid_config, result):
        mock_post.return_value = Mock(status_code=202)

        assert DeploymentNotifier(rails_app, config=sendgrid_config).send_success(result)

        payload = mock_post.call_args[1]["json"]
        assert payload["personalizations"][0]["subject"] == "Deployment Successful: shop-api"
        body = payload["content"][0]["value"]
        assert "Git Commit:       abc1234" in body
        assert "Ports:            3000, 3001" in body
        assert "Migrations Run:   yes" in body
        assert "dockyard console shop-api" in body

    @patch('requests.post')
    def test_failure_email(self, mock_post, nextjs_app, sendgrid_config):
        mock_post.return_value = Mock(status_code=202)

        assert DeploymentNotifier(nextjs_app, config=sendgrid_config).send_failure("Image build failed")

        payload = mock_post.call_args[1]["json"]
        assert payload["personalizations"][0]["subject"] == "Deployment Failed: shop-web"
        assert "Image build failed" in payload["content"][0]["value"]

    @patch('requests.post')
    def test_app_recipient_overrides_default(self, mock_post, sendgrid_config):
        mock_post.return_value = Mock(status_code=202)
        app = AppConfig(
            type="nextjs",
            name="blog",
            domain="blog.io",
            repo={"url": "https://x.org/b.git"},
            notifications={"email_to": "blog-team@blog.io"},
        )

        DeploymentNotifier(app, config=sendgrid_config).send_started(commit="abc1234")

        assert mock_post.call_args[1]["json"]["personalizations"][0]["to"] == [{"email": "blog-team@blog.io"}]

    @patch('requests.post')
    def test_falls_back_to_mailgun(self, mock_post, tmp_path, result):
        mock_post.return_value = Mock(ok=True, status_code=200)
        app = AppConfig(
            type="nextjs",
            name="blog",
            domain="blog.io",
            repo={"url": "https://x.org/b.git"},
            notifications={"mailgun_api_key": "key-1", "mailgun_domain": "mg.blog.io"},
        )
        config = DockyardConfig(devops_dir=tmp_path, email_to="ops@blog.io")

        assert DeploymentNotifier(app, config=config).send_success(result)
        assert mock_post.call_args[1]["data"]["from"] == "Deployment Bot <noreply@mg.blog.io>"

    @patch('requests.post')
    def test_globally_disabled(self, mock_post, rails_app, sendgrid_config, result):
        sendgrid_config.email_enabled = False

        assert not DeploymentNotifier(rails_app, config=sendgrid_config).send_success(result)
        mock_post.assert_not_called()

    @patch('requests.post')
    def test_disabled_for_app(self, mock_post, sendgrid_config, result):
        app = AppConfig(
            type="nextjs",
            name="blog",
            domain="blog.io",
            repo={"url": "https://x.org/b.git"},
            notifications={"email_enabled": False},
        )

        assert not DeploymentNotifier(app, config=sendgrid_config).send_success(result)
        mock_post.assert_not_called()

    @patch('requests.post')
    def test_no_transport(self, mock_post, rails_app, tmp_path, result):
        config = DockyardConfig(devops_dir=tmp_path, email_to="ops@shop.com")

        assert not DeploymentNotifier(rails_app, config=config).send_success(result)
        mock_post.assert_not_called()

    @patch('requests.post')
    def test_test_email_names_transport(self, mock_post, sendgrid_config):
        mock_post.return_value = Mock(status_code=202)

        assert DeploymentNotifier(config=sendgrid_config).send_test()

        payload = mock_post.call_args[1]["json"]
        assert payload["personalizations"][0]["subject"] == "Test Email from dockyard"
        assert "SendGrid" in payload["content"][0]["value"]

    @patch('requests.post')
    def test_mock_mode_sends_nothing(self, mock_post, rails_app, sendgrid_config, result):
        assert DeploymentNotifier(rails_app, config=sendgrid_config, mock=True).send_success(result)
        mock_post.assert_not_called()
