"""
Tests for notification channel providers (camprush/common/notifications.py)
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

import httpx

from camprush.common.config import (
    EmailConfig,
    NotificationsConfig,
    SMSConfig,
    WebhookConfig,
)
from camprush.common.models import Channel, NotificationPayload, Urgency
from camprush.common.notifications import (
    ConsoleNotifier,
    EmailNotifier,
    SMSNotifier,
    WebhookNotifier,
    build_channel_providers,
    close_providers,
)


def response(status_code, text=""):
    mock = MagicMock()
    mock.status_code = status_code
    mock.text = text
    return mock


class TestNotificationPayload:
    def test_defaults(self):
        payload = NotificationPayload(title="Test Title", message="Test message")
        assert payload.url is None
        assert payload.recipient is None
        assert payload.urgency == Urgency.MEDIUM


class TestConsoleNotifier:
    @pytest.mark.asyncio
    async def test_send(self, capsys):
        payload = NotificationPayload(
            title="CAPTCHA help needed",
            message="Solve now",
            url="https://camprush.app/assist/captcha/abc",
            recipient="+15555550100",
            urgency=Urgency.HIGH,
        )

        assert await ConsoleNotifier().send(payload) is True

        out = capsys.readouterr().out
        assert "[high] CAPTCHA help needed" in out
        assert "To: +15555550100" in out
        assert "https://camprush.app/assist/captcha/abc" in out


class TestEmailNotifier:
    @pytest.mark.asyncio
    async def test_send_success(self):
        notifier = EmailNotifier(api_key="SG.test_key")
        notifier.client.post = AsyncMock(return_value=response(202))

        payload = NotificationPayload(title="Approval", message="Please approve", recipient="p@example.com")
        assert await notifier.send(payload) is True

        body = notifier.client.post.call_args.kwargs["json"]
        assert body["personalizations"][0]["to"][0]["email"] == "p@example.com"
        assert body["subject"] == "Approval"
        await notifier.aclose()

    @pytest.mark.asyncio
    async def test_send_failure(self):
        notifier = EmailNotifier(api_key="SG.test_key")
        notifier.client.post = AsyncMock(return_value=response(401, "Unauthorized"))
        payload = NotificationPayload(title="T", message="M", recipient="p@example.com")
        assert await notifier.send(payload) is False

    @pytest.mark.asyncio
    async def test_network_error(self):
        notifier = EmailNotifier(api_key="SG.test_key")
        notifier.client.post = AsyncMock(side_effect=httpx.ConnectError("down"))
        payload = NotificationPayload(title="T", message="M", recipient="p@example.com")
        assert await notifier.send(payload) is False

    @pytest.mark.asyncio
    async def test_no_recipient(self):
        notifier = EmailNotifier(api_key="SG.test_key")
        notifier.client.post = AsyncMock()
        assert await notifier.send(NotificationPayload(title="T", message="M")) is False
        notifier.client.post.assert_not_called()

    def test_urgent_html_is_red(self):
        notifier = EmailNotifier(api_key="SG.test_key")
        html = notifier._format_html(NotificationPayload(
            title="T", message="M", url="https://a", urgency=Urgency.CRITICAL
        ))
        assert "#ef4444" in html
        assert 'href="https://a"' in html


class TestSMSNotifier:
    @pytest.mark.asyncio
    async def test_send_success(self):
        notifier = SMSNotifier("AC123", "token", "+15555550000")
        notifier.client.post = AsyncMock(return_value=response(201))

        payload = NotificationPayload(
            title="T", message="Solve now", url="https://a", recipient="+15555550100"
        )
        assert await notifier.send(payload) is True

        call = notifier.client.post.call_args
        assert "AC123" in call.args[0]
        assert call.kwargs["data"]["To"] == "+15555550100"
        assert call.kwargs["data"]["Body"] == "Solve now\nhttps://a"

    def test_url_not_repeated(self):
        notifier = SMSNotifier("AC123", "token", "+15555550000")
        text = notifier._format_sms(NotificationPayload(title="T", message="Go to https://a", url="https://a"))
        assert text == "Go to https://a"

    @pytest.mark.asyncio
    async def test_failure_status(self):
        notifier = SMSNotifier("AC123", "token", "+15555550000")
        notifier.client.post = AsyncMock(return_value=response(400, "bad number"))
        payload = NotificationPayload(title="T", message="M", recipient="+1")
        assert await notifier.send(payload) is False


class TestWebhookNotifier:
    @pytest.mark.asyncio
    async def test_send_with_link(self):
        notifier = WebhookNotifier("https://hooks.example.com/x")
        notifier.client.post = AsyncMock(return_value=response(200))

        payload = NotificationPayload(title="T", message="M", url="https://a")
        assert await notifier.send(payload) is True

        blocks = notifier.client.post.call_args.kwargs["json"]["blocks"]
        assert len(blocks) == 3
        assert "https://a" in blocks[2]["text"]["text"]


class TestBuildChannelProviders:
    def test_console_fills_every_channel(self):
        providers = build_channel_providers(NotificationsConfig())
        assert set(providers) == set(Channel)
        assert all(isinstance(p, ConsoleNotifier) for p in providers.values())

    def test_configured_providers(self):
        config = NotificationsConfig(
            email=EmailConfig(enabled=True, sendgrid_api_key="SG.x"),
            sms=SMSConfig(
                enabled=True,
                twilio_account_sid="AC1",
                twilio_auth_token="t",
                twilio_from_number="+15555550000",
            ),
            webhook=WebhookConfig(enabled=True, url="https://hooks.example.com/x"),
            console=False,
        )
        providers = build_channel_providers(config)
        assert isinstance(providers[Channel.EMAIL], EmailNotifier)
        assert isinstance(providers[Channel.SMS], SMSNotifier)
        assert isinstance(providers[Channel.PUSH], WebhookNotifier)

    def test_incomplete_sms_config_skipped(self):
        config = NotificationsConfig(sms=SMSConfig(enabled=True, twilio_account_sid="AC1"), console=False)
        assert build_channel_providers(config) == {}

    @pytest.mark.asyncio
    async def test_close_providers_closes_each_once(self):
        shared = MagicMock()
        shared.aclose = AsyncMock()
        await close_providers({Channel.SMS: shared, Channel.EMAIL: shared})
        shared.aclose.assert_awaited_once()
