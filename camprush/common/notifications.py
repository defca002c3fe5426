"""
Notification channel providers for CampRush
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict
import httpx

from .models import NotificationPayload, Channel, Urgency
from .config import NotificationsConfig

logger = logging.getLogger(__name__)


class NotificationProvider(ABC):
    """Base class for notification providers"""

    @abstractmethod
    async def send(self, payload: NotificationPayload) -> bool:
        """Send notification, return True if successful"""
        pass

    async def aclose(self):
        pass


class EmailNotifier(NotificationProvider):
    """SendGrid email notifications"""

    def __init__(self, api_key: str, from_address: str = "noreply@camprush.app"):
        self.api_key = api_key
        self.from_address = from_address
        self.client = httpx.AsyncClient()

    async def send(self, payload: NotificationPayload) -> bool:
        if not payload.recipient:
            logger.warning(f"Email for message {payload.message_id} has no recipient")
            return False

        try:
            response = await self.client.post(
                "https://api.sendgrid.com/v3/mail/send",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json"
                },
                json={
                    "personalizations": [{"to": [{"email": payload.recipient}]}],
                    "from": {"email": self.from_address, "name": "CampRush"},
                    "subject": payload.title,
                    "content": [
                        {
                            "type": "text/html",
                            "value": self._format_html(payload)
                        }
                    ]
                }
            )
            success = response.status_code in (200, 202)
            if not success:
                logger.error(f"Email send failed: {response.status_code} - {response.text}")
            return success
        except httpx.HTTPError as e:
            logger.error(f"Email send error: {e}")
            return False

    def _format_html(self, payload: NotificationPayload) -> str:
        urgent = payload.urgency in (Urgency.HIGH, Urgency.CRITICAL)
        html = f"""
        <html>
        <body style="font-family: Arial, sans-serif; padding: 20px;">
            <h1 style="color: {'#ef4444' if urgent else '#3b82f6'};">
                {payload.title}
            </h1>
            <p style="font-size: 16px;">{payload.message}</p>
        """
        if payload.url:
            html += f"""
            <p style="margin-top: 20px;">
                <a href="{payload.url}"
                   style="background: #2563eb; color: white; padding: 12px 24px;
                          text-decoration: none; border-radius: 6px; font-weight: bold;">
                    Help Now →
                </a>
            </p>
            """
        html += """
        </body>
        </html>
        """
        return html

    async def aclose(self):
        await self.client.aclose()


class SMSNotifier(NotificationProvider):
    """Twilio SMS notifications"""

    def __init__(self, account_sid: str, auth_token: str, from_number: str):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.client = httpx.AsyncClient()

    async def send(self, payload: NotificationPayload) -> bool:
        if not payload.recipient:
            logger.warning(f"SMS for message {payload.message_id} has no recipient")
            return False

        try:
            response = await self.client.post(
                f"https://api.twilio.com/2010-04-01/Accounts/{self.account_sid}/Messages.json",
                auth=(self.account_sid, self.auth_token),
                data={
                    "From": self.from_number,
                    "To": payload.recipient,
                    "Body": self._format_sms(payload)
                }
            )
            success = response.status_code == 201
            if not success:
                logger.error(f"SMS send failed: {response.status_code} - {response.text}")
            return success
        except httpx.HTTPError as e:
            logger.error(f"SMS send error: {e}")
            return False

    def _format_sms(self, payload: NotificationPayload) -> str:
        msg = payload.message
        if payload.url and payload.url not in msg:
            msg += f"\n{payload.url}"
        return msg[:1600]  # SMS length limit

    async def aclose(self):
        await self.client.aclose()


class WebhookNotifier(NotificationProvider):
    """Push notifications through a Slack-compatible webhook"""

    def __init__(self, webhook_url: str):
        self.webhook_url = webhook_url
        self.client = httpx.AsyncClient()

    async def send(self, payload: NotificationPayload) -> bool:
        try:
            response = await self.client.post(
                self.webhook_url,
                json={
                    "text": payload.title,
                    "blocks": [
                        {
                            "type": "header",
                            "text": {"type": "plain_text", "text": payload.title}
                        },
                        {
                            "type": "section",
                            "text": {"type": "mrkdwn", "text": payload.message}
                        },
                        *([{
                            "type": "section",
                            "text": {
                                "type": "mrkdwn",
                                "text": f"<{payload.url}|Help Now →>"
                            }
                        }] if payload.url else [])
                    ]
                }
            )
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"Webhook send error: {e}")
            return False

    async def aclose(self):
        await self.client.aclose()


class ConsoleNotifier(NotificationProvider):
    """Console output for testing"""

    async def send(self, payload: NotificationPayload) -> bool:
        print("\n" + "=" * 60)
        print(f"📢 [{payload.urgency.value}] {payload.title}")
        if payload.recipient:
            print(f"To: {payload.recipient}")
        print("-" * 60)
        print(payload.message)
        if payload.url:
            print(f"\n🔗 {payload.url}")
        print("=" * 60 + "\n")
        return True


def build_channel_providers(config: NotificationsConfig) -> Dict[Channel, NotificationProvider]:
    """Map each deliverable channel to its configured provider"""
    providers: Dict[Channel, NotificationProvider] = {}

    if config.email.enabled and config.email.sendgrid_api_key:
        providers[Channel.EMAIL] = EmailNotifier(
            api_key=config.email.sendgrid_api_key,
            from_address=config.email.from_address
        )
        logger.info("Email notifications enabled")
    elif config.email.enabled:
        logger.warning("Email notifications enabled but missing SendGrid API key")

    if (
        config.sms.enabled
        and config.sms.twilio_account_sid
        and config.sms.twilio_auth_token
        and config.sms.twilio_from_number
    ):
        providers[Channel.SMS] = SMSNotifier(
            account_sid=config.sms.twilio_account_sid,
            auth_token=config.sms.twilio_auth_token,
            from_number=config.sms.twilio_from_number
        )
        logger.info("SMS notifications enabled")
    elif config.sms.enabled:
        logger.warning("SMS notifications enabled but missing Twilio config")

    if config.webhook.enabled and config.webhook.url:
        providers[Channel.PUSH] = WebhookNotifier(config.webhook.url)
        logger.info("Webhook push notifications enabled")
    elif config.webhook.enabled:
        logger.warning("Webhook notifications enabled but missing URL")

    # Console stands in for any channel without a real provider
    if config.console:
        console = ConsoleNotifier()
        for channel in Channel:
            providers.setdefault(channel, console)

    return providers


async def close_providers(providers: Dict[Channel, NotificationProvider]):
    seen = set()
    for provider in providers.values():
        if id(provider) in seen:
            continue
        seen.add(id(provider))
        await provider.aclose()
