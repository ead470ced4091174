"""Slack notification transport."""

from typing import Optional

import structlog
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient
from slack_sdk.webhook.async_client import AsyncWebhookClient

from kubemend.channels.base import Notifier
from kubemend.exceptions import ExecutionError

logger = structlog.get_logger()

SEVERITY_ICONS = {"critical": "🚨", "high": "🔴", "warning": "🟡", "medium": "🟡", "low": "🔵", "info": "🔵"}


class SlackAdapter(Notifier):
    """
    Post remediation notifications to Slack.

    Uses the Web API when a bot token is configured, otherwise an incoming
    webhook URL.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        webhook_url: Optional[str] = None,
        default_channel: str = "#alerts",
        web_client: Optional[AsyncWebClient] = None,
        webhook_client: Optional[AsyncWebhookClient] = None,
    ):
        super().__init__("slack")
        if not (token or webhook_url or web_client or webhook_client):
            raise ValueError("Slack notifier needs a bot token or a webhook URL")
        self.default_channel = default_channel
        self.client = web_client or (AsyncWebClient(token=token) if token else None)
        self.webhook = webhook_client or (AsyncWebhookClient(webhook_url) if webhook_url and not self.client else None)

    @staticmethod
    def format_message(message: str, severity: Optional[str]) -> str:
        if not severity:
            return message
        icon = SEVERITY_ICONS.get(severity.lower(), "⚠️")
        return f"{icon} [{severity.upper()}] {message}"

    async def send(self, message: str, channel: Optional[str] = None, severity: Optional[str] = None) -> None:
        text = self.format_message(message, severity)
        try:
            if self.client is not None:
                await self.client.chat_postMessage(channel=channel or self.default_channel, text=text)
            else:
                response = await self.webhook.send(text=text)
                if response.status_code >= 300:
                    raise ExecutionError(
                        f"slack webhook returned {response.status_code}",
                        {"status_code": response.status_code, "body": response.body},
                    )
        except SlackApiError as e:
            logger.error("slack_send_failed", channel=channel or self.default_channel, error=str(e))
            raise ExecutionError(f"slack delivery failed: {e}") from e
        logger.info("slack_message_sent", channel=channel or self.default_channel)
