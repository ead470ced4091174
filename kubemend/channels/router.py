"""Routes notifications to the transport a step or approval request names."""

from typing import Optional

import structlog

from kubemend.channels.base import LogNotifier, Notifier
from kubemend.channels.slack_adapter import SlackAdapter
from kubemend.channels.webhook import WebhookClient, WebhookNotifier
from kubemend.config import Settings

logger = structlog.get_logger()


class NotificationRouter:
    """Maps notification targets (``slack``, ``webhook``...) onto notifiers."""

    def __init__(self, default_target: str = "log"):
        self.notifiers: dict[str, Notifier] = {}
        self.default_target = default_target
        self.register(LogNotifier())

    def register(self, notifier: Notifier) -> None:
        """Register a notifier under its name."""
        self.notifiers[notifier.name] = notifier
        logger.info("notifier_registered", notifier=notifier.name)

    def get(self, target: Optional[str]) -> Notifier:
        """Resolve a target, falling back to the default transport."""
        notifier = self.notifiers.get(target or self.default_target)
        if notifier is None:
            logger.info("notifier_not_configured", target=target, fallback=self.default_target)
            notifier = self.notifiers.get(self.default_target) or self.notifiers["log"]
        return notifier

    async def notify(
        self,
        target: Optional[str],
        message: str,
        channel: Optional[str] = None,
        severity: Optional[str] = None,
    ) -> str:
        """Send a message; returns the name of the transport used."""
        notifier = self.get(target)
        await notifier.send(message, channel=channel, severity=severity)
        return notifier.name


def create_notification_router(settings: Settings, webhook_client: WebhookClient) -> NotificationRouter:
    """Create a router with the transports enabled in settings."""
    router = NotificationRouter()

    if settings.enable_slack:
        try:
            router.register(SlackAdapter(
                token=settings.slack_bot_token,
                webhook_url=settings.slack_webhook_url,
                default_channel=settings.slack_channel,
            ))
            router.default_target = "slack"
        except Exception as e:
            logger.warning("slack_notifier_not_registered", error=str(e))

    if settings.enable_webhooks and settings.webhook_url:
        router.register(WebhookNotifier(settings.webhook_url, webhook_client))

    return router
