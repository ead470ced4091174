"""Notification transports."""

from kubemend.channels.base import LogNotifier, Notifier
from kubemend.channels.router import NotificationRouter, create_notification_router
from kubemend.channels.slack_adapter import SlackAdapter
from kubemend.channels.webhook import WebhookClient, WebhookNotifier

__all__ = [
    "Notifier",
    "LogNotifier",
    "SlackAdapter",
    "WebhookClient",
    "WebhookNotifier",
    "NotificationRouter",
    "create_notification_router",
]
