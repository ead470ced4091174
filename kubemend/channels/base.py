"""Base notification transport interface."""

from abc import ABC, abstractmethod

import structlog

logger = structlog.get_logger()


class Notifier(ABC):
    """Abstract base class for notification transports."""

    def __init__(self, name: str):
        self.name = name
        logger.info("notifier_initialized", notifier=name)

    @abstractmethod
    async def send(self, message: str, channel: str | None = None, severity: str | None = None) -> None:
        """
        Deliver a message.

        Args:
            message: Rendered message text
            channel: Transport-specific destination (e.g. a Slack channel)
            severity: Optional severity hint

        Raises:
            ExecutionError: If delivery failed
        """
        pass


class LogNotifier(Notifier):
    """Fallback transport that only writes the message to the log."""

    def __init__(self) -> None:
        super().__init__("log")

    async def send(self, message: str, channel: str | None = None, severity: str | None = None) -> None:
        logger.info("notification_logged", channel=channel, severity=severity, message=message)
