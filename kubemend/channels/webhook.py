"""Generic HTTP webhook delivery."""

from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from kubemend.channels.base import Notifier
from kubemend.exceptions import ExecutionError

logger = structlog.get_logger()


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


class WebhookClient:
    """POST JSON payloads, retrying transport errors and 5xx responses."""

    def __init__(
        self,
        timeout: float = 10.0,
        attempts: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._attempts = attempts
        self._transport = transport

    async def post(self, url: str, payload: dict[str, Any]) -> int:
        """Deliver a payload and return the response status code."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self._attempts),
                    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
                    retry=retry_if_exception(_is_retryable),
                    reraise=True,
                ):
                    with attempt:
                        resp = await client.post(url, json=payload)
                        resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("webhook_delivery_failed", url=url, error=str(e))
            raise ExecutionError(f"webhook delivery to {url} failed: {e}", {"url": url}) from e
        logger.info("webhook_delivered", url=url, status=resp.status_code)
        return resp.status_code


class WebhookNotifier(Notifier):
    """Notification transport posting ``{"text": ...}`` to a fixed URL."""

    def __init__(self, url: str, client: WebhookClient) -> None:
        super().__init__("webhook")
        self.url = url
        self.client = client

    async def send(self, message: str, channel: str | None = None, severity: str | None = None) -> None:
        payload: dict[str, Any] = {"text": message}
        if channel:
            payload["channel"] = channel
        if severity:
            payload["severity"] = severity
        await self.client.post(self.url, payload)
