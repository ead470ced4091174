"""
Async Prometheus client for metric-triggered remediation rules.

Queries the Prometheus HTTP API instant-query endpoint and returns the
result vector as plain dicts (``{"metric": {...labels}, "value": [ts, "v"]}``).
"""

from typing import Any

import httpx
import structlog

from kubemend.config import get_settings
from kubemend.exceptions import ExecutionError

logger = structlog.get_logger()
settings = get_settings()


def sample_value(series: dict[str, Any]) -> float | None:
    """Numeric value of an instant-vector sample, or None if unparsable."""
    try:
        return float(series["value"][1])
    except (KeyError, IndexError, TypeError, ValueError):
        return None


class PrometheusClient:
    """
    Async HTTP client for Prometheus query API.

    Usage:
        client = PrometheusClient()
        result = await client.query('kubelet_volume_stats_used_bytes / kubelet_volume_stats_capacity_bytes')
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.prometheus_url or "").rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._base_url)

    async def query(self, promql: str) -> list[dict[str, Any]]:
        """Run an instant PromQL query and return the result vector."""
        if not self.is_configured:
            return []
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(
                    f"{self._base_url}/api/v1/query",
                    params={"query": promql},
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            logger.warning("prometheus_query_failed", query=promql, error=str(e))
            raise ExecutionError(f"prometheus query failed: {e}", {"query": promql}) from e

        if data.get("status") != "success":
            raise ExecutionError(f"prometheus query error: {data.get('error', 'unknown')}", {"query": promql})
        return data.get("data", {}).get("result", [])
