"""
K8s Watchloop - background polling task feeding cluster events to the engine.

On each tick every registered cluster is asked for its Warning events. Each
event occurrence (uid + count) is delivered to ``engine.process_event`` once.
"""

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

from kubemend.aiops.models import RemediationEvent
from kubemend.config import get_settings
from kubemend.k8s.base import normalize_kind
from kubemend.k8s.registry import ClusterClientRegistry

if TYPE_CHECKING:
    from kubemend.aiops.engine import RemediationEngine

logger = structlog.get_logger()
settings = get_settings()


def to_remediation_event(cluster_id: str, raw: dict[str, Any]) -> RemediationEvent:
    """Convert a serialized core/v1 Event into the matcher's event shape."""
    kind = raw.get("involved_kind") or ""
    return RemediationEvent(
        type=raw.get("type") or "Warning",
        source="kubernetes",
        cluster_id=cluster_id,
        namespace=raw.get("involved_namespace") or raw.get("namespace") or "",
        resource_type=normalize_kind(kind) if kind else "",
        resource_name=raw.get("involved_name") or "",
        reason=raw.get("reason") or "",
        message=raw.get("message") or "",
        severity="warning",
        data={
            "involvedObject.kind": kind,
            "count": raw.get("count") or 1,
            "event_uid": raw.get("uid") or "",
            "component": raw.get("source") or "",
        },
    )


class K8sEventWatchLoop:
    """
    Background watchloop polling Warning events at a configurable interval.

    Usage:
        loop = K8sEventWatchLoop(engine)
        await loop.start()
        # ... application runs ...
        await loop.stop()
    """

    def __init__(
        self,
        engine: "RemediationEngine",
        clients: ClusterClientRegistry | None = None,
        interval: int | None = None,
    ) -> None:
        self._engine = engine
        self._clients = clients or engine.clients
        self._interval = interval or settings.k8s_watchloop_interval
        self._running = False
        self._task: asyncio.Task | None = None
        # cluster_id -> {(uid, count)} seen in the previous listing
        self._seen: dict[str, set[tuple[str, int]]] = {}

    async def start(self) -> None:
        """Start the watchloop background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name="k8s-event-watchloop")
        logger.info("k8s_watchloop_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Stop the watchloop."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("k8s_watchloop_stopped")

    @property
    def is_running(self) -> bool:
        return self._running and (self._task is not None) and not (self._task.done())

    async def _run(self) -> None:
        """Main watchloop polling loop."""
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("watchloop_tick_error", error=str(e))
            await asyncio.sleep(self._interval)

    async def tick(self) -> int:
        """Poll every cluster once; returns the number of events delivered."""
        delivered = 0
        for cluster_id, client in self._clients.items():
            try:
                raw_events = await client.list_warning_events()
            except Exception as e:
                logger.warning("watchloop_list_events_failed", cluster_id=cluster_id, error=str(e))
                continue

            previous = self._seen.get(cluster_id, set())
            current: set[tuple[str, int]] = set()
            for raw in raw_events:
                key = (raw.get("uid") or "", int(raw.get("count") or 1))
                current.add(key)
                if key in previous:
                    continue

                event = to_remediation_event(cluster_id, raw)
                logger.info(
                    "watchloop_event_detected",
                    cluster_id=cluster_id,
                    reason=event.reason,
                    resource=f"{event.resource_type}/{event.resource_name}",
                )
                try:
                    await self._engine.process_event(event)
                    delivered += 1
                except Exception as e:
                    logger.error("watchloop_callback_error", cluster_id=cluster_id, error=str(e))
            # Keys of events that aged out of the API are dropped with the old set
            self._seen[cluster_id] = current

        if delivered:
            logger.info("watchloop_tick_complete", events_delivered=delivered)
        return delivered
