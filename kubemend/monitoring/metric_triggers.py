"""
Metric trigger loop - turns sustained Prometheus threshold breaches into events.

For each enabled ``metric`` rule the trigger query is evaluated every tick. A
series above the threshold continuously for the trigger's duration yields a
``RemediationEvent(type="metric")`` on every tick until it recovers; the
rule's cooldown decides how often that turns into an action.
"""

import asyncio
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from kubemend.aiops.models import RemediationEvent, RemediationRule, TriggerType, utcnow
from kubemend.config import get_settings
from kubemend.monitoring.prometheus import PrometheusClient, sample_value

if TYPE_CHECKING:
    from kubemend.aiops.engine import RemediationEngine

logger = structlog.get_logger()
settings = get_settings()

# Most specific label wins when locating the resource behind a series
RESOURCE_LABELS = ("persistentvolumeclaim", "pod", "deployment", "node")


def series_key(rule_id: str, labels: dict[str, str]) -> tuple[str, frozenset]:
    return rule_id, frozenset(labels.items())


def to_metric_event(
    rule: RemediationRule, labels: dict[str, str], value: float, default_cluster: str
) -> RemediationEvent:
    resource_type, resource_name = "", ""
    for label in RESOURCE_LABELS:
        if labels.get(label):
            resource_type, resource_name = label, labels[label]
            break
    return RemediationEvent(
        type=TriggerType.METRIC.value,
        source=rule.trigger.source,
        cluster_id=labels.get("cluster") or default_cluster,
        namespace=labels.get("namespace", ""),
        resource_type=resource_type,
        resource_name=resource_name,
        reason="ThresholdExceeded",
        message=f"{rule.trigger.query} = {value:g} above {rule.trigger.threshold:g}",
        severity="warning",
        labels=dict(labels),
        data={"value": value, "threshold": rule.trigger.threshold, "rule_id": rule.id},
    )


class MetricTriggerLoop:
    """
    Usage:
        loop = MetricTriggerLoop(engine, PrometheusClient(), default_cluster="prod")
        await loop.start()
    """

    def __init__(
        self,
        engine: "RemediationEngine",
        prometheus: PrometheusClient,
        default_cluster: str = "",
        interval: int | None = None,
    ) -> None:
        self._engine = engine
        self._prometheus = prometheus
        self._default_cluster = default_cluster
        self._interval = interval or settings.metric_trigger_interval
        self._breaching_since: dict[tuple[str, frozenset], datetime] = {}
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._task is not None:
            return
        if not self._prometheus.is_configured:
            logger.info("metric_triggers_disabled", reason="prometheus not configured")
            return
        self._task = asyncio.create_task(self._run(), name="metric-trigger-loop")
        logger.info("metric_trigger_loop_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("metric_trigger_loop_stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("metric_trigger_tick_error", error=str(e))
            await asyncio.sleep(self._interval)

    async def tick(self, now: datetime | None = None) -> list[RemediationEvent]:
        """Evaluate every metric rule once; returns the events emitted."""
        now = now or utcnow()
        emitted = []
        live_keys = set()

        for rule in self._engine.rules.snapshot():
            if rule.trigger.type != TriggerType.METRIC:
                continue
            try:
                series = await self._prometheus.query(rule.trigger.query)
            except Exception as e:
                logger.warning("metric_trigger_query_failed", rule_id=rule.id, error=str(e))
                # Keep breach timers of this rule; an outage is not a recovery
                live_keys.update(k for k in self._breaching_since if k[0] == rule.id)
                continue

            hold = rule.trigger.duration or timedelta(0)
            for sample in series:
                value = sample_value(sample)
                labels: dict[str, Any] = sample.get("metric") or {}
                if value is None or value <= rule.trigger.threshold:
                    continue
                key = series_key(rule.id, labels)
                live_keys.add(key)
                since = self._breaching_since.setdefault(key, now)
                if now - since < hold:
                    continue
                event = to_metric_event(rule, labels, value, self._default_cluster)
                emitted.append(event)

        for key in list(self._breaching_since):
            if key not in live_keys:
                del self._breaching_since[key]

        for event in emitted:
            logger.info(
                "metric_threshold_breached",
                rule_id=event.data["rule_id"],
                resource=f"{event.resource_type}/{event.resource_name}",
                value=event.data["value"],
            )
            try:
                await self._engine.process_event(event)
            except Exception as e:
                logger.error("metric_event_processing_failed", rule_id=event.data["rule_id"], error=str(e))
        return emitted
