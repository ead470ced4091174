"""Tests for Prometheus-backed metric triggers."""

from datetime import timedelta

import httpx
import pytest

from kubemend.aiops.models import ActionStatus, utcnow
from kubemend.exceptions import ExecutionError
from kubemend.monitoring.metric_triggers import MetricTriggerLoop
from kubemend.monitoring.prometheus import PrometheusClient, sample_value


def prometheus_returning(*samples, status="success"):
    def handler(request):
        assert request.url.path == "/api/v1/query"
        return httpx.Response(200, json={"status": status, "data": {"resultType": "vector", "result": list(samples)}})

    return PrometheusClient("http://prometheus:9090", transport=httpx.MockTransport(handler))


def pvc_sample(value: str, pvc: str = "data-db-0") -> dict:
    return {
        "metric": {"namespace": "data", "persistentvolumeclaim": pvc},
        "value": [1700000000, value],
    }


def test_sample_value():
    assert sample_value(pvc_sample("0.9")) == 0.9
    assert sample_value({"value": [0, "NaN?"]}) is None
    assert sample_value({}) is None


async def test_unconfigured_client_returns_nothing():
    assert await PrometheusClient("").query("up") == []


async def test_query_error_raises():
    client = prometheus_returning(status="error")
    with pytest.raises(ExecutionError):
        await client.query("up")


async def test_breach_must_be_sustained_for_duration(engine):
    loop = MetricTriggerLoop(engine, prometheus_returning(pvc_sample("0.93")), default_cluster="prod")
    start = utcnow()

    assert await loop.tick(now=start) == []
    assert await loop.tick(now=start + timedelta(minutes=5)) == []
    [event] = await loop.tick(now=start + timedelta(minutes=10))

    assert event.type == "metric"
    assert event.source == "prometheus"
    assert event.cluster_id == "prod"
    assert event.resource_type == "persistentvolumeclaim"
    assert event.resource_name == "data-db-0"

    actions, _ = await engine.list_actions({"rule_id": "rule-pvc-expand"})
    assert len(actions) == 1
    assert actions[0].status == ActionStatus.PENDING_APPROVAL
    assert actions[0].parameters["value"] == "20Gi"


async def test_values_under_threshold_reset_the_timer(engine):
    high = MetricTriggerLoop(engine, prometheus_returning(pvc_sample("0.93")), default_cluster="prod")
    start = utcnow()
    await high.tick(now=start)

    high._prometheus = prometheus_returning(pvc_sample("0.40"))
    assert await high.tick(now=start + timedelta(minutes=6)) == []

    high._prometheus = prometheus_returning(pvc_sample("0.93"))
    assert await high.tick(now=start + timedelta(minutes=12)) == []
