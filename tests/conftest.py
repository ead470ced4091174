"""Test configuration and fixtures."""

from typing import Any

import httpx
import pytest
import pytest_asyncio

from kubemend.aiops.engine import RemediationEngine
from kubemend.aiops.models import RemediationEvent
from kubemend.channels.base import Notifier
from kubemend.channels.router import NotificationRouter
from kubemend.channels.webhook import WebhookClient
from kubemend.config import Settings
from kubemend.database import SQLRemediationStore, close_db, init_db, make_engine, make_session_factory
from kubemend.exceptions import ExecutionError
from kubemend.k8s.base import ClusterClient


class FakeClusterClient(ClusterClient):
    """In-memory cluster double recording every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple]] = []
        # operation name -> number of upcoming calls that should fail
        self.failures: dict[str, int] = {}
        self.replicas: dict[tuple[str, str], int] = {}
        self.nodes: dict[str, dict[str, Any]] = {}
        self.pods_by_node: dict[str, list[dict[str, Any]]] = {}
        self.warning_events: list[dict[str, Any]] = []
        self.failing_pods: set[str] = set()

    def _record(self, op: str, *args) -> None:
        self.calls.append((op, args))
        if self.failures.get(op, 0) > 0:
            self.failures[op] -= 1
            raise ExecutionError(f"{op} failed")

    def ops(self) -> list[str]:
        return [op for op, _ in self.calls]

    async def delete_pod(self, namespace, name, grace_period=None):
        self._record("delete_pod", namespace, name, grace_period)
        if name in self.failing_pods:
            raise ExecutionError(f"cannot delete {name}")

    async def get_scale(self, namespace, name):
        self._record("get_scale", namespace, name)
        return self.replicas.get((namespace, name), 1)

    async def set_scale(self, namespace, name, replicas):
        self._record("set_scale", namespace, name, replicas)
        self.replicas[(namespace, name)] = replicas

    async def json_patch(self, resource_type, namespace, name, path, value):
        self._record("json_patch", resource_type, namespace, name, path, value)

    async def get_node(self, name):
        self._record("get_node", name)
        return self.nodes.setdefault(name, {"metadata": {"name": name}, "spec": {}})

    async def update_node(self, name, node):
        self._record("update_node", name)
        self.nodes[name] = node

    async def list_pods_on_node(self, node_name):
        self._record("list_pods_on_node", node_name)
        return list(self.pods_by_node.get(node_name, []))

    async def list_pods(self, namespace="", field_selector=None):
        self._record("list_pods", namespace, field_selector)
        return []

    async def exec_in_pod(self, namespace, name, command, container=None):
        self._record("exec_in_pod", namespace, name, tuple(command), container)
        return "ok"

    async def list_warning_events(self):
        self._record("list_warning_events")
        return list(self.warning_events)


class RecordingNotifier(Notifier):
    """Notifier double that keeps every delivered message."""

    def __init__(self, name: str = "log") -> None:
        super().__init__(name)
        self.messages: list[dict[str, Any]] = []

    async def send(self, message, channel=None, severity=None):
        self.messages.append({"message": message, "channel": channel, "severity": severity})


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'kubemend.db'}",
        "environment": "production",
        "remediation_retry_delay_seconds": 0,
        "approval_sweep_interval": 3600,
        "k8s_watchloop_enabled": False,
        "enable_slack": False,
        "enable_webhooks": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def backoff_event(**overrides) -> RemediationEvent:
    """The crash-loop BackOff warning most engine tests feed in."""
    values = {
        "type": "Warning",
        "source": "kubernetes",
        "cluster_id": "prod",
        "namespace": "default",
        "resource_type": "pod",
        "resource_name": "app-1",
        "reason": "BackOff",
        "message": "Back-off restarting failed container",
    }
    values.update(overrides)
    return RemediationEvent(**values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest_asyncio.fixture
async def store(settings):
    """SQL store over a file-backed SQLite database (one per test)."""
    engine = make_engine(settings.database_url, echo=False)
    await init_db(engine)
    yield SQLRemediationStore(make_session_factory(engine))
    await close_db(engine)


@pytest.fixture
def cluster():
    return FakeClusterClient()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def notifications(notifier):
    # Replaces the log transport, so every unconfigured target lands here
    router = NotificationRouter(default_target="log")
    router.register(notifier)
    return router


@pytest.fixture
def webhook_requests():
    return []


@pytest.fixture
def webhooks(webhook_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        webhook_requests.append(request)
        return httpx.Response(200)

    return WebhookClient(transport=httpx.MockTransport(handler))


@pytest_asyncio.fixture
async def make_engine_for(store, notifications, webhooks, cluster):
    """Factory building a started engine with the fake cluster registered as ``prod``."""
    engines = []

    async def factory(settings: Settings) -> RemediationEngine:
        engine = RemediationEngine(store, settings=settings, notifications=notifications, webhooks=webhooks)
        engine.register_k8s_client("prod", cluster)
        await engine.start()
        engines.append(engine)
        return engine

    yield factory
    for engine in engines:
        await engine.stop(drain=True)


@pytest_asyncio.fixture
async def engine(make_engine_for, settings):
    return await make_engine_for(settings)
