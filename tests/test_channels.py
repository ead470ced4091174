"""Tests for notification routing and delivery transports."""

import json

import httpx
import pytest

from conftest import RecordingNotifier, make_settings
from kubemend.aiops.models import RemediationAction
from kubemend.channels.router import NotificationRouter, create_notification_router
from kubemend.channels.slack_adapter import SlackAdapter
from kubemend.channels.webhook import WebhookClient, WebhookNotifier
from kubemend.exceptions import ExecutionError
from kubemend.services.approval_manager import approval_message


class FakeSlackWebClient:
    def __init__(self):
        self.posts = []

    async def chat_postMessage(self, channel, text):
        self.posts.append({"channel": channel, "text": text})
        return {"ok": True}


async def test_webhook_client_retries_server_errors():
    responses = iter([httpx.Response(503), httpx.Response(204)])
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return next(responses)

    client = WebhookClient(attempts=2, transport=httpx.MockTransport(handler))
    status = await client.post("https://hooks.example.com/x", {"hello": "world"})

    assert status == 204
    assert seen == [{"hello": "world"}, {"hello": "world"}]


async def test_webhook_client_does_not_retry_client_errors():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400)

    client = WebhookClient(attempts=3, transport=httpx.MockTransport(handler))
    with pytest.raises(ExecutionError):
        await client.post("https://hooks.example.com/x", {})
    assert len(calls) == 1


async def test_webhook_notifier_posts_text():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200)

    notifier = WebhookNotifier("https://hooks.example.com/x", WebhookClient(transport=httpx.MockTransport(handler)))
    await notifier.send("node cordoned", severity="high")
    assert bodies == [{"text": "node cordoned", "severity": "high"}]


async def test_router_falls_back_to_default_target():
    router = NotificationRouter(default_target="log")
    recorder = RecordingNotifier("log")
    router.register(recorder)

    used = await router.notify("pagerduty", "hello")

    assert used == "log"
    assert recorder.messages[0]["message"] == "hello"


async def test_router_uses_named_target():
    router = NotificationRouter()
    slack = RecordingNotifier("slack")
    router.register(slack)

    assert await router.notify("slack", "hi", channel="#ops") == "slack"
    assert slack.messages == [{"message": "hi", "channel": "#ops", "severity": None}]


async def test_slack_adapter_formats_severity():
    web = FakeSlackWebClient()
    slack = SlackAdapter(default_channel="#alerts", web_client=web)

    await slack.send("node-1 cordoned", severity="high")
    await slack.send("plain", channel="#ops")

    assert web.posts[0] == {"channel": "#alerts", "text": "🔴 [HIGH] node-1 cordoned"}
    assert web.posts[1] == {"channel": "#ops", "text": "plain"}


def test_slack_adapter_requires_credentials():
    with pytest.raises(ValueError):
        SlackAdapter()


def test_router_factory_registers_enabled_transports(tmp_path):
    settings = make_settings(
        tmp_path,
        enable_slack=True,
        slack_webhook_url="https://hooks.slack.com/services/T/B/X",
        enable_webhooks=True,
        webhook_url="https://hooks.example.com/x",
    )
    router = create_notification_router(settings, WebhookClient())

    assert set(router.notifiers) == {"log", "slack", "webhook"}
    assert router.default_target == "slack"


def test_approval_message_names_the_action():
    action = RemediationAction(
        rule_id="rule-scale-oom",
        rule_name="Scale Up on OOMKilled",
        action_type="patch",
        cluster_id="prod",
        namespace="default",
        resource_type="pod",
        resource_name="api-7f9",
        parameters={"value": "1Gi"},
    )
    text = approval_message(action, timeout_seconds=3600)

    assert action.id in text
    assert "Scale Up on OOMKilled" in text
    assert "default/api-7f9" in text
    assert "expires in 60 minutes" in text
