"""Tests for step dispatch and per-step failure policies."""

import json

import pytest

from conftest import make_settings
from kubemend.aiops.executor import ActionExecutor
from kubemend.aiops.models import (
    ActionStatus,
    FailurePolicy,
    RemediationAction,
    RemediationRule,
    RuleAction,
    RuleTrigger,
)
from kubemend.aiops.rule_registry import RuleRegistry
from kubemend.k8s.registry import ClusterClientRegistry


@pytest.fixture
def clients(cluster):
    registry = ClusterClientRegistry()
    registry.register("prod", cluster)
    return registry


@pytest.fixture
def rules():
    return RuleRegistry()


@pytest.fixture
def executor(store, clients, notifications, webhooks, settings, rules):
    return ActionExecutor(
        store=store,
        clients=clients,
        notifications=notifications,
        webhooks=webhooks,
        settings=settings,
        on_rule_executed=lambda rule_id, when: rules.mark_triggered(rule_id, when, executed=True),
    )


async def run_rule(store, executor, steps, resource_type="pod", resource_name="app-1", dry_run=False):
    rule = RemediationRule(id="rule-x", name="test rule", trigger=RuleTrigger(), actions=steps)
    await store.save_rule(rule)
    first = rule.ordered_actions()[0]
    action = RemediationAction(
        rule_id=rule.id,
        rule_name=rule.name,
        action_type=first.type,
        cluster_id="prod",
        namespace="default",
        resource_type=resource_type,
        resource_name=resource_name,
        status=ActionStatus.QUEUED,
        dry_run=dry_run,
    )
    await store.save_action(action)
    await executor.execute(action)
    return await store.get_action(action.id)


async def test_restart_then_notify_completes(store, executor, cluster, notifier):
    action = await run_rule(store, executor, [
        RuleAction(type="restart_pod", order=1, on_failure="abort"),
        RuleAction(type="notify", order=2, parameters={"message": "{resource_name} in {namespace} restarted"}),
    ])

    assert action.status == ActionStatus.COMPLETED
    assert action.result["success"] is True
    assert [s["status"] for s in action.result["steps"]] == ["succeeded", "succeeded"]
    assert cluster.calls[0] == ("delete_pod", ("default", "app-1", 30))
    assert notifier.messages[-1]["message"] == "app-1 in default restarted"
    assert action.started_at is not None and action.completed_at is not None
    assert action.duration is not None


async def test_abort_policy_stops_remaining_steps(store, executor, cluster, notifier):
    cluster.failures["delete_pod"] = 1
    action = await run_rule(store, executor, [
        RuleAction(type="restart_pod", order=1, on_failure=FailurePolicy.ABORT),
        RuleAction(type="notify", order=2),
    ])

    assert action.status == ActionStatus.FAILED
    assert "delete_pod failed" in action.error
    assert len(action.result["steps"]) == 1
    assert notifier.messages == []


async def test_continue_policy_yields_completed_with_errors(store, executor, cluster):
    cluster.failures["delete_pod"] = 1
    action = await run_rule(store, executor, [
        RuleAction(type="restart_pod", order=1, on_failure=FailurePolicy.CONTINUE),
        RuleAction(type="scale", order=2, parameters={"replicas": 3}),
    ])

    assert action.status == ActionStatus.COMPLETED_WITH_ERRORS
    assert [s["status"] for s in action.result["steps"]] == ["failed", "succeeded"]
    assert cluster.replicas[("default", "app-1")] == 3


async def test_retry_policy_recovers(store, executor, cluster):
    cluster.failures["delete_pod"] = 2
    action = await run_rule(store, executor, [
        RuleAction(type="restart_pod", order=1, on_failure=FailurePolicy.RETRY, max_retries=2),
    ])

    assert action.status == ActionStatus.COMPLETED
    assert action.result["steps"][0]["attempts"] == 3
    assert cluster.ops().count("delete_pod") == 3


async def test_retry_policy_exhausted_fails(store, executor, cluster):
    cluster.failures["delete_pod"] = 5
    action = await run_rule(store, executor, [
        RuleAction(type="restart_pod", order=1, on_failure=FailurePolicy.RETRY, max_retries=1),
        RuleAction(type="notify", order=2),
    ])

    assert action.status == ActionStatus.FAILED
    assert cluster.ops().count("delete_pod") == 2
    assert len(action.result["steps"]) == 1


async def test_missing_cluster_client_is_a_step_error(store, executor, clients):
    clients.unregister("prod")
    action = await run_rule(store, executor, [RuleAction(type="restart_pod", on_failure="abort")])

    assert action.status == ActionStatus.FAILED
    assert "no kubernetes client for cluster prod" in action.error


async def test_missing_rule_fails_action(store, executor):
    action = RemediationAction(rule_id="gone", rule_name="gone", action_type="notify", status="queued")
    await store.save_action(action)
    await executor.execute(action)

    stored = await store.get_action(action.id)
    assert stored.status == ActionStatus.FAILED
    assert "rule not found" in stored.error


async def test_dry_run_skips_cluster_calls(store, executor, cluster):
    action = await run_rule(store, executor, [
        RuleAction(type="restart_pod", order=1),
        RuleAction(type="cordon", order=2),
    ], dry_run=True)

    assert action.status == ActionStatus.COMPLETED
    assert cluster.calls == []
    assert {s["status"] for s in action.result["steps"]} == {"dry_run"}


async def test_delete_only_supports_pods(store, executor, cluster):
    action = await run_rule(store, executor, [RuleAction(type="delete", on_failure="abort")],
                            resource_type="deployment")
    assert action.status == ActionStatus.FAILED
    assert "unsupported resource type for delete" in action.error
    assert cluster.calls == []

    action = await run_rule(store, executor, [RuleAction(type="delete")], resource_type="Pod")
    assert action.status == ActionStatus.COMPLETED
    assert cluster.calls[-1] == ("delete_pod", ("default", "app-1", 0))


async def test_patch_resolves_kind_from_step_target(store, executor, cluster):
    action = await run_rule(store, executor, [
        RuleAction(type="patch", target="deployment",
                   parameters={"path": "/spec/template/spec/containers/0/resources/limits/memory", "value": "1Gi"}),
    ])

    assert action.status == ActionStatus.COMPLETED
    op, args = cluster.calls[-1]
    assert op == "json_patch"
    assert args == ("deployment", "default", "app-1",
                    "/spec/template/spec/containers/0/resources/limits/memory", "1Gi")


async def test_patch_of_unsupported_kind_fails(store, executor, cluster):
    action = await run_rule(store, executor, [
        RuleAction(type="patch", on_failure="abort", parameters={"path": "/spec/replicas", "value": 2}),
    ], resource_type="statefulset")
    assert action.status == ActionStatus.FAILED
    assert cluster.calls == []


async def test_cordon_marks_node_unschedulable(store, executor, cluster):
    action = await run_rule(store, executor, [RuleAction(type="cordon")],
                            resource_type="node", resource_name="node-1")
    assert action.status == ActionStatus.COMPLETED
    assert cluster.nodes["node-1"]["spec"]["unschedulable"] is True


async def test_drain_skips_daemonsets_and_collects_failures(store, executor, cluster):
    cluster.pods_by_node["node-1"] = [
        {"namespace": "default", "name": "web-1", "owner_kinds": ["ReplicaSet"]},
        {"namespace": "kube-system", "name": "fluentd-x", "owner_kinds": ["DaemonSet"]},
        {"namespace": "default", "name": "stuck-1", "owner_kinds": []},
    ]
    cluster.failing_pods.add("stuck-1")

    action = await run_rule(store, executor, [RuleAction(type="drain", parameters={"grace_period": 10})],
                            resource_type="node", resource_name="node-1")

    assert action.status == ActionStatus.COMPLETED
    detail = action.result["steps"][0]["detail"]
    assert detail["evicted"] == ["default/web-1"]
    assert detail["failed"][0]["pod"] == "default/stuck-1"
    assert detail["skipped_daemonset"] == 1
    assert cluster.nodes["node-1"]["spec"]["unschedulable"] is True


async def test_webhook_skipped_when_disabled(store, executor, webhook_requests):
    action = await run_rule(store, executor, [RuleAction(type="webhook", parameters={"url": "https://hooks.example.com/x"})])
    assert action.status == ActionStatus.COMPLETED
    assert webhook_requests == []


async def test_webhook_posts_payload_when_enabled(tmp_path, store, clients, notifications, webhooks, webhook_requests):
    settings = make_settings(tmp_path, enable_webhooks=True, webhook_url="https://hooks.example.com/default")
    executor = ActionExecutor(store, clients, notifications, webhooks, settings)

    action = await run_rule(store, executor, [RuleAction(type="webhook")])

    assert action.status == ActionStatus.COMPLETED
    assert str(webhook_requests[0].url) == "https://hooks.example.com/default"
    payload = json.loads(webhook_requests[0].content)
    assert payload["action_id"] == action.id
    assert payload["resource_name"] == "app-1"
    assert payload["cluster_id"] == "prod"
    assert "timestamp" in payload


async def test_rule_bookkeeping_updated_on_completion(store, executor, rules):
    rule = RemediationRule(id="rule-x", name="test rule", trigger=RuleTrigger(), actions=[RuleAction(type="notify")])
    rules.add(rule)
    await run_rule(store, executor, [RuleAction(type="notify")])

    stored = await store.get_rule("rule-x")
    assert stored.execution_count == 1
    assert stored.last_triggered is not None
    assert rules.get("rule-x").execution_count == 1
