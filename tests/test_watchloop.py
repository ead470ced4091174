"""Tests for the Kubernetes Warning-event watchloop."""

from kubemend.aiops.models import ActionStatus, ActionType
from kubemend.monitoring.watchloop import K8sEventWatchLoop, to_remediation_event


def backoff_warning(count: int = 1, uid: str = "evt-1") -> dict:
    return {
        "uid": uid,
        "namespace": "default",
        "name": "app-1.17a",
        "reason": "BackOff",
        "message": "Back-off restarting failed container",
        "type": "Warning",
        "count": count,
        "source": "kubelet",
        "involved_kind": "Pod",
        "involved_name": "app-1",
        "involved_namespace": "default",
    }


def test_event_conversion():
    event = to_remediation_event("prod", backoff_warning(count=4))

    assert event.type == "Warning"
    assert event.cluster_id == "prod"
    assert event.resource_type == "pod"
    assert event.resource_name == "app-1"
    assert event.namespace == "default"
    assert event.data["involvedObject.kind"] == "Pod"
    assert event.data["count"] == 4


async def test_tick_delivers_each_occurrence_once(engine, cluster):
    loop = K8sEventWatchLoop(engine, interval=1)
    cluster.warning_events = [backoff_warning()]

    assert await loop.tick() == 1
    assert await loop.tick() == 0

    cluster.warning_events = [backoff_warning(count=2)]
    assert await loop.tick() == 1

    await engine.wait_idle()
    actions, total = await engine.list_actions()
    # The second occurrence lands inside the rule's cooldown
    assert total == 1
    assert actions[0].action_type == ActionType.RESTART_POD
    assert actions[0].status == ActionStatus.COMPLETED


async def test_node_warning_reaches_cordon_rule(engine, cluster):
    loop = K8sEventWatchLoop(engine, interval=1)
    cluster.warning_events = [{
        "uid": "evt-node",
        "reason": "NodeNotReady",
        "message": "Node node-3 status is now: NodeNotReady",
        "type": "Warning",
        "count": 1,
        "involved_kind": "Node",
        "involved_name": "node-3",
    }]

    await loop.tick()
    [action] = (await engine.list_actions())[0]

    assert action.rule_id == "rule-node-cordon"
    assert action.status == ActionStatus.PENDING_APPROVAL
    assert action.resource_name == "node-3"


async def test_listing_failure_is_contained(engine, cluster):
    cluster.failures["list_warning_events"] = 1
    loop = K8sEventWatchLoop(engine, interval=1)

    assert await loop.tick() == 0
    cluster.warning_events = [backoff_warning()]
    assert await loop.tick() == 1
