"""Tests for the SQLAlchemy remediation store."""

from datetime import timedelta, timezone

import pytest
from sqlalchemy import update

from kubemend.aiops.defaults import default_rules
from kubemend.aiops.models import ActionStatus, RemediationAction, utcnow
from kubemend.database.models import RemediationRuleRecord
from kubemend.exceptions import ValidationError


def make_action(n: int, **overrides) -> RemediationAction:
    values = {
        "rule_id": "rule-restart-crashloop",
        "rule_name": "Restart CrashLoopBackOff Pods",
        "action_type": "restart_pod",
        "cluster_id": "prod",
        "namespace": "default",
        "resource_type": "pod",
        "resource_name": f"app-{n}",
        "status": ActionStatus.QUEUED,
        "created_at": utcnow() + timedelta(seconds=n),
    }
    values.update(overrides)
    return RemediationAction(**values)


async def test_rule_round_trip(store):
    rule = default_rules()[0]
    await store.save_rule(rule)

    stored = await store.get_rule(rule.id)
    assert stored.name == rule.name
    assert stored.cooldown == timedelta(minutes=10)
    assert stored.trigger.filters == {"reason": "BackOff"}
    assert [a.type for a in stored.ordered_actions()] == [a.type for a in rule.ordered_actions()]
    assert stored.created_at.tzinfo is not None
    assert (await store.get_rule_by_name(rule.name)).id == rule.id


async def test_load_enabled_rules_skips_disabled(store):
    rules = default_rules()
    rules[1].enabled = False
    for rule in rules:
        await store.save_rule(rule)

    loaded = {r.id for r in await store.load_enabled_rules()}
    assert rules[1].id not in loaded
    assert len(loaded) == len(rules) - 1
    assert len(await store.list_rules()) == len(rules)


async def test_invalid_stored_rule_is_skipped_on_load(store):
    for rule in default_rules():
        await store.save_rule(rule)
    async with store._session() as session:
        await session.execute(
            update(RemediationRuleRecord)
            .where(RemediationRuleRecord.id == "rule-scale-oom")
            .values(actions=[{"type": "teleport"}])
        )

    loaded = {r.id for r in await store.load_enabled_rules()}
    assert "rule-scale-oom" not in loaded
    assert "rule-restart-crashloop" in loaded


async def test_record_rule_trigger(store):
    rule = default_rules()[0]
    await store.save_rule(rule)
    when = utcnow()

    await store.record_rule_trigger(rule.id, when)
    stored = await store.get_rule(rule.id)
    assert stored.execution_count == 0
    assert stored.last_triggered == when

    await store.record_rule_trigger(rule.id, when, executed=True)
    assert (await store.get_rule(rule.id)).execution_count == 1


async def test_delete_rule(store):
    rule = default_rules()[0]
    await store.save_rule(rule)
    assert await store.delete_rule(rule.id)
    assert not await store.delete_rule(rule.id)
    assert await store.get_rule(rule.id) is None


async def test_action_round_trip_keeps_timestamps_aware(store):
    action = make_action(1, result={"steps": []}, parameters={"grace_period": 30})
    action.started_at = utcnow()
    action.duration = timedelta(seconds=2.5)
    await store.save_action(action)

    stored = await store.get_action(action.id)
    assert stored.status == ActionStatus.QUEUED
    assert stored.parameters == {"grace_period": 30}
    assert stored.duration == timedelta(seconds=2.5)
    assert stored.started_at.tzinfo == timezone.utc
    assert stored.started_at == action.started_at


async def test_save_action_updates_in_place(store):
    action = make_action(1)
    await store.save_action(action)
    action.status = ActionStatus.FAILED
    action.error = "boom"
    await store.save_action(action)

    stored = await store.get_action(action.id)
    assert stored.status == ActionStatus.FAILED
    assert stored.error == "boom"


async def test_query_actions_newest_first_with_total(store):
    for n in range(5):
        await store.save_action(make_action(n, cluster_id="prod" if n % 2 == 0 else "staging"))

    page, total = await store.query_actions(None, limit=2, offset=0)
    assert total == 5
    assert [a.resource_name for a in page] == ["app-4", "app-3"]

    prod, prod_total = await store.query_actions({"cluster_id": "prod"}, limit=10, offset=1)
    assert prod_total == 3
    assert [a.resource_name for a in prod] == ["app-2", "app-0"]

    by_status, _ = await store.query_actions({"status": ActionStatus.QUEUED}, limit=10, offset=0)
    assert len(by_status) == 5


async def test_query_actions_rejects_unknown_filters(store):
    with pytest.raises(ValidationError):
        await store.query_actions({"namespace": "default"}, limit=10, offset=0)


async def test_list_actions_by_status(store):
    await store.save_action(make_action(1, status=ActionStatus.PENDING_APPROVAL))
    await store.save_action(make_action(2))

    pending = await store.list_actions_by_status(ActionStatus.PENDING_APPROVAL)
    assert [a.resource_name for a in pending] == ["app-1"]


async def test_transition_action_only_from_expected_status(store):
    action = make_action(1, status=ActionStatus.PENDING_APPROVAL)
    await store.save_action(action)

    action.status = ActionStatus.REJECTED
    action.result = {"rejected_by": "alice", "reason": "no"}
    assert await store.transition_action(action, ActionStatus.PENDING_APPROVAL)

    action.status = ActionStatus.QUEUED
    assert not await store.transition_action(action, ActionStatus.PENDING_APPROVAL)

    stored = await store.get_action(action.id)
    assert stored.status == ActionStatus.REJECTED
    assert stored.result == {"rejected_by": "alice", "reason": "no"}
    assert not await store.transition_action(make_action(2), ActionStatus.QUEUED)
