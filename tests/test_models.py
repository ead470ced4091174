"""Tests for rule/action model construction and validation."""

from datetime import timedelta

import pytest

from kubemend.aiops.defaults import default_rules
from kubemend.aiops.models import (
    ActionType,
    FailurePolicy,
    NotifyParams,
    PatchParams,
    RemediationRule,
    RuleAction,
    RuleTrigger,
    ScaleParams,
    parse_params,
    params_to_dict,
)
from kubemend.exceptions import ValidationError


def test_step_parameters_are_typed_per_action():
    step = RuleAction(type="scale", parameters={"replicas": "3"})
    assert isinstance(step.parameters, ScaleParams)
    assert step.parameters.replicas == 3
    assert step.on_failure is FailurePolicy.CONTINUE


def test_unknown_parameters_are_kept_as_extra():
    params = parse_params(ActionType.NOTIFY, {"message": "hi", "mention": "@oncall"})
    assert isinstance(params, NotifyParams)
    assert params.extra == {"mention": "@oncall"}
    assert params_to_dict(params) == {"message": "hi", "mention": "@oncall"}


@pytest.mark.parametrize(
    "action_type,raw",
    [
        ("patch", {"value": "1Gi"}),
        ("patch", {"path": "/spec/replicas"}),
        ("scale", {"replicas": -1}),
        ("restart_pod", {"grace_period": "soon"}),
        ("exec", {}),
        ("webhook", {"url": "ftp://example.com"}),
    ],
)
def test_invalid_parameters_rejected_at_build_time(action_type, raw):
    with pytest.raises(ValidationError):
        RuleAction(type=action_type, parameters=raw)


def test_invalid_enum_values_raise_validation_error():
    with pytest.raises(ValidationError):
        RuleAction(type="reboot_cluster")
    with pytest.raises(ValidationError):
        RuleAction(type="notify", on_failure="ignore")
    with pytest.raises(ValidationError):
        RuleTrigger(type="cron")


def test_metric_trigger_requires_query_and_threshold():
    with pytest.raises(ValidationError):
        RuleTrigger(type="metric", query="up")


def test_mismatched_parameter_object_rejected():
    with pytest.raises(ValidationError):
        RuleAction(type="scale", parameters=PatchParams(path="/spec/replicas", value=2))


def test_rule_validation():
    trigger = RuleTrigger()
    with pytest.raises(ValidationError):
        RemediationRule(name="", trigger=trigger, actions=[RuleAction(type="notify")]).validate()
    with pytest.raises(ValidationError):
        RemediationRule(name="no steps", trigger=trigger, actions=[]).validate()
    with pytest.raises(ValidationError):
        RemediationRule(
            name="negative", trigger=trigger, actions=[RuleAction(type="notify")], max_executions=-1
        ).validate()


def test_ordered_actions_sorts_by_order():
    rule = RemediationRule(
        name="ordered",
        trigger=RuleTrigger(),
        actions=[RuleAction(type="notify", order=2), RuleAction(type="restart_pod", order=1)],
    )
    assert [a.type for a in rule.ordered_actions()] == [ActionType.RESTART_POD, ActionType.NOTIFY]


def test_rule_dict_round_trip_keeps_semantics():
    original = next(r for r in default_rules() if r.id == "rule-scale-oom")
    restored = RemediationRule.from_dict(original.to_dict())

    assert restored.cooldown == timedelta(minutes=30)
    assert restored.require_approval
    assert restored.trigger.event_types == {"Warning"}
    assert isinstance(restored.actions[0].parameters, PatchParams)
    assert restored.actions[0].parameters.value == "1Gi"


def test_default_rules_are_valid_and_unique():
    rules = default_rules()
    for rule in rules:
        rule.validate()
    assert len({r.id for r in rules}) == 5
    assert len({r.name for r in rules}) == 5
