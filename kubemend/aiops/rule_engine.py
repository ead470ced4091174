"""
Rule matching - decides which rules an incoming event should fire.

Matching runs in three stages, mirroring the order the engine applies them:

1. ``find_matching_rules``: trigger type, event types, trigger filters, scope
2. ``check_cooldown``: time since the rule last fired
3. ``evaluate_conditions``: per-rule field/operator/value predicates

All functions are pure over the rule and event; bookkeeping lives on the
rule record itself.
"""

import re
from datetime import datetime, timedelta
from typing import Any, Iterable

import structlog

from kubemend.aiops.models import (
    ConditionOperator,
    ConditionType,
    RemediationEvent,
    RemediationRule,
    RuleCondition,
    RuleScope,
    TriggerType,
    utcnow,
)

logger = structlog.get_logger()

WILDCARD = "*"

_IN_SPLIT = re.compile(r",\s*")


def event_field(event: RemediationEvent, key: str) -> str:
    """Resolve a trigger filter key against the event."""
    if key == "reason":
        return event.reason
    if key == "type":
        return event.type
    if key == "severity":
        return event.severity
    if key == "source":
        return event.source
    if key == "namespace":
        return event.namespace
    if key == "resource_type":
        return event.resource_type
    if key in event.data:
        return _stringify(event.data[key])
    return ""


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def match_filters(filters: dict[str, str | list[str]], event: RemediationEvent) -> bool:
    """Every filter must match: strings by equality, lists by membership."""
    for key, expected in filters.items():
        actual = event_field(event, key)
        if isinstance(expected, list):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def _allowed(allow_list: Iterable[str], value: str) -> bool:
    allow_list = list(allow_list)
    if not allow_list:
        return True
    return any(item == WILDCARD or item == value for item in allow_list)


def match_scope(scope: RuleScope, event: RemediationEvent) -> bool:
    return _allowed(scope.clusters, event.cluster_id) and _allowed(scope.namespaces, event.namespace)


def match_trigger(rule: RemediationRule, event: RemediationEvent) -> bool:
    trigger = rule.trigger
    if trigger.type == TriggerType.EVENT:
        if trigger.event_types and event.type not in trigger.event_types:
            return False
        return match_filters(trigger.filters, event)

    # Metric and schedule rules only react to events emitted by their evaluator
    if event.type != trigger.type.value:
        return False
    if trigger.source and event.source != trigger.source:
        return False
    return match_filters(trigger.filters, event)


def find_matching_rules(rules: Iterable[RemediationRule], event: RemediationEvent) -> list[RemediationRule]:
    """Filter rules down to those whose trigger and scope accept the event."""
    matches = []
    for rule in rules:
        if not rule.enabled:
            continue
        if not match_trigger(rule, event):
            continue
        if not match_scope(rule.scope, event):
            continue
        logger.debug(
            "rule_trigger_matched",
            rule_id=rule.id,
            name=rule.name,
            event_type=event.type,
            reason=event.reason,
            resource=event.resource_name,
        )
        matches.append(rule)
    return matches


def check_cooldown(rule: RemediationRule, default_cooldown: timedelta, now: datetime | None = None) -> bool:
    """True when the rule may fire again."""
    if rule.last_triggered is None:
        return True
    cooldown = rule.cooldown if rule.cooldown is not None else default_cooldown
    now = now or utcnow()
    return now - rule.last_triggered > cooldown


def compare_values(actual: str, operator: ConditionOperator, expected: str) -> bool:
    if operator == ConditionOperator.EQ:
        return actual == expected
    if operator == ConditionOperator.NEQ:
        return actual != expected
    if operator == ConditionOperator.CONTAINS:
        return expected in actual
    if operator == ConditionOperator.REGEX:
        try:
            return re.search(expected, actual) is not None
        except re.error:
            logger.warning("condition_regex_invalid", pattern=expected)
            return False
    if operator == ConditionOperator.IN:
        return actual in _IN_SPLIT.split(expected)
    if operator in (ConditionOperator.GT, ConditionOperator.LT):
        try:
            a, e = float(actual), float(expected)
        except ValueError:
            return False
        return a > e if operator == ConditionOperator.GT else a < e
    return actual == expected


def evaluate_condition(condition: RuleCondition, event: RemediationEvent) -> bool:
    if condition.type == ConditionType.TIME_WINDOW:
        # Event-count windows are not tracked; treat as satisfied
        logger.debug("time_window_condition_skipped", field=condition.field)
        return True

    if condition.type == ConditionType.RESOURCE_STATUS:
        if condition.field not in event.data:
            return True
        actual = _stringify(event.data[condition.field])
    elif condition.type == ConditionType.LABEL:
        actual = event.labels.get(condition.field, "")
    else:
        actual = event.annotations.get(condition.field, "")

    return compare_values(actual, condition.operator, condition.value)


def evaluate_conditions(rule: RemediationRule, event: RemediationEvent) -> bool:
    """All conditions must pass; a rule without conditions always passes."""
    return all(evaluate_condition(c, event) for c in rule.conditions)
