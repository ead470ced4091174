"""
Remediation domain: rule matching, queued execution, persistence contract.

The engine itself lives in ``kubemend.aiops.engine``.
"""

from kubemend.aiops.models import (
    ActionStatus,
    ActionType,
    ConditionOperator,
    ConditionType,
    FailurePolicy,
    RemediationAction,
    RemediationEvent,
    RemediationRule,
    RuleAction,
    RuleCondition,
    RuleScope,
    RuleTrigger,
    TriggerType,
)
from kubemend.aiops.rule_registry import RuleRegistry
from kubemend.aiops.store import RemediationStore
from kubemend.aiops.worker_pool import ActionWorkerPool

__all__ = [
    "ActionWorkerPool",
    "RuleRegistry",
    "RemediationStore",
    "RemediationRule", "RuleTrigger", "RuleCondition", "RuleAction", "RuleScope",
    "RemediationAction", "RemediationEvent",
    "TriggerType", "ConditionType", "ConditionOperator", "ActionType", "FailurePolicy", "ActionStatus",
]
