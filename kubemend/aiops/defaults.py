"""Built-in remediation rules seeded into the store at startup when absent."""

from datetime import timedelta

from kubemend.aiops.models import (
    ActionType,
    ConditionOperator,
    ConditionType,
    FailurePolicy,
    RemediationRule,
    RuleAction,
    RuleCondition,
    RuleTrigger,
    TriggerType,
)


def default_rules() -> list[RemediationRule]:
    """Return fresh copies of the built-in rules."""
    return [
        RemediationRule(
            id="rule-restart-crashloop",
            name="Restart CrashLoopBackOff Pods",
            description="Automatically restart pods stuck in CrashLoopBackOff after multiple failures",
            priority=100,
            trigger=RuleTrigger(
                type=TriggerType.EVENT,
                source="kubernetes",
                event_types={"Warning"},
                filters={"reason": "BackOff"},
            ),
            conditions=[
                RuleCondition(ConditionType.RESOURCE_STATUS, "status.phase", ConditionOperator.EQ, "Running"),
                RuleCondition(ConditionType.LABEL, "app.kubernetes.io/managed-by", ConditionOperator.NEQ, "helm"),
            ],
            actions=[
                RuleAction(
                    type=ActionType.RESTART_POD,
                    target="{resource_name}",
                    parameters={"grace_period": 30},
                    order=1,
                    on_failure=FailurePolicy.ABORT,
                    max_retries=2,
                ),
                RuleAction(
                    type=ActionType.NOTIFY,
                    target="slack",
                    parameters={
                        "channel": "#alerts",
                        "message": "Pod {resource_name} in {namespace} was automatically restarted due to CrashLoopBackOff",
                    },
                    order=2,
                    on_failure=FailurePolicy.CONTINUE,
                ),
            ],
            cooldown=timedelta(minutes=10),
            max_executions=3,
        ),
        RemediationRule(
            id="rule-scale-oom",
            name="Scale Up on OOMKilled",
            description="Increase memory limits when pods are OOMKilled repeatedly",
            priority=90,
            trigger=RuleTrigger(
                type=TriggerType.EVENT,
                source="kubernetes",
                event_types={"Warning"},
                filters={"reason": "OOMKilled"},
            ),
            conditions=[
                RuleCondition(ConditionType.TIME_WINDOW, "count", ConditionOperator.GT, "3"),
            ],
            actions=[
                RuleAction(
                    type=ActionType.PATCH,
                    target="deployment",
                    parameters={
                        "path": "/spec/template/spec/containers/0/resources/limits/memory",
                        "value": "1Gi",
                    },
                    order=1,
                    on_failure=FailurePolicy.ABORT,
                    max_retries=1,
                ),
                RuleAction(
                    type=ActionType.NOTIFY,
                    target="webhook",
                    parameters={"message": "Memory limit increased for {resource_name} due to repeated OOMKills"},
                    order=2,
                    on_failure=FailurePolicy.CONTINUE,
                ),
            ],
            cooldown=timedelta(minutes=30),
            max_executions=2,
            require_approval=True,
        ),
        RemediationRule(
            id="rule-evicted-cleanup",
            name="Clean Up Evicted Pods",
            description=(
                "Delete pods that have been evicted due to resource pressure. Fires on "
                "'schedule' events from an external scheduler; the cron expression is "
                "not evaluated in-process"
            ),
            priority=80,
            trigger=RuleTrigger(type=TriggerType.SCHEDULE, schedule="*/15 * * * *"),
            conditions=[
                RuleCondition(ConditionType.RESOURCE_STATUS, "status.phase", ConditionOperator.EQ, "Failed"),
                RuleCondition(ConditionType.RESOURCE_STATUS, "status.reason", ConditionOperator.EQ, "Evicted"),
            ],
            actions=[
                RuleAction(
                    type=ActionType.DELETE,
                    target="pod",
                    parameters={"grace_period": 0},
                    order=1,
                    on_failure=FailurePolicy.CONTINUE,
                ),
            ],
            cooldown=timedelta(minutes=15),
            max_executions=100,
        ),
        RemediationRule(
            id="rule-pvc-expand",
            name="Expand PVC on Low Space",
            description="Automatically expand PVCs when storage usage exceeds threshold",
            priority=70,
            trigger=RuleTrigger(
                type=TriggerType.METRIC,
                source="prometheus",
                query="kubelet_volume_stats_used_bytes / kubelet_volume_stats_capacity_bytes",
                threshold=0.85,
                duration=timedelta(minutes=10),
            ),
            actions=[
                RuleAction(
                    type=ActionType.PATCH,
                    target="persistentvolumeclaim",
                    parameters={"path": "/spec/resources/requests/storage", "value": "20Gi"},
                    order=1,
                    on_failure=FailurePolicy.ABORT,
                    max_retries=1,
                ),
            ],
            cooldown=timedelta(hours=1),
            max_executions=3,
            require_approval=True,
        ),
        RemediationRule(
            id="rule-node-cordon",
            name="Cordon Unhealthy Nodes",
            description="Automatically cordon nodes showing signs of problems",
            priority=95,
            trigger=RuleTrigger(
                type=TriggerType.EVENT,
                source="kubernetes",
                event_types={"Warning"},
                filters={
                    "involvedObject.kind": "Node",
                    "reason": ["NodeNotReady", "NodeNotSchedulable", "KubeletNotReady"],
                },
            ),
            actions=[
                RuleAction(
                    type=ActionType.CORDON,
                    target="node",
                    parameters={"unschedulable": True},
                    order=1,
                    on_failure=FailurePolicy.ABORT,
                ),
                RuleAction(
                    type=ActionType.NOTIFY,
                    target="pagerduty",
                    parameters={
                        "severity": "high",
                        "message": "Node {resource_name} has been cordoned due to health issues",
                    },
                    order=2,
                    on_failure=FailurePolicy.CONTINUE,
                ),
            ],
            cooldown=timedelta(minutes=30),
            max_executions=1,
            require_approval=True,
        ),
    ]
