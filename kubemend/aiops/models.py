"""
Remediation domain model.

Rules are declarative policies (trigger + conditions + ordered steps + scope).
Actions are persisted execution attempts of a rule. Events are the ephemeral
input the matcher works on.

Step parameters are typed per action type and validated when a rule is built,
so a malformed rule is rejected at creation instead of failing at execution.
"""

import copy
import shlex
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Union

from kubemend.exceptions import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TriggerType(str, Enum):
    EVENT = "event"
    METRIC = "metric"
    SCHEDULE = "schedule"


class ConditionType(str, Enum):
    RESOURCE_STATUS = "resource_status"
    LABEL = "label"
    ANNOTATION = "annotation"
    TIME_WINDOW = "time_window"


class ConditionOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    CONTAINS = "contains"
    REGEX = "regex"
    IN = "in"
    GT = "gt"
    LT = "lt"


class ActionType(str, Enum):
    RESTART_POD = "restart_pod"
    DELETE = "delete"
    SCALE = "scale"
    PATCH = "patch"
    CORDON = "cordon"
    DRAIN = "drain"
    EXEC = "exec"
    NOTIFY = "notify"
    WEBHOOK = "webhook"


class FailurePolicy(str, Enum):
    ABORT = "abort"
    RETRY = "retry"
    CONTINUE = "continue"


class ActionStatus(str, Enum):
    PENDING = "pending"
    PENDING_APPROVAL = "pending_approval"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    REJECTED = "rejected"


def _enum(enum_cls: type[Enum], value: Any, what: str) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"invalid {what} {value!r} (expected one of: {allowed})") from None


def _as_int(name: str, value: Any, minimum: int | None = None) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        result = value
    elif isinstance(value, float) and value.is_integer():
        result = int(value)
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        result = int(value.strip())
    else:
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if minimum is not None and result < minimum:
        raise ValidationError(f"{name} must be >= {minimum}, got {result}")
    return result


def _seconds(value: timedelta | int | float | None) -> float | None:
    if value is None:
        return None
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ── Typed step parameters ────────────────────────────────────────────────────


@dataclass
class RestartPodParams:
    grace_period: int = 30
    extra: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        self.grace_period = _as_int("grace_period", self.grace_period, minimum=0)


@dataclass
class DeleteParams:
    grace_period: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        self.grace_period = _as_int("grace_period", self.grace_period, minimum=0)


@dataclass
class ScaleParams:
    replicas: int = 1
    extra: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        self.replicas = _as_int("replicas", self.replicas, minimum=0)


@dataclass
class PatchParams:
    """A single JSON-patch ``replace`` of ``path`` with ``value``."""
    path: str = ""
    value: Any = None
    resource_type: str | None = None
    resource_name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        if not isinstance(self.path, str) or not self.path.startswith("/"):
            raise ValidationError(f"patch path must be a JSON pointer starting with '/', got {self.path!r}")
        if self.value is None:
            raise ValidationError("patch step requires a value")


@dataclass
class CordonParams:
    extra: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        pass


@dataclass
class DrainParams:
    grace_period: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        if self.grace_period is not None:
            self.grace_period = _as_int("grace_period", self.grace_period, minimum=0)


@dataclass
class ExecParams:
    command: list[str] = field(default_factory=list)
    container: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        if isinstance(self.command, str):
            self.command = shlex.split(self.command)
        if not self.command or not all(isinstance(c, str) for c in self.command):
            raise ValidationError("exec step requires a non-empty command")


@dataclass
class NotifyParams:
    target: str | None = None
    channel: str | None = None
    message: str = ""
    severity: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        if not isinstance(self.message, str):
            raise ValidationError("notify message must be a string")


@dataclass
class WebhookParams:
    url: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        if self.url is not None and not str(self.url).startswith(("http://", "https://")):
            raise ValidationError(f"webhook url must be http(s), got {self.url!r}")


StepParams = Union[
    RestartPodParams, DeleteParams, ScaleParams, PatchParams, CordonParams,
    DrainParams, ExecParams, NotifyParams, WebhookParams,
]

PARAMS_BY_TYPE: dict[ActionType, type] = {
    ActionType.RESTART_POD: RestartPodParams,
    ActionType.DELETE: DeleteParams,
    ActionType.SCALE: ScaleParams,
    ActionType.PATCH: PatchParams,
    ActionType.CORDON: CordonParams,
    ActionType.DRAIN: DrainParams,
    ActionType.EXEC: ExecParams,
    ActionType.NOTIFY: NotifyParams,
    ActionType.WEBHOOK: WebhookParams,
}


def parse_params(action_type: ActionType, raw: dict[str, Any] | None) -> StepParams:
    """Build the typed parameter object for a step; unknown keys land in ``extra``."""
    cls = PARAMS_BY_TYPE[action_type]
    remaining = dict(raw or {})
    names = {f.name for f in fields(cls)} - {"extra"}
    known = {k: remaining.pop(k) for k in list(remaining) if k in names}
    params = cls(**known, extra=remaining)
    params.validate()
    return params


def params_to_dict(params: StepParams) -> dict[str, Any]:
    data = dict(params.extra)
    for f in fields(params):
        if f.name == "extra":
            continue
        value = getattr(params, f.name)
        if value is not None:
            data[f.name] = copy.deepcopy(value)
    return data


# ── Rule ─────────────────────────────────────────────────────────────────────


@dataclass
class RuleTrigger:
    """What a rule reacts to."""
    type: TriggerType = TriggerType.EVENT
    source: str = ""
    event_types: set[str] = field(default_factory=set)
    # field -> exact value, or list of allowed values
    filters: dict[str, str | list[str]] = field(default_factory=dict)
    query: str | None = None
    threshold: float | None = None
    duration: timedelta | None = None
    schedule: str | None = None

    def __post_init__(self) -> None:
        self.type = _enum(TriggerType, self.type, "trigger type")
        self.event_types = set(self.event_types or ())
        normalized: dict[str, str | list[str]] = {}
        for key, value in (self.filters or {}).items():
            if isinstance(value, (list, tuple, set)):
                normalized[key] = [str(v) for v in value]
            elif isinstance(value, (str, int, float, bool)):
                normalized[key] = str(value)
            else:
                raise ValidationError(f"filter {key!r} must be a string or list of strings")
        self.filters = normalized
        if isinstance(self.duration, (int, float)):
            self.duration = timedelta(seconds=self.duration)
        if self.type == TriggerType.METRIC and (not self.query or self.threshold is None):
            raise ValidationError("metric trigger requires query and threshold")

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "source": self.source,
            "event_types": sorted(self.event_types),
            "filters": copy.deepcopy(self.filters),
            "query": self.query,
            "threshold": self.threshold,
            "duration": _seconds(self.duration),
            "schedule": self.schedule,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "RuleTrigger":
        return cls(
            type=d.get("type", TriggerType.EVENT),
            source=d.get("source") or "",
            event_types=set(d.get("event_types") or ()),
            filters=d.get("filters") or {},
            query=d.get("query"),
            threshold=d.get("threshold"),
            duration=d.get("duration"),
            schedule=d.get("schedule"),
        )


@dataclass
class RuleCondition:
    """A field/operator/value predicate evaluated against the event."""
    type: ConditionType
    field: str
    operator: ConditionOperator
    value: str

    def __post_init__(self) -> None:
        self.type = _enum(ConditionType, self.type, "condition type")
        self.operator = _enum(ConditionOperator, self.operator, "condition operator")
        self.value = str(self.value)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "field": self.field, "operator": self.operator.value, "value": self.value}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "RuleCondition":
        return cls(type=d["type"], field=d.get("field", ""), operator=d.get("operator", "eq"), value=d.get("value", ""))


@dataclass
class RuleAction:
    """One ordered step of a rule."""
    type: ActionType
    target: str = ""
    parameters: StepParams | dict[str, Any] | None = None
    order: int = 0
    on_failure: FailurePolicy = FailurePolicy.CONTINUE
    max_retries: int = 0

    def __post_init__(self) -> None:
        self.type = _enum(ActionType, self.type, "action type")
        self.on_failure = _enum(FailurePolicy, self.on_failure, "on_failure policy")
        self.order = _as_int("order", self.order)
        self.max_retries = _as_int("max_retries", self.max_retries, minimum=0)
        if self.parameters is None or isinstance(self.parameters, dict):
            self.parameters = parse_params(self.type, self.parameters)
        elif not isinstance(self.parameters, PARAMS_BY_TYPE[self.type]):
            raise ValidationError(
                f"parameters of type {type(self.parameters).__name__} do not fit a {self.type.value} step"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "target": self.target,
            "parameters": params_to_dict(self.parameters),
            "order": self.order,
            "on_failure": self.on_failure.value,
            "max_retries": self.max_retries,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "RuleAction":
        return cls(
            type=d["type"],
            target=d.get("target") or "",
            parameters=d.get("parameters") or {},
            order=d.get("order", 0),
            on_failure=d.get("on_failure") or FailurePolicy.CONTINUE,
            max_retries=d.get("max_retries", 0),
        )


@dataclass
class RuleScope:
    """Allow-lists; empty means unrestricted and ``*`` matches anything."""
    clusters: list[str] = field(default_factory=list)
    namespaces: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"clusters": list(self.clusters), "namespaces": list(self.namespaces)}

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> "RuleScope":
        d = d or {}
        return cls(
            clusters=list(d.get("clusters") or []),
            namespaces=list(d.get("namespaces") or []),
        )


@dataclass
class RemediationRule:
    """A declarative remediation policy."""
    name: str
    trigger: RuleTrigger
    actions: list[RuleAction]
    id: str = ""
    description: str = ""
    enabled: bool = True
    # Advisory only: higher first in listings
    priority: int = 0
    conditions: list[RuleCondition] = field(default_factory=list)
    scope: RuleScope = field(default_factory=RuleScope)
    cooldown: timedelta | None = None
    # Stored, not enforced
    max_executions: int = 0
    require_approval: bool = False
    labels: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    last_triggered: datetime | None = None
    execution_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.cooldown, (int, float)):
            self.cooldown = timedelta(seconds=self.cooldown)

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("rule name is required")
        if not self.actions:
            raise ValidationError(f"rule {self.name!r} must define at least one action")
        if self.cooldown is not None and self.cooldown < timedelta(0):
            raise ValidationError("cooldown must not be negative")
        self.max_executions = _as_int("max_executions", self.max_executions, minimum=0)
        self.priority = _as_int("priority", self.priority)

    def ordered_actions(self) -> list[RuleAction]:
        """Steps in declared execution order (stable for equal ``order``)."""
        return sorted(self.actions, key=lambda a: a.order)

    def copy(self) -> "RemediationRule":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "priority": self.priority,
            "trigger": self.trigger.to_dict(),
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "scope": self.scope.to_dict(),
            "cooldown": _seconds(self.cooldown),
            "max_executions": self.max_executions,
            "require_approval": self.require_approval,
            "labels": dict(self.labels),
            "metadata": copy.deepcopy(self.metadata),
            "last_triggered": _iso(self.last_triggered),
            "execution_count": self.execution_count,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "created_by": self.created_by,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "RemediationRule":
        return cls(
            id=d.get("id", ""),
            name=d["name"],
            description=d.get("description", ""),
            enabled=d.get("enabled", True),
            priority=d.get("priority", 0),
            trigger=RuleTrigger.from_dict(d.get("trigger") or {}),
            conditions=[RuleCondition.from_dict(c) for c in d.get("conditions") or []],
            actions=[RuleAction.from_dict(a) for a in d.get("actions") or []],
            scope=RuleScope.from_dict(d.get("scope")),
            cooldown=d.get("cooldown"),
            max_executions=d.get("max_executions", 0),
            require_approval=d.get("require_approval", False),
            labels=d.get("labels") or {},
            metadata=d.get("metadata") or {},
            last_triggered=_parse_dt(d.get("last_triggered")),
            execution_count=d.get("execution_count", 0),
            created_at=_parse_dt(d.get("created_at")),
            updated_at=_parse_dt(d.get("updated_at")),
            created_by=d.get("created_by", ""),
        )


# ── Action ───────────────────────────────────────────────────────────────────


@dataclass
class RemediationAction:
    """One instantiated, persisted execution attempt of a rule."""
    rule_id: str
    rule_name: str
    action_type: ActionType
    cluster_id: str = ""
    namespace: str = ""
    resource_type: str = ""
    resource_name: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: ActionStatus = ActionStatus.PENDING
    dry_run: bool = False
    trigger_event: dict[str, Any] = field(default_factory=dict)
    parameters: dict[str, Any] = field(default_factory=dict)
    result: dict[str, Any] = field(default_factory=dict)
    error: str = ""
    approved_by: str = ""
    approved_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration: timedelta | None = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.action_type = _enum(ActionType, self.action_type, "action type")
        self.status = _enum(ActionStatus, self.status, "action status")


# ── Event ────────────────────────────────────────────────────────────────────


@dataclass
class RemediationEvent:
    """A discrete cluster event fed to the matcher."""
    type: str
    source: str = ""
    cluster_id: str = ""
    namespace: str = ""
    resource_type: str = ""
    resource_name: str = ""
    reason: str = ""
    message: str = ""
    severity: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    def snapshot(self) -> dict[str, Any]:
        """The part of the event recorded on an action."""
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "reason": self.reason,
            "message": self.message,
            "severity": self.severity,
            "timestamp": self.timestamp.isoformat(),
        }
