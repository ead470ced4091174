"""Error taxonomy for the remediation engine."""

from typing import Any


class KubemendError(Exception):
    """Base error carrying a machine-readable code and optional details."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(KubemendError):
    code = "NOT_FOUND"


class RuleNotFoundError(NotFoundError):
    def __init__(self, rule_id: str) -> None:
        super().__init__(f"rule not found: {rule_id}", {"rule_id": rule_id})
        self.rule_id = rule_id


class ActionNotFoundError(NotFoundError):
    def __init__(self, action_id: str) -> None:
        super().__init__(f"action not found: {action_id}", {"action_id": action_id})
        self.action_id = action_id


class ValidationError(KubemendError):
    code = "VALIDATION_ERROR"


class RuleConflictError(KubemendError):
    code = "CONFLICT"


class InvalidActionStateError(KubemendError):
    """Raised when an approval operation targets an action in the wrong state."""

    code = "INVALID_STATE"

    def __init__(self, action_id: str, status: str, expected: str) -> None:
        super().__init__(
            f"action {action_id} is {status}, expected {expected}",
            {"action_id": action_id, "status": status, "expected": expected},
        )
        self.status = status


class QueueFullError(KubemendError):
    code = "QUEUE_FULL"


class ExecutionError(KubemendError):
    """A cluster operation or side effect failed while running a step."""

    code = "EXECUTION_ERROR"


class ClusterClientNotFoundError(ExecutionError):
    def __init__(self, cluster_id: str) -> None:
        super().__init__(f"no kubernetes client for cluster {cluster_id}", {"cluster_id": cluster_id})
        self.cluster_id = cluster_id


class UnsupportedResourceError(ExecutionError):
    def __init__(self, operation: str, resource_type: str) -> None:
        super().__init__(
            f"unsupported resource type for {operation}: {resource_type}",
            {"operation": operation, "resource_type": resource_type},
        )


class PersistenceError(KubemendError):
    code = "DATABASE_ERROR"
