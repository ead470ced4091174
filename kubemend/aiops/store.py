"""Persistence contract for remediation rules and actions."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from kubemend.aiops.models import ActionStatus, RemediationAction, RemediationRule


class RemediationStore(ABC):
    """Abstract rule/action store the engine persists through."""

    @abstractmethod
    async def load_enabled_rules(self) -> list[RemediationRule]:
        """Return every enabled rule."""
        pass

    @abstractmethod
    async def get_rule(self, rule_id: str) -> RemediationRule | None:
        pass

    @abstractmethod
    async def get_rule_by_name(self, name: str) -> RemediationRule | None:
        pass

    @abstractmethod
    async def list_rules(self) -> list[RemediationRule]:
        """Return all rules, highest priority first."""
        pass

    @abstractmethod
    async def save_rule(self, rule: RemediationRule) -> None:
        """Insert or update a rule."""
        pass

    @abstractmethod
    async def delete_rule(self, rule_id: str) -> bool:
        pass

    @abstractmethod
    async def record_rule_trigger(self, rule_id: str, when: datetime, executed: bool = False) -> None:
        """Stamp ``last_triggered`` and, for finished runs, bump ``execution_count``."""
        pass

    @abstractmethod
    async def save_action(self, action: RemediationAction) -> None:
        """Insert or update an action."""
        pass

    @abstractmethod
    async def transition_action(self, action: RemediationAction, expected: ActionStatus) -> bool:
        """
        Persist the action only if its stored status is still ``expected``.

        Returns:
            False when another caller changed the status first
        """
        pass

    @abstractmethod
    async def get_action(self, action_id: str) -> RemediationAction | None:
        pass

    @abstractmethod
    async def query_actions(
        self, filters: dict[str, Any] | None, limit: int, offset: int
    ) -> tuple[list[RemediationAction], int]:
        """
        Page through actions, newest first.

        Args:
            filters: Optional ``status``, ``rule_id`` and ``cluster_id`` equality filters
            limit: Page size
            offset: Rows to skip

        Returns:
            Tuple of (actions, total matching rows)
        """
        pass

    @abstractmethod
    async def list_actions_by_status(self, status: ActionStatus) -> list[RemediationAction]:
        pass
