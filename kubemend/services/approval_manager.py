"""
Human-in-the-loop Approval Manager.

Actions produced by rules that require approval are persisted as
``pending_approval`` and held there until an operator decides:
  approve → queued and submitted to the worker pool
  reject  → rejected (terminal), no cluster side effect
  timeout → rejected by "system" once approval_timeout_seconds elapse

The action row in the store is the single source of truth for its state.
"""

import json
from datetime import timedelta
from typing import Callable

import structlog

from kubemend.aiops.models import ActionStatus, RemediationAction, utcnow
from kubemend.aiops.store import RemediationStore
from kubemend.channels.router import NotificationRouter
from kubemend.config import Settings
from kubemend.exceptions import (
    ActionNotFoundError,
    InvalidActionStateError,
    PersistenceError,
    QueueFullError,
)

logger = structlog.get_logger()

SYSTEM_REJECTOR = "system"
TIMEOUT_REASON = "approval timed out"


def approval_message(action: RemediationAction, timeout_seconds: int) -> str:
    lines = [
        "🟠 *Approval Required*",
        "",
        f"*Rule:* {action.rule_name}",
        f"*Action:* `{action.action_type.value}` on {action.resource_type} "
        f"`{action.namespace}/{action.resource_name}` (cluster `{action.cluster_id}`)",
        f"*Parameters:* `{json.dumps(action.parameters, default=str)}`",
        "",
        f"Approve or reject action `{action.id}`.",
        f"This request expires in {timeout_seconds // 60} minutes.",
    ]
    if action.dry_run:
        lines.insert(1, "_dry run: no cluster changes will be made_")
    return "\n".join(lines)


class ApprovalManager:
    """
    Manages the lifecycle of actions waiting for an operator decision.

    Usage:
        mgr = ApprovalManager(store, notifications, settings, submit=pool.try_submit)
        await mgr.request_approval(action)
        await mgr.approve(action.id, "alice")
    """

    def __init__(
        self,
        store: RemediationStore,
        notifications: NotificationRouter,
        settings: Settings,
        submit: Callable[[RemediationAction], bool],
    ) -> None:
        self._store = store
        self._notifications = notifications
        self._settings = settings
        self._submit = submit

    async def request_approval(self, action: RemediationAction) -> None:
        """Notify operators about an action already persisted as pending_approval."""
        logger.info(
            "approval_requested",
            action_id=action.id,
            rule=action.rule_name,
            type=action.action_type.value,
            resource=action.resource_name,
        )
        try:
            await self._notifications.notify(
                None,
                approval_message(action, self._settings.approval_timeout_seconds),
                severity="warning",
            )
        except Exception as e:
            logger.warning("approval_notification_failed", action_id=action.id, error=str(e))

    async def approve(self, action_id: str, approver_id: str) -> RemediationAction:
        action = await self._pending(action_id)
        action.status = ActionStatus.QUEUED
        action.approved_by = approver_id
        action.approved_at = utcnow()
        await self._decide(action)
        logger.info("approval_granted", action_id=action_id, approved_by=approver_id)

        if not self._submit(action):
            logger.warning("action_queue_full", action_id=action_id)
            raise QueueFullError(
                f"action queue is full; {action_id} stays queued",
                {"action_id": action_id},
            )
        return action

    async def reject(self, action_id: str, rejector_id: str, reason: str = "") -> RemediationAction:
        action = await self._pending(action_id)
        self._mark_rejected(action, rejector_id, reason)
        await self._decide(action)
        logger.info("approval_rejected", action_id=action_id, rejected_by=rejector_id, reason=reason)
        return action

    async def expire_pending(self) -> list[RemediationAction]:
        """Reject every pending approval older than the approval timeout."""
        cutoff = utcnow() - timedelta(seconds=self._settings.approval_timeout_seconds)
        expired = []
        for action in await self._store.list_actions_by_status(ActionStatus.PENDING_APPROVAL):
            if action.created_at > cutoff:
                continue
            self._mark_rejected(action, SYSTEM_REJECTOR, TIMEOUT_REASON)
            try:
                changed = await self._store.transition_action(action, ActionStatus.PENDING_APPROVAL)
            except Exception as e:
                logger.error("approval_expiry_persist_failed", action_id=action.id, error=str(e))
                continue
            if not changed:
                logger.info("approval_already_decided", action_id=action.id)
                continue
            expired.append(action)
            logger.info("approval_expired", action_id=action.id, rule=action.rule_name)
        return expired

    # ── Internals ────────────────────────────────────────────────────────────

    @staticmethod
    def _mark_rejected(action: RemediationAction, rejector_id: str, reason: str) -> None:
        action.status = ActionStatus.REJECTED
        action.result = {"rejected_by": rejector_id, "reason": reason}
        action.completed_at = utcnow()

    async def _pending(self, action_id: str) -> RemediationAction:
        action = await self._store.get_action(action_id)
        if action is None:
            raise ActionNotFoundError(action_id)
        if action.status != ActionStatus.PENDING_APPROVAL:
            raise InvalidActionStateError(action_id, action.status.value, ActionStatus.PENDING_APPROVAL.value)
        return action

    async def _decide(self, action: RemediationAction) -> None:
        """Move the action out of pending_approval; exactly one decision wins."""
        try:
            changed = await self._store.transition_action(action, ActionStatus.PENDING_APPROVAL)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"failed to save action {action.id}: {e}") from e
        if not changed:
            current = await self._store.get_action(action.id)
            if current is None:
                raise ActionNotFoundError(action.id)
            raise InvalidActionStateError(action.id, current.status.value, ActionStatus.PENDING_APPROVAL.value)
