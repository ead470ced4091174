"""
Remediation engine - the control loop tying matching, approval and execution together.

  process_event → matcher → cooldown → conditions → action builder
               → [approval gate] → action queue → worker pool → executor

Usage:
    engine = RemediationEngine(SQLRemediationStore(session_factory))
    engine.register_k8s_client("prod", await KubernetesClient.from_kubeconfig("prod"))
    await engine.start()
    await engine.process_event(event)
    ...
    await engine.stop()
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Any

import structlog

from kubemend.aiops.defaults import default_rules
from kubemend.aiops.executor import ActionExecutor
from kubemend.aiops.models import (
    ActionStatus,
    RemediationAction,
    RemediationEvent,
    RemediationRule,
    params_to_dict,
    utcnow,
)
from kubemend.aiops.rule_engine import check_cooldown, evaluate_conditions, find_matching_rules
from kubemend.aiops.rule_registry import RuleRegistry
from kubemend.aiops.store import RemediationStore
from kubemend.aiops.worker_pool import ActionWorkerPool
from kubemend.channels.router import NotificationRouter, create_notification_router
from kubemend.channels.webhook import WebhookClient
from kubemend.config import Settings, get_settings
from kubemend.exceptions import (
    ActionNotFoundError,
    InvalidActionStateError,
    QueueFullError,
    RuleConflictError,
    RuleNotFoundError,
)
from kubemend.k8s.base import ClusterClient
from kubemend.k8s.registry import ClusterClientRegistry
from kubemend.services.approval_manager import ApprovalManager

logger = structlog.get_logger()


class RemediationEngine:
    """Rule-driven auto-remediation for one process; owns its registries and pool."""

    def __init__(
        self,
        store: RemediationStore,
        settings: Settings | None = None,
        notifications: NotificationRouter | None = None,
        webhooks: WebhookClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.rules = RuleRegistry()
        self.clients = ClusterClientRegistry()
        self.webhooks = webhooks or WebhookClient(timeout=self.settings.webhook_timeout_seconds)
        self.notifications = notifications or create_notification_router(self.settings, self.webhooks)
        self._default_cooldown = timedelta(seconds=self.settings.default_cooldown_seconds)

        self.executor = ActionExecutor(
            store=store,
            clients=self.clients,
            notifications=self.notifications,
            webhooks=self.webhooks,
            settings=self.settings,
            on_rule_executed=lambda rule_id, when: self.rules.mark_triggered(rule_id, when, executed=True),
        )
        self.pool = ActionWorkerPool(
            self.executor.execute,
            workers=self.settings.max_concurrent_actions,
            queue_size=self.settings.remediation_queue_size,
        )
        self.approvals = ApprovalManager(store, self.notifications, self.settings, submit=self.pool.try_submit)
        self._sweeper: asyncio.Task | None = None
        self._started = False

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Seed built-in rules, load enabled rules, start workers and the approval sweeper."""
        if self._started:
            return
        await self._seed_default_rules()
        self.rules.replace_all(await self.store.load_enabled_rules())
        self.pool.start()
        self._sweeper = asyncio.create_task(self._approval_sweep_loop(), name="approval-sweeper")
        self._started = True
        logger.info(
            "remediation_engine_started",
            rules=len(self.rules),
            workers=self.settings.max_concurrent_actions,
            dry_run=self.settings.remediation_dry_run,
        )

    async def stop(self, drain: bool = False) -> None:
        """Stop intake. In-flight actions finish; with ``drain`` wait for them."""
        if self._sweeper:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self.pool.stop(drain=drain)
        self._started = False
        logger.info("remediation_engine_stopped")

    async def wait_idle(self) -> None:
        """Wait until every submitted action has been executed."""
        await self.pool.join()

    async def _seed_default_rules(self) -> None:
        for rule in default_rules():
            if await self.store.get_rule(rule.id) or await self.store.get_rule_by_name(rule.name):
                continue
            now = utcnow()
            rule.created_at = now
            rule.updated_at = now
            rule.created_by = "system"
            await self.store.save_rule(rule)
            logger.info("default_rule_seeded", rule_id=rule.id, name=rule.name)

    async def _approval_sweep_loop(self) -> None:
        interval = self.settings.approval_sweep_interval
        while True:
            await asyncio.sleep(interval)
            try:
                await self.expire_pending_approvals()
            except Exception as e:
                logger.error("approval_sweep_failed", error=str(e))

    # ── Cluster clients ──────────────────────────────────────────────────────

    def register_k8s_client(self, cluster_id: str, client: ClusterClient) -> None:
        self.clients.register(cluster_id, client)

    def unregister_k8s_client(self, cluster_id: str) -> ClusterClient | None:
        return self.clients.unregister(cluster_id)

    # ── Event processing ─────────────────────────────────────────────────────

    async def process_event(self, event: RemediationEvent) -> list[RemediationAction]:
        """
        Evaluate an event against every enabled rule and submit an action per
        fully matched rule.

        Args:
            event: Incoming cluster event

        Returns:
            The actions created, in registry order
        """
        if not self.settings.remediation_enabled:
            logger.debug("remediation_disabled_event_ignored", event_id=event.id)
            return []

        created = []
        for rule in find_matching_rules(self.rules.snapshot(), event):
            if not check_cooldown(rule, self._default_cooldown):
                logger.debug("rule_in_cooldown", rule_id=rule.id, name=rule.name, last_triggered=rule.last_triggered)
                continue
            if not evaluate_conditions(rule, event):
                logger.debug("rule_conditions_not_met", rule_id=rule.id, name=rule.name)
                continue
            now = utcnow()
            claimed, previous = self.rules.try_claim(rule.id, now, self._default_cooldown)
            if not claimed:
                logger.debug("rule_in_cooldown", rule_id=rule.id, name=rule.name, last_triggered=previous)
                continue

            logger.info(
                "rule_matched",
                rule_id=rule.id,
                name=rule.name,
                event_type=event.type,
                reason=event.reason,
                resource=event.resource_name,
            )
            action = await self._submit(rule, event, now, previous)
            if action is not None:
                created.append(action)
        return created

    async def _submit(
        self,
        rule: RemediationRule,
        event: RemediationEvent,
        claimed_at: datetime,
        previous: datetime | None,
    ) -> RemediationAction | None:
        first = rule.ordered_actions()[0]
        action = RemediationAction(
            rule_id=rule.id,
            rule_name=rule.name,
            action_type=first.type,
            cluster_id=event.cluster_id,
            namespace=event.namespace,
            resource_type=event.resource_type,
            resource_name=event.resource_name,
            dry_run=self.settings.remediation_dry_run,
            trigger_event=event.snapshot(),
            parameters=params_to_dict(first.parameters),
        )
        needs_approval = rule.require_approval or self.settings.remediation_require_approval
        action.status = ActionStatus.PENDING_APPROVAL if needs_approval else ActionStatus.QUEUED

        try:
            await self.store.save_action(action)
        except Exception as e:
            logger.error("action_persist_failed", rule_id=rule.id, action_id=action.id, error=str(e))
            self.rules.release_claim(rule.id, claimed_at, previous)
            return None

        try:
            await self.store.record_rule_trigger(rule.id, claimed_at)
        except Exception as e:
            logger.warning("rule_bookkeeping_failed", rule_id=rule.id, error=str(e))

        if needs_approval:
            await self.approvals.request_approval(action)
            return action

        if self.pool.try_submit(action):
            logger.info("action_queued", action_id=action.id, rule=rule.name, type=action.action_type.value)
        else:
            logger.warning("action_queue_full", action_id=action.id, rule=rule.name, depth=self.pool.depth)
        return action

    # ── Approvals ────────────────────────────────────────────────────────────

    async def approve_action(self, action_id: str, approver_id: str) -> RemediationAction:
        return await self.approvals.approve(action_id, approver_id)

    async def reject_action(self, action_id: str, rejector_id: str, reason: str = "") -> RemediationAction:
        return await self.approvals.reject(action_id, rejector_id, reason)

    async def expire_pending_approvals(self) -> list[RemediationAction]:
        return await self.approvals.expire_pending()

    async def requeue_action(self, action_id: str) -> RemediationAction:
        """Re-submit a ``queued`` action that never made it into the queue."""
        action = await self.get_action(action_id)
        if action.status != ActionStatus.QUEUED:
            raise InvalidActionStateError(action_id, action.status.value, ActionStatus.QUEUED.value)
        if self.pool.is_tracked(action_id):
            raise InvalidActionStateError(action_id, "in_queue", "queued and not yet submitted")
        if not self.pool.try_submit(action):
            raise QueueFullError(f"action queue is full; {action_id} stays queued", {"action_id": action_id})
        logger.info("action_requeued", action_id=action_id)
        return action

    # ── Rule CRUD ────────────────────────────────────────────────────────────

    async def create_rule(self, rule: RemediationRule) -> RemediationRule:
        rule.validate()
        if await self.store.get_rule_by_name(rule.name):
            raise RuleConflictError(f"rule named {rule.name!r} already exists", {"name": rule.name})

        now = utcnow()
        rule.id = str(uuid.uuid4())
        rule.created_at = now
        rule.updated_at = now
        await self.store.save_rule(rule)
        self.rules.add(rule.copy())
        logger.info("rule_created", rule_id=rule.id, name=rule.name, enabled=rule.enabled)
        return rule

    async def update_rule(self, rule: RemediationRule) -> RemediationRule:
        existing = await self.store.get_rule(rule.id)
        if existing is None:
            raise RuleNotFoundError(rule.id)
        rule.validate()
        if rule.name != existing.name:
            clash = await self.store.get_rule_by_name(rule.name)
            if clash and clash.id != rule.id:
                raise RuleConflictError(f"rule named {rule.name!r} already exists", {"name": rule.name})

        rule.created_at = existing.created_at
        rule.created_by = rule.created_by or existing.created_by
        rule.last_triggered = existing.last_triggered
        rule.execution_count = existing.execution_count
        rule.updated_at = utcnow()
        await self.store.save_rule(rule)

        if rule.enabled:
            self.rules.add(rule.copy())
        else:
            self.rules.remove(rule.id)
        logger.info("rule_updated", rule_id=rule.id, name=rule.name, enabled=rule.enabled)
        return rule

    async def delete_rule(self, rule_id: str) -> None:
        if await self.store.get_rule(rule_id) is None:
            raise RuleNotFoundError(rule_id)
        await self.store.delete_rule(rule_id)
        self.rules.remove(rule_id)
        logger.info("rule_deleted", rule_id=rule_id)

    async def get_rule(self, rule_id: str) -> RemediationRule:
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    async def list_rules(self) -> list[RemediationRule]:
        rules = await self.store.list_rules()
        return sorted(rules, key=lambda r: r.priority, reverse=True)

    # ── Action queries ───────────────────────────────────────────────────────

    async def get_action(self, action_id: str) -> RemediationAction:
        action = await self.store.get_action(action_id)
        if action is None:
            raise ActionNotFoundError(action_id)
        return action

    async def list_actions(
        self, filters: dict[str, Any] | None = None, limit: int = 50, offset: int = 0
    ) -> tuple[list[RemediationAction], int]:
        return await self.store.query_actions(filters, limit, offset)
