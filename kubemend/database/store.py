"""
SQLAlchemy-backed ``RemediationStore``.

Each call runs in its own session/transaction. Rows are converted to domain
objects before leaving the store so callers never hold ORM instances.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kubemend.aiops.models import (
    ActionStatus,
    RemediationAction,
    RemediationRule,
    RuleAction,
    RuleCondition,
    RuleScope,
    RuleTrigger,
    utcnow,
)
from kubemend.aiops.store import RemediationStore
from kubemend.database.models import RemediationActionRecord, RemediationRuleRecord
from kubemend.database.postgres import get_db_session
from kubemend.database.repositories import ActionRepository, RuleRepository
from kubemend.database.repositories.action_repository import FILTERABLE_COLUMNS
from kubemend.exceptions import KubemendError, PersistenceError, ValidationError

logger = structlog.get_logger()


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; every stored timestamp is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def rule_to_record(rule: RemediationRule) -> RemediationRuleRecord:
    return RemediationRuleRecord(
        id=rule.id,
        name=rule.name,
        description=rule.description,
        enabled=rule.enabled,
        priority=rule.priority,
        trigger=rule.trigger.to_dict(),
        conditions=[c.to_dict() for c in rule.conditions],
        actions=[a.to_dict() for a in rule.actions],
        scope=rule.scope.to_dict(),
        cooldown_seconds=rule.cooldown.total_seconds() if rule.cooldown is not None else None,
        max_executions=rule.max_executions,
        require_approval=rule.require_approval,
        labels=dict(rule.labels),
        extra_data=dict(rule.metadata),
        last_triggered=rule.last_triggered,
        execution_count=rule.execution_count,
        created_by=rule.created_by,
        created_at=rule.created_at or utcnow(),
        updated_at=rule.updated_at or utcnow(),
    )


def record_to_rule(record: RemediationRuleRecord) -> RemediationRule:
    return RemediationRule(
        id=record.id,
        name=record.name,
        description=record.description or "",
        enabled=record.enabled,
        priority=record.priority,
        trigger=RuleTrigger.from_dict(record.trigger or {}),
        conditions=[RuleCondition.from_dict(c) for c in record.conditions or []],
        actions=[RuleAction.from_dict(a) for a in record.actions or []],
        scope=RuleScope.from_dict(record.scope),
        cooldown=timedelta(seconds=record.cooldown_seconds) if record.cooldown_seconds is not None else None,
        max_executions=record.max_executions,
        require_approval=record.require_approval,
        labels=dict(record.labels or {}),
        metadata=dict(record.extra_data or {}),
        last_triggered=_aware(record.last_triggered),
        execution_count=record.execution_count,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
        created_by=record.created_by or "",
    )


def action_columns(action: RemediationAction) -> dict[str, Any]:
    return dict(
        id=action.id,
        rule_id=action.rule_id,
        rule_name=action.rule_name,
        cluster_id=action.cluster_id,
        namespace=action.namespace,
        resource_type=action.resource_type,
        resource_name=action.resource_name,
        action_type=action.action_type.value,
        status=action.status.value,
        dry_run=action.dry_run,
        trigger_event=action.trigger_event,
        parameters=action.parameters,
        result=action.result,
        error=action.error or "",
        approved_by=action.approved_by or "",
        approved_at=action.approved_at,
        started_at=action.started_at,
        completed_at=action.completed_at,
        duration_seconds=action.duration.total_seconds() if action.duration is not None else None,
        created_at=action.created_at,
    )


def action_to_record(action: RemediationAction) -> RemediationActionRecord:
    return RemediationActionRecord(**action_columns(action))


def record_to_action(record: RemediationActionRecord) -> RemediationAction:
    return RemediationAction(
        id=record.id,
        rule_id=record.rule_id,
        rule_name=record.rule_name,
        cluster_id=record.cluster_id,
        namespace=record.namespace,
        resource_type=record.resource_type,
        resource_name=record.resource_name,
        action_type=record.action_type,
        status=record.status,
        dry_run=record.dry_run,
        trigger_event=dict(record.trigger_event or {}),
        parameters=dict(record.parameters or {}),
        result=dict(record.result or {}),
        error=record.error or "",
        approved_by=record.approved_by or "",
        approved_at=_aware(record.approved_at),
        started_at=_aware(record.started_at),
        completed_at=_aware(record.completed_at),
        duration=timedelta(seconds=record.duration_seconds) if record.duration_seconds is not None else None,
        created_at=_aware(record.created_at),
    )


class SQLRemediationStore(RemediationStore):
    """
    Usage:
        engine = make_engine(settings.database_url)
        store = SQLRemediationStore(make_session_factory(engine))
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def _session(self):
        return get_db_session(self._session_factory)

    # ── Rules ────────────────────────────────────────────────────────────────

    async def load_enabled_rules(self) -> list[RemediationRule]:
        try:
            async with self._session() as session:
                records = await RuleRepository(session).list_all(enabled_only=True)
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to load rules: {e}") from e

        rules = []
        for record in records:
            try:
                rules.append(record_to_rule(record))
            except KubemendError as e:
                logger.warning("stored_rule_invalid", rule_id=record.id, name=record.name, error=str(e))
        return rules

    async def get_rule(self, rule_id: str) -> RemediationRule | None:
        try:
            async with self._session() as session:
                record = await RuleRepository(session).get_by_id(rule_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to read rule {rule_id}: {e}") from e
        return record_to_rule(record) if record else None

    async def get_rule_by_name(self, name: str) -> RemediationRule | None:
        try:
            async with self._session() as session:
                record = await RuleRepository(session).get_by_name(name)
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to read rule {name!r}: {e}") from e
        return record_to_rule(record) if record else None

    async def list_rules(self) -> list[RemediationRule]:
        try:
            async with self._session() as session:
                records = await RuleRepository(session).list_all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to list rules: {e}") from e
        return [record_to_rule(r) for r in records]

    async def save_rule(self, rule: RemediationRule) -> None:
        try:
            async with self._session() as session:
                await RuleRepository(session).upsert(rule_to_record(rule))
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to save rule {rule.name!r}: {e}") from e

    async def delete_rule(self, rule_id: str) -> bool:
        try:
            async with self._session() as session:
                return await RuleRepository(session).delete(rule_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to delete rule {rule_id}: {e}") from e

    async def record_rule_trigger(self, rule_id: str, when: datetime, executed: bool = False) -> None:
        try:
            async with self._session() as session:
                await RuleRepository(session).record_trigger(rule_id, when, executed)
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to update rule {rule_id}: {e}") from e

    # ── Actions ──────────────────────────────────────────────────────────────

    async def save_action(self, action: RemediationAction) -> None:
        try:
            async with self._session() as session:
                await ActionRepository(session).upsert(action_to_record(action))
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to save action {action.id}: {e}") from e

    async def transition_action(self, action: RemediationAction, expected: ActionStatus) -> bool:
        values = action_columns(action)
        values.pop("id")
        try:
            async with self._session() as session:
                return await ActionRepository(session).update_if_status(
                    action.id, ActionStatus(expected).value, values
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to update action {action.id}: {e}") from e

    async def get_action(self, action_id: str) -> RemediationAction | None:
        try:
            async with self._session() as session:
                record = await ActionRepository(session).get_by_id(action_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to read action {action_id}: {e}") from e
        return record_to_action(record) if record else None

    async def query_actions(
        self, filters: dict[str, Any] | None, limit: int, offset: int
    ) -> tuple[list[RemediationAction], int]:
        unknown = set(filters or {}) - set(FILTERABLE_COLUMNS)
        if unknown:
            raise ValidationError(f"unsupported action filters: {sorted(unknown)}")
        if limit < 0 or offset < 0:
            raise ValidationError("limit and offset must not be negative")
        try:
            async with self._session() as session:
                records, total = await ActionRepository(session).query(filters, limit, offset)
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to query actions: {e}") from e
        return [record_to_action(r) for r in records], total

    async def list_actions_by_status(self, status: ActionStatus) -> list[RemediationAction]:
        try:
            async with self._session() as session:
                records = await ActionRepository(session).list_by_status(ActionStatus(status).value)
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to list {status} actions: {e}") from e
        return [record_to_action(r) for r in records]
