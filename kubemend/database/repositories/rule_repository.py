"""Rule repository for database operations."""

from datetime import datetime
from typing import Optional, Sequence

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kubemend.database.models import RemediationRuleRecord

logger = structlog.get_logger()


class RuleRepository:
    """Repository for remediation rule rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, rule_id: str) -> Optional[RemediationRuleRecord]:
        result = await self.session.execute(
            select(RemediationRuleRecord).where(RemediationRuleRecord.id == rule_id)
        )
        return result.scalar_one_or_none()

    async def get_by_name(self, name: str) -> Optional[RemediationRuleRecord]:
        result = await self.session.execute(
            select(RemediationRuleRecord).where(RemediationRuleRecord.name == name)
        )
        return result.scalar_one_or_none()

    async def list_all(self, enabled_only: bool = False) -> Sequence[RemediationRuleRecord]:
        """List rules, highest priority first."""
        query = select(RemediationRuleRecord)
        if enabled_only:
            query = query.where(RemediationRuleRecord.enabled.is_(True))
        query = query.order_by(RemediationRuleRecord.priority.desc(), RemediationRuleRecord.name)
        result = await self.session.execute(query)
        return result.scalars().all()

    async def upsert(self, record: RemediationRuleRecord) -> RemediationRuleRecord:
        """Insert a new rule or overwrite the existing row with the same id."""
        merged = await self.session.merge(record)
        await self.session.flush()
        logger.debug("rule_row_saved", rule_id=record.id, name=record.name)
        return merged

    async def delete(self, rule_id: str) -> bool:
        result = await self.session.execute(
            delete(RemediationRuleRecord).where(RemediationRuleRecord.id == rule_id)
        )
        return result.rowcount > 0

    async def record_trigger(self, rule_id: str, when: datetime, executed: bool = False) -> None:
        """Stamp last_triggered; bump execution_count for finished runs."""
        values = {"last_triggered": when}
        if executed:
            values["execution_count"] = RemediationRuleRecord.execution_count + 1
        await self.session.execute(
            update(RemediationRuleRecord).where(RemediationRuleRecord.id == rule_id).values(**values)
        )
