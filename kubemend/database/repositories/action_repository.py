"""Action repository for database operations."""

from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kubemend.database.models import RemediationActionRecord

FILTERABLE_COLUMNS = ("status", "rule_id", "cluster_id")


class ActionRepository:
    """Repository for remediation action rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, action_id: str) -> Optional[RemediationActionRecord]:
        result = await self.session.execute(
            select(RemediationActionRecord).where(RemediationActionRecord.id == action_id)
        )
        return result.scalar_one_or_none()

    async def upsert(self, record: RemediationActionRecord) -> RemediationActionRecord:
        merged = await self.session.merge(record)
        await self.session.flush()
        return merged

    async def update_if_status(self, action_id: str, expected: str, values: dict[str, Any]) -> bool:
        """Write ``values`` only while the row still has status ``expected``."""
        result = await self.session.execute(
            update(RemediationActionRecord)
            .where(RemediationActionRecord.id == action_id, RemediationActionRecord.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def query(
        self, filters: dict[str, Any] | None, limit: int = 50, offset: int = 0
    ) -> tuple[Sequence[RemediationActionRecord], int]:
        """Filtered page of actions, newest first, plus the total match count."""
        conditions = []
        for key, value in (filters or {}).items():
            if key not in FILTERABLE_COLUMNS:
                raise ValueError(f"unsupported action filter: {key}")
            if value in (None, ""):
                continue
            conditions.append(getattr(RemediationActionRecord, key) == str(getattr(value, "value", value)))

        total = await self.session.scalar(
            select(func.count()).select_from(RemediationActionRecord).where(*conditions)
        )
        result = await self.session.execute(
            select(RemediationActionRecord)
            .where(*conditions)
            .order_by(RemediationActionRecord.created_at.desc(), RemediationActionRecord.id)
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all(), total or 0

    async def list_by_status(self, status: str) -> Sequence[RemediationActionRecord]:
        result = await self.session.execute(
            select(RemediationActionRecord)
            .where(RemediationActionRecord.status == status)
            .order_by(RemediationActionRecord.created_at)
        )
        return result.scalars().all()
