"""每日快照仓库"""

import logging
from collections.abc import Sequence
from datetime import date, timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utc_today, utcnow
from app.models.daily_snapshot import DailySnapshot

logger = logging.getLogger(__name__)


class SnapshotRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_date(self, snapshot_date: date) -> DailySnapshot | None:
        result = await self._session.execute(
            select(DailySnapshot).where(DailySnapshot.snapshot_date == snapshot_date)
        )
        return result.scalar_one_or_none()

    async def create_snapshot(self, data: dict[str, Any]) -> bool:
        """
        创建快照；该日期已有快照时不做任何修改

        Returns:
            是否新建了快照
        """
        values = {"created_at": utcnow(), **data}
        stmt = (
            sqlite_insert(DailySnapshot.__table__)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["snapshot_date"])
        )
        try:
            result = await self._session.execute(stmt)
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        created = result.rowcount == 1
        if created:
            logger.info(f"已创建 {data['snapshot_date']} 的快照")
        else:
            logger.info(f"{data['snapshot_date']} 的快照已存在，跳过")
        return created

    async def last_n(self, n: int = 30) -> Sequence[DailySnapshot]:
        result = await self._session.execute(
            select(DailySnapshot).order_by(DailySnapshot.snapshot_date.desc()).limit(n)
        )
        return result.scalars().all()

    async def in_range(self, start_date: date, end_date: date) -> Sequence[DailySnapshot]:
        result = await self._session.execute(
            select(DailySnapshot)
            .where(DailySnapshot.snapshot_date.between(start_date, end_date))
            .order_by(DailySnapshot.snapshot_date)
        )
        return result.scalars().all()

    async def delete_older_than(self, days_to_keep: int = 365, today: date | None = None) -> int:
        cutoff = (today or utc_today()) - timedelta(days=days_to_keep)
        try:
            result = await self._session.execute(
                delete(DailySnapshot).where(DailySnapshot.snapshot_date < cutoff)
            )
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        logger.info(f"删除了 {result.rowcount} 个早于 {cutoff} 的快照")
        return result.rowcount
