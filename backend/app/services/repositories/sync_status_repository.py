"""同步状态仓库"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.models.sync_status import SyncStatus


class SyncStatusRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, sync_type: str) -> SyncStatus | None:
        result = await self._session.execute(
            select(SyncStatus).where(SyncStatus.sync_type == sync_type)
        )
        return result.scalar_one_or_none()

    async def _get_or_create(self, sync_type: str) -> SyncStatus:
        record = await self.get(sync_type)
        if record is None:
            record = SyncStatus(sync_type=sync_type)
            self._session.add(record)
        return record

    async def update_status(
        self,
        sync_type: str,
        status: str,
        error_message: str | None = None,
        last_block: int | None = None,
    ) -> SyncStatus:
        """记录一次同步结果；last_block 为 None 时保留原来的链高度"""
        try:
            record = await self._get_or_create(sync_type)
            record.status = status
            record.last_sync = utcnow()
            record.error_message = error_message[:500] if error_message else None
            if last_block is not None:
                record.last_sync_block = last_block
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise
        return record

    async def set_next_sync(self, sync_type: str, next_sync: datetime | None) -> None:
        try:
            record = await self._get_or_create(sync_type)
            record.next_sync = next_sync
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise
