"""收入交易仓库"""

import logging
from collections.abc import Sequence
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import String, cast, delete, func, or_, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utc_today
from app.models.revenue_transaction import UNKNOWN_SENDER, RevenueTransaction, from_satoshis, to_satoshis
from app.schemas.revenue import PaymentRecord

logger = logging.getLogger(__name__)

# 单条 INSERT 的最大行数，避免超过 SQLite 的参数上限
INSERT_CHUNK_SIZE = 100


class RevenueTransactionRepository:
    """收入交易数据访问层

    txid 上有唯一约束，重复写入同一个 txid 会被忽略。
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def batch_insert(self, records: Sequence[PaymentRecord]) -> int:
        """
        在一个事务内批量写入收款记录（INSERT OR IGNORE）

        已存在的 txid 直接跳过，不报错；其他数据库错误回滚后抛出。

        Returns:
            实际新增的行数
        """
        if not records:
            return 0

        rows = [
            {
                "txid": record.txid,
                "address": record.address,
                "from_address": record.from_address or UNKNOWN_SENDER,
                "amount_sat": to_satoshis(record.amount),
                "amount": record.amount,
                "amount_usd": record.amount_usd,
                "block_height": record.block_height,
                "timestamp": record.timestamp,
                "date": record.date,
            }
            for record in records
        ]

        try:
            before = await self.txid_count()
            for start in range(0, len(rows), INSERT_CHUNK_SIZE):
                chunk = rows[start:start + INSERT_CHUNK_SIZE]
                stmt = (
                    sqlite_insert(RevenueTransaction.__table__)
                    .values(chunk)
                    .on_conflict_do_nothing(index_elements=["txid"])
                )
                await self._session.execute(stmt)
            after = await self.txid_count()
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        inserted = after - before
        logger.info(f"写入收款记录: 提交 {len(rows)} 条，新增 {inserted} 条")
        return inserted

    async def existing_txids(self) -> set[str]:
        """返回已入库的全部 txid"""
        result = await self._session.execute(select(RevenueTransaction.txid))
        return set(result.scalars().all())

    async def txid_count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(RevenueTransaction))
        return int(result.scalar() or 0)

    async def revenue_for_range(self, start_date: date, end_date: date) -> Decimal:
        """日期区间（含两端）内的收入合计"""
        result = await self._session.execute(
            select(func.sum(RevenueTransaction.amount_sat)).where(
                RevenueTransaction.date.between(start_date, end_date)
            )
        )
        return from_satoshis(result.scalar())

    async def count_for_range(self, start_date: date, end_date: date) -> int:
        """日期区间（含两端）内的收款笔数"""
        result = await self._session.execute(
            select(func.count()).select_from(RevenueTransaction).where(
                RevenueTransaction.date.between(start_date, end_date)
            )
        )
        return int(result.scalar() or 0)

    async def revenue_for_block_range(self, start_block: int, end_block: int) -> Decimal:
        result = await self._session.execute(
            select(func.sum(RevenueTransaction.amount_sat)).where(
                RevenueTransaction.block_height.between(start_block, end_block)
            )
        )
        return from_satoshis(result.scalar())

    async def transactions_by_block_range(self, start_block: int, end_block: int) -> Sequence[RevenueTransaction]:
        result = await self._session.execute(
            select(RevenueTransaction)
            .where(RevenueTransaction.block_height.between(start_block, end_block))
            .order_by(RevenueTransaction.block_height.desc())
        )
        return result.scalars().all()

    async def last_synced_block(self) -> int | None:
        """已入库交易的最大区块高度，没有数据时返回 None"""
        result = await self._session.execute(select(func.max(RevenueTransaction.block_height)))
        return result.scalar()

    async def transactions_by_date(self, day: date) -> Sequence[RevenueTransaction]:
        result = await self._session.execute(
            select(RevenueTransaction)
            .where(RevenueTransaction.date == day)
            .order_by(RevenueTransaction.timestamp.desc())
        )
        return result.scalars().all()

    async def list_paginated(
        self,
        page: int = 1,
        limit: int = 50,
        search: str = "",
    ) -> tuple[Sequence[RevenueTransaction], int]:
        """
        分页查询交易，支持按 txid / 地址 / 日期模糊搜索

        Returns:
            (当前页记录, 总条数)
        """
        conditions = []
        search = search.strip()
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    RevenueTransaction.txid.like(pattern),
                    RevenueTransaction.address.like(pattern),
                    RevenueTransaction.from_address.like(pattern),
                    cast(RevenueTransaction.date, String).like(pattern),
                )
            )

        count_result = await self._session.execute(
            select(func.count()).select_from(RevenueTransaction).where(*conditions)
        )
        total = int(count_result.scalar() or 0)

        offset = (max(page, 1) - 1) * limit
        result = await self._session.execute(
            select(RevenueTransaction)
            .where(*conditions)
            .order_by(RevenueTransaction.block_height.desc(), RevenueTransaction.timestamp.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all(), total

    async def daily_revenue_in_range(self, start_date: date, end_date: date) -> list[tuple[date, Decimal, int]]:
        """按日期汇总收入，返回 (日期, 收入, 笔数)，日期升序"""
        result = await self._session.execute(
            select(
                RevenueTransaction.date,
                func.sum(RevenueTransaction.amount_sat),
                func.count(RevenueTransaction.id),
            )
            .where(RevenueTransaction.date.between(start_date, end_date))
            .group_by(RevenueTransaction.date)
            .order_by(RevenueTransaction.date)
        )
        return [(day, from_satoshis(total), int(count)) for day, total, count in result.all()]

    async def delete_older_than(self, days_to_keep: int = 365, today: date | None = None) -> int:
        """删除保留期之前的交易，返回删除行数"""
        cutoff = (today or utc_today()) - timedelta(days=days_to_keep)
        try:
            result = await self._session.execute(
                delete(RevenueTransaction).where(RevenueTransaction.date < cutoff)
            )
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        logger.info(f"删除了 {result.rowcount} 条早于 {cutoff} 的交易")
        return result.rowcount
