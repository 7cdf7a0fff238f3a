"""运维接口：手动触发同步、查看同步和快照状态"""

import logging
from dataclasses import asdict
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_session
from app.services.repositories.revenue_repository import RevenueTransactionRepository
from app.services.repositories.sync_status_repository import SyncStatusRepository
from app.services.revenue_scheduler import RevenueSyncScheduler, get_revenue_sync_scheduler
from app.services.revenue_sync import REVENUE_SYNC_TYPE
from app.services.snapshot_manager import SnapshotManager, get_snapshot_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class BackfillRequest(BaseModel):
    start_date: date = Field(..., description="开始日期（含）")
    end_date: date = Field(..., description="结束日期（含）")


@router.post("/revenue-sync")
async def trigger_revenue_sync(
    revenue_scheduler: RevenueSyncScheduler = Depends(get_revenue_sync_scheduler),
) -> dict:
    """
    立即执行一轮收入同步

    已有同步在运行时返回 409，同步失败返回 500。
    """
    outcome = await revenue_scheduler.run_sync()

    if outcome.status == "skipped":
        raise HTTPException(status_code=409, detail="已有收入同步在运行")
    if outcome.status == "failed":
        raise HTTPException(status_code=500, detail=f"同步失败: {outcome.error}")

    result = outcome.result
    return {
        "status": outcome.status,
        "new_payments": result.new_payments,
        "txids_fetched": result.txids_fetched,
        "txids_failed": result.txids_failed,
        "budget_exhausted": result.budget_exhausted,
        "current_block": result.current_block,
        "duration": round(result.duration, 2),
    }


@router.get("/revenue-status")
async def get_revenue_status(
    revenue_scheduler: RevenueSyncScheduler = Depends(get_revenue_sync_scheduler),
    session: AsyncSession = Depends(get_session),
) -> dict:
    sync_status = await SyncStatusRepository(session).get(REVENUE_SYNC_TYPE)
    total = await RevenueTransactionRepository(session).txid_count()

    return {
        "scheduler": revenue_scheduler.get_status(),
        "database": {
            "total_transactions": total,
            "status": sync_status.status if sync_status else None,
            "last_sync": sync_status.last_sync if sync_status else None,
            "last_sync_block": sync_status.last_sync_block if sync_status else None,
            "next_sync": sync_status.next_sync if sync_status else None,
            "error_message": sync_status.error_message if sync_status else None,
        },
    }


@router.get("/snapshot-status")
async def get_snapshot_status(
    manager: SnapshotManager = Depends(get_snapshot_manager),
) -> dict:
    return await manager.get_status()


@router.post("/snapshot")
async def trigger_snapshot(
    manager: SnapshotManager = Depends(get_snapshot_manager),
) -> dict:
    """手动创建今天的快照（条件不满足时返回 skipped 和原因）"""
    result = await manager.take_manual_snapshot()
    if not result.success and not result.skipped:
        raise HTTPException(status_code=500, detail=f"创建快照失败: {result.reason}")
    return asdict(result)


@router.post("/backfill")
async def backfill_snapshots(
    request: BackfillRequest,
    manager: SnapshotManager = Depends(get_snapshot_manager),
) -> dict:
    """用历史交易为缺少快照的日期补建快照"""
    try:
        result = await manager.backfill_revenue_snapshots(request.start_date, request.end_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return asdict(result)
