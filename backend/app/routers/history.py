"""历史数据 API"""

from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utc_today
from app.core.db import get_session
from app.schemas.revenue import (
    AnalyticsComparisonResponse,
    ComparisonResponse,
    DailyRevenueItem,
    DailyRevenueResponse,
    MetricChangeItem,
    RevenueStatsResponse,
    SnapshotItem,
    SnapshotListResponse,
)
from app.services.repositories.revenue_repository import RevenueTransactionRepository
from app.services.repositories.snapshot_repository import SnapshotRepository
from app.services.revenue_analytics import MetricChange, RevenueAnalytics

router = APIRouter(prefix="/history", tags=["history"])


@router.get("/revenue/daily", response_model=DailyRevenueResponse)
async def get_daily_revenue(
    days: int = Query(30, ge=1, le=365, description="返回最近多少天"),
    session: AsyncSession = Depends(get_session),
) -> DailyRevenueResponse:
    """按天汇总的收入，直接从交易表计算（没有收款的日期不返回）"""
    today = utc_today()
    rows = await RevenueTransactionRepository(session).daily_revenue_in_range(
        today - timedelta(days=days - 1), today
    )
    data = [
        DailyRevenueItem(date=day, daily_revenue=float(total), payment_count=count)
        for day, total, count in rows
    ]
    return DailyRevenueResponse(count=len(data), data=data)


@router.get("/snapshots", response_model=SnapshotListResponse)
async def get_snapshots(
    limit: int = Query(30, ge=1, le=365, description="返回的快照数量"),
    session: AsyncSession = Depends(get_session),
) -> SnapshotListResponse:
    snapshots = await SnapshotRepository(session).last_n(limit)
    data = [SnapshotItem.model_validate(s) for s in snapshots]
    return SnapshotListResponse(count=len(data), data=data)


def _to_items(changes: dict[str, MetricChange]) -> dict[str, MetricChangeItem]:
    return {name: MetricChangeItem.model_validate(item) for name, item in changes.items()}


@router.get("/comparison", response_model=AnalyticsComparisonResponse)
async def get_comparison(
    days: int = Query(7, ge=1, le=365, description="与多少天前的快照对比"),
    session: AsyncSession = Depends(get_session),
) -> AnalyticsComparisonResponse:
    """当前指标与 N 天前快照的变化（收入按两天各自的交易合计）"""
    result = await RevenueAnalytics(session).analytics_comparison(days)
    if result is None:
        raise HTTPException(status_code=404, detail=f"{days} 天前没有快照或当前指标不可用")
    return AnalyticsComparisonResponse(**result)


@router.get("/comparison/snapshots", response_model=ComparisonResponse)
async def compare_snapshots(
    old_date: date = Query(..., description="旧快照日期"),
    new_date: date = Query(..., description="新快照日期"),
    session: AsyncSession = Depends(get_session),
) -> ComparisonResponse:
    changes = await RevenueAnalytics(session).compare_snapshots(old_date, new_date)
    if changes is None:
        raise HTTPException(status_code=404, detail=f"{old_date} 或 {new_date} 没有快照")
    return ComparisonResponse(old_date=old_date, new_date=new_date, metrics=_to_items(changes))


@router.get("/timeframe/{timeframe}", response_model=ComparisonResponse)
async def get_timeframe_comparison(
    timeframe: str,
    session: AsyncSession = Depends(get_session),
) -> ComparisonResponse:
    """day / week / month / quarter / year 或天数；今天没有快照时用昨天的"""
    try:
        result = await RevenueAnalytics(session).compare_timeframe(timeframe)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if result is None:
        raise HTTPException(status_code=404, detail=f"{timeframe} 范围内没有可对比的快照")

    old_date, new_date, changes = result
    return ComparisonResponse(old_date=old_date, new_date=new_date, metrics=_to_items(changes))


@router.get("/revenue/stats", response_model=RevenueStatsResponse)
async def get_revenue_stats(
    session: AsyncSession = Depends(get_session),
) -> RevenueStatsResponse:
    """今日收入、美元价值，以及日 / 周 / 月 / 季 / 年收入"""
    return RevenueStatsResponse.model_validate(await RevenueAnalytics(session).revenue_stats())
