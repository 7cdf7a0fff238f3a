"""收入交易查询 API"""

import math
from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utc_today
from app.core.db import get_session
from app.schemas.revenue import (
    RevenueSummary,
    RevenueTransactionItem,
    TransactionPage,
    TransactionsByDateResponse,
    TransactionSummaryResponse,
)
from app.services.repositories.revenue_repository import RevenueTransactionRepository

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("/summary", response_model=TransactionSummaryResponse)
async def get_transaction_summary(
    session: AsyncSession = Depends(get_session),
) -> TransactionSummaryResponse:
    """交易总数，以及今天 / 最近 7 天 / 最近 30 天的收入"""
    repo = RevenueTransactionRepository(session)
    today = utc_today()

    return TransactionSummaryResponse(
        total_transactions=await repo.txid_count(),
        revenue=RevenueSummary(
            today=float(await repo.revenue_for_range(today, today)),
            last_7_days=float(await repo.revenue_for_range(today - timedelta(days=6), today)),
            last_30_days=float(await repo.revenue_for_range(today - timedelta(days=29), today)),
        ),
    )


@router.get("/paginated", response_model=TransactionPage)
async def get_transactions_paginated(
    page: int = Query(1, ge=1, description="页码（从 1 开始）"),
    limit: int = Query(50, ge=1, le=500, description="每页条数"),
    search: str = Query("", description="按 txid、地址或日期搜索"),
    session: AsyncSession = Depends(get_session),
) -> TransactionPage:
    rows, total = await RevenueTransactionRepository(session).list_paginated(page, limit, search)
    return TransactionPage(
        transactions=[RevenueTransactionItem.model_validate(row) for row in rows],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/{day}", response_model=TransactionsByDateResponse)
async def get_transactions_by_date(
    day: date,
    session: AsyncSession = Depends(get_session),
) -> TransactionsByDateResponse:
    """某一天（UTC，YYYY-MM-DD）的全部收款"""
    rows = await RevenueTransactionRepository(session).transactions_by_date(day)
    return TransactionsByDateResponse(
        date=day,
        count=len(rows),
        transactions=[RevenueTransactionItem.model_validate(row) for row in rows],
    )
