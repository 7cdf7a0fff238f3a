"""收入相关 Schema"""

from datetime import date as date_type
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class PaymentRecord(BaseModel):
    """一笔打到被跟踪地址的收款，对应 revenue_transactions 的一行"""

    txid: str
    address: str
    from_address: str = "Unknown"
    amount: Decimal = Field(..., description="金额（FLUX）")
    amount_usd: Decimal | None = Field(None, description="按同步时价格折算的美元金额")
    block_height: int
    timestamp: int = Field(..., description="区块时间（秒）")
    date: date_type = Field(..., description="区块时间对应的 UTC 日期")


class RevenueTransactionItem(BaseModel):
    """交易列表中的一条记录"""

    model_config = ConfigDict(from_attributes=True)

    txid: str
    address: str
    from_address: str | None
    amount: float
    amount_usd: float | None
    block_height: int
    timestamp: int
    date: date_type


class TransactionPage(BaseModel):
    """分页交易列表"""

    transactions: list[RevenueTransactionItem]
    total: int
    page: int
    limit: int
    total_pages: int


class TransactionsByDateResponse(BaseModel):
    date: date_type
    count: int
    transactions: list[RevenueTransactionItem]


class RevenueSummary(BaseModel):
    today: float
    last_7_days: float
    last_30_days: float


class TransactionSummaryResponse(BaseModel):
    total_transactions: int
    revenue: RevenueSummary


class DailyRevenueItem(BaseModel):
    date: date_type
    daily_revenue: float
    payment_count: int


class DailyRevenueResponse(BaseModel):
    count: int
    data: list[DailyRevenueItem]


class SnapshotItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    snapshot_date: date_type
    daily_revenue: float
    flux_price_usd: float | None
    total_apps: int | None
    gaming_apps_total: int | None
    crypto_nodes_total: int | None
    node_total: int | None
    node_cumulus: int | None
    node_nimbus: int | None
    node_stratus: int | None
    sync_status: str
    created_at: datetime


class SnapshotListResponse(BaseModel):
    count: int
    data: list[SnapshotItem]


class MetricChangeItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    old: float
    new: float
    change: float = Field(..., description="变化百分比")
    difference: float
    trend: str = Field(..., description="up / down / neutral")


class ComparisonResponse(BaseModel):
    old_date: date_type
    new_date: date_type
    metrics: dict[str, MetricChangeItem]


class TrendItem(BaseModel):
    change: float
    difference: float
    trend: str


class AnalyticsComparisonResponse(BaseModel):
    period: int = Field(..., description="对比的天数")
    changes: dict[str, TrendItem]


class RevenueBreakdown(BaseModel):
    day: float
    week: float
    month: float
    quarter: float
    year: float


class RevenueStatsResponse(BaseModel):
    date: date_type
    current_revenue: float = Field(..., description="今日收入（FLUX）")
    flux_price_usd: float | None
    usd_value: float | None = Field(None, description="今日收入折算的美元金额")
    breakdown: RevenueBreakdown
