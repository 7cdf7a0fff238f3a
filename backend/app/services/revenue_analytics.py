"""收入和指标的对比分析

- 当前指标与 N 天前快照对比（收入取交易表中两天各自的合计）
- 两个日期的快照对比
- 按时间范围（日 / 周 / 月 / 季 / 年）对比，今天没有快照时退回到昨天
- 各时间范围的收入合计
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.current_metrics import CurrentMetrics
from app.models.daily_snapshot import DailySnapshot
from app.services.repositories.metrics_repository import MetricsRepository
from app.services.repositories.revenue_repository import RevenueTransactionRepository
from app.services.repositories.snapshot_repository import SnapshotRepository

logger = logging.getLogger(__name__)

# 对比项 -> 指标字段（revenue 单独处理）
COMPARED_METRICS = {
    "apps": "total_apps",
    "gaming": "gaming_apps_total",
    "crypto": "crypto_nodes_total",
    "wordpress": "wordpress_count",
    "nodes": "node_total",
    "cpu": "cpu_utilization_percent",
    "ram": "ram_utilization_percent",
    "storage": "storage_utilization_percent",
}

TIMEFRAME_DAYS = {
    "day": 1,
    "week": 7,
    "month": 30,
    "quarter": 90,
    "year": 365,
}

_TIMEFRAME_ALIASES = {name[0]: name for name in TIMEFRAME_DAYS}


@dataclass
class MetricChange:
    old: float
    new: float
    change: float  # 百分比
    difference: float

    @property
    def trend(self) -> str:
        if self.change > 0:
            return "up"
        if self.change < 0:
            return "down"
        return "neutral"


def calculate_change(old: float, new: float) -> float:
    """变化百分比；旧值为 0 时，新值为正记 100%，否则记 0"""
    if old == 0:
        return 100.0 if new > 0 else 0.0
    return (new - old) * 100 / old


def compare_values(old, new) -> MetricChange:
    old = float(old or 0)
    new = float(new or 0)
    return MetricChange(old=old, new=new, change=calculate_change(old, new), difference=new - old)


def resolve_timeframe(timeframe: str | int) -> int:
    """
    时间范围换算成天数

    支持 day/week/month/quarter/year、首字母缩写，以及正整数天数。

    Raises:
        ValueError: 无法识别的时间范围
    """
    if isinstance(timeframe, int):
        days = timeframe
    else:
        key = timeframe.strip().lower()
        key = _TIMEFRAME_ALIASES.get(key, key)
        if key in TIMEFRAME_DAYS:
            return TIMEFRAME_DAYS[key]
        if not key.isdigit():
            raise ValueError(f"无法识别的时间范围: {timeframe}")
        days = int(key)

    if days < 1:
        raise ValueError(f"时间范围必须至少 1 天: {timeframe}")
    return days


class RevenueAnalytics:
    """基于快照、当前指标和交易表的对比分析（只读）"""

    def __init__(self, session: AsyncSession, today: date | None = None) -> None:
        self._session = session
        self._today = today or datetime.now(timezone.utc).date()
        self._snapshots = SnapshotRepository(session)
        self._revenue = RevenueTransactionRepository(session)

    async def compare_with_current(self, days_ago: int) -> dict[str, MetricChange] | None:
        """
        当前指标与 days_ago 天前的快照对比

        Returns:
            对比项 -> 变化；没有当前指标或对应日期没有快照时返回 None
        """
        metrics: CurrentMetrics | None = await MetricsRepository(self._session).get_current_metrics()
        if metrics is None or metrics.last_update is None:
            logger.warning("没有可用的当前指标，无法对比")
            return None

        compare_date = self._today - timedelta(days=days_ago)
        past = await self._snapshots.get_by_date(compare_date)
        if past is None:
            logger.warning(f"{compare_date} 没有快照，无法对比")
            return None

        today_revenue = await self._revenue.revenue_for_range(self._today, self._today)
        past_revenue = await self._revenue.revenue_for_range(compare_date, compare_date)

        changes = {"revenue": compare_values(past_revenue, today_revenue)}
        for name, field in COMPARED_METRICS.items():
            changes[name] = compare_values(getattr(past, field), getattr(metrics, field))
        return changes

    async def compare_snapshots(self, old_date: date, new_date: date) -> dict[str, MetricChange] | None:
        """两个日期的快照对比，任一日期没有快照时返回 None"""
        old = await self._snapshots.get_by_date(old_date)
        new = await self._snapshots.get_by_date(new_date)
        if old is None or new is None:
            return None
        return _compare_snapshot_rows(old, new)

    async def compare_timeframe(
        self, timeframe: str | int = "day"
    ) -> tuple[date, date, dict[str, MetricChange]] | None:
        """
        今天的快照与一个时间范围之前的快照对比；今天还没有快照时改用昨天

        Returns:
            (旧日期, 新日期, 对比结果)，两次都找不到快照时返回 None
        """
        days = resolve_timeframe(timeframe)

        for new_date in (self._today, self._today - timedelta(days=1)):
            old_date = new_date - timedelta(days=days)
            comparison = await self.compare_snapshots(old_date, new_date)
            if comparison is not None:
                return old_date, new_date, comparison
        return None

    async def analytics_comparison(self, days: int) -> dict | None:
        """前端使用的对比结果：每项只给出变化百分比、差值和趋势"""
        comparison = await self.compare_with_current(days)
        if comparison is None:
            return None

        return {
            "period": days,
            "changes": {
                name: {"change": item.change, "difference": item.difference, "trend": item.trend}
                for name, item in comparison.items()
            },
        }

    async def revenue_for_timeframe(self, timeframe: str | int = "day") -> Decimal:
        """从 N 天前到今天（含两端）的收入合计"""
        days = resolve_timeframe(timeframe)
        start = self._today - timedelta(days=days)
        revenue = await self._revenue.revenue_for_range(start, self._today)
        logger.debug(f"{timeframe} 收入 ({start} ~ {self._today}): {revenue:.2f} FLUX")
        return revenue

    async def revenue_breakdown(self) -> dict[str, Decimal]:
        return {name: await self.revenue_for_timeframe(name) for name in TIMEFRAME_DAYS}

    async def revenue_stats(self) -> dict:
        """今日收入、FLUX 价格、折算美元，以及各时间范围的收入"""
        metrics = await MetricsRepository(self._session).get_current_metrics()
        price = metrics.flux_price_usd if metrics is not None else None
        today_revenue = await self._revenue.revenue_for_range(self._today, self._today)

        return {
            "date": self._today,
            "current_revenue": today_revenue,
            "flux_price_usd": price,
            "usd_value": today_revenue * Decimal(str(price)) if price else None,
            "breakdown": await self.revenue_breakdown(),
        }


def _compare_snapshot_rows(old: DailySnapshot, new: DailySnapshot) -> dict[str, MetricChange]:
    changes = {"revenue": compare_values(old.daily_revenue, new.daily_revenue)}
    for name, field in COMPARED_METRICS.items():
        changes[name] = compare_values(getattr(old, field), getattr(new, field))
    return changes
