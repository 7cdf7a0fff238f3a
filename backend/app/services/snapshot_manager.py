"""每日快照管理

每 30 分钟检查一次，满足以下条件时为今天（UTC）创建快照：
- 今天还没有快照
- 已过午夜后的等待期
- current_metrics 足够新，且关键指标中至少有 min_valid_metrics 个非零

快照只读取收入表的汇总和 current_metrics，不会写入同步引擎使用的数据。
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import as_utc
from app.core.config import SnapshotConfig, get_settings
from app.core.db import get_sessionmaker
from app.models.current_metrics import KEY_METRIC_FIELDS, METRIC_FIELDS, CurrentMetrics
from app.models.sync_status import SYNC_COMPLETED, SYNC_FAILED
from app.services.repositories.metrics_repository import MetricsRepository
from app.services.repositories.revenue_repository import RevenueTransactionRepository
from app.services.repositories.snapshot_repository import SnapshotRepository
from app.services.repositories.sync_status_repository import SyncStatusRepository
from app.services.telegram_notifier import TelegramNotifier, get_telegram_notifier

logger = logging.getLogger(__name__)

SNAPSHOT_SYNC_TYPE = "daily_snapshot"
CLEANUP_SYNC_TYPE = "cleanup"
SNAPSHOT_CHECK_JOB_ID = "snapshot_check"

# 快照中直接从 current_metrics 复制的字段（收入单独计算）
_COPIED_FIELDS = tuple(name for name in METRIC_FIELDS if name not in ("current_revenue", "flux_price_usd"))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SnapshotDecision:
    should: bool
    reason: str


@dataclass
class SnapshotResult:
    success: bool
    snapshot_date: date | None = None
    skipped: bool = False
    reason: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class BackfillResult:
    created: int = 0
    skipped: int = 0


def validate_metrics(metrics: CurrentMetrics | None, config: SnapshotConfig, now: datetime) -> tuple[bool, str]:
    """检查 current_metrics 是否可以用于快照，返回 (是否可用, 原因)"""
    if metrics is None:
        return False, "数据库中没有当前指标"

    if metrics.last_update is None:
        return False, "当前指标没有 last_update"

    age = now - as_utc(metrics.last_update)
    age_hours = age.total_seconds() / 3600
    if age_hours > config.max_metric_age_hours:
        return False, f"当前指标已过期 {age_hours:.0f} 小时（最多 {config.max_metric_age_hours} 小时）"

    populated = sum(1 for name in KEY_METRIC_FIELDS if (getattr(metrics, name) or 0) > 0)
    if populated < config.min_valid_metrics:
        return False, (
            f"关键指标只有 {populated}/{len(KEY_METRIC_FIELDS)} 个非零"
            f"（至少需要 {config.min_valid_metrics} 个）"
        )

    return True, f"指标可用（{populated}/{len(KEY_METRIC_FIELDS)} 个关键指标非零，{age.total_seconds() / 60:.0f} 分钟前更新）"


class SnapshotManager:
    def __init__(
        self,
        config: SnapshotConfig,
        session_maker: async_sessionmaker[AsyncSession],
        now: Callable[[], datetime] = _utc_now,
        notifier: TelegramNotifier | None = None,
    ) -> None:
        self._config = config
        self._session_maker = session_maker
        self._now = now
        self._notifier = notifier
        self._is_running = False
        self._last_check: datetime | None = None
        self._last_success: datetime | None = None
        self._consecutive_failures = 0
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def is_healthy(self) -> bool:
        return self._consecutive_failures < self._config.failure_alert_threshold

    def register(self, scheduler: AsyncIOScheduler) -> None:
        """注册快照检查任务，启动后立即检查一次"""
        scheduler.add_job(
            self.run_check,
            "interval",
            minutes=self._config.check_interval_minutes,
            id=SNAPSHOT_CHECK_JOB_ID,
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler = scheduler
        logger.info(
            f"快照检查任务已注册: 每 {self._config.check_interval_minutes} 分钟检查一次，"
            f"午夜后等待 {self._config.grace_period_minutes} 分钟"
        )

    async def should_take_snapshot(self) -> SnapshotDecision:
        now = self._now()
        today = now.date()

        async with self._session_maker() as session:
            if await SnapshotRepository(session).get_by_date(today) is not None:
                return SnapshotDecision(False, f"{today} 的快照已存在")

            minutes_since_midnight = now.hour * 60 + now.minute
            if minutes_since_midnight < self._config.grace_period_minutes:
                return SnapshotDecision(False, f"午夜后 {self._config.grace_period_minutes} 分钟内，暂不创建")

            metrics = await MetricsRepository(session).get_current_metrics()

        valid, reason = validate_metrics(metrics, self._config, now)
        if not valid:
            return SnapshotDecision(False, f"指标未就绪: {reason}")

        return SnapshotDecision(True, reason)

    async def take_snapshot(self) -> SnapshotResult:
        """用当前指标和今天的收入创建快照；失败时记录到 sync_status 并累计失败次数"""
        now = self._now()
        today = now.date()

        try:
            async with self._session_maker() as session:
                metrics = await MetricsRepository(session).get_current_metrics()
                valid, reason = validate_metrics(metrics, self._config, now)
                if not valid:
                    raise ValueError(f"指标不可用: {reason}")

                daily_revenue = await RevenueTransactionRepository(session).revenue_for_range(today, today)

                data: dict[str, Any] = {
                    "snapshot_date": today,
                    "timestamp": int(now.timestamp()),
                    "daily_revenue": float(daily_revenue),
                    "flux_price_usd": metrics.flux_price_usd,
                    "sync_status": SYNC_COMPLETED,
                }
                for name in _COPIED_FIELDS:
                    data[name] = getattr(metrics, name) or 0

                created = await SnapshotRepository(session).create_snapshot(data)
                await SyncStatusRepository(session).update_status(SNAPSHOT_SYNC_TYPE, SYNC_COMPLETED)
        except Exception as e:
            self._consecutive_failures += 1
            logger.error(f"创建快照失败（连续 {self._consecutive_failures} 次）: {e}", exc_info=True)
            await self._record_status(SNAPSHOT_SYNC_TYPE, SYNC_FAILED, str(e))
            return SnapshotResult(success=False, snapshot_date=today, reason=str(e))

        self._consecutive_failures = 0
        self._last_success = now
        if not created:
            return SnapshotResult(success=True, snapshot_date=today, skipped=True, reason=f"{today} 的快照已存在")

        logger.info(
            f"已创建 {today} 的快照: 收入 {data['daily_revenue']:.2f} FLUX，节点 {data['node_total']}，"
            f"应用 {data['total_apps']}，CPU {data['total_cpu_cores']} 核"
        )
        return SnapshotResult(success=True, snapshot_date=today, data=data)

    async def run_check(self) -> SnapshotResult | None:
        """定时检查入口；上一轮还没结束时跳过"""
        self._last_check = self._now()

        if self._is_running:
            logger.info("上一轮快照检查还在运行，跳过")
            return None

        self._is_running = True
        try:
            decision = await self.should_take_snapshot()
            if not decision.should:
                logger.info(f"跳过快照: {decision.reason}")
                return SnapshotResult(success=False, skipped=True, reason=decision.reason)

            logger.info(f"{decision.reason}，开始创建快照")
            result = await self.take_snapshot()
        except Exception as e:
            self._consecutive_failures += 1
            logger.error(f"快照检查出错: {e}", exc_info=True)
            result = SnapshotResult(success=False, reason=str(e))
        finally:
            self._is_running = False

        if not result.success and not result.skipped and not self.is_healthy:
            await self._alert(result.reason)
        return result

    async def take_manual_snapshot(self) -> SnapshotResult:
        """手动触发，仍然要满足自动快照的所有条件"""
        logger.info("手动触发快照...")
        decision = await self.should_take_snapshot()
        if not decision.should:
            return SnapshotResult(success=False, skipped=True, reason=decision.reason)
        return await self.take_snapshot()

    async def backfill_revenue_snapshots(self, start_date: date, end_date: date) -> BackfillResult:
        """
        用历史交易为缺少快照的日期补建快照

        只填收入，其他指标没有历史数据，记为 0，sync_status 为 backfilled；
        当天没有收入的日期不创建。
        """
        if start_date > end_date:
            raise ValueError(f"开始日期 {start_date} 晚于结束日期 {end_date}")

        logger.info(f"开始回填快照: {start_date} ~ {end_date}")
        result = BackfillResult()

        async with self._session_maker() as session:
            snapshots = SnapshotRepository(session)
            revenue = RevenueTransactionRepository(session)

            day = start_date
            while day <= end_date:
                if await snapshots.get_by_date(day) is not None:
                    result.skipped += 1
                else:
                    daily_revenue = await revenue.revenue_for_range(day, day)
                    if daily_revenue > 0:
                        data: dict[str, Any] = {
                            "snapshot_date": day,
                            "timestamp": int(datetime.combine(day, time.min, tzinfo=timezone.utc).timestamp()),
                            "daily_revenue": float(daily_revenue),
                            "flux_price_usd": None,
                            "sync_status": "backfilled",
                        }
                        data.update({name: 0 for name in _COPIED_FIELDS})
                        if await snapshots.create_snapshot(data):
                            result.created += 1
                day += timedelta(days=1)

        logger.info(f"快照回填完成: 新建 {result.created} 个，已存在跳过 {result.skipped} 个")
        return result

    async def cleanup_old_data(self, retention_days: int = 365) -> dict[str, int]:
        """删除保留期之前的快照和交易"""
        logger.info(f"开始清理 {retention_days} 天前的数据...")
        today = self._now().date()
        try:
            async with self._session_maker() as session:
                snapshots_deleted = await SnapshotRepository(session).delete_older_than(retention_days, today)
                transactions_deleted = await RevenueTransactionRepository(session).delete_older_than(
                    retention_days, today
                )
                await SyncStatusRepository(session).update_status(CLEANUP_SYNC_TYPE, SYNC_COMPLETED)
        except Exception as e:
            logger.error(f"数据清理失败: {e}", exc_info=True)
            await self._record_status(CLEANUP_SYNC_TYPE, SYNC_FAILED, str(e))
            raise

        logger.info(f"数据清理完成: 删除快照 {snapshots_deleted} 个，交易 {transactions_deleted} 笔")
        return {"snapshots_deleted": snapshots_deleted, "transactions_deleted": transactions_deleted}

    async def get_status(self) -> dict:
        today = self._now().date()
        async with self._session_maker() as session:
            today_snapshot = await SnapshotRepository(session).get_by_date(today)

        return {
            "config": {
                "check_interval_minutes": self._config.check_interval_minutes,
                "grace_period_minutes": self._config.grace_period_minutes,
                "min_valid_metrics": self._config.min_valid_metrics,
                "max_metric_age_hours": self._config.max_metric_age_hours,
            },
            "is_scheduler_running": bool(self._scheduler and self._scheduler.running),
            "is_running": self._is_running,
            "last_check": self._last_check,
            "last_success": self._last_success,
            "consecutive_failures": self._consecutive_failures,
            "today_snapshot_exists": today_snapshot is not None,
            "today_snapshot_date": today_snapshot.snapshot_date if today_snapshot else None,
            "is_healthy": self.is_healthy,
        }

    async def _record_status(self, sync_type: str, status: str, message: str) -> None:
        try:
            async with self._session_maker() as session:
                await SyncStatusRepository(session).update_status(sync_type, status, error_message=message)
        except Exception as e:
            logger.error(f"记录 {sync_type} 状态时出错: {e}", exc_info=True)

    async def _alert(self, reason: str | None) -> None:
        logger.critical(f"快照连续失败 {self._consecutive_failures} 次: {reason}")
        if self._notifier is None:
            return
        await self._notifier.send_formatted_message(
            "⚠️ 每日快照告警",
            f"连续失败 {self._consecutive_failures} 次\n最近原因: {reason}",
        )


@lru_cache
def get_snapshot_manager() -> SnapshotManager:
    """按当前配置创建快照管理器（进程内单例）"""
    return SnapshotManager(
        SnapshotConfig.from_settings(get_settings()),
        get_sessionmaker(),
        notifier=get_telegram_notifier(),
    )
