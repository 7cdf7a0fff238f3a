"""收入同步调度器

定时调用同步引擎，保证同一时间最多只有一轮同步在运行，
并统计连续失败次数用于健康检查和告警。
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Literal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import to_naive_utc
from app.core.config import RevenueSyncConfig, get_settings
from app.core.db import get_sessionmaker
from app.services.blockbook_client import BlockbookClient
from app.services.price_client import PriceClient
from app.services.repositories.sync_status_repository import SyncStatusRepository
from app.services.revenue_sync import (
    REVENUE_SYNC_TYPE,
    InitialSyncResult,
    ProgressiveSyncEngine,
    SyncCycleResult,
    SyncEngineState,
)
from app.services.telegram_notifier import TelegramNotifier, get_telegram_notifier

logger = logging.getLogger(__name__)

REVENUE_SYNC_JOB_ID = "revenue_sync"


@dataclass
class SyncRunOutcome:
    """一次触发的结果：completed / skipped（已有同步在运行）/ failed"""

    status: Literal["completed", "skipped", "failed"]
    result: SyncCycleResult | InitialSyncResult | None = None
    error: str | None = None


class RevenueSyncScheduler:
    def __init__(
        self,
        engine: ProgressiveSyncEngine,
        state: SyncEngineState | None = None,
        failure_threshold: int = 3,
        notifier: TelegramNotifier | None = None,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._engine = engine
        self._session_maker = session_maker
        self._state = state or engine.state
        self._failure_threshold = failure_threshold
        self._notifier = notifier
        self._sync_in_progress = False
        self._consecutive_failures = 0
        self._last_run: datetime | None = None
        self._last_outcome: str | None = None
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def engine(self) -> ProgressiveSyncEngine:
        return self._engine

    @property
    def state(self) -> SyncEngineState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def is_healthy(self) -> bool:
        return self._consecutive_failures < self._failure_threshold

    @property
    def sync_in_progress(self) -> bool:
        return self._sync_in_progress

    def register(self, scheduler: AsyncIOScheduler, interval_minutes: int = 5) -> None:
        """在 APScheduler 上注册定时同步任务，启动后立即执行第一轮"""
        scheduler.add_job(
            self.run_sync,
            "interval",
            minutes=interval_minutes,
            id=REVENUE_SYNC_JOB_ID,
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler = scheduler
        logger.info(f"收入同步任务已注册，每 {interval_minutes} 分钟执行一次")

    async def run_sync(self) -> SyncRunOutcome:
        """执行一轮同步；已有同步在运行时直接跳过，不排队"""
        return await self._run_guarded(self._engine.progressive_sync)

    async def run_initial_sync(self, max_cycles: int | None = None) -> SyncRunOutcome:
        return await self._run_guarded(lambda: self._engine.initial_sync(max_cycles))

    async def _run_guarded(self, run) -> SyncRunOutcome:
        # 检查和置位之间没有 await，保证同一事件循环内不会并发
        if self._sync_in_progress:
            logger.info("已有收入同步在运行，跳过本次触发")
            return SyncRunOutcome(status="skipped")

        self._sync_in_progress = True
        self._last_run = datetime.now(timezone.utc)
        try:
            result = await run()
        except Exception as e:
            self._consecutive_failures += 1
            self._last_outcome = "failed"
            logger.error(
                f"收入同步失败（连续 {self._consecutive_failures} 次）: {e}",
                exc_info=True,
            )
            if self._consecutive_failures >= self._failure_threshold:
                await self._alert(e)
            outcome = SyncRunOutcome(status="failed", error=str(e) or e.__class__.__name__)
        else:
            if self._consecutive_failures:
                logger.info(f"收入同步已恢复（此前连续失败 {self._consecutive_failures} 次）")
            self._consecutive_failures = 0
            self._last_outcome = "completed"
            outcome = SyncRunOutcome(status="completed", result=result)
        finally:
            self._sync_in_progress = False

        await self._record_next_sync()
        return outcome

    def next_run_time(self) -> datetime | None:
        """定时任务的下次执行时间，未注册时为 None"""
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(REVENUE_SYNC_JOB_ID)
        return job.next_run_time if job is not None else None

    async def _record_next_sync(self) -> None:
        if self._session_maker is None:
            return
        next_run = self.next_run_time()
        try:
            async with self._session_maker() as session:
                await SyncStatusRepository(session).set_next_sync(
                    REVENUE_SYNC_TYPE, to_naive_utc(next_run) if next_run else None
                )
        except Exception as e:
            logger.error(f"记录下次同步时间失败: {e}", exc_info=True)

    async def _alert(self, error: Exception) -> None:
        logger.critical(f"收入同步连续失败 {self._consecutive_failures} 次，请检查区块浏览器和数据库")
        if self._notifier is None:
            return
        await self._notifier.send_formatted_message(
            "⚠️ 收入同步告警",
            f"连续失败 {self._consecutive_failures} 次\n最近错误: {error}",
        )

    def get_status(self) -> dict:
        return {
            "is_scheduler_running": bool(self._scheduler and self._scheduler.running),
            "sync_in_progress": self._sync_in_progress,
            "last_run": self._last_run,
            "last_outcome": self._last_outcome,
            "next_run": self.next_run_time(),
            "consecutive_failures": self._consecutive_failures,
            "is_healthy": self.is_healthy,
            "engine": self._engine.get_status(),
        }


@lru_cache
def get_revenue_sync_scheduler() -> RevenueSyncScheduler:
    """按当前配置创建调度器（进程内单例）"""
    settings = get_settings()
    config = RevenueSyncConfig.from_settings(settings)
    state = SyncEngineState.from_config(config)
    engine = ProgressiveSyncEngine(
        config=config,
        ledger=BlockbookClient(config),
        price_client=PriceClient(config),
        session_maker=get_sessionmaker(),
        state=state,
    )
    return RevenueSyncScheduler(
        engine,
        state=state,
        failure_threshold=settings.sync_failure_alert_threshold,
        notifier=get_telegram_notifier(),
        session_maker=get_sessionmaker(),
    )
