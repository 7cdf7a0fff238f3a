from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.core.config import settings
from app.services.revenue_scheduler import get_revenue_sync_scheduler
from app.services.snapshot_manager import get_snapshot_manager
from app.tasks import jobs


class SchedulerWrapper:
    def __init__(self) -> None:
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._cleanup_job_id = "cleanup_old_data_weekly"
        self._is_configured = False

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def _configure_jobs(self) -> None:
        if self._is_configured:
            return

        # 收入同步（每 5 分钟，启动后立即执行一次）
        get_revenue_sync_scheduler().register(
            self._scheduler,
            interval_minutes=settings.revenue_sync_interval_minutes,
        )

        # 每日快照检查（每 30 分钟）
        get_snapshot_manager().register(self._scheduler)

        # 数据清理（每周日 03:00）
        self._scheduler.add_job(
            jobs.cleanup_old_data_job,
            "cron",
            day_of_week="sun",
            hour=3,
            minute=0,
            id=self._cleanup_job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self._is_configured = True

    async def start(self) -> None:
        if not self._scheduler.running:
            self._configure_jobs()
            self._scheduler.start()

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        if self._is_configured:
            await get_revenue_sync_scheduler().engine.aclose()


scheduler = SchedulerWrapper()
