from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.services.revenue_scheduler import RevenueSyncScheduler, get_revenue_sync_scheduler
from app.services.snapshot_manager import SnapshotManager, get_snapshot_manager

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    revenue_scheduler: RevenueSyncScheduler = Depends(get_revenue_sync_scheduler),
    manager: SnapshotManager = Depends(get_snapshot_manager),
) -> dict:
    """收入同步和快照都健康时为 ok，否则为 degraded"""
    healthy = revenue_scheduler.is_healthy and manager.is_healthy
    return {
        "status": "ok" if healthy else "degraded",
        "timestamp": datetime.now(timezone.utc),
        "revenue_sync": {
            "is_healthy": revenue_scheduler.is_healthy,
            "consecutive_failures": revenue_scheduler.consecutive_failures,
            "sync_in_progress": revenue_scheduler.sync_in_progress,
        },
        "snapshots": {
            "is_healthy": manager.is_healthy,
            "consecutive_failures": manager.consecutive_failures,
        },
    }
