from datetime import date, datetime, timedelta, timezone

from conftest import make_payment

from app.core.config import SnapshotConfig
from app.services.repositories.metrics_repository import MetricsRepository
from app.services.repositories.revenue_repository import RevenueTransactionRepository
from app.services.repositories.snapshot_repository import SnapshotRepository
from app.services.repositories.sync_status_repository import SyncStatusRepository
from app.services.snapshot_manager import SnapshotManager

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def make_manager(session_maker, now=NOW) -> SnapshotManager:
    return SnapshotManager(SnapshotConfig(), session_maker, now=lambda: now)


async def seed_metrics(session_maker, updated_at: datetime, **fields) -> None:
    async with session_maker() as session:
        metrics = await MetricsRepository(session).update_current_metrics(**fields)
        metrics.last_update = updated_at.replace(tzinfo=None)
        await session.commit()


async def seed_valid_metrics(session_maker) -> None:
    await seed_metrics(
        session_maker,
        NOW - timedelta(minutes=30),
        node_total=13000,
        total_apps=2500,
        total_cpu_cores=90000,
        flux_price_usd=0.45,
    )


async def test_skips_within_grace_period(session_maker):
    await seed_valid_metrics(session_maker)
    manager = make_manager(session_maker, now=datetime(2025, 1, 15, 0, 3, tzinfo=timezone.utc))

    decision = await manager.should_take_snapshot()

    assert not decision.should
    assert "午夜" in decision.reason


async def test_skips_when_metrics_never_updated(session_maker):
    decision = await make_manager(session_maker).should_take_snapshot()

    assert not decision.should


async def test_skips_stale_metrics(session_maker):
    await seed_metrics(session_maker, NOW - timedelta(hours=25), node_total=1, total_apps=1)

    decision = await make_manager(session_maker).should_take_snapshot()

    assert not decision.should
    assert "过期" in decision.reason


async def test_skips_when_too_few_key_metrics(session_maker):
    await seed_metrics(session_maker, NOW - timedelta(minutes=5), node_total=13000)

    decision = await make_manager(session_maker).should_take_snapshot()

    assert not decision.should
    assert "1/5" in decision.reason


async def test_run_check_creates_one_snapshot_per_day(session_maker):
    await seed_valid_metrics(session_maker)
    async with session_maker() as session:
        await RevenueTransactionRepository(session).batch_insert(
            [make_payment("a", "12.5", TODAY), make_payment("b", "7.5", TODAY), make_payment("c", "3", date(2025, 1, 14))]
        )
    manager = make_manager(session_maker)

    created = await manager.run_check()
    again = await manager.run_check()

    assert created.success and not created.skipped
    assert again.skipped
    async with session_maker() as session:
        snapshot = await SnapshotRepository(session).get_by_date(TODAY)
        status = await SyncStatusRepository(session).get("daily_snapshot")

    assert snapshot.daily_revenue == 20.0
    assert snapshot.flux_price_usd == 0.45
    assert snapshot.node_total == 13000
    assert snapshot.sync_status == "completed"
    assert snapshot.timestamp == int(NOW.timestamp())
    assert status.status == "completed"


async def test_manual_snapshot_reports_reason_when_not_ready(session_maker):
    result = await make_manager(session_maker).take_manual_snapshot()

    assert not result.success
    assert result.skipped
    assert result.reason


async def test_failures_make_manager_unhealthy(session_maker):
    await seed_valid_metrics(session_maker)
    manager = make_manager(session_maker)

    # 检查通过之后指标才变得不可用，创建快照时失败
    for _ in range(3):
        await seed_metrics(session_maker, NOW - timedelta(minutes=1), node_total=0, total_apps=0, total_cpu_cores=0)
        result = await manager.take_snapshot()
        assert not result.success

    assert manager.consecutive_failures == 3
    assert not manager.is_healthy
    async with session_maker() as session:
        status = await SyncStatusRepository(session).get("daily_snapshot")
    assert status.status == "failed"


async def test_backfill_creates_missing_revenue_days(session_maker):
    async with session_maker() as session:
        await RevenueTransactionRepository(session).batch_insert(
            [
                make_payment("a", "4", date(2025, 1, 1)),
                make_payment("b", "6", date(2025, 1, 1)),
                make_payment("c", "2", date(2025, 1, 3)),
            ]
        )
        await SnapshotRepository(session).create_snapshot(
            {"snapshot_date": date(2025, 1, 3), "timestamp": 0, "daily_revenue": 99.0, "sync_status": "completed"}
        )

    result = await make_manager(session_maker).backfill_revenue_snapshots(date(2025, 1, 1), date(2025, 1, 4))

    assert result.created == 1
    assert result.skipped == 1
    async with session_maker() as session:
        snapshots = await SnapshotRepository(session).in_range(date(2025, 1, 1), date(2025, 1, 4))

    assert [(s.snapshot_date, s.daily_revenue, s.sync_status) for s in snapshots] == [
        (date(2025, 1, 1), 10.0, "backfilled"),
        (date(2025, 1, 3), 99.0, "completed"),
    ]


async def test_cleanup_removes_data_past_retention(session_maker):
    async with session_maker() as session:
        await RevenueTransactionRepository(session).batch_insert(
            [make_payment("old", "1", date(2023, 12, 1)), make_payment("new", "1", date(2025, 1, 10))]
        )
        await SnapshotRepository(session).create_snapshot(
            {"snapshot_date": date(2023, 12, 1), "timestamp": 0, "daily_revenue": 1.0, "sync_status": "completed"}
        )

    deleted = await make_manager(session_maker).cleanup_old_data(365)

    assert deleted == {"snapshots_deleted": 1, "transactions_deleted": 1}
    async with session_maker() as session:
        assert await RevenueTransactionRepository(session).existing_txids() == {"new"}
        assert (await SyncStatusRepository(session).get("cleanup")).status == "completed"


async def test_status(session_maker):
    status = await make_manager(session_maker).get_status()

    assert status["today_snapshot_exists"] is False
    assert status["is_healthy"] is True
    assert status["config"]["grace_period_minutes"] == 5
