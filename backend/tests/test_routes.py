from datetime import date, datetime, timedelta, timezone

import httpx
import pytest

from conftest import TRACKED, FakeLedger, FakePriceClient, make_payment, make_tx, no_sleep

from app.core.clock import utc_today
from app.core.config import SnapshotConfig
from app.core.db import get_session
from app.main import create_app
from app.services.repositories.metrics_repository import MetricsRepository
from app.services.repositories.revenue_repository import RevenueTransactionRepository
from app.services.repositories.snapshot_repository import SnapshotRepository
from app.services.revenue_scheduler import RevenueSyncScheduler, get_revenue_sync_scheduler
from app.services.revenue_sync import ProgressiveSyncEngine
from app.services.snapshot_manager import SnapshotManager, get_snapshot_manager


@pytest.fixture
def ledger():
    return FakeLedger(
        pages={TRACKED: [["tx1"]]},
        details={"tx1": make_tx("tx1", [(TRACKED, 1_000_000_000)])},
    )


@pytest.fixture
def revenue_scheduler(sync_config, session_maker, ledger):
    engine = ProgressiveSyncEngine(sync_config, ledger, FakePriceClient(), session_maker, sleep=no_sleep)
    return RevenueSyncScheduler(engine)


@pytest.fixture
def snapshot_manager(session_maker):
    now = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
    return SnapshotManager(SnapshotConfig(), session_maker, now=lambda: now)


@pytest.fixture
async def client(session_maker, revenue_scheduler, snapshot_manager):
    app = create_app(start_scheduler=False)

    async def override_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_revenue_sync_scheduler] = lambda: revenue_scheduler
    app.dependency_overrides[get_snapshot_manager] = lambda: snapshot_manager

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def test_health(client):
    response = await client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["revenue_sync"]["is_healthy"] is True


async def test_manual_revenue_sync(client, session_maker):
    response = await client.post("/api/admin/revenue-sync")

    assert response.status_code == 200
    assert response.json()["new_payments"] == 1
    async with session_maker() as session:
        assert await RevenueTransactionRepository(session).existing_txids() == {"tx1"}


async def test_manual_revenue_sync_conflict(client, revenue_scheduler):
    revenue_scheduler._sync_in_progress = True

    response = await client.post("/api/admin/revenue-sync")

    assert response.status_code == 409


async def test_manual_revenue_sync_failure(client, ledger):
    ledger.pages = {}

    response = await client.post("/api/admin/revenue-sync")

    assert response.status_code == 500
    health = (await client.get("/api/health")).json()
    assert health["revenue_sync"]["consecutive_failures"] == 1


async def test_revenue_status(client):
    await client.post("/api/admin/revenue-sync")

    body = (await client.get("/api/admin/revenue-status")).json()

    assert body["database"]["total_transactions"] == 1
    assert body["database"]["status"] == "completed"
    assert body["scheduler"]["engine"]["phase"] == "idle"


async def test_snapshot_endpoints(client):
    status = (await client.get("/api/admin/snapshot-status")).json()
    assert status["today_snapshot_exists"] is False

    # 指标还没有采集，手动快照被跳过
    manual = (await client.post("/api/admin/snapshot")).json()
    assert manual["skipped"] is True


async def test_backfill_endpoint(client, session_maker):
    async with session_maker() as session:
        await RevenueTransactionRepository(session).batch_insert([make_payment("a", "5", date(2025, 1, 1))])

    response = await client.post(
        "/api/admin/backfill", json={"start_date": "2025-01-01", "end_date": "2025-01-02"}
    )
    assert response.status_code == 200
    assert response.json() == {"created": 1, "skipped": 0}

    invalid = await client.post("/api/admin/backfill", json={"start_date": "2025-01-02", "end_date": "2025-01-01"})
    assert invalid.status_code == 400

    snapshots = (await client.get("/api/history/snapshots")).json()
    assert snapshots["count"] == 1
    assert snapshots["data"][0]["sync_status"] == "backfilled"


async def test_transaction_queries(client, session_maker):
    async with session_maker() as session:
        await RevenueTransactionRepository(session).batch_insert(
            [
                make_payment("a", "1.5", date(2025, 1, 1)),
                make_payment("b", "2.5", date(2025, 1, 1)),
                make_payment("c", "3", date(2025, 1, 2)),
            ]
        )

    by_date = (await client.get("/api/transactions/2025-01-01")).json()
    assert by_date["count"] == 2
    assert {t["txid"] for t in by_date["transactions"]} == {"a", "b"}

    page = (await client.get("/api/transactions/paginated", params={"limit": 2})).json()
    assert page["total"] == 3
    assert page["total_pages"] == 2
    assert len(page["transactions"]) == 2

    summary = (await client.get("/api/transactions/summary")).json()
    assert summary["total_transactions"] == 3

    assert (await client.get("/api/transactions/not-a-date")).status_code == 422


async def test_daily_revenue_history(client, session_maker):
    async with session_maker() as session:
        await RevenueTransactionRepository(session).batch_insert([make_payment("a", "1.5", utc_today())])

    body = (await client.get("/api/history/revenue/daily", params={"days": 7})).json()

    assert body["count"] == 1
    assert body["data"][0]["daily_revenue"] == 1.5
    assert body["data"][0]["payment_count"] == 1


async def test_comparison_endpoints(client, session_maker):
    today = utc_today()
    async with session_maker() as session:
        snapshots = SnapshotRepository(session)
        for day, nodes in ((today - timedelta(days=7), 100), (today, 110)):
            await snapshots.create_snapshot(
                {"snapshot_date": day, "timestamp": 1_700_000_000, "daily_revenue": 10.0, "node_total": nodes}
            )
        await MetricsRepository(session).update_current_metrics(node_total=120)

    assert (await client.get("/api/history/comparison", params={"days": 3})).status_code == 404

    body = (await client.get("/api/history/comparison", params={"days": 7})).json()
    assert body["period"] == 7
    assert body["changes"]["nodes"] == {"change": 20.0, "difference": 20.0, "trend": "up"}

    week = (await client.get("/api/history/timeframe/week")).json()
    assert week["new_date"] == today.isoformat()
    assert week["metrics"]["nodes"]["change"] == 10.0

    pair = await client.get(
        "/api/history/comparison/snapshots",
        params={"old_date": (today - timedelta(days=7)).isoformat(), "new_date": today.isoformat()},
    )
    assert pair.json()["metrics"]["revenue"]["trend"] == "neutral"

    assert (await client.get("/api/history/timeframe/fortnight")).status_code == 400
    assert (await client.get("/api/history/timeframe/year")).status_code == 404


async def test_revenue_stats_endpoint(client, session_maker):
    async with session_maker() as session:
        await RevenueTransactionRepository(session).batch_insert([make_payment("a", "4", utc_today())])
        await MetricsRepository(session).update_current_metrics(flux_price_usd=0.25)

    body = (await client.get("/api/history/revenue/stats")).json()

    assert body["current_revenue"] == 4.0
    assert body["usd_value"] == 1.0
    assert body["breakdown"]["year"] == 4.0
