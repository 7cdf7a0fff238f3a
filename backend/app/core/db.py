import logging
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings

logger = logging.getLogger(__name__)


Base = declarative_base()

_engine: AsyncEngine | None = None
_SessionLocal: async_sessionmaker[AsyncSession] | None = None

# 启动时需要存在的同步类型
SYNC_TYPES = ("revenue", "daily_snapshot", "cleanup")


def _ensure_sqlite_dir(database_url: str) -> None:
    """SQLite 文件所在目录不存在时先创建"""
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite") or not url.database or url.database == ":memory:":
        return
    Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _ensure_sqlite_dir(settings.database_url)
        _engine = create_async_engine(settings.database_url, future=True, echo=False)
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _SessionLocal


async def get_session() -> AsyncIterator[AsyncSession]:
    session_maker = get_sessionmaker()
    async with session_maker() as session:
        yield session


async def init_models(engine: AsyncEngine | None = None) -> None:
    import app.models.current_metrics  # noqa: F401
    import app.models.daily_snapshot  # noqa: F401
    import app.models.revenue_transaction  # noqa: F401
    import app.models.sync_status  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        # 创建所有表
        await conn.run_sync(Base.metadata.create_all)

        # 旧库补字段
        await _migrate_revenue_transactions_table(conn)

        await _ensure_sync_status(conn)
        await _ensure_current_metrics(conn)


async def _migrate_revenue_transactions_table(conn) -> None:
    """迁移 revenue_transactions 表，补充后来新增的字段"""
    result = await conn.execute(
        text("SELECT name FROM sqlite_master WHERE type='table' AND name='revenue_transactions'")
    )
    if result.scalar() is None:
        return

    result = await conn.execute(text("PRAGMA table_info(revenue_transactions)"))
    columns = [row[1] for row in result.fetchall()]

    if "from_address" not in columns:
        await conn.execute(
            text("ALTER TABLE revenue_transactions ADD COLUMN from_address VARCHAR(64) DEFAULT 'Unknown'")
        )
        logger.info("已添加 revenue_transactions.from_address 字段")

    if "amount_usd" not in columns:
        # 历史数据的 amount_usd 保持 NULL，直到重新同步
        await conn.execute(text("ALTER TABLE revenue_transactions ADD COLUMN amount_usd NUMERIC(20, 8)"))
        logger.info("已添加 revenue_transactions.amount_usd 字段")

    if "amount_sat" not in columns:
        # 旧数据按浮点金额四舍五入到最小单位
        await conn.execute(
            text("ALTER TABLE revenue_transactions ADD COLUMN amount_sat BIGINT NOT NULL DEFAULT 0")
        )
        await conn.execute(
            text("UPDATE revenue_transactions SET amount_sat = CAST(ROUND(amount * 100000000) AS INTEGER)")
        )
        logger.info("已添加 revenue_transactions.amount_sat 字段")

    await conn.execute(
        text("CREATE INDEX IF NOT EXISTS ix_revenue_transactions_from_address ON revenue_transactions(from_address)")
    )


async def _ensure_sync_status(conn) -> None:
    """确保每种同步类型都有一行状态记录"""
    for sync_type in SYNC_TYPES:
        await conn.execute(
            text(
                "INSERT OR IGNORE INTO sync_status (sync_type, status) VALUES (:sync_type, 'pending')"
            ),
            {"sync_type": sync_type},
        )


async def _ensure_current_metrics(conn) -> None:
    """确保 current_metrics 单行记录存在"""
    await conn.execute(text("INSERT OR IGNORE INTO current_metrics (id) VALUES (1)"))
