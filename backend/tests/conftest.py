"""
测试公用 fixture：临时 SQLite 数据库、假的区块浏览器 / 价格客户端、可控时钟
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.config import RevenueSyncConfig
from app.core.db import init_models
from app.schemas.ledger import AddressTxidPage, RawLedgerTransaction
from app.schemas.revenue import PaymentRecord
from app.services.blockbook_client import LedgerClientError

TRACKED = "t3TrackedRevenueAddress00000000001"
TRACKED_2 = "t3TrackedRevenueAddress00000000002"
SENDER = "t1SenderAddress000000000000000001"
OTHER = "t1SomeoneElse0000000000000000000001"


class FakeClock:
    """可手动拨动的秒级时钟"""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLedger:
    """
    内存中的区块浏览器

    pages: address -> 每页的 txid 列表；某一页为 None 表示该页请求失败
    details: txid -> 交易详情；值为 None 或缺失表示获取失败
    """

    def __init__(self, pages=None, details=None, block_height: int | None = 1_500_000) -> None:
        self.pages: dict[str, list[list[str] | None]] = pages or {}
        self.details: dict[str, RawLedgerTransaction | None] = details or {}
        self.block_height = block_height
        self.page_calls: list[tuple[str, int]] = []
        self.detail_calls: list[str] = []
        self.closed = False

    async def list_transaction_ids(self, address, page=1, page_size=1000):
        self.page_calls.append((address, page))
        address_pages = self.pages.get(address)
        if address_pages is None or page > len(address_pages):
            return None
        txids = address_pages[page - 1]
        if txids is None:
            return None
        return AddressTxidPage(
            page=page,
            totalPages=len(address_pages),
            txs=sum(len(p or []) for p in address_pages),
            txids=txids,
        )

    async def fetch_transaction_detail(self, txid):
        self.detail_calls.append(txid)
        return self.details.get(txid)

    async def fetch_block_height(self):
        if self.block_height is None:
            raise LedgerClientError("获取链高度失败: 测试")
        return self.block_height

    async def aclose(self):
        self.closed = True


class FakePriceClient:
    def __init__(self, price: float | None = 0.5) -> None:
        self.price = price

    async def fetch_flux_price(self):
        return self.price

    async def aclose(self):
        pass


def make_tx(
    txid: str,
    outputs: list[tuple[str, int]],
    block_time: int = 1_700_000_000,
    block_height: int | None = 1_400_000,
    sender: str | None = SENDER,
) -> RawLedgerTransaction:
    """按 Blockbook 的字段名构造交易详情，outputs 为 (地址, 最小单位金额)"""
    return RawLedgerTransaction.model_validate(
        {
            "txid": txid,
            "blockHeight": block_height,
            "blockTime": block_time,
            "confirmations": 10,
            "vin": [{"addresses": [sender]}] if sender else [{}],
            "vout": [
                {"n": n, "value": str(value), "addresses": [address]}
                for n, (address, value) in enumerate(outputs)
            ],
        }
    )


def make_payment(txid: str, amount: str, day: date, address: str = TRACKED, block_height: int = 1_400_000) -> PaymentRecord:
    return PaymentRecord(
        txid=txid,
        address=address,
        from_address=SENDER,
        amount=Decimal(amount),
        block_height=block_height,
        timestamp=1_700_000_000,
        date=day,
    )


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sync_config():
    return RevenueSyncConfig(
        tracked_addresses=(TRACKED,),
        max_payments_per_cycle=20,
        request_delay_seconds=0,
        initial_sync_pause_seconds=0,
    )
