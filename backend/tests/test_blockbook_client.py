import httpx
import pytest

from conftest import TRACKED

from app.core.config import RevenueSyncConfig
from app.services.blockbook_client import BlockbookClient, LedgerClientError, retry_delay
from app.services.price_client import PriceClient

CONFIG = RevenueSyncConfig(
    tracked_addresses=(TRACKED,),
    blockbook_base_url="https://blockbook.test/api/v2",
    daemon_base_url="https://daemon.test/daemon",
    price_url="https://price.test/simple/price",
)

TX_JSON = {
    "txid": "tx1",
    "blockHeight": 1_400_000,
    "blockTime": 1_700_000_000,
    "confirmations": 3,
    "vin": [{"addresses": ["t1sender"]}],
    "vout": [{"n": 0, "value": "1000000000", "addresses": [TRACKED]}],
}


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_client(handler, sleep=None) -> BlockbookClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return BlockbookClient(CONFIG, http_client=http_client, sleep=sleep or RecordingSleep())


def test_retry_delay_is_capped():
    assert [retry_delay(n, 1.0, 5.0) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


async def test_list_transaction_ids_parses_page():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"/api/v2/address/{TRACKED}"
        assert request.url.params["page"] == "2"
        assert request.url.params["pageSize"] == "1000"
        return httpx.Response(
            200,
            json={"page": 2, "totalPages": 3, "txs": 2500, "txids": ["a", "b", "a"], "balance": "123"},
        )

    page = await make_client(handler).list_transaction_ids(TRACKED, page=2)

    assert page.total_pages == 3
    assert page.total_count == 2500
    assert page.txids == ["a", "b", "a"]


async def test_list_transaction_ids_returns_none_on_http_error():
    client = make_client(lambda request: httpx.Response(503))

    assert await client.list_transaction_ids(TRACKED) is None


async def test_list_transaction_ids_returns_none_on_invalid_json():
    client = make_client(lambda request: httpx.Response(200, content=b"<html>"))

    assert await client.list_transaction_ids(TRACKED) is None


async def test_fetch_detail_retries_with_backoff():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(500)
        return httpx.Response(200, json=TX_JSON)

    sleep = RecordingSleep()
    tx = await make_client(handler, sleep).fetch_transaction_detail("tx1")

    assert tx.txid == "tx1"
    assert tx.block_height == 1_400_000
    assert len(calls) == 3
    assert sleep.delays == [1.0, 2.0]


async def test_fetch_detail_returns_none_after_retries():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectTimeout("timed out", request=request)

    sleep = RecordingSleep()
    assert await make_client(handler, sleep).fetch_transaction_detail("tx1") is None
    assert len(calls) == 3
    assert sleep.delays == [1.0, 2.0]


async def test_fetch_block_height():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/daemon/getblockcount"
        return httpx.Response(200, json={"status": "success", "data": 1_612_345})

    assert await make_client(handler).fetch_block_height() == 1_612_345


async def test_fetch_block_height_raises_on_error_status():
    client = make_client(lambda request: httpx.Response(200, json={"status": "error", "data": None}))

    with pytest.raises(LedgerClientError):
        await client.fetch_block_height()


async def test_price_client_reads_zelcash_usd():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"zelcash": {"usd": 0.42}}))
    client = PriceClient(CONFIG, http_client=httpx.AsyncClient(transport=transport))

    assert await client.fetch_flux_price() == 0.42


async def test_price_client_failure_returns_none():
    transport = httpx.MockTransport(lambda request: httpx.Response(429))
    client = PriceClient(CONFIG, http_client=httpx.AsyncClient(transport=transport))

    assert await client.fetch_flux_price() is None


async def test_price_client_unexpected_payload_returns_none():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"bitcoin": {"usd": 1}}))
    client = PriceClient(CONFIG, http_client=httpx.AsyncClient(transport=transport))

    assert await client.fetch_flux_price() is None
