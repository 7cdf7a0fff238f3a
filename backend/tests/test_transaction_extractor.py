import time
from datetime import date
from decimal import Decimal

import pytest

from conftest import OTHER, SENDER, TRACKED, TRACKED_2, make_tx

from app.schemas.ledger import RawLedgerTransaction
from app.services.transaction_extractor import extract_payments, resolve_sender


def test_extracts_only_outputs_to_tracked_addresses():
    tx = make_tx(
        "abc123",
        [(TRACKED, 500_000_000), (OTHER, 100_000_000), (TRACKED, 250_000_000)],
    )

    payments = extract_payments(tx, {TRACKED})

    assert [p.amount for p in payments] == [Decimal("5.0"), Decimal("2.5")]
    assert {p.txid for p in payments} == {"abc123"}
    assert all(p.address == TRACKED for p in payments)
    assert all(p.from_address == SENDER for p in payments)


def test_date_is_utc_calendar_day_of_block_time():
    tx = make_tx("abc123", [(TRACKED, 100_000_000)], block_time=1_700_000_000)

    (payment,) = extract_payments(tx, {TRACKED})

    assert payment.date == date(2023, 11, 14)
    assert payment.timestamp == 1_700_000_000


@pytest.fixture
def local_timezone(monkeypatch):
    """切换进程本地时区，结束后恢复"""

    def switch(name: str) -> None:
        monkeypatch.setenv("TZ", name)
        time.tzset()

    yield switch
    monkeypatch.undo()
    time.tzset()


@pytest.mark.skipif(not hasattr(time, "tzset"), reason="需要 time.tzset")
@pytest.mark.parametrize("tz_name", ["Asia/Tokyo", "Pacific/Kiritimati", "America/Los_Angeles"])
def test_date_ignores_process_local_timezone(local_timezone, tz_name):
    local_timezone(tz_name)
    # 1700000000 是 UTC 22:13，UTC+2 以东已经是第二天
    tx = make_tx("abc123", [(TRACKED, 100_000_000)], block_time=1_700_000_000)

    (payment,) = extract_payments(tx, {TRACKED})

    assert payment.date == date(2023, 11, 14)


def test_usd_amount_only_with_price_hint():
    tx = make_tx("abc123", [(TRACKED, 1_000_000_000)])

    (without_price,) = extract_payments(tx, {TRACKED})
    (with_price,) = extract_payments(tx, {TRACKED}, price_hint=0.25)

    assert without_price.amount_usd is None
    assert with_price.amount_usd == Decimal("2.5")


def test_no_matching_outputs_returns_empty_list():
    tx = make_tx("abc123", [(OTHER, 100_000_000)])

    assert extract_payments(tx, {TRACKED}) == []


def test_multiple_tracked_addresses():
    tx = make_tx("abc123", [(TRACKED, 100_000_000), (TRACKED_2, 200_000_000)])

    payments = extract_payments(tx, {TRACKED, TRACKED_2})

    assert [(p.address, p.amount) for p in payments] == [
        (TRACKED, Decimal("1")),
        (TRACKED_2, Decimal("2")),
    ]


def test_missing_sender_is_unknown():
    tx = make_tx("abc123", [(TRACKED, 100_000_000)], sender=None)

    assert resolve_sender(tx) == "Unknown"
    assert extract_payments(tx, {TRACKED})[0].from_address == "Unknown"


def test_outputs_without_addresses_are_ignored():
    tx = RawLedgerTransaction.model_validate(
        {
            "txid": "opreturn",
            "blockHeight": 10,
            "blockTime": 1_700_000_000,
            "vin": [],
            "vout": [{"n": 0, "value": "0"}, {"n": 1, "value": "300000000", "addresses": [TRACKED]}],
        }
    )

    payments = extract_payments(tx, {TRACKED})

    assert len(payments) == 1
    assert payments[0].amount == Decimal("3")
