"""交易解析：从交易详情中提取打到被跟踪地址的收款"""

import time
from collections.abc import Collection
from datetime import datetime, timezone
from decimal import Decimal

from app.models.revenue_transaction import SATOSHIS_PER_FLUX, UNKNOWN_SENDER
from app.schemas.ledger import RawLedgerTransaction
from app.schemas.revenue import PaymentRecord


def resolve_sender(tx: RawLedgerTransaction) -> str:
    """付款地址取第一个输入的第一个地址，取不到时返回 Unknown"""
    if tx.vin and tx.vin[0].addresses:
        return tx.vin[0].addresses[0]
    return UNKNOWN_SENDER


def extract_payments(
    tx: RawLedgerTransaction,
    tracked_addresses: Collection[str],
    price_hint: float | None = None,
) -> list[PaymentRecord]:
    """
    提取交易中所有打到被跟踪地址的输出

    同一笔交易里有多个输出命中时，每个输出各返回一条记录，
    入库时按 txid 去重，只保留第一条。

    Args:
        tx: 交易详情
        tracked_addresses: 被跟踪的地址
        price_hint: 当前 FLUX 美元价格，传入时同时计算 amount_usd

    Returns:
        收款记录列表（可能为空）
    """
    payments: list[PaymentRecord] = []
    if not tx.vout:
        return payments

    # 未确认交易没有区块时间，按当前时间记
    timestamp = tx.block_time if tx.block_time is not None else int(time.time())
    tx_date = datetime.fromtimestamp(timestamp, tz=timezone.utc).date()
    block_height = tx.block_height or 0
    from_address = resolve_sender(tx)
    price = Decimal(str(price_hint)) if price_hint is not None else None

    for vout in tx.vout:
        if not vout.addresses:
            continue

        for address in vout.addresses:
            if address not in tracked_addresses:
                continue

            amount = vout.value / SATOSHIS_PER_FLUX
            payments.append(
                PaymentRecord(
                    txid=tx.txid,
                    address=address,
                    from_address=from_address,
                    amount=amount,
                    amount_usd=amount * price if price is not None else None,
                    block_height=block_height,
                    timestamp=timestamp,
                    date=tx_date,
                )
            )

    return payments
