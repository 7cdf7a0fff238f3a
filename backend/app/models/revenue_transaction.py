"""收入交易记录模型"""

from decimal import Decimal

from sqlalchemy import BigInteger, Column, Date, Integer, Numeric, String

from app.core.db import Base

UNKNOWN_SENDER = "Unknown"

# 1 FLUX = 10^8 最小单位
SATOSHIS_PER_FLUX = Decimal(100_000_000)

# 金额精度（8 位小数）
AMOUNT_QUANTUM = Decimal("0.00000001")


def to_satoshis(amount: Decimal) -> int:
    """FLUX 金额换算成整数最小单位"""
    return int((amount * SATOSHIS_PER_FLUX).to_integral_value())


def from_satoshis(value: int | None) -> Decimal:
    return (Decimal(value or 0) / SATOSHIS_PER_FLUX).quantize(AMOUNT_QUANTUM)


class RevenueTransaction(Base):
    """收入交易表，每个 txid 只保存一行

    金额以整数最小单位保存在 amount_sat，求和在 SQL 中按整数进行；
    amount 列只作为可读副本，读取时以 amount_sat 为准。
    """

    __tablename__ = "revenue_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # 交易哈希（唯一，整个同步流程的幂等键）
    txid = Column(String(64), unique=True, nullable=False, index=True)

    # 收款地址（被跟踪的地址）
    address = Column(String(64), nullable=False, index=True)

    # 付款地址（取第一个输入的地址，取不到时为 Unknown）
    from_address = Column(String(64), nullable=True, default=UNKNOWN_SENDER, index=True)

    # 金额（最小单位）
    amount_sat = Column(BigInteger, nullable=False, default=0)

    # 金额（FLUX），SQLite 中按浮点数存储
    amount_display = Column("amount", Numeric(20, 8), nullable=False)

    # 按同步时的价格折算的美元金额
    amount_usd = Column(Numeric(20, 8), nullable=True)

    block_height = Column(Integer, nullable=False, index=True)

    # 区块时间（秒级时间戳）
    timestamp = Column(BigInteger, nullable=False, index=True)

    # 区块时间对应的 UTC 日期
    date = Column(Date, nullable=False, index=True)

    @property
    def amount(self) -> Decimal:
        return from_satoshis(self.amount_sat)
