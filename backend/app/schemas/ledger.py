"""Blockbook 接口响应 Schema"""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class AddressTxidPage(BaseModel):
    """地址交易列表的一页（GET /address/{address}?page=N&pageSize=M）"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    page: int = Field(1, description="当前页码")
    total_pages: int = Field(0, alias="totalPages", description="总页数")
    total_count: int = Field(0, alias="txs", description="地址的交易总数")
    txids: list[str] = Field(default_factory=list, description="本页交易哈希，可能包含重复")
    balance: str = Field("0", description="地址余额（最小单位）")


class LedgerInput(BaseModel):
    """交易输入（vin）"""

    model_config = ConfigDict(extra="ignore")

    addresses: list[str] | None = None


class LedgerOutput(BaseModel):
    """交易输出（vout）"""

    model_config = ConfigDict(extra="ignore")

    n: int = 0
    value: Decimal = Field(Decimal(0), description="金额（最小单位）")
    addresses: list[str] | None = None


class RawLedgerTransaction(BaseModel):
    """交易详情（GET /tx/{txid}），只在同步过程中临时使用"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    txid: str
    block_height: int | None = Field(None, alias="blockHeight")
    block_time: int | None = Field(None, alias="blockTime")
    confirmations: int = 0
    vin: list[LedgerInput] = Field(default_factory=list)
    vout: list[LedgerOutput] = Field(default_factory=list)
