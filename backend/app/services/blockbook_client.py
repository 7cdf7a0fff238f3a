"""Blockbook 区块浏览器客户端"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx
from pydantic import ValidationError

from app.core.config import RevenueSyncConfig
from app.schemas.ledger import AddressTxidPage, RawLedgerTransaction

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class LedgerClientError(Exception):
    """区块浏览器请求失败（只用于必须拿到结果的接口）"""


def retry_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """第 attempt 次失败后的等待时间：base, 2*base, 4*base ...，不超过 max_delay"""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


class BlockbookClient:
    """Blockbook 地址索引 / 交易详情 / 链高度接口

    本类不做缓存，失败的交易详情返回 None 交给调用方处理。
    """

    def __init__(
        self,
        config: RevenueSyncConfig,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config
        self._base_url = config.blockbook_base_url.rstrip("/")
        self._daemon_url = config.daemon_base_url.rstrip("/")
        self._sleep = sleep
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            follow_redirects=True,
            headers={
                "Accept": "application/json",
                "User-Agent": "FluxDashboard/1.0",
            },
        )

    async def list_transaction_ids(
        self,
        address: str,
        page: int = 1,
        page_size: int = 1000,
    ) -> AddressTxidPage | None:
        """
        获取地址交易列表的一页

        同一个 txid 可能在一页内或多页之间重复出现，由调用方去重。

        Returns:
            AddressTxidPage，请求失败时返回 None
        """
        url = f"{self._base_url}/address/{address}"
        params = {"page": page, "pageSize": page_size}

        logger.info(f"获取地址交易列表: {address[:15]}... 第 {page} 页")
        try:
            response = await self._client.get(url, params=params, timeout=self._config.page_timeout)
            response.raise_for_status()
            data = AddressTxidPage.model_validate(response.json())
        except httpx.TimeoutException:
            logger.error(f"获取地址交易列表超时（超过 {self._config.page_timeout} 秒）: {address} 第 {page} 页")
            return None
        except httpx.HTTPStatusError as e:
            logger.error(f"获取地址交易列表失败，状态码: {e.response.status_code}, 地址: {address} 第 {page} 页")
            return None
        except httpx.RequestError as e:
            logger.error(f"获取地址交易列表请求出错: {e}")
            return None
        except (ValueError, ValidationError) as e:
            logger.error(f"地址交易列表响应解析失败: {e}")
            return None

        logger.debug(f"地址 {address[:15]}... 第 {page}/{data.total_pages} 页，{len(data.txids)} 个 txid")
        return data

    async def fetch_transaction_detail(self, txid: str) -> RawLedgerTransaction | None:
        """
        获取交易详情，失败时按指数退避重试

        Returns:
            RawLedgerTransaction，重试用完仍失败时返回 None
        """
        url = f"{self._base_url}/tx/{txid}"
        retries = self._config.detail_retries

        for attempt in range(1, retries + 1):
            try:
                response = await self._client.get(url, timeout=self._config.detail_timeout)
                response.raise_for_status()
                return RawLedgerTransaction.model_validate(response.json())
            except (httpx.HTTPError, ValueError, ValidationError) as e:
                if attempt < retries:
                    delay = retry_delay(attempt, self._config.retry_base_delay, self._config.retry_max_delay)
                    logger.warning(
                        f"获取交易 {txid[:10]} 失败: {e!r} - 第 {attempt}/{retries} 次，{delay} 秒后重试"
                    )
                    await self._sleep(delay)
                else:
                    logger.error(f"获取交易 {txid[:10]} 失败，已重试 {retries} 次: {e!r}")

        return None

    async def fetch_block_height(self) -> int:
        """获取当前链高度"""
        url = f"{self._daemon_url}/getblockcount"
        try:
            response = await self._client.get(url, timeout=self._config.daemon_timeout)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LedgerClientError(f"获取链高度失败: {e!r}") from e

        if isinstance(data, dict) and data.get("status") == "success":
            return int(data["data"])

        raise LedgerClientError(f"链高度响应异常: {data}")

    async def aclose(self) -> None:
        """关闭客户端"""
        if self._owns_client:
            await self._client.aclose()
