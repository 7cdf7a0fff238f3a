"""FLUX 价格查询客户端"""

import logging

import httpx

from app.core.config import RevenueSyncConfig

logger = logging.getLogger(__name__)


class PriceClient:
    """查询 FLUX 的美元价格（CoinGecko，币种 id 为 zelcash）"""

    def __init__(
        self,
        config: RevenueSyncConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = config.price_url
        self._timeout = config.price_timeout
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            follow_redirects=True,
            headers={
                "Accept": "application/json",
                "User-Agent": "FluxDashboard/1.0",
            },
        )

    async def fetch_flux_price(self) -> float | None:
        """
        获取 FLUX 价格

        Returns:
            美元价格，获取失败时返回 None（不影响收入同步）
        """
        try:
            response = await self._client.get(self._url, timeout=self._timeout)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            logger.warning(f"获取 FLUX 价格超时（超过 {self._timeout} 秒）")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"获取 FLUX 价格失败: {e!r}")
            return None

        try:
            price = float(data["zelcash"]["usd"])
        except (KeyError, TypeError, ValueError):
            logger.warning(f"价格响应中没有 zelcash.usd: {data}")
            return None

        logger.info(f"FLUX 价格: ${price}")
        return price

    async def aclose(self) -> None:
        """关闭客户端"""
        if self._owns_client:
            await self._client.aclose()
