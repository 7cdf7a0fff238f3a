"""当前指标仓库"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.models.current_metrics import METRIC_FIELDS, CurrentMetrics

logger = logging.getLogger(__name__)


class MetricsRepository:
    """current_metrics 单行表的读写

    各采集任务（收入、云资源、游戏、节点等）只更新自己负责的字段。
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_current_metrics(self) -> CurrentMetrics | None:
        result = await self._session.execute(select(CurrentMetrics).where(CurrentMetrics.id == 1))
        return result.scalar_one_or_none()

    async def update_current_metrics(self, **fields) -> CurrentMetrics:
        """
        合并更新指标，值为 None 的字段保持原值，并刷新 last_update

        Raises:
            ValueError: 传入了未知字段
        """
        unknown = set(fields) - set(METRIC_FIELDS)
        if unknown:
            raise ValueError(f"未知的指标字段: {sorted(unknown)}")

        try:
            metrics = await self.get_current_metrics()
            if metrics is None:
                metrics = CurrentMetrics(id=1)
                self._session.add(metrics)

            for name, value in fields.items():
                if value is not None:
                    setattr(metrics, name, value)
            metrics.last_update = utcnow()
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        logger.debug(f"当前指标已更新: {sorted(k for k, v in fields.items() if v is not None)}")
        return metrics
