"""定时任务"""

import logging

from app.core.config import settings
from app.services.snapshot_manager import get_snapshot_manager

logger = logging.getLogger(__name__)


async def cleanup_old_data_job() -> None:
    """每周日 03:00（UTC）清理保留期之前的快照和交易"""
    logger.info("开始执行数据清理任务...")
    try:
        await get_snapshot_manager().cleanup_old_data(settings.data_retention_days)
        logger.info("数据清理任务完成")
    except Exception as e:
        logger.error(f"数据清理任务失败: {e}", exc_info=True)
