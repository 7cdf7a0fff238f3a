"""初始化数据库脚本

创建数据表，给旧库补字段，并写入 sync_status / current_metrics 的初始行

使用方法：
    python scripts/init_db.py
"""

import asyncio
import logging
import sys
from pathlib import Path

# 添加项目根目录到 Python 路径
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from app.core.config import settings
from app.core.db import SYNC_TYPES, get_sessionmaker, init_models
from app.services.repositories.revenue_repository import RevenueTransactionRepository
from app.services.repositories.sync_status_repository import SyncStatusRepository

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def main():
    try:
        logger.info(f"开始初始化数据库: {settings.database_url}")
        await init_models()

        async with get_sessionmaker()() as session:
            total = await RevenueTransactionRepository(session).txid_count()
            status_repo = SyncStatusRepository(session)
            for sync_type in SYNC_TYPES:
                record = await status_repo.get(sync_type)
                logger.info(
                    f"  {sync_type}: {record.status}，上次同步 {record.last_sync or '无'}，"
                    f"链高度 {record.last_sync_block or '-'}"
                )

        logger.info(f"数据库初始化完成！已有收入交易 {total} 笔")
    except Exception as e:
        logger.error(f"数据库初始化失败: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
