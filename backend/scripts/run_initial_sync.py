"""首次收入回填脚本

连续执行收入同步，直到某一轮没有新增收款为止

使用方法：
    python scripts/run_initial_sync.py
    python scripts/run_initial_sync.py --max-cycles 50
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# 添加项目根目录到 Python 路径
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from app.core.config import settings
from app.core.db import init_models
from app.services.revenue_scheduler import get_revenue_sync_scheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def main(max_cycles: int | None) -> int:
    await init_models()

    revenue_scheduler = get_revenue_sync_scheduler()
    logger.info(f"跟踪地址: {', '.join(settings.tracked_addresses)}")

    try:
        outcome = await revenue_scheduler.run_initial_sync(max_cycles)
    finally:
        await revenue_scheduler.engine.aclose()

    if outcome.status != "completed":
        logger.error(f"首次回填失败: {outcome.error}")
        return 1

    result = outcome.result
    logger.info(
        f"首次回填{'已追平' if result.converged else '未追平'}: "
        f"{result.cycles} 轮，新增 {result.new_payments} 笔"
    )
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="首次收入回填")
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=settings.revenue_initial_sync_max_cycles,
        help="最多执行的同步轮数（默认不限制）",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.max_cycles)))
