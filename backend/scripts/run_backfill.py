"""快照回填脚本

用已入库的收入交易为缺少快照的日期补建快照（只有收入，其他指标为 0）

使用方法：
    python scripts/run_backfill.py --start 2024-09-22
    python scripts/run_backfill.py --start 2024-09-22 --end 2025-11-09
"""

import argparse
import asyncio
import logging
import sys
from datetime import date, timedelta
from pathlib import Path

# 添加项目根目录到 Python 路径
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from app.core.clock import utc_today
from app.core.db import init_models
from app.services.snapshot_manager import get_snapshot_manager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def main(start_date: date, end_date: date) -> int:
    await init_models()

    try:
        result = await get_snapshot_manager().backfill_revenue_snapshots(start_date, end_date)
    except ValueError as e:
        logger.error(str(e))
        return 1

    logger.info(f"回填完成: 新建 {result.created} 个快照，跳过 {result.skipped} 个已有快照")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="用历史交易回填每日快照")
    parser.add_argument("--start", type=date.fromisoformat, required=True, help="开始日期 YYYY-MM-DD")
    parser.add_argument(
        "--end",
        type=date.fromisoformat,
        default=None,
        help="结束日期 YYYY-MM-DD（默认昨天，UTC）",
    )
    args = parser.parse_args()
    end = args.end or utc_today() - timedelta(days=1)
    sys.exit(asyncio.run(main(args.start, end)))
