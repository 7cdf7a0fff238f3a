"""每日快照模型"""

from sqlalchemy import BigInteger, Column, Date, DateTime, Float, Integer, String

from app.core.clock import utcnow
from app.core.db import Base


class DailySnapshot(Base):
    """每日快照表，每个日期最多一行，创建后不再修改"""

    __tablename__ = "daily_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    snapshot_date = Column(Date, unique=True, nullable=False, index=True)
    timestamp = Column(BigInteger, nullable=False, index=True)

    # 收入
    daily_revenue = Column(Float, nullable=False, default=0.0)
    flux_price_usd = Column(Float, nullable=True)

    # 云资源
    total_cpu_cores = Column(Integer, default=0)
    used_cpu_cores = Column(Integer, default=0)
    cpu_utilization_percent = Column(Float, default=0.0)
    total_ram_gb = Column(Float, default=0.0)
    used_ram_gb = Column(Float, default=0.0)
    ram_utilization_percent = Column(Float, default=0.0)
    total_storage_gb = Column(Float, default=0.0)
    used_storage_gb = Column(Float, default=0.0)
    storage_utilization_percent = Column(Float, default=0.0)

    # 应用数量
    total_apps = Column(Integer, default=0)
    watchtower_count = Column(Integer, default=0)
    gaming_apps_total = Column(Integer, default=0)
    crypto_nodes_total = Column(Integer, default=0)
    wordpress_count = Column(Integer, default=0)

    # 节点分布
    node_cumulus = Column(Integer, default=0)
    node_nimbus = Column(Integer, default=0)
    node_stratus = Column(Integer, default=0)
    node_total = Column(Integer, default=0)

    # completed: 定时快照；backfilled: 由历史交易回填
    sync_status = Column(String(20), nullable=False, default="completed")
    created_at = Column(DateTime, default=utcnow, nullable=False)
