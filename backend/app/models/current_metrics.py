"""当前指标模型"""

from sqlalchemy import Column, DateTime, Float, Integer

from app.core.db import Base

# 快照时用于判断指标是否可用的关键字段
KEY_METRIC_FIELDS = (
    "node_total",
    "total_apps",
    "total_cpu_cores",
    "total_ram_gb",
    "total_storage_gb",
)

# 可被采集任务写入、也会被快照复制的指标字段
METRIC_FIELDS = (
    "current_revenue",
    "flux_price_usd",
    "total_cpu_cores",
    "used_cpu_cores",
    "cpu_utilization_percent",
    "total_ram_gb",
    "used_ram_gb",
    "ram_utilization_percent",
    "total_storage_gb",
    "used_storage_gb",
    "storage_utilization_percent",
    "total_apps",
    "watchtower_count",
    "gaming_apps_total",
    "crypto_nodes_total",
    "wordpress_count",
    "node_cumulus",
    "node_nimbus",
    "node_stratus",
    "node_total",
)


class CurrentMetrics(Base):
    """当前指标表，只有 id=1 一行"""

    __tablename__ = "current_metrics"

    id = Column(Integer, primary_key=True)
    last_update = Column(DateTime, nullable=True)  # 最后一次写入时间（UTC）

    # 收入
    current_revenue = Column(Float, default=0.0)
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
