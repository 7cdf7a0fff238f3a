"""同步状态模型"""

from sqlalchemy import Column, DateTime, Integer, String

from app.core.db import Base

SYNC_PENDING = "pending"
SYNC_COMPLETED = "completed"
SYNC_FAILED = "failed"


class SyncStatus(Base):
    """同步状态表，每种同步类型一行，每次同步后更新"""

    __tablename__ = "sync_status"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sync_type = Column(String(50), unique=True, nullable=False, index=True)  # 同步类型（如 "revenue"）
    last_sync = Column(DateTime, nullable=True)  # 上次同步时间（UTC）
    last_sync_block = Column(Integer, nullable=True)  # 上次同步时的链高度
    next_sync = Column(DateTime, nullable=True)
    status = Column(String(20), default=SYNC_PENDING, nullable=False)  # pending, completed, failed
    error_message = Column(String(500), nullable=True)
