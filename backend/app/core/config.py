from dataclasses import dataclass
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,  # 环境变量名不区分大小写
    )

    # 数据库配置（默认使用 SQLite）
    database_url: str = "sqlite+aiosqlite:///./data/flux_dashboard.db"

    log_level: str = "INFO"

    # 需要统计收入的 Flux 地址（环境变量使用 JSON 数组）
    tracked_addresses: list[str] = Field(
        default_factory=lambda: ["t3NryfAQLGeFs9jEoeqsxmBN2QLRaRKFLUX"],
        description="收入地址列表",
    )

    # 远程接口
    blockbook_base_url: str = "https://blockbook.runonflux.io/api/v2"
    daemon_base_url: str = "https://api.runonflux.io/daemon"
    price_url: str = "https://api.coingecko.com/api/v3/simple/price?ids=zelcash&vs_currencies=usd"

    # 收入同步
    revenue_sync_interval_minutes: int = 5
    revenue_page_size: int = 1000
    revenue_max_payments_per_cycle: int = Field(
        default=20,
        description="每轮同步最多导入的新收款交易数",
    )
    revenue_request_delay_seconds: float = 0.1  # 两次交易详情请求之间的间隔
    revenue_initial_sync_pause_seconds: float = 2.0
    revenue_initial_sync_max_cycles: int | None = None

    # 区块浏览器客户端
    ledger_detail_retries: int = 3
    ledger_retry_base_delay: float = 1.0
    ledger_retry_max_delay: float = 5.0
    ledger_page_timeout: float = 30.0
    ledger_detail_timeout: float = 15.0
    daemon_timeout: float = 10.0
    price_timeout: float = 10.0

    # 失败交易重试
    failed_txid_max_attempts: int = 5
    failed_txid_cooldown_seconds: float = 300.0

    # 连续失败告警阈值
    sync_failure_alert_threshold: int = 3

    # 每日快照
    snapshot_check_interval_minutes: int = 30
    snapshot_grace_period_minutes: int = 5
    snapshot_min_valid_metrics: int = 2
    snapshot_max_metric_age_hours: float = 24.0

    data_retention_days: int = 365

    # Telegram 告警（可选，不配置则不发送）
    telegram_bot_token: str | None = None
    telegram_bot_chat_id: int | None = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """
        自定义设置源优先级
        确保环境变量和 .env 文件都能正确读取
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,  # .env 文件
            file_secret_settings,
        )


@dataclass(frozen=True)
class RevenueSyncConfig:
    """收入同步相关的不可变配置，由调用方传入同步引擎和区块浏览器客户端"""

    tracked_addresses: tuple[str, ...]
    blockbook_base_url: str = "https://blockbook.runonflux.io/api/v2"
    daemon_base_url: str = "https://api.runonflux.io/daemon"
    price_url: str = "https://api.coingecko.com/api/v3/simple/price?ids=zelcash&vs_currencies=usd"
    page_size: int = 1000
    max_payments_per_cycle: int = 20
    request_delay_seconds: float = 0.1
    initial_sync_pause_seconds: float = 2.0
    detail_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 5.0
    page_timeout: float = 30.0
    detail_timeout: float = 15.0
    daemon_timeout: float = 10.0
    price_timeout: float = 10.0
    failed_txid_max_attempts: int = 5
    failed_txid_cooldown_seconds: float = 300.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RevenueSyncConfig":
        return cls(
            tracked_addresses=tuple(settings.tracked_addresses),
            blockbook_base_url=settings.blockbook_base_url,
            daemon_base_url=settings.daemon_base_url,
            price_url=settings.price_url,
            page_size=settings.revenue_page_size,
            max_payments_per_cycle=settings.revenue_max_payments_per_cycle,
            request_delay_seconds=settings.revenue_request_delay_seconds,
            initial_sync_pause_seconds=settings.revenue_initial_sync_pause_seconds,
            detail_retries=settings.ledger_detail_retries,
            retry_base_delay=settings.ledger_retry_base_delay,
            retry_max_delay=settings.ledger_retry_max_delay,
            page_timeout=settings.ledger_page_timeout,
            detail_timeout=settings.ledger_detail_timeout,
            daemon_timeout=settings.daemon_timeout,
            price_timeout=settings.price_timeout,
            failed_txid_max_attempts=settings.failed_txid_max_attempts,
            failed_txid_cooldown_seconds=settings.failed_txid_cooldown_seconds,
        )


@dataclass(frozen=True)
class SnapshotConfig:
    """每日快照检查配置"""

    check_interval_minutes: int = 30
    grace_period_minutes: int = 5  # 午夜之后等待的分钟数
    min_valid_metrics: int = 2
    max_metric_age_hours: float = 24.0
    failure_alert_threshold: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "SnapshotConfig":
        return cls(
            check_interval_minutes=settings.snapshot_check_interval_minutes,
            grace_period_minutes=settings.snapshot_grace_period_minutes,
            min_valid_metrics=settings.snapshot_min_valid_metrics,
            max_metric_age_hours=settings.snapshot_max_metric_age_hours,
            failure_alert_threshold=settings.sync_failure_alert_threshold,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
