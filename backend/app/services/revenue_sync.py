"""收入同步引擎

每轮只导入有限数量的新收款（progressive sync），多轮之后追平全部历史：

1. 获取 FLUX 价格（失败不影响同步）
2. 读取已入库的 txid
3. 按地址、按页遍历 Blockbook 地址索引，获取未入库交易的详情并提取收款
4. 一次性批量写入
5. 更新 sync_status 和 current_metrics
"""

import asyncio
import enum
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import utc_today
from app.core.config import RevenueSyncConfig
from app.models.sync_status import SYNC_COMPLETED, SYNC_FAILED
from app.schemas.ledger import AddressTxidPage, RawLedgerTransaction
from app.schemas.revenue import PaymentRecord
from app.services.blockbook_client import LedgerClientError
from app.services.failed_txid_registry import FailedTxidRegistry
from app.services.repositories.metrics_repository import MetricsRepository
from app.services.repositories.revenue_repository import RevenueTransactionRepository
from app.services.repositories.sync_status_repository import SyncStatusRepository
from app.services.transaction_extractor import extract_payments

logger = logging.getLogger(__name__)

REVENUE_SYNC_TYPE = "revenue"


class LedgerClient(Protocol):
    async def list_transaction_ids(self, address: str, page: int = 1, page_size: int = 1000) -> AddressTxidPage | None: ...

    async def fetch_transaction_detail(self, txid: str) -> RawLedgerTransaction | None: ...

    async def fetch_block_height(self) -> int: ...

    async def aclose(self) -> None: ...


class PriceSource(Protocol):
    async def fetch_flux_price(self) -> float | None: ...

    async def aclose(self) -> None: ...


class LedgerUnavailableError(Exception):
    """所有地址的交易列表都获取失败，本轮同步无法进行"""


class SyncPhase(str, enum.Enum):
    IDLE = "idle"
    FETCHING_PRICE = "fetching_price"
    WALKING_PAGES = "walking_pages"
    COMMITTING = "committing"
    FAILED = "failed"


@dataclass
class SyncCycleResult:
    """一轮同步的统计"""

    new_payments: int = 0  # 实际新增的行数
    payments_found: int = 0  # 提取到的收款输出数
    payment_txids: int = 0  # 含收款的交易数（计入每轮上限）
    txids_fetched: int = 0
    txids_failed: int = 0
    txids_skipped_backoff: int = 0
    txids_unconfirmed: int = 0
    pages_walked: int = 0
    pages_failed: int = 0
    failed_addresses: list[str] = field(default_factory=list)
    budget_exhausted: bool = False
    price: float | None = None
    current_block: int | None = None
    duration: float = 0.0


@dataclass
class InitialSyncResult:
    cycles: int = 0
    new_payments: int = 0
    converged: bool = False
    duration: float = 0.0


@dataclass
class SyncEngineState:
    """同步引擎的运行状态，由调度器持有并传给引擎"""

    failed_txids: FailedTxidRegistry
    phase: SyncPhase = SyncPhase.IDLE
    is_running: bool = False
    last_started: datetime | None = None
    last_completed: datetime | None = None
    current_block: int | None = None
    last_error: dict | None = None
    last_result: SyncCycleResult | None = None
    # 已获取过但不含收款的交易（例如从收入地址转出），本进程内不再重复获取；
    # 完整遍历一轮后只保留仍在地址索引中的 txid
    non_payment_txids: set[str] = field(default_factory=set)

    @classmethod
    def from_config(cls, config: RevenueSyncConfig, clock: Callable[[], float] = time.time) -> "SyncEngineState":
        return cls(
            failed_txids=FailedTxidRegistry(
                max_attempts=config.failed_txid_max_attempts,
                cooldown_seconds=config.failed_txid_cooldown_seconds,
                clock=clock,
            )
        )


class ProgressiveSyncEngine:
    def __init__(
        self,
        config: RevenueSyncConfig,
        ledger: LedgerClient,
        price_client: PriceSource,
        session_maker: async_sessionmaker[AsyncSession],
        state: SyncEngineState | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._ledger = ledger
        self._price_client = price_client
        self._session_maker = session_maker
        self._state = state or SyncEngineState.from_config(config)
        self._sleep = sleep

    @property
    def state(self) -> SyncEngineState:
        return self._state

    async def progressive_sync(self) -> SyncCycleResult:
        """
        执行一轮同步

        单个交易获取失败只记录到失败列表，不会中断本轮；
        所有地址都无法列出交易或写库失败时，sync_status 记为 failed 并抛出异常。
        """
        state = self._state
        result = SyncCycleResult()
        started = time.monotonic()

        state.is_running = True
        state.last_started = datetime.now(timezone.utc)
        logger.info("开始收入同步...")

        try:
            state.phase = SyncPhase.FETCHING_PRICE
            result.price = await self._price_client.fetch_flux_price()

            async with self._session_maker() as session:
                existing = await RevenueTransactionRepository(session).existing_txids()
            logger.info(f"数据库中已有 {len(existing)} 笔交易")

            state.phase = SyncPhase.WALKING_PAGES
            records = await self._walk_addresses(existing, result)

            state.phase = SyncPhase.COMMITTING
            if records:
                async with self._session_maker() as session:
                    result.new_payments = await RevenueTransactionRepository(session).batch_insert(records)

            result.current_block = await self._resolve_chain_head()
            await self._record_success(result)
        except Exception as e:
            state.phase = SyncPhase.FAILED
            state.last_error = {
                "message": str(e) or e.__class__.__name__,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            logger.error(f"收入同步失败: {e}", exc_info=True)
            await self._record_failure(e)
            raise
        finally:
            state.is_running = False
            result.duration = time.monotonic() - started

        state.phase = SyncPhase.IDLE
        state.last_completed = datetime.now(timezone.utc)
        state.current_block = result.current_block
        state.last_result = result
        state.last_error = None

        logger.info(
            f"收入同步完成: 新增 {result.new_payments} 笔，获取 {result.txids_fetched} 个交易，"
            f"失败 {result.txids_failed} 个，退避跳过 {result.txids_skipped_backoff} 个，"
            f"遍历 {result.pages_walked} 页，耗时 {result.duration:.2f} 秒"
            + ("（已达到本轮上限）" if result.budget_exhausted else "")
        )
        return result

    async def _walk_addresses(self, existing: set[str], result: SyncCycleResult) -> list[PaymentRecord]:
        """按地址顺序、页码升序遍历，收集新收款，达到每轮上限时停止"""
        config = self._config
        registry = self._state.failed_txids
        records: list[PaymentRecord] = []
        seen: set[str] = set()
        listed: set[str] = set()
        listed_any = False

        for address in config.tracked_addresses:
            first_page = await self._ledger.list_transaction_ids(address, 1, config.page_size)
            if first_page is None:
                logger.warning(f"无法获取地址 {address} 的交易列表，本轮跳过")
                result.failed_addresses.append(address)
                continue

            listed_any = True
            total_pages = max(first_page.total_pages, 1)
            logger.info(f"地址 {address[:15]}...: 共 {first_page.total_count} 笔交易，{total_pages} 页")

            for page in range(1, total_pages + 1):
                page_data = first_page if page == 1 else await self._ledger.list_transaction_ids(
                    address, page, config.page_size
                )
                if page_data is None:
                    logger.warning(f"地址 {address[:15]}... 第 {page} 页获取失败，跳过")
                    result.pages_failed += 1
                    continue

                result.pages_walked += 1
                listed.update(page_data.txids)

                for txid in page_data.txids:
                    if txid in existing or txid in seen:
                        continue
                    seen.add(txid)

                    if txid in self._state.non_payment_txids:
                        continue

                    if not registry.should_retry(txid):
                        result.txids_skipped_backoff += 1
                        continue

                    tx = await self._ledger.fetch_transaction_detail(txid)
                    result.txids_fetched += 1
                    if config.request_delay_seconds > 0:
                        await self._sleep(config.request_delay_seconds)

                    if tx is None:
                        registry.mark_failed(txid, "fetch_failed")
                        result.txids_failed += 1
                        continue

                    registry.clear(txid)

                    # 未确认交易等确认后再导入
                    if tx.block_height is None or tx.block_height < 1:
                        result.txids_unconfirmed += 1
                        continue

                    payments = extract_payments(tx, config.tracked_addresses, result.price)
                    if not payments:
                        self._state.non_payment_txids.add(txid)
                        continue

                    records.extend(payments)
                    result.payments_found += len(payments)
                    result.payment_txids += 1

                    if result.payment_txids >= config.max_payments_per_cycle:
                        result.budget_exhausted = True
                        break

                if result.budget_exhausted:
                    break

            if result.budget_exhausted:
                logger.info(f"已达到每轮 {config.max_payments_per_cycle} 笔的上限，剩余交易留到下一轮")
                break

        if config.tracked_addresses and not listed_any:
            raise LedgerUnavailableError("所有地址的交易列表都获取失败")

        if not (result.budget_exhausted or result.pages_failed or result.failed_addresses):
            self._prune(listed)

        return records

    def _prune(self, listed: set[str]) -> None:
        """完整遍历后清理已经不在地址索引中的失败记录和非收款交易"""
        removed = self._state.failed_txids.prune(listed)
        stale = self._state.non_payment_txids - listed
        self._state.non_payment_txids -= stale
        if removed or stale:
            logger.info(f"清理了 {removed} 条失败记录和 {len(stale)} 个非收款交易")

    async def _resolve_chain_head(self) -> int | None:
        """当前链高度；获取失败时退回到已入库交易的最大区块高度"""
        try:
            return await self._ledger.fetch_block_height()
        except LedgerClientError as e:
            logger.warning(f"{e}，使用已入库交易的最大区块高度")

        async with self._session_maker() as session:
            return await RevenueTransactionRepository(session).last_synced_block()

    async def _record_success(self, result: SyncCycleResult) -> None:
        today = utc_today()
        async with self._session_maker() as session:
            await SyncStatusRepository(session).update_status(
                REVENUE_SYNC_TYPE, SYNC_COMPLETED, last_block=result.current_block
            )
            today_revenue = await RevenueTransactionRepository(session).revenue_for_range(today, today)
            await MetricsRepository(session).update_current_metrics(
                current_revenue=float(today_revenue),
                flux_price_usd=result.price,
            )
        logger.info(f"今日收入 ({today}): {today_revenue:.2f} FLUX")

    async def _record_failure(self, error: Exception) -> None:
        try:
            async with self._session_maker() as session:
                await SyncStatusRepository(session).update_status(
                    REVENUE_SYNC_TYPE, SYNC_FAILED, error_message=str(error) or error.__class__.__name__
                )
        except Exception as e:
            logger.error(f"记录同步失败状态时出错: {e}", exc_info=True)

    async def initial_sync(self, max_cycles: int | None = None) -> InitialSyncResult:
        """
        首次回填：连续执行多轮同步，直到某一轮没有新增收款

        Args:
            max_cycles: 最多执行的轮数，None 表示不限制
        """
        summary = InitialSyncResult()
        started = time.monotonic()
        logger.info("开始首次收入回填...")

        while True:
            result = await self.progressive_sync()
            summary.cycles += 1
            summary.new_payments += result.new_payments

            if result.new_payments == 0:
                summary.converged = True
                break

            if max_cycles is not None and summary.cycles >= max_cycles:
                logger.info(f"已执行 {summary.cycles} 轮，达到上限，停止回填")
                break

            logger.info(f"第 {summary.cycles} 轮新增 {result.new_payments} 笔，继续回填...")
            await self._sleep(self._config.initial_sync_pause_seconds)

        summary.duration = time.monotonic() - started
        logger.info(
            f"首次回填结束: {summary.cycles} 轮，共新增 {summary.new_payments} 笔，耗时 {summary.duration:.2f} 秒"
        )
        return summary

    async def aclose(self) -> None:
        """关闭区块浏览器和价格客户端"""
        await self._ledger.aclose()
        await self._price_client.aclose()

    def get_status(self) -> dict:
        state = self._state
        last_result = state.last_result
        return {
            "phase": state.phase.value,
            "is_running": state.is_running,
            "last_started": state.last_started,
            "last_completed": state.last_completed,
            "current_block": state.current_block,
            "last_error": state.last_error,
            "last_new_payments": last_result.new_payments if last_result else None,
            "last_budget_exhausted": last_result.budget_exhausted if last_result else None,
            "failed_txids": state.failed_txids.snapshot(),
            "non_payment_txids": len(state.non_payment_txids),
        }
