"""获取失败的交易记录，控制重试节奏"""

import logging
import time
from collections.abc import Callable, Collection
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class FailedTxidEntry:
    attempts: int
    last_attempt: float  # 秒级时间戳
    reason: str


class FailedTxidRegistry:
    """
    记录获取详情失败的 txid（只保存在内存中，重启后清空）

    - 没有失败记录的 txid 总是可以获取
    - 有失败记录的 txid 需要尝试次数小于 max_attempts，且距离上次尝试超过 cooldown_seconds
    - 尝试次数达到 max_attempts 后移入放弃列表，之后不再重试

    两个列表的大小都不超过地址索引中的交易数：完整遍历一轮后，
    调用 prune 删除已经不在索引中的 txid。
    """

    def __init__(
        self,
        max_attempts: int = 5,
        cooldown_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_attempts = max_attempts
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._entries: dict[str, FailedTxidEntry] = {}
        self._abandoned: dict[str, FailedTxidEntry] = {}

    def should_retry(self, txid: str) -> bool:
        if txid in self._abandoned:
            return False

        entry = self._entries.get(txid)
        if entry is None:
            return True

        if entry.attempts >= self._max_attempts:
            return False

        return self._clock() - entry.last_attempt >= self._cooldown

    def mark_failed(self, txid: str, reason: str = "fetch_failed") -> FailedTxidEntry:
        now = self._clock()
        entry = self._entries.get(txid)
        if entry is None:
            entry = FailedTxidEntry(attempts=1, last_attempt=now, reason=reason)
            self._entries[txid] = entry
        else:
            entry.attempts += 1
            entry.last_attempt = now
            entry.reason = reason

        if entry.attempts >= self._max_attempts:
            del self._entries[txid]
            self._abandoned[txid] = entry
            logger.warning(f"交易 {txid[:10]} 已失败 {entry.attempts} 次，放弃获取")
        else:
            logger.debug(f"交易 {txid[:10]} 第 {entry.attempts} 次失败: {reason}")
        return entry

    def clear(self, txid: str) -> None:
        """获取成功后清除失败记录"""
        self._entries.pop(txid, None)

    def get(self, txid: str) -> FailedTxidEntry | None:
        return self._entries.get(txid) or self._abandoned.get(txid)

    def is_abandoned(self, txid: str) -> bool:
        return txid in self._abandoned

    def prune(self, keep: Collection[str]) -> int:
        """删除不在 keep 中的记录（包括放弃列表），返回删除数量"""
        stale = [txid for txid in self._entries if txid not in keep]
        stale_abandoned = [txid for txid in self._abandoned if txid not in keep]
        for txid in stale:
            del self._entries[txid]
        for txid in stale_abandoned:
            del self._abandoned[txid]
        return len(stale) + len(stale_abandoned)

    def __len__(self) -> int:
        return len(self._entries)

    def snapshot(self) -> dict:
        """状态接口用的汇总信息"""
        return {
            "pending_retry": len(self._entries),
            "abandoned": len(self._abandoned),
            "max_attempts": self._max_attempts,
            "cooldown_seconds": self._cooldown,
        }
