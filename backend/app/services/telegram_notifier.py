"""Telegram 通知模块 - 使用 Bot API

用于同步连续失败时的告警，未配置 bot token 时不发送
"""

import logging
from typing import Optional

import httpx

from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram 通知发送器（Bot API）"""

    def __init__(
        self,
        bot_token: str,
        chat_id: int,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._http_client = http_client

    async def send_message(
        self,
        message: str,
        parse_mode: Optional[str] = None,
        disable_notification: bool = False,
    ) -> bool:
        """
        发送文本消息

        Args:
            message: 消息内容
            parse_mode: 解析模式（'HTML' 或 'Markdown'）
            disable_notification: 是否静默发送（不通知用户）

        Returns:
            是否发送成功（失败只记录日志，不抛出异常）
        """
        url = f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

        payload = {
            "chat_id": self._chat_id,
            "text": message,
            "disable_notification": disable_notification,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=payload, timeout=30.0)
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.post(url, json=payload)
            response.raise_for_status()
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Bot API 请求失败: {e}")
            return False

        if result.get("ok"):
            logger.debug(f"成功发送 Telegram 消息到 {self._chat_id}")
            return True

        logger.error(f"发送 Telegram 消息失败: {result.get('description', '未知错误')}")
        return False

    async def send_formatted_message(
        self,
        title: str,
        content: str,
        parse_mode: Optional[str] = "HTML",
        disable_notification: bool = False,
    ) -> bool:
        """发送带标题的消息"""
        if parse_mode == "HTML":
            message = f"<b>{title}</b>\n\n{content}"
        elif parse_mode == "Markdown":
            message = f"*{title}*\n\n{content}"
        else:
            message = f"{title}\n\n{content}"

        return await self.send_message(message, parse_mode, disable_notification)


def build_notifier(settings: Settings) -> TelegramNotifier | None:
    if not settings.telegram_bot_token or settings.telegram_bot_chat_id is None:
        logger.info("未配置 Telegram bot，告警只写入日志")
        return None
    logger.info(f"使用 Bot API 发送告警，Chat ID: {settings.telegram_bot_chat_id}")
    return TelegramNotifier(settings.telegram_bot_token, settings.telegram_bot_chat_id)


# 全局单例
_telegram_notifier: Optional[TelegramNotifier] = None
_initialized = False


def get_telegram_notifier() -> TelegramNotifier | None:
    """获取 Telegram 通知器单例，未配置时返回 None"""
    global _telegram_notifier, _initialized
    if not _initialized:
        _telegram_notifier = build_notifier(get_settings())
        _initialized = True
    return _telegram_notifier
