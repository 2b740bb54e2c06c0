"""
Out-of-band delivery of login codes. One notifier is built at startup from configuration;
the auth flow only sees the Notifier protocol.
"""
import logging
from typing import Protocol

import httpx

from auth_gate.config import DEFAULT_NOTIFY_TIMEOUT, Settings

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class NotificationError(Exception):
    """Code could not be delivered."""


class Notifier(Protocol):
    def send_code(self, code: str, identity: str) -> None:
        """Deliver code for identity. Raises NotificationError on failure."""


class TelegramNotifier:
    def __init__(self, bot_token: str, chat_id: str, timeout: float = DEFAULT_NOTIFY_TIMEOUT):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout

    def send_code(self, code: str, identity: str) -> None:
        text = f"🔐 Authorization Code: *{code}*\n\nRequest from IP: `{identity}`"
        try:
            r = httpx.post(
                f"{TELEGRAM_API_BASE}/bot{self.bot_token}/sendMessage",
                json={"chat_id": self.chat_id, "text": text, "parse_mode": "Markdown"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            # str(e) can carry the request URL, which embeds the bot token
            raise NotificationError(f"telegram request failed: {type(e).__name__}") from e
        if r.status_code != 200:
            raise NotificationError(f"telegram api error: status {r.status_code}")


class DiscordNotifier:
    def __init__(self, webhook_url: str, timeout: float = DEFAULT_NOTIFY_TIMEOUT):
        self.webhook_url = webhook_url
        self.timeout = timeout

    def send_code(self, code: str, identity: str) -> None:
        content = f"🔐 **Authorization Code**: `{code}`\nRequest from IP: `{identity}`"
        try:
            r = httpx.post(self.webhook_url, json={"content": content}, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise NotificationError(f"discord request failed: {type(e).__name__}") from e
        if r.status_code not in (200, 204):
            raise NotificationError(f"discord webhook error: status {r.status_code}")


class LogNotifier:
    """Fallback when no channel is configured: the log is the delivery channel."""

    def send_code(self, code: str, identity: str) -> None:
        logger.info("CODE GENERATED for %s: %s", identity, code)


def build_notifier(settings: Settings) -> Notifier:
    """Telegram if token and chat id are set, else Discord if a webhook is set, else log only."""
    if settings.telegram_bot_token and settings.telegram_chat_id:
        logger.info("Using Telegram notifier")
        return TelegramNotifier(
            settings.telegram_bot_token, settings.telegram_chat_id, timeout=settings.notify_timeout
        )
    if settings.discord_webhook_url:
        logger.info("Using Discord notifier")
        return DiscordNotifier(settings.discord_webhook_url, timeout=settings.notify_timeout)
    logger.warning("No notifier configured. Codes will be logged.")
    return LogNotifier()
