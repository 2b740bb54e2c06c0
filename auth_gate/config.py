"""
Auth Gate configuration. All values come from the environment; nothing secret lives here.
Durations accept Go-style strings ("300ms", "90s", "5m", "1h30m") or a bare number of seconds.
"""
import logging
import math
import os
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
# Ten years; keeps cookie expiry dates representable
MAX_DURATION = 10 * 365 * 24 * 3600


def parse_duration(value: str) -> float:
    """Parse "5m", "1h30m", "250ms" or "42" into seconds. Raises ValueError if unparseable."""
    value = value.strip()
    if not value:
        raise ValueError("empty duration")
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds) or seconds < 0:
            raise ValueError(f"invalid duration: {value!r}")
        return seconds
    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(value):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(value):
        raise ValueError(f"invalid duration: {value!r}")
    return total


def _check_duration(name: str, seconds: float, positive: bool) -> None:
    if not math.isfinite(seconds) or seconds > MAX_DURATION:
        raise ValueError(f"{name} must be finite and at most {MAX_DURATION}s")
    if seconds < 0 or (positive and seconds == 0):
        raise ValueError(f"{name} must be {'> 0' if positive else '>= 0'}")


def _env_str(key: str, fallback: str) -> str:
    return os.environ.get(key, fallback)


def _env_duration(key: str, fallback: float, positive: bool = False) -> float:
    raw = os.environ.get(key)
    if raw is None:
        return fallback
    try:
        seconds = parse_duration(raw)
        _check_duration(key, seconds, positive)
        return seconds
    except ValueError:
        logger.warning("Invalid duration for %s, using fallback: %ss", key, fallback)
        return fallback


def _env_int(key: str, fallback: int) -> int:
    raw = os.environ.get(key)
    if raw is None:
        return fallback
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning("Invalid integer for %s, using fallback: %s", key, fallback)
        return fallback


# Defaults (seconds unless noted)
DEFAULT_CODE_TTL = 5 * 60
DEFAULT_SESSION_TTL = 24 * 3600
DEFAULT_CODE_LENGTH = 6
DEFAULT_COOLDOWN = 30
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_VERIFY_DELAY = 2
DEFAULT_CLEANUP_INTERVAL = 60
DEFAULT_NOTIFY_TIMEOUT = 10
DEFAULT_COOKIE_NAME = "traefik_auth_code"
DEFAULT_PATH_PREFIX = "/_auth_code"

# secrets.randbelow(10**n) zero-padded; beyond 18 digits the code stops being "short"
MAX_CODE_LENGTH = 18


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8080
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    discord_webhook_url: str = ""
    code_ttl: float = DEFAULT_CODE_TTL
    session_ttl: float = DEFAULT_SESSION_TTL
    cookie_name: str = DEFAULT_COOKIE_NAME
    code_length: int = DEFAULT_CODE_LENGTH
    cooldown: float = DEFAULT_COOLDOWN
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    verify_delay: float = DEFAULT_VERIFY_DELAY
    cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL
    notify_timeout: float = DEFAULT_NOTIFY_TIMEOUT
    path_prefix: str = DEFAULT_PATH_PREFIX

    def __post_init__(self) -> None:
        if not 1 <= self.code_length <= MAX_CODE_LENGTH:
            raise ValueError(f"code_length must be between 1 and {MAX_CODE_LENGTH}")
        if self.max_attempts < 0:
            raise ValueError("max_attempts must not be negative")
        for name in ("code_ttl", "session_ttl", "cleanup_interval"):
            _check_duration(name, getattr(self, name), positive=True)
        for name in ("cooldown", "verify_delay", "notify_timeout"):
            _check_duration(name, getattr(self, name), positive=False)
        if not self.path_prefix.startswith("/") or self.path_prefix.endswith("/"):
            raise ValueError("path_prefix must start with '/' and not end with '/'")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults on bad values."""
        code_length = _env_int("CODE_LENGTH", DEFAULT_CODE_LENGTH)
        if not 1 <= code_length <= MAX_CODE_LENGTH:
            logger.warning("CODE_LENGTH out of range, using fallback: %s", DEFAULT_CODE_LENGTH)
            code_length = DEFAULT_CODE_LENGTH
        prefix = _env_str("AUTH_PATH_PREFIX", DEFAULT_PATH_PREFIX).strip().rstrip("/")
        if prefix and not prefix.startswith("/"):
            prefix = "/" + prefix
        return cls(
            host=_env_str("HOST", "0.0.0.0"),
            port=_env_int("PORT", 8080),
            telegram_bot_token=_env_str("TELEGRAM_BOT_TOKEN", ""),
            telegram_chat_id=_env_str("TELEGRAM_CHAT_ID", ""),
            discord_webhook_url=_env_str("DISCORD_WEBHOOK_URL", ""),
            code_ttl=_env_duration("CODE_EXPIRATION", DEFAULT_CODE_TTL, positive=True),
            session_ttl=_env_duration("SESSION_DURATION", DEFAULT_SESSION_TTL, positive=True),
            cookie_name=_env_str("COOKIE_NAME", DEFAULT_COOKIE_NAME),
            code_length=code_length,
            cooldown=_env_duration("CODE_COOLDOWN", DEFAULT_COOLDOWN),
            max_attempts=max(0, _env_int("MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)),
            verify_delay=_env_duration("VERIFY_DELAY", DEFAULT_VERIFY_DELAY),
            cleanup_interval=_env_duration("CLEANUP_INTERVAL", DEFAULT_CLEANUP_INTERVAL, positive=True),
            notify_timeout=_env_duration("NOTIFY_TIMEOUT", DEFAULT_NOTIFY_TIMEOUT),
            path_prefix=prefix or DEFAULT_PATH_PREFIX,
        )

    def warnings(self) -> list[str]:
        """Misconfigurations worth logging at startup. None of them are fatal."""
        found = []
        if not self.telegram_bot_token and not self.discord_webhook_url:
            found.append("No notification channel configured (Telegram or Discord). Codes will only be logged.")
        if self.telegram_bot_token and not self.telegram_chat_id:
            found.append("Telegram bot token set but no chat id.")
        return found
