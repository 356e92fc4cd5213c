import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from chime.logger import logger

load_dotenv()

__all__ = [
    "USER_TIMEZONE", "DEFAULT_IDENTITY",
    "DB_PATH", "UPLOAD_DIR", "PUBLIC_BASE_URL",
    "LOG_FILE", "LOG_LEVEL", "CONSOLE_LOG_LEVEL",
    "ALERT_SOUND_FILE", "ALERT_AUDIO_DEVICE", "ALERT_PLAYER", "ALERT_TIMEOUT_SECONDS",
    "ADMIN_HTTP_HOST", "ADMIN_HTTP_PORT", "ADMIN_AUTH_TOKEN",
]


def _parse_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw}, 已回退到 {default}")
        return default


def _parse_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw}, 已回退到 {default}")
        return default


# 会话设置
# 提醒的时钟字段(时/分/星期/日)都按该时区解读
USER_TIMEZONE = os.getenv("USER_TIMEZONE", "UTC")
try:
    ZoneInfo(USER_TIMEZONE)
except (ZoneInfoNotFoundError, ValueError):
    logger.critical(f"USER_TIMEZONE 非法: {USER_TIMEZONE}")
    exit(0)

# 启动时自动登录的身份，留空则等待通过管理 API 登录
DEFAULT_IDENTITY = os.getenv("DEFAULT_IDENTITY", "").strip() or None


# 存储
DB_PATH = os.getenv("DB_PATH", "data/chime.db")
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "data/uploads")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://127.0.0.1:18080").rstrip("/")


# 日志
LOG_FILE = os.getenv("LOG_FILE", "logs/chime.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "TRACE").strip().upper()
CONSOLE_LOG_LEVEL = os.getenv("CONSOLE_LOG_LEVEL", "INFO").strip().upper()


# 提醒提示音
ALERT_SOUND_FILE = os.getenv("ALERT_SOUND_FILE", "assets/notification.wav")
ALERT_AUDIO_DEVICE = os.getenv("ALERT_AUDIO_DEVICE", "default")
ALERT_PLAYER = os.getenv("ALERT_PLAYER", "aplay")
ALERT_TIMEOUT_SECONDS = _parse_float("ALERT_TIMEOUT_SECONDS", 3.0)


# Admin API
ADMIN_HTTP_HOST = os.getenv("ADMIN_HTTP_HOST", "127.0.0.1")
ADMIN_HTTP_PORT = _parse_int("ADMIN_HTTP_PORT", 18080)
ADMIN_AUTH_TOKEN = os.getenv("ADMIN_AUTH_TOKEN", "")
