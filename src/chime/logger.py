"""日志模块

所有组件共用 loguru 的全局 logger；进程启动时调用一次 setup_logging。
uvicorn、aiosqlite 等使用标准库 logging 的第三方库会被转接到 loguru，统一落盘。

落盘文件:
- <log_file>          主日志，按 10 MB 轮转，保留 30 天
- <log_file>_error    仅 ERROR 及以上，保留 90 天，便于排查漏掉的提醒
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Literal, Union

from loguru import logger

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "FATAL"]

_KNOWN_LEVELS = ("TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level:<8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

# admin.logs 按 "| LEVEL |" 这一列过滤，修改格式时需同步
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | "
    "{name}:{function}:{line} - {message}"
)

# 标准库 logging 转接过来的库，只保留 INFO 以上
_STDLIB_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "aiosqlite", "asyncio")


def _level_name(level: Union[str, LogLevel], fallback: str) -> str:
    name = str(level).strip().upper()
    if name == "FATAL":
        return "CRITICAL"
    return name if name in _KNOWN_LEVELS else fallback


class _InterceptHandler(logging.Handler):
    """把标准库 logging 的记录转交给 loguru"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: Union[str, int] = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # 跳过 logging 模块自身的栈帧，让 loguru 记录真正的调用位置
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _rotating_file(path: Path, level: str, retention: str) -> dict:
    return {
        "sink": path,
        "level": level,
        "format": FILE_FORMAT,
        "rotation": "10 MB",
        "retention": retention,
        "compression": "zip",
        "encoding": "utf-8",
        "enqueue": True,
    }


def setup_logging(
    log_level: LogLevel,
    log_file: Union[str, Path],
    console_level: LogLevel = "INFO",
) -> None:
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    error_log_file = log_file.with_name(f"{log_file.stem}_error{log_file.suffix}")

    file_level = _level_name(log_level, "DEBUG")
    console_lv = _level_name(console_level, "INFO")

    logger.configure(
        handlers=[
            {
                "sink": sys.stderr,
                "level": console_lv,
                "format": CONSOLE_FORMAT,
                "colorize": True,
            },
            _rotating_file(log_file, file_level, "30 days"),
            _rotating_file(error_log_file, "ERROR", "90 days"),
        ]
    )

    logging.basicConfig(handlers=[_InterceptHandler()], level=logging.INFO, force=True)
    for name in _STDLIB_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = []
        std_logger.propagate = True

    logger.debug(f"日志已配置: file={log_file}, file_level={file_level}, console_level={console_lv}")


__all__ = ["setup_logging", "logger", "LogLevel"]
