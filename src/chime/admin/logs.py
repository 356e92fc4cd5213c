"""管理 API 的日志查看: 读取日志文件末尾若干行，并按级别/关键字过滤"""

from __future__ import annotations

import re
from collections import deque
from pathlib import Path
from typing import Iterable

_LEVEL_COLUMN_RE = re.compile(r"\|\s*([A-Z]+)\s*\|")
_KNOWN_LEVELS = ("TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def log_path_for(log_file: str | Path, stream: str) -> Path:
    """stream 为 error 时返回 setup_logging 生成的错误日志文件"""
    base = Path(log_file)
    if stream == "error":
        return base.with_name(f"{base.stem}_error{base.suffix}")
    return base


def read_tail(path: Path, count: int) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=count)]


def parse_levels(raw: Iterable[str | None]) -> set[str]:
    wanted: set[str] = set()
    for item in raw:
        for part in (item or "").split(","):
            level = part.strip().upper()
            if level in _KNOWN_LEVELS:
                wanted.add(level)
    return wanted


def select_lines(lines: list[str], levels: set[str], keyword: str | None) -> list[str]:
    needle = (keyword or "").strip().lower()
    if not levels and not needle:
        return lines

    def keep(line: str) -> bool:
        if levels:
            match = _LEVEL_COLUMN_RE.search(line)
            if match is None or match.group(1) not in levels:
                return False
        return not needle or needle in line.lower()

    return [line for line in lines if keep(line)]
