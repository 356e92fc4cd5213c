from typing import Dict, Iterable

from chime.logger import logger

__all__ = ["TriggerLedger"]


class TriggerLedger:
    """会话内的触发记录: reminder_id -> 上次触发的毫秒时间戳

    只按 id 记录，提醒内容被编辑不会重置冷却。
    不做持久化，进程重启后所有提醒都从 "从未触发" 重新开始。
    """

    def __init__(self) -> None:
        self._last_fired: Dict[str, int] = {}

    def last_fired(self, reminder_id: str) -> int:
        """上次触发时间，从未触发返回 0"""
        return self._last_fired.get(reminder_id, 0)

    def record_fired(self, reminder_id: str, now_ms: int) -> None:
        self._last_fired[reminder_id] = now_ms
        logger.trace(f"记录触发: reminder_id={reminder_id}, at={now_ms}")

    def prune(self, reminder_ids: Iterable[str]) -> int:
        """删除给定 id 的记录，返回实际删除的条数"""
        removed = 0
        for reminder_id in reminder_ids:
            if self._last_fired.pop(reminder_id, None) is not None:
                removed += 1
        if removed:
            logger.debug(f"清理触发记录 {removed} 条")
        return removed

    def clear(self) -> None:
        self._last_fired.clear()

    def snapshot(self) -> Dict[str, int]:
        return dict(self._last_fired)

    def __len__(self) -> int:
        return len(self._last_fired)

    def __contains__(self, reminder_id: object) -> bool:
        return reminder_id in self._last_fired
