"""
一个简单的运行时指标收集类，用于统计调度次数、触发/抑制的提醒、同步与回复情况，方便后续扩展和监控。
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass
class RuntimeMetrics:
    tick_count: int = 0
    reminder_triggered_count: int = 0
    reminder_suppressed_count: int = 0
    fetch_count: int = 0
    fetch_error_count: int = 0
    response_submitted_count: int = 0
    response_error_count: int = 0
    attachment_error_count: int = 0
    audio_blocked_count: int = 0
    last_tick_at: float | None = None
    last_fetch_at: float | None = None

    def record_tick(self) -> None:
        self.tick_count += 1
        self.last_tick_at = time.time()

    def record_reminder_triggered(self) -> None:
        self.reminder_triggered_count += 1

    def record_reminder_suppressed(self) -> None:
        self.reminder_suppressed_count += 1

    def record_fetch(self, error: bool = False) -> None:
        self.fetch_count += 1
        self.last_fetch_at = time.time()
        if error:
            self.fetch_error_count += 1

    def record_response(self, error: bool = False) -> None:
        if error:
            self.response_error_count += 1
        else:
            self.response_submitted_count += 1

    def record_attachment_error(self) -> None:
        self.attachment_error_count += 1

    def record_audio_blocked(self) -> None:
        self.audio_blocked_count += 1

    def snapshot(self) -> dict:
        return {
            "tick_count": self.tick_count,
            "reminder_triggered_count": self.reminder_triggered_count,
            "reminder_suppressed_count": self.reminder_suppressed_count,
            "fetch_count": self.fetch_count,
            "fetch_error_count": self.fetch_error_count,
            "response_submitted_count": self.response_submitted_count,
            "response_error_count": self.response_error_count,
            "attachment_error_count": self.attachment_error_count,
            "audio_blocked_count": self.audio_blocked_count,
            "last_tick_at_epoch": self.last_tick_at,
            "last_fetch_at_epoch": self.last_fetch_at,
            "last_tick_at_utc": (
                time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.last_tick_at))
                if self.last_tick_at is not None
                else None
            ),
        }


runtime_metrics = RuntimeMetrics()


__all__ = ["RuntimeMetrics", "runtime_metrics"]
