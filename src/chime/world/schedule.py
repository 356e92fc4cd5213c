"""调度循环

已知提醒集合非空时运行一个固定间隔(1 秒)的 asyncio 任务，集合为空时取消该任务回到空闲。
每个 tick 同步地对所有提醒求值:

1. 先把本 tick 内所有到期的提醒写入触发记录，再交给展示闸门，
   闸门拒绝(正在展示别的提醒)时该次触发即作废，下一个 tick 不会重试；
2. 同一 tick 多个提醒同时到期时，只把迭代顺序中的第一个交给闸门，其余只记录不展示。

这是 "至多一次、尽力而为" 的投递语义。
"""

import asyncio
import time
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, List

from chime.core.gate import PresentationGate
from chime.datamodel import Reminder
from chime.logger import logger
from chime.metrics import runtime_metrics
from chime.utils import from_epoch_ms, now_in_tz, to_epoch_ms
from chime.world.ledger import TriggerLedger
from chime.world.recurrence import describe_recurrence, is_due, next_due_at

__all__ = ["ScheduleLoop", "LoopState", "TICK_INTERVAL_SECONDS"]

TICK_INTERVAL_SECONDS = 1.0


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class ScheduleLoop:
    def __init__(
        self,
        ledger: TriggerLedger,
        gate: PresentationGate,
        tz: str = "UTC",
        tick_interval: float = TICK_INTERVAL_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.ledger = ledger
        self.gate = gate
        self.tz = tz
        self.tick_interval = tick_interval
        self._clock = clock or (lambda: now_in_tz(self.tz))

        self.recipient_id: str | None = None
        self.tick_count = 0
        self._reminders: List[Reminder] = []
        self._task: asyncio.Task[None] | None = None
        self._last_tick_at: float | None = None

    @property
    def state(self) -> LoopState:
        if self._task is None or self._task.done():
            return LoopState.IDLE
        return LoopState.RUNNING

    @property
    def is_running(self) -> bool:
        return self.state is LoopState.RUNNING

    @property
    def reminders(self) -> List[Reminder]:
        return list(self._reminders)

    def set_reminders(self, reminders: Iterable[Reminder]) -> None:
        """替换已知提醒集合，并据此启动或停止定时任务"""
        self._reminders = list(reminders)
        if self._reminders and not self.is_running:
            self._start()
        elif not self._reminders and self.is_running:
            self._cancel()

    def _start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run(), name="chime-schedule")
        logger.info(f"调度循环进入运行状态: reminders={len(self._reminders)}")

    def _cancel(self) -> asyncio.Task[None] | None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.info("调度循环进入空闲状态")
        return task

    async def stop(self) -> None:
        task = self._cancel()
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.tick_interval)
                try:
                    self.tick()
                except Exception:
                    logger.exception("调度 tick 异常，继续下一个 tick")
        except asyncio.CancelledError:
            logger.debug("调度任务已取消")
            raise

    def tick(self, now: datetime | None = None) -> List[Reminder]:
        """对所有提醒求值一次，返回本 tick 到期的提醒"""
        now = now or self._clock()
        now_ms = to_epoch_ms(now)
        self.tick_count += 1
        self._last_tick_at = time.time()
        runtime_metrics.record_tick()

        due = [
            r for r in self._reminders
            if r.is_visible_to(self.recipient_id)
            and is_due(r, now, self.ledger.last_fired(r.id))
        ]
        if not due:
            return []

        for reminder in due:
            self.ledger.record_fired(reminder.id, now_ms)

        first, rest = due[0], due[1:]
        logger.info(f"提醒到期: reminder_id={first.id}, recurrence={first.recurrence_type}")
        if self.gate.offer(first):
            runtime_metrics.record_reminder_triggered()
        else:
            runtime_metrics.record_reminder_suppressed()

        for reminder in rest:
            logger.info(f"同一 tick 内多个提醒到期，已记录但不展示: reminder_id={reminder.id}")
            runtime_metrics.record_reminder_suppressed()

        return due

    def get_status(self) -> dict[str, object]:
        now = self._clock()
        items = []
        for r in self._reminders:
            last_fired = self.ledger.last_fired(r.id)
            nxt = next_due_at(r, now, last_fired)
            items.append({
                "id": r.id,
                "recurrence": describe_recurrence(r),
                "last_fired_epoch_ms": last_fired or None,
                "last_fired_at": from_epoch_ms(last_fired, self.tz).isoformat() if last_fired else None,
                "next_due_at": nxt.isoformat() if nxt else None,
            })
        return {
            "state": self.state.value,
            "recipient_id": self.recipient_id,
            "tick_count": self.tick_count,
            "last_tick_at_epoch": self._last_tick_at,
            "reminders": items,
        }
