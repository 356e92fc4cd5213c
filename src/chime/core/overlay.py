"""提醒浮层

把触发记录、展示闸门、调度循环、远端同步、提示音与回复提交组装成一个会话级对象。
身份变化(登出、切换用户)时同步地清空本地状态并让调度循环进入空闲，再异步地为新身份重新同步。
stop() 会停止调度定时器并退订所有通知通道。
"""

import asyncio
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Iterable, List

from chime.core.gate import PresentationGate
from chime.core.identity import SessionIdentity
from chime.core.interfaces import ReminderSource, ResponseSink
from chime.core.reconciler import RemoteSyncReconciler
from chime.core.response import ResponseSubmissionFlow
from chime.datamodel import Attachment, Notice, ResponseResult
from chime.delivery.alert import AlertSound
from chime.events import Bus, E, Unsubscribe
from chime.logger import logger
from chime.metrics import runtime_metrics
from chime.world.ledger import TriggerLedger
from chime.world.schedule import TICK_INTERVAL_SECONDS, ScheduleLoop

__all__ = ["ReminderOverlay"]


class ReminderOverlay:
    def __init__(
        self,
        identity: SessionIdentity,
        source: ReminderSource,
        sink: ResponseSink,
        alert: AlertSound | None = None,
        tz: str = "UTC",
        tick_interval: float = TICK_INTERVAL_SECONDS,
        clock: Callable[[], datetime] | None = None,
        notice_limit: int = 20,
    ) -> None:
        self.identity = identity
        self.ledger = TriggerLedger()
        self.gate = PresentationGate()
        self.loop = ScheduleLoop(self.ledger, self.gate, tz=tz, tick_interval=tick_interval, clock=clock)
        self.reconciler = RemoteSyncReconciler(source, self.ledger, self.gate, self.loop)
        self.responses = ResponseSubmissionFlow(self.gate, sink, identity, notify=self.push_notice)
        self.alert = alert
        if alert is not None and alert.notify is None:
            alert.notify = self.push_notice

        self.notices: Deque[Notice] = deque(maxlen=notice_limit)
        self._notice_bus = Bus("notice")
        self._subscriptions: List[Unsubscribe] = []
        self._start_task: asyncio.Task[None] | None = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._subscriptions.append(self.identity.on_identity_change(self._on_identity_change))
        if self.alert is not None:
            self._subscriptions.append(self.gate.on_shown(self.alert.on_reminder_shown))

        current = self.identity.current_identity()
        if current is None:
            logger.info("等待用户登录...")
            return
        self._start_task = asyncio.get_running_loop().create_task(
            self._start_session(current), name="chime-session"
        )
        await self.wait_ready()

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()

        task, self._start_task = self._start_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

        await self.reconciler.stop()
        await self.loop.stop()
        logger.info("提醒浮层已卸载")

    async def wait_ready(self) -> None:
        """等待当前身份的首次同步完成"""
        task = self._start_task
        if task is not None:
            await asyncio.wait({task})

    async def _start_session(self, identity: str) -> None:
        try:
            await self.reconciler.start(identity)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"为身份 {identity} 启动同步失败")

    def _on_identity_change(self, identity: str | None) -> None:
        task, self._start_task = self._start_task, None
        if task is not None and not task.done():
            task.cancel()

        self.reconciler.detach()
        self.reconciler.reset()

        if identity is None:
            logger.info("用户已登出，提醒调度已停止")
            return
        self._start_task = asyncio.get_running_loop().create_task(
            self._start_session(identity), name="chime-session"
        )

    # ---------------- 通知 ----------------
    def push_notice(self, notice: Notice) -> None:
        self.notices.append(notice)
        self._notice_bus.emit(E.NOTICE, notice)

    def subscribe_notices(self, listener: Callable[[Notice], None]) -> Unsubscribe:
        return self._notice_bus.subscribe(E.NOTICE, listener)

    # ---------------- 用户操作 ----------------
    def dismiss(self) -> bool:
        return self.gate.dismiss()

    def respond(self) -> bool:
        return self.gate.respond()

    def discard(self) -> bool:
        return self.gate.discard()

    async def submit(self, reminder_id: str, text: str, files: Iterable[Attachment] = ()) -> ResponseResult:
        return await self.responses.submit(reminder_id, text, files)

    def unlock_audio(self) -> None:
        if self.alert is not None:
            self.alert.unlock()

    def get_status(self) -> dict[str, object]:
        return {
            "identity": self.identity.current_identity(),
            "gate": self.gate.snapshot().to_dict(),
            "loop": self.loop.get_status(),
            "sync": {
                "subscribed": self.reconciler.is_subscribed,
                "known": len(self.reconciler.known),
                "last_fetch_ok": self.reconciler.last_fetch_ok,
            },
            "ledger_size": len(self.ledger),
            "submitting": self.responses.is_submitting,
            "audio_blocked": self.alert.blocked if self.alert is not None else None,
            "metrics": runtime_metrics.snapshot(),
        }
