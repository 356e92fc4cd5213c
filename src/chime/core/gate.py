"""展示闸门

单槽状态机，同一时刻最多只有一个提醒处于展示或回复中:

    empty --offer--> showing --respond--> responding --complete/discard--> empty
                     showing --dismiss--> empty
    任意状态 --force_clear--> empty   (远端删除了该提醒，或会话身份变化)

闸门非空时到来的新提醒直接丢弃，不排队。
状态只由闸门自己的转换方法修改；订阅方通过 subscribe 拿到每次转换后的快照。
"""

from typing import Callable

from chime.datamodel import GateSnapshot, GateState, Reminder
from chime.events import Bus, E, Unsubscribe
from chime.logger import logger

__all__ = ["PresentationGate"]

GateListener = Callable[[GateSnapshot], None]


class PresentationGate:
    def __init__(self) -> None:
        self.bus = Bus("gate")
        self._state = GateState.EMPTY
        self._reminder: Reminder | None = None

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def held(self) -> Reminder | None:
        return self._reminder

    @property
    def held_id(self) -> str | None:
        return self._reminder.id if self._reminder else None

    def snapshot(self, reason: str = "") -> GateSnapshot:
        return GateSnapshot(state=self._state, reminder=self._reminder, reason=reason)

    def subscribe(self, listener: GateListener) -> Unsubscribe:
        return self.bus.subscribe(E.GATE_CHANGED, listener)

    def on_shown(self, handler: Callable[[Reminder], object]) -> Unsubscribe:
        """每次 empty -> showing 时调用一次，用于提示音等副作用"""
        return self.bus.subscribe(E.REMINDER_SHOWN, handler)

    def _transition(self, state: GateState, reminder: Reminder | None, reason: str) -> None:
        previous = self._state
        self._state = state
        self._reminder = reminder
        logger.debug(f"闸门状态: {previous.value} -> {state.value} ({reason})")
        self.bus.emit(E.GATE_CHANGED, self.snapshot(reason))

    def offer(self, reminder: Reminder) -> bool:
        if self._state is not GateState.EMPTY:
            logger.info(
                f"提醒被抑制(闸门占用中): reminder_id={reminder.id}, "
                f"state={self._state.value}, held={self.held_id}"
            )
            return False

        logger.info(f"展示提醒: reminder_id={reminder.id}, message={reminder.message!r}")
        self._transition(GateState.SHOWING, reminder, "offer")
        self.bus.emit(E.REMINDER_SHOWN, reminder)
        return True

    def dismiss(self) -> bool:
        if self._state is not GateState.SHOWING:
            logger.warning(f"忽略 dismiss: 闸门状态为 {self._state.value}")
            return False
        self._transition(GateState.EMPTY, None, "dismiss")
        return True

    def respond(self) -> bool:
        if self._state is not GateState.SHOWING:
            logger.warning(f"忽略 respond: 闸门状态为 {self._state.value}")
            return False
        self._transition(GateState.RESPONDING, self._reminder, "respond")
        return True

    def discard(self) -> bool:
        if self._state is not GateState.RESPONDING:
            logger.warning(f"忽略 discard: 闸门状态为 {self._state.value}")
            return False
        self._transition(GateState.EMPTY, None, "discard")
        return True

    def complete(self, reminder_id: str) -> bool:
        """回复提交成功后清空；期间提醒若已被移除或替换则不做任何事"""
        if self._state is not GateState.RESPONDING or self.held_id != reminder_id:
            logger.debug(f"complete 无效: reminder_id={reminder_id}, held={self.held_id}")
            return False
        self._transition(GateState.EMPTY, None, "submitted")
        return True

    def force_clear(self, reason: str) -> bool:
        if self._state is GateState.EMPTY:
            return False
        logger.info(f"强制清空闸门: held={self.held_id}, reason={reason}")
        self._transition(GateState.EMPTY, None, reason)
        return True

    def replace_held(self, reminder: Reminder) -> bool:
        """远端编辑后用最新记录替换当前持有的提醒，状态不变"""
        if self.held_id != reminder.id or self._reminder == reminder:
            return False
        self._transition(self._state, reminder, "updated")
        return True
