"""事件总线模块，定义了事件总线类 Bus 及事件名集合 E

Bus 不是全局单例：每个拥有状态的组件(展示闸门、会话身份等)各自持有一个 Bus 实例，
订阅方通过引用拿到该实例并显式订阅/退订。
唯一的进程级实例是 storage.changes 中的数据表变更通道。
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Union

from pyee.asyncio import AsyncIOEventEmitter

from chime.logger import logger

Handler = Callable[..., Union[Awaitable[None], None]]
Unsubscribe = Callable[[], None]


# 事件名集中定义
class E:
    TABLE_CHANGED = "table.changed"
    IDENTITY_CHANGED = "identity.changed"
    GATE_CHANGED = "gate.changed"
    REMINDER_SHOWN = "reminder.shown"
    NOTICE = "notice"


class Bus(AsyncIOEventEmitter):
    def __init__(self, name: str = "bus") -> None:
        super().__init__()
        self.name = name
        # 处理器抛出的异常只记录，不回传给 emit 的调用方
        super().add_listener("error", self._log_handler_error)

    def _log_handler_error(self, exc: Exception) -> None:
        logger.opt(exception=exc).error(f"[{self.name}] 事件处理器异常: {exc}")

    def on(self, event: str, handler: Handler | None = None):
        """注册事件处理器，可直接调用也可作为装饰器使用"""
        def decorator(h: Handler) -> Handler:
            logger.debug(f"[{self.name}] 注册事件处理器: {event} -> {getattr(h, '__name__', repr(h))}")
            super(Bus, self).add_listener(event, h)
            return h

        if handler is None:
            return decorator
        return decorator(handler)

    def subscribe(self, event: str, handler: Handler) -> Unsubscribe:
        """注册处理器并返回退订函数，重复退订是安全的"""
        self.on(event, handler)

        def unsubscribe() -> None:
            if handler in self.listeners(event):
                self.remove_listener(event, handler)
                logger.debug(f"[{self.name}] 退订事件处理器: {event}")

        return unsubscribe

    def listener_count(self, event: str) -> int:
        return len(self.listeners(event))

    def emit(self, event: str, *args: Any, **kwargs: Any) -> bool:
        return super().emit(event, *args, **kwargs)


__all__ = ["Bus", "E", "Handler", "Unsubscribe"]
