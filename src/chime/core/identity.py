from typing import Callable

from chime.events import Bus, E, Unsubscribe
from chime.logger import logger

__all__ = ["SessionIdentity"]

IdentityListener = Callable[[str | None], None]


class SessionIdentity:
    """当前会话的身份(登录用户 ID)，变化时通知订阅方"""

    def __init__(self, identity: str | None = None) -> None:
        self.bus = Bus("identity")
        self._identity = identity

    def current_identity(self) -> str | None:
        return self._identity

    def on_identity_change(self, callback: IdentityListener) -> Unsubscribe:
        return self.bus.subscribe(E.IDENTITY_CHANGED, callback)

    def sign_in(self, identity: str) -> None:
        identity = identity.strip()
        if not identity:
            raise ValueError("身份不能为空")
        self._set(identity)

    def sign_out(self) -> None:
        self._set(None)

    def _set(self, identity: str | None) -> None:
        if identity == self._identity:
            return
        logger.info(f"会话身份变化: {self._identity} -> {identity}")
        self._identity = identity
        self.bus.emit(E.IDENTITY_CHANGED, identity)
