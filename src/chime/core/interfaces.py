from abc import ABC, abstractmethod
from typing import Callable, List

from chime.datamodel import Reminder, ReminderResponse
from chime.events import Unsubscribe

__all__ = ["ReminderSource", "ResponseSink", "ChangeCallback"]

# 参数: 表名, 变更类型 ('INSERT' / 'UPDATE' / 'DELETE')
ChangeCallback = Callable[[str, str], None]


class ReminderSource(ABC):
    """提醒的外部存储，引擎只读"""

    @abstractmethod
    async def list_reminders(self, recipient_id: str) -> List[Reminder]:
        pass

    @abstractmethod
    def subscribe_to_changes(self, table: str, callback: ChangeCallback) -> Unsubscribe:
        """订阅粗粒度的 "表已变化" 通知，返回退订函数"""
        pass


class ResponseSink(ABC):
    """回复的外部存储"""

    @abstractmethod
    async def upload_file(self, owner_id: str, filename: str, content: bytes) -> str:
        """上传单个附件，返回可访问的 URL；失败时抛出异常"""
        pass

    @abstractmethod
    async def insert_response(self, response: ReminderResponse) -> int:
        """写入一条回复记录，返回记录 ID；失败时抛出异常"""
        pass
