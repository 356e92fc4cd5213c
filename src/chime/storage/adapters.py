"""把存储模块适配为引擎使用的 ReminderSource / ResponseSink"""

from pathlib import Path
from typing import List

import chime.storage.reminder as reminder_storage
import chime.storage.response as response_storage
from chime.core.interfaces import ChangeCallback, ReminderSource, ResponseSink
from chime.datamodel import Reminder, ReminderResponse
from chime.errors import FetchFailure
from chime.events import Unsubscribe
from chime.storage.changes import subscribe_to_changes

__all__ = ["SqliteReminderSource", "LocalResponseSink"]


class SqliteReminderSource(ReminderSource):
    async def list_reminders(self, recipient_id: str) -> List[Reminder]:
        try:
            return await reminder_storage.list_reminders_for_recipient(recipient_id)
        except Exception as e:
            raise FetchFailure(f"拉取提醒失败: {e}") from e

    def subscribe_to_changes(self, table: str, callback: ChangeCallback) -> Unsubscribe:
        return subscribe_to_changes(table, callback)


class LocalResponseSink(ResponseSink):
    def __init__(self, upload_dir: str | Path, public_base_url: str) -> None:
        self.upload_dir = Path(upload_dir)
        self.public_base_url = public_base_url.rstrip("/")

    async def upload_file(self, owner_id: str, filename: str, content: bytes) -> str:
        relative = await response_storage.save_upload(self.upload_dir, owner_id, filename, content)
        return f"{self.public_base_url}/uploads/{relative}"

    async def insert_response(self, response: ReminderResponse) -> int:
        return await response_storage.insert_response(response)
