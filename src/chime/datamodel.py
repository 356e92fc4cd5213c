import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

__all__ = [
    "ReminderKind", "RecurrenceType", "Reminder",
    "GateState", "GateSnapshot",
    "Attachment", "ReminderResponse", "ResponseResult",
    "Notice",
    "WEEKDAY_SHORT_NAMES",
]

# 与星期几的 datetime.weekday() 下标一一对应，不随系统 locale 变化
WEEKDAY_SHORT_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


# ----------------- Reminder 数据模型 ----------------
class ReminderKind(str, Enum):
    REFRESHER = "refresher"
    TASK = "task"

    @property
    def label(self) -> str:
        return "Daily Refresher" if self is ReminderKind.REFRESHER else "Task Alert"


class RecurrenceType(str, Enum):
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def _load_json(raw: Any, default: Any) -> Any:
    if raw is None:
        return default
    if isinstance(raw, (dict, list, tuple, set, frozenset)):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return default


@dataclass(frozen=True)
class Reminder:
    id: str
    kind: ReminderKind
    recurrence_type: str  # 保留原始字符串，未知类型视为永不到期
    recurrence_data: Dict[str, Any] = field(default_factory=dict, hash=False)
    time: str = "09:00"  # 格式: "HH:MM"
    recipients: FrozenSet[str] = frozenset()
    message: str = ""
    created_by: Optional[str] = None
    created_at_utc: Optional[str] = None

    def is_visible_to(self, recipient_id: str | None) -> bool:
        return recipient_id is not None and recipient_id in self.recipients

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Reminder":
        """从存储行构造，JSON 列会被解码，project_managers 视作 recipients 的别名"""
        recipients = row.get("recipients")
        if recipients is None:
            recipients = row.get("project_managers")
        recipients = _load_json(recipients, [])
        recurrence_data = _load_json(row.get("recurrence_data"), {})
        try:
            kind = ReminderKind(row.get("kind") or row.get("type") or "task")
        except ValueError:
            kind = ReminderKind.TASK
        return cls(
            id=str(row["id"]),
            kind=kind,
            recurrence_type=str(row.get("recurrence_type") or ""),
            recurrence_data=recurrence_data if isinstance(recurrence_data, dict) else {},
            time=row.get("time") or "09:00",
            recipients=frozenset(str(r) for r in recipients),
            message=row.get("message") or "",
            created_by=row.get("created_by"),
            created_at_utc=row.get("created_at_utc"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "recurrence_type": self.recurrence_type,
            "recurrence_data": dict(self.recurrence_data),
            "time": self.time,
            "recipients": sorted(self.recipients),
            "message": self.message,
            "created_by": self.created_by,
            "created_at_utc": self.created_at_utc,
        }


# ----------------- 展示闸门 数据模型 ----------------
class GateState(str, Enum):
    EMPTY = "empty"
    SHOWING = "showing"
    RESPONDING = "responding"


@dataclass(frozen=True)
class GateSnapshot:
    state: GateState
    reminder: Optional[Reminder] = None
    reason: str = ""  # 导致本次状态变化的动作

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "reminder": self.reminder.to_dict() if self.reminder else None,
            "label": self.reminder.kind.label if self.reminder else None,
            "reason": self.reason,
        }


# ----------------- 回复 数据模型 ----------------
@dataclass
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class ReminderResponse:
    reminder_id: str
    responder_id: str
    text: str
    attachment_urls: List[str] = field(default_factory=list)

    def to_row(self) -> Dict[str, Any]:
        return {
            "reminder_id": self.reminder_id,
            "user_id": self.responder_id,
            "message": self.text,
            "file_urls": json.dumps(self.attachment_urls, ensure_ascii=False),
        }


@dataclass
class ResponseResult:
    response: ReminderResponse
    response_id: int
    skipped_files: List[str] = field(default_factory=list)


# ----------------- 通知 数据模型 ----------------
@dataclass
class Notice:
    type: str  # 'info', 'success', 'error'
    title: str
    message: str
    created_at_epoch: float = field(default_factory=time.time)
