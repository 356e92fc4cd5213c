import json
from typing import Any, Iterable

from ulid import ULID

import chime.storage.db_config as db_config
from chime.datamodel import RecurrenceType, Reminder, ReminderKind
from chime.logger import logger
from chime.storage.changes import publish_change

__all__ = [
    "create_reminder",
    "update_reminder",
    "delete_reminder",
    "get_reminder",
    "list_reminders",
    "list_reminders_for_recipient",
]

_COLUMNS = "id, kind, recurrence_type, recurrence_data, time, recipients, message, created_by, created_at_utc"
_UPDATABLE = {"kind", "recurrence_type", "recurrence_data", "time", "recipients", "message"}


def _ensure_conn():
    if db_config.conn is None:
        raise RuntimeError("数据库未初始化，请先调用 init_db()")


def _validate(recurrence_type: str, recipients: Iterable[str], message: str) -> None:
    if recurrence_type not in {t.value for t in RecurrenceType}:
        raise ValueError(f"未知的周期类型: {recurrence_type}")
    if not list(recipients):
        raise ValueError("至少需要一个接收人")
    if not message or not message.strip():
        raise ValueError("提醒内容不能为空")


async def create_reminder(
    kind: ReminderKind | str,
    recurrence_type: str,
    recurrence_data: dict[str, Any],
    time: str,
    recipients: Iterable[str],
    message: str,
    created_by: str | None = None,
) -> Reminder:
    """创建提醒"""
    _ensure_conn()
    recipients = sorted(set(recipients))
    _validate(recurrence_type, recipients, message)
    kind = ReminderKind(kind)
    reminder_id = str(ULID())

    await db_config.conn.execute(
        "INSERT INTO reminders (id, kind, recurrence_type, recurrence_data, time, recipients, message, created_by) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        (
            reminder_id,
            kind.value,
            recurrence_type,
            json.dumps(recurrence_data, ensure_ascii=False),
            time,
            json.dumps(recipients, ensure_ascii=False),
            message,
            created_by,
        ),
    )
    await db_config.conn.commit()
    logger.trace(f"创建提醒: reminder_id={reminder_id}, recurrence={recurrence_type}, recipients={recipients}")
    publish_change("reminders", "INSERT")
    return await get_reminder(reminder_id)


async def update_reminder(reminder_id: str, **fields: Any) -> Reminder | None:
    """更新提醒的部分字段，提醒不存在时返回 None"""
    _ensure_conn()
    unknown = set(fields) - _UPDATABLE
    if unknown:
        raise ValueError(f"不可更新的字段: {sorted(unknown)}")

    current = await get_reminder(reminder_id)
    if current is None:
        return None

    merged = current.to_dict()
    merged.update(fields)
    _validate(merged["recurrence_type"], merged["recipients"], merged["message"])

    await db_config.conn.execute(
        "UPDATE reminders SET kind = ?, recurrence_type = ?, recurrence_data = ?, time = ?, recipients = ?, "
        "message = ?, updated_at_utc = CURRENT_TIMESTAMP WHERE id = ?",
        (
            ReminderKind(merged["kind"]).value,
            merged["recurrence_type"],
            json.dumps(merged["recurrence_data"], ensure_ascii=False),
            merged["time"],
            json.dumps(sorted(set(merged["recipients"])), ensure_ascii=False),
            merged["message"],
            reminder_id,
        ),
    )
    await db_config.conn.commit()
    logger.trace(f"更新提醒: reminder_id={reminder_id}, fields={sorted(fields)}")
    publish_change("reminders", "UPDATE")
    return await get_reminder(reminder_id)


async def delete_reminder(reminder_id: str) -> bool:
    _ensure_conn()
    async with db_config.conn.execute("DELETE FROM reminders WHERE id = ?", (reminder_id,)) as cursor:
        deleted = cursor.rowcount > 0
    await db_config.conn.commit()
    if deleted:
        logger.trace(f"删除提醒: reminder_id={reminder_id}")
        publish_change("reminders", "DELETE")
    return deleted


async def get_reminder(reminder_id: str) -> Reminder | None:
    _ensure_conn()
    async with db_config.conn.execute(
        f"SELECT {_COLUMNS} FROM reminders WHERE id = ?", (reminder_id,)
    ) as cursor:
        row = await cursor.fetchone()
    return Reminder.from_row(dict(row)) if row else None


async def list_reminders(kind: str | None = None) -> list[Reminder]:
    """按创建时间倒序列出提醒，可按类别过滤"""
    _ensure_conn()
    sql = f"SELECT {_COLUMNS} FROM reminders"
    params: tuple[Any, ...] = ()
    if kind:
        sql += " WHERE kind = ?"
        params = (kind,)
    sql += " ORDER BY created_at_utc DESC, id DESC"
    async with db_config.conn.execute(sql, params) as cursor:
        rows = await cursor.fetchall()
    return [Reminder.from_row(dict(row)) for row in rows]


async def list_reminders_for_recipient(recipient_id: str) -> list[Reminder]:
    """列出接收人包含 recipient_id 的提醒"""
    reminders = await list_reminders()
    return [r for r in reminders if r.is_visible_to(recipient_id)]
