import asyncio
import json
import re
from pathlib import Path

import chime.storage.db_config as db_config
from chime.datamodel import ReminderResponse
from chime.logger import logger

__all__ = ["insert_response", "list_responses", "save_upload"]

_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _ensure_conn():
    if db_config.conn is None:
        raise RuntimeError("数据库未初始化，请先调用 init_db()")


def _safe_name(name: str) -> str:
    cleaned = _SAFE_NAME_RE.sub("_", name).strip("._")
    return cleaned or "file"


async def insert_response(response: ReminderResponse) -> int:
    """写入回复记录，返回记录 ID"""
    _ensure_conn()
    row = response.to_row()
    async with db_config.conn.execute(
        "INSERT INTO reminder_responses (reminder_id, user_id, message, file_urls) VALUES (?, ?, ?, ?)",
        (row["reminder_id"], row["user_id"], row["message"], row["file_urls"]),
    ) as cursor:
        response_id = cursor.lastrowid
    await db_config.conn.commit()
    logger.trace(f"写入回复: response_id={response_id}, reminder_id={response.reminder_id}")
    return response_id


async def list_responses(reminder_id: str | None = None, limit: int = 50) -> list[dict]:
    _ensure_conn()
    sql = "SELECT response_id, reminder_id, user_id, message, file_urls, created_at_utc FROM reminder_responses"
    params: tuple = ()
    if reminder_id:
        sql += " WHERE reminder_id = ?"
        params = (reminder_id,)
    sql += " ORDER BY response_id DESC LIMIT ?"
    params = (*params, limit)
    items = []
    async with db_config.conn.execute(sql, params) as cursor:
        async for row in cursor:
            item = dict(row)
            item["file_urls"] = json.loads(item["file_urls"] or "[]")
            items.append(item)
    return items


async def save_upload(upload_dir: str | Path, owner_id: str, filename: str, content: bytes) -> str:
    """把附件写到 upload_dir/<owner>/<filename>，返回相对路径"""
    relative = Path(_safe_name(owner_id)) / _safe_name(filename)
    target = Path(upload_dir) / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    await asyncio.to_thread(target.write_bytes, content)
    return relative.as_posix()
