from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from chime.datamodel import RecurrenceType, ReminderKind


@dataclass
class RuntimeControl:
    shutdown_event: asyncio.Event
    restart_event: asyncio.Event
    started_at: float


class ShutdownRequest(BaseModel):
    reason: str = Field(default="manual")


class SessionRequest(BaseModel):
    identity: str | None = Field(default=None, description="为空表示登出")


class AttachmentIn(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    content_base64: str
    content_type: str = "application/octet-stream"


class SubmitRequest(BaseModel):
    reminder_id: str
    text: str = ""
    attachments: list[AttachmentIn] = Field(default_factory=list)


class ReminderIn(BaseModel):
    kind: ReminderKind = ReminderKind.TASK
    recurrence_type: RecurrenceType
    recurrence_data: dict[str, Any] = Field(default_factory=dict)
    time: str = Field(default="09:00", pattern=r"^\d{1,2}:\d{2}$")
    recipients: list[str] = Field(min_length=1)
    message: str = Field(min_length=1)


class ReminderPatch(BaseModel):
    kind: ReminderKind | None = None
    recurrence_type: RecurrenceType | None = None
    recurrence_data: dict[str, Any] | None = None
    time: str | None = Field(default=None, pattern=r"^\d{1,2}:\d{2}$")
    recipients: list[str] | None = None
    message: str | None = None
