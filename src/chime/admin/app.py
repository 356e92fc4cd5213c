from __future__ import annotations

import asyncio
import base64
import binascii
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles

import chime.storage.db_config as db_config
import chime.storage.reminder as reminder_storage
import chime.storage.response as response_storage
from chime import __version__
from chime.core.overlay import ReminderOverlay
from chime.datamodel import Attachment
from chime.errors import ResponsePersistFailure, StaleSubmission, SubmissionInProgress
from chime.logger import logger
from chime.world.recurrence import describe_recurrence

from .auth import check_admin_auth
from .logs import log_path_for, parse_levels, read_tail, select_lines
from .schemas import (
    ReminderIn,
    ReminderPatch,
    RuntimeControl,
    SessionRequest,
    ShutdownRequest,
    SubmitRequest,
)


def _reminder_payload(reminder) -> dict[str, Any]:
    payload = reminder.to_dict()
    payload["recurrence"] = describe_recurrence(reminder)
    return payload


def _decode_attachments(items) -> list[Attachment]:
    attachments = []
    for item in items:
        try:
            content = base64.b64decode(item.content_base64, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail=f"附件不是合法的 base64: {item.filename}")
        attachments.append(Attachment(filename=item.filename, content=content, content_type=item.content_type))
    return attachments


def create_app(
    control: RuntimeControl,
    overlay: ReminderOverlay,
    auth_token: str,
    log_file: str | Path = "logs/chime.log",
    upload_dir: str | Path | None = None,
) -> FastAPI:
    app = FastAPI(title="Chime Admin API", version=__version__)
    if not auth_token:
        logger.warning("未配置 ADMIN_AUTH_TOKEN，管理 API 将不可访问")

    if upload_dir is not None:
        app.mount("/uploads", StaticFiles(directory=str(upload_dir), check_dir=False), name="uploads")

    async def require_admin_auth(request: Request) -> dict[str, str]:
        return check_admin_auth(request, auth_token)

    def health_payload() -> dict[str, Any]:
        return {
            "status": "ok",
            "now_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "uptime_seconds": max(0.0, time.time() - control.started_at),
            "db_connected": db_config.conn is not None,
            "overlay_started": overlay.started,
            "shutdown_requested": control.shutdown_event.is_set(),
            "restart_requested": control.restart_event.is_set(),
        }

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/api/v1/health")
    async def api_health() -> dict[str, Any]:
        return health_payload()

    @app.get("/api/v1/auth/check")
    async def auth_check(request: Request) -> dict[str, bool]:
        await require_admin_auth(request)
        return {"ok": True}

    @app.get("/api/v1/status")
    async def get_status(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        return {
            **overlay.get_status(),
            "active_tasks": len(asyncio.all_tasks()),
        }

    # ---------------- 会话 ----------------
    @app.post("/api/v1/session")
    async def set_session(payload: SessionRequest, request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        if payload.identity and payload.identity.strip():
            overlay.identity.sign_in(payload.identity)
        else:
            overlay.identity.sign_out()
        await overlay.wait_ready()
        return {"identity": overlay.identity.current_identity()}

    # ---------------- 展示闸门 ----------------
    @app.get("/api/v1/gate")
    async def get_gate(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        return overlay.gate.snapshot().to_dict()

    def _gate_action(name: str, ok: bool) -> dict[str, Any]:
        if not ok:
            raise HTTPException(
                status_code=409,
                detail=f"当前状态不允许 {name}: {overlay.gate.state.value}",
            )
        return overlay.gate.snapshot(name).to_dict()

    @app.post("/api/v1/gate/dismiss")
    async def gate_dismiss(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        return _gate_action("dismiss", overlay.dismiss())

    @app.post("/api/v1/gate/respond")
    async def gate_respond(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        return _gate_action("respond", overlay.respond())

    @app.post("/api/v1/gate/discard")
    async def gate_discard(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        return _gate_action("discard", overlay.discard())

    @app.post("/api/v1/gate/submit")
    async def gate_submit(payload: SubmitRequest, request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        attachments = _decode_attachments(payload.attachments)
        try:
            result = await overlay.submit(payload.reminder_id, payload.text, attachments)
        except (StaleSubmission, SubmissionInProgress) as e:
            raise HTTPException(status_code=409, detail=str(e))
        except ResponsePersistFailure as e:
            raise HTTPException(status_code=502, detail=str(e))
        return {
            "response_id": result.response_id,
            "attachment_urls": result.response.attachment_urls,
            "skipped_files": result.skipped_files,
        }

    @app.post("/api/v1/audio/unlock")
    async def unlock_audio(request: Request) -> dict[str, bool]:
        await require_admin_auth(request)
        overlay.unlock_audio()
        return {"ok": True}

    @app.get("/api/v1/notices")
    async def get_notices(request: Request, limit: int = 20) -> dict[str, Any]:
        await require_admin_auth(request)
        limit = max(1, min(limit, 100))
        items = [asdict(n) for n in list(overlay.notices)[-limit:]]
        return {"items": list(reversed(items))}

    # ---------------- 提醒管理 ----------------
    @app.get("/api/v1/reminders")
    async def get_reminders(request: Request, kind: str | None = None) -> dict[str, Any]:
        await require_admin_auth(request)
        reminders = await reminder_storage.list_reminders(kind=kind)
        return {"items": [_reminder_payload(r) for r in reminders], "total": len(reminders)}

    @app.post("/api/v1/reminders", status_code=201)
    async def create_reminder(payload: ReminderIn, request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        try:
            reminder = await reminder_storage.create_reminder(
                kind=payload.kind,
                recurrence_type=payload.recurrence_type.value,
                recurrence_data=payload.recurrence_data,
                time=payload.time,
                recipients=payload.recipients,
                message=payload.message,
                created_by=overlay.identity.current_identity(),
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        logger.info(f"通过管理 API 创建提醒: reminder_id={reminder.id}")
        return _reminder_payload(reminder)

    @app.patch("/api/v1/reminders/{reminder_id}")
    async def patch_reminder(reminder_id: str, payload: ReminderPatch, request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        fields = payload.model_dump(exclude_none=True, mode="json")
        try:
            reminder = await reminder_storage.update_reminder(reminder_id, **fields)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if reminder is None:
            raise HTTPException(status_code=404, detail="提醒不存在")
        return _reminder_payload(reminder)

    @app.delete("/api/v1/reminders/{reminder_id}")
    async def remove_reminder(reminder_id: str, request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        if not await reminder_storage.delete_reminder(reminder_id):
            raise HTTPException(status_code=404, detail="提醒不存在")
        return {"ok": True, "id": reminder_id}

    @app.get("/api/v1/reminders/{reminder_id}/responses")
    async def get_responses(reminder_id: str, request: Request, limit: int = 50) -> dict[str, Any]:
        await require_admin_auth(request)
        limit = max(1, min(limit, 500))
        return {"items": await response_storage.list_responses(reminder_id, limit=limit)}

    # ---------------- 运维 ----------------
    @app.get("/api/v1/logs")
    async def get_logs(
        request: Request,
        lines: int = 200,
        levels: str | None = None,
        q: str | None = None,
        stream: str = "main",
    ) -> dict[str, Any]:
        await require_admin_auth(request)
        lines = max(1, min(lines, 5000))
        path = log_path_for(log_file, stream)
        wanted = parse_levels([levels])
        raw = await asyncio.to_thread(read_tail, path, lines)
        return {
            "stream": stream,
            "file": str(path),
            "levels": sorted(wanted),
            "q": q,
            "lines": select_lines(raw, wanted, q),
        }

    @app.post("/api/v1/admin/restart")
    async def admin_restart(payload: ShutdownRequest, request: Request) -> dict[str, Any]:
        auth_info = await require_admin_auth(request)
        logger.warning(f"收到远程重启请求: by={auth_info['user']}, reason={payload.reason}")
        control.restart_event.set()
        control.shutdown_event.set()
        return {"ok": True, "action": "restart", "reason": payload.reason}

    @app.post("/api/v1/admin/shutdown")
    async def admin_shutdown(payload: ShutdownRequest, request: Request) -> dict[str, Any]:
        auth_info = await require_admin_auth(request)
        logger.warning(f"收到远程关闭请求: by={auth_info['user']}, reason={payload.reason}")
        control.shutdown_event.set()
        return {"ok": True, "action": "shutdown", "reason": payload.reason}

    return app
