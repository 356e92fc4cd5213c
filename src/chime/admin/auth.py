from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

from chime.logger import logger

TOKEN_HEADER = "X-Chime-Token"


def extract_token(request: Request) -> str | None:
    """优先读取 Authorization: Bearer，其次读取 X-Chime-Token"""
    scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.headers.get(TOKEN_HEADER, "").strip() or None


def check_admin_auth(request: Request, expected_token: str) -> dict[str, str]:
    if not expected_token:
        raise HTTPException(status_code=503, detail="ADMIN_AUTH_TOKEN 未配置")

    token = extract_token(request)
    if token is not None and hmac.compare_digest(token.encode(), expected_token.encode()):
        return {"auth": "token", "user": "admin-token"}

    client = request.client.host if request.client else "-"
    logger.debug(f"管理 API 鉴权失败: path={request.url.path}, client={client}, token_present={token is not None}")
    raise HTTPException(status_code=401, detail="未授权")
