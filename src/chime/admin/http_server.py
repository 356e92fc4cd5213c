from __future__ import annotations

import asyncio
import time

import uvicorn

from chime.config.settings import (
    ADMIN_AUTH_TOKEN,
    ADMIN_HTTP_HOST,
    ADMIN_HTTP_PORT,
    LOG_FILE,
    UPLOAD_DIR,
)
from chime.core.overlay import ReminderOverlay
from chime.logger import logger

from .app import create_app
from .schemas import RuntimeControl


async def _wait_shutdown_signal(shutdown_event: asyncio.Event, server: uvicorn.Server) -> None:
    await shutdown_event.wait()
    server.should_exit = True


async def main_loop(
    shutdown_event: asyncio.Event,
    restart_event: asyncio.Event,
    overlay: ReminderOverlay,
) -> None:
    control = RuntimeControl(
        shutdown_event=shutdown_event,
        restart_event=restart_event,
        started_at=time.time(),
    )
    app = create_app(
        control,
        overlay,
        auth_token=ADMIN_AUTH_TOKEN,
        log_file=LOG_FILE,
        upload_dir=UPLOAD_DIR,
    )

    config = uvicorn.Config(
        app,
        host=ADMIN_HTTP_HOST,
        port=ADMIN_HTTP_PORT,
        log_level="info",
        log_config=None,  # 交给 setup_logging 转接到 loguru
        access_log=False,
    )
    server = uvicorn.Server(config)
    # 嵌入到主进程时，统一由 main.py 处理系统信号。
    server.install_signal_handlers = lambda: None

    watcher = asyncio.create_task(_wait_shutdown_signal(shutdown_event, server))
    logger.info(f"Admin HTTP 服务准备启动: http://{ADMIN_HTTP_HOST}:{ADMIN_HTTP_PORT}")
    try:
        await server.serve()
    except SystemExit as e:
        # uvicorn 绑定端口失败时会 sys.exit(1)；管理 API 不可用不影响提醒调度
        logger.error(f"Admin HTTP 服务启动失败(exit={e.code})，提醒调度继续运行，直到收到关闭信号")
        await shutdown_event.wait()
    finally:
        watcher.cancel()
        try:
            await watcher
        except asyncio.CancelledError:
            pass
        logger.info("Admin HTTP 服务已关闭")
