from chime.logger import setup_logging, logger
from chime.config.settings import *
setup_logging(
    log_level=LOG_LEVEL,
    log_file=LOG_FILE,
    console_level=CONSOLE_LOG_LEVEL,
)

import asyncio
import os
import signal
import sys

import chime.storage.db_config as db_config
from chime.admin.http_server import main_loop as admin_http_main
from chime.core.identity import SessionIdentity
from chime.core.overlay import ReminderOverlay
from chime.delivery.alert import AlertSound
from chime.storage.adapters import LocalResponseSink, SqliteReminderSource

shutdown_event = asyncio.Event()
restart_event = asyncio.Event()


def signal_handler(sig, frame):
    """处理 SIGINT (Ctrl+C) / SIGTERM 信号"""
    logger.info("收到中断信号,正在依次关闭组件...")
    shutdown_event.set()


def _create_overlay() -> ReminderOverlay:
    alert = AlertSound(
        sound_file=ALERT_SOUND_FILE,
        device=ALERT_AUDIO_DEVICE,
        player=ALERT_PLAYER,
        timeout_seconds=ALERT_TIMEOUT_SECONDS,
    )
    return ReminderOverlay(
        identity=SessionIdentity(DEFAULT_IDENTITY),
        source=SqliteReminderSource(),
        sink=LocalResponseSink(UPLOAD_DIR, PUBLIC_BASE_URL),
        alert=alert,
        tz=USER_TIMEZONE,
    )


async def main():
    # 注册信号处理器
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    await db_config.init_db(DB_PATH)
    overlay = _create_overlay()

    try:
        await overlay.start()
        await admin_http_main(shutdown_event, restart_event, overlay)
    finally:
        logger.info("关闭 Chime...")
        await overlay.stop()

        logger.info("关闭数据库连接...")
        await db_config.close_db()
        if restart_event.is_set():
            logger.warning("检测到重启信号，正在重新拉起进程...")
            try:
                os.execv(sys.executable, [sys.executable, *sys.argv])
            except Exception as e:
                logger.opt(exception=e).error(f"重启失败: {e}")
        logger.info("Chime 已关闭")


def run() -> None:
    logger.info("启动 Chime...")
    asyncio.run(main())


if __name__ == "__main__":
    run()
