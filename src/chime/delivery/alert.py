"""提示音

通过系统播放器(默认 aplay)播放一段提示音，尽力而为，从不向调用方抛出异常。
运行环境拒绝自动播放时(播放器不存在、无可用音频设备、超时)，
只给用户一条 "请手动解锁提示音" 的通知，之后不再自动重试，直到用户调用 unlock()。
"""

import asyncio
from pathlib import Path
from typing import Callable

from chime.datamodel import Notice, Reminder
from chime.errors import PlaybackBlocked
from chime.logger import logger
from chime.metrics import runtime_metrics

__all__ = ["AlertSound"]

NoticeCallback = Callable[[Notice], None]


class AlertSound:
    def __init__(
        self,
        sound_file: str | Path,
        device: str = "default",
        player: str = "aplay",
        timeout_seconds: float = 3.0,
        notify: NoticeCallback | None = None,
    ) -> None:
        self.sound_file = Path(sound_file)
        self.device = device
        self.player = player
        self.timeout_seconds = timeout_seconds
        self.notify = notify
        self.blocked = False
        self.play_count = 0

    def unlock(self) -> None:
        """用户交互后恢复播放"""
        if self.blocked:
            logger.info("提示音已由用户解锁")
        self.blocked = False

    async def on_reminder_shown(self, reminder: Reminder) -> None:
        await self.play()

    async def play(self) -> None:
        if self.blocked:
            logger.debug("提示音处于锁定状态，跳过播放")
            return
        if not self.sound_file.exists():
            logger.warning(f"提示音文件不存在: {self.sound_file}")
            return

        try:
            await self._run_player()
            self.play_count += 1
        except PlaybackBlocked as e:
            self._on_blocked(e)
        except Exception:
            logger.exception("播放提示音失败")

    async def _run_player(self) -> None:
        logger.trace(f"播放提示音: {self.sound_file}")
        try:
            proc = await asyncio.create_subprocess_exec(
                self.player, "-D", self.device, str(self.sound_file),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise PlaybackBlocked(f"无法启动播放器 {self.player}: {e}") from e

        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise PlaybackBlocked(f"播放超时({self.timeout_seconds}s)") from e

        if returncode != 0:
            raise PlaybackBlocked(f"播放器退出码 {returncode}")

    def _on_blocked(self, error: PlaybackBlocked) -> None:
        self.blocked = True
        runtime_metrics.record_audio_blocked()
        logger.warning(f"运行环境拒绝播放提示音，等待用户解锁: {error}")
        if self.notify is not None:
            self.notify(Notice(
                type="info",
                title="Audio Enabled",
                message="Please interact once to enable reminder sounds.",
            ))
