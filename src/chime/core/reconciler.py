"""远端同步

两条路径保持 "已知提醒集合" 与外部存储一致:
1. 启动时以及每次变更通知后，按当前身份全量拉取；
2. 订阅 reminders 表的变更通知，任何增删改都只触发一次全量拉取(粗粒度失效，不做增量补丁)。

同一时刻最多一个拉取在进行；拉取期间到来的通知会在当前拉取结束后再触发一次，不会丢失。
只有完整成功的拉取才会应用差异，失败时保持原集合不变，等待下一次触发重试。
"""

import asyncio
from typing import Dict, List

from chime.core.gate import PresentationGate
from chime.core.interfaces import ReminderSource
from chime.datamodel import Reminder
from chime.events import Unsubscribe
from chime.logger import logger
from chime.metrics import runtime_metrics
from chime.world.ledger import TriggerLedger
from chime.world.schedule import ScheduleLoop

__all__ = ["RemoteSyncReconciler", "REMINDERS_TABLE"]

REMINDERS_TABLE = "reminders"


class RemoteSyncReconciler:
    def __init__(
        self,
        source: ReminderSource,
        ledger: TriggerLedger,
        gate: PresentationGate,
        loop: ScheduleLoop,
    ) -> None:
        self.source = source
        self.ledger = ledger
        self.gate = gate
        self.loop = loop

        self.recipient_id: str | None = None
        self.last_fetch_ok: bool | None = None
        self._known: Dict[str, Reminder] = {}
        self._unsubscribe: Unsubscribe | None = None
        self._fetch_task: asyncio.Task[bool] | None = None
        self._dirty = False
        self._generation = 0  # 身份变化后，旧身份发起的拉取结果作废

    @property
    def known(self) -> List[Reminder]:
        return list(self._known.values())

    @property
    def is_subscribed(self) -> bool:
        return self._unsubscribe is not None

    async def start(self, recipient_id: str) -> None:
        if self.recipient_id is not None:
            await self.stop()
        self.recipient_id = recipient_id
        self.loop.recipient_id = recipient_id
        self._generation += 1
        self._unsubscribe = self.source.subscribe_to_changes(REMINDERS_TABLE, self._on_change)
        logger.info(f"开始同步提醒: recipient_id={recipient_id}")
        await self.refresh()

    def detach(self) -> asyncio.Task[bool] | None:
        """同步地退订变更通知并取消进行中的拉取，返回被取消的任务"""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._generation += 1
        self._dirty = False
        task, self._fetch_task = self._fetch_task, None
        if task is not None and not task.done():
            task.cancel()
        if self.recipient_id is not None:
            logger.info(f"停止同步提醒: recipient_id={self.recipient_id}")
        self.recipient_id = None
        return task

    async def stop(self) -> None:
        task = self.detach()
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    def reset(self) -> None:
        """清空已知集合、触发记录与闸门，调度循环随之进入空闲"""
        self._known = {}
        self.loop.set_reminders([])
        self.loop.recipient_id = None
        self.ledger.clear()
        self.gate.force_clear("session reset")

    def _on_change(self, table: str, event_type: str) -> None:
        logger.debug(f"收到变更通知: table={table}, event={event_type}")
        self.request_refresh()

    def request_refresh(self) -> asyncio.Task[bool] | None:
        if self.recipient_id is None:
            return None
        if self._fetch_task is not None and not self._fetch_task.done():
            self._dirty = True
            return self._fetch_task
        self._fetch_task = asyncio.get_running_loop().create_task(
            self._refresh_until_clean(), name="chime-refetch"
        )
        return self._fetch_task

    async def refresh(self) -> bool:
        """触发一次拉取(或合并进正在进行的拉取)并等待完成，返回这次等待的拉取结果是否被应用"""
        task = self.request_refresh()
        if task is None:
            return False
        # 拉取任务可能因身份变化被 detach 取消，这不是调用方自身被取消
        await asyncio.wait({task})
        if task.cancelled():
            return False
        return task.result()

    async def _refresh_until_clean(self) -> bool:
        """返回最后一轮拉取是否被应用；被丢弃的过期结果视为失败"""
        while True:
            self._dirty = False
            applied = await self._fetch_and_apply()
            if not self._dirty:
                return applied

    async def _fetch_and_apply(self) -> bool:
        generation = self._generation
        recipient_id = self.recipient_id
        if recipient_id is None:
            return False

        try:
            reminders = await self.source.list_reminders(recipient_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            runtime_metrics.record_fetch(error=True)
            self.last_fetch_ok = False
            logger.warning(f"拉取提醒失败，等待下一次触发时重试: {e}")
            return False

        runtime_metrics.record_fetch()
        if generation != self._generation:
            logger.debug("身份已变化，丢弃过期的拉取结果")
            return False

        self.apply(reminders)
        self.last_fetch_ok = True
        return True

    def apply(self, reminders: List[Reminder]) -> None:
        """将一次完整拉取的结果应用到本地状态"""
        mine = [r for r in reminders if r.is_visible_to(self.recipient_id)]
        incoming = {r.id: r for r in mine}

        removed = set(self._known) - set(incoming)
        added = set(incoming) - set(self._known)
        changed = {
            rid for rid, r in incoming.items()
            if rid in self._known and self._known[rid] != r
        }

        if removed:
            self.ledger.prune(removed)
            if self.gate.held_id in removed:
                self.gate.force_clear("removed remotely")

        held_id = self.gate.held_id
        if held_id is not None and held_id in changed:
            self.gate.replace_held(incoming[held_id])

        self._known = incoming
        self.loop.set_reminders(mine)

        if removed or added or changed:
            logger.info(
                f"提醒集合已同步: total={len(incoming)}, added={len(added)}, "
                f"changed={len(changed)}, removed={len(removed)}"
            )
