"""数据表变更通道

存储层在每次增删改后发出 table.changed 事件，订阅方只得到 "某张表变了" 的粗粒度通知，
需要自行重新拉取。
"""

from typing import Callable

from chime.events import Bus, E, Unsubscribe

__all__ = ["changes_bus", "publish_change", "subscribe_to_changes"]

changes_bus = Bus("changes")


def publish_change(table: str, event_type: str) -> None:
    changes_bus.emit(E.TABLE_CHANGED, table, event_type)


def subscribe_to_changes(table: str, callback: Callable[[str, str], None]) -> Unsubscribe:
    """只转发指定表的变更，返回退订函数"""
    def handler(changed_table: str, event_type: str) -> None:
        if changed_table == table:
            callback(changed_table, event_type)

    return changes_bus.subscribe(E.TABLE_CHANGED, handler)
