"""
轮询游标存储：按策略编码保存 round_robin 的游标。

引擎自身唯一持有的状态。派单先读取游标排序，成功产出候选后再以
比较并交换（advance）前进一位；并发派单中只有一个能从同一位置前进，
保证不会重复分配位置（单调递增，不追求严格公平）。
"""

import logging
import os
import sqlite3
import threading
from datetime import datetime
from typing import Protocol

from dotenv import load_dotenv

from app.database import get_db

load_dotenv()

logger = logging.getLogger(__name__)


class CursorStore(Protocol):
    def get(self, key: str) -> int:
        """返回当前游标，首次使用为 0。"""
        ...

    def advance(self, key: str, expected: int) -> bool:
        """游标仍等于 expected 时原子前进一位并返回 True，否则返回 False。"""
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryCursorStore:
    """进程内游标存储，单实例部署和测试使用。"""

    def __init__(self):
        self._lock = threading.Lock()
        self._cursors: dict[str, int] = {}

    def get(self, key: str) -> int:
        with self._lock:
            return self._cursors.get(key, 0)

    def advance(self, key: str, expected: int) -> bool:
        with self._lock:
            if self._cursors.get(key, 0) != expected:
                return False
            self._cursors[key] = expected + 1
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._cursors.pop(key, None)


class SqliteCursorStore:
    """基于 dispatch_cursors 表的游标存储，多进程共享同一数据库文件。"""

    def advance(self, key: str, expected: int) -> bool:
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        # 手动控制事务，BEGIN IMMEDIATE 提前获取写锁
        db.isolation_level = None
        try:
            db.execute("BEGIN IMMEDIATE")
            row = db.execute(
                "SELECT cursor FROM dispatch_cursors WHERE strategy_code = ?",
                (key,),
            ).fetchone()
            current = row["cursor"] if row else 0
            if current != expected:
                db.execute("COMMIT")
                return False
            if row:
                db.execute(
                    "UPDATE dispatch_cursors SET cursor = ?, updated_at = ? WHERE strategy_code = ?",
                    (expected + 1, now, key),
                )
            else:
                db.execute(
                    """INSERT INTO dispatch_cursors (strategy_code, cursor, created_at, updated_at)
                       VALUES (?, ?, ?, ?)""",
                    (key, expected + 1, now, now),
                )
            db.execute("COMMIT")
            return True
        except sqlite3.Error:
            if db.in_transaction:
                db.execute("ROLLBACK")
            raise
        finally:
            db.close()

    def get(self, key: str) -> int:
        db = get_db()
        try:
            row = db.execute(
                "SELECT cursor FROM dispatch_cursors WHERE strategy_code = ?",
                (key,),
            ).fetchone()
            return row["cursor"] if row else 0
        finally:
            db.close()

    def delete(self, key: str) -> None:
        """策略删除时一并删除其游标。"""
        db = get_db()
        try:
            db.execute("DELETE FROM dispatch_cursors WHERE strategy_code = ?", (key,))
            db.commit()
        finally:
            db.close()


_default_store: CursorStore | None = None


def get_cursor_store() -> CursorStore:
    """按 CURSOR_BACKEND 环境变量返回进程级游标存储。"""
    global _default_store
    if _default_store is None:
        backend = os.getenv("CURSOR_BACKEND", "sqlite")
        if backend == "memory":
            _default_store = MemoryCursorStore()
        else:
            _default_store = SqliteCursorStore()
        logger.info("轮询游标存储: %s", type(_default_store).__name__)
    return _default_store


def reset_cursor_store() -> None:
    global _default_store
    _default_store = None
