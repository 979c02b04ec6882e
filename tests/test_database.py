"""app/database.py 的单元测试。"""

import os
import tempfile

# 在导入 database 之前设置临时 DB_PATH
_tmp = tempfile.mkdtemp()
_test_db = os.path.join(_tmp, "test.db")
os.environ["DB_PATH"] = _test_db

import app.database as _db_mod
from app.database import get_db, init_db


class TestInitDB:
    """数据库初始化测试。"""

    def setup_method(self):
        # 确保 DB_PATH 指向测试数据库（其他测试文件的 fixture 可能修改了它）
        os.environ["DB_PATH"] = _test_db
        _db_mod.DB_PATH = _test_db
        # 每个测试用新数据库
        if os.path.exists(_test_db):
            os.remove(_test_db)

    def test_creates_all_tables(self):
        init_db()
        conn = get_db()
        tables = {
            row["name"]
            for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        conn.close()
        assert {"dispatch_cursors", "dispatch_logs"}.issubset(tables)

    def test_creates_indexes(self):
        init_db()
        conn = get_db()
        indexes = {
            row["name"]
            for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='index' AND name LIKE 'idx_%'"
            ).fetchall()
        }
        conn.close()
        assert {"idx_dispatch_logs_strategy", "idx_dispatch_logs_created"}.issubset(indexes)

    def test_creates_missing_directory(self):
        nested = os.path.join(_tmp, "nested", "dir", "engine.db")
        _db_mod.DB_PATH = nested
        init_db()
        assert os.path.exists(nested)

    def test_get_db_returns_row_factory(self):
        init_db()
        conn = get_db()
        row = conn.execute("SELECT 1 AS val").fetchone()
        conn.close()
        assert row["val"] == 1

    def test_wal_mode(self):
        init_db()
        conn = get_db()
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        conn.close()
        assert mode == "wal"

    def test_cursor_defaults(self):
        init_db()
        conn = get_db()
        conn.execute("INSERT INTO dispatch_cursors (strategy_code) VALUES ('S1')")
        conn.commit()
        row = conn.execute(
            "SELECT cursor, created_at FROM dispatch_cursors WHERE strategy_code = 'S1'"
        ).fetchone()
        conn.close()
        assert row["cursor"] == 0
        assert row["created_at"]

    def test_idempotent_init(self):
        """init_db 可以安全地多次调用。"""
        init_db()
        init_db()
        init_db()
        conn = get_db()
        tables = {
            row["name"]
            for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        conn.close()
        assert "dispatch_logs" in tables
