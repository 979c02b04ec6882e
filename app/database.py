"""
SQLite 数据库连接管理和初始化。
使用同步 sqlite3，提供 get_db() 获取连接。

引擎只持久化两类数据：轮询游标和派单审计日志，规则配置由调用方提供。
"""

import os
import sqlite3
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DB_PATH = os.getenv("DB_PATH", "data/dispatch.db")


def get_db() -> sqlite3.Connection:
    """获取 SQLite 数据库连接，启用 WAL 模式。"""
    conn = sqlite3.connect(DB_PATH, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


# ── 建表 SQL ──────────────────────────────────────────────

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS dispatch_cursors (
    strategy_code   VARCHAR(64)  PRIMARY KEY,
    cursor          INTEGER      NOT NULL DEFAULT 0,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS dispatch_logs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    strategy_code   VARCHAR(64),
    router_id       INTEGER,
    subject_id      VARCHAR(64)  NOT NULL,
    trx_type        VARCHAR(32)  NOT NULL,
    amount          DECIMAL(18,2) NOT NULL,
    result          VARCHAR(32)  NOT NULL,
    candidate_ids   TEXT,
    trace           TEXT,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);
"""

# ── 索引 SQL ──────────────────────────────────────────────

_CREATE_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_dispatch_logs_strategy
    ON dispatch_logs(strategy_code);
CREATE INDEX IF NOT EXISTS idx_dispatch_logs_created
    ON dispatch_logs(created_at);
"""


# ── 初始化 ────────────────────────────────────────────────

def init_db() -> None:
    """创建数据库目录、表和索引（幂等）。"""
    db_dir = Path(DB_PATH).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = get_db()
    try:
        conn.executescript(_CREATE_TABLES)
        conn.executescript(_CREATE_INDEXES)
        conn.commit()
    finally:
        conn.close()
