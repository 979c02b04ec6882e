"""
派单引擎应用入口：FastAPI 应用实例、路由注册和生命周期。
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

load_dotenv()

# 日志配置
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    force=True,
)

logger = logging.getLogger(__name__)


# ── Lifespan ──────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期：启动时初始化数据库（游标表和派单日志表）。"""
    from app.database import init_db

    init_db()
    logger.info("数据库初始化完成")
    if os.environ.get("TESTING") != "1":
        logger.info(
            "派单引擎已启动: 游标存储=%s, 时区=%s",
            os.getenv("CURSOR_BACKEND", "sqlite"),
            os.getenv("ENGINE_TIMEZONE") or "本地",
        )

    yield


app = FastAPI(title="Dispatch Engine", description="规则解析与派单引擎", lifespan=lifespan)

# ── 路由注册 ──────────────────────────────────────────────

from app.routes.engine import router as engine_router

app.include_router(engine_router)


# ── 健康检查 ──────────────────────────────────────────────

@app.get("/health")
async def health_check():
    return {"status": "ok"}
