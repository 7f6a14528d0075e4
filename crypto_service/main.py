"""
加密货币行情数据服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn crypto_service.main:app --host 0.0.0.0 --port 8002
    python -m crypto_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from crypto_service import __version__
from crypto_service.config import settings
from crypto_service.db import init_mongodb, init_redis, close_connections
from crypto_service.exceptions import ValidationError
from crypto_service.layers.acquisition import close_acquisition_layer
from crypto_service.routers import health, crypto, cron, cache
from crypto_service.services.refresh import build_snapshot_refresh

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    logger.info("=" * 60)
    logger.info(f"🚀 Crypto Market DataService v{__version__} 启动中")
    logger.info(f"   Provider  : {settings.COINGECKO_BASE_URL} ({settings.VS_CURRENCY})")
    logger.info(f"   MongoDB   : {settings.MONGODB_HOST}:{settings.MONGODB_PORT}")
    logger.info(f"   Redis     : {settings.REDIS_HOST}:{settings.REDIS_PORT}")
    logger.info(f"   Cache dir : {settings.CACHE_DIR}")
    logger.info("=" * 60)

    # 初始化数据库连接（失败不阻断启动，降级运行）
    mongo_ok = await init_mongodb()
    redis_ok = await init_redis()

    if mongo_ok and redis_ok:
        logger.info("✅ 所有数据库连接就绪")
    elif mongo_ok:
        logger.warning("⚠️ Redis 不可用，缓存降级为 MongoDB + 文件模式")
    elif redis_ok:
        logger.warning("⚠️ MongoDB 不可用，降级为 Redis + 文件模式")
    else:
        logger.warning("⚠️ 数据库均不可用，降级为文件缓存模式")

    refresher = build_snapshot_refresh() if settings.REFRESH_ENABLED else None
    if refresher is not None:
        await refresher.start()

    try:
        yield
    finally:
        logger.info("🔄 行情数据服务正在关闭...")
        if refresher is not None:
            await refresher.stop()
        await close_acquisition_layer()
        await close_connections()
        logger.info("✅ 行情数据服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="Crypto Market DataService",
    description=(
        "加密货币行情数据服务，提供以下功能：\n"
        "- 📊 市值排名快照、单币种历史序列（CoinGecko）\n"
        "- 🗄️ 持久缓存兜底（Redis → MongoDB → 文件）\n"
        "- 🔀 多币种时间轴对齐与百分比归一化\n"
        "- 🕯️ 小时级采样聚合日 K 与可视窗口\n\n"
        "**分层架构**\n"
        "```\n"
        "Acquisition Layer  ← 从 CoinGecko 拉取原始数据\n"
        "Cache Layer        ← Redis / MongoDB / 文件持久缓存\n"
        "Processing Layer   ← 对齐、归一化、日 K 聚合\n"
        "Analysis Layer     ← 示意性技术指标\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 异常处理 ──────────────────────────────────────────────
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "参数错误", "message": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "内部服务错误", "message": str(exc)},
    )


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(crypto.router)
app.include_router(cron.router)
app.include_router(cache.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Crypto Market DataService",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "crypto_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
