"""健康检查路由"""

import time

from fastapi import APIRouter

from crypto_service import __version__
from crypto_service.db import check_health

router = APIRouter(tags=["健康检查"])


@router.get("/health")
async def health():
    """服务健康检查（数据库不可用时服务仍以文件缓存降级运行）"""
    db_health = await check_health()
    degraded = all(v.get("status") != "healthy" for v in db_health.values())
    return {
        "success": True,
        "data": {
            "status": "degraded" if degraded else "ok",
            "version": __version__,
            "timestamp": int(time.time()),
            "service": "Crypto Market DataService",
            "databases": db_health,
        },
        "message": "服务运行正常",
    }


@router.get("/healthz")
async def healthz():
    """Kubernetes liveness probe"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz():
    """Kubernetes readiness probe"""
    return {"ready": True}
