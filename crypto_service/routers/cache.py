"""
缓存管理路由
GET  /api/cache/stats     - 各后端缓存统计
"""

from fastapi import APIRouter

from crypto_service.layers.cache import get_cache_layer
from crypto_service.models.response import ApiResponse

router = APIRouter(prefix="/api/cache", tags=["缓存管理"])


@router.get("/stats", response_model=ApiResponse)
async def cache_stats():
    """获取缓存统计信息（Redis 键数量 / MongoDB 文档数 / 缓存文件数）"""
    stats = await get_cache_layer().stats()
    return ApiResponse.ok(data=stats)
