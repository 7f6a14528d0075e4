"""
行情数据服务（缓存兜底编排）
整合数据获取层与持久缓存层，对外提供永不抛异常的读取接口：

    实时拉取成功        → source="live"
    拉取失败、缓存命中  → source="cache"
    拉取失败、缓存未命中 → source="empty"

参数非法（ValidationError）在任何 I/O 之前直接抛出。
"""

import asyncio
import logging
from typing import Dict, List, Optional

from crypto_service.exceptions import (
    CacheMiss,
    ProviderError,
    SerializationError,
    ValidationError,
    require_asset_id,
    require_positive,
)
from crypto_service.layers.acquisition import AcquisitionLayer, get_acquisition_layer
from crypto_service.layers.cache import CacheLayer, get_cache_layer
from crypto_service.models.market import FetchResult, TimeSeries

logger = logging.getLogger(__name__)


class MarketService:
    """行情数据业务服务：实时优先，失败时回退到持久缓存"""

    def __init__(
        self,
        acquisition: Optional[AcquisitionLayer] = None,
        cache: Optional[CacheLayer] = None,
    ):
        self._cache = cache or get_cache_layer()
        self._acq = acquisition or get_acquisition_layer()

    # ── 行情快照 ──────────────────────────────────────────

    async def fetch_snapshot(self, limit: int = 10) -> FetchResult:
        """获取市值前 limit 的币种快照"""
        require_positive("limit", limit)
        try:
            snapshots = await self._acq.fetch_snapshot(limit)
            return FetchResult(data=snapshots, source="live")
        except ProviderError as exc:
            logger.warning(f"⚠️ 行情快照拉取失败，尝试读取缓存: {exc}")
            cause = f"provider: {exc}"
        except Exception as exc:
            logger.error(f"行情快照拉取出现意外错误: {exc}", exc_info=True)
            cause = f"unexpected: {exc}"

        try:
            cached = await self._cache.load_snapshot(limit)
        except (CacheMiss, SerializationError) as exc:
            logger.warning(f"快照缓存不可用，返回空结果: {exc}")
            return FetchResult(data=[], source="empty", cause=f"{cause}; cache: {exc}")
        logger.info(f"使用缓存快照，共 {len(cached)} 个币种")
        return FetchResult(data=cached, source="cache", cause=cause)

    # ── 时间序列 ──────────────────────────────────────────

    async def fetch_series(
        self, asset_id: str, days: int = 7, interval: Optional[str] = None
    ) -> FetchResult:
        """获取单币种时间序列；缓存也没有时 data 为 None"""
        asset_id = require_asset_id(asset_id)
        require_positive("days", days)
        return await self._fetch_series_with_fallback(asset_id, days, interval)

    async def _fetch_series_with_fallback(
        self, asset_id: str, days: int, interval: Optional[str]
    ) -> FetchResult:
        try:
            series = await self._acq.fetch_series(asset_id, days, interval)
            return FetchResult(data=series, source="live")
        except ProviderError as exc:
            logger.warning(f"⚠️ {asset_id}（{days} 天）序列拉取失败，尝试读取缓存: {exc}")
            cause = f"provider: {exc}"
        except Exception as exc:
            # 单个币种的意外错误只降级该币种，不影响同批其他请求
            logger.error(f"{asset_id} 序列拉取出现意外错误: {exc}", exc_info=True)
            cause = f"unexpected: {exc}"

        try:
            cached = await self._cache.load_series(asset_id, days)
        except (CacheMiss, SerializationError) as exc:
            logger.warning(f"{asset_id}（{days} 天）无可用缓存，返回空结果")
            return FetchResult(data=None, source="empty", cause=f"{cause}; cache: {exc}")
        logger.info(f"{asset_id}（{days} 天）使用缓存序列")
        return FetchResult(data=cached, source="cache", cause=cause)

    # ── 多币种对比 ────────────────────────────────────────

    async def fetch_comparison_results(
        self, asset_ids: List[str], days: int = 7
    ) -> Dict[str, FetchResult]:
        """并发拉取多个币种，等待全部完成后按输入顺序返回（重复 ID 合并）"""
        if not asset_ids:
            raise ValidationError("asset_ids 不能为空")
        require_positive("days", days)
        unique_ids = list(dict.fromkeys(require_asset_id(a) for a in asset_ids))

        results = await asyncio.gather(
            *(self._fetch_series_with_fallback(a, days, None) for a in unique_ids)
        )
        return dict(zip(unique_ids, results))

    async def fetch_comparison(
        self, asset_ids: List[str], days: int = 7
    ) -> Dict[str, Optional[TimeSeries]]:
        results = await self.fetch_comparison_results(asset_ids, days)
        return {asset_id: result.data for asset_id, result in results.items()}


# ── 模块级别单例 ──────────────────────────────────────────
_market_service: Optional[MarketService] = None


def get_market_service() -> MarketService:
    global _market_service
    if _market_service is None:
        _market_service = MarketService()
    return _market_service
