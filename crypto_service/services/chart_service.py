"""
图表数据服务
整合编排层 + 处理层 + 分析层 + 可视窗口，生成可直接绘图的数据结构
"""

import logging
from typing import Any, Dict, List, Optional

from crypto_service.config import settings
from crypto_service.exceptions import CacheMiss, ValidationError
from crypto_service.layers import viewport
from crypto_service.layers.analysis import get_analysis_layer
from crypto_service.layers.cache import CacheLayer, get_cache_layer
from crypto_service.layers.processing import get_processing_layer
from crypto_service.models.market import AssetSnapshot, Candle
from crypto_service.services.market_service import MarketService, get_market_service

logger = logging.getLogger(__name__)

_COMPARISON_MODES = ("absolute", "normalized")
_NAME_LOOKUP_LIMIT = 20
_SUMMARY_TOP_MARKET_CAP = 5
_SUMMARY_TOP_MOVERS = 3


def _candle_interval() -> Optional[str]:
    return settings.CANDLE_INTERVAL or None


def _summarize_window(candles: List[Candle]) -> Dict[str, Any]:
    if not candles:
        return {"first_close": None, "last_close": None, "change_pct": None}
    first, last = candles[0].close, candles[-1].close
    change = (last - first) / first * 100 if first else None
    return {"first_close": first, "last_close": last, "change_pct": change}


class ChartService:
    """图表数据服务"""

    def __init__(
        self,
        market: Optional[MarketService] = None,
        cache: Optional[CacheLayer] = None,
    ):
        self._market = market or get_market_service()
        self._cache = cache or get_cache_layer()
        self._proc = get_processing_layer()
        self._analysis = get_analysis_layer()

    async def comparison_chart(
        self,
        asset_ids: List[str],
        days: int = 7,
        mode: str = "absolute",
    ) -> Dict[str, Any]:
        """
        多币种对比图

        Args:
            asset_ids: 币种 ID 列表
            days: 窗口天数
            mode: absolute（原始价格） / normalized（相对首个取值的涨跌幅 %）

        Returns:
            {
                "mode": "...",
                "points": [{"timestamp": ..., "label": "...", "values": {...}}, ...],
                "sources": {"bitcoin": "live", ...},
                "names": {"bitcoin": "Bitcoin", ...}
            }
        """
        if mode not in _COMPARISON_MODES:
            raise ValidationError(f"不支持的对比模式: {mode!r}，可选: {_COMPARISON_MODES}")

        results = await self._market.fetch_comparison_results(asset_ids, days)
        aligned = self._proc.align({a: r.data for a, r in results.items()})
        points = self._proc.normalize(aligned) if mode == "normalized" else aligned

        names = await self._asset_names(results)

        return {
            "mode": mode,
            "days": days,
            "points": [p.model_dump() for p in points],
            "sources": {a: r.source for a, r in results.items()},
            "names": names,
        }

    async def candle_chart(
        self,
        asset_id: str,
        days: int = 30,
        range_name: str = viewport.DEFAULT_RANGE,
        index: int = 0,
        direction: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        日 K 图：拉取小时级序列 → 聚合日 K → 按时间范围切出可视窗口

        direction 不为空时，在 index 的基础上向该方向滑动一步。
        """
        window = viewport.window_for_range(range_name)
        result = await self._market.fetch_series(asset_id, days, interval=_candle_interval())
        candles = self._proc.candles_from_series(result.data)

        if direction:
            state = viewport.slide(candles, window, index, direction)
        else:
            state = viewport.view(candles, window, index)

        return {
            "asset_id": asset_id,
            "range": range_name,
            "index": state.index,
            "window": state.window,
            "max_index": state.max_index,
            "total": len(candles),
            "candles": [c.model_dump() for c in state.candles],
            "summary": _summarize_window(state.candles),
            "source": result.source,
        }

    async def indicators(self, asset_id: str, days: int = 30) -> Dict[str, Any]:
        """示意性技术指标（基于日 K 收盘价），附支撑位 / 阻力位与信号汇总"""
        result = await self._market.fetch_series(asset_id, days, interval=_candle_interval())
        candles = self._proc.candles_from_series(result.data)
        df = self._proc.to_frame(candles)
        indicators = self._analysis.summarize(df)
        return {
            "asset_id": asset_id,
            "days": days,
            "indicators": indicators,
            "levels": self._analysis.price_levels(candles[-1].close if candles else None),
            "overall": self._analysis.overall_signal(indicators),
            "source": result.source,
        }

    async def market_summary(self, limit: int = 10) -> Dict[str, Any]:
        """
        市场概览：前 limit 个币种的总市值、市值前 5 的占比，
        以及 24h 涨幅前 3 / 跌幅前 3（缺少 24h 涨跌幅的币种不参与排行）。
        """
        result = await self._market.fetch_snapshot(limit)
        rows: List[AssetSnapshot] = result.data or []
        total = sum(s.market_cap or 0 for s in rows)

        def _mover(s: AssetSnapshot) -> Dict[str, Any]:
            return {"id": s.id, "name": s.name, "change_24h": s.price_change_percentage_24h}

        movers = [s for s in rows if s.price_change_percentage_24h is not None]
        gainers = sorted(movers, key=lambda s: s.price_change_percentage_24h, reverse=True)
        losers = sorted(movers, key=lambda s: s.price_change_percentage_24h)
        return {
            "total_market_cap": total,
            "market_cap_breakdown": [
                {
                    "id": s.id,
                    "name": s.name,
                    "market_cap": s.market_cap or 0,
                    "share_pct": (s.market_cap or 0) / total * 100 if total else None,
                }
                for s in rows[:_SUMMARY_TOP_MARKET_CAP]
            ],
            "top_gainers": [_mover(s) for s in gainers[:_SUMMARY_TOP_MOVERS]],
            "top_losers": [_mover(s) for s in losers[:_SUMMARY_TOP_MOVERS]],
            "source": result.source,
        }

    async def _asset_names(self, asset_ids) -> Dict[str, str]:
        """显示名称优先取缓存快照，缓存未命中时才请求一次实时快照"""
        try:
            rows = await self._cache.load_snapshot(_NAME_LOOKUP_LIMIT)
        except CacheMiss:
            rows = (await self._market.fetch_snapshot(_NAME_LOOKUP_LIMIT)).data or []
        return {s.id: s.name for s in rows if s.id in asset_ids}


# ── 模块级别单例 ──────────────────────────────────────────
_chart_service: Optional[ChartService] = None


def get_chart_service() -> ChartService:
    global _chart_service
    if _chart_service is None:
        _chart_service = ChartService()
    return _chart_service
