"""
查看会话状态
显式的状态对象：当前选中的币种、时间窗口、可视范围、视口索引与收藏列表，
由顶层调用方持有并按引用传给各使用方。收藏与最近选中的币种通过
PreferenceStore（键值接口）持久化，不依赖任何隐式全局状态。

过期响应丢弃：每次 select() 领取一个单调递增的请求代号，
结果返回时只有代号仍是最新的才会写入状态，慢请求不会覆盖快请求的结果。
"""

import logging
from typing import Any, List, Optional

from crypto_service.exceptions import CacheMiss, SerializationError, require_asset_id, require_positive
from crypto_service.layers import viewport
from crypto_service.layers.cache import PREFS_KIND, CacheLayer, get_cache_layer
from crypto_service.layers.processing import get_processing_layer
from crypto_service.models.market import Candle
from crypto_service.services.market_service import MarketService, get_market_service

logger = logging.getLogger(__name__)

_FAVORITES_KEY = "favorites"
_SELECTED_KEY = "selected_asset"
_DEFAULT_ASSET = "bitcoin"


class RequestGeneration:
    """单调递增的请求代号"""

    def __init__(self):
        self._current = 0

    def next(self) -> int:
        self._current += 1
        return self._current

    def is_current(self, token: int) -> bool:
        return token == self._current


class PreferenceStore:
    """偏好设置键值存储，落在持久缓存的 prefs 命名空间下"""

    def __init__(self, namespace: str = "default", cache: Optional[CacheLayer] = None):
        self._namespace = namespace
        self._cache = cache or get_cache_layer()

    def _key(self, name: str) -> str:
        return f"{self._namespace}:{name}"

    async def get(self, name: str, default: Any = None) -> Any:
        try:
            record = await self._cache.load(PREFS_KIND, self._key(name))
        except (CacheMiss, SerializationError):
            return default
        return record.payload

    async def set(self, name: str, value: Any) -> None:
        await self._cache.store(PREFS_KIND, self._key(name), value)


class ViewerSession:
    """单个查看者的图表状态"""

    def __init__(
        self,
        prefs: Optional[PreferenceStore] = None,
        market: Optional[MarketService] = None,
    ):
        self._prefs = prefs or PreferenceStore()
        self._market = market or get_market_service()
        self._proc = get_processing_layer()
        self._generation = RequestGeneration()

        self.favorites: List[str] = []
        self.selected_asset: str = _DEFAULT_ASSET
        self.days: int = 30
        self.range_name: str = viewport.DEFAULT_RANGE
        self.index: int = 0
        self.candles: List[Candle] = []
        self.source: Optional[str] = None

    async def restore(self) -> None:
        """从偏好存储恢复收藏与最近选中的币种"""
        favorites = await self._prefs.get(_FAVORITES_KEY, [])
        self.favorites = [f for f in favorites if isinstance(f, str)] if isinstance(favorites, list) else []
        selected = await self._prefs.get(_SELECTED_KEY)
        if isinstance(selected, str) and selected:
            self.selected_asset = selected

    # ── 收藏 ──────────────────────────────────────────────

    async def toggle_favorite(self, asset_id: str) -> bool:
        """切换收藏状态，返回切换后是否已收藏"""
        asset_id = require_asset_id(asset_id)
        if asset_id in self.favorites:
            self.favorites = [f for f in self.favorites if f != asset_id]
        else:
            self.favorites = self.favorites + [asset_id]
        await self._prefs.set(_FAVORITES_KEY, self.favorites)
        return asset_id in self.favorites

    def is_favorite(self, asset_id: str) -> bool:
        return asset_id in self.favorites

    # ── 币种 / 窗口切换 ───────────────────────────────────

    async def select(self, asset_id: str, days: Optional[int] = None) -> bool:
        """
        切换币种或窗口并加载日 K。

        Returns:
            结果是否被采用；期间又发起了更新的 select() 时返回 False
        """
        asset_id = require_asset_id(asset_id)
        days = require_positive("days", days if days is not None else self.days)
        token = self._generation.next()

        result = await self._market.fetch_series(asset_id, days)
        if not self._generation.is_current(token):
            logger.debug(f"丢弃过期响应: {asset_id}（{days} 天），代号 {token}")
            return False

        self.selected_asset = asset_id
        self.days = days
        self.candles = self._proc.candles_from_series(result.data)
        self.source = result.source
        self.index = self.view().index
        await self._prefs.set(_SELECTED_KEY, asset_id)
        return True

    # ── 视口 ──────────────────────────────────────────────

    def view(self) -> viewport.ViewportState:
        return viewport.view(self.candles, viewport.window_for_range(self.range_name), self.index)

    def set_range(self, range_name: str) -> viewport.ViewportState:
        """切换可视范围，保留并重新钳制当前索引"""
        window = viewport.window_for_range(range_name)
        self.range_name = range_name
        state = viewport.view(self.candles, window, self.index)
        self.index = state.index
        return state

    def slide(self, direction: str) -> viewport.ViewportState:
        state = viewport.slide(
            self.candles, viewport.window_for_range(self.range_name), self.index, direction
        )
        self.index = state.index
        return state
