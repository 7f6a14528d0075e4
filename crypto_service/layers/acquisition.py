"""
Layer 1 – 数据获取层
从 CoinGecko 拉取行情快照列表与单币种时间序列，统一规范化后向上层提供标准接口。

本层不做重试、不做兜底：失败一律抛出 ProviderError，由编排层决定如何降级。
成功拉取的数据在返回之前先写入持久缓存（write-through）。
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from crypto_service.config import settings
from crypto_service.exceptions import ProviderError, require_asset_id, require_positive
from crypto_service.layers.cache import CacheLayer, get_cache_layer
from crypto_service.models.market import AssetSnapshot, Point, TimeSeries

logger = logging.getLogger(__name__)

# ── 快照请求中附带的涨跌幅周期 ────────────────────────────
_CHANGE_HORIZONS = ("24h", "7d", "30d")
_SERIES_COLUMNS = ("prices", "market_caps", "total_volumes")


def _clean_points(raw: Any) -> List[Point]:
    """过滤非法点，并保证时间戳严格递增（重复或回退的点丢弃）"""
    points: List[Point] = []
    last_ts: Optional[int] = None
    for item in raw or []:
        try:
            ts, value = int(item[0]), float(item[1])
        except (TypeError, ValueError, IndexError):
            continue
        if last_ts is not None and ts <= last_ts:
            continue
        points.append((ts, value))
        last_ts = ts
    return points


def _parse_snapshot_row(row: Dict[str, Any], position: int) -> AssetSnapshot:
    """
    CoinGecko 对额外请求的周期返回 *_in_currency 字段，这里统一映射到
    price_change_percentage_{24h,7d,30d}；排名缺失时用批内位置补齐。
    """
    data = dict(row)
    for horizon in _CHANGE_HORIZONS:
        field = f"price_change_percentage_{horizon}"
        if data.get(field) is None:
            data[field] = data.get(f"{field}_in_currency")
    if not data.get("market_cap_rank"):
        data["market_cap_rank"] = position
    return AssetSnapshot.model_validate(data)


class AcquisitionLayer:
    """数据获取层：封装 CoinGecko REST 接口"""

    def __init__(
        self,
        cache: Optional[CacheLayer] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._cache = cache or get_cache_layer()
        self._base_url = (base_url or settings.COINGECKO_BASE_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT
        self._session: Optional[aiohttp.ClientSession] = None

    # ── 连接管理 ──────────────────────────────────────────

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"accept": "application/json"}
            if settings.COINGECKO_API_KEY:
                headers["x-cg-demo-api-key"] = settings.COINGECKO_API_KEY
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=headers,
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _get_json(
        self, path: str, params: Dict[str, Any], asset_id: Optional[str] = None
    ) -> Any:
        url = f"{self._base_url}{path}"
        session = await self._get_session()
        try:
            async with session.get(url, params=params) as response:
                if response.status != 200:
                    body = (await response.text())[:200]
                    raise ProviderError(
                        f"CoinGecko 返回 HTTP {response.status}: {body}",
                        status=response.status,
                        asset_id=asset_id,
                    )
                return await response.json(content_type=None)
        except ProviderError:
            raise
        except asyncio.TimeoutError as exc:
            raise ProviderError(
                f"CoinGecko 请求超时（{self._timeout}s）: {url}", asset_id=asset_id
            ) from exc
        except aiohttp.ClientError as exc:
            raise ProviderError(f"CoinGecko 网络错误: {exc}", asset_id=asset_id) from exc
        except ValueError as exc:
            raise ProviderError(f"CoinGecko 响应无法解析: {exc}", asset_id=asset_id) from exc

    # ── 行情快照 ──────────────────────────────────────────

    async def fetch_snapshot(self, limit: int) -> List[AssetSnapshot]:
        """
        获取按市值降序排列的前 limit 个币种快照

        Raises:
            ValidationError: limit < 1
            ProviderError: 网络失败 / 非 200 响应 / 响应格式错误
        """
        require_positive("limit", limit)
        payload = await self._get_json(
            "/coins/markets",
            {
                "vs_currency": settings.VS_CURRENCY,
                "order": "market_cap_desc",
                "per_page": limit,
                "page": 1,
                "sparkline": "false",
                "price_change_percentage": ",".join(_CHANGE_HORIZONS),
            },
        )
        if not isinstance(payload, list):
            raise ProviderError(f"快照响应格式错误: 期望列表，实际为 {type(payload).__name__}")
        if not all(isinstance(row, dict) for row in payload):
            raise ProviderError("快照响应格式错误: 列表中存在非对象元素")

        rows = sorted(payload, key=lambda r: r.get("market_cap") or 0, reverse=True)[:limit]
        try:
            snapshots = [_parse_snapshot_row(row, i + 1) for i, row in enumerate(rows)]
        except ValueError as exc:
            raise ProviderError(f"快照数据字段非法: {exc}") from exc

        await self._cache.store_snapshot(snapshots)
        logger.info(f"行情快照获取成功，共 {len(snapshots)} 个币种")
        return snapshots

    # ── 时间序列 ──────────────────────────────────────────

    async def fetch_series(
        self, asset_id: str, days: int, interval: Optional[str] = None
    ) -> TimeSeries:
        """
        获取单币种最近 days 天的价格 / 市值 / 成交量序列

        Args:
            asset_id: CoinGecko 币种 ID，如 "bitcoin"
            days: 窗口天数
            interval: 采样间隔提示（"hourly" / "daily"），None 交由提供商决定

        Raises:
            ValidationError: 参数非法
            ProviderError: 网络失败 / 非 200 响应 / 响应格式错误
        """
        asset_id = require_asset_id(asset_id)
        require_positive("days", days)
        params: Dict[str, Any] = {"vs_currency": settings.VS_CURRENCY, "days": days}
        if interval:
            params["interval"] = interval

        payload = await self._get_json(f"/coins/{asset_id}/market_chart", params, asset_id)
        if not isinstance(payload, dict) or "prices" not in payload:
            raise ProviderError(f"{asset_id} 序列响应缺少 prices 字段", asset_id=asset_id)

        series = TimeSeries(**{col: _clean_points(payload.get(col)) for col in _SERIES_COLUMNS})
        await self._cache.store_series(asset_id, days, series)
        logger.info(f"{asset_id} 最近 {days} 天序列获取成功，共 {len(series.prices)} 个价格点")
        return series


# ── 模块级别单例 ──────────────────────────────────────────
_acquisition: Optional[AcquisitionLayer] = None


def get_acquisition_layer() -> AcquisitionLayer:
    global _acquisition
    if _acquisition is None:
        _acquisition = AcquisitionLayer()
    return _acquisition


async def close_acquisition_layer() -> None:
    global _acquisition
    if _acquisition is not None:
        await _acquisition.close()
        _acquisition = None
