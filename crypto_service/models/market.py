"""
行情领域模型
字段名沿用 CoinGecko 返回的 JSON 字段，保证缓存载荷原样往返
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

Point = Tuple[int, float]          # (毫秒时间戳, 数值)
Source = Literal["live", "cache", "empty"]


class AssetSnapshot(BaseModel):
    """单个币种在某一时刻的市场指标"""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    symbol: str
    name: str
    current_price: Optional[float] = None
    market_cap: Optional[float] = None
    market_cap_rank: int = Field(ge=1)
    total_volume: Optional[float] = None
    price_change_percentage_24h: Optional[float] = None
    price_change_percentage_7d: Optional[float] = None
    price_change_percentage_30d: Optional[float] = None
    image: str = ""
    last_updated: Optional[str] = None


class TimeSeries(BaseModel):
    """价格 / 市值 / 成交量三条平行的时间序列"""

    model_config = ConfigDict(frozen=True)

    prices: List[Point] = Field(default_factory=list)
    market_caps: List[Point] = Field(default_factory=list)
    total_volumes: List[Point] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.prices

    def column(self, name: str) -> List[Point]:
        if name not in ("prices", "market_caps", "total_volumes"):
            raise ValueError(f"未知的序列列: {name}")
        return getattr(self, name)


class Candle(BaseModel):
    """一个 UTC 自然日的 OHLCV"""

    model_config = ConfigDict(frozen=True)

    timestamp: int          # 当日 00:00 UTC（毫秒）
    date: str               # YYYY-MM-DD
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @model_validator(mode="after")
    def _check_bounds(self) -> "Candle":
        if not (self.low <= min(self.open, self.close) and max(self.open, self.close) <= self.high):
            raise ValueError(
                f"K 线区间非法: low={self.low} open={self.open} close={self.close} high={self.high}"
            )
        return self


class AlignedPoint(BaseModel):
    """参考时间戳 + 各币种在该时刻附近的取值（缺数据的币种不出现）"""

    timestamp: int
    label: str
    values: Dict[str, float] = Field(default_factory=dict)


class CacheRecord(BaseModel):
    kind: str
    key: str
    payload: Any
    stored_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))


class FetchResult(BaseModel):
    """带来源标记的读取结果：实时 / 缓存 / 空"""

    data: Optional[Union[TimeSeries, List[AssetSnapshot]]] = None
    source: Source = "empty"
    cause: Optional[str] = None

    @property
    def from_cache(self) -> bool:
        return self.source == "cache"

    @property
    def is_empty(self) -> bool:
        return self.source == "empty"


class CollectionReport(BaseModel):
    """批量采集任务的执行报告"""

    success: bool
    coins_collected: int = 0
    series_collected: int = 0
    failed_asset: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
