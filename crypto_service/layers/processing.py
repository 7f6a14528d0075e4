"""
Layer 3 – 数据处理层
  - 对齐：把 N 条独立的时间序列映射到同一条参考时间轴（最近邻取值，不做插值）
  - 归一化：对齐后的绝对值 → 相对首个取值的百分比变化
  - 日 K 聚合：小时级采样按 UTC 自然日聚合为 OHLCV

所有需要对齐 / 归一化 / 聚合的调用方都应使用本层，不要另写一份。
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence

import pandas as pd

from crypto_service.models.market import AlignedPoint, Candle, Point, TimeSeries

logger = logging.getLogger(__name__)


def _label(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def find_nearest_value(points: Sequence[Point], target: int) -> Optional[float]:
    """
    线性扫描，返回时间戳与 target 差值绝对值最小的点的取值。
    差值相同时保留先扫描到的点；points 为空返回 None。
    """
    nearest: Optional[float] = None
    smallest_diff = None
    for ts, value in points:
        diff = abs(ts - target)
        if smallest_diff is None or diff < smallest_diff:
            smallest_diff = diff
            nearest = value
    return nearest


class ProcessingLayer:
    """数据处理层：对齐 + 归一化 + 日 K 聚合"""

    # ── 多币种对齐 ────────────────────────────────────────

    def align(
        self,
        series_by_asset: Mapping[str, Optional[TimeSeries]],
        column: str = "prices",
    ) -> List[AlignedPoint]:
        """
        以样本数最多的序列为参考时间轴（并列时取输入顺序中的第一个），
        为每个参考时间戳在其余序列中取最近邻的值。

        空序列（或 None）的币种不会出现在任何 AlignedPoint 中；
        全部为空时返回空列表。
        """
        columns: Dict[str, List[Point]] = {
            asset_id: (series.column(column) if series is not None else [])
            for asset_id, series in series_by_asset.items()
        }

        reference_id = None
        reference_len = 0
        for asset_id, points in columns.items():
            if len(points) > reference_len:
                reference_id, reference_len = asset_id, len(points)
        if reference_id is None:
            return []

        available = {asset_id: pts for asset_id, pts in columns.items() if pts}
        aligned = []
        for ts, _ in columns[reference_id]:
            values = {}
            for asset_id, points in available.items():
                value = find_nearest_value(points, ts)
                if value is not None:
                    values[asset_id] = value
            aligned.append(AlignedPoint(timestamp=ts, label=_label(ts), values=values))
        return aligned

    # ── 百分比归一化 ──────────────────────────────────────

    def normalize(self, points: Sequence[AlignedPoint]) -> List[AlignedPoint]:
        """
        normalized = (value - base) / base * 100

        base 取该币种首次出现的 AlignedPoint 中的值（不一定是第一个点）。
        base 为 0 的币种整列省略。
        """
        bases: Dict[str, float] = {}
        for point in points:
            for asset_id, value in point.values.items():
                bases.setdefault(asset_id, value)
        bases = {asset_id: base for asset_id, base in bases.items() if base != 0}

        return [
            AlignedPoint(
                timestamp=point.timestamp,
                label=point.label,
                values={
                    asset_id: (value - bases[asset_id]) / bases[asset_id] * 100
                    for asset_id, value in point.values.items()
                    if asset_id in bases
                },
            )
            for point in points
        ]

    # ── 日 K 聚合 ─────────────────────────────────────────

    def aggregate_daily_candles(
        self,
        prices: Sequence[Point],
        volumes: Sequence[Point] = (),
    ) -> List[Candle]:
        """
        按 UTC 自然日分桶：open 取首个价格、close 取最后一个价格（按输入顺序，
        不在桶内重新排序）、high/low 取极值、volume 为同下标成交量之和
        （缺失的成交量按 0 计）。输出按日期升序排列。
        """
        if not prices:
            return []

        df = pd.DataFrame(list(prices), columns=["ts", "price"])
        vol = [volumes[i][1] if i < len(volumes) else 0.0 for i in range(len(df))]
        df["volume"] = pd.to_numeric(pd.Series(vol), errors="coerce").fillna(0.0)
        df["day"] = pd.to_datetime(df["ts"], unit="ms", utc=True).dt.floor("D")

        grouped = df.groupby("day", sort=True).agg(
            open=("price", "first"),
            high=("price", "max"),
            low=("price", "min"),
            close=("price", "last"),
            volume=("volume", "sum"),
        )

        candles = []
        for day, row in grouped.iterrows():
            candles.append(Candle(
                timestamp=int(day.timestamp() * 1000),
                date=day.strftime("%Y-%m-%d"),
                open=float(row["open"]),
                high=float(row["high"]),
                low=float(row["low"]),
                close=float(row["close"]),
                volume=float(row["volume"]),
            ))
        return candles

    def candles_from_series(self, series: Optional[TimeSeries]) -> List[Candle]:
        if series is None or series.is_empty:
            return []
        return self.aggregate_daily_candles(series.prices, series.total_volumes)

    def to_frame(self, candles: Sequence[Candle]) -> pd.DataFrame:
        """Candle 列表转换为 DataFrame，供分析层使用"""
        if not candles:
            return pd.DataFrame()
        return pd.DataFrame([c.model_dump() for c in candles])


# ── 模块级别单例 ──────────────────────────────────────────
_processor: Optional[ProcessingLayer] = None


def get_processing_layer() -> ProcessingLayer:
    global _processor
    if _processor is None:
        _processor = ProcessingLayer()
    return _processor
