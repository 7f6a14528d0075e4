"""
日 K 可视窗口
纯函数：根据 (全部 K 线, 窗口长度, 当前索引, 方向) 计算新的可视切片，不持有状态。

  window    = min(窗口长度, K 线总数)
  max_index = max(0, 总数 - window)
  step      = max(1, window // 5)        每次滑动约为可视范围的 20%
  left      → 向更早的方向移动（索引 + step）
  right     → 向更晚的方向移动（索引 - step）
"""

from typing import List, Literal, NamedTuple, Sequence

from crypto_service.exceptions import ValidationError
from crypto_service.models.market import Candle

Direction = Literal["left", "right"]

RANGE_WINDOWS = {
    "7d": 7,
    "14d": 14,
    "30d": 30,
    "90d": 90,
    "180d": 180,
    "1y": 365,
}
DEFAULT_RANGE = "30d"


class ViewportState(NamedTuple):
    index: int
    window: int
    max_index: int
    candles: List[Candle]


def window_for_range(range_name: str) -> int:
    try:
        return RANGE_WINDOWS[range_name]
    except KeyError:
        raise ValidationError(
            f"不支持的时间范围: {range_name!r}，可选: {', '.join(RANGE_WINDOWS)}"
        ) from None


def clamp_window(window_length: int, total: int) -> int:
    return max(0, min(window_length, total))


def max_index(total: int, window: int) -> int:
    return max(0, total - window)


def slide_step(window: int) -> int:
    return max(1, window // 5)


def clamp_index(index: int, total: int, window: int) -> int:
    return min(max(0, index), max_index(total, window))


def view(candles: Sequence[Candle], window_length: int, index: int) -> ViewportState:
    """按窗口长度重新钳制索引并返回可视切片；切换窗口时不会把索引重置为 0"""
    total = len(candles)
    window = clamp_window(window_length, total)
    safe_index = clamp_index(index, total, window)
    return ViewportState(
        index=safe_index,
        window=window,
        max_index=max_index(total, window),
        candles=list(candles[safe_index:safe_index + window]),
    )


def slide(
    candles: Sequence[Candle],
    window_length: int,
    index: int,
    direction: Direction,
) -> ViewportState:
    """向指定方向滑动一步，结果钳制在 [0, max_index]"""
    total = len(candles)
    window = clamp_window(window_length, total)
    step = slide_step(window)
    if direction == "left":
        moved = index + step
    elif direction == "right":
        moved = index - step
    else:
        raise ValidationError(f"滑动方向必须是 left 或 right，实际为 {direction!r}")
    return view(candles, window_length, moved)
