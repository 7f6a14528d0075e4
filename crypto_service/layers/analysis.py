"""
Layer 4 – 技术分析层
在日 K DataFrame 上计算 RSI / MACD / 布林带 / 50 日均线，并给出 buy / sell / neutral 信号，
另附基于现价的支撑位 / 阻力位与多空信号汇总。
指标仅用于展示示意，不构成交易建议。
"""

import logging
from typing import Any, Dict, List, Optional

import pandas as pd

logger = logging.getLogger(__name__)

Signal = str   # "buy" | "sell" | "neutral"

MACD_THRESHOLD = 0.5

_PRICE_LEVELS = (
    ("Support 1", 0.9, "support"),
    ("Support 2", 0.8, "support"),
    ("Resistance 1", 1.1, "resistance"),
    ("Resistance 2", 1.2, "resistance"),
)


class AnalysisLayer:
    """技术分析层：输入为处理层输出的日 K DataFrame（需包含 close 列）"""

    # ── 均线 ──────────────────────────────────────────────

    def add_ma(self, df: pd.DataFrame, periods: List[int] = None) -> pd.DataFrame:
        """添加简单移动平均线（数据不足一个周期时取已有样本的均值）"""
        if df.empty:
            return df
        df = df.copy()
        for p in (periods or [50]):
            df[f"MA{p}"] = df["close"].rolling(window=p, min_periods=1).mean()
        return df

    # ── RSI ───────────────────────────────────────────────

    def add_rsi(self, df: pd.DataFrame, period: int = 14) -> pd.DataFrame:
        if df.empty:
            return df
        df = df.copy()
        delta = df["close"].diff()
        gain = delta.clip(lower=0).rolling(window=period, min_periods=1).mean()
        loss = (-delta.clip(upper=0)).rolling(window=period, min_periods=1).mean()
        rsi = 100 - 100 / (1 + gain / loss)
        # 无下跌时 RSI 记为 100，完全无波动记为 50
        rsi = rsi.where(loss != 0, 100.0).where((loss != 0) | (gain != 0), 50.0)
        df[f"RSI{period}"] = rsi
        return df

    # ── MACD ──────────────────────────────────────────────

    def add_macd(
        self,
        df: pd.DataFrame,
        fast: int = 12,
        slow: int = 26,
        signal: int = 9,
    ) -> pd.DataFrame:
        """添加 MACD（DIF、DEA、柱）"""
        if df.empty:
            return df
        df = df.copy()
        ema_fast = df["close"].ewm(span=fast, adjust=False).mean()
        ema_slow = df["close"].ewm(span=slow, adjust=False).mean()
        df["MACD_DIF"] = ema_fast - ema_slow
        df["MACD_DEA"] = df["MACD_DIF"].ewm(span=signal, adjust=False).mean()
        df["MACD_HIST"] = df["MACD_DIF"] - df["MACD_DEA"]
        return df

    # ── 布林带 ────────────────────────────────────────────

    def add_bollinger(
        self, df: pd.DataFrame, period: int = 20, std_dev: float = 2.0
    ) -> pd.DataFrame:
        """添加布林带及 %B（收盘价在带内的相对位置）"""
        if df.empty:
            return df
        df = df.copy()
        mid = df["close"].rolling(window=period, min_periods=1).mean()
        std = df["close"].rolling(window=period, min_periods=1).std().fillna(0.0)
        df["BOLL_MID"] = mid
        df["BOLL_UPPER"] = mid + std_dev * std
        df["BOLL_LOWER"] = mid - std_dev * std
        width = (df["BOLL_UPPER"] - df["BOLL_LOWER"]).replace(0, float("nan"))
        df["BOLL_PCT_B"] = ((df["close"] - df["BOLL_LOWER"]) / width).fillna(0.5)
        return df

    # ── 信号 ──────────────────────────────────────────────

    @staticmethod
    def rsi_signal(value: float) -> Signal:
        if value > 70:
            return "sell"
        if value < 30:
            return "buy"
        return "neutral"

    @staticmethod
    def macd_signal(hist: float) -> Signal:
        if hist > MACD_THRESHOLD:
            return "buy"
        if hist < -MACD_THRESHOLD:
            return "sell"
        return "neutral"

    @staticmethod
    def bollinger_signal(pct_b: float) -> Signal:
        if pct_b > 0.8:
            return "sell"
        if pct_b < 0.2:
            return "buy"
        return "neutral"

    @staticmethod
    def ma_signal(ma: float, price: float) -> Signal:
        """均线在现价之上视为 sell，否则 buy"""
        return "sell" if ma > price else "buy"

    def summarize(self, df: pd.DataFrame) -> List[Dict[str, Any]]:
        """
        计算全部指标并返回最新一根 K 线上的摘要：

            [{"name": "RSI (14)", "value": 55.1, "signal": "neutral"}, ...]
        """
        if df.empty or "close" not in df.columns:
            return []
        df = self.add_ma(self.add_bollinger(self.add_macd(self.add_rsi(df))), [50])
        last = df.iloc[-1]

        def _value(col: str) -> Optional[float]:
            v = last.get(col)
            return None if pd.isna(v) else round(float(v), 4)

        rsi = _value("RSI14")
        hist = _value("MACD_HIST")
        pct_b = _value("BOLL_PCT_B")
        ma = _value("MA50")
        close = _value("close")
        return [
            {
                "name": "RSI (14)",
                "value": rsi,
                "signal": self.rsi_signal(rsi) if rsi is not None else "neutral",
            },
            {
                "name": "MACD",
                "value": hist,
                "signal": self.macd_signal(hist) if hist is not None else "neutral",
            },
            {
                "name": "Bollinger Bands",
                "value": pct_b,
                "signal": self.bollinger_signal(pct_b) if pct_b is not None else "neutral",
            },
            {
                "name": "MA (50)",
                "value": ma,
                "signal": self.ma_signal(ma, close) if ma is not None and close is not None else "neutral",
            },
        ]

    # ── 支撑位 / 阻力位 ───────────────────────────────────

    @staticmethod
    def price_levels(price: Optional[float]) -> List[Dict[str, Any]]:
        """以现价的固定比例给出两档支撑位与两档阻力位"""
        if price is None:
            return []
        return [
            {"name": name, "price": price * ratio, "type": level_type}
            for name, ratio, level_type in _PRICE_LEVELS
        ]

    # ── 信号汇总 ──────────────────────────────────────────

    @staticmethod
    def overall_signal(indicators: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        统计各信号数量；buy（或 sell）必须同时多于另外两类才成为总体信号，
        否则为 neutral。
        """
        counts = {s: sum(1 for i in indicators if i["signal"] == s) for s in ("buy", "sell", "neutral")}
        signal = "neutral"
        if counts["buy"] > counts["sell"] and counts["buy"] > counts["neutral"]:
            signal = "buy"
        elif counts["sell"] > counts["buy"] and counts["sell"] > counts["neutral"]:
            signal = "sell"
        return dict(counts, signal=signal)


# ── 模块级别单例 ──────────────────────────────────────────
_analysis: Optional[AnalysisLayer] = None


def get_analysis_layer() -> AnalysisLayer:
    global _analysis
    if _analysis is None:
        _analysis = AnalysisLayer()
    return _analysis
