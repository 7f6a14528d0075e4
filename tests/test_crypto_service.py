"""
行情数据服务单元测试（同步部分）

覆盖范围：
  - 配置模块（服务发现、环境变量解析）
  - 数据处理层（最近邻对齐、百分比归一化、日 K 聚合）
  - 日 K 可视窗口（索引钳制、滑动步长、切换范围）
  - 技术分析层（示意性指标与信号）
  - API 响应模型
  - FastAPI 路由（通过 TestClient 测试，无需真实数据库与网络）
"""

import os
import sys
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pandas as pd
import pytest
from fastapi.testclient import TestClient

# 确保项目根目录在 sys.path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from crypto_service.exceptions import ValidationError
from crypto_service.models.market import AlignedPoint, AssetSnapshot, Candle, FetchResult, TimeSeries

HOUR_MS = 3600 * 1000
JAN_1_2024_MS = int(datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp() * 1000)


# ─────────────────────────────────────────────────────────
# 辅助函数
# ─────────────────────────────────────────────────────────

def _hourly_series(n: int, start_ms: int = JAN_1_2024_MS, base: float = 100.0) -> TimeSeries:
    prices = [(start_ms + i * HOUR_MS, base + (i % 7) - i * 0.1) for i in range(n)]
    volumes = [(start_ms + i * HOUR_MS, float(i)) for i in range(n)]
    caps = [(start_ms + i * HOUR_MS, p * 1000) for i, (_, p) in enumerate(prices)]
    return TimeSeries(prices=prices, market_caps=caps, total_volumes=volumes)


def _candles(n: int) -> list:
    return [
        Candle(
            timestamp=JAN_1_2024_MS + i * 24 * HOUR_MS,
            date=f"d{i}",
            open=10.0, high=12.0, low=9.0, close=11.0, volume=1.0,
        )
        for i in range(n)
    ]


def _snapshot(asset_id: str, rank: int, name: str = None) -> AssetSnapshot:
    return AssetSnapshot(
        id=asset_id,
        symbol=asset_id[:3],
        name=name or asset_id.title(),
        current_price=100.0 / rank,
        market_cap=1e9 / rank,
        market_cap_rank=rank,
    )


# ─────────────────────────────────────────────────────────
# 1. 配置模块测试
# ─────────────────────────────────────────────────────────

class TestConfig:
    def test_defaults(self):
        from crypto_service.config import CryptoServiceSettings
        s = CryptoServiceSettings()
        assert s.COINGECKO_BASE_URL.startswith("https://")
        assert s.COLLECT_SNAPSHOT_LIMIT == 20
        assert s.COLLECT_SERIES_TOP_N == 5

    def test_mongo_uri_with_auth(self):
        from crypto_service.config import CryptoServiceSettings
        s = CryptoServiceSettings(
            MONGODB_USERNAME="user",
            MONGODB_PASSWORD="pass",
            MONGODB_HOST="db-host",
            MONGODB_PORT=27017,
            MONGODB_DATABASE="mydb",
        )
        assert "user:pass@db-host:27017/mydb" in s.MONGO_URI

    def test_redis_url_with_auth(self):
        from crypto_service.config import CryptoServiceSettings
        s = CryptoServiceSettings(REDIS_PASSWORD="secret", REDIS_HOST="cache", REDIS_PORT=6379)
        assert ":secret@cache:6379" in s.REDIS_URL

    def test_docker_service_discovery(self):
        """Docker 环境下默认使用服务名而非 localhost"""
        with patch.dict(os.environ, {"DOCKER_CONTAINER": "true"}, clear=False):
            from crypto_service import config as cfg_module
            assert cfg_module._default_mongo_host() == "mongodb"
            assert cfg_module._default_redis_host() == "redis"

    def test_env_override(self):
        from crypto_service.config import CryptoServiceSettings
        with patch.dict(os.environ, {"COLLECT_CONTINUE_ON_ERROR": "true", "VS_CURRENCY": "eur"}):
            s = CryptoServiceSettings()
        assert s.COLLECT_CONTINUE_ON_ERROR is True
        assert s.VS_CURRENCY == "eur"


# ─────────────────────────────────────────────────────────
# 2. 对齐测试
# ─────────────────────────────────────────────────────────

class TestAlignment:
    def setup_method(self):
        from crypto_service.layers.processing import ProcessingLayer
        self.proc = ProcessingLayer()

    def test_nearest_value(self):
        from crypto_service.layers.processing import find_nearest_value
        points = [(0, 10.0), (10, 20.0), (20, 30.0)]
        assert find_nearest_value(points, 14) == 20.0
        assert find_nearest_value(points, 4) == 10.0

    def test_nearest_value_tie_keeps_first_scanned(self):
        from crypto_service.layers.processing import find_nearest_value
        assert find_nearest_value([(0, 10.0), (10, 20.0)], 5) == 10.0

    def test_nearest_value_empty(self):
        from crypto_service.layers.processing import find_nearest_value
        assert find_nearest_value([], 5) is None

    def test_align_series_with_itself(self):
        s = _hourly_series(12)
        aligned = self.proc.align({"a": s, "b": s})
        assert [p.timestamp for p in aligned] == [ts for ts, _ in s.prices]
        for point, (_, value) in zip(aligned, s.prices):
            assert point.values == {"a": value, "b": value}

    def test_reference_is_longest_series(self):
        short = TimeSeries(prices=[(0, 1.0), (20, 2.0)])
        long = TimeSeries(prices=[(0, 5.0), (10, 6.0), (20, 7.0)])
        aligned = self.proc.align({"short": short, "long": long})
        assert [p.timestamp for p in aligned] == [0, 10, 20]
        # t=10 与 0 和 20 距离相同，取先扫描到的 (0, 1.0)
        assert [p.values["short"] for p in aligned] == [1.0, 1.0, 2.0]

    def test_reference_tie_takes_first_in_input_order(self):
        a = TimeSeries(prices=[(0, 1.0), (100, 2.0)])
        b = TimeSeries(prices=[(40, 3.0), (60, 4.0)])
        aligned = self.proc.align({"a": a, "b": b})
        assert [p.timestamp for p in aligned] == [0, 100]

    def test_empty_asset_omitted(self):
        aligned = self.proc.align({"bitcoin": _hourly_series(5), "ethereum": TimeSeries()})
        assert aligned
        assert all(set(p.values) == {"bitcoin"} for p in aligned)

    def test_none_asset_omitted(self):
        aligned = self.proc.align({"bitcoin": _hourly_series(3), "ethereum": None})
        assert all("ethereum" not in p.values for p in aligned)

    def test_all_empty(self):
        assert self.proc.align({"a": TimeSeries(), "b": None}) == []
        assert self.proc.align({}) == []

    def test_align_other_column(self):
        s = _hourly_series(4)
        aligned = self.proc.align({"a": s}, column="total_volumes")
        assert [p.values["a"] for p in aligned] == [0.0, 1.0, 2.0, 3.0]

    def test_label_is_utc(self):
        aligned = self.proc.align({"a": TimeSeries(prices=[(JAN_1_2024_MS, 1.0)])})
        assert aligned[0].label == "2024-01-01 00:00"


# ─────────────────────────────────────────────────────────
# 3. 归一化测试
# ─────────────────────────────────────────────────────────

class TestNormalization:
    def setup_method(self):
        from crypto_service.layers.processing import ProcessingLayer
        self.proc = ProcessingLayer()

    @staticmethod
    def _points(*values_list):
        return [
            AlignedPoint(timestamp=i, label=str(i), values=values)
            for i, values in enumerate(values_list)
        ]

    def test_percent_change_from_first(self):
        normalized = self.proc.normalize(self._points({"a": 100.0}, {"a": 150.0}, {"a": 50.0}))
        assert [p.values["a"] for p in normalized] == [0.0, 50.0, -50.0]

    def test_base_is_first_appearance(self):
        normalized = self.proc.normalize(self._points(
            {"a": 100.0},
            {"a": 110.0, "b": 200.0},
            {"a": 120.0, "b": 300.0},
        ))
        assert "b" not in normalized[0].values
        assert normalized[1].values["b"] == 0.0
        assert normalized[2].values["b"] == 50.0
        assert normalized[2].values["a"] == pytest.approx(20.0)

    def test_zero_base_omitted(self):
        normalized = self.proc.normalize(self._points({"a": 0.0, "b": 10.0}, {"a": 5.0, "b": 20.0}))
        assert all("a" not in p.values for p in normalized)
        assert normalized[1].values["b"] == 100.0

    def test_keeps_timestamps(self):
        points = self._points({"a": 1.0}, {"a": 2.0})
        assert [p.timestamp for p in self.proc.normalize(points)] == [0, 1]

    def test_empty(self):
        assert self.proc.normalize([]) == []


# ─────────────────────────────────────────────────────────
# 4. 日 K 聚合测试
# ─────────────────────────────────────────────────────────

class TestCandleAggregation:
    def setup_method(self):
        from crypto_service.layers.processing import ProcessingLayer
        self.proc = ProcessingLayer()

    def test_25_hourly_samples_make_two_candles(self):
        s = _hourly_series(25)
        candles = self.proc.aggregate_daily_candles(s.prices, s.total_volumes)
        assert len(candles) == 2
        assert [c.date for c in candles] == ["2024-01-01", "2024-01-02"]
        for c in candles:
            assert c.low <= c.open <= c.high
            assert c.low <= c.close <= c.high

    def test_ohlcv_values(self):
        s = _hourly_series(25)
        first, second = self.proc.aggregate_daily_candles(s.prices, s.total_volumes)
        day_one = [p for _, p in s.prices[:24]]
        assert first.open == day_one[0]
        assert first.close == day_one[-1]
        assert first.high == max(day_one)
        assert first.low == min(day_one)
        assert first.volume == sum(range(24))
        assert second.open == second.close == s.prices[24][1]
        assert second.volume == 24.0

    def test_bucket_start_timestamp(self):
        s = _hourly_series(3, start_ms=JAN_1_2024_MS + 5 * HOUR_MS)
        (candle,) = self.proc.aggregate_daily_candles(s.prices, s.total_volumes)
        assert candle.timestamp == JAN_1_2024_MS

    def test_close_follows_input_order(self):
        prices = [(JAN_1_2024_MS, 5.0), (JAN_1_2024_MS + HOUR_MS, 9.0), (JAN_1_2024_MS + 2 * HOUR_MS, 7.0)]
        (candle,) = self.proc.aggregate_daily_candles(prices, [])
        assert (candle.open, candle.high, candle.low, candle.close) == (5.0, 9.0, 5.0, 7.0)

    def test_missing_volume_counts_as_zero(self):
        s = _hourly_series(4)
        (candle,) = self.proc.aggregate_daily_candles(s.prices, s.total_volumes[:2])
        assert candle.volume == 1.0

    def test_empty(self):
        assert self.proc.aggregate_daily_candles([], []) == []
        assert self.proc.candles_from_series(None) == []

    def test_candle_rejects_invalid_bounds(self):
        with pytest.raises(ValueError):
            Candle(timestamp=0, date="2024-01-01", open=10.0, high=9.0, low=8.0, close=8.5)


# ─────────────────────────────────────────────────────────
# 5. 可视窗口测试
# ─────────────────────────────────────────────────────────

class TestViewport:
    def test_window_clamped_to_candle_count(self):
        from crypto_service.layers import viewport
        state = viewport.view(_candles(10), 30, 0)
        assert state.window == 10 and state.max_index == 0 and len(state.candles) == 10

    def test_slide_left_at_max_index_is_noop(self):
        from crypto_service.layers import viewport
        candles = _candles(10)
        state = viewport.slide(candles, 7, 3, "left")
        assert state.index == 3 == state.max_index
        assert state.index <= len(candles) - state.window

    def test_slide_right_at_zero_is_noop(self):
        from crypto_service.layers import viewport
        assert viewport.slide(_candles(10), 7, 0, "right").index == 0

    def test_step_is_fifth_of_window(self):
        from crypto_service.layers import viewport
        candles = _candles(100)
        assert viewport.slide(candles, 30, 0, "left").index == 6
        assert viewport.slide(candles, 30, 10, "right").index == 4
        assert viewport.slide(candles, 7, 0, "left").index == 1

    def test_changing_window_reclamps_index(self):
        from crypto_service.layers import viewport
        candles = _candles(40)
        assert viewport.view(candles, 14, 20).index == 20
        assert viewport.view(candles, 30, 20).index == 10

    def test_visible_slice(self):
        from crypto_service.layers import viewport
        candles = _candles(20)
        state = viewport.view(candles, 7, 5)
        assert state.candles == candles[5:12]

    def test_empty_candles(self):
        from crypto_service.layers import viewport
        state = viewport.slide([], 7, 4, "left")
        assert state == viewport.ViewportState(index=0, window=0, max_index=0, candles=[])

    def test_invalid_direction_and_range(self):
        from crypto_service.layers import viewport
        with pytest.raises(ValidationError):
            viewport.slide(_candles(5), 7, 0, "up")
        with pytest.raises(ValidationError):
            viewport.window_for_range("2w")

    def test_range_windows(self):
        from crypto_service.layers import viewport
        assert [viewport.window_for_range(r) for r in ("7d", "14d", "30d", "90d", "180d", "1y")] == [
            7, 14, 30, 90, 180, 365,
        ]


# ─────────────────────────────────────────────────────────
# 6. 技术分析层测试
# ─────────────────────────────────────────────────────────

class TestAnalysisLayer:
    def setup_method(self):
        from crypto_service.layers.analysis import AnalysisLayer
        from crypto_service.layers.processing import ProcessingLayer
        self.analysis = AnalysisLayer()
        proc = ProcessingLayer()
        s = _hourly_series(24 * 40)
        self.df = proc.to_frame(proc.aggregate_daily_candles(s.prices, s.total_volumes))

    def test_summary_shape(self):
        summary = self.analysis.summarize(self.df)
        assert [i["name"] for i in summary] == ["RSI (14)", "MACD", "Bollinger Bands", "MA (50)"]
        assert all(i["signal"] in ("buy", "sell", "neutral") for i in summary)

    def test_ma50_signal_against_price(self):
        # 收盘价单调上涨时均线低于现价
        df = pd.DataFrame({"close": [float(i) for i in range(1, 61)]})
        ma = self.analysis.summarize(df)[3]
        assert ma["value"] == pytest.approx(sum(range(11, 61)) / 50)
        assert ma["signal"] == "buy"
        assert self.analysis.ma_signal(110.0, 100.0) == "sell"

    def test_rsi_bounds(self):
        df = self.analysis.add_rsi(self.df)
        valid = df["RSI14"].dropna()
        assert (valid >= 0).all() and (valid <= 100).all()

    def test_rsi_rising_prices(self):
        df = pd.DataFrame({"close": [float(i) for i in range(1, 30)]})
        assert self.analysis.add_rsi(df)["RSI14"].iloc[-1] == 100.0

    def test_signals(self):
        assert self.analysis.rsi_signal(75) == "sell"
        assert self.analysis.rsi_signal(20) == "buy"
        assert self.analysis.bollinger_signal(0.5) == "neutral"

    def test_macd_thresholds(self):
        assert self.analysis.macd_signal(0.3) == "neutral"
        assert self.analysis.macd_signal(-0.3) == "neutral"
        assert self.analysis.macd_signal(0.51) == "buy"
        assert self.analysis.macd_signal(-0.51) == "sell"

    def test_price_levels(self):
        levels = self.analysis.price_levels(100.0)
        assert [(l["name"], l["type"]) for l in levels] == [
            ("Support 1", "support"),
            ("Support 2", "support"),
            ("Resistance 1", "resistance"),
            ("Resistance 2", "resistance"),
        ]
        assert [l["price"] for l in levels] == pytest.approx([90.0, 80.0, 110.0, 120.0])
        assert self.analysis.price_levels(None) == []

    def test_overall_signal(self):
        def _ind(*signals):
            return [{"name": str(i), "value": 0.0, "signal": s} for i, s in enumerate(signals)]

        assert self.analysis.overall_signal(_ind("buy", "buy", "sell", "neutral"))["signal"] == "buy"
        assert self.analysis.overall_signal(_ind("sell", "sell", "sell", "buy"))["signal"] == "sell"
        # buy 与 neutral 持平时不构成多数
        tally = self.analysis.overall_signal(_ind("buy", "buy", "neutral", "neutral"))
        assert tally == {"buy": 2, "sell": 0, "neutral": 2, "signal": "neutral"}

    def test_empty_df_safe(self):
        assert self.analysis.summarize(pd.DataFrame()) == []


# ─────────────────────────────────────────────────────────
# 7. API 响应模型测试
# ─────────────────────────────────────────────────────────

class TestApiResponse:
    def test_from_cache_result(self):
        from crypto_service.models.response import ApiResponse
        r = ApiResponse.from_result(
            FetchResult(data=_hourly_series(2), source="cache", cause="provider: down")
        )
        assert r.success and r.source == "cache"
        assert r.message == "provider: down"
        assert len(r.data["prices"]) == 2

    def test_from_empty_result(self):
        from crypto_service.models.response import ApiResponse
        r = ApiResponse.from_result(FetchResult(data=None, source="empty", cause="no data"))
        assert r.success and r.data is None and r.source == "empty"

    def test_fail(self):
        from crypto_service.models.response import ApiResponse
        r = ApiResponse.fail(error="oops")
        assert not r.success and r.error == "oops"


# ─────────────────────────────────────────────────────────
# 8. HTTP 路由测试（TestClient）
# ─────────────────────────────────────────────────────────

@pytest.fixture(scope="module")
def client():
    refresher = MagicMock()
    refresher.start = AsyncMock()
    refresher.stop = AsyncMock()
    with patch("crypto_service.main.init_mongodb", new_callable=AsyncMock, return_value=False), \
         patch("crypto_service.main.init_redis", new_callable=AsyncMock, return_value=False), \
         patch("crypto_service.main.close_connections", new_callable=AsyncMock), \
         patch("crypto_service.main.build_snapshot_refresh", return_value=refresher), \
         patch("crypto_service.routers.health.check_health", new_callable=AsyncMock, return_value={
             "mongodb": {"status": "disabled"},
             "redis": {"status": "disabled"},
         }):
        from crypto_service.main import app
        with TestClient(app) as c:
            yield c


def _market_mock(**methods) -> MagicMock:
    market = MagicMock()
    for name, value in methods.items():
        setattr(market, name, AsyncMock(return_value=value))
    return market


class TestHealthRoutes:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["data"]["status"] == "degraded"

    def test_healthz(self, client):
        assert client.get("/healthz").json()["status"] == "ok"

    def test_root(self, client):
        body = client.get("/").json()
        assert "version" in body and "docs" in body


class TestCryptoRoutes:
    def test_snapshot_from_cache(self, client):
        market = _market_mock(fetch_snapshot=FetchResult(
            data=[_snapshot("bitcoin", 1)], source="cache", cause="provider: down",
        ))
        with patch("crypto_service.routers.crypto.get_market_service", return_value=market):
            r = client.get("/api/crypto", params={"limit": 5})
        body = r.json()
        assert r.status_code == 200
        assert body["source"] == "cache"
        assert body["data"][0]["id"] == "bitcoin"
        market.fetch_snapshot.assert_awaited_once_with(5)

    def test_historical_requires_coin_id(self, client):
        assert client.get("/api/crypto/historical").status_code == 422

    def test_historical_blank_coin_id_is_validation_error(self, client):
        r = client.get("/api/crypto/historical", params={"coinId": " ", "days": 7})
        assert r.status_code == 400
        assert r.json()["success"] is False

    def test_historical_empty_result(self, client):
        market = _market_mock(fetch_series=FetchResult(data=None, source="empty", cause="x"))
        with patch("crypto_service.routers.crypto.get_market_service", return_value=market):
            body = client.get("/api/crypto/historical", params={"coinId": "bitcoin"}).json()
        assert body["data"] is None and body["source"] == "empty"

    def test_comparison_null_for_missing_asset(self, client):
        market = _market_mock(fetch_comparison_results={
            "bitcoin": FetchResult(data=_hourly_series(3), source="live"),
            "ethereum": FetchResult(data=None, source="empty"),
        })
        with patch("crypto_service.routers.crypto.get_market_service", return_value=market):
            body = client.get("/api/crypto/comparison", params={"coins": "bitcoin,ethereum"}).json()
        assert body["data"]["ethereum"] is None
        assert len(body["data"]["bitcoin"]["prices"]) == 3

    def test_comparison_chart_invalid_mode(self, client):
        r = client.get("/api/crypto/comparison/chart", params={"coins": "bitcoin", "mode": "log"})
        assert r.status_code == 400

    def test_comparison_chart_normalized(self, client, tmp_path):
        from crypto_service.layers.cache import CacheLayer
        from crypto_service.services.chart_service import ChartService
        market = _market_mock(
            fetch_comparison_results={
                "bitcoin": FetchResult(data=TimeSeries(prices=[(0, 100.0), (10, 150.0)]), source="live"),
                "ethereum": FetchResult(data=None, source="empty"),
            },
            fetch_snapshot=FetchResult(data=[_snapshot("bitcoin", 1, "Bitcoin")], source="live"),
        )
        with patch("crypto_service.routers.crypto.get_chart_service",
                   return_value=ChartService(market=market, cache=CacheLayer(str(tmp_path)))):
            body = client.get(
                "/api/crypto/comparison/chart",
                params={"coins": "bitcoin,ethereum", "mode": "normalized"},
            ).json()
        points = body["data"]["points"]
        assert [p["values"] for p in points] == [{"bitcoin": 0.0}, {"bitcoin": 50.0}]
        assert body["data"]["sources"] == {"bitcoin": "live", "ethereum": "empty"}
        assert body["data"]["names"] == {"bitcoin": "Bitcoin"}

    def test_candles_index_clamped(self, client):
        from crypto_service.services.chart_service import ChartService
        market = _market_mock(fetch_series=FetchResult(data=_hourly_series(24 * 40), source="live"))
        with patch("crypto_service.routers.crypto.get_chart_service",
                   return_value=ChartService(market=market)):
            body = client.get(
                "/api/crypto/bitcoin/candles", params={"range": "7d", "index": 100}
            ).json()
        data = body["data"]
        assert data["total"] == 40
        assert data["index"] == data["max_index"] == 33
        assert len(data["candles"]) == 7

    def test_candles_unknown_range(self, client):
        from crypto_service.services.chart_service import ChartService
        market = _market_mock(fetch_series=FetchResult(data=None, source="empty"))
        with patch("crypto_service.routers.crypto.get_chart_service",
                   return_value=ChartService(market=market)):
            r = client.get("/api/crypto/bitcoin/candles", params={"range": "2w"})
        assert r.status_code == 400

    def test_indicators(self, client):
        from crypto_service.services.chart_service import ChartService
        market = _market_mock(fetch_series=FetchResult(data=_hourly_series(24 * 30), source="cache"))
        with patch("crypto_service.routers.crypto.get_chart_service",
                   return_value=ChartService(market=market)):
            body = client.get("/api/crypto/bitcoin/indicators").json()
        data = body["data"]
        last_close = 100.0 + (719 % 7) - 719 * 0.1
        assert body["source"] == "cache"
        assert len(data["indicators"]) == 4
        assert data["levels"][0]["price"] == pytest.approx(last_close * 0.9)
        assert data["overall"]["signal"] in ("buy", "sell", "neutral")
        assert sum(data["overall"][s] for s in ("buy", "sell", "neutral")) == 4

    def test_market_summary(self, client, tmp_path):
        from crypto_service.layers.cache import CacheLayer
        from crypto_service.services.chart_service import ChartService
        rows = [
            AssetSnapshot(id=f"coin{i}", symbol=f"c{i}", name=f"Coin {i}", market_cap=float(100 - i * 10),
                          market_cap_rank=i, price_change_percentage_24h=change)
            for i, change in enumerate([5.0, -2.0, 12.0, None, -8.0, 0.5, 3.0], start=1)
        ]
        market = _market_mock(fetch_snapshot=FetchResult(data=rows, source="live"))
        with patch("crypto_service.routers.crypto.get_chart_service",
                   return_value=ChartService(market=market, cache=CacheLayer(str(tmp_path)))):
            body = client.get("/api/crypto/summary", params={"limit": 7}).json()
        data = body["data"]
        market.fetch_snapshot.assert_awaited_once_with(7)
        assert data["total_market_cap"] == sum(100 - i * 10 for i in range(1, 8))
        assert [c["id"] for c in data["market_cap_breakdown"]] == ["coin1", "coin2", "coin3", "coin4", "coin5"]
        assert data["market_cap_breakdown"][0]["share_pct"] == pytest.approx(90 / 420 * 100)
        assert [g["id"] for g in data["top_gainers"]] == ["coin3", "coin1", "coin7"]
        assert [g["id"] for g in data["top_losers"]] == ["coin5", "coin2", "coin6"]
        assert body["source"] == "live"

    def test_market_summary_empty(self, client):
        from crypto_service.services.chart_service import ChartService
        market = _market_mock(fetch_snapshot=FetchResult(data=[], source="empty"))
        with patch("crypto_service.routers.crypto.get_chart_service",
                   return_value=ChartService(market=market)):
            data = client.get("/api/crypto/summary").json()["data"]
        assert data["total_market_cap"] == 0
        assert data["market_cap_breakdown"] == [] and data["top_gainers"] == []


class TestCronRoute:
    def test_success(self, client):
        from crypto_service.models.market import CollectionReport
        report = CollectionReport(success=True, coins_collected=20, series_collected=5)
        with patch("crypto_service.routers.cron.collect_market_data",
                   new_callable=AsyncMock, return_value=report):
            body = client.get("/api/cron").json()
        assert body["success"] is True and body["coinsCollected"] == 20

    def test_failure(self, client):
        from crypto_service.models.market import CollectionReport
        report = CollectionReport(success=False, error="HTTP 429", failed_asset="ethereum")
        with patch("crypto_service.routers.cron.collect_market_data",
                   new_callable=AsyncMock, return_value=report):
            r = client.get("/api/cron")
        assert r.status_code == 500 and r.json()["failedAsset"] == "ethereum"
