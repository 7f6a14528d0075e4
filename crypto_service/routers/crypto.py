"""
加密货币行情路由
GET /api/crypto                         - 市值前 N 的行情快照
GET /api/crypto/summary                 - 市场概览（总市值、市值占比、涨跌幅排行）
GET /api/crypto/historical              - 单币种历史序列
GET /api/crypto/comparison              - 多币种历史序列
GET /api/crypto/comparison/chart        - 多币种对齐 / 归一化对比图
GET /api/crypto/{coin_id}/candles       - 日 K 可视窗口
GET /api/crypto/{coin_id}/indicators    - 示意性技术指标
"""

from typing import Optional

from fastapi import APIRouter, Query

from crypto_service.layers.viewport import DEFAULT_RANGE, RANGE_WINDOWS
from crypto_service.models.response import ApiResponse
from crypto_service.services.chart_service import get_chart_service
from crypto_service.services.market_service import get_market_service

router = APIRouter(prefix="/api/crypto", tags=["加密货币行情"])


def _split_coins(coins: str) -> list:
    return [c.strip() for c in coins.split(",") if c.strip()]


@router.get("", response_model=ApiResponse)
async def list_crypto(limit: int = Query(default=10, ge=1, le=250)):
    """获取市值排名前 limit 的币种快照"""
    result = await get_market_service().fetch_snapshot(limit)
    return ApiResponse.from_result(result)


@router.get("/summary", response_model=ApiResponse)
async def get_market_summary(limit: int = Query(default=10, ge=1, le=250)):
    """市场概览：总市值、市值前 5 占比、24h 涨幅 / 跌幅前 3"""
    summary = await get_chart_service().market_summary(limit)
    return ApiResponse.ok(data=summary, source=summary["source"])


@router.get("/historical", response_model=ApiResponse)
async def get_historical(
    coin_id: str = Query(..., alias="coinId", description="CoinGecko 币种 ID，如 bitcoin"),
    days: int = Query(default=7, ge=1),
):
    """获取单币种历史序列；实时与缓存均不可用时 data 为 null"""
    result = await get_market_service().fetch_series(coin_id, days)
    return ApiResponse.from_result(result)


@router.get("/comparison", response_model=ApiResponse)
async def get_comparison(
    coins: str = Query(..., description="逗号分隔的币种 ID"),
    days: int = Query(default=7, ge=1),
):
    """获取多个币种的历史序列，单个币种失败时该币种为 null"""
    results = await get_market_service().fetch_comparison_results(_split_coins(coins), days)
    return ApiResponse.ok(
        data={
            coin: (r.data.model_dump() if r.data is not None else None)
            for coin, r in results.items()
        },
        source=",".join(f"{coin}:{r.source}" for coin, r in results.items()),
    )


@router.get("/comparison/chart", response_model=ApiResponse)
async def get_comparison_chart(
    coins: str = Query(..., description="逗号分隔的币种 ID"),
    days: int = Query(default=7, ge=1),
    mode: str = Query(default="absolute", description="absolute / normalized"),
):
    """多币种对比图数据（以样本最多的币种为参考时间轴对齐）"""
    chart = await get_chart_service().comparison_chart(_split_coins(coins), days, mode)
    return ApiResponse.ok(data=chart)


@router.get("/{coin_id}/candles", response_model=ApiResponse)
async def get_candles(
    coin_id: str,
    days: int = Query(default=30, ge=1),
    range_name: str = Query(
        default=DEFAULT_RANGE,
        alias="range",
        description=f"可视范围: {', '.join(RANGE_WINDOWS)}",
    ),
    index: int = Query(default=0, ge=0),
    direction: Optional[str] = Query(default=None, description="left / right"),
):
    """日 K 数据及当前可视窗口"""
    chart = await get_chart_service().candle_chart(coin_id, days, range_name, index, direction)
    return ApiResponse.ok(data=chart, source=chart["source"])


@router.get("/{coin_id}/indicators", response_model=ApiResponse)
async def get_indicators(coin_id: str, days: int = Query(default=30, ge=1)):
    """RSI / MACD / 布林带（仅供展示示意）"""
    result = await get_chart_service().indicators(coin_id, days)
    return ApiResponse.ok(data=result, source=result["source"])
