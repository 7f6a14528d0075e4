"""
批量采集任务
拉取市值前 N 的行情快照，再为排名前几位的币种依次拉取 30 天历史序列。
数据经获取层直接写入持久缓存，供行情接口故障时兜底。

运行方式:
    python -m crypto_service.services.collector
    GET /api/cron
"""

import asyncio
import logging
from typing import Optional

from crypto_service.config import settings
from crypto_service.db import close_connections, init_mongodb, init_redis
from crypto_service.exceptions import ProviderError
from crypto_service.layers.acquisition import AcquisitionLayer, close_acquisition_layer, get_acquisition_layer
from crypto_service.models.market import CollectionReport

logger = logging.getLogger(__name__)


async def collect_market_data(
    acquisition: Optional[AcquisitionLayer] = None,
    continue_on_error: Optional[bool] = None,
) -> CollectionReport:
    """
    执行一次采集

    Args:
        acquisition: 数据获取层，默认使用模块单例
        continue_on_error: 单个币种失败后是否继续；默认取 COLLECT_CONTINUE_ON_ERROR
                           （默认 False：遇到第一个失败即中止整个任务）
    """
    acq = acquisition or get_acquisition_layer()
    if continue_on_error is None:
        continue_on_error = settings.COLLECT_CONTINUE_ON_ERROR

    logger.info("🚀 开始采集行情数据...")
    try:
        snapshots = await acq.fetch_snapshot(settings.COLLECT_SNAPSHOT_LIMIT)
    except ProviderError as exc:
        logger.error(f"❌ 行情快照采集失败: {exc}")
        return CollectionReport(success=False, error=str(exc))
    logger.info(f"已采集 {len(snapshots)} 个币种的行情快照")

    top = sorted(snapshots, key=lambda s: s.market_cap_rank)[:settings.COLLECT_SERIES_TOP_N]
    collected = 0
    first_failure = None
    for snapshot in top:
        logger.info(f"正在采集 {snapshot.name} 的历史数据...")
        try:
            await acq.fetch_series(snapshot.id, settings.COLLECT_SERIES_DAYS)
            collected += 1
        except ProviderError as exc:
            logger.error(f"❌ {snapshot.name} 历史数据采集失败: {exc}")
            if not continue_on_error:
                return CollectionReport(
                    success=False,
                    coins_collected=len(snapshots),
                    series_collected=collected,
                    failed_asset=snapshot.id,
                    error=str(exc),
                )
            if first_failure is None:
                first_failure = (snapshot.id, str(exc))

    if first_failure is not None:
        logger.warning(f"⚠️ 采集完成，{len(top) - collected} 个币种历史数据失败")
        return CollectionReport(
            success=False,
            coins_collected=len(snapshots),
            series_collected=collected,
            failed_asset=first_failure[0],
            error=first_failure[1],
        )

    logger.info(f"✅ 采集完成：快照 {len(snapshots)} 个，历史序列 {collected} 个")
    return CollectionReport(
        success=True,
        coins_collected=len(snapshots),
        series_collected=collected,
    )


async def _main() -> int:
    await init_mongodb()
    await init_redis()
    try:
        report = await collect_market_data()
    finally:
        await close_acquisition_layer()
        await close_connections()
    return 0 if report.success else 1


if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    raise SystemExit(asyncio.run(_main()))
