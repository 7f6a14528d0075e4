"""
定时刷新任务
以固定间隔重复执行一个异步回调；启动与停止显式绑定到持有者的生命周期，
持有者关闭时必须调用 stop()（或使用 async with），避免后台任务泄漏。
"""

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional

from crypto_service.config import settings
from crypto_service.services.market_service import get_market_service

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], Awaitable[object]]


class PeriodicRefresh:
    """基于 asyncio 的重复任务"""

    def __init__(self, callback: RefreshCallback, interval: float, name: str = "refresh"):
        if interval <= 0:
            raise ValueError("刷新间隔必须大于 0")
        self._callback = callback
        self._interval = interval
        self._name = name
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self._name)
        logger.info(f"🔁 定时任务 {self._name} 已启动，间隔 {self._interval}s")

    async def stop(self) -> None:
        """取消并等待任务退出；可重复调用"""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info(f"定时任务 {self._name} 已停止")

    async def __aenter__(self) -> "PeriodicRefresh":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _loop(self) -> None:
        while True:
            try:
                await self._callback()
                self.runs += 1
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"定时任务 {self._name} 执行失败: {exc}", exc_info=True)
            await asyncio.sleep(self._interval)


def build_snapshot_refresh() -> PeriodicRefresh:
    """构建行情快照刷新任务（成功时顺带写入持久缓存）"""
    async def _refresh():
        result = await get_market_service().fetch_snapshot(settings.REFRESH_SNAPSHOT_LIMIT)
        logger.debug(f"快照刷新完成（来源：{result.source}）")

    return PeriodicRefresh(_refresh, settings.REFRESH_INTERVAL, name="snapshot-refresh")
