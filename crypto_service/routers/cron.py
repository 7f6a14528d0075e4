"""
定时采集路由
GET /api/cron   - 触发一次批量采集（供外部 CRON 调用）
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from crypto_service.services.collector import collect_market_data

router = APIRouter(prefix="/api", tags=["定时采集"])


@router.get("/cron")
async def run_collection():
    """拉取市值前 20 的快照，并为前 5 名采集 30 天历史序列"""
    report = await collect_market_data()
    body = {
        "success": report.success,
        "message": "数据采集完成" if report.success else "数据采集失败",
        "timestamp": report.timestamp.isoformat(),
        "coinsCollected": report.coins_collected,
        "seriesCollected": report.series_collected,
    }
    if not report.success:
        body.update(error=report.error, failedAsset=report.failed_asset)
        return JSONResponse(status_code=500, content=body)
    return body
