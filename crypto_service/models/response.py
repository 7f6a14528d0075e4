"""统一 API 响应模型"""

from typing import Any, Optional
from pydantic import BaseModel

from crypto_service.models.market import FetchResult


class ApiResponse(BaseModel):
    """标准 API 响应封装；source 标记数据来自实时接口、缓存兜底还是为空"""
    success: bool = True
    data: Optional[Any] = None
    message: str = ""
    error: Optional[str] = None
    source: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "success", source: str = None) -> "ApiResponse":
        return cls(success=True, data=data, message=message, source=source)

    @classmethod
    def fail(cls, error: str, message: str = "failed") -> "ApiResponse":
        return cls(success=False, error=error, message=message)

    @classmethod
    def from_result(cls, result: FetchResult) -> "ApiResponse":
        """把编排层结果转换为响应；缓存兜底时在 message 中附带失败原因"""
        data = result.data
        if isinstance(data, list):
            data = [item.model_dump() for item in data]
        elif data is not None:
            data = data.model_dump()
        message = "success" if result.source == "live" else (result.cause or result.source)
        return cls(success=True, data=data, message=message, source=result.source)
