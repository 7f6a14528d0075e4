"""
异常体系

  ProviderError      行情提供商网络失败 / 非成功响应（触发缓存兜底）
  CacheMiss          缓存中不存在该键
  SerializationError 缓存内容无法解码（按 CacheMiss 处理）
  ValidationError    入参缺失或非法（在任何 I/O 之前抛出）
"""

from typing import Optional


class CryptoServiceError(Exception):
    """服务内所有自定义异常的基类"""


class ProviderError(CryptoServiceError):
    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        asset_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.asset_id = asset_id


class CacheMiss(CryptoServiceError):
    def __init__(self, kind: str, key: str):
        super().__init__(f"缓存未命中: {kind}:{key}")
        self.kind = kind
        self.key = key


class SerializationError(CryptoServiceError):
    pass


class ValidationError(CryptoServiceError):
    pass


def require_positive(name: str, value) -> int:
    """校验正整数参数"""
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"参数 {name} 必须是 >= 1 的整数，实际为 {value!r}")
    return value


def require_asset_id(asset_id) -> str:
    """校验币种 ID（非空字符串）"""
    if not isinstance(asset_id, str) or not asset_id.strip():
        raise ValidationError(f"参数 asset_id 不能为空，实际为 {asset_id!r}")
    return asset_id.strip()
