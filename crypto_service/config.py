"""
行情数据服务配置模块
支持从环境变量读取配置，自动检测 Docker 容器环境并启用服务发现
"""

import os
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _is_docker() -> bool:
    """检测当前是否运行在 Docker 容器内"""
    return (
        os.path.exists("/.dockerenv")
        or os.environ.get("DOCKER_CONTAINER", "").lower() in ("1", "true", "yes")
    )


def _default_mongo_host() -> str:
    """Docker 环境使用服务名 'mongodb'，本地使用 'localhost'"""
    return "mongodb" if _is_docker() else "localhost"


def _default_redis_host() -> str:
    """Docker 环境使用服务名 'redis'，本地使用 'localhost'"""
    return "redis" if _is_docker() else "localhost"


class CryptoServiceSettings(BaseSettings):
    """行情数据服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8002)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── MongoDB 配置（支持服务发现） ───────────────────────
    MONGODB_HOST: str = Field(default_factory=_default_mongo_host)
    MONGODB_PORT: int = Field(default=27017)
    MONGODB_USERNAME: str = Field(default="")
    MONGODB_PASSWORD: str = Field(default="")
    MONGODB_DATABASE: str = Field(default="crypto_market")
    MONGODB_AUTH_SOURCE: str = Field(default="admin")
    MONGODB_ENABLED: bool = Field(default=True)
    MONGO_MAX_CONNECTIONS: int = Field(default=50)
    MONGO_MIN_CONNECTIONS: int = Field(default=5)
    MONGO_CONNECT_TIMEOUT_MS: int = Field(default=30000)
    MONGO_SOCKET_TIMEOUT_MS: int = Field(default=60000)
    MONGO_SERVER_SELECTION_TIMEOUT_MS: int = Field(default=5000)

    @property
    def MONGO_URI(self) -> str:
        if self.MONGODB_USERNAME and self.MONGODB_PASSWORD:
            return (
                f"mongodb://{self.MONGODB_USERNAME}:{self.MONGODB_PASSWORD}"
                f"@{self.MONGODB_HOST}:{self.MONGODB_PORT}"
                f"/{self.MONGODB_DATABASE}?authSource={self.MONGODB_AUTH_SOURCE}"
            )
        return f"mongodb://{self.MONGODB_HOST}:{self.MONGODB_PORT}/{self.MONGODB_DATABASE}"

    # ── Redis 配置（支持服务发现） ─────────────────────────
    REDIS_HOST: str = Field(default_factory=_default_redis_host)
    REDIS_PORT: int = Field(default=6379)
    REDIS_PASSWORD: str = Field(default="")
    REDIS_DB: int = Field(default=0)
    REDIS_ENABLED: bool = Field(default=True)
    REDIS_MAX_CONNECTIONS: int = Field(default=20)

    @property
    def REDIS_URL(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── 行情数据提供商配置 ─────────────────────────────────
    COINGECKO_BASE_URL: str = Field(default="https://api.coingecko.com/api/v3")
    COINGECKO_API_KEY: str = Field(default="")
    VS_CURRENCY: str = Field(default="usd")
    PROVIDER_TIMEOUT: float = Field(default=30.0)   # 单次请求超时（秒），超时视为 ProviderError
    CANDLE_INTERVAL: str = Field(default="")        # 日 K 源数据采样间隔提示，空串表示由提供商决定（2~90 天为小时级）

    # ── 缓存配置 ──────────────────────────────────────────
    CACHE_DIR: str = Field(default="./cache")        # 文件缓存目录（永不过期）

    # ── 定时刷新 ──────────────────────────────────────────
    REFRESH_ENABLED: bool = Field(default=True)
    REFRESH_INTERVAL: int = Field(default=60)        # 快照刷新间隔（秒）
    REFRESH_SNAPSHOT_LIMIT: int = Field(default=50)

    # ── 批量采集任务 ───────────────────────────────────────
    COLLECT_SNAPSHOT_LIMIT: int = Field(default=20)
    COLLECT_SERIES_TOP_N: int = Field(default=5)
    COLLECT_SERIES_DAYS: int = Field(default=30)
    COLLECT_CONTINUE_ON_ERROR: bool = Field(default=False)

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")


@lru_cache
def get_settings() -> CryptoServiceSettings:
    """获取全局配置（单例）"""
    return CryptoServiceSettings()


settings = get_settings()
