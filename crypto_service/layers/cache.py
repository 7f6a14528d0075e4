"""
Layer 2 – 持久缓存层
后端：Redis（内存） → MongoDB（持久化） → 文件（本地）

与普通 TTL 缓存不同，这里的记录永不过期：它只在行情提供商不可用时作为兜底。
写入时同步写到所有可用后端；读取时汇总各后端的候选记录，以 stored_at 最新者为准。
"""

import asyncio
import hashlib
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from crypto_service.config import settings
from crypto_service.db import (
    RECORD_COLLECTION,
    SERIES_COLLECTION,
    SNAPSHOT_COLLECTION,
    get_mongo_db,
    get_redis,
)
from crypto_service.exceptions import CacheMiss, SerializationError
from crypto_service.models.market import AssetSnapshot, CacheRecord, TimeSeries

logger = logging.getLogger(__name__)

SNAPSHOT_KIND = "snapshot"
SERIES_KIND = "series"
PREFS_KIND = "prefs"

_REDIS_PREFIX = "crypto"
_SNAPSHOT_DOC_ID = "latest"


def _make_key(namespace: str, *parts: str) -> str:
    """生成规范化缓存键"""
    raw = ":".join([namespace] + [str(p) for p in parts])
    if len(raw) > 200:
        raw = namespace + ":" + hashlib.md5(raw.encode()).hexdigest()
    return raw


def series_key(asset_id: str, days: int) -> str:
    return f"{asset_id}:{days}"


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError as exc:
        raise SerializationError(f"stored_at 无法解析: {value!r}") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _mongo_field(asset_id: str) -> str:
    # MongoDB 字段名中不能出现 "." 和 "$"
    return asset_id.replace(".", "%2E").replace("$", "%24")


class CacheLayer:
    """持久缓存层，自动根据可用连接选择后端"""

    def __init__(self, cache_dir: Optional[str] = None):
        self._cache_dir = cache_dir or settings.CACHE_DIR
        self._file_lock = asyncio.Lock()

    # ── 通用记录 ──────────────────────────────────────────

    async def store(self, kind: str, key: str, payload: Any) -> CacheRecord:
        """按 (kind, key) 写入一条记录，后写覆盖先写"""
        record = CacheRecord(kind=kind, key=key, payload=payload, stored_at=_now())
        doc = {
            "kind": kind,
            "key": key,
            "payload": payload,
            "stored_at": record.stored_at.isoformat(),
        }
        serialized = json.dumps(doc, ensure_ascii=False, default=str)
        full_key = _make_key(_REDIS_PREFIX, kind, key)

        redis = get_redis()
        if redis is not None:
            try:
                await redis.set(full_key, serialized)
                logger.debug(f"缓存写入（Redis）: {full_key}")
            except Exception as exc:
                logger.warning(f"Redis 写入失败: {exc}")

        db = get_mongo_db()
        if db is not None:
            try:
                mongo_doc = dict(doc, stored_at=record.stored_at)
                if kind == SERIES_KIND:
                    asset_id, _, days = key.rpartition(":")
                    mongo_doc.update(asset_id=asset_id, days=int(days))
                    await db[SERIES_COLLECTION].insert_one(mongo_doc)
                else:
                    await db[RECORD_COLLECTION].update_one(
                        {"kind": kind, "key": key},
                        {"$set": mongo_doc},
                        upsert=True,
                    )
                logger.debug(f"缓存写入（MongoDB）: {full_key}")
            except Exception as exc:
                logger.warning(f"MongoDB 写入失败: {exc}")

        try:
            self._atomic_write(self._file_path(full_key), serialized)
            logger.debug(f"缓存写入（文件）: {full_key}")
        except OSError as exc:
            logger.warning(f"文件缓存写入失败: {exc}")

        return record

    async def load(
        self,
        kind: str,
        key: str,
        decoder: Optional[Callable[[Any], Any]] = None,
    ) -> CacheRecord:
        """
        读取 (kind, key) 最近一次写入的记录

        各后端的候选记录按 stored_at 从新到旧依次尝试：给出 decoder 时，
        payload 解码失败的记录只从它所在的后端删除，然后继续尝试次新的记录。
        返回记录的 payload 为解码后的对象。

        Raises:
            CacheMiss: 所有后端都没有可用记录
        """
        full_key = _make_key(_REDIS_PREFIX, kind, key)
        candidates: List[Tuple[CacheRecord, Callable[[], Awaitable[None]]]] = []

        redis = get_redis()
        if redis is not None:
            async def _discard_redis() -> None:
                await self._safe(redis.delete(full_key))

            try:
                raw = await redis.get(full_key)
                if raw:
                    candidates.append((self._decode(raw), _discard_redis))
            except SerializationError as exc:
                logger.warning(f"Redis 缓存记录损坏，已丢弃 {full_key}: {exc}")
                await _discard_redis()
            except Exception as exc:
                logger.debug(f"Redis 读取失败: {exc}")

        db = get_mongo_db()
        if db is not None:
            collection = SERIES_COLLECTION if kind == SERIES_KIND else RECORD_COLLECTION
            doc = None

            async def _discard_mongo() -> None:
                if doc is not None:
                    await self._safe(db[collection].delete_one({"_id": doc.get("_id")}))

            try:
                if kind == SERIES_KIND:
                    asset_id, _, days = key.rpartition(":")
                    doc = await db[collection].find_one(
                        {"asset_id": asset_id, "days": int(days)},
                        sort=[("stored_at", -1)],
                    )
                else:
                    doc = await db[collection].find_one({"kind": kind, "key": key})
                if doc:
                    candidates.append((self._from_doc(doc), _discard_mongo))
            except SerializationError as exc:
                logger.warning(f"MongoDB 缓存记录损坏，已丢弃 {full_key}: {exc}")
                await _discard_mongo()
            except Exception as exc:
                logger.debug(f"MongoDB 读取失败: {exc}")

        path = self._file_path(full_key)

        async def _discard_file() -> None:
            self._remove(path)

        if os.path.exists(path):
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    candidates.append((self._decode(fh.read()), _discard_file))
            except SerializationError as exc:
                logger.warning(f"文件缓存记录损坏，已丢弃 {path}: {exc}")
                self._remove(path)
            except OSError as exc:
                logger.debug(f"文件缓存读取失败: {exc}")

        for record, discard in sorted(candidates, key=lambda c: c[0].stored_at, reverse=True):
            if decoder is None:
                logger.debug(f"缓存命中: {full_key}（stored_at={record.stored_at.isoformat()}）")
                return record
            try:
                payload = decoder(record.payload)
            except ValueError as exc:
                logger.warning(f"缓存记录无法解码，仅丢弃该后端中的记录 {full_key}: {exc}")
                await discard()
                continue
            logger.debug(f"缓存命中: {full_key}（stored_at={record.stored_at.isoformat()}）")
            return record.model_copy(update={"payload": payload})

        raise CacheMiss(kind, key)

    # ── 时间序列 ──────────────────────────────────────────

    async def store_series(self, asset_id: str, days: int, series: TimeSeries) -> None:
        await self.store(SERIES_KIND, series_key(asset_id, days), series.model_dump(mode="json"))

    async def load_series(self, asset_id: str, days: int) -> TimeSeries:
        """
        Raises:
            CacheMiss: 无记录，或所有记录都无法解码为 TimeSeries
        """
        record = await self.load(
            SERIES_KIND, series_key(asset_id, days), decoder=TimeSeries.model_validate
        )
        return record.payload

    # ── 行情快照 ──────────────────────────────────────────

    async def store_snapshot(self, snapshots: List[AssetSnapshot]) -> None:
        """
        按币种 ID 合并写入快照：每个币种一行，新行覆盖旧行。
        每个后端上整批数据只提交一次写操作。
        """
        if not snapshots:
            return
        stored_at = _now().isoformat()
        rows = {
            s.id: {"row": s.model_dump(mode="json"), "stored_at": stored_at}
            for s in snapshots
        }

        redis = get_redis()
        if redis is not None:
            try:
                await redis.hset(
                    _make_key(_REDIS_PREFIX, SNAPSHOT_KIND),
                    mapping={k: json.dumps(v, ensure_ascii=False) for k, v in rows.items()},
                )
            except Exception as exc:
                logger.warning(f"Redis 快照写入失败: {exc}")

        db = get_mongo_db()
        if db is not None:
            try:
                await db[SNAPSHOT_COLLECTION].update_one(
                    {"_id": _SNAPSHOT_DOC_ID},
                    {"$set": {f"rows.{_mongo_field(k)}": v for k, v in rows.items()}},
                    upsert=True,
                )
            except Exception as exc:
                logger.warning(f"MongoDB 快照写入失败: {exc}")

        path = self._file_path(_make_key(_REDIS_PREFIX, SNAPSHOT_KIND))
        async with self._file_lock:
            try:
                existing = self._read_snapshot_file(path)
                existing.update(rows)
                self._atomic_write(path, json.dumps(existing, ensure_ascii=False))
            except OSError as exc:
                logger.warning(f"文件快照写入失败: {exc}")

        logger.debug(f"快照写入完成，共 {len(rows)} 个币种")

    async def load_snapshot(self, limit: int) -> List[AssetSnapshot]:
        """
        读取已存储的快照行，按排名升序截取前 limit 个

        Raises:
            CacheMiss: 没有任何可用快照行
        """
        entries: List[Dict[str, Any]] = []

        redis = get_redis()
        if redis is not None:
            try:
                raw_rows = await redis.hgetall(_make_key(_REDIS_PREFIX, SNAPSHOT_KIND))
                for raw in (raw_rows or {}).values():
                    try:
                        entries.append(json.loads(raw))
                    except (TypeError, ValueError):
                        continue
            except Exception as exc:
                logger.debug(f"Redis 快照读取失败: {exc}")

        db = get_mongo_db()
        if db is not None:
            try:
                doc = await db[SNAPSHOT_COLLECTION].find_one({"_id": _SNAPSHOT_DOC_ID})
                if doc:
                    entries.extend((doc.get("rows") or {}).values())
            except Exception as exc:
                logger.debug(f"MongoDB 快照读取失败: {exc}")

        path = self._file_path(_make_key(_REDIS_PREFIX, SNAPSHOT_KIND))
        entries.extend(self._read_snapshot_file(path).values())

        newest: Dict[str, tuple] = {}
        for entry in entries:
            try:
                snapshot = AssetSnapshot.model_validate(entry["row"])
                stored_at = _parse_time(entry["stored_at"])
            except (KeyError, TypeError, ValueError, SerializationError):
                logger.debug("跳过无法解码的快照行")
                continue
            current = newest.get(snapshot.id)
            if current is None or stored_at > current[0]:
                newest[snapshot.id] = (stored_at, snapshot)

        if not newest:
            raise CacheMiss(SNAPSHOT_KIND, _SNAPSHOT_DOC_ID)
        ordered = sorted(
            (s for _, s in newest.values()),
            key=lambda s: (s.market_cap_rank, -(s.market_cap or 0)),
        )
        return ordered[:limit]

    # ── 管理 ──────────────────────────────────────────────

    async def stats(self) -> dict:
        """返回各缓存后端统计信息"""
        result: dict = {}
        redis = get_redis()
        if redis is not None:
            try:
                result["redis"] = {"keys": await redis.dbsize(), "status": "healthy"}
            except Exception as exc:
                result["redis"] = {"status": "error", "error": str(exc)}
        else:
            result["redis"] = {"status": "disabled"}

        db = get_mongo_db()
        if db is not None:
            try:
                result["mongodb"] = {
                    "series_documents": await db[SERIES_COLLECTION].count_documents({}),
                    "records": await db[RECORD_COLLECTION].count_documents({}),
                    "status": "healthy",
                }
            except Exception as exc:
                result["mongodb"] = {"status": "error", "error": str(exc)}
        else:
            result["mongodb"] = {"status": "disabled"}

        try:
            file_count = len([
                f for f in os.listdir(self._cache_dir) if f.endswith(".json")
            ]) if os.path.exists(self._cache_dir) else 0
            result["file"] = {"files": file_count, "dir": self._cache_dir, "status": "healthy"}
        except OSError as exc:
            result["file"] = {"status": "error", "error": str(exc)}

        return result

    # ── 内部工具 ──────────────────────────────────────────

    def _file_path(self, key: str) -> str:
        safe = key.replace(":", "_").replace("/", "_")
        return os.path.join(self._cache_dir, f"{safe}.json")

    def _atomic_write(self, path: str, content: str) -> None:
        """先写临时文件再 os.replace，读者永远看不到写了一半的文件"""
        os.makedirs(self._cache_dir, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._cache_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
            os.replace(tmp_path, path)
        except OSError:
            self._remove(tmp_path)
            raise

    def _read_snapshot_file(self, path: str) -> Dict[str, Any]:
        if not os.path.exists(path):
            return {}
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning(f"文件快照损坏，已丢弃 {path}: {exc}")
            self._remove(path)
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _decode(raw: str) -> CacheRecord:
        try:
            doc = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"JSON 解码失败: {exc}") from exc
        if not isinstance(doc, dict):
            raise SerializationError("缓存记录不是 JSON 对象")
        return CacheLayer._from_doc(doc)

    @staticmethod
    def _from_doc(doc: dict) -> CacheRecord:
        try:
            return CacheRecord(
                kind=doc["kind"],
                key=doc["key"],
                payload=doc["payload"],
                stored_at=_parse_time(doc["stored_at"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise SerializationError(f"缓存记录字段缺失或非法: {exc}") from exc

    @staticmethod
    def _remove(path: str) -> None:
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as exc:
            logger.debug(f"删除缓存文件失败 {path}: {exc}")

    @staticmethod
    async def _safe(awaitable) -> None:
        try:
            await awaitable
        except Exception as exc:
            logger.debug(f"缓存清理失败: {exc}")


# ── 模块级别单例 ──────────────────────────────────────────
_cache: Optional[CacheLayer] = None


def get_cache_layer() -> CacheLayer:
    global _cache
    if _cache is None:
        _cache = CacheLayer()
    return _cache
