"""缓存管理模块

提供缓存后端实现（内存缓存、Redis 缓存）以及请求结果缓存 RequestCache

缓存条目结构为 {"expires": 毫秒时间戳, "data": 业务数据}，过期条目不会被删除，
只是在读取时被忽略，后续写入同一个键时直接覆盖
"""

from __future__ import annotations

import abc
import copy
import json
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any

import redis

from httpbridge.constants import (
    DEFAULT_CACHE_CONTROL,
    REDIS_DEFAULT_DB,
    REDIS_DEFAULT_HOST,
    REDIS_DEFAULT_PORT,
    REDIS_MAX_CONNECTIONS,
)

logger = logging.getLogger(__name__)


def now_ms() -> float:
    """当前毫秒时间戳"""
    return time.time() * 1000


class BaseCacheBackend(abc.ABC):
    """缓存后端基类"""

    @abc.abstractmethod
    def get(self, key: str) -> Any | None:
        """获取缓存值"""

    @abc.abstractmethod
    def set(self, key: str, value: Any) -> None:
        """设置缓存值"""

    @abc.abstractmethod
    def delete(self, key: str) -> None:
        """删除缓存项"""

    @abc.abstractmethod
    def clear(self) -> None:
        """清空所有缓存"""


class InMemoryCacheBackend(BaseCacheBackend):
    """
    基于内存的缓存后端

    进程级的软缓存，除了按键覆盖之外没有淘汰策略。
    读写都会深拷贝，调用方修改返回值不会影响缓存内容
    """

    def __init__(self):
        self.cache: dict[str, Any] = {}
        self.lock = threading.RLock()

    def get(self, key: str) -> Any | None:
        with self.lock:
            value = self.cache.get(key)
            logger.debug(f"InMemoryCache {'hit' if value is not None else 'miss'} for key: {key}")
            return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> None:
        with self.lock:
            self.cache[key] = copy.deepcopy(value)
            logger.debug(f"InMemoryCache set for key: {key}")

    def delete(self, key: str) -> None:
        with self.lock:
            if self.cache.pop(key, None) is not None:
                logger.debug(f"InMemoryCache deleted key: {key}")

    def clear(self) -> None:
        with self.lock:
            self.cache.clear()
            logger.debug("InMemoryCache cleared")

    def __len__(self) -> int:
        with self.lock:
            return len(self.cache)


class RedisCacheBackend(BaseCacheBackend):
    """
    基于 Redis 的缓存后端

    多进程共享缓存时使用，缓存条目以 JSON 形式存储

    参数:
        host: Redis 服务器地址
        port: Redis 服务器端口
        db: Redis 数据库编号
        password: Redis 密码（可选）
        key_prefix: 缓存键前缀，用于隔离不同应用的缓存数据
        client: 已有的 Redis 客户端（可选，传入时忽略连接参数）
        **kwargs: 其他 Redis 连接参数
    """

    _JSON_MARKER = "__JSON__:"

    def __init__(
        self,
        host=REDIS_DEFAULT_HOST,
        port=REDIS_DEFAULT_PORT,
        db=REDIS_DEFAULT_DB,
        password=None,
        key_prefix: str = "httpbridge",
        client: redis.Redis | None = None,
        **kwargs,
    ):
        self.pool = None
        if client is None:
            self.pool = redis.ConnectionPool(
                host=host,
                port=port,
                db=db,
                password=password,
                decode_responses=False,
                max_connections=REDIS_MAX_CONNECTIONS,
                **kwargs,
            )
            client = redis.Redis(connection_pool=self.pool)
        self.client = client
        self.key_prefix = key_prefix.strip() if key_prefix else ""

    def _make_key(self, key: str) -> str:
        """生成带前缀的完整键名"""
        if self.key_prefix:
            return f"{self.key_prefix}:{key}"
        return key

    def get(self, key: str) -> Any | None:
        full_key = self._make_key(key)
        try:
            value = self.client.get(full_key)
        except redis.RedisError:
            logger.exception(f"Redis error getting key '{key}' (full_key: {full_key})")
            return None

        if value is None:
            logger.debug(f"RedisCache miss for key: {key} (full_key: {full_key})")
            return None

        value_str = value.decode("utf-8") if isinstance(value, bytes) else value
        if not value_str.startswith(self._JSON_MARKER):
            return value_str
        try:
            return json.loads(value_str[len(self._JSON_MARKER) :])
        except ValueError:
            logger.exception(f"Error deserializing value for key '{key}'")
            return None

    def set(self, key: str, value: Any) -> None:
        full_key = self._make_key(key)
        try:
            serialized = self._JSON_MARKER + json.dumps(value, ensure_ascii=False, default=str)
            self.client.set(full_key, serialized)
            logger.debug(f"RedisCache set for key: {key} (full_key: {full_key})")
        except (TypeError, ValueError, redis.RedisError):
            logger.exception(f"Redis error setting key '{key}' (full_key: {full_key})")

    def delete(self, key: str) -> None:
        full_key = self._make_key(key)
        try:
            self.client.delete(full_key)
            logger.debug(f"RedisCache deleted key: {key} (full_key: {full_key})")
        except redis.RedisError:
            logger.exception(f"Redis error deleting key '{key}' (full_key: {full_key})")

    def clear(self) -> None:
        """清空缓存，仅删除带有 key_prefix 前缀的键"""
        try:
            if not self.key_prefix:
                self.client.flushdb()
                logger.warning("RedisCache cleared entire DB (no key_prefix set)")
                return
            cursor = 0
            deleted_count = 0
            while True:
                cursor, keys = self.client.scan(cursor, match=f"{self.key_prefix}:*", count=100)
                if keys:
                    self.client.delete(*keys)
                    deleted_count += len(keys)
                if cursor == 0:
                    break
            logger.debug(f"RedisCache cleared {deleted_count} keys with prefix '{self.key_prefix}'")
        except redis.RedisError:
            logger.exception("Redis error clearing cache")

    def ping(self) -> bool:
        """检查 Redis 连接是否正常"""
        try:
            return self.client.ping()
        except redis.RedisError:
            logger.exception("Redis connection check failed")
            return False

    def close(self) -> None:
        """关闭 Redis 连接池，释放资源"""
        if self.pool is None:
            return
        try:
            self.pool.disconnect()
            logger.debug("Redis connection pool closed")
        except redis.RedisError:
            logger.exception("Failed to close Redis connection pool")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def generate_cache_key(url: str, params: Any = None) -> str:
    """
    生成缓存键: url + 参数的稳定序列化结果

    示例:
        >>> generate_cache_key("/api/x", {"id": 1})
        '/api/x{"id":1}'
    """
    serialized = json.dumps(params, sort_keys=True, default=str, separators=(",", ":"), ensure_ascii=False)
    return f"{url}{serialized}"


@dataclass(frozen=True)
class CacheEntry:
    """缓存条目"""

    expires: float
    data: Any

    def is_valid(self, at: float | None = None) -> bool:
        return (at if at is not None else now_ms()) < self.expires

    def to_dict(self) -> dict[str, Any]:
        return {"expires": self.expires, "data": self.data}

    @classmethod
    def from_value(cls, value: Any) -> CacheEntry | None:
        if not isinstance(value, dict) or "expires" not in value:
            return None
        try:
            return cls(expires=float(value["expires"]), data=value.get("data"))
        except (TypeError, ValueError):
            return None


class RequestCache:
    """
    请求结果缓存

    按 url + 参数 寻址、带有效期的软缓存。ttl 为 0 表示永久有效，
    为 None 时使用默认有效期

    参数:
        backend: 缓存后端，默认使用内存缓存
        default_ttl: 默认有效期（毫秒）
    """

    def __init__(self, backend: BaseCacheBackend | None = None, default_ttl: int = DEFAULT_CACHE_CONTROL):
        self.backend = backend if backend is not None else InMemoryCacheBackend()
        self.default_ttl = default_ttl

    make_key = staticmethod(generate_cache_key)

    def lookup(self, key: str) -> CacheEntry | None:
        """返回未过期的缓存条目，未命中或已过期时返回 None"""
        try:
            entry = CacheEntry.from_value(self.backend.get(key))
        except Exception as e:
            logger.exception(f"Failed to get cache: {e}")
            return None
        if entry is None or not entry.is_valid():
            return None
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        entry = self.lookup(key)
        return entry.data if entry is not None else default

    def set(self, key: str, data: Any, ttl: int | None = None) -> CacheEntry:
        """
        写入缓存

        参数:
            key: 缓存键
            data: 业务数据
            ttl: 有效期（毫秒），0 表示永久有效，None 使用默认有效期
        """
        ttl = self.default_ttl if ttl is None else ttl
        expires = math.inf if ttl == 0 else now_ms() + ttl
        entry = CacheEntry(expires=expires, data=data)
        try:
            self.backend.set(key, entry.to_dict())
        except Exception as e:
            logger.exception(f"Failed to cache response: {e}")
        return entry

    def clear(self) -> None:
        self.backend.clear()
