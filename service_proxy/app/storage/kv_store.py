"""
Bucketed key-value stores backing the endpoint registry.
"""

import asyncio
import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import StoreError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import BaseConfig


SESSIONS_BUCKET = "Sessions"
APIS_BUCKET = "APIS"


class KeyValueStore(ABC):
    """Minimal bucketed store: buckets must be created before use."""

    @abstractmethod
    async def create_bucket(self, bucket: str) -> None:
        """Create ``bucket`` if it does not exist yet."""

    @abstractmethod
    async def get(self, bucket: str, key: str) -> Optional[bytes]:
        """Return the raw value for ``key`` or None."""

    @abstractmethod
    async def put(self, bucket: str, key: str, value: bytes) -> None:
        """Write ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    async def keys(self, bucket: str) -> List[str]:
        """List keys in ``bucket`` in sorted order."""

    @abstractmethod
    async def ping(self) -> bool:
        """Report whether the backend is reachable."""

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection."""


class SQLiteKeyValueStore(KeyValueStore):
    """Embedded store kept in a single SQLite file.

    The sqlite3 module is blocking, so every operation runs in a worker
    thread; a lock serialises access to the shared connection.
    """

    def __init__(self, connection: sqlite3.Connection, path: str):
        self.path = path
        self._conn = connection
        self._lock = threading.Lock()
        self.logger = get_logger("proxy.store.sqlite")

    @classmethod
    async def open(cls, path: str, timeout: float = 1.0) -> "SQLiteKeyValueStore":
        """Open (or create) the store at ``path``."""

        def _open() -> sqlite3.Connection:
            conn = sqlite3.connect(path, timeout=timeout, check_same_thread=False)
            conn.execute("CREATE TABLE IF NOT EXISTS buckets (name TEXT PRIMARY KEY)")
            conn.execute(
                "CREATE TABLE IF NOT EXISTS records ("
                " bucket TEXT NOT NULL,"
                " key TEXT NOT NULL,"
                " value BLOB NOT NULL,"
                " PRIMARY KEY (bucket, key))"
            )
            conn.commit()
            return conn

        try:
            conn = await asyncio.to_thread(_open)
        except sqlite3.Error as exc:
            raise StoreError("Unable to open store", details={"path": path, "error": str(exc)}) from exc

        store = cls(conn, path)
        store.logger.info("Store opened", path=path)
        return store

    async def _run(self, func, *args):
        def _locked():
            with self._lock:
                return func(*args)

        try:
            return await asyncio.to_thread(_locked)
        except sqlite3.Error as exc:
            raise StoreError("Store operation failed", details={"path": self.path, "error": str(exc)}) from exc

    def _require_bucket(self, bucket: str) -> None:
        row = self._conn.execute("SELECT 1 FROM buckets WHERE name = ?", (bucket,)).fetchone()
        if row is None:
            raise StoreError("Bucket does not exist", details={"bucket": bucket})

    async def create_bucket(self, bucket: str) -> None:
        def _create():
            with self._conn:
                self._conn.execute("INSERT OR IGNORE INTO buckets (name) VALUES (?)", (bucket,))

        await self._run(_create)

    async def get(self, bucket: str, key: str) -> Optional[bytes]:
        def _get():
            self._require_bucket(bucket)
            row = self._conn.execute(
                "SELECT value FROM records WHERE bucket = ? AND key = ?", (bucket, key)
            ).fetchone()
            return bytes(row[0]) if row else None

        return await self._run(_get)

    async def put(self, bucket: str, key: str, value: bytes) -> None:
        def _put():
            self._require_bucket(bucket)
            with self._conn:
                self._conn.execute(
                    "INSERT OR REPLACE INTO records (bucket, key, value) VALUES (?, ?, ?)",
                    (bucket, key, value),
                )

        await self._run(_put)

    async def keys(self, bucket: str) -> List[str]:
        def _keys():
            self._require_bucket(bucket)
            rows = self._conn.execute(
                "SELECT key FROM records WHERE bucket = ? ORDER BY key", (bucket,)
            ).fetchall()
            return [row[0] for row in rows]

        return await self._run(_keys)

    async def ping(self) -> bool:
        try:
            await self._run(lambda: self._conn.execute("SELECT 1").fetchone())
        except StoreError:
            return False
        return True

    async def close(self) -> None:
        await self._run(self._conn.close)


class RedisKeyValueStore(KeyValueStore):
    """Store buckets as Redis hashes under a common prefix."""

    def __init__(self, redis_url: str, prefix: str = "tollgate"):
        self.redis_url = redis_url
        self.prefix = prefix
        self.logger = get_logger("proxy.store.redis")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    def _bucket_key(self, bucket: str) -> str:
        return f"{self.prefix}:bucket:{bucket}"

    def _registry_key(self) -> str:
        return f"{self.prefix}:buckets"

    async def _require_bucket(self, client: redis.Redis, bucket: str) -> None:
        if not await client.sismember(self._registry_key(), bucket):
            raise StoreError("Bucket does not exist", details={"bucket": bucket})

    async def create_bucket(self, bucket: str) -> None:
        client = await self._get_redis()
        try:
            await client.sadd(self._registry_key(), bucket)
        except RedisError as exc:
            raise StoreError("Create bucket failed", details={"bucket": bucket, "error": str(exc)}) from exc

    async def get(self, bucket: str, key: str) -> Optional[bytes]:
        client = await self._get_redis()
        try:
            await self._require_bucket(client, bucket)
            return await client.hget(self._bucket_key(bucket), key)
        except RedisError as exc:
            raise StoreError("Store operation failed", details={"bucket": bucket, "error": str(exc)}) from exc

    async def put(self, bucket: str, key: str, value: bytes) -> None:
        client = await self._get_redis()
        try:
            await self._require_bucket(client, bucket)
            await client.hset(self._bucket_key(bucket), key, value)
        except RedisError as exc:
            raise StoreError("Store operation failed", details={"bucket": bucket, "error": str(exc)}) from exc

    async def keys(self, bucket: str) -> List[str]:
        client = await self._get_redis()
        try:
            await self._require_bucket(client, bucket)
            raw = await client.hkeys(self._bucket_key(bucket))
        except RedisError as exc:
            raise StoreError("Store operation failed", details={"bucket": bucket, "error": str(exc)}) from exc
        return sorted(k.decode("utf-8") if isinstance(k, bytes) else k for k in raw)

    async def ping(self) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.ping())
        except RedisError as exc:
            self.logger.error("Redis ping failed", error=str(exc))
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


async def open_store(config: "BaseConfig") -> KeyValueStore:
    """Open the configured backend and create the proxy buckets.

    Any failure raises StoreError; callers treat it as fatal.
    """
    backend = config.store_backend.lower()
    if backend == "sqlite":
        store: KeyValueStore = await SQLiteKeyValueStore.open(config.store_path, config.store_open_timeout)
    elif backend == "redis":
        store = RedisKeyValueStore(config.redis_url)
        if not await store.ping():
            raise StoreError("Unable to reach Redis", details={"redis_url": config.redis_url})
    else:
        raise StoreError("Unknown store backend", details={"store_backend": config.store_backend})

    for bucket in (SESSIONS_BUCKET, APIS_BUCKET):
        await store.create_bucket(bucket)
    return store
