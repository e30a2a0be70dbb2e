"""
Unit tests for the bucketed key-value stores.
"""

import pytest
from unittest.mock import AsyncMock, patch

from shared.config import get_config
from shared.errors import StoreError
from service_proxy.app.storage import (
    APIS_BUCKET,
    SESSIONS_BUCKET,
    RedisKeyValueStore,
    SQLiteKeyValueStore,
    open_store,
)


class TestSQLiteKeyValueStore:
    """Test cases for SQLiteKeyValueStore."""

    @pytest.mark.asyncio
    async def test_values_survive_reopen(self, tmp_path):
        path = str(tmp_path / "store.db")
        store = await SQLiteKeyValueStore.open(path)
        await store.create_bucket(APIS_BUCKET)
        await store.put(APIS_BUCKET, "a", b"alpha")
        await store.close()

        reopened = await SQLiteKeyValueStore.open(path)
        try:
            assert await reopened.get(APIS_BUCKET, "a") == b"alpha"
        finally:
            await reopened.close()

    @pytest.mark.asyncio
    async def test_put_overwrites_and_keys_are_sorted(self, tmp_path):
        store = await SQLiteKeyValueStore.open(str(tmp_path / "store.db"))
        await store.create_bucket(APIS_BUCKET)
        await store.put(APIS_BUCKET, "b", b"1")
        await store.put(APIS_BUCKET, "a", b"2")
        await store.put(APIS_BUCKET, "b", b"3")

        assert await store.keys(APIS_BUCKET) == ["a", "b"]
        assert await store.get(APIS_BUCKET, "b") == b"3"
        assert await store.get(APIS_BUCKET, "missing") is None
        await store.close()

    @pytest.mark.asyncio
    async def test_buckets_are_isolated(self, tmp_path):
        store = await SQLiteKeyValueStore.open(str(tmp_path / "store.db"))
        await store.create_bucket(APIS_BUCKET)
        await store.create_bucket(SESSIONS_BUCKET)
        await store.put(APIS_BUCKET, "a", b"alpha")

        assert await store.get(SESSIONS_BUCKET, "a") is None
        await store.close()

    @pytest.mark.asyncio
    async def test_missing_bucket(self, tmp_path):
        store = await SQLiteKeyValueStore.open(str(tmp_path / "store.db"))

        with pytest.raises(StoreError):
            await store.get(APIS_BUCKET, "a")
        with pytest.raises(StoreError):
            await store.put(APIS_BUCKET, "a", b"alpha")
        await store.close()

    @pytest.mark.asyncio
    async def test_unopenable_path(self, tmp_path):
        with pytest.raises(StoreError):
            await SQLiteKeyValueStore.open(str(tmp_path / "missing-dir" / "store.db"))

    @pytest.mark.asyncio
    async def test_ping(self, tmp_path):
        store = await SQLiteKeyValueStore.open(str(tmp_path / "store.db"))
        assert await store.ping() is True
        await store.close()


class TestRedisKeyValueStore:
    """Test cases for RedisKeyValueStore."""

    @pytest.fixture
    def store(self):
        return RedisKeyValueStore("redis://localhost:6379/0")

    @pytest.mark.asyncio
    async def test_get_reads_bucket_hash(self, store):
        with patch.object(store, "_get_redis", new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis
            mock_redis.sismember.return_value = True
            mock_redis.hget.return_value = b"alpha"

            assert await store.get(APIS_BUCKET, "a") == b"alpha"
            mock_redis.hget.assert_awaited_once_with("tollgate:bucket:APIS", "a")

    @pytest.mark.asyncio
    async def test_put_requires_bucket(self, store):
        with patch.object(store, "_get_redis", new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis
            mock_redis.sismember.return_value = False

            with pytest.raises(StoreError):
                await store.put(APIS_BUCKET, "a", b"alpha")
            mock_redis.hset.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_bucket_registers_name(self, store):
        with patch.object(store, "_get_redis", new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis

            await store.create_bucket(SESSIONS_BUCKET)

            mock_redis.sadd.assert_awaited_once_with("tollgate:buckets", SESSIONS_BUCKET)

    @pytest.mark.asyncio
    async def test_keys_decoded_and_sorted(self, store):
        with patch.object(store, "_get_redis", new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis
            mock_redis.sismember.return_value = True
            mock_redis.hkeys.return_value = [b"b", b"a"]

            assert await store.keys(APIS_BUCKET) == ["a", "b"]


class TestOpenStore:
    """Test cases for open_store."""

    @pytest.mark.asyncio
    async def test_sqlite_backend_creates_buckets(self, tmp_path):
        config = get_config("proxy", 8080, store_path=str(tmp_path / "store.db"))
        store = await open_store(config)
        try:
            assert await store.keys(APIS_BUCKET) == []
            assert await store.keys(SESSIONS_BUCKET) == []
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_unknown_backend(self):
        config = get_config("proxy", 8080, store_backend="bolt")
        with pytest.raises(StoreError):
            await open_store(config)

    @pytest.mark.asyncio
    async def test_unreachable_redis(self):
        config = get_config("proxy", 8080, store_backend="redis")
        with patch.object(RedisKeyValueStore, "ping", new_callable=AsyncMock) as mock_ping:
            mock_ping.return_value = False
            with pytest.raises(StoreError):
                await open_store(config)
