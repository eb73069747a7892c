"""Tests for the registry backends and the cleanup service."""

import asyncio
import fnmatch
from datetime import datetime, timedelta, timezone

import pytest

from app.config import Settings
from app.services.cleanup import CleanupService
from app.services.store import (
    InMemoryLocationStore,
    RedisLocationStore,
    SQLLocationStore,
    StoreCounts,
    build_store,
)


class FakeRedis:
    """Minimal in-process stand-in for the redis.asyncio commands the store uses."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.closed = False

    async def ping(self):
        return True

    async def incr(self, key):
        value = int(self.data.get(key, 0)) + 1
        self.data[key] = str(value)
        return value

    async def set(self, key, value):
        self.data[key] = value
        return True

    async def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, key):
        self.ttls.pop(key, None)
        return 1 if self.data.pop(key, None) is not None else 0

    async def scan_iter(self, match=None):
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self):
        self.closed = True


@pytest.fixture
async def sql_store(tmp_path):
    store = SQLLocationStore(database_url=f"sqlite+aiosqlite:///{tmp_path}/registry.db")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
async def redis_store():
    store = RedisLocationStore(client=FakeRedis(), prefix="test", location_ttl_seconds=60)
    await store.connect()
    yield store
    await store.close()


@pytest.fixture(params=["memory", "sql", "redis"])
async def any_store(request, tmp_path):
    """Run the shared registry contract against every backend."""
    if request.param == "memory":
        store = InMemoryLocationStore()
    elif request.param == "sql":
        store = SQLLocationStore(database_url=f"sqlite+aiosqlite:///{tmp_path}/contract.db")
    else:
        store = RedisLocationStore(client=FakeRedis(), prefix="contract")

    await store.connect()
    yield store
    await store.close()


class TestRegistryContract:
    """Latest-wins semantics shared by all backends."""

    @pytest.mark.anyio
    async def test_missing_records(self, any_store):
        assert await any_store.get_key_pair("nobody") is None
        assert await any_store.get_latest_location("nobody") is None

    @pytest.mark.anyio
    async def test_key_pair_stored(self, any_store):
        record = await any_store.put_key_pair("alice", "PUB", "PRIV")
        fetched = await any_store.get_key_pair("alice")

        assert fetched.id == record.id
        assert fetched.sender_id == "alice"
        assert fetched.public_key == "PUB"
        assert fetched.private_key == "PRIV"
        assert fetched.timestamp.tzinfo is not None

    @pytest.mark.anyio
    async def test_key_pair_latest_wins(self, any_store):
        await any_store.put_key_pair("alice", "PUB1", "PRIV1")
        await any_store.put_key_pair("alice", "PUB2", "PRIV2")

        fetched = await any_store.get_key_pair("alice")
        assert (fetched.public_key, fetched.private_key) == ("PUB2", "PRIV2")
        assert (await any_store.counts()).key_pairs == 1

    @pytest.mark.anyio
    async def test_location_latest_wins(self, any_store):
        await any_store.put_location("alice", "CIPHER1", "PUB")
        second = await any_store.put_location("alice", "CIPHER2", "PUB")

        fetched = await any_store.get_latest_location("alice")
        assert fetched.encrypted_location == "CIPHER2"
        assert fetched.timestamp == second.timestamp
        assert (await any_store.counts()).locations == 1

    @pytest.mark.anyio
    async def test_senders_isolated(self, any_store):
        await any_store.put_location("alice", "A", "PUB-A")
        await any_store.put_location("bob", "B", "PUB-B")

        assert (await any_store.get_latest_location("alice")).encrypted_location == "A"
        assert (await any_store.get_latest_location("bob")).encrypted_location == "B"

    @pytest.mark.anyio
    async def test_registries_independent(self, any_store):
        """A location may exist without a key pair and vice versa."""
        await any_store.put_location("alice", "CIPHER", "PUB")
        await any_store.put_key_pair("bob", "PUB", "PRIV")

        assert await any_store.get_key_pair("alice") is None
        assert await any_store.get_latest_location("bob") is None
        assert await any_store.counts() == StoreCounts(locations=1, key_pairs=1)

    @pytest.mark.anyio
    async def test_purge_removes_only_old_locations(self, any_store):
        await any_store.put_key_pair("alice", "PUB", "PRIV")
        await any_store.put_location("alice", "CIPHER", "PUB")

        past = datetime.now(timezone.utc) - timedelta(minutes=5)
        assert await any_store.purge_locations_older_than(past) == 0

        future = datetime.now(timezone.utc) + timedelta(minutes=5)
        assert await any_store.purge_locations_older_than(future) == 1

        assert await any_store.get_latest_location("alice") is None
        # Key pairs are never purged
        assert await any_store.get_key_pair("alice") is not None


class TestSQLStore:
    """SQL specifics."""

    @pytest.mark.anyio
    async def test_row_updated_in_place(self, sql_store):
        first = await sql_store.put_location("alice", "CIPHER1", "PUB")
        second = await sql_store.put_location("alice", "CIPHER2", "PUB")

        assert first.id == second.id
        assert second.timestamp >= first.timestamp

    @pytest.mark.anyio
    async def test_data_survives_reconnect(self, tmp_path):
        url = f"sqlite+aiosqlite:///{tmp_path}/durable.db"
        store = SQLLocationStore(database_url=url)
        await store.connect()
        await store.put_key_pair("alice", "PUB", "PRIV")
        await store.close()

        reopened = SQLLocationStore(database_url=url)
        await reopened.connect()
        try:
            assert (await reopened.get_key_pair("alice")).public_key == "PUB"
        finally:
            await reopened.close()


class TestRedisStore:
    """Redis specifics."""

    @pytest.mark.anyio
    async def test_location_written_with_ttl(self, redis_store):
        await redis_store.put_location("alice", "CIPHER", "PUB")
        assert redis_store.client.ttls["test:location:alice"] == 60

    @pytest.mark.anyio
    async def test_key_pair_has_no_ttl(self, redis_store):
        await redis_store.put_key_pair("alice", "PUB", "PRIV")
        assert "test:keys:alice" in redis_store.client.data
        assert "test:keys:alice" not in redis_store.client.ttls

    @pytest.mark.anyio
    async def test_ids_increase(self, redis_store):
        first = await redis_store.put_location("alice", "C1", "PUB")
        second = await redis_store.put_location("alice", "C2", "PUB")
        assert second.id == first.id + 1

    @pytest.mark.anyio
    async def test_close_releases_client(self):
        fake = FakeRedis()
        store = RedisLocationStore(client=fake, prefix="test")
        await store.connect()
        await store.close()

        assert fake.closed is True
        with pytest.raises(RuntimeError):
            store.client


class TestBuildStore:
    """Backend selection from settings."""

    def test_memory_default(self):
        assert isinstance(build_store(Settings(store_backend="memory")), InMemoryLocationStore)

    def test_sql(self, tmp_path):
        settings = Settings(
            store_backend="sql", database_url=f"sqlite+aiosqlite:///{tmp_path}/x.db"
        )
        assert isinstance(build_store(settings), SQLLocationStore)

    def test_redis(self):
        store = build_store(Settings(store_backend="redis"))
        assert isinstance(store, RedisLocationStore)
        assert store.backend_name == "redis"


class TestCleanupService:
    """Tests for the retention purge."""

    @pytest.mark.anyio
    async def test_purge_once_uses_retention_window(self):
        store = InMemoryLocationStore()
        await store.put_location("alice", "CIPHER", "PUB")
        cleanup = CleanupService(store, max_age_seconds=60, interval_seconds=30)

        now = datetime.now(timezone.utc)
        assert await cleanup.purge_once(now=now + timedelta(seconds=30)) == 0
        assert await cleanup.purge_once(now=now + timedelta(seconds=61)) == 1
        assert cleanup.stats["purged_total"] == 1

    @pytest.mark.anyio
    async def test_background_loop_purges(self):
        store = InMemoryLocationStore()
        await store.put_location("alice", "CIPHER", "PUB")
        cleanup = CleanupService(store, max_age_seconds=0, interval_seconds=0.01)

        await cleanup.start()
        try:
            for _ in range(100):
                if (await store.counts()).locations == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await cleanup.stop()

        assert (await store.counts()).locations == 0
        assert cleanup.stats["running"] is False

