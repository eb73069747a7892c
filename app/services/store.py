"""
Key registry and location registry.

Both registries are independent latest-wins maps keyed by sender identifier.
There is no coupling between them: a location record may outlive the key
pair it was encrypted for, and consumers must tolerate that.
"""

import asyncio
import json
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as redis
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.config import Settings, get_settings
from app.core.freshness import as_utc
from app.db.models import KeyPairRecord, LocationRecord, utcnow
from app.db.session import create_engine, init_db

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreCounts:
    """Number of records held in each registry."""

    locations: int
    key_pairs: int


class LocationStore(ABC):
    """Async interface consumed by the API routes and the cleanup service."""

    backend_name: str = "abstract"

    async def connect(self) -> None:
        """Acquire backend resources (no-op by default)."""

    async def close(self) -> None:
        """Release backend resources (no-op by default)."""

    @abstractmethod
    async def put_key_pair(
        self, sender_id: str, public_key: str, private_key: str
    ) -> KeyPairRecord:
        """Store a key pair, replacing any previous pair for sender_id."""

    @abstractmethod
    async def get_key_pair(self, sender_id: str) -> Optional[KeyPairRecord]:
        """Return the key pair for sender_id, or None."""

    @abstractmethod
    async def put_location(
        self, sender_id: str, encrypted_location: str, public_key: str
    ) -> LocationRecord:
        """Store an encrypted location, replacing any previous one for sender_id."""

    @abstractmethod
    async def get_latest_location(self, sender_id: str) -> Optional[LocationRecord]:
        """Return the latest encrypted location for sender_id, or None."""

    @abstractmethod
    async def purge_locations_older_than(self, cutoff: datetime) -> int:
        """Delete location records stored before cutoff. Returns count deleted."""

    @abstractmethod
    async def counts(self) -> StoreCounts:
        """Return registry sizes."""


class InMemoryLocationStore(LocationStore):
    """
    Process-local store backed by two dicts.

    Every instance is isolated, so tests can create one per test case.
    """

    backend_name = "memory"

    def __init__(self) -> None:
        self._key_pairs: dict[str, KeyPairRecord] = {}
        self._locations: dict[str, LocationRecord] = {}
        self._next_key_pair_id = 1
        self._next_location_id = 1
        self._lock = asyncio.Lock()

    async def put_key_pair(
        self, sender_id: str, public_key: str, private_key: str
    ) -> KeyPairRecord:
        async with self._lock:
            record = KeyPairRecord(
                id=self._next_key_pair_id,
                sender_id=sender_id,
                public_key=public_key,
                private_key=private_key,
                timestamp=utcnow(),
            )
            self._next_key_pair_id += 1
            self._key_pairs[sender_id] = record
            return record

    async def get_key_pair(self, sender_id: str) -> Optional[KeyPairRecord]:
        async with self._lock:
            return self._key_pairs.get(sender_id)

    async def put_location(
        self, sender_id: str, encrypted_location: str, public_key: str
    ) -> LocationRecord:
        async with self._lock:
            record = LocationRecord(
                id=self._next_location_id,
                sender_id=sender_id,
                encrypted_location=encrypted_location,
                public_key=public_key,
                timestamp=utcnow(),
            )
            self._next_location_id += 1
            self._locations[sender_id] = record
            return record

    async def get_latest_location(self, sender_id: str) -> Optional[LocationRecord]:
        async with self._lock:
            return self._locations.get(sender_id)

    async def purge_locations_older_than(self, cutoff: datetime) -> int:
        cutoff = as_utc(cutoff)
        async with self._lock:
            expired = [
                sender_id
                for sender_id, record in self._locations.items()
                if as_utc(record.timestamp) < cutoff
            ]
            for sender_id in expired:
                del self._locations[sender_id]
            return len(expired)

    async def counts(self) -> StoreCounts:
        async with self._lock:
            return StoreCounts(
                locations=len(self._locations), key_pairs=len(self._key_pairs)
            )


def _naive_utc(timestamp: datetime) -> datetime:
    """SQL columns are timezone-naive; store UTC wall time."""
    return as_utc(timestamp).replace(tzinfo=None)


class SQLLocationStore(LocationStore):
    """
    Durable store on any async SQLAlchemy database (SQLite via aiosqlite by default).

    Each registry holds one row per sender_id, updated in place on put.
    """

    backend_name = "sql"

    def __init__(
        self, engine: Optional[AsyncEngine] = None, database_url: Optional[str] = None
    ) -> None:
        self._engine = engine or create_engine(database_url)
        self._owns_engine = engine is None

    async def connect(self) -> None:
        await init_db(self._engine)
        logger.info("SQL store ready")

    async def close(self) -> None:
        if self._owns_engine:
            await self._engine.dispose()

    def _session(self) -> AsyncSession:
        return AsyncSession(self._engine, expire_on_commit=False)

    async def put_key_pair(
        self, sender_id: str, public_key: str, private_key: str
    ) -> KeyPairRecord:
        async with self._session() as session:
            result = await session.exec(
                select(KeyPairRecord).where(KeyPairRecord.sender_id == sender_id)
            )
            record = result.one_or_none()

            if record is None:
                record = KeyPairRecord(sender_id=sender_id, public_key="", private_key="")

            record.public_key = public_key
            record.private_key = private_key
            record.timestamp = _naive_utc(utcnow())

            session.add(record)
            await session.commit()
            await session.refresh(record)

        record.timestamp = as_utc(record.timestamp)
        return record

    async def get_key_pair(self, sender_id: str) -> Optional[KeyPairRecord]:
        async with self._session() as session:
            result = await session.exec(
                select(KeyPairRecord).where(KeyPairRecord.sender_id == sender_id)
            )
            record = result.one_or_none()

        if record is not None:
            record.timestamp = as_utc(record.timestamp)
        return record

    async def put_location(
        self, sender_id: str, encrypted_location: str, public_key: str
    ) -> LocationRecord:
        async with self._session() as session:
            result = await session.exec(
                select(LocationRecord).where(LocationRecord.sender_id == sender_id)
            )
            record = result.one_or_none()

            if record is None:
                record = LocationRecord(
                    sender_id=sender_id, encrypted_location="", public_key=""
                )

            record.encrypted_location = encrypted_location
            record.public_key = public_key
            record.timestamp = _naive_utc(utcnow())

            session.add(record)
            await session.commit()
            await session.refresh(record)

        record.timestamp = as_utc(record.timestamp)
        return record

    async def get_latest_location(self, sender_id: str) -> Optional[LocationRecord]:
        async with self._session() as session:
            result = await session.exec(
                select(LocationRecord).where(LocationRecord.sender_id == sender_id)
            )
            record = result.one_or_none()

        if record is not None:
            record.timestamp = as_utc(record.timestamp)
        return record

    async def purge_locations_older_than(self, cutoff: datetime) -> int:
        async with self._session() as session:
            result = await session.execute(
                delete(LocationRecord).where(
                    LocationRecord.timestamp < _naive_utc(cutoff)
                )
            )
            await session.commit()
            return result.rowcount or 0

    async def counts(self) -> StoreCounts:
        async with self._session() as session:
            locations = await session.exec(
                select(func.count()).select_from(LocationRecord)
            )
            key_pairs = await session.exec(
                select(func.count()).select_from(KeyPairRecord)
            )
            return StoreCounts(locations=locations.one(), key_pairs=key_pairs.one())


class RedisLocationStore(LocationStore):
    """
    Redis-backed store with JSON values.

    Location keys carry a TTL of purge_after_seconds, so Redis expiry
    enforces the cleanup policy even when the cleanup service is not running.
    """

    backend_name = "redis"

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        url: Optional[str] = None,
        prefix: Optional[str] = None,
        location_ttl_seconds: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self._client = client
        self._url = url or settings.redis_url
        self._prefix = prefix or settings.redis_key_prefix
        self._location_ttl = math.ceil(
            location_ttl_seconds or settings.purge_after_seconds
        )

    async def connect(self) -> None:
        """Initialize Redis connection."""
        if self._client is None:
            self._client = redis.from_url(
                self._url,
                encoding="utf-8",
                decode_responses=True,
            )
        await self._client.ping()
        logger.info("Redis connection established")

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis store not connected. Call connect() first.")
        return self._client

    def _key(self, registry: str, sender_id: str = "") -> str:
        return f"{self._prefix}:{registry}:{sender_id}"

    async def _next_id(self, registry: str) -> int:
        return int(await self.client.incr(f"{self._prefix}:ids:{registry}"))

    @staticmethod
    def _dump(record: Any) -> str:
        data = record.model_dump()
        data["timestamp"] = as_utc(record.timestamp).isoformat()
        return json.dumps(data)

    @staticmethod
    def _load(value: Optional[str]) -> Optional[dict[str, Any]]:
        if not value:
            return None
        data = json.loads(value)
        data["timestamp"] = as_utc(datetime.fromisoformat(data["timestamp"]))
        return data

    async def put_key_pair(
        self, sender_id: str, public_key: str, private_key: str
    ) -> KeyPairRecord:
        record = KeyPairRecord(
            id=await self._next_id("keys"),
            sender_id=sender_id,
            public_key=public_key,
            private_key=private_key,
            timestamp=utcnow(),
        )
        await self.client.set(self._key("keys", sender_id), self._dump(record))
        return record

    async def get_key_pair(self, sender_id: str) -> Optional[KeyPairRecord]:
        data = self._load(await self.client.get(self._key("keys", sender_id)))
        return KeyPairRecord(**data) if data else None

    async def put_location(
        self, sender_id: str, encrypted_location: str, public_key: str
    ) -> LocationRecord:
        record = LocationRecord(
            id=await self._next_id("location"),
            sender_id=sender_id,
            encrypted_location=encrypted_location,
            public_key=public_key,
            timestamp=utcnow(),
        )
        await self.client.setex(
            self._key("location", sender_id), self._location_ttl, self._dump(record)
        )
        return record

    async def get_latest_location(self, sender_id: str) -> Optional[LocationRecord]:
        data = self._load(await self.client.get(self._key("location", sender_id)))
        return LocationRecord(**data) if data else None

    async def purge_locations_older_than(self, cutoff: datetime) -> int:
        cutoff = as_utc(cutoff)
        purged = 0
        async for key in self.client.scan_iter(match=self._key("location", "*")):
            data = self._load(await self.client.get(key))
            if data and data["timestamp"] < cutoff:
                purged += await self.client.delete(key)
        return purged

    async def _count(self, registry: str) -> int:
        count = 0
        async for _ in self.client.scan_iter(match=self._key(registry, "*")):
            count += 1
        return count

    async def counts(self) -> StoreCounts:
        return StoreCounts(
            locations=await self._count("location"),
            key_pairs=await self._count("keys"),
        )


def build_store(settings: Optional[Settings] = None) -> LocationStore:
    """Create the store selected by settings.store_backend."""
    settings = settings or get_settings()

    if settings.store_backend == "sql":
        return SQLLocationStore(database_url=settings.database_url)
    if settings.store_backend == "redis":
        return RedisLocationStore(
            url=settings.redis_url,
            prefix=settings.redis_key_prefix,
            location_ttl_seconds=settings.purge_after_seconds,
        )
    return InMemoryLocationStore()
