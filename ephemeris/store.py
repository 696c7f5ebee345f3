"""
Position Store

Keyed record tables with ordered and range queries on numeric index fields.
Records are plain JSON-compatible dicts keyed by their ``id``.

Two backends share the ``Table`` contract:

- ``MemoryTable``: process-local dict, the default.
- ``RedisTable``: one hash of JSON records plus one sorted set per index
  field, using ``redis.asyncio``.

A record whose indexed field is missing or not a finite number is stored but
never returned from index queries.
"""

import json
import math
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence

import redis.asyncio as aioredis
import redis.exceptions
import structlog

logger = structlog.get_logger(__name__)

Record = Dict[str, Any]


def index_value(record: Record, field: str) -> Optional[float]:
    """Numeric value of ``field`` in a record, or None when unusable as a key."""
    value = record.get(field)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


class Table(ABC):
    """Async keyed table contract."""

    def __init__(self, name: str, indexes: Sequence[str] = ()):
        self.name = name
        self.indexes = tuple(indexes)

    def _check_index(self, field: str) -> None:
        if field not in self.indexes:
            raise KeyError(f"{self.name} has no index on {field!r}")

    @abstractmethod
    async def upsert(self, record: Record) -> None: ...

    @abstractmethod
    async def bulk_upsert(self, records: Iterable[Record]) -> int: ...

    @abstractmethod
    async def get(self, record_id: str) -> Optional[Record]: ...

    @abstractmethod
    async def delete(self, record_id: str) -> None: ...

    @abstractmethod
    async def bulk_delete(self, record_ids: Iterable[str]) -> int: ...

    @abstractmethod
    async def count(self) -> int: ...

    @abstractmethod
    async def all(self) -> List[Record]: ...

    @abstractmethod
    async def order_by(self, field: str, descending: bool = False,
                       limit: Optional[int] = None) -> List[Record]:
        """Records sorted by an index field."""

    @abstractmethod
    async def between(self, field: str, lower: float, upper: float) -> List[Record]:
        """Records with ``lower <= field <= upper``, ascending."""

    @abstractmethod
    async def below(self, field: str, value: float, limit: Optional[int] = None) -> List[Record]:
        """Records with ``field < value``, ascending."""

    async def primary_keys_below(self, field: str, value: float, limit: Optional[int] = None) -> List[str]:
        return [r['id'] for r in await self.below(field, value, limit)]


class MemoryTable(Table):
    """In-process table backed by a dict."""

    def __init__(self, name: str, indexes: Sequence[str] = ()):
        super().__init__(name, indexes)
        self._records: Dict[str, Record] = {}

    async def upsert(self, record):
        self._records[record['id']] = dict(record)

    async def bulk_upsert(self, records):
        n = 0
        for record in records:
            self._records[record['id']] = dict(record)
            n += 1
        return n

    async def get(self, record_id):
        record = self._records.get(record_id)
        return dict(record) if record is not None else None

    async def delete(self, record_id):
        self._records.pop(record_id, None)

    async def bulk_delete(self, record_ids):
        n = 0
        for record_id in record_ids:
            if self._records.pop(record_id, None) is not None:
                n += 1
        return n

    async def count(self):
        return len(self._records)

    async def all(self):
        return [dict(r) for r in self._records.values()]

    def _indexed(self, field):
        self._check_index(field)
        keyed = []
        for record in self._records.values():
            key = index_value(record, field)
            if key is not None:
                keyed.append((key, record['id'], record))
        keyed.sort(key=lambda item: (item[0], item[1]))
        return keyed

    async def order_by(self, field, descending=False, limit=None):
        keyed = self._indexed(field)
        if descending:
            keyed.reverse()
        if limit is not None:
            keyed = keyed[:limit]
        return [dict(r) for _, _, r in keyed]

    async def between(self, field, lower, upper):
        return [dict(r) for key, _, r in self._indexed(field) if lower <= key <= upper]

    async def below(self, field, value, limit=None):
        matched = [dict(r) for key, _, r in self._indexed(field) if key < value]
        return matched[:limit] if limit is not None else matched


class RedisTable(Table):
    """
    Table stored in Redis.

    Layout under ``<namespace>:<table>``: a hash ``records`` mapping id to
    JSON, and a sorted set ``idx:<field>`` per index scored by the field.
    """

    def __init__(self, client: aioredis.Redis, name: str, indexes: Sequence[str] = (),
                 namespace: str = "ephemeris"):
        super().__init__(name, indexes)
        self.client = client
        self._prefix = f"{namespace}:{name}"

    @property
    def _records_key(self):
        return f"{self._prefix}:records"

    def _index_key(self, field):
        return f"{self._prefix}:idx:{field}"

    def _stage_upsert(self, pipe, record):
        pipe.hset(self._records_key, record['id'], json.dumps(record))
        for field in self.indexes:
            key = index_value(record, field)
            if key is None:
                pipe.zrem(self._index_key(field), record['id'])
            else:
                pipe.zadd(self._index_key(field), {record['id']: key})

    def _stage_delete(self, pipe, record_id):
        pipe.hdel(self._records_key, record_id)
        for field in self.indexes:
            pipe.zrem(self._index_key(field), record_id)

    async def upsert(self, record):
        async with self.client.pipeline(transaction=True) as pipe:
            self._stage_upsert(pipe, record)
            await pipe.execute()

    async def bulk_upsert(self, records):
        records = list(records)
        if not records:
            return 0
        async with self.client.pipeline(transaction=True) as pipe:
            for record in records:
                self._stage_upsert(pipe, record)
            await pipe.execute()
        return len(records)

    def _decode(self, record_id, raw):
        """
        Parse a stored payload. Anything that is not a JSON object carrying
        its own hash field as ``id`` comes back as ``{"id": record_id}`` so
        callers can still address and delete it.
        """
        try:
            record = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Undecodable record", table=self.name, record_id=record_id)
            return {'id': record_id}
        if not isinstance(record, dict) or record.get('id') != record_id:
            logger.warning("Record does not match its key", table=self.name, record_id=record_id)
            return {'id': record_id}
        return record

    async def get(self, record_id):
        raw = await self.client.hget(self._records_key, record_id)
        return self._decode(record_id, raw) if raw is not None else None

    async def delete(self, record_id):
        async with self.client.pipeline(transaction=True) as pipe:
            self._stage_delete(pipe, record_id)
            await pipe.execute()

    async def bulk_delete(self, record_ids):
        record_ids = list(record_ids)
        if not record_ids:
            return 0
        async with self.client.pipeline(transaction=True) as pipe:
            for record_id in record_ids:
                self._stage_delete(pipe, record_id)
            results = await pipe.execute()
        # First command staged per id is the HDEL
        stride = 1 + len(self.indexes)
        return sum(1 for i in range(0, len(results), stride) if results[i])

    async def count(self):
        return await self.client.hlen(self._records_key)

    async def all(self):
        raw = await self.client.hgetall(self._records_key)
        return [self._decode(record_id, r) for record_id, r in raw.items()]

    async def _load(self, record_ids):
        if not record_ids:
            return []
        raw = await self.client.hmget(self._records_key, record_ids)
        return [self._decode(record_id, r) for record_id, r in zip(record_ids, raw) if r is not None]

    async def order_by(self, field, descending=False, limit=None):
        self._check_index(field)
        stop = -1 if limit is None else limit - 1
        if limit == 0:
            return []
        if descending:
            ids = await self.client.zrevrange(self._index_key(field), 0, stop)
        else:
            ids = await self.client.zrange(self._index_key(field), 0, stop)
        return await self._load(ids)

    async def between(self, field, lower, upper):
        self._check_index(field)
        ids = await self.client.zrangebyscore(self._index_key(field), lower, upper)
        return await self._load(ids)

    async def below(self, field, value, limit=None):
        self._check_index(field)
        kwargs = {'start': 0, 'num': limit} if limit is not None else {}
        ids = await self.client.zrangebyscore(self._index_key(field), '-inf', f"({value}", **kwargs)
        return await self._load(ids)

    async def primary_keys_below(self, field, value, limit=None):
        self._check_index(field)
        kwargs = {'start': 0, 'num': limit} if limit is not None else {}
        return list(await self.client.zrangebyscore(
            self._index_key(field), '-inf', f"({value}", **kwargs
        ))


class Database:
    """The tracker's three tables."""

    def __init__(self, positions: Table, element_sets: Table, crew: Table):
        self.positions = positions
        self.element_sets = element_sets
        self.crew = crew

    @classmethod
    def in_memory(cls) -> "Database":
        return cls(
            positions=MemoryTable("positions", indexes=("timestamp",)),
            element_sets=MemoryTable("element_sets", indexes=("fetched_at",)),
            crew=MemoryTable("crew", indexes=("fetched_at",)),
        )

    @classmethod
    def on_redis(cls, client: aioredis.Redis, namespace: str = "ephemeris") -> "Database":
        return cls(
            positions=RedisTable(client, "positions", ("timestamp",), namespace),
            element_sets=RedisTable(client, "element_sets", ("fetched_at",), namespace),
            crew=RedisTable(client, "crew", ("fetched_at",), namespace),
        )


async def open_database(redis_url: Optional[str] = None, namespace: str = "ephemeris") -> Database:
    """
    Connect to Redis when a URL is given, otherwise (or on failure) use memory.
    """
    if not redis_url:
        logger.info("No Redis URL configured, using in-memory store")
        return Database.in_memory()

    try:
        client = aioredis.from_url(redis_url, decode_responses=True)
        await client.ping()
    except (redis.exceptions.RedisError, OSError, ValueError) as e:
        logger.warning(f"Redis connection failed: {e}. Falling back to in-memory store.")
        return Database.in_memory()

    logger.info("Redis connection established")
    return Database.on_redis(client, namespace)
