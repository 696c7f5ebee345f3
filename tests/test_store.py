"""
Unit Tests for the Position Store

Run with:
    python -m pytest tests/test_store.py -v
"""

import json
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import redis.exceptions

from ephemeris.store import Database, MemoryTable, RedisTable, index_value, open_database


def record(ts, **extra):
    return {"id": str(ts), "timestamp": ts, **extra}


class TestIndexValue(unittest.TestCase):

    def test_numeric(self):
        self.assertEqual(index_value({"t": 5}, "t"), 5.0)
        self.assertEqual(index_value({"t": 2.5}, "t"), 2.5)

    def test_unusable(self):
        for value in ("5", None, True, float("nan"), float("inf")):
            self.assertIsNone(index_value({"t": value}, "t"))
        self.assertIsNone(index_value({}, "t"))


class TestMemoryTable(unittest.IsolatedAsyncioTestCase):
    """Test the in-memory table contract."""

    async def asyncSetUp(self):
        self.table = MemoryTable("positions", indexes=("timestamp",))
        await self.table.bulk_upsert(record(ts) for ts in (30, 10, 50, 20, 40))

    async def test_upsert_overwrites(self):
        await self.table.upsert(record(10, latitude=1.0))
        await self.table.upsert(record(10, latitude=2.0))
        self.assertEqual((await self.table.get("10"))["latitude"], 2.0)
        self.assertEqual(await self.table.count(), 5)

    async def test_get_missing(self):
        self.assertIsNone(await self.table.get("nope"))

    async def test_returned_records_are_copies(self):
        fetched = await self.table.get("10")
        fetched["timestamp"] = 999
        self.assertEqual((await self.table.get("10"))["timestamp"], 10)

    async def test_order_by(self):
        ascending = await self.table.order_by("timestamp")
        self.assertEqual([r["timestamp"] for r in ascending], [10, 20, 30, 40, 50])

        newest = await self.table.order_by("timestamp", descending=True, limit=2)
        self.assertEqual([r["timestamp"] for r in newest], [50, 40])

    async def test_between_is_inclusive(self):
        result = await self.table.between("timestamp", 20, 40)
        self.assertEqual([r["timestamp"] for r in result], [20, 30, 40])

    async def test_below_is_exclusive(self):
        result = await self.table.below("timestamp", 30)
        self.assertEqual([r["timestamp"] for r in result], [10, 20])
        self.assertEqual(await self.table.primary_keys_below("timestamp", 50, limit=3), ["10", "20", "30"])

    async def test_non_numeric_index_excluded(self):
        await self.table.upsert({"id": "bad", "timestamp": "yesterday"})
        self.assertEqual(await self.table.count(), 6)
        ordered = await self.table.order_by("timestamp")
        self.assertNotIn("bad", [r["id"] for r in ordered])
        self.assertEqual(len(await self.table.all()), 6)

    async def test_delete(self):
        await self.table.delete("10")
        await self.table.delete("10")
        self.assertEqual(await self.table.count(), 4)
        self.assertEqual(await self.table.bulk_delete(["20", "30", "missing"]), 2)
        self.assertEqual(await self.table.count(), 2)

    async def test_unknown_index(self):
        with self.assertRaises(KeyError):
            await self.table.order_by("altitude")


class TestRedisTable(unittest.IsolatedAsyncioTestCase):
    """Test Redis key layout and query translation with a mocked client."""

    def setUp(self):
        self.pipe = MagicMock()
        self.pipe.execute = AsyncMock(return_value=[1, 1])
        self.pipe.__aenter__ = AsyncMock(return_value=self.pipe)
        self.pipe.__aexit__ = AsyncMock(return_value=False)

        self.client = MagicMock()
        self.client.pipeline.return_value = self.pipe
        self.table = RedisTable(self.client, "positions", ("timestamp",), namespace="test")

    async def test_upsert_writes_hash_and_index(self):
        rec = record(100)
        await self.table.upsert(rec)

        self.pipe.hset.assert_called_once_with("test:positions:records", "100", json.dumps(rec))
        self.pipe.zadd.assert_called_once_with("test:positions:idx:timestamp", {"100": 100.0})
        self.pipe.execute.assert_awaited_once()

    async def test_upsert_non_numeric_drops_from_index(self):
        await self.table.upsert({"id": "x", "timestamp": "bad"})
        self.pipe.zadd.assert_not_called()
        self.pipe.zrem.assert_called_once_with("test:positions:idx:timestamp", "x")

    async def test_order_by_descending(self):
        self.client.zrevrange = AsyncMock(return_value=["200", "100"])
        self.client.hmget = AsyncMock(return_value=[json.dumps(record(200)), json.dumps(record(100))])

        result = await self.table.order_by("timestamp", descending=True, limit=2)

        self.client.zrevrange.assert_awaited_once_with("test:positions:idx:timestamp", 0, 1)
        self.assertEqual([r["timestamp"] for r in result], [200, 100])

    async def test_below_uses_exclusive_bound(self):
        self.client.zrangebyscore = AsyncMock(return_value=["100"])
        ids = await self.table.primary_keys_below("timestamp", 150, limit=10)

        self.client.zrangebyscore.assert_awaited_once_with(
            "test:positions:idx:timestamp", "-inf", "(150", start=0, num=10
        )
        self.assertEqual(ids, ["100"])

    async def test_all_keeps_undecodable_records_addressable(self):
        self.client.hgetall = AsyncMock(return_value={
            "100": json.dumps(record(100)),
            "101": '{"id": "101", "times',
            "102": "null",
            "103": json.dumps(record(999)),
        })

        result = await self.table.all()

        self.assertEqual(result, [record(100), {"id": "101"}, {"id": "102"}, {"id": "103"}])

    async def test_load_keys_by_requested_id(self):
        self.client.zrange = AsyncMock(return_value=["100", "200"])
        self.client.hmget = AsyncMock(return_value=["[]", json.dumps(record(200))])

        result = await self.table.order_by("timestamp")

        self.assertEqual(result, [{"id": "100"}, record(200)])

    async def test_get_undecodable(self):
        self.client.hget = AsyncMock(return_value="{not json")
        self.assertEqual(await self.table.get("x"), {"id": "x"})

    async def test_bulk_delete_counts_removed(self):
        self.pipe.execute = AsyncMock(return_value=[1, 1, 0, 0])
        self.assertEqual(await self.table.bulk_delete(["a", "b"]), 1)


class TestOpenDatabase(unittest.IsolatedAsyncioTestCase):

    async def test_no_url_uses_memory(self):
        db = await open_database("")
        self.assertIsInstance(db.positions, MemoryTable)
        self.assertEqual(db.positions.indexes, ("timestamp",))
        self.assertEqual(db.element_sets.indexes, ("fetched_at",))

    async def test_unreachable_redis_falls_back(self):
        client = MagicMock()
        client.ping = AsyncMock(side_effect=redis.exceptions.ConnectionError("refused"))
        with patch("ephemeris.store.aioredis.from_url", return_value=client):
            db = await open_database("redis://localhost:6390")
        self.assertIsInstance(db.crew, MemoryTable)

    async def test_reachable_redis(self):
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)
        with patch("ephemeris.store.aioredis.from_url", return_value=client):
            db = await open_database("redis://localhost:6379", namespace="ns")
        self.assertIsInstance(db.positions, RedisTable)
        self.assertIs(db.positions.client, client)

    async def test_in_memory_tables_are_separate(self):
        db = Database.in_memory()
        await db.positions.upsert(record(1))
        self.assertEqual(await db.element_sets.count(), 0)


if __name__ == "__main__":
    unittest.main()
