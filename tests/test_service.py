"""
Unit Tests for the Tracker Service

Run with:
    python -m pytest tests/test_service.py -v
"""

import unittest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

from config import ServiceConfig
from ephemeris.models import ElementSet, ElementSetSource, ObserverLocation
from ephemeris.service import TrackerService
from ephemeris.sources import SourceClient
from ephemeris.store import Database

ISS_LINE1 = "1 25544U 98067A   23259.57580000  .00012022  00000-0  21844-3 0  9995"
ISS_LINE2 = "2 25544  51.6416 220.9944 0004263 122.0101 312.2755 15.49541986415598"

NOW = datetime(2023, 9, 16, 14, 0, tzinfo=timezone.utc)


def mock_resolver():
    resolver = Mock()
    resolver.fetch_element_set = AsyncMock(return_value=ElementSet.from_lines(
        ISS_LINE1, ISS_LINE2, source=ElementSetSource.FALLBACK, fetched_at=NOW.timestamp(),
    ))
    return resolver


def mock_coordinator():
    coordinator = Mock()
    coordinator.sync_now = AsyncMock(return_value={})
    return coordinator


class TestTrackerService(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.db = Database.in_memory()
        self.resolver = mock_resolver()
        self.coordinator = mock_coordinator()
        self.service = TrackerService(
            self.db, ServiceConfig(), resolver=self.resolver, coordinator=self.coordinator,
        )

    async def test_start_and_stop(self):
        report = await self.service.start()

        self.assertFalse(report.needs_refetch)
        self.coordinator.start.assert_called_once()
        self.assertTrue(self.service.retention.is_running())

        await self.service.stop()
        self.coordinator.stop.assert_called_once()
        self.assertFalse(self.service.retention.is_running())

    async def test_uses_injected_coordinator_visibility(self):
        self.assertIs(self.service.visibility, self.coordinator.visibility)

    async def test_built_coordinator_shares_client_and_visibility(self):
        service = TrackerService(self.db, ServiceConfig(), resolver=self.resolver)

        self.assertIs(service.coordinator.visibility, service.visibility)
        self.assertIs(service.coordinator.client, service.client)
        self.assertIs(service.coordinator.handlers["element_set"].resolver, self.resolver)

    async def test_stop_closes_client(self):
        self.service.client = Mock(spec=SourceClient)
        await self.service.start()
        await self.service.stop()
        self.service.client.close.assert_called_once()

    async def test_start_survives_corrupt_payload(self):
        self.db.positions.order_by = AsyncMock(side_effect=ValueError("bad payload"))
        report = await self.service.start()
        await self.service.stop()

        self.assertEqual(report.total_removed, 0)
        self.coordinator.start.assert_called_once()

    async def test_start_refetches_after_corruption(self):
        await self.db.element_sets.upsert({"id": "tle-1", "fetched_at": 1.0, "line1": "junk"})
        report = await self.service.start()
        await self.service.stop()

        self.assertTrue(report.needs_refetch)
        self.coordinator.sync_now.assert_awaited_once()

    async def test_latest_element_set_prefers_store(self):
        stored = ElementSet.from_lines(ISS_LINE1, ISS_LINE2, fetched_at=NOW.timestamp() + 60)
        older = ElementSet.from_lines(ISS_LINE1, ISS_LINE2, fetched_at=NOW.timestamp())
        await self.db.element_sets.bulk_upsert(
            [older.model_dump(mode="json"), stored.model_dump(mode="json")]
        )

        self.assertEqual((await self.service.latest_element_set()).id, stored.id)
        self.resolver.fetch_element_set.assert_not_awaited()

    async def test_latest_element_set_resolves_when_empty(self):
        es = await self.service.latest_element_set()

        self.assertEqual(es.source, ElementSetSource.FALLBACK)
        self.assertEqual(await self.db.element_sets.count(), 1)

    async def test_predict_passes(self):
        observer = ObserverLocation(lat=45.5, lng=-122.6)
        passes = await self.service.predict_passes(observer, max_passes=2, max_days=2, now=NOW)

        self.assertGreater(len(passes), 0)
        self.assertLessEqual(len(passes), 2)

    async def test_fill_gaps(self):
        start = NOW.timestamp() - 26 * 3600
        end = NOW.timestamp() - 3600
        await self.db.positions.bulk_upsert([
            {"id": str(ts), "latitude": 0.0, "longitude": 0.0, "altitude": 420.0,
             "velocity": 27600.0, "timestamp": ts, "visibility": "daylight"}
            for ts in (start, end)
        ])

        added = await self.service.fill_gaps(start, end, now=NOW.timestamp())
        self.assertEqual(added, 301)


if __name__ == "__main__":
    unittest.main()
