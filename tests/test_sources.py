"""
Unit Tests for Data Sources

HTTP is mocked at the ``requests.Session`` level.

Run with:
    python -m pytest tests/test_sources.py -v
"""

import json
import time
import unittest
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import requests

from config import (
    CREW_API,
    FALLBACK_ISS_TLE,
    POSITION_API,
    POSITION_API_LEGACY,
    PROXY_URL,
    TLE_API_BACKUP,
    TLE_API_PRIMARY,
)
from ephemeris.exceptions import MalformedData, SourceUnavailable
from ephemeris.mission_db import find_mission_profile
from ephemeris.models import ElementSetSource, Visibility
from ephemeris.sources import ElementSetResolver, SourceClient, fetch_crew, fetch_position, proxied

ISS_LINE1 = "1 25544U 98067A   23259.57580000  .00012022  00000-0  21844-3 0  9995"
ISS_LINE2 = "2 25544  51.6416 220.9944 0004263 122.0101 312.2755 15.49541986415598"
TLE_TEXT = f"ISS (ZARYA)\n{ISS_LINE1}\n{ISS_LINE2}\n"


def response(text="", status=200):
    return Mock(ok=200 <= status < 300, status_code=status, text=text)


def routed_session(routes):
    """Session whose GET answers from a url -> response-or-exception map."""
    session = Mock(spec=requests.Session)

    def get(url, timeout=None):
        result = routes.get(url, response(status=404))
        if isinstance(result, Exception):
            raise result
        return result

    session.get.side_effect = get
    return session


class TestSourceClient(unittest.IsolatedAsyncioTestCase):

    async def test_get_text(self):
        client = SourceClient(routed_session({"https://a": response("hello")}), timeout=5)
        self.assertEqual(await client.get_text("https://a"), "hello")

    async def test_non_2xx(self):
        client = SourceClient(routed_session({"https://a": response(status=503)}), timeout=5)
        with self.assertRaises(SourceUnavailable) as ctx:
            await client.get_text("https://a")
        self.assertEqual(ctx.exception.status_code, 503)

    async def test_network_error(self):
        session = routed_session({"https://a": requests.ConnectionError("refused")})
        with self.assertRaises(SourceUnavailable):
            await SourceClient(session, timeout=5).get_text("https://a")

    async def test_deadline(self):
        session = Mock(spec=requests.Session)
        session.get.side_effect = lambda url, timeout=None: time.sleep(0.5)
        client = SourceClient(session, timeout=0.05)
        with self.assertRaises(SourceUnavailable):
            await client.get_text("https://slow")

    async def test_invalid_json(self):
        client = SourceClient(routed_session({"https://a": response("<html>")}), timeout=5)
        with self.assertRaises(MalformedData):
            await client.get_json("https://a")

    async def test_proxy_retry(self):
        session = routed_session({
            "https://a": response(status=500),
            proxied("https://a"): response("via proxy"),
        })
        client = SourceClient(session, timeout=5)

        self.assertEqual(await client.get_text_with_proxy("https://a"), "via proxy")
        self.assertEqual(session.get.call_count, 2)
        self.assertTrue(session.get.call_args_list[1][0][0].startswith(PROXY_URL))

    def test_proxied_encodes_target(self):
        self.assertEqual(
            proxied("http://x.org/a?b=1&c=2"),
            f"{PROXY_URL}http%3A%2F%2Fx.org%2Fa%3Fb%3D1%26c%3D2",
        )


class TestElementSetResolver(unittest.IsolatedAsyncioTestCase):

    async def test_primary(self):
        session = routed_session({TLE_API_PRIMARY: response(TLE_TEXT)})
        es = await ElementSetResolver(SourceClient(session, timeout=5)).fetch_element_set()

        self.assertEqual(es.source, ElementSetSource.PRIMARY)
        self.assertEqual(es.as_lines(), (ISS_LINE1, ISS_LINE2))
        self.assertEqual(es.epoch.year, 2023)
        self.assertTrue(es.id.startswith("tle-"))

    async def test_primary_via_proxy(self):
        session = routed_session({
            TLE_API_PRIMARY: response(status=403),
            proxied(TLE_API_PRIMARY): response(TLE_TEXT),
        })
        es = await ElementSetResolver(SourceClient(session, timeout=5)).fetch_element_set()
        self.assertEqual(es.source, ElementSetSource.PRIMARY)

    async def test_malformed_primary_falls_to_backup(self):
        session = routed_session({
            TLE_API_PRIMARY: response("No GP data found"),
            proxied(TLE_API_PRIMARY): response("No GP data found"),
            TLE_API_BACKUP: response(TLE_TEXT),
        })
        es = await ElementSetResolver(SourceClient(session, timeout=5)).fetch_element_set()
        self.assertEqual(es.source, ElementSetSource.BACKUP)

    async def test_everything_down_uses_fallback(self):
        session = Mock(spec=requests.Session)
        session.get.side_effect = requests.ConnectionError("offline")
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)

        es = await ElementSetResolver(SourceClient(session, timeout=5)).fetch_element_set(now=now)

        self.assertEqual(es.source, ElementSetSource.FALLBACK)
        self.assertEqual(es.line1, FALLBACK_ISS_TLE["line1"])
        self.assertEqual(es.line2, FALLBACK_ISS_TLE["line2"])
        self.assertEqual(es.fetched_at, now.timestamp())
        # primary, primary via proxy, backup, backup via proxy
        self.assertEqual(session.get.call_count, 4)


class TestFetchPosition(unittest.IsolatedAsyncioTestCase):

    async def test_primary_feed(self):
        payload = {
            "latitude": 12.5, "longitude": -45.25, "altitude": 418.2,
            "velocity": 27580.1, "timestamp": 1694872800, "visibility": "eclipsed",
        }
        session = routed_session({POSITION_API: response(json.dumps(payload))})

        pos = await fetch_position(SourceClient(session, timeout=5))

        self.assertEqual(pos.id, "1694872800")
        self.assertEqual(pos.visibility, Visibility.ECLIPSED)
        self.assertEqual(pos.altitude, 418.2)

    async def test_legacy_feed(self):
        payload = {
            "message": "success", "timestamp": 1694872800,
            "iss_position": {"latitude": "-12.3456", "longitude": "100.5"},
        }
        session = routed_session({
            POSITION_API: response(status=429),
            proxied(POSITION_API_LEGACY): response(json.dumps(payload)),
        })

        pos = await fetch_position(SourceClient(session, timeout=5))

        self.assertAlmostEqual(pos.latitude, -12.3456)
        self.assertEqual(pos.altitude, 417.5)
        self.assertEqual(pos.velocity, 27600.0)
        self.assertEqual(pos.visibility, Visibility.ORBITING)

    async def test_both_feeds_fail(self):
        session = routed_session({
            POSITION_API: response(status=500),
            proxied(POSITION_API_LEGACY): response(json.dumps({"message": "failure"})),
        })
        with self.assertRaises(SourceUnavailable):
            await fetch_position(SourceClient(session, timeout=5))


class TestFetchCrew(unittest.IsolatedAsyncioTestCase):

    async def test_enriched_iss_crew(self):
        payload = {"people": [
            {"name": "Suni Williams", "craft": "ISS"},
            {"name": "Jane Newcomer", "craft": "ISS"},
            {"name": "Li Guangsu", "craft": "Tiangong"},
        ]}
        session = routed_session({proxied(CREW_API): response(json.dumps(payload))})

        crew = await fetch_crew(SourceClient(session, timeout=5), now=1694872800.0)

        self.assertEqual([a.name for a in crew], ["Suni Williams", "Jane Newcomer"])
        suni, jane = crew
        self.assertEqual(suni.id, "suni-williams")
        self.assertEqual(suni.role, "Commander")
        self.assertEqual(suni.agency, "NASA")
        self.assertEqual(suni.launch_date, "2024-06-05")
        self.assertEqual(jane.role, "Astronaut")
        self.assertEqual(jane.agency, "Unknown")
        self.assertIsNone(jane.image)

    async def test_failure_returns_empty(self):
        session = routed_session({proxied(CREW_API): response(status=502)})
        self.assertEqual(await fetch_crew(SourceClient(session, timeout=5)), [])

    async def test_malformed_people_return_empty(self):
        for people in (
            [{"name": 42, "craft": "ISS"}],
            ["Suni Williams"],
            {"name": "Suni Williams"},
        ):
            with self.subTest(people=people):
                payload = json.dumps({"people": people})
                session = routed_session({proxied(CREW_API): response(payload)})
                self.assertEqual(await fetch_crew(SourceClient(session, timeout=5)), [])

    async def test_default_client_is_closed(self):
        session = routed_session({proxied(CREW_API): response(json.dumps({"people": []}))})
        with patch("ephemeris.sources.requests.Session", return_value=session):
            self.assertEqual(await fetch_crew(), [])
        session.close.assert_called_once()


class TestMissionDatabase(unittest.TestCase):

    def test_exact_match_ignores_case_and_punctuation(self):
        self.assertEqual(find_mission_profile("nick HAGUE")["role"], "Commander")

    def test_alias(self):
        self.assertIs(find_mission_profile("Butch Wilmore"), find_mission_profile("Barry Wilmore"))

    def test_last_name_match(self):
        self.assertEqual(find_mission_profile("Hague")["agency"], "NASA")

    def test_unknown(self):
        self.assertIsNone(find_mission_profile("Jane Newcomer"))
        self.assertIsNone(find_mission_profile(""))


if __name__ == "__main__":
    unittest.main()
