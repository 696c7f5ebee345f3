"""
Data Sources

HTTP access to the live ISS data feeds: element sets, current position and
crew. Blocking ``requests`` calls run in the event loop's default executor
under an ``asyncio.wait_for`` deadline so a hung socket never stalls the loop.

Element sets fall back through primary -> backup -> hardcoded fallback. Each
live source is tried directly and then through the CORS proxy.
"""

import asyncio
import json
import time
from datetime import datetime, timezone
from functools import partial
from typing import Any, List, Optional
from urllib.parse import quote

import requests
import structlog

from config import (
    AVERAGE_ISS_ALTITUDE_KM,
    AVERAGE_ISS_VELOCITY_KMH,
    CREW_API,
    FALLBACK_ISS_TLE,
    FALLBACK_TLE_MAX_AGE_DAYS,
    ISS_NORAD_ID,
    POSITION_API,
    POSITION_API_LEGACY,
    PROXY_URL,
    TLE_API_BACKUP,
    TLE_API_PRIMARY,
    config,
)
from ephemeris.exceptions import MalformedData, SourceUnavailable
from ephemeris.mission_db import find_mission_profile
from ephemeris.models import (
    Astronaut,
    ElementSet,
    ElementSetSource,
    GeodeticPosition,
    Visibility,
    astronaut_id,
    position_id,
)
from ephemeris.tle_parser import parse_tle_lines, tle_age_days

logger = structlog.get_logger(__name__)


def proxied(url: str, proxy_url: str = PROXY_URL) -> str:
    """Wrap a target URL in the proxy endpoint."""
    return f"{proxy_url}{quote(url, safe='')}"


class SourceClient:
    """
    Thin async wrapper around a ``requests.Session``.

    Args:
        session: Session to use, mainly for injection in tests
        timeout: Per-request deadline in seconds
        proxy_url: Prefix of the indirection endpoint
    """

    def __init__(self, session: Optional[requests.Session] = None,
                 timeout: Optional[float] = None, proxy_url: str = PROXY_URL):
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else config.FETCH_TIMEOUT_S
        self.proxy_url = proxy_url

    def close(self) -> None:
        self.session.close()

    async def get_text(self, url: str) -> str:
        """
        GET a URL and return its body.

        Raises:
            SourceUnavailable: On network error, timeout or a non-2xx status
        """
        loop = asyncio.get_running_loop()
        call = partial(self.session.get, url, timeout=self.timeout)
        try:
            response = await asyncio.wait_for(
                loop.run_in_executor(None, call), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise SourceUnavailable(url, f"timed out after {self.timeout:.0f}s")
        except requests.RequestException as e:
            raise SourceUnavailable(url, str(e))

        if not response.ok:
            raise SourceUnavailable(url, "unexpected response", status_code=response.status_code)
        return response.text

    async def get_json(self, url: str) -> Any:
        text = await self.get_text(url)
        try:
            return json.loads(text)
        except ValueError as e:
            raise MalformedData(url, f"invalid JSON: {e}")

    async def get_text_with_proxy(self, url: str) -> str:
        """Try ``url`` directly, then through the proxy."""
        try:
            return await self.get_text(url)
        except SourceUnavailable as e:
            logger.debug(f"Direct fetch failed, retrying via proxy: {e}")
            return await self.get_text(proxied(url, self.proxy_url))


class ElementSetResolver:
    """
    Resolves the current ISS element set.

    ``fetch_element_set`` never raises: when every live source fails it
    returns the hardcoded fallback from ``config``.
    """

    def __init__(self, client: Optional[SourceClient] = None,
                 sources=((ElementSetSource.PRIMARY, TLE_API_PRIMARY),
                          (ElementSetSource.BACKUP, TLE_API_BACKUP)),
                 catalog_number: int = ISS_NORAD_ID):
        self.client = client or SourceClient()
        self.sources = sources
        self.catalog_number = catalog_number

    async def _fetch_from(self, url: str, source: ElementSetSource) -> ElementSet:
        text = await self.client.get_text_with_proxy(url)
        line1, line2 = parse_tle_lines(text, self.catalog_number, source=url)
        return ElementSet.from_lines(line1, line2, source=source, fetched_at=time.time())

    async def fetch_element_set(self, now: Optional[datetime] = None) -> ElementSet:
        for source, url in self.sources:
            try:
                element_set = await self._fetch_from(url, source)
            except SourceUnavailable as e:
                # MalformedData lands here too
                logger.warning(f"Element set source {source.value} failed: {e}")
                continue
            logger.info(f"Fetched element set from {source.value}", epoch=element_set.epoch.isoformat())
            return element_set

        return self.fallback(now)

    def fallback(self, now: Optional[datetime] = None) -> ElementSet:
        """Hardcoded element set, with a warning when it has gone stale."""
        if now is None:
            now = datetime.now(timezone.utc)
        line1 = FALLBACK_ISS_TLE['line1']
        line2 = FALLBACK_ISS_TLE['line2']
        logger.warning("All element set sources failed, using hardcoded fallback")

        age_days = tle_age_days(line1, now=now)
        if age_days > FALLBACK_TLE_MAX_AGE_DAYS:
            logger.warning(
                f"Fallback TLE is {age_days:.1f} days old. "
                f"Propagation accuracy degrades with age. Update FALLBACK_ISS_TLE in config.py",
                age_days=round(age_days, 1),
            )
        return ElementSet.from_lines(
            line1, line2, source=ElementSetSource.FALLBACK, fetched_at=now.timestamp()
        )


async def fetch_position(client: Optional[SourceClient] = None) -> GeodeticPosition:
    """
    Current ISS position.

    The primary feed reports altitude, velocity and lighting. The legacy feed
    only reports latitude and longitude, so average altitude and velocity
    are filled in.

    Raises:
        SourceUnavailable: When both feeds fail
    """
    if client is None:
        client = SourceClient()
        try:
            return await fetch_position(client)
        finally:
            client.close()

    try:
        data = await client.get_json(POSITION_API)
        return GeodeticPosition(
            id=position_id(data['timestamp']),
            latitude=data['latitude'],
            longitude=data['longitude'],
            altitude=data['altitude'],
            velocity=data['velocity'],
            timestamp=data['timestamp'],
            visibility=data['visibility'],
        )
    except (SourceUnavailable, KeyError, TypeError, ValueError) as e:
        logger.warning(f"Primary position feed failed, trying legacy feed: {e}")

    url = proxied(POSITION_API_LEGACY, client.proxy_url)
    data = await client.get_json(url)
    try:
        iss = data['iss_position']
        return GeodeticPosition(
            id=position_id(data['timestamp']),
            latitude=float(iss['latitude']),
            longitude=float(iss['longitude']),
            altitude=AVERAGE_ISS_ALTITUDE_KM,
            velocity=AVERAGE_ISS_VELOCITY_KMH,
            timestamp=data['timestamp'],
            visibility=Visibility.ORBITING,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedData(url, f"invalid legacy position structure: {e}")


async def fetch_crew(client: Optional[SourceClient] = None,
                     now: Optional[float] = None) -> List[Astronaut]:
    """Current ISS crew, enriched from the mission database. Empty on failure."""
    if client is None:
        client = SourceClient()
        try:
            return await fetch_crew(client, now)
        finally:
            client.close()

    fetched_at = now if now is not None else time.time()
    try:
        data = await client.get_json(proxied(CREW_API, client.proxy_url))
        people = [p for p in data.get('people', []) if p.get('craft') == 'ISS']
        return [_enrich(person, fetched_at) for person in people if person.get('name')]
    except (SourceUnavailable, AttributeError, TypeError, ValueError) as e:
        logger.warning(f"Crew data fetch failed: {e}")
        return []


def _enrich(person: dict, fetched_at: float) -> Astronaut:
    name = person['name']
    profile = find_mission_profile(name) or {}
    return Astronaut(
        id=astronaut_id(name),
        name=name,
        craft=person['craft'],
        image=profile.get('image'),
        role=profile.get('role') or 'Astronaut',
        agency=profile.get('agency') or 'Unknown',
        launch_date=profile.get('start'),
        end_date=profile.get('end'),
        fetched_at=fetched_at,
    )
