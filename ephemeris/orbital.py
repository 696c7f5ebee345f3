"""
Orbital Propagator

Geodetic sampling of an element set over time windows, and derivation of
Keplerian parameters from the mean elements.

All windows are expressed as minute offsets relative to a reference "now"
(the wall clock unless one is passed in), so that callers backfilling history
and callers predicting the future share a single entry point.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from config import EARTH_RADIUS_KM, GRAVITATIONAL_PARAMETER
from ephemeris.models import ElementSet, OrbitalParameters, OrbitalPoint
from ephemeris.propagation import PropagationBackend, SGP4Backend

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 1440.0


def normalize_longitude(lon_deg: float) -> float:
    """Wrap a longitude into [-180, 180)."""
    wrapped = ((lon_deg + 180.0) % 360.0) - 180.0
    # Float modulo can round up to exactly 360 just below -180
    return -180.0 if wrapped >= 180.0 else wrapped


class OrbitCalculator:
    """
    Computes ground tracks and orbital parameters for an element set.

    Args:
        backend: Propagation capability to use. Defaults to ``SGP4Backend``.
    """

    def __init__(self, backend: Optional[PropagationBackend] = None):
        self.backend = backend or SGP4Backend()

    def position_at(self, element_set: ElementSet, time: datetime) -> Optional[OrbitalPoint]:
        """Sub-satellite point at ``time``, or None when propagation fails."""
        eci = self.backend.propagate(element_set, time)
        if eci is None:
            return None

        gmst = self.backend.sidereal_time(time)
        lat_rad, lon_rad, height_km = self.backend.eci_to_geodetic(eci, gmst)

        lat = math.degrees(lat_rad)
        lng = normalize_longitude(math.degrees(lon_rad))
        if not all(math.isfinite(v) for v in (lat, lng, height_km)):
            return None
        return OrbitalPoint(lat=lat, lng=lng, alt=height_km, time=time)

    def calculate_orbit_path(self, element_set: ElementSet, start_offset_min: float,
                             end_offset_min: float, step_min: float = 1,
                             now: Optional[datetime] = None) -> List[OrbitalPoint]:
        """
        Sample the ground track over ``[now + start, now + end]`` inclusive.

        Args:
            element_set: Element set to propagate
            start_offset_min: Window start, minutes from now (may be negative)
            end_offset_min: Window end, minutes from now
            step_min: Sampling cadence in minutes
            now: Reference time, defaults to the current UTC time

        Returns:
            Points in chronological order. Samples that fail to propagate are
            skipped; an unusable element set or step yields an empty list.
        """
        if not step_min or step_min <= 0 or not math.isfinite(step_min):
            logger.warning(f"Invalid orbit path step {step_min!r}, returning no points")
            return []
        if end_offset_min < start_offset_min:
            return []
        if self.backend.mean_elements(element_set) is None:
            logger.warning(f"Element set {element_set.id} could not be loaded, returning no points")
            return []

        if now is None:
            now = datetime.now(timezone.utc)

        count = int(math.floor((end_offset_min - start_offset_min) / step_min + 1e-9)) + 1
        points = []
        skipped = 0
        for i in range(count):
            offset = start_offset_min + i * step_min
            time = now + timedelta(minutes=offset)
            point = self.position_at(element_set, time)
            if point is None:
                skipped += 1
                continue
            points.append(point)

        if skipped:
            logger.warning(
                f"Skipped {skipped} of {count} samples for element set {element_set.id}"
            )
        return points

    def predict_orbit(self, element_set: ElementSet, duration_min: float,
                      step_min: float = 1, now: Optional[datetime] = None) -> List[OrbitalPoint]:
        """Ground track from now to ``duration_min`` minutes ahead."""
        return self.calculate_orbit_path(element_set, 0, duration_min, step_min, now=now)

    def calculate_orbital_parameters(self, element_set: ElementSet) -> Optional[OrbitalParameters]:
        """
        Derive Keplerian parameters from the mean elements.

        Semi-major axis follows from Kepler's third law, a = (mu / n^2)^(1/3).
        Returns None when the element set cannot be loaded.
        """
        elements = self.backend.mean_elements(element_set)
        if elements is None:
            return None

        n_rad_per_sec = elements.mean_motion / 60.0
        if not n_rad_per_sec > 0:
            logger.warning(f"Non-positive mean motion for element set {element_set.id}")
            return None

        e = elements.eccentricity
        a = (GRAVITATIONAL_PARAMETER / (n_rad_per_sec ** 2)) ** (1.0 / 3.0)
        period_min = 2.0 * math.pi / n_rad_per_sec / 60.0

        return OrbitalParameters(
            inclination=math.degrees(elements.inclination),
            eccentricity=e,
            mean_motion=MINUTES_PER_DAY / period_min,
            period=period_min,
            apogee=a * (1.0 + e) - EARTH_RADIUS_KM,
            perigee=a * (1.0 - e) - EARTH_RADIUS_KM,
        )
