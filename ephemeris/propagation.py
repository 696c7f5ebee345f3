"""
Propagation Backend

Defines the numeric propagation capability the orbital calculator depends
on, and provides the default implementation built on the sgp4 library.

Any standards-conformant SGP4 implementation can stand behind
``PropagationBackend``; callers never touch ``Satrec`` directly.

Frames:
    ECI here is SGP4's TEME frame. Earth-fixed coordinates are obtained by a
    rotation through Greenwich Mean Sidereal Time (IAU-82), which is the
    convention SGP4 output is defined against.

References:
    Vallado, D. A., Crawford, P., Hujsak, R., & Kelso, T. S. (2006).
    Revisiting Spacetrack Report #3. AIAA 2006-6753.
"""

import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from functools import lru_cache
from typing import NamedTuple, Optional, Tuple

import numpy as np
from sgp4.api import Satrec, jday

from config import EARTH_FLATTENING, EARTH_RADIUS_KM
from ephemeris.exceptions import PropagationFailure
from ephemeris.models import ElementSet, ObserverLocation

logger = logging.getLogger(__name__)


# SGP4 error code meanings
SGP4_ERROR_CODES = {
    0: "No error",
    1: "Mean eccentricity < 0.0 or > 1.0",
    2: "Mean motion < 0.0",
    3: "Perturbed eccentricity < 0.0 or > 1.0",
    4: "Semi-latus rectum < 0.0",
    5: "Satellite has decayed",
    6: "Satellite has decayed (low altitude)",
}

# WGS-84 derived quantities
_E2 = 2.0 * EARTH_FLATTENING - EARTH_FLATTENING * EARTH_FLATTENING
_B = EARTH_RADIUS_KM * (1.0 - EARTH_FLATTENING)



class LookAngles(NamedTuple):
    """Observer-relative direction to a target. Angles in radians."""

    azimuth: float
    elevation: float
    range_km: float


class MeanElements(NamedTuple):
    """Raw mean elements as loaded from the TLE."""

    inclination: float  # rad
    eccentricity: float
    mean_motion: float  # rad/min


class PropagationBackend(ABC):
    """Capability interface for orbital propagation and frame conversion."""

    @abstractmethod
    def propagate(self, element_set: ElementSet, time: datetime) -> Optional[np.ndarray]:
        """ECI position in km at ``time``, or None when propagation fails."""

    @abstractmethod
    def mean_elements(self, element_set: ElementSet) -> Optional[MeanElements]:
        """Mean elements of the set, or None when it cannot be loaded."""

    @abstractmethod
    def sidereal_time(self, time: datetime) -> float:
        """Greenwich sidereal angle in radians."""

    @abstractmethod
    def eci_to_ecf(self, eci: np.ndarray, gmst: float) -> np.ndarray:
        ...

    @abstractmethod
    def ecf_to_look_angles(self, observer: ObserverLocation, ecf: np.ndarray) -> LookAngles:
        ...

    @abstractmethod
    def eci_to_geodetic(self, eci: np.ndarray, gmst: float) -> Tuple[float, float, float]:
        """(latitude rad, longitude rad, height km)."""


@lru_cache(maxsize=32)
def load_satellite(line1: str, line2: str) -> Satrec:
    """
    Parse and initialize a satellite record, caching per line pair.

    Raises:
        PropagationFailure: If the lines cannot be parsed or SGP4
            initialization reports an error
    """
    try:
        satellite = Satrec.twoline2rv(line1, line2)
    except (ValueError, RuntimeError, IndexError) as e:
        raise PropagationFailure(f"Failed to load satellite: {e}")

    if satellite.error != 0:
        raise PropagationFailure(
            f"SGP4 initialization error {satellite.error}: "
            f"{SGP4_ERROR_CODES.get(satellite.error, 'Unknown error')}"
        )
    return satellite


def datetime_to_jd_fr(dt: datetime) -> Tuple[float, float]:
    """Convert a datetime (naive values are taken as UTC) to Julian date and fraction."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return jday(
        dt.year, dt.month, dt.day,
        dt.hour, dt.minute, dt.second + dt.microsecond / 1e6,
    )


class SGP4Backend(PropagationBackend):
    """
    Propagation backend using the sgp4 library.

    Failures are reported as ``None`` rather than raised so that callers can
    skip individual samples and keep going.
    """

    def propagate(self, element_set, time):
        try:
            satellite = load_satellite(element_set.line1, element_set.line2)
        except PropagationFailure as e:
            logger.debug(f"Cannot load element set {element_set.id}: {e}")
            return None

        jd, fr = datetime_to_jd_fr(time)
        error, position, _ = satellite.sgp4(jd, fr)

        if error != 0:
            logger.debug(
                f"SGP4 error {error} ({SGP4_ERROR_CODES.get(error, 'Unknown error')}) "
                f"at {time.isoformat()}"
            )
            return None

        position = np.array(position, dtype=float)
        if not np.all(np.isfinite(position)):
            return None
        return position

    def mean_elements(self, element_set):
        try:
            satellite = load_satellite(element_set.line1, element_set.line2)
        except PropagationFailure as e:
            logger.debug(f"Cannot load element set {element_set.id}: {e}")
            return None
        return MeanElements(
            inclination=satellite.inclo,
            eccentricity=satellite.ecco,
            mean_motion=satellite.no_kozai,
        )

    def sidereal_time(self, time):
        jd, fr = datetime_to_jd_fr(time)
        T = (jd - 2451545.0 + fr) / 36525.0

        gmst_sec = (
            67310.54841 +
            (876600.0 * 3600.0 + 8640184.812866) * T +
            0.093104 * T * T -
            6.2e-6 * T * T * T
        )
        return (gmst_sec % 86400.0) * (2.0 * math.pi / 86400.0)

    def eci_to_ecf(self, eci, gmst):
        cos_g = math.cos(gmst)
        sin_g = math.sin(gmst)
        return np.array([
            cos_g * eci[0] + sin_g * eci[1],
            -sin_g * eci[0] + cos_g * eci[1],
            eci[2],
        ])

    def ecf_to_look_angles(self, observer, ecf):
        lat = math.radians(observer.lat)
        lon = math.radians(observer.lng)
        sin_lat, cos_lat = math.sin(lat), math.cos(lat)
        sin_lon, cos_lon = math.sin(lon), math.cos(lon)

        # Observer position on the ellipsoid
        N = EARTH_RADIUS_KM / math.sqrt(1.0 - _E2 * sin_lat * sin_lat)
        observer_ecf = np.array([
            (N + observer.height_km) * cos_lat * cos_lon,
            (N + observer.height_km) * cos_lat * sin_lon,
            (N * (1.0 - _E2) + observer.height_km) * sin_lat,
        ])
        rx, ry, rz = np.asarray(ecf) - observer_ecf

        # Topocentric south-east-zenith
        south = sin_lat * cos_lon * rx + sin_lat * sin_lon * ry - cos_lat * rz
        east = -sin_lon * rx + cos_lon * ry
        zenith = cos_lat * cos_lon * rx + cos_lat * sin_lon * ry + sin_lat * rz

        range_km = math.sqrt(south * south + east * east + zenith * zenith)
        elevation = math.asin(max(-1.0, min(1.0, zenith / range_km)))
        azimuth = math.atan2(-east, south) + math.pi
        return LookAngles(azimuth=azimuth, elevation=elevation, range_km=range_km)

    def eci_to_geodetic(self, eci, gmst):
        return self._ecef_to_geodetic(self.eci_to_ecf(eci, gmst))

    def _ecef_to_geodetic(self, r_ecef: np.ndarray) -> Tuple[float, float, float]:
        """
        Iterative ECEF to geodetic conversion on the WGS-84 ellipsoid.

        Args:
            r_ecef: Position vector in ECEF coordinates [x, y, z] (km)

        Returns:
            Tuple of (latitude_rad, longitude_rad, altitude_km)
        """
        a = EARTH_RADIUS_KM
        x, y, z = r_ecef

        lon = math.atan2(y, x)
        p = math.sqrt(x * x + y * y)

        # Handle pole cases
        if p < 1e-10:
            lat = math.pi / 2.0 if z > 0 else -math.pi / 2.0
            return lat, lon, abs(z) - _B

        lat = math.atan2(z, p)
        # Usually converges in 3-4 iterations for orbital altitudes
        for _ in range(20):
            sin_lat = math.sin(lat)
            N = a / math.sqrt(1.0 - _E2 * sin_lat * sin_lat)
            new_lat = math.atan2(z + _E2 * N * sin_lat, p)
            if abs(new_lat - lat) < 1e-12:
                lat = new_lat
                break
            lat = new_lat

        sin_lat = math.sin(lat)
        cos_lat = math.cos(lat)
        N = a / math.sqrt(1.0 - _E2 * sin_lat * sin_lat)

        if cos_lat > 1e-10:
            alt = p / cos_lat - N
        else:
            alt = z / sin_lat - N * (1.0 - _E2)

        return lat, lon, alt
