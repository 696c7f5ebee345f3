"""
Pass Predictor

Finds visibility windows ("passes") of a satellite over a ground observer by
stepping forward in time and tracking the observer-relative elevation.

The single-pass search is a two-state machine. While *searching*, the first
step above the elevation threshold opens a pass. While *in pass*, the path and
running maximum elevation accumulate until the first step at or below the
threshold closes it. The search is bounded by ``PASS_SEARCH_HORIZON`` from
its start time.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from ephemeris.models import ElementSet, ObserverLocation, OrbitalPoint, PassPrediction, pass_id
from ephemeris.orbital import normalize_longitude
from ephemeris.propagation import PropagationBackend, SGP4Backend

logger = logging.getLogger(__name__)

PASS_SEARCH_HORIZON = timedelta(hours=24)
PASS_SEARCH_STEP = timedelta(seconds=20)
PASS_CURSOR_ADVANCE = timedelta(minutes=1)
DEFAULT_MIN_ELEVATION = 10.0

# A pass still in progress when the horizon runs out is discarded. When True,
# it is reported instead, ending at the horizon.
REPORT_TRUNCATED_PASSES = False


class PassPredictor:
    """Predicts passes of an element set over an observer."""

    def __init__(self, backend: Optional[PropagationBackend] = None,
                 report_truncated: bool = REPORT_TRUNCATED_PASSES):
        self.backend = backend or SGP4Backend()
        self.report_truncated = report_truncated

    def _observe(self, element_set, observer, time):
        """Elevation in degrees and sub-satellite point, or None on failure."""
        eci = self.backend.propagate(element_set, time)
        if eci is None:
            return None

        gmst = self.backend.sidereal_time(time)
        ecf = self.backend.eci_to_ecf(eci, gmst)
        look = self.backend.ecf_to_look_angles(observer, ecf)
        lat_rad, lon_rad, height_km = self.backend.eci_to_geodetic(eci, gmst)

        elevation = math.degrees(look.elevation)
        if not math.isfinite(elevation):
            return None
        point = OrbitalPoint(
            lat=math.degrees(lat_rad),
            lng=normalize_longitude(math.degrees(lon_rad)),
            alt=height_km,
            time=time,
        )
        return elevation, point

    def predict_next_pass_from(self, element_set: ElementSet, observer: ObserverLocation,
                               search_start: datetime,
                               min_elevation: float = DEFAULT_MIN_ELEVATION) -> Optional[PassPrediction]:
        """
        Find the first pass that begins at or after ``search_start``.

        Returns:
            The pass, or None when no complete pass closes within the horizon.
        """
        horizon = search_start + PASS_SEARCH_HORIZON
        in_pass = False
        start_time = None
        path: List[OrbitalPoint] = []
        max_elevation = 0.0

        time = search_start
        while time <= horizon:
            observation = self._observe(element_set, observer, time)
            if observation is None:
                time += PASS_SEARCH_STEP
                continue
            elevation, point = observation

            if not in_pass:
                if elevation > min_elevation:
                    in_pass = True
                    start_time = time
                    path = [point]
                    max_elevation = elevation
            elif elevation > min_elevation:
                path.append(point)
                max_elevation = max(max_elevation, elevation)
            else:
                return self._build_pass(start_time, time, max_elevation, path)

            time += PASS_SEARCH_STEP

        if in_pass:
            if self.report_truncated:
                return self._build_pass(start_time, horizon, max_elevation, path)
            logger.debug(f"Discarding pass in progress at search horizon {horizon.isoformat()}")
        return None

    @staticmethod
    def _build_pass(start_time, end_time, max_elevation, path):
        return PassPrediction(
            id=pass_id(start_time),
            start_time=start_time,
            end_time=end_time,
            max_elevation=max_elevation,
            duration=(end_time - start_time).total_seconds() / 60.0,
            path=path,
        )

    def predict_next_pass(self, element_set: ElementSet, observer: ObserverLocation,
                          now: Optional[datetime] = None) -> Optional[PassPrediction]:
        if now is None:
            now = datetime.now(timezone.utc)
        return self.predict_next_pass_from(element_set, observer, now, DEFAULT_MIN_ELEVATION)

    def predict_passes(self, element_set: ElementSet, observer: ObserverLocation,
                       max_passes: int = 10, max_days: float = 7,
                       min_elevation: float = DEFAULT_MIN_ELEVATION,
                       now: Optional[datetime] = None) -> List[PassPrediction]:
        """
        Collect consecutive passes starting from now.

        Each search resumes one minute after the previous pass ended. Passes
        starting later than ``now + max_days`` are never returned, even when
        fewer than ``max_passes`` have been found.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        limit = now + timedelta(days=max_days)

        passes: List[PassPrediction] = []
        cursor = now
        while len(passes) < max_passes:
            found = self.predict_next_pass_from(element_set, observer, cursor, min_elevation)
            if found is None or found.start_time > limit:
                break
            passes.append(found)
            cursor = found.end_time + PASS_CURSOR_ADVANCE

        logger.info(f"Predicted {len(passes)} passes over ({observer.lat:.2f}, {observer.lng:.2f})")
        return passes
