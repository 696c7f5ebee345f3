"""
Ephemeris Configuration and Constants

This module contains fallback TLE data, physical constants, data source
endpoints and the environment-driven service configuration used throughout
the project.

Constants:
    WGS-84 Earth radius and gravitational parameter, used for Keplerian
    parameter derivation and geodetic conversion.

Fallback TLE Data:
    Hardcoded ISS TLE used when every live source is unavailable.

    IMPORTANT: Update this TLE data periodically for accuracy.
    - Low Earth Orbit (LEO) satellites: Update weekly

    Current fallback epoch: 2024-05-19
    Propagation accuracy degrades with TLE age. The resolver logs a warning
    when the fallback is older than FALLBACK_TLE_MAX_AGE_DAYS.

    Sources for updated TLEs:
    - CelesTrak.org (public access)
    - live.ariss.org (ARISS mirror)
"""

import os
from typing import Dict, Any

# WGS-84 constants
EARTH_RADIUS_KM: float = 6378.137  # Earth equatorial radius (km)
EARTH_FLATTENING: float = 1.0 / 298.257223563
GRAVITATIONAL_PARAMETER: float = 398600.4418  # Earth gravitational parameter (km³/s²)

# ISS defaults
ISS_NORAD_ID: int = 25544
AVERAGE_ISS_ALTITUDE_KM: float = 417.5
AVERAGE_ISS_VELOCITY_KMH: float = 27600.0

# Fallback ISS TLE
# Last updated: 2024-05-19
FALLBACK_ISS_TLE: Dict[str, Any] = {
    'name': 'ISS (ZARYA)',
    'norad_id': ISS_NORAD_ID,
    'line1': '1 25544U 98067A   24140.59865741  .00016717  00000+0  30076-3 0  9995',
    'line2': '2 25544  51.6396 235.1195 0005470 216.5982 256.4024 15.49818898442371',
}
FALLBACK_TLE_MAX_AGE_DAYS: float = 7.0

# Data sources
TLE_API_PRIMARY = f"https://celestrak.org/NORAD/elements/gp.php?CATNR={ISS_NORAD_ID}&FORMAT=TLE"
TLE_API_BACKUP = "https://live.ariss.org/iss.txt"
POSITION_API = f"https://api.wheretheiss.at/v1/satellites/{ISS_NORAD_ID}"
POSITION_API_LEGACY = "http://api.open-notify.org/iss-now.json"
CREW_API = "http://api.open-notify.org/astros.json"
PROXY_URL = "https://api.allorigins.win/raw?url="


class ServiceConfig:
    """Environment-driven runtime configuration."""

    def __init__(self):
        self.REDIS_URL = os.getenv('REDIS_URL', '')
        self.REDIS_NAMESPACE = os.getenv('REDIS_NAMESPACE', 'ephemeris-iss')
        self.FETCH_TIMEOUT_S = float(os.getenv('FETCH_TIMEOUT_S', '10'))

        # Sync intervals (seconds)
        self.POSITION_SYNC_INTERVAL = float(os.getenv('POSITION_SYNC_INTERVAL', '5'))
        self.TLE_SYNC_INTERVAL = float(os.getenv('TLE_SYNC_INTERVAL', '3600'))
        self.CREW_SYNC_INTERVAL = float(os.getenv('CREW_SYNC_INTERVAL', '3600'))
        self.PAUSE_ON_HIDDEN = os.getenv('PAUSE_ON_HIDDEN', 'true').lower() == 'true'

        # Retention
        self.POSITION_MAX_AGE_DAYS = float(os.getenv('POSITION_MAX_AGE_DAYS', '30'))
        self.POSITION_MAX_RECORDS = int(os.getenv('POSITION_MAX_RECORDS', '600000'))  # ~35 days at 5s
        self.CLEANUP_BATCH_SIZE = int(os.getenv('CLEANUP_BATCH_SIZE', '10000'))
        self.CLEANUP_INTERVAL_S = float(os.getenv('CLEANUP_INTERVAL_S', '60'))
        self.TLE_MAX_RECORDS = int(os.getenv('TLE_MAX_RECORDS', '7'))  # 1 week at hourly refresh

        # Gap filling
        self.ORBITAL_THRESHOLD_HOURS = float(os.getenv('ORBITAL_THRESHOLD_HOURS', '24'))
        self.SYNTHETIC_STEP_SECONDS = int(os.getenv('SYNTHETIC_STEP_SECONDS', '300'))
        self.MAX_GAP_HOURS = float(os.getenv('MAX_GAP_HOURS', '168'))

        # Logging
        self.LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
        self.LOG_FILE = os.getenv('LOG_FILE') or None
        self.LOG_JSON = os.getenv('LOG_JSON', 'false').lower() == 'true'


config = ServiceConfig()
