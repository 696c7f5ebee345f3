"""
ISS Ephemeris Package

Orbital propagation and pass prediction for the ISS, plus a self-healing
local cache of position history.

Modules:
    tle_parser: Element set location and epoch extraction
    propagation: Propagation capability and the sgp4-backed implementation
    orbital: Ground tracks and Keplerian parameters
    passes: Visibility pass prediction
    sources: Live element set, position and crew feeds
    store: Keyed tables with in-memory and Redis backends
    retention: Age- and count-bounded cleanup
    gap_filling: Gap detection and orbital backfill
    validation: Corruption detection and removal
    sync: Periodic sync coordinator
    service: Runtime that owns all of the above

References:
    Vallado, D. A., Crawford, P., Hujsak, R., & Kelso, T. S. (2006).
    Revisiting Spacetrack Report #3. AIAA 2006-6753.
"""

__version__ = "1.0.0"
