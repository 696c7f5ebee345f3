"""
Exceptions for the ephemeris package.

Source and parse failures share a base so that fallback chains can treat
them identically.
"""

from typing import Optional


class EphemerisError(Exception):
    """Base exception for all ephemeris errors."""


class SourceUnavailable(EphemerisError):
    """Network failure, timeout, or non-2xx response from a data source."""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"{url}{detail}: {message}")


class MalformedData(SourceUnavailable):
    """Response received but the expected markers or fields are absent."""


class PropagationFailure(EphemerisError):
    """The propagation primitive returned an error code or a non-finite vector."""


class ValidationFailure(EphemerisError):
    """A stored record failed schema validation."""


class GapTooLarge(EphemerisError):
    """A gap exceeds the maximum duration that will be backfilled."""

    def __init__(self, duration_hours: float, max_hours: float):
        self.duration_hours = duration_hours
        self.max_hours = max_hours
        super().__init__(
            f"Gap of {duration_hours:.1f} hours exceeds the {max_hours:.0f} hour limit"
        )
