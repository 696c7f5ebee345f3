"""
TLE Parser Module

Utilities for locating a Two-Line Element (TLE) set inside a raw text
response and extracting its epoch.

Beyond the catalog-number prefix used to find the two lines, and the epoch
field at a fixed offset on line 1, the element set is passed through to the
propagation library untouched.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from ephemeris.exceptions import MalformedData

LINE1_MARKER = "1 "
LINE2_MARKER = "2 "

# Line 1 columns 19-32 hold the epoch as YYDDD.DDDDDDDD
EPOCH_SLICE = slice(18, 32)

# Two-digit years below this pivot belong to the 21st century
EPOCH_YEAR_PIVOT = 57


def parse_tle_lines(text: str, catalog_number: int, source: str = "<text>") -> Tuple[str, str]:
    """
    Locate line 1 and line 2 of a catalog object within a text blob.

    Args:
        text: Raw response body, possibly holding several element sets
        catalog_number: NORAD catalog number of the object
        source: Where the text came from, used in the error message

    Returns:
        Tuple of (line1, line2), stripped

    Raises:
        MalformedData: If either line is missing
    """
    prefix1 = f"{LINE1_MARKER}{catalog_number:05d}"
    prefix2 = f"{LINE2_MARKER}{catalog_number:05d}"

    line1 = line2 = None
    for raw in text.strip().splitlines():
        line = raw.strip()
        if line1 is None and line.startswith(prefix1):
            line1 = line
        elif line2 is None and line.startswith(prefix2):
            line2 = line

    if line1 is None or line2 is None:
        raise MalformedData(source, f"no TLE lines for catalog number {catalog_number}")
    return line1, line2


def epoch_to_datetime(epoch_year: int, epoch_days: float) -> datetime:
    """
    Convert TLE epoch to datetime.

    Args:
        epoch_year: Two-digit year
        epoch_days: Day of year with fractional part (1.0 is Jan 1, 00:00 UTC)

    Returns:
        Datetime object in UTC
    """
    year = 2000 + epoch_year if epoch_year < EPOCH_YEAR_PIVOT else 1900 + epoch_year
    return datetime(year, 1, 1, tzinfo=timezone.utc) + timedelta(days=epoch_days - 1.0)


def parse_epoch(line1: str) -> datetime:
    """Extract the epoch encoded on TLE line 1."""
    field = line1[EPOCH_SLICE].strip()
    try:
        epoch_year = int(field[:2])
        epoch_days = float(field[2:])
    except ValueError:
        raise MalformedData("<line1>", f"invalid epoch field {field!r}")
    return epoch_to_datetime(epoch_year, epoch_days)


def tle_age_days(line1: str, now: Optional[datetime] = None) -> float:
    """Age of an element set in days, measured from its epoch."""
    if now is None:
        now = datetime.now(timezone.utc)
    return (now - parse_epoch(line1)).total_seconds() / 86400.0
