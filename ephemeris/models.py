"""
Data Models

Pydantic models for every record the tracker stores or computes. Stored
records are persisted as plain dicts (``model_dump(mode="json")``) and
re-validated against these models by the corruption validator.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Annotated, List, Optional, Tuple

from pydantic import BaseModel, BeforeValidator, Field, field_validator

from ephemeris.tle_parser import LINE1_MARKER, LINE2_MARKER, parse_epoch


class Visibility(str, Enum):
    """Lighting condition reported for a position sample."""

    DAYLIGHT = "daylight"
    ECLIPSED = "eclipsed"
    ORBITING = "orbiting"
    SYNTHETIC = "synthetic"


class ElementSetSource(str, Enum):
    """Which link of the resolver's fallback chain produced an element set."""

    PRIMARY = "primary"
    BACKUP = "backup"
    FALLBACK = "fallback"


def _reject_non_numeric(value):
    # bool is an int subclass and numeric strings would be coerced otherwise
    if isinstance(value, (str, bool)) or value is None:
        raise ValueError("must be a number")
    return value


Number = Annotated[float, BeforeValidator(_reject_non_numeric)]


def format_timestamp(timestamp: float) -> str:
    """Render a Unix timestamp without a trailing '.0' for whole seconds."""
    timestamp = float(timestamp)
    if timestamp.is_integer():
        return str(int(timestamp))
    return repr(timestamp)


def position_id(timestamp: float) -> str:
    return format_timestamp(timestamp)


def synthetic_position_id(timestamp: float) -> str:
    return f"synthetic-{format_timestamp(timestamp)}"


def element_set_id(fetched_at: float) -> str:
    return f"tle-{int(round(fetched_at * 1000))}"


def astronaut_id(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower())
    return slug.strip("-")


def pass_id(start_time: datetime) -> str:
    return f"pass-{int(round(start_time.timestamp() * 1000))}"


class GeodeticPosition(BaseModel):
    """A single position sample, live or synthesized."""

    id: str
    latitude: Number = Field(ge=-90, le=90)
    longitude: Number = Field(ge=-180, le=180)
    altitude: Number = Field(gt=0, allow_inf_nan=False)  # km
    velocity: Number = Field(gt=0, allow_inf_nan=False)  # km/h
    timestamp: Number = Field(gt=0, allow_inf_nan=False)  # Unix seconds
    visibility: Visibility


class ElementSet(BaseModel):
    """Two-line element set plus fetch metadata."""

    id: str
    line1: str
    line2: str
    epoch: datetime
    fetched_at: Number = Field(gt=0, allow_inf_nan=False)  # Unix seconds
    source: ElementSetSource

    @field_validator("line1")
    @classmethod
    def _check_line1(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(LINE1_MARKER):
            raise ValueError("line 1 must start with '1 '")
        return value

    @field_validator("line2")
    @classmethod
    def _check_line2(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(LINE2_MARKER):
            raise ValueError("line 2 must start with '2 '")
        return value

    @classmethod
    def from_lines(cls, line1: str, line2: str,
                   source: ElementSetSource = ElementSetSource.PRIMARY,
                   fetched_at: Optional[float] = None) -> "ElementSet":
        """Build an element set from raw lines, deriving epoch and id."""
        if fetched_at is None:
            fetched_at = datetime.now().timestamp()
        return cls(
            id=element_set_id(fetched_at),
            line1=line1,
            line2=line2,
            epoch=parse_epoch(line1.strip()),
            fetched_at=fetched_at,
            source=source,
        )

    def as_lines(self) -> Tuple[str, str]:
        return self.line1, self.line2


class ObserverLocation(BaseModel):
    """Ground observer position."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    height_km: float = 0.03  # ~30 m above sea level


class OrbitalPoint(BaseModel):
    """Sub-satellite point along an orbital path."""

    lat: float
    lng: float
    alt: float  # km
    time: Optional[datetime] = None


class PassPrediction(BaseModel):
    """Predicted flyover above the visibility threshold."""

    id: str
    start_time: datetime
    end_time: datetime
    max_elevation: float  # degrees
    duration: float  # minutes
    path: List[OrbitalPoint] = Field(default_factory=list)


class OrbitalParameters(BaseModel):
    """Keplerian parameters derived from a TLE."""

    inclination: float  # degrees
    eccentricity: float
    mean_motion: float  # rev/day
    period: float  # minutes
    apogee: float  # km
    perigee: float  # km


class GapInfo(BaseModel):
    """A missing-sample interval in the position history."""

    start_timestamp: float
    end_timestamp: float
    duration_hours: float
    use_orbital_calculation: bool


class Astronaut(BaseModel):
    """Crew member record, enriched from the mission database."""

    id: str
    name: str
    craft: str
    image: Optional[str] = None
    role: Optional[str] = None
    agency: Optional[str] = None
    launch_date: Optional[str] = None
    end_date: Optional[str] = None
    fetched_at: Number = Field(gt=0, allow_inf_nan=False)
