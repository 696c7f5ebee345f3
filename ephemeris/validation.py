"""
Corruption Validator

Schema checks over stored records. Invalid records are deleted and counted,
never repaired.

Element sets and crew are small and checked exhaustively. Positions are only
sampled: the oldest and newest ``POSITION_SAMPLE_SIZE`` records by timestamp.
Corruption in the middle of the position history is not detected, and
neither is a position whose timestamp itself is unusable, since such records
never appear in timestamp-ordered queries.
"""

from typing import Any, Dict, List, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from ephemeris.models import Astronaut, ElementSet, GeodeticPosition
from ephemeris.store import Database, Table

logger = structlog.get_logger(__name__)

POSITION_SAMPLE_SIZE = 100

M = TypeVar("M", bound=BaseModel)


class CorruptionReport(BaseModel):
    positions_removed: int = 0
    element_sets_removed: int = 0
    crew_removed: int = 0
    needs_refetch: bool = False

    @property
    def total_removed(self) -> int:
        return self.positions_removed + self.element_sets_removed + self.crew_removed


def _validate(model: Type[M], data: Any, label: str) -> Optional[M]:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Invalid {label} data", record_id=_record_id(data), issues=e.errors(include_url=False))
        return None


def _record_id(data: Any) -> Optional[str]:
    return data.get('id') if isinstance(data, dict) else None


def validate_position(data: Any) -> Optional[GeodeticPosition]:
    return _validate(GeodeticPosition, data, "position")


def validate_element_set(data: Any) -> Optional[ElementSet]:
    return _validate(ElementSet, data, "element set")


def validate_astronaut(data: Any) -> Optional[Astronaut]:
    return _validate(Astronaut, data, "astronaut")


async def _remove_invalid(table: Table, records: List[Dict[str, Any]], validator) -> int:
    invalid = [
        _record_id(r) for r in records
        if _record_id(r) is not None and validator(r) is None
    ]
    if not invalid:
        return 0
    await table.bulk_delete(invalid)
    return len(invalid)


async def _position_sample(db: Database) -> List[Dict[str, Any]]:
    oldest = await db.positions.order_by("timestamp", limit=POSITION_SAMPLE_SIZE)
    newest = await db.positions.order_by("timestamp", descending=True, limit=POSITION_SAMPLE_SIZE)

    sample = {}
    for record in oldest + newest:
        record_id = _record_id(record)
        if record_id is not None:
            sample.setdefault(record_id, record)
    return list(sample.values())


async def detect_and_remove_corruption(db: Database) -> CorruptionReport:
    """
    Validate stored data and delete what fails.

    ``needs_refetch`` is set when any sampled position was invalid, or when a
    non-empty small dataset turned out to be entirely invalid.
    """
    positions_removed = await _remove_invalid(
        db.positions, await _position_sample(db), validate_position
    )

    element_sets = await db.element_sets.all()
    element_sets_removed = await _remove_invalid(db.element_sets, element_sets, validate_element_set)

    crew = await db.crew.all()
    crew_removed = await _remove_invalid(db.crew, crew, validate_astronaut)

    wholly_corrupt = any(
        total > 0 and removed == total
        for removed, total in ((element_sets_removed, len(element_sets)),
                               (crew_removed, len(crew)))
    )

    return CorruptionReport(
        positions_removed=positions_removed,
        element_sets_removed=element_sets_removed,
        crew_removed=crew_removed,
        needs_refetch=positions_removed > 0 or wholly_corrupt,
    )


async def run_corruption_check(db: Database, coordinator=None) -> CorruptionReport:
    """
    Run the corruption check, logging removals.

    When ``coordinator`` is given and a refetch is needed, an immediate sync
    is triggered through ``coordinator.sync_now()``. A check that cannot
    complete is logged and reported as an empty report.
    """
    try:
        report = await detect_and_remove_corruption(db)
    except Exception as e:
        logger.error(f"Corruption check failed: {e}")
        return CorruptionReport()

    if report.total_removed:
        logger.warning("Corrupted records removed", **report.model_dump())

    if report.needs_refetch and coordinator is not None:
        logger.info("Triggering refetch after corruption check")
        await coordinator.sync_now()
    return report
