"""
Retention Manager

Age- and count-bounded eviction over the position and element-set tables,
plus a scheduler that runs it periodically.
"""

import asyncio
import time
from typing import Dict, Optional

import structlog
from pydantic import BaseModel, Field

from config import config as service_config
from ephemeris.store import Database

logger = structlog.get_logger(__name__)

SECONDS_PER_DAY = 86400.0


class RetentionPolicy(BaseModel):
    """Bounds applied by each cleanup run."""

    max_age_days: float = Field(30.0, gt=0)
    max_records: int = Field(600_000, ge=0)
    cleanup_batch_size: int = Field(10_000, gt=0)
    cleanup_interval_s: float = Field(60.0, gt=0)
    max_element_sets: int = Field(7, ge=0)

    @classmethod
    def from_config(cls, cfg=None) -> "RetentionPolicy":
        cfg = cfg or service_config
        return cls(
            max_age_days=cfg.POSITION_MAX_AGE_DAYS,
            max_records=cfg.POSITION_MAX_RECORDS,
            cleanup_batch_size=cfg.CLEANUP_BATCH_SIZE,
            cleanup_interval_s=cfg.CLEANUP_INTERVAL_S,
            max_element_sets=cfg.TLE_MAX_RECORDS,
        )


async def cleanup_old_positions(db: Database, policy: RetentionPolicy,
                                now: Optional[float] = None) -> int:
    """
    Delete expired positions, then trim the table down to ``max_records``.

    Each step deletes at most ``cleanup_batch_size`` records, so a large
    backlog is worked off over several runs.
    """
    if now is None:
        now = time.time()
    cutoff = now - policy.max_age_days * SECONDS_PER_DAY

    expired = await db.positions.primary_keys_below(
        "timestamp", cutoff, limit=policy.cleanup_batch_size
    )
    deleted = await db.positions.bulk_delete(expired) if expired else 0

    excess = await db.positions.count() - policy.max_records
    if excess > 0:
        oldest = await db.positions.order_by(
            "timestamp", limit=min(excess, policy.cleanup_batch_size)
        )
        deleted += await db.positions.bulk_delete([r['id'] for r in oldest])

    if deleted:
        logger.info(f"Deleted {deleted} old positions", cutoff=cutoff)
    return deleted


async def cleanup_old_element_sets(db: Database, policy: RetentionPolicy) -> int:
    """Keep only the ``max_element_sets`` most recently fetched element sets."""
    newest_first = await db.element_sets.order_by("fetched_at", descending=True)
    stale = [r['id'] for r in newest_first[policy.max_element_sets:]]
    if not stale:
        return 0

    deleted = await db.element_sets.bulk_delete(stale)
    logger.info(f"Deleted {deleted} old element sets")
    return deleted


async def run_cleanup(db: Database, policy: RetentionPolicy,
                      now: Optional[float] = None) -> Dict[str, int]:
    positions = await cleanup_old_positions(db, policy, now)
    element_sets = await cleanup_old_element_sets(db, policy)
    return {"positions": positions, "element_sets": element_sets}


class RetentionScheduler:
    """
    Runs ``run_cleanup`` every ``cleanup_interval_s`` seconds. The first run
    happens one interval after ``start``.

    Holds a single task handle. ``start`` while running and ``stop`` while
    stopped are both no-ops.
    """

    def __init__(self, db: Database, policy: Optional[RetentionPolicy] = None):
        self.db = db
        self.policy = policy or RetentionPolicy.from_config()
        self._task: Optional[asyncio.Task] = None

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running():
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Retention scheduler started", interval_s=self.policy.cleanup_interval_s)

    def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.info("Retention scheduler stopped")

    async def tick(self) -> Optional[Dict[str, int]]:
        try:
            return await run_cleanup(self.db, self.policy)
        except Exception as e:
            logger.error(f"Retention cleanup failed: {e}")
            return None

    async def _run(self):
        while True:
            await asyncio.sleep(self.policy.cleanup_interval_s)
            await self.tick()
