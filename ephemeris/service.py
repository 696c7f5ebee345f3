"""
Tracker Service

Runtime that owns the database, sync coordinator, retention scheduler and
visibility monitor. Nothing here is held in module globals, so several
services (or tests) can coexist in one process.

Run with:
    python -m ephemeris.service
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

import structlog

from config import ServiceConfig, config as default_config
from ephemeris.gap_filling import GapFiller, GapFillingConfig
from ephemeris.models import ElementSet, ObserverLocation, PassPrediction
from ephemeris.passes import DEFAULT_MIN_ELEVATION, PassPredictor
from ephemeris.retention import RetentionPolicy, RetentionScheduler
from ephemeris.sources import ElementSetResolver, SourceClient
from ephemeris.store import Database, open_database
from ephemeris.sync import SyncConfig, SyncCoordinator, VisibilityMonitor
from ephemeris.validation import CorruptionReport, run_corruption_check, validate_element_set
from logging_config import configure_logging

logger = structlog.get_logger(__name__)


class TrackerService:
    """
    Wires the tracker's components around one database.

    Args:
        db: Database to use
        cfg: Runtime configuration, defaults to the environment-driven one
        resolver: Element set resolver shared by sync and prediction
        coordinator: Sync coordinator, built from ``cfg`` when omitted
        predictor: Pass predictor
    """

    def __init__(self, db: Database, cfg: Optional[ServiceConfig] = None,
                 resolver: Optional[ElementSetResolver] = None,
                 coordinator: Optional[SyncCoordinator] = None,
                 predictor: Optional[PassPredictor] = None):
        self.db = db
        self.cfg = cfg or default_config
        self.client = SourceClient(timeout=self.cfg.FETCH_TIMEOUT_S)
        self.resolver = resolver or ElementSetResolver(self.client)
        if coordinator is not None:
            self.visibility = coordinator.visibility
            self.coordinator = coordinator
        else:
            self.visibility = VisibilityMonitor()
            self.coordinator = SyncCoordinator(
                db, SyncConfig.from_config(self.cfg), visibility=self.visibility,
                client=self.client, resolver=self.resolver,
            )
        self.retention = RetentionScheduler(db, RetentionPolicy.from_config(self.cfg))
        self.predictor = predictor or PassPredictor()
        self.gap_filler = GapFiller(db, config=GapFillingConfig.from_config(self.cfg))

    async def start(self) -> CorruptionReport:
        report = await run_corruption_check(self.db, self.coordinator)
        self.retention.start()
        self.coordinator.start()
        logger.info("Tracker service started")
        return report

    async def stop(self) -> None:
        self.coordinator.stop()
        self.retention.stop()
        self.client.close()
        logger.info("Tracker service stopped")

    async def latest_element_set(self) -> ElementSet:
        """Most recently fetched valid element set, resolving one if none is stored."""
        for record in await self.db.element_sets.order_by("fetched_at", descending=True):
            element_set = validate_element_set(record)
            if element_set is not None:
                return element_set

        element_set = await self.resolver.fetch_element_set()
        await self.db.element_sets.upsert(element_set.model_dump(mode="json"))
        return element_set

    async def predict_passes(self, observer: ObserverLocation, max_passes: int = 10,
                             max_days: float = 7, min_elevation: float = DEFAULT_MIN_ELEVATION,
                             now: Optional[datetime] = None) -> List[PassPrediction]:
        element_set = await self.latest_element_set()
        return self.predictor.predict_passes(
            element_set, observer, max_passes=max_passes, max_days=max_days,
            min_elevation=min_elevation, now=now,
        )

    async def fill_gaps(self, start: float, end: float, now: Optional[float] = None) -> int:
        element_set = await self.latest_element_set()
        return await self.gap_filler.fill_gaps_in_range(start, end, element_set, now=now)


async def run(cfg: Optional[ServiceConfig] = None) -> None:
    cfg = cfg or default_config
    db = await open_database(cfg.REDIS_URL, namespace=cfg.REDIS_NAMESPACE)
    service = TrackerService(db, cfg)
    await service.start()
    try:
        await asyncio.Event().wait()
    finally:
        await service.stop()


def main() -> None:
    configure_logging(
        getattr(logging, default_config.LOG_LEVEL, logging.INFO),
        log_file=default_config.LOG_FILE,
        json_logs=default_config.LOG_JSON,
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
