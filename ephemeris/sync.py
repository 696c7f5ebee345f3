"""
Sync Coordinator

Periodic fetch-and-store cycles for positions, element sets and crew, with
optional pausing while the client is hidden.

Each handler's ``sync`` catches its own failures and reports them in a
``SyncResult``, so one failing data type never blocks the others. Each
handler runs in a single asyncio task that syncs, then sleeps, so a tick
never overlaps the previous one.
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

from config import config as service_config
from ephemeris.sources import ElementSetResolver, SourceClient, fetch_crew, fetch_position
from ephemeris.store import Database

logger = structlog.get_logger(__name__)


class SyncConfig(BaseModel):
    position_interval: float = Field(5.0, gt=0)
    element_set_interval: float = Field(3600.0, gt=0)
    crew_interval: float = Field(3600.0, gt=0)
    pause_on_hidden: bool = True

    @classmethod
    def from_config(cls, cfg=None) -> "SyncConfig":
        cfg = cfg or service_config
        return cls(
            position_interval=cfg.POSITION_SYNC_INTERVAL,
            element_set_interval=cfg.TLE_SYNC_INTERVAL,
            crew_interval=cfg.CREW_SYNC_INTERVAL,
            pause_on_hidden=cfg.PAUSE_ON_HIDDEN,
        )


class SyncResult(BaseModel):
    success: bool
    timestamp: float = Field(default_factory=time.time)
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any) -> "SyncResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: BaseException) -> "SyncResult":
        return cls(success=False, error=str(error))


class SyncHandler:
    """Base for one data type's fetch-and-store cycle."""

    name = "sync"

    def __init__(self, db: Database):
        self.db = db

    async def fetch_and_store(self) -> Any:
        raise NotImplementedError

    async def sync(self) -> SyncResult:
        try:
            data = await self.fetch_and_store()
        except Exception as e:
            logger.warning(f"{self.name} sync failed: {e}")
            return SyncResult.failed(e)
        return SyncResult.ok(data)


class PositionSyncHandler(SyncHandler):
    name = "position"

    def __init__(self, db: Database, client: Optional[SourceClient] = None):
        super().__init__(db)
        self.client = client or SourceClient()

    async def fetch_and_store(self):
        position = await fetch_position(self.client)
        await self.db.positions.upsert(position.model_dump(mode="json"))
        return position


class ElementSetSyncHandler(SyncHandler):
    name = "element_set"

    def __init__(self, db: Database, resolver: Optional[ElementSetResolver] = None):
        super().__init__(db)
        self.resolver = resolver or ElementSetResolver()

    async def fetch_and_store(self):
        element_set = await self.resolver.fetch_element_set()
        await self.db.element_sets.upsert(element_set.model_dump(mode="json"))
        return element_set


class CrewSyncHandler(SyncHandler):
    name = "crew"

    def __init__(self, db: Database, client: Optional[SourceClient] = None):
        super().__init__(db)
        self.client = client or SourceClient()

    async def fetch_and_store(self):
        crew = await fetch_crew(self.client)
        if crew:
            await self.db.crew.bulk_upsert(a.model_dump(mode="json") for a in crew)
        return crew


class PeriodicSync:
    """Runs a handler immediately and then every ``interval`` seconds."""

    def __init__(self, handler: SyncHandler, interval: float):
        self.handler = handler
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.active:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self):
        while True:
            await self.handler.sync()
            await asyncio.sleep(self.interval)


class VisibilityMonitor:
    """
    Tracks whether the client is hidden and notifies listeners of changes.

    Listeners are called with a single bool, True when hidden.
    """

    def __init__(self):
        self.hidden = False
        self._listeners: List[Callable[[bool], None]] = []

    def add_listener(self, listener: Callable[[bool], None]) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[bool], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def set_hidden(self, hidden: bool) -> None:
        if hidden == self.hidden:
            return
        self.hidden = hidden
        for listener in list(self._listeners):
            listener(hidden)


class SyncCoordinator:
    """
    Owns the three periodic syncs and their lifecycle.

    ``start`` and ``stop`` are idempotent. While hidden, every timer is
    cancelled; elapsed hidden time is not caught up. Becoming visible again
    while running re-arms all three with an immediate fetch.

    All handlers share one ``SourceClient``. A client built here is closed
    by ``stop``; an injected one belongs to the caller.
    """

    def __init__(self, db: Database, config: Optional[SyncConfig] = None,
                 visibility: Optional[VisibilityMonitor] = None,
                 position_handler: Optional[SyncHandler] = None,
                 element_set_handler: Optional[SyncHandler] = None,
                 crew_handler: Optional[SyncHandler] = None,
                 client: Optional[SourceClient] = None,
                 resolver: Optional[ElementSetResolver] = None):
        self.db = db
        self.config = config or SyncConfig.from_config()
        self.visibility = visibility or VisibilityMonitor()
        self._owns_client = client is None
        self.client = client or SourceClient()
        self.handlers: Dict[str, SyncHandler] = {
            "position": position_handler or PositionSyncHandler(db, self.client),
            "element_set": element_set_handler or ElementSetSyncHandler(
                db, resolver or ElementSetResolver(self.client)
            ),
            "crew": crew_handler or CrewSyncHandler(db, self.client),
        }
        self._running = False
        self._timers: List[PeriodicSync] = []
        self._listening = False

    def _intervals(self):
        return {
            "position": self.config.position_interval,
            "element_set": self.config.element_set_interval,
            "crew": self.config.crew_interval,
        }

    def _arm(self) -> None:
        intervals = self._intervals()
        self._timers = [
            PeriodicSync(handler, intervals[name]) for name, handler in self.handlers.items()
        ]
        for timer in self._timers:
            timer.start()

    def _disarm(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers = []

    def _on_visibility_change(self, hidden: bool) -> None:
        if hidden:
            if self._running:
                self._disarm()
                logger.info("Sync paused while hidden")
        elif self._running and not self._timers:
            self._arm()
            logger.info("Sync resumed")

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        if not (self.config.pause_on_hidden and self.visibility.hidden):
            self._arm()
        if self.config.pause_on_hidden:
            self.visibility.add_listener(self._on_visibility_change)
            self._listening = True
        logger.info("Sync coordinator started", **self.config.model_dump())

    def stop(self) -> None:
        if not self._running:
            return
        self._disarm()
        self._running = False
        if self._listening:
            self.visibility.remove_listener(self._on_visibility_change)
            self._listening = False
        if self._owns_client:
            self.client.close()
        logger.info("Sync coordinator stopped")

    def is_running(self) -> bool:
        return self._running

    def get_config(self) -> SyncConfig:
        return self.config.model_copy()

    def active_timer_count(self) -> int:
        return sum(1 for timer in self._timers if timer.active)

    async def sync_now(self) -> Dict[str, SyncResult]:
        """Sync every data type once, right now."""
        names = list(self.handlers)
        results = await asyncio.gather(*(self.handlers[n].sync() for n in names))
        return dict(zip(names, results))
