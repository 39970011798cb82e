"""Point-in-zone resolution over a lazily refreshed zone snapshot"""

import asyncio
import copy
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

from oz_locator.config import Settings, settings
from oz_locator.engines import ZoneEngine, create_engine_for
from oz_locator.engines.base import LoadedZones
from oz_locator.errors import CacheUnavailableError, MalformedDatasetError, NotInitializedError, TransientFetchError
from oz_locator.geometry.preprocess import GeometryPreprocessor
from oz_locator.ingestion.zone_source import ZoneDatasetSource
from oz_locator.observability.metrics import (
    STALE_SNAPSHOT_SERVED,
    ZONE_LOOKUP_CANDIDATES,
    ZONE_LOOKUPS,
    ZONE_REFRESH_DURATION,
    ZONE_REFRESHES,
    ZONE_SNAPSHOT_FEATURES,
)
from oz_locator.services.zone_cache import CacheSnapshot, SnapshotMetadata, ZoneCacheStore
from oz_locator.utils import utcnow

logger = structlog.get_logger()


class CacheState(str, Enum):
    """Lifecycle of the in-process snapshot"""
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    STALE = "stale"


@dataclass
class ZoneLookupResult:
    """Answer to a single point lookup"""
    in_zone: bool
    zone_id: Optional[str]
    metadata: SnapshotMetadata
    stale: bool
    candidates: int
    engine: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "in_zone": self.in_zone,
            "zone_id": self.zone_id,
            "stale": self.stale,
            "candidates": self.candidates,
            "engine": self.engine,
            "metadata": self.metadata.to_dict(),
        }


def validate_coordinates(lat: float, lon: float):
    """Reject non-finite or out-of-range coordinates"""
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ValueError("Coordinates must be finite numbers")
    if not -90 <= lat <= 90:
        raise ValueError(f"Latitude {lat} out of range [-90, 90]")
    if not -180 <= lon <= 180:
        raise ValueError(f"Longitude {lon} out of range [-180, 180]")


class ZoneService:
    """
    Long-lived handle owning the active zone snapshot.

    Construct one per process and share it. Lookups never wait on each other:
    a stale snapshot keeps answering while a single background refresh runs,
    and only a true cold start (nothing in memory) blocks the callers, who all
    await the same load. Failed refreshes back off exponentially and never
    replace the snapshot being served.
    """

    def __init__(
        self,
        store: ZoneCacheStore,
        source: ZoneDatasetSource,
        preprocessor: GeometryPreprocessor,
        engine: ZoneEngine,
        refresh_interval: timedelta = timedelta(hours=24),
        refresh_timeout: float = 300.0,
        db_load_timeout: float = 60.0,
        backoff_initial: float = 60.0,
        backoff_max: float = 3600.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.source = source
        self.preprocessor = preprocessor
        self.engine = engine
        self.refresh_interval = refresh_interval
        self.refresh_timeout = refresh_timeout
        self.db_load_timeout = db_load_timeout
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.clock = clock

        self._zones: Optional[LoadedZones] = None
        self._load_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._failures = 0
        self._next_attempt_at: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self.refresh_count = 0

    @classmethod
    def from_settings(cls, config: Settings = settings, engine: Optional[ZoneEngine] = None) -> "ZoneService":
        return cls(
            store=ZoneCacheStore(),
            source=ZoneDatasetSource(url=config.oz_data_url, timeout_seconds=config.refresh_timeout_seconds),
            preprocessor=GeometryPreprocessor(
                tolerance=config.simplify_tolerance,
                zone_id_keys=config.get_zone_id_keys(),
            ),
            engine=engine or create_engine_for(config.zone_engine),
            refresh_interval=timedelta(hours=config.refresh_interval_hours),
            refresh_timeout=config.refresh_timeout_seconds,
            db_load_timeout=config.db_load_timeout_seconds,
            backoff_initial=config.refresh_backoff_initial_seconds,
            backoff_max=config.refresh_backoff_max_seconds,
        )

    @property
    def state(self) -> CacheState:
        if self._zones is None:
            if self._load_task is not None and not self._load_task.done():
                return CacheState.LOADING
            return CacheState.UNINITIALIZED
        if self._refresh_task is not None and not self._refresh_task.done():
            return CacheState.LOADING
        if not self._zones.snapshot.is_fresh(self.clock()):
            return CacheState.STALE
        return CacheState.READY

    @property
    def is_initialized(self) -> bool:
        return self._zones is not None

    async def initialize(self):
        """Load the snapshot eagerly, e.g. at application startup"""
        await self._ensure_loaded()

    async def resolve_point(self, lat: float, lon: float) -> ZoneLookupResult:
        """
        Determine which zone, if any, contains the point.

        Raises:
            ValueError: invalid coordinates
            NotInitializedError: no snapshot could be loaded yet
            CacheUnavailableError: the store or geometry backend is unreachable
        """
        validate_coordinates(lat, lon)

        zones = await self._ensure_loaded()
        snapshot = zones.snapshot

        stale = not snapshot.is_fresh(self.clock())
        if stale:
            STALE_SNAPSHOT_SERVED.inc()
            self._trigger_refresh()

        match = await zones.locate(lat, lon)

        ZONE_LOOKUPS.labels(result="in_zone" if match.in_zone else "not_in_zone", engine=zones.engine_name).inc()
        ZONE_LOOKUP_CANDIDATES.observe(match.candidates)
        logger.debug(
            "Resolved point",
            lat=lat,
            lon=lon,
            zone_id=match.zone_id,
            candidates=match.candidates,
            stale=stale,
        )

        return ZoneLookupResult(
            in_zone=match.in_zone,
            zone_id=match.zone_id,
            metadata=snapshot.metadata,
            stale=stale,
            candidates=match.candidates,
            engine=zones.engine_name,
        )

    async def force_refresh(self) -> SnapshotMetadata:
        """Refresh now, ignoring freshness and backoff; joins a refresh already in flight"""
        task = self._trigger_refresh(ignore_backoff=True)
        zones = await asyncio.shield(task)
        return zones.snapshot.metadata

    async def get_status(self) -> Dict[str, Any]:
        zones = self._zones
        now = self.clock()

        status: Dict[str, Any] = {
            "is_initialized": zones is not None,
            "is_initializing": self.state == CacheState.LOADING,
            "state": self.state.value,
            "engine": self.engine.name,
            "feature_count": 0,
            "last_updated": None,
            "next_refresh_due": None,
            "data_hash": None,
            "version": None,
            "stale": False,
            "db_has_data": None,
            "last_refresh_error": self._last_error,
            "next_refresh_attempt_at": self._next_attempt_at.isoformat() if self._next_attempt_at else None,
        }

        metadata = zones.snapshot.metadata if zones is not None else None
        if metadata is None:
            # Nothing in memory yet; report what the store holds
            try:
                metadata = await asyncio.to_thread(self.store.latest_metadata)
                status["db_has_data"] = metadata is not None
            except CacheUnavailableError as e:
                logger.warning("Zone cache store unavailable for status", error=str(e))
                status["db_has_data"] = False
        else:
            status["db_has_data"] = True

        if metadata is not None:
            status.update({
                "feature_count": metadata.feature_count,
                "last_updated": metadata.last_updated.isoformat(),
                "next_refresh_due": metadata.next_refresh.isoformat(),
                "data_hash": metadata.data_hash,
                "version": metadata.version,
                "stale": not metadata.is_fresh(now),
            })

        return status

    async def _ensure_loaded(self) -> LoadedZones:
        if self._zones is not None:
            return self._zones

        if self._load_task is None or self._load_task.done():
            if self._in_backoff():
                raise NotInitializedError(
                    f"Zone data not initialized; next load attempt at {self._next_attempt_at.isoformat()}"
                )
            self._load_task = asyncio.create_task(self._cold_start())
            self._load_task.add_done_callback(self._log_task_failure)

        return await asyncio.shield(self._load_task)

    async def _cold_start(self) -> LoadedZones:
        logger.info("Initializing zone service", engine=self.engine.name)

        snapshot = await self._load_from_store()
        if snapshot is None:
            logger.info("No stored zone snapshot, downloading dataset")
            try:
                return await asyncio.shield(self._trigger_refresh(ignore_backoff=True))
            except (TransientFetchError, MalformedDatasetError) as e:
                raise NotInitializedError(f"Zone data not initialized: {e}") from e

        try:
            zones = await asyncio.to_thread(self.engine.load, snapshot)
        except Exception as e:
            self._record_failure(e)
            raise

        if self._zones is not None:
            # A refresh finished while the stored row was loading; its snapshot is newer
            logger.info("Discarding stored snapshot superseded during cold start", version=snapshot.version)
            return self._zones

        self._activate(zones)
        if not snapshot.is_fresh(self.clock()):
            self._trigger_refresh()
        return zones

    async def _load_from_store(self) -> Optional[CacheSnapshot]:
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.store.latest), timeout=self.db_load_timeout)
        except asyncio.TimeoutError as e:
            error = CacheUnavailableError(f"Loading zone snapshot timed out after {self.db_load_timeout}s")
            self._record_failure(error)
            raise error from e
        except CacheUnavailableError as e:
            self._record_failure(e)
            raise

    def _trigger_refresh(self, ignore_backoff: bool = False) -> Optional[asyncio.Task]:
        """Start a refresh unless one is running or a failure backoff is pending"""
        if self._refresh_task is not None and not self._refresh_task.done():
            return self._refresh_task

        if not ignore_backoff and self._in_backoff():
            logger.debug("Zone refresh deferred by backoff", next_attempt_at=self._next_attempt_at.isoformat())
            return None

        if self._zones is not None:
            logger.warning(
                "Serving stale zone snapshot while refreshing",
                version=self._zones.snapshot.version,
                next_refresh=self._zones.snapshot.next_refresh.isoformat(),
            )

        self._refresh_task = asyncio.create_task(self._run_refresh())
        self._refresh_task.add_done_callback(self._log_task_failure)
        return self._refresh_task

    async def _run_refresh(self) -> LoadedZones:
        self.refresh_count += 1
        started = time.perf_counter()

        try:
            zones = await asyncio.wait_for(self._refresh_once(), timeout=self.refresh_timeout)
        except asyncio.TimeoutError as e:
            error = TransientFetchError(f"Zone refresh timed out after {self.refresh_timeout}s")
            self._record_failure(error)
            raise error from e
        except Exception as e:
            self._record_failure(e)
            raise
        finally:
            ZONE_REFRESH_DURATION.observe(time.perf_counter() - started)

        self._record_success()
        return zones

    async def _refresh_once(self) -> LoadedZones:
        raw = await self.source.fetch()
        dataset = await asyncio.to_thread(self.preprocessor.process_collection, raw)
        if not dataset.features:
            raise MalformedDatasetError("Zone dataset contained no usable features")

        now = self.clock()
        next_refresh = now + self.refresh_interval

        current = self._zones
        if current is not None and current.snapshot.data_hash == dataset.data_hash:
            logger.info("Zone dataset unchanged, renewing snapshot", data_hash=dataset.data_hash)
            await asyncio.to_thread(self.store.renew, dataset.data_hash, now, next_refresh)
            zones = copy.copy(current)
            zones.snapshot = current.snapshot.renewed(now, next_refresh)
            self._activate(zones)
            return zones

        snapshot = CacheSnapshot.from_dataset(dataset, self.refresh_interval, now)
        zones = await asyncio.to_thread(self.engine.load, snapshot)

        written = await asyncio.to_thread(self.store.write, snapshot)
        if not written:
            await asyncio.to_thread(self.store.renew, snapshot.data_hash, now, next_refresh)

        self._activate(zones)
        return zones

    def _activate(self, zones: LoadedZones):
        # Single reference swap; readers hold their own reference
        zones.activate()
        self._zones = zones
        ZONE_SNAPSHOT_FEATURES.set(zones.snapshot.feature_count)
        logger.info(
            "Zone snapshot active",
            version=zones.snapshot.version,
            data_hash=zones.snapshot.data_hash,
            feature_count=zones.snapshot.feature_count,
            next_refresh=zones.snapshot.next_refresh.isoformat(),
        )

    def _in_backoff(self) -> bool:
        return self._next_attempt_at is not None and self.clock() < self._next_attempt_at

    def _record_failure(self, error: Exception):
        self._failures += 1
        delay = min(self.backoff_initial * 2 ** (self._failures - 1), self.backoff_max)
        self._next_attempt_at = self.clock() + timedelta(seconds=delay)
        self._last_error = str(error)
        ZONE_REFRESHES.labels(outcome="failure").inc()
        logger.error(
            "Zone refresh failed",
            error=str(error),
            error_type=type(error).__name__,
            consecutive_failures=self._failures,
            retry_in_seconds=delay,
        )

    def _record_success(self):
        self._failures = 0
        self._next_attempt_at = None
        self._last_error = None
        ZONE_REFRESHES.labels(outcome="success").inc()

    @staticmethod
    def _log_task_failure(task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Zone background task finished with error", error=str(error))
