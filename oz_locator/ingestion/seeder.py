"""Offline seeding of the zone cache store"""

from datetime import timedelta
from typing import Any, Dict, Optional

import structlog

from oz_locator.config import Settings, settings
from oz_locator.engines.postgis import PostGISZoneEngine
from oz_locator.geometry.preprocess import GeometryPreprocessor, ProcessedDataset
from oz_locator.ingestion.processed_store import ProcessedArtifactStore
from oz_locator.ingestion.zone_source import ZoneDatasetSource
from oz_locator.services.zone_cache import CacheSnapshot, SnapshotFreshness, ZoneCacheStore
from oz_locator.utils import utcnow

logger = structlog.get_logger()


class ZoneSeeder:
    """
    Populates the cache store ahead of serving traffic.

    Prefers fresh preprocessed artifacts on disk and downloads from the source
    otherwise. Seeding is idempotent: a dataset whose hash matches the stored
    snapshot is not written again.
    """

    def __init__(
        self,
        store: ZoneCacheStore,
        source: ZoneDatasetSource,
        preprocessor: GeometryPreprocessor,
        artifacts: ProcessedArtifactStore,
        refresh_interval: timedelta = timedelta(hours=24),
        postgis: Optional[PostGISZoneEngine] = None,
    ):
        self.store = store
        self.source = source
        self.preprocessor = preprocessor
        self.artifacts = artifacts
        self.refresh_interval = refresh_interval
        self.postgis = postgis

    @classmethod
    def from_settings(cls, config: Settings = settings, with_postgis: bool = False) -> "ZoneSeeder":
        return cls(
            store=ZoneCacheStore(),
            source=ZoneDatasetSource(url=config.oz_data_url, timeout_seconds=config.refresh_timeout_seconds),
            preprocessor=GeometryPreprocessor(
                tolerance=config.simplify_tolerance,
                zone_id_keys=config.get_zone_id_keys(),
            ),
            artifacts=ProcessedArtifactStore(config.processed_data_dir, config.processed_max_age_hours),
            refresh_interval=timedelta(hours=config.refresh_interval_hours),
            postgis=PostGISZoneEngine() if with_postgis else None,
        )

    async def load_dataset(self, force_download: bool = False) -> ProcessedDataset:
        """Fresh artifacts from disk when available, otherwise download and preprocess"""
        if not force_download and self.artifacts.check_existing() is not None:
            dataset = self.artifacts.load()
            if dataset is not None:
                logger.info(
                    "Using preprocessed zone data",
                    feature_count=len(dataset.features),
                    compression_ratio=dataset.stats.compression_ratio,
                )
                return dataset

        logger.info("No usable preprocessed data, downloading from source", url=self.source.url)
        raw = await self.source.fetch()
        return self.preprocessor.process_collection(raw)

    async def preprocess(self, force: bool = False) -> Dict[str, Any]:
        """Download, preprocess and save artifacts unless fresh ones already exist"""
        if not force:
            existing = self.artifacts.check_existing()
            if existing is not None:
                return existing

        raw = await self.source.fetch()
        dataset = self.preprocessor.process_collection(raw)
        metadata = self.artifacts.save(dataset, self.source.url)

        logger.info(
            "Preprocessing complete",
            feature_count=dataset.stats.feature_count,
            compression_ratio=dataset.stats.compression_ratio,
        )
        return metadata

    async def seed(self, force_download: bool = False) -> bool:
        """
        Write the dataset as the latest snapshot.

        Returns:
            True if a new snapshot was written, False if already up to date
        """
        logger.info("Starting zone cache seeding")

        dataset = await self.load_dataset(force_download=force_download)
        snapshot = CacheSnapshot.from_dataset(dataset, self.refresh_interval)
        previous = self.store.latest_metadata()

        written = self.store.write(snapshot)
        if not written:
            self.store.renew(snapshot.data_hash, snapshot.last_updated, snapshot.next_refresh)

        if self.postgis is not None:
            if previous is not None:
                # A running service keeps answering from these rows until it refreshes
                self.postgis.active_hash = previous.data_hash
            self.postgis.load(snapshot)

        logger.info("Zone cache seeding complete", feature_count=snapshot.feature_count, written=written)
        return written

    def check_health(self) -> SnapshotFreshness:
        freshness = self.store.check_health()
        if freshness == SnapshotFreshness.MISSING:
            logger.warning("No zone snapshot found in store")
        elif freshness == SnapshotFreshness.EXPIRED:
            logger.warning("Zone snapshot is expired")
        else:
            metadata = self.store.latest_metadata()
            logger.info(
                "Zone cache health check passed",
                feature_count=metadata.feature_count if metadata else 0,
                checked_at=utcnow().isoformat(),
            )
        return freshness

    async def check_and_seed(self) -> bool:
        """Seed only when the store is missing data or expired"""
        if self.check_health() == SnapshotFreshness.FRESH:
            logger.info("Zone cache is healthy, no seeding required")
            return False

        logger.info("Zone cache needs seeding")
        return await self.seed()
