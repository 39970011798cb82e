"""Versioned zone snapshot storage with content-hash gated writes"""

import gzip
import json
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from oz_locator.database import SessionLocal
from oz_locator.errors import CacheUnavailableError
from oz_locator.geometry.preprocess import ProcessedDataset, canonical_json, compute_data_hash, feature_collection
from oz_locator.geometry.types import GeoFeature, SpatialIndexEntry
from oz_locator.models.zone_cache import ZoneCacheSnapshot
from oz_locator.utils import utcnow

logger = structlog.get_logger()


class SnapshotFreshness(str, Enum):
    """Health of the stored snapshot"""
    MISSING = "missing"   # cold start: nothing stored yet
    EXPIRED = "expired"   # warm refresh: data present but past next_refresh
    FRESH = "fresh"


@dataclass(frozen=True)
class SnapshotMetadata:
    """Snapshot fields without the geometry payload"""
    version: str
    data_hash: str
    feature_count: int
    last_updated: datetime
    next_refresh: datetime

    def is_fresh(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) < self.next_refresh

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "data_hash": self.data_hash,
            "feature_count": self.feature_count,
            "last_updated": self.last_updated.isoformat(),
            "next_refresh_due": self.next_refresh.isoformat(),
        }


@dataclass(frozen=True)
class CacheSnapshot:
    """One immutable, versioned copy of the processed dataset plus its index entries"""
    version: str
    data_hash: str
    feature_count: int
    last_updated: datetime
    next_refresh: datetime
    features: List[GeoFeature]
    index_entries: List[SpatialIndexEntry]

    @classmethod
    def from_dataset(
        cls,
        dataset: ProcessedDataset,
        refresh_interval: timedelta,
        now: Optional[datetime] = None,
    ) -> "CacheSnapshot":
        now = now or utcnow()
        return cls(
            version=now.isoformat(),
            data_hash=dataset.data_hash,
            feature_count=len(dataset.features),
            last_updated=now,
            next_refresh=now + refresh_interval,
            features=list(dataset.features),
            index_entries=list(dataset.index_entries),
        )

    @property
    def metadata(self) -> SnapshotMetadata:
        return SnapshotMetadata(
            version=self.version,
            data_hash=self.data_hash,
            feature_count=self.feature_count,
            last_updated=self.last_updated,
            next_refresh=self.next_refresh,
        )

    def is_fresh(self, now: Optional[datetime] = None) -> bool:
        return self.metadata.is_fresh(now)

    def renewed(self, last_updated: datetime, next_refresh: datetime) -> "CacheSnapshot":
        return replace(self, last_updated=last_updated, next_refresh=next_refresh)

    def feature_collection(self) -> Dict[str, Any]:
        return feature_collection(self.features)


def _encode_blob(data: Any) -> bytes:
    return gzip.compress(canonical_json(data), mtime=0)


def _decode_blob(blob: bytes) -> Any:
    return json.loads(gzip.decompress(blob).decode("utf-8"))


class ZoneCacheStore:
    """Durable single-row snapshot cache backed by SQLAlchemy"""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Zone cache storage failure", error=str(e))
            raise CacheUnavailableError(f"Zone cache storage unavailable: {e}") from e
        finally:
            db.close()

    @staticmethod
    def is_fresh(snapshot: CacheSnapshot, now: Optional[datetime] = None) -> bool:
        return snapshot.is_fresh(now)

    def write(self, snapshot: CacheSnapshot) -> bool:
        """
        Persist a snapshot as the single latest row.

        The content hash is recomputed from the features and compared with the
        latest stored row; an identical hash skips the write entirely.

        Returns:
            True if a new row was written, False if the store was already up to date
        """
        data_hash = compute_data_hash(snapshot.feature_collection())
        if data_hash != snapshot.data_hash:
            raise ValueError("Snapshot data_hash does not match its features")

        with self._session() as db:
            latest = db.query(ZoneCacheSnapshot.data_hash).order_by(
                ZoneCacheSnapshot.created_at.desc()
            ).first()

            if latest is not None and latest.data_hash == data_hash:
                logger.info("Zone cache already up to date", data_hash=data_hash)
                return False

            row = ZoneCacheSnapshot(
                version=snapshot.version,
                data_hash=data_hash,
                feature_count=snapshot.feature_count,
                last_updated=snapshot.last_updated,
                next_refresh=snapshot.next_refresh,
                geojson_data=_encode_blob(snapshot.feature_collection()),
                spatial_index=_encode_blob([entry.to_record() for entry in snapshot.index_entries]),
                created_at=utcnow(),
            )

            # Delete and insert commit together, readers never see an empty table
            deleted = db.query(ZoneCacheSnapshot).delete(synchronize_session=False)
            db.add(row)
            db.commit()

        logger.info(
            "Zone cache snapshot written",
            version=snapshot.version,
            data_hash=data_hash,
            feature_count=snapshot.feature_count,
            replaced_rows=deleted,
        )
        return True

    def renew(self, data_hash: str, last_updated: datetime, next_refresh: datetime) -> bool:
        """Move the refresh window of an unchanged snapshot forward without rewriting it"""
        with self._session() as db:
            updated = db.query(ZoneCacheSnapshot).filter(
                ZoneCacheSnapshot.data_hash == data_hash
            ).update(
                {"last_updated": last_updated, "next_refresh": next_refresh},
                synchronize_session=False,
            )
            db.commit()

        logger.info("Zone cache timestamps renewed", data_hash=data_hash, next_refresh=next_refresh.isoformat())
        return updated > 0

    def latest(self) -> Optional[CacheSnapshot]:
        """Latest snapshot by creation time, or None on cold start"""
        with self._session() as db:
            row = db.query(ZoneCacheSnapshot).order_by(ZoneCacheSnapshot.created_at.desc()).first()
            if row is None:
                return None

            collection = _decode_blob(row.geojson_data)
            records = _decode_blob(row.spatial_index)

            return CacheSnapshot(
                version=row.version,
                data_hash=row.data_hash,
                feature_count=row.feature_count,
                last_updated=row.last_updated,
                next_refresh=row.next_refresh,
                features=[GeoFeature.from_geojson(f) for f in collection["features"]],
                index_entries=[SpatialIndexEntry.from_record(r) for r in records],
            )

    def latest_metadata(self) -> Optional[SnapshotMetadata]:
        """Latest snapshot metadata without loading the geometry blobs"""
        with self._session() as db:
            row = db.query(
                ZoneCacheSnapshot.version,
                ZoneCacheSnapshot.data_hash,
                ZoneCacheSnapshot.feature_count,
                ZoneCacheSnapshot.last_updated,
                ZoneCacheSnapshot.next_refresh,
            ).order_by(ZoneCacheSnapshot.created_at.desc()).first()

            if row is None:
                return None

            return SnapshotMetadata(
                version=row.version,
                data_hash=row.data_hash,
                feature_count=row.feature_count,
                last_updated=row.last_updated,
                next_refresh=row.next_refresh,
            )

    def check_health(self, now: Optional[datetime] = None) -> SnapshotFreshness:
        metadata = self.latest_metadata()
        if metadata is None:
            return SnapshotFreshness.MISSING
        if not metadata.is_fresh(now):
            return SnapshotFreshness.EXPIRED
        return SnapshotFreshness.FRESH

    def count(self) -> int:
        with self._session() as db:
            return db.query(ZoneCacheSnapshot).count()

    def reset(self) -> int:
        """Delete every stored snapshot"""
        with self._session() as db:
            deleted = db.query(ZoneCacheSnapshot).delete(synchronize_session=False)
            db.commit()

        logger.warning("Zone cache reset", deleted_rows=deleted)
        return deleted
