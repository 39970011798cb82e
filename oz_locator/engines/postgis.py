"""PostGIS engine: geometries live in a spatial table, lookups run in SQL"""

import asyncio
import json
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from oz_locator.config import settings
from oz_locator.database import SessionLocal
from oz_locator.engines.base import LoadedZones, ZoneEngine, ZoneMatch
from oz_locator.errors import CacheUnavailableError
from oz_locator.services.zone_cache import CacheSnapshot

logger = structlog.get_logger()

TABLE_NAME = "opportunity_zones"
DEFAULT_BATCH_SIZE = 100

CHECK_EXTENSION_SQL = text("SELECT EXISTS(SELECT 1 FROM pg_extension WHERE extname = 'postgis')")

STORED_COUNT_SQL = text(f"SELECT COUNT(*) FROM {TABLE_NAME} WHERE dataset_hash = :dataset_hash")

CLEAR_GENERATION_SQL = text(f"DELETE FROM {TABLE_NAME} WHERE dataset_hash = :dataset_hash")

# Keeps the generation being loaded and the one currently served
PRUNE_SQL = text(f"""
    DELETE FROM {TABLE_NAME}
    WHERE dataset_hash <> :dataset_hash
      AND dataset_hash <> COALESCE(:active_hash, :dataset_hash)
""")

INSERT_SQL = text(f"""
    INSERT INTO {TABLE_NAME} (feature_index, geoid, dataset_hash, geom, simplified_geom, bbox)
    VALUES (
        :feature_index,
        :geoid,
        :dataset_hash,
        ST_SetSRID(ST_GeomFromGeoJSON(:geometry), 4326),
        ST_SimplifyPreserveTopology(ST_SetSRID(ST_GeomFromGeoJSON(:geometry), 4326), :tolerance),
        ST_Envelope(ST_SetSRID(ST_GeomFromGeoJSON(:geometry), 4326))
    )
""")

# Stage 1 uses the GiST index on bbox, stage 2 the exact geometry
LOCATE_SQL = text(f"""
    WITH candidates AS (
        SELECT feature_index, geoid, geom
        FROM {TABLE_NAME}
        WHERE dataset_hash = :dataset_hash
          AND bbox && ST_SetSRID(ST_MakePoint(:lon, :lat), 4326)
    )
    SELECT
        (SELECT COUNT(*) FROM candidates) AS candidate_count,
        (
            SELECT geoid FROM candidates
            WHERE ST_Covers(geom, ST_SetSRID(ST_MakePoint(:lon, :lat), 4326))
            ORDER BY feature_index
            LIMIT 1
        ) AS geoid
""")

STATS_SQL = text(f"""
    SELECT
        COUNT(*) AS total_zones,
        COALESCE(AVG(ST_NPoints(geom)), 0) AS avg_original_vertices,
        COALESCE(AVG(ST_NPoints(simplified_geom)), 0) AS avg_simplified_vertices
    FROM {TABLE_NAME}
    WHERE dataset_hash = :dataset_hash
""")


class PostGISZones(LoadedZones):
    """Lookups restricted to the rows of this snapshot's dataset hash"""

    engine_name = "postgis"

    def __init__(self, snapshot: CacheSnapshot, engine: "PostGISZoneEngine"):
        super().__init__(snapshot)
        self.engine = engine

    def activate(self):
        self.engine.active_hash = self.snapshot.data_hash

    async def locate(self, lat: float, lon: float) -> ZoneMatch:
        return await asyncio.to_thread(self.engine.locate, lat, lon, self.snapshot.data_hash)


class PostGISZoneEngine(ZoneEngine):
    """
    Stores each feature in the ``opportunity_zones`` table with its full
    geometry, a topology-preserving simplified copy and its envelope.

    Rows are keyed by dataset hash, so loading a new dataset never touches
    the rows a served snapshot reads. ``active_hash`` names the generation
    being served; loads prune every generation except that one and their own.

    PostGIS must be installed; when the extension is missing every operation
    raises CacheUnavailableError rather than silently answering "not in zone".
    """

    name = "postgis"

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        simplify_tolerance: Optional[float] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.session_factory = session_factory
        self.simplify_tolerance = (
            simplify_tolerance if simplify_tolerance is not None else settings.postgis_simplify_tolerance
        )
        self.batch_size = batch_size
        self.active_hash: Optional[str] = None
        self._available: Optional[bool] = None

    def is_available(self) -> bool:
        """Check for the PostGIS extension once and remember the answer"""
        if self._available is not None:
            return self._available

        db = self.session_factory()
        try:
            self._available = bool(db.execute(CHECK_EXTENSION_SQL).scalar())
        except SQLAlchemyError as e:
            logger.error("PostGIS availability check failed", error=str(e))
            return False
        finally:
            db.close()

        logger.info("PostGIS availability checked", available=self._available)
        return self._available

    def ensure_available(self):
        if not self.is_available():
            raise CacheUnavailableError("PostGIS extension is not available")

    def load(self, snapshot: CacheSnapshot) -> PostGISZones:
        self.ensure_available()

        db = self.session_factory()
        try:
            db.execute(PRUNE_SQL, {"dataset_hash": snapshot.data_hash, "active_hash": self.active_hash})

            stored = db.execute(STORED_COUNT_SQL, {"dataset_hash": snapshot.data_hash}).scalar()
            if stored == snapshot.feature_count:
                logger.info("PostGIS zones already match snapshot", data_hash=snapshot.data_hash)
            else:
                self._store(db, snapshot)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to store PostGIS zones", error=str(e))
            raise CacheUnavailableError(f"Failed to store PostGIS zones: {e}") from e
        finally:
            db.close()

        return PostGISZones(snapshot, self)

    def _store(self, db: Session, snapshot: CacheSnapshot):
        logger.info(
            "Storing zones in PostGIS",
            feature_count=snapshot.feature_count,
            data_hash=snapshot.data_hash,
            tolerance=self.simplify_tolerance,
        )
        # Leftovers of an interrupted load of the same dataset
        db.execute(CLEAR_GENERATION_SQL, {"dataset_hash": snapshot.data_hash})

        features = snapshot.features
        for start in range(0, len(features), self.batch_size):
            batch = features[start:start + self.batch_size]
            db.execute(INSERT_SQL, [
                {
                    "feature_index": start + offset,
                    "geoid": feature.zone_id,
                    "dataset_hash": snapshot.data_hash,
                    "geometry": json.dumps(feature.geometry),
                    "tolerance": self.simplify_tolerance,
                }
                for offset, feature in enumerate(batch)
            ])
            logger.info("Stored PostGIS batch", stored=start + len(batch), total=len(features))

    def locate(self, lat: float, lon: float, data_hash: str) -> ZoneMatch:
        db = self.session_factory()
        try:
            row = db.execute(LOCATE_SQL, {"lat": lat, "lon": lon, "dataset_hash": data_hash}).one()
        except SQLAlchemyError as e:
            logger.error("PostGIS lookup failed", lat=lat, lon=lon, error=str(e))
            raise CacheUnavailableError(f"PostGIS lookup failed: {e}") from e
        finally:
            db.close()

        return ZoneMatch(row.geoid, int(row.candidate_count))

    def get_optimization_stats(self, data_hash: str) -> Dict[str, Any]:
        """Vertex counts before and after PostGIS simplification for one dataset"""
        self.ensure_available()

        db = self.session_factory()
        try:
            row = db.execute(STATS_SQL, {"dataset_hash": data_hash}).one()
        except SQLAlchemyError as e:
            raise CacheUnavailableError(f"Failed to read PostGIS stats: {e}") from e
        finally:
            db.close()

        original = float(row.avg_original_vertices)
        simplified = float(row.avg_simplified_vertices)
        compression = round((original - simplified) / original * 100, 1) if original else 0.0

        return {
            "total_zones": int(row.total_zones),
            "avg_original_vertices": round(original, 1),
            "avg_simplified_vertices": round(simplified, 1),
            "compression_ratio": compression,
        }

    def benchmark(self, points: Sequence[Tuple[float, float]], data_hash: str) -> Dict[str, Any]:
        """Time a lookup for each (lat, lon) point"""
        self.ensure_available()
        logger.info("Benchmarking PostGIS lookups", points=len(points))

        timings: List[float] = []
        successes = 0
        for lat, lon in points:
            start = time.perf_counter()
            try:
                self.locate(lat, lon, data_hash)
                successes += 1
            except CacheUnavailableError:
                pass
            timings.append((time.perf_counter() - start) * 1000)

        total = len(points)
        result = {
            "avg_query_ms": round(sum(timings) / total, 2) if total else 0.0,
            "total_queries": total,
            "success_rate": round(successes / total * 100, 1) if total else 0.0,
        }
        logger.info("PostGIS benchmark complete", **result)
        return result
