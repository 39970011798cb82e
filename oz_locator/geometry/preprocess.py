"""
Geometry preprocessing for the zone dataset.

Turns a raw GeoJSON FeatureCollection into the canonical, simplified feature
list that snapshots are built from:

- zone id extraction from a prioritized list of property keys
- Douglas-Peucker simplification of every ring
- post-simplification bounding boxes and spatial index entries
- before/after size statistics
- SHA-256 content hash over the canonical JSON of the result
"""

import hashlib
import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import structlog

from oz_locator.errors import FeatureGeometryError, MalformedDatasetError
from oz_locator.geometry.simplify import simplify
from oz_locator.geometry.types import SUPPORTED_GEOMETRY_TYPES, GeoFeature, SpatialIndexEntry, bbox

logger = structlog.get_logger()

DEFAULT_ZONE_ID_KEYS = ("GEOID", "CENSUSTRAC")
PROGRESS_LOG_EVERY = 1000


def canonical_json(data: Any) -> bytes:
    """Deterministic JSON encoding: sorted keys, no whitespace, UTF-8"""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_data_hash(feature_collection: Dict[str, Any]) -> str:
    """SHA-256 hex digest of the canonical feature collection"""
    return hashlib.sha256(canonical_json(feature_collection)).hexdigest()


def feature_collection(features: Sequence[GeoFeature]) -> Dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [feature.to_geojson() for feature in features],
    }


@dataclass
class PreprocessStats:
    """Size and vertex statistics for one preprocessing run"""
    original_bytes: int = 0
    processed_bytes: int = 0
    original_vertices: int = 0
    processed_vertices: int = 0
    feature_count: int = 0
    skipped_count: int = 0
    synthetic_id_count: int = 0

    @property
    def compression_ratio(self) -> float:
        """Percentage of bytes removed"""
        if not self.original_bytes:
            return 0.0
        return round((self.original_bytes - self.processed_bytes) / self.original_bytes * 100, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_bytes": self.original_bytes,
            "processed_bytes": self.processed_bytes,
            "original_vertices": self.original_vertices,
            "processed_vertices": self.processed_vertices,
            "feature_count": self.feature_count,
            "skipped_count": self.skipped_count,
            "synthetic_id_count": self.synthetic_id_count,
            "compression_ratio": self.compression_ratio,
        }


@dataclass
class ProcessedDataset:
    """Result of preprocessing: features in index order, index entries, stats and content hash"""
    features: List[GeoFeature]
    index_entries: List[SpatialIndexEntry]
    data_hash: str
    stats: PreprocessStats = field(default_factory=PreprocessStats)

    def feature_collection(self) -> Dict[str, Any]:
        return feature_collection(self.features)

    @classmethod
    def from_features(cls, features: List[GeoFeature], stats: Optional[PreprocessStats] = None) -> "ProcessedDataset":
        entries = [
            SpatialIndexEntry(feature.bbox, feature.zone_id, index)
            for index, feature in enumerate(features)
        ]
        return cls(
            features=features,
            index_entries=entries,
            data_hash=compute_data_hash(feature_collection(features)),
            stats=stats or PreprocessStats(feature_count=len(features)),
        )


def _min_ring_length(ring: Sequence[Sequence[float]]) -> int:
    """Closed rings repeat their first position, so they need one extra"""
    return 4 if ring[0] == ring[-1] else 3


class GeometryPreprocessor:
    """Simplifies and indexes raw zone features"""

    def __init__(self, tolerance: float = 0.0001, zone_id_keys: Sequence[str] = DEFAULT_ZONE_ID_KEYS):
        if tolerance < 0:
            raise ValueError("Simplification tolerance must be >= 0")
        self.tolerance = tolerance
        self.zone_id_keys = tuple(zone_id_keys)

    def process_collection(self, collection: Any) -> ProcessedDataset:
        """Validate a FeatureCollection payload and process its features"""
        if not isinstance(collection, dict):
            raise MalformedDatasetError("Invalid GeoJSON format: payload is not an object")

        features = collection.get("features")
        if not isinstance(features, list) or not features:
            raise MalformedDatasetError("Invalid GeoJSON format: missing features array")

        return self.process(features)

    def process(self, raw_features: Sequence[Any]) -> ProcessedDataset:
        """
        Process raw GeoJSON features.

        Features with malformed geometry are skipped with a warning; a feature
        without any usable id property gets a synthetic ``OZ_<index>`` id.

        Returns:
            ProcessedDataset with content hash over the canonical collection
        """
        total = len(raw_features)
        logger.info("Processing zone features", feature_count=total, tolerance=self.tolerance)

        stats = PreprocessStats()
        processed: List[GeoFeature] = []

        for index, raw in enumerate(raw_features):
            stats.original_bytes += len(canonical_json(raw))
            try:
                feature = self._process_feature(index, raw, stats)
            except FeatureGeometryError as e:
                stats.skipped_count += 1
                logger.warning("Skipping malformed feature", feature_index=index, error=str(e))
                continue

            processed.append(feature)
            stats.processed_bytes += len(canonical_json(feature.to_geojson()))

            if index % PROGRESS_LOG_EVERY == 0:
                logger.info("Preprocessing progress", processed=index, total=total)

        stats.feature_count = len(processed)
        dataset = ProcessedDataset.from_features(processed, stats)

        logger.info(
            "Preprocessing complete",
            feature_count=stats.feature_count,
            skipped=stats.skipped_count,
            original_bytes=stats.original_bytes,
            processed_bytes=stats.processed_bytes,
            compression_ratio=stats.compression_ratio,
            data_hash=dataset.data_hash,
        )
        return dataset

    def extract_zone_id(self, properties: Any, index: int) -> Optional[str]:
        """First non-empty value among the configured property keys"""
        if isinstance(properties, dict):
            for key in self.zone_id_keys:
                value = properties.get(key)
                if value is not None and str(value).strip():
                    return str(value).strip()
        return None

    def _process_feature(self, index: int, raw: Any, stats: PreprocessStats) -> GeoFeature:
        if not isinstance(raw, dict):
            raise FeatureGeometryError("Feature is not an object", feature_index=index)

        zone_id = self.extract_zone_id(raw.get("properties"), index)
        if zone_id is None:
            zone_id = f"OZ_{index}"
            stats.synthetic_id_count += 1

        geometry = self._simplify_geometry(raw.get("geometry"), index, stats)
        return GeoFeature(zone_id=zone_id, geometry=geometry, bbox=bbox(geometry))

    def _simplify_geometry(self, geometry: Any, index: int, stats: PreprocessStats) -> Dict[str, Any]:
        if not isinstance(geometry, dict):
            raise FeatureGeometryError("Feature has no geometry", feature_index=index)

        geometry_type = geometry.get("type")
        if geometry_type not in SUPPORTED_GEOMETRY_TYPES:
            raise FeatureGeometryError(f"Unsupported geometry type: {geometry_type}", feature_index=index)

        coordinates = geometry.get("coordinates")
        if not isinstance(coordinates, list) or not coordinates:
            raise FeatureGeometryError("Geometry has no coordinates", feature_index=index)

        if geometry_type == "Polygon":
            simplified = self._simplify_polygon(coordinates, index, stats)
        else:
            simplified = [self._simplify_polygon(polygon, index, stats) for polygon in coordinates]

        return {"type": geometry_type, "coordinates": simplified}

    def _simplify_polygon(self, polygon: Any, index: int, stats: PreprocessStats) -> List[List[List[float]]]:
        if not isinstance(polygon, list) or not polygon:
            raise FeatureGeometryError("Polygon has no rings", feature_index=index)
        return [self._simplify_ring(ring, index, stats) for ring in polygon]

    def _simplify_ring(self, ring: Any, index: int, stats: PreprocessStats) -> List[List[float]]:
        positions = self._clean_ring(ring, index)
        simplified = simplify(positions, self.tolerance)

        # A collapsed ring is no longer a polygon boundary; keep the original vertices
        if len(simplified) < _min_ring_length(simplified):
            simplified = positions

        stats.original_vertices += len(positions)
        stats.processed_vertices += len(simplified)
        return simplified

    def _clean_ring(self, ring: Any, index: int) -> List[List[float]]:
        if not isinstance(ring, list) or len(ring) < 3:
            raise FeatureGeometryError("Ring has fewer than 3 positions", feature_index=index)

        positions = []
        for position in ring:
            if not isinstance(position, (list, tuple)) or len(position) < 2:
                raise FeatureGeometryError("Ring position is not a coordinate pair", feature_index=index)
            try:
                lon, lat = float(position[0]), float(position[1])
            except (TypeError, ValueError):
                raise FeatureGeometryError("Ring position is not numeric", feature_index=index)
            if not (math.isfinite(lon) and math.isfinite(lat)):
                raise FeatureGeometryError("Ring position is not finite", feature_index=index)
            positions.append([lon, lat])

        if len(positions) < _min_ring_length(positions):
            raise FeatureGeometryError("Closed ring has fewer than 4 positions", feature_index=index)
        return positions
