"""In-process engine: STR-tree candidate filter plus exact polygon test"""

from typing import List

import structlog
from shapely import prepare
from shapely.geometry import Point, shape
from shapely.geometry.base import BaseGeometry
from shapely.validation import make_valid

from oz_locator.engines.base import LoadedZones, ZoneEngine, ZoneMatch
from oz_locator.geometry.spatial_index import SpatialIndex
from oz_locator.services.zone_cache import CacheSnapshot

logger = structlog.get_logger()


class InMemoryZones(LoadedZones):
    engine_name = "memory"

    def __init__(self, snapshot: CacheSnapshot, index: SpatialIndex, shapes: List[BaseGeometry]):
        super().__init__(snapshot)
        self.index = index
        self.shapes = shapes

    async def locate(self, lat: float, lon: float) -> ZoneMatch:
        point = Point(lon, lat)
        candidates = self.index.query_point(lon, lat)

        for entry in candidates:
            # covers() counts boundary points as inside
            if self.shapes[entry.feature_index].covers(point):
                return ZoneMatch(entry.zone_id, len(candidates))

        return ZoneMatch(None, len(candidates))


class InMemoryZoneEngine(ZoneEngine):
    """Holds every simplified polygon in memory"""

    name = "memory"

    def load(self, snapshot: CacheSnapshot) -> InMemoryZones:
        index = SpatialIndex(snapshot.index_entries)

        shapes = []
        repaired = 0
        for feature in snapshot.features:
            geometry = shape(feature.geometry)
            if not geometry.is_valid:
                geometry = make_valid(geometry)
                repaired += 1
            prepare(geometry)
            shapes.append(geometry)

        logger.info(
            "Loaded zones into memory engine",
            version=snapshot.version,
            feature_count=len(shapes),
            repaired_geometries=repaired,
        )
        return InMemoryZones(snapshot, index, shapes)
