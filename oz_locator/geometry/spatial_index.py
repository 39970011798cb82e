"""Bounding-box index for stage-1 candidate filtering"""

from typing import Any, Iterable, List, Optional, Sequence

from shapely.geometry import Point, box
from shapely.strtree import STRtree

from oz_locator.geometry.types import BoundingBox, SpatialIndexEntry


class SpatialIndex:
    """
    Bulk-loaded STR-packed R-tree over feature bounding boxes.

    Built once per snapshot and never mutated. Queries compare envelopes only,
    so results may include boxes that overlap without the underlying polygon
    containing the query, but never miss a feature whose box overlaps.
    """

    def __init__(self, entries: Iterable[SpatialIndexEntry]):
        self._entries: List[SpatialIndexEntry] = list(entries)
        self._tree: Optional[STRtree] = None
        if self._entries:
            self._tree = STRtree([box(*entry.bbox) for entry in self._entries])

    @classmethod
    def build(cls, entries: Iterable[SpatialIndexEntry]) -> "SpatialIndex":
        return cls(entries)

    @classmethod
    def from_records(cls, records: Sequence[Sequence[Any]]) -> "SpatialIndex":
        return cls(SpatialIndexEntry.from_record(record) for record in records)

    def to_records(self) -> List[List[Any]]:
        return [entry.to_record() for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[SpatialIndexEntry]:
        return list(self._entries)

    def query(self, bbox: BoundingBox) -> List[SpatialIndexEntry]:
        """Entries whose box overlaps the query box, in dataset order"""
        if self._tree is None:
            return []

        if bbox.min_x == bbox.max_x and bbox.min_y == bbox.max_y:
            geometry = Point(bbox.min_x, bbox.min_y)
        else:
            geometry = box(*bbox)

        hits = sorted(int(i) for i in self._tree.query(geometry))
        return [self._entries[i] for i in hits]

    def query_zone_ids(self, bbox: BoundingBox) -> List[str]:
        return [entry.zone_id for entry in self.query(bbox)]

    def query_point(self, lon: float, lat: float) -> List[SpatialIndexEntry]:
        return self.query(BoundingBox.for_point(lon, lat))
