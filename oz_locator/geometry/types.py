"""Zone feature types and bounding box extraction"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, NamedTuple, Sequence

from oz_locator.errors import FeatureGeometryError

SUPPORTED_GEOMETRY_TYPES = ("Polygon", "MultiPolygon")


class BoundingBox(NamedTuple):
    """Axis-aligned box in lon/lat units"""
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @classmethod
    def for_point(cls, lon: float, lat: float) -> "BoundingBox":
        return cls(lon, lat, lon, lat)

    def contains_point(self, lon: float, lat: float) -> bool:
        return self.min_x <= lon <= self.max_x and self.min_y <= lat <= self.max_y

    def contains(self, other: "BoundingBox") -> bool:
        return (
            self.min_x <= other.min_x
            and self.min_y <= other.min_y
            and other.max_x <= self.max_x
            and other.max_y <= self.max_y
        )

    def intersects(self, other: "BoundingBox") -> bool:
        return not (
            other.min_x > self.max_x
            or other.max_x < self.min_x
            or other.min_y > self.max_y
            or other.max_y < self.min_y
        )


class SpatialIndexEntry(NamedTuple):
    """One index record per feature; feature_index points into the snapshot's feature list"""
    bbox: BoundingBox
    zone_id: str
    feature_index: int

    def to_record(self) -> List[Any]:
        return [*self.bbox, self.zone_id, self.feature_index]

    @classmethod
    def from_record(cls, record: Sequence[Any]) -> "SpatialIndexEntry":
        min_x, min_y, max_x, max_y, zone_id, feature_index = record
        return cls(BoundingBox(min_x, min_y, max_x, max_y), str(zone_id), int(feature_index))


def outer_rings(geometry: Dict[str, Any]) -> Iterable[Sequence[Sequence[float]]]:
    """Yield the outer ring of a Polygon, or of every polygon in a MultiPolygon"""
    geometry_type = geometry.get("type")
    coordinates = geometry.get("coordinates")

    if geometry_type == "Polygon":
        yield coordinates[0]
    elif geometry_type == "MultiPolygon":
        for polygon in coordinates:
            yield polygon[0]
    else:
        raise FeatureGeometryError(f"Unsupported geometry type: {geometry_type}")


def bbox(geometry: Dict[str, Any]) -> BoundingBox:
    """
    Bounding box of a Polygon or MultiPolygon.

    Only outer rings are scanned; holes lie inside their outer ring and
    cannot extend the box.
    """
    min_x = min_y = float("inf")
    max_x = max_y = float("-inf")

    for ring in outer_rings(geometry):
        for position in ring:
            lon, lat = position[0], position[1]
            min_x = min(min_x, lon)
            min_y = min(min_y, lat)
            max_x = max(max_x, lon)
            max_y = max(max_y, lat)

    if min_x > max_x:
        raise FeatureGeometryError("Geometry has no outer ring positions")

    return BoundingBox(min_x, min_y, max_x, max_y)


@dataclass(frozen=True)
class GeoFeature:
    """A single zone: stable id, polygonal geometry and its derived bounding box"""
    zone_id: str
    geometry: Dict[str, Any]
    bbox: BoundingBox

    def to_geojson(self) -> Dict[str, Any]:
        return {
            "type": "Feature",
            "geometry": self.geometry,
            "properties": {"GEOID": self.zone_id},
        }

    @classmethod
    def from_geojson(cls, feature: Dict[str, Any]) -> "GeoFeature":
        """Rehydrate a feature previously produced by to_geojson()"""
        geometry = feature["geometry"]
        return cls(
            zone_id=str(feature["properties"]["GEOID"]),
            geometry=geometry,
            bbox=bbox(geometry),
        )
