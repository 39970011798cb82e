"""Spatial index candidate filtering tests"""

from oz_locator.geometry.spatial_index import SpatialIndex
from oz_locator.geometry.types import BoundingBox, SpatialIndexEntry


def entries():
    return [
        SpatialIndexEntry(BoundingBox(0.0, 0.0, 2.0, 2.0), "a", 0),
        SpatialIndexEntry(BoundingBox(1.0, 1.0, 3.0, 3.0), "b", 1),
        SpatialIndexEntry(BoundingBox(10.0, 10.0, 11.0, 11.0), "c", 2),
    ]


class TestSpatialIndex:
    """STR-tree over feature bounding boxes"""

    def test_point_query_returns_overlapping_boxes_in_dataset_order(self):
        index = SpatialIndex.build(entries())
        assert index.query_zone_ids(BoundingBox.for_point(1.5, 1.5)) == ["a", "b"]

    def test_point_outside_every_box(self):
        index = SpatialIndex.build(entries())
        assert index.query_point(5.0, 5.0) == []

    def test_point_on_box_edge_is_candidate(self):
        index = SpatialIndex.build(entries())
        assert [e.zone_id for e in index.query_point(11.0, 10.5)] == ["c"]

    def test_box_query(self):
        index = SpatialIndex.build(entries())
        assert index.query_zone_ids(BoundingBox(2.5, 2.5, 10.5, 10.5)) == ["b", "c"]

    def test_no_false_negatives_against_brute_force(self):
        grid = [
            SpatialIndexEntry(BoundingBox(x, y, x + 1.5, y + 1.5), f"{x}-{y}", i)
            for i, (x, y) in enumerate((x, y) for x in range(10) for y in range(10))
        ]
        index = SpatialIndex.build(grid)

        for qx, qy in [(0.0, 0.0), (3.2, 4.7), (9.9, 9.9), (5.5, 0.25), (11.5, 11.5)]:
            expected = [e.zone_id for e in grid if e.bbox.contains_point(qx, qy)]
            assert index.query_zone_ids(BoundingBox.for_point(qx, qy)) == expected

    def test_empty_index(self):
        index = SpatialIndex.build([])
        assert len(index) == 0
        assert index.query_point(0.0, 0.0) == []

    def test_records_round_trip(self):
        index = SpatialIndex.build(entries())
        restored = SpatialIndex.from_records(index.to_records())
        assert restored.entries == index.entries
