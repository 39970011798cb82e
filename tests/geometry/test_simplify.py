"""Douglas-Peucker simplification tests"""

import math
import random

import pytest

from oz_locator.geometry.simplify import point_segment_distance, simplify


def wavy_ring(count: int = 200, seed: int = 7):
    """Closed ring around the origin with jittered radius"""
    rng = random.Random(seed)
    ring = []
    for i in range(count):
        angle = 2 * math.pi * i / count
        radius = 1.0 + rng.uniform(-0.05, 0.05)
        ring.append([radius * math.cos(angle), radius * math.sin(angle)])
    ring.append(list(ring[0]))
    return ring


class TestPointSegmentDistance:
    """Distance from a point to a segment"""

    def test_perpendicular_projection(self):
        assert point_segment_distance([0.5, 1.0], [0.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)

    def test_projection_clamped_to_segment_end(self):
        assert point_segment_distance([3.0, 4.0], [-1.0, 0.0], [0.0, 0.0]) == pytest.approx(5.0)

    def test_zero_length_segment_uses_euclidean_distance(self):
        assert point_segment_distance([3.0, 4.0], [0.0, 0.0], [0.0, 0.0]) == pytest.approx(5.0)


class TestSimplify:
    """Ring simplification"""

    @pytest.mark.parametrize("ring", [[], [[0.0, 0.0]], [[0.0, 0.0], [1.0, 1.0]]])
    def test_short_rings_unchanged(self, ring):
        assert simplify(ring, 0.5) == ring

    def test_colinear_points_collapse_to_endpoints(self):
        line = [[float(i), 0.0] for i in range(10)]
        assert simplify(line, 0.0) == [[0.0, 0.0], [9.0, 0.0]]

    def test_significant_vertex_kept(self):
        line = [[0.0, 0.0], [0.5, 0.2505], [2.0, 1.0], [3.0, 0.0]]
        result = simplify(line, 0.01)
        assert [2.0, 1.0] in result
        assert result == [[0.0, 0.0], [2.0, 1.0], [3.0, 0.0]]

    def test_unit_square_survives(self):
        ring = [[0.0, 0.0], [0.0, 1.0], [1.0, 1.0], [1.0, 0.0], [0.0, 0.0]]
        assert simplify(ring, 0.0001) == ring

    @pytest.mark.parametrize("tolerance", [0.0, 0.0001, 0.01, 0.05, 0.5, 5.0])
    def test_length_bounded_and_endpoints_retained(self, tolerance):
        ring = wavy_ring()
        result = simplify(ring, tolerance)
        assert len(result) <= len(ring)
        assert result[0] == ring[0]
        assert result[-1] == ring[-1]

    def test_output_is_subsequence_of_input(self):
        ring = wavy_ring()
        result = simplify(ring, 0.02)
        positions = iter(ring)
        assert all(any(point == candidate for candidate in positions) for point in result)

    def test_increasing_tolerance_never_increases_length(self):
        ring = wavy_ring(count=500, seed=3)
        lengths = [len(simplify(ring, t)) for t in (0.0, 0.001, 0.005, 0.01, 0.05, 0.1, 1.0)]
        assert lengths == sorted(lengths, reverse=True)

    def test_deterministic(self):
        ring = wavy_ring()
        assert simplify(ring, 0.01) == simplify(list(ring), 0.01)

    def test_very_long_ring_does_not_hit_recursion_limit(self):
        # A spiral keeps every vertex, the worst case for the split depth
        ring = [[i * math.cos(i / 10.0), i * math.sin(i / 10.0)] for i in range(3000)]
        result = simplify(ring, 0.0)
        assert result[0] == ring[0]
        assert result[-1] == ring[-1]
