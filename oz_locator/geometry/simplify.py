"""Douglas-Peucker ring simplification"""

import math
from typing import List, Sequence

Point = Sequence[float]


def point_segment_distance(point: Point, start: Point, end: Point) -> float:
    """
    Distance from a point to the segment start-end.

    The projection is clamped to the segment; a zero-length segment
    degrades to the Euclidean distance between point and start.
    """
    dx = end[0] - start[0]
    dy = end[1] - start[1]
    px = point[0] - start[0]
    py = point[1] - start[1]

    length_squared = dx * dx + dy * dy
    if length_squared == 0:
        return math.sqrt(px * px + py * py)

    t = (px * dx + py * dy) / length_squared
    if t < 0:
        nearest_x, nearest_y = start[0], start[1]
    elif t > 1:
        nearest_x, nearest_y = end[0], end[1]
    else:
        nearest_x = start[0] + t * dx
        nearest_y = start[1] + t * dy

    ox = point[0] - nearest_x
    oy = point[1] - nearest_y
    return math.sqrt(ox * ox + oy * oy)


def simplify(ring: Sequence[Point], tolerance: float) -> List[Point]:
    """
    Simplify a ring (or line) with the Douglas-Peucker algorithm.

    Same output as the textbook recursive formulation: the farthest point
    from the first-last chord is kept when its distance exceeds the tolerance
    and both halves are simplified again; otherwise the span collapses to its
    endpoints. Spans are processed from an explicit stack, so very long rings
    cannot exhaust the interpreter's recursion limit.

    Args:
        ring: Ordered (lon, lat) positions
        tolerance: Maximum allowed perpendicular deviation, in coordinate units

    Returns:
        New list holding the retained positions in their original order
    """
    points = list(ring)
    if len(points) <= 2:
        return points

    keep = [False] * len(points)
    keep[0] = True
    keep[-1] = True

    stack = [(0, len(points) - 1)]
    while stack:
        first, last = stack.pop()
        if last - first < 2:
            continue

        max_distance = 0.0
        max_index = first
        for i in range(first + 1, last):
            distance = point_segment_distance(points[i], points[first], points[last])
            if distance > max_distance:
                max_distance = distance
                max_index = i

        if max_distance > tolerance:
            keep[max_index] = True
            stack.append((max_index, last))
            stack.append((first, max_index))

    return [point for point, kept in zip(points, keep) if kept]
