"""Ramer–Douglas–Peucker simplification of lat/lng polylines."""

import math
from collections.abc import Sequence

from route_planner.core.models import LatLng


def perpendicular_distance(point: LatLng, start: LatLng, end: LatLng) -> float:
    """Distance from point to the infinite line through start and end (planar, degrees).

    The projection parameter is not clamped to [0, 1], so points beyond the
    chord are measured against its extension, as plain Douglas–Peucker does.
    """
    dx = end.lng - start.lng
    dy = end.lat - start.lat
    if dx == 0 and dy == 0:
        return math.hypot(point.lng - start.lng, point.lat - start.lat)

    t = ((point.lng - start.lng) * dx + (point.lat - start.lat) * dy) / (dx * dx + dy * dy)
    nearest_x = start.lng + t * dx
    nearest_y = start.lat + t * dy
    return math.hypot(point.lng - nearest_x, point.lat - nearest_y)


def simplify(points: Sequence[LatLng], tolerance: float) -> list[LatLng]:
    """Drop points that deviate no more than `tolerance` from the chord of their span.

    Inputs shorter than 3 points are returned unchanged. Endpoints are always
    kept; on equal distances the leftmost point is the split point.
    """
    if len(points) < 3:
        return list(points)

    keep = [False] * len(points)
    keep[0] = keep[-1] = True

    # (first, last) index spans still to examine; same result as the recursive form
    stack = [(0, len(points) - 1)]
    while stack:
        first, last = stack.pop()
        index = None
        max_dist = 0.0
        for i in range(first + 1, last):
            dist = perpendicular_distance(points[i], points[first], points[last])
            if dist > max_dist:
                index = i
                max_dist = dist

        if index is not None and max_dist > tolerance:
            keep[index] = True
            stack.append((index, last))
            stack.append((first, index))

    return [p for p, k in zip(points, keep) if k]
