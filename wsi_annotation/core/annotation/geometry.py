"""
Pure geometry functions for annotation logic.

These functions have no side effects and can be tested in isolation.
Coordinate sequences are numpy arrays of shape (N, 2) in world units.
"""

import math
from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple

import numpy as np

# Convexity threshold of the ear test
TRIANGULATE_EPSILON = 1e-10

ELLIPSE_SEGMENT_COUNT = 48


def as_coordinates(coords) -> np.ndarray:
    """
    Convert any sequence of (x, y) pairs to a float64 (N, 2) array.

    Args:
        coords: Sequence of points or array

    Returns:
        Array with shape (N, 2)
    """
    array = np.asarray(coords, dtype=np.float64)
    if array.size == 0:
        return np.zeros((0, 2), dtype=np.float64)
    return array.reshape(-1, 2)


def as_point(point) -> np.ndarray:
    return np.asarray(point, dtype=np.float64).reshape(2)


@dataclass(frozen=True)
class Bounds:
    """Axis-aligned bounding box, inclusive on all sides."""

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @classmethod
    def empty(cls) -> "Bounds":
        """Inverted box that contains nothing and is neutral for union()."""
        return cls(math.inf, math.inf, -math.inf, -math.inf)

    @property
    def is_empty(self) -> bool:
        return self.min_x > self.max_x or self.min_y > self.max_y

    @property
    def width(self) -> float:
        return max(0.0, self.max_x - self.min_x)

    @property
    def height(self) -> float:
        return max(0.0, self.max_y - self.min_y)

    @property
    def center(self) -> np.ndarray:
        return np.array(
            [(self.min_x + self.max_x) * 0.5, (self.min_y + self.max_y) * 0.5]
        )

    def expanded(self, margin: float) -> "Bounds":
        return Bounds(
            self.min_x - margin,
            self.min_y - margin,
            self.max_x + margin,
            self.max_y + margin,
        )

    def contains(self, point, margin: float = 0.0) -> bool:
        x, y = float(point[0]), float(point[1])
        return (
            self.min_x - margin <= x <= self.max_x + margin
            and self.min_y - margin <= y <= self.max_y + margin
        )

    def intersects(self, other: "Bounds") -> bool:
        if self.is_empty or other.is_empty:
            return False
        return not (
            other.min_x > self.max_x
            or other.max_x < self.min_x
            or other.min_y > self.max_y
            or other.max_y < self.min_y
        )

    def union(self, other: "Bounds") -> "Bounds":
        return Bounds(
            min(self.min_x, other.min_x),
            min(self.min_y, other.min_y),
            max(self.max_x, other.max_x),
            max(self.max_y, other.max_y),
        )


class Projection(NamedTuple):
    """Result of projecting a point onto the edges of a coordinate sequence."""

    insert_index: int  # where a coordinate must be inserted to land on the edge
    projected_point: np.ndarray
    t: float  # position along the edge, clamped to [0, 1]
    distance: float


def project_point_on_segment(point, start, end) -> Tuple[np.ndarray, float]:
    """
    Project a point onto a line segment.

    Args:
        point: Point to project
        start: Segment start
        end: Segment end

    Returns:
        Tuple of (projected point, clamped parametric t)
    """
    point, start, end = as_point(point), as_point(start), as_point(end)
    direction = end - start
    segment_length_sq = float(np.dot(direction, direction))
    if segment_length_sq == 0.0:
        return start.copy(), 0.0
    t = float(np.dot(point - start, direction)) / segment_length_sq
    t_clamped = max(0.0, min(1.0, t))
    return start + direction * t_clamped, t_clamped


def project_point_onto_polyline(
    point, coords, closed: bool = True
) -> Optional[Projection]:
    """
    Find the edge of a coordinate sequence closest to a point.

    Every edge i -> i+1 is tested (plus the edge from the last coordinate back
    to the first if ``closed``). The first edge reaching the minimum distance
    wins.

    Args:
        point: Point to project, in world units
        coords: Coordinate sequence (N, 2)
        closed: Whether the shape wraps around

    Returns:
        Projection, or None if there are no coordinates
    """
    point = as_point(point)
    coords = as_coordinates(coords)
    count = len(coords)
    if count == 0:
        return None
    if count == 1:
        only = coords[0].copy()
        return Projection(1, only, 0.0, float(np.hypot(*(point - only))))

    if closed:
        starts = coords
        ends = np.roll(coords, -1, axis=0)
    else:
        starts = coords[:-1]
        ends = coords[1:]

    directions = ends - starts
    lengths_sq = np.einsum("ij,ij->i", directions, directions)
    dots = np.einsum("ij,ij->i", point - starts, directions)
    safe_lengths = np.where(lengths_sq > 0.0, lengths_sq, 1.0)
    t = np.where(lengths_sq > 0.0, dots / safe_lengths, 0.0)
    t = np.clip(t, 0.0, 1.0)
    projected = starts + directions * t[:, None]
    deltas = point - projected
    distances_sq = np.einsum("ij,ij->i", deltas, deltas)

    best = int(np.argmin(distances_sq))  # argmin returns the first minimum
    return Projection(
        insert_index=best + 1,
        projected_point=projected[best].copy(),
        t=float(t[best]),
        distance=float(math.sqrt(distances_sq[best])),
    )


def signed_polygon_area(coords) -> float:
    """Shoelace area; positive for counter-clockwise winding (y up)."""
    coords = as_coordinates(coords)
    if len(coords) < 3:
        return 0.0
    x = coords[:, 0]
    y = coords[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


def polygon_area(coords) -> float:
    """
    Compute the area enclosed by a coordinate sequence.

    Args:
        coords: Coordinate sequence (N, 2)

    Returns:
        Absolute area, 0 for fewer than 3 coordinates
    """
    return abs(signed_polygon_area(coords))


def polyline_length(coords, closed: bool = True) -> float:
    """Total edge length, including the closing edge when ``closed``."""
    coords = as_coordinates(coords)
    if len(coords) < 2:
        return 0.0
    if closed:
        deltas = np.roll(coords, -1, axis=0) - coords
    else:
        deltas = np.diff(coords, axis=0)
    return float(np.sum(np.hypot(deltas[:, 0], deltas[:, 1])))


def polygon_bounds(coords) -> Bounds:
    """
    Compute the axis-aligned bounding box of a coordinate sequence.

    Returns:
        Bounds, inverted (empty) when there are no coordinates
    """
    coords = as_coordinates(coords)
    if len(coords) == 0:
        return Bounds.empty()
    mins = coords.min(axis=0)
    maxs = coords.max(axis=0)
    return Bounds(float(mins[0]), float(mins[1]), float(maxs[0]), float(maxs[1]))


def ellipse_polygon(p0, p1, segment_count: int = ELLIPSE_SEGMENT_COUNT) -> np.ndarray:
    """
    Outline of the ellipse inscribed in the box spanned by two control points.

    Args:
        p0: First control point
        p1: Second control point
        segment_count: Number of outline vertices

    Returns:
        Coordinate array (segment_count, 2)
    """
    p0, p1 = as_point(p0), as_point(p1)
    center = (p0 + p1) * 0.5
    radius = np.abs(p1 - p0) * 0.5
    theta = np.linspace(0.0, 2.0 * math.pi, segment_count, endpoint=False)
    return np.stack(
        [center[0] + radius[0] * np.cos(theta), center[1] + radius[1] * np.sin(theta)],
        axis=1,
    )


def _inside_triangle(ax, ay, bx, by, cx, cy, px, py) -> bool:
    a_cross_bp = (cx - bx) * (py - by) - (cy - by) * (px - bx)
    c_cross_ap = (bx - ax) * (py - ay) - (by - ay) * (px - ax)
    b_cross_cp = (ax - cx) * (py - cy) - (ay - cy) * (px - cx)
    return a_cross_bp >= 0.0 and b_cross_cp >= 0.0 and c_cross_ap >= 0.0


def _is_ear(points, u: int, v: int, w: int, remaining: list) -> bool:
    ax, ay = points[remaining[u]]
    bx, by = points[remaining[v]]
    cx, cy = points[remaining[w]]

    if TRIANGULATE_EPSILON > ((bx - ax) * (cy - ay)) - ((by - ay) * (cx - ax)):
        return False

    for p, vertex in enumerate(remaining):
        if p in (u, v, w):
            continue
        px, py = points[vertex]
        if _inside_triangle(ax, ay, bx, by, cx, cy, px, py):
            return False
    return True


def triangulate(coords) -> Tuple[bool, np.ndarray]:
    """
    Triangulate a simple polygon by ear clipping.

    The winding is normalized to counter-clockwise first. When no ear can be
    found within twice the number of remaining vertices the polygon is most
    likely self-intersecting and triangulation fails.

    Args:
        coords: Coordinate sequence (N, 2), N >= 3

    Returns:
        Tuple of (success, triangles with shape (N - 2, 3, 2))
    """
    contour = as_coordinates(coords)
    failed = (False, np.zeros((0, 3, 2), dtype=np.float64))
    n = len(contour)
    if n < 3:
        return failed

    points = [tuple(p) for p in contour.tolist()]
    if signed_polygon_area(contour) > 0.0:
        remaining = list(range(n))
    else:
        remaining = list(range(n - 1, -1, -1))

    nv = n
    attempts = 2 * nv
    triangles = []
    v = nv - 1
    while nv > 2:
        if attempts <= 0:
            return failed
        attempts -= 1

        # three consecutive vertices <u, v, w> of the remaining polygon
        u = v if v < nv else 0
        v = u + 1 if u + 1 < nv else 0
        w = v + 1 if v + 1 < nv else 0

        if _is_ear(points, u, v, w, remaining):
            triangles.append(
                (points[remaining[u]], points[remaining[v]], points[remaining[w]])
            )
            del remaining[v]
            nv -= 1
            attempts = 2 * nv

    return True, np.asarray(triangles, dtype=np.float64).reshape(-1, 3, 2)


def triangle_areas(triangles: np.ndarray) -> np.ndarray:
    """Absolute areas of a (T, 3, 2) triangle array."""
    triangles = np.asarray(triangles, dtype=np.float64).reshape(-1, 3, 2)
    ab = triangles[:, 1] - triangles[:, 0]
    ac = triangles[:, 2] - triangles[:, 0]
    return 0.5 * np.abs(ab[:, 0] * ac[:, 1] - ab[:, 1] * ac[:, 0])
