"""
Polygon Math

Numeric primitives shared by every measurement component:
- Shoelace polygon area
- Pitch and azimuth from a surface normal
- Vector averaging
- Perimeter and simple-polygon checks
"""

import math
from typing import Any, Iterable, List, Sequence, Tuple

import numpy as np

from models.errors import DegenerateVectorError, EmptyInputError
from models.measurement import Point3D

# Vectors shorter than this have no usable direction
DEGENERATE_NORM = 1e-12

# Cross products below this are treated as collinear
COLLINEAR_EPSILON = 1e-6


def _coords(point: Any) -> Tuple[float, float, float]:
    """Read (x, y, z) from a Point3D, an object with x/y[/z], or a tuple."""
    if isinstance(point, (list, tuple)):
        if len(point) == 2:
            return float(point[0]), float(point[1]), 0.0
        return float(point[0]), float(point[1]), float(point[2])
    return float(point.x), float(point.y), float(getattr(point, "z", 0.0))


def _as_array(points: Iterable[Any]) -> np.ndarray:
    return np.array([_coords(p) for p in points], dtype=np.float64).reshape(-1, 3)


def polygon_area(points: Sequence[Any]) -> float:
    """
    Planar polygon area using the shoelace formula.

    The sequence is treated as a closed loop; winding direction does not
    matter. Only x and y are used.

    Args:
        points: Ordered boundary points

    Returns:
        Area in squared input units, 0.0 for fewer than 3 points
    """
    if len(points) < 3:
        return 0.0

    pts = _as_array(points)
    x = pts[:, 0]
    y = pts[:, 1]
    x_next = np.roll(x, -1)
    y_next = np.roll(y, -1)

    cross_sum = float(np.sum(x * y_next - x_next * y))
    return 0.5 * abs(cross_sum)


def _norm(vector: Any) -> Tuple[float, float, float, float]:
    nx, ny, nz = _coords(vector)
    magnitude = math.sqrt(nx * nx + ny * ny + nz * nz)
    if magnitude < DEGENERATE_NORM:
        raise DegenerateVectorError(vector)
    return nx, ny, nz, magnitude


def pitch_angle_from_normal(normal: Any) -> float:
    """
    Calculate surface pitch from its normal vector.

    Pitch is the angle between the normal and the vertical (Y) axis,
    folded into [0, 90] so downward-facing normals read the same as
    upward ones.

    Args:
        normal: (nx, ny, nz) normal vector, need not be normalized

    Returns:
        Pitch in degrees, 0 = flat, 90 = vertical
    """
    _, ny, _, magnitude = _norm(normal)
    cos_pitch = min(1.0, abs(ny) / magnitude)
    return math.degrees(math.acos(cos_pitch))


def azimuth_angle_from_normal(normal: Any) -> float:
    """
    Calculate azimuth from the normal's horizontal projection.

    Args:
        normal: (nx, ny, nz) normal vector

    Returns:
        Azimuth in degrees within (-180, 180]
    """
    nx, _, nz, _ = _norm(normal)
    azimuth = math.degrees(math.atan2(nx, nz))
    if azimuth <= -180.0:
        azimuth = 180.0
    return azimuth


def average_vectors(vectors: Sequence[Any]) -> Point3D:
    """Componentwise mean of a non-empty vector list."""
    if len(vectors) == 0:
        raise EmptyInputError("Cannot average an empty vector list")

    mean = _as_array(vectors).mean(axis=0)
    return Point3D(x=float(mean[0]), y=float(mean[1]), z=float(mean[2]))


def projected_area(area: float, pitch_degrees: float) -> float:
    """Area seen from directly above a surface pitched by pitch_degrees."""
    projected = area * math.cos(math.radians(pitch_degrees))
    return min(area, max(0.0, projected))


def pitch_to_rise_over_12(pitch_degrees: float) -> float:
    """Convert pitch in degrees to the roofer's X:12 rise-over-run format."""
    if pitch_degrees >= 90:
        return float("inf")
    return math.tan(math.radians(pitch_degrees)) * 12


def polygon_perimeter(points: Sequence[Any]) -> float:
    """
    Closed-loop boundary length in 3D.

    Args:
        points: Ordered boundary points

    Returns:
        Perimeter in input units, 0.0 for fewer than 2 points
    """
    if len(points) < 2:
        return 0.0

    pts = _as_array(points)
    edges = np.roll(pts, -1, axis=0) - pts
    return float(np.sum(np.linalg.norm(edges, axis=1)))


def are_collinear(p1: Any, p2: Any, p3: Any) -> bool:
    """True if three points lie on one line in the x/y plane."""
    x1, y1, _ = _coords(p1)
    x2, y2, _ = _coords(p2)
    x3, y3, _ = _coords(p3)
    cross = (x2 - x1) * (y3 - y1) - (y2 - y1) * (x3 - x1)
    return abs(cross) < COLLINEAR_EPSILON


def _orientation(p: Tuple, q: Tuple, r: Tuple) -> int:
    val = (q[1] - p[1]) * (r[0] - q[0]) - (q[0] - p[0]) * (r[1] - q[1])
    if abs(val) < COLLINEAR_EPSILON:
        return 0
    return 1 if val > 0 else 2


def _on_segment(p: Tuple, q: Tuple, r: Tuple) -> bool:
    return (
        min(p[0], r[0]) <= q[0] <= max(p[0], r[0])
        and min(p[1], r[1]) <= q[1] <= max(p[1], r[1])
    )


def segments_intersect(p1: Tuple, q1: Tuple, p2: Tuple, q2: Tuple) -> bool:
    """Segment p1-q1 against segment p2-q2 in the x/y plane."""
    o1 = _orientation(p1, q1, p2)
    o2 = _orientation(p1, q1, q2)
    o3 = _orientation(p2, q2, p1)
    o4 = _orientation(p2, q2, q1)

    if o1 != o2 and o3 != o4:
        return True

    # Collinear overlaps
    if o1 == 0 and _on_segment(p1, p2, q1):
        return True
    if o2 == 0 and _on_segment(p1, q2, q1):
        return True
    if o3 == 0 and _on_segment(p2, p1, q2):
        return True
    if o4 == 0 and _on_segment(p2, q1, q2):
        return True

    return False


def is_self_intersecting(points: Sequence[Any]) -> bool:
    """
    Check whether any two non-adjacent boundary edges cross.

    Triangles never self-intersect.
    """
    n = len(points)
    if n < 4:
        return False

    pts: List[Tuple[float, float, float]] = [_coords(p) for p in points]

    for i in range(n):
        a_start, a_end = pts[i], pts[(i + 1) % n]
        for j in range(i + 2, n):
            if i == 0 and j == n - 1:
                continue  # shares the closing vertex
            b_start, b_end = pts[j], pts[(j + 1) % n]
            if segments_intersect(a_start, a_end, b_start, b_end):
                return True

    return False
