"""
2D helpers shared by the bounding-box fitters.

Point sets are (N, 2) float arrays of (x, z) coordinates. Angles are in
radians; wrapped angles lie in (-pi, pi].
"""

import math
import numpy as np
from typing import Tuple


TWO_PI = 2.0 * math.pi


def wrap_to_pi(angle: float) -> float:
    """Wrap an angle to (-pi, pi]."""
    wrapped = math.pi - ((math.pi - float(angle)) % TWO_PI)
    # Float rounding in the modulo can land a hair below -pi
    if wrapped <= -math.pi:
        wrapped += TWO_PI
    return wrapped


def angle_difference(a: float, b: float) -> float:
    """Shortest signed difference a - b, wrapped to (-pi, pi]."""
    return wrap_to_pi(a - b)


def as_points_2d(points) -> np.ndarray:
    """Coerce input to an (N, 2) float64 array."""
    pts = np.asarray(points, dtype=np.float64)
    if pts.size == 0:
        return np.zeros((0, 2), dtype=np.float64)
    return pts.reshape(-1, 2)


def rotate_points_2d(points: np.ndarray, theta: float) -> np.ndarray:
    """Rotate (N, 2) points counter-clockwise by theta about the origin."""
    c, s = math.cos(theta), math.sin(theta)
    rot = np.array([[c, -s], [s, c]])
    return points @ rot.T


def project_extents(points: np.ndarray, theta: float) -> Tuple[float, float, float, float]:
    """
    Project points onto the axes rotated by theta.
    
    Returns:
        (width, height, center_x, center_z) where width is the extent
        along (cos theta, sin theta), height the perpendicular extent, and
        the center is expressed back in the input frame.
    """
    local = rotate_points_2d(points, -theta)
    mins = local.min(axis=0)
    maxs = local.max(axis=0)
    width, height = maxs - mins
    cx, cz = (mins + maxs) / 2.0
    c, s = math.cos(theta), math.sin(theta)
    return float(width), float(height), float(c * cx - s * cz), float(s * cx + c * cz)


def quantile_extents(points: np.ndarray, theta: float, quantile: float) -> Tuple[float, float, float, float]:
    """
    Like project_extents, but the extents run between the lower and upper
    ``quantile`` order statistics on each axis instead of min/max.
    """
    local = rotate_points_2d(points, -theta)
    n = local.shape[0]
    low_idx = max(0, int(math.floor(n * quantile)))
    high_idx = min(n - 1, int(math.ceil(n * (1.0 - quantile))) - 1)
    xs = np.sort(local[:, 0])
    zs = np.sort(local[:, 1])
    min_x, max_x = xs[low_idx], xs[high_idx]
    min_z, max_z = zs[low_idx], zs[high_idx]
    cx, cz = (min_x + max_x) / 2.0, (min_z + max_z) / 2.0
    c, s = math.cos(theta), math.sin(theta)
    return (float(max_x - min_x), float(max_z - min_z),
            float(c * cx - s * cz), float(s * cx + c * cz))


def convex_hull(points: np.ndarray) -> np.ndarray:
    """
    Monotone-chain convex hull.
    
    Points are sorted by x then z; non-left turns are popped from the
    lower and upper chains. Returns hull vertices counter-clockwise with
    collinear points removed, as an (H, 2) array.
    """
    pts = as_points_2d(points)
    if pts.shape[0] < 3:
        return pts.copy()
    
    order = np.lexsort((pts[:, 1], pts[:, 0]))
    ordered = [tuple(p) for p in pts[order]]
    
    def cross(o, a, b):
        return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])
    
    lower = []
    for p in ordered:
        while len(lower) >= 2 and cross(lower[-2], lower[-1], p) <= 0:
            lower.pop()
        lower.append(p)
    
    upper = []
    for p in reversed(ordered):
        while len(upper) >= 2 and cross(upper[-2], upper[-1], p) <= 0:
            upper.pop()
        upper.append(p)
    
    hull = lower[:-1] + upper[:-1]
    return np.array(hull, dtype=np.float64).reshape(-1, 2)
