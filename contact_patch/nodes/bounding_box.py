"""
Contact Patch Bounding Boxes
============================

Fits an oriented 2D rectangle to contact points lying on the ground plane
and lifts it to a 3D oriented box for visualization and wear accumulation.

Algorithms:
- AABB:   min/max in x and z (theta = 0)
- OBB:    PCA - dominant eigenvector of the 2x2 covariance matrix
- OMBB:   monotone-chain convex hull + rotating calipers (minimum area)
- KDOP8:  k evenly spaced orientations in [0, pi), keep the smallest area
- HYBRID: k-DOP (k=16) followed by a local refinement sweep around the
          best orientation

Velocity override:
    When the body's planar speed exceeds ``velocity_align_speed`` the box
    orientation is the velocity heading, theta = atan2(vz, vx), and the
    extents come from projecting the points onto that fixed orientation.
    The footprint then follows the direction of travel instead of a
    geometric fit that may flip between frames.

All points are (N, 2) arrays of (x, z). Every theta leaving this module is
wrapped to (-pi, pi], and width/height are never below ``min_size``.

Usage:
    fitter = BoundingBoxFitter(FitterConfig())
    fit = fitter.fit_contacts(xz_points, BoxAlgorithm.OMBB, planar_velocity)
    box3d = fitter.to_oriented_box(fit.box, contact_point, contact_normal)
"""

import math
import numpy as np
from typing import Dict, Optional
from dataclasses import dataclass, field
from enum import Enum

from .utils.geometry2d import (
    wrap_to_pi,
    as_points_2d,
    project_extents,
    quantile_extents,
    convex_hull,
)
from .utils.plane import safe_normalize


# =============================================================================
# Types
# =============================================================================

class BoxAlgorithm(Enum):
    AABB = "aabb"
    OBB = "obb"
    OMBB = "ombb"
    KDOP8 = "kdop8"
    HYBRID = "hybrid"

    @classmethod
    def from_string(cls, name) -> "BoxAlgorithm":
        """Algorithm from its name; unknown names select OMBB."""
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).lower())
        except ValueError:
            return cls.OMBB


BOX_ALGORITHM_CHOICES = [a.value for a in BoxAlgorithm]


@dataclass
class FitterConfig:
    """Configuration for box fitting and orientation stabilization."""

    min_contact_size: float = 0.05          # Meters - floor for width/height
    obb_depth: float = 2.5                  # Fixed depth of the 3D box

    # Velocity-aligned orientation
    velocity_align_speed: float = 0.5       # m/s planar speed

    # k-DOP / hybrid
    kdop_k: int = 8
    hybrid_k: int = 16
    hybrid_tolerance: float = 0.05          # Radians around best-of-k
    hybrid_refine_steps: int = 10           # Samples per side of the sweep
    hybrid_trim_quantile: float = 0.0       # 0 = plain min/max extents

    # Orientation stabilizer
    angle_stability_threshold: float = math.radians(25.0)
    velocity_consistency_dot: float = 0.8

    def __post_init__(self):
        self.min_contact_size = _non_negative(self.min_contact_size, 0.05)
        self.obb_depth = _non_negative(self.obb_depth, 2.5)
        self.velocity_align_speed = _non_negative(self.velocity_align_speed, 0.5)
        self.hybrid_tolerance = _non_negative(self.hybrid_tolerance, 0.05)
        self.angle_stability_threshold = _non_negative(self.angle_stability_threshold,
                                                       math.radians(25.0))
        self.hybrid_trim_quantile = min(0.49, _non_negative(self.hybrid_trim_quantile, 0.0))
        self.velocity_consistency_dot = _unit_interval(self.velocity_consistency_dot, 0.8)
        self.kdop_k = _checked_count(self.kdop_k, 8, minimum=1)
        self.hybrid_k = _checked_count(self.hybrid_k, 16, minimum=1)
        self.hybrid_refine_steps = _checked_count(self.hybrid_refine_steps, 10, minimum=0)


def _non_negative(value, default: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(value) or value < 0.0:
        return default
    return value


def _unit_interval(value, default: float) -> float:
    """Cosine threshold: finite and within [-1, 1], else the default."""
    try:
        value = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(value) or not -1.0 <= value <= 1.0:
        return default
    return value


def _checked_count(value, default: int, minimum: int) -> int:
    try:
        value = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(value):
        return default
    return max(minimum, int(value))


@dataclass
class BoundingBox2D:
    """Oriented rectangle on the ground plane."""
    width: float
    height: float
    center_x: float
    center_z: float
    theta: float = 0.0

    @property
    def area(self) -> float:
        return self.width * self.height

    def corners(self) -> np.ndarray:
        """(4, 2) corners, counter-clockwise starting at (-w/2, -h/2)."""
        c, s = math.cos(self.theta), math.sin(self.theta)
        hw, hh = self.width / 2.0, self.height / 2.0
        local = np.array([[-hw, -hh], [hw, -hh], [hw, hh], [-hw, hh]])
        rot = np.array([[c, -s], [s, c]])
        return local @ rot.T + np.array([self.center_x, self.center_z])


@dataclass(frozen=True)
class OrientedBox3D:
    """
    Oriented 3D box built from a BoundingBox2D and the contact normal.

    e1 is the box's width axis, e2 = normal x e1 its height axis.
    """
    center: np.ndarray
    normal: np.ndarray
    e1: np.ndarray
    e2: np.ndarray
    width: float
    height: float
    depth: float
    theta: float

    def to_dict(self) -> Dict:
        return {
            "center": self.center.tolist(),
            "normal": self.normal.tolist(),
            "e1": self.e1.tolist(),
            "e2": self.e2.tolist(),
            "width": float(self.width),
            "height": float(self.height),
            "depth": float(self.depth),
            "theta": float(self.theta),
        }


@dataclass
class FitResult:
    """Output of BoundingBoxFitter.fit_contacts."""
    box: BoundingBox2D
    centroid: np.ndarray                    # (2,) mean of the input points
    centered_points: np.ndarray             # (N, 2) points minus centroid
    velocity_aligned: bool = False
    planar_velocity: np.ndarray = field(default_factory=lambda: np.zeros(2))


# =============================================================================
# Algorithms
# =============================================================================

def _clamped(width, height, cx, cz, theta, min_size) -> BoundingBox2D:
    return BoundingBox2D(
        width=max(min_size, width),
        height=max(min_size, height),
        center_x=cx,
        center_z=cz,
        theta=wrap_to_pi(theta),
    )


def compute_aabb(points, min_size: float = 0.0) -> BoundingBox2D:
    """Axis-aligned bounds."""
    pts = as_points_2d(points)
    if pts.shape[0] == 0:
        return _clamped(0.0, 0.0, 0.0, 0.0, 0.0, min_size)
    mins = pts.min(axis=0)
    maxs = pts.max(axis=0)
    w, h = maxs - mins
    cx, cz = (mins + maxs) / 2.0
    return _clamped(float(w), float(h), float(cx), float(cz), 0.0, min_size)


def fit_at_orientation(points, theta: float, min_size: float = 0.0) -> BoundingBox2D:
    """Bounding rectangle of the points at a fixed orientation."""
    pts = as_points_2d(points)
    if pts.shape[0] == 0:
        return _clamped(0.0, 0.0, 0.0, 0.0, theta, min_size)
    w, h, cx, cz = project_extents(pts, theta)
    return _clamped(w, h, cx, cz, theta, min_size)


def compute_pca_obb(points, min_size: float = 0.0) -> BoundingBox2D:
    """
    PCA-oriented box.

    The dominant eigenvector of the 2x2 covariance matrix comes from the
    closed form lambda1 = trace/2 + sqrt(trace^2/4 - det).
    """
    pts = as_points_2d(points)
    if pts.shape[0] < 2:
        return compute_aabb(pts, min_size)

    d = pts - pts.mean(axis=0)
    cxx = float(np.mean(d[:, 0] * d[:, 0]))
    czz = float(np.mean(d[:, 1] * d[:, 1]))
    cxz = float(np.mean(d[:, 0] * d[:, 1]))

    trace = cxx + czz
    det = cxx * czz - cxz * cxz
    lambda1 = trace / 2.0 + math.sqrt(max(0.0, trace * trace / 4.0 - det))

    if abs(cxz) > 1e-9:
        vx, vz = lambda1 - czz, cxz
    elif cxx >= czz:
        vx, vz = 1.0, 0.0
    else:
        vx, vz = 0.0, 1.0

    theta = math.atan2(vz, vx)
    return fit_at_orientation(pts, theta, min_size)


def compute_ombb(points, min_size: float = 0.0) -> BoundingBox2D:
    """
    Minimum-area box via rotating calipers over the convex hull.

    Every hull edge direction is a candidate orientation; the hull is
    projected onto each and the smallest area wins. Fewer than 3 points,
    or a hull with fewer than 2 vertices, falls back to AABB.
    """
    pts = as_points_2d(points)
    if pts.shape[0] < 3:
        return compute_aabb(pts, min_size)

    hull = convex_hull(pts)
    if hull.shape[0] < 2:
        return compute_aabb(pts, min_size)

    best = None
    best_area = math.inf
    n = hull.shape[0]

    for i in range(n):
        p1 = hull[i]
        p2 = hull[(i + 1) % n]
        theta = math.atan2(p2[1] - p1[1], p2[0] - p1[0])
        w, h, cx, cz = project_extents(hull, theta)
        area = w * h
        if area < best_area:
            best_area = area
            best = (w, h, cx, cz, theta)

    if best is None:
        return compute_aabb(pts, min_size)

    return _clamped(*best, min_size)


def _best_of_orientations(pts: np.ndarray, thetas) -> tuple:
    best = None
    best_area = math.inf
    for theta in thetas:
        w, h, cx, cz = project_extents(pts, theta)
        area = w * h
        if area < best_area:
            best_area = area
            best = (w, h, cx, cz, theta)
    return best


def compute_kdop(points, k: int = 8, min_size: float = 0.0) -> BoundingBox2D:
    """Smallest-area box over k evenly spaced orientations in [0, pi)."""
    pts = as_points_2d(points)
    if pts.shape[0] < 2:
        return compute_aabb(pts, min_size)

    best = _best_of_orientations(pts, [math.pi * i / k for i in range(k)])
    if best is None:
        return compute_aabb(pts, min_size)
    return _clamped(*best, min_size)


def compute_hybrid(
    points,
    k: int = 16,
    tolerance: float = 0.05,
    min_size: float = 0.0,
    refine_steps: int = 10,
    trim_quantile: float = 0.0,
) -> BoundingBox2D:
    """
    k-DOP followed by a local refinement sweep.

    The best of k orientations is refined by sampling
    ``2 * refine_steps + 1`` orientations within +/- ``tolerance`` of it.
    With ``trim_quantile > 0`` the final extents span the quantiles
    instead of min/max.
    """
    pts = as_points_2d(points)
    if pts.shape[0] < 2:
        return compute_aabb(pts, min_size)

    coarse = _best_of_orientations(pts, [math.pi * i / k for i in range(k)])
    if coarse is None:
        return compute_aabb(pts, min_size)

    best = coarse
    if refine_steps > 0 and tolerance > 0.0:
        base = coarse[4]
        sweep = np.linspace(base - tolerance, base + tolerance, 2 * refine_steps + 1)
        refined = _best_of_orientations(pts, sweep)
        if refined is not None and refined[0] * refined[1] < coarse[0] * coarse[1]:
            best = refined

    theta = best[4]
    if trim_quantile > 0.0:
        w, h, cx, cz = quantile_extents(pts, theta, trim_quantile)
        return _clamped(w, h, cx, cz, theta, min_size)

    return _clamped(*best, min_size)


# =============================================================================
# Fitter
# =============================================================================

class BoundingBoxFitter:
    """
    Dispatches to the selected algorithm, applying the velocity override.

    Points are centered on their centroid before fitting; the returned box
    center is in the input (x, z) coordinates.
    """

    def __init__(self, config: Optional[FitterConfig] = None):
        self.config = config or FitterConfig()

    def fit_2d(self, points, algorithm=BoxAlgorithm.OMBB) -> BoundingBox2D:
        """Run one algorithm on the points as given (no centering, no override)."""
        cfg = self.config
        algorithm = BoxAlgorithm.from_string(algorithm)
        min_size = cfg.min_contact_size

        if algorithm == BoxAlgorithm.AABB:
            return compute_aabb(points, min_size)
        elif algorithm == BoxAlgorithm.OBB:
            return compute_pca_obb(points, min_size)
        elif algorithm == BoxAlgorithm.KDOP8:
            return compute_kdop(points, cfg.kdop_k, min_size)
        elif algorithm == BoxAlgorithm.HYBRID:
            return compute_hybrid(
                points,
                k=cfg.hybrid_k,
                tolerance=cfg.hybrid_tolerance,
                min_size=min_size,
                refine_steps=cfg.hybrid_refine_steps,
                trim_quantile=cfg.hybrid_trim_quantile,
            )
        else:
            return compute_ombb(points, min_size)

    def fit_contacts(
        self,
        points,
        algorithm=BoxAlgorithm.OMBB,
        planar_velocity=None,
    ) -> FitResult:
        """
        Fit a footprint to (x, z) contact points.

        Args:
            points: (N, 2) array, N >= 1
            algorithm: BoxAlgorithm or its name
            planar_velocity: (vx, vz) body velocity, or None

        Returns:
            FitResult with the box in world (x, z) and the centered points
            (needed to re-project the box at another orientation)
        """
        pts = as_points_2d(points)
        if pts.shape[0] == 0:
            raise ValueError("fit_contacts needs at least one point")

        centroid = pts.mean(axis=0)
        centered = pts - centroid

        velocity = np.zeros(2) if planar_velocity is None else np.asarray(planar_velocity, dtype=np.float64).reshape(2)
        speed = float(np.linalg.norm(velocity))

        if speed > self.config.velocity_align_speed:
            theta = wrap_to_pi(math.atan2(velocity[1], velocity[0]))
            box = fit_at_orientation(centered, theta, self.config.min_contact_size)
            aligned = True
        else:
            box = self.fit_2d(centered, algorithm)
            aligned = False

        box.center_x += float(centroid[0])
        box.center_z += float(centroid[1])

        return FitResult(
            box=box,
            centroid=centroid,
            centered_points=centered,
            velocity_aligned=aligned,
            planar_velocity=velocity,
        )

    def to_oriented_box(self, box: BoundingBox2D, contact_point, contact_normal) -> OrientedBox3D:
        """
        Lift a ground-plane box to 3D.

        The box sits at the contact point's height; e1 follows theta in the
        x-z plane, made orthogonal to the normal.
        """
        n = safe_normalize(contact_normal)
        theta = wrap_to_pi(box.theta)
        t1 = np.array([math.cos(theta), 0.0, math.sin(theta)])

        e1 = t1 - np.dot(t1, n) * n
        if np.dot(e1, e1) < 1e-12:
            # Normal lies along the heading; pick any axis in the plane
            e1 = np.cross(n, np.array([0.0, 0.0, 1.0]))
        e1 = safe_normalize(e1, default=(1.0, 0.0, 0.0))
        e2 = safe_normalize(np.cross(n, e1), default=(0.0, 0.0, -1.0))

        contact_point = np.asarray(contact_point, dtype=np.float64).reshape(3)
        center = np.array([box.center_x, contact_point[1], box.center_z])

        return OrientedBox3D(
            center=center,
            normal=n,
            e1=e1,
            e2=e2,
            width=box.width,
            height=box.height,
            depth=self.config.obb_depth,
            theta=theta,
        )
