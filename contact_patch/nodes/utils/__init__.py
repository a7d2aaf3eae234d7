"""
Geometry utilities for contact-patch fitting.
"""

from .plane import Plane, safe_normalize
from .spatial_grid import SpatialGrid
from .geometry2d import (
    wrap_to_pi,
    angle_difference,
    as_points_2d,
    rotate_points_2d,
    project_extents,
    quantile_extents,
    convex_hull,
)

__all__ = [
    # Plane
    "Plane",
    "safe_normalize",
    
    # Grid
    "SpatialGrid",
    
    # 2D
    "wrap_to_pi",
    "angle_difference",
    "as_points_2d",
    "rotate_points_2d",
    "project_extents",
    "quantile_extents",
    "convex_hull",
]
