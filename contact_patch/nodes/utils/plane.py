"""
Plane geometry for contact-surface calculations.

Provides:
- Signed distance (scalar or vectorised over (N, 3) arrays)
- Projection onto the plane
- Orthonormal local frame (tangent, bitangent, normal) via Gram-Schmidt
- Mapping between 3D points and the plane's 2D local frame
"""

import numpy as np
from typing import Optional, Tuple


NORMAL_EPSILON = 1e-9


def safe_normalize(vector, default=(0.0, 1.0, 0.0), eps: float = 1e-12) -> np.ndarray:
    """
    Normalize a vector, returning a fixed direction for near-zero input.
    
    Args:
        vector: Vector to normalize
        default: Direction returned when |vector|^2 <= eps or not finite
        eps: Squared-length threshold
    
    Returns:
        Unit vector (float64)
    """
    v = np.asarray(vector, dtype=np.float64)
    length_sq = float(np.dot(v, v))
    if not np.isfinite(length_sq) or length_sq <= eps:
        d = np.asarray(default, dtype=np.float64)
        return d / np.linalg.norm(d)
    return v / np.sqrt(length_sq)


class Plane:
    """
    3D plane defined by a unit normal and an anchor point.
    
    offset = anchor . normal, so signed distance is (p . n) - offset:
    positive on the side the normal points toward.
    """
    
    def __init__(self, normal, point):
        """
        Args:
            normal: Plane normal (normalized here)
            point: Any point on the plane
        
        Raises:
            ValueError: If the normal is near-zero or not finite
        """
        n = np.asarray(normal, dtype=np.float64).reshape(3)
        length = float(np.linalg.norm(n))
        if not np.isfinite(length) or length < NORMAL_EPSILON:
            raise ValueError(f"Degenerate plane normal: {n.tolist()}")
        
        p0 = np.asarray(point, dtype=np.float64).reshape(3)
        if not np.all(np.isfinite(p0)):
            raise ValueError(f"Non-finite plane anchor: {p0.tolist()}")
        
        self._normal = n / length
        self._p0 = p0
        self._offset = float(np.dot(self._p0, self._normal))
        self._frame = None
    
    @classmethod
    def try_create(cls, normal, point) -> Optional["Plane"]:
        """Construct a plane, or return None when the input is degenerate."""
        try:
            return cls(normal, point)
        except ValueError:
            return None
    
    @classmethod
    def from_normal_offset(cls, normal, offset: float) -> "Plane":
        """Build the plane {p : p . n_hat = offset}."""
        n = safe_normalize(normal)
        return cls(n, n * float(offset))
    
    @property
    def normal(self) -> np.ndarray:
        return self._normal.copy()
    
    @property
    def p0(self) -> np.ndarray:
        return self._p0.copy()
    
    @property
    def offset(self) -> float:
        return self._offset
    
    def signed_distance(self, points) -> np.ndarray:
        """
        Signed distance of one point (3,) or many points (N, 3).
        
        Returns a float for a single point, an (N,) array otherwise.
        """
        pts = np.asarray(points, dtype=np.float64)
        d = pts @ self._normal - self._offset
        if pts.ndim == 1:
            return float(d)
        return d
    
    def project_point(self, point) -> np.ndarray:
        """Project a point (3,) or points (N, 3) onto the plane."""
        pts = np.asarray(point, dtype=np.float64)
        d = pts @ self._normal - self._offset
        if pts.ndim == 1:
            return pts - d * self._normal
        return pts - d[:, np.newaxis] * self._normal[np.newaxis, :]
    
    def closest_point(self, point) -> np.ndarray:
        """Closest point on the plane (same as projection)."""
        return self.project_point(point)
    
    def is_point_on_plane(self, point, tolerance: float = 1e-6) -> bool:
        return abs(self.signed_distance(point)) < tolerance
    
    def local_frame(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Orthonormal (tangent, bitangent, normal) frame.
        
        The seed axis is +Y unless the normal is close to vertical, in
        which case +X is used. bitangent = normal x tangent.
        """
        if self._frame is None:
            n = self._normal
            if abs(n[1]) < 0.9:
                seed = np.array([0.0, 1.0, 0.0])
            else:
                seed = np.array([1.0, 0.0, 0.0])
            
            # Gram-Schmidt
            tangent = seed - np.dot(seed, n) * n
            tangent = tangent / np.linalg.norm(tangent)
            bitangent = np.cross(n, tangent)
            bitangent = bitangent / np.linalg.norm(bitangent)
            self._frame = (tangent, bitangent, n.copy())
        
        t, b, n = self._frame
        return t.copy(), b.copy(), n.copy()
    
    def to_local_2d(self, points) -> np.ndarray:
        """
        Project points onto the plane and express them as (u, v) in the
        local frame, relative to the anchor point.
        
        Args:
            points: (N, 3) array
        
        Returns:
            (N, 2) array
        """
        pts = np.atleast_2d(np.asarray(points, dtype=np.float64))
        tangent, bitangent, _ = self.local_frame()
        rel = self.project_point(pts) - self._p0[np.newaxis, :]
        return np.stack([rel @ tangent, rel @ bitangent], axis=1)
    
    def from_local_2d(self, uv) -> np.ndarray:
        """Map (N, 2) local coordinates back to (N, 3) points on the plane."""
        uv = np.atleast_2d(np.asarray(uv, dtype=np.float64))
        tangent, bitangent, _ = self.local_frame()
        return (self._p0[np.newaxis, :]
                + uv[:, 0:1] * tangent[np.newaxis, :]
                + uv[:, 1:2] * bitangent[np.newaxis, :])
    
    def __repr__(self) -> str:
        n = self._normal
        return f"Plane(normal=({n[0]:.3f}, {n[1]:.3f}, {n[2]:.3f}), offset={self._offset:.4f})"
