"""
Physics Snapshot Types
======================

Read-only, per-frame views of what the physics/collision engine exposes
to the contact pipeline:

- ContactManifold / ManifoldPoint: manifold contacts (world position,
  world normal on B, separation distance)
- SoftNode: deformable-body node (position, normal, optional velocity)
- BodySnapshot: linear/angular velocity, optional mass, soft-body nodes,
  optional world-space surface vertices for synthetic augmentation
- FrameContext: everything one pipeline call needs, passed explicitly

Optional engine capabilities (node velocity, angular velocity, mesh) are
``Optional`` fields; consumers check for ``None`` before use.

Snapshots can be built from plain dicts (``from_dict``) so recorded
sequences can be replayed through the tracker.
"""

import numpy as np
from typing import Dict, List, Optional, Sequence
from dataclasses import dataclass, field


def _vec3(value, default=(0.0, 0.0, 0.0)) -> np.ndarray:
    if value is None:
        value = default
    if isinstance(value, dict):
        value = (value.get("x", 0.0), value.get("y", 0.0), value.get("z", 0.0))
    return np.asarray(value, dtype=np.float64).reshape(3)


def _optional_vec3(value) -> Optional[np.ndarray]:
    if value is None:
        return None
    return _vec3(value)


@dataclass(frozen=True)
class ManifoldPoint:
    """One contact point of a collision manifold."""
    position: np.ndarray                # World position on body B
    normal: np.ndarray                  # World normal on body B
    distance: float = 0.0               # Separation (negative = penetration)
    
    @classmethod
    def from_dict(cls, data: Dict) -> "ManifoldPoint":
        return cls(
            position=_vec3(data.get("position")),
            normal=_vec3(data.get("normal"), default=(0.0, 1.0, 0.0)),
            distance=float(data.get("distance", 0.0)),
        )


@dataclass(frozen=True)
class ContactManifold:
    """Contact manifold between two bodies."""
    points: Sequence[ManifoldPoint] = ()
    body_a: Optional[str] = None
    body_b: Optional[str] = None
    
    @property
    def num_contacts(self) -> int:
        return len(self.points)
    
    def involves(self, body_id: Optional[str]) -> bool:
        return body_id is not None and (self.body_a == body_id or self.body_b == body_id)
    
    @classmethod
    def from_dict(cls, data: Dict) -> "ContactManifold":
        return cls(
            points=tuple(ManifoldPoint.from_dict(p) for p in data.get("points", [])),
            body_a=data.get("body_a"),
            body_b=data.get("body_b"),
        )


@dataclass(frozen=True)
class SoftNode:
    """Deformable-body node state."""
    position: np.ndarray
    normal: np.ndarray
    velocity: Optional[np.ndarray] = None
    
    @classmethod
    def from_dict(cls, data: Dict) -> "SoftNode":
        return cls(
            position=_vec3(data.get("position")),
            normal=_vec3(data.get("normal"), default=(0.0, 1.0, 0.0)),
            velocity=_optional_vec3(data.get("velocity")),
        )


@dataclass(frozen=True)
class BodySnapshot:
    """Dynamic body state for one frame."""
    body_id: Optional[str] = None
    is_soft_body: bool = False
    linear_velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    angular_velocity: Optional[np.ndarray] = None
    mass: Optional[float] = None
    nodes: Sequence[SoftNode] = ()
    surface_vertices: Optional[np.ndarray] = None   # (V, 3) world space
    
    @property
    def has_surface_mesh(self) -> bool:
        return self.surface_vertices is not None and len(self.surface_vertices) > 0
    
    def velocity(self) -> np.ndarray:
        """
        Body velocity used for orientation decisions.
        
        Soft bodies report the mean node velocity (nodes without a
        velocity are skipped); rigid bodies their linear velocity.
        """
        if self.is_soft_body and self.nodes:
            vels = [n.velocity for n in self.nodes if n.velocity is not None]
            if vels:
                return np.mean(np.stack(vels), axis=0)
        return np.asarray(self.linear_velocity, dtype=np.float64)
    
    def planar_velocity(self) -> np.ndarray:
        """(vx, vz) of ``velocity()``."""
        v = self.velocity()
        return np.array([v[0], v[2]], dtype=np.float64)
    
    def angular_speed(self) -> Optional[float]:
        if self.angular_velocity is None:
            return None
        return float(np.linalg.norm(self.angular_velocity))
    
    @classmethod
    def from_dict(cls, data: Dict) -> "BodySnapshot":
        vertices = data.get("surface_vertices")
        mass = data.get("mass")
        return cls(
            body_id=data.get("body_id"),
            is_soft_body=bool(data.get("is_soft_body", False)),
            linear_velocity=_vec3(data.get("linear_velocity")),
            angular_velocity=_optional_vec3(data.get("angular_velocity")),
            mass=float(mass) if mass is not None else None,
            nodes=tuple(SoftNode.from_dict(n) for n in data.get("nodes", [])),
            surface_vertices=(np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
                              if vertices is not None else None),
        )


@dataclass(frozen=True)
class ContactPlaneDescriptor:
    """Contact plane given as unit normal and signed offset from origin."""
    normal: np.ndarray
    offset: float = 0.0
    
    @classmethod
    def from_dict(cls, data: Dict) -> "ContactPlaneDescriptor":
        return cls(
            normal=_vec3(data.get("normal"), default=(0.0, 1.0, 0.0)),
            offset=float(data.get("offset", 0.0)),
        )


@dataclass(frozen=True)
class FrameContext:
    """
    Explicit per-frame input to the contact pipeline.
    
    ``timestamp`` is in seconds; when None the pipeline reads the wall
    clock.
    """
    manifolds: Sequence[ContactManifold] = ()
    body: Optional[BodySnapshot] = None
    contact_plane: Optional[ContactPlaneDescriptor] = None
    timestamp: Optional[float] = None
    
    @property
    def num_manifolds(self) -> int:
        return len(self.manifolds)
    
    @property
    def is_soft_body(self) -> bool:
        return self.body is not None and self.body.is_soft_body
    
    @classmethod
    def from_dict(cls, data: Dict) -> "FrameContext":
        """
        Build a context from plain data:
        
            {
                "timestamp": 0.016,
                "manifolds": [{"body_a": "ground", "body_b": "puck",
                               "points": [{"position": [x, y, z],
                                           "normal": [0, 1, 0],
                                           "distance": -0.001}]}],
                "body": {"body_id": "puck", "linear_velocity": [1, 0, 0], ...},
                "contact_plane": {"normal": [0, 1, 0], "offset": 0.0},
            }
        """
        body = data.get("body")
        plane = data.get("contact_plane")
        timestamp = data.get("timestamp")
        return cls(
            manifolds=tuple(ContactManifold.from_dict(m) for m in data.get("manifolds", [])),
            body=BodySnapshot.from_dict(body) if body is not None else None,
            contact_plane=ContactPlaneDescriptor.from_dict(plane) if plane is not None else None,
            timestamp=float(timestamp) if timestamp is not None else None,
        )


def manifolds_from_points(points: List, normal=(0.0, 1.0, 0.0), distance: float = 0.0,
                          body_a: Optional[str] = None,
                          body_b: Optional[str] = None) -> List[ContactManifold]:
    """Wrap a list of positions into a single manifold (replay/test helper)."""
    n = _vec3(normal)
    pts = tuple(ManifoldPoint(position=_vec3(p), normal=n, distance=distance) for p in points)
    return [ContactManifold(points=pts, body_a=body_a, body_b=body_b)]
