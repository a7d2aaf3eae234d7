"""
Orientation Stabilizer
======================

Suppresses frame-to-frame flicker of the footprint orientation.

When the body moves consistently (current and previous planar speeds both
above the alignment speed, normalized dot product above 0.8) and the
current box came from the velocity override, a jump in theta larger than
the stability threshold is rejected: theta is reset to the previous value
and the box is re-projected from the same points at that frozen angle.

The previous velocity and theta are overwritten with this frame's final
values on every call. There is no lock counter or multi-frame hysteresis;
each frame is compared only against the one before it.
"""

import numpy as np
from typing import Optional
from dataclasses import dataclass

from .bounding_box import BoundingBox2D, FitResult, FitterConfig, fit_at_orientation
from .utils.geometry2d import angle_difference, wrap_to_pi


@dataclass
class StabilizerOutcome:
    """Result of OrientationStabilizer.stabilize."""
    box: BoundingBox2D
    locked: bool = False
    velocity_consistent: bool = False
    angle_jump: float = 0.0             # |shortest difference| new vs previous theta


class OrientationStabilizer:
    """
    Cross-frame orientation memory for one tracked body.

    Owned by the caller's per-body session; never share one instance
    between bodies.
    """

    def __init__(self, config: Optional[FitterConfig] = None):
        self.config = config or FitterConfig()
        self.reset()

    def reset(self):
        self.previous_velocity = np.zeros(2)
        self.previous_theta = 0.0
        self.has_previous_box = False

    def clear_box(self):
        """Forget the previous box (frame without a footprint); velocity is kept."""
        self.has_previous_box = False

    def prime(self, velocity, theta: float):
        """Seed the memory as if a box with this velocity/theta was just produced."""
        self.previous_velocity = _planar(velocity)
        self.previous_theta = wrap_to_pi(theta)
        self.has_previous_box = True

    def is_velocity_consistent(self, velocity) -> bool:
        cfg = self.config
        current = _planar(velocity)
        cur_mag = float(np.linalg.norm(current))
        prev_mag = float(np.linalg.norm(self.previous_velocity))

        if cur_mag <= cfg.velocity_align_speed or prev_mag <= cfg.velocity_align_speed:
            return False

        dot = float(np.dot(current, self.previous_velocity)) / (cur_mag * prev_mag)
        return dot > cfg.velocity_consistency_dot

    def stabilize(self, fit: FitResult) -> StabilizerOutcome:
        """
        Apply the lock to a fresh fit and update the memory.

        Args:
            fit: Output of BoundingBoxFitter.fit_contacts for this frame

        Returns:
            StabilizerOutcome; ``box`` is either ``fit.box`` or a new box
            at the previous theta
        """
        cfg = self.config
        box = fit.box
        velocity = _planar(fit.planar_velocity)

        consistent = self.is_velocity_consistent(velocity)
        jump = abs(angle_difference(box.theta, self.previous_theta))
        locked = False

        if self.has_previous_box and consistent and fit.velocity_aligned:
            if jump > cfg.angle_stability_threshold:
                frozen = fit_at_orientation(fit.centered_points, self.previous_theta,
                                            cfg.min_contact_size)
                frozen.center_x += float(fit.centroid[0])
                frozen.center_z += float(fit.centroid[1])
                box = frozen
                locked = True

        self.previous_velocity = velocity
        self.previous_theta = box.theta
        self.has_previous_box = True

        return StabilizerOutcome(
            box=box,
            locked=locked,
            velocity_consistent=consistent,
            angle_jump=jump,
        )


def _planar(velocity) -> np.ndarray:
    """Accept (vx, vz) or a 3D (vx, vy, vz) velocity; return (vx, vz)."""
    v = np.asarray(velocity, dtype=np.float64).reshape(-1)
    if v.shape[0] == 3:
        return np.array([v[0], v[2]])
    if v.shape[0] == 2:
        return v.copy()
    raise ValueError(f"Velocity must have 2 or 3 components, got {v.shape[0]}")
