"""
Contact Acquisition for ContactPatch
====================================

Turns jittery per-frame collision data into a trustworthy contact point
set plus quality flags.

Pipeline (per frame):
    1. Acquire candidates
       - Rigid: manifold contacts, optional separation filter (d_max)
       - Soft:  manifolds involving the body AND every node whose signed
                distance to the ground plane passes the direct threshold,
                the hysteresis entering transition, or the velocity gate
    2. Noise control
       - XZ grid deduplication (+ minimum pair distance thinning)
       - IQR outlier rejection on signed distance (n >= 8)
       - Neighbor support via SpatialGrid (soft bodies)
    3. Centroid & normal
       - Average normal/point over raw candidates
       - Geometric center over filtered points, EMA-smoothed with
         alpha = exp(-dt / tau) so the filter is frame-rate independent
    4. Quality gates & hold-last
       - degraded: < 4 points; rejected: none, or vertical spread > y_max
       - rejected frames may reuse the last good set for N_hold frames
    5. Synthetic augmentation
       - Sparse sets get the 4 corners of the body mesh's k-DOP-8
         silhouette on the plane (+4 edge midpoints when spinning fast)

Nothing in the per-frame path raises for expected conditions: a missing
plane skips the plane-dependent steps, and "no footprint this frame" is an
empty ``contact_samples`` list.

Usage:
    pipeline = ContactAcquisitionPipeline()
    state = ContactState()
    result = pipeline.process(frame_context, state)
    if result.has_footprint:
        ...
"""

import math
import time
import numpy as np
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field, fields, replace

from ..lib.logger import get_logger
from .bounding_box import compute_kdop
from .physics_snapshot import FrameContext
from .utils.plane import Plane, safe_normalize
from .utils.spatial_grid import SpatialGrid

log = get_logger("Acquisition")


DEFAULT_FRAME_DT = 1.0 / 60.0
UNSEEN_SIGNED_DISTANCE = 1e9
IQR_MIN_POINTS = 8
SPARSE_CONTACT_COUNT = 4


# =============================================================================
# Data Types
# =============================================================================

@dataclass(eq=False)
class ContactCandidate:
    """A contact sample; identity matters (SpatialGrid skips self by identity)."""
    x: float
    y: float
    z: float
    is_synthetic: bool = False

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z])

    @classmethod
    def from_vector(cls, v, is_synthetic: bool = False) -> "ContactCandidate":
        return cls(float(v[0]), float(v[1]), float(v[2]), is_synthetic)

    def as_real(self) -> "ContactCandidate":
        return ContactCandidate(self.x, self.y, self.z, False)

    def to_dict(self) -> Dict:
        return {"x": self.x, "y": self.y, "z": self.z, "is_synthetic": self.is_synthetic}


@dataclass
class QualityFlags:
    degraded: bool = False
    rejected: bool = False
    held: bool = False
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "degraded": self.degraded,
            "rejected": self.rejected,
            "held": self.held,
            "reasons": list(self.reasons),
        }


# Fields that must be strictly positive (cell sizes, radii, time constants)
_POSITIVE_FIELDS = {"grid_cell_xz", "min_pair_dist", "r_n", "tau_centroid", "synthetic_dedupe_grid"}
# Signed quantities; only finiteness is checked
_SIGNED_FIELDS = {"ground_offset"}
_INT_MINIMUMS = {
    "k": 0,
    "n_hold": 0,
    "n_target": 1,
    "max_manifolds": 0,
    "stable_contact_count": 0,
    "synthetic_max_vertices": 1,
}


@dataclass(frozen=True)
class ContactParams:
    """
    Per-frame acquisition parameters (meters, seconds, radians).

    Invalid numeric values (non-finite, negative, or zero where a positive
    size is required) are replaced by the field default at construction.
    Filter switches must be real bools; anything else falls back to the
    default with a warning.
    """

    # Hysteresis band and separation
    d_enter: float = 0.004              # Enter threshold (4mm)
    d_exit: float = 0.010               # Exit threshold (10mm)
    d_max: float = 0.005                # Max manifold separation (5mm)

    # Spatial filtering
    grid_cell_xz: float = 0.004         # Dedupe grid cell (4mm)
    min_pair_dist: float = 0.002        # Minimum pairwise distance (2mm)
    y_max: float = 0.008                # Max vertical spread (8mm std)

    # Velocity gate
    v_min: float = 0.02                 # Min approach speed (m/s)
    v_ref: float = 0.3                  # Reference approach speed (m/s)

    # Neighbor support (soft bodies)
    r_n: float = 0.015                  # Neighbor radius (15mm)
    k: int = 2                          # Min neighbors

    # Temporal
    tau_centroid: float = 0.05          # EMA time constant (s)
    n_hold: int = 2                     # Hold-last frame budget

    # Limits
    n_target: int = 48                  # Max candidates per frame
    max_manifolds: int = 32             # Max manifolds scanned

    # Ground plane
    ground_normal: Tuple[float, float, float] = (0.0, 1.0, 0.0)
    ground_offset: float = 0.0

    # Synthetic augmentation
    stable_contact_count: int = 4       # Augment at or below this many points
    synthetic_mesh_tolerance: float = 0.10
    synthetic_max_vertices: int = 500
    synthetic_dedupe_grid: float = 0.01
    synthetic_spin_threshold: float = 5.0   # rad/s - add edge midpoints above

    # Filter switches
    enable_hysteresis: bool = True
    enable_velocity_gate: bool = True
    enable_distance_filter: bool = True
    enable_grid_dedupe: bool = True
    enable_iqr_outlier: bool = True
    enable_neighbor_support: bool = True
    enable_ema_smoothing: bool = True
    enable_hold_last: bool = True
    enable_quality_gates: bool = True
    enable_synthetic: bool = True

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)

            if f.name == "ground_normal":
                normal = safe_normalize(value if value is not None else f.default)
                object.__setattr__(self, f.name, tuple(float(c) for c in normal))

            elif f.name in _INT_MINIMUMS:
                object.__setattr__(self, f.name, _checked_int(f.name, value, f.default))

            elif f.type in (float, "float"):
                object.__setattr__(self, f.name, _checked_float(f.name, value, f.default))

            elif f.type in (bool, "bool"):
                if not isinstance(value, (bool, np.bool_)):
                    log.warn(f"ContactParams.{f.name}={value!r} is not a bool, using {f.default}")
                    value = f.default
                object.__setattr__(self, f.name, bool(value))

    @classmethod
    def rigid_default(cls) -> "ContactParams":
        """Strict production defaults for rigid bodies."""
        return cls()

    @classmethod
    def soft_body(cls) -> "ContactParams":
        """
        Lenient preset for deformable bodies.

        Wider thresholds; neighbor support, velocity gate, hysteresis, grid
        dedupe, IQR, quality gates and the distance filter are off because
        deforming geometry breaks their assumptions.
        """
        return cls(
            d_enter=0.050,
            d_exit=0.080,
            d_max=0.100,
            r_n=0.050,
            k=1,
            y_max=0.100,
            v_min=0.005,
            grid_cell_xz=0.010,
            min_pair_dist=0.001,
            n_target=128,
            max_manifolds=64,
            enable_neighbor_support=False,
            enable_velocity_gate=False,
            enable_hysteresis=False,
            enable_grid_dedupe=False,
            enable_iqr_outlier=False,
            enable_ema_smoothing=True,
            enable_hold_last=True,
            enable_quality_gates=False,
            enable_distance_filter=False,
        )

    @classmethod
    def for_body(cls, is_soft_body: bool) -> "ContactParams":
        return cls.soft_body() if is_soft_body else cls.rigid_default()

    def with_overrides(self, **overrides) -> "ContactParams":
        """Copy with some fields replaced (validated like the constructor)."""
        return replace(self, **overrides)


def _checked_float(name: str, value, default: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError, OverflowError):
        log.warn(f"ContactParams.{name}={value!r} invalid, using {default}")
        return default

    if not math.isfinite(value):
        log.warn(f"ContactParams.{name}={value} not finite, using {default}")
        return default
    if name in _SIGNED_FIELDS:
        return value
    if value < 0.0 or (name in _POSITIVE_FIELDS and value == 0.0):
        log.warn(f"ContactParams.{name}={value} out of range, using {default}")
        return default
    return value


def _checked_int(name: str, value, default: int) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        log.warn(f"ContactParams.{name}={value!r} invalid, using {default}")
        return default

    if not math.isfinite(number):
        log.warn(f"ContactParams.{name}={value} not finite, using {default}")
        return default
    ivalue = int(number)
    if ivalue < _INT_MINIMUMS[name]:
        log.warn(f"ContactParams.{name}={ivalue} below minimum, using {default}")
        return default
    return ivalue


class ContactState:
    """
    Cross-frame memory for one tracked body.

    Mutated only by ContactAcquisitionPipeline. Call reset() when the body
    is replaced or reset; never share an instance between bodies.
    """

    def __init__(self):
        self.reset()

    def reset(self):
        self.prev_sd: Optional[np.ndarray] = None           # Per-node signed distance
        self.prev_centroid: Optional[np.ndarray] = None     # Last good (smoothed) center
        self.prev_points: Optional[List[ContactCandidate]] = None
        self.prev_flags: Optional[QualityFlags] = None
        self.hold_frames = 0
        self.prev_dt: Optional[float] = None
        self.dt: Optional[float] = None
        self.last_update_time: Optional[float] = None
        self.frames_processed = 0

    @property
    def has_good_state(self) -> bool:
        return bool(self.prev_points) and self.prev_centroid is not None


@dataclass
class ContactResult:
    """Output of one acquisition call."""
    contact_samples: List[ContactCandidate]
    count: int                              # Accepted raw contacts
    filtered_count: int                     # This frame's survivors of phase 2
    raw_count: int                          # Candidates acquired in phase 1
    real_contact_count: int
    synthetic_count: int
    avg_contact_normal: np.ndarray
    avg_contact_point: np.ndarray
    geometric_center: Optional[np.ndarray]
    flags: QualityFlags
    diagnostics: Dict = field(default_factory=dict)

    @property
    def has_footprint(self) -> bool:
        return len(self.contact_samples) > 0

    def to_dict(self) -> Dict:
        center = self.geometric_center
        return {
            "contact_samples": [c.to_dict() for c in self.contact_samples],
            "count": self.count,
            "filtered_count": self.filtered_count,
            "raw_count": self.raw_count,
            "real_contact_count": self.real_contact_count,
            "synthetic_count": self.synthetic_count,
            "avg_contact_normal": self.avg_contact_normal.tolist(),
            "avg_contact_point": self.avg_contact_point.tolist(),
            "geometric_center": center.tolist() if center is not None else None,
            "flags": self.flags.to_dict(),
            "diagnostics": dict(self.diagnostics),
        }


# =============================================================================
# Real / Synthetic Helpers
# =============================================================================

def get_real_contacts(contact_samples: List[ContactCandidate]) -> List[ContactCandidate]:
    return [c for c in contact_samples if not c.is_synthetic]


def get_synthetic_contacts(contact_samples: List[ContactCandidate]) -> List[ContactCandidate]:
    return [c for c in contact_samples if c.is_synthetic]


def separate_contacts(contact_samples: List[ContactCandidate]) -> Dict[str, List[ContactCandidate]]:
    return {
        "real": get_real_contacts(contact_samples),
        "synthetic": get_synthetic_contacts(contact_samples),
        "all": list(contact_samples),
    }


# =============================================================================
# Synthetic Augmentation
# =============================================================================

def mesh_kdop8_corners(
    vertices,
    plane: Plane,
    tolerance: float = 0.15,
    max_vertices: int = 500,
    dedupe_grid: float = 0.01,
) -> Optional[np.ndarray]:
    """
    Corners of the minimum-area 8-orientation box around the part of a
    mesh lying near the plane.

    Args:
        vertices: (V, 3) world-space mesh vertices
        plane: Contact plane
        tolerance: Keep vertices with |signed distance| below this
        max_vertices: Uniformly subsample larger meshes to about this many
        dedupe_grid: Grid (meters) for deduplicating projected vertices

    Returns:
        (4, 3) corners on the plane, or None when fewer than 3 distinct
        vertices are near the plane
    """
    verts = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
    total = verts.shape[0]
    if total == 0:
        return None

    step = int(math.ceil(total / max_vertices)) if total > max_vertices else 1
    sampled = verts[::step]

    near = sampled[np.abs(plane.signed_distance(sampled)) < tolerance]
    if near.shape[0] < 3:
        return None

    uv = plane.to_local_2d(near)
    keys = np.round(uv / dedupe_grid).astype(np.int64)
    _, first_idx = np.unique(keys, axis=0, return_index=True)
    unique_uv = uv[np.sort(first_idx)]
    if unique_uv.shape[0] < 3:
        return None

    box = compute_kdop(unique_uv, k=8, min_size=0.0)
    return plane.from_local_2d(box.corners())


def augment_contacts_with_kdop8(
    contacts: List[ContactCandidate],
    vertices,
    plane: Plane,
    angular_speed: Optional[float] = None,
    tolerance: float = 0.10,
    max_vertices: int = 500,
    dedupe_grid: float = 0.01,
    spin_threshold: float = 5.0,
) -> List[ContactCandidate]:
    """
    Real contacts followed by synthetic k-DOP-8 corner points.

    Above ``spin_threshold`` rad/s the 4 edge midpoints are added too. An
    empty contact list yields an empty result.
    """
    if not contacts:
        return []

    augmented = [c.as_real() for c in contacts]

    corners = mesh_kdop8_corners(vertices, plane, tolerance, max_vertices, dedupe_grid)
    if corners is None or corners.shape[0] != 4:
        return augmented

    for corner in corners:
        augmented.append(ContactCandidate.from_vector(corner, is_synthetic=True))

    if angular_speed is not None and angular_speed > spin_threshold:
        for i in range(4):
            mid = (corners[i] + corners[(i + 1) % 4]) / 2.0
            augmented.append(ContactCandidate.from_vector(mid, is_synthetic=True))
        log.debug(f"High rotation ({angular_speed:.2f} rad/s) - added 4 midpoint synthetic contacts")

    return augmented


# =============================================================================
# Pipeline
# =============================================================================

@dataclass
class _Acquisition:
    candidates: List[ContactCandidate] = field(default_factory=list)
    normal_sum: np.ndarray = field(default_factory=lambda: np.zeros(3))
    point_sum: np.ndarray = field(default_factory=lambda: np.zeros(3))
    raw_count: int = 0
    manifold_contacts: int = 0
    node_contacts: int = 0
    fast_approach_nodes: int = 0

    def add(self, position, normal, from_node: bool = False):
        self.candidates.append(ContactCandidate.from_vector(position))
        self.point_sum += position
        self.normal_sum += normal
        self.raw_count += 1
        if from_node:
            self.node_contacts += 1
        else:
            self.manifold_contacts += 1


class ContactAcquisitionPipeline:
    """
    Five-phase contact acquisition.

    The pipeline itself is stateless; all cross-frame memory lives in the
    ContactState passed to process().
    """

    def __init__(self, params: Optional[ContactParams] = None):
        """
        Args:
            params: Fixed parameters. When None, the rigid or soft preset is
                    chosen per call from the body type.
        """
        self.params = params

    def params_for(self, frame: FrameContext) -> ContactParams:
        if self.params is not None:
            return self.params
        return ContactParams.for_body(frame.is_soft_body)

    def build_plane(self, frame: FrameContext, params: ContactParams) -> Optional[Plane]:
        """Contact plane from the frame descriptor, else the configured ground."""
        if frame.contact_plane is not None:
            normal = frame.contact_plane.normal
            offset = frame.contact_plane.offset
        else:
            normal = params.ground_normal
            offset = params.ground_offset

        n = np.asarray(normal, dtype=np.float64)
        length = float(np.linalg.norm(n))
        if not np.isfinite(length) or length < 1e-9:
            log.warn(f"Contact plane normal {n.tolist()} is degenerate; plane-dependent filters skipped")
            return None

        plane = Plane.try_create(n, n / length * float(offset))
        if plane is None:
            log.warn("Contact plane construction failed; plane-dependent filters skipped")
        return plane

    def process(self, frame: FrameContext, state: ContactState,
                now: Optional[float] = None) -> ContactResult:
        """
        Run all phases for one frame.

        Args:
            frame: Snapshot of collision/body data for this frame
            state: The body's cross-frame memory (mutated)
            now: Time in seconds; defaults to frame.timestamp, then the
                 wall clock

        Returns:
            ContactResult
        """
        params = self.params_for(frame)
        is_soft = frame.is_soft_body

        dt = self._advance_clock(state, frame, now)
        plane = self.build_plane(frame, params)

        # ===== PHASE 1: ACQUIRE CANDIDATES =====
        if is_soft:
            acq = self._acquire_soft(frame, params, state, plane)
        else:
            acq = self._acquire_rigid(frame, params)
        candidates = acq.candidates

        # ===== PHASE 2: NOISE CONTROL =====
        filtered, stage_counts = self._noise_control(candidates, params, plane, is_soft)

        # ===== PHASE 3: CENTROID & NORMAL =====
        ground_normal = plane.normal if plane is not None else np.asarray(params.ground_normal)
        avg_normal, avg_point = self._average_contact(acq, ground_normal)
        center, alpha = self._geometric_center(filtered, params, state, dt)

        # ===== PHASE 4: QUALITY GATES & HOLD-LAST =====
        flags = self._quality_gates(filtered, params, plane)
        emitted, center, held_count = self._hold_last(filtered, center, flags, params, state)

        # ===== PHASE 5: SYNTHETIC AUGMENTATION =====
        final = self._augment(emitted, center, frame, params, plane)

        synthetic_count = sum(1 for c in final if c.is_synthetic)
        real_count = len(final) - synthetic_count

        diagnostics = {
            "is_soft_body": is_soft,
            "plane_available": plane is not None,
            "candidate_count": len(candidates),
            "manifold_contacts": acq.manifold_contacts,
            "node_contacts": acq.node_contacts,
            "fast_approach_nodes": acq.fast_approach_nodes,
            "after_grid_dedupe": stage_counts["grid_dedupe"],
            "after_iqr": stage_counts["iqr"],
            "after_neighbor_support": stage_counts["neighbor_support"],
            "removed_count": len(candidates) - len(filtered),
            "filtered_count": len(filtered),
            "held_count": held_count,
            "final_count": len(final),
            "real_contact_count": real_count,
            "synthetic_count": synthetic_count,
            "augmented": len(final) > len(emitted),
            "augmentation_used": "kdop8" if synthetic_count > 0 else "none",
            "contact_method": "hybrid (manifold + signed distance)" if is_soft else "manifold only",
            "dt": dt,
            "ema_alpha": alpha,
            "hold_frames": state.hold_frames,
        }

        state.prev_flags = flags
        state.frames_processed += 1

        log.frame_info(
            state.frames_processed - 1,
            raw=len(candidates),
            filtered=len(filtered),
            final=len(final),
            synthetic=synthetic_count,
            degraded=flags.degraded,
            rejected=flags.rejected,
            held=flags.held,
        )

        return ContactResult(
            contact_samples=final,
            count=acq.raw_count,
            filtered_count=len(filtered),
            raw_count=len(candidates),
            real_contact_count=real_count,
            synthetic_count=synthetic_count,
            avg_contact_normal=avg_normal,
            avg_contact_point=avg_point,
            geometric_center=center,
            flags=flags,
            diagnostics=diagnostics,
        )

    # -------------------------------------------------------------------------
    # Timing
    # -------------------------------------------------------------------------

    def _advance_clock(self, state: ContactState, frame: FrameContext,
                       now: Optional[float]) -> float:
        if now is None:
            now = frame.timestamp if frame.timestamp is not None else time.perf_counter()

        if state.last_update_time is not None:
            dt = max(0.0, now - state.last_update_time)
        else:
            dt = DEFAULT_FRAME_DT

        state.prev_dt = state.dt
        state.dt = dt
        state.last_update_time = now
        return dt

    # -------------------------------------------------------------------------
    # Phase 1
    # -------------------------------------------------------------------------

    def _acquire_rigid(self, frame: FrameContext, params: ContactParams) -> _Acquisition:
        acq = _Acquisition()
        num_manifolds = min(frame.num_manifolds, params.max_manifolds)

        for i in range(num_manifolds):
            if len(acq.candidates) >= params.n_target:
                break
            for point in frame.manifolds[i].points:
                if len(acq.candidates) >= params.n_target:
                    break
                if params.enable_distance_filter and point.distance > params.d_max:
                    continue
                acq.add(point.position, point.normal)

        return acq

    def _acquire_soft(self, frame: FrameContext, params: ContactParams,
                      state: ContactState, plane: Optional[Plane]) -> _Acquisition:
        acq = _Acquisition()
        body = frame.body
        num_manifolds = min(frame.num_manifolds, params.max_manifolds)

        # Manifold contacts involving this soft body
        for i in range(num_manifolds):
            manifold = frame.manifolds[i]
            if not manifold.involves(body.body_id):
                continue
            for point in manifold.points:
                if len(acq.candidates) >= params.n_target:
                    break
                if params.enable_distance_filter and point.distance > params.d_max:
                    continue
                acq.add(point.position, point.normal)

        nodes = body.nodes
        if not nodes:
            return acq
        if plane is None:
            log.debug("No contact plane; soft-body node scan skipped")
            return acq

        positions = np.stack([n.position for n in nodes])
        sd = plane.signed_distance(positions)

        if state.prev_sd is None or state.prev_sd.shape[0] != sd.shape[0]:
            state.prev_sd = np.full(sd.shape[0], UNSEEN_SIGNED_DISTANCE)

        keep = sd <= params.d_enter

        if params.enable_hysteresis:
            entering = (state.prev_sd > params.d_exit) & (sd <= params.d_enter)
            keep |= entering

        if params.enable_velocity_gate:
            n = plane.normal
            for i, node in enumerate(nodes):
                if node.velocity is None:
                    continue
                approach = -float(np.dot(node.velocity, n))
                if approach > params.v_min:
                    keep[i] = True
                if approach > params.v_ref:
                    acq.fast_approach_nodes += 1

        for i in np.flatnonzero(keep):
            if len(acq.candidates) >= params.n_target:
                break
            acq.add(nodes[i].position, nodes[i].normal, from_node=True)

        # Every node's distance is remembered, kept or not
        state.prev_sd = sd.copy()
        return acq

    # -------------------------------------------------------------------------
    # Phase 2
    # -------------------------------------------------------------------------

    def _noise_control(self, candidates: List[ContactCandidate], params: ContactParams,
                       plane: Optional[Plane], is_soft: bool):
        filtered = list(candidates)
        counts = {}

        if params.enable_grid_dedupe and filtered:
            filtered = grid_dedupe(filtered, params.grid_cell_xz)
            filtered = min_distance_thin(filtered, params.min_pair_dist)
        counts["grid_dedupe"] = len(filtered)

        if params.enable_iqr_outlier and len(filtered) >= IQR_MIN_POINTS and plane is not None:
            filtered = iqr_reject(filtered, plane)
        counts["iqr"] = len(filtered)

        if params.enable_neighbor_support and is_soft and len(filtered) > params.k:
            filtered = neighbor_support(filtered, params.r_n, params.k)
        counts["neighbor_support"] = len(filtered)

        return filtered, counts

    # -------------------------------------------------------------------------
    # Phase 3
    # -------------------------------------------------------------------------

    def _average_contact(self, acq: _Acquisition, ground_normal) -> Tuple[np.ndarray, np.ndarray]:
        ground_normal = safe_normalize(ground_normal)
        if acq.raw_count == 0:
            return ground_normal.copy(), np.zeros(3)

        normal = acq.normal_sum / acq.raw_count
        if np.dot(normal, ground_normal) < 0:
            normal = -normal
        normal = safe_normalize(normal, default=ground_normal)
        point = acq.point_sum / acq.raw_count
        return normal, point

    def _geometric_center(self, filtered: List[ContactCandidate], params: ContactParams,
                          state: ContactState, dt: float):
        if not filtered:
            return None, None

        center = np.mean(np.array([c.position for c in filtered]), axis=0)
        alpha = None

        if params.enable_ema_smoothing and state.prev_centroid is not None and dt:
            alpha = math.exp(-dt / params.tau_centroid)
            center = alpha * state.prev_centroid + (1.0 - alpha) * center

        return center, alpha

    # -------------------------------------------------------------------------
    # Phase 4
    # -------------------------------------------------------------------------

    def _quality_gates(self, filtered: List[ContactCandidate], params: ContactParams,
                       plane: Optional[Plane]) -> QualityFlags:
        flags = QualityFlags()
        if not params.enable_quality_gates:
            return flags

        if len(filtered) < SPARSE_CONTACT_COUNT:
            flags.degraded = True
            flags.reasons.append("sparse")

        if len(filtered) > 1 and plane is not None:
            sd = plane.signed_distance(np.array([c.position for c in filtered]))
            if float(np.std(sd)) > params.y_max:
                flags.rejected = True
                flags.reasons.append("vertical_spread")

        if not filtered:
            flags.rejected = True
            flags.reasons.append("no_contacts")

        return flags

    def _hold_last(self, filtered: List[ContactCandidate], center, flags: QualityFlags,
                   params: ContactParams, state: ContactState):
        if (params.enable_hold_last and flags.rejected and state.has_good_state
                and state.hold_frames < params.n_hold):
            flags.held = True
            state.hold_frames += 1
            held = list(state.prev_points)
            log.status(f"Contact frame rejected ({', '.join(flags.reasons)}); "
                       f"holding last good set ({state.hold_frames}/{params.n_hold})")
            return held, state.prev_centroid.copy(), len(held)

        state.hold_frames = 0
        state.prev_points = list(filtered)
        if center is not None:
            state.prev_centroid = center.copy()
        return filtered, center, 0

    # -------------------------------------------------------------------------
    # Phase 5
    # -------------------------------------------------------------------------

    def _augment(self, points: List[ContactCandidate], center, frame: FrameContext,
                 params: ContactParams, plane: Optional[Plane]) -> List[ContactCandidate]:
        body = frame.body
        if (params.enable_synthetic
                and 0 < len(points) <= params.stable_contact_count
                and center is not None
                and plane is not None
                and body is not None
                and body.has_surface_mesh):
            return augment_contacts_with_kdop8(
                points,
                body.surface_vertices,
                plane,
                angular_speed=body.angular_speed(),
                tolerance=params.synthetic_mesh_tolerance,
                max_vertices=params.synthetic_max_vertices,
                dedupe_grid=params.synthetic_dedupe_grid,
                spin_threshold=params.synthetic_spin_threshold,
            )

        return [c.as_real() for c in points]


# =============================================================================
# Filters
# =============================================================================

def grid_dedupe(points: List[ContactCandidate], cell: float) -> List[ContactCandidate]:
    """Keep the first point in each (x, z) grid cell."""
    inv = 1.0 / cell
    seen = set()
    kept = []
    for p in points:
        key = (math.floor(p.x * inv), math.floor(p.z * inv))
        if key not in seen:
            seen.add(key)
            kept.append(p)
    return kept


def min_distance_thin(points: List[ContactCandidate], min_dist: float) -> List[ContactCandidate]:
    """Drop points closer than ``min_dist`` in (x, z) to an earlier kept point."""
    if len(points) < 2 or min_dist <= 0.0:
        return list(points)
    grid = SpatialGrid(min_dist)
    kept = []
    for p in points:
        if not grid.query_neighbors(p, min_dist):
            grid.insert(p)
            kept.append(p)
    return kept


def iqr_reject(points: List[ContactCandidate], plane: Plane) -> List[ContactCandidate]:
    """Remove points whose signed distance lies outside [Q1 - 1.5 IQR, Q3 + 1.5 IQR]."""
    sd = plane.signed_distance(np.array([p.position for p in points]))
    ordered = np.sort(sd)
    n = ordered.shape[0]
    q25 = ordered[int(math.floor(n * 0.25))]
    q75 = ordered[int(math.floor(n * 0.75))]
    iqr = max(1e-6, float(q75 - q25))
    lo = q25 - 1.5 * iqr
    hi = q75 + 1.5 * iqr
    return [p for p, d in zip(points, sd) if lo <= d <= hi]


def neighbor_support(points: List[ContactCandidate], radius: float, k: int) -> List[ContactCandidate]:
    """
    Keep points with at least k neighbors within radius.

    The input is returned unchanged when fewer than k points would survive.
    """
    grid = SpatialGrid(radius)
    for p in points:
        grid.insert(p)

    kept = [p for p in points if len(grid.query_neighbors(p, radius)) >= k]
    if len(kept) >= k and kept:
        return kept
    return list(points)
