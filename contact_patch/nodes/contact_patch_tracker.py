"""
Contact Patch Tracker for ContactPatch

Per-body session tying the pieces together:

    FrameContext -> ContactAcquisitionPipeline -> BoundingBoxFitter
                 -> OrientationStabilizer -> OrientedBox3D

ContactPatchTracker owns every piece of cross-frame memory for one body
(ContactState, orientation memory, last box). Create one tracker per
body and call reset() when the body is replaced.

The ContactPatchSequence node replays a recorded CONTACT_SEQUENCE through a
fresh tracker and returns the per-frame footprints.
"""

import copy
import numpy as np
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass
from scipy.ndimage import gaussian_filter1d

from ..lib.logger import get_logger, set_verbosity_from_string, LOG_LEVEL_CHOICES
from .bounding_box import (
    BoxAlgorithm,
    BOX_ALGORITHM_CHOICES,
    BoundingBox2D,
    BoundingBoxFitter,
    FitterConfig,
    OrientedBox3D,
)
from .contact_acquisition import (
    ContactAcquisitionPipeline,
    ContactParams,
    ContactResult,
    ContactState,
    get_real_contacts,
)
from .orientation_stabilizer import OrientationStabilizer
from .physics_snapshot import FrameContext

log = get_logger("Tracker")


PRESET_CHOICES = ["auto", "rigid", "soft_body"]


@dataclass
class FootprintResult:
    """One tracker step: acquisition result plus the fitted footprint."""
    contact: ContactResult
    box: Optional[OrientedBox3D] = None
    box_2d: Optional[BoundingBox2D] = None
    algorithm: BoxAlgorithm = BoxAlgorithm.OMBB
    velocity_aligned: bool = False
    locked: bool = False

    @property
    def has_box(self) -> bool:
        return self.box is not None

    def to_dict(self) -> Dict:
        return {
            "contact": self.contact.to_dict(),
            "box": self.box.to_dict() if self.box is not None else None,
            "algorithm": self.algorithm.value,
            "velocity_aligned": self.velocity_aligned,
            "locked": self.locked,
        }


class ContactPatchTracker:
    """
    Contact acquisition + box fitting for a single body.

    Args:
        params: Fixed ContactParams, or None to pick the rigid/soft preset
                from each frame's body
        fitter_config: FitterConfig shared by fitter and stabilizer
    """

    def __init__(self, params: Optional[ContactParams] = None,
                 fitter_config: Optional[FitterConfig] = None):
        self.pipeline = ContactAcquisitionPipeline(params)
        self.state = ContactState()
        self.fitter = BoundingBoxFitter(fitter_config)
        self.stabilizer = OrientationStabilizer(self.fitter.config)
        self.last_box: Optional[OrientedBox3D] = None

    def reset(self):
        """Clear all cross-frame memory (body replaced or reset)."""
        self.state.reset()
        self.stabilizer.reset()
        self.last_box = None

    def step(self, frame: FrameContext, algorithm=BoxAlgorithm.OMBB,
             now: Optional[float] = None) -> FootprintResult:
        """
        Process one frame.

        Args:
            frame: Per-frame physics snapshot
            algorithm: BoxAlgorithm or its name (unknown names -> OMBB)
            now: Optional time override in seconds

        Returns:
            FootprintResult; ``box`` is None when the frame has no footprint
        """
        algorithm = BoxAlgorithm.from_string(algorithm)
        result = self.pipeline.process(frame, self.state, now)
        params = self.pipeline.params_for(frame)

        samples = result.contact_samples
        if not params.enable_synthetic:
            samples = get_real_contacts(samples)

        if not samples:
            self.last_box = None
            self.stabilizer.clear_box()
            return FootprintResult(contact=result, algorithm=algorithm)

        points = np.array([[c.x, c.z] for c in samples])
        velocity = frame.body.planar_velocity() if frame.body is not None else None

        fit = self.fitter.fit_contacts(points, algorithm, velocity)
        outcome = self.stabilizer.stabilize(fit)

        if outcome.locked:
            log.debug(f"Orientation locked: jump {np.degrees(outcome.angle_jump):.1f} deg rejected")

        anchor = result.geometric_center if result.geometric_center is not None else result.avg_contact_point
        box = self.fitter.to_oriented_box(outcome.box, anchor, result.avg_contact_normal)
        self.last_box = box

        return FootprintResult(
            contact=result,
            box=box,
            box_2d=outcome.box,
            algorithm=algorithm,
            velocity_aligned=fit.velocity_aligned,
            locked=outcome.locked,
        )


def params_for_preset(preset: str) -> Optional[ContactParams]:
    """ContactParams for a preset name; "auto" (or unknown) -> None."""
    if preset == "rigid":
        return ContactParams.rigid_default()
    if preset == "soft_body":
        return ContactParams.soft_body()
    return None


def smooth_footprint_extents(frames: List[Dict], sigma: float) -> int:
    """
    Add ``smoothed_width``/``smoothed_height`` to frames that have a box.

    Runs of consecutive boxed frames are smoothed independently so that a
    gap in contact does not blend unrelated footprints. Returns the number
    of frames smoothed.
    """
    runs = []
    current = []
    for entry in frames:
        if entry.get("box") is not None:
            current.append(entry)
        elif current:
            runs.append(current)
            current = []
    if current:
        runs.append(current)

    smoothed = 0
    for run in runs:
        widths = np.array([e["box"]["width"] for e in run], dtype=np.float64)
        heights = np.array([e["box"]["height"] for e in run], dtype=np.float64)
        if len(run) >= 3:
            widths = gaussian_filter1d(widths, sigma=sigma)
            heights = gaussian_filter1d(heights, sigma=sigma)
            smoothed += len(run)
        for entry, w, h in zip(run, widths, heights):
            entry["smoothed_width"] = float(w)
            entry["smoothed_height"] = float(h)

    return smoothed


# ============================================================================
# ComfyUI Node
# ============================================================================

class ContactPatchSequence:
    """
    Replay a recorded contact sequence and fit a footprint per frame.

    Input CONTACT_SEQUENCE:
        {
            "frames": [FrameContext.from_dict data, ...],
            "is_soft_body": bool,     # default for frames whose body omits it
            "fps": float,             # used when a frame has no timestamp
        }

    Output FOOTPRINT_SEQUENCE:
        {
            "frames": [{"frame_index", "contact", "box", "velocity_aligned",
                        "locked", ["smoothed_width", "smoothed_height"]}],
            "algorithm", "preset", "fps", "smoothed_frames"
        }
    """

    @classmethod
    def INPUT_TYPES(cls):
        return {
            "required": {
                "contact_sequence": ("CONTACT_SEQUENCE", {
                    "tooltip": "Recorded per-frame manifolds, body state and contact plane"
                }),
                "algorithm": (BOX_ALGORITHM_CHOICES, {
                    "default": "ombb",
                    "tooltip": "aabb, obb (PCA), ombb (minimum area), kdop8, hybrid (k-DOP16 + refine)"
                }),
            },
            "optional": {
                "preset": (PRESET_CHOICES, {
                    "default": "auto",
                    "tooltip": "auto = rigid or soft-body thresholds from each frame's body"
                }),
                "min_contact_size": ("FLOAT", {
                    "default": 0.05,
                    "min": 0.0,
                    "max": 1.0,
                    "step": 0.005,
                    "tooltip": "Minimum footprint width/height in meters"
                }),
                "smooth_extents": ("BOOLEAN", {
                    "default": False,
                    "tooltip": "Add a Gaussian-smoothed width/height track (display only)"
                }),
                "smoothing_sigma": ("FLOAT", {
                    "default": 1.5,
                    "min": 0.1,
                    "max": 10.0,
                    "step": 0.1,
                    "tooltip": "Gaussian sigma in frames"
                }),
                "log_level": (LOG_LEVEL_CHOICES, {
                    "default": "Normal (Info)",
                    "tooltip": "Console verbosity"
                }),
            }
        }

    RETURN_TYPES = ("FOOTPRINT_SEQUENCE", "STRING")
    RETURN_NAMES = ("footprint_sequence", "status")
    FUNCTION = "track"
    CATEGORY = "ContactPatch"

    def track(
        self,
        contact_sequence: Dict,
        algorithm: str = "ombb",
        preset: str = "auto",
        min_contact_size: float = 0.05,
        smooth_extents: bool = False,
        smoothing_sigma: float = 1.5,
        log_level: str = "Normal (Info)",
    ) -> Tuple[Dict, str]:
        """Run the tracker over every frame of the sequence."""
        set_verbosity_from_string(log_level)

        frames_in = contact_sequence.get("frames", [])
        is_soft = bool(contact_sequence.get("is_soft_body", False))
        fps = float(contact_sequence.get("fps", 30.0)) or 30.0
        T = len(frames_in)

        log.section("CONTACT PATCH TRACKING")
        log.info(f"Frames: {T}, algorithm: {algorithm}, preset: {preset}, soft body: {is_soft}")

        tracker = ContactPatchTracker(
            params=params_for_preset(preset),
            fitter_config=FitterConfig(min_contact_size=min_contact_size),
        )

        frames_out = []
        held = rejected = locked = boxed = 0

        for i, frame_data in enumerate(frames_in):
            frame_data = copy.deepcopy(frame_data)
            if frame_data.get("body") is not None:
                frame_data["body"].setdefault("is_soft_body", is_soft)
            if frame_data.get("timestamp") is None:
                frame_data["timestamp"] = i / fps

            frame = FrameContext.from_dict(frame_data)
            step = tracker.step(frame, algorithm)

            flags = step.contact.flags
            held += int(flags.held)
            rejected += int(flags.rejected and not flags.held)
            locked += int(step.locked)
            boxed += int(step.has_box)

            entry = step.to_dict()
            entry["frame_index"] = i
            frames_out.append(entry)

            log.progress(i, T, "Tracking")

        smoothed = 0
        if smooth_extents:
            smoothed = smooth_footprint_extents(frames_out, smoothing_sigma)

        result = {
            "frames": frames_out,
            "algorithm": BoxAlgorithm.from_string(algorithm).value,
            "preset": preset,
            "fps": fps,
            "smoothed_frames": smoothed,
        }

        status = (f"Tracked {T} frames: {boxed} with footprint, {held} held, "
                  f"{rejected} rejected, {locked} orientation locks")
        log.info(status)

        return (result, status)


# ============================================================================
# Node Registration
# ============================================================================

NODE_CLASS_MAPPINGS = {
    "ContactPatchSequence": ContactPatchSequence,
}

NODE_DISPLAY_NAME_MAPPINGS = {
    "ContactPatchSequence": "👣 Contact Patch Sequence",
}
