"""ContactPatch nodes: acquisition, box fitting, stabilization and tracking."""

from .physics_snapshot import (
    ManifoldPoint,
    ContactManifold,
    SoftNode,
    BodySnapshot,
    ContactPlaneDescriptor,
    FrameContext,
    manifolds_from_points,
)
from .contact_acquisition import (
    ContactCandidate,
    ContactParams,
    ContactState,
    ContactResult,
    QualityFlags,
    ContactAcquisitionPipeline,
    get_real_contacts,
    get_synthetic_contacts,
    separate_contacts,
    mesh_kdop8_corners,
    augment_contacts_with_kdop8,
)
from .bounding_box import (
    BoxAlgorithm,
    BOX_ALGORITHM_CHOICES,
    FitterConfig,
    BoundingBox2D,
    OrientedBox3D,
    FitResult,
    BoundingBoxFitter,
    compute_aabb,
    compute_pca_obb,
    compute_ombb,
    compute_kdop,
    compute_hybrid,
    fit_at_orientation,
)
from .orientation_stabilizer import OrientationStabilizer, StabilizerOutcome
from .contact_patch_tracker import (
    ContactPatchTracker,
    FootprintResult,
    ContactPatchSequence,
    NODE_CLASS_MAPPINGS,
    NODE_DISPLAY_NAME_MAPPINGS,
)

__all__ = [
    # Snapshots
    "ManifoldPoint",
    "ContactManifold",
    "SoftNode",
    "BodySnapshot",
    "ContactPlaneDescriptor",
    "FrameContext",
    "manifolds_from_points",
    
    # Acquisition
    "ContactCandidate",
    "ContactParams",
    "ContactState",
    "ContactResult",
    "QualityFlags",
    "ContactAcquisitionPipeline",
    "get_real_contacts",
    "get_synthetic_contacts",
    "separate_contacts",
    "mesh_kdop8_corners",
    "augment_contacts_with_kdop8",
    
    # Boxes
    "BoxAlgorithm",
    "BOX_ALGORITHM_CHOICES",
    "FitterConfig",
    "BoundingBox2D",
    "OrientedBox3D",
    "FitResult",
    "BoundingBoxFitter",
    "compute_aabb",
    "compute_pca_obb",
    "compute_ombb",
    "compute_kdop",
    "compute_hybrid",
    "fit_at_orientation",
    
    # Stabilizer / tracker
    "OrientationStabilizer",
    "StabilizerOutcome",
    "ContactPatchTracker",
    "FootprintResult",
    "ContactPatchSequence",
    "NODE_CLASS_MAPPINGS",
    "NODE_DISPLAY_NAME_MAPPINGS",
]
