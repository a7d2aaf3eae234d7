"""
ContactPatch - Contact footprint tracking for physics bodies

Turns per-frame collision manifolds (rigid bodies) and node states (soft
bodies) into a filtered contact point set and a stable oriented footprint
box for visualization and wear accumulation.

Workflow:
    Recorded CONTACT_SEQUENCE → 👣 Contact Patch Sequence → FOOTPRINT_SEQUENCE

Per frame:
    FrameContext → ContactAcquisitionPipeline → BoundingBoxFitter
                 → OrientationStabilizer → OrientedBox3D

Up axis: Y (footprints are fitted in world x-z)
"""

__version__ = "1.2.0"

from .lib.logger import log
from .nodes import *  # noqa: F401,F403
from .nodes import __all__ as _nodes_all
from .nodes.contact_patch_tracker import NODE_CLASS_MAPPINGS, NODE_DISPLAY_NAME_MAPPINGS

log.status(f"v{__version__} loaded {len(NODE_CLASS_MAPPINGS)} nodes:")
for _name in NODE_CLASS_MAPPINGS:
    log.status(f"  - {NODE_DISPLAY_NAME_MAPPINGS.get(_name, _name)}")

__all__ = ["__version__", "log"] + list(_nodes_all)
