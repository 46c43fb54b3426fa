"""
config.py
Tunable constants and synthesis parameters for depth_relief.

Environment overrides:
    DEPTH_RELIEF_REFERENCE_HEIGHT   Plane height in scene units (default: 5.0)
    DEPTH_RELIEF_MAX_SEGMENTS       Grid resolution cap for smooth mode (default: 512)
    DEPTH_RELIEF_MODEL              HuggingFace depth-estimation model id
"""

import math
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import InvalidParameter


# =============================================================================
# CONFIGURATION
# =============================================================================

# Height of every generated plane; width follows the color image aspect ratio
REFERENCE_HEIGHT = float(os.environ.get('DEPTH_RELIEF_REFERENCE_HEIGHT', '5.0'))

# Smooth mode grid resolution cap (segments per side)
MAX_SEGMENTS = int(os.environ.get('DEPTH_RELIEF_MAX_SEGMENTS', '512'))

# Empirical gain applied on top of the displacement scale in smooth mode
DISPLACEMENT_GAIN = 3.0

# Material alpha cutoff: half an 8-bit step, so every displaced (alpha > 0) texel renders
ALPHA_CUTOFF = 0.5 / 255

DEFAULT_DISPLACEMENT_SCALE = 1.5
DEFAULT_LAYER_COUNT = 5
MIN_LAYER_COUNT = 2

# Depth Anything V2 Small runs comfortably on CPU
DEPTH_MODEL = os.environ.get('DEPTH_RELIEF_MODEL', 'depth-anything/Depth-Anything-V2-Small-hf')

EXPORT_PREFIX = 'depth-model'
EXPORT_EXTENSION = 'glb'
EXPORT_MIME_TYPE = 'model/gltf-binary'


# =============================================================================
# PARAMETERS
# =============================================================================

@dataclass(frozen=True)
class SynthesisParams:
    """
    Parameters consumed at synthesis time.

    depth_tolerance is accepted so callers can thread it through, but no
    synthesis mode reads it.
    """
    displacement_scale: float = DEFAULT_DISPLACEMENT_SCALE
    layer_count: int = DEFAULT_LAYER_COUNT
    depth_tolerance: Optional[float] = None

    def validate(self) -> 'SynthesisParams':
        check_displacement_scale(self.displacement_scale)
        check_layer_count(self.layer_count)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "displacement_scale": self.displacement_scale,
            "layer_count": self.layer_count,
            "depth_tolerance": self.depth_tolerance,
        }


def check_displacement_scale(displacement_scale: float) -> float:
    try:
        value = float(displacement_scale)
    except (TypeError, ValueError) as e:
        raise InvalidParameter(f"displacement_scale must be a number, got {displacement_scale!r}") from e
    if not math.isfinite(value) or value < 0:
        raise InvalidParameter(f"displacement_scale must be finite and >= 0, got {displacement_scale!r}")
    return value


def check_layer_count(layer_count: int) -> int:
    if isinstance(layer_count, bool) or not isinstance(layer_count, int):
        raise InvalidParameter(f"layer_count must be an integer, got {layer_count!r}")
    if layer_count < MIN_LAYER_COUNT:
        raise InvalidParameter(f"layer_count must be >= {MIN_LAYER_COUNT}, got {layer_count}")
    return layer_count
