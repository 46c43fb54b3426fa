"""
depth_relief
Photo + depth map → parallax cutout layers or a displaced, exportable mesh.
"""

from .config import SynthesisParams
from .errors import (
    DecodeFailure,
    DepthEstimationError,
    DimensionMismatch,
    ExportNotReady,
    InvalidParameter,
    ReliefError,
    SerializationFailure,
)
from .export_glb import export_glb, save_export
from .generate_depth_map import DepthEstimator
from .generate_layers import DepthLayer, LayerStack, decompose_layers
from .generate_mesh import DisplacedMesh, build_displaced_mesh
from .pipeline import PARALLAX, SMOOTH, ReliefPipeline
from .pixel_buffers import BufferPair, PixelBuffer, extract_buffer_pair

__version__ = "0.1.0"
