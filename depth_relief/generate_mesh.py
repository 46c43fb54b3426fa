"""
generate_mesh.py
Smooth mode: one dense grid displaced per-vertex by the depth map.

Pipeline:
    Color + Depth buffers → Plane Grid → Depth Sampling → Displacement → Normals

Grid layout matches a standard plane geometry: (segments + 1)^2 vertices,
rows from top (+y) to bottom, UV origin at the bottom-left. Image row 0 is
the top of the picture, so sampling flips v:

    x = floor(u * (W - 1))
    y = floor((1 - v) * (H - 1))

Vertices whose color pixel is fully transparent stay exactly on the plane;
all others move along +Z (the plane normal) by

    depth / 255 * displacement_scale * DISPLACEMENT_GAIN
"""

import hashlib
from dataclasses import dataclass
from typing import Any, Dict, Tuple

import numpy as np
import trimesh
from PIL import Image

from .config import ALPHA_CUTOFF, DISPLACEMENT_GAIN, MAX_SEGMENTS, REFERENCE_HEIGHT, check_displacement_scale
from .generate_layers import plane_size
from .pixel_buffers import BufferPair, PixelBuffer


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(eq=False)
class DisplacedMesh:
    """
    Geometry and textures for smooth mode.

    Positions are in plane space before any scene rotation: the plane lies
    in XY and depth moves vertices along +Z.
    """
    positions: np.ndarray        # (V, 3) float64
    uv: np.ndarray               # (V, 2) float64, [0, 1]^2
    normals: np.ndarray          # (V, 3) float64, unit length
    faces: np.ndarray            # (F, 3) int64
    displacement: np.ndarray     # (V,) float64, offset applied along +Z
    color_texture: PixelBuffer   # Source color image
    alpha_mask: PixelBuffer      # Alpha duplicated into RGB, opaque A
    segments: int
    plane_width: float
    plane_height: float
    displacement_scale: float

    def __post_init__(self):
        for array in (self.positions, self.uv, self.normals, self.faces, self.displacement):
            array.flags.writeable = False

    @property
    def vertex_count(self) -> int:
        return int(len(self.positions))

    @property
    def face_count(self) -> int:
        return int(len(self.faces))

    def texture_image(self) -> Image.Image:
        """Color RGB with the alpha mask as its alpha channel."""
        rgba = np.array(self.color_texture.data, copy=True)
        rgba[:, :, 3] = self.alpha_mask.data[:, :, 0]
        return Image.fromarray(rgba)

    def to_trimesh(self) -> trimesh.Trimesh:
        """
        Textured trimesh for display or export. Vertex order and normals are
        kept as built.
        """
        material = trimesh.visual.material.PBRMaterial(
            name="depth_model",
            baseColorTexture=self.texture_image(),
            metallicFactor=0.0,
            roughnessFactor=0.8,
            alphaMode='MASK',
            alphaCutoff=ALPHA_CUTOFF,
            doubleSided=True
        )
        mesh = trimesh.Trimesh(
            vertices=np.array(self.positions),
            faces=np.array(self.faces),
            vertex_normals=np.array(self.normals),
            process=False
        )
        mesh.visual = trimesh.visual.TextureVisuals(uv=np.array(self.uv), material=material)
        return mesh

    def digest(self) -> str:
        h = hashlib.sha256()
        for array in (self.positions, self.uv, self.normals, self.faces, self.displacement):
            h.update(np.ascontiguousarray(array).tobytes())
        h.update(self.color_texture.digest().encode())
        h.update(self.alpha_mask.digest().encode())
        h.update(repr((self.segments, self.plane_width, self.plane_height, self.displacement_scale)).encode())
        return h.hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segments": self.segments,
            "vertex_count": self.vertex_count,
            "face_count": self.face_count,
            "plane_width": self.plane_width,
            "plane_height": self.plane_height,
            "displacement_scale": self.displacement_scale,
            "max_displacement": float(self.displacement.max()) if self.vertex_count else 0.0,
        }


# =============================================================================
# GRID CONSTRUCTION
# =============================================================================

def grid_segments(width: int, height: int, max_segments: int = MAX_SEGMENTS) -> int:
    """Segments per side, capped for tractability."""
    return min(max(width, height), max_segments)


def build_plane_grid(
    plane_width: float,
    plane_height: float,
    segments: int
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Regular plane grid centered on the origin.

    Returns:
        positions (V, 3), uv (V, 2), faces (F, 3) with V = (segments + 1)^2
        and F = 2 * segments^2, triangles wound to face +Z
    """
    n = segments + 1
    steps = np.arange(n, dtype=np.float64)

    xs = steps * (plane_width / segments) - plane_width / 2
    ys = plane_height / 2 - steps * (plane_height / segments)
    xx, yy = np.meshgrid(xs, ys)
    positions = np.stack([xx, yy, np.zeros_like(xx)], axis=-1).reshape(-1, 3)

    us = steps / segments
    vs = 1 - steps / segments
    uu, vv = np.meshgrid(us, vs)
    uv = np.stack([uu, vv], axis=-1).reshape(-1, 2)

    iy, ix = np.meshgrid(np.arange(segments), np.arange(segments), indexing='ij')
    a = ix + n * iy
    b = ix + n * (iy + 1)
    c = (ix + 1) + n * (iy + 1)
    d = (ix + 1) + n * iy
    faces = np.stack([a, b, d, b, c, d], axis=-1).reshape(-1, 3).astype(np.int64)

    return positions, uv, faces


def sample_indices(uv: np.ndarray, width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Pixel column and row sampled by each UV. Row 0 is the top of the image.
    """
    x = np.floor(uv[:, 0] * (width - 1)).astype(np.int64)
    y = np.floor((1 - uv[:, 1]) * (height - 1)).astype(np.int64)
    return np.clip(x, 0, width - 1), np.clip(y, 0, height - 1)


def build_alpha_mask(color: PixelBuffer) -> PixelBuffer:
    """Alpha copied into R, G and B with A forced to 255."""
    alpha = color.alpha()
    mask = np.empty(color.data.shape, dtype=np.uint8)
    mask[:, :, 0] = alpha
    mask[:, :, 1] = alpha
    mask[:, :, 2] = alpha
    mask[:, :, 3] = 255
    return PixelBuffer(mask)


def compute_displacement(
    pair: BufferPair,
    uv: np.ndarray,
    displacement_scale: float
) -> np.ndarray:
    """
    Per-vertex offset along the plane normal.

    Zero where the sampled color pixel is fully transparent.
    """
    x, y = sample_indices(uv, pair.color.width, pair.color.height)
    depth = pair.depth.depth_samples()[y, x]
    alpha = pair.color.alpha()[y, x]
    return np.where(alpha > 0, depth / 255 * displacement_scale * DISPLACEMENT_GAIN, 0.0)


# =============================================================================
# MESH GENERATION
# =============================================================================

def build_displaced_mesh(
    pair: BufferPair,
    displacement_scale: float,
    reference_height: float = REFERENCE_HEIGHT,
    max_segments: int = MAX_SEGMENTS
) -> DisplacedMesh:
    """
    Create a displaced grid mesh from color + depth buffers.

    Args:
        pair: Color and depth buffers of identical size
        displacement_scale: User scale for the depth offset (>= 0)
        reference_height: Plane height in scene units
        max_segments: Grid resolution cap

    Returns:
        DisplacedMesh with (segments + 1)^2 vertices
    """
    displacement_scale = check_displacement_scale(displacement_scale)

    width, height = pair.color.size
    segments = grid_segments(width, height, max_segments)
    plane_width, plane_height = plane_size(width, height, reference_height)

    print(f"  Creating mesh grid ({segments}x{segments} segments, "
          f"plane {plane_width:.3f}x{plane_height:.3f})...")

    positions, uv, faces = build_plane_grid(plane_width, plane_height, segments)

    displacement = compute_displacement(pair, uv, displacement_scale)
    positions[:, 2] += displacement

    # Normals from the displaced surface
    normals = np.array(
        trimesh.Trimesh(vertices=positions, faces=faces, process=False).vertex_normals,
        dtype=np.float64
    )

    print(f"  Vertices: {len(positions):,}, Faces: {len(faces):,}")

    return DisplacedMesh(
        positions=positions,
        uv=uv,
        normals=normals,
        faces=faces,
        displacement=displacement,
        color_texture=pair.color,
        alpha_mask=build_alpha_mask(pair.color),
        segments=segments,
        plane_width=plane_width,
        plane_height=plane_height,
        displacement_scale=displacement_scale
    )
