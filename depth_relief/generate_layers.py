"""
generate_layers.py
Parallax mode: split an image into depth-binned cutout planes.

The depth range [0, 255] is quantized into N equal bins. Each bin becomes
one RGBA texture holding the color pixels whose depth falls in the bin
(fully opaque) and transparent black everywhere else. Each texture is
placed as a flat plane at the bin's midpoint depth, scaled by the
displacement scale.

Bin convention:
    bin L covers [L/N * 255, (L+1)/N * 255)
    the last bin is closed, so a depth of exactly 255 belongs to layer N-1

Layer 0 holds the lowest depth values (background for "near = bright"
depth maps), layer N-1 the highest (foreground).
"""

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import trimesh

from .config import REFERENCE_HEIGHT, check_displacement_scale, check_layer_count
from .pixel_buffers import BufferPair, PixelBuffer

# Optional matplotlib for debug visualizations
try:
    import matplotlib
    import matplotlib.gridspec as gridspec
    from matplotlib.figure import Figure
    MATPLOTLIB_AVAILABLE = True
except ImportError:
    MATPLOTLIB_AVAILABLE = False


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(eq=False)
class DepthLayer:
    """
    A single cutout plane of the layer stack.
    """
    texture: PixelBuffer              # (H, W, 4) RGBA, alpha 255 inside the bin, 0 outside
    z_offset: float                   # Plane offset along the image normal
    depth_range: Tuple[float, float]  # (bin_min, bin_max) in depth units [0, 255]
    layer_index: int                  # 0 = lowest depth values
    name: str                         # "background", "midground_<i>" or "foreground"
    pixel_count: int                  # Opaque pixels in this layer

    def mask(self) -> np.ndarray:
        return self.texture.alpha() > 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dictionary (without image data)."""
        return {
            "layer_index": self.layer_index,
            "name": self.name,
            "z_offset": self.z_offset,
            "depth_range": list(self.depth_range),
            "pixel_count": self.pixel_count,
        }


@dataclass(eq=False)
class LayerStack:
    """
    Complete parallax output: ordered layers plus plane dimensions.
    """
    layers: List[DepthLayer]
    width: int
    height: int
    plane_width: float
    plane_height: float
    displacement_scale: float

    @property
    def layer_count(self) -> int:
        return len(self.layers)

    @property
    def z_offsets(self) -> List[float]:
        return [layer.z_offset for layer in self.layers]

    def assignment(self) -> np.ndarray:
        """(H, W) int array with the opaque layer index of each pixel, -1 for none."""
        result = np.full((self.height, self.width), -1, dtype=np.int64)
        for layer in self.layers:
            result[layer.mask()] = layer.layer_index
        return result

    def digest(self) -> str:
        h = hashlib.sha256()
        h.update(json.dumps(self.to_dict(), sort_keys=True).encode())
        for layer in self.layers:
            h.update(layer.texture.digest().encode())
        return h.hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "plane_width": self.plane_width,
            "plane_height": self.plane_height,
            "displacement_scale": self.displacement_scale,
            "num_layers": len(self.layers),
            "layers": [layer.to_dict() for layer in self.layers],
        }


# ============================================================================
# DEPTH QUANTIZATION
# ============================================================================

def depth_bins(layer_count: int) -> List[Tuple[float, float]]:
    """
    Depth bounds of each bin, in [0, 255].

    Both bounds of neighbouring bins come from the same expression, so the
    bins share exact float edges and partition the range.
    """
    check_layer_count(layer_count)
    return [
        ((i / layer_count) * 255, ((i + 1) / layer_count) * 255)
        for i in range(layer_count)
    ]


def layer_name(index: int, layer_count: int) -> str:
    if index == 0:
        return "background"
    if index == layer_count - 1:
        return "foreground"
    return f"midground_{index}"


def plane_size(width: int, height: int, reference_height: float = REFERENCE_HEIGHT) -> Tuple[float, float]:
    """Aspect-preserving plane size: constant height, width from the color image."""
    return reference_height * (width / height), reference_height


def decompose_layers(
    pair: BufferPair,
    layer_count: int,
    displacement_scale: float,
    reference_height: float = REFERENCE_HEIGHT
) -> LayerStack:
    """
    Segment an image into depth layers using quantization.

    Args:
        pair: Color and depth buffers of identical size
        layer_count: Number of depth bins (>= 2)
        displacement_scale: Scale applied to each bin's normalized midpoint
        reference_height: Plane height in scene units

    Returns:
        LayerStack with layer_count layers, ordered by increasing depth value
    """
    layer_count = check_layer_count(layer_count)
    displacement_scale = check_displacement_scale(displacement_scale)

    color = pair.color.data
    depth = pair.depth.depth_samples()
    H, W = depth.shape

    print(f"  Segmenting into {layer_count} depth layers...")

    layers = []
    for i, (bin_min, bin_max) in enumerate(depth_bins(layer_count)):
        mask = (depth >= bin_min) & (depth < bin_max)

        # Close the last bin so depth == 255 is not dropped
        if i == layer_count - 1:
            mask = mask | (depth >= bin_max)

        rgba = np.zeros((H, W, 4), dtype=np.uint8)
        rgba[mask, :3] = color[mask, :3]
        rgba[mask, 3] = 255

        bin_mid = (bin_min + bin_max) / 2
        z_offset = (bin_mid / 255) * displacement_scale

        name = layer_name(i, layer_count)
        pixel_count = int(np.count_nonzero(mask))
        layers.append(DepthLayer(
            texture=PixelBuffer(rgba),
            z_offset=z_offset,
            depth_range=(bin_min, bin_max),
            layer_index=i,
            name=name,
            pixel_count=pixel_count
        ))

        pct = 100.0 * pixel_count / (H * W)
        print(f"    Layer {i} ({name}): depth [{bin_min:.2f}, {bin_max:.2f}], "
              f"z={z_offset:.4f}, pixels: {pixel_count:,} ({pct:.1f}%)")

    plane_width, plane_height = plane_size(W, H, reference_height)
    return LayerStack(
        layers=layers,
        width=W,
        height=H,
        plane_width=plane_width,
        plane_height=plane_height,
        displacement_scale=displacement_scale
    )


# ============================================================================
# RENDER HOST HAND-OFF
# ============================================================================

def layer_plane(layer: DepthLayer, plane_width: float, plane_height: float) -> trimesh.Trimesh:
    """
    Textured quad for one layer, centered on the origin at z = z_offset.
    """
    hw, hh = plane_width / 2, plane_height / 2
    z = layer.z_offset
    vertices = np.array([
        [-hw, hh, z],
        [-hw, -hh, z],
        [hw, -hh, z],
        [hw, hh, z],
    ])
    faces = np.array([[0, 1, 3], [1, 2, 3]])
    uvs = np.array([[0.0, 1.0], [0.0, 0.0], [1.0, 0.0], [1.0, 1.0]])

    material = trimesh.visual.material.PBRMaterial(
        name=f"layer_{layer.layer_index:02d}",
        baseColorTexture=layer.texture.to_image(),
        metallicFactor=0.0,
        roughnessFactor=1.0,
        alphaMode='MASK',
        alphaCutoff=0.01,
        doubleSided=True
    )
    mesh = trimesh.Trimesh(vertices=vertices, faces=faces, process=False)
    mesh.visual = trimesh.visual.TextureVisuals(uv=uvs, material=material)
    return mesh


def layers_to_scene(stack: LayerStack) -> trimesh.Scene:
    """
    Stack every layer plane into one scene, in layer order.
    """
    scene = trimesh.Scene()
    for layer in stack.layers:
        scene.add_geometry(
            layer_plane(layer, stack.plane_width, stack.plane_height),
            node_name=f"layer_{layer.layer_index:02d}",
            geom_name=f"layer_{layer.layer_index:02d}"
        )
    return scene


# ============================================================================
# FILE I/O
# ============================================================================

def save_layers(stack: LayerStack, output_dir: str, base_name: str = "layers") -> Path:
    """
    Save layer textures and metadata to disk.

    Output structure:
        output_dir/
            {base_name}_layers.json   - Layer info and plane dimensions
            layer_00_rgba.png         - Layer 0 cutout
            layer_01_rgba.png         - Layer 1 cutout
            ...

    Returns:
        Path to the metadata JSON
    """
    print(f"\n  Saving layers to: {output_dir}")

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    metadata = stack.to_dict()
    metadata["files"] = {"layers": []}

    for layer in stack.layers:
        layer_file = f"layer_{layer.layer_index:02d}_rgba.png"
        layer.texture.to_image().save(output_path / layer_file)
        metadata["files"]["layers"].append({
            "index": layer.layer_index,
            "name": layer.name,
            "rgba": layer_file,
        })

    meta_path = output_path / f"{base_name}_layers.json"
    with open(meta_path, 'w') as f:
        json.dump(metadata, f, indent=2)

    print(f"    Metadata: {meta_path}")
    print(f"  ✓ Saved {len(stack.layers)} layers + metadata")
    return meta_path


def _checkerboard(height: int, width: int, checker_size: int = 16) -> np.ndarray:
    yy, xx = np.mgrid[0:height, 0:width]
    light = ((yy // checker_size) + (xx // checker_size)) % 2 == 0
    checker = np.full((height, width, 3), 240, dtype=np.uint8)
    checker[light] = 200
    return checker


def visualize_layers(stack: LayerStack, pair: BufferPair, output_dir: str) -> Optional[Path]:
    """
    Write a debug sheet: color image, depth map, layer assignment, and each
    layer composited over a checkerboard.

    Returns:
        Path to the PNG, or None when matplotlib is not installed
    """
    if not MATPLOTLIB_AVAILABLE:
        print("  Warning: matplotlib not available, skipping visualizations")
        return None

    print("\n  Generating debug visualizations...")

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    n_layers = len(stack.layers)
    n_rows = 1 + (n_layers + 2) // 3
    fig = Figure(figsize=(16, 4 * n_rows))
    gs = gridspec.GridSpec(n_rows, 3, figure=fig, hspace=0.3, wspace=0.2)

    ax1 = fig.add_subplot(gs[0, 0])
    ax1.imshow(pair.color.data)
    ax1.set_title("Color Image")
    ax1.axis('off')

    ax2 = fig.add_subplot(gs[0, 1])
    ax2.imshow(pair.depth.depth_samples(), cmap='plasma', vmin=0, vmax=255)
    ax2.set_title("Depth Map")
    ax2.axis('off')

    ax3 = fig.add_subplot(gs[0, 2])
    layer_vis = np.zeros((stack.height, stack.width, 3), dtype=np.float32)
    colors = matplotlib.colormaps['viridis'](np.linspace(0, 1, n_layers))[:, :3]
    for i, layer in enumerate(stack.layers):
        layer_vis[layer.mask()] = colors[i]
    ax3.imshow(layer_vis)
    ax3.set_title(f"Layer Assignment ({n_layers} layers)")
    ax3.axis('off')

    checker = _checkerboard(stack.height, stack.width).astype(np.float32)
    for i, layer in enumerate(stack.layers):
        ax = fig.add_subplot(gs[1 + i // 3, i % 3])
        rgba = layer.texture.data
        alpha = rgba[:, :, 3:4].astype(np.float32) / 255.0
        composite = rgba[:, :, :3].astype(np.float32) * alpha + checker * (1.0 - alpha)
        ax.imshow(composite.astype(np.uint8))
        ax.set_title(f"Layer {layer.layer_index}: {layer.name} (z={layer.z_offset:.3f})")
        ax.axis('off')

    vis_path = output_path / "layers_overview.png"
    fig.savefig(vis_path, dpi=100, bbox_inches='tight')

    print(f"    Saved: {vis_path}")
    return vis_path
