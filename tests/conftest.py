import numpy as np
import pytest
from PIL import Image

from depth_relief.pixel_buffers import extract_buffer_pair


def gray(values, width, height):
    """(H, W, 3) uint8 depth raster from row-major gray levels."""
    levels = np.asarray(values, dtype=np.uint8).reshape(height, width)
    return np.repeat(levels[:, :, None], 3, axis=2)


def opaque(width, height, seed=0):
    rng = np.random.default_rng(seed)
    rgba = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    rgba[:, :, 3] = 255
    return rgba


@pytest.fixture
def scenario_a_pair():
    """2x2 opaque color image with depth levels 0, 85, 170, 255."""
    return extract_buffer_pair(opaque(2, 2), gray([0, 85, 170, 255], 2, 2))


@pytest.fixture
def random_pair():
    """Color with mixed alpha and a non-gray depth raster."""
    rng = np.random.default_rng(42)
    color = rng.integers(0, 256, size=(12, 17, 4), dtype=np.uint8)
    color[:, :, 3] = np.where(rng.random((12, 17)) < 0.3, 0, color[:, :, 3])
    depth = rng.integers(0, 256, size=(12, 17, 3), dtype=np.uint8)
    return extract_buffer_pair(color, depth)


@pytest.fixture
def image_files(tmp_path):
    """A color PNG and a smaller depth PNG on disk."""
    color_path = tmp_path / "photo.png"
    depth_path = tmp_path / "photo_depth.png"
    Image.fromarray(opaque(16, 8)).save(color_path)
    ramp = np.tile(np.linspace(0, 255, 8, dtype=np.uint8), (4, 1))
    Image.fromarray(ramp).save(depth_path)
    return color_path, depth_path


class FakeDepthPipeline:
    """Stands in for a transformers depth-estimation pipeline."""

    def __init__(self):
        self.calls = 0

    def __call__(self, image):
        self.calls += 1
        width, height = image.size
        ramp = np.tile(np.linspace(0, 255, width).astype(np.uint8), (height, 1))
        return {"depth": Image.fromarray(ramp)}


@pytest.fixture
def fake_factory():
    created = []

    def factory(model, device):
        pipe = FakeDepthPipeline()
        created.append(pipe)
        return pipe

    factory.created = created
    return factory
