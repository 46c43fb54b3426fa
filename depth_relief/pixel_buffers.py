"""
pixel_buffers.py
Decode color and depth images into equal-dimension RGBA pixel buffers.

Depth maps are read as near-grayscale RGBA rasters; a depth sample is the
plain mean of R, G and B. The depth image is always drawn into the color
image's dimensions before any pixel-for-pixel comparison.
"""

import hashlib
import io
import os
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple, Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image

from .errors import DecodeFailure, DimensionMismatch

ImageSource = Union[str, os.PathLike, bytes, bytearray, Image.Image, np.ndarray]

# Integer grayscale modes wider than 8 bits (16-bit PNG depth maps)
WIDE_GRAYSCALE_MODES = ('I', 'I;16', 'I;16L', 'I;16B', 'I;16N')


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True, eq=False)
class PixelBuffer:
    """
    Row-major RGBA raster, one uint8 per channel.

    `data` has shape (H, W, 4) and is marked read-only; buffers are owned by
    the synthesis pass that produced them and are never edited in place.
    """
    data: np.ndarray

    def __post_init__(self):
        if self.data.dtype != np.uint8 or self.data.ndim != 3 or self.data.shape[2] != 4:
            raise ValueError(f"PixelBuffer expects uint8 (H, W, 4) data, got {self.data.dtype} {self.data.shape}")
        self.data.flags.writeable = False

    @classmethod
    def from_array(cls, array: np.ndarray) -> 'PixelBuffer':
        data = np.array(array, dtype=np.uint8, copy=True, order='C')
        return cls(data)

    @classmethod
    def from_image(cls, image: Image.Image, size: Optional[Tuple[int, int]] = None) -> 'PixelBuffer':
        """
        Build a buffer from a PIL image, optionally resampled to size=(width, height).
        """
        rgba = np.asarray(image.convert('RGBA'), dtype=np.uint8)
        if size is not None and (rgba.shape[1], rgba.shape[0]) != tuple(size):
            if min(size) <= 0 or rgba.shape[0] == 0 or rgba.shape[1] == 0:
                raise DimensionMismatch(f"Cannot resample {rgba.shape[1]}x{rgba.shape[0]} image to {size[0]}x{size[1]}")
            rgba = cv2.resize(rgba, (int(size[0]), int(size[1])), interpolation=cv2.INTER_LINEAR)
        return cls.from_array(rgba)

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def flat(self) -> np.ndarray:
        """Row-major view of length width * height * 4."""
        return self.data.reshape(-1)

    def alpha(self) -> np.ndarray:
        return self.data[:, :, 3]

    def depth_samples(self) -> np.ndarray:
        """(H, W) float64 mean of the R, G, B channels, in [0, 255]."""
        return self.data[:, :, :3].astype(np.float64).sum(axis=2) / 3.0

    def to_image(self) -> Image.Image:
        return Image.fromarray(np.ascontiguousarray(self.data))

    def digest(self) -> str:
        h = hashlib.sha256()
        h.update(np.asarray(self.data.shape, dtype=np.int64).tobytes())
        h.update(self.data.tobytes())
        return h.hexdigest()


class BufferPair(NamedTuple):
    color: PixelBuffer
    depth: PixelBuffer


# =============================================================================
# DECODING
# =============================================================================

def decode_image(source: ImageSource) -> Image.Image:
    """
    Decode an image into RGBA.

    Args:
        source: File path, encoded bytes, PIL image, or (H, W[, 3|4]) uint8 array.
            RGB inputs get an implicit opaque alpha channel.
            16-bit grayscale keeps its high byte, as cv2.IMREAD_GRAYSCALE reads it.

    Returns:
        PIL image in RGBA mode

    Raises:
        DecodeFailure: the source is missing, unreadable or not an image
    """
    try:
        if isinstance(source, Image.Image):
            source.load()
            return _to_eight_bit(source).convert('RGBA')
        if isinstance(source, np.ndarray):
            if source.dtype != np.uint8 or source.ndim not in (2, 3):
                raise ValueError(f"Unsupported array {source.dtype} {source.shape}")
            if source.ndim == 3 and source.shape[2] not in (3, 4):
                raise ValueError(f"Unsupported channel count {source.shape[2]}")
            return Image.fromarray(np.ascontiguousarray(source)).convert('RGBA')
        if isinstance(source, (bytes, bytearray)):
            with Image.open(io.BytesIO(bytes(source))) as img:
                img.load()
                return _to_eight_bit(img).convert('RGBA')
        with Image.open(source) as img:
            img.load()
            return _to_eight_bit(img).convert('RGBA')
    except (OSError, ValueError, TypeError) as e:
        raise DecodeFailure(f"Could not decode image {_describe(source)}: {e}") from e


def extract_buffer_pair(color_source: ImageSource, depth_source: ImageSource) -> BufferPair:
    """
    Decode a color image and a depth image into buffers of the color image's size.

    The depth image is resampled to the color dimensions; it is never
    cropped or truncated.

    Raises:
        DecodeFailure: either image could not be decoded
        DimensionMismatch: the two buffers could not be brought to one size
    """
    color_image = decode_image(color_source)
    depth_image = decode_image(depth_source)

    width, height = color_image.size
    if width <= 0 or height <= 0:
        raise DimensionMismatch(f"Color image has no pixels ({width}x{height})")

    color = PixelBuffer.from_image(color_image)
    depth = PixelBuffer.from_image(depth_image, size=(width, height))

    if depth.data.shape != color.data.shape:
        raise DimensionMismatch(
            f"Depth buffer {depth.width}x{depth.height} does not match color buffer {color.width}x{color.height}"
        )
    return BufferPair(color, depth)


def source_identity(source: ImageSource) -> str:
    """
    Stable identity string for an image source, used as a memoization key.

    Paths are keyed on resolved location, size and modification time;
    in-memory sources on a hash of their content.
    """
    if isinstance(source, Image.Image):
        h = hashlib.sha1()
        h.update(f"{source.mode}:{source.size}".encode())
        h.update(source.tobytes())
        return f"pil:{h.hexdigest()}"
    if isinstance(source, np.ndarray):
        h = hashlib.sha1()
        h.update(f"{source.dtype}:{source.shape}".encode())
        h.update(np.ascontiguousarray(source).tobytes())
        return f"array:{h.hexdigest()}"
    if isinstance(source, (bytes, bytearray)):
        return f"bytes:{hashlib.sha1(bytes(source)).hexdigest()}"

    path = Path(source).resolve()
    try:
        stat = path.stat()
    except OSError as e:
        raise DecodeFailure(f"Could not read image {path}: {e}") from e
    return f"path:{path}:{stat.st_size}:{stat.st_mtime_ns}"


def _to_eight_bit(image: Image.Image) -> Image.Image:
    if image.mode not in WIDE_GRAYSCALE_MODES:
        return image
    values = np.clip(np.asarray(image).astype(np.int64), 0, 65535)
    return Image.fromarray((values >> 8).astype(np.uint8))


def _describe(source: ImageSource) -> str:
    if isinstance(source, (str, os.PathLike)):
        return str(source)
    if isinstance(source, (bytes, bytearray)):
        return f"<{len(source)} bytes>"
    return f"<{type(source).__name__}>"
