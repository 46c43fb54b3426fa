"""
generate_depth_map.py
Monocular depth estimation through a HuggingFace depth-estimation pipeline.

The model is held by an explicit DepthEstimator handle: nothing is loaded
until the first estimate, results are cached per handle, and close()
releases the model and its worker thread.

Requirements:
    pip install torch transformers

Depth convention:
    brighter = nearer (the raw Depth Anything output)
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import numpy as np
from PIL import Image

from .config import DEPTH_MODEL
from .errors import DepthEstimationError, ReliefError
from .pixel_buffers import ImageSource, decode_image, source_identity

PipelineFactory = Callable[[str, Optional[Union[int, str]]], Callable[[Image.Image], Dict[str, Any]]]


def transformers_pipeline(model: str, device: Optional[Union[int, str]] = None):
    """Build a transformers depth-estimation pipeline (CUDA when available)."""
    try:
        import torch
        from transformers import pipeline
    except ImportError as e:
        raise DepthEstimationError(
            "PyTorch and transformers are required. Install with: pip install 'depth-relief[depth]'"
        ) from e

    if device is None:
        device = 0 if torch.cuda.is_available() else -1

    return pipeline(task="depth-estimation", model=model, device=device)


def depth_to_image(depth: Any) -> Image.Image:
    """
    Convert a pipeline depth output to an 8-bit RGB raster.

    PIL outputs are used as-is; raw arrays are min-max normalized.
    """
    if isinstance(depth, Image.Image):
        return depth.convert('RGB')

    depth_np = np.asarray(depth, dtype=np.float32).squeeze()
    if depth_np.ndim != 2:
        raise DepthEstimationError(f"Unexpected depth output shape: {depth_np.shape}")
    depth_np = (depth_np - depth_np.min()) / (depth_np.max() - depth_np.min() + 1e-8)
    depth_uint8 = (depth_np * 255).astype(np.uint8)
    return Image.fromarray(depth_uint8).convert('RGB')


class DepthEstimator:
    """
    Lazily-initialized handle around a depth model.

    Args:
        model: HuggingFace model id
        device: Pipeline device (None = auto)
        pipeline_factory: Callable (model, device) -> pipeline; defaults to
            transformers_pipeline
    """

    def __init__(
        self,
        model: str = DEPTH_MODEL,
        device: Optional[Union[int, str]] = None,
        pipeline_factory: Optional[PipelineFactory] = None
    ):
        self.model = model
        self.device = device
        self._pipeline_factory = pipeline_factory or transformers_pipeline
        self._pipe = None
        self._cache: Dict[str, Image.Image] = {}
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.RLock()

    @property
    def loaded(self) -> bool:
        return self._pipe is not None

    def load(self):
        """Load the model if it is not loaded yet and return the pipeline."""
        with self._lock:
            if self._pipe is None:
                print(f"Loading depth model ({self.model})...")
                try:
                    self._pipe = self._pipeline_factory(self.model, self.device)
                except ReliefError:
                    raise
                except Exception as e:
                    raise DepthEstimationError(f"Could not load depth model {self.model}: {e}") from e
                print("Depth model loaded")
            return self._pipe

    def estimate(self, source: ImageSource) -> Image.Image:
        """
        Estimate a depth map for an image.

        Returns:
            RGB depth image; repeated calls with the same source reuse the
            cached result
        """
        key = source_identity(source)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached.copy()

        image = decode_image(source).convert('RGB')
        pipe = self.load()

        print(f"  Estimating depth ({image.size[0]}x{image.size[1]})...")
        try:
            result = pipe(image)
            depth = result["depth"]
        except Exception as e:
            raise DepthEstimationError(f"Depth estimation failed: {e}") from e

        depth_image = depth_to_image(depth)
        with self._lock:
            self._cache[key] = depth_image
        return depth_image.copy()

    def submit(self, source: ImageSource) -> Future:
        """Run estimate() on the handle's worker thread."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="depth-estimator")
            return self._executor.submit(self.estimate, source)

    def close(self) -> None:
        """Wait for pending work, then drop the model and cached results."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        with self._lock:
            self._pipe = None
            self._cache.clear()

    def __enter__(self) -> 'DepthEstimator':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def save_depth_map(estimator: DepthEstimator, image_path: str, output_path: str) -> Path:
    """Estimate depth for an image file and save it as PNG."""
    depth_image = estimator.estimate(image_path)

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    depth_image.save(output_path)

    print(f"✓ Saved depth map to: {output_path}")
    return output_path
