import numpy as np
import pytest
from PIL import Image

from conftest import opaque
from depth_relief.errors import DepthEstimationError
from depth_relief.generate_depth_map import DepthEstimator, depth_to_image, save_depth_map


def test_model_loads_lazily(fake_factory):
    estimator = DepthEstimator(pipeline_factory=fake_factory)

    assert not estimator.loaded
    estimator.estimate(opaque(6, 4))
    assert estimator.loaded
    assert len(fake_factory.created) == 1


def test_estimate_returns_rgb_raster(fake_factory):
    estimator = DepthEstimator(pipeline_factory=fake_factory)

    depth = estimator.estimate(opaque(6, 4))

    assert depth.mode == "RGB"
    assert depth.size == (6, 4)


def test_results_are_cached_per_instance(fake_factory):
    estimator = DepthEstimator(pipeline_factory=fake_factory)
    image = opaque(6, 4)

    estimator.estimate(image)
    estimator.estimate(image.copy())
    estimator.estimate(opaque(6, 4, seed=9))

    assert len(fake_factory.created) == 1
    assert fake_factory.created[0].calls == 2


def test_submit_runs_asynchronously(fake_factory):
    with DepthEstimator(pipeline_factory=fake_factory) as estimator:
        future = estimator.submit(opaque(5, 5))
        depth = future.result(timeout=30)

    assert depth.size == (5, 5)


def test_close_releases_model(fake_factory):
    estimator = DepthEstimator(pipeline_factory=fake_factory)
    estimator.estimate(opaque(3, 3))

    estimator.close()

    assert not estimator.loaded
    estimator.estimate(opaque(3, 3))
    assert len(fake_factory.created) == 2


def test_load_failure_is_typed():
    def broken(model, device):
        raise OSError("no weights")

    estimator = DepthEstimator(pipeline_factory=broken)

    with pytest.raises(DepthEstimationError):
        estimator.estimate(opaque(3, 3))


def test_inference_failure_is_typed():
    def factory(model, device):
        def pipe(image):
            raise RuntimeError("out of memory")
        return pipe

    with pytest.raises(DepthEstimationError):
        DepthEstimator(pipeline_factory=factory).estimate(opaque(3, 3))


def test_array_depth_output_is_normalized():
    depth = depth_to_image(np.array([[2.0, 4.0], [6.0, 10.0]]))

    values = np.asarray(depth)[:, :, 0]
    assert values.min() == 0
    assert values.max() in (254, 255)


def test_save_depth_map(fake_factory, tmp_path):
    source = tmp_path / "photo.png"
    Image.fromarray(opaque(8, 4)).save(source)
    estimator = DepthEstimator(pipeline_factory=fake_factory)

    out = save_depth_map(estimator, str(source), str(tmp_path / "depth" / "photo_depth.png"))

    assert out.exists()
    assert Image.open(out).size == (8, 4)
