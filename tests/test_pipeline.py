import threading

import pytest

from conftest import gray, opaque
from depth_relief.config import SynthesisParams
from depth_relief.errors import DecodeFailure, DepthEstimationError, ExportNotReady, InvalidParameter
from depth_relief.generate_depth_map import DepthEstimator
from depth_relief.generate_layers import LayerStack
from depth_relief.generate_mesh import DisplacedMesh
from depth_relief.pipeline import PARALLAX, SMOOTH, ReliefPipeline

COLOR = opaque(4, 4)
DEPTH = gray(list(range(0, 256, 16)), 4, 4)


def test_smooth_and_parallax_results():
    pipeline = ReliefPipeline()

    mesh = pipeline.synthesize(COLOR, DEPTH, mode=SMOOTH)
    stack = pipeline.synthesize(COLOR, DEPTH, mode=PARALLAX, params=SynthesisParams(layer_count=4))

    assert isinstance(mesh, DisplacedMesh)
    assert isinstance(stack, LayerStack)
    assert pipeline.current_mesh is mesh
    assert pipeline.current_layers is stack


def test_unchanged_inputs_reuse_result():
    pipeline = ReliefPipeline()
    params = SynthesisParams(displacement_scale=2.0)

    first = pipeline.synthesize(COLOR, DEPTH, params=params)
    second = pipeline.synthesize(COLOR.copy(), DEPTH.copy(), params=SynthesisParams(displacement_scale=2.0))

    assert second is first
    assert pipeline.builds == 1


def test_changed_scale_rebuilds_wholesale():
    pipeline = ReliefPipeline()

    first = pipeline.synthesize(COLOR, DEPTH, params=SynthesisParams(displacement_scale=1.0))
    second = pipeline.synthesize(COLOR, DEPTH, params=SynthesisParams(displacement_scale=2.0))

    assert second is not first
    assert pipeline.current_mesh is second
    assert pipeline.builds == 2


def test_layer_count_only_keys_parallax():
    pipeline = ReliefPipeline()

    mesh = pipeline.synthesize(COLOR, DEPTH, mode=SMOOTH, params=SynthesisParams(layer_count=3))
    same_mesh = pipeline.synthesize(COLOR, DEPTH, mode=SMOOTH, params=SynthesisParams(layer_count=9))
    stack = pipeline.synthesize(COLOR, DEPTH, mode=PARALLAX, params=SynthesisParams(layer_count=3))
    new_stack = pipeline.synthesize(COLOR, DEPTH, mode=PARALLAX, params=SynthesisParams(layer_count=9))

    assert same_mesh is mesh
    assert new_stack is not stack
    assert new_stack.layer_count == 9


def test_depth_tolerance_does_not_change_output():
    plain = ReliefPipeline().synthesize(COLOR, DEPTH)
    tolerant = ReliefPipeline().synthesize(COLOR, DEPTH, params=SynthesisParams(depth_tolerance=0.2))

    assert plain.digest() == tolerant.digest()


def test_failed_build_keeps_previous_mesh():
    pipeline = ReliefPipeline()
    mesh = pipeline.synthesize(COLOR, DEPTH)

    with pytest.raises(DecodeFailure):
        pipeline.synthesize(COLOR, b"broken depth")

    assert pipeline.current_mesh is mesh
    assert pipeline.builds == 1


def test_export_before_build_is_rejected():
    with pytest.raises(ExportNotReady):
        ReliefPipeline().request_export()


def test_export_current_mesh_is_stable():
    pipeline = ReliefPipeline()
    pipeline.synthesize(COLOR, DEPTH)

    first = pipeline.request_export()
    second = pipeline.request_export()

    assert first[:4] == b"glTF"
    assert first == second


def test_parallax_only_pipeline_has_nothing_to_export():
    pipeline = ReliefPipeline()
    pipeline.synthesize(COLOR, DEPTH, mode=PARALLAX)

    with pytest.raises(ExportNotReady):
        pipeline.request_export()


def test_save_export(tmp_path):
    pipeline = ReliefPipeline()
    pipeline.synthesize(COLOR, DEPTH)

    path = pipeline.save_export(str(tmp_path))

    assert path.name.startswith("depth-model-")
    assert path.suffix == ".glb"


def test_export_waits_for_build_in_progress():
    pipeline = ReliefPipeline()
    pipeline.synthesize(COLOR, DEPTH)
    results = []

    with pipeline._lock:
        worker = threading.Thread(target=lambda: results.append(pipeline.request_export()))
        worker.start()
        worker.join(timeout=0.2)
        assert worker.is_alive()
        assert results == []

    worker.join(timeout=30)
    assert len(results) == 1


def test_depth_estimated_when_missing(fake_factory):
    pipeline = ReliefPipeline(estimator=DepthEstimator(pipeline_factory=fake_factory))

    mesh = pipeline.synthesize(COLOR)

    assert mesh.vertex_count == 25
    assert len(fake_factory.created) == 1


def test_missing_depth_without_estimator():
    with pytest.raises(DepthEstimationError):
        ReliefPipeline().synthesize(COLOR)


def test_unknown_mode():
    with pytest.raises(InvalidParameter):
        ReliefPipeline().synthesize(COLOR, DEPTH, mode="voxels")


def test_clear_drops_results():
    pipeline = ReliefPipeline()
    pipeline.synthesize(COLOR, DEPTH)

    pipeline.clear()

    assert pipeline.current_mesh is None
