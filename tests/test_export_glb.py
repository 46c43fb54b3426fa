import re
from datetime import datetime

import pytest

from depth_relief.errors import ExportNotReady, SerializationFailure
from depth_relief.export_glb import build_artifact, export_filename, export_glb, read_glb, save_export, write_artifact
from depth_relief.generate_mesh import build_displaced_mesh


@pytest.fixture
def mesh(random_pair):
    return build_displaced_mesh(random_pair, displacement_scale=1.5)


def test_export_before_build_is_rejected():
    with pytest.raises(ExportNotReady):
        export_glb(None)


def test_no_file_written_when_not_ready(tmp_path):
    with pytest.raises(ExportNotReady):
        save_export(None, str(tmp_path))

    assert list(tmp_path.iterdir()) == []


def test_export_rejects_other_objects():
    with pytest.raises(ExportNotReady):
        export_glb("mesh")


def test_glb_contains_geometry_and_texture(mesh):
    document, binary = read_glb(export_glb(mesh))

    assert len(document["meshes"]) == 1
    primitive = document["meshes"][0]["primitives"][0]
    attributes = primitive["attributes"]
    assert {"POSITION", "NORMAL", "TEXCOORD_0"} <= set(attributes)
    assert document["accessors"][attributes["POSITION"]]["count"] == mesh.vertex_count
    assert document["accessors"][primitive["indices"]]["count"] == mesh.face_count * 3
    assert len(document["images"]) == 1
    assert len(document["materials"]) == 1
    assert len(binary) > 0


def test_buffer_views_fit_in_binary_chunk(mesh):
    document, binary = read_glb(export_glb(mesh))

    for view in document["bufferViews"]:
        assert view.get("byteOffset", 0) + view["byteLength"] <= len(binary)


def test_repeated_exports_are_identical(mesh):
    assert export_glb(mesh) == export_glb(mesh)


def test_identical_meshes_export_identically(random_pair):
    first = build_displaced_mesh(random_pair, displacement_scale=2.0)
    second = build_displaced_mesh(random_pair, displacement_scale=2.0)

    assert export_glb(first) == export_glb(second)


def test_filename_is_timestamped():
    name = export_filename(datetime(2024, 5, 6, 7, 8, 9, 123456))

    assert name == "depth-model-20240506-070809-123456.glb"
    assert re.fullmatch(r"depth-model-\d{8}-\d{6}-\d{6}\.glb", export_filename())


def test_save_export_writes_file(mesh, tmp_path):
    path = save_export(mesh, str(tmp_path))

    assert path.parent == tmp_path
    assert path.read_bytes() == export_glb(mesh)


def test_write_artifact_refuses_overwrite(tmp_path):
    write_artifact(b"glTF-one", str(tmp_path), "a.glb")

    with pytest.raises(SerializationFailure):
        write_artifact(b"glTF-two", str(tmp_path), "a.glb")
    assert (tmp_path / "a.glb").read_bytes() == b"glTF-one"


def test_read_glb_rejects_other_data():
    with pytest.raises(ValueError):
        read_glb(b"PK\x03\x04" + b"\x00" * 32)


def test_artifact_carries_mime_type(mesh):
    artifact = build_artifact(mesh)

    assert artifact.mime_type == "model/gltf-binary"
    assert artifact.filename.endswith(".glb")
    assert artifact.data == export_glb(mesh)
