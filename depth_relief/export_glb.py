"""
export_glb.py
Serialize a displaced mesh into a binary glTF (.glb) asset.

The asset holds one textured mesh: positions, normals, UVs, triangle
indices and a single embedded PNG whose RGB is the color image and whose
alpha is the cutout mask (alphaMode MASK). The payload depends only on the
mesh, so repeated exports of an unchanged mesh are byte-identical; only the
download filename carries a timestamp.
"""

import json
import struct
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, NamedTuple, Optional, Tuple

import trimesh

from .config import EXPORT_EXTENSION, EXPORT_MIME_TYPE, EXPORT_PREFIX
from .errors import ExportNotReady, SerializationFailure
from .generate_mesh import DisplacedMesh

GLB_MAGIC = b'glTF'
GLB_HEADER = struct.Struct('<4sII')
GLB_CHUNK = struct.Struct('<II')
CHUNK_JSON = 0x4E4F534A
CHUNK_BIN = 0x004E4942


class ExportArtifact(NamedTuple):
    """A one-shot download: file name, MIME type and GLB payload."""
    filename: str
    mime_type: str
    data: bytes


def export_glb(mesh: Optional[DisplacedMesh]) -> bytes:
    """
    Encode a mesh as GLB bytes.

    Raises:
        ExportNotReady: no mesh has been built
        SerializationFailure: the glTF encoder failed
    """
    if mesh is None:
        raise ExportNotReady("No mesh to export; build a displaced mesh first")
    if not isinstance(mesh, DisplacedMesh):
        raise ExportNotReady(f"Expected a DisplacedMesh, got {type(mesh).__name__}")

    try:
        scene = trimesh.Scene()
        scene.add_geometry(mesh.to_trimesh(), node_name="depth_model", geom_name="depth_model")
        data = scene.export(file_type='glb', include_normals=True)
    except Exception as e:
        raise SerializationFailure(f"GLB encoding failed: {e}") from e

    if data[:4] != GLB_MAGIC:
        raise SerializationFailure("GLB encoder returned data without a glTF header")
    return data


def export_scene_glb(scene: trimesh.Scene) -> bytes:
    """Encode an already assembled scene (e.g. a layer stack) as GLB bytes."""
    try:
        return scene.export(file_type='glb')
    except Exception as e:
        raise SerializationFailure(f"GLB encoding failed: {e}") from e


def export_filename(now: Optional[datetime] = None) -> str:
    """Download name: depth-model-<YYYYmmdd-HHMMSS-ffffff>.glb"""
    now = now or datetime.now()
    return f"{EXPORT_PREFIX}-{now.strftime('%Y%m%d-%H%M%S-%f')}.{EXPORT_EXTENSION}"


def write_artifact(data: bytes, output_dir: str, filename: Optional[str] = None) -> Path:
    """
    Write an encoded asset without overwriting an existing file.
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)
    target = output_path / (filename or export_filename())

    try:
        with open(target, 'xb') as f:
            f.write(data)
    except FileExistsError as e:
        raise SerializationFailure(f"Refusing to overwrite existing export: {target}") from e

    print(f"  ✓ Exported {len(data):,} bytes to: {target}")
    return target


def build_artifact(mesh: Optional[DisplacedMesh], filename: Optional[str] = None) -> ExportArtifact:
    data = export_glb(mesh)
    return ExportArtifact(filename or export_filename(), EXPORT_MIME_TYPE, data)


def save_export(mesh: Optional[DisplacedMesh], output_dir: str, filename: Optional[str] = None) -> Path:
    """
    Encode a mesh and write it as a one-shot download artifact.

    Nothing is written when encoding fails.
    """
    artifact = build_artifact(mesh, filename)
    return write_artifact(artifact.data, output_dir, artifact.filename)


def read_glb(data: bytes) -> Tuple[Dict[str, Any], bytes]:
    """
    Split a GLB container into its JSON document and binary chunk.
    """
    if len(data) < GLB_HEADER.size + GLB_CHUNK.size:
        raise ValueError("Data too short for a GLB container")

    magic, version, length = GLB_HEADER.unpack_from(data, 0)
    if magic != GLB_MAGIC:
        raise ValueError(f"Bad GLB magic: {magic!r}")
    if version != 2:
        raise ValueError(f"Unsupported GLB version: {version}")
    if length != len(data):
        raise ValueError(f"GLB length field {length} does not match data size {len(data)}")

    offset = GLB_HEADER.size
    document = None
    binary = b''
    while offset < length:
        chunk_length, chunk_type = GLB_CHUNK.unpack_from(data, offset)
        offset += GLB_CHUNK.size
        chunk = data[offset:offset + chunk_length]
        offset += chunk_length
        if chunk_type == CHUNK_JSON:
            document = json.loads(chunk.decode('utf-8'))
        elif chunk_type == CHUNK_BIN:
            binary = chunk

    if document is None:
        raise ValueError("GLB container has no JSON chunk")
    return document, binary
