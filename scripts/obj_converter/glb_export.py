"""
glb_export.py
=============

Write a scene graph subtree to GLTF Binary (GLB).

The root group becomes the scene's single root node, and every mesh node under
it becomes a child node with one non-indexed triangle primitive. All attribute
data goes into one little-endian binary buffer.
"""

from __future__ import annotations

import json
import struct
from typing import Dict, List, Optional

import numpy as np

from scene_graph import BufferGeometry, SceneGraph

GLTF_MAGIC = 0x46546C67
JSON_CHUNK_TYPE = 0x4E4F534A
BIN_CHUNK_TYPE = 0x004E4942

COMPONENT_FLOAT = 5126
TARGET_ARRAY_BUFFER = 34962
MODE_TRIANGLES = 4

DEFAULT_GENERATOR = "obj_converter glb_export.py"


class GlbExportError(Exception):
    pass


def _pad4(data: bytes, fill: bytes) -> bytes:
    return data + fill * ((4 - len(data) % 4) % 4)


def scene_to_glb(
    scene: SceneGraph,
    root: int,
    generator: str = DEFAULT_GENERATOR,
) -> Optional[bytes]:
    """Convert the subtree under *root* to GLB bytes.

    Returns None if no mesh under *root* has any triangles. Raises
    GlbExportError for positions that are NaN or infinite.
    """
    meshes = [node for node in scene.meshes(root) if node.geometry is not None and node.geometry.triangle_count]
    if not meshes:
        return None

    binary_buffer = bytearray()
    buffer_views: List[Dict[str, object]] = []
    accessors: List[Dict[str, object]] = []

    def append_attribute(values: np.ndarray, count: int, accessor_type: str) -> int:
        data = np.ascontiguousarray(values, dtype="<f4").tobytes()
        view_index = len(buffer_views)
        buffer_views.append(
            {
                "buffer": 0,
                "byteOffset": len(binary_buffer),
                "byteLength": len(data),
                "target": TARGET_ARRAY_BUFFER,
            }
        )
        binary_buffer.extend(data)

        accessor_index = len(accessors)
        accessors.append(
            {
                "bufferView": view_index,
                "componentType": COMPONENT_FLOAT,
                "count": count,
                "type": accessor_type,
            }
        )
        return accessor_index

    gltf_meshes: List[Dict[str, object]] = []
    nodes: List[Dict[str, object]] = [{}]
    root_node = scene.node(root)
    if root_node.name is not None:
        nodes[0]["name"] = root_node.name

    for mesh_node in meshes:
        geometry: BufferGeometry = mesh_node.geometry
        if geometry.indices is not None:
            # Expand to the non-indexed layout so every primitive shares one shape.
            order = geometry.indices.astype(np.int64)
            position = geometry.position.reshape(-1, 3)[order].reshape(-1)
            normal = geometry.normal.reshape(-1, 3)[order].reshape(-1) if len(geometry.normal) else geometry.normal
            uv = geometry.uv.reshape(-1, 2)[order].reshape(-1) if len(geometry.uv) else geometry.uv
            geometry = BufferGeometry(position=position, normal=normal, uv=uv)

        if not np.isfinite(geometry.position).all():
            # POSITION min/max must be plain JSON numbers.
            raise GlbExportError(f"Mesh {mesh_node.name!r} has non-finite positions")

        count = geometry.vertex_count
        position_accessor = append_attribute(geometry.position, count, "VEC3")
        bounds_min, bounds_max = geometry.bounds()
        accessors[position_accessor]["min"] = bounds_min
        accessors[position_accessor]["max"] = bounds_max

        attributes: Dict[str, int] = {"POSITION": position_accessor}
        if len(geometry.normal):
            attributes["NORMAL"] = append_attribute(geometry.normal, count, "VEC3")
        if len(geometry.uv):
            attributes["TEXCOORD_0"] = append_attribute(geometry.uv, count, "VEC2")

        mesh_index = len(gltf_meshes)
        gltf_mesh: Dict[str, object] = {"primitives": [{"attributes": attributes, "mode": MODE_TRIANGLES}]}
        node: Dict[str, object] = {"mesh": mesh_index}
        if mesh_node.name is not None:
            gltf_mesh["name"] = mesh_node.name
            node["name"] = mesh_node.name
        gltf_meshes.append(gltf_mesh)

        nodes[0].setdefault("children", []).append(len(nodes))
        nodes.append(node)

    gltf = {
        "asset": {"version": "2.0", "generator": generator},
        "scene": 0,
        "scenes": [{"nodes": [0]}],
        "nodes": nodes,
        "meshes": gltf_meshes,
        "buffers": [{"byteLength": len(binary_buffer)}],
        "bufferViews": buffer_views,
        "accessors": accessors,
    }

    # Encode GLB.
    json_bytes = _pad4(json.dumps(gltf, indent=2, allow_nan=False).encode("utf-8"), b" ")
    bin_bytes = _pad4(bytes(binary_buffer), b"\x00")

    total_length = 12 + 8 + len(json_bytes) + 8 + len(bin_bytes)
    glb = bytearray()
    glb += struct.pack("<III", GLTF_MAGIC, 2, total_length)
    glb += struct.pack("<II", len(json_bytes), JSON_CHUNK_TYPE)
    glb += json_bytes
    glb += struct.pack("<II", len(bin_bytes), BIN_CHUNK_TYPE)
    glb += bin_bytes

    return bytes(glb)


def read_glb_json_chunk(data: bytes) -> Dict[str, object]:
    if len(data) < 20:
        raise ValueError("GLB payload too small")

    magic, version, total_length = struct.unpack_from("<III", data, 0)
    if magic != GLTF_MAGIC:
        raise ValueError("invalid GLB magic")
    if version != 2:
        raise ValueError(f"unsupported GLB version: {version}")
    if total_length > len(data):
        raise ValueError("GLB truncated")

    json_length, json_type = struct.unpack_from("<II", data, 12)
    if json_type != JSON_CHUNK_TYPE:
        raise ValueError("GLB missing JSON chunk")

    json_start = 20
    json_end = json_start + json_length
    if json_end > len(data):
        raise ValueError("GLB JSON chunk truncated")

    payload = json.loads(data[json_start:json_end].decode("utf-8").rstrip(" \t\r\n\x00"))
    if not isinstance(payload, dict):
        raise ValueError("GLB JSON root is not an object")
    return payload
