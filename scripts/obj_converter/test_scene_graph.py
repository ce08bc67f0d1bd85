#!/usr/bin/env python3
import unittest
from pathlib import Path
import sys

import numpy as np


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import scene_graph as sg


TRIANGLE_POSITIONS = [0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0, 0.0]
TRIANGLE_NORMALS = [0.0, 0.0, 1.0] * 3
TRIANGLE_UVS = [0.0, 0.0, 1.0, 0.0, 0.0, 1.0]


def _triangle_mesh(scene: sg.SceneGraph, name=None) -> int:
    handle = scene.create_mesh(TRIANGLE_POSITIONS, TRIANGLE_NORMALS, TRIANGLE_UVS, None)
    scene.set_name(handle, name)
    return handle


class BufferGeometryTests(unittest.TestCase):
    def test_from_buffers_converts_to_float32(self) -> None:
        geometry = sg.BufferGeometry.from_buffers(TRIANGLE_POSITIONS, TRIANGLE_NORMALS, TRIANGLE_UVS)
        self.assertEqual(geometry.position.dtype, np.float32)
        self.assertEqual(geometry.uv.dtype, np.float32)
        self.assertEqual(geometry.vertex_count, 3)
        self.assertEqual(geometry.triangle_count, 1)
        self.assertIsNone(geometry.indices)

    def test_indexed_geometry_counts_index_triplets(self) -> None:
        geometry = sg.BufferGeometry.from_buffers(
            TRIANGLE_POSITIONS, TRIANGLE_NORMALS, TRIANGLE_UVS, indices=[0, 1, 2, 2, 1, 0]
        )
        self.assertEqual(geometry.indices.dtype, np.uint32)
        self.assertEqual(geometry.triangle_count, 2)

    def test_bounds(self) -> None:
        geometry = sg.BufferGeometry.from_buffers([-1, 2, 3, 4, -5, 6], [], [])
        self.assertEqual(geometry.bounds(), ([-1.0, -5.0, 3.0], [4.0, 2.0, 6.0]))

    def test_rejects_partial_vertex(self) -> None:
        with self.assertRaises(sg.SceneGraphError):
            sg.BufferGeometry.from_buffers([0.0, 1.0], [], [])

    def test_rejects_mismatched_normals(self) -> None:
        with self.assertRaises(sg.SceneGraphError):
            sg.BufferGeometry.from_buffers(TRIANGLE_POSITIONS, [0.0, 0.0, 1.0], TRIANGLE_UVS)

    def test_rejects_mismatched_uvs(self) -> None:
        with self.assertRaises(sg.SceneGraphError):
            sg.BufferGeometry.from_buffers(TRIANGLE_POSITIONS, TRIANGLE_NORMALS, [0.0, 0.0])

    def test_rejects_out_of_range_index(self) -> None:
        with self.assertRaises(sg.SceneGraphError):
            sg.BufferGeometry.from_buffers(TRIANGLE_POSITIONS, [], [], indices=[0, 1, 3])


class SceneGraphTests(unittest.TestCase):
    def test_create_and_attach(self) -> None:
        scene = sg.SceneGraph()
        group = scene.create_group()
        mesh = _triangle_mesh(scene, "Tri")
        scene.attach(group, mesh)

        self.assertEqual(len(scene), 2)
        self.assertEqual(scene.children(group), [mesh])
        self.assertEqual(scene.parent(mesh), group)
        self.assertIsNone(scene.parent(group))
        self.assertIs(scene.node(group).kind, sg.NodeKind.GROUP)
        self.assertIs(scene.node(mesh).kind, sg.NodeKind.MESH)
        self.assertEqual(scene.node(mesh).name, "Tri")
        self.assertTrue(scene.node(mesh).visible)

    def test_attach_moves_node_to_new_parent(self) -> None:
        scene = sg.SceneGraph()
        first = scene.create_group()
        second = scene.create_group()
        mesh = _triangle_mesh(scene)
        scene.attach(first, mesh)
        scene.attach(second, mesh)
        self.assertEqual(scene.children(first), [])
        self.assertEqual(scene.children(second), [mesh])
        self.assertEqual(scene.parent(mesh), second)

    def test_attach_rejects_cycles(self) -> None:
        scene = sg.SceneGraph()
        outer = scene.create_group()
        inner = scene.create_group()
        scene.attach(outer, inner)
        with self.assertRaises(sg.SceneGraphError):
            scene.attach(inner, outer)
        with self.assertRaises(sg.SceneGraphError):
            scene.attach(inner, inner)

    def test_unknown_handle(self) -> None:
        scene = sg.SceneGraph()
        with self.assertRaises(sg.SceneGraphError):
            scene.node(0)
        group = scene.create_group()
        with self.assertRaises(sg.SceneGraphError):
            scene.attach(group, 5)
        with self.assertRaises(sg.SceneGraphError):
            scene.set_name(-1, "nope")

    def test_children_returns_a_copy(self) -> None:
        scene = sg.SceneGraph()
        group = scene.create_group()
        scene.attach(group, _triangle_mesh(scene))
        scene.children(group).clear()
        self.assertEqual(len(scene.children(group)), 1)

    def test_traversal_orders(self) -> None:
        #        0
        #      /   \
        #     1     2
        #    / \     \
        #   3   4     5
        scene = sg.SceneGraph()
        handles = [scene.create_group() for _ in range(6)]
        scene.attach(0, 1)
        scene.attach(0, 2)
        scene.attach(1, 3)
        scene.attach(1, 4)
        scene.attach(2, 5)

        self.assertEqual([node.handle for node in scene.bfs(0)], [0, 1, 2, 3, 4, 5])
        self.assertEqual([node.handle for node in scene.dfs(0)], [0, 1, 3, 4, 2, 5])
        self.assertEqual([node.handle for node in scene.dfs(2)], [2, 5])
        self.assertEqual(len(handles), 6)

    def test_meshes_and_find_by_name(self) -> None:
        scene = sg.SceneGraph()
        root = scene.create_group()
        sub = scene.create_group()
        scene.set_name(sub, "Sub")
        scene.attach(root, sub)
        first = _triangle_mesh(scene, "First")
        second = _triangle_mesh(scene, "Second")
        scene.attach(sub, first)
        scene.attach(root, second)

        self.assertEqual([node.handle for node in scene.meshes(root)], [first, second])
        self.assertEqual(scene.find_by_name("Sub").handle, sub)
        self.assertEqual(scene.find_by_name("Second").handle, second)
        self.assertIsNone(scene.find_by_name("Missing"))


if __name__ == "__main__":
    unittest.main()
