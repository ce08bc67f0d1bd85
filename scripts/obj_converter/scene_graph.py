"""
scene_graph.py
==============

Minimal scene hierarchy used as the output target of the OBJ parser.

Nodes live in an arena owned by ``SceneGraph`` and are addressed by integer
handles. A parent keeps the handles of its children; a child keeps the handle
of its parent. Mesh nodes carry a ``BufferGeometry`` with flat float32
attribute buffers.
"""

from __future__ import annotations

import enum
from collections import deque
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np


class SceneGraphError(Exception):
    pass


class NodeKind(enum.Enum):
    GROUP = "group"
    MESH = "mesh"


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

@dataclass
class BufferGeometry:
    """Triangle geometry with compiled attribute buffers.

    Every consecutive triplet of ``position`` is one vertex, ``normal`` holds
    the matching normals and ``uv`` one pair per vertex. Without ``indices``
    every consecutive triplet of vertices is one triangle.
    """

    position: np.ndarray
    normal: np.ndarray
    uv: np.ndarray
    indices: Optional[np.ndarray] = None

    @classmethod
    def from_buffers(
        cls,
        position: Sequence[float],
        normal: Sequence[float],
        uv: Sequence[float],
        indices: Optional[Sequence[int]] = None,
    ) -> "BufferGeometry":
        geometry = cls(
            position=np.asarray(position, dtype=np.float32).reshape(-1),
            normal=np.asarray(normal, dtype=np.float32).reshape(-1),
            uv=np.asarray(uv, dtype=np.float32).reshape(-1),
            indices=None if indices is None else np.asarray(indices, dtype=np.uint32).reshape(-1),
        )
        geometry.validate()
        return geometry

    @property
    def vertex_count(self) -> int:
        return len(self.position) // 3

    @property
    def triangle_count(self) -> int:
        if self.indices is not None:
            return len(self.indices) // 3
        return self.vertex_count // 3

    def validate(self) -> None:
        if len(self.position) % 3 != 0:
            raise SceneGraphError(f"Position buffer length {len(self.position)} is not a multiple of 3")
        count = self.vertex_count
        if len(self.normal) not in (0, count * 3):
            raise SceneGraphError(
                f"Normal buffer has {len(self.normal)} values, expected {count * 3}"
            )
        if len(self.uv) not in (0, count * 2):
            raise SceneGraphError(f"UV buffer has {len(self.uv)} values, expected {count * 2}")
        if self.indices is not None:
            if len(self.indices) % 3 != 0:
                raise SceneGraphError(f"Index buffer length {len(self.indices)} is not a multiple of 3")
            if len(self.indices) and int(self.indices.max()) >= count:
                raise SceneGraphError(
                    f"Index {int(self.indices.max())} out of range for {count} vertices"
                )

    def bounds(self) -> Tuple[List[float], List[float]]:
        """Return per-axis (min, max) of the positions."""
        if self.vertex_count == 0:
            return [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]
        points = self.position.reshape(-1, 3)
        return points.min(axis=0).tolist(), points.max(axis=0).tolist()


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

@dataclass
class Node:
    handle: int
    kind: NodeKind
    name: Optional[str] = None
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)
    geometry: Optional[BufferGeometry] = None
    visible: bool = True


class SceneGraph:
    """Arena of scene nodes addressed by integer handles."""

    def __init__(self) -> None:
        self._nodes: List[Node] = []

    def __len__(self) -> int:
        return len(self._nodes)

    def _add_node(self, kind: NodeKind, geometry: Optional[BufferGeometry] = None) -> int:
        handle = len(self._nodes)
        self._nodes.append(Node(handle=handle, kind=kind, geometry=geometry))
        return handle

    def create_group(self) -> int:
        return self._add_node(NodeKind.GROUP)

    def create_mesh(
        self,
        positions: Sequence[float],
        normals: Sequence[float],
        uvs: Sequence[float],
        indices: Optional[Sequence[int]] = None,
    ) -> int:
        geometry = BufferGeometry.from_buffers(positions, normals, uvs, indices)
        return self._add_node(NodeKind.MESH, geometry)

    def node(self, handle: int) -> Node:
        if not 0 <= handle < len(self._nodes):
            raise SceneGraphError(f"Unknown node handle: {handle}")
        return self._nodes[handle]

    def set_name(self, handle: int, name: Optional[str]) -> None:
        self.node(handle).name = name

    def attach(self, parent: int, child: int) -> None:
        """Attach *child* under *parent*, detaching it from any previous parent."""
        parent_node = self.node(parent)
        child_node = self.node(child)

        ancestor: Optional[int] = parent
        while ancestor is not None:
            if ancestor == child:
                raise SceneGraphError(f"Cannot attach node {child} under its own descendant {parent}")
            ancestor = self._nodes[ancestor].parent

        if child_node.parent is not None:
            self._nodes[child_node.parent].children.remove(child)

        child_node.parent = parent
        parent_node.children.append(child)

    def parent(self, handle: int) -> Optional[int]:
        return self.node(handle).parent

    def children(self, handle: int) -> List[int]:
        return list(self.node(handle).children)

    def bfs(self, handle: int) -> Iterator[Node]:
        """Breadth-first traversal starting at (and including) *handle*."""
        queue = deque([self.node(handle)])
        while queue:
            current = queue.popleft()
            yield current
            queue.extend(self._nodes[child] for child in current.children)

    def dfs(self, handle: int) -> Iterator[Node]:
        """Depth-first pre-order traversal starting at (and including) *handle*."""
        stack = [self.node(handle)]
        while stack:
            current = stack.pop()
            yield current
            stack.extend(self._nodes[child] for child in reversed(current.children))

    def meshes(self, handle: int) -> List[Node]:
        return [node for node in self.dfs(handle) if node.kind is NodeKind.MESH]

    def find_by_name(self, name: str) -> Optional[Node]:
        for node in self._nodes:
            if node.name == name:
                return node
        return None
