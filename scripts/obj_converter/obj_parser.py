"""
obj_parser.py
=============

Parser for ASCII Wavefront OBJ text.

The parser turns OBJ text into one mesh node per object/group, attached under
a root group node of a scene graph. Every triangle corner gets its own copy of
position, normal and UV data (no index buffer is produced).

Supported commands: ``v``, ``vn``, ``vt``, ``f``, ``o``, ``g``. Everything
else (``vp``, ``l``, ``s``, ``usemtl``, ``mtllib``, curves and surfaces, ...)
is either ignored or rejected, depending on ``ObjParseOptions``.

Parsing is optimistic:
  - extra arguments after a command are ignored,
  - optional numbers that do not parse fall back to their default,
  - faces with fewer than three corners are ignored,
  - triangles whose vertex references do not parse are ignored,
  - texture/normal references that are absent on any corner of a triangle are
    replaced for the whole triangle (UV ``(0, 0)``, geometric face normal).

Required ``v``/``vn``/``vt`` numbers are not optional since later reference
numbers depend on them, so a malformed one aborts the parse.
"""

from __future__ import annotations

import enum
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Set, Tuple

import numpy as np

from scene_graph import SceneGraph

I32_MIN = -(2 ** 31)
I32_MAX = 2 ** 31 - 1
INTEGER_PATTERN = re.compile(r"^[+-]?[0-9]+$")

DEFAULT_UV: Tuple[float, float] = (0.0, 0.0)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ObjParseError(Exception):
    def __init__(self, line_num: int, message: str) -> None:
        super().__init__(f"line {line_num}: {message}")
        self.line_num = line_num


class InvalidSyntaxError(ObjParseError):
    def __init__(self, line_num: int, expected_num_args: range, expected_type: str) -> None:
        if len(expected_num_args) == 1:
            count = str(expected_num_args.start)
        else:
            count = f"{expected_num_args.start} to {expected_num_args.stop - 1}"
        super().__init__(line_num, f"expected {count} arguments of type {expected_type}")
        self.expected_num_args = expected_num_args
        self.expected_type = expected_type


class UnsupportedCommandError(ObjParseError):
    def __init__(self, line_num: int, command: str) -> None:
        super().__init__(line_num, f"unsupported command {command!r}")
        self.command = command


class InvalidReferenceNumberError(ObjParseError):
    def __init__(self, line_num: int, data_type: str, reference_number: int) -> None:
        super().__init__(line_num, f"invalid {data_type} reference number {reference_number}")
        self.data_type = data_type
        self.reference_number = reference_number


# ---------------------------------------------------------------------------
# Options / results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ObjParseOptions:
    # True: unsupported commands abort the parse. False: they are skipped.
    error_on_unsupported_data_types: bool = False
    # True: out-of-range vt/vn references abort the parse. False: defaults are
    # used and the reference number is recorded. Invalid v references always
    # abort.
    error_on_invalid_reference_number: bool = False


class SceneBuilder(Protocol):
    def create_group(self) -> int: ...

    def create_mesh(
        self,
        positions: Sequence[float],
        normals: Sequence[float],
        uvs: Sequence[float],
        indices: Optional[Sequence[int]] = None,
    ) -> int: ...

    def attach(self, parent: int, child: int) -> None: ...

    def set_name(self, handle: int, name: Optional[str]) -> None: ...


@dataclass
class ObjParseResult:
    scene: SceneBuilder
    # Root group node holding one mesh node per non-empty object.
    group: int
    # vt reference numbers replaced by UV (0, 0).
    default_uvs: Set[int] = field(default_factory=set)
    # vn reference numbers replaced by the face normal.
    default_normals: Set[int] = field(default_factory=set)

    @property
    def root(self) -> int:
        return self.group


class ObjCommand(enum.Enum):
    VERTEX = "v"
    VERTEX_NORMAL = "vn"
    TEXTURE_VERTEX = "vt"
    FACE = "f"
    OBJECT_NAME = "o"
    GROUP_NAME = "g"

    @classmethod
    def from_keyword(cls, keyword: str) -> Optional["ObjCommand"]:
        try:
            return cls(keyword)
        except ValueError:
            return None


# ---------------------------------------------------------------------------
# Number parsing
# ---------------------------------------------------------------------------

def _parse_f32(token: Optional[str]) -> Optional[float]:
    if token is None or "_" in token:
        return None
    try:
        return float(token)
    except ValueError:
        return None


def _parse_i32(token: Optional[str]) -> Optional[int]:
    if token is None or not INTEGER_PATTERN.match(token):
        return None
    value = int(token)
    if value < I32_MIN or value > I32_MAX:
        return None
    return value


def _to_f32(values: Sequence[float]) -> Tuple[float, ...]:
    """Round to float32 precision; out-of-range magnitudes become infinite."""
    with np.errstate(over="ignore"):
        return tuple(np.asarray(values, dtype=np.float32).tolist())


def _arg(args: List[str], index: int) -> Optional[str]:
    return args[index] if index < len(args) else None


# ---------------------------------------------------------------------------
# Reference pools
# ---------------------------------------------------------------------------

class ReferencePool:
    """Append-only pool of ``v``, ``vn`` or ``vt`` components."""

    def __init__(self, data_type: str, components: int) -> None:
        self.data_type = data_type
        self.components = components
        self.values: List[float] = []

    def __len__(self) -> int:
        return len(self.values) // self.components

    def append(self, *values: float) -> None:
        self.values.extend(_to_f32(values))

    def resolve(self, reference_number: int) -> int:
        """Map a reference number to the offset of its first component.

        Positive numbers count from 1, zero and negative numbers count back
        from the current end of the pool. The result may be out of bounds.
        """
        if reference_number > 0:
            entry = reference_number - 1
        else:
            entry = len(self) + reference_number
        return entry * self.components

    def fetch(self, reference_number: int) -> Optional[Tuple[float, ...]]:
        offset = self.resolve(reference_number)
        components = []
        for index in range(offset, offset + self.components):
            if index < 0 or index >= len(self.values):
                return None
            components.append(self.values[index])
        return tuple(components)


# ---------------------------------------------------------------------------
# Parse state
# ---------------------------------------------------------------------------

@dataclass
class PendingObject:
    name: Optional[str] = None
    # True once named by ``o``/``g``. Faces before any such command go to the
    # undeclared default object.
    declared: bool = False
    positions: List[float] = field(default_factory=list)
    normals: List[float] = field(default_factory=list)
    uvs: List[float] = field(default_factory=list)

    def finalize(self) -> None:
        pass


@dataclass
class _Corner:
    v: Optional[int]
    vt: Optional[int]
    vn: Optional[int]

    @classmethod
    def parse(cls, token: str) -> "_Corner":
        parts = token.split("/")
        return cls(
            v=_parse_i32(_arg(parts, 0)),
            vt=_parse_i32(_arg(parts, 1)),
            vn=_parse_i32(_arg(parts, 2)),
        )


def _face_normal(p0: Tuple[float, ...], p1: Tuple[float, ...], p2: Tuple[float, ...]) -> Tuple[float, float, float]:
    ax, ay, az = p1[0] - p0[0], p1[1] - p0[1], p1[2] - p0[2]
    bx, by, bz = p2[0] - p0[0], p2[1] - p0[1], p2[2] - p0[2]
    nx = ay * bz - az * by
    ny = az * bx - ax * bz
    nz = ax * by - ay * bx
    length = math.sqrt(nx * nx + ny * ny + nz * nz)
    if length == 0.0 or not math.isfinite(length):
        return (0.0, 0.0, 0.0)
    return (nx / length, ny / length, nz / length)


class ObjParseState:
    """Mutable state of a single parse. Create one per OBJ document."""

    def __init__(self, options: ObjParseOptions) -> None:
        self.options = options
        self.current_object = PendingObject()
        self.objects: List[PendingObject] = [self.current_object]
        self.vertices = ReferencePool("v", 3)
        self.normals = ReferencePool("vn", 3)
        self.uvs = ReferencePool("vt", 2)
        self.default_uvs: Set[int] = set()
        self.default_normals: Set[int] = set()

    # -- v / vn / vt --------------------------------------------------------

    def add_vertex(self, line_num: int, args: List[str]) -> None:
        x, y, z = (_parse_f32(_arg(args, i)) for i in range(3))
        # Optional w (default 1.0) is not stored.
        if x is None or y is None or z is None:
            raise InvalidSyntaxError(line_num, range(3, 5), "f32")
        self.vertices.append(x, y, z)

    def add_normal(self, line_num: int, args: List[str]) -> None:
        i, j, k = (_parse_f32(_arg(args, n)) for n in range(3))
        if i is None or j is None or k is None:
            raise InvalidSyntaxError(line_num, range(3, 4), "f32")
        self.normals.append(i, j, k)

    def add_uv(self, line_num: int, args: List[str]) -> None:
        u, v = (_parse_f32(_arg(args, n)) for n in range(2))
        # Optional w (default 0.0) is not stored.
        if u is None or v is None:
            raise InvalidSyntaxError(line_num, range(2, 4), "f32")
        self.uvs.append(u, v)

    # -- f ------------------------------------------------------------------

    def add_face(self, line_num: int, args: List[str]) -> None:
        corners = [_Corner.parse(token) for token in args]
        if len(corners) < 3:
            logging.debug("line %d: ignoring face with %d corners", line_num, len(corners))
            return

        # Fan around the first corner.
        for index in range(1, len(corners) - 1):
            self.add_triangle(line_num, corners[0], corners[index], corners[index + 1])

    def _resolve_attribute(
        self,
        pool: ReferencePool,
        reference_numbers: List[Optional[int]],
        line_num: int,
        defaulted: Set[int],
    ) -> Optional[List[Tuple[float, ...]]]:
        """Resolve a vt/vn triplet, or return None when defaults must be used."""
        if any(ref is None for ref in reference_numbers):
            return None

        values = []
        for ref in reference_numbers:
            value = pool.fetch(ref)
            if value is None:
                if self.options.error_on_invalid_reference_number:
                    raise InvalidReferenceNumberError(line_num, pool.data_type, ref)
                logging.debug(
                    "line %d: %s reference %d out of range, using default",
                    line_num,
                    pool.data_type,
                    ref,
                )
                defaulted.add(ref)
                return None
            values.append(value)
        return values

    def add_triangle(self, line_num: int, a: _Corner, b: _Corner, c: _Corner) -> None:
        corners = (a, b, c)
        if any(corner.v is None for corner in corners):
            logging.debug("line %d: ignoring triangle with unparseable vertex reference", line_num)
            return

        positions = []
        for corner in corners:
            position = self.vertices.fetch(corner.v)
            if position is None:
                raise InvalidReferenceNumberError(line_num, "v", corner.v)
            positions.append(position)

        uvs = self._resolve_attribute(
            self.uvs, [corner.vt for corner in corners], line_num, self.default_uvs
        )
        if uvs is None:
            uvs = [DEFAULT_UV] * 3

        normals = self._resolve_attribute(
            self.normals, [corner.vn for corner in corners], line_num, self.default_normals
        )
        if normals is None:
            normals = [_to_f32(_face_normal(*positions))] * 3

        current = self.current_object
        for position, normal, uv in zip(positions, normals, uvs):
            current.positions.extend(position)
            current.normals.extend(normal)
            current.uvs.extend(uv)

    # -- o / g --------------------------------------------------------------

    def start_object(self, line_num: int, args: List[str]) -> None:
        name = _arg(args, 0)
        # An undeclared object that already holds faces keeps them anonymously.
        if not self.current_object.declared and not self.current_object.positions:
            self.current_object.name = name
            self.current_object.declared = True
            return

        self.current_object.finalize()
        self.current_object = PendingObject(name=name, declared=True)
        self.objects.append(self.current_object)

    def finalize(self) -> None:
        self.current_object.finalize()


COMMAND_HANDLERS: Dict[ObjCommand, Callable[[ObjParseState, int, List[str]], None]] = {
    ObjCommand.VERTEX: ObjParseState.add_vertex,
    ObjCommand.VERTEX_NORMAL: ObjParseState.add_normal,
    ObjCommand.TEXTURE_VERTEX: ObjParseState.add_uv,
    ObjCommand.FACE: ObjParseState.add_face,
    ObjCommand.OBJECT_NAME: ObjParseState.start_object,
    ObjCommand.GROUP_NAME: ObjParseState.start_object,
}


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class ObjParser:
    """Parser for ASCII OBJ 3.0 text (Appendix B1 of the Advanced Visualizer manual)."""

    @staticmethod
    def parse(
        text: str,
        options: Optional[ObjParseOptions] = None,
        scene: Optional[SceneBuilder] = None,
    ) -> ObjParseResult:
        """Parse OBJ *text* and build its objects in *scene*.

        Raises the first ``ObjParseError`` encountered; nothing is added to the
        scene in that case.
        """
        options = options or ObjParseOptions()
        scene = scene if scene is not None else SceneGraph()
        state = ObjParseState(options)

        for line_num, line in enumerate(text.split("\n"), start=1):
            parts = line.split()
            # Comments are skipped even in strict mode; they are not commands.
            if not parts or parts[0].startswith("#"):
                continue

            keyword, args = parts[0], parts[1:]
            command = ObjCommand.from_keyword(keyword)
            if command is None:
                if options.error_on_unsupported_data_types:
                    raise UnsupportedCommandError(line_num, keyword)
                logging.debug("line %d: skipping unsupported command %r", line_num, keyword)
                continue

            COMMAND_HANDLERS[command](state, line_num, args)

        state.finalize()

        group = scene.create_group()
        for obj in state.objects:
            # Objects/groups without faces produce no node.
            if not obj.positions:
                continue
            mesh = scene.create_mesh(obj.positions, obj.normals, obj.uvs, None)
            scene.set_name(mesh, obj.name)
            scene.attach(group, mesh)

        return ObjParseResult(
            scene=scene,
            group=group,
            default_uvs=state.default_uvs,
            default_normals=state.default_normals,
        )


def parse_obj(
    text: str,
    options: Optional[ObjParseOptions] = None,
    scene: Optional[SceneBuilder] = None,
) -> ObjParseResult:
    return ObjParser.parse(text, options, scene)
