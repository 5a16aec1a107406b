"""In-memory scene graph shared by all scene readers.

A reader turns one file into a :class:`Scene`: a node tree whose nodes can
evaluate their global transform at any time, plus the meshes and skins
attached to it. The consolidation pipeline only talks to this module.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Literal

import numpy as np

from rigmerge.errors import SceneError
from rigmerge.rotation import compose_trs, euler_to_matrix, quat_slerp, quat_to_matrix

RotationMode = Literal["euler", "quat"]
Interpolation = Literal["LINEAR", "STEP"]

SceneImporter = Callable[[Path], "Scene"]


@dataclass
class Track:
    """Keyframed values of one transform channel."""

    times: np.ndarray  # (K,)
    values: np.ndarray  # (K, n)
    interpolation: Interpolation = "LINEAR"

    def __post_init__(self) -> None:
        self.times = np.asarray(self.times, dtype=np.float64)
        self.values = np.asarray(self.values, dtype=np.float64)
        if self.values.ndim == 1:
            self.values = self.values[:, None]
        if len(self.times) == 0:
            raise SceneError("Animation track has no keys")
        if len(self.times) != len(self.values):
            raise SceneError(
                f"Animation track has {len(self.times)} times but {len(self.values)} values"
            )
        if np.any(np.diff(self.times) < 0):
            raise SceneError("Animation track key times must be non-decreasing")

    def sample(self, time: float, *, slerp: bool = False) -> np.ndarray:
        """Value at ``time``, held constant outside the keyed range."""
        times = self.times
        if time <= times[0]:
            return self.values[0].copy()
        if time >= times[-1]:
            return self.values[-1].copy()

        hi = int(np.searchsorted(times, time, side="right"))
        lo = hi - 1
        if self.interpolation == "STEP":
            return self.values[lo].copy()

        span = times[hi] - times[lo]
        t = 0.0 if span == 0 else (time - times[lo]) / span
        if slerp:
            return quat_slerp(self.values[lo], self.values[hi], t)
        return self.values[lo] * (1.0 - t) + self.values[hi] * t


@dataclass(eq=False)
class SceneNode:
    """A node of the scene graph with a static TRS and optional keyframe tracks.

    ``rotation`` holds Euler angles in radians (indexed X, Y, Z and applied
    in ``rotation_order``) when ``rotation_mode`` is ``"euler"``, or an
    [x, y, z, w] quaternion when it is ``"quat"``. Tracks are keyed by
    ``"translation"``, ``"rotation"`` and ``"scale"`` and use the same
    value layout as the static fields.
    """

    name: str
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    scale: np.ndarray = field(default_factory=lambda: np.ones(3))
    rotation_mode: RotationMode = "euler"
    rotation_order: str = "xyz"
    is_joint: bool = False
    tracks: dict[str, Track] = field(default_factory=dict)
    mesh: SceneMesh | None = None
    parent: SceneNode | None = field(default=None, repr=False)
    children: list[SceneNode] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        self.translation = np.asarray(self.translation, dtype=np.float64)
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.scale = np.asarray(self.scale, dtype=np.float64)

    def add_child(self, child: SceneNode) -> SceneNode:
        child.parent = self
        self.children.append(child)
        return child

    def has_animation_curve(self) -> bool:
        """True if the rotation or translation channel is keyframed."""
        return "rotation" in self.tracks or "translation" in self.tracks

    def local_transform(self, time: float | None = None) -> np.ndarray:
        """4x4 transform relative to the parent node.

        ``time=None`` evaluates the static (load-time) values and ignores tracks.
        """
        translation = self.translation
        rotation = self.rotation
        scale = self.scale
        if time is not None:
            if "translation" in self.tracks:
                translation = self.tracks["translation"].sample(time)
            if "rotation" in self.tracks:
                rotation = self.tracks["rotation"].sample(
                    time, slerp=self.rotation_mode == "quat"
                )
            if "scale" in self.tracks:
                scale = self.tracks["scale"].sample(time)

        if self.rotation_mode == "quat":
            rot = quat_to_matrix(rotation)
        else:
            rot = euler_to_matrix(rotation, self.rotation_order)
        return compose_trs(translation, rot, scale)

    def evaluate_global_transform(self, time: float | None = None) -> np.ndarray:
        """4x4 world transform at ``time`` (``None`` = static pose)."""
        result = self.local_transform(time)
        node = self.parent
        while node is not None:
            result = node.local_transform(time) @ result
            node = node.parent
        return result

    def iter_subtree(self) -> Iterator[SceneNode]:
        """Pre-order walk of this node and its descendants, children in order."""
        stack: list[SceneNode] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))


@dataclass(eq=False)
class SkinCluster:
    """Influence of one joint over the mesh vertices.

    ``transform_matrix`` is the mesh's global transform at bind time.
    ``link_matrix`` is the joint's global transform at bind time, when the
    file stores one.
    """

    link: SceneNode
    indices: np.ndarray
    weights: np.ndarray
    transform_matrix: np.ndarray = field(default_factory=lambda: np.eye(4))
    link_matrix: np.ndarray | None = None

    def __post_init__(self) -> None:
        self.indices = np.asarray(self.indices, dtype=np.int64)
        self.weights = np.asarray(self.weights, dtype=np.float64)
        self.transform_matrix = np.asarray(self.transform_matrix, dtype=np.float64)
        if self.link_matrix is not None:
            self.link_matrix = np.asarray(self.link_matrix, dtype=np.float64)
        if self.indices.shape != self.weights.shape:
            raise SceneError(
                f"Skin cluster for {self.link.name!r} has {self.indices.size} indices "
                f"but {self.weights.size} weights"
            )


@dataclass(eq=False)
class SkinBinding:
    clusters: list[SkinCluster]
    name: str | None = None


@dataclass(eq=False)
class SceneMesh:
    name: str
    positions: np.ndarray  # (V, 3)
    polygons: list[tuple[int, ...]]
    skins: list[SkinBinding] = field(default_factory=list)
    node: SceneNode | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.positions = np.asarray(self.positions, dtype=np.float64).reshape(-1, 3)
        self.polygons = [tuple(int(i) for i in poly) for poly in self.polygons]

    @property
    def vertex_count(self) -> int:
        return int(self.positions.shape[0])


@dataclass(eq=False)
class Scene:
    """A loaded scene: root node plus the file it came from."""

    root: SceneNode
    path: Path | None = None

    def nodes(self) -> Iterator[SceneNode]:
        return self.root.iter_subtree()

    def find_node(self, name: str) -> SceneNode | None:
        for node in self.nodes():
            if node.name == name:
                return node
        return None

    def first_mesh(self) -> SceneMesh | None:
        """First mesh attached to a node, in pre-order."""
        for node in self.nodes():
            if node.mesh is not None:
                return node.mesh
        return None

    def first_skin(self, mesh: SceneMesh) -> SkinBinding | None:
        return mesh.skins[0] if mesh.skins else None


def attach_mesh(node: SceneNode, mesh: SceneMesh) -> SceneMesh:
    """Attach ``mesh`` to ``node`` in both directions."""
    node.mesh = mesh
    mesh.node = node
    return mesh


def open_scene(path: Path) -> Scene:
    """Open a scene file, picking the reader from the file suffix."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        from rigmerge.yaml_scene import read_yaml_scene

        return read_yaml_scene(path)
    if suffix in {".gltf", ".glb"}:
        from rigmerge.gltf_scene import read_gltf_scene

        return read_gltf_scene(path)
    raise SceneError(f"Unsupported scene file type: {path.name!r} (expected .yaml, .gltf or .glb)")
