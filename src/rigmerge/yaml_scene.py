"""YAML scene reader: node trees, keyframes, one mesh and an optional skin.

Example::

    version: "0.1"
    nodes:
      - name: hips
        joint: true
        translation: [0, 1, 0]
        rotation_order: zxy
        keys:
          rotation_degrees:
            times: [0.0, 1.0]
            values: [[0, 0, 0], [0, 90, 0]]
        children:
          - name: body
            mesh:
              positions: [[0, 0, 0], [1, 0, 0], [0, 1, 0]]
              polygons: [[0, 1, 2]]
              skin:
                clusters:
                  - {joint: hips, indices: [0, 1, 2], weights: [1, 1, 1]}
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Literal

import numpy as np
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from rigmerge.errors import ParseError
from rigmerge.rotation import ROTATION_ORDERS
from rigmerge.scene import (
    Scene,
    SceneMesh,
    SceneNode,
    SkinBinding,
    SkinCluster,
    Track,
    attach_mesh,
)

SUPPORTED_VERSIONS: frozenset[str] = frozenset({"0.1"})

Matrix4 = tuple[
    tuple[float, float, float, float],
    tuple[float, float, float, float],
    tuple[float, float, float, float],
    tuple[float, float, float, float],
]


class TrackDef(BaseModel):
    model_config = ConfigDict(extra="forbid")

    times: list[float]
    values: list[list[float]]
    interpolation: Literal["LINEAR", "STEP"] = "LINEAR"

    @model_validator(mode="after")
    def _lengths_match(self) -> TrackDef:
        if not self.times:
            raise ValueError("track must have at least one key")
        if len(self.times) != len(self.values):
            raise ValueError(
                f"track has {len(self.times)} times but {len(self.values)} values"
            )
        return self


class KeysDef(BaseModel):
    model_config = ConfigDict(extra="forbid")

    translation: TrackDef | None = None
    rotation_degrees: TrackDef | None = None
    rotation_quat: TrackDef | None = None
    scale: TrackDef | None = None

    @model_validator(mode="after")
    def _one_rotation_form(self) -> KeysDef:
        if self.rotation_degrees is not None and self.rotation_quat is not None:
            raise ValueError("keys must set at most one of rotation_degrees, rotation_quat")
        return self


class ClusterDef(BaseModel):
    model_config = ConfigDict(extra="forbid")

    joint: str
    indices: list[int] = []
    weights: list[float] = []
    bind_matrix: Matrix4 | None = None
    link_matrix: Matrix4 | None = None

    @model_validator(mode="after")
    def _lengths_match(self) -> ClusterDef:
        if len(self.indices) != len(self.weights):
            raise ValueError(
                f"cluster {self.joint!r} has {len(self.indices)} indices "
                f"but {len(self.weights)} weights"
            )
        return self


class SkinDef(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    bind_matrix: Matrix4 | None = None
    clusters: list[ClusterDef]


class MeshDef(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    positions: list[tuple[float, float, float]]
    polygons: list[list[int]]
    skin: SkinDef | None = None

    @field_validator("polygons")
    @classmethod
    def _polygons_have_vertices(cls, v: list[list[int]]) -> list[list[int]]:
        for poly in v:
            if len(poly) < 3:
                raise ValueError(f"polygon must have at least 3 vertices, got {poly}")
        return v


class NodeDef(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    joint: bool = False
    translation: tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation_degrees: tuple[float, float, float] | None = None
    rotation_quat: tuple[float, float, float, float] | None = None  # (x, y, z, w)
    scale: tuple[float, float, float] = (1.0, 1.0, 1.0)
    rotation_order: str = "xyz"
    keys: KeysDef | None = None
    mesh: MeshDef | None = None
    children: list[NodeDef] = []

    @field_validator("rotation_order")
    @classmethod
    def _known_order(cls, v: str) -> str:
        if v.lower() not in ROTATION_ORDERS:
            raise ValueError(f"unknown rotation_order {v!r} (known: {sorted(ROTATION_ORDERS)})")
        return v.lower()

    @model_validator(mode="after")
    def _rotation_forms_agree(self) -> NodeDef:
        if self.rotation_degrees is not None and self.rotation_quat is not None:
            raise ValueError(
                f"node {self.name!r} must set at most one of rotation_degrees, rotation_quat"
            )
        keys = self.keys
        if keys is None:
            return self
        if self.rotation_quat is not None and keys.rotation_degrees is not None:
            raise ValueError(f"node {self.name!r}: rotation_quat node keyed with rotation_degrees")
        if self.rotation_degrees is not None and keys.rotation_quat is not None:
            raise ValueError(f"node {self.name!r}: rotation_degrees node keyed with rotation_quat")
        return self


class SceneDef(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: str
    nodes: list[NodeDef]


def _make_yaml() -> YAML:
    """Create a ruamel.yaml safe loader that errors on duplicate keys."""
    yml = YAML(typ="safe")
    yml.allow_duplicate_keys = False
    return yml


def parse_scene_def(source: str | Path) -> SceneDef:
    """Parse YAML text or a file into a validated :class:`SceneDef`.

    Raises:
        ParseError: On unreadable files, YAML syntax errors, unsupported
            versions or schema violations.
    """
    if isinstance(source, Path):
        try:
            text = source.read_text(encoding="utf-8")
        except OSError as e:
            raise ParseError(f"Cannot read file: {e}") from e
    else:
        text = source

    try:
        data = _make_yaml().load(text)
    except YAMLError as e:
        raise ParseError(f"Invalid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ParseError("Top-level YAML value must be a mapping")
    version = data.get("version")
    if version is None:
        raise ParseError("Missing required field: version")
    if str(version) not in SUPPORTED_VERSIONS:
        raise ParseError(
            f"Unsupported scene version: {version!r} (supported: {sorted(SUPPORTED_VERSIONS)})"
        )

    try:
        return SceneDef(**data)
    except PydanticValidationError as e:
        raise ParseError(f"Schema validation failed:\n{e}") from e


def read_yaml_scene(source: str | Path) -> Scene:
    """Read a YAML scene file (or YAML text) into a :class:`Scene`."""
    scene_def = parse_scene_def(source)
    root = SceneNode(name="")
    by_name: dict[str, SceneNode] = {}
    meshes: list[tuple[SceneNode, MeshDef]] = []

    stack: list[tuple[SceneNode, NodeDef]] = [(root, nd) for nd in reversed(scene_def.nodes)]
    while stack:
        parent, node_def = stack.pop()
        if node_def.name in by_name:
            raise ParseError(f"Duplicate node name: {node_def.name!r}")
        node = parent.add_child(_build_node(node_def))
        by_name[node.name] = node
        if node_def.mesh is not None:
            meshes.append((node, node_def.mesh))
        stack.extend((node, child) for child in reversed(node_def.children))

    for node, mesh_def in meshes:
        attach_mesh(node, _build_mesh(node, mesh_def, by_name))

    return Scene(root=root, path=source if isinstance(source, Path) else None)


def _build_node(node_def: NodeDef) -> SceneNode:
    if node_def.rotation_quat is not None or (
        node_def.keys is not None and node_def.keys.rotation_quat is not None
    ):
        mode = "quat"
        rotation = np.array(node_def.rotation_quat or (0.0, 0.0, 0.0, 1.0))
    else:
        mode = "euler"
        rotation = np.radians(node_def.rotation_degrees or (0.0, 0.0, 0.0))

    tracks: dict[str, Track] = {}
    keys = node_def.keys
    if keys is not None:
        if keys.translation is not None:
            tracks["translation"] = _build_track(keys.translation, 3)
        if keys.rotation_degrees is not None:
            track = _build_track(keys.rotation_degrees, 3)
            track.values = np.radians(track.values)
            tracks["rotation"] = track
        if keys.rotation_quat is not None:
            tracks["rotation"] = _build_track(keys.rotation_quat, 4)
        if keys.scale is not None:
            tracks["scale"] = _build_track(keys.scale, 3)

    return SceneNode(
        name=node_def.name,
        translation=np.array(node_def.translation),
        rotation=rotation,
        scale=np.array(node_def.scale),
        rotation_mode=mode,
        rotation_order=node_def.rotation_order,
        is_joint=node_def.joint,
        tracks=tracks,
    )


def _build_track(track_def: TrackDef, width: int) -> Track:
    for value in track_def.values:
        if len(value) != width:
            raise ParseError(f"Track values must have {width} components, got {value}")
        if any(math.isnan(v) or math.isinf(v) for v in value):
            raise ParseError(f"Track values must be finite, got {value}")
    return Track(
        times=np.array(track_def.times),
        values=np.array(track_def.values),
        interpolation=track_def.interpolation,
    )


def _build_mesh(node: SceneNode, mesh_def: MeshDef, by_name: dict[str, SceneNode]) -> SceneMesh:
    mesh = SceneMesh(
        name=mesh_def.name or node.name,
        positions=np.array(mesh_def.positions, dtype=np.float64).reshape(-1, 3),
        polygons=[tuple(p) for p in mesh_def.polygons],
    )
    skin_def = mesh_def.skin
    if skin_def is None:
        return mesh

    default_bind = (
        np.array(skin_def.bind_matrix)
        if skin_def.bind_matrix is not None
        else node.evaluate_global_transform()
    )
    clusters = []
    for cluster_def in skin_def.clusters:
        link = by_name.get(cluster_def.joint)
        if link is None:
            raise ParseError(f"Skin cluster references unknown node {cluster_def.joint!r}")
        clusters.append(
            SkinCluster(
                link=link,
                indices=np.array(cluster_def.indices, dtype=np.int64),
                weights=np.array(cluster_def.weights, dtype=np.float64),
                transform_matrix=(
                    np.array(cluster_def.bind_matrix)
                    if cluster_def.bind_matrix is not None
                    else default_bind.copy()
                ),
                link_matrix=(
                    np.array(cluster_def.link_matrix)
                    if cluster_def.link_matrix is not None
                    else None
                ),
            )
        )
    mesh.skins.append(SkinBinding(clusters=clusters, name=skin_def.name))
    return mesh
