"""glTF 2.0 / GLB scene reader built on pygltflib.

Reads the default scene's node tree, the first mesh found in pre-order,
that mesh node's skin and the first animation. glTF has no joint marker, so
nodes listed by that mesh's skin are joints, as are nodes whose ``extras`` carry
``{"joint": true}``. ``extras.rotation_order`` overrides the default
``"xyz"`` rotation order.
"""

from __future__ import annotations

import base64
from pathlib import Path

import numpy as np
import pygltflib

from rigmerge.errors import SceneError
from rigmerge.scene import (
    Scene,
    SceneMesh,
    SceneNode,
    SkinBinding,
    SkinCluster,
    Track,
    attach_mesh,
)

_COMPONENT_DTYPES: dict[int, np.dtype] = {
    pygltflib.BYTE: np.dtype(np.int8),
    pygltflib.UNSIGNED_BYTE: np.dtype(np.uint8),
    pygltflib.SHORT: np.dtype(np.int16),
    pygltflib.UNSIGNED_SHORT: np.dtype(np.uint16),
    pygltflib.UNSIGNED_INT: np.dtype(np.uint32),
    pygltflib.FLOAT: np.dtype(np.float32),
}

_TYPE_WIDTHS: dict[str, int] = {
    pygltflib.SCALAR: 1,
    pygltflib.VEC2: 2,
    pygltflib.VEC3: 3,
    pygltflib.VEC4: 4,
    pygltflib.MAT4: 16,
}

_TRIANGLES = 4


class _GltfReader:
    """Accessor decoding for one loaded glTF document."""

    def __init__(self, gltf: pygltflib.GLTF2, base_dir: Path) -> None:
        self.gltf = gltf
        self.base_dir = base_dir
        self._buffers: dict[int, bytes] = {}

    def buffer_bytes(self, index: int) -> bytes:
        if index not in self._buffers:
            buffer = self.gltf.buffers[index]
            uri = buffer.uri
            if uri is None:
                blob = self.gltf.binary_blob()
                if blob is None:
                    raise SceneError(f"Buffer {index} has no URI and the file has no BIN chunk")
                data = bytes(blob)
            elif uri.startswith("data:"):
                data = base64.b64decode(uri.split(",", 1)[1])
            else:
                try:
                    data = (self.base_dir / uri).read_bytes()
                except OSError as e:
                    raise SceneError(f"Cannot read buffer {uri!r}: {e}") from e
            self._buffers[index] = data
        return self._buffers[index]

    def read_accessor(self, index: int) -> np.ndarray:
        """Accessor contents as a (count, width) float64 array."""
        acc = self.gltf.accessors[index]
        width = _TYPE_WIDTHS.get(acc.type)
        dtype = _COMPONENT_DTYPES.get(acc.componentType)
        if width is None or dtype is None:
            raise SceneError(
                f"Accessor {index}: unsupported type {acc.type!r} / component {acc.componentType}"
            )
        if acc.sparse is not None:
            raise SceneError(f"Accessor {index}: sparse accessors are not supported")
        if acc.bufferView is None:
            return np.zeros((acc.count, width))

        view = self.gltf.bufferViews[acc.bufferView]
        data = self.buffer_bytes(view.buffer)
        start = (view.byteOffset or 0) + (acc.byteOffset or 0)
        elem_size = dtype.itemsize * width
        stride = view.byteStride or elem_size

        if stride == elem_size:
            flat = np.frombuffer(data, dtype=dtype, count=acc.count * width, offset=start)
        else:
            rows = [
                np.frombuffer(data, dtype=dtype, count=width, offset=start + i * stride)
                for i in range(acc.count)
            ]
            flat = np.concatenate(rows) if rows else np.zeros(0, dtype=dtype)

        out = flat.reshape(acc.count, width).astype(np.float64)
        if acc.normalized and dtype.kind in "iu":
            out /= float(np.iinfo(dtype).max)
        return out


def read_gltf_scene(path: str | Path) -> Scene:
    """Load a .gltf or .glb file into a :class:`Scene`.

    Raises:
        SceneError: If the file cannot be loaded or uses unsupported features.
    """
    path = Path(path)
    try:
        gltf = pygltflib.GLTF2().load(str(path))
    except Exception as e:
        raise SceneError(f"Error on opening file {path}: {e}") from e
    if gltf is None:
        raise SceneError(f"Error on opening file {path}")

    reader = _GltfReader(gltf, path.parent)
    nodes = [_build_node(node) for node in gltf.nodes]
    root = SceneNode(name="")
    for index in _root_indices(gltf):
        _attach_subtree(root, index, gltf, nodes)

    if gltf.animations:
        _apply_animation(reader, gltf.animations[0], nodes)

    index_of = {id(node): i for i, node in enumerate(nodes)}
    for node in root.iter_subtree():
        if node is root:
            continue
        gltf_node = gltf.nodes[index_of[id(node)]]
        if gltf_node.mesh is not None:
            # only the skin bound to the selected mesh marks joints
            if gltf_node.skin is not None:
                for j in gltf.skins[gltf_node.skin].joints:
                    nodes[j].is_joint = True
            mesh = _build_mesh(reader, gltf_node, node, nodes)
            attach_mesh(node, mesh)
            break

    return Scene(root=root, path=path)


def _root_indices(gltf: pygltflib.GLTF2) -> list[int]:
    if gltf.scenes:
        scene_index = gltf.scene if gltf.scene is not None else 0
        return list(gltf.scenes[scene_index].nodes or [])
    children = {c for node in gltf.nodes for c in (node.children or [])}
    return [i for i in range(len(gltf.nodes)) if i not in children]


def _attach_subtree(
    root: SceneNode, index: int, gltf: pygltflib.GLTF2, nodes: list[SceneNode]
) -> None:
    stack: list[tuple[SceneNode, int]] = [(root, index)]
    while stack:
        parent, i = stack.pop()
        node = nodes[i]
        if node.parent is not None:
            raise SceneError(f"Node {node.name!r} has more than one parent")
        parent.add_child(node)
        stack.extend((node, c) for c in reversed(gltf.nodes[i].children or []))


def _build_node(node: pygltflib.Node) -> SceneNode:
    extras = node.extras if isinstance(node.extras, dict) else {}
    translation = np.array(node.translation or (0.0, 0.0, 0.0), dtype=np.float64)
    rotation = np.array(node.rotation or (0.0, 0.0, 0.0, 1.0), dtype=np.float64)
    scale = np.array(node.scale or (1.0, 1.0, 1.0), dtype=np.float64)

    if node.matrix is not None:
        # Column-major, assumed free of shear
        mat = np.array(node.matrix, dtype=np.float64).reshape(4, 4).T
        translation = mat[:3, 3].copy()
        scale = np.linalg.norm(mat[:3, :3], axis=0)
        rotation = _matrix_to_quat(mat[:3, :3] / np.where(scale == 0.0, 1.0, scale))

    return SceneNode(
        name=node.name or f"node_{index}",
        translation=translation,
        rotation=rotation,
        scale=scale,
        rotation_mode="quat",
        rotation_order=str(extras.get("rotation_order", "xyz")),
        is_joint=bool(extras.get("joint", False)),
    )


def _matrix_to_quat(rot: np.ndarray) -> np.ndarray:
    """[x, y, z, w] quaternion of a 3x3 rotation matrix."""
    trace = float(np.trace(rot))
    if trace > 0.0:
        s = 2.0 * np.sqrt(trace + 1.0)
        w = 0.25 * s
        x = (rot[2, 1] - rot[1, 2]) / s
        y = (rot[0, 2] - rot[2, 0]) / s
        z = (rot[1, 0] - rot[0, 1]) / s
    elif rot[0, 0] > rot[1, 1] and rot[0, 0] > rot[2, 2]:
        s = 2.0 * np.sqrt(1.0 + rot[0, 0] - rot[1, 1] - rot[2, 2])
        w = (rot[2, 1] - rot[1, 2]) / s
        x = 0.25 * s
        y = (rot[0, 1] + rot[1, 0]) / s
        z = (rot[0, 2] + rot[2, 0]) / s
    elif rot[1, 1] > rot[2, 2]:
        s = 2.0 * np.sqrt(1.0 + rot[1, 1] - rot[0, 0] - rot[2, 2])
        w = (rot[0, 2] - rot[2, 0]) / s
        x = (rot[0, 1] + rot[1, 0]) / s
        y = 0.25 * s
        z = (rot[1, 2] + rot[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + rot[2, 2] - rot[0, 0] - rot[1, 1])
        w = (rot[1, 0] - rot[0, 1]) / s
        x = (rot[0, 2] + rot[2, 0]) / s
        y = (rot[1, 2] + rot[2, 1]) / s
        z = 0.25 * s
    return np.array([x, y, z, w])


def _apply_animation(
    reader: _GltfReader, animation: pygltflib.Animation, nodes: list[SceneNode]
) -> None:
    for channel in animation.channels:
        target = channel.target
        if target.node is None or target.path not in {"translation", "rotation", "scale"}:
            continue
        sampler = animation.samplers[channel.sampler]
        times = reader.read_accessor(sampler.input)[:, 0]
        values = reader.read_accessor(sampler.output)
        interpolation = sampler.interpolation or "LINEAR"
        if interpolation == "CUBICSPLINE":
            # (in-tangent, value, out-tangent) triplets; keep the values
            values = values[1::3]
            interpolation = "LINEAR"
        nodes[target.node].tracks[target.path] = Track(
            times=times, values=values, interpolation=interpolation
        )


def _build_mesh(
    reader: _GltfReader,
    gltf_node: pygltflib.Node,
    node: SceneNode,
    nodes: list[SceneNode],
) -> SceneMesh:
    gltf = reader.gltf
    gltf_mesh = gltf.meshes[gltf_node.mesh]

    positions: list[np.ndarray] = []
    polygons: list[tuple[int, ...]] = []
    joint_sets: list[tuple[int, np.ndarray, np.ndarray]] = []
    offset = 0
    for prim in gltf_mesh.primitives:
        if prim.mode not in (None, _TRIANGLES):
            raise SceneError(f"Mesh {gltf_mesh.name!r}: only triangle primitives are supported")
        if prim.attributes.POSITION is None:
            raise SceneError(f"Mesh {gltf_mesh.name!r}: primitive without POSITION")
        pos = reader.read_accessor(prim.attributes.POSITION)
        if prim.indices is not None:
            idx = reader.read_accessor(prim.indices)[:, 0].astype(np.int64)
        else:
            idx = np.arange(len(pos), dtype=np.int64)
        for tri in idx.reshape(-1, 3):
            polygons.append(tuple(int(v) + offset for v in tri))

        for joints_attr, weights_attr in (("JOINTS_0", "WEIGHTS_0"), ("JOINTS_1", "WEIGHTS_1")):
            j_acc = getattr(prim.attributes, joints_attr, None)
            w_acc = getattr(prim.attributes, weights_attr, None)
            if j_acc is not None and w_acc is not None:
                joint_sets.append(
                    (
                        offset,
                        reader.read_accessor(j_acc).astype(np.int64),
                        reader.read_accessor(w_acc),
                    )
                )
        positions.append(pos)
        offset += len(pos)

    mesh = SceneMesh(
        name=gltf_mesh.name or node.name,
        positions=np.concatenate(positions) if positions else np.zeros((0, 3)),
        polygons=polygons,
    )
    if gltf_node.skin is not None:
        mesh.skins.append(_build_skin(reader, gltf.skins[gltf_node.skin], joint_sets, nodes))
    return mesh


def _build_skin(
    reader: _GltfReader,
    skin: pygltflib.Skin,
    joint_sets: list[tuple[int, np.ndarray, np.ndarray]],
    nodes: list[SceneNode],
) -> SkinBinding:
    count = len(skin.joints)
    if skin.inverseBindMatrices is not None:
        ibms = reader.read_accessor(skin.inverseBindMatrices).reshape(-1, 4, 4).transpose(0, 2, 1)
        if len(ibms) != count:
            raise SceneError(f"Skin has {count} joints but {len(ibms)} inverse bind matrices")
        link_matrices = [np.linalg.inv(m) for m in ibms]
    else:
        link_matrices = [np.eye(4) for _ in range(count)]

    influences: list[dict[int, float]] = [{} for _ in range(count)]
    for offset, joints, weights in joint_sets:
        for v in range(len(joints)):
            for slot in range(joints.shape[1]):
                w = float(weights[v, slot])
                if w <= 0.0:
                    continue
                j = int(joints[v, slot])
                if j >= count:
                    raise SceneError(f"Vertex {v + offset} references skin joint {j} of {count}")
                influences[j][v + offset] = influences[j].get(v + offset, 0.0) + w

    clusters = []
    for j, node_index in enumerate(skin.joints):
        by_vertex = influences[j]
        clusters.append(
            SkinCluster(
                link=nodes[node_index],
                indices=np.array(sorted(by_vertex), dtype=np.int64),
                weights=np.array([by_vertex[v] for v in sorted(by_vertex)]),
                # Skinned glTF vertices are already in bind space
                transform_matrix=np.eye(4),
                link_matrix=link_matrices[j],
            )
        )
    return SkinBinding(clusters=clusters, name=skin.name)
