"""Turn one loaded scene into the per-subject data merged by the assembler."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from rigmerge.errors import SceneError
from rigmerge.hierarchy import ResolvedHierarchy, check_bind_poses, resolve_hierarchy
from rigmerge.sampling import has_keyframes, sample_relative_transforms
from rigmerge.scene import Scene
from rigmerge.warning_policy import WarningPolicy, emit_warning
from rigmerge.weights import gather_skin_weights


@dataclass
class Subject:
    """Everything one scene file contributes to the rig, keyed by joint name."""

    positions: np.ndarray  # (V, 3), bind space
    faces: list[tuple[int, ...]]
    hierarchy: ResolvedHierarchy
    weights: dict[str, np.ndarray] | None = None
    transforms: dict[str, np.ndarray] = field(default_factory=dict)  # name -> (F, 4, 4)
    has_keyframes: bool = False
    path: Path | None = None

    @property
    def vertex_count(self) -> int:
        return int(self.positions.shape[0])

    @property
    def joint_names(self) -> list[str]:
        return self.hierarchy.joint_names


def load_subject(
    scene: Scene,
    times: Sequence[float] | np.ndarray,
    *,
    warning_policy: WarningPolicy | None = None,
) -> Subject:
    """Extract mesh, skeleton, weights and sampled transforms from a scene.

    Vertices are moved into bind space with the skin's bind matrix, or with
    the mesh node's global transform when the mesh is not skinned.

    Raises:
        SceneError: If the scene has no mesh.
        HierarchyError: On bind-pose or joint-count problems.
        WeightError: On out-of-range skin vertex indices.
    """
    mesh = scene.first_mesh()
    if mesh is None:
        raise SceneError("Scene has no mesh")

    skin = scene.first_skin(mesh)
    if skin is not None and not skin.clusters:
        # a skin without clusters carries no joints and no weights
        skin = None
    if skin is not None:
        mesh_matrix = check_bind_poses(skin)
    elif mesh.node is not None:
        mesh_matrix = mesh.node.evaluate_global_transform()
    else:
        mesh_matrix = np.eye(4)

    homogeneous = np.hstack([mesh.positions, np.ones((mesh.vertex_count, 1))])
    positions = (homogeneous @ mesh_matrix.T)[:, :3]

    weights = gather_skin_weights(skin, mesh.vertex_count) if skin is not None else None
    hierarchy = resolve_hierarchy(scene.root, skin)

    subject = Subject(
        positions=positions,
        faces=list(mesh.polygons),
        hierarchy=hierarchy,
        weights=weights,
        path=scene.path,
    )
    if not hierarchy.joint_names:
        emit_warning("W02", f"Scene {_label(scene)} has no joints", policy=warning_policy)
        return subject

    nodes = [hierarchy.nodes[name] for name in hierarchy.joint_names]
    subject.has_keyframes = has_keyframes(nodes)
    for name, node in zip(hierarchy.joint_names, nodes):
        subject.transforms[name] = sample_relative_transforms(node, hierarchy.bind[name], times)
    return subject


def _label(scene: Scene) -> str:
    return repr(str(scene.path)) if scene.path is not None else "<memory>"
