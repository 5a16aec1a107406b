"""Joint discovery, parent links, bind poses and ancestor corrections for one scene."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from rigmerge.errors import HierarchyError
from rigmerge.rotation import rotation_order_code
from rigmerge.scene import SceneNode, SkinBinding

BIND_POSE_TOLERANCE = 1e-10


@dataclass(frozen=True, eq=False)
class JointNode:
    """A joint found by the traversal and its nearest joint ancestor (None for roots)."""

    node: SceneNode
    parent_joint: SceneNode | None


@dataclass
class ResolvedHierarchy:
    """Per-joint data for one subject, keyed by joint name.

    ``joint_names`` carries the canonical order: skin cluster order when the
    mesh is skinned, traversal order otherwise.
    """

    joint_names: list[str] = field(default_factory=list)
    nodes: dict[str, SceneNode] = field(default_factory=dict)
    parents: dict[str, str] = field(default_factory=dict)
    bind: dict[str, np.ndarray] = field(default_factory=dict)
    correction: dict[str, np.ndarray] = field(default_factory=dict)
    rotation_order: dict[str, tuple[int, int, int]] = field(default_factory=dict)


def find_joints(root: SceneNode, extra_joints: frozenset[SceneNode] = frozenset()) -> list[JointNode]:
    """Depth-first pre-order search for joints, tracking the nearest joint ancestor.

    A node is a joint if it carries the joint marker or is in ``extra_joints``
    (nodes linked by a skin cluster).
    """
    found: list[JointNode] = []
    stack: list[tuple[SceneNode, SceneNode | None]] = [(root, None)]
    while stack:
        node, nearest = stack.pop()
        if node.is_joint or node in extra_joints:
            found.append(JointNode(node=node, parent_joint=nearest))
            nearest = node
        for child in reversed(node.children):
            stack.append((child, nearest))
    return found


def check_bind_poses(skin: SkinBinding) -> np.ndarray:
    """Return the skin's shared mesh bind matrix.

    All clusters of one skin must store the same bind matrix (squared
    difference at most ``BIND_POSE_TOLERANCE`` between neighbours).
    """
    clusters = skin.clusters
    for j in range(1, len(clusters)):
        diff = clusters[j - 1].transform_matrix - clusters[j].transform_matrix
        if float(np.sum(diff * diff)) > BIND_POSE_TOLERANCE:
            raise HierarchyError(
                f"Multiple bind poses: clusters {clusters[j - 1].link.name!r} and "
                f"{clusters[j].link.name!r} store different bind matrices"
            )
    if not clusters:
        return np.eye(4)
    return clusters[0].transform_matrix.copy()


def ancestor_correction(joint: JointNode) -> np.ndarray:
    """Matrix compensating for non-joint nodes between a joint and its joint parent.

    Identity when the scene parent is the joint parent. Otherwise
    ``inv(G_scene_parent) @ G_joint_parent`` (or ``inv(G_scene_parent)`` for a
    root joint), so that ``correction @ inv(G_joint_parent) @ G_joint`` is the
    joint's transform relative to its immediate scene parent.
    """
    scene_parent = joint.node.parent
    if scene_parent is joint.parent_joint:
        return np.eye(4)

    inv_parent = np.linalg.inv(scene_parent.evaluate_global_transform())
    if joint.parent_joint is None:
        return inv_parent
    return inv_parent @ joint.parent_joint.evaluate_global_transform()


def resolve_hierarchy(root: SceneNode, skin: SkinBinding | None = None) -> ResolvedHierarchy:
    """Resolve joints, parents, bind transforms, corrections and rotation orders.

    Raises:
        HierarchyError: If the skin stores multiple bind poses or the
            traversal finds a different number of joints than the skin has
            clusters.
    """
    resolved = ResolvedHierarchy()
    link_bind: dict[str, np.ndarray | None] = {}

    if skin is not None:
        check_bind_poses(skin)
        for cluster in skin.clusters:
            resolved.joint_names.append(cluster.link.name)
            link_bind[cluster.link.name] = cluster.link_matrix
        joints = find_joints(root, frozenset(c.link for c in skin.clusters))
        if len(joints) != len(skin.clusters):
            raise HierarchyError(
                f"Scene has more joints than skin clusters: "
                f"{len(joints)}/{len(skin.clusters)}"
            )
    else:
        joints = find_joints(root)
        resolved.joint_names = [j.node.name for j in joints]

    for joint in joints:
        name = joint.node.name
        if name in resolved.nodes:
            raise HierarchyError(f"Duplicate joint name: {name!r}")
        resolved.nodes[name] = joint.node
        resolved.parents[name] = "" if joint.parent_joint is None else joint.parent_joint.name

        stored = link_bind.get(name)
        if stored is not None:
            resolved.bind[name] = stored.copy()
        else:
            resolved.bind[name] = joint.node.evaluate_global_transform()

        try:
            resolved.rotation_order[name] = rotation_order_code(joint.node.rotation_order)
        except ValueError as e:
            raise HierarchyError(f"Joint {name!r}: {e}") from e
        resolved.correction[name] = ancestor_correction(joint)

    if skin is not None:
        missing = [n for n in resolved.joint_names if n not in resolved.nodes]
        if missing:
            raise HierarchyError(f"Skin clusters link nodes outside the scene: {missing}")

    return resolved
