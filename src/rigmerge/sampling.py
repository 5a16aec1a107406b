"""Per-joint transform sampling relative to the bind pose."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from rigmerge.scene import SceneNode


def sample_relative_transforms(
    node: SceneNode, bind: np.ndarray, times: Sequence[float] | np.ndarray
) -> np.ndarray:
    """Sample ``G(t) @ inv(bind)`` for every time.

    The inverse is a general 4x4 inverse: bind transforms of corrected
    joints are not guaranteed to be rigid.

    Returns:
        Array of shape (len(times), 4, 4).
    """
    inv_bind = np.linalg.inv(bind)
    out = np.empty((len(times), 4, 4))
    for k, t in enumerate(times):
        out[k] = node.evaluate_global_transform(float(t)) @ inv_bind
    return out


def has_keyframes(nodes: Sequence[SceneNode]) -> bool:
    """True if any node has a rotation or translation curve."""
    return any(node.has_animation_curve() for node in nodes)
