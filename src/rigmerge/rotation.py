"""Rotation-order codes and Euler / quaternion / TRS matrix helpers.

Rotation orders name the axes in the order they are applied, so ``"xyz"``
rotates about X first, then Y, then Z: ``R = Rz @ Ry @ Rx`` for column
vectors. The order code is the same sequence as axis indices.
"""

from __future__ import annotations

import math

import numpy as np

ROTATION_ORDERS: dict[str, tuple[int, int, int]] = {
    "xyz": (0, 1, 2),
    "xzy": (0, 2, 1),
    "yzx": (1, 2, 0),
    "yxz": (1, 0, 2),
    "zxy": (2, 0, 1),
    "zyx": (2, 1, 0),
}

# Even permutations of (0, 1, 2)
_EVEN_ORDERS: frozenset[tuple[int, int, int]] = frozenset({(0, 1, 2), (1, 2, 0), (2, 0, 1)})


def rotation_order_code(order: str) -> tuple[int, int, int]:
    """Map a rotation order name (case-insensitive) to its axis permutation."""
    try:
        return ROTATION_ORDERS[order.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown rotation order: {order!r} (known: {sorted(ROTATION_ORDERS)})"
        ) from None


def axis_rotation(axis: int, angle: float) -> np.ndarray:
    """3x3 rotation of ``angle`` radians about a principal axis (0=X, 1=Y, 2=Z)."""
    c = math.cos(angle)
    s = math.sin(angle)
    if axis == 0:
        return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])
    if axis == 1:
        return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])
    if axis == 2:
        return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])
    raise ValueError(f"Axis index must be 0, 1 or 2, got {axis}")


def euler_to_matrix(angles: tuple[float, float, float] | np.ndarray, order: str) -> np.ndarray:
    """Build a 3x3 rotation from per-axis angles (radians, indexed X, Y, Z).

    The angles are always given as (x, y, z); ``order`` only controls the
    sequence in which they are applied.
    """
    code = rotation_order_code(order)
    result = np.eye(3)
    for axis in code:
        result = axis_rotation(axis, float(angles[axis])) @ result
    return result


def matrix_to_euler(rotation: np.ndarray, order: str) -> np.ndarray:
    """Decompose a 3x3 rotation into (x, y, z) angles in radians for ``order``.

    Inverse of :func:`euler_to_matrix` away from gimbal lock; at gimbal lock
    the last applied angle is fixed to zero.
    """
    i, j, k = rotation_order_code(order)
    sign = 1.0 if (i, j, k) in _EVEN_ORDERS else -1.0
    r = np.asarray(rotation, dtype=np.float64)

    sin_b = float(np.clip(-sign * r[k, i], -1.0, 1.0))
    b = math.asin(sin_b)
    if abs(sin_b) < 1.0 - 1e-12:
        a = math.atan2(sign * r[k, j], r[k, k])
        c = math.atan2(sign * r[j, i], r[i, i])
    else:
        a = math.atan2(-sign * r[j, k], r[j, j])
        c = 0.0

    angles = np.zeros(3)
    angles[i] = a
    angles[j] = b
    angles[k] = c
    return angles


def quat_to_matrix(quat: tuple[float, float, float, float] | np.ndarray) -> np.ndarray:
    """3x3 rotation from a quaternion in glTF order [x, y, z, w] (normalized first)."""
    q = np.asarray(quat, dtype=np.float64)
    norm = float(np.linalg.norm(q))
    if norm == 0.0:
        return np.eye(3)
    x, y, z, w = q / norm
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
            [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
            [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
        ]
    )


def quat_slerp(q0: np.ndarray, q1: np.ndarray, t: float) -> np.ndarray:
    """Spherical linear interpolation between two [x, y, z, w] quaternions."""
    q0 = np.asarray(q0, dtype=np.float64)
    q1 = np.asarray(q1, dtype=np.float64)
    dot = float(np.dot(q0, q1))
    if dot < 0.0:
        q1 = -q1
        dot = -dot
    if dot > 0.9995:
        out = q0 + t * (q1 - q0)
        return out / np.linalg.norm(out)
    theta = math.acos(dot)
    s0 = math.sin((1.0 - t) * theta) / math.sin(theta)
    s1 = math.sin(t * theta) / math.sin(theta)
    return s0 * q0 + s1 * q1


def compose_trs(
    translation: np.ndarray | tuple[float, float, float],
    rotation: np.ndarray,
    scale: np.ndarray | tuple[float, float, float],
) -> np.ndarray:
    """4x4 matrix ``T @ R @ S`` from translation, 3x3 rotation and per-axis scale."""
    mat = np.eye(4)
    mat[:3, :3] = np.asarray(rotation, dtype=np.float64) * np.asarray(scale, dtype=np.float64)
    mat[:3, 3] = translation
    return mat
