"""Human- and machine-readable summaries of a consolidated rig."""

from __future__ import annotations

import math

import numpy as np

from rigmerge import __version__
from rigmerge.assembler import RigModel
from rigmerge.rotation import ROTATION_ORDERS, matrix_to_euler

INSPECT_SCHEMA_VERSION = 1

_ORDER_NAMES: dict[tuple[int, int, int], str] = {code: name for name, code in ROTATION_ORDERS.items()}


def inspect_rig(rig: RigModel, *, subject: int = 0) -> dict[str, object]:
    """Build a JSON-serializable payload describing ``rig``.

    Per-joint bind data is reported for one subject (default 0), with the
    bind rotation decomposed in that joint's own rotation order.
    """
    if not 0 <= subject < rig.subject_count:
        raise IndexError(f"Subject {subject} out of range (rig has {rig.subject_count})")

    positions = rig.rest_positions[subject]
    if positions.size:
        bounds = {"min": _to_list(positions.min(axis=0)), "max": _to_list(positions.max(axis=0))}
    else:
        bounds = {"min": [0.0, 0.0, 0.0], "max": [0.0, 0.0, 0.0]}

    joints = []
    for j, name in enumerate(rig.joint_names):
        code = tuple(int(v) for v in rig.rotation_order[subject, j])
        order = _ORDER_NAMES.get(code, "xyz")
        bind = rig.bind[subject, j]
        joints.append(
            {
                "name": name,
                "parent": int(rig.parents[j]),
                "rotation_order": order,
                "bind_translation": _to_list(bind[:3, 3]),
                "bind_rotation_degrees": [
                    math.degrees(a) for a in matrix_to_euler(_rotation_part(bind), order)
                ],
                "corrected": not np.allclose(rig.correction[subject, j], np.eye(4)),
                "weighted_vertices": (
                    int(rig.weights[j].count_nonzero()) if rig.has_weights else 0
                ),
            }
        )

    return {
        "inspect_schema_version": INSPECT_SCHEMA_VERSION,
        "summary": {
            "rigmerge_version": __version__,
            "subject_count": rig.subject_count,
            "vertex_count": rig.vertex_count,
            "face_count": len(rig.faces),
            "joint_count": rig.joint_count,
            "frame_count": rig.frame_count,
            "has_keyframes": rig.has_keyframes,
            "has_weights": rig.has_weights,
            "bounds": bounds,
        },
        "subject": subject,
        "frame_ranges": [[int(s), int(c)] for s, c in rig.frame_ranges],
        "joints": joints,
    }


def render_text(payload: dict[str, object]) -> str:
    """Render human-readable text output for inspect payloads."""
    lines: list[str] = []
    lines.append(f"inspect_schema_version: {payload['inspect_schema_version']}")

    summary = payload["summary"]
    bounds = summary["bounds"]
    lines.append("summary:")
    lines.append(f"  rigmerge_version: {summary['rigmerge_version']}")
    lines.append(f"  subject_count: {summary['subject_count']}")
    lines.append(f"  vertex_count: {summary['vertex_count']}")
    lines.append(f"  face_count: {summary['face_count']}")
    lines.append(f"  joint_count: {summary['joint_count']}")
    lines.append(f"  frame_count: {summary['frame_count']}")
    lines.append(f"  has_keyframes: {str(summary['has_keyframes']).lower()}")
    lines.append(f"  has_weights: {str(summary['has_weights']).lower()}")
    lines.append(f"  bounds.min: {_fmt_vec(bounds['min'])}")
    lines.append(f"  bounds.max: {_fmt_vec(bounds['max'])}")

    lines.append(f"joints (subject {payload['subject']}):")
    joints = payload.get("joints", [])
    if joints:
        for joint in joints:
            lines.append(f"  - name: {joint['name']}")
            lines.append(f"    parent: {joint['parent']}")
            lines.append(f"    rotation_order: {joint['rotation_order']}")
            lines.append(f"    bind_translation: {_fmt_vec(joint['bind_translation'])}")
            lines.append(f"    bind_rotation_degrees: {_fmt_vec(joint['bind_rotation_degrees'])}")
            lines.append(f"    corrected: {str(joint['corrected']).lower()}")
            lines.append(f"    weighted_vertices: {joint['weighted_vertices']}")
    else:
        lines.append("  []")

    return "\n".join(lines) + "\n"


def _rotation_part(mat: np.ndarray) -> np.ndarray:
    """Upper 3x3 with column scale removed."""
    rot = mat[:3, :3]
    scale = np.linalg.norm(rot, axis=0)
    return rot / np.where(scale == 0.0, 1.0, scale)


def _to_list(vec: np.ndarray) -> list[float]:
    return [float(v) for v in vec]


def _fmt_vec(vec: object) -> str:
    if isinstance(vec, (list, tuple)):
        return "[" + ", ".join(f"{float(v):.6g}" for v in vec) + "]"
    return str(vec)
