"""Rig archive (.npz) writing and reading."""

from __future__ import annotations

from pathlib import Path

import numpy as np
from scipy.sparse import csr_matrix

from rigmerge.assembler import RigModel
from rigmerge.errors import ExportError

ARCHIVE_VERSION = 1

_REQUIRED_KEYS: frozenset[str] = frozenset(
    {
        "archive_version",
        "vertex_count",
        "face_indices",
        "face_sizes",
        "joint_names",
        "parents",
        "bind",
        "correction",
        "rotation_order",
        "transforms",
        "weights_data",
        "weights_indices",
        "weights_indptr",
        "weights_shape",
        "rest_positions",
        "frame_ranges",
        "has_keyframes",
    }
)


def export_rig(rig: RigModel, output_path: Path) -> None:
    """Write a finalized rig to a compressed ``.npz`` archive.

    Faces are stored flattened with per-face sizes; weights as CSR parts.
    """
    try:
        face_sizes = np.array([len(f) for f in rig.faces], dtype=np.int64)
        face_indices = np.array([i for f in rig.faces for i in f], dtype=np.int64)
        weights = rig.weights.tocsr()
        with open(output_path, "wb") as f:
            np.savez_compressed(
                f,
                archive_version=np.int64(ARCHIVE_VERSION),
                vertex_count=np.int64(rig.vertex_count),
                face_indices=face_indices,
                face_sizes=face_sizes,
                joint_names=np.array(rig.joint_names, dtype=np.str_),
                parents=rig.parents,
                bind=rig.bind,
                correction=rig.correction,
                rotation_order=rig.rotation_order,
                transforms=rig.transforms,
                weights_data=weights.data,
                weights_indices=weights.indices,
                weights_indptr=weights.indptr,
                weights_shape=np.array(weights.shape, dtype=np.int64),
                rest_positions=rig.rest_positions,
                frame_ranges=rig.frame_ranges,
                has_keyframes=np.bool_(rig.has_keyframes),
            )
    except Exception as e:
        if isinstance(e, ExportError):
            raise
        raise ExportError(f"Failed to write rig archive: {e}") from e


def read_rig(path: Path) -> RigModel:
    """Read a rig archive written by :func:`export_rig`.

    Raises:
        ExportError: If the file is missing, unreadable or not a rig archive.
    """
    try:
        with np.load(path, allow_pickle=False) as data:
            missing = _REQUIRED_KEYS - set(data.files)
            if missing:
                raise ExportError(f"Not a rig archive, missing: {sorted(missing)}")
            version = int(data["archive_version"])
            if version != ARCHIVE_VERSION:
                raise ExportError(f"Unsupported rig archive version: {version}")

            faces: list[tuple[int, ...]] = []
            flat = data["face_indices"]
            offset = 0
            for size in data["face_sizes"]:
                faces.append(tuple(int(v) for v in flat[offset : offset + size]))
                offset += int(size)

            weights = csr_matrix(
                (data["weights_data"], data["weights_indices"], data["weights_indptr"]),
                shape=tuple(int(v) for v in data["weights_shape"]),
            )
            return RigModel(
                vertex_count=int(data["vertex_count"]),
                faces=tuple(faces),
                joint_names=tuple(str(n) for n in data["joint_names"]),
                parents=data["parents"],
                bind=data["bind"],
                correction=data["correction"],
                rotation_order=data["rotation_order"],
                transforms=data["transforms"],
                weights=weights,
                rest_positions=data["rest_positions"],
                frame_ranges=data["frame_ranges"],
                has_keyframes=bool(data["has_keyframes"]),
            )
    except Exception as e:
        if isinstance(e, ExportError):
            raise
        raise ExportError(f"Failed to read rig archive {path}: {e}") from e
