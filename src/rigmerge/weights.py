"""Skinning weight gathering and cross-subject averaging."""

from __future__ import annotations

import numpy as np
from scipy.sparse import csr_matrix

from rigmerge.errors import WeightError
from rigmerge.scene import SkinBinding

SPARSE_THRESHOLD = 1e-20


def gather_skin_weights(skin: SkinBinding, vertex_count: int) -> dict[str, np.ndarray]:
    """Expand each cluster's (index, weight) lists into a dense per-vertex vector.

    Raises:
        WeightError: If a cluster references a vertex index outside [0, vertex_count).
    """
    result: dict[str, np.ndarray] = {}
    for cluster in skin.clusters:
        name = cluster.link.name
        idx = cluster.indices
        bad = idx[(idx < 0) | (idx >= vertex_count)]
        if bad.size:
            raise WeightError(
                f"Skin cluster {name!r} references vertex index {int(bad[0])} "
                f"outside mesh with {vertex_count} vertices"
            )
        row = np.zeros(vertex_count)
        row[idx] = cluster.weights
        result[name] = row
    return result


class WeightAggregator:
    """Running joints x vertices sum of the weight tables of every subject.

    Subject 0 decides whether weights are expected at all; every later
    subject must agree, and tables are added row by row in canonical joint
    order.
    """

    def __init__(self) -> None:
        self._sum: np.ndarray | None = None
        self._expected = False
        self._joint_count = 0
        self._vertex_count = 0
        self._started = False

    @property
    def has_weights(self) -> bool:
        return self._expected

    def start(self, joint_count: int, vertex_count: int, *, expect_weights: bool) -> None:
        """Fix the table shape; call once, before the first :meth:`add`."""
        self._joint_count = joint_count
        self._vertex_count = vertex_count
        self._expected = expect_weights
        self._sum = np.zeros((joint_count, vertex_count)) if expect_weights else None
        self._started = True

    def add(self, subject_index: int, table: np.ndarray | None) -> None:
        """Add one subject's (joints, vertices) table, or ``None`` if it has no skin."""
        if not self._started:
            raise WeightError("WeightAggregator.add() called before start()")

        if (table is not None) != self._expected:
            raise WeightError(
                f"Subject {subject_index}: inconsistent skinning weights "
                f"({'present' if table is not None else 'absent'}, "
                f"{'present' if self._expected else 'absent'} in subject 0)"
            )
        if table is None:
            return
        if table.shape[0] != self._joint_count:
            raise WeightError(
                f"Subject {subject_index}: inconsistent skinning weights "
                f"({table.shape[0]} weighted joints, expected {self._joint_count})"
            )
        if table.shape[1] != self._vertex_count:
            raise WeightError(
                f"Subject {subject_index}: inconsistent skinning weights "
                f"({table.shape[1]} vertex columns, expected {self._vertex_count})"
            )
        self._sum += table

    def finalize(self, subject_count: int) -> csr_matrix:
        """Average over ``subject_count`` and drop entries below ``SPARSE_THRESHOLD``."""
        if self._sum is None:
            return csr_matrix((0, 0))
        averaged = self._sum / subject_count
        averaged[np.abs(averaged) < SPARSE_THRESHOLD] = 0.0
        return csr_matrix(averaged)
