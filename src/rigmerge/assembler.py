"""Aggregate rig record: built from subject 0, extended per subject, finalized once."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from functools import cached_property

import numpy as np
from scipy.sparse import csr_matrix

from rigmerge.consistency import check_subject
from rigmerge.errors import InputError, RigMergeError, WeightError
from rigmerge.subject import Subject
from rigmerge.warning_policy import WarningPolicy
from rigmerge.weights import WeightAggregator


@dataclass(frozen=True, eq=False)
class RigModel:
    """The consolidated rig handed to downstream consumers.

    Per-subject arrays are indexed ``[subject, joint]``. ``transforms`` holds
    every subject's sampled relative transforms back to back, subject ``s``
    occupying ``frame_ranges[s]`` as ``(start, count)``; it is empty when no
    subject has keyframe animation. ``weights`` is a (joints, vertices) CSR
    matrix, or 0x0 when no subject is skinned.
    """

    vertex_count: int
    faces: tuple[tuple[int, ...], ...]
    joint_names: tuple[str, ...]
    parents: np.ndarray  # (B,) int, -1 for roots
    bind: np.ndarray  # (S, B, 4, 4)
    correction: np.ndarray  # (S, B, 4, 4)
    rotation_order: np.ndarray  # (S, B, 3) int
    transforms: np.ndarray  # (F, B, 4, 4) or (0, B, 4, 4)
    weights: csr_matrix
    rest_positions: np.ndarray  # (S, V, 3)
    frame_ranges: np.ndarray  # (S, 2) int
    has_keyframes: bool

    @property
    def subject_count(self) -> int:
        return int(self.bind.shape[0])

    @property
    def joint_count(self) -> int:
        return len(self.joint_names)

    @property
    def frame_count(self) -> int:
        return int(self.transforms.shape[0])

    @property
    def has_weights(self) -> bool:
        return self.weights.shape[0] > 0

    @cached_property
    def _joint_lookup(self) -> dict[str, int]:
        return {name: j for j, name in enumerate(self.joint_names)}

    def joint_index(self, name: str) -> int:
        try:
            return self._joint_lookup[name]
        except KeyError:
            raise KeyError(f"Unknown joint: {name!r}") from None

    def parent_chain(self, joint: int) -> list[int]:
        """Joint indices from ``joint`` up to its root, inclusive.

        Raises:
            RigMergeError: If the parent array contains a cycle.
        """
        chain = [joint]
        current = int(self.parents[joint])
        while current != -1:
            if len(chain) > self.joint_count:
                raise RigMergeError(f"Parent cycle through joint {self.joint_names[joint]!r}")
            chain.append(current)
            current = int(self.parents[current])
        return chain

    def subject_transforms(self, subject: int) -> np.ndarray:
        """Relative transforms sampled for one subject, shape (count, B, 4, 4)."""
        if not self.has_keyframes:
            return self.transforms
        start, count = (int(v) for v in self.frame_ranges[subject])
        return self.transforms[start : start + count]

    def scene_local_bind(self, subject: int) -> np.ndarray:
        """Bind transform of each joint relative to its immediate scene parent.

        Folds the ancestor correction into the joint-local transform:
        ``correction @ inv(bind[parent]) @ bind[joint]``, with the parent
        bind taken as identity for roots.
        """
        bind = self.bind[subject]
        out = np.empty_like(bind)
        for j in range(self.joint_count):
            p = int(self.parents[j])
            local = bind[j] if p == -1 else np.linalg.solve(bind[p], bind[j])
            out[j] = self.correction[subject, j] @ local
        return out


class ModelAssembler:
    """Owns the rig while subjects are merged one by one.

    Subject 0 fixes the vertex count, faces and canonical joint order; later
    subjects are validated against it and written by canonical index.
    """

    def __init__(
        self,
        frame_counts: Sequence[int],
        *,
        warning_policy: WarningPolicy | None = None,
    ) -> None:
        if len(frame_counts) == 0:
            raise InputError("At least one subject is required")
        self.frame_counts = [int(c) for c in frame_counts]
        self.subject_count = len(self.frame_counts)
        self.warning_policy = warning_policy

        self.vertex_count = 0
        self.faces: list[tuple[int, ...]] = []
        self.joint_names: list[str] = []
        self.joint_lookup: dict[str, int] = {}
        self.parents = np.zeros(0, dtype=np.int64)

        self._offsets = np.concatenate([[0], np.cumsum(self.frame_counts)]).astype(np.int64)
        self._bind: np.ndarray | None = None
        self._correction: np.ndarray | None = None
        self._rotation_order: np.ndarray | None = None
        self._transforms: np.ndarray | None = None
        self._rest_positions: np.ndarray | None = None
        self._weights = WeightAggregator()
        self._any_keyframes = False
        self._merged = 0
        self._finalized = False

    @property
    def merged_count(self) -> int:
        return self._merged

    def parent_name(self, joint: int) -> str:
        p = int(self.parents[joint])
        return "" if p == -1 else self.joint_names[p]

    def base_rotation_order(self, joint: int) -> tuple[int, int, int]:
        return tuple(int(v) for v in self._rotation_order[0, joint])

    def add_subject(self, subject: Subject) -> None:
        """Validate (for subjects after the first) and merge the next subject."""
        if self._finalized:
            raise RigMergeError("Rig already finalized")
        index = self._merged
        if index >= self.subject_count:
            raise InputError(
                f"Subject count mismatch: more than {self.subject_count} subjects added"
            )

        if index == 0:
            self._init_from(subject)
        else:
            check_subject(self, subject, index, warning_policy=self.warning_policy)

        self._store_slot(subject, index)
        self._merged += 1

    def finalize(self) -> RigModel:
        """Average weights, fold the animation flag and freeze the rig."""
        if self._finalized:
            raise RigMergeError("Rig already finalized")
        if self._merged != self.subject_count:
            raise InputError(
                f"Subject count mismatch: {self._merged} subjects merged, "
                f"expected {self.subject_count}"
            )
        self._finalized = True

        weights = self._weights.finalize(self.subject_count)
        transforms = self._transforms
        if not self._any_keyframes:
            transforms = transforms[:0]

        frame_ranges = np.stack([self._offsets[:-1], np.asarray(self.frame_counts)], axis=1)
        arrays = [
            self.parents,
            self._bind,
            self._correction,
            self._rotation_order,
            transforms,
            self._rest_positions,
            frame_ranges,
        ]
        for arr in arrays:
            arr.setflags(write=False)

        return RigModel(
            vertex_count=self.vertex_count,
            faces=tuple(self.faces),
            joint_names=tuple(self.joint_names),
            parents=self.parents,
            bind=self._bind,
            correction=self._correction,
            rotation_order=self._rotation_order,
            transforms=transforms,
            weights=weights,
            rest_positions=self._rest_positions,
            frame_ranges=frame_ranges,
            has_keyframes=self._any_keyframes,
        )

    def _init_from(self, subject: Subject) -> None:
        s_count = self.subject_count
        self.vertex_count = subject.vertex_count
        self.faces = list(subject.faces)
        self.joint_names = list(subject.joint_names)
        self.joint_lookup = {name: j for j, name in enumerate(self.joint_names)}

        b = len(self.joint_names)
        parents = subject.hierarchy.parents
        self.parents = np.array(
            [self.joint_lookup.get(parents[name], -1) for name in self.joint_names],
            dtype=np.int64,
        )

        self._bind = np.zeros((s_count, b, 4, 4))
        self._correction = np.zeros((s_count, b, 4, 4))
        self._rotation_order = np.zeros((s_count, b, 3), dtype=np.int64)
        self._transforms = np.zeros((int(self._offsets[-1]), b, 4, 4))
        self._rest_positions = np.zeros((s_count, self.vertex_count, 3))
        self._weights.start(b, self.vertex_count, expect_weights=subject.weights is not None)

    def _store_slot(self, subject: Subject, index: int) -> None:
        hierarchy = subject.hierarchy
        slots = [(self.joint_lookup[name], name) for name in subject.joint_names]
        for j, name in slots:
            self._bind[index, j] = hierarchy.bind[name]
            self._correction[index, j] = hierarchy.correction[name]
            self._rotation_order[index, j] = hierarchy.rotation_order[name]

        self._rest_positions[index] = subject.positions

        start = int(self._offsets[index])
        count = self.frame_counts[index]
        for j, name in slots:
            series = subject.transforms[name]
            if series.shape[0] != count:
                raise InputError(
                    f"Subject {index}: joint {name!r} sampled {series.shape[0]} frames, "
                    f"expected {count}"
                )
            self._transforms[start : start + count, j] = series

        self._weights.add(index, self._weight_table(subject, index))
        self._any_keyframes = self._any_keyframes or subject.has_keyframes

    def _weight_table(self, subject: Subject, index: int) -> np.ndarray | None:
        """Subject weights as a (joints, vertices) array in canonical joint order."""
        if subject.weights is None:
            return None
        joint_count = len(self.joint_names)
        if len(subject.weights) != joint_count:
            raise WeightError(
                f"Subject {index}: inconsistent skinning weights "
                f"({len(subject.weights)} weighted joints, expected {joint_count})"
            )
        table = np.zeros((joint_count, self.vertex_count))
        for name, row in subject.weights.items():
            table[self.joint_lookup[name]] = row
        return table
