"""Cross-subject consistency checks run before a subject is merged."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rigmerge.errors import ConsistencyError
from rigmerge.subject import Subject
from rigmerge.warning_policy import WarningPolicy, emit_warning

if TYPE_CHECKING:
    from rigmerge.assembler import ModelAssembler


def check_subject(
    assembler: ModelAssembler,
    subject: Subject,
    index: int,
    *,
    warning_policy: WarningPolicy | None = None,
) -> None:
    """Compare subject ``index`` (>= 1) against the rig built so far.

    Checks run in a fixed order and the first failure aborts the load:
    vertex count, face topology, joint count, then per canonical joint its
    presence, parent name, bind transform, ancestor correction and rotation
    order. A rotation order that differs from subject 0 is warning W01.

    Raises:
        ConsistencyError: On the first failed check.
    """
    where = _describe(subject, index)

    if subject.vertex_count != assembler.vertex_count:
        raise ConsistencyError(
            f"{where}: inconsistent geometry: {subject.vertex_count} vertices, "
            f"expected {assembler.vertex_count}"
        )
    if subject.faces != assembler.faces:
        raise ConsistencyError(f"{where}: inconsistent geometry: face topology differs")

    joint_names = assembler.joint_names
    hierarchy = subject.hierarchy
    if len(hierarchy.joint_names) != len(joint_names):
        raise ConsistencyError(
            f"{where}: inconsistent joints set: {len(hierarchy.joint_names)} joints, "
            f"expected {len(joint_names)}"
        )

    for j, name in enumerate(joint_names):
        if name not in hierarchy.parents:
            raise ConsistencyError(f"{where}: inconsistent joints set: joint {name!r} missing")
        expected_parent = assembler.parent_name(j)
        if hierarchy.parents[name] != expected_parent:
            raise ConsistencyError(
                f"{where}: inconsistent skeleton hierarchy: joint {name!r} has parent "
                f"{hierarchy.parents[name]!r}, expected {expected_parent!r}"
            )
        if name not in hierarchy.bind:
            raise ConsistencyError(
                f"{where}: inconsistent joints set: no bind transform for {name!r}"
            )
        if name not in hierarchy.correction:
            raise ConsistencyError(
                f"{where}: inconsistent joints set: no ancestor correction for {name!r}"
            )
        if name not in hierarchy.rotation_order:
            raise ConsistencyError(
                f"{where}: inconsistent joints set: no rotation order for {name!r}"
            )
        if tuple(hierarchy.rotation_order[name]) != assembler.base_rotation_order(j):
            emit_warning(
                "W01",
                f"{where}: joint {name!r} rotation order "
                f"{tuple(hierarchy.rotation_order[name])} differs from subject 0 "
                f"{assembler.base_rotation_order(j)}",
                policy=warning_policy,
            )


def _describe(subject: Subject, index: int) -> str:
    if subject.path is None:
        return f"Subject {index}"
    return f"Subject {index} ({subject.path})"
