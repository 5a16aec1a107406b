"""Multi-subject rig loading: open, resolve, validate and merge every scene in order."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

import numpy as np

from rigmerge.assembler import ModelAssembler, RigModel
from rigmerge.errors import InputError, RigMergeError, SceneError
from rigmerge.scene import SceneImporter, open_scene
from rigmerge.subject import load_subject
from rigmerge.warning_policy import WarningPolicy, emit_warning

ProgressCallback = Callable[[str], None]


def load_rig(
    paths: Sequence[str | Path],
    times: Sequence[float] | np.ndarray,
    frame_ranges: Sequence[tuple[int, int]],
    *,
    importer: SceneImporter = open_scene,
    expected_vertex_count: int | None = None,
    warning_policy: WarningPolicy | None = None,
    progress: ProgressCallback | None = None,
) -> RigModel:
    """Load every subject and consolidate them into one rig.

    Args:
        paths: One scene file per subject, in merge order.
        times: Global array of sample times (seconds).
        frame_ranges: Per subject ``(start, count)`` into ``times``.
        importer: Callable opening a path into a :class:`~rigmerge.scene.Scene`.
        expected_vertex_count: If set, subject 0 must have this many vertices.
        warning_policy: Escalation/suppression of W-codes.
        progress: Receives human-readable progress lines.

    Returns:
        The finalized rig.

    Raises:
        RigMergeError: On the first failure of any subject; nothing is returned.
    """
    times = np.asarray(times, dtype=np.float64).reshape(-1)
    _check_frame_ranges(paths, times, frame_ranges)

    say = progress or (lambda _msg: None)
    assembler = ModelAssembler([count for _, count in frame_ranges], warning_policy=warning_policy)

    say("Reading scenes:")
    for s, raw_path in enumerate(paths):
        path = Path(raw_path)
        say(f'    "{path}"... ')
        start, count = frame_ranges[s]
        if count == 0:
            emit_warning("W03", f"Subject {s} ({path}) has no frames", policy=warning_policy)

        with _subject_errors(s, path):
            scene = importer(path)
            subject = load_subject(
                scene, times[start : start + count], warning_policy=warning_policy
            )
            if subject.path is None:
                subject.path = path
            if s == 0 and expected_vertex_count is not None:
                if subject.vertex_count != expected_vertex_count:
                    raise InputError(
                        f"Inconsistent geometry: {subject.vertex_count} vertices, "
                        f"expected {expected_vertex_count}"
                    )
            assembler.add_subject(subject)
        say("    Done!")

    rig = assembler.finalize()
    say("    " + summarize(rig))
    return rig


def summarize(rig: RigModel) -> str:
    """One-line description: vertex, joint, key frame and weight presence."""
    parts = [f"{rig.vertex_count} vertices"]
    if rig.joint_count:
        parts.append(f"{rig.joint_count} joints found")
    if rig.has_keyframes:
        parts.append("key frames found")
    if rig.has_weights:
        parts.append("skinning weights found")
    return ", ".join(parts)


def _check_frame_ranges(
    paths: Sequence[str | Path],
    times: np.ndarray,
    frame_ranges: Sequence[tuple[int, int]],
) -> None:
    if len(paths) == 0:
        raise InputError("No scene files given")
    if len(frame_ranges) != len(paths):
        raise InputError(
            f"Subject count mismatch: {len(paths)} scene files, "
            f"{len(frame_ranges)} frame ranges"
        )
    for s, (start, count) in enumerate(frame_ranges):
        if start < 0 or count < 0 or start + count > len(times):
            raise InputError(
                f"Subject {s}: frame range (start={start}, count={count}) outside "
                f"{len(times)} sample times"
            )


@contextmanager
def _subject_errors(index: int, path: Path) -> Iterator[None]:
    """Prefix errors raised while handling one subject with its index and path."""
    try:
        yield
    except RigMergeError as e:
        message = str(e)
        if message.startswith(f"Subject {index}:") or f"Subject {index} (" in message:
            raise
        raise type(e)(f"Subject {index} ({path}): {e}") from e
    except OSError as e:
        raise SceneError(f"Subject {index} ({path}): error opening file: {e}") from e
