"""Provenance record written next to a merged rig archive."""

from __future__ import annotations

import hashlib
import json
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path

from rigmerge import __version__
from rigmerge.assembler import RigModel
from rigmerge.batch import Batch

MANIFEST_VERSION = 1


def _file_entry(path: Path) -> dict[str, str]:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 16), b""):
            digest.update(chunk)
    return {"path": str(path), "sha256": digest.hexdigest()}


def _git_sha() -> str | None:
    """HEAD of the working directory's git checkout, if there is one."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    return result.stdout.strip() if result.returncode == 0 else None


def build_manifest(
    *,
    batch_path: Path,
    batch: Batch,
    rig: RigModel,
    output_path: Path,
    command_args: list[str] | None = None,
) -> dict:
    """Describe one merge run: inputs, per-subject frame ranges, the rig and the archive.

    Call it after the archive has been written; every file is hashed.
    """
    subjects = []
    for s, path in enumerate(batch.paths):
        start, count = batch.frame_ranges[s]
        entry = _file_entry(path)
        entry["frame_range"] = [start, count]
        if count:
            entry["time_span"] = [
                float(batch.times[start]),
                float(batch.times[start + count - 1]),
            ]
        subjects.append(entry)

    manifest: dict = {
        "manifest_version": MANIFEST_VERSION,
        "tool": {
            "name": "rigmerge",
            "version": __version__,
            "python": sys.version.split()[0],
            "git_sha": _git_sha(),
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "batch": _file_entry(batch_path),
        "subjects": subjects,
        "rig": {
            "vertex_count": rig.vertex_count,
            "joint_count": rig.joint_count,
            "frame_count": rig.frame_count,
            "has_keyframes": rig.has_keyframes,
            "has_weights": rig.has_weights,
        },
        "output": _file_entry(output_path),
    }
    if command_args is not None:
        manifest["command_args"] = command_args
    return manifest


def write_manifest(manifest: dict, path: Path) -> None:
    path.write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
