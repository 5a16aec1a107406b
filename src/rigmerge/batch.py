"""Batch files: which scenes to merge and which times to sample for each."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from rigmerge.assembler import RigModel
from rigmerge.errors import ParseError
from rigmerge.loader import ProgressCallback, load_rig
from rigmerge.scene import SceneImporter, open_scene
from rigmerge.warning_policy import WarningPolicy, validate_codes

SUPPORTED_VERSIONS: frozenset[str] = frozenset({"0.1"})


class FramesDef(BaseModel):
    """``count`` evenly spaced times starting at ``start`` seconds."""

    model_config = ConfigDict(extra="forbid")

    count: int = Field(ge=0)
    fps: float = Field(default=30.0, gt=0.0)
    start: float = 0.0

    def times(self) -> np.ndarray:
        return self.start + np.arange(self.count, dtype=np.float64) / self.fps


class SubjectDef(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str
    times: list[float] | None = None
    frames: FramesDef | None = None

    @model_validator(mode="after")
    def _exactly_one_time_source(self) -> SubjectDef:
        if (self.times is None) == (self.frames is None):
            raise ValueError(f"subject {self.path!r} must set exactly one of 'times' or 'frames'")
        return self

    def sample_times(self) -> np.ndarray:
        if self.times is not None:
            return np.asarray(self.times, dtype=np.float64)
        return self.frames.times()


class WarningsDef(BaseModel):
    model_config = ConfigDict(extra="forbid")

    as_error: list[str] = []
    suppress: list[str] = []

    @field_validator("as_error", "suppress")
    @classmethod
    def _known_codes(cls, v: list[str]) -> list[str]:
        return sorted(validate_codes(v))


class BatchSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: str
    expected_vertex_count: int | None = Field(default=None, ge=0)
    warnings: WarningsDef | None = None
    subjects: list[SubjectDef] = Field(min_length=1)


@dataclass
class Batch:
    """A resolved batch: absolute scene paths and the global time array."""

    paths: list[Path]
    times: np.ndarray
    frame_ranges: list[tuple[int, int]]
    expected_vertex_count: int | None = None
    warning_policy: WarningPolicy | None = None


def parse_batch(source: str | Path) -> BatchSpec:
    """Parse a batch YAML file or text.

    Raises:
        ParseError: On unreadable files, YAML errors, unsupported versions or
            schema violations.
    """
    if isinstance(source, Path):
        try:
            text = source.read_text(encoding="utf-8")
        except OSError as e:
            raise ParseError(f"Cannot read file: {e}") from e
    else:
        text = source

    yml = YAML(typ="safe")
    yml.allow_duplicate_keys = False
    try:
        data = yml.load(text)
    except YAMLError as e:
        raise ParseError(f"Invalid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ParseError("Top-level YAML value must be a mapping")
    version = data.get("version")
    if version is None:
        raise ParseError("Missing required field: version")
    if str(version) not in SUPPORTED_VERSIONS:
        raise ParseError(
            f"Unsupported batch version: {version!r} (supported: {sorted(SUPPORTED_VERSIONS)})"
        )

    try:
        return BatchSpec(**data)
    except PydanticValidationError as e:
        raise ParseError(f"Schema validation failed:\n{e}") from e


def resolve_batch(spec: BatchSpec, base_dir: Path) -> Batch:
    """Concatenate per-subject times and resolve paths against ``base_dir``."""
    paths: list[Path] = []
    chunks: list[np.ndarray] = []
    ranges: list[tuple[int, int]] = []
    start = 0
    for subject in spec.subjects:
        path = Path(subject.path)
        paths.append(path if path.is_absolute() else base_dir / path)
        times = subject.sample_times()
        chunks.append(times)
        ranges.append((start, len(times)))
        start += len(times)

    policy = None
    if spec.warnings is not None:
        policy = WarningPolicy(
            warn_as_error=frozenset(spec.warnings.as_error),
            suppress=frozenset(spec.warnings.suppress),
        )

    return Batch(
        paths=paths,
        times=np.concatenate(chunks) if chunks else np.zeros(0),
        frame_ranges=ranges,
        expected_vertex_count=spec.expected_vertex_count,
        warning_policy=policy,
    )


def load_batch(path: Path) -> Batch:
    """Parse and resolve a batch file; scene paths are relative to the file."""
    return resolve_batch(parse_batch(path), path.parent)


def run_batch(
    batch: Batch,
    *,
    importer: SceneImporter = open_scene,
    warning_policy: WarningPolicy | None = None,
    progress: ProgressCallback | None = None,
) -> RigModel:
    """Load the rig described by ``batch``.

    ``warning_policy`` (e.g. from the command line) is merged with the
    batch file's own policy.
    """
    policy = warning_policy
    if batch.warning_policy is not None:
        policy = batch.warning_policy.merged(warning_policy)

    return load_rig(
        batch.paths,
        batch.times,
        batch.frame_ranges,
        importer=importer,
        expected_vertex_count=batch.expected_vertex_count,
        warning_policy=policy,
        progress=progress,
    )
