"""Tests for batch file parsing and running."""

import numpy as np
import pytest

from rigmerge.batch import load_batch, parse_batch, resolve_batch, run_batch
from rigmerge.errors import ConsistencyError, ParseError
from rigmerge.warning_policy import WarningPolicy


class TestParseBatch:
    def test_times_and_frames(self):
        spec = parse_batch(
            'version: "0.1"\n'
            "subjects:\n"
            "  - {path: a.scene.yaml, times: [0.0, 0.25]}\n"
            "  - {path: b.scene.yaml, frames: {count: 3, fps: 10, start: 1.0}}\n"
        )
        np.testing.assert_allclose(spec.subjects[0].sample_times(), [0.0, 0.25])
        np.testing.assert_allclose(spec.subjects[1].sample_times(), [1.0, 1.1, 1.2])

    def test_default_fps(self):
        spec = parse_batch('version: "0.1"\nsubjects:\n  - {path: a.yaml, frames: {count: 2}}\n')
        np.testing.assert_allclose(spec.subjects[0].sample_times(), [0.0, 1.0 / 30.0])

    def test_needs_one_time_source(self):
        with pytest.raises(ParseError, match="exactly one of 'times' or 'frames'"):
            parse_batch('version: "0.1"\nsubjects:\n  - {path: a.yaml}\n')
        with pytest.raises(ParseError, match="exactly one of 'times' or 'frames'"):
            parse_batch(
                'version: "0.1"\nsubjects:\n  - {path: a.yaml, times: [0], frames: {count: 1}}\n'
            )

    def test_needs_subjects(self):
        with pytest.raises(ParseError, match="Schema validation failed"):
            parse_batch('version: "0.1"\nsubjects: []\n')

    def test_bad_fps(self):
        with pytest.raises(ParseError, match="Schema validation failed"):
            parse_batch('version: "0.1"\nsubjects:\n  - {path: a.yaml, frames: {count: 1, fps: 0}}\n')

    def test_unknown_warning_code(self):
        with pytest.raises(ParseError, match="Unknown warning code"):
            parse_batch(
                'version: "0.1"\nwarnings: {as_error: [W99]}\n'
                "subjects:\n  - {path: a.yaml, times: [0]}\n"
            )

    def test_unsupported_version(self):
        with pytest.raises(ParseError, match="Unsupported batch version"):
            parse_batch('version: "2.0"\nsubjects: []\n')


class TestResolveBatch:
    def test_ranges_and_paths(self, tmp_path):
        spec = parse_batch(
            'version: "0.1"\n'
            "expected_vertex_count: 4\n"
            "warnings: {suppress: [W03]}\n"
            "subjects:\n"
            "  - {path: a.yaml, times: [0.0, 0.5, 1.0]}\n"
            f"  - {{path: {tmp_path / 'b.yaml'}, frames: {{count: 2, fps: 2}}}}\n"
        )
        batch = resolve_batch(spec, tmp_path / "batches")
        assert batch.paths == [tmp_path / "batches" / "a.yaml", tmp_path / "b.yaml"]
        np.testing.assert_allclose(batch.times, [0.0, 0.5, 1.0, 0.0, 0.5])
        assert batch.frame_ranges == [(0, 3), (3, 2)]
        assert batch.expected_vertex_count == 4
        assert batch.warning_policy == WarningPolicy(suppress=frozenset({"W03"}))


class TestRunBatch:
    def test_two_subjects(self, two_subject_batch):
        rig = run_batch(load_batch(two_subject_batch))
        assert rig.subject_count == 2
        assert rig.frame_ranges.tolist() == [[0, 3], [3, 2]]
        assert rig.joint_names == ("hips", "spine")

    def test_file_and_cli_policies_merge(self, tmp_path, arm_scene, write_scene):
        write_scene("a", arm_scene(spine_order="zxy"))
        write_scene("b", arm_scene(spine_order="xzy"))
        path = tmp_path / "orders.batch.yaml"
        path.write_text(
            'version: "0.1"\n'
            "warnings: {suppress: [W03]}\n"
            "subjects:\n"
            "  - {path: a.scene.yaml, times: [0.0]}\n"
            "  - {path: b.scene.yaml, times: [0.0]}\n"
        )
        batch = load_batch(path)
        with pytest.raises(ConsistencyError, match=r"\[W01\]"):
            run_batch(batch, warning_policy=WarningPolicy(warn_as_error=frozenset({"W01"})))
