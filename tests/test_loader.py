"""Tests for multi-subject loading."""

import numpy as np
import pytest
import yaml

from rigmerge.errors import ConsistencyError, InputError, ParseError, SceneError
from rigmerge.loader import load_rig, summarize
from rigmerge.warning_policy import RigMergeWarning, WarningPolicy
from rigmerge.yaml_scene import read_yaml_scene


class TestLoadRig:
    def test_two_subjects(self, arm_scene, write_scene):
        walk = write_scene("walk", arm_scene())
        run = write_scene("run", arm_scene(hips_y=1.2))
        rig = load_rig([walk, run], [0.0, 0.5, 1.0, 0.0, 1.0], [(0, 3), (3, 2)])
        assert rig.subject_count == 2
        assert rig.frame_count == 5
        assert rig.frame_ranges.tolist() == [[0, 3], [3, 2]]
        assert rig.has_weights
        np.testing.assert_allclose(rig.bind[1, 0, 1, 3], 1.2)

    def test_progress_messages(self, arm_scene, write_scene):
        path = write_scene("walk", arm_scene())
        lines: list[str] = []
        load_rig([path], [0.0, 1.0], [(0, 2)], progress=lines.append)
        assert lines[0] == "Reading scenes:"
        assert lines[1] == f'    "{path}"... '
        assert lines[2] == "    Done!"
        assert lines[3] == "    4 vertices, 2 joints found, key frames found, skinning weights found"

    def test_custom_importer(self, arm_scene):
        text = yaml.safe_dump(arm_scene())
        opened = []

        def importer(path):
            opened.append(path.name)
            return read_yaml_scene(text)

        rig = load_rig(["a.fbx", "b.fbx"], [0.0, 1.0], [(0, 1), (1, 1)], importer=importer)
        assert opened == ["a.fbx", "b.fbx"]
        assert rig.subject_count == 2

    def test_shared_times(self, arm_scene, write_scene):
        path = write_scene("walk", arm_scene())
        rig = load_rig([path, path], [0.0, 1.0], [(0, 2), (0, 2)])
        np.testing.assert_allclose(rig.transforms[:2], rig.transforms[2:])

    def test_no_files(self):
        with pytest.raises(InputError, match="No scene files given"):
            load_rig([], [], [])

    def test_range_count_mismatch(self, arm_scene, write_scene):
        path = write_scene("walk", arm_scene())
        with pytest.raises(InputError, match="Subject count mismatch"):
            load_rig([path, path], [0.0], [(0, 1)])

    def test_range_outside_times(self, arm_scene, write_scene):
        path = write_scene("walk", arm_scene())
        with pytest.raises(InputError, match="outside 2 sample times"):
            load_rig([path], [0.0, 1.0], [(1, 2)])

    def test_missing_file_names_subject(self, arm_scene, write_scene, tmp_path):
        path = write_scene("walk", arm_scene())
        with pytest.raises(ParseError, match=r"Subject 1 \(.*missing.scene.yaml\)"):
            load_rig([path, tmp_path / "missing.scene.yaml"], [0.0], [(0, 1), (0, 1)])

    def test_no_mesh_names_subject(self, write_scene):
        path = write_scene("bare", {"version": "0.1", "nodes": [{"name": "hips", "joint": True}]})
        with pytest.raises(SceneError, match=r"Subject 0 \(.*bare.scene.yaml\): Scene has no mesh"):
            load_rig([path], [0.0], [(0, 1)])

    def test_expected_vertex_count(self, arm_scene, write_scene):
        path = write_scene("walk", arm_scene())
        with pytest.raises(InputError, match="Inconsistent geometry: 4 vertices, expected 5"):
            load_rig([path], [0.0], [(0, 1)], expected_vertex_count=5)

    def test_consistency_error_prefixed_once(self, arm_scene, write_scene):
        walk = write_scene("walk", arm_scene())
        other = arm_scene()
        other["nodes"][0]["children"][1]["mesh"]["polygons"] = [[0, 1, 3], [1, 2, 3]]
        run = write_scene("run", other)
        with pytest.raises(ConsistencyError) as excinfo:
            load_rig([walk, run], [0.0], [(0, 1), (0, 1)])
        assert str(excinfo.value).count("Subject 1") == 1

    def test_escalated_rotation_order(self, arm_scene, write_scene):
        walk = write_scene("walk", arm_scene(spine_order="zxy"))
        run = write_scene("run", arm_scene(spine_order="yzx"))
        policy = WarningPolicy(warn_as_error=frozenset({"W01"}))
        with pytest.raises(ConsistencyError, match=r"\[W01\]"):
            load_rig([walk, run], [0.0], [(0, 1), (0, 1)], warning_policy=policy)

    def test_zero_frames_warns(self, arm_scene, write_scene):
        path = write_scene("walk", arm_scene())
        with pytest.warns(RigMergeWarning, match=r"\[W03\]"):
            rig = load_rig([path, path], [0.0], [(0, 1), (0, 0)])
        assert rig.frame_ranges.tolist() == [[0, 1], [1, 0]]
        assert rig.subject_transforms(1).shape == (0, 2, 4, 4)


class TestSummarize:
    def test_static_unskinned(self, arm_scene, write_scene):
        path = write_scene("walk", arm_scene(animated=False, skinned=False))
        rig = load_rig([path], [0.0], [(0, 1)])
        assert summarize(rig) == "4 vertices, 2 joints found"
