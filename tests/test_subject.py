"""Tests for turning one scene into subject data."""

import numpy as np
import pytest
import yaml

from rigmerge.errors import SceneError
from rigmerge.subject import load_subject
from rigmerge.warning_policy import RigMergeWarning, WarningPolicy
from rigmerge.yaml_scene import read_yaml_scene

QUAD = [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]]


def _scene(data: dict):
    return read_yaml_scene(yaml.safe_dump(data, sort_keys=False))


class TestLoadSubject:
    def test_skinned_arm(self, arm_scene):
        subject = load_subject(_scene(arm_scene()), [0.0, 0.5, 1.0])
        np.testing.assert_allclose(subject.positions, np.array(QUAD) + [0.0, 1.0, 0.0])
        assert subject.faces == [(0, 1, 2), (0, 2, 3)]
        assert subject.joint_names == ["hips", "spine"]
        assert subject.has_keyframes
        assert subject.transforms["spine"].shape == (3, 4, 4)
        np.testing.assert_allclose(subject.weights["hips"], [1.0, 0.6, 0.2, 0.0])

    def test_static_joints_sample_identity(self, arm_scene):
        subject = load_subject(_scene(arm_scene(animated=False)), [0.0, 1.0])
        assert not subject.has_keyframes
        for series in subject.transforms.values():
            np.testing.assert_allclose(series, np.broadcast_to(np.eye(4), (2, 4, 4)), atol=1e-12)

    def test_unskinned_mesh_uses_node_transform(self, arm_scene):
        subject = load_subject(_scene(arm_scene(skinned=False, hips_y=3.0)), [0.0])
        assert subject.weights is None
        np.testing.assert_allclose(subject.positions, np.array(QUAD) + [0.0, 3.0, 0.0])
        assert subject.joint_names == ["hips", "spine"]

    def test_empty_skin_is_unskinned(self, arm_scene):
        data = arm_scene(skinned=False, hips_y=3.0)
        data["nodes"][0]["children"][1]["mesh"]["skin"] = {"clusters": []}
        subject = load_subject(_scene(data), [0.0])
        assert subject.weights is None
        np.testing.assert_allclose(subject.positions, np.array(QUAD) + [0.0, 3.0, 0.0])
        assert subject.joint_names == ["hips", "spine"]

    def test_skin_bind_matrix_moves_vertices(self, arm_scene):
        data = arm_scene()
        bind = np.eye(4)
        bind[:3, 3] = (5.0, 0.0, 0.0)
        data["nodes"][0]["children"][1]["mesh"]["skin"]["bind_matrix"] = bind.tolist()
        subject = load_subject(_scene(data), [0.0])
        np.testing.assert_allclose(subject.positions, np.array(QUAD) + [5.0, 0.0, 0.0])

    def test_no_mesh(self):
        data = {"version": "0.1", "nodes": [{"name": "hips", "joint": True}]}
        with pytest.raises(SceneError, match="Scene has no mesh"):
            load_subject(_scene(data), [0.0])

    def test_no_joints_warns(self):
        data = {
            "version": "0.1",
            "nodes": [{"name": "prop", "mesh": {"positions": QUAD[:3], "polygons": [[0, 1, 2]]}}],
        }
        with pytest.warns(RigMergeWarning, match=r"\[W02\]"):
            subject = load_subject(_scene(data), [0.0, 1.0])
        assert subject.joint_names == []
        assert subject.transforms == {}
        assert not subject.has_keyframes

    def test_no_joints_suppressed(self, recwarn):
        data = {
            "version": "0.1",
            "nodes": [{"name": "prop", "mesh": {"positions": QUAD[:3], "polygons": [[0, 1, 2]]}}],
        }
        load_subject(_scene(data), [0.0], warning_policy=WarningPolicy(suppress=frozenset({"W02"})))
        assert not [w for w in recwarn if issubclass(w.category, RigMergeWarning)]
