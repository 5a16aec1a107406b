"""Tests for rig archive export and reading."""

import dataclasses

import numpy as np
import pytest

from rigmerge.batch import load_batch, run_batch
from rigmerge.errors import ExportError
from rigmerge.exporter import export_rig, read_rig


@pytest.fixture
def rig(two_subject_batch):
    return run_batch(load_batch(two_subject_batch))


class TestExportRig:
    def test_archive_reloads(self, rig, tmp_path):
        out = tmp_path / "arm.npz"
        export_rig(rig, out)
        loaded = read_rig(out)
        assert loaded.joint_names == rig.joint_names
        assert loaded.faces == rig.faces
        assert loaded.vertex_count == rig.vertex_count
        assert loaded.has_keyframes == rig.has_keyframes
        np.testing.assert_array_equal(loaded.parents, rig.parents)
        np.testing.assert_allclose(loaded.bind, rig.bind)
        np.testing.assert_allclose(loaded.correction, rig.correction)
        np.testing.assert_allclose(loaded.transforms, rig.transforms)
        np.testing.assert_array_equal(loaded.frame_ranges, rig.frame_ranges)
        np.testing.assert_allclose(loaded.weights.toarray(), rig.weights.toarray())

    def test_plain_numpy_keys(self, rig, tmp_path):
        out = tmp_path / "arm.npz"
        export_rig(rig, out)
        with np.load(out) as data:
            assert data["bind"].shape == (2, 2, 4, 4)
            assert data["joint_names"].tolist() == ["hips", "spine"]
            assert int(data["archive_version"]) == 1

    def test_mixed_polygon_sizes(self, rig, tmp_path):
        quad_rig = dataclasses.replace(rig, faces=((0, 1, 2, 3), (0, 2, 3)))
        out = tmp_path / "quad.npz"
        export_rig(quad_rig, out)
        assert read_rig(out).faces == ((0, 1, 2, 3), (0, 2, 3))

    def test_unwritable_path(self, rig, tmp_path):
        with pytest.raises(ExportError, match="Failed to write rig archive"):
            export_rig(rig, tmp_path / "no" / "such" / "dir" / "arm.npz")


class TestReadRig:
    def test_not_an_archive(self, tmp_path):
        path = tmp_path / "bogus.npz"
        path.write_bytes(b"hello")
        with pytest.raises(ExportError, match="Failed to read rig archive"):
            read_rig(path)

    def test_foreign_npz(self, tmp_path):
        path = tmp_path / "other.npz"
        np.savez(path, values=np.arange(3))
        with pytest.raises(ExportError, match="Not a rig archive"):
            read_rig(path)
