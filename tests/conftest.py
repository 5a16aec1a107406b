"""Shared fixtures for rigmerge tests."""

from __future__ import annotations

import copy
from pathlib import Path

import pytest
import yaml


def build_arm_scene(
    *,
    animated: bool = True,
    spine_order: str = "zxy",
    hips_y: float = 1.0,
    hips_weights: list[float] | None = None,
    spine_weights: list[float] | None = None,
    skinned: bool = True,
) -> dict:
    """Two joints (hips -> spine) with a non-joint 'offset' node between them.

    The skinned quad 'body' hangs off hips. Spine rotates 0 -> 90 degrees
    about Z over one second when animated.
    """
    spine: dict = {
        "name": "spine",
        "joint": True,
        "translation": [0.0, 0.5, 0.0],
        "rotation_order": spine_order,
    }
    if animated:
        spine["keys"] = {
            "rotation_degrees": {
                "times": [0.0, 1.0],
                "values": [[0.0, 0.0, 0.0], [0.0, 0.0, 90.0]],
            }
        }

    mesh: dict = {
        "positions": [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]],
        "polygons": [[0, 1, 2], [0, 2, 3]],
    }
    if skinned:
        mesh["skin"] = {
            "clusters": [
                {
                    "joint": "hips",
                    "indices": [0, 1, 2, 3],
                    "weights": hips_weights or [1.0, 0.6, 0.2, 0.0],
                },
                {
                    "joint": "spine",
                    "indices": [0, 1, 2, 3],
                    "weights": spine_weights or [0.0, 0.4, 0.8, 1.0],
                },
            ]
        }

    return {
        "version": "0.1",
        "nodes": [
            {
                "name": "hips",
                "joint": True,
                "translation": [0.0, hips_y, 0.0],
                "children": [
                    {
                        "name": "offset",
                        "translation": [0.0, 0.5, 0.0],
                        "rotation_degrees": [0.0, 0.0, 90.0],
                        "children": [spine],
                    },
                    {"name": "body", "mesh": mesh},
                ],
            }
        ],
    }


@pytest.fixture
def arm_scene():
    """Factory returning a fresh arm scene dict; keyword args as build_arm_scene."""

    def _make(**kwargs) -> dict:
        return copy.deepcopy(build_arm_scene(**kwargs))

    return _make


@pytest.fixture
def write_scene(tmp_path):
    """Write a scene dict to ``tmp_path/<name>.scene.yaml`` and return the path."""

    def _write(name: str, data: dict) -> Path:
        path = tmp_path / f"{name}.scene.yaml"
        path.write_text(yaml.safe_dump(data, sort_keys=False))
        return path

    return _write


@pytest.fixture
def two_subject_batch(tmp_path, arm_scene, write_scene):
    """Batch file merging two arm scenes with three and two sample times."""
    write_scene("walk", arm_scene())
    write_scene("run", arm_scene(hips_y=1.2))
    batch = {
        "version": "0.1",
        "subjects": [
            {"path": "walk.scene.yaml", "times": [0.0, 0.5, 1.0]},
            {"path": "run.scene.yaml", "frames": {"count": 2, "fps": 2.0}},
        ],
    }
    path = tmp_path / "arm.batch.yaml"
    path.write_text(yaml.safe_dump(batch, sort_keys=False))
    return path
