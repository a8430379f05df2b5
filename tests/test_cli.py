"""Tests for the command-line interface."""

import json

import pytest
import trimesh
from click.testing import CliRunner

from scenecraft.cli import main
from scenecraft.core.config import SceneCraftConfig
from scenecraft.scene.editor import SceneEditor
from scenecraft.scene.transform import Transform3D


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def scene_file(tmp_path):
    """Scene with one box pushed outside the volume and no asset on disk."""
    editor = SceneEditor()
    node = editor.add_asset("crate.glb", name="Crate", mesh=trimesh.creation.box(extents=(1.0, 1.0, 1.0)))
    editor.graph.set_transform(node.id, Transform3D(position=(0.0, 0.5, 15.0)))
    path = tmp_path / "scene.json"
    editor.save(path)
    return path


def top_level(path):
    with open(path) as f:
        return json.load(f)[0]["children"]


class TestInitConfig:
    def test_writes_config(self, runner, tmp_path):
        path = tmp_path / "config.json"
        result = runner.invoke(main, ["init-config", "-o", str(path), "--size", "12"])
        assert result.exit_code == 0, result.output
        assert SceneCraftConfig.from_file(path).volume.size == 12.0


class TestInfo:
    def test_lists_nodes(self, runner, scene_file):
        result = runner.invoke(main, ["info", str(scene_file)])
        assert result.exit_code == 0, result.output
        assert "Crate" in result.output
        assert "crate.glb" in result.output
        assert "placeholders" in result.output

    def test_malformed_scene(self, runner, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("[{")
        result = runner.invoke(main, ["info", str(path)])
        assert result.exit_code != 0
        assert "Error loading" in result.output


class TestNormalize:
    def test_clamps_and_writes(self, runner, scene_file, tmp_path):
        out = tmp_path / "out.json"
        result = runner.invoke(main, ["normalize", str(scene_file), "-o", str(out)])
        assert result.exit_code == 0, result.output
        (crate,) = top_level(out)
        assert crate["resource"]["name"] == "Crate"
        assert crate["transform"]["position"] == pytest.approx([0.0, 0.5, 9.5])

    def test_size_override(self, runner, scene_file):
        result = runner.invoke(main, ["normalize", str(scene_file), "--size", "6"])
        assert result.exit_code == 0, result.output
        with open(scene_file) as f:
            document = json.load(f)
        assert document[0]["bound"] == [6.0, 6.0, 6.0]
        assert document[0]["children"][0]["transform"]["position"] == pytest.approx([0.0, 0.5, 2.5])


class TestAdd:
    def test_adds_to_new_scene(self, runner, tmp_path):
        model = tmp_path / "crate.stl"
        trimesh.creation.box(extents=(1.0, 1.0, 1.0)).export(str(model))
        scene = tmp_path / "scene.json"

        result = runner.invoke(
            main,
            ["add", str(scene), str(model), "--name", "Crate", "--position", "15", "0", "0"],
        )

        assert result.exit_code == 0, result.output
        (crate,) = top_level(scene)
        assert crate["resource"]["name"] == "Crate"
        assert crate["resource"]["reference"] == str(model.resolve())
        assert crate["transform"]["position"] == pytest.approx([9.5, 0.5, 0.0])

    def test_missing_model(self, runner, tmp_path):
        result = runner.invoke(main, ["add", str(tmp_path / "scene.json"), str(tmp_path / "nope.stl")])
        assert result.exit_code != 0
