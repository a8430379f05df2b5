"""Tests for the editing session."""

import json

import numpy as np
import pytest
import trimesh

from scenecraft.assets.resolver import AssetResolver
from scenecraft.core.config import SceneCraftConfig
from scenecraft.core.errors import GroupingError
from scenecraft.scene.bounds import world_bounds
from scenecraft.scene.editor import SceneEditor
from scenecraft.scene.graph import GroupNode
from scenecraft.scene.transform import Transform3D

from conftest import quat


@pytest.fixture
def editor():
    resolver = AssetResolver(load_fn=lambda ref: trimesh.creation.box(extents=(1.0, 1.0, 1.0)))
    return SceneEditor(SceneCraftConfig.default(), resolver=resolver)


@pytest.fixture
def add(editor):
    def _add(name, extents=(2.0, 1.0, 2.0), position=None):
        node = editor.add_asset(f"{name.lower()}.glb", name=name, mesh=trimesh.creation.box(extents=extents))
        if position is not None:
            editor.graph.set_transform(node.id, node.transform.with_position(position))
        return node

    return _add


class TestAddAsset:
    """Test adding assets."""

    def test_tall_asset_is_fitted_and_clamped(self, editor):
        node = editor.add_asset("tower.glb", mesh=trimesh.creation.box(extents=(1.0, 4.0, 1.0)))
        assert node.name == "tower"
        assert node.transform.scale == pytest.approx((0.4375, 0.4375, 0.4375))
        lo, hi = world_bounds(editor.graph, node.id)
        assert hi[1] - lo[1] == pytest.approx(1.75)
        assert lo[1] == pytest.approx(0.0)
        assert node.initial_transform.scale == node.transform.scale
        assert editor.selection == [node.id]

    def test_short_asset_keeps_scale(self, editor):
        node = editor.add_asset("stool.glb", mesh=trimesh.creation.box(extents=(1.0, 0.5, 1.0)))
        assert node.transform.scale == (1.0, 1.0, 1.0)

    def test_asset_resolved_when_no_mesh_given(self, editor):
        node = editor.add_asset("chair.glb")
        assert node.mesh is editor.resolver.cached("chair.glb")
        assert node.resource_reference == "chair.glb"


class TestSelection:
    """Test selection and picking."""

    def test_select_modes(self, editor, add):
        a, b = add("A"), add("B")
        editor.select([a.id])
        editor.select([b.id], additive=True)
        assert editor.selection == [a.id, b.id]
        assert editor.selected is b
        editor.select([a.id], toggle=True)
        assert editor.selection == [b.id]
        editor.clear_selection()
        assert editor.selected is None

    def test_pick_basis_selects_group(self, editor, add):
        a, b = add("A"), add("B", position=(4.0, 0.5, 0.0))
        editor.select([a.id, b.id])
        group = editor.group_selected()
        assert editor.pick(a.id) is group
        assert editor.selection == [group.id]
        assert editor.pick(b.id) is b

    def test_basis_blocks_editing(self, editor, add):
        a, b = add("A"), add("B")
        editor.select([a.id, b.id])
        editor.group_selected()
        assert editor.editing_allowed()
        editor.select([a.id])
        assert not editor.editing_allowed()
        with pytest.raises(ValueError):
            editor.begin_gesture("translate")


class TestStructure:
    """Test structural commands."""

    def test_group_and_ungroup_selected(self, editor, add):
        a, b = add("A"), add("B", position=(4.0, 0.5, 0.0))
        editor.select([a.id, b.id])
        group = editor.group_selected(name="Pair")
        assert isinstance(group, GroupNode)
        assert group.name == "Pair"
        assert editor.ungroup_selected() == [a.id, b.id]
        assert editor.selection == []

    def test_group_needs_two(self, editor, add):
        editor.select([add("A").id])
        with pytest.raises(GroupingError):
            editor.group_selected()

    def test_ungroup_needs_group(self, editor, add):
        editor.select([add("A").id])
        with pytest.raises(GroupingError):
            editor.ungroup_selected()

    def test_duplicate_is_clamped(self, editor, add):
        box = add("Box", position=(9.0, 0.5, 0.0))
        editor.select([box.id])
        (copy,) = editor.duplicate_selected()
        assert copy.name == "Box Copy"
        assert copy.transform.position == pytest.approx((9.0, 0.5, 0.0))
        assert editor.selection == [copy.id]
        assert copy.initial_transform is not None

    def test_delete_selected(self, editor, add):
        a, b = add("A"), add("B")
        editor.select([a.id])
        assert editor.delete_selected() == [a.id]
        assert a.id not in editor.graph
        assert editor.selection == []
        assert b.id in editor.graph

    def test_detach_clamps(self, editor, add):
        a = add("A", position=(0.0, 0.5, 0.0))
        b = add("B", position=(3.0, 0.5, 0.0))
        c = add("C", position=(-3.0, 0.5, 0.0))
        group = editor.engine.group([a.id, b.id, c.id])
        editor.graph.set_transform(group.id, group.transform.with_position((-20.0, 0.5, 0.0)))
        editor.detach(b.id)
        assert b.parent_id == editor.graph.root_id
        assert editor.clamp.contains(b.id)


class TestGestures:
    """Test interactive transform gestures."""

    def test_translate_clamps_live(self, editor, add):
        box = add("Box")
        editor.begin_gesture("translate")
        result = editor.update_gesture(box.transform.with_position((15.0, 0.5, 0.0)))
        assert result.position == pytest.approx((9.0, 0.5, 0.0))
        editor.end_gesture()
        assert not editor.gesture_active

    def test_rotate_clamps_only_at_end(self, editor, add):
        """Test rotation is not clamped mid-gesture but is once it ends."""
        box = add("Box", position=(9.0, 0.5, 0.0))
        editor.begin_gesture("rotate")
        result = editor.update_gesture(box.transform.model_copy(update={"rotation": quat(y=44)}))

        # Snapped to the 15 degree step, still protruding past the wall
        assert Transform3D(rotation=result.rotation).is_close(Transform3D(rotation=quat(y=45)))
        assert result.position == (9.0, 0.5, 0.0)
        assert not editor.clamp.contains(box.id)

        editor.end_gesture()
        assert editor.clamp.contains(box.id)
        assert box.transform.position[0] == pytest.approx(10.0 - np.sqrt(2.0))

    def test_scale_is_uniform_and_snapped(self, editor, add):
        box = add("Box")
        editor.begin_gesture("scale")
        result = editor.update_gesture(box.transform.model_copy(update={"scale": (1.3, 2.0, 0.7)}))
        assert result.scale == pytest.approx((1.5, 1.5, 1.5))
        lo, hi = world_bounds(editor.graph, box.id)
        assert np.max(hi - lo) == pytest.approx(3.0)
        assert lo[1] >= -1e-9
        editor.end_gesture()

    def test_update_without_gesture(self, editor, add):
        box = add("Box")
        with pytest.raises(ValueError):
            editor.update_gesture(box.transform)

    def test_undo_restores_pre_gesture_transform(self, editor, add):
        box = add("Box")
        before = box.transform
        editor.begin_gesture("translate")
        editor.update_gesture(box.transform.with_position((3.0, 2.0, 1.0)))
        editor.end_gesture()
        assert editor.undo()
        assert box.transform == before
        assert not editor.undo()


class TestTransformCommands:
    """Test reset and drop to floor."""

    def test_reset_transform(self, editor, add):
        box = add("Box")
        editor.graph.set_transform(box.id, Transform3D(position=(4.0, 3.0, 2.0), rotation=quat(x=30)))
        editor.reset_transform(box.id)
        assert box.transform.position == pytest.approx((0.0, 0.5, 0.0))
        assert box.transform.rotation == (0.0, 0.0, 0.0, 1.0)

    def test_drop_to_floor(self, editor, add):
        box = add("Box", position=(2.0, 6.0, -1.0))
        editor.drop_to_floor(box.id)
        assert box.transform.position == pytest.approx((2.0, 0.5, -1.0))

    def test_drop_to_floor_inside_scaled_group(self, editor, add):
        a = add("A", position=(0.0, 4.0, 0.0))
        b = add("B", position=(3.0, 8.0, 0.0))
        group = editor.engine.group([a.id, b.id])
        editor.graph.set_transform(group.id, group.transform.model_copy(update={"scale": (2.0, 2.0, 2.0)}))
        editor.drop_to_floor(b.id)
        lo, _ = world_bounds(editor.graph, b.id)
        assert lo[1] == pytest.approx(0.0)


class TestDocuments:
    """Test text export, import and watchers."""

    def test_export_import_round_trip(self, editor, add):
        a, b = add("A"), add("B", position=(4.0, 0.5, 0.0))
        editor.select([a.id, b.id])
        editor.group_selected()
        text = editor.export_text()

        other = SceneEditor(resolver=editor.resolver)
        report = other.import_text(text)
        assert len(report.created) == 2
        assert other.export_text() == text
        assert editor.import_text(text).is_noop

    def test_save_and_load(self, editor, add, tmp_path):
        add("A")
        path = tmp_path / "scene.json"
        editor.save(path)
        other = SceneEditor(resolver=editor.resolver)
        other.load(path)
        assert [n.name for n in other.graph.top_level()] == ["A"]

    def test_watchers_receive_text(self, editor, add):
        box = add("Box")
        received = []
        unsubscribe = editor.watch_text(received.append)

        editor.rename(box.id, "Crate")
        assert json.loads(received[-1])[0]["children"][0]["resource"]["name"] == "Crate"

        count = len(received)
        editor.select([box.id])
        assert len(received) == count

        unsubscribe()
        editor.rename(box.id, "Chest")
        assert len(received) == count

    def test_import_prunes_selection(self, editor, add):
        a, b = add("A"), add("B")
        editor.select([a.id, b.id])
        document = json.loads(editor.export_text())
        document[0]["children"] = document[0]["children"][:1]
        editor.import_text(json.dumps(document))
        assert editor.selection == [a.id]
