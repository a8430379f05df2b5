#!/usr/bin/env python3
"""Example: Arrange, group and export a small scene.

This script demonstrates the basic workflow for SceneCraft:
1. Add assets to the canvas
2. Group, duplicate and move them
3. Export the scene and import it again

Run with: python examples/simple_scene.py
"""

import trimesh

from scenecraft import SceneCraftConfig, SceneEditor
from scenecraft.scene.transform import Transform3D


def create_test_box(size: float = 1.0) -> trimesh.Trimesh:
    """Create a simple box mesh for testing."""
    return trimesh.creation.box(extents=[size, size, size])


def main():
    config = SceneCraftConfig.default()
    config.volume.size = 10.0

    print("SceneCraft - Simple Scene Example")
    print("=" * 40)

    editor = SceneEditor(config)

    print("\n1. Adding assets...")
    table = editor.add_asset("table.glb", name="Table", mesh=create_test_box(1.0))
    lamp = editor.add_asset("lamp.glb", name="Lamp", mesh=create_test_box(0.3))
    editor.graph.set_transform(lamp.id, Transform3D(position=(0.2, 0.65, 0.0)))
    print(f"   {editor.graph}")

    print("\n2. Grouping lamp onto table...")
    editor.select([table.id, lamp.id])
    group = editor.group_selected()
    print(f"   Group '{group.name}' holds {len(group.child_ids)} nodes")

    print("\n3. Dragging the group past the edge...")
    editor.begin_gesture("translate")
    editor.update_gesture(Transform3D(position=(8.0, 0.0, 0.0)))
    editor.end_gesture()
    print(f"   Clamped position: {editor.graph.get(group.id).transform.position}")

    print("\n4. Duplicating...")
    copies = editor.duplicate_selected(offset=(-2.0, 0.0, 0.0))
    print(f"   Created '{copies[0].name}'")

    print("\n5. Export and re-import...")
    text = editor.export_text()
    report = editor.import_text(text)
    print(f"   Re-import: {report.summary()}")

    print("\n" + "=" * 40)
    print(text[:400] + "...")


if __name__ == "__main__":
    main()
