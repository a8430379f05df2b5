"""Editing session tying the scene graph operations together.

The editor owns a SceneGraph plus the engines that act on it, tracks the
selection, runs transform gestures, keeps a stack of transform snapshots
for undo and keeps an exported JSON view in sync for watchers.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Literal, Sequence

import numpy as np
import trimesh
from scipy.spatial.transform import Rotation

from ..assets.resolver import AssetResolver
from ..core.config import SceneCraftConfig
from ..core.errors import GroupingError
from .bounds import BoundsClamp, world_bounds
from .graph import GroupNode, MeshNode, PlacedNode, SceneGraph
from .reconciler import ReconcileReport, SceneReconciler
from .reparent import ReparentEngine
from .serializer import SceneSerializer
from .transform import Transform3D, Vec3

logger = logging.getLogger(__name__)

GestureMode = Literal["translate", "rotate", "scale"]


@dataclass
class TransformSnapshot:
    node_id: str
    transform: Transform3D


@dataclass
class _Gesture:
    node_id: str
    mode: GestureMode


class SceneEditor:
    """Interactive editing session over a SceneGraph."""

    def __init__(
        self,
        config: SceneCraftConfig | None = None,
        graph: SceneGraph | None = None,
        resolver: AssetResolver | None = None,
    ):
        self.config = config or SceneCraftConfig.default()
        self.graph = graph or SceneGraph(size=self.config.volume.size)
        self.resolver = resolver or AssetResolver(self.config.imports.asset_root)
        self.engine = ReparentEngine(self.graph, copy_suffix=self.config.edit.copy_suffix)
        self.clamp = BoundsClamp(self.graph)
        self.serializer = SceneSerializer(self.graph)
        self.reconciler = SceneReconciler(
            self.graph,
            resolver=self.resolver,
            engine=self.engine,
            tolerance=self.config.imports.tolerance,
            placeholder_bound=self.config.imports.placeholder_bound,
        )

        self.selection: list[str] = []
        self.undo_stack: list[TransformSnapshot] = []
        self._gesture: _Gesture | None = None
        self._text_watchers: list[Callable[[str], None]] = []
        self.graph.subscribe(self._on_graph_change)

    # -- assets -----------------------------------------------------------

    def add_asset(
        self,
        reference: str,
        name: str | None = None,
        mesh: trimesh.Trimesh | None = None,
    ) -> MeshNode:
        """Load an asset and place it on the canvas.

        The asset is scaled down to the configured maximum height, its
        transform is recorded for reset, and it is clamped into the volume.
        """
        if mesh is None:
            mesh = asyncio.run(self.resolver.resolve(reference))
        node = self.graph.add_mesh(name or Path(reference).stem, reference, mesh)
        self.fit_to_max_height(node.id)
        node.initial_transform = node.transform
        self.clamp.clamp(node.id)
        self.select([node.id])
        logger.info(f"Added asset '{node.name}' from {reference}")
        return node

    def fit_to_max_height(self, node_id: str, max_height: float | None = None) -> None:
        """Scale a node down so its world height does not exceed max_height."""
        max_height = max_height or self.config.edit.max_height
        extent = world_bounds(self.graph, node_id)
        if extent is None:
            return
        height = float(extent[1][1] - extent[0][1])
        if height <= max_height:
            return
        node = self.graph.get(node_id)
        k = max_height / height
        scale = tuple(s * k for s in node.transform.scale)
        self.graph.set_transform(node_id, node.transform.model_copy(update={"scale": scale}))

    # -- selection --------------------------------------------------------

    @property
    def selected(self) -> PlacedNode | None:
        """The most recently selected node."""
        return self.graph.find(self.selection[-1]) if self.selection else None  # type: ignore[return-value]

    def select(self, node_ids: Sequence[str], additive: bool = False, toggle: bool = False) -> None:
        if not additive and not toggle:
            self.selection = []
        for nid in node_ids:
            self.graph.get(nid)
            if nid in self.selection:
                if toggle:
                    self.selection.remove(nid)
                continue
            self.selection.append(nid)
        self.graph.notify("select", self.selection[-1] if self.selection else None)

    def pick(self, node_id: str, additive: bool = False) -> PlacedNode | None:
        """Select the nearest selectable ancestor of a picked node."""
        target = self.graph.resolve_pick(node_id)
        if target is None:
            return None
        self.select([target.id], additive=additive)
        return target

    def clear_selection(self) -> None:
        self.selection = []
        self._gesture = None
        self.graph.notify("select", None)

    def editing_allowed(self) -> bool:
        """Transforms may be edited when something is selected and no basis is."""
        if not self.selection:
            return False
        return not any(self.graph.is_basis(nid) for nid in self.selection)

    def _prune_selection(self) -> None:
        self.selection = [nid for nid in self.selection if nid in self.graph]

    # -- structure --------------------------------------------------------

    def rename(self, node_id: str, name: str) -> None:
        self.graph.rename(node_id, name)

    def delete_selected(self) -> list[str]:
        removed: list[str] = []
        for nid in list(self.selection):
            if nid in self.graph:
                removed.extend(self.engine.delete(nid))
        self._prune_selection()
        self.selection = []
        return removed

    def group_selected(self, name: str | None = None) -> GroupNode:
        if len(self.selection) < 2:
            raise GroupingError("Select at least two nodes to group")
        group = self.engine.group(self.selection, name=name)
        self.select([group.id])
        return group

    def ungroup_selected(self) -> list[str]:
        node = self.selected
        if len(self.selection) != 1 or not isinstance(node, GroupNode):
            raise GroupingError("Select a single group to ungroup")
        children = self.engine.ungroup(node.id)
        self.clear_selection()
        return children

    def detach(self, node_id: str) -> None:
        self.engine.detach(node_id)
        self.clamp.clamp(node_id)

    def duplicate_selected(self, offset: Vec3 | None = None) -> list[PlacedNode]:
        """Duplicate every selected node, clamping each copy into the volume."""
        offset = offset if offset is not None else self.config.edit.duplicate_offset
        copies = []
        for nid in list(self.selection):
            copy = self.engine.duplicate(nid, offset)
            copy.initial_transform = copy.transform
            self.clamp.clamp(copy.id)
            copies.append(copy)
        if copies:
            self.select([c.id for c in copies])
        return copies

    # -- gestures ---------------------------------------------------------

    def begin_gesture(self, mode: GestureMode) -> None:
        """Start an interactive transform of the selected node."""
        node = self.selected
        if node is None or not self.editing_allowed():
            raise ValueError("Nothing editable is selected")
        self.push_snapshot(node.id)
        self._gesture = _Gesture(node_id=node.id, mode=mode)

    def update_gesture(self, transform: Transform3D) -> Transform3D:
        """Apply an in-progress transform from a manipulator.

        Scale gestures are forced uniform and snapped, rotate gestures snap
        to the rotation step. Translate and scale gestures are clamped as
        they go; rotate gestures are left alone until the gesture ends.
        """
        if self._gesture is None:
            raise ValueError("No gesture in progress")
        node_id = self._gesture.node_id
        if self._gesture.mode == "scale":
            s = transform.scale[0]
            transform = transform.model_copy(update={"scale": (s, s, s)})
        elif self._gesture.mode == "rotate":
            transform = self.snap_rotation(transform)
        self.graph.set_transform(node_id, transform, notify=False)
        if self._gesture.mode == "scale":
            self.snap_uniform_scale(node_id)
        if self._gesture.mode != "rotate":
            self.clamp.clamp(node_id, notify=False)
        self.graph.notify("transform", node_id)
        return self.graph.get(node_id).transform

    def end_gesture(self) -> None:
        """Finish the gesture and clamp once."""
        if self._gesture is None:
            return
        node_id = self._gesture.node_id
        self._gesture = None
        if node_id in self.graph:
            self.clamp.clamp(node_id)

    @property
    def gesture_active(self) -> bool:
        return self._gesture is not None

    def snap_rotation(self, transform: Transform3D, step_deg: float | None = None) -> Transform3D:
        """Round each XYZ Euler angle to a multiple of step_deg."""
        step_deg = step_deg or self.config.edit.rotation_snap_deg
        euler = Rotation.from_quat(transform.rotation).as_euler("xyz", degrees=True)
        snapped = np.round(euler / step_deg) * step_deg
        quat = Rotation.from_euler("xyz", snapped, degrees=True).as_quat()
        return transform.model_copy(update={"rotation": tuple(float(v) for v in quat)})

    def snap_uniform_scale(self, node_id: str, step: float | None = None) -> None:
        """Rescale so the largest world dimension is a multiple of step."""
        step = step or self.config.edit.snap_step
        extent = world_bounds(self.graph, node_id)
        if extent is None:
            return
        max_dim = float(np.max(extent[1] - extent[0]))
        if max_dim <= 0:
            return
        snapped = max(step, round(max_dim / step) * step)
        node = self.graph.get(node_id)
        k = snapped / max_dim
        scale = tuple(s * k for s in node.transform.scale)
        self.graph.set_transform(node_id, node.transform.model_copy(update={"scale": scale}), notify=False)

    # -- transform commands -----------------------------------------------

    def push_snapshot(self, node_id: str) -> None:
        self.undo_stack.append(TransformSnapshot(node_id, self.graph.get(node_id).transform))

    def undo(self) -> bool:
        """Restore the newest snapshot recorded for the selected node."""
        node = self.selected
        if node is None:
            return False
        for i in range(len(self.undo_stack) - 1, -1, -1):
            if self.undo_stack[i].node_id == node.id:
                snapshot = self.undo_stack.pop(i)
                self.graph.set_transform(node.id, snapshot.transform)
                return True
        return False

    def reset_transform(self, node_id: str | None = None) -> None:
        """Restore the transform recorded when the node was added."""
        node = self.graph.get(node_id) if node_id else self.selected
        if node is None or node.initial_transform is None:
            return
        self.push_snapshot(node.id)
        self.graph.set_transform(node.id, node.initial_transform, notify=False)
        self.clamp.clamp(node.id)
        self.graph.notify("transform", node.id)

    def drop_to_floor(self, node_id: str | None = None) -> None:
        """Move a node vertically so its lowest point rests at Y = 0."""
        node = self.graph.get(node_id) if node_id else self.selected
        if node is None:
            return
        extent = world_bounds(self.graph, node.id)
        if extent is None:
            return
        delta = np.array([0.0, -float(extent[0][1]), 0.0])
        parent_linear = self.graph.world_matrix(node.parent_id)[:3, :3]
        local_delta = np.linalg.solve(parent_linear, delta)
        self.push_snapshot(node.id)
        self.graph.set_transform(node.id, node.transform.translated(tuple(local_delta)))

    # -- documents --------------------------------------------------------

    def export_text(self) -> str:
        return self.serializer.to_json()

    def import_text(self, text: str) -> ReconcileReport:
        report = self.reconciler.reconcile(text)
        self._prune_selection()
        return report

    def save(self, path: str | Path) -> None:
        self.serializer.save(path)

    def load(self, path: str | Path) -> ReconcileReport:
        with open(Path(path)) as f:
            return self.import_text(f.read())

    def watch_text(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Call callback with the exported JSON after every graph change."""
        self._text_watchers.append(callback)
        return lambda: self._text_watchers.remove(callback)

    def _on_graph_change(self, event: str, node_id: str | None) -> None:
        if event == "select" or not self._text_watchers:
            return
        text = self.export_text()
        for watcher in list(self._text_watchers):
            watcher(text)
