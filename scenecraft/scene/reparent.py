"""World-transform-preserving structural edits.

Every operation validates and computes all new values first, then mutates
the graph in one step. A failed operation raises before touching the graph.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from ..core.errors import DetachError, GroupingError, InvalidReparentTarget
from .graph import CanvasRoot, GroupNode, MeshNode, PlacedNode, SceneGraph, new_internal_id, new_node_id
from .transform import Transform3D, Vec3

logger = logging.getLogger(__name__)


class ReparentEngine:
    """Structural editing operations on a SceneGraph."""

    def __init__(self, graph: SceneGraph, copy_suffix: str = "Copy"):
        self.graph = graph
        self.copy_suffix = copy_suffix

    # -- primitive --------------------------------------------------------

    def reparent(self, node_id: str, new_parent_id: str, index: int | None = None) -> None:
        """Move node_id under new_parent_id keeping its world transform.

        Args:
            node_id: Node to move
            new_parent_id: Canvas root or group to move it into
            index: Position in the new parent's child list (appended if None)

        Raises:
            InvalidReparentTarget: On a cycle, a non-container target, the
                canvas root, or a group basis. Nothing is mutated.
        """
        node = self.graph.get(node_id)
        if isinstance(node, CanvasRoot):
            raise InvalidReparentTarget("The canvas root cannot be reparented")
        if self.graph.is_basis(node_id):
            raise InvalidReparentTarget(
                f"'{node.name}' is the basis of its group; ungroup to move it"
            )
        old_parent_id = node.parent_id
        self._move(node_id, new_parent_id, index)
        self.graph.notify("reparent", node_id)
        if old_parent_id is not None and old_parent_id != new_parent_id:
            self.cleanup_empty_groups(old_parent_id)

    def _move(self, node_id: str, new_parent_id: str, index: int | None = None) -> None:
        graph = self.graph
        self._check_target(node_id, new_parent_id)

        world_before = graph.world_matrix(node_id)
        # The new parent's chain does not include node_id, so its world
        # matrix is the same before and after the link.
        parent_world = graph.world_matrix(new_parent_id)
        local = Transform3D.from_matrix(np.linalg.inv(parent_world) @ world_before)

        target = graph.get(new_parent_id)
        if isinstance(target, GroupNode) and index is not None:
            index = max(index, 1)

        old_parent_id = graph.get(node_id).parent_id
        old_index = graph.unlink(node_id)
        if old_parent_id == new_parent_id and index is not None and index > old_index:
            index -= 1
        graph.link(node_id, new_parent_id, index)
        graph.set_transform(node_id, local, notify=False)
        logger.debug(f"Moved {node_id} under {new_parent_id}")

    def _check_target(self, node_id: str, new_parent_id: str) -> None:
        graph = self.graph
        if new_parent_id == node_id:
            raise InvalidReparentTarget("A node cannot be its own parent")
        if graph.is_descendant(new_parent_id, node_id):
            raise InvalidReparentTarget(
                f"Cannot move {node_id} under its own descendant {new_parent_id}"
            )
        if not graph.is_container(new_parent_id):
            raise InvalidReparentTarget(f"Node {new_parent_id} cannot hold children")

    # -- grouping ---------------------------------------------------------

    def group(self, node_ids: Sequence[str], name: str | None = None) -> GroupNode:
        """Group nodes under a new group whose basis is node_ids[0].

        The group copies the basis's local transform and takes its place;
        every other node keeps its world transform.
        """
        graph = self.graph
        ids = list(node_ids)
        if len(ids) < 2:
            raise GroupingError("Grouping requires at least two nodes")
        if len(set(ids)) != len(ids):
            raise GroupingError("Selection contains the same node twice")
        for nid in ids:
            node = graph.get(nid)
            if isinstance(node, CanvasRoot):
                raise GroupingError("The canvas root cannot be grouped")
            if graph.is_basis(nid):
                raise GroupingError(f"'{node.name}' is a group basis and cannot be regrouped")
        for nid in ids:
            for other in ids:
                if nid != other and graph.is_descendant(nid, other):
                    raise GroupingError(f"{nid} is inside {other}; cannot group both")

        basis = graph.get(ids[0])
        if not isinstance(basis, MeshNode):
            # A group entry stores only its basis's reference, so a group basis
            # would lose its other children on export
            raise GroupingError(f"'{basis.name}' is a group; select a mesh first to use as the basis")
        parent_id = basis.parent_id
        old_parents = {graph.get(nid).parent_id for nid in ids[1:]}

        group = GroupNode(
            id=new_node_id(),
            name=name or basis.name,
            transform=basis.transform,
            initial_transform=basis.transform,
        )
        index = graph.unlink(basis.id)
        graph.insert(group, parent_id, index)
        graph.link(basis.id, group.id)
        graph.set_transform(basis.id, Transform3D.identity(), notify=False)
        basis.selectable = False

        for nid in ids[1:]:
            self._move(nid, group.id)

        for pid in old_parents:
            if pid is not None and pid in graph:
                self.cleanup_empty_groups(pid)

        logger.info(f"Grouped {len(ids)} nodes into '{group.name}' ({group.id})")
        graph.notify("group", group.id)
        return group

    def ungroup(self, group_id: str) -> list[str]:
        """Dissolve a group, moving all children (basis first) to its parent.

        Returns:
            Ids of the former children, in order
        """
        graph = self.graph
        group = graph.get(group_id)
        if not isinstance(group, GroupNode):
            raise GroupingError(f"'{group.name}' is not a group")
        parent_id = group.parent_id
        children = list(group.child_ids)

        # Compute all new locals before touching the structure
        parent_world_inv = np.linalg.inv(graph.world_matrix(parent_id))
        new_locals = [
            Transform3D.from_matrix(parent_world_inv @ graph.world_matrix(cid))
            for cid in children
        ]

        index = graph.unlink(group_id)
        for offset, (cid, local) in enumerate(zip(children, new_locals)):
            graph.unlink(cid)
            graph.link(cid, parent_id, index + offset)
            graph.set_transform(cid, local, notify=False)
        graph.get(children[0]).selectable = not graph.is_basis(children[0])
        graph.remove_subtree(group_id)

        self.cleanup_empty_groups(parent_id)
        logger.info(f"Ungrouped '{group.name}' ({group_id}) into {len(children)} nodes")
        graph.notify("ungroup", parent_id)
        return children

    def detach(self, child_id: str) -> None:
        """Move a non-basis child out of its group, keeping its world transform.

        Raises:
            DetachError: If the child is the basis, or the group has fewer
                than three children
        """
        graph = self.graph
        group = graph.parent(child_id)
        if not isinstance(group, GroupNode):
            raise DetachError(
                group.id if group else "",
                child_id,
                f"Node {child_id} is not inside a group",
            )
        if graph.is_basis(child_id):
            raise DetachError(
                group.id,
                child_id,
                f"Cannot detach the basis of '{group.name}'. Use ungroup instead.",
            )
        if len(group.child_ids) < 3:
            raise DetachError(group.id, child_id)

        self._move(child_id, group.parent_id, graph.index_in_parent(group.id) + 1)
        logger.info(f"Detached {child_id} from '{group.name}'")
        graph.notify("detach", child_id)

    # -- duplicate / delete -----------------------------------------------

    def unique_copy_name(self, name: str) -> str:
        """First free name among '<name> Copy', '<name> Copy 2', ..."""
        taken = self.graph.names()
        candidate = f"{name} {self.copy_suffix}"
        n = 2
        while candidate in taken:
            candidate = f"{name} {self.copy_suffix} {n}"
            n += 1
        return candidate

    def duplicate(self, node_id: str, offset: Vec3 = (0.0, 0.0, 0.0)) -> PlacedNode:
        """Deep-clone a subtree next to the original.

        Clones get fresh ids and internal ids. Only the top clone is
        renamed and offset; descendants keep their names and locals.
        """
        graph = self.graph
        source = graph.get(node_id)
        if isinstance(source, CanvasRoot):
            raise InvalidReparentTarget("The canvas root cannot be duplicated")

        name = self.unique_copy_name(source.name)
        top = self._clone(
            source, name=name, transform=source.transform.translated(offset), selectable=True
        )
        graph.insert(top, source.parent_id, graph.index_in_parent(node_id) + 1)
        self._clone_children(source, top)

        logger.info(f"Duplicated '{source.name}' as '{name}' ({top.id})")
        graph.notify("duplicate", top.id)
        return top

    def _clone(self, node: PlacedNode, **update) -> PlacedNode:
        clone = node.model_copy(update={
            "id": new_node_id(),
            "internal_id": new_internal_id(),
            "parent_id": None,
            "child_ids": [],
            "import_tag": False,
            **update,
        })
        if isinstance(node, MeshNode):
            clone.attach_mesh(node.mesh)
            if node.mesh is None:
                clone.geometry_bounds = node.geometry_bounds
        return clone

    def _clone_children(self, source: PlacedNode, target: PlacedNode) -> None:
        for child in self.graph.children(source.id):
            clone = self._clone(child)
            self.graph.insert(clone, target.id)
            self._clone_children(child, clone)

    def delete(self, node_id: str) -> list[str]:
        """Delete a subtree, then dissolve any group it leaves empty."""
        graph = self.graph
        node = graph.get(node_id)
        if graph.is_basis(node_id):
            # Deleting the basis deletes what the group stands for
            return self.delete(node.parent_id)
        parent_id = node.parent_id
        removed = graph.remove_subtree(node_id)
        if parent_id is not None:
            self.cleanup_empty_groups(parent_id)
        logger.info(f"Deleted '{node.name}' ({len(removed)} nodes)")
        graph.notify("delete", node_id)
        return removed

    # -- cleanup ----------------------------------------------------------

    def cleanup_empty_groups(self, start_id: str) -> list[str]:
        """Dissolve groups holding only their basis, walking up from start_id.

        Returns:
            Ids of dissolved groups
        """
        graph = self.graph
        dissolved = []
        current = graph.find(start_id)
        while isinstance(current, GroupNode):
            parent_id = current.parent_id
            if len(current.child_ids) <= 1:
                dissolved.append(current.id)
                self._dissolve(current)
            current = graph.find(parent_id)
        return dissolved

    def sweep_empty_groups(self) -> list[str]:
        """Dissolve every empty group in the graph, deepest first."""
        groups = [n for n in self.graph.iter_depth_first() if isinstance(n, GroupNode)]
        dissolved = []
        for group in reversed(groups):
            if group.id in self.graph and len(group.child_ids) <= 1:
                dissolved.extend(self.cleanup_empty_groups(group.id))
        return dissolved

    def _dissolve(self, group: GroupNode) -> None:
        graph = self.graph
        parent_id = group.parent_id
        index = graph.unlink(group.id)
        if group.child_ids:
            basis = graph.get(group.child_ids[0])
            merged = Transform3D.from_matrix(group.transform.to_matrix() @ basis.transform.to_matrix())
            graph.unlink(basis.id)
            graph.link(basis.id, parent_id, index)
            graph.set_transform(basis.id, merged, notify=False)
            basis.selectable = not graph.is_basis(basis.id)
        graph.remove_subtree(group.id)
        logger.debug(f"Dissolved empty group '{group.name}' ({group.id})")
