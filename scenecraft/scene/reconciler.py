"""Identity-keyed import of scene documents into a live graph.

Reconciliation runs in phases:

1. Parse and validate the whole document. Nothing is mutated on failure.
2. Plan: match every entry against the live graph by identity key
   ``(name, reference, internal_id?)``. Planning is read-only.
3. Load: resolve the assets needed by unmatched entries. Failed loads
   become placeholder boxes sized from the declared bound.
4. Apply: update matched nodes, create new ones, delete the rest, dissolve
   emptied groups and update the volume size, all without yielding.

Importing the document produced by serializing a graph back into that graph
changes nothing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import trimesh
from pydantic import ValidationError

from ..assets.loader import placeholder_box
from ..assets.resolver import AssetResolver
from ..core.errors import AssetLoadError, DocumentParseError
from .bounds import local_bound
from .graph import GroupNode, MeshNode, PlacedNode, SceneGraph, new_internal_id
from .reparent import ReparentEngine
from .serializer import SceneDocument, SceneEntry, parse_document
from .transform import Transform3D, Vec3

logger = logging.getLogger(__name__)

Key = tuple[str, "str | None"]


@dataclass
class ReconcileReport:
    """What a reconciliation pass changed."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed_references: list[str] = field(default_factory=list)
    volume_changed: bool = False

    @property
    def is_noop(self) -> bool:
        return not (self.created or self.updated or self.deleted or self.volume_changed)

    def summary(self) -> str:
        return (
            f"{len(self.created)} created, {len(self.updated)} updated, "
            f"{len(self.deleted)} deleted"
            + (", volume resized" if self.volume_changed else "")
        )


@dataclass
class _PlanItem:
    entry: SceneEntry
    transform: Transform3D
    node_id: str | None
    children: list[_PlanItem] = field(default_factory=list)


@dataclass
class _Index:
    by_key: dict[Key, list[str]] = field(default_factory=dict)
    by_triple: dict[tuple[str, str | None, str], str] = field(default_factory=dict)
    claimed: set[str] = field(default_factory=set)


class SceneReconciler:
    """Merges scene documents into a SceneGraph."""

    def __init__(
        self,
        graph: SceneGraph,
        resolver: AssetResolver | None = None,
        engine: ReparentEngine | None = None,
        tolerance: float = 1e-6,
        placeholder_bound: Vec3 = (1.0, 1.0, 1.0),
    ):
        self.graph = graph
        self.resolver = resolver
        self.engine = engine or ReparentEngine(graph)
        self.tolerance = tolerance
        self.placeholder_bound = placeholder_bound

    def reconcile(self, document: str | bytes | list[Any] | SceneDocument) -> ReconcileReport:
        """Synchronous wrapper; must not be called from a running event loop."""
        return asyncio.run(self.reconcile_async(document))

    async def reconcile_async(self, document: str | bytes | list[Any] | SceneDocument) -> ReconcileReport:
        """Merge a document into the graph.

        Raises:
            DocumentParseError: If the document is malformed. The graph is
                left unchanged.
        """
        doc = parse_document(document)

        meshes: dict[str, trimesh.Trimesh | AssetLoadError] = {}
        while True:
            # Re-plan after every await so the plan matches the live graph
            plan = self._plan(doc)
            missing = self._references(plan) - meshes.keys()
            if not missing:
                break
            meshes.update(await self._load(missing))

        report = ReconcileReport()
        self._apply(doc, plan, meshes, report)
        logger.info(f"Reconciled scene: {report.summary()}")
        if not report.is_noop:
            self.graph.notify("reconcile", None)
        return report

    # -- planning ---------------------------------------------------------

    def _build_index(self) -> _Index:
        graph = self.graph
        index = _Index()
        for node in graph.iter_depth_first():
            if graph.is_basis(node.id):
                continue
            key = (node.name, graph.resource_reference(node.id))
            index.by_key.setdefault(key, []).append(node.id)
            if node.internal_id:
                index.by_triple[key + (node.internal_id,)] = node.id
        return index

    def _plan(self, doc: SceneDocument) -> list[_PlanItem]:
        return self._plan_entries(doc.top_level(), self._build_index())

    def _plan_entries(self, entries: list[SceneEntry], index: _Index) -> list[_PlanItem]:
        items = []
        for entry in entries:
            try:
                transform = entry.transform.to_transform()
            except ValidationError as e:
                raise DocumentParseError(
                    f"Invalid transform for '{entry.resource.name}': {e}"
                ) from e
            node_id = self._match(entry, index)
            if node_id is not None:
                index.claimed.add(node_id)
            items.append(_PlanItem(
                entry=entry,
                transform=transform,
                node_id=node_id,
                children=self._plan_entries(entry.children, index),
            ))
        return items

    def _match(self, entry: SceneEntry, index: _Index) -> str | None:
        key = entry.key()
        internal_id = entry.resource.internal_id
        if internal_id:
            node_id = index.by_triple.get(key + (internal_id,))
            return node_id if node_id not in index.claimed else None
        # Without an internal id the first unclaimed node in graph order wins
        for node_id in index.by_key.get(key, []):
            if node_id not in index.claimed:
                return node_id
        return None

    def _references(self, plan: list[_PlanItem]) -> set[str]:
        refs = set()
        for item in plan:
            if item.node_id is None and item.entry.resource.reference:
                refs.add(item.entry.resource.reference)
            refs |= self._references(item.children)
        return refs

    async def _load(self, references: set[str]) -> dict[str, trimesh.Trimesh | AssetLoadError]:
        if self.resolver is None:
            return {ref: AssetLoadError(ref, "no asset resolver configured") for ref in references}
        return await self.resolver.resolve_many(sorted(references))

    # -- applying ---------------------------------------------------------

    def _apply(
        self,
        doc: SceneDocument,
        plan: list[_PlanItem],
        meshes: dict[str, trimesh.Trimesh | AssetLoadError],
        report: ReconcileReport,
    ) -> None:
        graph = self.graph
        visited: set[str] = set()
        used_ids = {n.internal_id for n in graph.iter_depth_first() if n.internal_id}

        self._apply_items(plan, graph.root_id, meshes, report, visited, used_ids)

        for node in list(graph.iter_depth_first()):
            if node.id in graph and node.id not in visited:
                report.deleted.extend(graph.remove_subtree(node.id))
        report.deleted.extend(self.engine.sweep_empty_groups())

        self._apply_bounds(plan, report)

        size = doc.volume_size()
        if size is not None and abs(size - graph.size) > self.tolerance:
            graph.root.size = size
            report.volume_changed = True

        report.updated = list(dict.fromkeys(
            nid for nid in report.updated if nid not in report.created and nid in graph
        ))

    def _apply_items(
        self,
        items: list[_PlanItem],
        parent_id: str,
        meshes: dict[str, trimesh.Trimesh | AssetLoadError],
        report: ReconcileReport,
        visited: set[str],
        used_ids: set[str],
    ) -> None:
        graph = self.graph
        first_index = 1 if isinstance(graph.get(parent_id), GroupNode) else 0
        prev_id: str | None = None

        for item in items:
            if item.node_id is None:
                index = self._slot(parent_id, prev_id, first_index)
                node = self._create(item, parent_id, index, meshes, report, used_ids)
            else:
                node = self._update(item, report)
                self._place(node.id, parent_id, prev_id, first_index, report)

            node.import_tag = True
            visited.add(node.id)
            if isinstance(node, GroupNode):
                visited.add(node.child_ids[0])
            item.node_id = node.id
            prev_id = node.id

            if item.children:
                self._apply_items(item.children, node.id, meshes, report, visited, used_ids)

    def _slot(self, parent_id: str, prev_id: str | None, first_index: int) -> int:
        if prev_id is None:
            return first_index
        return self.graph.index_in_parent(prev_id) + 1

    def _place(
        self,
        node_id: str,
        parent_id: str,
        prev_id: str | None,
        first_index: int,
        report: ReconcileReport,
    ) -> None:
        """Put an existing node right after prev_id under parent_id."""
        graph = self.graph
        node = graph.get(node_id)
        if node.parent_id == parent_id and graph.index_in_parent(node_id) == self._slot(parent_id, prev_id, first_index):
            return
        graph.unlink(node_id)
        graph.link(node_id, parent_id, self._slot(parent_id, prev_id, first_index))
        report.updated.append(node_id)
        logger.debug(f"Moved '{node.name}' ({node_id}) under {parent_id}")

    def _update(self, item: _PlanItem, report: ReconcileReport) -> PlacedNode:
        graph = self.graph
        node: PlacedNode = graph.get(item.node_id)  # type: ignore[assignment]
        entry = item.entry

        if node.name != entry.resource.name:
            node.name = entry.resource.name
            report.updated.append(node.id)
        if not node.transform.is_close(item.transform, self.tolerance):
            graph.set_transform(node.id, item.transform, notify=False)
            report.updated.append(node.id)
        if entry.is_group and isinstance(node, MeshNode):
            node = self._coerce_to_group(node)
            report.updated.append(node.id)
        return node

    def _coerce_to_group(self, mesh: MeshNode) -> GroupNode:
        """Wrap a mesh in a group that takes over its place and identity."""
        graph = self.graph
        group = GroupNode(
            name=mesh.name,
            transform=mesh.transform,
            internal_id=mesh.internal_id,
            initial_transform=mesh.initial_transform,
        )
        parent_id = mesh.parent_id
        index = graph.unlink(mesh.id)
        graph.insert(group, parent_id, index)
        graph.link(mesh.id, group.id)
        graph.set_transform(mesh.id, Transform3D.identity(), notify=False)
        mesh.internal_id = new_internal_id()
        mesh.selectable = False
        logger.debug(f"Coerced '{mesh.name}' into group {group.id}")
        return group

    def _create(
        self,
        item: _PlanItem,
        parent_id: str,
        index: int,
        meshes: dict[str, trimesh.Trimesh | AssetLoadError],
        report: ReconcileReport,
        used_ids: set[str],
    ) -> PlacedNode:
        """Create the node for an unmatched entry at index under parent_id."""
        graph = self.graph
        entry = item.entry
        reference = entry.resource.reference

        internal_id = entry.resource.internal_id
        if not internal_id or internal_id in used_ids:
            internal_id = new_internal_id()
        used_ids.add(internal_id)

        mesh, failed = self._geometry(entry, meshes)
        if failed and reference not in report.failed_references:
            report.failed_references.append(reference)

        leaf = MeshNode(name=entry.resource.name, resource_reference=reference, failed=failed, import_tag=True)
        leaf.attach_mesh(mesh)

        if entry.is_group:
            node: PlacedNode = GroupNode(
                name=entry.resource.name,
                transform=item.transform,
                internal_id=internal_id,
                initial_transform=item.transform,
            )
            graph.insert(node, parent_id, index)
            leaf.selectable = False
            graph.insert(leaf, node.id)
        else:
            leaf.transform = item.transform
            leaf.initial_transform = item.transform
            leaf.internal_id = internal_id
            graph.insert(leaf, parent_id, index)
            node = leaf

        report.created.append(node.id)
        logger.debug(f"Created '{node.name}' ({node.id}) ref={reference}")
        return node

    def _geometry(
        self,
        entry: SceneEntry,
        meshes: dict[str, trimesh.Trimesh | AssetLoadError],
    ) -> tuple[trimesh.Trimesh | None, bool]:
        bound = entry.bound or self.placeholder_bound
        reference = entry.resource.reference
        if reference is None:
            if entry.is_group:
                return None, False
            return placeholder_box(bound), False
        loaded = meshes.get(reference)
        if isinstance(loaded, trimesh.Trimesh):
            return loaded, False
        logger.warning(f"Using placeholder for '{entry.resource.name}' ({reference})")
        return placeholder_box(bound), True

    def _apply_bounds(self, items: list[_PlanItem], report: ReconcileReport) -> None:
        """Match declared bounds, children before parents."""
        graph = self.graph
        for item in items:
            self._apply_bounds(item.children, report)
            if item.entry.bound is None or item.node_id not in graph:
                continue
            node = graph.get(item.node_id)
            current = node.explicit_bound if node.explicit_bound is not None else local_bound(graph, node.id)
            if not np.allclose(current, item.entry.bound, atol=self.tolerance, rtol=0):
                node.explicit_bound = tuple(float(v) for v in item.entry.bound)
                report.updated.append(node.id)
