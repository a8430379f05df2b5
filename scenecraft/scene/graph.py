"""Scene graph data model.

Nodes live in an arena keyed by a stable id. Parent/child links are id
references (``parent_id`` and the ordered ``child_ids``), never object
pointers. Node roles form a closed set of variants discriminated by
``kind``: the single ``CanvasRoot``, ``MeshNode`` leaves and ``GroupNode``
containers whose first child is the group's basis.

World transforms are computed on demand from the current ancestor chain
and are never cached.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Callable, Iterator, Literal, Union

import numpy as np
import trimesh
from pydantic import BaseModel, Field, PrivateAttr

from ..core.errors import NodeNotFoundError
from .transform import Transform3D, Vec3

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

Listener = Callable[[str, "str | None"], None]


def new_node_id() -> str:
    return str(uuid.uuid4())[:8]


def new_internal_id() -> str:
    return uuid.uuid4().hex


class _NodeBase(BaseModel):
    id: str = Field(default_factory=new_node_id, description="Arena key")
    name: str = Field(default="", description="Display name")
    transform: Transform3D = Field(
        default_factory=Transform3D,
        description="Local transform relative to the parent"
    )
    parent_id: str | None = Field(default=None)
    child_ids: list[str] = Field(default_factory=list)
    selectable: bool = Field(default=True)

    model_config = {"frozen": False}


class CanvasRoot(_NodeBase):
    """Root of the graph. Owns the placement volume size."""

    kind: Literal["canvas"] = "canvas"
    name: str = "Canvas"
    selectable: bool = False
    size: float = Field(default=20.0, gt=0, description="Placement volume size")


class _PlacedNode(_NodeBase):
    internal_id: str | None = Field(
        default=None,
        description="Identity assigned on first creation, kept across imports"
    )
    explicit_bound: Vec3 | None = Field(
        default=None,
        description="Box size overriding the computed bounds, centered on the origin"
    )
    import_tag: bool = Field(default=False, description="Created or updated by the last import")
    initial_transform: Transform3D | None = Field(default=None)


class MeshNode(_PlacedNode):
    """A leaf node holding loaded geometry."""

    kind: Literal["mesh"] = "mesh"
    resource_reference: str | None = Field(default=None, description="Source asset reference")
    geometry_bounds: tuple[Vec3, Vec3] | None = Field(
        default=None,
        description="Local (min, max) of the geometry"
    )
    failed: bool = Field(default=False, description="Geometry is a placeholder box")

    _mesh: trimesh.Trimesh | None = PrivateAttr(default=None)

    @property
    def mesh(self) -> trimesh.Trimesh | None:
        return self._mesh

    def attach_mesh(self, mesh: trimesh.Trimesh | None) -> None:
        """Cache geometry and record its local bounds."""
        self._mesh = mesh
        if mesh is None or len(mesh.vertices) == 0:
            self.geometry_bounds = None
            return
        lo, hi = mesh.bounds
        self.geometry_bounds = (
            tuple(float(v) for v in lo),
            tuple(float(v) for v in hi),
        )


class GroupNode(_PlacedNode):
    """A container whose first child is its basis."""

    kind: Literal["group"] = "group"


SceneNode = Union[CanvasRoot, MeshNode, GroupNode]
PlacedNode = Union[MeshNode, GroupNode]


class SceneGraph:
    """Arena of scene nodes rooted at a single CanvasRoot.

    The methods here are structural primitives. They keep the id links
    consistent but do not enforce editing rules; those live in
    ``ReparentEngine``.
    """

    def __init__(self, size: float = 20.0):
        self.root = CanvasRoot(size=size)
        self._nodes: dict[str, SceneNode] = {self.root.id: self.root}
        self._listeners: list[Listener] = []

    # -- lookup -----------------------------------------------------------

    @property
    def root_id(self) -> str:
        return self.root.id

    @property
    def size(self) -> float:
        return self.root.size

    @size.setter
    def size(self, value: float) -> None:
        if value <= 0:
            raise ValueError(f"Volume size must be positive, got {value}")
        self.root.size = float(value)
        self.notify("volume", self.root.id)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id: str) -> SceneNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NodeNotFoundError(node_id) from None

    def find(self, node_id: str | None) -> SceneNode | None:
        if node_id is None:
            return None
        return self._nodes.get(node_id)

    def parent(self, node_id: str) -> SceneNode | None:
        return self.find(self.get(node_id).parent_id)

    def children(self, node_id: str) -> list[SceneNode]:
        return [self._nodes[cid] for cid in self.get(node_id).child_ids]

    def index_in_parent(self, node_id: str) -> int:
        node = self.get(node_id)
        if node.parent_id is None:
            raise ValueError(f"Node {node_id} has no parent")
        return self._nodes[node.parent_id].child_ids.index(node_id)

    def ancestors(self, node_id: str) -> list[SceneNode]:
        """Return ancestors from the direct parent up to the root."""
        result = []
        current = self.parent(node_id)
        while current is not None:
            result.append(current)
            current = self.find(current.parent_id)
        return result

    def is_descendant(self, node_id: str, ancestor_id: str) -> bool:
        """True if node_id lies strictly below ancestor_id."""
        return any(a.id == ancestor_id for a in self.ancestors(node_id))

    def iter_depth_first(self, start_id: str | None = None, include_start: bool = False) -> Iterator[SceneNode]:
        start = self.get(start_id or self.root.id)
        if include_start:
            yield start
        stack = list(reversed(start.child_ids))
        while stack:
            node = self._nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.child_ids))

    def descendants(self, node_id: str) -> list[SceneNode]:
        return list(self.iter_depth_first(node_id))

    def placed_nodes(self) -> list[PlacedNode]:
        """All non-root nodes in depth-first order."""
        return list(self.iter_depth_first())  # type: ignore[arg-type]

    def top_level(self) -> list[PlacedNode]:
        return self.children(self.root.id)  # type: ignore[return-value]

    def names(self) -> set[str]:
        return {node.name for node in self.iter_depth_first()}

    def top_level_ancestor(self, node_id: str) -> SceneNode:
        """Return the ancestor (or the node itself) directly under the root."""
        node = self.get(node_id)
        while node.parent_id is not None and node.parent_id != self.root.id:
            node = self._nodes[node.parent_id]
        return node

    # -- roles ------------------------------------------------------------

    def is_container(self, node_id: str) -> bool:
        return isinstance(self.get(node_id), (CanvasRoot, GroupNode))

    def basis_of(self, group_id: str) -> PlacedNode:
        group = self.get(group_id)
        if not isinstance(group, GroupNode):
            raise TypeError(f"Node {group_id} is not a group")
        return self._nodes[group.child_ids[0]]  # type: ignore[return-value]

    def is_basis(self, node_id: str) -> bool:
        parent = self.parent(node_id)
        return isinstance(parent, GroupNode) and parent.child_ids[0] == node_id

    def resource_reference(self, node_id: str) -> str | None:
        """Reference of a node; groups inherit it from their basis."""
        node = self.get(node_id)
        while isinstance(node, GroupNode):
            node = self._nodes[node.child_ids[0]]
        if isinstance(node, MeshNode):
            return node.resource_reference
        return None

    def resolve_pick(self, node_id: str) -> PlacedNode | None:
        """Walk up from a picked node to the nearest selectable node."""
        node = self.find(node_id)
        while node is not None:
            if node.selectable and not isinstance(node, CanvasRoot):
                return node
            node = self.find(node.parent_id)
        return None

    # -- transforms -------------------------------------------------------

    def local_matrix(self, node_id: str) -> NDArray[np.float64]:
        node = self.get(node_id)
        if isinstance(node, CanvasRoot):
            return np.eye(4, dtype=np.float64)
        return node.transform.to_matrix()

    def world_matrix(self, node_id: str) -> NDArray[np.float64]:
        """Compose local matrices from the root down to node_id."""
        matrix = self.local_matrix(node_id)
        for ancestor in self.ancestors(node_id):
            matrix = self.local_matrix(ancestor.id) @ matrix
        return matrix

    def world_transform(self, node_id: str) -> Transform3D:
        return Transform3D.from_matrix(self.world_matrix(node_id))

    def relative_matrix(self, ancestor_id: str, node_id: str) -> NDArray[np.float64]:
        """Matrix taking node_id's local frame into ancestor_id's local frame."""
        matrix = np.eye(4, dtype=np.float64)
        current = self.get(node_id)
        while current.id != ancestor_id:
            matrix = self.local_matrix(current.id) @ matrix
            if current.parent_id is None:
                raise ValueError(f"{ancestor_id} is not an ancestor of {node_id}")
            current = self._nodes[current.parent_id]
        return matrix

    def set_transform(self, node_id: str, transform: Transform3D, notify: bool = True) -> None:
        node = self.get(node_id)
        if isinstance(node, CanvasRoot):
            raise ValueError("The canvas root always has the identity transform")
        node.transform = transform
        if notify:
            self.notify("transform", node_id)

    def rename(self, node_id: str, name: str) -> None:
        node = self.get(node_id)
        if node.name != name:
            node.name = name
            self.notify("rename", node_id)

    # -- structure --------------------------------------------------------

    def insert(self, node: PlacedNode, parent_id: str | None = None, index: int | None = None) -> PlacedNode:
        """Add a detached node to the arena under parent_id."""
        if node.id in self._nodes:
            raise ValueError(f"Duplicate node id: {node.id}")
        if node.internal_id is None:
            node.internal_id = new_internal_id()
        node.parent_id = None
        self._nodes[node.id] = node
        self.link(node.id, parent_id or self.root.id, index)
        return node

    def add_mesh(
        self,
        name: str,
        reference: str | None = None,
        mesh: trimesh.Trimesh | None = None,
        transform: Transform3D | None = None,
        parent_id: str | None = None,
        index: int | None = None,
        **kwargs,
    ) -> MeshNode:
        """Create a mesh node from loaded geometry."""
        node = MeshNode(
            name=name,
            resource_reference=reference,
            transform=transform or Transform3D(),
            **kwargs,
        )
        if mesh is not None:
            node.attach_mesh(mesh)
        self.insert(node, parent_id, index)
        logger.debug(f"Added mesh '{name}' ({node.id}) ref={reference}")
        self.notify("add", node.id)
        return node

    def link(self, node_id: str, parent_id: str, index: int | None = None) -> None:
        """Attach an unparented node to parent_id's child list."""
        node = self.get(node_id)
        parent = self.get(parent_id)
        if node.parent_id is not None:
            raise ValueError(f"Node {node_id} is still linked to {node.parent_id}")
        if index is None or index > len(parent.child_ids):
            parent.child_ids.append(node_id)
        else:
            parent.child_ids.insert(max(index, 0), node_id)
        node.parent_id = parent_id

    def unlink(self, node_id: str) -> int:
        """Detach node_id from its parent; return its former index."""
        node = self.get(node_id)
        if node.parent_id is None:
            raise ValueError(f"Node {node_id} has no parent")
        siblings = self._nodes[node.parent_id].child_ids
        index = siblings.index(node_id)
        siblings.pop(index)
        node.parent_id = None
        return index

    def remove_subtree(self, node_id: str) -> list[str]:
        """Remove a node and all of its descendants from the arena."""
        node = self.get(node_id)
        if isinstance(node, CanvasRoot):
            raise ValueError("The canvas root cannot be removed")
        removed = [node_id] + [d.id for d in self.iter_depth_first(node_id)]
        if node.parent_id is not None:
            self.unlink(node_id)
        for rid in removed:
            del self._nodes[rid]
        return removed

    # -- notifications ----------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def notify(self, event: str, node_id: str | None = None) -> None:
        """Fire-and-forget change notification."""
        for listener in list(self._listeners):
            try:
                listener(event, node_id)
            except Exception:
                logger.exception(f"Listener failed on '{event}' for {node_id}")

    def __repr__(self) -> str:
        return f"SceneGraph({len(self._nodes) - 1} nodes, size={self.size})"
