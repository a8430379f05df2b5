"""Scene document schema and graph-to-JSON serialization.

A scene document is a JSON array of root entries::

    [{"type": "canvas",
      "resource": {"name": "Canvas"},
      "transform": {"position": [0, 0, 0], "rotation": [0, 0, 0, 1], "scale": [1, 1, 1]},
      "bound": [20, 20, 20],
      "children": [
        {"type": "mesh",
         "resource": {"name": "Chair", "reference": "chair.glb", "internalId": "..."},
         "transform": {...},
         "bound": [0.5, 1.0, 0.5],
         "children": []}]}]

A group entry carries its basis's reference and transform; the basis is
not emitted on its own.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, RootModel, ValidationError

from ..core.errors import DocumentParseError
from .bounds import local_bound
from .graph import CanvasRoot, GroupNode, SceneGraph
from .transform import Quat, Transform3D, Vec3

logger = logging.getLogger(__name__)

EntryType = Literal["canvas", "group", "mesh"]


class ResourceEntry(BaseModel):
    """Identity part of an entry."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(description="Display name")
    reference: str | None = Field(default=None, description="Source asset reference")
    internal_id: str | None = Field(default=None, alias="internalId")


class TransformEntry(BaseModel):
    """Local transform of an entry."""

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    position: Vec3 = (0.0, 0.0, 0.0)
    rotation: Quat = (0.0, 0.0, 0.0, 1.0)
    scale: Vec3 = (1.0, 1.0, 1.0)

    def to_transform(self) -> Transform3D:
        return Transform3D(position=self.position, rotation=self.rotation, scale=self.scale)

    @classmethod
    def from_transform(cls, transform: Transform3D) -> TransformEntry:
        return cls(position=transform.position, rotation=transform.rotation, scale=transform.scale)


class SceneEntry(BaseModel):
    """One node of a scene document."""

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    type: EntryType | None = Field(default=None, description="Inferred from children when absent")
    resource: ResourceEntry
    transform: TransformEntry = Field(default_factory=TransformEntry)
    bound: Vec3 | None = Field(default=None, description="Box size in the entry's own frame")
    children: list[SceneEntry] = Field(default_factory=list)

    @property
    def is_canvas(self) -> bool:
        return self.type == "canvas"

    @property
    def is_group(self) -> bool:
        return self.type == "group" or (self.type is None and bool(self.children))

    def key(self) -> tuple[str, str | None]:
        return (self.resource.name, self.resource.reference)


class SceneDocument(RootModel[list[SceneEntry]]):
    """A full document: the list of root entries."""

    @property
    def canvas(self) -> SceneEntry | None:
        return next((e for e in self.root if e.is_canvas), None)

    def top_level(self) -> list[SceneEntry]:
        """Entries placed directly under the canvas."""
        entries: list[SceneEntry] = []
        for entry in self.root:
            if entry.is_canvas:
                entries.extend(entry.children)
            else:
                entries.append(entry)
        return entries

    def volume_size(self) -> float | None:
        canvas = self.canvas
        if canvas is None or canvas.bound is None:
            return None
        return float(canvas.bound[0])


def parse_document(data: str | bytes | list[Any] | SceneDocument) -> SceneDocument:
    """Parse and validate a whole document.

    Raises:
        DocumentParseError: If the text is not JSON or does not match the schema
    """
    if isinstance(data, SceneDocument):
        return data
    try:
        if isinstance(data, (str, bytes)):
            data = json.loads(data)
        document = SceneDocument.model_validate(data)
    except json.JSONDecodeError as e:
        raise DocumentParseError(f"Invalid JSON: {e}") from e
    except ValidationError as e:
        raise DocumentParseError(f"Invalid scene document: {e}") from e

    canvases = [e for e in document.root if e.is_canvas]
    if len(canvases) > 1:
        raise DocumentParseError("A scene document can contain only one canvas entry")
    if canvases and canvases[0].bound is not None and canvases[0].bound[0] <= 0:
        raise DocumentParseError(f"Canvas bound must be positive, got {canvases[0].bound[0]}")
    for entry in document.root:
        if _nested_canvas(entry.children):
            raise DocumentParseError("A canvas entry is only allowed at the top level")
    return document


def _nested_canvas(entries: list[SceneEntry]) -> bool:
    return any(e.is_canvas or _nested_canvas(e.children) for e in entries)


class SceneSerializer:
    """Converts a SceneGraph to the document format."""

    def __init__(self, graph: SceneGraph):
        self.graph = graph

    def entry(self, node_id: str) -> SceneEntry:
        """Build the entry for a node and its emitted descendants."""
        graph = self.graph
        node = graph.get(node_id)

        if isinstance(node, CanvasRoot):
            return SceneEntry(
                type="canvas",
                resource=ResourceEntry(name=node.name),
                bound=(node.size, node.size, node.size),
                children=[self.entry(c) for c in node.child_ids],
            )

        child_ids = node.child_ids[1:] if isinstance(node, GroupNode) else node.child_ids
        bound = node.explicit_bound if node.explicit_bound is not None else local_bound(graph, node_id)
        return SceneEntry(
            type="group" if isinstance(node, GroupNode) else "mesh",
            resource=ResourceEntry(
                name=node.name,
                reference=graph.resource_reference(node_id),
                internal_id=node.internal_id,
            ),
            transform=TransformEntry.from_transform(node.transform),
            bound=tuple(float(v) for v in bound),
            children=[self.entry(c) for c in child_ids],
        )

    def serialize(self, root_id: str | None = None) -> list[dict[str, Any]]:
        """Serialize the graph (or one subtree) to JSON-ready data."""
        entry = self.entry(root_id or self.graph.root_id)
        return [entry.model_dump(mode="json", by_alias=True, exclude_none=True)]

    def to_json(self, root_id: str | None = None, indent: int | None = 2) -> str:
        return json.dumps(self.serialize(root_id), indent=indent)

    def save(self, path: str | Path) -> None:
        """Save the whole scene to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write(self.to_json())
        logger.info(f"Saved scene to {path}")
