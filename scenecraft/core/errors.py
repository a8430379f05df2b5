"""Exception types raised by scene graph operations."""

from __future__ import annotations


class SceneCraftError(Exception):
    """Base class for all SceneCraft errors."""


class NodeNotFoundError(SceneCraftError, KeyError):
    """A node id is not present in the graph."""

    def __init__(self, node_id: str):
        super().__init__(node_id)
        self.node_id = node_id

    def __str__(self) -> str:
        return f"Node not found: {self.node_id}"


class InvalidReparentTarget(SceneCraftError):
    """A reparent would create a cycle or cross a disallowed boundary.

    Raised before any mutation, so the graph is left untouched.
    """


class GroupingError(SceneCraftError):
    """A selection cannot be grouped."""


class DetachError(SceneCraftError):
    """Detaching would leave a group holding only its basis."""

    def __init__(self, group_id: str, child_id: str, message: str | None = None):
        super().__init__(
            message
            or f"Cannot detach '{child_id}' from group '{group_id}': the group "
            "would be left with only its basis. Use ungroup instead."
        )
        self.group_id = group_id
        self.child_id = child_id


class DocumentParseError(SceneCraftError):
    """An import document is malformed; nothing was applied."""


class AssetLoadError(SceneCraftError):
    """An asset reference could not be resolved to geometry."""

    def __init__(self, reference: str, reason: str):
        super().__init__(f"Could not load asset '{reference}': {reason}")
        self.reference = reference
        self.reason = reason
