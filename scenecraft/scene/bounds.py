"""Placement volume and containment clamping.

The placement volume is an axis-aligned box centred on the origin in X and
Z and standing on the floor (Y = 0). Clamping shifts a node so that its
world-space bounding box fits inside the volume.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, Field

from .graph import CanvasRoot, MeshNode, SceneGraph
from .transform import box_corners, transform_points

logger = logging.getLogger(__name__)


class PlacementVolume(BaseModel):
    """Region all top-level content must stay within."""

    x_range: tuple[float, float] = Field(default=(-10.0, 10.0), description="X-axis bounds")
    y_range: tuple[float, float] = Field(default=(0.0, 20.0), description="Y-axis bounds (up)")
    z_range: tuple[float, float] = Field(default=(-10.0, 10.0), description="Z-axis bounds")

    @classmethod
    def from_size(cls, size: float) -> PlacementVolume:
        half = size / 2
        return cls(x_range=(-half, half), y_range=(0.0, size), z_range=(-half, half))

    @property
    def size(self) -> tuple[float, float, float]:
        """Return volume dimensions (x, y, z)."""
        return (
            self.x_range[1] - self.x_range[0],
            self.y_range[1] - self.y_range[0],
            self.z_range[1] - self.z_range[0],
        )

    @property
    def center(self) -> tuple[float, float, float]:
        return (
            (self.x_range[0] + self.x_range[1]) / 2,
            (self.y_range[0] + self.y_range[1]) / 2,
            (self.z_range[0] + self.z_range[1]) / 2,
        )

    @property
    def min(self) -> NDArray[np.float64]:
        return np.array([self.x_range[0], self.y_range[0], self.z_range[0]])

    @property
    def max(self) -> NDArray[np.float64]:
        return np.array([self.x_range[1], self.y_range[1], self.z_range[1]])

    def contains_point(self, x: float, y: float, z: float) -> bool:
        return (
            self.x_range[0] <= x <= self.x_range[1] and
            self.y_range[0] <= y <= self.y_range[1] and
            self.z_range[0] <= z <= self.z_range[1]
        )

    def contains_bounds(
        self,
        min_pt: Sequence[float],
        max_pt: Sequence[float],
        tol: float = 1e-9,
    ) -> bool:
        """Check if a bounding box is fully within the volume."""
        return bool(
            np.all(np.asarray(min_pt) >= self.min - tol) and
            np.all(np.asarray(max_pt) <= self.max + tol)
        )


def _node_corners(graph: SceneGraph, node_id: str, matrix: NDArray[np.float64]) -> list[NDArray[np.float64]]:
    """Corners of the boxes making up a subtree, mapped through matrix."""
    node = graph.get(node_id)
    bound = getattr(node, "explicit_bound", None)
    if bound is not None:
        half = np.asarray(bound, dtype=np.float64) / 2
        return [transform_points(matrix, box_corners(-half, half))]

    corners = []
    if isinstance(node, MeshNode) and node.geometry_bounds is not None:
        lo, hi = node.geometry_bounds
        corners.append(transform_points(matrix, box_corners(np.asarray(lo), np.asarray(hi))))
    for child in graph.children(node_id):
        corners.extend(_node_corners(graph, child.id, matrix @ graph.local_matrix(child.id)))
    return corners


def _extent(corners: list[NDArray[np.float64]]) -> tuple[NDArray[np.float64], NDArray[np.float64]] | None:
    if not corners:
        return None
    stacked = np.vstack(corners)
    return stacked.min(axis=0), stacked.max(axis=0)


def world_bounds(graph: SceneGraph, node_id: str) -> tuple[NDArray[np.float64], NDArray[np.float64]] | None:
    """World-space (min, max) of a node and its subtree, None if empty."""
    return _extent(_node_corners(graph, node_id, graph.world_matrix(node_id)))


def local_bound(graph: SceneGraph, node_id: str) -> tuple[float, float, float]:
    """Size of a node's subtree box measured in the node's own frame."""
    node = graph.get(node_id)
    if isinstance(node, CanvasRoot):
        return (node.size, node.size, node.size)
    extent = _extent(_node_corners(graph, node_id, np.eye(4)))
    if extent is None:
        return (0.0, 0.0, 0.0)
    lo, hi = extent
    return tuple(float(v) for v in hi - lo)  # type: ignore[return-value]


class BoundsClamp:
    """Keeps nodes inside the canvas root's placement volume."""

    def __init__(self, graph: SceneGraph, tolerance: float = 1e-9):
        self.graph = graph
        self.tolerance = tolerance

    @property
    def volume(self) -> PlacementVolume:
        return PlacementVolume.from_size(self.graph.size)

    def correction(self, node_id: str) -> NDArray[np.float64]:
        """World-space translation that brings node_id inside the volume.

        Opposing corrections on one axis are summed. A box wider than the
        volume on an axis is centred on it, which is where summing lands
        once both sides protrude. Vertically only a box reaching below the
        floor is corrected.
        """
        extent = world_bounds(self.graph, node_id)
        delta = np.zeros(3, dtype=np.float64)
        if extent is None:
            return delta
        lo, hi = extent
        vol = self.volume
        tol = self.tolerance
        for axis in (0, 2):
            if hi[axis] - lo[axis] > vol.max[axis] - vol.min[axis] + tol:
                delta[axis] = (vol.min[axis] + vol.max[axis]) / 2 - (lo[axis] + hi[axis]) / 2
                continue
            if lo[axis] < vol.min[axis] - tol:
                delta[axis] += vol.min[axis] - lo[axis]
            if hi[axis] > vol.max[axis] + tol:
                delta[axis] -= hi[axis] - vol.max[axis]
        if lo[1] < vol.min[1] - tol:
            delta[1] += vol.min[1] - lo[1]
        delta[np.abs(delta) <= tol] = 0.0
        return delta

    def clamp(self, node_id: str, notify: bool = True) -> NDArray[np.float64]:
        """Shift node_id so its world box lies inside the volume.

        Only node_id's local position changes; descendants move rigidly
        with it and nested groups are not clamped on their own.

        Returns:
            The world-space translation applied
        """
        graph = self.graph
        node = graph.get(node_id)
        if isinstance(node, CanvasRoot):
            return np.zeros(3)

        delta = self.correction(node_id)
        if not np.any(delta):
            return delta

        parent_linear = graph.world_matrix(node.parent_id)[:3, :3]
        local_delta = np.linalg.solve(parent_linear, delta)
        graph.set_transform(node_id, node.transform.translated(tuple(local_delta)), notify=notify)
        logger.debug(f"Clamped '{node.name}' by {delta.round(6).tolist()}")
        return delta

    def clamp_top_level(self) -> dict[str, NDArray[np.float64]]:
        """Clamp every node directly under the canvas root."""
        moved = {}
        for node in self.graph.top_level():
            delta = self.clamp(node.id)
            if np.any(delta):
                moved[node.id] = delta
        return moved

    def contains(self, node_id: str) -> bool:
        extent = world_bounds(self.graph, node_id)
        if extent is None:
            return True
        return self.volume.contains_bounds(*extent)
