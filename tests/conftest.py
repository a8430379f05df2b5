"""Shared fixtures for scene graph tests."""

from typing import Callable

import numpy as np
import pytest
import trimesh
from scipy.spatial.transform import Rotation

from scenecraft.scene.graph import MeshNode, SceneGraph
from scenecraft.scene.reparent import ReparentEngine
from scenecraft.scene.transform import Transform3D


def quat(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> tuple[float, float, float, float]:
    """Quaternion from XYZ Euler angles in degrees."""
    return tuple(Rotation.from_euler("xyz", [x, y, z], degrees=True).as_quat().tolist())


@pytest.fixture
def graph() -> SceneGraph:
    """Empty graph with a size 20 volume."""
    return SceneGraph(size=20.0)


@pytest.fixture
def engine(graph: SceneGraph) -> ReparentEngine:
    return ReparentEngine(graph)


@pytest.fixture
def add_box(graph: SceneGraph) -> Callable[..., MeshNode]:
    """Factory adding a box mesh node to the graph."""

    def _add(
        name: str,
        extents=(1.0, 1.0, 1.0),
        position=(0.0, 0.0, 0.0),
        rotation=(0.0, 0.0, 0.0, 1.0),
        scale=(1.0, 1.0, 1.0),
        parent_id: str | None = None,
        reference: str | None = None,
    ) -> MeshNode:
        return graph.add_mesh(
            name,
            reference=reference or f"{name.lower()}.glb",
            mesh=trimesh.creation.box(extents=extents),
            transform=Transform3D(position=position, rotation=rotation, scale=scale),
            parent_id=parent_id,
        )

    return _add


def assert_matrix_close(actual, expected, atol: float = 1e-9) -> None:
    np.testing.assert_allclose(actual, expected, atol=atol, rtol=0)
