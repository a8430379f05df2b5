"""Asset file loading with trimesh.

Assets arrive as GLB/GLTF scenes or single-mesh formats. Whatever the file
holds is flattened into one Trimesh in the asset's own Y-up frame, with
node transforms baked in.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Sequence

import trimesh

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

# Smallest placeholder edge, so a flat declared bound still has volume
MIN_PLACEHOLDER_EXTENT = 1e-3


def flatten_scene(scene: trimesh.Scene) -> trimesh.Trimesh:
    """Concatenate every mesh instance of a scene with its world transform."""
    parts = []
    for node_name in scene.graph.nodes_geometry:
        transform, geometry_name = scene.graph[node_name]
        geometry = scene.geometry.get(geometry_name)
        if not isinstance(geometry, trimesh.Trimesh):
            continue
        part = geometry.copy()
        part.apply_transform(transform)
        parts.append(part)
    if not parts:
        raise ValueError("Scene contains no triangle meshes")
    return parts[0] if len(parts) == 1 else trimesh.util.concatenate(parts)


class MeshLoader:
    """One asset file loaded as a single mesh."""

    SUPPORTED_FORMATS = {".glb", ".gltf", ".obj", ".stl", ".ply", ".off"}

    def __init__(self, path: str | Path):
        """
        Args:
            path: Asset file to load

        Raises:
            FileNotFoundError: If path does not exist
            ValueError: If the format is unsupported or holds no mesh
        """
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Asset file not found: {self.path}")
        if self.path.suffix.lower() not in self.SUPPORTED_FORMATS:
            raise ValueError(
                f"Unsupported format: {self.path.suffix}. "
                f"Supported: {sorted(self.SUPPORTED_FORMATS)}"
            )

        loaded = trimesh.load(str(self.path))
        if isinstance(loaded, trimesh.Scene):
            loaded = flatten_scene(loaded)
        if not isinstance(loaded, trimesh.Trimesh):
            raise ValueError(f"{self.path.name} did not load as a mesh ({type(loaded).__name__})")
        if len(loaded.vertices) == 0:
            raise ValueError(f"{self.path.name} has no vertices")

        self.mesh = loaded
        logger.debug(f"Loaded {self!r}")

    @property
    def extents(self) -> NDArray[np.float64]:
        """Axis-aligned size (x, y, z) in the asset frame."""
        return self.mesh.extents

    @property
    def height(self) -> float:
        return float(self.mesh.extents[1])

    def stats(self) -> dict[str, Any]:
        lo, hi = self.mesh.bounds
        return {
            "path": str(self.path),
            "vertices": len(self.mesh.vertices),
            "faces": len(self.mesh.faces),
            "bounds_min": lo.tolist(),
            "bounds_max": hi.tolist(),
            "height": self.height,
        }

    def __repr__(self) -> str:
        return (
            f"MeshLoader({self.path.name}, {len(self.mesh.faces)} faces, "
            f"extents={self.extents.round(3).tolist()})"
        )


def load_mesh(path: str | Path) -> trimesh.Trimesh:
    """Load an asset file as one mesh."""
    return MeshLoader(path).mesh


def placeholder_box(bound: Sequence[float]) -> trimesh.Trimesh:
    """Box centred on the origin standing in for an asset that failed to load."""
    extents = [float(v) if v > 0 else MIN_PLACEHOLDER_EXTENT for v in bound]
    return trimesh.creation.box(extents=extents)
