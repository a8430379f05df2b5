"""Scene graph model and editing operations.

This module provides the node arena, world-transform-preserving structural
edits, containment clamping and JSON import/export.
"""

from .transform import Transform3D
from .graph import CanvasRoot, GroupNode, MeshNode, SceneGraph
from .reparent import ReparentEngine
from .bounds import BoundsClamp, PlacementVolume
from .serializer import SceneDocument, SceneEntry, SceneSerializer, parse_document
from .reconciler import ReconcileReport, SceneReconciler
from .editor import SceneEditor

__all__ = [
    "Transform3D",
    "CanvasRoot",
    "GroupNode",
    "MeshNode",
    "SceneGraph",
    "ReparentEngine",
    "BoundsClamp",
    "PlacementVolume",
    "SceneDocument",
    "SceneEntry",
    "SceneSerializer",
    "parse_document",
    "ReconcileReport",
    "SceneReconciler",
    "SceneEditor",
]
