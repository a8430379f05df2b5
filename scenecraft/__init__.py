"""SceneCraft - Scene-graph editing core.

A Python library for arranging hierarchical 3D assets inside a bounded
placement volume: grouping, ungrouping, duplicating, clamping, and
exporting/importing the arrangement as JSON.
"""

__version__ = "0.1.0"

from .core.config import SceneCraftConfig
from .assets.resolver import AssetResolver
from .scene.graph import SceneGraph
from .scene.reparent import ReparentEngine
from .scene.bounds import BoundsClamp
from .scene.serializer import SceneSerializer
from .scene.reconciler import SceneReconciler
from .scene.editor import SceneEditor

__all__ = [
    "SceneCraftConfig",
    "AssetResolver",
    "SceneGraph",
    "ReparentEngine",
    "BoundsClamp",
    "SceneSerializer",
    "SceneReconciler",
    "SceneEditor",
]
