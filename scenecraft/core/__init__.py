"""Core modules for SceneCraft."""

from .config import SceneCraftConfig
from .errors import (
    AssetLoadError,
    DetachError,
    DocumentParseError,
    GroupingError,
    InvalidReparentTarget,
    NodeNotFoundError,
    SceneCraftError,
)

__all__ = [
    "SceneCraftConfig",
    "SceneCraftError",
    "NodeNotFoundError",
    "InvalidReparentTarget",
    "GroupingError",
    "DetachError",
    "DocumentParseError",
    "AssetLoadError",
]
