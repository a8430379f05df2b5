"""Asset loading and resolution."""

from .loader import MeshLoader, flatten_scene, load_mesh, placeholder_box
from .resolver import AssetResolver

__all__ = [
    "MeshLoader",
    "flatten_scene",
    "load_mesh",
    "placeholder_box",
    "AssetResolver",
]
