"""Configuration management for SceneCraft.

This module defines all configuration models using Pydantic for validation.
Configuration can be loaded from JSON files or constructed programmatically.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field


class VolumeParams(BaseModel):
    """Placement volume parameters."""

    size: float = Field(
        default=20.0,
        gt=0,
        description="Edge length of the placement volume in meters"
    )


class EditParams(BaseModel):
    """Interactive editing parameters."""

    snap_step: float = Field(default=1.0, gt=0, description="Uniform scale snap step in meters")
    rotation_snap_deg: float = Field(default=15.0, gt=0, le=180, description="Rotation snap in degrees")

    # Newly added assets are scaled down to this height
    max_height: float = Field(
        default=1.75,
        gt=0,
        description="Maximum height of a freshly added asset in meters"
    )

    duplicate_offset: tuple[float, float, float] = Field(
        default=(1.0, 0.0, 0.0),
        description="Offset applied to duplicates in the parent frame"
    )
    copy_suffix: str = Field(default="Copy", min_length=1, description="Suffix for duplicate names")


class ImportParams(BaseModel):
    """Parameters for resolving assets and reconciling documents."""

    asset_root: Path | None = Field(
        default=None,
        description="Directory that asset references are resolved against"
    )
    placeholder_bound: tuple[float, float, float] = Field(
        default=(1.0, 1.0, 1.0),
        description="Placeholder box size used when no bound is declared"
    )
    tolerance: float = Field(
        default=1e-6,
        gt=0,
        description="Tolerance for deciding whether a value changed on import"
    )


class SceneCraftConfig(BaseModel):
    """Main configuration container."""

    volume: VolumeParams = Field(default_factory=VolumeParams)
    edit: EditParams = Field(default_factory=EditParams)
    imports: ImportParams = Field(default_factory=ImportParams)

    @classmethod
    def from_file(cls, path: Path | str) -> SceneCraftConfig:
        """Load configuration from a JSON file."""
        path = Path(path)
        with open(path) as f:
            data = json.load(f)
        return cls.model_validate(data)

    def to_file(self, path: Path | str) -> None:
        """Save configuration to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)

    @classmethod
    def default(cls) -> SceneCraftConfig:
        """Create a default configuration."""
        return cls()
