"""3D transformation utilities for scene graph nodes.

Provides Transform3D class for representing position, rotation, and scale,
with conversion to and from 4x4 homogeneous transformation matrices.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, Field, field_validator
from scipy.spatial.transform import Rotation

Vec3 = tuple[float, float, float]
Quat = tuple[float, float, float, float]


class Transform3D(BaseModel):
    """3D transformation: position + rotation + scale.

    Attributes:
        position: XYZ position in the parent frame
        rotation: Unit quaternion (x, y, z, w)
        scale: Per-axis scale factors
    """

    position: Vec3 = Field(
        default=(0.0, 0.0, 0.0),
        description="XYZ position in the parent frame"
    )
    rotation: Quat = Field(
        default=(0.0, 0.0, 0.0, 1.0),
        description="Rotation quaternion (x, y, z, w)"
    )
    scale: Vec3 = Field(
        default=(1.0, 1.0, 1.0),
        description="Per-axis scale factors"
    )

    model_config = {"frozen": True, "allow_inf_nan": False}

    @field_validator("rotation")
    @classmethod
    def _normalize_rotation(cls, value: Quat) -> Quat:
        norm = float(np.linalg.norm(value))
        if norm < 1e-12:
            raise ValueError("Rotation quaternion must be non-zero")
        return tuple(float(c) / norm for c in value)  # type: ignore[return-value]

    @field_validator("scale")
    @classmethod
    def _check_scale(cls, value: Vec3) -> Vec3:
        if any(abs(s) < 1e-12 for s in value):
            raise ValueError(f"Scale components must be non-zero: {value}")
        return value

    def to_matrix(self) -> NDArray[np.float64]:
        """Convert to 4x4 homogeneous transformation matrix.

        The transformation order is: Scale -> Rotate -> Translate
        This means the matrix is built as: T @ R @ S

        Returns:
            4x4 transformation matrix
        """
        m = np.eye(4, dtype=np.float64)
        rot = Rotation.from_quat(self.rotation).as_matrix()
        # R @ S scales the columns of R
        m[:3, :3] = rot * np.asarray(self.scale, dtype=np.float64)
        m[:3, 3] = self.position
        return m

    @classmethod
    def from_matrix(cls, matrix: NDArray[np.float64]) -> Transform3D:
        """Decompose a 4x4 affine matrix into position, rotation and scale.

        A reflection is folded into a negative X scale. Shear cannot be
        represented; the nearest rotation is used in that case.

        Args:
            matrix: 4x4 homogeneous transformation matrix

        Returns:
            Transform3D instance

        Raises:
            ValueError: If the matrix has a zero or near-zero scale
        """
        linear = np.asarray(matrix, dtype=np.float64)[:3, :3]
        scales = np.linalg.norm(linear, axis=0)

        if np.any(scales < 1e-10):
            raise ValueError(
                f"Matrix contains zero or near-zero scale: {scales}. "
                "Transform3D requires non-zero scaling."
            )

        if np.linalg.det(linear) < 0:
            scales[0] = -scales[0]

        rot = Rotation.from_matrix(linear / scales)
        return cls(
            position=tuple(float(v) for v in matrix[:3, 3]),
            rotation=tuple(float(v) for v in rot.as_quat()),
            scale=tuple(float(v) for v in scales),
        )

    def apply_to_points(self, points: NDArray[np.float64]) -> NDArray[np.float64]:
        """Apply transformation to an Nx3 array of points."""
        return transform_points(self.to_matrix(), points)

    def compose(self, other: Transform3D) -> Transform3D:
        """Compose this transform with another.

        The result applies self first, then other.
        """
        return Transform3D.from_matrix(other.to_matrix() @ self.to_matrix())

    def inverse(self) -> Transform3D:
        """Return the inverse transformation."""
        return Transform3D.from_matrix(np.linalg.inv(self.to_matrix()))

    def with_position(self, position: Vec3) -> Transform3D:
        """Return a copy with a different position."""
        return self.model_copy(update={"position": tuple(float(v) for v in position)})

    def translated(self, offset: Vec3) -> Transform3D:
        """Return a copy moved by offset in the parent frame."""
        return self.with_position(tuple(p + float(o) for p, o in zip(self.position, offset)))

    def is_identity(self, tol: float = 1e-9) -> bool:
        return self.is_close(Transform3D.identity(), tol)

    def is_close(self, other: Transform3D, tol: float = 1e-6) -> bool:
        """Compare component-wise within tol; q and -q are the same rotation."""
        if not np.allclose(self.position, other.position, atol=tol, rtol=0):
            return False
        if not np.allclose(self.scale, other.scale, atol=tol, rtol=0):
            return False
        dot = abs(float(np.dot(self.rotation, other.rotation)))
        return dot >= 1.0 - tol

    @classmethod
    def identity(cls) -> Transform3D:
        """Return identity transform (no transformation)."""
        return cls()

    def __repr__(self) -> str:
        return (
            f"Transform3D(pos={self.position}, "
            f"rot={self.rotation}, scale={self.scale})"
        )


def transform_points(
    matrix: NDArray[np.float64],
    points: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Apply a 4x4 matrix to an Nx3 array of points."""
    points = np.asarray(points, dtype=np.float64)
    ones = np.ones((len(points), 1), dtype=np.float64)
    homogeneous = np.hstack([points, ones])
    return (matrix @ homogeneous.T).T[:, :3]


def box_corners(min_pt: NDArray[np.float64], max_pt: NDArray[np.float64]) -> NDArray[np.float64]:
    """Return the 8 corners of an axis-aligned box."""
    return np.array([
        [x, y, z]
        for x in (min_pt[0], max_pt[0])
        for y in (min_pt[1], max_pt[1])
        for z in (min_pt[2], max_pt[2])
    ], dtype=np.float64)
