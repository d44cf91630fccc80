"""
transform.py

Rigid-body transforms applied to every point of a conversion.

:class:`Transform` wraps a 4×4 homogeneous matrix.  :func:`apply_transform`
is the per-batch entry point used by the converters: it leaves the input
untouched when no transform is configured and otherwise computes
``R·p + t`` in the floating-point width of the input points.

Transform specifications are small YAML (or JSON) documents::

    version: 1
    translation: [1.0, 0.0, 0.5]
    rotation:
      quaternion: [w, x, y, z]     # or  matrix: 3x3  or  rpy: [r, p, y]
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, List, Optional, Sequence

import numpy as np
import yaml

from pcd_tool.errors import MalformedTransformSpecError, PcdIOError

SUPPORTED_SPEC_VERSIONS = (1,)

_RIGID_TOL = 1e-6


class Transform:
    """Wraps a 4×4 homogeneous transformation matrix.

    Supports composition (``@``) and application to 3-D points.  Instances
    are treated as immutable; they are shared freely between batch workers.

    Args:
        matrix: A 4×4 array-like.  Defaults to the identity transform.
    """

    def __init__(self, matrix: np.ndarray | None = None) -> None:
        if matrix is None:
            self._matrix = np.eye(4, dtype=float)
        else:
            self._matrix = np.array(matrix, dtype=float)
            if self._matrix.shape != (4, 4):
                raise ValueError(f"Transform matrix must be 4×4, got {self._matrix.shape}.")
        self._matrix.setflags(write=False)

    # ------------------------------------------------------------------
    # Factory helpers
    # ------------------------------------------------------------------

    @classmethod
    def identity(cls) -> "Transform":
        """Return the identity transform."""
        return cls(np.eye(4, dtype=float))

    @classmethod
    def from_translation(cls, translation: Sequence[float]) -> "Transform":
        """Build a pure-translation transform."""
        T = np.eye(4, dtype=float)
        T[:3, 3] = translation
        return cls(T)

    @classmethod
    def from_rotation_matrix(cls, rotation: np.ndarray, translation: Sequence[float] | None = None) -> "Transform":
        """Build a transform from a 3×3 rotation matrix and optional translation."""
        T = np.eye(4, dtype=float)
        T[:3, :3] = rotation
        if translation is not None:
            T[:3, 3] = translation
        return cls(T)

    @classmethod
    def from_quaternion(cls, quaternion: Sequence[float], translation: Sequence[float] | None = None) -> "Transform":
        """Build a transform from a quaternion [w, x, y, z] and optional translation."""
        R = _quaternion_to_rotation_matrix(list(quaternion))
        return cls.from_rotation_matrix(R, translation)

    @classmethod
    def from_rpy(cls, roll: float, pitch: float, yaw: float, translation: Sequence[float] | None = None) -> "Transform":
        """Build a transform from roll/pitch/yaw (radians), ``R = Rz·Ry·Rx``."""
        cr, sr = np.cos(roll), np.sin(roll)
        cp, sp = np.cos(pitch), np.sin(pitch)
        cy, sy = np.cos(yaw), np.sin(yaw)
        Rx = np.array([[1.0, 0.0, 0.0], [0.0, cr, -sr], [0.0, sr, cr]])
        Ry = np.array([[cp, 0.0, sp], [0.0, 1.0, 0.0], [-sp, 0.0, cp]])
        Rz = np.array([[cy, -sy, 0.0], [sy, cy, 0.0], [0.0, 0.0, 1.0]])
        return cls.from_rotation_matrix(Rz @ Ry @ Rx, translation)

    # ------------------------------------------------------------------
    # Transform specifications
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Any) -> "Transform":
        """Build a transform from a parsed specification mapping.

        Raises:
            MalformedTransformSpecError: On any structural or numeric problem,
                or if the result is not a rigid isometry.
        """
        if not isinstance(data, dict):
            raise MalformedTransformSpecError(
                f"Transform specification must be a mapping, got {type(data).__name__}."
            )
        unknown = set(data) - {"version", "translation", "rotation"}
        if unknown:
            raise MalformedTransformSpecError(f"Unknown transform keys: {sorted(unknown)}.")

        version = data.get("version", 1)
        if version not in SUPPORTED_SPEC_VERSIONS:
            raise MalformedTransformSpecError(f"Unsupported transform specification version {version!r}.")

        translation = _as_float_array(data.get("translation", [0.0, 0.0, 0.0]), (3,), "translation")

        rotation_data = data.get("rotation") or {}
        if not isinstance(rotation_data, dict) or len(rotation_data) > 1:
            raise MalformedTransformSpecError(
                "'rotation' must be a mapping with one of 'quaternion', 'matrix' or 'rpy'."
            )

        try:
            if not rotation_data:
                transform = cls.from_translation(translation)
            elif "quaternion" in rotation_data:
                q = _as_float_array(rotation_data["quaternion"], (4,), "rotation.quaternion")
                transform = cls.from_quaternion(q, translation)
            elif "matrix" in rotation_data:
                R = _as_float_array(rotation_data["matrix"], (3, 3), "rotation.matrix")
                transform = cls.from_rotation_matrix(R, translation)
            elif "rpy" in rotation_data:
                roll, pitch, yaw = _as_float_array(rotation_data["rpy"], (3,), "rotation.rpy")
                transform = cls.from_rpy(roll, pitch, yaw, translation)
            else:
                raise MalformedTransformSpecError(f"Unknown rotation key {next(iter(rotation_data))!r}.")
        except ValueError as err:
            if isinstance(err, MalformedTransformSpecError):
                raise
            raise MalformedTransformSpecError(str(err)) from err

        if not transform.is_rigid():
            raise MalformedTransformSpecError("Rotation is not orthonormal with determinant +1.")
        return transform

    @classmethod
    def from_text(cls, text: str) -> "Transform":
        """Parse an inline YAML/JSON transform specification."""
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as err:
            raise MalformedTransformSpecError(f"Cannot parse transform text: {err}") from err
        return cls.from_dict(data)

    @classmethod
    def from_yaml(cls, path: str | os.PathLike) -> "Transform":
        """Load a transform specification file."""
        path = Path(path)
        try:
            text = path.read_text()
        except OSError as err:
            raise PcdIOError(f"Cannot read transform file '{path}': {err}") from err
        try:
            return cls.from_text(text)
        except MalformedTransformSpecError as err:
            raise MalformedTransformSpecError(f"{path}: {err}") from err

    def to_dict(self) -> dict:
        return {
            "version": SUPPORTED_SPEC_VERSIONS[-1],
            "translation": [float(v) for v in self.translation],
            "rotation": {"matrix": [[float(v) for v in row] for row in self.rotation]},
        }

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def matrix(self) -> np.ndarray:
        """The underlying 4×4 numpy array (read-only)."""
        return self._matrix

    @property
    def rotation(self) -> np.ndarray:
        """The 3×3 rotation sub-matrix."""
        return self._matrix[:3, :3]

    @property
    def translation(self) -> np.ndarray:
        """The 3-element translation vector."""
        return self._matrix[:3, 3]

    def is_rigid(self, tol: float = _RIGID_TOL) -> bool:
        """Return True if this is a proper rigid isometry (rotation + translation)."""
        R = self.rotation
        if not np.allclose(self._matrix[3], [0.0, 0.0, 0.0, 1.0], atol=tol):
            return False
        if not np.allclose(R @ R.T, np.eye(3), atol=tol):
            return False
        return bool(abs(np.linalg.det(R) - 1.0) <= tol)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def inverse(self) -> "Transform":
        """Return the inverse of this transform."""
        return Transform(np.linalg.inv(self._matrix))

    def __matmul__(self, other: "Transform") -> "Transform":
        """Compose two transforms: ``self @ other``."""
        if isinstance(other, Transform):
            return Transform(self._matrix @ other._matrix)
        return NotImplemented

    # ------------------------------------------------------------------
    # Applying to points
    # ------------------------------------------------------------------

    def apply_to_point(self, point: Sequence[float]) -> np.ndarray:
        """Transform a single 3-D point.

        Args:
            point: A (3,) array-like.

        Returns:
            A (3,) array in the point's own float width (float64 for
            non-float input).
        """
        p = np.asarray(point)
        if p.shape != (3,):
            raise ValueError(f"Point must have length 3, got {p.shape}.")
        return self.apply_to_points(p.reshape(1, 3))[0]

    def apply_to_points(self, points: np.ndarray) -> np.ndarray:
        """Transform an ``(N, 3)`` array of points.

        The arithmetic is carried out in the dtype of *points* (float32
        stays float32, float64 stays float64).

        Returns:
            Shape ``(N, 3)`` array of transformed points.
        """
        pts = np.asarray(points)
        if pts.ndim != 2 or pts.shape[1] != 3:
            raise ValueError(f"Points array must have shape (N, 3), got {pts.shape}.")
        dtype = pts.dtype if np.issubdtype(pts.dtype, np.floating) else np.dtype(np.float64)
        pts = pts.astype(dtype, copy=False)
        R = self.rotation.astype(dtype)
        t = self.translation.astype(dtype)
        return pts @ R.T + t

    # ------------------------------------------------------------------
    # Dunder helpers
    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Transform):
            return NotImplemented
        return np.allclose(self._matrix, other._matrix)

    def __repr__(self) -> str:
        return f"Transform(\n{self._matrix}\n)"


# ---------------------------------------------------------------------------
# Convenience functions
# ---------------------------------------------------------------------------


def apply_transform(points: np.ndarray, transform: Optional[Transform]) -> np.ndarray:
    """Apply an optional transform to an ``(N, 3)`` array.

    With ``transform=None`` the very same array object is returned.
    """
    if transform is None:
        return points
    return transform.apply_to_points(points)


def load_transform(path: str | os.PathLike | None = None, text: str | None = None) -> Optional[Transform]:
    """Load a transform from a file *or* inline text.

    Returns:
        The parsed transform, or ``None`` when neither source is given.

    Raises:
        MalformedTransformSpecError: If both sources are given or parsing fails.
        PcdIOError: If the file cannot be read.
    """
    if path is not None and text is not None:
        raise MalformedTransformSpecError("A transform file and inline transform text are mutually exclusive.")
    if path is not None:
        return Transform.from_yaml(path)
    if text is not None:
        return Transform.from_text(text)
    return None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _quaternion_to_rotation_matrix(q: List[float]) -> np.ndarray:
    """Convert a unit quaternion [w, x, y, z] to a 3×3 rotation matrix."""
    w, x, y, z = q
    norm = np.sqrt(w * w + x * x + y * y + z * z)
    if norm < 1e-10:
        raise ValueError("Quaternion has near-zero norm; cannot normalise.")
    w, x, y, z = w / norm, x / norm, y / norm, z / norm

    return np.array([
        [1 - 2 * (y * y + z * z),     2 * (x * y - w * z),     2 * (x * z + w * y)],
        [    2 * (x * y + w * z), 1 - 2 * (x * x + z * z),     2 * (y * z - w * x)],
        [    2 * (x * z - w * y),     2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
    ], dtype=float)


def _as_float_array(value: Any, shape: tuple, name: str) -> np.ndarray:
    try:
        arr = np.asarray(value, dtype=float)
    except (TypeError, ValueError) as err:
        raise MalformedTransformSpecError(f"'{name}' must be numeric: {err}") from err
    if arr.shape != shape:
        raise MalformedTransformSpecError(f"'{name}' must have shape {shape}, got {arr.shape}.")
    if not np.all(np.isfinite(arr)):
        raise MalformedTransformSpecError(f"'{name}' contains non-finite values.")
    return arr
