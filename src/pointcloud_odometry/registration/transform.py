"""
Homogeneous Transform Helpers

Rigid motions are represented as plain 4x4 numpy arrays in homogeneous
coordinates. Points are treated as column vectors, so ``compose(a, b)``
applies ``b`` first and ``a`` second.

The helpers in this module are pure: they never modify their inputs and
always return new arrays.
"""

from __future__ import annotations

from typing import Optional, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, DTypeLike, NDArray


def identity(dtype: "DTypeLike" = np.float64) -> "NDArray[np.floating]":
    """Return the neutral 4x4 transform."""
    return np.eye(4, dtype=dtype)


def compose(a: "NDArray[np.floating]", b: "NDArray[np.floating]") -> "NDArray[np.floating]":
    """
    Compose two transforms as ``a @ b``.

    The result maps a point through ``b`` first, then through ``a``.

    Args:
        a: Outer transform (4 x 4).
        b: Inner transform (4 x 4).

    Returns:
        New 4 x 4 transform.
    """
    return np.asarray(a) @ np.asarray(b)


def as_transform(matrix: "ArrayLike", dtype: Optional["DTypeLike"] = None) -> "NDArray[np.floating]":
    """
    Validate and copy a matrix into a 4x4 floating-point transform.

    Args:
        matrix: Anything convertible to a (4, 4) array.
        dtype: Target scalar type. Defaults to the input's floating type,
            or float64 for integer input.

    Returns:
        A fresh (4, 4) array that does not alias ``matrix``.

    Raises:
        ValueError: If the shape is not (4, 4) or any entry is non-finite.
    """
    arr = np.array(matrix, copy=True)
    if arr.shape != (4, 4):
        raise ValueError(f"Transform must be 4x4 matrix, got {arr.shape}")
    if dtype is None:
        dtype = arr.dtype if np.issubdtype(arr.dtype, np.floating) else np.float64
    arr = arr.astype(dtype, copy=False)
    if not np.all(np.isfinite(arr)):
        raise ValueError("Transform contains non-finite values")
    return arr


def rigid_transform(
    rotation: Optional["ArrayLike"] = None,
    translation: Optional["ArrayLike"] = None,
    dtype: "DTypeLike" = np.float64,
) -> "NDArray[np.floating]":
    """
    Build a 4x4 transform from a 3x3 rotation and a translation vector.

    Either part may be omitted, in which case it defaults to identity / zero.
    """
    T = np.eye(4, dtype=dtype)
    if rotation is not None:
        R = np.asarray(rotation, dtype=dtype)
        if R.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3 matrix, got {R.shape}")
        T[:3, :3] = R
    if translation is not None:
        t = np.asarray(translation, dtype=dtype).reshape(-1)
        if t.shape != (3,):
            raise ValueError(f"Translation must have 3 components, got {t.shape}")
        T[:3, 3] = t
    return T


def rotation_about_axis(axis: "ArrayLike", angle_rad: float) -> "NDArray[np.float64]":
    """
    Rotation matrix for a right-handed rotation of ``angle_rad`` about ``axis``.

    Uses the Rodrigues formula; ``axis`` does not need to be normalized.
    """
    k = np.asarray(axis, dtype=np.float64).reshape(-1)
    norm = float(np.linalg.norm(k))
    if k.shape != (3,) or norm == 0.0:
        raise ValueError("Rotation axis must be a non-zero 3-vector")
    k = k / norm
    K = np.array(
        [
            [0.0, -k[2], k[1]],
            [k[2], 0.0, -k[0]],
            [-k[1], k[0], 0.0],
        ]
    )
    return np.eye(3) + np.sin(angle_rad) * K + (1.0 - np.cos(angle_rad)) * (K @ K)


def invert_rigid(transform: "NDArray[np.floating]") -> "NDArray[np.floating]":
    """Closed-form inverse of a rigid transform (R^T, -R^T t)."""
    R = transform[:3, :3]
    t = transform[:3, 3]
    inv = np.eye(4, dtype=transform.dtype)
    inv[:3, :3] = R.T
    inv[:3, 3] = -R.T @ t
    return inv


def apply_transform(points: "NDArray[np.floating]", transform: "NDArray[np.floating]") -> "NDArray[np.floating]":
    """
    Apply a transform to an (N x 3) point array.

    Columns beyond the first three (intensity, colour, ...) are copied through
    untouched.

    Args:
        points: Point cloud (N x D, D >= 3).
        transform: Transformation matrix (4 x 4).

    Returns:
        Transformed copy of the point cloud.
    """
    points = np.asarray(points)
    if points.size == 0:
        return points.copy()

    R = transform[:3, :3]
    t = transform[:3, 3]
    out = points.copy()
    out[:, :3] = points[:, :3] @ R.T + t
    return out


def rotation_angle(transform: "NDArray[np.floating]") -> float:
    """Rotation magnitude of a transform, in radians."""
    # Clamp to the valid arccos domain against rounding
    cos_theta = (float(np.trace(transform[:3, :3])) - 1.0) * 0.5
    return float(np.arccos(max(min(cos_theta, 1.0), -1.0)))


def translation_norm(transform: "NDArray[np.floating]") -> float:
    """Euclidean length of the translation part of a transform."""
    return float(np.linalg.norm(transform[:3, 3]))
