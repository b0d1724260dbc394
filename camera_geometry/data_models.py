"""
Data Models for Camera Geometry

Defines the data structures shared by the lens models, the direction field
generator, the rigid alignment solver and the calibration orchestrators.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np

from .exceptions import DegenerateInputError

# Largest accepted deviation of R^T R from the identity
ROTATION_TOLERANCE = 1e-6


class CameraFamily(Enum):
    """Supported camera model families."""
    PINHOLE = "pinhole"
    BROWN = "brown"  # pinhole + radial/tangential distortion
    UNIVERSAL_OMNI = "universal_omni"  # unified omnidirectional (mirror offset)


@dataclass(frozen=True)
class CameraIntrinsics:
    """Intrinsic parameters for one camera, tagged with its model family."""
    family: CameraFamily
    fx: float
    fy: float
    cx: float
    cy: float
    width: int
    height: int
    skew: float = 0.0
    radial: Tuple[float, ...] = ()  # k1, k2, ... on even powers of r
    t1: float = 0.0  # tangential, OpenCV p1
    t2: float = 0.0  # tangential, OpenCV p2
    mirror_offset: float = 0.0  # xi, universal omni only

    def __post_init__(self):
        object.__setattr__(self, 'radial', tuple(float(k) for k in self.radial))
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Image size must be positive: {self.width}x{self.height}")
        if self.fx == 0 or self.fy == 0:
            raise ValueError("Focal lengths must be non-zero")
        if self.family is CameraFamily.PINHOLE and (self.radial or self.t1 or self.t2):
            raise ValueError("Pinhole intrinsics cannot carry distortion coefficients")

    @property
    def image_size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    @property
    def camera_matrix(self) -> np.ndarray:
        """3x3 intrinsic matrix."""
        return np.array([
            [self.fx, self.skew, self.cx],
            [0.0, self.fy, self.cy],
            [0.0, 0.0, 1.0]
        ], dtype=np.float64)

    @property
    def distortion_coeffs(self) -> np.ndarray:
        """Distortion coefficients in OpenCV order (k1, k2, p1, p2, k3)."""
        radial = list(self.radial) + [0.0] * max(0, 3 - len(self.radial))
        return np.array([radial[0], radial[1], self.t1, self.t2, radial[2]], dtype=np.float64)


@dataclass(frozen=True, eq=False)
class Pose:
    """
    Rigid transform X_dst = R X_src + t.

    Used as the per-view world->camera pose and as the stereo right->left extrinsic.
    """
    rotation: np.ndarray  # 3x3 orthonormal, det = +1
    translation: np.ndarray  # (3,)

    def __post_init__(self):
        R = np.array(self.rotation, dtype=np.float64)
        t = np.array(self.translation, dtype=np.float64).reshape(-1)
        if R.shape != (3, 3) or t.shape != (3,):
            raise ValueError(f"Pose expects 3x3 rotation and 3-vector translation, got {R.shape} and {t.shape}")
        if not np.all(np.isfinite(R)) or np.max(np.abs(R.T @ R - np.eye(3))) > ROTATION_TOLERANCE:
            raise ValueError("Pose rotation must be orthonormal")
        if np.linalg.det(R) <= 0:
            raise ValueError(f"Pose rotation must have determinant +1, got {np.linalg.det(R):.6f}")
        R.setflags(write=False)
        t.setflags(write=False)
        object.__setattr__(self, 'rotation', R)
        object.__setattr__(self, 'translation', t)

    @classmethod
    def identity(cls) -> "Pose":
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def from_rodrigues(cls, rvec: np.ndarray, tvec: np.ndarray) -> "Pose":
        """Create a pose from an OpenCV rotation vector and translation."""
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
        return cls(R, np.asarray(tvec, dtype=np.float64).reshape(3))

    def to_rodrigues(self) -> Tuple[np.ndarray, np.ndarray]:
        rvec, _ = cv2.Rodrigues(self.rotation)
        return rvec.reshape(3), self.translation.copy()

    def as_matrix(self) -> np.ndarray:
        """4x4 homogeneous transformation matrix."""
        T = np.eye(4, dtype=np.float64)
        T[0:3, 0:3] = self.rotation
        T[0:3, 3] = self.translation
        return T

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Apply the transform to an (N, 3) array of points."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return points @ self.rotation.T + self.translation

    def compose(self, other: "Pose") -> "Pose":
        """
        Pose equivalent to applying `other` first, then `self`.

        The resulting rotation is re-orthonormalized when accumulated drift
        exceeds a small tolerance.
        """
        R = self.rotation @ other.rotation
        t = self.rotation @ other.translation + self.translation
        return Pose(orthonormalize_rotation(R), t)

    def inverse(self) -> "Pose":
        R_inv = self.rotation.T
        return Pose(R_inv, -R_inv @ self.translation)

    def rotation_angle(self) -> float:
        """Rotation angle in radians."""
        cos_angle = np.clip((np.trace(self.rotation) - 1.0) / 2.0, -1.0, 1.0)
        return float(np.arccos(cos_angle))


def orthonormalize_rotation(R: np.ndarray, tolerance: float = 1e-12) -> np.ndarray:
    """
    Project a nearly orthonormal matrix back onto SO(3).

    Matrices already within tolerance are returned unchanged.
    """
    R = np.asarray(R, dtype=np.float64)
    if np.max(np.abs(R.T @ R - np.eye(3))) <= tolerance and np.linalg.det(R) > 0:
        return R
    U, _, Vt = np.linalg.svd(R)
    D = np.eye(3)
    D[2, 2] = np.sign(np.linalg.det(U @ Vt))
    return U @ D @ Vt


def validate_target_layout(layout: np.ndarray, tolerance: float = 1e-9) -> np.ndarray:
    """
    Check a planar target layout and return it as an (M, 2) float array.

    Point index i refers to row i. At least three non-collinear points are required.
    """
    layout = np.asarray(layout, dtype=np.float64)
    if layout.ndim != 2 or layout.shape[1] != 2:
        raise DegenerateInputError(f"Target layout must be an (M, 2) array, got shape {layout.shape}")
    if layout.shape[0] < 3:
        raise DegenerateInputError(f"Target layout needs at least 3 points, got {layout.shape[0]}")
    if not np.all(np.isfinite(layout)):
        raise DegenerateInputError("Target layout contains non-finite coordinates")

    centered = layout - layout.mean(axis=0)
    singular_values = np.linalg.svd(centered, compute_uv=False)
    if singular_values[0] <= tolerance or singular_values[1] <= tolerance * singular_values[0]:
        raise DegenerateInputError("Target layout points are collinear or coincident")

    layout = layout.copy()
    layout.setflags(write=False)
    return layout


def layout_to_3d(layout: np.ndarray) -> np.ndarray:
    """Lift planar layout points onto the z=0 plane."""
    layout = np.asarray(layout, dtype=np.float64)
    return np.column_stack([layout, np.zeros(len(layout))])


@dataclass(frozen=True, eq=False)
class CalibrationObservation:
    """Observed pixels of calibration target points in one image."""
    point_indices: np.ndarray  # (N,) indices into the target layout
    pixels: np.ndarray  # (N, 2) observed pixel coordinates (x, y)
    width: int
    height: int

    def __post_init__(self):
        indices = np.array(self.point_indices, dtype=np.int64).reshape(-1)
        pixels = np.array(self.pixels, dtype=np.float64).reshape(-1, 2)
        if len(indices) != len(pixels):
            raise DegenerateInputError(
                f"Observation has {len(indices)} indices but {len(pixels)} pixels"
            )
        if len(np.unique(indices)) != len(indices):
            raise DegenerateInputError("Observation references the same target point twice")
        indices.setflags(write=False)
        pixels.setflags(write=False)
        object.__setattr__(self, 'point_indices', indices)
        object.__setattr__(self, 'pixels', pixels)

    def __len__(self) -> int:
        return len(self.point_indices)

    def check_layout(self, layout: np.ndarray) -> None:
        """Raise if any index is outside the layout."""
        if len(self.point_indices) == 0:
            return
        if self.point_indices.min() < 0 or self.point_indices.max() >= len(layout):
            raise DegenerateInputError(
                f"Observation references point indices outside layout of size {len(layout)}"
            )


@dataclass(frozen=True, eq=False)
class DirectionField:
    """Dense per-pixel field of unit viewing directions, stored row-major as (H, W, 3)."""
    width: int
    height: int
    vectors: np.ndarray

    def __post_init__(self):
        if self.vectors.shape != (self.height, self.width, 3):
            raise ValueError(
                f"Direction field shape {self.vectors.shape} does not match {self.height}x{self.width}x3"
            )
        self.vectors.setflags(write=False)

    def at(self, x: int, y: int) -> np.ndarray:
        return self.vectors[y, x]

    def valid_mask(self) -> np.ndarray:
        """Pixels whose direction is defined."""
        return np.all(np.isfinite(self.vectors), axis=-1)


@dataclass(frozen=True)
class StereoParameters:
    """Stereo camera system parameters."""
    left: CameraIntrinsics
    right: CameraIntrinsics
    right_to_left: Pose
    residual_rms: Optional[float] = field(default=None, compare=False)

    @property
    def rotation_matrix(self) -> np.ndarray:
        return self.right_to_left.rotation

    @property
    def translation_vector(self) -> np.ndarray:
        return self.right_to_left.translation

    @property
    def baseline(self) -> float:
        """Distance between camera centers."""
        return float(np.linalg.norm(self.right_to_left.translation))
