"""
Rigid Alignment Solver

Least-squares rotation and translation between two index-matched 3D point sets
(Kabsch / orthogonal Procrustes with reflection correction).
"""

import logging
from typing import Optional

import numpy as np

from ..data_models import Pose
from ..exceptions import DegenerateInputError
from ..utils.config_manager import ConfigManager


class RigidAlignmentSolver:
    """Fits the proper rigid motion mapping a source point set onto a target point set."""

    def __init__(self,
                 config_manager: Optional[ConfigManager] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize rigid alignment solver.

        Args:
            config_manager: Configuration manager instance
            logger: Logger receiving status messages, defaults to the module logger
        """
        self.config = config_manager or ConfigManager()
        self.logger = logger or logging.getLogger(__name__)

        alignment_config = self.config.get_alignment_params()
        # Relative singular value below which a point set counts as collinear
        self.degenerate_tolerance = float(alignment_config.get('degenerate_tolerance', 1e-9))

    def fit(self, source: np.ndarray, target: np.ndarray) -> Pose:
        """
        Find R, t minimizing sum ||R source_i + t - target_i||^2.

        Args:
            source: (N, 3) source points
            target: (N, 3) target points, paired with source by index

        Returns:
            Pose mapping source coordinates to target coordinates
        """
        source = np.asarray(source, dtype=np.float64)
        target = np.asarray(target, dtype=np.float64)
        self._check_inputs(source, target)

        source_centroid = source.mean(axis=0)
        target_centroid = target.mean(axis=0)
        source_centered = source - source_centroid
        target_centered = target - target_centroid

        self._check_spread(source_centered, "source")
        self._check_spread(target_centered, "target")

        # Cross-covariance H = sum p_i q_i^T
        H = source_centered.T @ target_centered

        try:
            U, S, Vt = np.linalg.svd(H)
        except np.linalg.LinAlgError as e:
            raise DegenerateInputError(f"Singular value decomposition failed: {e}") from e

        if S[0] <= 0 or S[1] <= self.degenerate_tolerance * S[0]:
            raise DegenerateInputError(
                f"Cross-covariance is rank deficient (singular values {S[0]:.3e}, {S[1]:.3e}, {S[2]:.3e})"
            )

        V = Vt.T
        R = V @ U.T
        if np.linalg.det(R) < 0:
            # Reflection: flip the axis of the smallest singular value
            V[:, -1] *= -1
            R = V @ U.T

        t = target_centroid - R @ source_centroid
        pose = Pose(R, t)

        self.logger.debug(
            f"Rigid alignment of {len(source)} points: rotation={np.degrees(pose.rotation_angle()):.3f} deg, "
            f"rms={self.residual_rms(pose, source, target):.6f}"
        )
        return pose

    @staticmethod
    def residual_rms(pose: Pose, source: np.ndarray, target: np.ndarray) -> float:
        """Root mean square point distance after applying the pose to the source."""
        aligned = pose.transform_points(source)
        target = np.asarray(target, dtype=np.float64).reshape(-1, 3)
        return float(np.sqrt(np.mean(np.sum((aligned - target) ** 2, axis=1))))

    def _check_inputs(self, source: np.ndarray, target: np.ndarray) -> None:
        if source.ndim != 2 or source.shape[1] != 3 or target.ndim != 2 or target.shape[1] != 3:
            raise DegenerateInputError(
                f"Point sets must be (N, 3) arrays, got {source.shape} and {target.shape}"
            )
        if len(source) != len(target):
            raise DegenerateInputError(
                f"Point sets must have equal length: {len(source)} != {len(target)}"
            )
        if len(source) < 3:
            raise DegenerateInputError(f"At least 3 point pairs are required, got {len(source)}")
        if not (np.all(np.isfinite(source)) and np.all(np.isfinite(target))):
            raise DegenerateInputError("Point sets contain non-finite coordinates")

    def _check_spread(self, centered: np.ndarray, name: str) -> None:
        singular_values = np.linalg.svd(centered, compute_uv=False)
        scale = max(1.0, float(np.max(np.abs(centered))))
        if singular_values[0] <= self.degenerate_tolerance * scale:
            raise DegenerateInputError(f"All {name} points coincide")
        if singular_values[1] <= self.degenerate_tolerance * singular_values[0]:
            raise DegenerateInputError(f"The {name} points are collinear")
