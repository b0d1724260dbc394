"""
Planar Intrinsic Refinement

Interface to the nonlinear refinement step that estimates intrinsics and one
pose per view from observations of a planar target, and an OpenCV-backed
implementation of it.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple

import cv2
import numpy as np

from ..data_models import CalibrationObservation, CameraFamily, CameraIntrinsics, Pose, layout_to_3d
from ..exceptions import CalibrationDivergedError, DegenerateInputError
from ..utils.config_manager import ConfigManager


@dataclass(frozen=True)
class RefinementResult:
    """Output of a planar refinement run."""
    intrinsics: CameraIntrinsics
    poses: Tuple[Pose, ...]  # world (target) -> camera, one per observation
    view_errors: Tuple[float, ...]  # RMS reprojection error per view, pixels
    rms_error: float


class PlanarRefiner(Protocol):
    """Estimates intrinsics and per-view poses from planar target observations."""

    def refine(self,
               layout: np.ndarray,
               observations: Sequence[CalibrationObservation]) -> RefinementResult:
        ...


class OpenCVPlanarRefiner:
    """Planar calibration using cv2.calibrateCamera as the bundle adjustment."""

    def __init__(self,
                 assume_zero_skew: bool = True,
                 num_radial: int = 2,
                 include_tangential: bool = True,
                 config_manager: Optional[ConfigManager] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize OpenCV planar refiner.

        Args:
            assume_zero_skew: OpenCV cannot estimate skew; False is accepted with a warning
            num_radial: Number of radial coefficients to estimate (0-3)
            include_tangential: Estimate tangential coefficients
            config_manager: Configuration manager instance
            logger: Logger receiving status messages, defaults to the module logger
        """
        self.config = config_manager or ConfigManager()
        self.logger = logger or logging.getLogger(__name__)

        if num_radial < 0 or num_radial > 3:
            raise ValueError(f"num_radial must be between 0 and 3, got {num_radial}")
        if not assume_zero_skew:
            self.logger.warning("Skew estimation is not supported by OpenCV, skew will be zero")

        self.assume_zero_skew = assume_zero_skew
        self.num_radial = int(num_radial)
        self.include_tangential = bool(include_tangential)
        self.max_rms_error = float(self.config.get('calibration.max_rms_error', 5.0))

    @property
    def calibration_flags(self) -> int:
        flags = 0
        fixed_radial = [cv2.CALIB_FIX_K1, cv2.CALIB_FIX_K2, cv2.CALIB_FIX_K3]
        for flag in fixed_radial[self.num_radial:]:
            flags |= flag
        if not self.include_tangential:
            flags |= cv2.CALIB_ZERO_TANGENT_DIST
        return flags

    def _prepare_points(self,
                        layout: np.ndarray,
                        observations: Sequence[CalibrationObservation]) -> Tuple[List[np.ndarray], List[np.ndarray]]:
        layout_3d = layout_to_3d(layout)
        object_points = []
        image_points = []
        for i, obs in enumerate(observations):
            if len(obs) < 4:
                raise DegenerateInputError(f"Observation {i} has {len(obs)} points, at least 4 are required")
            object_points.append(layout_3d[obs.point_indices].astype(np.float32))
            image_points.append(obs.pixels.reshape(-1, 1, 2).astype(np.float32))
        return object_points, image_points

    def refine(self,
               layout: np.ndarray,
               observations: Sequence[CalibrationObservation]) -> RefinementResult:
        """
        Calibrate one camera from planar target observations.

        Args:
            layout: (M, 2) target point coordinates on the z=0 plane
            observations: Observations of the target, all from the same camera

        Returns:
            Refined intrinsics, one world-to-camera pose per observation and reprojection errors
        """
        if not observations:
            raise DegenerateInputError("No observations to calibrate from")

        image_size = (observations[0].width, observations[0].height)
        if any((obs.width, obs.height) != image_size for obs in observations):
            raise DegenerateInputError("All observations must come from images of the same size")

        object_points, image_points = self._prepare_points(layout, observations)

        self.logger.info(f"Starting intrinsic calibration with {len(observations)} views")

        try:
            ret, camera_matrix, dist_coeffs, rvecs, tvecs = cv2.calibrateCamera(
                object_points, image_points, image_size, None, None,
                flags=self.calibration_flags
            )
        except cv2.error as e:
            raise CalibrationDivergedError(f"OpenCV calibration failed: {e}") from e

        dist_coeffs = np.asarray(dist_coeffs, dtype=np.float64).reshape(-1)
        if not (np.isfinite(ret) and np.all(np.isfinite(camera_matrix)) and np.all(np.isfinite(dist_coeffs))):
            raise CalibrationDivergedError("Calibration produced non-finite parameters")
        if ret > self.max_rms_error:
            raise CalibrationDivergedError(
                f"Calibration did not converge: RMS error {ret:.4f} > {self.max_rms_error} pixels"
            )

        intrinsics = self._to_intrinsics(camera_matrix, dist_coeffs, image_size)
        poses = tuple(Pose.from_rodrigues(rvec, tvec) for rvec, tvec in zip(rvecs, tvecs))

        # Per-view reprojection error
        view_errors = []
        for i in range(len(object_points)):
            projected, _ = cv2.projectPoints(
                object_points[i], rvecs[i], tvecs[i], camera_matrix, dist_coeffs
            )
            residual = projected.reshape(-1, 2) - image_points[i].reshape(-1, 2)
            view_errors.append(float(np.sqrt(np.mean(np.sum(residual ** 2, axis=1)))))

        self.logger.info(f"Calibration completed: RMS error = {ret:.4f} pixels")

        return RefinementResult(
            intrinsics=intrinsics,
            poses=poses,
            view_errors=tuple(view_errors),
            rms_error=float(ret)
        )

    def _to_intrinsics(self,
                       camera_matrix: np.ndarray,
                       dist_coeffs: np.ndarray,
                       image_size: Tuple[int, int]) -> CameraIntrinsics:
        coeffs = np.zeros(5)
        coeffs[:min(5, len(dist_coeffs))] = dist_coeffs[:5]
        k1, k2, p1, p2, k3 = coeffs
        radial = (k1, k2, k3)[:self.num_radial]
        t1, t2 = (p1, p2) if self.include_tangential else (0.0, 0.0)
        family = CameraFamily.BROWN if (self.num_radial > 0 or self.include_tangential) else CameraFamily.PINHOLE

        return CameraIntrinsics(
            family=family,
            fx=float(camera_matrix[0, 0]),
            fy=float(camera_matrix[1, 1]),
            cx=float(camera_matrix[0, 2]),
            cy=float(camera_matrix[1, 2]),
            width=image_size[0],
            height=image_size[1],
            skew=float(camera_matrix[0, 1]),
            radial=tuple(float(k) for k in radial),
            t1=float(t1),
            t2=float(t2)
        )
