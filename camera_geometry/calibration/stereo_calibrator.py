"""
Stereo Planar Calibrator

Calibrates two cameras that observed the same planar target views and recovers
the rigid transform from the right camera frame to the left camera frame.

Not thread-safe: callers sharing an instance across threads must synchronize
access externally.
"""

import logging
from typing import Optional, Tuple

import numpy as np

from ..data_models import CalibrationObservation, CameraIntrinsics, Pose, StereoParameters, layout_to_3d
from ..exceptions import ConfigurationMismatchError, DegenerateInputError
from ..geometry.rigid_alignment import RigidAlignmentSolver
from ..utils.config_manager import ConfigManager
from .mono_calibrator import MonoCalibrator
from .refinement import PlanarRefiner


class StereoCalibrator:
    """Runs two monocular calibrations and fits the right-to-left extrinsic."""

    def __init__(self,
                 layout: np.ndarray,
                 refiner: Optional[PlanarRefiner] = None,
                 config_manager: Optional[ConfigManager] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize stereo calibrator.

        Args:
            layout: (M, 2) physical target coordinates shared by all observations
            refiner: Refinement collaborator used for both cameras
            config_manager: Configuration manager instance
            logger: Logger receiving status messages, defaults to the module logger
        """
        self.config = config_manager or ConfigManager()
        self.logger = logger or logging.getLogger(__name__)

        self.left = MonoCalibrator(layout, refiner, self.config, self.logger.getChild('left'))
        self.right = MonoCalibrator(layout, refiner, self.config, self.logger.getChild('right'))
        self.layout = self.left.layout
        self.solver = RigidAlignmentSolver(self.config, self.logger)

        validation_config = self.config.get_validation_params()
        self.max_rotation_degrees = float(validation_config.get('max_rotation_degrees', 45.0))

    def configure(self,
                  assume_zero_skew: bool = True,
                  num_radial: int = 2,
                  include_tangential: bool = True) -> None:
        """
        Specify calibration assumptions for both cameras.

        Args:
            assume_zero_skew: If True zero skew is assumed
            num_radial: Number of radial distortion parameters
            include_tangential: If True tangential distortion is estimated
        """
        self.left.configure_pinhole(assume_zero_skew, num_radial, include_tangential)
        self.right.configure_pinhole(assume_zero_skew, num_radial, include_tangential)

    def add_pair(self, left: CalibrationObservation, right: CalibrationObservation) -> None:
        """Add left and right observations of the same target view."""
        # Both sides are checked before either is stored so the counts stay paired
        left.check_layout(self.layout)
        right.check_layout(self.layout)
        self.left.add_observation(left)
        self.right.add_observation(right)

    def reset(self) -> None:
        """Put the calibrator back into its initial state."""
        self.left.reset()
        self.right.reset()

    def process(self) -> StereoParameters:
        """
        Compute stereo calibration parameters.

        Returns:
            Left and right intrinsics and the right-to-left transform
        """
        n_left = self.left.num_observations
        n_right = self.right.num_observations
        if n_left != n_right:
            raise ConfigurationMismatchError(
                f"Number of left and right observations must match: {n_left} != {n_right}"
            )
        if n_left == 0:
            raise DegenerateInputError("No observation pairs have been added")

        self.logger.info(f"Starting stereo calibration with {n_left} view pairs")

        left_intrinsics = self.left.process()
        right_intrinsics = self.right.process()

        right_cloud, left_cloud = self._build_point_clouds(self.left.poses, self.right.poses)
        right_to_left = self.solver.fit(right_cloud, left_cloud)
        residual = self.solver.residual_rms(right_to_left, right_cloud, left_cloud)

        self._validate_stereo_geometry(right_to_left)
        self.logger.info(
            f"Stereo calibration completed: baseline = {np.linalg.norm(right_to_left.translation):.4f}, "
            f"alignment rms = {residual:.6f}"
        )

        return StereoParameters(
            left=left_intrinsics,
            right=right_intrinsics,
            right_to_left=right_to_left,
            residual_rms=residual
        )

    def _build_point_clouds(self,
                            left_poses: Tuple[Pose, ...],
                            right_poses: Tuple[Pose, ...]) -> Tuple[np.ndarray, np.ndarray]:
        """
        Transform the target layout through every view's left and right pose.

        Returns:
            (right_cloud, left_cloud), each of size views x layout points
        """
        points = layout_to_3d(self.layout)
        left_cloud = []
        right_cloud = []
        for world_to_left, world_to_right in zip(left_poses, right_poses):
            left_cloud.append(world_to_left.transform_points(points))
            right_cloud.append(world_to_right.transform_points(points))
        return np.concatenate(right_cloud, axis=0), np.concatenate(left_cloud, axis=0)

    def _validate_stereo_geometry(self, right_to_left: Pose) -> None:
        rotation_degrees = np.degrees(right_to_left.rotation_angle())
        if rotation_degrees > self.max_rotation_degrees:
            self.logger.warning(f"Large rotation between cameras: {rotation_degrees:.1f} degrees")
        self.logger.debug(f"Stereo rotation between cameras: {rotation_degrees:.3f} degrees")

    def log_statistics(self) -> None:
        """Log reprojection statistics for both cameras."""
        self.logger.info("Left camera statistics")
        self.left.log_statistics()
        self.logger.info("Right camera statistics")
        self.right.log_statistics()
