"""
Monocular Planar Calibrator

Accumulates observations of a planar target for one camera and delegates
intrinsic and per-view pose estimation to a refinement collaborator.

Not thread-safe: callers sharing an instance across threads must synchronize
`add_observation`, `process` and `reset` externally.
"""

import logging
from typing import List, Optional, Tuple

import numpy as np

from ..data_models import CalibrationObservation, CameraIntrinsics, Pose, validate_target_layout
from ..exceptions import CalibrationDivergedError, DegenerateInputError
from ..utils.config_manager import ConfigManager
from .refinement import OpenCVPlanarRefiner, PlanarRefiner, RefinementResult


class MonoCalibrator:
    """Calibrates a single camera from observations of a known planar target."""

    def __init__(self,
                 layout: np.ndarray,
                 refiner: Optional[PlanarRefiner] = None,
                 config_manager: Optional[ConfigManager] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize monocular calibrator.

        Args:
            layout: (M, 2) physical target coordinates, row i is point index i
            refiner: Refinement collaborator, defaults to OpenCVPlanarRefiner
            config_manager: Configuration manager instance
            logger: Logger receiving status messages, defaults to the module logger
        """
        self.config = config_manager or ConfigManager()
        self.logger = logger or logging.getLogger(__name__)
        self.layout = validate_target_layout(layout)

        if refiner is None:
            calibration_config = self.config.get_calibration_params()
            refiner = OpenCVPlanarRefiner(
                assume_zero_skew=calibration_config.get('assume_zero_skew', True),
                num_radial=calibration_config.get('num_radial', 2),
                include_tangential=calibration_config.get('include_tangential', True),
                config_manager=self.config,
                logger=self.logger
            )
        self.refiner = refiner

        self._observations: List[CalibrationObservation] = []
        self._poses: List[Pose] = []
        self._result: Optional[RefinementResult] = None

    def configure_pinhole(self,
                          assume_zero_skew: bool = True,
                          num_radial: int = 2,
                          include_tangential: bool = True) -> None:
        """
        Select the pinhole/Brown model estimated by the default refiner.

        Args:
            assume_zero_skew: If True zero skew is assumed
            num_radial: Number of radial distortion parameters
            include_tangential: If True tangential distortion is estimated
        """
        self.refiner = OpenCVPlanarRefiner(
            assume_zero_skew=assume_zero_skew,
            num_radial=num_radial,
            include_tangential=include_tangential,
            config_manager=self.config,
            logger=self.logger
        )

    def add_observation(self, observation: CalibrationObservation) -> None:
        """Add an observation of the target from one image."""
        observation.check_layout(self.layout)
        self._observations.append(observation)
        self.logger.debug(f"Observation {len(self._observations)}: {len(observation)} points")

    @property
    def num_observations(self) -> int:
        return len(self._observations)

    @property
    def observations(self) -> Tuple[CalibrationObservation, ...]:
        return tuple(self._observations)

    @property
    def poses(self) -> Tuple[Pose, ...]:
        """World-to-camera pose of each processed view."""
        return tuple(self._poses)

    @property
    def view_errors(self) -> Tuple[float, ...]:
        return self._result.view_errors if self._result is not None else ()

    def process(self) -> CameraIntrinsics:
        """
        Estimate intrinsics and per-view poses from all accumulated observations.

        Returns:
            Camera intrinsics; per-view poses are available through `poses`
        """
        if not self._observations:
            raise DegenerateInputError("No observations have been added")

        # Results of an earlier run no longer describe the current views
        self._poses = []
        self._result = None

        try:
            result = self.refiner.refine(self.layout, list(self._observations))
        except CalibrationDivergedError as e:
            self.logger.error(f"Refinement failed for {len(self._observations)} views: {e}")
            raise

        if len(result.poses) != len(self._observations):
            raise CalibrationDivergedError(
                f"Refinement returned {len(result.poses)} poses for {len(self._observations)} observations"
            )

        self._result = result
        self._poses = list(result.poses)

        if result.rms_error > float(self.config.get('validation.max_reprojection_error', 0.5)):
            self.logger.warning(f"High reprojection error: {result.rms_error:.4f} pixels")

        return result.intrinsics

    def reset(self) -> None:
        """Discard observations and results so the calibrator can be reused."""
        self._observations.clear()
        self._poses.clear()
        self._result = None

    def log_statistics(self) -> None:
        """Log per-view reprojection errors of the last run."""
        if self._result is None:
            self.logger.info("No calibration results available")
            return
        for i, error in enumerate(self._result.view_errors):
            self.logger.info(f"View {i:3d}: RMS reprojection error {error:.4f} pixels")
        self.logger.info(f"Overall RMS reprojection error {self._result.rms_error:.4f} pixels")
