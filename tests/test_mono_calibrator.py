"""
Tests for Monocular Calibrator and OpenCV refinement
"""

import logging

import pytest
import numpy as np
import cv2

from camera_geometry.calibration.mono_calibrator import MonoCalibrator
from camera_geometry.calibration.refinement import OpenCVPlanarRefiner, RefinementResult
from camera_geometry.data_models import CalibrationObservation, CameraFamily, CameraIntrinsics, Pose
from camera_geometry.exceptions import CalibrationDivergedError, DegenerateInputError


class StubRefiner:
    """Refiner returning a fixed result and recording its calls."""

    def __init__(self, intrinsics, poses=None, error=None):
        self.intrinsics = intrinsics
        self.poses = poses
        self.error = error
        self.calls = []

    def refine(self, layout, observations):
        self.calls.append(len(observations))
        if self.error is not None:
            raise self.error
        poses = self.poses if self.poses is not None else [Pose.identity()] * len(observations)
        return RefinementResult(
            intrinsics=self.intrinsics,
            poses=tuple(poses),
            view_errors=tuple(0.1 for _ in observations),
            rms_error=0.1
        )


@pytest.fixture
def true_camera():
    """Camera used to render synthetic observations."""
    return CameraIntrinsics(
        family=CameraFamily.BROWN,
        fx=820.0, fy=815.0, cx=318.0, cy=242.0,
        width=640, height=480,
        radial=(-0.1, 0.02)
    )


class TestMonoCalibrator:
    """Test suite for monocular calibrator."""

    def test_opencv_calibration_recovers_camera(self, true_camera, board_layout, board_poses, observation_factory, config_manager):
        calibrator = MonoCalibrator(board_layout, config_manager=config_manager)
        calibrator.configure_pinhole(assume_zero_skew=True, num_radial=2, include_tangential=False)
        for obs in observation_factory(true_camera, board_layout, board_poses):
            calibrator.add_observation(obs)

        intrinsics = calibrator.process()

        assert intrinsics.family is CameraFamily.BROWN
        assert intrinsics.fx == pytest.approx(true_camera.fx, rel=1e-3)
        assert intrinsics.fy == pytest.approx(true_camera.fy, rel=1e-3)
        assert intrinsics.cx == pytest.approx(true_camera.cx, abs=0.5)
        assert intrinsics.cy == pytest.approx(true_camera.cy, abs=0.5)
        assert intrinsics.radial[0] == pytest.approx(-0.1, abs=1e-2)
        assert (intrinsics.t1, intrinsics.t2) == (0.0, 0.0)
        assert intrinsics.skew == 0.0

        assert len(calibrator.poses) == len(board_poses)
        for estimated, expected in zip(calibrator.poses, board_poses):
            np.testing.assert_allclose(estimated.rotation, expected.rotation, atol=1e-3)
            np.testing.assert_allclose(estimated.translation, expected.translation, atol=1e-3)

        assert len(calibrator.view_errors) == len(board_poses)
        assert max(calibrator.view_errors) < 1e-2

    def test_partial_observations(self, true_camera, board_layout, board_poses, observation_factory, config_manager):
        """Views may observe any subset of the target points."""
        calibrator = MonoCalibrator(board_layout, config_manager=config_manager)
        calibrator.configure_pinhole(num_radial=2, include_tangential=False)
        for i, obs in enumerate(observation_factory(true_camera, board_layout, board_poses)):
            keep = np.arange(len(board_layout))[i % 3::2] if i % 2 else np.arange(len(board_layout))
            calibrator.add_observation(
                CalibrationObservation(obs.point_indices[keep], obs.pixels[keep], obs.width, obs.height)
            )

        intrinsics = calibrator.process()
        assert intrinsics.fx == pytest.approx(true_camera.fx, rel=1e-3)

    def test_process_without_observations(self, board_layout, pinhole_intrinsics, config_manager):
        calibrator = MonoCalibrator(board_layout, StubRefiner(pinhole_intrinsics), config_manager)
        with pytest.raises(DegenerateInputError):
            calibrator.process()

    def test_stub_refiner_results_are_exposed(self, board_layout, pinhole_intrinsics, config_manager):
        poses = [Pose.from_rodrigues([0.1 * i, 0.0, 0.0], [0.0, 0.0, 1.0]) for i in range(3)]
        refiner = StubRefiner(pinhole_intrinsics, poses)
        calibrator = MonoCalibrator(board_layout, refiner, config_manager)
        for _ in range(3):
            calibrator.add_observation(CalibrationObservation([0, 1, 2, 3], np.zeros((4, 2)), 640, 480))

        intrinsics = calibrator.process()

        assert intrinsics is pinhole_intrinsics
        assert refiner.calls == [3]
        assert calibrator.poses == tuple(poses)
        assert calibrator.view_errors == (0.1, 0.1, 0.1)

    def test_divergence_is_propagated(self, board_layout, pinhole_intrinsics, config_manager, caplog):
        refiner = StubRefiner(pinhole_intrinsics, error=CalibrationDivergedError("no convergence"))
        calibrator = MonoCalibrator(board_layout, refiner, config_manager)
        calibrator.add_observation(CalibrationObservation([0, 1, 2, 3], np.zeros((4, 2)), 640, 480))

        with caplog.at_level(logging.ERROR):
            with pytest.raises(CalibrationDivergedError):
                calibrator.process()
        assert "Refinement failed" in caplog.text
        assert calibrator.poses == ()

    def test_failed_rerun_clears_previous_results(self, board_layout, pinhole_intrinsics, config_manager):
        refiner = StubRefiner(pinhole_intrinsics)
        calibrator = MonoCalibrator(board_layout, refiner, config_manager)
        calibrator.add_observation(CalibrationObservation([0, 1, 2, 3], np.zeros((4, 2)), 640, 480))
        calibrator.process()
        assert len(calibrator.poses) == 1

        refiner.error = CalibrationDivergedError("no convergence")
        calibrator.add_observation(CalibrationObservation([0, 1, 2, 3], np.zeros((4, 2)), 640, 480))
        with pytest.raises(CalibrationDivergedError):
            calibrator.process()

        assert calibrator.poses == ()
        assert calibrator.view_errors == ()

    def test_pose_count_mismatch(self, board_layout, pinhole_intrinsics, config_manager):
        refiner = StubRefiner(pinhole_intrinsics, poses=[Pose.identity()])
        calibrator = MonoCalibrator(board_layout, refiner, config_manager)
        for _ in range(2):
            calibrator.add_observation(CalibrationObservation([0, 1, 2, 3], np.zeros((4, 2)), 640, 480))
        with pytest.raises(CalibrationDivergedError):
            calibrator.process()

    def test_reset(self, board_layout, pinhole_intrinsics, config_manager):
        calibrator = MonoCalibrator(board_layout, StubRefiner(pinhole_intrinsics), config_manager)
        calibrator.add_observation(CalibrationObservation([0, 1, 2, 3], np.zeros((4, 2)), 640, 480))
        calibrator.process()

        calibrator.reset()

        assert calibrator.num_observations == 0
        assert calibrator.poses == ()
        assert calibrator.view_errors == ()
        with pytest.raises(DegenerateInputError):
            calibrator.process()

    def test_rejects_out_of_range_indices(self, board_layout, pinhole_intrinsics, config_manager):
        calibrator = MonoCalibrator(board_layout, StubRefiner(pinhole_intrinsics), config_manager)
        with pytest.raises(DegenerateInputError):
            calibrator.add_observation(CalibrationObservation([0, 54], np.zeros((2, 2)), 640, 480))
        assert calibrator.num_observations == 0

    def test_rejects_collinear_layout(self, config_manager):
        with pytest.raises(DegenerateInputError):
            MonoCalibrator(np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0]]), config_manager=config_manager)

    def test_log_statistics(self, board_layout, pinhole_intrinsics, config_manager, caplog):
        calibrator = MonoCalibrator(board_layout, StubRefiner(pinhole_intrinsics), config_manager)
        with caplog.at_level(logging.INFO):
            calibrator.log_statistics()
        assert "No calibration results" in caplog.text

        calibrator.add_observation(CalibrationObservation([0, 1, 2, 3], np.zeros((4, 2)), 640, 480))
        calibrator.process()
        caplog.clear()
        with caplog.at_level(logging.INFO):
            calibrator.log_statistics()
        assert "Overall RMS reprojection error" in caplog.text

    def test_injected_logger(self, board_layout, pinhole_intrinsics, config_manager):
        logger = logging.getLogger("custom.calibration")
        calibrator = MonoCalibrator(board_layout, StubRefiner(pinhole_intrinsics), config_manager, logger)
        assert calibrator.logger is logger


class TestOpenCVPlanarRefiner:
    """Test suite for the OpenCV refinement backend."""

    def test_calibration_flags(self, config_manager):
        refiner = OpenCVPlanarRefiner(num_radial=0, include_tangential=False, config_manager=config_manager)
        flags = refiner.calibration_flags
        for flag in (cv2.CALIB_FIX_K1, cv2.CALIB_FIX_K2, cv2.CALIB_FIX_K3, cv2.CALIB_ZERO_TANGENT_DIST):
            assert flags & flag

        refiner = OpenCVPlanarRefiner(num_radial=2, include_tangential=True, config_manager=config_manager)
        flags = refiner.calibration_flags
        assert flags & cv2.CALIB_FIX_K3
        assert not flags & cv2.CALIB_FIX_K1
        assert not flags & cv2.CALIB_ZERO_TANGENT_DIST

    def test_invalid_radial_count(self, config_manager):
        with pytest.raises(ValueError):
            OpenCVPlanarRefiner(num_radial=4, config_manager=config_manager)

    def test_skew_request_warns(self, config_manager, caplog):
        with caplog.at_level(logging.WARNING):
            OpenCVPlanarRefiner(assume_zero_skew=False, config_manager=config_manager)
        assert "Skew estimation is not supported" in caplog.text

    def test_too_few_points_per_view(self, board_layout, config_manager):
        refiner = OpenCVPlanarRefiner(config_manager=config_manager)
        obs = CalibrationObservation([0, 1, 2], np.zeros((3, 2)), 640, 480)
        with pytest.raises(DegenerateInputError):
            refiner.refine(board_layout, [obs])

    def test_mixed_image_sizes(self, board_layout, config_manager):
        refiner = OpenCVPlanarRefiner(config_manager=config_manager)
        observations = [
            CalibrationObservation([0, 1, 2, 3], np.zeros((4, 2)), 640, 480),
            CalibrationObservation([0, 1, 2, 3], np.zeros((4, 2)), 800, 600),
        ]
        with pytest.raises(DegenerateInputError):
            refiner.refine(board_layout, observations)

    def test_pinhole_family_without_distortion_terms(self, pinhole_intrinsics, board_layout, board_poses,
                                                     observation_factory, config_manager):
        refiner = OpenCVPlanarRefiner(num_radial=0, include_tangential=False, config_manager=config_manager)
        observations = observation_factory(pinhole_intrinsics, board_layout, board_poses)

        result = refiner.refine(board_layout, observations)

        assert result.intrinsics.family is CameraFamily.PINHOLE
        assert result.intrinsics.radial == ()
        assert result.intrinsics.fx == pytest.approx(800.0, rel=1e-3)
        assert result.rms_error < 1e-2
