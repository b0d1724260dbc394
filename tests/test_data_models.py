"""
Tests for shared data models
"""

import pytest
import numpy as np
import cv2
from hypothesis import given, settings, strategies as st

from camera_geometry.data_models import (
    CalibrationObservation, CameraFamily, CameraIntrinsics, DirectionField, Pose,
    StereoParameters, layout_to_3d, orthonormalize_rotation, validate_target_layout
)
from camera_geometry.exceptions import DegenerateInputError


def random_pose(seed):
    rng = np.random.default_rng(seed)
    rvec = rng.uniform(-np.pi / 2, np.pi / 2, 3)
    R, _ = cv2.Rodrigues(rvec)
    return Pose(R, rng.uniform(-1.0, 1.0, 3))


class TestCameraIntrinsics:
    """Test suite for camera intrinsics."""

    def test_camera_matrix(self, brown_intrinsics):
        K = brown_intrinsics.camera_matrix
        assert K.shape == (3, 3)
        assert K[0, 0] == 800.0
        assert K[1, 1] == 790.0
        assert K[0, 2] == 322.0
        assert K[1, 2] == 236.0
        assert K[2, 2] == 1.0

    def test_distortion_coeffs_use_opencv_order(self, brown_intrinsics):
        np.testing.assert_allclose(
            brown_intrinsics.distortion_coeffs, [-0.2, 0.05, 0.001, -0.0005, 0.0]
        )
        assert brown_intrinsics.image_size == (640, 480)

    def test_pinhole_rejects_distortion(self):
        with pytest.raises(ValueError):
            CameraIntrinsics(CameraFamily.PINHOLE, 500.0, 500.0, 320.0, 240.0, 640, 480, radial=(0.1,))

    def test_invalid_size_and_focal(self):
        with pytest.raises(ValueError):
            CameraIntrinsics(CameraFamily.PINHOLE, 500.0, 500.0, 320.0, 240.0, 0, 480)
        with pytest.raises(ValueError):
            CameraIntrinsics(CameraFamily.PINHOLE, 0.0, 500.0, 320.0, 240.0, 640, 480)

    def test_intrinsics_are_immutable(self, pinhole_intrinsics):
        with pytest.raises(AttributeError):
            pinhole_intrinsics.fx = 1.0


class TestPose:
    """Test suite for rigid poses."""

    def test_identity(self):
        pose = Pose.identity()
        points = np.random.rand(10, 3)
        np.testing.assert_allclose(pose.transform_points(points), points)
        assert pose.rotation_angle() == pytest.approx(0.0)

    def test_rodrigues_round_trip(self):
        rvec = np.array([0.1, -0.2, 0.3])
        tvec = np.array([1.0, 2.0, 3.0])
        pose = Pose.from_rodrigues(rvec, tvec)
        rvec_out, tvec_out = pose.to_rodrigues()
        np.testing.assert_allclose(rvec_out, rvec, atol=1e-12)
        np.testing.assert_allclose(tvec_out, tvec)
        assert pose.rotation_angle() == pytest.approx(np.linalg.norm(rvec))

    def test_as_matrix(self):
        pose = Pose.from_rodrigues([0.0, 0.0, np.pi / 2], [1.0, 0.0, 0.0])
        T = pose.as_matrix()
        np.testing.assert_allclose(T @ np.array([1.0, 0.0, 0.0, 1.0]), [1.0, 1.0, 0.0, 1.0], atol=1e-12)

    def test_arrays_are_read_only_copies(self):
        R = np.eye(3)
        pose = Pose(R, np.zeros(3))
        R[0, 0] = 5.0
        assert pose.rotation[0, 0] == 1.0
        with pytest.raises(ValueError):
            pose.translation[0] = 1.0

    def test_invalid_shapes(self):
        with pytest.raises(ValueError):
            Pose(np.eye(2), np.zeros(3))
        with pytest.raises(ValueError):
            Pose(np.eye(3), np.zeros(2))

    def test_rejects_reflection(self):
        with pytest.raises(ValueError, match="determinant"):
            Pose(np.diag([1.0, 1.0, -1.0]), np.zeros(3))

    def test_rejects_non_orthonormal_rotation(self):
        with pytest.raises(ValueError, match="orthonormal"):
            Pose(2.0 * np.eye(3), np.zeros(3))
        with pytest.raises(ValueError, match="orthonormal"):
            Pose(np.full((3, 3), np.nan), np.zeros(3))

    def test_accepts_rotation_with_small_drift(self):
        R, _ = cv2.Rodrigues(np.array([0.3, -0.1, 0.2]))
        pose = Pose(R + 1e-9, np.zeros(3))
        assert np.linalg.det(pose.rotation) == pytest.approx(1.0)

    @pytest.mark.property
    @given(seed_a=st.integers(0, 10000), seed_b=st.integers(0, 10000))
    @settings(max_examples=50, deadline=None)
    def test_compose_matches_sequential_application(self, seed_a, seed_b):
        """Composition applies the right operand first."""
        a = random_pose(seed_a)
        b = random_pose(seed_b)
        points = np.random.default_rng(seed_a + seed_b).uniform(-1, 1, (5, 3))

        expected = a.transform_points(b.transform_points(points))
        np.testing.assert_allclose(a.compose(b).transform_points(points), expected, atol=1e-10)

    @pytest.mark.property
    @given(seed=st.integers(0, 10000))
    @settings(max_examples=50, deadline=None)
    def test_inverse_composes_to_identity(self, seed):
        pose = random_pose(seed)
        identity = pose.compose(pose.inverse())
        np.testing.assert_allclose(identity.rotation, np.eye(3), atol=1e-12)
        np.testing.assert_allclose(identity.translation, np.zeros(3), atol=1e-12)

    def test_orthonormalize_rotation(self):
        R, _ = cv2.Rodrigues(np.array([0.3, 0.2, -0.1]))
        drifted = R + 1e-6 * np.random.default_rng(0).standard_normal((3, 3))
        fixed = orthonormalize_rotation(drifted)
        np.testing.assert_allclose(fixed.T @ fixed, np.eye(3), atol=1e-12)
        assert np.linalg.det(fixed) == pytest.approx(1.0)
        np.testing.assert_allclose(fixed, R, atol=1e-5)

        # Already orthonormal input is returned unchanged
        np.testing.assert_array_equal(orthonormalize_rotation(np.eye(3)), np.eye(3))


class TestTargetLayout:
    """Test suite for planar target layouts and observations."""

    def test_valid_layout(self, board_layout):
        layout = validate_target_layout(board_layout)
        assert layout.shape == (54, 2)
        assert not layout.flags.writeable
        np.testing.assert_allclose(layout_to_3d(layout)[:, 2], 0.0)

    @pytest.mark.parametrize("layout", [
        np.zeros((5, 3)),
        np.array([[0.0, 0.0], [1.0, 0.0]]),
        np.array([[0.0, 0.0], [1.0, 1.0], [2.0, 2.0], [3.0, 3.0]]),
        np.array([[1.0, 1.0], [1.0, 1.0], [1.0, 1.0]]),
        np.array([[0.0, 0.0], [1.0, 0.0], [np.nan, 1.0]]),
    ])
    def test_invalid_layouts(self, layout):
        with pytest.raises(DegenerateInputError):
            validate_target_layout(layout)

    def test_observation_validation(self, board_layout):
        obs = CalibrationObservation([0, 1, 2], [[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]], 640, 480)
        assert len(obs) == 3
        obs.check_layout(board_layout)

        with pytest.raises(DegenerateInputError):
            CalibrationObservation([0, 1], [[1.0, 2.0]], 640, 480)
        with pytest.raises(DegenerateInputError):
            CalibrationObservation([0, 0], [[1.0, 2.0], [3.0, 4.0]], 640, 480)
        with pytest.raises(DegenerateInputError):
            CalibrationObservation([0, 100], [[1.0, 2.0], [3.0, 4.0]], 640, 480).check_layout(board_layout)


class TestDirectionFieldAndStereo:
    """Test suite for direction fields and stereo parameters."""

    def test_direction_field_shape_check(self):
        with pytest.raises(ValueError):
            DirectionField(width=4, height=3, vectors=np.zeros((4, 3, 3)))

    def test_direction_field_valid_mask(self):
        vectors = np.zeros((2, 2, 3))
        vectors[..., 2] = 1.0
        vectors[0, 1] = np.nan
        field = DirectionField(width=2, height=2, vectors=vectors)
        np.testing.assert_array_equal(field.valid_mask(), [[True, False], [True, True]])
        np.testing.assert_array_equal(field.at(0, 1), [0.0, 0.0, 1.0])

    def test_stereo_parameters(self, pinhole_intrinsics):
        params = StereoParameters(
            left=pinhole_intrinsics,
            right=pinhole_intrinsics,
            right_to_left=Pose(np.eye(3), [0.3, 0.4, 0.0])
        )
        assert params.baseline == pytest.approx(0.5)
        np.testing.assert_array_equal(params.rotation_matrix, np.eye(3))
        np.testing.assert_array_equal(params.translation_vector, [0.3, 0.4, 0.0])
