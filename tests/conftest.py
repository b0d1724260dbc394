"""
Pytest configuration and fixtures for camera geometry tests.
"""

import pytest
import numpy as np
import cv2

from camera_geometry.data_models import CalibrationObservation, CameraFamily, CameraIntrinsics, Pose
from camera_geometry.utils.config_manager import ConfigManager


@pytest.fixture
def config_manager():
    """Fixture providing a configuration manager instance."""
    return ConfigManager()


@pytest.fixture
def pinhole_intrinsics():
    """Fixture providing an ideal pinhole camera."""
    return CameraIntrinsics(
        family=CameraFamily.PINHOLE,
        fx=800.0, fy=800.0, cx=319.5, cy=239.5,
        width=640, height=480
    )


@pytest.fixture
def brown_intrinsics():
    """Fixture providing a camera with moderate barrel and tangential distortion."""
    return CameraIntrinsics(
        family=CameraFamily.BROWN,
        fx=800.0, fy=790.0, cx=322.0, cy=236.0,
        width=640, height=480,
        radial=(-0.2, 0.05),
        t1=0.001, t2=-0.0005
    )


@pytest.fixture
def pincushion_intrinsics():
    """Fixture providing a camera with pincushion distortion."""
    return CameraIntrinsics(
        family=CameraFamily.BROWN,
        fx=800.0, fy=800.0, cx=319.5, cy=239.5,
        width=640, height=480,
        radial=(0.25,)
    )


@pytest.fixture
def omni_intrinsics():
    """Fixture providing a wide angle universal omni camera."""
    return CameraIntrinsics(
        family=CameraFamily.UNIVERSAL_OMNI,
        fx=300.0, fy=300.0, cx=319.5, cy=239.5,
        width=640, height=480,
        radial=(-0.05,),
        mirror_offset=0.8
    )


@pytest.fixture
def board_layout():
    """Fixture providing a 9x6 planar target with 30 mm spacing."""
    return np.array([[x * 0.03, y * 0.03] for y in range(6) for x in range(9)], dtype=np.float64)


def make_board_poses(layout, n_views=8, distance=0.6):
    """World-to-camera poses of a board tilted in different directions, centred on the optical axis."""
    center = np.array([layout[:, 0].mean(), layout[:, 1].mean(), 0.0])
    tilts = [
        (0.35, 0.0, 0.0), (-0.35, 0.0, 0.0), (0.0, 0.35, 0.0), (0.0, -0.35, 0.0),
        (0.25, 0.25, 0.1), (-0.25, 0.2, -0.1), (0.2, -0.25, 0.2), (-0.2, -0.2, -0.2),
        (0.3, 0.1, 0.05), (-0.1, 0.3, -0.05)
    ]
    poses = []
    for i in range(n_views):
        R, _ = cv2.Rodrigues(np.array(tilts[i % len(tilts)], dtype=np.float64))
        t = np.array([0.0, 0.0, distance + 0.05 * i]) - R @ center
        poses.append(Pose(R, t))
    return poses


def project_board(intrinsics, layout, pose):
    """Project target points through a Brown camera with OpenCV."""
    object_points = np.column_stack([layout, np.zeros(len(layout))])
    rvec, tvec = pose.to_rodrigues()
    pixels, _ = cv2.projectPoints(
        object_points, rvec, tvec, intrinsics.camera_matrix, intrinsics.distortion_coeffs
    )
    return pixels.reshape(-1, 2)


def make_observations(intrinsics, layout, poses):
    """Noise-free observations of the full target for each pose."""
    indices = np.arange(len(layout))
    return [
        CalibrationObservation(indices, project_board(intrinsics, layout, pose), intrinsics.width, intrinsics.height)
        for pose in poses
    ]


@pytest.fixture
def board_poses(board_layout):
    """Fixture providing eight tilted world-to-camera board poses."""
    return make_board_poses(board_layout)


@pytest.fixture
def observation_factory():
    """Fixture providing a function that renders observations for (intrinsics, layout, poses)."""
    return make_observations
