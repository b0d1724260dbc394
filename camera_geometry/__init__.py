"""
Camera Geometry and Calibration Core

Geometric building blocks for calibrated imaging from planar targets.

This package implements:
- Pinhole, Brown (radial + tangential) and universal omnidirectional lens models
- Undistortion transforms with NONE, EXPAND and FULL_VIEW field-of-view policies
- Dense per-pixel viewing direction fields and equirectangular mapping
- Least-squares rigid alignment of matched 3D point sets
- Monocular and stereo calibration from planar target observations
"""

__version__ = "1.0.0"
__author__ = "Camera Geometry Team"

from .calibration import CalibrationValidator, MonoCalibrator, OpenCVPlanarRefiner, StereoCalibrator
from .distortion import (
    AdjustedTransform, AdjustmentTransformBuilder, AdjustmentType,
    BrownModel, PinholeModel, UniversalOmniModel, lens_model
)
from .geometry import RigidAlignmentSolver
from .spherical import CameraToEquirectangular, DirectionFieldGenerator
from .data_models import (
    CameraFamily, CameraIntrinsics, Pose, CalibrationObservation,
    DirectionField, StereoParameters
)
from .exceptions import CalibrationDivergedError, ConfigurationMismatchError, DegenerateInputError

__all__ = [
    # Calibration
    'MonoCalibrator', 'StereoCalibrator', 'OpenCVPlanarRefiner', 'CalibrationValidator',
    # Distortion
    'PinholeModel', 'BrownModel', 'UniversalOmniModel', 'lens_model',
    'AdjustmentType', 'AdjustedTransform', 'AdjustmentTransformBuilder',
    # Geometry
    'RigidAlignmentSolver',
    # Spherical
    'DirectionFieldGenerator', 'CameraToEquirectangular',
    # Data Models
    'CameraFamily', 'CameraIntrinsics', 'Pose', 'CalibrationObservation',
    'DirectionField', 'StereoParameters',
    # Errors
    'DegenerateInputError', 'ConfigurationMismatchError', 'CalibrationDivergedError'
]
