"""
Camera Calibration Module

Implements monocular and stereo calibration from planar target observations.
"""

from .refinement import OpenCVPlanarRefiner, PlanarRefiner, RefinementResult
from .mono_calibrator import MonoCalibrator
from .stereo_calibrator import StereoCalibrator
from .calibration_validator import CalibrationValidator

__all__ = [
    'OpenCVPlanarRefiner', 'PlanarRefiner', 'RefinementResult',
    'MonoCalibrator', 'StereoCalibrator', 'CalibrationValidator'
]
