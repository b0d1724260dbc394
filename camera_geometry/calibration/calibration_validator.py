"""
Calibration Quality Validator

Checks calibration results against plausibility thresholds and renders a
human-readable quality report.
"""

import logging
from typing import Any, Dict, Optional, Sequence

import numpy as np

from ..data_models import CameraIntrinsics, StereoParameters
from ..utils.config_manager import ConfigManager


class CalibrationValidator:
    """Validates calibration quality metrics against configured thresholds."""

    def __init__(self,
                 config_manager: Optional[ConfigManager] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize calibration validator.

        Args:
            config_manager: Configuration manager instance
            logger: Logger receiving status messages, defaults to the module logger
        """
        self.config = config_manager or ConfigManager()
        self.logger = logger or logging.getLogger(__name__)

        validation_config = self.config.get_validation_params()
        self.max_reprojection_error = float(validation_config.get('max_reprojection_error', 0.5))
        self.min_focal_length = float(validation_config.get('min_focal_length', 100.0))
        self.max_focal_length = float(validation_config.get('max_focal_length', 10000.0))
        self.max_aspect_deviation = float(validation_config.get('max_aspect_deviation', 0.1))
        self.max_principal_offset = float(validation_config.get('max_principal_offset', 0.2))
        self.max_radial_coefficient = float(validation_config.get('max_radial_coefficient', 1.0))
        self.min_baseline = float(validation_config.get('min_baseline', 0.01))
        self.max_baseline = float(validation_config.get('max_baseline', 2.0))
        self.max_rotation_degrees = float(validation_config.get('max_rotation_degrees', 45.0))

    @staticmethod
    def _empty_results() -> Dict[str, Any]:
        return {
            'is_valid': True,
            'errors': [],
            'warnings': [],
            'quality_score': 0.0,
            'metrics': {}
        }

    def validate_intrinsic_calibration(self,
                                       intrinsics: CameraIntrinsics,
                                       view_errors: Optional[Sequence[float]] = None) -> Dict[str, Any]:
        """
        Validate intrinsic calibration quality.

        Args:
            intrinsics: Camera intrinsics to validate
            view_errors: Per-view RMS reprojection errors in pixels, if available

        Returns:
            Dictionary with validation results and quality metrics
        """
        results = self._empty_results()
        metrics = results['metrics']

        rms_error = None
        if view_errors:
            errors = np.asarray(view_errors, dtype=np.float64)
            rms_error = float(np.sqrt(np.mean(errors ** 2)))
            metrics['reprojection_error'] = rms_error
            metrics['worst_view_error'] = float(errors.max())
            if rms_error > self.max_reprojection_error:
                results['is_valid'] = False
                results['errors'].append(
                    f"Reprojection error {rms_error:.4f} > {self.max_reprojection_error} pixels"
                )

        fx, fy = intrinsics.fx, intrinsics.fy
        metrics['focal_length_x'] = fx
        metrics['focal_length_y'] = fy
        metrics['principal_point'] = (intrinsics.cx, intrinsics.cy)

        if not self.min_focal_length <= abs(fx) <= self.max_focal_length:
            results['warnings'].append(f"Unusual focal length fx: {fx:.1f} pixels")
        if not self.min_focal_length <= abs(fy) <= self.max_focal_length:
            results['warnings'].append(f"Unusual focal length fy: {fy:.1f} pixels")

        aspect_ratio = fx / fy
        metrics['aspect_ratio'] = aspect_ratio
        if abs(aspect_ratio - 1.0) > self.max_aspect_deviation:
            results['warnings'].append(f"Unusual aspect ratio: {aspect_ratio:.3f}")

        # Principal point relative to image centre
        center_x = intrinsics.width / 2
        center_y = intrinsics.height / 2
        cx_offset = abs(intrinsics.cx - center_x) / center_x
        cy_offset = abs(intrinsics.cy - center_y) / center_y
        metrics['principal_point_offset'] = (cx_offset, cy_offset)
        if cx_offset > self.max_principal_offset or cy_offset > self.max_principal_offset:
            results['warnings'].append(
                f"Principal point far from center: ({cx_offset:.2%}, {cy_offset:.2%})"
            )

        for i, k in enumerate(intrinsics.radial[:2]):
            metrics[f'distortion_k{i + 1}'] = k
            if abs(k) > self.max_radial_coefficient:
                results['warnings'].append(f"High radial distortion k{i + 1}: {k:.4f}")

        quality_score = 100.0
        if rms_error is not None and rms_error > 0.05:
            quality_score -= (rms_error - 0.05) * 200
        quality_score -= len(results['warnings']) * 5
        quality_score -= len(results['errors']) * 20
        results['quality_score'] = max(0.0, min(100.0, quality_score))

        if results['is_valid']:
            self.logger.info(f"Intrinsic calibration valid: quality={results['quality_score']:.1f}%")
        else:
            self.logger.error(f"Intrinsic calibration invalid: {len(results['errors'])} errors")
        for warning in results['warnings']:
            self.logger.warning(warning)

        return results

    def validate_stereo_calibration(self,
                                    params: StereoParameters,
                                    left_view_errors: Optional[Sequence[float]] = None,
                                    right_view_errors: Optional[Sequence[float]] = None) -> Dict[str, Any]:
        """
        Validate stereo calibration quality.

        Args:
            params: Stereo parameters to validate
            left_view_errors: Per-view RMS errors of the left camera
            right_view_errors: Per-view RMS errors of the right camera

        Returns:
            Dictionary with validation results and quality metrics
        """
        results = self._empty_results()
        metrics = results['metrics']

        left_validation = self.validate_intrinsic_calibration(params.left, left_view_errors)
        right_validation = self.validate_intrinsic_calibration(params.right, right_view_errors)
        if not left_validation['is_valid']:
            results['is_valid'] = False
            results['errors'].append("Left camera calibration invalid")
        if not right_validation['is_valid']:
            results['is_valid'] = False
            results['errors'].append("Right camera calibration invalid")

        metrics['baseline'] = params.baseline
        if params.baseline < self.min_baseline:
            results['is_valid'] = False
            results['errors'].append(f"Baseline too small: {params.baseline:.4f} < {self.min_baseline}")
        if params.baseline > self.max_baseline:
            results['warnings'].append(f"Large baseline: {params.baseline:.4f}")

        R = params.rotation_matrix
        det_R = float(np.linalg.det(R))
        metrics['rotation_determinant'] = det_R
        if abs(det_R - 1.0) > 0.01:
            results['is_valid'] = False
            results['errors'].append(f"Invalid rotation matrix: det(R) = {det_R:.4f}")

        rotation_degrees = float(np.degrees(params.right_to_left.rotation_angle()))
        metrics['rotation_angle_degrees'] = rotation_degrees
        if rotation_degrees > self.max_rotation_degrees:
            results['warnings'].append(f"Large rotation: {rotation_degrees:.1f} degrees")

        if params.residual_rms is not None:
            metrics['alignment_rms'] = params.residual_rms

        quality_score = (left_validation['quality_score'] + right_validation['quality_score']) / 2
        if rotation_degrees < 10:
            quality_score += 5
        quality_score -= len(results['warnings']) * 3
        quality_score -= len(results['errors']) * 15
        results['quality_score'] = max(0.0, min(100.0, quality_score))

        if results['is_valid']:
            self.logger.info(f"Stereo calibration valid: quality={results['quality_score']:.1f}%")
        else:
            self.logger.error(f"Stereo calibration invalid: {len(results['errors'])} errors")
        for warning in results['warnings']:
            self.logger.warning(warning)

        return results

    def generate_calibration_report(self,
                                    stereo_params: StereoParameters,
                                    validation_results: Dict[str, Any]) -> str:
        """
        Generate a calibration quality report.

        Args:
            stereo_params: Stereo calibration parameters
            validation_results: Output of validate_stereo_calibration

        Returns:
            Formatted calibration report
        """
        report = []
        report.append("=" * 60)
        report.append("STEREO CALIBRATION QUALITY REPORT")
        report.append("=" * 60)

        status = "VALID" if validation_results['is_valid'] else "INVALID"
        report.append(f"Status: {status}")
        report.append(f"Quality Score: {validation_results['quality_score']:.1f}/100")
        report.append("")

        report.append("CAMERA PARAMETERS")
        report.append("-" * 30)
        for name, camera in (("Left", stereo_params.left), ("Right", stereo_params.right)):
            report.append(f"{name} model: {camera.family.value}")
            report.append(f"{name} focal length: {camera.fx:.1f} x {camera.fy:.1f} pixels")
            report.append(f"{name} principal point: ({camera.cx:.1f}, {camera.cy:.1f})")
        report.append("")

        report.append("STEREO GEOMETRY")
        report.append("-" * 30)
        report.append(f"Baseline: {stereo_params.baseline:.4f}")
        metrics = validation_results.get('metrics', {})
        if 'rotation_angle_degrees' in metrics:
            report.append(f"Camera rotation: {metrics['rotation_angle_degrees']:.2f} degrees")
        if stereo_params.residual_rms is not None:
            report.append(f"Alignment RMS: {stereo_params.residual_rms:.6f}")
        report.append("")

        if validation_results['errors']:
            report.append("ERRORS")
            report.append("-" * 30)
            for error in validation_results['errors']:
                report.append(f"  - {error}")
            report.append("")

        if validation_results['warnings']:
            report.append("WARNINGS")
            report.append("-" * 30)
            for warning in validation_results['warnings']:
                report.append(f"  - {warning}")
            report.append("")

        report.append("RECOMMENDATIONS")
        report.append("-" * 30)
        if validation_results['quality_score'] < 70:
            report.append("  - Consider recalibrating with more views")
            report.append("  - Ensure the calibration target is flat")
        if validation_results['quality_score'] >= 90:
            report.append("  - Calibration quality is excellent")

        report.append("=" * 60)

        return "\n".join(report)
