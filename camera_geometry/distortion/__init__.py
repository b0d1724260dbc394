"""
Lens Distortion Module

Pixel/normalized/direction transforms for the supported camera families and
undistortion transforms with field-of-view adjustment.
"""

from .lens_models import (
    BrownDistortion, BrownModel, DirectionTransform, NormalizedTransform,
    PinholeModel, UniversalOmniModel, lens_model, pixel_to_direction
)
from .adjustment import AdjustedTransform, AdjustmentTransformBuilder, AdjustmentType

__all__ = [
    'BrownDistortion', 'BrownModel', 'DirectionTransform', 'NormalizedTransform',
    'PinholeModel', 'UniversalOmniModel', 'lens_model', 'pixel_to_direction',
    'AdjustedTransform', 'AdjustmentTransformBuilder', 'AdjustmentType'
]
