"""
Spherical Projection Module

Dense viewing direction fields and camera-to-equirectangular mapping.
"""

from .direction_field import DirectionFieldGenerator
from .equirectangular import CameraToEquirectangular

__all__ = ['DirectionFieldGenerator', 'CameraToEquirectangular']
