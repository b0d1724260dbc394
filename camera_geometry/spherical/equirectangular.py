"""
Equirectangular Projection

Conversions between equirectangular pixels, latitude/longitude and unit
directions, and a camera-to-equirectangular mapping built on a precomputed
direction field.

Frame convention: x right, y down, z forward. Longitude is measured from +z
towards +x, latitude is positive above the horizon (towards -y).
"""

import logging
from typing import Optional, Tuple, Union

import numpy as np

from ..data_models import CameraIntrinsics, DirectionField, orthonormalize_rotation
from ..distortion.lens_models import DirectionTransform, NormalizedTransform
from ..utils.config_manager import ConfigManager
from .direction_field import DirectionFieldGenerator


def equirect_to_lat_lon(x, y, width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    lon = x / width * 2.0 * np.pi - np.pi
    lat = np.pi / 2.0 - y / (height - 1) * np.pi
    return lat, lon


def lat_lon_to_equirect(lat, lon, width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
    lat = np.asarray(lat, dtype=np.float64)
    lon = np.asarray(lon, dtype=np.float64)
    x = (lon + np.pi) / (2.0 * np.pi) * width
    y = (np.pi / 2.0 - lat) / np.pi * (height - 1)
    return x, y


def lat_lon_to_direction(lat, lon) -> np.ndarray:
    lat = np.asarray(lat, dtype=np.float64)
    lon = np.asarray(lon, dtype=np.float64)
    cos_lat = np.cos(lat)
    return np.stack([cos_lat * np.sin(lon), -np.sin(lat), cos_lat * np.cos(lon)], axis=-1)


def direction_to_lat_lon(vectors: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    vectors = np.asarray(vectors, dtype=np.float64)
    norm = np.linalg.norm(vectors, axis=-1)
    with np.errstate(divide='ignore', invalid='ignore'):
        lat = np.arcsin(np.clip(-vectors[..., 1] / norm, -1.0, 1.0))
    lon = np.arctan2(vectors[..., 0], vectors[..., 2])
    return lat, lon


def rotation_from_yaw_pitch_roll(yaw: float, pitch: float, roll: float) -> np.ndarray:
    """Camera-to-world rotation; yaw turns right, pitch looks up, roll turns about the optical axis."""
    cy, sy = np.cos(yaw), np.sin(yaw)
    cp, sp = np.cos(pitch), np.sin(pitch)
    cr, sr = np.cos(roll), np.sin(roll)
    R_yaw = np.array([[cy, 0.0, sy], [0.0, 1.0, 0.0], [-sy, 0.0, cy]])
    R_pitch = np.array([[1.0, 0.0, 0.0], [0.0, cp, -sp], [0.0, sp, cp]])
    R_roll = np.array([[cr, -sr, 0.0], [sr, cr, 0.0], [0.0, 0.0, 1.0]])
    return R_yaw @ R_pitch @ R_roll


class CameraToEquirectangular:
    """
    Maps camera image pixels to equirectangular image coordinates.

    Used to render what a camera with a given orientation would see of an
    equirectangular panorama: the maps from `build_maps` sample the panorama.
    """

    def __init__(self,
                 equirect_width: int,
                 equirect_height: int,
                 config_manager: Optional[ConfigManager] = None,
                 logger: Optional[logging.Logger] = None):
        if equirect_width <= 0 or equirect_height <= 1:
            raise ValueError(f"Invalid equirectangular size: {equirect_width}x{equirect_height}")
        self.equirect_width = int(equirect_width)
        self.equirect_height = int(equirect_height)
        self.config = config_manager or ConfigManager()
        self.logger = logger or logging.getLogger(__name__)
        self.generator = DirectionFieldGenerator(self.config, self.logger)

        self.field: Optional[DirectionField] = None
        self.rotation = np.eye(3)

    def set_camera_model(self,
                         camera: Union[CameraIntrinsics, NormalizedTransform, DirectionTransform]) -> DirectionField:
        """Precompute and keep the direction field for a camera."""
        self.field = self.generator.generate(camera)
        return self.field

    def set_direction_field(self, field: DirectionField) -> None:
        """Reuse a field computed earlier for cameras sharing intrinsics."""
        self.field = field

    def set_orientation(self, rotation: np.ndarray) -> None:
        """Set the camera-to-world rotation."""
        rotation = np.asarray(rotation, dtype=np.float64)
        if rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {rotation.shape}")
        self.rotation = orthonormalize_rotation(rotation, tolerance=1e-9)

    def set_direction(self, yaw: float, pitch: float, roll: float) -> None:
        self.rotation = rotation_from_yaw_pitch_roll(yaw, pitch, roll)

    def _require_field(self) -> DirectionField:
        if self.field is None:
            raise RuntimeError("Camera model has not been set")
        return self.field

    def compute(self, px: int, py: int) -> Tuple[float, float]:
        """Equirectangular coordinate seen by camera pixel (px, py)."""
        field = self._require_field()
        direction = self.rotation @ field.at(px, py)
        lat, lon = direction_to_lat_lon(direction)
        x, y = lat_lon_to_equirect(lat, lon, self.equirect_width, self.equirect_height)
        return float(x), float(y)

    def build_maps(self, dtype=np.float32) -> Tuple[np.ndarray, np.ndarray]:
        """(map_x, map_y) over the camera image, suitable for cv2.remap of the panorama."""
        field = self._require_field()
        directions = field.vectors @ self.rotation.T
        lat, lon = direction_to_lat_lon(directions)
        map_x, map_y = lat_lon_to_equirect(lat, lon, self.equirect_width, self.equirect_height)
        return map_x.astype(dtype), map_y.astype(dtype)
