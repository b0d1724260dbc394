"""
Direction Field Generator

Precomputes the unit viewing direction of every pixel of a camera image. The
resulting field is the reusable unit for reprojecting images that share
intrinsics, e.g. onto an equirectangular panorama.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple, Union

import numpy as np

from ..data_models import CameraIntrinsics, DirectionField
from ..distortion.lens_models import DirectionTransform, NormalizedTransform, lens_model, pixel_to_direction
from ..utils.config_manager import ConfigManager


class DirectionFieldGenerator:
    """Evaluates a camera model's pixel-to-direction transform once per pixel."""

    def __init__(self,
                 config_manager: Optional[ConfigManager] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize direction field generator.

        Args:
            config_manager: Configuration manager instance
            logger: Logger receiving status messages, defaults to the module logger
        """
        self.config = config_manager or ConfigManager()
        self.logger = logger or logging.getLogger(__name__)

        field_config = self.config.get_direction_field_params()
        self.workers = int(field_config.get('workers', 1))
        self.rows_per_task = int(field_config.get('rows_per_task', 64))

    def generate(self,
                 camera: Union[CameraIntrinsics, NormalizedTransform, DirectionTransform],
                 width: Optional[int] = None,
                 height: Optional[int] = None) -> DirectionField:
        """
        Generate the direction field for a camera.

        Args:
            camera: Camera intrinsics or a lens model
            width: Image width, defaults to the camera's width
            height: Image height, defaults to the camera's height

        Returns:
            Read-only field of unit vectors, NaN where a pixel has no direction
        """
        model = lens_model(camera, self.config) if isinstance(camera, CameraIntrinsics) else camera
        intrinsics = getattr(model, 'intrinsics', None)
        if intrinsics is None and (width is None or height is None):
            raise ValueError("Image size is required for models without intrinsics")
        width = int(width if width is not None else intrinsics.width)
        height = int(height if height is not None else intrinsics.height)
        if width <= 0 or height <= 0:
            raise ValueError(f"Direction field size must be positive: {width}x{height}")

        vectors = np.empty((height, width, 3), dtype=np.float64)
        row_ranges = self._partition_rows(height)

        if self.workers > 1 and len(row_ranges) > 1:
            # Each task writes a disjoint row range of the preallocated field
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                futures = [
                    executor.submit(self._fill_rows, model, vectors, width, start, stop)
                    for start, stop in row_ranges
                ]
                for future in futures:
                    future.result()
        else:
            for start, stop in row_ranges:
                self._fill_rows(model, vectors, width, start, stop)

        invalid = int(np.count_nonzero(~np.all(np.isfinite(vectors), axis=-1)))
        if invalid:
            self.logger.debug(f"{invalid} pixels outside the model's valid domain")
        self.logger.info(f"Direction field generated: {width}x{height}, workers={self.workers}")

        return DirectionField(width=width, height=height, vectors=vectors)

    def _partition_rows(self, height: int) -> List[Tuple[int, int]]:
        return [(start, min(start + self.rows_per_task, height))
                for start in range(0, height, self.rows_per_task)]

    @staticmethod
    def _fill_rows(model, vectors: np.ndarray, width: int, start: int, stop: int) -> None:
        xs = np.arange(width, dtype=np.float64)
        ys = np.arange(start, stop, dtype=np.float64)
        px, py = np.meshgrid(xs, ys)
        vectors[start:stop] = pixel_to_direction(model, px, py)
