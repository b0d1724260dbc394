"""
Undistortion Adjustment Transforms

Derives pixel-to-pixel transforms for removing lens distortion while rescaling
the undistorted image, either to hide border artifacts (EXPAND) or to keep the
whole original field of view on the canvas (FULL_VIEW).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np

from ..data_models import CameraFamily, CameraIntrinsics
from ..utils.config_manager import ConfigManager
from .lens_models import ArrayLike, BrownModel, NormalizedTransform, lens_model


class AdjustmentType(Enum):
    """How the undistorted image is fitted to the output canvas."""
    NONE = "none"
    EXPAND = "expand"  # zoom in until no pixel samples outside the source image
    FULL_VIEW = "full_view"  # zoom out until the whole source image is visible


@dataclass(frozen=True)
class AdjustedTransform:
    """
    Undistortion transform between the adjusted (undistorted) image and the
    original distorted image.

    The adjusted image is an ideal pinhole camera sharing the original principal
    point, with focal lengths and skew multiplied by `scale`.
    """
    policy: AdjustmentType
    scale: float
    feasible: bool
    original: CameraIntrinsics
    adjusted: CameraIntrinsics
    model: NormalizedTransform = field(repr=False, compare=False)

    def _adjusted_to_normalized(self, u: ArrayLike, v: ArrayLike) -> Tuple[np.ndarray, np.ndarray]:
        a = self.adjusted
        u = np.asarray(u, dtype=np.float64)
        v = np.asarray(v, dtype=np.float64)
        y = (v - a.cy) / a.fy
        x = (u - a.cx - a.skew * y) / a.fx
        return x, y

    def undistorted_to_distorted(self, u: ArrayLike, v: ArrayLike) -> Tuple[ArrayLike, ArrayLike]:
        """Map adjusted image pixels to pixels of the original distorted image."""
        x, y = self._adjusted_to_normalized(u, v)
        return self.model.normalized_to_pixel(x, y)

    def distorted_to_undistorted(self, px: ArrayLike, py: ArrayLike) -> Tuple[ArrayLike, ArrayLike]:
        """Map original distorted pixels into the adjusted undistorted image."""
        x, y = self.model.pixel_to_normalized(px, py)
        a = self.adjusted
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        u = a.fx * x + a.skew * y + a.cx
        v = a.fy * y + a.cy
        if u.ndim == 0:
            return float(u), float(v)
        return u, v

    def build_maps(self, dtype=np.float32) -> Tuple[np.ndarray, np.ndarray]:
        """
        Per-pixel lookup maps for rendering the adjusted image.

        Returns (map_x, map_y) of shape (H, W) holding source pixel coordinates,
        in the layout expected by cv2.remap.
        """
        width, height = self.adjusted.width, self.adjusted.height
        uu, vv = np.meshgrid(np.arange(width, dtype=np.float64), np.arange(height, dtype=np.float64))
        map_x, map_y = self.undistorted_to_distorted(uu, vv)
        return np.asarray(map_x, dtype=dtype), np.asarray(map_y, dtype=dtype)


def edge_samples(width: int, height: int, samples_per_edge: int) -> Tuple[np.ndarray, np.ndarray]:
    """Points sampled along the four edges of a width x height pixel grid."""
    xs = np.linspace(0.0, width - 1.0, samples_per_edge)
    ys = np.linspace(0.0, height - 1.0, samples_per_edge)
    top = (xs, np.zeros_like(xs))
    bottom = (xs, np.full_like(xs, height - 1.0))
    left = (np.zeros_like(ys), ys)
    right = (np.full_like(ys, width - 1.0), ys)
    px = np.concatenate([top[0], bottom[0], left[0], right[0]])
    py = np.concatenate([top[1], bottom[1], left[1], right[1]])
    return px, py


class AdjustmentTransformBuilder:
    """Builds undistortion transforms under the NONE, EXPAND and FULL_VIEW policies."""

    def __init__(self,
                 config_manager: Optional[ConfigManager] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize adjustment transform builder.

        Args:
            config_manager: Configuration manager instance
            logger: Logger receiving status messages, defaults to the module logger
        """
        self.config = config_manager or ConfigManager()
        self.logger = logger or logging.getLogger(__name__)

        adjustment_config = self.config.get_adjustment_params()

        # Boundary sampling density and scale search limits
        self.samples_per_edge = int(adjustment_config.get('samples_per_edge', 64))
        self.max_scale = float(adjustment_config.get('max_scale', 1000.0))
        self.search_tolerance = float(adjustment_config.get('search_tolerance', 1e-9))
        self.max_search_iterations = int(adjustment_config.get('max_search_iterations', 200))

    def build(self,
              camera: Union[CameraIntrinsics, NormalizedTransform],
              policy: AdjustmentType) -> AdjustedTransform:
        """
        Build the adjusted undistortion transform for a camera.

        Args:
            camera: Camera intrinsics or an already constructed lens model
            policy: Adjustment policy

        Returns:
            Adjusted transform; falls back to NONE (with feasible=False) when
            the requested policy has no valid scale
        """
        model = lens_model(camera, self.config) if isinstance(camera, CameraIntrinsics) else camera
        if not isinstance(model, NormalizedTransform):
            raise TypeError(f"{type(model).__name__} does not provide a normalized transform")
        intrinsics = getattr(model, 'intrinsics', None)
        if not isinstance(intrinsics, CameraIntrinsics):
            raise TypeError(f"{type(model).__name__} does not expose camera intrinsics")

        if policy is AdjustmentType.NONE:
            scale = 1.0
        elif policy is AdjustmentType.EXPAND:
            scale = self._expand_scale(model, intrinsics)
        elif policy is AdjustmentType.FULL_VIEW:
            scale = self._full_view_scale(model, intrinsics)
        else:
            raise ValueError(f"Unknown adjustment policy: {policy}")

        if scale is None:
            self.logger.warning(
                f"No feasible scale for {policy.value} adjustment of "
                f"{intrinsics.width}x{intrinsics.height} camera, using unadjusted transform"
            )
            return self._make_transform(model, intrinsics, AdjustmentType.NONE, 1.0, feasible=False)

        self.logger.debug(f"{policy.value} adjustment: scale={scale:.6f}")
        return self._make_transform(model, intrinsics, policy, scale, feasible=True)

    def _make_transform(self,
                        model: NormalizedTransform,
                        intrinsics: CameraIntrinsics,
                        policy: AdjustmentType,
                        scale: float,
                        feasible: bool) -> AdjustedTransform:
        adjusted = CameraIntrinsics(
            family=CameraFamily.PINHOLE,
            fx=intrinsics.fx * scale,
            fy=intrinsics.fy * scale,
            cx=intrinsics.cx,
            cy=intrinsics.cy,
            width=intrinsics.width,
            height=intrinsics.height,
            skew=intrinsics.skew * scale
        )
        return AdjustedTransform(
            policy=policy,
            scale=float(scale),
            feasible=feasible,
            original=intrinsics,
            adjusted=adjusted,
            model=model
        )

    def _samples_inside(self,
                        model: NormalizedTransform,
                        intrinsics: CameraIntrinsics,
                        scale: float,
                        samples: Tuple[np.ndarray, np.ndarray]) -> bool:
        """True if every output edge sample maps inside the source image at this scale."""
        candidate = self._make_transform(model, intrinsics, AdjustmentType.EXPAND, scale, feasible=True)
        px, py = candidate.undistorted_to_distorted(*samples)
        px = np.asarray(px)
        py = np.asarray(py)
        eps = 1e-9
        with np.errstate(invalid='ignore'):
            inside = (
                np.isfinite(px) & np.isfinite(py)
                & (px >= -eps) & (px <= intrinsics.width - 1 + eps)
                & (py >= -eps) & (py <= intrinsics.height - 1 + eps)
            )
        return bool(np.all(inside))

    def _expand_scale(self, model: NormalizedTransform, intrinsics: CameraIntrinsics) -> Optional[float]:
        """
        Smallest scale >= 1 at which all output edge samples stay inside the source.

        Bracket by doubling, then bisect. Edge samples of the output image are
        assumed to be the extreme points of the mapping.
        """
        samples = edge_samples(intrinsics.width, intrinsics.height, self.samples_per_edge)

        def feasible(scale: float) -> bool:
            return self._samples_inside(model, intrinsics, scale, samples)

        if feasible(1.0):
            return 1.0

        lower, upper = 1.0, min(2.0, self.max_scale)
        while not feasible(upper):
            lower = upper
            if upper >= self.max_scale:
                return None
            upper = min(upper * 2.0, self.max_scale)

        for _ in range(self.max_search_iterations):
            if upper - lower <= self.search_tolerance * upper:
                break
            middle = 0.5 * (lower + upper)
            if feasible(middle):
                upper = middle
            else:
                lower = middle

        return upper

    def _full_view_scale(self, model: NormalizedTransform, intrinsics: CameraIntrinsics) -> Optional[float]:
        """
        Largest scale <= 1 at which every undistorted source edge sample lands on the canvas.

        With the principal point fixed the projected offset from the center is
        linear in the scale, so each sample gives a closed-form upper bound.
        """
        px, py = edge_samples(intrinsics.width, intrinsics.height, self.samples_per_edge)

        if isinstance(model, BrownModel):
            x, y, converged = model.pixel_to_normalized_checked(px, py)
            not_converged = int(np.size(converged) - np.count_nonzero(converged))
            if not_converged:
                self.logger.warning(f"{not_converged} edge samples did not converge during undistortion")
        else:
            x, y = model.pixel_to_normalized(px, py)

        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        finite = np.isfinite(x) & np.isfinite(y)
        if not np.any(finite):
            return None
        if not np.all(finite):
            self.logger.warning(f"{int(np.sum(~finite))} edge samples have no pinhole projection and were skipped")

        dx = intrinsics.fx * x[finite] + intrinsics.skew * y[finite]
        dy = intrinsics.fy * y[finite]
        cx, cy = intrinsics.cx, intrinsics.cy
        max_x, max_y = intrinsics.width - 1.0, intrinsics.height - 1.0

        bounds = [1.0]
        bounds.extend((max_x - cx) / dx[dx > 0])
        bounds.extend(-cx / dx[dx < 0])
        bounds.extend((max_y - cy) / dy[dy > 0])
        bounds.extend(-cy / dy[dy < 0])

        scale = float(min(bounds))
        if scale <= 0.0:
            return None
        return scale
