"""
Lens Distortion Models

Pure coordinate transforms between pixels, normalized image coordinates and
unit viewing directions for each supported camera family. All transforms are
vectorised over NumPy arrays and accept sub-pixel (continuous) coordinates.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Tuple, Union, runtime_checkable

import numpy as np

from ..data_models import CameraFamily, CameraIntrinsics
from ..utils.config_manager import ConfigManager

ArrayLike = Union[float, np.ndarray]


@runtime_checkable
class NormalizedTransform(Protocol):
    """Capability: pixel <-> normalized image coordinates (z = 1 plane)."""

    def pixel_to_normalized(self, px: ArrayLike, py: ArrayLike) -> Tuple[ArrayLike, ArrayLike]:
        ...

    def normalized_to_pixel(self, x: ArrayLike, y: ArrayLike) -> Tuple[ArrayLike, ArrayLike]:
        ...


@runtime_checkable
class DirectionTransform(Protocol):
    """Capability: pixel <-> unit viewing direction."""

    def pixel_to_direction(self, px: ArrayLike, py: ArrayLike) -> np.ndarray:
        ...

    def direction_to_pixel(self, vectors: np.ndarray) -> Tuple[ArrayLike, ArrayLike]:
        ...


def _output(a: np.ndarray) -> ArrayLike:
    """Return 0-d arrays as Python floats so scalar calls give scalar results."""
    a = np.asarray(a)
    if a.ndim == 0:
        return a.item()
    return a


@dataclass(frozen=True)
class BrownDistortion:
    """
    Radial power series plus tangential distortion on normalized coordinates.

        r2 = x^2 + y^2
        xd = x (1 + k1 r2 + k2 r2^2 + ...) + 2 t1 x y + t2 (r2 + 2 x^2)
        yd = y (1 + k1 r2 + k2 r2^2 + ...) + t1 (r2 + 2 y^2) + 2 t2 x y
    """
    radial: Tuple[float, ...] = ()
    t1: float = 0.0
    t2: float = 0.0

    @property
    def is_identity(self) -> bool:
        return not any(self.radial) and self.t1 == 0.0 and self.t2 == 0.0

    def _radial_factor(self, r2: np.ndarray) -> np.ndarray:
        factor = np.ones_like(r2)
        power = np.ones_like(r2)
        for k in self.radial:
            power = power * r2
            factor = factor + k * power
        return factor

    def _tangential(self, x: np.ndarray, y: np.ndarray, r2: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        dx = 2.0 * self.t1 * x * y + self.t2 * (r2 + 2.0 * x * x)
        dy = self.t1 * (r2 + 2.0 * y * y) + 2.0 * self.t2 * x * y
        return dx, dy

    def distort(self, x: ArrayLike, y: ArrayLike) -> Tuple[np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        r2 = x * x + y * y
        factor = self._radial_factor(r2)
        dx, dy = self._tangential(x, y, r2)
        return x * factor + dx, y * factor + dy

    def undistort(self,
                  xd: ArrayLike,
                  yd: ArrayLike,
                  max_iterations: int = 100,
                  tolerance: float = 1e-10) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Invert `distort` by fixed-point iteration.

        Iteration stops once every point reproduces its distorted input within
        `tolerance`, or after `max_iterations`. The best estimate is returned
        together with a per-point convergence mask instead of raising.
        """
        xd = np.asarray(xd, dtype=np.float64)
        yd = np.asarray(yd, dtype=np.float64)
        x = xd.copy()
        y = yd.copy()

        if self.is_identity:
            return x, y, np.isfinite(x) & np.isfinite(y)

        for _ in range(int(max_iterations)):
            x_est, y_est = self.distort(x, y)
            active = np.hypot(x_est - xd, y_est - yd) > tolerance
            if not np.any(active):
                break

            r2 = x * x + y * y
            factor = self._radial_factor(r2)
            dx, dy = self._tangential(x, y, r2)
            with np.errstate(divide='ignore', invalid='ignore'):
                x_new = (xd - dx) / factor
                y_new = (yd - dy) / factor

            # Points where the radial factor collapses keep their last estimate
            update = active & np.isfinite(x_new) & np.isfinite(y_new)
            x = np.where(update, x_new, x)
            y = np.where(update, y_new, y)

        x_est, y_est = self.distort(x, y)
        converged = np.hypot(x_est - xd, y_est - yd) <= tolerance
        return x, y, converged


class _PixelPlane:
    """Affine mapping between pixels and the (distorted) normalized plane."""

    def __init__(self, intrinsics: CameraIntrinsics):
        self.fx = float(intrinsics.fx)
        self.fy = float(intrinsics.fy)
        self.cx = float(intrinsics.cx)
        self.cy = float(intrinsics.cy)
        self.skew = float(intrinsics.skew)

    def to_plane(self, px: ArrayLike, py: ArrayLike) -> Tuple[np.ndarray, np.ndarray]:
        px = np.asarray(px, dtype=np.float64)
        py = np.asarray(py, dtype=np.float64)
        y = (py - self.cy) / self.fy
        x = (px - self.cx - self.skew * y) / self.fx
        return x, y

    def to_pixel(self, x: ArrayLike, y: ArrayLike) -> Tuple[np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        return self.fx * x + self.skew * y + self.cx, self.fy * y + self.cy


def _iteration_params(config_manager: Optional[ConfigManager]) -> Tuple[int, float]:
    config = config_manager or ConfigManager()
    params = config.get_distortion_params()
    return int(params.get('max_iterations', 100)), float(params.get('tolerance', 1e-10))


def _check_family(intrinsics: CameraIntrinsics, *families: CameraFamily) -> None:
    if intrinsics.family not in families:
        names = ", ".join(f.value for f in families)
        raise ValueError(f"Expected camera family in ({names}), got {intrinsics.family.value}")


class PinholeModel:
    """Ideal pinhole camera without lens distortion."""

    def __init__(self, intrinsics: CameraIntrinsics):
        _check_family(intrinsics, CameraFamily.PINHOLE)
        self.intrinsics = intrinsics
        self._plane = _PixelPlane(intrinsics)

    def pixel_to_normalized(self, px: ArrayLike, py: ArrayLike) -> Tuple[ArrayLike, ArrayLike]:
        x, y = self._plane.to_plane(px, py)
        return _output(x), _output(y)

    def normalized_to_pixel(self, x: ArrayLike, y: ArrayLike) -> Tuple[ArrayLike, ArrayLike]:
        px, py = self._plane.to_pixel(x, y)
        return _output(px), _output(py)


class BrownModel:
    """Pinhole camera with radial and tangential (Brown-Conrady) distortion."""

    def __init__(self,
                 intrinsics: CameraIntrinsics,
                 max_iterations: int = 100,
                 tolerance: float = 1e-10):
        _check_family(intrinsics, CameraFamily.BROWN, CameraFamily.PINHOLE)
        self.intrinsics = intrinsics
        self.distortion = BrownDistortion(intrinsics.radial, intrinsics.t1, intrinsics.t2)
        self.max_iterations = int(max_iterations)
        self.tolerance = float(tolerance)
        self._plane = _PixelPlane(intrinsics)

    def pixel_to_normalized_checked(self,
                                    px: ArrayLike,
                                    py: ArrayLike) -> Tuple[ArrayLike, ArrayLike, Union[bool, np.ndarray]]:
        """Undistort pixels, also reporting whether each inversion converged."""
        xd, yd = self._plane.to_plane(px, py)
        x, y, converged = self.distortion.undistort(xd, yd, self.max_iterations, self.tolerance)
        return _output(x), _output(y), _output(converged)

    def pixel_to_normalized(self, px: ArrayLike, py: ArrayLike) -> Tuple[ArrayLike, ArrayLike]:
        x, y, _ = self.pixel_to_normalized_checked(px, py)
        return x, y

    def normalized_to_pixel(self, x: ArrayLike, y: ArrayLike) -> Tuple[ArrayLike, ArrayLike]:
        xd, yd = self.distortion.distort(x, y)
        px, py = self._plane.to_pixel(xd, yd)
        return _output(px), _output(py)


class UniversalOmniModel:
    """
    Unified omnidirectional camera model.

    A direction is normalized onto the unit sphere, shifted along z by the mirror
    offset xi, projected onto a plane, distorted and mapped to pixels. Supports
    fields of view beyond 180 degrees when xi > 0.
    """

    def __init__(self,
                 intrinsics: CameraIntrinsics,
                 max_iterations: int = 100,
                 tolerance: float = 1e-10):
        _check_family(intrinsics, CameraFamily.UNIVERSAL_OMNI)
        self.intrinsics = intrinsics
        self.mirror_offset = float(intrinsics.mirror_offset)
        self.distortion = BrownDistortion(intrinsics.radial, intrinsics.t1, intrinsics.t2)
        self.max_iterations = int(max_iterations)
        self.tolerance = float(tolerance)
        self._plane = _PixelPlane(intrinsics)

    def _lift_to_sphere(self, mx: np.ndarray, my: np.ndarray) -> np.ndarray:
        xi = self.mirror_offset
        r2 = mx * mx + my * my
        disc = 1.0 + (1.0 - xi * xi) * r2
        with np.errstate(invalid='ignore'):
            factor = (xi + np.sqrt(np.where(disc >= 0.0, disc, np.nan))) / (r2 + 1.0)
        return np.stack([factor * mx, factor * my, factor - xi], axis=-1)

    def pixel_to_direction_checked(self, px: ArrayLike, py: ArrayLike) -> Tuple[np.ndarray, Union[bool, np.ndarray]]:
        xd, yd = self._plane.to_plane(px, py)
        mx, my, converged = self.distortion.undistort(xd, yd, self.max_iterations, self.tolerance)
        return self._lift_to_sphere(mx, my), _output(converged)

    def pixel_to_direction(self, px: ArrayLike, py: ArrayLike) -> np.ndarray:
        """Unit direction for each pixel; NaN where the pixel lies outside the model's domain."""
        vectors, _ = self.pixel_to_direction_checked(px, py)
        return vectors

    def direction_to_pixel(self, vectors: np.ndarray) -> Tuple[ArrayLike, ArrayLike]:
        vectors = np.asarray(vectors, dtype=np.float64)
        norm = np.linalg.norm(vectors, axis=-1)
        with np.errstate(divide='ignore', invalid='ignore'):
            xs = vectors[..., 0] / norm
            ys = vectors[..., 1] / norm
            denom = vectors[..., 2] / norm + self.mirror_offset
            denom = np.where(denom > 1e-12, denom, np.nan)
            mx = xs / denom
            my = ys / denom
        xd, yd = self.distortion.distort(mx, my)
        px, py = self._plane.to_pixel(xd, yd)
        return _output(px), _output(py)

    def pixel_to_normalized(self, px: ArrayLike, py: ArrayLike) -> Tuple[ArrayLike, ArrayLike]:
        """Pinhole-normalized coordinates; NaN for directions at or behind the image plane."""
        vectors = self.pixel_to_direction(px, py)
        with np.errstate(divide='ignore', invalid='ignore'):
            z = np.where(vectors[..., 2] > 1e-12, vectors[..., 2], np.nan)
            return _output(vectors[..., 0] / z), _output(vectors[..., 1] / z)

    def normalized_to_pixel(self, x: ArrayLike, y: ArrayLike) -> Tuple[ArrayLike, ArrayLike]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        return self.direction_to_pixel(np.stack([x, y, np.ones_like(x)], axis=-1))


LensModel = Union[PinholeModel, BrownModel, UniversalOmniModel]


def lens_model(intrinsics: CameraIntrinsics,
               config_manager: Optional[ConfigManager] = None) -> LensModel:
    """Create the lens model matching the intrinsics' family tag."""
    if intrinsics.family is CameraFamily.PINHOLE:
        return PinholeModel(intrinsics)

    max_iterations, tolerance = _iteration_params(config_manager)
    if intrinsics.family is CameraFamily.BROWN:
        return BrownModel(intrinsics, max_iterations, tolerance)
    if intrinsics.family is CameraFamily.UNIVERSAL_OMNI:
        return UniversalOmniModel(intrinsics, max_iterations, tolerance)
    raise ValueError(f"Unsupported camera family: {intrinsics.family}")


def pixel_to_direction(model: Union[NormalizedTransform, DirectionTransform],
                       px: ArrayLike,
                       py: ArrayLike) -> np.ndarray:
    """
    Unit viewing direction for pixels of any model.

    Models without a native direction transform have their normalized
    coordinates promoted to (x, y, 1) and normalized.
    """
    if isinstance(model, DirectionTransform):
        return model.pixel_to_direction(px, py)
    if not isinstance(model, NormalizedTransform):
        raise TypeError(f"{type(model).__name__} provides neither a normalized nor a direction transform")

    x, y = model.pixel_to_normalized(px, py)
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    vectors = np.stack([x, y, np.ones_like(x)], axis=-1)
    return vectors / np.linalg.norm(vectors, axis=-1, keepdims=True)
