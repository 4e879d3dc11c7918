"""
Oblique plane sampler.

Embeds a 2D raster in 3D: pixel (u, v) of a width x height raster maps to

    origin + (u - width/2) * e1 + (v - height/2) * e2

where (e1, e2, n) is a right-handed orthonormal frame built from the scan
direction alone. The frame does not depend on the origin, so samplers at
origin, origin + d, origin + 2d, ... trace parallel planes and every pixel
moves by exactly d per step.
"""

import numpy as np
from typing import Optional, Sequence, Tuple
from dataclasses import dataclass

from common.volume import Volume, round_to_lattice

# Below this norm a direction is treated as zero
DIRECTION_EPS = 1e-12


def plane_basis(direction: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Build the in-plane axes (e1, e2) for a scan direction.

    e1 is the coordinate axis least aligned with the direction (lowest
    index on ties), projected onto the plane and normalized.
    e2 = n x e1 with n the normalized direction.

    Raises:
        ValueError: if the direction is zero or not 3D
    """
    n = np.asarray(direction, dtype=np.float64)
    if n.shape != (3,):
        raise ValueError(f"Direction must be a 3D vector, got {direction!r}")
    norm = np.linalg.norm(n)
    if not np.isfinite(norm) or norm < DIRECTION_EPS:
        raise ValueError(f"Scan direction must be non-zero, got {tuple(n)}")
    n = n / norm

    axis = np.zeros(3)
    axis[int(np.argmin(np.abs(n)))] = 1.0

    e1 = axis - np.dot(axis, n) * n
    e1 /= np.linalg.norm(e1)
    e2 = np.cross(n, e1)
    e2 /= np.linalg.norm(e2)
    return e1, e2


@dataclass(frozen=True, eq=False)
class ObliquePlaneSampler:
    """
    Pixel -> 3D point mapping for one plane position.

    A pure value: build with `create`, move along the direction with
    `at_step`. The basis is computed once and shared by every step.
    """
    origin: np.ndarray     # (3,) plane centre
    direction: np.ndarray  # (3,) scan step, not normalized
    e1: np.ndarray         # (3,) unit axis for u
    e2: np.ndarray         # (3,) unit axis for v
    width: int
    height: int

    @classmethod
    def create(
        cls,
        origin: Sequence[float],
        direction: Sequence[float],
        width: int,
        height: Optional[int] = None
    ) -> "ObliquePlaneSampler":
        """
        Build the sampler for the plane through `origin` normal to `direction`.

        Args:
            origin: Plane centre
            direction: Scan direction (non-zero)
            width: Raster columns
            height: Raster rows (defaults to width)
        """
        height = width if height is None else height
        if width <= 0 or height <= 0:
            raise ValueError(f"Raster size must be positive, got {width}x{height}")

        e1, e2 = plane_basis(direction)
        return cls(
            origin=np.asarray(origin, dtype=np.float64),
            direction=np.asarray(direction, dtype=np.float64),
            e1=e1,
            e2=e2,
            width=int(width),
            height=int(height),
        )

    def at_step(self, k: int) -> "ObliquePlaneSampler":
        """Sampler for the plane `k` steps along the direction."""
        return ObliquePlaneSampler(
            origin=self.origin + self.direction * k,
            direction=self.direction,
            e1=self.e1,
            e2=self.e2,
            width=self.width,
            height=self.height,
        )

    @property
    def shape(self) -> Tuple[int, int]:
        """Raster shape as (rows, columns)."""
        return self.height, self.width

    def points(self, u, v) -> np.ndarray:
        """
        3D points for pixel coordinates.

        Args:
            u: Column index (scalar or array)
            v: Row index (scalar or array, broadcast against u)

        Returns:
            (..., 3) array of real coordinates
        """
        du = np.asarray(u, dtype=np.float64) - self.width / 2.0
        dv = np.asarray(v, dtype=np.float64) - self.height / 2.0
        return (
            self.origin
            + du[..., np.newaxis] * self.e1
            + dv[..., np.newaxis] * self.e2
        )

    def __call__(self, u, v) -> np.ndarray:
        return self.points(u, v)

    def grid(self) -> np.ndarray:
        """(height, width, 3) array of the real point of every pixel."""
        v, u = np.mgrid[0:self.height, 0:self.width]
        return self.points(u, v)

    def lattice_points(self) -> np.ndarray:
        """(height, width, 3) array of rounded lattice points."""
        return round_to_lattice(self.grid())

    def sample(self, volume: Volume) -> Tuple[np.ndarray, np.ndarray]:
        """
        Plane sample view of a volume.

        Returns:
            Tuple of (values, inside), both shaped (height, width)
        """
        return volume.sample(self.grid())
