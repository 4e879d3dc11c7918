"""
Immutable 3D scalar volume.

Voxels are indexed [x, y, z] over the lattice box [0, X) x [0, Y) x [0, Z).
Sampling is nearest-lattice: real points are rounded with floor(p + 0.5)
and anything outside the box is reported as outside, never as a value.
"""

import numpy as np
from typing import Tuple
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)


def round_to_lattice(points: np.ndarray) -> np.ndarray:
    """Round real points to the nearest lattice point (halves go up)."""
    return np.floor(np.asarray(points, dtype=np.float64) + 0.5).astype(np.int64)


@dataclass(frozen=True, eq=False)
class Volume:
    """
    3D scalar field of unsigned intensities.

    The array is made read-only on construction; the scan only reads it.
    """
    data: np.ndarray  # 3D array indexed [x, y, z]

    def __post_init__(self):
        data = np.asarray(self.data)
        if data.ndim != 3:
            raise ValueError(f"Volume must be 3D, got shape {data.shape}")
        if data is self.data:
            data = data.view()
        data.flags.writeable = False
        object.__setattr__(self, "data", data)

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self.data.shape

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    @property
    def lower(self) -> np.ndarray:
        return np.zeros(3, dtype=np.int64)

    @property
    def upper(self) -> np.ndarray:
        """Inclusive upper corner of the domain."""
        return np.array(self.shape, dtype=np.int64) - 1

    def contains(self, points: np.ndarray) -> np.ndarray:
        """Boolean mask of lattice points inside the domain (last axis = xyz)."""
        points = np.asarray(points)
        shape = np.array(self.shape)
        return np.all((points >= 0) & (points < shape), axis=-1)

    def sample(self, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Read the volume at arbitrary 3D points.

        Args:
            points: (..., 3) array of real or integer coordinates

        Returns:
            Tuple of (values, inside). values has the volume dtype and the
            leading shape of points; it holds 0 where inside is False.
        """
        lattice = round_to_lattice(points)
        inside = self.contains(lattice)

        values = np.zeros(inside.shape, dtype=self.dtype)
        hit = lattice[inside]
        values[inside] = self.data[hit[:, 0], hit[:, 1], hit[:, 2]]
        return values, inside

    def __repr__(self) -> str:
        return f"Volume(shape={self.shape}, dtype={self.dtype})"


def create_volume(shape: Tuple[int, int, int], fill: int = 0, dtype=np.uint8) -> Volume:
    """
    Create a constant volume.

    Args:
        shape: (X, Y, Z) lattice size
        fill: Value of every voxel
        dtype: Voxel type

    Returns:
        Volume filled with `fill`
    """
    logger.debug(f"Creating volume {tuple(shape)} filled with {fill}")
    return Volume(np.full(tuple(shape), fill, dtype=dtype))
