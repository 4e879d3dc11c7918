"""
Height field raster and background fill.

A filled pixel stores max_scan - k, so brighter means the surface was met
closer to the scan origin. 0 is the "unfilled" sentinel; the separate
`filled` mask is what the scan trusts when deciding whether a pixel was
already written.
"""

import numpy as np
from typing import Tuple
from dataclasses import dataclass, field
import logging

from scipy.ndimage import distance_transform_edt

from common.config import BackgroundPolicy

logger = logging.getLogger(__name__)

SENTINEL = 0


def clamp_max_scan(max_scan: int, dtype) -> Tuple[int, bool]:
    """
    Clamp the scan depth to the largest value the raster can store.

    Returns:
        Tuple of (effective max_scan, whether it was clamped)
    """
    if max_scan < 0:
        raise ValueError(f"max_scan must be non-negative, got {max_scan}")
    limit = int(np.iinfo(dtype).max)
    if max_scan > limit:
        logger.warning(
            f"heightFieldMaxScan={max_scan} exceeds the max value of the "
            f"{np.dtype(dtype).name} image, set to {limit}"
        )
        return limit, True
    return int(max_scan), False


@dataclass
class HeightField:
    """
    2D depth raster of shape (height, width).

    Values are written once per pixel through `fill`; `fill_background`
    only touches pixels the scan never reached.
    """
    width: int
    height: int
    max_scan: int
    dtype: np.dtype = np.dtype(np.uint8)
    values: np.ndarray = field(init=False, repr=False)
    filled: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        self.dtype = np.dtype(self.dtype)
        if not np.issubdtype(self.dtype, np.unsignedinteger):
            raise ValueError(f"Height field dtype must be unsigned, got {self.dtype}")
        if self.max_scan > np.iinfo(self.dtype).max:
            raise ValueError(
                f"max_scan={self.max_scan} does not fit in {self.dtype.name}; clamp it first"
            )
        self.values = np.full((self.height, self.width), SENTINEL, dtype=self.dtype)
        self.filled = np.zeros((self.height, self.width), dtype=bool)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    @property
    def n_filled(self) -> int:
        return int(self.filled.sum())

    @property
    def unfilled(self) -> np.ndarray:
        return ~self.filled

    def encode(self, k: int) -> int:
        """Raster value for a first hit at depth step k."""
        return self.max_scan - k

    def decode(self) -> np.ndarray:
        """Depth step of every filled pixel, -1 elsewhere."""
        depth = np.full(self.shape, -1, dtype=np.int64)
        depth[self.filled] = self.max_scan - self.values[self.filled].astype(np.int64)
        return depth

    def fill(self, mask: np.ndarray, k: int) -> int:
        """
        Record a first hit at step k for every unfilled pixel in mask.

        Returns:
            Number of newly filled pixels
        """
        new = mask & ~self.filled
        n_new = int(new.sum())
        if n_new:
            self.values[new] = self.encode(k)
            self.filled[new] = True
        return n_new

    def fill_background(self, policy: BackgroundPolicy, last_hit_depth: int) -> int:
        """
        Overwrite the pixels the scan never filled.

        Args:
            policy: BackgroundPolicy to apply
            last_hit_depth: Highest depth step at which any pixel was filled

        Returns:
            Number of background pixels written
        """
        if policy is BackgroundPolicy.NONE:
            return 0

        background = ~self.filled
        n_background = int(background.sum())
        if n_background == 0:
            return 0

        if policy is BackgroundPolicy.NEAREST and self.filled.any():
            # Indices of the nearest filled pixel for every pixel
            _, (rows, cols) = distance_transform_edt(background, return_indices=True)
            self.values[background] = self.values[rows[background], cols[background]]
            logger.info(f"Background: {n_background} pixels copied from nearest filled pixel")
        else:
            value = self.encode(last_hit_depth)
            self.values[background] = value
            logger.info(f"Background: {n_background} pixels set to last depth value {value}")
        return n_background
