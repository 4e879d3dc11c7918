"""
Scan engine: march the sampling plane through the volume.

For k = 0 .. max_scan - 1 the plane sits at center + direction * k. Every
pixel not yet filled whose sample v satisfies

    threshold_min < v < threshold_max

receives max_scan - k. The loop always runs every step; later steps can
still fill pixels that earlier steps missed. Once the loop is over the
background policy closes the remaining pixels.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

import numpy as np
from tqdm import tqdm

from common.config import HeightFieldConfig, HeightFieldMetadata
from common.volume import Volume
from .buffer import HeightField, clamp_max_scan
from .sampler import ObliquePlaneSampler

logger = logging.getLogger(__name__)


@dataclass
class ScanState:
    """Progress of a scan."""
    k: int = 0                # next depth step to run
    last_hit_depth: int = 0   # highest k that filled at least one pixel
    n_filled: int = 0
    finished: bool = False
    cancelled: bool = False

    def record_hits(self, k: int, n_new: int) -> None:
        """Account for the pixels filled at step k."""
        if n_new:
            self.last_hit_depth = k
            self.n_filled += n_new


@dataclass
class ScanResult:
    """Outcome of ScanEngine.run."""
    heightfield: HeightField
    state: ScanState
    requested_max_scan: int
    max_scan_clamped: bool
    n_background: int = 0

    @property
    def values(self) -> np.ndarray:
        return self.heightfield.values

    @property
    def filled(self) -> np.ndarray:
        return self.heightfield.filled

    def metadata(self, config: HeightFieldConfig, source: str = "") -> HeightFieldMetadata:
        hf = self.heightfield
        return HeightFieldMetadata(
            source=source,
            width=hf.width,
            height=hf.height,
            dtype=hf.dtype.name,
            max_scan=hf.max_scan,
            requested_max_scan=self.requested_max_scan,
            max_scan_clamped=self.max_scan_clamped,
            last_hit_depth=self.state.last_hit_depth,
            n_filled=self.state.n_filled,
            n_background=self.n_background,
            steps_completed=self.state.k,
            background=config.background.value,
            generation_params=config.to_dict(),
        )


class ScanEngine:
    """
    Directional first-hit scan of a volume into a height field.

    Usage:
        engine = ScanEngine(volume, config)
        result = engine.run()

    or, to drive the depth loop yourself:
        for state in engine.steps():
            ...
        engine.finish()
    """

    def __init__(self, volume: Volume, config: HeightFieldConfig):
        self.volume = volume
        self.config = config

        self.requested_max_scan = config.max_scan
        max_scan, self.max_scan_clamped = clamp_max_scan(config.max_scan, config.dtype)

        # Fails early on a zero direction
        self.sampler = ObliquePlaneSampler.create(
            origin=config.center,
            direction=config.direction,
            width=config.width,
            height=config.height,
        )
        self.heightfield = HeightField(
            width=config.width,
            height=config.height,
            max_scan=max_scan,
            dtype=config.dtype,
        )
        self.state = ScanState()
        self.n_background = 0

        if config.threshold_min >= config.threshold_max:
            logger.warning(
                f"Empty threshold window ({config.threshold_min}, {config.threshold_max}): "
                f"no pixel can be filled"
            )

    @property
    def max_scan(self) -> int:
        return self.heightfield.max_scan

    def in_window(self, values: np.ndarray) -> np.ndarray:
        """Open interval test against the threshold window."""
        lo, hi = self.config.threshold_min, self.config.threshold_max
        if not np.issubdtype(values.dtype, np.integer):
            return (values > lo) & (values < hi)

        # Compare in the voxel type; thresholds outside its range decide alone
        info = np.iinfo(values.dtype)
        if lo < info.min:
            above = np.ones(values.shape, dtype=bool)
        elif lo > info.max:
            above = np.zeros(values.shape, dtype=bool)
        else:
            above = values > values.dtype.type(lo)

        if hi > info.max:
            below = np.ones(values.shape, dtype=bool)
        elif hi < info.min:
            below = np.zeros(values.shape, dtype=bool)
        else:
            below = values < values.dtype.type(hi)
        return above & below

    def scan_step(self, k: int) -> int:
        """
        Run depth step k.

        Returns:
            Number of pixels filled at this step
        """
        values, inside = self.sampler.at_step(k).sample(self.volume)
        hits = inside & self.in_window(values)
        n_new = self.heightfield.fill(hits, k)
        self.state.record_hits(k, n_new)
        if n_new:
            logger.debug(f"Step {k}: filled {n_new} pixels")
        return n_new

    def steps(self) -> Iterator[ScanState]:
        """Run the remaining depth steps, yielding the state after each."""
        while self.state.k < self.max_scan:
            self.scan_step(self.state.k)
            self.state.k += 1
            yield self.state
        self.state.finished = True

    def finish(self) -> int:
        """
        Apply the background policy.

        Only allowed once every depth step has run.
        """
        if not self.state.finished:
            raise RuntimeError(
                f"Background fill needs a complete scan ({self.state.k}/{self.max_scan} steps done)"
            )
        self.n_background = self.heightfield.fill_background(
            self.config.background, self.state.last_hit_depth
        )
        return self.n_background

    def run(
        self,
        progress: bool = False,
        should_stop: Optional[Callable[[ScanState], bool]] = None
    ) -> ScanResult:
        """
        Scan the whole depth range and apply the background policy.

        Args:
            progress: Show a tqdm progress bar over depth steps
            should_stop: Called after each step; returning True stops the
                scan. The partial raster is kept as is and no background
                fill happens.

        Returns:
            ScanResult
        """
        logger.info(
            f"Scanning {self.config.width}x{self.config.height} plane from "
            f"{tuple(self.config.center)} along {tuple(self.config.direction)}, "
            f"{self.max_scan} steps, window ({self.config.threshold_min}, "
            f"{self.config.threshold_max})"
        )

        for state in tqdm(self.steps(), total=self.max_scan, desc="Scanning",
                          unit="step", disable=not progress):
            # Stopping is only possible between depth steps
            if state.k >= self.max_scan:
                continue
            if should_stop is not None and should_stop(state):
                state.cancelled = True
                logger.warning(f"Scan stopped after {state.k}/{self.max_scan} steps")
                break

        if self.state.finished:
            self.finish()

        logger.info(
            f"Filled {self.state.n_filled}/{self.config.width * self.config.height} pixels, "
            f"last hit at depth {self.state.last_hit_depth}"
        )
        return ScanResult(
            heightfield=self.heightfield,
            state=self.state,
            requested_max_scan=self.requested_max_scan,
            max_scan_clamped=self.max_scan_clamped,
            n_background=self.n_background,
        )


def extract_heightfield(
    volume: Volume,
    config: HeightFieldConfig,
    progress: bool = False
) -> ScanResult:
    """
    Extract a height field from a volume.

    Args:
        volume: Volume to scan
        config: HeightFieldConfig
        progress: Show a progress bar

    Returns:
        ScanResult holding the raster and the final scan state
    """
    return ScanEngine(volume, config).run(progress=progress)
