"""
Configuration and constants for height field extraction.

Scan model:
- The plane starts centred on `center` and advances by `direction` per step
- A pixel stores max_scan - k for the first step k whose sample lies in
  the open window (threshold_min, threshold_max)
- max_scan is clamped to the largest value of the output dtype
"""

from enum import Enum
from dataclasses import dataclass, field, fields
from typing import Optional, Dict, Any, Tuple
import json
from pathlib import Path

import numpy as np


class BackgroundPolicy(Enum):
    """
    What unfilled pixels become once the scan is over.

    NONE (default): keep the sentinel 0
    LAST_DEPTH: max_scan - last_hit_depth, the depth of the last hit seen
        anywhere in the raster (one global value)
    NEAREST: copy the value of the nearest filled pixel
    """
    NONE = "none"
    LAST_DEPTH = "last-depth"
    NEAREST = "nearest"


# Output bit depth -> raster dtype
OUTPUT_DTYPES = {
    8: np.uint8,
    16: np.uint16,
}


INT_FIELDS = ("threshold_min", "threshold_max", "width", "height", "max_scan", "bits")


def _as_int(name: str, value: Any) -> int:
    """Accept ints and integral floats (10.0), reject everything else."""
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValueError(f"{name} must be an integer, got {value!r}")


def _as_vector(name: str, value: Any, kind) -> Tuple:
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        raise ValueError(f"{name} must be a list of 3 numbers, got {value!r}")
    if kind is int:
        return tuple(_as_int(name, c) for c in value)
    if any(isinstance(c, bool) or not isinstance(c, (int, float)) for c in value):
        raise ValueError(f"{name} must be a list of 3 numbers, got {value!r}")
    return tuple(float(c) for c in value)


@dataclass
class HeightFieldConfig:
    """
    Parameters of a single height field extraction.

    Defaults match the command line defaults of vol2heightfield.
    """

    # Open threshold window
    threshold_min: int = 128
    threshold_max: int = 255

    # Scan direction (need not be normalized, must not be zero)
    direction: Tuple[float, float, float] = (0.0, 0.0, 1.0)

    # Plane centre at step 0
    center: Tuple[int, int, int] = (0, 0, 1)

    # Raster size: width = columns (u), height = rows (v)
    width: int = 100
    height: int = 100

    # Number of depth steps
    max_scan: int = 255

    background: BackgroundPolicy = BackgroundPolicy.NONE

    # Output raster depth in bits (8 or 16)
    bits: int = 8

    @property
    def dtype(self) -> np.dtype:
        if self.bits not in OUTPUT_DTYPES:
            raise ValueError(f"Unsupported output depth: {self.bits} bits (use 8 or 16)")
        return np.dtype(OUTPUT_DTYPES[self.bits])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threshold_min": self.threshold_min,
            "threshold_max": self.threshold_max,
            "direction": list(self.direction),
            "center": list(self.center),
            "width": self.width,
            "height": self.height,
            "max_scan": self.max_scan,
            "background": self.background.value,
            "bits": self.bits,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HeightFieldConfig":
        """
        Build a config from plain JSON values.

        Raises:
            ValueError: on unknown keys or values of the wrong type
        """
        data = dict(data)
        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")

        for name in INT_FIELDS:
            if name in data:
                data[name] = _as_int(name, data[name])
        if "background" in data:
            data["background"] = BackgroundPolicy(data["background"])
        if "direction" in data:
            data["direction"] = _as_vector("direction", data["direction"], float)
        if "center" in data:
            data["center"] = _as_vector("center", data["center"], int)
        return cls(**data)

    @classmethod
    def from_json(cls, path: Path) -> "HeightFieldConfig":
        """Load config from JSON file."""
        with open(path) as f:
            data = json.load(f)
        return cls.from_dict(data)

    def save(self, path: Path) -> None:
        """Save config to JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


@dataclass
class HeightFieldMetadata:
    """
    Sidecar metadata written next to every exported height field.

    Records the effective scan depth (after clamping) so the raster
    values can be turned back into depth indices: k = max_scan - value.
    """
    source: str
    width: int
    height: int
    dtype: str
    max_scan: int
    requested_max_scan: int
    max_scan_clamped: bool
    last_hit_depth: int
    n_filled: int
    n_background: int
    steps_completed: int
    background: str
    generation_params: Dict[str, Any] = field(default_factory=dict)
    output: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "output": self.output,
            "width": self.width,
            "height": self.height,
            "dtype": self.dtype,
            "max_scan": self.max_scan,
            "requested_max_scan": self.requested_max_scan,
            "max_scan_clamped": self.max_scan_clamped,
            "last_hit_depth": self.last_hit_depth,
            "n_filled": self.n_filled,
            "n_background": self.n_background,
            "steps_completed": self.steps_completed,
            "background": self.background,
            "generation_params": self.generation_params,
        }

    def save(self, path: Path) -> None:
        """Save metadata to JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HeightFieldMetadata":
        return cls(**data)


# Global default config
DEFAULT_CONFIG = HeightFieldConfig()
