"""
Data I/O utilities.

Handles loading volumes, saving height field rasters and their metadata.

Supported volume formats:
- .vol: ASCII "Key: value" header closed by a "." line, then X*Y*Z
  unsigned bytes with x varying fastest, then y, then z
- .npy: 3D NumPy array indexed [x, y, z]
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Tuple, Union
import numpy as np
import imageio.v3 as iio

from .config import HeightFieldMetadata
from .volume import Volume

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

VOL_HEADER_END = b"."
VOL_REQUIRED_KEYS = ("X", "Y", "Z")


class VolumeFormatError(ValueError):
    """Raised when a volume file cannot be parsed."""


def _parse_vol_header(raw: bytes, path: Path) -> Tuple[Dict[str, str], int]:
    """
    Parse a .vol header.

    Returns:
        Tuple of (header fields, offset of the first voxel byte)
    """
    header = {}
    offset = 0
    while True:
        end = raw.find(b"\n", offset)
        if end < 0:
            raise VolumeFormatError(f"{path}: header is not terminated by a '.' line")
        line = raw[offset:end].rstrip(b"\r")
        offset = end + 1
        if line == VOL_HEADER_END:
            break
        if not line.strip():
            continue
        key, sep, value = line.decode("ascii", errors="replace").partition(":")
        if not sep:
            raise VolumeFormatError(f"{path}: malformed header line {line!r}")
        header[key.strip()] = value.strip()

    missing = [k for k in VOL_REQUIRED_KEYS if k not in header]
    if missing:
        raise VolumeFormatError(f"{path}: missing header fields {missing}")
    return header, offset


def read_vol(path: PathLike) -> Volume:
    """
    Read a .vol file.

    Args:
        path: Path to the .vol file

    Returns:
        Volume indexed [x, y, z] with uint8 voxels
    """
    path = Path(path)
    raw = path.read_bytes()
    header, offset = _parse_vol_header(raw, path)

    try:
        dims = tuple(int(header[k]) for k in VOL_REQUIRED_KEYS)
    except ValueError as e:
        raise VolumeFormatError(f"{path}: bad dimensions in header: {e}") from e
    if min(dims) <= 0:
        raise VolumeFormatError(f"{path}: dimensions must be positive, got {dims}")

    n_voxels = dims[0] * dims[1] * dims[2]
    payload = raw[offset:]
    if len(payload) < n_voxels:
        raise VolumeFormatError(
            f"{path}: expected {n_voxels} voxel bytes, found {len(payload)}"
        )
    if len(payload) > n_voxels:
        logger.warning(f"{path}: ignoring {len(payload) - n_voxels} trailing bytes")

    # Stored z-major (x fastest): reshape as (Z, Y, X) then index [x, y, z]
    data = np.frombuffer(payload, dtype=np.uint8, count=n_voxels)
    data = data.reshape(dims[2], dims[1], dims[0]).transpose(2, 1, 0)

    logger.info(f"Loaded volume {dims} from {path} (version {header.get('Version', '?')})")
    return Volume(np.ascontiguousarray(data))


def write_vol(volume: Volume, path: PathLike) -> None:
    """
    Write a volume as .vol (voxels must fit in 0-255).

    Args:
        volume: Volume to write
        path: Output path
    """
    path = Path(path)
    data = volume.data
    if data.size and (data.min() < 0 or data.max() > 255):
        raise ValueError(".vol voxels must be in 0-255")

    dx, dy, dz = volume.shape
    header = (
        "Center-X: 0\n"
        "Center-Y: 0\n"
        "Center-Z: 0\n"
        f"X: {dx}\n"
        f"Y: {dy}\n"
        f"Z: {dz}\n"
        "Voxel-Size: 1\n"
        "Alpha-Color: 0\n"
        "Voxel-Endian: 0\n"
        "Int-Endian: 0123\n"
        "Version: 2\n"
        ".\n"
    )
    payload = data.astype(np.uint8).transpose(2, 1, 0).tobytes(order="C")

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(header.encode("ascii"))
        f.write(payload)
    logger.info(f"Saved volume {volume.shape} to {path}")


def load_volume(path: PathLike) -> Volume:
    """
    Load a volume, choosing the reader from the file suffix.

    Args:
        path: .vol or .npy file

    Returns:
        Volume
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Volume file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".vol":
        return read_vol(path)
    if suffix == ".npy":
        data = np.load(path, allow_pickle=False)
        if data.ndim != 3:
            raise VolumeFormatError(f"{path}: expected a 3D array, got shape {data.shape}")
        logger.info(f"Loaded volume {data.shape} from {path}")
        return Volume(data)
    raise VolumeFormatError(f"Unsupported volume format: {path.suffix or path.name}")


def metadata_path(path: PathLike) -> Path:
    """Sidecar path for an output raster: image.pgm -> image.pgm.json"""
    path = Path(path)
    return path.with_name(path.name + ".json")


def save_raster(
    values: np.ndarray,
    path: PathLike,
    metadata: Optional[HeightFieldMetadata] = None
) -> None:
    """
    Save a 2D raster with an optional metadata sidecar.

    Args:
        values: 2D array of shape (rows, columns)
        path: Output path; .npy is written with NumPy, anything else
            goes through imageio (PGM, PNG, TIFF, ...)
        metadata: HeightFieldMetadata saved as <path>.json
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix.lower() == ".npy":
        np.save(path, values)
    else:
        iio.imwrite(path, values)
    logger.info(f"Saved raster: {path} ({values.shape[1]}x{values.shape[0]}, {values.dtype})")

    if metadata is not None:
        metadata.output = str(path)
        meta_path = metadata_path(path)
        metadata.save(meta_path)
        logger.info(f"Saved metadata: {meta_path}")


def load_raster(path: PathLike) -> np.ndarray:
    """Load a raster written by save_raster."""
    path = Path(path)
    if path.suffix.lower() == ".npy":
        return np.load(path, allow_pickle=False)
    return iio.imread(path)
