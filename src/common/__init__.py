"""
Common modules for height field extraction.

Coordinate model:
- Volumes are indexed [x, y, z], lattice box starting at (0, 0, 0)
- Rasters are (rows, columns) = (height, width), pixel (u, v) = (column, row)
"""

from .config import HeightFieldConfig, HeightFieldMetadata, BackgroundPolicy, DEFAULT_CONFIG
from .volume import Volume, create_volume, round_to_lattice
from .io import load_volume, read_vol, write_vol, save_raster, load_raster, VolumeFormatError

__all__ = [
    'HeightFieldConfig', 'HeightFieldMetadata', 'BackgroundPolicy', 'DEFAULT_CONFIG',
    'Volume', 'create_volume', 'round_to_lattice',
    'load_volume', 'read_vol', 'write_vol', 'save_raster', 'load_raster', 'VolumeFormatError',
]
