"""
Directional height field extraction.

A sampling plane is marched through a volume along a direction; each
pixel keeps the first depth step whose sample falls inside the threshold
window, encoded as max_scan - k.
"""

from .sampler import ObliquePlaneSampler, plane_basis
from .buffer import HeightField, clamp_max_scan, SENTINEL
from .scan import ScanEngine, ScanState, ScanResult, extract_heightfield

__all__ = [
    'ObliquePlaneSampler', 'plane_basis',
    'HeightField', 'clamp_max_scan', 'SENTINEL',
    'ScanEngine', 'ScanState', 'ScanResult', 'extract_heightfield',
]
