#!/usr/bin/env python3
"""
vol2heightfield - project a volume into a 2D height field.

The volume is scanned along a direction N starting from a point P with a
step of one N. A pixel takes the value max_scan - k of the first step k
whose voxel intensity lies strictly inside (thresholdMin, thresholdMax).

Usage:
    python src/vol2heightfield.py -i lobster.vol -o height.pgm -m 60 -M 500 \\
        --nx 0 --ny 0.7 --nz -1 -x 150 -y 0 -z 150 --width 300 --height 300 \\
        --heightFieldMaxScan 350
"""

import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add src to path
sys.path.insert(0, str(Path(__file__).parent))

from common.config import BackgroundPolicy, HeightFieldConfig
from common.io import load_volume, save_raster, VolumeFormatError
from heightfield.scan import ScanEngine

logger = logging.getLogger(__name__)


def non_negative_int(text: str) -> int:
    """argparse type for unsigned options."""
    value = int(text)
    if value < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {text}")
    return value


def build_parser() -> argparse.ArgumentParser:
    defaults = HeightFieldConfig()
    parser = argparse.ArgumentParser(
        prog="vol2heightfield",
        description=(
            "Convert a volumetric file into a projected 2D image seen from a normal "
            "direction N and a starting point P. The volume is scanned along N from P "
            "with a step of 1; pixels whose voxel intensity lies inside the thresholds "
            "get the current scan depth."
        ),
    )
    parser.add_argument("--input", "-i", type=Path, required=True,
                        help="volumetric file (.vol or .npy)")
    parser.add_argument("--output", "-o", type=Path, required=True,
                        help="output height field image (.pgm, .png, .tif, .npy)")
    parser.add_argument("--config", type=Path,
                        help="JSON config file; command line options override it")
    parser.add_argument("--thresholdMin", "-m", dest="threshold_min", type=int,
                        help=f"min threshold (default {defaults.threshold_min})")
    parser.add_argument("--thresholdMax", "-M", dest="threshold_max", type=int,
                        help=f"max threshold (default {defaults.threshold_max})")
    parser.add_argument("--nx", type=float,
                        help="x component of the projection direction (default 0)")
    parser.add_argument("--ny", type=float,
                        help="y component of the projection direction (default 0)")
    parser.add_argument("--nz", type=float,
                        help="z component of the projection direction (default 1)")
    parser.add_argument("--centerX", "-x", dest="center_x", type=non_negative_int,
                        help="x center of the projected image (default 0)")
    parser.add_argument("--centerY", "-y", dest="center_y", type=non_negative_int,
                        help="y center of the projected image (default 0)")
    parser.add_argument("--centerZ", "-z", dest="center_z", type=non_negative_int,
                        help="z center of the projected image (default 1)")
    parser.add_argument("--width", type=non_negative_int,
                        help=f"number of columns of the height field (default {defaults.width})")
    parser.add_argument("--height", type=non_negative_int,
                        help=f"number of rows of the height field (default {defaults.height})")
    parser.add_argument("--heightFieldMaxScan", dest="max_scan", type=non_negative_int,
                        help=f"maximal scan depth (default {defaults.max_scan})")

    background = parser.add_mutually_exclusive_group()
    background.add_argument("--setBackgroundLastDepth", action="store_true",
                            help="fill the background with the last filled depth value")
    background.add_argument("--background", choices=[p.value for p in BackgroundPolicy],
                            help="background policy for pixels never filled (default none)")

    parser.add_argument("--bits", type=int, choices=[8, 16],
                        help=f"output image depth (default {defaults.bits})")
    parser.add_argument("--progress", action="store_true",
                        help="show a progress bar")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="verbose logging")
    return parser


def config_from_args(args: argparse.Namespace) -> HeightFieldConfig:
    """Merge command line options over the config file (or the defaults)."""
    config = HeightFieldConfig.from_json(args.config) if args.config else HeightFieldConfig()

    overrides = {}
    for name in ("threshold_min", "threshold_max", "width", "height", "max_scan", "bits"):
        value = getattr(args, name)
        if value is not None:
            overrides[name] = value

    direction = (args.nx, args.ny, args.nz)
    if any(c is not None for c in direction):
        overrides["direction"] = tuple(
            c if c is not None else d for c, d in zip(direction, config.direction)
        )

    center = (args.center_x, args.center_y, args.center_z)
    if any(c is not None for c in center):
        overrides["center"] = tuple(
            c if c is not None else d for c, d in zip(center, config.center)
        )

    if args.setBackgroundLastDepth:
        overrides["background"] = BackgroundPolicy.LAST_DEPTH
    elif args.background:
        overrides["background"] = BackgroundPolicy(args.background)

    return dataclasses.replace(config, **overrides)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Setup logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    try:
        config = config_from_args(args)
        logger.info(f"Reading input file {args.input}")
        volume = load_volume(args.input)
    except (OSError, VolumeFormatError, ValueError, TypeError) as e:
        logger.error(f"Failed to prepare scan: {e}")
        return 1

    try:
        engine = ScanEngine(volume, config)
    except (ValueError, TypeError) as e:
        logger.error(f"Invalid scan parameters: {e}")
        return 1

    logger.info(f"Processing image to output file {args.output}")
    result = engine.run(progress=args.progress)

    try:
        save_raster(result.values, args.output, result.metadata(config, source=str(args.input)))
    except (OSError, ValueError) as e:
        logger.error(f"Failed to write {args.output}: {e}")
        return 1

    logger.info("Done")
    return 0


if __name__ == "__main__":
    sys.exit(main())
