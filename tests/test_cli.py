"""
Tests for the vol2heightfield command line.

Tests cover:
- End-to-end conversion of a .vol file
- Option parsing and config file overrides
- Argument and I/O errors
"""

import json

import pytest
import numpy as np
from pathlib import Path
import sys

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from vol2heightfield import main, build_parser, config_from_args
from common.config import BackgroundPolicy
from common.io import write_vol, load_raster, metadata_path
from common.volume import Volume


# ============== Fixtures ==============

@pytest.fixture
def shell_vol(tmp_path):
    """10^3 .vol file with value 200 on the z=5 slice."""
    data = np.zeros((10, 10, 10), dtype=np.uint8)
    data[:, :, 5] = 200
    path = tmp_path / "shell.vol"
    write_vol(Volume(data), path)
    return path


def scan_args(input_path, output_path, *extra):
    """Arguments for a 12x12 scan along +z centred on (5, 5, 0)."""
    return [
        "-i", str(input_path),
        "-o", str(output_path),
        "-x", "5", "-y", "5", "-z", "0",
        "--width", "12", "--height", "12",
        "--heightFieldMaxScan", "10",
        *extra,
    ]


# ============== End-to-end Tests ==============

class TestMain:
    """Run the command line end to end."""

    def test_converts_volume(self, shell_vol, tmp_path):
        """The shell is written as max_scan - 5 with a 0 border."""
        output = tmp_path / "height.pgm"

        assert main(scan_args(shell_vol, output)) == 0

        values = load_raster(output)
        assert values.shape == (12, 12)
        assert np.all(values[1:11, 1:11] == 5)
        assert values[0, 0] == 0

    def test_writes_metadata(self, shell_vol, tmp_path):
        """The sidecar records the scan outcome."""
        output = tmp_path / "height.pgm"
        main(scan_args(shell_vol, output))

        with open(metadata_path(output)) as f:
            meta = json.load(f)

        assert meta["source"] == str(shell_vol)
        assert meta["max_scan"] == 10
        assert meta["last_hit_depth"] == 5
        assert meta["n_filled"] == 100
        assert meta["steps_completed"] == 10
        assert meta["generation_params"]["center"] == [5, 5, 0]

    def test_background_last_depth(self, shell_vol, tmp_path):
        """--setBackgroundLastDepth fills the border too."""
        output = tmp_path / "height.png"

        assert main(scan_args(shell_vol, output, "--setBackgroundLastDepth")) == 0

        assert np.all(load_raster(output) == 5)

    def test_threshold_short_options(self, shell_vol, tmp_path):
        """-m / -M set the window; 200 outside (200, 255) gives nothing."""
        output = tmp_path / "height.npy"

        assert main(scan_args(shell_vol, output, "-m", "200", "-M", "255")) == 0

        assert np.all(load_raster(output) == 0)

    def test_clamped_max_scan(self, shell_vol, tmp_path):
        """A 350 step scan is clamped to 255 for 8-bit output."""
        output = tmp_path / "height.npy"
        args = scan_args(shell_vol, output)
        args[args.index("--heightFieldMaxScan") + 1] = "350"

        assert main(args) == 0

        values = load_raster(output)
        assert values.dtype == np.uint8
        assert np.all(values[1:11, 1:11] == 250)
        with open(metadata_path(output)) as f:
            meta = json.load(f)
        assert meta["max_scan_clamped"] is True
        assert meta["requested_max_scan"] == 350

    def test_sixteen_bit_output(self, shell_vol, tmp_path):
        """--bits 16 keeps deep scans."""
        output = tmp_path / "height.npy"
        args = scan_args(shell_vol, output, "--bits", "16")
        args[args.index("--heightFieldMaxScan") + 1] = "350"

        assert main(args) == 0

        values = load_raster(output)
        assert values.dtype == np.uint16
        assert np.all(values[1:11, 1:11] == 345)


# ============== Option Parsing Tests ==============

class TestConfigFromArgs:
    """Test option merging."""

    def test_defaults(self):
        """Without options the documented defaults apply."""
        args = build_parser().parse_args(["-i", "a.vol", "-o", "b.pgm"])
        config = config_from_args(args)

        assert config.threshold_min == 128
        assert config.threshold_max == 255
        assert config.direction == (0.0, 0.0, 1.0)
        assert config.center == (0, 0, 1)
        assert config.width == 100
        assert config.height == 100
        assert config.max_scan == 255
        assert config.background is BackgroundPolicy.NONE

    def test_direction_components(self):
        """--nx/--ny/--nz accept negative values."""
        args = build_parser().parse_args(
            ["-i", "a.vol", "-o", "b.pgm", "--nx", "0", "--ny", "0.7", "--nz", "-1"]
        )
        assert config_from_args(args).direction == (0.0, 0.7, -1.0)

    def test_config_file_overridden_by_options(self, tmp_path):
        """Options given on the command line win over the config file."""
        config_path = tmp_path / "scan.json"
        config_path.write_text(json.dumps({
            "width": 40,
            "height": 30,
            "direction": [1, 0, 0],
            "background": "nearest",
        }))
        args = build_parser().parse_args(
            ["-i", "a.vol", "-o", "b.pgm", "--config", str(config_path), "--width", "50", "--nz", "2"]
        )

        config = config_from_args(args)

        assert config.width == 50
        assert config.height == 30
        assert config.direction == (1.0, 0.0, 2.0)
        assert config.background is BackgroundPolicy.NEAREST

    def test_background_choice(self):
        args = build_parser().parse_args(["-i", "a.vol", "-o", "b.pgm", "--background", "nearest"])
        assert config_from_args(args).background is BackgroundPolicy.NEAREST


# ============== Error Tests ==============

class TestErrors:
    """Argument and I/O failures."""

    def test_missing_output(self, shell_vol):
        """Required arguments are enforced by argparse."""
        with pytest.raises(SystemExit) as excinfo:
            main(["-i", str(shell_vol)])
        assert excinfo.value.code == 2

    def test_negative_center_rejected(self, shell_vol, tmp_path):
        """Centre coordinates are unsigned."""
        with pytest.raises(SystemExit):
            main(["-i", str(shell_vol), "-o", str(tmp_path / "h.pgm"), "-x", "-3"])

    def test_conflicting_background_options(self, shell_vol, tmp_path):
        with pytest.raises(SystemExit):
            main(["-i", str(shell_vol), "-o", str(tmp_path / "h.pgm"),
                  "--setBackgroundLastDepth", "--background", "nearest"])

    def test_missing_input_file(self, tmp_path):
        """An unreadable volume fails without writing output."""
        output = tmp_path / "height.pgm"

        assert main(["-i", str(tmp_path / "missing.vol"), "-o", str(output)]) == 1
        assert not output.exists()

    def test_malformed_volume(self, tmp_path):
        """A broken .vol header fails without writing output."""
        bad = tmp_path / "bad.vol"
        bad.write_bytes(b"garbage without header end")
        output = tmp_path / "height.pgm"

        assert main(["-i", str(bad), "-o", str(output)]) == 1
        assert not output.exists()

    def test_non_integer_config_value(self, shell_vol, tmp_path):
        """A fractional width in the config file fails cleanly."""
        config_path = tmp_path / "scan.json"
        config_path.write_text(json.dumps({"width": 10.5}))
        output = tmp_path / "height.pgm"

        assert main(["-i", str(shell_vol), "-o", str(output), "--config", str(config_path)]) == 1
        assert not output.exists()

    def test_unknown_config_key(self, shell_vol, tmp_path):
        config_path = tmp_path / "scan.json"
        config_path.write_text(json.dumps({"depth": 10}))
        output = tmp_path / "height.pgm"

        assert main(["-i", str(shell_vol), "-o", str(output), "--config", str(config_path)]) == 1
        assert not output.exists()

    def test_zero_direction(self, shell_vol, tmp_path):
        """A zero direction is rejected before scanning."""
        output = tmp_path / "height.pgm"

        assert main(scan_args(shell_vol, output, "--nx", "0", "--ny", "0", "--nz", "0")) == 1
        assert not output.exists()
