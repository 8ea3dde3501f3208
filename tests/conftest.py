"""Shared test fixtures for encodegate."""

import json
import shutil
import tempfile
from pathlib import Path

import pytest

from encodegate.config.models import EncodeGateConfig
from encodegate.domain.models import ProbeResult, VideoDescriptor
from encodegate.introspector.parsers import parse_ffprobe_output

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test isolation."""
    dir_path = tempfile.mkdtemp()
    yield Path(dir_path)
    shutil.rmtree(dir_path, ignore_errors=True)


@pytest.fixture
def ffprobe_fixtures_dir() -> Path:
    """Return the path to the ffprobe fixtures directory."""
    return FIXTURES_DIR / "ffprobe"


def load_ffprobe_fixture(name: str) -> dict:
    """Load an ffprobe JSON fixture by name.

    Args:
        name: Name of the fixture file (without .json extension).

    Returns:
        Parsed JSON data from the fixture.
    """
    fixture_path = FIXTURES_DIR / "ffprobe" / f"{name}.json"
    return json.loads(fixture_path.read_text())


def _make_video(**overrides) -> VideoDescriptor:
    values = {
        "stream_index": 0,
        "codec": "h264",
        "width": 1920,
        "height": 1080,
        "duration": 5400.0,
        "frame_rate_raw": "24000/1001",
        "avg_frame_rate_raw": "24000/1001",
        "frame_rate": 24000 / 1001,
        "bitrate": 8_000_000,
        "color_primaries": "bt709",
        "color_transfer": "bt709",
        "color_space": "bt709",
        "pixel_format": "yuv420p",
    }
    values.update(overrides)
    return VideoDescriptor(**values)


@pytest.fixture
def make_video():
    """Factory for a 1080p SDR VideoDescriptor with selected fields overridden."""
    return _make_video


@pytest.fixture
def sdr_probe() -> ProbeResult:
    """1080p SDR movie with three audio and two subtitle streams."""
    return parse_ffprobe_output(
        Path("/media/movie.mkv"), load_ffprobe_fixture("sdr_1080p")
    )


@pytest.fixture
def hdr_probe() -> ProbeResult:
    """4K HDR10 movie whose content light level is zero."""
    return parse_ffprobe_output(
        Path("/media/movie-hdr.mkv"),
        load_ffprobe_fixture("hdr10_4k"),
        load_ffprobe_fixture("hdr10_4k_frames"),
    )


@pytest.fixture
def default_config() -> EncodeGateConfig:
    return EncodeGateConfig()
