"""FFmpeg progress parsing utilities.

ffmpeg writes periodic progress markers to stderr in the form
``frame=.. fps=.. time=.. bitrate=.. speed=..``. Audio-only and null-sink
decodes omit ``frame=`` but still report ``time=`` and ``speed=``.
"""

import re
from dataclasses import dataclass


@dataclass
class FFmpegProgress:
    """Parsed FFmpeg progress output."""

    frame: int | None = None
    fps: float | None = None
    bitrate: str | None = None
    out_time_us: int | None = None  # Output time in microseconds
    speed: str | None = None

    @property
    def out_time_seconds(self) -> float | None:
        """Get output time in seconds."""
        if self.out_time_us is not None:
            return self.out_time_us / 1_000_000
        return None

    @property
    def speed_factor(self) -> float | None:
        """Speed as a float multiple of realtime (``2.5x`` -> 2.5)."""
        if not self.speed:
            return None
        try:
            return float(self.speed.rstrip("x"))
        except ValueError:
            return None

    def get_percent(self, duration_seconds: float | None) -> float:
        """Calculate progress percentage based on duration.

        Args:
            duration_seconds: Total duration of the file in seconds.

        Returns:
            Progress percentage (0.0 to 100.0), or 0.0 if unknown.
        """
        if duration_seconds is None or duration_seconds <= 0:
            return 0.0
        out_time = self.out_time_seconds
        if out_time is None:
            return 0.0
        return min(100.0, (out_time / duration_seconds) * 100)


PROGRESS_PATTERNS = {
    "frame": re.compile(r"frame=\s*(\d+)"),
    "fps": re.compile(r"fps=\s*([\d.]+)"),
    "bitrate": re.compile(r"bitrate=\s*([^\s]+)"),
    "speed": re.compile(r"speed=\s*([^\s]+)"),
}

_TIME_PATTERN = re.compile(r"time=\s*(-?\d+):(\d+):(\d+)\.(\d+)")


def _convert_progress_value(key: str, value: str) -> int | float | str | None:
    """Convert a progress value to the appropriate type."""
    if key == "frame":
        try:
            return int(value)
        except ValueError:
            return None
    if key == "fps":
        try:
            return float(value)
        except ValueError:
            return None
    return value if value != "N/A" else None


def parse_time_to_us(line: str) -> int | None:
    """Extract a ``time=HH:MM:SS.cc`` marker as microseconds."""
    match = _TIME_PATTERN.search(line)
    if not match:
        return None
    if match.group(1).startswith("-"):
        return None
    hours = int(match.group(1))
    minutes = int(match.group(2))
    seconds = int(match.group(3))
    fraction = match.group(4)
    fraction_us = int(fraction.ljust(6, "0")[:6])
    return (hours * 3600 + minutes * 60 + seconds) * 1_000_000 + fraction_us


def parse_stderr_progress(line: str) -> FFmpegProgress | None:
    """Parse FFmpeg stderr progress line.

    Args:
        line: A line from FFmpeg stderr.

    Returns:
        Parsed FFmpegProgress or None if not a progress line.
    """
    if "frame=" not in line and not ("time=" in line and "speed=" in line):
        return None

    result = FFmpegProgress()
    for key, pattern in PROGRESS_PATTERNS.items():
        match = pattern.search(line)
        if match:
            converted = _convert_progress_value(key, match.group(1))
            if converted is not None:
                setattr(result, key, converted)

    result.out_time_us = parse_time_to_us(line)
    return result
