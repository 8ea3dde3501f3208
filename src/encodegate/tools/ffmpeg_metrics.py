"""FFmpeg encoding metrics aggregation.

Collects progress samples during a tool run and summarizes throughput.
The encode controller logs the summary, and the complexity sampler and
audio usability probe use the frame count and decoded time.
"""

from dataclasses import dataclass, field

from encodegate.tools.ffmpeg_progress import FFmpegProgress


@dataclass(frozen=True)
class FFmpegMetricsSummary:
    """Summary of aggregated FFmpeg metrics.

    Attributes:
        avg_fps: Average frames per second.
        peak_fps: Peak frames per second.
        avg_bitrate_kbps: Average output bitrate in kilobits per second.
        total_frames: Last reported frame count.
        last_time_seconds: Last reported media time in seconds.
        sample_count: Number of progress samples collected.
    """

    avg_fps: float | None = None
    peak_fps: float | None = None
    avg_bitrate_kbps: int | None = None
    total_frames: int | None = None
    last_time_seconds: float | None = None
    sample_count: int = 0


@dataclass
class FFmpegMetricsAggregator:
    """Collects and aggregates FFmpeg progress metrics during a run."""

    fps_samples: list[float] = field(default_factory=list)
    bitrate_samples: list[int] = field(default_factory=list)
    last_frame: int | None = None
    last_time_us: int | None = None
    sample_count: int = 0

    def add_sample(self, progress: FFmpegProgress) -> None:
        self.sample_count += 1
        if progress.fps is not None and progress.fps > 0:
            self.fps_samples.append(progress.fps)

        if progress.bitrate is not None:
            bitrate_kbps = self._parse_bitrate(progress.bitrate)
            if bitrate_kbps is not None and bitrate_kbps > 0:
                self.bitrate_samples.append(bitrate_kbps)

        if progress.frame is not None:
            self.last_frame = progress.frame
        if progress.out_time_us is not None:
            self.last_time_us = progress.out_time_us

    def _parse_bitrate(self, bitrate_str: str) -> int | None:
        """Parse bitrate string ("5000kbits/s", "5.2Mbits/s") to kbps."""
        if not bitrate_str or bitrate_str.strip() in ("N/A", ""):
            return None

        bitrate_lower = bitrate_str.lower().strip()
        try:
            if "mbits/s" in bitrate_lower:
                value = float(bitrate_lower.replace("mbits/s", "").strip())
                multiplier = 1000
            elif "kbits/s" in bitrate_lower:
                value = float(bitrate_lower.replace("kbits/s", "").strip())
                multiplier = 1
            else:
                value = float(bitrate_str.strip())
                multiplier = 1
            result = round(value * multiplier)
            return result if result >= 0 else None
        except (ValueError, AttributeError):
            return None

    def summarize(self) -> FFmpegMetricsSummary:
        avg_fps: float | None = None
        peak_fps: float | None = None
        avg_bitrate: int | None = None

        if self.fps_samples:
            avg_fps = sum(self.fps_samples) / len(self.fps_samples)
            peak_fps = max(self.fps_samples)

        if self.bitrate_samples:
            avg_bitrate = int(sum(self.bitrate_samples) / len(self.bitrate_samples))

        return FFmpegMetricsSummary(
            avg_fps=avg_fps,
            peak_fps=peak_fps,
            avg_bitrate_kbps=avg_bitrate,
            total_frames=self.last_frame,
            last_time_seconds=(
                self.last_time_us / 1_000_000 if self.last_time_us is not None else None
            ),
            sample_count=self.sample_count,
        )
