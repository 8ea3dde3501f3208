"""Domain models for encodegate.

Probe results are immutable snapshots. Anything that changes the file on
disk (Dolby Vision removal, remuxing) produces a new file that is probed
again rather than mutating an existing descriptor.
"""

from dataclasses import dataclass, field
from pathlib import Path

from encodegate.domain.enums import HdrFormat, SubtitleSource

PQ_TRANSFER = "smpte2084"
HLG_TRANSFER = "arib-std-b67"


@dataclass(frozen=True)
class MasteringDisplay:
    """SMPTE ST 2086 mastering display colour volume.

    Chromaticities are CIE 1931 xy coordinates (0..1). Luminance values are
    in cd/m2.
    """

    red_x: float
    red_y: float
    green_x: float
    green_y: float
    blue_x: float
    blue_y: float
    white_x: float
    white_y: float
    max_luminance: float
    min_luminance: float

    @property
    def chromaticities(self) -> tuple[float, ...]:
        return (
            self.red_x,
            self.red_y,
            self.green_x,
            self.green_y,
            self.blue_x,
            self.blue_y,
            self.white_x,
            self.white_y,
        )


@dataclass(frozen=True)
class ContentLightLevel:
    """CTA-861.3 content light level (cd/m2)."""

    max_cll: int
    max_fall: int


@dataclass(frozen=True)
class VideoDescriptor:
    """Snapshot of the primary video stream of a source file."""

    stream_index: int
    codec: str | None
    width: int
    height: int
    duration: float
    """Duration in seconds (stream duration, falling back to container)."""

    frame_rate_raw: str | None = None  # r_frame_rate, e.g. "24000/1001"
    avg_frame_rate_raw: str | None = None
    frame_rate: float = 0.0
    """Effective frame rate used for BPP and muxing."""

    is_vfr: bool = False
    bitrate: int | None = None  # bits per second
    color_primaries: str | None = None
    color_transfer: str | None = None
    color_space: str | None = None
    color_range: str | None = None
    pixel_format: str | None = None
    profile: str | None = None
    level: int | None = None
    chroma_location: str | None = None
    has_dolby_vision: bool = False
    has_hdr10plus: bool = False
    mastering_display: MasteringDisplay | None = None
    content_light_level: ContentLightLevel | None = None

    @property
    def hdr_format(self) -> HdrFormat:
        if self.color_transfer == PQ_TRANSFER:
            return HdrFormat.PQ
        if self.color_transfer == HLG_TRANSFER:
            return HdrFormat.HLG
        return HdrFormat.SDR

    @property
    def is_hdr(self) -> bool:
        return self.hdr_format is not HdrFormat.SDR or self.has_dolby_vision

    @property
    def pixel_count(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class AudioStreamCandidate:
    """An audio stream considered for selection."""

    index: int
    codec: str | None
    channels: int
    sample_rate: int | None = None
    bitrate: int | None = None  # bits per second
    duration: float | None = None
    language: str = "und"
    title: str | None = None
    profile: str | None = None  # e.g. "DTS-HD MA"
    score: int = 0
    valid: bool = True


@dataclass(frozen=True)
class SubtitleStreamCandidate:
    """A subtitle stream (internal) or sidecar file (external)."""

    index: int
    codec: str | None
    language: str = "und"
    title: str | None = None
    is_forced: bool = False
    is_default: bool = False
    quality_score: int = 0
    source: SubtitleSource = SubtitleSource.INTERNAL
    path: Path | None = None
    """Sidecar file path for external candidates."""


@dataclass(frozen=True)
class ProbeResult:
    """Result of probing a media file."""

    path: Path
    container_format: str | None
    duration: float
    video: VideoDescriptor
    audio_streams: tuple[AudioStreamCandidate, ...] = ()
    subtitle_streams: tuple[SubtitleStreamCandidate, ...] = ()
    warnings: tuple[str, ...] = field(default_factory=tuple)
