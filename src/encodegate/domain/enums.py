"""Domain enums for encodegate."""

from enum import Enum


class HdrFormat(Enum):
    """Transfer characteristic family of a video stream."""

    SDR = "sdr"
    PQ = "pq"  # SMPTE ST 2084 (HDR10, HDR10+)
    HLG = "hlg"  # ARIB STD-B67


class SubtitleSource(Enum):
    """Where a subtitle candidate comes from."""

    INTERNAL = "internal"  # Stream inside the source container
    EXTERNAL = "external"  # Sidecar file next to the source


class ResolutionTier(Enum):
    """Resolution class used to pick encoder defaults."""

    SD = "sd"
    HD_720 = "720p"
    FHD_1080 = "1080p"
    QHD_1440 = "1440p"
    UHD_4K = "4k"


class BitrateClass(Enum):
    """Bits-per-pixel class of the source relative to its resolution tier."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"
