"""Domain models and enums for encodegate.

Usage:
    from encodegate.domain import VideoDescriptor, AudioStreamCandidate
"""

from .enums import BitrateClass, HdrFormat, ResolutionTier, SubtitleSource
from .models import (
    AudioStreamCandidate,
    ContentLightLevel,
    MasteringDisplay,
    ProbeResult,
    SubtitleStreamCandidate,
    VideoDescriptor,
)

__all__ = [
    "AudioStreamCandidate",
    "BitrateClass",
    "ContentLightLevel",
    "HdrFormat",
    "MasteringDisplay",
    "ProbeResult",
    "ResolutionTier",
    "SubtitleSource",
    "SubtitleStreamCandidate",
    "VideoDescriptor",
]
