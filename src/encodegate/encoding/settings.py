"""Encoding settings derivation.

The constant-quality value starts from how generously the source was
encoded (bits per pixel per frame, relative to its resolution tier), is
adjusted for resolution and optionally for measured content complexity,
and is clamped into [QUALITY_MIN, QUALITY_MAX].
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from encodegate.config.models import QUALITY_MAX, QUALITY_MIN
from encodegate.domain.enums import BitrateClass, ResolutionTier
from encodegate.domain.models import VideoDescriptor
from encodegate.encoding.types import EncodingSettings, SharpenParams

logger = logging.getLogger(__name__)

# Sources above this bitrate never get a quality value above the cap
HIGH_BITRATE_BPS = 50_000_000
HIGH_BITRATE_QUALITY_CAP = 18

# Max-frame-size multipliers for complex content
COMPLEXITY_FRAME_SCALE_HIGH = 2.5  # content delta <= -2
COMPLEXITY_FRAME_SCALE_MEDIUM = 1.5  # content delta == -1


@dataclass(frozen=True)
class TierProfile:
    """Fixed encoder defaults for one resolution tier."""

    sharpen: float
    lookahead: int
    max_frame_kib: int
    quality_adjustment: int
    bpp_low: float
    bpp_medium: float
    bpp_high: float


TIER_PROFILES: dict[ResolutionTier, TierProfile] = {
    ResolutionTier.SD: TierProfile(0.40, 20, 400, 1, 0.08, 0.15, 0.25),
    ResolutionTier.HD_720: TierProfile(0.30, 24, 800, 0, 0.06, 0.12, 0.20),
    ResolutionTier.FHD_1080: TierProfile(0.20, 32, 1500, 0, 0.05, 0.10, 0.18),
    ResolutionTier.QHD_1440: TierProfile(0.15, 40, 2500, -1, 0.04, 0.08, 0.15),
    ResolutionTier.UHD_4K: TierProfile(0.10, 48, 4000, -1, 0.03, 0.06, 0.12),
}

BASE_QUALITY: dict[BitrateClass, int] = {
    BitrateClass.LOW: 23,
    BitrateClass.MEDIUM: 22,
    BitrateClass.HIGH: 20,
    BitrateClass.VERY_HIGH: 19,
}


def resolution_tier(width: int, height: int) -> ResolutionTier:
    if width >= 3200 or height >= 2000:
        return ResolutionTier.UHD_4K
    if width >= 2400 or height >= 1400:
        return ResolutionTier.QHD_1440
    if width >= 1800 or height >= 1000:
        return ResolutionTier.FHD_1080
    if width >= 1200 or height >= 700:
        return ResolutionTier.HD_720
    return ResolutionTier.SD


def bits_per_pixel(bitrate: int, width: int, height: int, fps: float) -> float:
    """Bits per pixel per frame: bitrate / (width * height * fps)."""
    denominator = width * height * fps
    if denominator <= 0:
        return 0.0
    return bitrate / denominator


def classify_bitrate(bpp: float, profile: TierProfile) -> BitrateClass:
    if bpp < profile.bpp_low:
        return BitrateClass.LOW
    if bpp < profile.bpp_medium:
        return BitrateClass.MEDIUM
    if bpp < profile.bpp_high:
        return BitrateClass.HIGH
    return BitrateClass.VERY_HIGH


def clamp_quality(value: int) -> int:
    return max(QUALITY_MIN, min(QUALITY_MAX, value))


def derive_settings(
    video: VideoDescriptor,
    content_adjustment: int = 0,
    quality_override: int | None = None,
    sharpen: bool = True,
) -> EncodingSettings:
    """Derive encoder settings for a source.

    Args:
        video: Descriptor of the encode input.
        content_adjustment: Complexity delta from content sampling (0 when
            sampling is disabled or produced no usable window).
        quality_override: Explicit quality; bypasses derivation, the clamp
            and the high-bitrate cap.
        sharpen: Attach the tier's unsharp parameters.

    Returns:
        EncodingSettings. Without an override, quality is in
        [QUALITY_MIN, QUALITY_MAX].
    """
    tier = resolution_tier(video.width, video.height)
    profile = TIER_PROFILES[tier]

    bitrate_class: BitrateClass | None = None
    bpp: float | None = None
    if video.bitrate:
        bpp = bits_per_pixel(video.bitrate, video.width, video.height, video.frame_rate)
        bitrate_class = classify_bitrate(bpp, profile)
        base = BASE_QUALITY[bitrate_class]
    else:
        # Unknown bitrate: assume a typical source for the tier
        base = BASE_QUALITY[BitrateClass.MEDIUM]
        logger.warning("Source bitrate unknown, using medium bitrate class")

    max_frame_kib = profile.max_frame_kib
    if content_adjustment <= -2:
        max_frame_kib = round(max_frame_kib * COMPLEXITY_FRAME_SCALE_HIGH)
    elif content_adjustment == -1:
        max_frame_kib = round(max_frame_kib * COMPLEXITY_FRAME_SCALE_MEDIUM)

    if quality_override is not None:
        quality = quality_override
        overridden = True
    else:
        quality = clamp_quality(base + profile.quality_adjustment + content_adjustment)
        if video.bitrate and video.bitrate > HIGH_BITRATE_BPS:
            quality = min(quality, HIGH_BITRATE_QUALITY_CAP)
        overridden = False

    settings = EncodingSettings(
        quality=quality,
        tier=tier,
        lookahead=profile.lookahead,
        max_frame_kib=max_frame_kib,
        sharpen=SharpenParams(luma_amount=profile.sharpen) if sharpen else None,
        bitrate_class=bitrate_class,
        bpp=bpp,
        base_quality=base,
        resolution_adjustment=profile.quality_adjustment,
        content_adjustment=content_adjustment,
        overridden=overridden,
    )
    logger.info(
        "Encoding settings: quality %d (%s, tier %s)",
        settings.quality,
        "override" if overridden else f"base {base}",
        tier.value,
        extra={
            "bpp": round(bpp, 4) if bpp is not None else None,
            "bitrate_class": bitrate_class.value if bitrate_class else None,
            "content_adjustment": content_adjustment,
            "max_frame_kib": max_frame_kib,
        },
    )
    return settings
