"""HDR static metadata (mastering display and content light level).

Source side data is validated before it is written into the encode. When
it is implausible the whole set is replaced with fixed P3-D65 defaults.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from encodegate.domain.enums import HdrFormat
from encodegate.domain.models import (
    ContentLightLevel,
    MasteringDisplay,
    VideoDescriptor,
)

logger = logging.getLogger(__name__)

# Display P3 primaries, D65 white point, 1000 / 0.0001 cd/m2 in x265 units
DEFAULT_MASTER_DISPLAY = (
    "G(13250,34500)B(7500,3000)R(34000,16000)WP(15635,16450)L(10000000,1)"
)

# (MaxCLL, MaxFALL) used when the source values are missing or invalid
PQ_DEFAULT_LIGHT_LEVEL = ContentLightLevel(max_cll=1000, max_fall=400)
HLG_DEFAULT_LIGHT_LEVEL = ContentLightLevel(max_cll=1000, max_fall=200)
DOLBY_VISION_DEFAULT_LIGHT_LEVEL = ContentLightLevel(max_cll=4000, max_fall=1000)

CHROMATICITY_SCALE = 50_000
LUMINANCE_SCALE = 10_000

# DEFAULT_MASTER_DISPLAY as values, for container metadata
DEFAULT_MASTERING = MasteringDisplay(
    red_x=0.68,
    red_y=0.32,
    green_x=0.265,
    green_y=0.69,
    blue_x=0.15,
    blue_y=0.06,
    white_x=0.3127,
    white_y=0.329,
    max_luminance=1000.0,
    min_luminance=0.0001,
)


@dataclass(frozen=True)
class HdrStaticMetadata:
    """Static metadata to write into the encoded stream and container."""

    master_display: str
    light_level: ContentLightLevel
    mastering: MasteringDisplay = DEFAULT_MASTERING
    """Effective mastering display (source values or the defaults)."""

    used_defaults: bool = False
    issues: tuple[str, ...] = ()

    @property
    def max_cll_param(self) -> str:
        return f"{self.light_level.max_cll},{self.light_level.max_fall}"


def validate_mastering_display(md: MasteringDisplay) -> list[str]:
    issues: list[str] = []
    if any(value <= 0 for value in md.chromaticities):
        issues.append("mastering display has missing or zero chromaticity")
    if md.max_luminance <= md.min_luminance:
        issues.append(
            f"mastering max luminance {md.max_luminance} <= "
            f"min luminance {md.min_luminance}"
        )
    return issues


def validate_content_light_level(cll: ContentLightLevel) -> list[str]:
    issues: list[str] = []
    if cll.max_cll == 0:
        issues.append("MaxCLL is 0")
    if cll.max_fall == 0:
        issues.append("MaxFALL is 0")
    if cll.max_fall > cll.max_cll:
        issues.append(f"MaxFALL {cll.max_fall} exceeds MaxCLL {cll.max_cll}")
    return issues


def master_display_string(md: MasteringDisplay) -> str:
    """Format a mastering display in x265 ``master-display`` syntax."""

    def coord(value: float) -> int:
        return round(value * CHROMATICITY_SCALE)

    def lum(value: float) -> int:
        return round(value * LUMINANCE_SCALE)

    return (
        f"G({coord(md.green_x)},{coord(md.green_y)})"
        f"B({coord(md.blue_x)},{coord(md.blue_y)})"
        f"R({coord(md.red_x)},{coord(md.red_y)})"
        f"WP({coord(md.white_x)},{coord(md.white_y)})"
        f"L({lum(md.max_luminance)},{lum(md.min_luminance)})"
    )


def default_light_level(
    hdr_format: HdrFormat, from_dolby_vision: bool = False
) -> ContentLightLevel:
    if from_dolby_vision:
        return DOLBY_VISION_DEFAULT_LIGHT_LEVEL
    if hdr_format is HdrFormat.HLG:
        return HLG_DEFAULT_LIGHT_LEVEL
    return PQ_DEFAULT_LIGHT_LEVEL


def resolve_static_metadata(
    video: VideoDescriptor, from_dolby_vision: bool = False
) -> HdrStaticMetadata | None:
    """Choose the static metadata for an HDR encode.

    Present-but-invalid values in either block replace both blocks with
    defaults. An absent block is filled with its default on its own.

    Args:
        video: Descriptor of the encode input.
        from_dolby_vision: The input is the base layer of a Dolby Vision
            source, which selects the Dolby Vision light-level defaults.

    Returns:
        Metadata to apply, or None for SDR content.
    """
    if not video.is_hdr and not from_dolby_vision:
        return None

    fallback_cll = default_light_level(video.hdr_format, from_dolby_vision)
    issues: list[str] = []
    if video.mastering_display is not None:
        issues.extend(validate_mastering_display(video.mastering_display))
    if video.content_light_level is not None:
        issues.extend(validate_content_light_level(video.content_light_level))

    if issues:
        logger.warning(
            "HDR static metadata invalid, using defaults: %s",
            "; ".join(issues),
            extra={"issues": issues},
        )
        return HdrStaticMetadata(
            master_display=DEFAULT_MASTER_DISPLAY,
            light_level=fallback_cll,
            mastering=DEFAULT_MASTERING,
            used_defaults=True,
            issues=tuple(issues),
        )

    used_defaults = False
    if video.mastering_display is not None:
        mastering = video.mastering_display
        master_display = master_display_string(mastering)
    else:
        mastering = DEFAULT_MASTERING
        master_display = DEFAULT_MASTER_DISPLAY
        used_defaults = True
    if video.content_light_level is not None:
        light_level = video.content_light_level
    else:
        light_level = fallback_cll
        used_defaults = True

    if used_defaults:
        logger.info("HDR static metadata incomplete, filling defaults")
    return HdrStaticMetadata(
        master_display=master_display,
        light_level=light_level,
        mastering=mastering,
        used_defaults=used_defaults,
    )
