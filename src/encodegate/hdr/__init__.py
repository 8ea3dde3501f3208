"""HDR metadata handling."""

from encodegate.hdr.static import (
    DEFAULT_MASTER_DISPLAY,
    HdrStaticMetadata,
    master_display_string,
    resolve_static_metadata,
)

__all__ = [
    "DEFAULT_MASTER_DISPLAY",
    "HdrStaticMetadata",
    "master_display_string",
    "resolve_static_metadata",
]
