"""encodegate - quality-gated transcoding controller.

Drives opaque media tools (ffprobe, ffmpeg, hdr10plus_tool, dovi_tool,
mkvpropedit) and decides accept, retry or fail for each encode.
"""

__version__ = "0.4.0"
