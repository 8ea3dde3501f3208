"""External tool wrappers and ffmpeg output parsing."""
