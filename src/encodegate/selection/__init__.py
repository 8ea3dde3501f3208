"""Audio and subtitle stream selection."""

from encodegate.selection.audio import (
    AudioSelection,
    AudioUsabilityProbe,
    UsabilityResult,
    score_audio_stream,
    select_audio_stream,
)
from encodegate.selection.subtitles import (
    SubtitlePlan,
    discover_external_subtitles,
    select_subtitles,
)

__all__ = [
    "AudioSelection",
    "AudioUsabilityProbe",
    "SubtitlePlan",
    "UsabilityResult",
    "discover_external_subtitles",
    "score_audio_stream",
    "select_audio_stream",
    "select_subtitles",
]
