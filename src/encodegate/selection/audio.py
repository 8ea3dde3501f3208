"""Audio stream filtering, scoring and validation.

Exactly one audio stream is selected per run. Candidates are filtered,
scored additively, and the best one is re-validated (duration
compatibility, then a short decode through ffmpeg). A candidate that fails
validation hands over to the next-best one; when nothing passes the run
fails with AudioSelectionError rather than producing a silent output.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

from encodegate.config.models import SelectionConfig
from encodegate.core.subprocess_utils import StreamingProcessRunner
from encodegate.domain.models import AudioStreamCandidate
from encodegate.language import UNDEFINED, normalize_language
from encodegate.workflow.exceptions import AudioSelectionError

logger = logging.getLogger(__name__)

MAX_CHANNELS = 32

# Minimum share of the video duration an audio stream must cover
MIN_DURATION_RATIO = 0.80
MAX_DURATION_RATIO = 1.20
DURATION_PASS_DIFF = 0.02
DURATION_WARN_DIFF = 0.05

# Share of the requested probe window that must actually decode
MIN_DECODED_RATIO = 0.5

CODEC_TIERS: dict[str, int] = {
    "truehd": 100,
    "flac": 95,
    "alac": 90,
    "dts": 70,
    "eac3": 60,
    "ac3": 50,
    "opus": 45,
    "aac": 40,
    "mp3": 30,
    "vorbis": 30,
    "mp2": 20,
}
PCM_TIER = 90
DTS_HD_MA_TIER = 95

LOSSLESS_CODECS = frozenset({"truehd", "flac", "alac"})

PREFERRED_LANGUAGE = "eng"
PREFERRED_LANGUAGE_BONUS = 10
HIGH_SAMPLE_RATE = 48_000
HIGH_SAMPLE_RATE_BONUS = 2

# (minimum bitrate in bps, bonus), checked in order
BITRATE_BONUSES: tuple[tuple[int, int], ...] = (
    (640_000, 5),
    (448_000, 4),
    (320_000, 3),
    (192_000, 2),
    (128_000, 1),
)

_COMMENTARY_PATTERN = re.compile(r"commentary|commentaire|kommentar", re.IGNORECASE)

_DECODE_FAILURE_SIGNATURES = (
    "Error while decoding stream",
    "Invalid data found when processing input",
    "Error decoding audio",
    "decoding error",
    "Header missing",
    "Reserved bit set",
    "channel element",
    "corrupt input packet",
)


def _is_dts_hd_ma(candidate: AudioStreamCandidate) -> bool:
    profile = (candidate.profile or "").upper()
    return "MA" in profile.split() or "DTS-HD MA" in profile


def is_lossless(candidate: AudioStreamCandidate) -> bool:
    codec = (candidate.codec or "").lower()
    return (
        codec in LOSSLESS_CODECS
        or codec.startswith("pcm_")
        or (codec == "dts" and _is_dts_hd_ma(candidate))
    )


def codec_tier(candidate: AudioStreamCandidate) -> int:
    codec = (candidate.codec or "").lower()
    if codec.startswith("pcm_"):
        return PCM_TIER
    if codec == "dts" and _is_dts_hd_ma(candidate):
        return DTS_HD_MA_TIER
    return CODEC_TIERS.get(codec, 0)


def channel_bonus(channels: int) -> int:
    """Bonus for channel count; non-decreasing in ``channels``."""
    if channels >= 8:
        return 10
    if channels == 7:
        return 9
    if channels == 6:
        return 8
    if channels >= 3:
        return 5
    if channels == 2:
        return 3
    if channels == 1:
        return 1
    return 0


def bitrate_bonus(candidate: AudioStreamCandidate) -> int:
    if candidate.bitrate is None or is_lossless(candidate):
        return 0
    for minimum, bonus in BITRATE_BONUSES:
        if candidate.bitrate >= minimum:
            return bonus
    return 0


def score_audio_stream(candidate: AudioStreamCandidate) -> int:
    """Additive quality score; earlier streams win ties."""
    score = codec_tier(candidate)
    if normalize_language(candidate.language) == PREFERRED_LANGUAGE:
        score += PREFERRED_LANGUAGE_BONUS
    score += channel_bonus(candidate.channels)
    score += bitrate_bonus(candidate)
    if candidate.sample_rate is not None and candidate.sample_rate >= HIGH_SAMPLE_RATE:
        score += HIGH_SAMPLE_RATE_BONUS
    return score - candidate.index


def filter_reason(
    candidate: AudioStreamCandidate,
    video_duration: float,
    config: SelectionConfig,
) -> str | None:
    """Return why a candidate is discarded, or None if it is eligible."""
    if not candidate.codec:
        return "missing codec name"
    if candidate.channels < 1 or candidate.channels > MAX_CHANNELS:
        return f"invalid channel count {candidate.channels}"
    if (
        candidate.duration is not None
        and video_duration > 0
        and candidate.duration < video_duration * MIN_DURATION_RATIO
    ):
        return (
            f"duration {candidate.duration:.1f}s is under "
            f"{MIN_DURATION_RATIO:.0%} of video {video_duration:.1f}s"
        )
    if candidate.title and _COMMENTARY_PATTERN.search(candidate.title):
        return "commentary track"

    language = normalize_language(candidate.language)
    accepted = {normalize_language(lang) for lang in config.audio_languages}
    if language == UNDEFINED:
        if not config.accept_undefined_language:
            return "undefined language"
    elif language not in accepted:
        return f"language {language} not accepted"
    return None


class DurationCheck(Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


def check_duration_compatibility(
    audio_duration: float | None, video_duration: float
) -> DurationCheck:
    """Compare audio and video durations.

    Within 2% passes; beyond that warns, unless the audio falls outside
    80%-120% of the video duration, which fails. Unknown durations warn.
    """
    if audio_duration is None or video_duration <= 0:
        return DurationCheck.WARN
    ratio = audio_duration / video_duration
    if ratio < MIN_DURATION_RATIO or ratio > MAX_DURATION_RATIO:
        return DurationCheck.FAIL
    if abs(1.0 - ratio) <= DURATION_PASS_DIFF:
        return DurationCheck.PASS
    return DurationCheck.WARN


@dataclass(frozen=True)
class UsabilityResult:
    """Outcome of the audio decode probe."""

    usable: bool
    reason: str | None = None
    decoded_seconds: float | None = None


class AudioUsabilityProbe:
    """Decode a bounded window of one audio stream to a null sink."""

    def __init__(
        self,
        ffmpeg_path: Path,
        source: Path,
        runner: StreamingProcessRunner,
        window_seconds: float = 30.0,
        timeout: float = 120.0,
    ) -> None:
        self._ffmpeg_path = ffmpeg_path
        self._source = source
        self._runner = runner
        self._window = window_seconds
        self._timeout = timeout

    def build_command(self, candidate: AudioStreamCandidate) -> list[str]:
        return [
            str(self._ffmpeg_path),
            "-hide_banner",
            "-nostdin",
            "-i",
            str(self._source),
            "-map",
            f"0:{candidate.index}",
            "-t",
            f"{self._window:g}",
            "-vn",
            "-sn",
            "-f",
            "null",
            "-",
        ]

    def __call__(self, candidate: AudioStreamCandidate) -> UsabilityResult:
        failures: list[str] = []

        def scan(line: str) -> None:
            if len(failures) < 5 and any(
                sig.lower() in line.lower() for sig in _DECODE_FAILURE_SIGNATURES
            ):
                failures.append(line.strip())

        outcome = self._runner.run(
            self.build_command(candidate),
            f"audio probe (stream {candidate.index})",
            timeout=self._timeout,
            line_callback=scan,
        )
        decoded = outcome.metrics.last_time_seconds

        if outcome.timed_out:
            return UsabilityResult(False, "decode probe timed out", decoded)
        if outcome.cancelled:
            return UsabilityResult(False, "decode probe cancelled", decoded)
        if outcome.returncode != 0:
            return UsabilityResult(
                False, f"decoder exited with {outcome.returncode}", decoded
            )
        if failures:
            return UsabilityResult(False, f"decode errors: {failures[0]}", decoded)

        expected = self._window
        if candidate.duration is not None:
            expected = min(expected, candidate.duration)
        if decoded is None or decoded < expected * MIN_DECODED_RATIO:
            return UsabilityResult(
                False,
                f"decoded {decoded or 0:.1f}s of {expected:.1f}s window",
                decoded,
            )
        return UsabilityResult(True, decoded_seconds=decoded)


@dataclass(frozen=True)
class AudioSelection:
    """The selected audio stream plus ordered fallbacks."""

    selected: AudioStreamCandidate
    fallbacks: tuple[AudioStreamCandidate, ...] = ()
    rejected: tuple[tuple[AudioStreamCandidate, str], ...] = ()
    warnings: tuple[str, ...] = ()


def rank_audio_streams(
    candidates: list[AudioStreamCandidate] | tuple[AudioStreamCandidate, ...],
    video_duration: float,
    config: SelectionConfig,
) -> tuple[list[AudioStreamCandidate], list[tuple[AudioStreamCandidate, str]]]:
    """Filter and score candidates.

    Returns:
        (eligible candidates ordered best-first with scores set,
        discarded candidates with reasons).
    """
    eligible: list[AudioStreamCandidate] = []
    rejected: list[tuple[AudioStreamCandidate, str]] = []
    for candidate in candidates:
        reason = filter_reason(candidate, video_duration, config)
        if reason is not None:
            rejected.append((replace(candidate, valid=False), reason))
            continue
        eligible.append(replace(candidate, score=score_audio_stream(candidate)))
    eligible.sort(key=lambda c: c.score, reverse=True)
    return eligible, rejected


def select_audio_stream(
    candidates: list[AudioStreamCandidate] | tuple[AudioStreamCandidate, ...],
    video_duration: float,
    config: SelectionConfig,
    usability_check: Callable[[AudioStreamCandidate], UsabilityResult] | None = None,
) -> AudioSelection:
    """Select exactly one audio stream.

    Args:
        candidates: Audio streams from the probe.
        video_duration: Video duration in seconds.
        config: Selection settings.
        usability_check: Decode probe; skipped when None.

    Raises:
        AudioSelectionError: If no candidate passes filtering and validation.
    """
    eligible, rejected = rank_audio_streams(candidates, video_duration, config)
    for candidate, reason in rejected:
        logger.info("Discarding audio stream %d: %s", candidate.index, reason)

    if not eligible:
        raise AudioSelectionError(
            f"no eligible audio stream among {len(candidates)} "
            f"({'; '.join(r for _, r in rejected) or 'no audio streams'})"
        )

    warnings: list[str] = []
    duration_failures = 0
    for position, candidate in enumerate(eligible):
        check = check_duration_compatibility(candidate.duration, video_duration)
        if check is DurationCheck.FAIL:
            duration_failures += 1
            reason = "duration incompatible with video"
            rejected.append((replace(candidate, valid=False), reason))
            logger.warning(
                "Audio stream %d rejected: %s", candidate.index, reason
            )
            if duration_failures > config.max_duration_retries:
                break
            continue
        if check is DurationCheck.WARN:
            message = (
                f"audio stream {candidate.index} duration differs from video "
                f"({candidate.duration}s vs {video_duration:.1f}s)"
            )
            warnings.append(message)
            logger.warning(message)

        if usability_check is not None:
            usability = usability_check(candidate)
            if not usability.usable:
                reason = usability.reason or ""
                rejected.append((replace(candidate, valid=False), reason))
                logger.warning(
                    "Audio stream %d failed decode probe: %s",
                    candidate.index,
                    usability.reason,
                )
                continue

        logger.info(
            "Selected audio stream %d (%s, %dch, %s, score %d)",
            candidate.index,
            candidate.codec,
            candidate.channels,
            candidate.language,
            candidate.score,
        )
        return AudioSelection(
            selected=candidate,
            fallbacks=tuple(eligible[position + 1 :]),
            rejected=tuple(rejected),
            warnings=tuple(warnings),
        )

    raise AudioSelectionError(
        "no audio stream passed validation "
        f"({'; '.join(f'{c.index}: {r}' for c, r in rejected)})"
    )
