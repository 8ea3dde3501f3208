"""Subtitle ranking, external sidecar discovery and disposition assignment."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from pathlib import Path

from encodegate.domain.enums import SubtitleSource
from encodegate.domain.models import SubtitleStreamCandidate
from encodegate.language import UNDEFINED, normalize_language

logger = logging.getLogger(__name__)

DEFAULT_MAX_SUBTITLES = 5

SUBTITLE_CODEC_TIERS: dict[str, int] = {
    "subrip": 30,
    "ass": 25,
    "ssa": 25,
    "webvtt": 20,
    "mov_text": 20,
    "hdmv_pgs_subtitle": 15,
    "dvd_subtitle": 10,
    "dvb_subtitle": 8,
}

FORCED_BONUS = 50
DEFAULT_BONUS = 15
LANGUAGE_BONUSES: dict[str, int] = {"eng": 20, UNDEFINED: 5}

# (pattern, bonus); every matching pattern applies
TITLE_BONUSES: tuple[tuple[re.Pattern[str], int], ...] = (
    (re.compile(r"\b(full|complete)\b", re.IGNORECASE), 5),
    (re.compile(r"\b(sdh|cc)\b", re.IGNORECASE), 3),
    (re.compile(r"\b(signs|songs)\b", re.IGNORECASE), -5),
    (re.compile(r"commentary", re.IGNORECASE), -20),
)

# Sidecar extension -> codec name
EXTERNAL_SUBTITLE_CODECS: dict[str, str] = {
    ".srt": "subrip",
    ".ass": "ass",
    ".ssa": "ssa",
    ".vtt": "webvtt",
    ".sup": "hdmv_pgs_subtitle",
}


def title_bonus(title: str | None) -> int:
    if not title:
        return 0
    return sum(bonus for pattern, bonus in TITLE_BONUSES if pattern.search(title))


def score_subtitle(candidate: SubtitleStreamCandidate, rank_index: int) -> int:
    """Score a subtitle candidate.

    Args:
        candidate: Candidate to score.
        rank_index: Position penalty. Internal streams use their stream
            index; external files are offset past every internal stream.
    """
    score = SUBTITLE_CODEC_TIERS.get((candidate.codec or "").lower(), 0)
    if candidate.is_forced:
        score += FORCED_BONUS
    if candidate.is_default:
        score += DEFAULT_BONUS
    score += LANGUAGE_BONUSES.get(normalize_language(candidate.language), 0)
    score += title_bonus(candidate.title)
    return score - rank_index


def discover_external_subtitles(source: Path) -> list[SubtitleStreamCandidate]:
    """Find sidecar subtitle files next to ``source``.

    Recognized names are ``<stem>[.<lang>][.forced][.default].<ext>`` with
    ext one of srt, ass, ssa, vtt, sup. Tokens between the stem and the
    extension may appear in any order.
    """
    stem = source.stem
    candidates: list[SubtitleStreamCandidate] = []
    try:
        siblings = sorted(source.parent.iterdir())
    except OSError as e:
        logger.warning("Cannot list %s for external subtitles: %s", source.parent, e)
        return candidates

    for path in siblings:
        codec = EXTERNAL_SUBTITLE_CODECS.get(path.suffix.lower())
        if codec is None or not path.is_file():
            continue
        name = path.name[: -len(path.suffix)]
        if name != stem and not name.startswith(stem + "."):
            continue

        tokens = [t for t in name[len(stem) :].split(".") if t]
        is_forced = False
        is_default = False
        language = UNDEFINED
        for token in tokens:
            lowered = token.lower()
            if lowered == "forced":
                is_forced = True
            elif lowered == "default":
                is_default = True
            elif language == UNDEFINED:
                language = normalize_language(lowered, context=str(path))

        candidates.append(
            SubtitleStreamCandidate(
                index=len(candidates),
                codec=codec,
                language=language,
                is_forced=is_forced,
                is_default=is_default,
                source=SubtitleSource.EXTERNAL,
                path=path,
            )
        )

    if candidates:
        logger.info("Found %d external subtitle file(s)", len(candidates))
    return candidates


@dataclass(frozen=True)
class SubtitlePlan:
    """Retained subtitles in output order with final dispositions."""

    retained: tuple[SubtitleStreamCandidate, ...] = ()
    dropped: tuple[SubtitleStreamCandidate, ...] = ()

    @property
    def default_stream(self) -> SubtitleStreamCandidate | None:
        return next((s for s in self.retained if s.is_default), None)


def select_subtitles(
    internal: list[SubtitleStreamCandidate] | tuple[SubtitleStreamCandidate, ...],
    external: list[SubtitleStreamCandidate] | tuple[SubtitleStreamCandidate, ...] = (),
    max_keep: int = DEFAULT_MAX_SUBTITLES,
) -> SubtitlePlan:
    """Rank subtitles, keep the best ``max_keep`` and assign dispositions.

    Disposition rule: the highest-ranked forced stream becomes the default.
    A regular stream can only become the default when no forced stream
    exists among any candidate, and only if it was flagged default in its
    source. At most one retained stream is marked default.
    """
    internal_count = max((c.index for c in internal), default=-1) + 1
    scored: list[SubtitleStreamCandidate] = []
    for candidate in internal:
        scored.append(
            replace(candidate, quality_score=score_subtitle(candidate, candidate.index))
        )
    for candidate in external:
        rank_index = internal_count + candidate.index
        scored.append(
            replace(candidate, quality_score=score_subtitle(candidate, rank_index))
        )

    scored.sort(key=lambda c: c.quality_score, reverse=True)
    kept = scored[:max_keep]
    dropped = scored[max_keep:]

    any_forced = any(c.is_forced for c in scored)
    default_assigned = False
    retained: list[SubtitleStreamCandidate] = []
    for candidate in kept:
        if any_forced:
            make_default = candidate.is_forced and not default_assigned
        else:
            make_default = candidate.is_default and not default_assigned
        default_assigned = default_assigned or make_default
        retained.append(replace(candidate, is_default=make_default))

    for candidate in dropped:
        logger.debug(
            "Dropping subtitle %s:%d (score %d)",
            candidate.source.value,
            candidate.index,
            candidate.quality_score,
        )
    return SubtitlePlan(retained=tuple(retained), dropped=tuple(dropped))
