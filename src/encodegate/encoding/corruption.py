"""Corruption classification of encoder diagnostics.

ffmpeg reports decoder trouble on stderr as it goes. The scanner counts
known defect signatures per category while the encode is running, and the
classifier turns the counts plus the exit status and artifact into a
Severity verdict. The verdict is monotonic in defect volume: adding
matches never lowers it.

The pattern table is versioned. Bump PATTERN_TABLE_VERSION whenever a
pattern, weight or threshold changes so logged verdicts stay comparable.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from encodegate.encoding.types import CorruptionReport, Severity

logger = logging.getLogger(__name__)

PATTERN_TABLE_VERSION = "2024.1"

CONTAINER_CATEGORY = "container"

# Total weighted matches at which the verdict escalates
SEVERE_TOTAL_WEIGHTED = 100.0
MODERATE_TOTAL_WEIGHTED = 20.0

DEFAULT_LINE_BUDGET = 200_000
DEFAULT_MIN_OUTPUT_BYTES = 64 * 1024

MAX_SAMPLES = 10


@dataclass(frozen=True)
class DefectCategory:
    """One row of the pattern table."""

    name: str
    patterns: tuple[re.Pattern[str], ...]
    weight: float
    severe_threshold: float | None
    """Weighted count at which this category alone is Severe.

    None marks the container category, where any match is Critical.
    """

    def matches(self, line: str) -> bool:
        return any(p.search(line) for p in self.patterns)


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


PATTERN_TABLE: tuple[DefectCategory, ...] = (
    DefectCategory(
        name=CONTAINER_CATEGORY,
        patterns=_compile(
            r"EBML header parsing failed",
            r"Invalid EBML",
            r"Read error at pos",
            r"File ended prematurely",
            r"moov atom not found",
            r"exceeds containing master element",
            r"Unexpected end of file",
        ),
        weight=0.0,
        severe_threshold=None,
    ),
    DefectCategory(
        name="bitstream",
        patterns=_compile(
            r"Invalid NAL unit size",
            r"Error splitting the input into NAL units",
            r"corrupt input packet",
            r"Invalid data found when processing input",
        ),
        weight=1.0,
        severe_threshold=50,
    ),
    DefectCategory(
        name="reference",
        patterns=_compile(
            r"Could not find ref with POC",
            r"reference picture missing",
            r"error while decoding MB",
            r"Missing reference picture",
        ),
        weight=1.0,
        severe_threshold=30,
    ),
    DefectCategory(
        name="structural",
        patterns=_compile(
            r"decode_slice_header error",
            r"non-existing PPS",
            r"no frame!",
            r"slice header damaged",
            r"cabac decode of qscale diff failed",
            r"(top|left) block unavailable",
        ),
        weight=1.5,
        severe_threshold=30,
    ),
    DefectCategory(
        name="concealment",
        patterns=_compile(
            r"concealing \d+ DC, \d+ AC, \d+ MV errors",
            r"Error concealment",
        ),
        weight=0.5,
        severe_threshold=200,
    ),
)


class CorruptionScanner:
    """Incrementally count defect signatures in diagnostic lines.

    Each line counts toward at most one category (the first matching row
    of the table). Lines beyond the budget are ignored and the report is
    flagged as truncated.
    """

    def __init__(
        self,
        line_budget: int = DEFAULT_LINE_BUDGET,
        table: tuple[DefectCategory, ...] = PATTERN_TABLE,
    ) -> None:
        self._budget = line_budget
        self._table = table
        self._counts: dict[str, int] = {c.name: 0 for c in table}
        self._lines = 0
        self._truncated = False
        self._samples: list[str] = []

    def feed(self, line: str) -> None:
        if self._lines >= self._budget:
            self._truncated = True
            return
        self._lines += 1
        for category in self._table:
            if category.matches(line):
                self._counts[category.name] += 1
                if len(self._samples) < MAX_SAMPLES:
                    self._samples.append(line.strip())
                return

    def feed_text(self, text: str) -> None:
        for line in text.splitlines():
            self.feed(line)

    def report(self) -> CorruptionReport:
        counts: dict[str, int] = {}
        weighted: dict[str, float] = {}
        container = 0
        for category in self._table:
            count = self._counts[category.name]
            if category.severe_threshold is None:
                container += count
                continue
            counts[category.name] = count
            weighted[category.name] = count * category.weight
        return CorruptionReport(
            counts=counts,
            weighted=weighted,
            container_matches=container,
            lines_scanned=self._lines,
            truncated=self._truncated,
            samples=tuple(self._samples),
        )


def classify(
    report: CorruptionReport,
    exit_code: int,
    artifact_path: Path | None,
    min_output_bytes: int = DEFAULT_MIN_OUTPUT_BYTES,
    table: tuple[DefectCategory, ...] = PATTERN_TABLE,
) -> tuple[Severity, tuple[str, ...]]:
    """Turn a report and the process outcome into a verdict.

    Returns:
        (severity, reasons). Reasons are recorded for Critical and Severe
        verdicts.
    """
    critical: list[str] = []
    if report.container_matches:
        critical.append(f"{report.container_matches} container defect(s)")
    if exit_code != 0:
        critical.append(f"encoder exited with code {exit_code}")
    if artifact_path is None or not artifact_path.exists():
        critical.append("output missing")
    else:
        size = artifact_path.stat().st_size
        if size < min_output_bytes:
            critical.append(f"output undersized ({size} bytes < {min_output_bytes})")
    if critical:
        return Severity.CRITICAL, tuple(critical)

    severe: list[str] = []
    for category in table:
        if category.severe_threshold is None:
            continue
        value = report.weighted.get(category.name, 0.0)
        if value >= category.severe_threshold:
            severe.append(
                f"{category.name} weighted count {value:g} >= "
                f"{category.severe_threshold:g}"
            )
    total = report.total_weighted
    if total >= SEVERE_TOTAL_WEIGHTED:
        severe.append(f"total weighted count {total:g} >= {SEVERE_TOTAL_WEIGHTED:g}")
    if severe:
        return Severity.SEVERE, tuple(severe)

    if total >= MODERATE_TOTAL_WEIGHTED:
        return Severity.MODERATE, (f"total weighted count {total:g}",)
    if total > 0:
        return Severity.MINOR, (f"total weighted count {total:g}",)
    return Severity.NONE, ()


def is_transient_failure(report: CorruptionReport, exit_code: int) -> bool:
    """A non-zero exit with no defect signatures at all.

    Such failures (driver hiccups, resource exhaustion) are not evidence
    of a damaged source and may succeed on another encoder.
    """
    return exit_code != 0 and report.total_matches == 0
