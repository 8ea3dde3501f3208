"""Quality gate: source ceiling, adaptive thresholds and output validation."""

from encodegate.quality.ceiling import CeilingAnalyzer
from encodegate.quality.metrics import measure_pair, parse_psnr_value
from encodegate.quality.sampling import SampleExtractor, validation_positions
from encodegate.quality.thresholds import adapt_thresholds, efficiency
from encodegate.quality.types import (
    PSNR_CAP_DB,
    MetricSample,
    MetricStats,
    QualityThresholds,
    QualityVerdict,
)
from encodegate.quality.validator import QualityValidator, judge

__all__ = [
    "PSNR_CAP_DB",
    "CeilingAnalyzer",
    "MetricSample",
    "MetricStats",
    "QualityThresholds",
    "QualityValidator",
    "QualityVerdict",
    "SampleExtractor",
    "adapt_thresholds",
    "efficiency",
    "judge",
    "measure_pair",
    "parse_psnr_value",
    "validation_positions",
]
