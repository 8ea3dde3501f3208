"""HEVC encoding: settings derivation, command building, corruption
classification and the hardware/software attempt controller."""

from encodegate.encoding.complexity import (
    ComplexityResult,
    ComplexitySampler,
    compute_complexity,
)
from encodegate.encoding.controller import EncodeController, evaluate_attempt
from encodegate.encoding.corruption import (
    PATTERN_TABLE,
    PATTERN_TABLE_VERSION,
    CorruptionScanner,
    classify,
    is_transient_failure,
)
from encodegate.encoding.settings import derive_settings, resolution_tier
from encodegate.encoding.types import (
    CorruptionReport,
    EncodeAttemptResult,
    EncodeFatal,
    EncodeMethod,
    EncodeNeedsFallback,
    EncodeOutcome,
    EncodeSuccess,
    EncodingSettings,
    Severity,
    SharpenParams,
)

__all__ = [
    "PATTERN_TABLE",
    "PATTERN_TABLE_VERSION",
    "ComplexityResult",
    "ComplexitySampler",
    "CorruptionReport",
    "CorruptionScanner",
    "EncodeAttemptResult",
    "EncodeController",
    "EncodeFatal",
    "EncodeMethod",
    "EncodeNeedsFallback",
    "EncodeOutcome",
    "EncodeSuccess",
    "EncodingSettings",
    "Severity",
    "SharpenParams",
    "classify",
    "compute_complexity",
    "derive_settings",
    "evaluate_attempt",
    "is_transient_failure",
    "resolution_tier",
]
