"""Encode attempt controller.

Drives one run's encode through the hardware path and, when permitted,
the software path:

    probe capability -> hardware attempt -> success | fallback | fatal
                                              fallback -> software attempt

The hardware capability probe is cached for the lifetime of the
controller, so a run never probes twice.
"""

from __future__ import annotations

import logging
import subprocess  # nosec B404 - needed for TimeoutExpired
from collections.abc import Callable
from pathlib import Path

from encodegate.config.models import EncodeConfig
from encodegate.core.subprocess_utils import (
    ProcessRegistry,
    StreamingProcessRunner,
    run_command,
)
from encodegate.domain.models import VideoDescriptor
from encodegate.encoding.command import (
    build_capability_probe_command,
    build_encode_command,
)
from encodegate.encoding.corruption import (
    CorruptionScanner,
    classify,
    is_transient_failure,
)
from encodegate.encoding.types import (
    EncodeAttemptResult,
    EncodeFatal,
    EncodeMethod,
    EncodeNeedsFallback,
    EncodeOutcome,
    EncodeSuccess,
    EncodingSettings,
    Severity,
)
from encodegate.hdr.static import HdrStaticMetadata
from encodegate.tools.ffmpeg_progress import FFmpegProgress
from encodegate.workflow.exceptions import RunCancelledError

logger = logging.getLogger(__name__)

# Substrings in ffmpeg output that point at the hardware encoder itself
HW_ENCODER_ERROR_PATTERNS = (
    "cannot load",
    "not found",
    "not supported",
    "nvenc",
    "cuda",
    "device",
    "memory",
    "resource",
    "initialization failed",
    "encoder not found",
    "could not open",
)


# Terminal encode timeout when none is configured: a multiple of the
# source duration, never below the floor
ENCODE_TIMEOUT_DURATION_FACTOR = 10.0
ENCODE_TIMEOUT_FLOOR_SECONDS = 3600.0


def encode_timeout(config: EncodeConfig, video: VideoDescriptor) -> float:
    """Timeout for one encode attempt, in seconds."""
    if config.encode_timeout_seconds is not None:
        return config.encode_timeout_seconds
    duration = video.duration if video.duration and video.duration > 0 else 0.0
    return max(
        ENCODE_TIMEOUT_FLOOR_SECONDS, duration * ENCODE_TIMEOUT_DURATION_FACTOR
    )


def detect_hw_encoder_error(stderr_output: str) -> bool:
    """Check if ffmpeg output indicates a hardware encoder error."""
    stderr_lower = stderr_output.lower()
    return any(pattern in stderr_lower for pattern in HW_ENCODER_ERROR_PATTERNS)


def evaluate_attempt(attempt: EncodeAttemptResult) -> EncodeOutcome:
    """Map one attempt onto the controller's tagged outcome.

    Hardware attempts that are Severe, timed out or failed transiently ask
    for the software fallback. Critical verdicts are fatal on either path,
    as is anything that goes wrong on the software path.
    """
    hardware = attempt.method is EncodeMethod.HARDWARE

    if attempt.timed_out:
        reason = f"{attempt.method.value} encode timed out"
        if hardware:
            return EncodeNeedsFallback(reason=reason, attempt=attempt)
        return EncodeFatal(reason=reason, attempt=attempt)

    if is_transient_failure(attempt.report, attempt.exit_code):
        reason = (
            f"{attempt.method.value} encoder exited with code "
            f"{attempt.exit_code} without defect diagnostics"
        )
        if hardware:
            return EncodeNeedsFallback(reason=reason, attempt=attempt)
        return EncodeFatal(reason=reason, attempt=attempt)

    if attempt.severity is Severity.CRITICAL:
        return EncodeFatal(
            reason="critical corruption: " + "; ".join(attempt.reasons),
            attempt=attempt,
            critical=True,
        )

    if attempt.severity is Severity.SEVERE:
        reason = "severe corruption: " + "; ".join(attempt.reasons)
        if hardware:
            return EncodeNeedsFallback(reason=reason, attempt=attempt)
        return EncodeFatal(reason=reason, attempt=attempt)

    if attempt.artifact_path is None:
        return EncodeFatal(
            reason=f"{attempt.method.value} encode produced no output",
            attempt=attempt,
            critical=True,
        )

    warnings: tuple[str, ...] = ()
    if attempt.severity > Severity.NONE:
        warnings = tuple(
            f"{attempt.severity.name.lower()} decode diagnostics: {r}"
            for r in attempt.reasons
        )
    return EncodeSuccess(
        artifact=attempt.artifact_path,
        attempt=attempt,
        method=attempt.method,
        warnings=warnings,
    )


class EncodeController:
    """Run encode attempts with hardware-first fallback.

    Args:
        ffmpeg_path: ffmpeg executable.
        runner: Streaming runner bound to the run's registry and cancel event.
        config: Encode configuration.
        registry: Registry used for the capability probe process.
    """

    def __init__(
        self,
        ffmpeg_path: Path,
        runner: StreamingProcessRunner,
        config: EncodeConfig,
        registry: ProcessRegistry | None = None,
    ) -> None:
        self._ffmpeg_path = ffmpeg_path
        self._runner = runner
        self._config = config
        self._registry = registry
        self._hardware_available: bool | None = None

    def hardware_available(self) -> bool:
        """Probe the hardware encoder once and cache the answer."""
        if self._hardware_available is None:
            self._hardware_available = self._probe_hardware()
        return self._hardware_available

    def _probe_hardware(self) -> bool:
        encoder = self._config.hardware_encoder
        cmd = build_capability_probe_command(self._ffmpeg_path, encoder)
        try:
            _, stderr, returncode = run_command(
                cmd,
                timeout=self._config.capability_probe_timeout_seconds,
                registry=self._registry,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Hardware encoder %s probe timed out", encoder)
            return False
        except OSError as e:
            logger.warning("Hardware encoder %s probe failed: %s", encoder, e)
            return False

        if returncode != 0:
            logger.warning(
                "Hardware encoder %s unavailable (exit %d)%s",
                encoder,
                returncode,
                ": device/driver error" if detect_hw_encoder_error(stderr) else "",
                extra={"stderr_tail": stderr.strip()[-500:]},
            )
            return False

        logger.info("Hardware encoder %s available", encoder)
        return True

    def output_path(
        self, work_dir: Path, method: EncodeMethod, raw_bitstream: bool
    ) -> Path:
        suffix = ".hevc" if raw_bitstream else ".mkv"
        return work_dir / f"encode_{method.value}{suffix}"

    def attempt(
        self,
        method: EncodeMethod,
        source: Path,
        output: Path,
        video: VideoDescriptor,
        settings: EncodingSettings,
        hdr: HdrStaticMetadata | None = None,
        hdr10plus_json: Path | None = None,
        progress_callback: Callable[[FFmpegProgress], None] | None = None,
    ) -> EncodeAttemptResult:
        """Run a single encode and classify its diagnostics.

        Raises:
            RunCancelledError: If the run was cancelled mid-encode.
        """
        cmd = build_encode_command(
            self._ffmpeg_path,
            source,
            output,
            video,
            settings,
            method,
            self._config,
            hdr=hdr,
            hdr10plus_json=hdr10plus_json,
        )
        scanner = CorruptionScanner(line_budget=self._config.diagnostic_line_budget)
        logger.info(
            "Starting %s encode at quality %d", method.value, settings.quality
        )
        outcome = self._runner.run(
            cmd,
            f"{method.value} encode",
            timeout=encode_timeout(self._config, video),
            line_callback=scanner.feed,
            progress_callback=progress_callback,
            is_encoder=True,
        )
        if outcome.cancelled:
            raise RunCancelledError(f"{method.value} encode cancelled")

        report = scanner.report()
        if report.truncated:
            logger.warning(
                "Diagnostic line budget exhausted after %d lines",
                report.lines_scanned,
            )
        severity, reasons = classify(
            report,
            outcome.returncode,
            output,
            min_output_bytes=self._config.min_output_bytes,
        )
        size = output.stat().st_size if output.exists() else 0
        attempt = EncodeAttemptResult(
            method=method,
            exit_code=outcome.returncode,
            severity=severity,
            report=report,
            artifact_path=output if output.exists() else None,
            artifact_size=size,
            reasons=reasons,
            timed_out=outcome.timed_out,
            elapsed_seconds=outcome.elapsed_seconds,
            avg_fps=outcome.metrics.avg_fps,
        )
        logger.info(
            "%s encode finished: exit %d, severity %s",
            method.value.capitalize(),
            attempt.exit_code,
            severity.name,
            extra={
                "defect_counts": report.counts,
                "container_matches": report.container_matches,
                "artifact_size": size,
                "elapsed_seconds": round(outcome.elapsed_seconds, 1),
                "avg_fps": attempt.avg_fps,
            },
        )
        return attempt

    def encode(
        self,
        source: Path,
        work_dir: Path,
        video: VideoDescriptor,
        settings: EncodingSettings,
        hdr: HdrStaticMetadata | None = None,
        hdr10plus_json: Path | None = None,
        progress_callback: Callable[[FFmpegProgress], None] | None = None,
    ) -> EncodeSuccess | EncodeFatal:
        """Encode ``source`` into ``work_dir``, falling back as permitted.

        With HDR10+ metadata the hardware path writes a raw ``.hevc``
        bitstream for later injection; the software path hands the
        metadata to x265 directly.

        Returns:
            EncodeSuccess or EncodeFatal. Never EncodeNeedsFallback.
        """
        config = self._config
        if config.use_hardware:
            if self.hardware_available():
                output = self.output_path(
                    work_dir, EncodeMethod.HARDWARE, hdr10plus_json is not None
                )
                result = evaluate_attempt(
                    self.attempt(
                        EncodeMethod.HARDWARE,
                        source,
                        output,
                        video,
                        settings,
                        hdr=hdr,
                        progress_callback=progress_callback,
                    )
                )
            else:
                result = EncodeNeedsFallback(
                    reason=f"hardware encoder {config.hardware_encoder} unavailable"
                )

            if not isinstance(result, EncodeNeedsFallback):
                return result
            if not config.allow_software_fallback:
                logger.error("%s; software fallback disabled", result.reason)
                return EncodeFatal(reason=result.reason, attempt=result.attempt)
            logger.warning("%s; falling back to software encode", result.reason)
            if result.attempt is not None and result.attempt.artifact_path:
                result.attempt.artifact_path.unlink(missing_ok=True)

        output = self.output_path(work_dir, EncodeMethod.SOFTWARE, False)
        result = evaluate_attempt(
            self.attempt(
                EncodeMethod.SOFTWARE,
                source,
                output,
                video,
                settings,
                hdr=hdr,
                hdr10plus_json=hdr10plus_json,
                progress_callback=progress_callback,
            )
        )
        # Software is terminal: a fallback request is a failure here
        if isinstance(result, EncodeNeedsFallback):
            return EncodeFatal(reason=result.reason, attempt=result.attempt)
        return result
