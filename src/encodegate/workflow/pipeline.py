"""Single-file encode pipeline.

Stages, in order:

1. prerequisites (paths, tools, disk space)
2. background tasks (archive copy, disk monitor, scheduler coordination)
3. probe and stream selection
4. Dolby Vision removal and HDR metadata resolution
5. settings derivation (optionally with content complexity sampling)
6. source ceiling analysis and threshold adaptation
7. encode with hardware/software fallback, HDR10+ injection
8. mux, quality validation, container HDR metadata
9. atomic finalization, optional replacement of the original

Expected stage failures are results; a stage that cannot continue raises
one of the EncodeGateError subclasses, which the CLI maps to an exit code.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from encodegate.config.models import QUALITY_MAX, QUALITY_MIN, EncodeGateConfig
from encodegate.core.process_control import get_process_controller
from encodegate.domain.enums import ResolutionTier
from encodegate.domain.models import (
    AudioStreamCandidate,
    ProbeResult,
    SubtitleStreamCandidate,
    VideoDescriptor,
)
from encodegate.encoding.complexity import ComplexitySampler
from encodegate.encoding.controller import EncodeController
from encodegate.encoding.settings import derive_settings
from encodegate.encoding.types import (
    EncodeFatal,
    EncodeMethod,
    EncodingSettings,
    Severity,
)
from encodegate.hdr.static import HdrStaticMetadata, resolve_static_metadata
from encodegate.introspector.ffprobe import FFprobeIntrospector
from encodegate.introspector.interface import MediaIntrospectionError, MediaProber
from encodegate.jobs.backup import ArchiveCopyTask
from encodegate.jobs.background import TaskState
from encodegate.jobs.disk_monitor import DiskSpaceMonitor, check_disk_space
from encodegate.jobs.scheduler import SchedulerClient, SchedulerCoordinator
from encodegate.quality.ceiling import CeilingAnalyzer
from encodegate.quality.sampling import SampleExtractor
from encodegate.quality.thresholds import adapt_thresholds
from encodegate.quality.types import QualityThresholds, QualityVerdict
from encodegate.quality.validator import QualityValidator
from encodegate.selection.audio import (
    AudioSelection,
    AudioUsabilityProbe,
    UsabilityResult,
    select_audio_stream,
)
from encodegate.selection.subtitles import (
    SubtitlePlan,
    discover_external_subtitles,
    select_subtitles,
)
from encodegate.tools.detection import Toolchain, ToolNotFoundError, resolve_toolchain
from encodegate.tools.dovi import DoviTool
from encodegate.tools.ffmpeg_progress import FFmpegProgress
from encodegate.tools.hdr10plus import Hdr10PlusTool
from encodegate.tools.mkvpropedit import MkvpropeditRunner
from encodegate.tools.muxer import Muxer
from encodegate.workflow.exceptions import (
    IntegrityError,
    PrerequisiteError,
    QualityRejectedError,
    StageError,
)
from encodegate.workflow.run_context import RunContext

logger = logging.getLogger(__name__)

# Temp space needed relative to the source size (encode + mux + samples)
TEMP_SPACE_MULTIPLIER = 1.5

OUTPUT_SUFFIX = ".mkv"
ENCODED_NAME_SUFFIX = ".encoded"


@dataclass(frozen=True)
class SourcePlan:
    """Everything decided about a source before encoding starts."""

    probe: ProbeResult
    audio: AudioSelection
    subtitles: SubtitlePlan
    settings: EncodingSettings
    hdr: HdrStaticMetadata | None = None


@dataclass
class RunResult:
    """Outcome of a successful run."""

    output_path: Path
    settings: EncodingSettings
    method: EncodeMethod
    verdict: QualityVerdict | None = None
    replaced_original: bool = False
    warnings: list[str] = field(default_factory=list)


def suggest_retry_quality(quality: int, step: int) -> int | None:
    """Lower (better) quality value for the next attempt.

    The suggestion stays inside [QUALITY_MIN, QUALITY_MAX] and is always
    strictly better than ``quality``. None means no better value exists.
    """
    suggested = max(QUALITY_MIN, min(QUALITY_MAX, quality - step))
    if suggested >= quality:
        return None
    return suggested


def final_output_path(
    source: Path, output_dir: Path | None, replace_original: bool
) -> Path:
    """Where the finished file goes.

    Replacing writes ``<stem>.mkv`` beside the source; otherwise the file is
    ``<stem>.encoded.mkv`` in ``output_dir`` (default: the source's folder).
    """
    if replace_original:
        return source.with_suffix(OUTPUT_SUFFIX)
    directory = output_dir if output_dir is not None else source.parent
    return directory / f"{source.stem}{ENCODED_NAME_SUFFIX}{OUTPUT_SUFFIX}"


def finalize_output(
    staged: Path,
    source: Path,
    destination: Path,
    replace_original: bool,
    min_output_bytes: int,
) -> bool:
    """Move the verified output into place.

    The file is first moved next to the destination under a hidden
    ``.partial`` name and then renamed, so the destination only ever holds
    a complete file. The original is removed only after the rename.

    Returns:
        True if the original was removed.

    Raises:
        StageError: If the staged file is missing/undersized or the move
            fails.
    """
    if not staged.exists():
        raise StageError("finalize", f"output missing: {staged}")
    size = staged.stat().st_size
    if size < min_output_bytes:
        raise StageError("finalize", f"output undersized ({size} bytes)")

    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.parent / f".{destination.name}.partial"
    try:
        shutil.move(str(staged), str(partial))
        os.replace(partial, destination)
    except OSError as e:
        partial.unlink(missing_ok=True)
        raise StageError("finalize", f"cannot move output into place: {e}") from e
    logger.info("Output written to %s", destination)

    if replace_original and source != destination and source.exists():
        source.unlink()
        logger.info("Removed original %s", source)
        return True
    return replace_original and source == destination


def raise_for_fatal(result: EncodeFatal) -> None:
    """Turn a fatal encode outcome into the matching exception."""
    attempt = result.attempt
    if attempt is None:
        raise StageError("encode", result.reason)
    # Timeouts and transient exits are Critical verdicts without defect matches
    if result.critical or attempt.severity is Severity.SEVERE:
        raise IntegrityError(
            result.reason,
            critical=result.critical,
            reasons=attempt.reasons,
        )
    raise StageError("encode", result.reason)


def check_prerequisites(
    source: Path, config: EncodeGateConfig, output_dir: Path | None
) -> Toolchain:
    """Validate paths and tools before any subprocess work on the source.

    Raises:
        PrerequisiteError: On the first unmet prerequisite.
    """
    if not source.is_file():
        raise PrerequisiteError(f"Source not found: {source}")
    if not os.access(source, os.R_OK):
        raise PrerequisiteError(f"Source not readable: {source}")

    target_dir = output_dir if output_dir is not None else source.parent
    if target_dir.exists() and not os.access(target_dir, os.W_OK):
        raise PrerequisiteError(f"Output directory not writable: {target_dir}")
    if config.replace_original and not os.access(source.parent, os.W_OK):
        raise PrerequisiteError(f"Cannot replace original in {source.parent}")

    try:
        return resolve_toolchain(config.tools)
    except ToolNotFoundError as e:
        raise PrerequisiteError(str(e)) from e


def build_source_plan(
    probe: ProbeResult,
    config: EncodeGateConfig,
    usability_check: Callable[[AudioStreamCandidate], UsabilityResult] | None = None,
    content_adjustment: int = 0,
    encode_video: VideoDescriptor | None = None,
    from_dolby_vision: bool = False,
) -> SourcePlan:
    """Select streams and derive settings for a probed source.

    Args:
        probe: Probe of the original source; streams are selected from it.
        config: Effective configuration.
        usability_check: Audio decode probe; skipped when None.
        content_adjustment: Complexity delta added to the derived quality.
        encode_video: Video actually fed to the encoder when it differs from
            the source (Dolby Vision base layer).
        from_dolby_vision: The encode input was produced by removing a
            Dolby Vision layer.

    Raises:
        AudioSelectionError: If no audio stream is usable.
    """
    video = encode_video if encode_video is not None else probe.video
    audio = select_audio_stream(
        probe.audio_streams,
        probe.video.duration,
        config.selection,
        usability_check=usability_check,
    )
    external: list[SubtitleStreamCandidate] = []
    if config.selection.discover_external_subtitles:
        external = discover_external_subtitles(probe.path)
    subtitles = select_subtitles(
        probe.subtitle_streams, external, config.selection.max_subtitles
    )
    settings = derive_settings(
        video,
        content_adjustment=content_adjustment,
        quality_override=config.encode.quality_override,
        sharpen=config.encode.sharpen,
    )
    hdr = resolve_static_metadata(video, from_dolby_vision=from_dolby_vision)
    return SourcePlan(
        probe=probe, audio=audio, subtitles=subtitles, settings=settings, hdr=hdr
    )


class EncodePipeline:
    """Run one source through the whole pipeline.

    Args:
        config: Effective configuration.
        prober_factory: Builds a MediaProber for a run; defaults to ffprobe.
        progress_callback: Receives encoder progress samples.
    """

    def __init__(
        self,
        config: EncodeGateConfig,
        prober_factory: Callable[[Toolchain, RunContext], MediaProber] | None = None,
        progress_callback: Callable[[FFmpegProgress], None] | None = None,
    ) -> None:
        self.config = config
        self._prober_factory = prober_factory or (
            lambda tools, ctx: FFprobeIntrospector(tools.ffprobe, ctx.registry)
        )
        self._progress_callback = progress_callback

    # Stage helpers

    def _start_background_tasks(self, ctx: RunContext) -> None:
        bg = self.config.background
        if bg.archive_dir is not None:
            ctx.add_task(ArchiveCopyTask(ctx.source, bg.archive_dir))
        ctx.add_task(
            DiskSpaceMonitor(
                ctx.temp_dir,
                interval=bg.disk_poll_interval_seconds,
                soft_limit_gb=bg.disk_soft_limit_gb,
                hard_limit_gb=bg.disk_hard_limit_gb,
            )
        )
        if bg.scheduler_url:
            ctx.add_task(
                SchedulerCoordinator(
                    SchedulerClient(
                        bg.scheduler_url,
                        api_key=bg.scheduler_api_key,
                        timeout=bg.scheduler_timeout_seconds,
                    ),
                    get_process_controller(),
                    lambda: ctx.registry.encoder_pid,
                    interval=bg.scheduler_poll_interval_seconds,
                    max_failures=bg.scheduler_max_failures,
                )
            )

    def _checkpoint(self, ctx: RunContext, stage: str) -> None:
        """Cancellation check plus archive status polling."""
        ctx.check_cancelled()
        status = ctx.task_status("archive")
        if status is not None and status.state is TaskState.FAILED:
            message = f"archive copy failed: {status.message}"
            if message not in ctx.warnings:
                logger.warning("%s (at %s)", message, stage)
                ctx.warnings.append(message)

    def _probe(self, prober: MediaProber, path: Path) -> ProbeResult:
        try:
            return prober.probe(path)
        except MediaIntrospectionError as e:
            raise StageError("probe", str(e)) from e

    def _strip_dolby_vision(
        self, ctx: RunContext, tools: Toolchain, prober: MediaProber, probe: ProbeResult
    ) -> ProbeResult | None:
        """Return a probe of the base-layer intermediate, or None to keep the
        original as encode input."""
        video = probe.video
        if not video.has_dolby_vision or not self.config.hdr.strip_dolby_vision:
            return None
        if tools.dovi_tool is None:
            message = "Dolby Vision source but dovi_tool missing; encoding as-is"
            logger.warning(message)
            ctx.warnings.append(message)
            return None

        result = DoviTool(
            tools.dovi_tool,
            tools.ffmpeg,
            ctx.registry,
            timeout=self.config.hdr.tool_timeout_seconds,
        ).strip(
            probe.path,
            video.stream_index,
            video.frame_rate_raw or f"{video.frame_rate:g}",
            ctx.temp_dir,
        )
        if not result.success or result.output_path is None:
            raise StageError("dolby vision removal", result.message)
        return self._probe(prober, result.output_path)

    def _extract_hdr10plus(
        self, ctx: RunContext, tools: Toolchain, probe: ProbeResult
    ) -> Path | None:
        if not probe.video.has_hdr10plus or not self.config.hdr.preserve_hdr10plus:
            return None
        if tools.hdr10plus_tool is None:
            message = "HDR10+ source but hdr10plus_tool missing; dynamic metadata lost"
            logger.warning(message)
            ctx.warnings.append(message)
            return None
        result = Hdr10PlusTool(
            tools.hdr10plus_tool,
            tools.ffmpeg,
            ctx.registry,
            timeout=self.config.hdr.tool_timeout_seconds,
        ).extract(probe.path, probe.video.stream_index, ctx.temp_dir)
        if not result.success:
            message = f"HDR10+ extraction failed: {result.message}"
            logger.warning(message)
            ctx.warnings.append(message)
            return None
        return result.output_path

    def _content_adjustment(
        self, ctx: RunContext, tools: Toolchain, probe: ProbeResult
    ) -> int:
        encode = self.config.encode
        if not encode.complexity_sampling or encode.quality_override is not None:
            return 0
        # Bitrate class only; the content delta is what is being measured here
        bitrate_class = derive_settings(probe.video, sharpen=False).bitrate_class
        sampler = ComplexitySampler(
            tools.ffmpeg,
            ctx.runner,
            window_seconds=encode.complexity_window_seconds,
            timeout=encode.complexity_timeout_seconds,
        )
        return sampler.measure(probe.path, probe.video, bitrate_class).delta

    def _thresholds(
        self,
        ctx: RunContext,
        extractor: SampleExtractor,
        original: ProbeResult,
        settings: EncodingSettings,
    ):
        quality = self.config.quality
        ceiling = None
        if quality.ceiling_analysis:
            ceiling = CeilingAnalyzer(
                extractor, quality.ceiling_samples, quality.sample_seconds
            ).analyze(original.path, original.video, ctx.temp_dir)
        thresholds = adapt_thresholds(
            quality, ceiling, is_4k=settings.tier is ResolutionTier.UHD_4K
        )
        return thresholds, ceiling

    # Main entry

    def run(self, ctx: RunContext, output_dir: Path | None = None) -> RunResult:
        """Encode ``ctx.source`` and put the result in place.

        Raises:
            PrerequisiteError, StageError, AudioSelectionError, IntegrityError,
            QualityRejectedError, RunCancelledError.
        """
        config = self.config
        source = ctx.source

        tools = check_prerequisites(source, config, output_dir)
        check_disk_space(
            ctx.temp_dir, int(source.stat().st_size * TEMP_SPACE_MULTIPLIER)
        )
        self._start_background_tasks(ctx)

        prober = self._prober_factory(tools, ctx)
        original = self._probe(prober, source)
        for warning in original.warnings:
            logger.warning("Probe: %s", warning)
        self._checkpoint(ctx, "probe")

        encode_input = self._strip_dolby_vision(ctx, tools, prober, original)
        stripped = encode_input is not None
        encode_probe = encode_input if encode_input is not None else original
        self._checkpoint(ctx, "dolby vision")

        usability = AudioUsabilityProbe(
            tools.ffmpeg,
            source,
            ctx.runner,
            window_seconds=config.selection.audio_probe_window_seconds,
            timeout=config.selection.audio_probe_timeout_seconds,
        )
        content_adjustment = self._content_adjustment(ctx, tools, encode_probe)
        self._checkpoint(ctx, "complexity")

        plan = build_source_plan(
            original,
            config,
            usability_check=usability,
            content_adjustment=content_adjustment,
            encode_video=encode_probe.video,
            from_dolby_vision=stripped,
        )
        ctx.warnings.extend(plan.audio.warnings)
        settings = plan.settings
        hdr = plan.hdr
        hdr10plus_json = self._extract_hdr10plus(ctx, tools, original)
        self._checkpoint(ctx, "planning")

        extractor = SampleExtractor(
            tools.ffmpeg, ctx.runner, timeout=config.quality.timeout_seconds
        )
        thresholds: QualityThresholds | None = None
        ceiling = None
        if config.quality.enabled:
            thresholds, ceiling = self._thresholds(ctx, extractor, original, settings)
            self._checkpoint(ctx, "ceiling analysis")

        controller = EncodeController(
            tools.ffmpeg, ctx.runner, config.encode, registry=ctx.registry
        )
        outcome = controller.encode(
            encode_probe.path,
            ctx.temp_dir,
            encode_probe.video,
            settings,
            hdr=hdr,
            hdr10plus_json=hdr10plus_json,
            progress_callback=self._progress_callback,
        )
        if isinstance(outcome, EncodeFatal):
            raise_for_fatal(outcome)
        ctx.warnings.extend(outcome.warnings)
        self._checkpoint(ctx, "encode")

        artifact = outcome.artifact
        if artifact.suffix == ".hevc" and hdr10plus_json is not None:
            injected = Hdr10PlusTool(
                tools.hdr10plus_tool,
                tools.ffmpeg,
                ctx.registry,
                timeout=config.hdr.tool_timeout_seconds,
            ).inject(artifact, hdr10plus_json)
            if injected.success and injected.output_path is not None:
                artifact.unlink(missing_ok=True)
                artifact = injected.output_path
            else:
                message = f"HDR10+ injection failed: {injected.message}"
                logger.warning(message)
                ctx.warnings.append(message)

        staged = ctx.work_path(f"{source.stem}{OUTPUT_SUFFIX}")
        muxed = Muxer(
            tools.ffmpeg,
            config.mux,
            ctx.registry,
            min_output_bytes=config.encode.min_output_bytes,
        ).mux(
            artifact,
            source,
            plan.audio.selected,
            plan.subtitles,
            staged,
            frame_rate=encode_probe.video.frame_rate_raw,
        )
        if not muxed.success:
            raise StageError("mux", muxed.message)
        artifact.unlink(missing_ok=True)
        self._checkpoint(ctx, "mux")

        verdict: QualityVerdict | None = None
        if thresholds is not None:
            encoded_probe = self._probe(prober, staged)
            verdict = QualityValidator(extractor, config.quality).validate(
                source,
                original.video,
                staged,
                encoded_probe.video,
                thresholds,
                ctx.temp_dir,
                ceiling=ceiling,
            )
            if not verdict.passed:
                suggested = suggest_retry_quality(
                    settings.quality, config.quality.retry_quality_step
                )
                message = "; ".join(verdict.reasons) or "quality below threshold"
                if suggested is None:
                    message += f" (no better quality than {settings.quality})"
                raise QualityRejectedError(message, suggested_quality=suggested)
            self._checkpoint(ctx, "quality validation")

        if hdr is not None:
            propedit = MkvpropeditRunner(tools.mkvpropedit, ctx.registry)
            applied = propedit.apply_hdr_metadata(
                staged, hdr, encode_probe.video.hdr_format
            )
            if not applied.success:
                message = f"HDR container metadata not written: {applied.message}"
                logger.warning(message)
                ctx.warnings.append(message)

        self._checkpoint(ctx, "finalize")
        destination = final_output_path(source, output_dir, config.replace_original)
        replaced = finalize_output(
            staged,
            source,
            destination,
            config.replace_original,
            config.encode.min_output_bytes,
        )
        return RunResult(
            output_path=destination,
            settings=settings,
            method=outcome.method,
            verdict=verdict,
            replaced_original=replaced,
            warnings=list(ctx.warnings),
        )
