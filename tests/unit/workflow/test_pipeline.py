"""Unit tests for the encode pipeline."""

import json
from dataclasses import replace
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from encodegate.config.models import EncodeGateConfig, QualityConfig
from encodegate.encoding.types import (
    CorruptionReport,
    EncodeAttemptResult,
    EncodeFatal,
    EncodeMethod,
    EncodeSuccess,
    Severity,
)
from encodegate.introspector.interface import MediaIntrospectionError
from encodegate.introspector.parsers import parse_ffprobe_output
from encodegate.quality.types import MetricStats, QualityThresholds, QualityVerdict
from encodegate.selection.audio import UsabilityResult
from encodegate.tools.detection import Toolchain, ToolNotFoundError
from encodegate.tools.results import ToolResult
from encodegate.workflow.exceptions import (
    IntegrityError,
    PrerequisiteError,
    QualityRejectedError,
    RunCancelledError,
    StageError,
)
from encodegate.workflow.pipeline import (
    EncodePipeline,
    build_source_plan,
    check_prerequisites,
    final_output_path,
    finalize_output,
    raise_for_fatal,
    suggest_retry_quality,
)
from encodegate.workflow.run_context import RunContext

TOOLS = Toolchain(
    ffmpeg=Path("/usr/bin/ffmpeg"),
    ffprobe=Path("/usr/bin/ffprobe"),
    mkvpropedit=Path("/usr/bin/mkvpropedit"),
)
OUTPUT_BYTES = 128 * 1024


def _attempt(severity=Severity.NONE, exit_code=0, **kwargs) -> EncodeAttemptResult:
    return EncodeAttemptResult(
        method=EncodeMethod.SOFTWARE,
        exit_code=exit_code,
        severity=severity,
        report=CorruptionReport(),
        **kwargs,
    )


class TestHelpers:
    def test_suggest_retry_quality(self) -> None:
        assert suggest_retry_quality(20, 2) == 18
        assert suggest_retry_quality(11, 2) == 10
        assert suggest_retry_quality(12, 5) == 10

    def test_suggest_retry_quality_stays_in_range(self) -> None:
        # Overrides above the derived range still suggest a retryable value
        assert suggest_retry_quality(32, 2) == 23
        assert suggest_retry_quality(24, 2) == 22

    def test_suggest_retry_quality_none_when_nothing_better(self) -> None:
        assert suggest_retry_quality(10, 2) is None
        assert suggest_retry_quality(5, 2) is None

    def test_final_output_path(self) -> None:
        source = Path("/media/movie.mp4")
        assert final_output_path(source, None, False) == Path(
            "/media/movie.encoded.mkv"
        )
        assert final_output_path(source, Path("/out"), False) == Path(
            "/out/movie.encoded.mkv"
        )
        assert final_output_path(source, Path("/out"), True) == Path(
            "/media/movie.mkv"
        )


class TestFinalizeOutput:
    """Tests for atomic finalization."""

    def _staged(self, temp_dir: Path, size: int = OUTPUT_BYTES) -> Path:
        work = temp_dir / "work"
        work.mkdir()
        staged = work / "movie.mkv"
        staged.write_bytes(b"\0" * size)
        return staged

    def test_moves_into_place(self, temp_dir: Path) -> None:
        staged = self._staged(temp_dir)
        source = temp_dir / "movie.mp4"
        source.write_bytes(b"original")
        destination = temp_dir / "movie.encoded.mkv"

        replaced = finalize_output(staged, source, destination, False, 1024)
        assert not replaced
        assert destination.stat().st_size == OUTPUT_BYTES
        assert source.exists()
        assert not staged.exists()
        assert not (temp_dir / ".movie.encoded.mkv.partial").exists()

    def test_replace_removes_original(self, temp_dir: Path) -> None:
        staged = self._staged(temp_dir)
        source = temp_dir / "movie.mp4"
        source.write_bytes(b"original")
        destination = temp_dir / "movie.mkv"

        assert finalize_output(staged, source, destination, True, 1024)
        assert not source.exists()
        assert destination.exists()

    def test_replace_same_name(self, temp_dir: Path) -> None:
        staged = self._staged(temp_dir)
        source = temp_dir / "movie.mkv"
        source.write_bytes(b"original")

        assert finalize_output(staged, source, source, True, 1024)
        assert source.stat().st_size == OUTPUT_BYTES

    def test_undersized_output_rejected(self, temp_dir: Path) -> None:
        staged = self._staged(temp_dir, size=10)
        source = temp_dir / "movie.mkv"
        source.write_bytes(b"original")
        with pytest.raises(StageError):
            finalize_output(staged, source, source, True, 1024)
        assert source.read_bytes() == b"original"

    def test_missing_output(self, temp_dir: Path) -> None:
        with pytest.raises(StageError, match="output missing"):
            finalize_output(
                temp_dir / "none.mkv", temp_dir / "a.mkv", temp_dir / "b.mkv", False, 1
            )


class TestRaiseForFatal:
    def test_no_attempt_is_stage_error(self) -> None:
        with pytest.raises(StageError):
            raise_for_fatal(EncodeFatal(reason="hardware encoder unavailable"))

    def test_critical_is_integrity_error(self) -> None:
        fatal = EncodeFatal(
            reason="critical corruption",
            attempt=_attempt(Severity.CRITICAL, reasons=("1 container defect(s)",)),
            critical=True,
        )
        with pytest.raises(IntegrityError) as exc_info:
            raise_for_fatal(fatal)
        assert exc_info.value.critical
        assert exc_info.value.reasons == ("1 container defect(s)",)

    def test_severe_software_is_integrity_error(self) -> None:
        fatal = EncodeFatal(reason="severe", attempt=_attempt(Severity.SEVERE))
        with pytest.raises(IntegrityError) as exc_info:
            raise_for_fatal(fatal)
        assert not exc_info.value.critical

    def test_transient_is_stage_error(self) -> None:
        fatal = EncodeFatal(
            reason="software encoder exited with code 1",
            attempt=_attempt(Severity.CRITICAL, exit_code=1),
        )
        with pytest.raises(StageError):
            raise_for_fatal(fatal)


class TestCheckPrerequisites:
    """Tests for check_prerequisites."""

    def test_missing_source(self, temp_dir: Path, default_config) -> None:
        with pytest.raises(PrerequisiteError, match="Source not found"):
            check_prerequisites(temp_dir / "missing.mkv", default_config, None)

    @patch("encodegate.workflow.pipeline.resolve_toolchain")
    def test_missing_tool(self, mock_resolve, temp_dir: Path, default_config):
        source = temp_dir / "movie.mkv"
        source.write_bytes(b"x")
        mock_resolve.side_effect = ToolNotFoundError("ffmpeg missing")
        with pytest.raises(PrerequisiteError, match="ffmpeg missing"):
            check_prerequisites(source, default_config, None)

    @patch("encodegate.workflow.pipeline.resolve_toolchain", return_value=TOOLS)
    def test_ok(self, mock_resolve, temp_dir: Path, default_config) -> None:
        source = temp_dir / "movie.mkv"
        source.write_bytes(b"x")
        assert check_prerequisites(source, default_config, temp_dir) is TOOLS


class TestBuildSourcePlan:
    def test_sdr_plan(self, sdr_probe, default_config) -> None:
        plan = build_source_plan(sdr_probe, default_config)
        assert plan.audio.selected.index == 1
        assert plan.hdr is None
        assert plan.settings.quality == 20
        assert plan.subtitles.retained

    def test_hdr_plan_uses_defaults(self, hdr_probe, default_config) -> None:
        plan = build_source_plan(hdr_probe, default_config)
        assert plan.hdr is not None
        assert plan.hdr.used_defaults

    def test_override(self, sdr_probe) -> None:
        config = EncodeGateConfig()
        config.encode.quality_override = 28
        plan = build_source_plan(sdr_probe, config)
        assert plan.settings.quality == 28
        assert plan.settings.overridden


# Orchestration


def _verdict(passed: bool) -> QualityVerdict:
    return QualityVerdict(
        passed=passed,
        measured=MetricStats(psnr=40.0 if passed else 30.0, ssim=0.97),
        thresholds=QualityThresholds(
            psnr=35.0, ssim=0.95, base_psnr=35.0, base_ssim=0.95
        ),
        reasons=() if passed else ("mean PSNR 30.00 dB < 35.00 dB",),
    )


@pytest.fixture
def source(temp_dir: Path) -> Path:
    media = temp_dir / "media"
    media.mkdir()
    path = media / "movie.mkv"
    path.write_bytes(b"\x1a" * 4096)
    return path


@pytest.fixture
def config(temp_dir: Path) -> EncodeGateConfig:
    return EncodeGateConfig(
        quality=QualityConfig(ceiling_analysis=False),
        temp_directory=temp_dir / "tmp",
    )


@pytest.fixture
def source_probe(source: Path, ffprobe_fixtures_dir: Path):
    data = json.loads((ffprobe_fixtures_dir / "sdr_1080p.json").read_text())
    return parse_ffprobe_output(source, data)


@pytest.fixture
def prober(source_probe) -> MagicMock:
    prober = MagicMock()
    prober.probe.side_effect = lambda path: replace(source_probe, path=path)
    return prober


@pytest.fixture
def pipeline_mocks(temp_dir: Path):
    """Patch every external-process stage of the pipeline."""

    def mux(artifact, source, audio, subtitles, output, frame_rate=None):
        output.write_bytes(b"\0" * OUTPUT_BYTES)
        return ToolResult(success=True, output_path=output)

    def encode(source, work_dir, video, settings, **kwargs):
        artifact = work_dir / "encode_software.mkv"
        artifact.write_bytes(b"\0" * OUTPUT_BYTES)
        return EncodeSuccess(
            artifact=artifact,
            attempt=_attempt(artifact_path=artifact),
            method=EncodeMethod.SOFTWARE,
        )

    with (
        patch(
            "encodegate.workflow.pipeline.resolve_toolchain", return_value=TOOLS
        ),
        patch("encodegate.workflow.pipeline.check_disk_space") as disk,
        patch("encodegate.workflow.pipeline.DiskSpaceMonitor"),
        patch("encodegate.workflow.pipeline.AudioUsabilityProbe") as usability,
        patch("encodegate.workflow.pipeline.EncodeController") as controller,
        patch("encodegate.workflow.pipeline.Muxer") as muxer,
        patch("encodegate.workflow.pipeline.QualityValidator") as validator,
    ):
        usability.return_value.side_effect = lambda stream: UsabilityResult(
            usable=True, decoded_seconds=30.0
        )
        controller.return_value.encode.side_effect = encode
        muxer.return_value.mux.side_effect = mux
        validator.return_value.validate.return_value = _verdict(True)
        yield {
            "disk": disk,
            "controller": controller,
            "muxer": muxer,
            "validator": validator,
        }


def _run(config, source, prober, output_dir=None):
    pipeline = EncodePipeline(config, prober_factory=lambda tools, ctx: prober)
    with RunContext(
        source, temp_root=config.temp_directory, install_signal_handlers=False
    ) as ctx:
        return pipeline.run(ctx, output_dir=output_dir)


class TestEncodePipeline:
    """End-to-end pipeline runs with external tools mocked."""

    def test_success(self, config, source, prober, pipeline_mocks) -> None:
        result = _run(config, source, prober)

        assert result.output_path == source.parent / "movie.encoded.mkv"
        assert result.output_path.stat().st_size == OUTPUT_BYTES
        assert result.method is EncodeMethod.SOFTWARE
        assert result.verdict.passed
        assert not result.replaced_original
        assert source.exists()
        # The muxed file is validated against the original
        args = pipeline_mocks["validator"].return_value.validate.call_args.args
        assert args[0] == source
        assert args[2].name == "movie.mkv"
        required = pipeline_mocks["disk"].call_args.args[1]
        assert required == int(4096 * 1.5)

    def test_replace_original(self, config, source, prober, pipeline_mocks):
        config.replace_original = True
        result = _run(config, source, prober)
        assert result.replaced_original
        assert result.output_path == source
        assert source.stat().st_size == OUTPUT_BYTES

    def test_quality_rejection_keeps_original(
        self, config, source, prober, pipeline_mocks
    ) -> None:
        validator = pipeline_mocks["validator"].return_value
        validator.validate.return_value = _verdict(False)
        with pytest.raises(QualityRejectedError) as exc_info:
            _run(config, source, prober)
        assert exc_info.value.suggested_quality == 18
        assert source.read_bytes() == b"\x1a" * 4096
        assert not (source.parent / "movie.encoded.mkv").exists()
        assert list(config.temp_directory.iterdir()) == []

    def test_rejection_at_best_quality_has_no_suggestion(
        self, config, source, prober, pipeline_mocks
    ) -> None:
        config.encode.quality_override = 10
        validator = pipeline_mocks["validator"].return_value
        validator.validate.return_value = _verdict(False)
        with pytest.raises(QualityRejectedError) as exc_info:
            _run(config, source, prober)
        assert exc_info.value.suggested_quality is None
        assert "no better quality than 10" in str(exc_info.value)

    def test_validation_disabled(self, config, source, prober, pipeline_mocks):
        config.quality.enabled = False
        result = _run(config, source, prober)
        assert result.verdict is None
        pipeline_mocks["validator"].assert_not_called()

    def test_integrity_failure(self, config, source, prober, pipeline_mocks):
        controller = pipeline_mocks["controller"].return_value
        controller.encode.side_effect = None
        controller.encode.return_value = EncodeFatal(
            reason="critical corruption",
            attempt=_attempt(Severity.CRITICAL),
            critical=True,
        )
        with pytest.raises(IntegrityError):
            _run(config, source, prober)
        pipeline_mocks["muxer"].return_value.mux.assert_not_called()

    def test_mux_failure(self, config, source, prober, pipeline_mocks) -> None:
        muxer = pipeline_mocks["muxer"].return_value
        muxer.mux.side_effect = None
        muxer.mux.return_value = ToolResult(success=False, message="mux exited")
        with pytest.raises(StageError, match="mux"):
            _run(config, source, prober)

    def test_probe_failure(self, config, source, prober, pipeline_mocks) -> None:
        prober.probe.side_effect = MediaIntrospectionError("ffprobe failed")
        with pytest.raises(StageError, match="probe"):
            _run(config, source, prober)

    def test_cancelled_before_encode(
        self, config, source, prober, pipeline_mocks
    ) -> None:
        pipeline = EncodePipeline(config, prober_factory=lambda tools, ctx: prober)
        with RunContext(
            source, temp_root=config.temp_directory, install_signal_handlers=False
        ) as ctx:
            ctx.cancel_event.set()
            with pytest.raises(RunCancelledError):
                pipeline.run(ctx)
        pipeline_mocks["controller"].return_value.encode.assert_not_called()

    def test_insufficient_space(self, config, source, prober, pipeline_mocks):
        pipeline_mocks["disk"].side_effect = PrerequisiteError("no space")
        with pytest.raises(PrerequisiteError):
            _run(config, source, prober)
        prober.probe.assert_not_called()
