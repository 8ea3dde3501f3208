"""CLI run command: encode one file through the full pipeline."""

import logging
import time
from pathlib import Path

import click

from encodegate.cli import load_effective_config
from encodegate.cli.exit_codes import ExitCode, exit_code_for
from encodegate.config.builder import ConfigSource
from encodegate.tools.ffmpeg_progress import FFmpegProgress
from encodegate.workflow.exceptions import EncodeGateError
from encodegate.workflow.pipeline import EncodePipeline, RunResult
from encodegate.workflow.run_context import RunContext

logger = logging.getLogger(__name__)

PROGRESS_LOG_INTERVAL = 30.0


class ProgressLogger:
    """Log encoder progress at most once per interval."""

    def __init__(self, interval: float = PROGRESS_LOG_INTERVAL) -> None:
        self.interval = interval
        self._last: float | None = None

    def __call__(self, progress: FFmpegProgress) -> None:
        now = time.monotonic()
        if self._last is not None and now - self._last < self.interval:
            return
        self._last = now
        position = progress.out_time_seconds
        logger.info(
            "Encoding: frame %s, %.1f fps, position %s, speed %s",
            progress.frame if progress.frame is not None else "?",
            progress.fps or 0.0,
            f"{position:.0f}s" if position is not None else "?",
            progress.speed or "?",
        )


def _print_result(result: RunResult) -> None:
    settings = result.settings
    click.echo(f"Output:   {result.output_path}")
    click.echo(f"Encoder:  {result.method.value}")
    click.echo(
        f"Quality:  {settings.quality} "
        f"({settings.tier.value}"
        f"{', override' if settings.overridden else ''})"
    )
    verdict = result.verdict
    if verdict is not None:
        click.echo(
            f"Measured: PSNR {verdict.measured.psnr:.2f} dB "
            f"(>= {verdict.thresholds.psnr:.2f}), "
            f"SSIM {verdict.measured.ssim:.4f} "
            f"(>= {verdict.thresholds.ssim:.4f})"
        )
        if verdict.efficiency_override:
            click.echo("          accepted by efficiency override")
    if result.replaced_original:
        click.echo("Original replaced.")
    for warning in result.warnings:
        click.echo(f"Warning:  {warning}", err=True)


@click.command("run")
@click.argument(
    "input_file",
    metavar="INPUT",
    type=click.Path(path_type=Path, dir_okay=False),
)
@click.option(
    "--output-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory for the encoded file (default: beside the input).",
)
@click.option(
    "--quality",
    type=click.IntRange(min=0),
    default=None,
    help="Explicit encoder quality; bypasses derivation and clamping.",
)
@click.option(
    "--no-hardware",
    is_flag=True,
    default=False,
    help="Skip the hardware encoder and use the software encoder.",
)
@click.option(
    "--fallback/--no-fallback",
    default=None,
    help="Allow falling back to the software encoder.",
)
@click.option(
    "--validate/--no-validate",
    default=None,
    help="Run PSNR/SSIM quality validation.",
)
@click.option(
    "--ceiling/--no-ceiling",
    default=None,
    help="Analyze the source quality ceiling to adapt thresholds.",
)
@click.option(
    "--complexity/--no-complexity",
    default=None,
    help="Sample content complexity to adjust the derived quality.",
)
@click.option(
    "--replace-original",
    is_flag=True,
    default=False,
    help="Replace the input with the encoded file once it passes validation.",
)
@click.option(
    "--archive-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Copy the original here in the background before replacing it.",
)
@click.pass_context
def run_command(
    ctx: click.Context,
    input_file: Path,
    output_dir: Path | None,
    quality: int | None,
    no_hardware: bool,
    fallback: bool | None,
    validate: bool | None,
    ceiling: bool | None,
    complexity: bool | None,
    replace_original: bool,
    archive_dir: Path | None,
) -> None:
    """Encode INPUT to HEVC and accept it only if it passes validation.

    \b
    Exit codes:
      0        success
      1        generic failure
      30       prerequisite failure (tool, space, path)
      40       corrupt encode
      100-123  retry at lower quality (100 + suggested quality)
      130      cancelled
    """
    overrides = ConfigSource(
        encode_quality_override=quality,
        encode_use_hardware=False if no_hardware else None,
        encode_allow_software_fallback=fallback,
        encode_complexity_sampling=complexity,
        quality_enabled=validate,
        quality_ceiling_analysis=ceiling,
        replace_original=True if replace_original else None,
        background_archive_dir=archive_dir,
    )
    config = load_effective_config(ctx, overrides)
    source = input_file.expanduser().resolve()

    pipeline = EncodePipeline(config, progress_callback=ProgressLogger())
    run_ctx = RunContext(source, temp_root=config.temp_directory)
    try:
        with run_ctx:
            result = pipeline.run(run_ctx, output_dir=output_dir)
    except EncodeGateError as e:
        code = ExitCode.CANCELLED if run_ctx.cancelled else exit_code_for(e)
        logger.error("Run failed: %s", e, extra={"exit_code": int(code)})
        click.echo(f"Error: {e}", err=True)
        ctx.exit(code)
    except Exception as e:
        logger.exception("Unexpected error during run")
        click.echo(f"Error: {e}", err=True)
        ctx.exit(ExitCode.GENERAL_ERROR)

    _print_result(result)
