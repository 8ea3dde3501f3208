"""CLI probe command: show what a run would do without encoding."""

import json
import logging
from pathlib import Path
from typing import Any

import click

from encodegate.cli import load_effective_config
from encodegate.cli.exit_codes import ExitCode
from encodegate.introspector.ffprobe import FFprobeIntrospector
from encodegate.introspector.interface import MediaIntrospectionError
from encodegate.tools.detection import ToolNotFoundError, require_tool
from encodegate.workflow.exceptions import AudioSelectionError
from encodegate.workflow.pipeline import SourcePlan, build_source_plan

logger = logging.getLogger(__name__)


def plan_to_dict(plan: SourcePlan) -> dict[str, Any]:
    """JSON-serializable view of a source plan."""
    video = plan.probe.video
    settings = plan.settings
    audio = plan.audio.selected
    return {
        "file": str(plan.probe.path),
        "container": plan.probe.container_format,
        "duration": plan.probe.duration,
        "video": {
            "stream_index": video.stream_index,
            "codec": video.codec,
            "width": video.width,
            "height": video.height,
            "frame_rate": video.frame_rate,
            "vfr": video.is_vfr,
            "bitrate": video.bitrate,
            "hdr_format": video.hdr_format.value,
            "dolby_vision": video.has_dolby_vision,
            "hdr10plus": video.has_hdr10plus,
        },
        "audio": {
            "selected": {
                "index": audio.index,
                "codec": audio.codec,
                "channels": audio.channels,
                "language": audio.language,
                "score": audio.score,
            },
            "fallbacks": [c.index for c in plan.audio.fallbacks],
            "rejected": [
                {"index": c.index, "reason": reason}
                for c, reason in plan.audio.rejected
            ],
        },
        "subtitles": [
            {
                "source": s.source.value,
                "index": s.index,
                "codec": s.codec,
                "language": s.language,
                "forced": s.is_forced,
                "default": s.is_default,
                "score": s.quality_score,
                "path": str(s.path) if s.path else None,
            }
            for s in plan.subtitles.retained
        ],
        "settings": {
            "quality": settings.quality,
            "tier": settings.tier.value,
            "bitrate_class": (
                settings.bitrate_class.value if settings.bitrate_class else None
            ),
            "bpp": settings.bpp,
            "lookahead": settings.lookahead,
            "max_frame_kib": settings.max_frame_kib,
            "sharpen": settings.sharpen.filter if settings.sharpen else None,
            "overridden": settings.overridden,
        },
        "hdr": (
            {
                "master_display": plan.hdr.master_display,
                "max_cll": plan.hdr.max_cll_param,
                "used_defaults": plan.hdr.used_defaults,
                "issues": list(plan.hdr.issues),
            }
            if plan.hdr is not None
            else None
        ),
        "warnings": list(plan.probe.warnings) + list(plan.audio.warnings),
    }


def format_plan(plan: SourcePlan) -> str:
    """Human-readable view of a source plan."""
    data = plan_to_dict(plan)
    video = data["video"]
    settings = data["settings"]
    lines = [
        f"File: {data['file']}",
        f"Container: {data['container']}, duration {data['duration']:.1f}s",
        "",
        "Video:",
        f"  #{video['stream_index']} {video['codec']} "
        f"{video['width']}x{video['height']} @ {video['frame_rate']:.3f} fps"
        f"{' (VFR)' if video['vfr'] else ''}",
        f"  HDR: {video['hdr_format']}"
        f"{', Dolby Vision' if video['dolby_vision'] else ''}"
        f"{', HDR10+' if video['hdr10plus'] else ''}",
        "",
        "Audio:",
    ]
    selected = data["audio"]["selected"]
    lines.append(
        f"  selected #{selected['index']} {selected['codec']} "
        f"{selected['channels']}ch [{selected['language']}] "
        f"score {selected['score']}"
    )
    for rejected in data["audio"]["rejected"]:
        lines.append(f"  rejected #{rejected['index']}: {rejected['reason']}")

    lines.extend(["", "Subtitles:"])
    if not data["subtitles"]:
        lines.append("  (none)")
    for sub in data["subtitles"]:
        flags = [f for f in ("forced", "default") if sub[f]]
        lines.append(
            f"  {sub['source']} #{sub['index']} {sub['codec']} "
            f"[{sub['language']}] score {sub['score']}"
            f"{' (' + ', '.join(flags) + ')' if flags else ''}"
        )

    lines.extend(
        [
            "",
            "Settings:",
            f"  quality {settings['quality']}"
            f"{' (override)' if settings['overridden'] else ''}, "
            f"tier {settings['tier']}, bitrate class {settings['bitrate_class']}",
            f"  lookahead {settings['lookahead']}, "
            f"max frame {settings['max_frame_kib']} KiB, "
            f"sharpen {settings['sharpen'] or 'off'}",
        ]
    )
    if data["hdr"] is not None:
        hdr = data["hdr"]
        lines.append(f"  master-display {hdr['master_display']}")
        lines.append(
            f"  max-cll {hdr['max_cll']}"
            f"{' (defaults)' if hdr['used_defaults'] else ''}"
        )
    for warning in data["warnings"]:
        lines.append(f"Warning: {warning}")
    return "\n".join(lines)


@click.command("probe")
@click.argument(
    "input_file",
    metavar="INPUT",
    type=click.Path(path_type=Path, dir_okay=False),
)
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output results as JSON",
)
@click.pass_context
def probe_command(ctx: click.Context, input_file: Path, json_output: bool) -> None:
    """Show the stream selection and encode settings for INPUT.

    Nothing is decoded or encoded; the audio decode probe is skipped.
    """
    config = load_effective_config(ctx)

    if not input_file.exists():
        click.echo(f"Error: File not found: {input_file}", err=True)
        ctx.exit(ExitCode.PREREQUISITE_FAILED)

    try:
        ffprobe = require_tool("ffprobe", config.tools.ffprobe)
    except ToolNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(ExitCode.PREREQUISITE_FAILED)

    try:
        probe = FFprobeIntrospector(ffprobe).probe(input_file)
        plan = build_source_plan(probe, config)
    except (MediaIntrospectionError, AudioSelectionError) as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(ExitCode.GENERAL_ERROR)

    if json_output:
        click.echo(json.dumps(plan_to_dict(plan), indent=2))
    else:
        click.echo(format_plan(plan))
