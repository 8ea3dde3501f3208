"""encodegate doctor command for checking external tool health."""

import json

import click

from encodegate.cli import load_effective_config
from encodegate.cli.exit_codes import ExitCode
from encodegate.core.subprocess_utils import StreamingProcessRunner
from encodegate.encoding.controller import EncodeController
from encodegate.tools.detection import (
    OPTIONAL_TOOLS,
    REQUIRED_TOOLS,
    TOOL_SPECS,
    ToolInfo,
    detect_all_tools,
)


def _format_status(available: bool) -> str:
    """Format status for display."""
    return "✓" if available else "✗"


def _format_version(info: ToolInfo) -> str:
    if info.version:
        return info.version
    return info.status.value if not info.is_available() else "unknown version"


@click.command("doctor")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Show tool paths",
)
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output results as JSON",
)
@click.pass_context
def doctor_command(ctx: click.Context, verbose: bool, json_output: bool) -> None:
    """Check external tool availability and hardware encoder support.

    Exit codes:
      0 - All required tools available
      30 - A required tool is missing
    """
    config = load_effective_config(ctx)
    tools = detect_all_tools(config.tools)

    ffmpeg = tools["ffmpeg"]
    hardware: bool | None = None
    if ffmpeg.is_available() and ffmpeg.path is not None:
        controller = EncodeController(
            ffmpeg.path, StreamingProcessRunner(), config.encode
        )
        hardware = controller.hardware_available()

    missing_required = [
        name for name in REQUIRED_TOOLS if not tools[name].is_available()
    ]

    if json_output:
        click.echo(
            json.dumps(
                {
                    "tools": {
                        name: {
                            "status": info.status.value,
                            "path": str(info.path) if info.path else None,
                            "version": info.version,
                            "required": name in REQUIRED_TOOLS,
                        }
                        for name, info in tools.items()
                    },
                    "hardware_encoder": {
                        "name": config.encode.hardware_encoder,
                        "available": hardware,
                    },
                },
                indent=2,
            )
        )
    else:
        click.echo("encodegate External Tool Health Check")
        click.echo("=" * 40)
        groups = (("Required", REQUIRED_TOOLS), ("Optional", OPTIONAL_TOOLS))
        for group, names in groups:
            click.echo(f"{group}:")
            for name in names:
                info = tools[name]
                path_info = f" ({info.path})" if info.path and verbose else ""
                click.echo(
                    f"  {_format_status(info.is_available())} {name}: "
                    f"{_format_version(info)}{path_info}"
                )
                if not info.is_available():
                    click.echo(f"    └─ {TOOL_SPECS[name].install_hint}")
            click.echo()

        click.echo("Hardware encoder:")
        if hardware is None:
            click.echo(f"  ? {config.encode.hardware_encoder}: ffmpeg unavailable")
        else:
            click.echo(
                f"  {_format_status(hardware)} {config.encode.hardware_encoder}"
                f"{'' if hardware else ': not usable, software encoder will be used'}"
            )

    if missing_required:
        ctx.exit(ExitCode.PREREQUISITE_FAILED)
