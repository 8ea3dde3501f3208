"""CLI module for encodegate."""

import logging
from dataclasses import replace
from pathlib import Path

import click

from encodegate.config.builder import ConfigSource
from encodegate.config.loader import ConfigFileError, get_config
from encodegate.config.models import EncodeGateConfig

_logging_configured: bool = False

logger = logging.getLogger(__name__)


def _configure_logging(config: EncodeGateConfig) -> None:
    """Configure logging once per process."""
    global _logging_configured
    if _logging_configured:
        return

    from encodegate.logging.config import configure_logging

    configure_logging(config.logging)
    _logging_configured = True


def load_effective_config(
    ctx: click.Context, overrides: ConfigSource | None = None
) -> EncodeGateConfig:
    """Build the effective config from file, environment and CLI values.

    ``overrides`` holds command-specific flags; they are layered over the
    global options stored on the click context.

    Raises:
        click.ClickException: If the config file or a value is invalid.
    """
    obj = ctx.ensure_object(dict)
    cli_source: ConfigSource = obj.get("cli_source", ConfigSource())
    if overrides is not None:
        changed = {
            name: value
            for name, value in vars(overrides).items()
            if value is not None
        }
        cli_source = replace(cli_source, **changed)
    try:
        return get_config(obj.get("config_path"), cli_source, strict=True)
    except (ConfigFileError, ValueError) as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e


@click.group()
@click.version_option(package_name="encodegate")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Override log level (default: info).",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Override log file path.",
)
@click.option(
    "--log-json",
    is_flag=True,
    default=False,
    help="Use JSON log format.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Config file (default: ~/.encodegate/config.toml).",
)
@click.pass_context
def main(
    ctx: click.Context,
    log_level: str | None,
    log_file: Path | None,
    log_json: bool,
    config_path: Path | None,
) -> None:
    """encodegate - quality-gated HEVC transcoding."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["cli_source"] = ConfigSource(
        logging_level=log_level,
        logging_file=log_file,
        logging_format="json" if log_json else None,
    )

    _configure_logging(load_effective_config(ctx))


# Defer import to avoid circular dependency
def _register_commands():
    from encodegate.cli.doctor import doctor_command
    from encodegate.cli.probe import probe_command
    from encodegate.cli.run import run_command

    main.add_command(run_command)
    main.add_command(probe_command)
    main.add_command(doctor_command)


_register_commands()
