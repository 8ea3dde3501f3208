"""Configuration builder with layered precedence.

Each configuration layer (file, environment, CLI) is turned into a
ConfigSource in which None means "not specified". ConfigBuilder applies the
sources in order so that later non-None values override earlier ones, then
builds the section dataclasses, which validate themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from encodegate.config.env import ENV_PREFIX, EnvReader
from encodegate.config.models import (
    BackgroundConfig,
    EncodeConfig,
    EncodeGateConfig,
    HdrConfig,
    LoggingConfig,
    MuxConfig,
    QualityConfig,
    SelectionConfig,
    ToolPathsConfig,
)

logger = logging.getLogger(__name__)

# Source field prefix -> section dataclass. A ConfigSource field named
# "<prefix>_<name>" fills <name> on that section.
_SECTIONS: dict[str, type] = {
    "tools": ToolPathsConfig,
    "logging": LoggingConfig,
    "selection": SelectionConfig,
    "encode": EncodeConfig,
    "quality": QualityConfig,
    "hdr": HdrConfig,
    "mux": MuxConfig,
    "background": BackgroundConfig,
}

_ROOT_FIELDS = frozenset({"temp_directory", "replace_original"})


@dataclass
class ConfigSource:
    """Intermediate representation of configuration from a single source.

    All fields default to None, meaning "not specified by this source".
    """

    # Tool paths
    tools_ffmpeg: Path | None = None
    tools_ffprobe: Path | None = None
    tools_mkvpropedit: Path | None = None
    tools_hdr10plus_tool: Path | None = None
    tools_dovi_tool: Path | None = None

    # Logging
    logging_level: str | None = None
    logging_file: Path | None = None
    logging_format: str | None = None
    logging_include_stderr: bool | None = None
    logging_max_bytes: int | None = None
    logging_backup_count: int | None = None

    # Selection
    selection_audio_languages: list[str] | None = None
    selection_accept_undefined_language: bool | None = None
    selection_audio_probe_window_seconds: float | None = None
    selection_audio_probe_timeout_seconds: float | None = None
    selection_max_duration_retries: int | None = None
    selection_max_subtitles: int | None = None
    selection_discover_external_subtitles: bool | None = None

    # Encode
    encode_hardware_encoder: str | None = None
    encode_software_encoder: str | None = None
    encode_hardware_preset: str | None = None
    encode_software_preset: str | None = None
    encode_use_hardware: bool | None = None
    encode_allow_software_fallback: bool | None = None
    encode_quality_override: int | None = None
    encode_sharpen: bool | None = None
    encode_complexity_sampling: bool | None = None
    encode_complexity_window_seconds: float | None = None
    encode_complexity_timeout_seconds: float | None = None
    encode_encode_timeout_seconds: float | None = None
    encode_capability_probe_timeout_seconds: float | None = None
    encode_min_output_bytes: int | None = None
    encode_diagnostic_line_budget: int | None = None

    # Quality
    quality_enabled: bool | None = None
    quality_ceiling_analysis: bool | None = None
    quality_ceiling_samples: int | None = None
    quality_sample_count: int | None = None
    quality_sample_seconds: float | None = None
    quality_intro_skip_seconds: float | None = None
    quality_base_psnr: float | None = None
    quality_base_ssim: float | None = None
    quality_psnr_tolerance: float | None = None
    quality_ssim_tolerance: float | None = None
    quality_efficiency_override_percent: float | None = None
    quality_retry_quality_step: int | None = None
    quality_timeout_seconds: float | None = None

    # HDR
    hdr_strip_dolby_vision: bool | None = None
    hdr_preserve_hdr10plus: bool | None = None
    hdr_tool_timeout_seconds: float | None = None

    # Mux
    mux_audio_copy_codecs: list[str] | None = None
    mux_audio_fallback_codec: str | None = None
    mux_audio_fallback_bitrate: str | None = None
    mux_timeout_seconds: float | None = None

    # Background tasks
    background_archive_dir: Path | None = None
    background_disk_poll_interval_seconds: float | None = None
    background_disk_soft_limit_gb: float | None = None
    background_disk_hard_limit_gb: float | None = None
    background_scheduler_url: str | None = None
    background_scheduler_api_key: str | None = None
    background_scheduler_poll_interval_seconds: float | None = None
    background_scheduler_timeout_seconds: float | None = None
    background_scheduler_max_failures: int | None = None

    # Top level
    temp_directory: Path | None = None
    replace_original: bool | None = None


class ConfigBuilder:
    """Builds EncodeGateConfig by layering ConfigSources with precedence.

    Example:
        builder = ConfigBuilder()
        builder.apply(source_from_file(file_config), source_name="file")
        builder.apply(source_from_env(reader), source_name="env")
        builder.apply(cli_source, source_name="cli")
        config = builder.build()
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._origins: dict[str, str] = {}

    def apply(self, source: ConfigSource, source_name: str = "unknown") -> None:
        """Apply a configuration source, overriding existing values.

        Non-None values from the source override existing values. None
        values are ignored.
        """
        for field_obj in fields(source):
            value = getattr(source, field_obj.name)
            if value is not None:
                self._values[field_obj.name] = value
                self._origins[field_obj.name] = source_name

    def origin(self, key: str) -> str:
        """Name of the source that supplied a key, or "default"."""
        return self._origins.get(key, "default")

    def _section_kwargs(self, prefix: str) -> dict[str, Any]:
        head = prefix + "_"
        return {
            key[len(head) :]: value
            for key, value in self._values.items()
            if key.startswith(head)
        }

    def build(self) -> EncodeGateConfig:
        """Build the final EncodeGateConfig with defaults for unset values.

        Raises:
            ValueError: If any section fails its own validation.
        """
        sections = {
            prefix: section_cls(**self._section_kwargs(prefix))
            for prefix, section_cls in _SECTIONS.items()
        }
        root = {key: self._values[key] for key in _ROOT_FIELDS if key in self._values}
        return EncodeGateConfig(**sections, **root)


def _path(value: Any) -> Path | None:
    return Path(value).expanduser() if value else None


_PATH_FIELDS = frozenset(
    {
        "tools_ffmpeg",
        "tools_ffprobe",
        "tools_mkvpropedit",
        "tools_hdr10plus_tool",
        "tools_dovi_tool",
        "logging_file",
        "background_archive_dir",
        "temp_directory",
    }
)


def source_from_file(file_config: dict[str, Any]) -> ConfigSource:
    """Create ConfigSource from a parsed TOML config file.

    Sections map one-to-one onto config sections (``[encode]``,
    ``[quality]``...). Top-level keys fill the top-level fields. Unknown
    keys are reported and ignored.

    Args:
        file_config: Parsed configuration dictionary from TOML file.
    """
    known = {f.name for f in fields(ConfigSource)}
    values: dict[str, Any] = {}

    for key, value in file_config.items():
        if isinstance(value, dict):
            if key not in _SECTIONS:
                logger.warning("Ignoring unknown config section [%s]", key)
                continue
            for sub_key, sub_value in value.items():
                name = f"{key}_{sub_key}"
                if name not in known:
                    logger.warning("Ignoring unknown config key %s.%s", key, sub_key)
                    continue
                values[name] = sub_value
        elif key in _ROOT_FIELDS:
            values[key] = value
        else:
            logger.warning("Ignoring unknown config key %s", key)

    for name in _PATH_FIELDS & values.keys():
        values[name] = _path(values[name])

    return ConfigSource(**values)


def source_from_env(reader: EnvReader) -> ConfigSource:
    """Create ConfigSource from ``ENCODEGATE_*`` environment variables."""
    p = ENV_PREFIX
    return ConfigSource(
        # Tool paths
        tools_ffmpeg=reader.get_path(f"{p}FFMPEG_PATH"),
        tools_ffprobe=reader.get_path(f"{p}FFPROBE_PATH"),
        tools_mkvpropedit=reader.get_path(f"{p}MKVPROPEDIT_PATH"),
        tools_hdr10plus_tool=reader.get_path(f"{p}HDR10PLUS_TOOL_PATH"),
        tools_dovi_tool=reader.get_path(f"{p}DOVI_TOOL_PATH"),
        # Logging
        logging_level=reader.get_str(f"{p}LOG_LEVEL"),
        logging_file=reader.get_path(f"{p}LOG_FILE", must_exist=False),
        logging_format=reader.get_str(f"{p}LOG_FORMAT"),
        # Selection
        selection_audio_languages=reader.get_list(f"{p}AUDIO_LANGUAGES"),
        # Encode
        encode_use_hardware=reader.get_bool(f"{p}USE_HARDWARE"),
        encode_allow_software_fallback=reader.get_bool(f"{p}SOFTWARE_FALLBACK"),
        encode_quality_override=reader.get_int(f"{p}QUALITY"),
        encode_complexity_sampling=reader.get_bool(f"{p}COMPLEXITY_SAMPLING"),
        encode_encode_timeout_seconds=reader.get_float(f"{p}ENCODE_TIMEOUT"),
        # Quality
        quality_enabled=reader.get_bool(f"{p}VALIDATE_QUALITY"),
        quality_ceiling_analysis=reader.get_bool(f"{p}CEILING_ANALYSIS"),
        # HDR
        hdr_strip_dolby_vision=reader.get_bool(f"{p}STRIP_DOLBY_VISION"),
        # Background
        background_archive_dir=reader.get_path(f"{p}ARCHIVE_DIR", must_exist=False),
        background_scheduler_url=reader.get_str(f"{p}SCHEDULER_URL"),
        background_scheduler_api_key=reader.get_str(f"{p}SCHEDULER_API_KEY"),
        # Top level
        temp_directory=reader.get_path(f"{p}TEMP_DIR"),
    )
