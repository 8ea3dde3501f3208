"""Configuration loader with precedence handling.

Configuration is loaded with the following precedence (highest to lowest):
1. CLI arguments (passed as a ConfigSource)
2. Environment variables (ENCODEGATE_*)
3. Config file (~/.encodegate/config.toml)
4. Default values

Environment variables:
- ENCODEGATE_CONFIG_PATH: Path to config file (overrides default location)
- ENCODEGATE_FFMPEG_PATH, ENCODEGATE_FFPROBE_PATH, ENCODEGATE_MKVPROPEDIT_PATH,
  ENCODEGATE_HDR10PLUS_TOOL_PATH, ENCODEGATE_DOVI_TOOL_PATH: tool paths
- ENCODEGATE_LOG_LEVEL, ENCODEGATE_LOG_FILE, ENCODEGATE_LOG_FORMAT: logging
- ENCODEGATE_AUDIO_LANGUAGES: comma-separated accepted audio languages
- ENCODEGATE_QUALITY: explicit encoder quality override
- ENCODEGATE_USE_HARDWARE, ENCODEGATE_SOFTWARE_FALLBACK: encoder selection
- ENCODEGATE_SCHEDULER_URL, ENCODEGATE_SCHEDULER_API_KEY: batch engine status
- ENCODEGATE_TEMP_DIR: base directory for run-scoped temp directories
"""

from __future__ import annotations

import logging
import os
import threading
import tomllib
from pathlib import Path
from typing import Any

from encodegate.config.builder import (
    ConfigBuilder,
    ConfigSource,
    source_from_env,
    source_from_file,
)
from encodegate.config.env import EnvReader
from encodegate.config.models import EncodeGateConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".encodegate"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

# path -> (parsed dict, mtime)
_config_cache: dict[Path, tuple[dict[str, Any], float]] = {}
_config_cache_lock = threading.Lock()


class ConfigFileError(Exception):
    """Raised when a config file exists but cannot be parsed."""


def get_default_config_path() -> Path:
    """Get the default config file path, honouring ENCODEGATE_CONFIG_PATH."""
    env_path = os.environ.get("ENCODEGATE_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_FILE


def load_config_file(path: Path | None = None, *, strict: bool = False) -> dict:
    """Load configuration from a TOML file.

    Results are cached with mtime-based invalidation.

    Args:
        path: Path to config file. If None, uses default location.
        strict: If True, raise ConfigFileError on parse failures.
            If False (default), log and return an empty dict.

    Returns:
        Parsed configuration dict. Empty dict if file doesn't exist.
    """
    if path is None:
        path = get_default_config_path()

    try:
        current_mtime = path.stat().st_mtime
    except FileNotFoundError:
        logger.debug("Config file not found: %s", path)
        return {}

    with _config_cache_lock:
        cached = _config_cache.get(path)
        if cached is not None and cached[1] == current_mtime:
            return cached[0]

        try:
            with path.open("rb") as f:
                result = tomllib.load(f)
        except (tomllib.TOMLDecodeError, OSError) as e:
            if strict:
                raise ConfigFileError(f"Cannot parse config file {path}: {e}") from e
            logger.warning("Ignoring unparseable config file %s: %s", path, e)
            result = {}

        _config_cache[path] = (result, current_mtime)
        return result


def clear_config_cache() -> None:
    """Clear the config file cache. Primarily useful for testing."""
    with _config_cache_lock:
        _config_cache.clear()


def get_config(
    config_path: Path | None = None,
    cli_source: ConfigSource | None = None,
    env_reader: EnvReader | None = None,
    *,
    strict: bool = False,
) -> EncodeGateConfig:
    """Get configuration with full precedence handling.

    Args:
        config_path: Path to config file (overrides ENCODEGATE_CONFIG_PATH).
        cli_source: Values given on the command line.
        env_reader: Optional EnvReader for testing (uses os.environ if None).
        strict: If True, raise ConfigFileError on config file parse failures.

    Returns:
        EncodeGateConfig with merged configuration.

    Raises:
        ValueError: If the merged values fail validation.
        ConfigFileError: When strict=True and the config file is unparseable.
    """
    reader = env_reader or EnvReader()
    file_config = load_config_file(config_path, strict=strict)

    builder = ConfigBuilder()
    builder.apply(source_from_file(file_config), source_name="file")
    builder.apply(source_from_env(reader), source_name="env")
    if cli_source is not None:
        builder.apply(cli_source, source_name="cli")

    return builder.build()
