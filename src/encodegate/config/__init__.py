"""Configuration for encodegate.

Configuration is layered: CLI > environment > config file > defaults.
"""

from encodegate.config.builder import ConfigBuilder, ConfigSource
from encodegate.config.env import EnvReader
from encodegate.config.loader import (
    ConfigFileError,
    clear_config_cache,
    get_config,
    get_default_config_path,
    load_config_file,
)
from encodegate.config.models import (
    PSNR_FLOOR_DB,
    QUALITY_MAX,
    QUALITY_MIN,
    SSIM_FLOOR,
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

__all__ = [
    "PSNR_FLOOR_DB",
    "QUALITY_MAX",
    "QUALITY_MIN",
    "SSIM_FLOOR",
    "BackgroundConfig",
    "ConfigBuilder",
    "ConfigFileError",
    "ConfigSource",
    "EncodeConfig",
    "EncodeGateConfig",
    "EnvReader",
    "HdrConfig",
    "LoggingConfig",
    "MuxConfig",
    "QualityConfig",
    "SelectionConfig",
    "ToolPathsConfig",
    "clear_config_cache",
    "get_config",
    "get_default_config_path",
    "load_config_file",
]
