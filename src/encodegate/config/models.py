"""Configuration data models.

This module defines dataclasses for encodegate configuration options.
Validation lives in ``__post_init__`` so that every construction path
(file, environment, CLI overrides) is checked the same way.
"""

from dataclasses import dataclass, field
from pathlib import Path

# Quality-acceptance floors that adapted thresholds may never go below.
PSNR_FLOOR_DB = 20.0
SSIM_FLOOR = 0.85

# Bounds for the derived encoder quality value (lower is better).
QUALITY_MIN = 10
QUALITY_MAX = 23


@dataclass
class ToolPathsConfig:
    """Configuration for external tool paths.

    All paths are optional. If not specified, tools are looked up in PATH.
    """

    ffmpeg: Path | None = None
    ffprobe: Path | None = None
    mkvpropedit: Path | None = None
    hdr10plus_tool: Path | None = None
    dovi_tool: Path | None = None


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "info"
    file: Path | None = None
    format: str = "text"
    include_stderr: bool = True
    max_bytes: int = 10_485_760
    backup_count: int = 5

    def __post_init__(self) -> None:
        valid_levels = {"debug", "info", "warning", "error"}
        if self.level.casefold() not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}, got {self.level}")
        valid_formats = {"text", "json"}
        if self.format.casefold() not in valid_formats:
            raise ValueError(
                f"format must be one of {valid_formats}, got {self.format}"
            )
        if self.max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        if self.backup_count < 0:
            raise ValueError("backup_count must be non-negative")


@dataclass
class SelectionConfig:
    """Audio and subtitle stream selection settings."""

    audio_languages: list[str] = field(default_factory=lambda: ["eng"])
    """Languages an audio stream may carry to be considered at all."""

    accept_undefined_language: bool = True
    """Treat "und"/missing language tags as acceptable audio."""

    audio_probe_window_seconds: float = 30.0
    """Length of the decode window used by the audio usability probe."""

    audio_probe_timeout_seconds: float = 120.0

    max_duration_retries: int = 3
    """Next-best candidates tried after a duration-compatibility failure."""

    max_subtitles: int = 5

    discover_external_subtitles: bool = True

    def __post_init__(self) -> None:
        if not self.audio_languages and not self.accept_undefined_language:
            raise ValueError("audio_languages is empty and undefined is rejected")
        if self.audio_probe_window_seconds <= 0:
            raise ValueError("audio_probe_window_seconds must be positive")
        if self.max_subtitles < 0:
            raise ValueError("max_subtitles must be non-negative")


@dataclass
class EncodeConfig:
    """Video encode settings and encode attempt controller behavior."""

    hardware_encoder: str = "hevc_nvenc"
    software_encoder: str = "libx265"
    hardware_preset: str = "p6"
    software_preset: str = "slow"

    use_hardware: bool = True
    """Attempt the hardware path first."""

    allow_software_fallback: bool = True
    """Permit the software path after hardware unavailability or Severe defects."""

    quality_override: int | None = None
    """Explicit quality value; bypasses derivation and clamping entirely."""

    sharpen: bool = True
    """Apply the tier's unsharp filter to the encode."""

    complexity_sampling: bool = False
    complexity_window_seconds: float = 10.0
    complexity_timeout_seconds: float = 120.0

    encode_timeout_seconds: float | None = None
    """Per-attempt encode timeout. None derives it from the source duration
    (ten times the duration, at least one hour)."""

    capability_probe_timeout_seconds: float = 60.0
    min_output_bytes: int = 65_536
    diagnostic_line_budget: int = 200_000

    def __post_init__(self) -> None:
        if self.quality_override is not None and self.quality_override < 0:
            raise ValueError("quality_override must be non-negative")
        timeout = self.encode_timeout_seconds
        if timeout is not None and timeout <= 0:
            raise ValueError("encode_timeout_seconds must be positive")
        if self.min_output_bytes < 0:
            raise ValueError("min_output_bytes must be non-negative")
        if self.diagnostic_line_budget <= 0:
            raise ValueError("diagnostic_line_budget must be positive")


@dataclass
class QualityConfig:
    """Quality validator settings."""

    enabled: bool = True
    ceiling_analysis: bool = True
    ceiling_samples: int = 3
    sample_count: int = 5
    sample_seconds: float = 5.0
    intro_skip_seconds: float = 60.0

    base_psnr: float = 35.0
    base_ssim: float = 0.95
    psnr_tolerance: float = 5.0
    ssim_tolerance: float = 0.02

    efficiency_override_percent: float = 90.0
    """SSIM efficiency above this forces a failing verdict to pass."""

    retry_quality_step: int = 2
    """How much lower the suggested retry quality is than the rejected one."""

    timeout_seconds: float = 600.0

    def __post_init__(self) -> None:
        if self.base_psnr < PSNR_FLOOR_DB:
            raise ValueError(f"base_psnr must be >= {PSNR_FLOOR_DB}")
        if not SSIM_FLOOR <= self.base_ssim <= 1.0:
            raise ValueError(f"base_ssim must be between {SSIM_FLOOR} and 1.0")
        if self.sample_count < 1:
            raise ValueError("sample_count must be at least 1")
        if self.sample_seconds <= 0:
            raise ValueError("sample_seconds must be positive")
        if self.psnr_tolerance < 0 or self.ssim_tolerance < 0:
            raise ValueError("tolerances must be non-negative")


@dataclass
class HdrConfig:
    """HDR metadata handling."""

    strip_dolby_vision: bool = True
    preserve_hdr10plus: bool = True
    tool_timeout_seconds: float = 1800.0


@dataclass
class MuxConfig:
    """Final container assembly."""

    audio_copy_codecs: list[str] = field(
        default_factory=lambda: [
            "aac",
            "ac3",
            "eac3",
            "truehd",
            "flac",
            "opus",
            "dts",
        ]
    )
    audio_fallback_codec: str = "eac3"
    audio_fallback_bitrate: str = "640k"
    timeout_seconds: float = 3600.0


@dataclass
class BackgroundConfig:
    """Background task settings (archival copy, disk monitor, scheduler)."""

    archive_dir: Path | None = None

    disk_poll_interval_seconds: float = 30.0
    disk_soft_limit_gb: float = 20.0
    disk_hard_limit_gb: float = 5.0

    scheduler_url: str | None = None
    """Status endpoint of a co-resident batch engine; None disables coordination."""

    scheduler_api_key: str | None = None
    scheduler_poll_interval_seconds: float = 15.0
    scheduler_timeout_seconds: float = 5.0
    scheduler_max_failures: int = 3

    def __post_init__(self) -> None:
        if self.disk_hard_limit_gb > self.disk_soft_limit_gb:
            raise ValueError("disk_hard_limit_gb must not exceed disk_soft_limit_gb")
        if self.scheduler_url is not None and not self.scheduler_url.startswith(
            ("http://", "https://")
        ):
            raise ValueError("scheduler_url must start with http:// or https://")
        if self.scheduler_max_failures < 1:
            raise ValueError("scheduler_max_failures must be at least 1")


@dataclass
class EncodeGateConfig:
    """Main configuration container."""

    tools: ToolPathsConfig = field(default_factory=ToolPathsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    encode: EncodeConfig = field(default_factory=EncodeConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    hdr: HdrConfig = field(default_factory=HdrConfig)
    mux: MuxConfig = field(default_factory=MuxConfig)
    background: BackgroundConfig = field(default_factory=BackgroundConfig)

    temp_directory: Path | None = None
    """Base directory for run-scoped temp directories (None = system temp)."""

    replace_original: bool = False
    """Replace the source file once the output passes the quality gate."""
