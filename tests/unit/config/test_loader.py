"""Tests for config file loading and precedence."""

import os
from pathlib import Path

import pytest

from encodegate.config.builder import ConfigSource
from encodegate.config.env import EnvReader
from encodegate.config.loader import (
    DEFAULT_CONFIG_FILE,
    ConfigFileError,
    clear_config_cache,
    get_config,
    get_default_config_path,
    load_config_file,
)


@pytest.fixture(autouse=True)
def _fresh_cache():
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def config_file(temp_dir: Path) -> Path:
    path = temp_dir / "config.toml"
    path.write_text(
        "replace_original = true\n"
        "\n"
        "[encode]\n"
        "quality_override = 24\n"
        "use_hardware = false\n"
        "\n"
        "[quality]\n"
        "base_psnr = 36.0\n"
    )
    return path


class TestLoadConfigFile:
    def test_missing_file_is_empty(self, temp_dir: Path):
        assert load_config_file(temp_dir / "absent.toml") == {}

    def test_parses_toml(self, config_file: Path):
        data = load_config_file(config_file)
        assert data["encode"]["quality_override"] == 24
        assert data["replace_original"] is True

    def test_invalid_toml_lenient(self, temp_dir: Path, caplog):
        path = temp_dir / "bad.toml"
        path.write_text("[encode\nquality = ")
        assert load_config_file(path) == {}
        assert "unparseable" in caplog.text

    def test_invalid_toml_strict(self, temp_dir: Path):
        path = temp_dir / "bad.toml"
        path.write_text("[encode\nquality = ")
        with pytest.raises(ConfigFileError):
            load_config_file(path, strict=True)

    def test_cached_until_mtime_changes(self, config_file: Path):
        first = load_config_file(config_file)
        assert load_config_file(config_file) is first

        config_file.write_text("[encode]\nquality_override = 19\n")
        stat = config_file.stat()
        os.utime(config_file, (stat.st_atime, stat.st_mtime + 10))
        assert load_config_file(config_file)["encode"]["quality_override"] == 19


class TestDefaultConfigPath:
    def test_default(self, monkeypatch):
        monkeypatch.delenv("ENCODEGATE_CONFIG_PATH", raising=False)
        assert get_default_config_path() == DEFAULT_CONFIG_FILE

    def test_env_override(self, monkeypatch, temp_dir: Path):
        monkeypatch.setenv("ENCODEGATE_CONFIG_PATH", str(temp_dir / "c.toml"))
        assert get_default_config_path() == temp_dir / "c.toml"


class TestGetConfig:
    def test_file_values_applied(self, config_file: Path):
        config = get_config(config_file, env_reader=EnvReader(env={}))
        assert config.encode.quality_override == 24
        assert config.encode.use_hardware is False
        assert config.quality.base_psnr == 36.0
        assert config.replace_original is True

    def test_env_beats_file(self, config_file: Path):
        reader = EnvReader(env={"ENCODEGATE_QUALITY": "20"})
        config = get_config(config_file, env_reader=reader)
        assert config.encode.quality_override == 20

    def test_cli_beats_env(self, config_file: Path):
        reader = EnvReader(env={"ENCODEGATE_QUALITY": "20"})
        config = get_config(
            config_file,
            ConfigSource(encode_quality_override=16),
            env_reader=reader,
        )
        assert config.encode.quality_override == 16

    def test_invalid_value_raises(self, temp_dir: Path):
        path = temp_dir / "config.toml"
        path.write_text("[background]\nscheduler_url = 'ftp://host'\n")
        with pytest.raises(ValueError, match="scheduler_url"):
            get_config(path, env_reader=EnvReader(env={}))

    def test_strict_unparseable_raises(self, temp_dir: Path):
        path = temp_dir / "config.toml"
        path.write_text("not = [valid")
        with pytest.raises(ConfigFileError):
            get_config(path, env_reader=EnvReader(env={}), strict=True)
