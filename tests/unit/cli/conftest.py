"""Fixtures for CLI tests."""

import os
from unittest.mock import patch

import pytest

from encodegate.config.loader import clear_config_cache


@pytest.fixture(autouse=True)
def isolated_cli(monkeypatch, temp_dir):
    """Keep CLI tests away from the user's config, env and logging setup."""
    for name in list(os.environ):
        if name.startswith("ENCODEGATE_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("ENCODEGATE_CONFIG_PATH", str(temp_dir / "absent.toml"))
    clear_config_cache()
    with patch("encodegate.cli._configure_logging"):
        yield
    clear_config_cache()
