# src/storytree/core/env.py
"""Environment configuration utilities."""

from __future__ import annotations

from dotenv import load_dotenv

from storytree import config as _config_pkg
from storytree.config import StoryTreeConfig


def load_env(*, reload_config: bool = True) -> StoryTreeConfig:
    """Load variables from a local ``.env`` file and refresh the global config."""
    load_dotenv()
    if reload_config:
        _config_pkg.config = StoryTreeConfig.load()
    return _config_pkg.config


def get_config() -> StoryTreeConfig:
    """Get the global configuration instance."""
    return _config_pkg.config


__all__ = ["load_env", "get_config"]
