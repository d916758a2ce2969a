# src/storytree/config/__init__.py
"""Configuration package for storytree."""

from .config import (
    DatabaseConfig,
    PullRequestConfig,
    StoryTreeConfig,
    SystemConfig,
    TransactionConfig,
    config,
)

__all__ = [
    "StoryTreeConfig",
    "DatabaseConfig",
    "SystemConfig",
    "TransactionConfig",
    "PullRequestConfig",
    "config",
]
