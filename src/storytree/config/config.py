# src/storytree/config/config.py
"""Configuration system for storytree."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def env_field(default: Any, env: str) -> Any:
    """Return a pydantic ``Field`` bound to the environment variable ``env``."""
    return Field(default=default, json_schema_extra={"env": env})


class DatabaseConfig(BaseModel):
    """Database configuration settings."""

    database_url: str = env_field("", "STORYTREE_DATABASE_URL")
    postgres_user: str = env_field("storytree", "POSTGRES_USER")
    postgres_password: str = env_field("storytree_password", "POSTGRES_PASSWORD")
    postgres_db: str = env_field("storytree", "POSTGRES_DB")
    postgres_host: str = env_field("localhost", "POSTGRES_HOST")
    postgres_port: str = env_field("5432", "POSTGRES_PORT")
    echo: bool = env_field(False, "STORYTREE_DATABASE_ECHO")

    @property
    def url(self) -> str:
        """Return the explicit URL if set, otherwise a psycopg PostgreSQL URL."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}@"
            f"{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )


class SystemConfig(BaseModel):
    """System configuration settings."""

    log_level: str = env_field("INFO", "STORYTREE_LOG_LEVEL")
    log_format: str = env_field("", "STORYTREE_LOG_FORMAT")
    log_file: str = env_field("", "STORYTREE_LOG_FILE")
    # Exposes tracebacks in serialized errors.
    debug: bool = env_field(False, "STORYTREE_DEBUG")


class TransactionConfig(BaseModel):
    """Transaction timeout and retry settings."""

    timeout: float = env_field(30.0, "TRANSACTION_TIMEOUT")
    retry_attempts: int = env_field(3, "TRANSACTION_RETRY_ATTEMPTS")
    retry_backoff: float = env_field(0.5, "TRANSACTION_RETRY_BACKOFF")


class PullRequestConfig(BaseModel):
    """Pull request defaults applied when a story does not override them."""

    default_auto_approve_threshold: int = env_field(10, "PR_AUTO_APPROVE_THRESHOLD")
    default_auto_approve_time_window: int = env_field(7, "PR_AUTO_APPROVE_TIME_WINDOW")
    default_required_approvals: int = env_field(1, "PR_REQUIRED_APPROVALS")
    max_content_length: int = env_field(100_000, "PR_MAX_CONTENT_LENGTH")


class StoryTreeConfig(BaseModel):
    """Main configuration class."""

    model_config = ConfigDict(extra="ignore")

    database: DatabaseConfig = DatabaseConfig()
    system: SystemConfig = SystemConfig()
    transaction: TransactionConfig = TransactionConfig()
    pull_request: PullRequestConfig = PullRequestConfig()

    @staticmethod
    def _section_from_env(
        section: type[BaseModel], environ: dict[str, str]
    ) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for name, info in section.model_fields.items():
            extra = info.json_schema_extra
            env = extra.get("env") if isinstance(extra, dict) else None
            if env and env in environ:
                values[name] = environ[env]
        return values

    @classmethod
    def load(cls, environ: dict[str, str] | None = None) -> StoryTreeConfig:
        """Load configuration from environment variables."""
        environ = dict(os.environ if environ is None else environ)
        data = {
            name: cls._section_from_env(info.annotation, environ)  # type: ignore[arg-type]
            for name, info in cls.model_fields.items()
        }
        return cls.model_validate(data)


# Global configuration instance
config = StoryTreeConfig.load()
