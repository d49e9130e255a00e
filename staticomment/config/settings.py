"""Application settings using Pydantic Settings for environment-based configuration."""

import posixpath
import re
from functools import lru_cache
from typing import Literal
from urllib.parse import urlsplit

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _clean_relative_path(value: str, name: str) -> str:
    if value.startswith("/") or re.match(r"^[A-Za-z]:[\\/]", value):
        raise ValueError(f"{name} must be a relative path")
    cleaned = posixpath.normpath(value.replace("\\", "/"))
    if cleaned == ".." or cleaned.startswith("../"):
        raise ValueError(f"{name} must not escape the repo directory")
    return cleaned


class Settings(BaseSettings):
    """
    Central configuration for the staticomment service.

    Every field can be overridden with a ``STATICOMMENT_``-prefixed
    environment variable (e.g. ``STATICOMMENT_GIT_REPO``). ``git_repo`` and
    ``allowed_origins`` have no defaults and must be provided.
    """

    model_config = SettingsConfigDict(
        env_prefix="STATICOMMENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Git remote and working copy
    git_repo: str = Field(..., min_length=1, description="Remote repository URL")
    branch: str = "main"
    repo_dir: str = "/app/repo"
    comments_path: str = "_data/comments"
    posts_path: str = Field(
        default="",
        description="Posts directory inside the repo; empty disables post-existence checks",
    )
    git_user_name: str = "staticomment"
    git_user_email: str = "staticomment@localhost"
    push_max_retries: int = Field(default=3, ge=1, le=10)

    # SSH transport
    ssh_key_path: str = "/app/.ssh/id_ed25519"
    known_hosts_path: str = "/app/.ssh/known_hosts"
    ssh_insecure: bool = False

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 8080
    allowed_origins: str = Field(..., description="Comma-separated scheme://host origins")
    request_timeout_seconds: float = Field(default=60.0, ge=0.0)
    max_request_bytes: int = Field(default=64 * 1024, ge=1)
    max_body_length: int = Field(default=10_000, ge=1)

    # Spam mitigation
    honeypot_field: str = "website"
    timestamp_field: str = "_timestamp"
    min_submit_time: int = Field(default=5, ge=0)
    rate_limit_window: int = Field(default=60, ge=0)
    rate_limit_max: int = Field(default=5, ge=0)
    max_links: int = Field(default=3, ge=0)
    blocked_patterns: str = ""

    # Observability
    metrics_port: int = Field(default=0, ge=0)

    @field_validator("comments_path")
    @classmethod
    def _validate_comments_path(cls, value: str) -> str:
        return _clean_relative_path(value, "comments_path")

    @field_validator("posts_path")
    @classmethod
    def _validate_posts_path(cls, value: str) -> str:
        if not value:
            return value
        return _clean_relative_path(value, "posts_path")

    @field_validator("allowed_origins")
    @classmethod
    def _validate_allowed_origins(cls, value: str) -> str:
        origins = _split_csv(value)
        if not origins:
            raise ValueError("allowed_origins must contain at least one origin")
        for origin in origins:
            parts = urlsplit(origin)
            if not parts.scheme or not parts.netloc:
                raise ValueError(
                    f"invalid origin {origin!r} (must include scheme and host, "
                    "e.g. https://example.com)"
                )
        return value

    @field_validator("blocked_patterns")
    @classmethod
    def _validate_blocked_patterns(cls, value: str) -> str:
        for pattern in _split_csv(value):
            try:
                re.compile(pattern, re.IGNORECASE)
            except re.error as e:
                raise ValueError(f"invalid regex {pattern!r}: {e}") from e
        return value

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def allowed_origin_list(self) -> list[str]:
        """Allowed origins as a list, in configuration order."""
        return _split_csv(self.allowed_origins)

    @property
    def blocked_pattern_list(self) -> list[re.Pattern[str]]:
        """Blocked body patterns compiled case-insensitive."""
        return [re.compile(p, re.IGNORECASE) for p in _split_csv(self.blocked_patterns)]

    @property
    def post_validation_enabled(self) -> bool:
        return bool(self.posts_path)

    @property
    def rate_limit_enabled(self) -> bool:
        return self.rate_limit_max > 0


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    Clear cache with get_settings.cache_clear() if needed.
    """
    return Settings()
