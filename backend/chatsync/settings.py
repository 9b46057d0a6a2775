"""Settings for the chat sync core."""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
    if env_names:
        alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
        return Field(default=default, validation_alias=alias)
    return Field(default=default)


class Settings(BaseSettings):
    service_name: str = _env_field("chatsync", "SERVICE_NAME")
    environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")
    git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")

    obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
    obs_log_sampling_rate_info: float = _env_field(1.0, "LOG_SAMPLING_RATE_INFO")

    # Hierarchical store (redis backend)
    redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_key_prefix: str = _env_field("chatsync:", "REDIS_KEY_PREFIX")
    # Subscriptions poll the per-collection stream at this interval
    redis_poll_interval_seconds: float = _env_field(0.25, "REDIS_POLL_INTERVAL_SECONDS")

    # Object storage
    storage_base_url: str = _env_field("http://localhost:54321", "STORAGE_BASE_URL")
    storage_api_key: Optional[str] = _env_field(None, "STORAGE_API_KEY")
    storage_bucket: str = _env_field("images", "STORAGE_BUCKET")
    storage_timeout_seconds: float = _env_field(30.0, "STORAGE_TIMEOUT_SECONDS")
    image_max_bytes: int = _env_field(8 * 1024 * 1024, "IMAGE_MAX_BYTES")
    file_max_bytes: int = _env_field(25 * 1024 * 1024, "FILE_MAX_BYTES")

    placeholder_avatar_url: str = _env_field("https://via.placeholder.com/50", "PLACEHOLDER_AVATAR_URL")

    # Keys used in the local secure cache for "remember me"
    remember_email_key: str = _env_field("email", "REMEMBER_EMAIL_KEY")
    remember_password_key: str = _env_field("password", "REMEMBER_PASSWORD_KEY")

    def remember_keys(self) -> tuple[str, ...]:
        return (self.remember_email_key, self.remember_password_key)

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("obs_log_level", mode="before")
    def _normalise_level(cls, value):  # type: ignore[override]
        return str(value or "INFO").upper()

    @field_validator("obs_log_sampling_rate_info", mode="before")
    def _clamp_rate(cls, value):  # type: ignore[override]
        if value in (None, ""):
            return 1.0
        return max(0.0, min(1.0, float(value)))


settings = Settings()
