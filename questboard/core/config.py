"""Configuration management for questboard."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Remote Task Store Configuration
    api_base_url: str = Field(default="http://127.0.0.1:8000/api", description="Remote task store base URL")
    api_token: str | None = Field(default=None, description="Bearer token for the remote task store")
    remote_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Upper bound for every reset/complete/uncomplete call (in seconds)"
    )

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Redis Configuration (optional)
    redis_url: str | None = Field(
        default=None, description="Redis connection URL for day markers and cached views (e.g., redis://localhost:6379)"
    )

    # Session Timing
    countdown_tick_seconds: int = Field(default=1, ge=1, description="Countdown refresh period (in seconds)")
    rollover_check_interval_seconds: int = Field(
        default=60, ge=1, description="How often an open session re-checks for a day rollover (in seconds)"
    )

    # Board Behaviour
    stale_rejection_threshold: int = Field(
        default=3, ge=1, description="Stale-state rejections of one task before it is reported as a hard failure"
    )
    notification_dismiss_seconds: int = Field(
        default=6, ge=1, description="Lifetime of reset banners and transient error notifications (in seconds)"
    )

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value


# Application Constants
class Constants:
    """Application-wide constants."""

    # Day arithmetic
    MS_PER_DAY: int = 86_400_000
    SECONDS_PER_DAY: int = 86_400

    # Task drafts
    XP_REWARD_MIN: int = 1
    XP_REWARD_MAX: int = 1000

    # HTTP Status Codes
    HTTP_BAD_REQUEST: int = 400
    HTTP_NOT_FOUND: int = 404
    HTTP_CONFLICT: int = 409
    HTTP_UNPROCESSABLE: int = 422
    HTTP_SERVER_ERROR: int = 500

    # Task list pagination
    DEFAULT_PAGE: int = 1
    DEFAULT_PAGE_LIMIT: int = 20

    # Key-value layout
    KEY_PREFIX: str = "questboard"
    DAY_MARKER_NAMESPACE: str = "day_marker"
    VIEW_NAMESPACES: tuple[str, ...] = ("dailyTasks", "userData", "taskStats", "userBadges")

    # Cache TTLs
    CACHE_TTL_TASK_VIEW_SECONDS: int = 300  # 5 minutes for cached task lists and stats

    # Recurrence previews
    RECURRENCE_LOOKAHEAD_DAYS: int = 366 * 5

    # Redis Configuration
    REDIS_MAX_CONNECTIONS: int = 10  # Maximum connections in Redis connection pool


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
