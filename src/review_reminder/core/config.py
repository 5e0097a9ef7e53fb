"""
Core configuration module.
Organized into separate settings classes, one per concern, each with its own
environment prefix.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GitHubSettings(BaseSettings):
    """GitHub REST API client settings."""

    api_url: str = "https://api.github.com"
    token: str = Field(default="", description="Token used for API requests (REQUIRED)")
    timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request timeout")
    per_page: int = Field(default=100, ge=1, le=100)
    max_pages: int = Field(
        default=10,
        ge=1,
        description="Upper bound on followed pagination links per listing",
    )

    model_config = SettingsConfigDict(
        env_prefix="GITHUB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class SettingsRepoSettings(BaseSettings):
    """Location of the per-installation settings document.

    Every installation keeps its document in a repository of its own account;
    only the repository name and path are configurable.
    """

    repo: str = "probot-settings"
    path: str = ".github/report.yml"

    model_config = SettingsConfigDict(
        env_prefix="SETTINGS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class ConfigStoreSettings(BaseSettings):
    """Settings document persistence settings."""

    write_delay_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Quiescence window before merged changes are written",
    )
    commit_message: str = "meta: Update config"

    model_config = SettingsConfigDict(
        env_prefix="CONFIG_STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class RateLimitSettings(BaseSettings):
    """External search API budget."""

    per_minute: int = Field(default=30, ge=1, description="Search calls allowed per minute")
    query_timeout_seconds: float = Field(default=30.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def min_interval_seconds(self) -> float:
        """Minimum spacing between two search calls."""
        return 60.0 / self.per_minute


class CacheSettings(BaseSettings):
    """Query cache settings."""

    ttl_seconds: float = Field(default=600.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class SchedulerSettings(BaseSettings):
    """Report trigger settings."""

    misfire_grace_seconds: int = 300  # 5 minutes
    offset_check_minutes: int = Field(
        default=15,
        ge=1,
        description="How often the process-local UTC offset is compared against the triggers",
    )

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class EmailSettings(BaseSettings):
    """Email delivery settings.

    SECURITY: smtp_password has no default and must be configured via environment.
    """

    enabled: bool = True
    smtp_host: str = "smtp.example.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = Field(default="", description="SMTP password")
    smtp_from: str = '"Review Reminder" <noreply@example.com>'
    smtp_tls: bool = True
    timeout_seconds: int = 10

    model_config = SettingsConfigDict(
        env_prefix="EMAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class SlackSettings(BaseSettings):
    """Slack delivery settings."""

    enabled: bool = False
    api_url: str = "https://slack.com/api"
    token: str = Field(default="", description="Bot token (REQUIRED when enabled)")
    timeout_seconds: float = 10.0

    model_config = SettingsConfigDict(
        env_prefix="SLACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("token")
    @classmethod
    def warn_missing_token(cls, v: str) -> str:
        if not v:
            import logging

            logging.getLogger(__name__).debug(
                "SLACK_TOKEN is not set; the Slack channel cannot deliver"
            )
        return v


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    level: str = "INFO"
    enable_file_logging: bool = True
    log_dir: str = "logs"
    max_size: int = 10_485_760  # 10MB
    backup_count: int = 5
    enable_console_logging: bool = True

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def log_config(self) -> dict:
        """Get logging configuration."""
        return {
            "level": self.level,
            "enable_file_logging": self.enable_file_logging,
            "log_dir": self.log_dir,
            "max_file_size": self.max_size,
            "backup_count": self.backup_count,
            "enable_console": self.enable_console_logging,
        }


class RuntimeSettings(BaseSettings):
    """Process-wide runtime switches."""

    dry_run: bool = Field(
        default=False,
        description="Compute everything but skip config writes and outbound deliveries",
    )
    metrics_port: Optional[int] = Field(
        default=None,
        description="Port of the Prometheus metrics endpoint; disabled when unset",
    )

    model_config = SettingsConfigDict(
        env_prefix="RUNTIME_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class Settings(BaseSettings):
    """Main application settings."""

    github: GitHubSettings = GitHubSettings()
    settings_repo: SettingsRepoSettings = SettingsRepoSettings()
    config_store: ConfigStoreSettings = ConfigStoreSettings()
    rate_limit: RateLimitSettings = RateLimitSettings()
    cache: CacheSettings = CacheSettings()
    scheduler: SchedulerSettings = SchedulerSettings()
    email: EmailSettings = EmailSettings()
    slack: SlackSettings = SlackSettings()
    logging: LoggingSettings = LoggingSettings()
    runtime: RuntimeSettings = RuntimeSettings()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance, creating it on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
