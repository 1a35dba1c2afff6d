"""Application configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="p2p-approvals", description="Application name")
    environment: Literal["development", "testing", "staging", "production"] = Field(
        default="development", description="Runtime environment"
    )
    debug: bool = Field(default=False, description="Debug mode flag")
    secret_key: str = Field(
        default="dev-secret-key-change-in-production",
        description="Secret key for signing",
    )

    # API
    api_v1_prefix: str = Field(default="/api/v1", description="API v1 prefix")
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="CORS allowed origins",
    )

    # Database
    db_host: str = Field(default="localhost", description="PostgreSQL host")
    db_port: int = Field(default=5432, description="PostgreSQL port")
    db_user: str = Field(default="postgres", description="PostgreSQL user")
    db_password: str = Field(default="postgres", description="PostgreSQL password")
    db_name: str = Field(default="p2p_approvals", description="PostgreSQL database name")
    verify_schema_on_startup: bool = Field(
        default=True, description="Compare database schema with ORM models at startup"
    )

    # Redis
    redis_host: str = Field(default="localhost", description="Redis host")
    redis_port: int = Field(default=6379, description="Redis port")
    redis_db: int = Field(default=0, description="Redis database number")
    redis_password: str | None = Field(default=None, description="Redis password")

    # JWT Authentication
    access_token_expire_minutes: int = Field(
        default=30, description="Access token expiration in minutes"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="json", description="Log output format"
    )

    # Notifications
    slack_webhook_url: str | None = Field(
        default=None, description="Slack incoming webhook URL"
    )
    notification_webhook_url: str | None = Field(
        default=None, description="Generic webhook receiving approval notifications"
    )
    notification_webhook_api_key: str | None = Field(
        default=None, description="Bearer key for the notification webhook"
    )
    approval_link_base_url: str = Field(
        default="http://localhost:8000/api/v1/approvals/token-action",
        description="Base URL embedded in email approval links",
    )
    notification_max_records: int = Field(
        default=1000, ge=1, description="Delivery records kept in memory"
    )

    # Approval workflow
    approval_reminder_hours: list[int] = Field(
        default=[24, 48], description="Task ages (hours) at which reminders are sent"
    )
    approval_escalation_hours: int = Field(
        default=72, description="Task age (hours) before escalation to supervisor"
    )
    approval_token_expiry_hours: int = Field(
        default=72, description="Email approval token lifetime in hours"
    )
    approval_token_refresh_window_hours: int = Field(
        default=24, description="Refresh tokens expiring within this many hours"
    )
    approval_max_delegation_days: int = Field(
        default=30, description="Maximum delegation duration in days"
    )
    approval_bulk_limit: int = Field(
        default=50, description="Maximum tasks per bulk action"
    )
    approval_auto_approve_enabled: bool = Field(
        default=False, description="Auto-approve low-risk purchase orders"
    )
    approval_auto_approve_threshold: int | None = Field(
        default=None, description="Highest risk score eligible for auto-approval"
    )
    approval_fallback_path_id: str | None = Field(
        default=None, description="Path used when no decision rule matches"
    )
    approval_privileged_roles: list[str] = Field(
        default=["admin"], description="Roles allowed to override task assignment"
    )
    approval_privileged_bypass_sod: bool = Field(
        default=False,
        description="Allow privileged overrides to skip segregation of duties",
    )
    approval_job_batch_budget: int = Field(
        default=200, description="Items a scheduled job may process per run"
    )

    @computed_field
    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @computed_field
    @property
    def redis_url(self) -> str:
        """Construct Redis URL from components."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    def workflow_config(self) -> "WorkflowConfig":
        """Build the workflow configuration object from these settings."""
        return WorkflowConfig.from_settings(self)


class WorkflowConfig(BaseModel):
    """Explicit approval workflow configuration passed into the engine.

    Callers own its lifetime: build it once, and rebuild it when the
    underlying settings change.
    """

    reminder_hours: list[int] = Field(
        default_factory=lambda: [24, 48], description="Reminder thresholds in hours"
    )
    escalation_hours: int = Field(default=72, description="Escalation threshold")
    token_expiry_hours: int = Field(default=72, description="Token lifetime")
    token_refresh_window_hours: int = Field(
        default=24, description="Token refresh window"
    )
    max_delegation_days: int = Field(default=30, description="Max delegation length")
    bulk_limit: int = Field(default=50, description="Max tasks per bulk action")
    auto_approve_enabled: bool = Field(default=False, description="Auto-approve flag")
    auto_approve_threshold: int | None = Field(
        default=None, description="Auto-approve risk threshold"
    )
    fallback_path_id: str | None = Field(default=None, description="Fallback path")
    privileged_roles: list[str] = Field(
        default_factory=lambda: ["admin"], description="Privileged roles"
    )
    privileged_bypass_sod: bool = Field(
        default=False, description="Privileged override skips SoD"
    )
    job_batch_budget: int = Field(default=200, description="Per-run job budget")

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkflowConfig":
        """Create workflow configuration from application settings.

        Args:
            settings: Application settings

        Returns:
            Workflow configuration
        """
        return cls(
            reminder_hours=list(settings.approval_reminder_hours),
            escalation_hours=settings.approval_escalation_hours,
            token_expiry_hours=settings.approval_token_expiry_hours,
            token_refresh_window_hours=settings.approval_token_refresh_window_hours,
            max_delegation_days=settings.approval_max_delegation_days,
            bulk_limit=settings.approval_bulk_limit,
            auto_approve_enabled=settings.approval_auto_approve_enabled,
            auto_approve_threshold=settings.approval_auto_approve_threshold,
            fallback_path_id=settings.approval_fallback_path_id,
            privileged_roles=list(settings.approval_privileged_roles),
            privileged_bypass_sod=settings.approval_privileged_bypass_sod,
            job_batch_budget=settings.approval_job_batch_budget,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
