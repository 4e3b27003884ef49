"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator, model_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="ticket-sync", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/tickets",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== ServiceNow Connection ==========
    servicenow_instance_url: str = Field(
        default="",
        description="ServiceNow instance base URL (e.g., https://dev12345.service-now.com)"
    )
    servicenow_username: str = Field(default="", description="ServiceNow API user")
    servicenow_password: str = Field(default="", description="ServiceNow API password")
    servicenow_table: str = Field(default="incident", description="Table API resource to sync")
    servicenow_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for ServiceNow API calls",
        ge=0.1,
        le=300
    )

    # ========== Synchronization ==========
    sync_source: str = Field(default="ServiceNow", description="Source name stored on synced records")
    sync_enabled: bool = Field(default=True, description="Enable background polling")
    sync_poll_interval_seconds: int = Field(
        default=60,
        description="Seconds between incremental polls",
        ge=1
    )
    sync_health_check_interval_seconds: int = Field(
        default=300,
        description="Seconds between background health checks",
        ge=1
    )
    sync_incremental_batch_size: int = Field(
        default=100,
        description="Page size for incremental polling",
        ge=1,
        le=10000
    )
    sync_bulk_batch_size: int = Field(
        default=1000,
        description="Page size for the one-time bulk import",
        ge=1,
        le=10000
    )
    sync_max_pages_per_tick: int = Field(
        default=50,
        description="Upper bound on pages fetched by one incremental poll",
        ge=1
    )
    sync_circuit_trip_threshold: int = Field(
        default=1,
        description="Consecutive failures that open the sync circuit",
        ge=1
    )
    sync_initial_lookback_hours: int = Field(
        default=24,
        description="Window used to seed a fresh sync cursor",
        ge=0
    )
    sync_bulk_import_on_startup: bool = Field(
        default=True,
        description="Run the bulk import (if never completed) at startup"
    )

    # ========== SLA Configuration ==========
    sla_monitoring_enabled: bool = Field(default=True, description="Enable SLA evaluation job")
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA configuration YAML file"
    )
    sla_evaluation_interval: int = Field(
        default=300,
        description="Seconds between SLA evaluations",
        ge=10
    )
    sla_p1_hours: float = Field(default=4, description="P1 SLA target in hours", gt=0)
    sla_p2_hours: float = Field(default=12, description="P2 SLA target in hours", gt=0)
    sla_p3_hours: float = Field(default=24, description="P3 SLA target in hours", gt=0)
    sla_warning_threshold: float = Field(
        default=20,
        description="Percent of SLA time elapsed that enters the warning phase",
        gt=0,
        lt=100
    )
    sla_critical_threshold: float = Field(
        default=60,
        description="Percent of SLA time elapsed that enters the critical phase",
        gt=0,
        le=100
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for notifications"
    )
    slack_channel: str = Field(
        default="#support-sla-alerts",
        description="Slack channel for notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("servicenow_instance_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @model_validator(mode="after")
    def validate_sla_thresholds(self) -> "Settings":
        """Warning phase must start before the critical phase."""
        if self.sla_warning_threshold >= self.sla_critical_threshold:
            raise ValueError("sla_warning_threshold must be lower than sla_critical_threshold")
        return self


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str):
    """SLA priority classes."""
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"


class SLAState(str):
    """SLA states, ordered by severity (completed is terminal)."""
    SAFE = "safe"
    WARNING = "warning"
    CRITICAL = "critical"
    BREACHED = "breached"
    COMPLETED = "completed"


class TicketEventType(str):
    """Domain events emitted by ingestion."""
    NEW_TICKET = "new_ticket"
    UPDATED_TICKET = "updated_ticket"


class NotificationSeverity(str):
    """Severity levels accepted by notification sinks."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class CircuitState(str):
    """Sync circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"


class ErrorKind(str):
    """Failure categories recorded on the sync cursor."""
    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    GENERIC = "generic"
    PERSISTENCE = "persistence"
    VALIDATION = "validation"


# ========== Lists for validation ==========

VALID_PRIORITIES = [Priority.P1, Priority.P2, Priority.P3]

# safe < warning < critical < breached
SLA_STATE_ORDER = [SLAState.SAFE, SLAState.WARNING, SLAState.CRITICAL, SLAState.BREACHED]

TERMINAL_TICKET_STATUSES = ["closed", "resolved", "cancelled", "completed"]

VALID_SEVERITIES = [
    NotificationSeverity.INFO, NotificationSeverity.WARNING, NotificationSeverity.ERROR
]
