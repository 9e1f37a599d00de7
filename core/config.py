"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Thresholds in one place so the alert rules stay auditable
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from .env file
load_dotenv()


class StoreConfig(BaseModel):
    """Connection to the managed relational store."""

    url: str = Field(default="memory://", description="Store URL")
    timeout_seconds: float = Field(
        default=10.0, gt=0.0, description="Upper bound for a single store round trip"
    )


class AuthorizationConfig(BaseModel):
    """Caregiver access workflow settings."""

    allow_rerequest_after_rejection: bool = Field(
        default=True,
        description="Whether a rejected caregiver may file a new pending request",
    )


class ScheduleConfig(BaseModel):
    due_window_minutes: int = Field(
        default=30, ge=0, le=720, description="Minutes either side of a dose counted as due now"
    )


class AlertConfig(BaseModel):
    """Alert engine windows. Clinical thresholds live in core.services.alerts."""

    health_lookback_hours: int = Field(default=24, gt=0)
    max_health_samples: int = Field(default=10, gt=0)
    refill_warning_days: int = Field(default=7, ge=0)
    refill_critical_days: int = Field(default=3, ge=0)
    inactivity_min_days: int = Field(default=2, ge=1)
    trend_sample_limit: int = Field(default=1000, gt=0)


class NotificationConfig(BaseModel):
    toast_duration_seconds: float = Field(default=4.0, gt=0.0)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Component configs
    store: StoreConfig = Field(default_factory=StoreConfig)
    authorization: AuthorizationConfig = Field(default_factory=AuthorizationConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    alerts: AlertConfig = Field(default_factory=AlertConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self

    @model_validator(mode="after")
    def refill_windows_ordered(self) -> "AppConfig":
        if self.alerts.refill_critical_days > self.alerts.refill_warning_days:
            raise ValueError("refill_critical_days must not exceed refill_warning_days")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    # Detect environment
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    store_config = StoreConfig(
        url=os.getenv("STORE_URL", "memory://"),
        timeout_seconds=float(os.getenv("STORE_TIMEOUT_SECONDS", "10.0")),
    )

    authorization_config = AuthorizationConfig(
        allow_rerequest_after_rejection=_parse_bool(
            os.getenv("ALLOW_REREQUEST_AFTER_REJECTION"), True
        ),
    )

    schedule_config = ScheduleConfig(
        due_window_minutes=int(os.getenv("SCHEDULE_DUE_WINDOW_MINUTES", "30")),
    )

    alert_config = AlertConfig(
        health_lookback_hours=int(os.getenv("HEALTH_LOOKBACK_HOURS", "24")),
        max_health_samples=int(os.getenv("MAX_HEALTH_SAMPLES", "10")),
        refill_warning_days=int(os.getenv("REFILL_WARNING_DAYS", "7")),
        refill_critical_days=int(os.getenv("REFILL_CRITICAL_DAYS", "3")),
        inactivity_min_days=int(os.getenv("INACTIVITY_MIN_DAYS", "2")),
        trend_sample_limit=int(os.getenv("TREND_SAMPLE_LIMIT", "1000")),
    )

    notification_config = NotificationConfig(
        toast_duration_seconds=float(os.getenv("TOAST_DURATION_SECONDS", "4.0")),
    )

    # Logging config
    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    # Application config
    return AppConfig(
        environment=environment,
        debug=debug,
        store=store_config,
        authorization=authorization_config,
        schedule=schedule_config,
        alerts=alert_config,
        notifications=notification_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"Configuration loaded for {config.environment} environment")
    except Exception as e:
        print(f"Configuration validation failed: {e}")
        raise


# Development helpers
def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\nCONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\nACCESS")
    print(f"Store: {config.store.url} (timeout {config.store.timeout_seconds}s)")
    print(f"Re-request after rejection: {config.authorization.allow_rerequest_after_rejection}")

    print("\nALERTS")
    print(f"Health lookback: {config.alerts.health_lookback_hours}h")
    print(
        f"Refill window: {config.alerts.refill_warning_days}d "
        f"(critical {config.alerts.refill_critical_days}d)"
    )
    print(f"Due window: +/-{config.schedule.due_window_minutes}m")


if __name__ == "__main__":
    # Test configuration loading
    validate_config()
    print_config_summary()
