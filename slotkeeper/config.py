"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import Optional

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class CancellationPolicy(BaseModel):
    """Notice required before a cancellation stops counting as late."""
    minimum_hours: float = 24

    @field_validator("minimum_hours")
    @classmethod
    def validate_minimum_hours(cls, value: float) -> float:
        """Ensure the notice period is not negative."""
        if value < 0:
            raise ValueError(f"minimum_hours must not be negative, got {value}")
        return value


class TenantPolicy(BaseModel):
    """
    Read-only booking rules of one tenant.

    Passed explicitly to the availability and booking services.
    """
    timezone: str = "Europe/Berlin"
    min_advance_hours: float = 1
    max_advance_days: int = 30
    slot_step_minutes: int = 15
    cancellation_policy: CancellationPolicy = Field(default_factory=CancellationPolicy)
    auto_confirm: bool = False
    confirmation_timeout_hours: float = 24
    no_show_grace_minutes: int = 30
    allow_client_overlap: bool = True

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the timezone is a known IANA identifier."""
        try:
            pendulum.timezone(value)
        except Exception as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("min_advance_hours", "confirmation_timeout_hours")
    @classmethod
    def validate_non_negative_hours(cls, value: float) -> float:
        """Hour-based limits must not be negative."""
        if value < 0:
            raise ValueError(f"Hour limits must not be negative, got {value}")
        return value

    @field_validator("slot_step_minutes")
    @classmethod
    def validate_step(cls, value: int) -> int:
        """Ensure the slot granularity divides an hour sensibly."""
        if not 1 <= value <= 240:
            raise ValueError(f"slot_step_minutes must be between 1 and 240, got {value}")
        return value

    @field_validator("max_advance_days", "no_show_grace_minutes")
    @classmethod
    def validate_non_negative_int(cls, value: int) -> int:
        if value < 0:
            raise ValueError(f"Value must not be negative, got {value}")
        return value

    @model_validator(mode="after")
    def validate_advance_window(self) -> "TenantPolicy":
        """The earliest bookable time must come before the latest."""
        if self.min_advance_hours > self.max_advance_days * 24:
            raise ValueError("min_advance_hours exceeds the max_advance_days window")
        return self


class GuardConfig(BaseModel):
    """Settings of the booking lock."""
    lock_timeout_seconds: float = 3.0

    @field_validator("lock_timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        """Lock waits must be bounded and positive."""
        if not 0 < value <= 30:
            raise ValueError(f"lock_timeout_seconds must be in (0, 30], got {value}")
        return value


class AppConfig(BaseModel):
    """Application configuration."""
    policy: TenantPolicy = Field(default_factory=TenantPolicy)
    guard: GuardConfig = Field(default_factory=GuardConfig)
    log_level: str = "WARNING"
    data_file: Optional[Path] = None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        config = cls(**data)

        # Relative data files are resolved against the config file location
        if config.data_file is not None and not config.data_file.is_absolute():
            config.data_file = config_path.parent / config.data_file

        return config


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
