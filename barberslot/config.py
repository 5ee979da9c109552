"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import Dict, Literal, Optional

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.models import (
    DEFAULT_WORKING_HOURS,
    WEEKDAYS,
    DayHours,
    ShopSettings,
    ShopStatus,
    WorkingHours,
    is_hhmm,
    parse_hhmm,
)


class DayHoursConfig(BaseModel):
    """
    Opening hours of one weekday.

    All three fields are required; a partial entry is a validation error.
    """
    start: str
    end: str
    closed: bool

    @field_validator("start", "end")
    @classmethod
    def validate_time(cls, value: str) -> str:
        """Validate time is a 24h 'HH:MM' string."""
        if not is_hhmm(value):
            raise ValueError(f"Time must be given as 'HH:MM', got {value!r}")
        return value

    @model_validator(mode="after")
    def validate_order(self) -> "DayHoursConfig":
        """Ensure open days do not close before they open."""
        if not self.closed and parse_hhmm(self.start) > parse_hhmm(self.end):
            raise ValueError(f"start {self.start} must not be later than end {self.end}")
        return self

    def to_domain(self) -> DayHours:
        return DayHours(start=self.start, end=self.end, closed=self.closed)


def _default_working_hours() -> Dict[str, DayHoursConfig]:
    return {
        day: DayHoursConfig(**hours.to_mapping())
        for day, hours in DEFAULT_WORKING_HOURS.to_mapping().items()
    }


class ShopSettingsConfig(BaseModel):
    """Shop settings as edited by the owner."""
    shop_name: str = "Barber Shop"
    shop_status: ShopStatus = ShopStatus.OPEN
    appointment_duration: int = 30
    services: Dict[str, float] = Field(default_factory=dict)
    working_hours: Dict[str, DayHoursConfig] = Field(default_factory=_default_working_hours)

    @field_validator("appointment_duration")
    @classmethod
    def validate_duration(cls, value: int) -> int:
        """Ensure appointment duration is positive."""
        if value <= 0:
            raise ValueError("appointment_duration must be greater than zero")
        return value

    @field_validator("services")
    @classmethod
    def validate_services(cls, value: Dict[str, float]) -> Dict[str, float]:
        """Ensure service prices are not negative."""
        negative = sorted(name for name, price in value.items() if price < 0)
        if negative:
            raise ValueError(f"Service prices must not be negative: {', '.join(negative)}")
        return value

    @field_validator("working_hours", mode="before")
    @classmethod
    def normalize_weekdays(cls, value):
        """Lower-case weekday keys before validation."""
        if isinstance(value, dict):
            return {str(key).lower(): hours for key, hours in value.items()}
        return value

    @field_validator("working_hours")
    @classmethod
    def validate_weekdays(cls, value: Dict[str, DayHoursConfig]) -> Dict[str, DayHoursConfig]:
        """Require exactly the seven weekday keys."""
        missing = [day for day in WEEKDAYS if day not in value]
        unknown = sorted(set(value) - set(WEEKDAYS))
        if missing:
            raise ValueError(f"working_hours is missing: {', '.join(missing)}")
        if unknown:
            raise ValueError(f"working_hours has unknown weekday(s): {', '.join(unknown)}")
        return value

    @classmethod
    def from_domain(cls, settings: ShopSettings) -> "ShopSettingsConfig":
        """Build the YAML representation of domain ``ShopSettings``."""
        return cls(
            shop_name=settings.shop_name,
            shop_status=settings.shop_status,
            appointment_duration=settings.slot_duration_minutes,
            services=dict(settings.services),
            working_hours=settings.working_hours.to_mapping(),
        )

    def to_domain(self) -> ShopSettings:
        """Convert into the domain ``ShopSettings``."""
        return ShopSettings(
            working_hours=WorkingHours(
                days={day: hours.to_domain() for day, hours in self.working_hours.items()}
            ),
            slot_duration_minutes=self.appointment_duration,
            shop_status=self.shop_status,
            shop_name=self.shop_name,
            services=dict(self.services),
        )


class RestBackendConfig(BaseModel):
    """Connection details of the hosted REST backend."""
    url: str
    api_key: str


class AppConfig(BaseModel):
    """Application configuration."""
    shop_scope: str = "main"
    timezone: str = "Europe/Istanbul"
    booking_window_days: int = 30
    store_timeout_seconds: float = 10.0
    allow_overrun_slots: bool = False
    backend: Literal["memory", "sqlite", "rest"] = "sqlite"
    database_url: str = "sqlite:///./barberslot.db"
    rest: Optional[RestBackendConfig] = None
    shop: ShopSettingsConfig = Field(default_factory=ShopSettingsConfig)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the timezone is a known IANA identifier."""
        try:
            pendulum.timezone(value)
        except Exception as exc:
            raise ValueError(f"Unknown timezone: {value!r}") from exc
        return value

    @field_validator("booking_window_days")
    @classmethod
    def validate_window(cls, value: int) -> int:
        if value < 1:
            raise ValueError("booking_window_days must be at least 1")
        return value

    @field_validator("store_timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("store_timeout_seconds must be greater than zero")
        return value

    @model_validator(mode="after")
    def validate_backend(self) -> "AppConfig":
        """The REST backend needs connection details."""
        if self.backend == "rest" and self.rest is None:
            raise ValueError("backend 'rest' requires a 'rest' section with url and api_key")
        return self

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

        return cls(**data)


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
