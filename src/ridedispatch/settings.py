from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PER_KM_RATES: dict[str, float] = {
    "bike": 0.8,
    "car": 1.2,
    "car_plus": 1.5,
    "premium": 2.0,
}


class FareSettings(BaseSettings):
    """Fare table. Operators retune it through FARE_* variables."""

    base_fare: float = Field(default=2.5, ge=0.0)
    min_fare: float = Field(default=5.0, ge=0.0)
    per_km: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_PER_KM_RATES))
    currency: str = "USD"
    display_unit: float = Field(
        default=0.01,
        gt=0.0,
        description="Smallest currency unit shown to riders; totals round up to it",
    )
    average_speed_kmh: float = Field(
        default=30.0,
        gt=0.0,
        description="Average speed used for duration estimates at request time",
    )

    model_config = SettingsConfigDict(env_prefix="FARE_")

    @field_validator("per_km")
    @classmethod
    def validate_rates(cls, v: dict[str, float]) -> dict[str, float]:
        missing = set(DEFAULT_PER_KM_RATES) - set(v)
        if missing:
            raise ValueError(f"Missing per-km rate for ride types: {', '.join(sorted(missing))}")
        negative = [k for k, rate in v.items() if rate < 0]
        if negative:
            raise ValueError(f"Per-km rates must be non-negative: {', '.join(sorted(negative))}")
        return v


class DispatchSettings(BaseSettings):
    candidate_radius_km: float = Field(default=6.0, gt=0.0, le=50.0)
    open_request_radius_km: float = Field(default=2.0, gt=0.0, le=50.0)
    h3_resolution: int = Field(default=9, ge=5, le=12)

    # Arrival/destination proximity
    proximity_threshold_m: float = Field(
        default=50.0,
        ge=10.0,
        le=500.0,
        description="Distance in meters at which a driver counts as at pickup/destination",
    )
    enforce_proximity: bool = Field(
        default=False,
        description="Reject arrived/complete when the driver's last location is out of range",
    )
    max_cancel_attempts: int = Field(default=5, ge=1, le=20)

    model_config = SettingsConfigDict(env_prefix="DISPATCH_")


class TelemetrySettings(BaseSettings):
    staleness_seconds: float = Field(
        default=45.0,
        ge=5.0,
        le=600.0,
        description="Reports older than this are excluded from matching",
    )
    driver_interval_seconds: float = Field(default=15.0, gt=0.0)
    in_ride_interval_seconds: float = Field(default=10.0, gt=0.0)
    rider_interval_seconds: float = Field(default=10.0, gt=0.0)
    sweep_interval_seconds: float = Field(default=15.0, gt=0.0)

    # Write retry configuration
    max_retries: int = Field(default=3, ge=1, le=10)
    retry_base_delay: float = Field(default=0.05, ge=0.0, le=5.0)
    retry_multiplier: float = Field(default=2.0, ge=1.0, le=5.0)

    model_config = SettingsConfigDict(env_prefix="TELEMETRY_")

    @model_validator(mode="after")
    def validate_staleness_covers_interval(self) -> "TelemetrySettings":
        longest = max(self.driver_interval_seconds, self.in_ride_interval_seconds)
        if self.staleness_seconds < longest:
            raise ValueError(
                f"staleness_seconds ({self.staleness_seconds}) must be at least the "
                f"longest report interval ({longest})"
            )
        return self


class StoreSettings(BaseSettings):
    backend: Literal["memory", "sql"] = "memory"
    database_path: str = "data/ridedispatch.db"
    timeout_seconds: float = Field(default=5.0, gt=0.0, le=60.0)

    model_config = SettingsConfigDict(env_prefix="STORE_")


class LoggingSettings(BaseSettings):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["text", "json"] = "text"
    environment: str = "development"

    model_config = SettingsConfigDict(env_prefix="LOG_")


class APISettings(BaseSettings):
    key: str = ""
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    model_config = SettingsConfigDict(env_prefix="API_")

    @model_validator(mode="after")
    def validate_credentials_provided(self) -> "APISettings":
        if not self.key:
            raise ValueError("Required credential not provided: API_KEY")
        return self


class Settings(BaseSettings):
    fare: FareSettings = Field(default_factory=FareSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    api: APISettings = Field(default_factory=APISettings)

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
    )


def get_settings() -> Settings:
    """Load and validate settings from environment variables."""
    return Settings()
