# geotrack/core/config.py
from typing import Literal
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = Field(default="geotrack", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Acquisition
    location_provider: Literal["simulated", "termux", "gpx"] = Field(default="simulated", alias="LOCATION_PROVIDER")
    update_interval_ms: int = Field(default=5000, gt=0, alias="UPDATE_INTERVAL_MS")
    min_distance_m: float = Field(default=5.0, ge=0, alias="MIN_DISTANCE_M")
    location_priority: Literal["high_accuracy", "balanced", "low_power", "passive"] = Field(
        default="high_accuracy", alias="LOCATION_PRIORITY"
    )
    queue_maxsize: int = Field(default=16, ge=1, alias="QUEUE_MAXSIZE")

    # Permissions
    permission_mode: Literal["prompt", "grant", "deny"] = Field(default="prompt", alias="PERMISSION_MODE")
    permission_prompt_timeout_s: float | None = Field(default=60.0, alias="PERMISSION_PROMPT_TIMEOUT_S")

    # Forwarding (disabled when no endpoint)
    forward_endpoint: str | None = Field(default=None, alias="FORWARD_ENDPOINT")
    forward_timeout_s: float = Field(default=15.0, gt=0, alias="FORWARD_TIMEOUT_S")
    forward_retries: int = Field(default=0, ge=0, alias="FORWARD_RETRIES")
    forward_retry_delay_s: float = Field(default=1.0, ge=0, alias="FORWARD_RETRY_DELAY_S")
    forward_include_meta: bool = Field(default=False, alias="FORWARD_INCLUDE_META")
    device_id: str | None = Field(default=None, alias="DEVICE_ID")

    # Providers
    sim_start_lat: float = Field(default=37.7749, ge=-90, le=90, alias="SIM_START_LAT")
    sim_start_lon: float = Field(default=-122.4194, ge=-180, le=180, alias="SIM_START_LON")
    sim_step_m: float = Field(default=10.0, ge=0, alias="SIM_STEP_M")
    sim_seed: int | None = Field(default=None, alias="SIM_SEED")
    termux_timeout_s: int = Field(default=20, gt=0, alias="TERMUX_TIMEOUT_S")
    gpx_path: str | None = Field(default=None, alias="GPX_PATH")

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


settings = Settings()
