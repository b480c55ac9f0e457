# geotrack/schemas/location.py
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ..utils.time import utc_now


class Priority(str, Enum):
    HIGH_ACCURACY = "high_accuracy"
    BALANCED = "balanced"
    LOW_POWER = "low_power"
    PASSIVE = "passive"


class LocationSample(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    received_at: datetime = Field(default_factory=utc_now)
    provider: Optional[str] = None
    accuracy_m: Optional[float] = Field(None, ge=0)

    def display_text(self) -> str:
        return f"Latitude: {self.latitude}, Longitude: {self.longitude}"

    def to_payload(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


class LocationRequest(BaseModel):
    interval_ms: int = Field(5000, gt=0)
    min_distance_m: float = Field(5.0, ge=0)
    priority: Priority = Priority.HIGH_ACCURACY

    @property
    def interval_s(self) -> float:
        return self.interval_ms / 1000.0
