# geotrack/schemas/tracking.py
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .location import LocationSample


class TrackingStatus(str, Enum):
    STOPPED = "stopped"
    TRACKING = "tracking"


class TrackingState(BaseModel):
    status: TrackingStatus = TrackingStatus.STOPPED
    last_sample: Optional[LocationSample] = None
    display_text: str = ""
    message: Optional[str] = None
    samples_received: int = 0
    samples_forwarded: int = 0
    forward_failures: int = 0
    started_at: Optional[datetime] = None


class Capability(str, Enum):
    FINE_LOCATION = "fine_location"
    COARSE_LOCATION = "coarse_location"
    BACKGROUND_LOCATION = "background_location"


class PermissionStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    UNDETERMINED = "undetermined"


class PermissionDecision(BaseModel):
    granted: bool
