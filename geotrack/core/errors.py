# geotrack/core/errors.py


class TrackerError(Exception):
    """Base class for everything the tracker raises on purpose."""


class PermissionDenied(TrackerError):
    def __init__(self, capability: str, message: str | None = None):
        self.capability = capability
        self.message = message or "Location permission denied"
        super().__init__(self.message)


class LocationUnavailable(TrackerError):
    """The provider could not produce a fix."""


class NetworkFailure(TrackerError):
    def __init__(self, url: str, reason: str, attempts: int = 1):
        self.url = url
        self.reason = reason
        self.attempts = attempts
        super().__init__(f"POST {url} failed after {attempts} attempt(s): {reason}")
