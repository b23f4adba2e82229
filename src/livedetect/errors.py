"""
Exception types shared across LiveDetect components.
"""


class LiveDetectError(Exception):
    """Base class for LiveDetect errors."""


class DeviceUnavailable(LiveDetectError):
    """No camera could be opened (missing hardware or permission)."""


class InferenceError(LiveDetectError):
    """A request to the detection service failed."""


class NetworkError(InferenceError):
    """Transport failure: connection refused, reset, DNS, timeout."""


class ServiceError(InferenceError):
    """The service answered, but not with a usable success response."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
