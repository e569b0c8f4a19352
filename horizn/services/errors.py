"""
Typed failures raised while processing tracking beacons.

The ingest gateway converts every `TrackingError` into a structured
`{"success": false, "error": ...}` result; none of them reach the browser
as an HTTP error page.
"""


class TrackingError(Exception):
    """Base class for expected beacon failures."""

    kind = "tracking"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message}


class ValidationFailed(TrackingError):
    """Malformed beacon, rejected before any write."""

    kind = "validation"


class RateLimitExceeded(TrackingError):
    """The session has reached its event ceiling."""

    kind = "rate_limit"
    status_code = 429

    def __init__(self, message: str = "Event rate limit exceeded") -> None:
        super().__init__(message)


class ResolutionFailed(TrackingError):
    """Unknown site or session."""

    kind = "resolution"


class StorageFailure(TrackingError):
    """The store rejected a write. The public message stays generic."""

    kind = "storage"

    def __init__(self, message: str = "Tracking failed") -> None:
        super().__init__(message)
