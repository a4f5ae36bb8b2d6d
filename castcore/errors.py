"""Exception hierarchy shared by discovery, casting and the media server."""


class CastError(Exception):
    """Base exception for casting errors."""
    pass


class DiscoveryError(CastError):
    """A discovery source failed. Logged, never fatal."""
    pass


class AdapterAttemptFailure(CastError):
    """A single protocol attempt against a device did not succeed."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class StreamingError(CastError):
    """The current cast attempt failed; surfaced as the session Error state."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ServerBindError(CastError):
    """The media server could not bind the requested port."""

    def __init__(self, port: int, reason: str = ""):
        super().__init__(f"Could not bind port {port}: {reason}" if reason else f"Could not bind port {port}")
        self.port = port
