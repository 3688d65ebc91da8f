"""
Exception types raised by the generation pipeline and the sharing layer.
"""


class MapGenError(Exception):
    """Base class for mapgen errors."""


class ConfigurationError(MapGenError):
    """Missing API key, unreachable backend configuration, etc."""


class UpstreamError(MapGenError):
    """The LLM or geocoding API was unreachable or returned a non-2xx status."""

    def __init__(self, message, service="mistral", status_code=None):
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class AuthorizationError(MapGenError):
    """Caller is not authenticated (401) or not allowed to perform the action (403)."""

    def __init__(self, message, status_code=401):
        super().__init__(message)
        self.status_code = status_code


class ShareNotFound(MapGenError):
    """No public shared map exists for the token."""


class ShareValidationError(MapGenError):
    pass


class JoinError(MapGenError):
    """Invalid join request (missing join column, unknown level...)."""
