"""Exceptions raised inside RehabHub; the store converts them to `Result` objects."""
# rehabhub/exceptions.py


class RehabHubError(Exception):
    """Base class for RehabHub errors."""


class ValidationError(RehabHubError):
    """Raised when input fails validation before any gateway call."""


class GatewayError(RehabHubError):
    """Raised by a gateway for malformed requests (bad collection, filter or id)."""
