"""
Error taxonomy for the relay. Store and background refresh absorb their errors;
errors from a request made directly by a caller end up in that request's response.
"""
from typing import Any


class RelayError(Exception):
    """Base class for all relay errors."""


class PersistenceError(RelayError):
    """Token file could not be read or written."""


class ProviderError(RelayError):
    """Token endpoint call failed: network error, non-2xx or malformed response."""

    def __init__(self, message: str, status_code: int | None = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class ConfigurationError(RelayError):
    """Client credentials (or other required settings) are missing."""


class ValidationError(RelayError):
    """Caller-supplied data was rejected; nothing was mutated."""
