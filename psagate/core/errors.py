from __future__ import annotations


class GatewayError(Exception):
    """Base error for psagate; carries the HTTP status it maps to."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class UnauthenticatedError(GatewayError):
    """No tenant could be resolved for the caller."""

    status_code = 401


class NotConfiguredError(GatewayError):
    """Tenant has no usable credentials for the requested upstream."""

    status_code = 400


class BadInputError(GatewayError):
    """Missing or malformed request fields."""

    status_code = 400


class DecryptionError(GatewayError):
    """A stored credential blob could not be decrypted."""

    status_code = 500


class UpstreamError(GatewayError):
    """An upstream call failed in a way the caller must see."""

    status_code = 502


class UpstreamTransientError(UpstreamError):
    """A single sub-fetch failed; adapters drop it and keep going."""
