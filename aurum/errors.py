"""Exceptions raised by the gold price monitoring service."""

from __future__ import annotations


class AurumError(Exception):
    """Base class for service errors."""


class UpstreamUnavailable(AurumError):
    """A reference data source failed or returned an unexpected payload."""


class ValidationError(AurumError, ValueError):
    """Registration or query parameters were rejected."""


class NotificationFailure(AurumError):
    """The alert transport could not deliver a message."""
