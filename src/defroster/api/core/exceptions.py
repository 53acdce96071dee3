"""
Custom exception classes for the Defroster sighting engine.

This module defines specific exceptions for the different kinds of failure the
engine distinguishes: caller errors, transient store failures, and bad stored data.
Partial failures of sweeps and notification bursts are reported in result objects
rather than raised.
"""

from __future__ import annotations


__all__ = [
    # Configuration exceptions
    "ConfigurationError",
    # Base exception
    "DefrosterError",
    # Argument exceptions
    "InvalidArgumentError",
    "InvalidConfigurationError",
    "MalformedRecordError",
    "NotFoundError",
    # Store exceptions
    "StoreError",
    "StoreUnavailableError",
    # Transport exceptions
    "TransportError",
]


class DefrosterError(Exception):
    """
    Base exception for all Defroster errors.

    All custom exceptions in this library inherit from this base class,
    making it easy to catch all engine-related errors.
    """

    pass


class InvalidArgumentError(DefrosterError, ValueError):
    """
    Raised when a caller passes an argument outside its valid domain.

    This occurs when:
    - Latitude is outside -90 to +90 degrees or not finite
    - Longitude is outside -180 to +180 degrees or not finite
    - A radius is zero, negative, or above the accepted maximum
    - A category, device id or push token does not match its format

    Never retried; surfaced to the caller immediately.
    """

    pass


class NotFoundError(DefrosterError):
    """Raised when an operation targets a record that does not exist."""

    pass


# ============================================================================
# Store Exceptions
# ============================================================================


class StoreError(DefrosterError):
    """Base exception for record store errors."""

    pass


class StoreUnavailableError(StoreError):
    """
    Raised when the backing store cannot be reached.

    This is a transient I/O failure. The sync manager degrades to cache-only
    results when the server tier raises it; writes have no fallback and surface it.
    """

    pass


class MalformedRecordError(StoreError):
    """
    Raised when a stored document does not match its record shape.

    Stores catch this while decoding and treat the record as absent.
    """

    pass


# ============================================================================
# Transport Exceptions
# ============================================================================


class TransportError(DefrosterError):
    """Raised when the push transport rejects a whole dispatch batch."""

    pass


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigurationError(DefrosterError):
    """Base exception for configuration errors."""

    pass


class InvalidConfigurationError(ConfigurationError):
    """Raised when configuration is invalid."""

    pass
