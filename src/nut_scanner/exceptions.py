"""
Scanner errors.

Configuration errors end the run with the usage text and a non-zero status;
environment errors (interface enumeration) are fatal; dispatch errors only
disable the protocol that could not be started.
"""

from __future__ import annotations


class ScannerError(Exception):
    """Base class for scanner errors."""


class ConfigurationError(ScannerError):
    """Malformed or contradictory command line or config file input."""


class MalformedInputError(ConfigurationError):
    """An address or CIDR specification could not be parsed."""

    def __init__(self, value: str, reason: str = ""):
        self.value = value
        message = f"Malformed address specification: {value!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class RegistryFrozenError(ScannerError):
    """An address range was added after probes were dispatched."""


class InterfaceEnumerationError(ScannerError):
    """Local network interfaces could not be listed for subnet detection."""


class DispatchError(ScannerError):
    """A probe could not be started as a concurrent unit."""
