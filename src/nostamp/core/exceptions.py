# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""Custom exception hierarchy for Nostamp.

Each category maps to one way the loops react to a failure:

- ConfigException: fatal, raised at startup only.
- StorageException / NotFoundError / RecordFormatError: the record is
  skipped for the current pass and left on disk.
- AttestationError / ChainTipError / RelayError: transient network
  failures; the unit of work is abandoned until the next scheduled pass.
"""

from __future__ import annotations

from typing import Any


class NostampException(Exception):  # noqa: N818
    """Base exception for all Nostamp errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigException(NostampException):
    """Exception for configuration errors.

    Raised when:
    - The signing key is missing or malformed
    - A setting fails validation
    """

    def __init__(self, message: str, missing_vars: list[str] | None = None):
        details = {}
        if missing_vars:
            details["missing_vars"] = missing_vars
        super().__init__(message, details)
        self.missing_vars = missing_vars or []


class StorageException(NostampException):
    """Exception for record store read/write/delete failures."""

    def __init__(self, message: str, path: str | None = None):
        details = {}
        if path:
            details["path"] = path
        super().__init__(message, details)
        self.path = path


class NotFoundError(NostampException):
    """Exception for a missing record artifact."""

    def __init__(self, resource_type: str, resource_id: str):
        message = f"{resource_type} not found: {resource_id}"
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        super().__init__(message, details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class RecordFormatError(NostampException):
    """Exception for malformed identifiers, events, or proofs.

    Raised when:
    - An identifier is not 64 hex characters
    - A stored event is not valid JSON or fails id/signature checks
    - A stored proof cannot be deserialized or covers a different digest
    """

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class AttestationError(NostampException):
    """Exception for calendar submission or upgrade failures."""

    def __init__(self, message: str, calendar_url: str | None = None):
        details = {}
        if calendar_url:
            details["calendar_url"] = calendar_url
        super().__init__(message, details)
        self.calendar_url = calendar_url


class ChainTipError(NostampException):
    """Exception for block explorer failures."""

    pass


class RelayError(NostampException):
    """Exception for relay connection, subscription, or publish failures."""

    def __init__(self, message: str, relay_url: str | None = None):
        details = {}
        if relay_url:
            details["relay_url"] = relay_url
        super().__init__(message, details)
        self.relay_url = relay_url
