"""tbexport exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each class maps onto one status of the export protocol so transports
can translate them without inspecting messages.
"""

from __future__ import annotations


class ExportError(Exception):
    """Base exception for all tbexport failures."""


class ExportConfigError(ExportError):
    """Raised for invalid runtime configuration."""


class ExportDependencyError(ExportError):
    """Raised when an optional runtime dependency is missing."""


class ExportInvalidArgumentError(ExportError):
    """Raised for malformed identifiers, timestamps, or overrides."""


class ExportPermissionDeniedError(ExportError):
    """Raised when the caller is not authorized for the requested read."""


class ExportNotFoundError(ExportError):
    """Raised for unknown experiments or blobs at the read snapshot."""


class ExportDataLossError(ExportError):
    """Raised when stored data is detected as corrupted or unreadable."""


class ExportTransientError(ExportError):
    """Raised for retryable storage or backend unavailability."""


class ExportCancelledError(ExportError):
    """Raised when the caller cancels a stream mid-iteration."""


class ExportDeadlineExceededError(ExportError):
    """Raised when the caller's deadline passes mid-iteration."""
