"""Identifier validation helpers.

This module centralizes checks for opaque experiment, blob, and user ids.
Ids double as storage path components in the reference store, so
separators and traversal segments are rejected.
"""

from __future__ import annotations

from core.constants import MAX_IDENTIFIER_LENGTH
from core.errors import ExportInvalidArgumentError

_FORBIDDEN_CHARACTERS = ("/", "\\", "\x00")


def validate_identifier(value: str, kind: str) -> str:
    """Validate an opaque identifier.

    Args:
        value: Raw identifier supplied by the caller.
        kind: Identifier kind used in error messages.

    Returns:
        The unchanged identifier.

    Raises:
        ExportInvalidArgumentError: If the identifier is malformed.
    """
    if not isinstance(value, str) or not value:
        raise ExportInvalidArgumentError(f"Missing {kind}: expected a non-empty string.")
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise ExportInvalidArgumentError(
            f"Invalid {kind} '{value[:32]}...': longer than {MAX_IDENTIFIER_LENGTH} characters."
        )
    if value in (".", "..") or any(char in value for char in _FORBIDDEN_CHARACTERS):
        raise ExportInvalidArgumentError(
            f"Invalid {kind} '{value}': path separators and dot segments are not allowed."
        )
    return value
