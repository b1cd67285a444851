"""Runtime configuration model for tbexport.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    DEFAULT_BLOB_CHUNK_BYTES,
    DEFAULT_DATA_ROOT,
    DEFAULT_EXPERIMENTS_PER_BATCH,
    DEFAULT_MAX_STREAM_ATTEMPTS,
    DEFAULT_POINTS_PER_BATCH,
)
from core.errors import ExportConfigError


@dataclass(frozen=True)
class ExportConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory of the reference store.
        experiments_per_batch: Experiments per enumerator batch.
        points_per_batch: Maximum points per tag data batch.
        blob_chunk_bytes: Maximum payload bytes per blob chunk.
        max_stream_attempts: Client-side restart attempts for failed streams.
        trusted_callers: Caller identities allowed to act on behalf of users.
        blob_uri: Optional ``s3://bucket/prefix`` holding blob objects.
        s3_region: Optional default AWS region for S3 operations.
        s3_profile: Optional AWS profile for boto3 session initialization.
    """

    data_root: Path
    experiments_per_batch: int = DEFAULT_EXPERIMENTS_PER_BATCH
    points_per_batch: int = DEFAULT_POINTS_PER_BATCH
    blob_chunk_bytes: int = DEFAULT_BLOB_CHUNK_BYTES
    max_stream_attempts: int = DEFAULT_MAX_STREAM_ATTEMPTS
    trusted_callers: frozenset[str] = frozenset()
    blob_uri: str | None = None
    s3_region: str | None = None
    s3_profile: str | None = None

    @classmethod
    def from_env(cls) -> "ExportConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            ExportConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("TBEXPORT_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        return cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            experiments_per_batch=_parse_positive_int(
                "TBEXPORT_EXPERIMENTS_PER_BATCH", DEFAULT_EXPERIMENTS_PER_BATCH
            ),
            points_per_batch=_parse_positive_int(
                "TBEXPORT_POINTS_PER_BATCH", DEFAULT_POINTS_PER_BATCH
            ),
            blob_chunk_bytes=_parse_positive_int(
                "TBEXPORT_BLOB_CHUNK_BYTES", DEFAULT_BLOB_CHUNK_BYTES
            ),
            max_stream_attempts=_parse_positive_int(
                "TBEXPORT_MAX_STREAM_ATTEMPTS", DEFAULT_MAX_STREAM_ATTEMPTS
            ),
            trusted_callers=_parse_caller_set(os.getenv("TBEXPORT_TRUSTED_CALLERS", "")),
            blob_uri=os.getenv("TBEXPORT_BLOB_URI") or None,
            s3_region=os.getenv("TBEXPORT_S3_REGION"),
            s3_profile=os.getenv("TBEXPORT_S3_PROFILE"),
        )


def _parse_positive_int(variable: str, default: int) -> int:
    """Parse a positive integer environment value.

    Args:
        variable: Environment variable name.
        default: Value used when the variable is unset.

    Returns:
        Parsed integer.

    Raises:
        ExportConfigError: If value is not a positive integer.
    """
    raw_value = os.getenv(variable)
    if raw_value is None:
        return default
    try:
        value = int(raw_value)
    except ValueError as error:
        raise ExportConfigError(
            f"Invalid {variable} value: expected integer, got '{raw_value}'. "
            f"Set {variable} to a positive numeric value."
        ) from error
    if value < 1:
        raise ExportConfigError(
            f"Invalid {variable} value: expected value >= 1, got {value}. "
            f"Set {variable} to a positive numeric value."
        )
    return value


def _parse_caller_set(raw_value: str) -> frozenset[str]:
    """Parse a comma-separated caller identity list."""
    return frozenset(item.strip() for item in raw_value.split(",") if item.strip())
