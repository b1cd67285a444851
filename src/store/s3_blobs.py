"""S3-backed blob source.

This module encapsulates boto3 client creation and ranged blob reads.
Blobs are objects under the configured ``TBEXPORT_BLOB_URI`` prefix.
"""

from __future__ import annotations

import base64
from typing import Any

from core.config import ExportConfig
from core.constants import S3_BLOB_EXPERIMENT_METADATA_KEY
from core.errors import (
    ExportConfigError,
    ExportDataLossError,
    ExportDependencyError,
    ExportNotFoundError,
    ExportTransientError,
)
from core.identifiers import validate_identifier
from core.s3_uri import S3Location, parse_s3_uri
from core.types import BlobStat

_MISSING_OBJECT_CODES = ("404", "NoSuchKey", "NotFound")


def create_s3_client(config: ExportConfig) -> Any:
    """Create boto3 S3 client for blob reads.

    Args:
        config: Runtime config with optional session settings.

    Returns:
        Boto3 S3 client.

    Raises:
        ExportDependencyError: If boto3 is missing.
    """
    try:
        import boto3
    except ImportError as error:
        raise ExportDependencyError(
            "S3 blob reads require boto3, but it is not installed. "
            "Install the 's3' extra to read blobs from s3:// locations."
        ) from error
    session_kwargs: dict[str, str] = {}
    if config.s3_profile:
        session_kwargs["profile_name"] = config.s3_profile
    if config.s3_region:
        session_kwargs["region_name"] = config.s3_region
    session = boto3.session.Session(**session_kwargs)
    return session.client("s3")


def create_s3_blob_source(config: ExportConfig) -> "S3BlobSource":
    """Build a blob source from ``config.blob_uri``.

    Raises:
        ExportConfigError: If no blob URI is configured.
    """
    if not config.blob_uri:
        raise ExportConfigError(
            "S3 blob source requires TBEXPORT_BLOB_URI. Set it to s3://bucket/prefix."
        )
    return S3BlobSource(create_s3_client(config), parse_s3_uri(config.blob_uri))


class S3BlobSource:
    """``BlobSource`` reading ranged objects from S3."""

    def __init__(self, s3_client: Any, location: S3Location) -> None:
        """Initialize the source.

        Args:
            s3_client: boto3 S3 client.
            location: Bucket and key prefix holding blob objects.
        """
        self._s3_client = s3_client
        self._location = location

    def stat_blob(self, blob_id: str) -> BlobStat:
        """Return size, checksum, and owner metadata of a blob object.

        Raises:
            ExportNotFoundError: If the object does not exist.
            ExportTransientError: If S3 is unavailable.
        """
        validate_identifier(blob_id, "blob id")
        object_key = self._location.object_key(blob_id)
        try:
            response = self._s3_client.head_object(
                Bucket=self._location.bucket, Key=object_key, ChecksumMode="ENABLED"
            )
        except Exception as error:
            if _client_error_code(error) in _MISSING_OBJECT_CODES:
                raise ExportNotFoundError(
                    f"Blob '{blob_id}' does not exist at s3://{self._location.bucket}/{object_key}."
                ) from error
            raise _transient(blob_id, error) from error
        metadata = response.get("Metadata") or {}
        return BlobStat(
            blob_id=blob_id,
            size=int(response["ContentLength"]),
            crc32c=_full_object_crc32c(response),
            experiment_id=metadata.get(S3_BLOB_EXPERIMENT_METADATA_KEY),
        )

    def read_blob_range(self, blob_id: str, offset: int, length: int) -> bytes:
        """Read up to ``length`` bytes starting at ``offset``.

        Raises:
            ExportDataLossError: If the object vanished or shrank.
            ExportTransientError: If S3 is unavailable.
        """
        if length <= 0:
            return b""
        object_key = self._location.object_key(blob_id)
        try:
            response = self._s3_client.get_object(
                Bucket=self._location.bucket,
                Key=object_key,
                Range=f"bytes={offset}-{offset + length - 1}",
            )
        except Exception as error:
            if _client_error_code(error) in _MISSING_OBJECT_CODES + ("InvalidRange",):
                raise ExportDataLossError(
                    f"Blob '{blob_id}' became unreadable at offset {offset}: {error}."
                ) from error
            raise _transient(blob_id, error) from error
        body = response["Body"]
        try:
            return body.read()
        finally:
            body.close()


def _full_object_crc32c(response: dict[str, Any]) -> int | None:
    """Decode a whole-object CRC32C header; composite checksums are ignored."""
    encoded = response.get("ChecksumCRC32C")
    if not encoded or "-" in encoded or response.get("ChecksumType") == "COMPOSITE":
        return None
    return int.from_bytes(base64.b64decode(encoded), "big")


def _client_error_code(error: Exception) -> str | None:
    """Return the botocore error code of a client error, if any."""
    response = getattr(error, "response", None)
    if not isinstance(response, dict):
        return None
    code = response.get("Error", {}).get("Code")
    return None if code is None else str(code)


def _transient(blob_id: str, error: Exception) -> ExportTransientError:
    """Wrap an S3 read failure as a retryable error."""
    return ExportTransientError(
        f"Failed to read blob '{blob_id}' from S3: {error}. "
        "Check AWS credentials and retry the stream."
    )
