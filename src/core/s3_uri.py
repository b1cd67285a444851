"""Blob location URI parsing.

Blob objects live under one ``s3://bucket/prefix`` location whose keys are
``<prefix>/<blob_id>``.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.errors import ExportConfigError

_S3_SCHEME = "s3://"


@dataclass(frozen=True)
class S3Location:
    """Bucket and key prefix holding blob objects."""

    bucket: str
    prefix: str

    def object_key(self, name: str) -> str:
        """Return the object key of ``name`` under this prefix."""
        return f"{self.prefix}/{name}"


def parse_s3_uri(uri: str) -> S3Location:
    """Split a blob location URI into bucket and normalized prefix.

    Args:
        uri: Location in ``s3://bucket/prefix`` form.

    Returns:
        Location whose prefix has no surrounding slashes.

    Raises:
        ExportConfigError: If the scheme, bucket, or prefix is missing.
    """
    bucket, _, prefix = uri.removeprefix(_S3_SCHEME).partition("/")
    prefix = prefix.strip("/")
    if not uri.startswith(_S3_SCHEME) or not bucket or not prefix:
        raise ExportConfigError(
            f"Invalid blob location '{uri}': expected s3://bucket/prefix. "
            "Set TBEXPORT_BLOB_URI with both bucket and prefix."
        )
    return S3Location(bucket=bucket, prefix=prefix)
