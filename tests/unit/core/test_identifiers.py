"""Unit tests for identifier validation."""

from __future__ import annotations

import pytest

from core.errors import ExportConfigError, ExportInvalidArgumentError
from core.identifiers import validate_identifier
from core.s3_uri import parse_s3_uri


@pytest.mark.parametrize("value", ["", ".", "..", "a/b", "a\\b", "x" * 257])
def test_validate_identifier_rejects_malformed_ids(value: str) -> None:
    """Empty, traversal, separator, and oversized ids should be rejected."""
    with pytest.raises(ExportInvalidArgumentError):
        validate_identifier(value, "experiment id")

    assert True


def test_validate_identifier_returns_opaque_id() -> None:
    """Valid ids should be returned unchanged."""
    assert validate_identifier("exp-01.v2", "experiment id") == "exp-01.v2"


def test_parse_s3_uri_splits_bucket_and_prefix() -> None:
    """Blob URIs should resolve object keys under their prefix."""
    location = parse_s3_uri("s3://bucket/blobs/")

    assert location.object_key("B1") == "blobs/B1"


def test_parse_s3_uri_rejects_missing_prefix() -> None:
    """A bucket-only URI should be rejected."""
    with pytest.raises(ExportConfigError):
        parse_s3_uri("s3://bucket")

    assert True
