"""Unit tests for shared typed models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from core.errors import ExportInvalidArgumentError
from core.types import (
    BlobChunk,
    BlobSequence,
    BlobSequencePoints,
    ExperimentMask,
    ScalarPoints,
    Snapshot,
    TagDataBatch,
    TagMetadata,
    TensorPoints,
    datetime_to_micros,
    micros_to_datetime,
)

_SCALAR_METADATA = TagMetadata(data_class="scalar")


def test_snapshot_rejects_naive_timestamp() -> None:
    """Snapshots should require timezone-aware instants."""
    with pytest.raises(ExportInvalidArgumentError):
        Snapshot(read_time=datetime(2024, 1, 1))

    assert True


def test_snapshot_normalizes_to_utc() -> None:
    """Snapshots in other zones should be stored as UTC."""
    eastern = timezone(timedelta(hours=-5))

    snapshot = Snapshot(read_time=datetime(2024, 1, 1, 7, tzinfo=eastern))

    assert snapshot.read_time == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)


def test_snapshot_includes_commit_at_read_time() -> None:
    """An item committed exactly at the snapshot should be visible."""
    snapshot = Snapshot(read_time=datetime(2024, 1, 1, tzinfo=timezone.utc))

    visible = snapshot.includes(snapshot.micros)

    assert visible and not snapshot.includes(snapshot.micros + 1)


def test_snapshot_excludes_items_deleted_before_read_time() -> None:
    """Deletion at or before the snapshot should hide an item."""
    snapshot = Snapshot(read_time=datetime(2024, 1, 1, tzinfo=timezone.utc))

    hidden = not snapshot.includes(0, deleted_at=snapshot.micros)

    assert hidden and snapshot.includes(0, deleted_at=snapshot.micros + 1)


def test_micros_conversion_keeps_microseconds() -> None:
    """Microsecond conversion should be lossless."""
    instant = datetime(2024, 3, 4, 5, 6, 7, 891011, tzinfo=timezone.utc)

    restored = micros_to_datetime(datetime_to_micros(instant))

    assert restored == instant


def test_mask_from_fields_ignores_unknown_markers() -> None:
    """Unknown field names should be ignored, not rejected."""
    mask = ExperimentMask.from_fields(["name", "hparams", "num_tags"])

    assert mask.selected_fields() == ("name", "num_tags")


def test_mask_needs_statistics_only_for_derived_fields() -> None:
    """Descriptive-only masks should not require statistics."""
    mask = ExperimentMask.from_mapping({"name": True, "description": False})

    assert not mask.needs_statistics() and not mask.is_empty()


def test_tag_batch_rejects_multiple_payloads() -> None:
    """A batch should carry exactly one payload kind."""
    with pytest.raises(ValueError):
        TagDataBatch(
            run_name="train",
            tag_name="loss",
            tag_metadata=_SCALAR_METADATA,
            scalars=ScalarPoints(),
            tensors=TensorPoints(),
        )

    assert True


def test_tag_batch_rejects_payload_of_wrong_kind() -> None:
    """The payload kind should match the tag's data class."""
    with pytest.raises(ValueError):
        TagDataBatch(
            run_name="train",
            tag_name="loss",
            tag_metadata=_SCALAR_METADATA,
            tensors=TensorPoints(),
        )

    assert True


def test_tag_batch_points_returns_blob_sequence_payload() -> None:
    """The active payload should be returned for blob-sequence batches."""
    payload = BlobSequencePoints(steps=(1,), wall_times=(1.0,), values=(BlobSequence(("B1",)),))
    batch = TagDataBatch(
        run_name="eval",
        tag_name="images",
        tag_metadata=TagMetadata(data_class="blob_sequence"),
        blob_sequences=payload,
    )

    assert batch.points is payload


def test_tag_batch_points_raises_without_payload() -> None:
    """A batch stripped of its payload should fail loudly, not return None."""
    batch = TagDataBatch(
        run_name="train", tag_name="loss", tag_metadata=_SCALAR_METADATA, scalars=ScalarPoints()
    )
    object.__setattr__(batch, "scalars", None)

    with pytest.raises(ValueError):
        _ = batch.points

    assert True


def test_columnar_points_reject_ragged_columns() -> None:
    """Columns of one payload should have equal length."""
    with pytest.raises(ValueError):
        ScalarPoints(steps=(0, 1), wall_times=(1.0,), values=(0.5, 0.4))

    assert True


def test_blob_chunk_rejects_checksum_on_non_final_chunk() -> None:
    """Only the final chunk may carry the whole-object checksum."""
    with pytest.raises(ValueError):
        BlobChunk(data=b"abc", offset=0, final_chunk=False, final_crc32c=1)

    assert True
