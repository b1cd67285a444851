"""Unit tests for chunked blob streaming."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.checksum import crc32c
from core.errors import (
    ExportCancelledError,
    ExportDataLossError,
    ExportInvalidArgumentError,
    ExportNotFoundError,
)
from core.stream_context import StreamContext
from core.types import BlobChunk, BlobStat
from serve.blob_assembly import reassemble_blob
from serve.blob_chunk_streamer import stream_blob_chunks, stream_blob_data
from store.local_blobs import LocalBlobSource
from store.local_writer import LocalExportWriter
from tests.store_fixtures import B1_BYTES


class _TruncatedSource:
    """Blob source whose stored bytes are shorter than the recorded size."""

    def __init__(self, data: bytes) -> None:
        self._data = data

    def stat_blob(self, blob_id: str) -> BlobStat:
        return BlobStat(blob_id=blob_id, size=len(self._data) + 4, crc32c=crc32c(self._data))

    def read_blob_range(self, blob_id: str, offset: int, length: int) -> bytes:
        return self._data[offset : offset + length]


def _local_source(data_root: Path, data: bytes, with_checksum: bool = True) -> LocalBlobSource:
    LocalExportWriter(data_root).put_blob("B1", data, "E1", with_checksum=with_checksum)
    return LocalBlobSource(data_root)


def test_ten_byte_blob_streams_as_two_chunks(tmp_path: Path) -> None:
    """B1 with chunk size 6 should arrive as [0:6] then final [6:10]."""
    source = _local_source(tmp_path, B1_BYTES)

    chunks = list(stream_blob_data(source, "B1", chunk_size=6))

    assert chunks == [
        BlobChunk(data=B1_BYTES[0:6], offset=0),
        BlobChunk(
            data=B1_BYTES[6:10], offset=6, final_chunk=True, final_crc32c=crc32c(B1_BYTES)
        ),
    ]


def test_streamed_chunks_reassemble_and_verify(tmp_path: Path) -> None:
    """Reassembled chunks should equal the original bytes."""
    data = bytes(range(256)) * 5
    source = _local_source(tmp_path, data)

    restored = reassemble_blob(stream_blob_data(source, "B1", chunk_size=97))

    assert restored == data


def test_exact_multiple_of_chunk_size_marks_last_data_chunk_final(tmp_path: Path) -> None:
    """No empty trailing chunk should follow a blob that divides evenly."""
    source = _local_source(tmp_path, b"abcdef")

    chunks = list(stream_blob_data(source, "B1", chunk_size=3))

    assert [(chunk.offset, chunk.final_chunk) for chunk in chunks] == [(0, False), (3, True)]


def test_empty_blob_streams_single_empty_final_chunk(tmp_path: Path) -> None:
    """A zero-length blob should still terminate with a final chunk."""
    source = _local_source(tmp_path, b"")

    chunks = list(stream_blob_data(source, "B1", chunk_size=4))

    assert chunks == [BlobChunk(data=b"", offset=0, final_chunk=True, final_crc32c=crc32c(b""))]


def test_blob_without_checksum_ends_without_crc(tmp_path: Path) -> None:
    """A missing origin checksum should not be computed by the streamer."""
    source = _local_source(tmp_path, B1_BYTES, with_checksum=False)

    chunks = list(stream_blob_data(source, "B1", chunk_size=6))

    assert chunks[-1].final_chunk and chunks[-1].final_crc32c is None


def test_truncated_blob_aborts_without_final_chunk() -> None:
    """A short read should raise data loss after the intact chunks."""
    source = _TruncatedSource(B1_BYTES)
    received: list[BlobChunk] = []

    with pytest.raises(ExportDataLossError):
        for chunk in stream_blob_data(source, "B1", chunk_size=6):
            received.append(chunk)

    assert received and not any(chunk.final_chunk for chunk in received)


def test_unknown_blob_raises_not_found_before_streaming(tmp_path: Path) -> None:
    """Unknown blob ids should fail when the stream is requested."""
    with pytest.raises(ExportNotFoundError):
        stream_blob_data(LocalBlobSource(tmp_path), "B404", chunk_size=6)

    assert True


def test_non_positive_chunk_size_is_rejected() -> None:
    """Chunk size must be positive."""
    with pytest.raises(ExportInvalidArgumentError):
        stream_blob_chunks(_TruncatedSource(b""), BlobStat("B1", 0), chunk_size=0)

    assert True


def test_cancelled_context_stops_chunk_stream(tmp_path: Path) -> None:
    """Cancellation should stop the stream before the final chunk."""
    source = _local_source(tmp_path, B1_BYTES)
    context = StreamContext()
    stream = stream_blob_data(source, "B1", chunk_size=6, stream_context=context)
    first = next(stream)
    context.cancel()

    with pytest.raises(ExportCancelledError):
        next(stream)

    assert not first.final_chunk
