"""Chunked streaming of blob bytes.

A blob is delivered as contiguous chunks whose offsets tile it exactly.
The last chunk is flagged final and carries the whole-object CRC32C when
the origin store has one. A read failure mid-stream aborts the stream
without a final chunk, which is how consumers detect corruption.
"""

from __future__ import annotations

from typing import Iterator

from core.errors import ExportDataLossError, ExportError, ExportInvalidArgumentError
from core.identifiers import validate_identifier
from core.logging_config import get_logger
from core.stream_context import StreamContext, check_active
from core.types import BlobChunk, BlobStat
from store.protocols import BlobSource

_LOGGER = get_logger(__name__)


def stream_blob_data(
    blob_source: BlobSource,
    blob_id: str,
    chunk_size: int,
    stream_context: StreamContext | None = None,
) -> Iterator[BlobChunk]:
    """Validate the blob id and return a lazy chunk stream.

    Raises:
        ExportInvalidArgumentError: If the id or chunk size is malformed.
        ExportNotFoundError: If the blob is unknown.
    """
    validate_identifier(blob_id, "blob id")
    stat = blob_source.stat_blob(blob_id)
    return stream_blob_chunks(blob_source, stat, chunk_size, stream_context)


def stream_blob_chunks(
    blob_source: BlobSource,
    stat: BlobStat,
    chunk_size: int,
    stream_context: StreamContext | None = None,
) -> Iterator[BlobChunk]:
    """Return a lazy chunk stream for an already resolved blob.

    Args:
        blob_source: Blob byte-range collaborator.
        stat: Size and checksum metadata from ``stat_blob``.
        chunk_size: Maximum payload bytes per chunk.
        stream_context: Optional cancellation and deadline signal.

    Returns:
        Iterator of chunks ending with exactly one final chunk.

    Raises:
        ExportInvalidArgumentError: If chunk size is not positive.
    """
    if chunk_size < 1:
        raise ExportInvalidArgumentError(f"Invalid chunk size {chunk_size}: expected value >= 1.")
    return _blob_chunks(blob_source, stat, chunk_size, stream_context)


def _blob_chunks(
    blob_source: BlobSource,
    stat: BlobStat,
    chunk_size: int,
    stream_context: StreamContext | None,
) -> Iterator[BlobChunk]:
    """Read a blob range by range; only the final chunk carries the CRC32C."""
    offset = 0
    try:
        while True:
            check_active(stream_context)
            length = min(chunk_size, stat.size - offset)
            data = blob_source.read_blob_range(stat.blob_id, offset, length) if length else b""
            if len(data) != length:
                raise ExportDataLossError(
                    f"Blob '{stat.blob_id}' returned {len(data)} bytes at offset {offset}, "
                    f"expected {length} of {stat.size}. The stored blob is truncated."
                )
            final = offset + length == stat.size
            check_active(stream_context)
            yield BlobChunk(
                data=data,
                offset=offset,
                final_chunk=final,
                final_crc32c=stat.crc32c if final else None,
            )
            offset += length
            if final:
                break
    except ExportError as error:
        _LOGGER.warning(
            "blob_stream_aborted",
            blob_id=stat.blob_id,
            offset=offset,
            error_type=type(error).__name__,
        )
        raise
    _LOGGER.info(
        "blob_stream_completed",
        blob_id=stat.blob_id,
        size=stat.size,
        has_crc32c=stat.crc32c is not None,
    )
