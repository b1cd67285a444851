"""Consumer-side blob reassembly and verification.

Checksum verification needs the whole blob, so it happens on the receiving
side. A stream that ends without a final chunk is treated as corruption.
"""

from __future__ import annotations

from typing import BinaryIO, Iterable

from core.checksum import extend_crc32c
from core.errors import ExportDataLossError
from core.types import BlobChunk


def reassemble_blob(chunks: Iterable[BlobChunk]) -> bytes:
    """Concatenate chunk payloads and verify offsets and checksum.

    Args:
        chunks: Chunks in emission order.

    Returns:
        Reassembled blob bytes.

    Raises:
        ExportDataLossError: If the chunk sequence is inconsistent or corrupted.
    """
    parts: list[bytes] = []
    for chunk in _verified_chunks(chunks):
        parts.append(chunk.data)
    return b"".join(parts)


def write_blob(chunks: Iterable[BlobChunk], handle: BinaryIO) -> int:
    """Write verified chunk payloads to a binary handle.

    Args:
        chunks: Chunks in emission order.
        handle: Writable binary file object.

    Returns:
        Number of bytes written.

    Raises:
        ExportDataLossError: If the chunk sequence is inconsistent or corrupted.
    """
    written = 0
    for chunk in _verified_chunks(chunks):
        handle.write(chunk.data)
        written += len(chunk.data)
    return written


def _verified_chunks(chunks: Iterable[BlobChunk]) -> Iterable[BlobChunk]:
    """Yield chunks while checking tiling, termination, and the final CRC32C."""
    expected_offset = 0
    running_crc = 0
    final_seen = False
    for chunk in chunks:
        if final_seen:
            raise ExportDataLossError(
                f"Received a chunk at offset {chunk.offset} after the final chunk."
            )
        if chunk.offset != expected_offset:
            raise ExportDataLossError(
                f"Chunk offset {chunk.offset} does not match {expected_offset} bytes "
                "received so far."
            )
        running_crc = extend_crc32c(running_crc, chunk.data)
        expected_offset += len(chunk.data)
        if chunk.final_chunk:
            final_seen = True
            if chunk.final_crc32c is not None and chunk.final_crc32c != running_crc:
                raise ExportDataLossError(
                    f"Blob checksum mismatch: expected {chunk.final_crc32c:#010x}, "
                    f"computed {running_crc:#010x} over {expected_offset} bytes."
                )
        yield chunk
    if not final_seen:
        raise ExportDataLossError(
            f"Blob stream ended after {expected_offset} bytes without a final chunk."
        )
