"""CRC32C helpers for whole-object blob checksums."""

from __future__ import annotations

import google_crc32c


def crc32c(data: bytes) -> int:
    """Return the CRC32C (Castagnoli) of ``data`` as an unsigned 32-bit int."""
    return int(google_crc32c.value(data))


def extend_crc32c(crc: int, data: bytes) -> int:
    """Fold ``data`` into a running CRC32C value."""
    return int(google_crc32c.extend(crc, data))
