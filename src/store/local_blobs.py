"""Filesystem-backed reference blob source.

Each blob lives under ``blobs/<blob_id>/`` as a raw ``data`` file plus a
``blob.json`` sidecar with its size, optional CRC32C, and owning experiment.
"""

from __future__ import annotations

from pathlib import Path

from core.constants import BLOB_DATA_FILE_NAME, BLOB_META_FILE_NAME, BLOBS_DIR_NAME
from core.errors import ExportDataLossError, ExportNotFoundError, ExportTransientError
from core.identifiers import validate_identifier
from core.types import BlobStat
from store.catalog_io import read_json_document


class LocalBlobSource:
    """Reference ``BlobSource`` over the local data root."""

    def __init__(self, data_root: Path) -> None:
        """Read blobs stored under ``<data_root>/blobs``."""
        self._blobs_root = data_root / BLOBS_DIR_NAME

    def stat_blob(self, blob_id: str) -> BlobStat:
        """Return size and checksum metadata of a blob.

        Raises:
            ExportInvalidArgumentError: If the id is malformed.
            ExportNotFoundError: If the blob is unknown.
        """
        validate_identifier(blob_id, "blob id")
        meta_path = self._blobs_root / blob_id / BLOB_META_FILE_NAME
        if not meta_path.exists():
            raise ExportNotFoundError(
                f"Blob '{blob_id}' does not exist. Use blob ids referenced by "
                "blob-sequence points."
            )
        payload = read_json_document(meta_path)
        crc32c = payload.get("crc32c")
        experiment_id = payload.get("experiment_id")
        return BlobStat(
            blob_id=blob_id,
            size=int(payload["size"]),
            crc32c=None if crc32c is None else int(crc32c),
            experiment_id=None if experiment_id is None else str(experiment_id),
        )

    def read_blob_range(self, blob_id: str, offset: int, length: int) -> bytes:
        """Read up to ``length`` bytes starting at ``offset``.

        Raises:
            ExportDataLossError: If the blob data file is missing.
            ExportTransientError: If the data file cannot be read.
        """
        data_path = self._blobs_root / blob_id / BLOB_DATA_FILE_NAME
        try:
            with data_path.open("rb") as handle:
                handle.seek(offset)
                return handle.read(length)
        except FileNotFoundError as error:
            raise ExportDataLossError(
                f"Blob '{blob_id}' has metadata but no data at {data_path}. "
                "Restore the blob from a backup."
            ) from error
        except OSError as error:
            raise ExportTransientError(
                f"Failed to read blob '{blob_id}' at offset {offset}: {error}. "
                "Retry the stream once storage is available."
            ) from error
