"""Filesystem-backed reference experiment store.

This module serves experiment records, tags, and points from the local
data root with snapshot visibility. Every committed item carries a commit
time and reads ignore anything committed after the snapshot or above the
published committed-through mark.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, cast

import pyarrow as pa

from core.constants import (
    DEFAULT_POINTS_PER_BATCH,
    EXPERIMENT_FILE_NAME,
    EXPERIMENTS_DIR_NAME,
    POINTS_DIR_NAME,
    TAGS_FILE_NAME,
)
from core.errors import ExportNotFoundError
from core.identifiers import validate_identifier
from core.types import (
    ExperimentRecord,
    ExperimentStatistics,
    Point,
    Snapshot,
    TagDescriptor,
    micros_to_datetime,
)
from store.catalog_io import (
    build_tag_key,
    experiment_record_at,
    read_commit_mark,
    read_json_document,
    tag_descriptor_from_payload,
)
from store.point_table import (
    PointStream,
    load_visible_points,
    merge_point_streams,
    open_point_streams,
    referenced_blob_ids,
    tensor_content_bytes,
)
from store.protocols import BlobSource


class LocalExportStore:
    """Reference ``ExperimentStore`` over the local data root."""

    def __init__(
        self,
        data_root: Path,
        blob_source: BlobSource | None = None,
        decode_rows: int = DEFAULT_POINTS_PER_BATCH,
    ) -> None:
        """Initialize the store.

        Args:
            data_root: Root directory of the reference store.
            blob_source: Optional blob source used for blob byte statistics.
            decode_rows: Rows decoded per Arrow record batch by point cursors.
        """
        self._data_root = data_root
        self._experiments_root = data_root / EXPERIMENTS_DIR_NAME
        self._blob_source = blob_source
        self._decode_rows = decode_rows

    def committed_through(self) -> datetime:
        """Return the instant up to which every commit has finished writing."""
        return micros_to_datetime(read_commit_mark(self._data_root))

    def published_snapshot(self, snapshot: Snapshot) -> Snapshot:
        """Cap a snapshot at the committed-through mark.

        Commits stamped above the mark may still be writing, so no read
        may observe them.
        """
        mark = read_commit_mark(self._data_root)
        if snapshot.micros <= mark:
            return snapshot
        return Snapshot(micros_to_datetime(mark))

    def get_experiment(self, experiment_id: str, snapshot: Snapshot) -> ExperimentRecord:
        """Return the experiment state visible at a snapshot.

        Raises:
            ExportInvalidArgumentError: If the id is malformed.
            ExportNotFoundError: If the experiment is not visible.
        """
        validate_identifier(experiment_id, "experiment id")
        document_path = self._experiment_dir(experiment_id) / EXPERIMENT_FILE_NAME
        if not document_path.exists():
            raise _experiment_not_found(experiment_id, snapshot)
        record = experiment_record_at(
            read_json_document(document_path), self.published_snapshot(snapshot)
        )
        if record is None:
            raise _experiment_not_found(experiment_id, snapshot)
        return record

    def iter_experiment_documents(self) -> Iterator[dict[str, Any]]:
        """Yield raw experiment documents in storage order."""
        if not self._experiments_root.exists():
            return
        for experiment_dir in sorted(self._experiments_root.iterdir()):
            document_path = experiment_dir / EXPERIMENT_FILE_NAME
            if document_path.exists():
                yield read_json_document(document_path)

    def list_tags(self, experiment_id: str, snapshot: Snapshot) -> list[TagDescriptor]:
        """List run/tag pairs visible at a snapshot, ordered by run then tag."""
        self.get_experiment(experiment_id, snapshot)
        visible = self.published_snapshot(snapshot)
        document_path = self._experiment_dir(experiment_id) / TAGS_FILE_NAME
        if not document_path.exists():
            return []
        entries = cast(list[dict[str, Any]], read_json_document(document_path).get("tags", []))
        tags = [
            tag_descriptor_from_payload(entry, document_path)
            for entry in entries
            if visible.includes(int(entry["committed_at"]))
        ]
        return sorted(tags, key=lambda tag: (tag.run_name, tag.tag_name))

    def open_point_cursor(
        self, experiment_id: str, tag: TagDescriptor, snapshot: Snapshot
    ) -> "ParquetPointCursor":
        """Open a lazy cursor over one tag's visible points in step order."""
        streams = open_point_streams(
            self._tag_dir(experiment_id, tag),
            tag.metadata.data_class,
            self.published_snapshot(snapshot),
            self._decode_rows,
        )
        return ParquetPointCursor(streams)

    def experiment_statistics(
        self, experiment_id: str, snapshot: Snapshot
    ) -> ExperimentStatistics:
        """Compute summary counts of an experiment's data at a snapshot."""
        tags = self.list_tags(experiment_id, snapshot)
        visible = self.published_snapshot(snapshot)
        num_scalars = 0
        tensor_bytes = 0
        blob_ids: set[str] = set()
        for tag in tags:
            table = self._load_tag_table(experiment_id, tag, visible)
            if tag.metadata.data_class == "scalar":
                num_scalars += table.num_rows
            elif tag.metadata.data_class == "tensor":
                tensor_bytes += tensor_content_bytes(table)
            else:
                blob_ids.update(referenced_blob_ids(table))
        return ExperimentStatistics(
            num_runs=len({tag.run_name for tag in tags}),
            num_tags=len(tags),
            num_scalars=num_scalars,
            total_tensor_bytes=tensor_bytes,
            total_blob_bytes=self._blob_bytes(sorted(blob_ids)),
        )

    def _load_tag_table(
        self, experiment_id: str, tag: TagDescriptor, snapshot: Snapshot
    ) -> pa.Table:
        """Load the visible point table of one tag."""
        return load_visible_points(
            self._tag_dir(experiment_id, tag), tag.metadata.data_class, snapshot
        )

    def _blob_bytes(self, blob_ids: list[str]) -> int:
        """Sum sizes of known blobs; unknown ids count as zero."""
        if self._blob_source is None:
            return 0
        total = 0
        for blob_id in blob_ids:
            try:
                total += self._blob_source.stat_blob(blob_id).size
            except ExportNotFoundError:
                continue
        return total

    def _experiment_dir(self, experiment_id: str) -> Path:
        """Return the directory holding one experiment."""
        return self._experiments_root / experiment_id

    def _tag_dir(self, experiment_id: str, tag: TagDescriptor) -> Path:
        """Return the directory holding one tag's point files."""
        return (
            self._experiment_dir(experiment_id)
            / POINTS_DIR_NAME
            / build_tag_key(tag.run_name, tag.tag_name)
        )


class ParquetPointCursor:
    """Point cursor merging a tag's step-sorted point files lazily."""

    def __init__(self, file_streams: list[PointStream]) -> None:
        """Wrap per-file point streams given in commit order."""
        self._file_streams = file_streams
        self._points = self._merged()
        self.closed = False

    def __iter__(self) -> Iterator[Point]:
        return self._points

    def close(self) -> None:
        """Close every open point file and stop iteration."""
        self._points.close()
        for stream in self._file_streams:
            stream.close()
        self.closed = True

    def _merged(self) -> Iterator[Point]:
        """Yield points in step order; equal steps keep commit order."""
        yield from merge_point_streams(self._file_streams)


def _experiment_not_found(experiment_id: str, snapshot: Snapshot) -> ExportNotFoundError:
    """Build the not-found error of an experiment invisible at a snapshot."""
    return ExportNotFoundError(
        f"Experiment '{experiment_id}' does not exist at snapshot "
        f"{snapshot.read_time.isoformat()}. Use StreamExperiments to discover valid ids."
    )
