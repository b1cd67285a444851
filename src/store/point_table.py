"""Parquet persistence of tag points.

Each committed batch of points for a tag is one Parquet file named by its
commit time and stored sorted by step. Reads prune files committed after
the snapshot and merge the remaining files lazily, so equal steps keep
commit order.
"""

from __future__ import annotations

import heapq
from pathlib import Path
from typing import Generator, Iterable, Iterator, Sequence
from uuid import uuid4

import pyarrow as pa
import pyarrow.compute as pc
import pyarrow.parquet as pq

from core.constants import POINT_FILE_SUFFIX
from core.errors import ExportDataLossError, ExportError, ExportTransientError
from core.types import (
    BlobSequence,
    DataClass,
    Point,
    PointValue,
    Snapshot,
    TensorValue,
)

PointStream = Generator[Point, None, None]

_COMMON_FIELDS = [
    pa.field("step", pa.int64()),
    pa.field("wall_time", pa.float64()),
    pa.field("committed_at", pa.int64()),
]
_VALUE_FIELDS: dict[str, list[pa.Field]] = {
    "scalar": [pa.field("value", pa.float64())],
    "tensor": [
        pa.field("dtype", pa.string()),
        pa.field("shape", pa.list_(pa.int64())),
        pa.field("content", pa.binary()),
    ],
    "blob_sequence": [pa.field("blob_ids", pa.list_(pa.string()))],
}


def point_schema(data_class: DataClass) -> pa.Schema:
    """Return the Parquet schema of a tag payload kind."""
    return pa.schema(_COMMON_FIELDS + _VALUE_FIELDS[data_class])


def points_to_table(
    points: Sequence[Point], data_class: DataClass, committed_at: int
) -> pa.Table:
    """Encode points of one kind into an Arrow table.

    Args:
        points: Points to encode, in commit order.
        data_class: Payload kind shared by every point.
        committed_at: Commit time in microseconds.

    Returns:
        Arrow table matching ``point_schema(data_class)``.

    Raises:
        ValueError: If a point value does not match the payload kind.
    """
    columns: dict[str, list[object]] = {
        "step": [point.step for point in points],
        "wall_time": [point.wall_time for point in points],
        "committed_at": [committed_at] * len(points),
    }
    columns.update(_value_columns(points, data_class))
    return pa.Table.from_pydict(columns, schema=point_schema(data_class))


def write_point_file(tag_dir: Path, table: pa.Table, committed_at: int) -> Path:
    """Persist one committed point batch sorted by step.

    The sort is stable, so points sharing a step keep their commit order.

    Args:
        tag_dir: Directory holding the tag's point files.
        table: Encoded points.
        committed_at: Commit time in microseconds.

    Returns:
        Written file path.
    """
    tag_dir.mkdir(parents=True, exist_ok=True)
    file_path = tag_dir / f"{committed_at:020d}-{uuid4().hex[:8]}{POINT_FILE_SUFFIX}"
    pq.write_table(table.sort_by([("step", "ascending")]), str(file_path))
    return file_path


def open_point_streams(
    tag_dir: Path, data_class: DataClass, snapshot: Snapshot, chunk_rows: int
) -> list[PointStream]:
    """Prepare one lazy point stream per visible point file.

    No file is opened until its stream is first advanced.

    Args:
        tag_dir: Directory holding the tag's point files.
        data_class: Payload kind of the tag.
        snapshot: Read snapshot.
        chunk_rows: Maximum rows decoded per record batch.

    Returns:
        Streams in commit order, each sorted by step.
    """
    return [
        _iter_point_file(file_path, data_class, snapshot, chunk_rows)
        for file_path in _visible_point_files(tag_dir, snapshot)
    ]


def merge_point_streams(streams: Iterable[Iterator[Point]]) -> Iterator[Point]:
    """Merge step-sorted streams into step order.

    Points sharing a step come out in stream order, which is commit order
    for streams from ``open_point_streams``.

    Raises:
        ExportTransientError: If a point file cannot be read.
        ExportDataLossError: If a point file is corrupted.
    """
    return heapq.merge(*streams, key=_point_step)


def load_visible_points(tag_dir: Path, data_class: DataClass, snapshot: Snapshot) -> pa.Table:
    """Load every point of a tag visible at a snapshot into one table.

    Used for summary statistics; rows are not in step order.

    Args:
        tag_dir: Directory holding the tag's point files.
        data_class: Payload kind of the tag.
        snapshot: Read snapshot.

    Returns:
        Visible points of the tag.

    Raises:
        ExportTransientError: If point files cannot be read.
        ExportDataLossError: If a point file is corrupted.
    """
    schema = point_schema(data_class)
    tables = [_read_point_file(path, schema) for path in _visible_point_files(tag_dir, snapshot)]
    if not tables:
        return schema.empty_table()
    table = pa.concat_tables(tables)
    return table.filter(pc.less_equal(table["committed_at"], snapshot.micros))


def tensor_content_bytes(table: pa.Table) -> int:
    """Return the total tensor content size of a tensor points table."""
    if table.num_rows == 0:
        return 0
    total = pc.sum(pc.binary_length(table["content"])).as_py()
    return int(total or 0)


def referenced_blob_ids(table: pa.Table) -> list[str]:
    """Return distinct blob ids referenced by a blob-sequence points table."""
    if table.num_rows == 0:
        return []
    flattened = pc.list_flatten(table["blob_ids"])
    return sorted(str(item) for item in pc.unique(flattened).to_pylist())


def _point_step(point: Point) -> int:
    """Return the merge key of a point."""
    return point.step


def _visible_point_files(tag_dir: Path, snapshot: Snapshot) -> list[Path]:
    """List point files whose commit time does not exceed the snapshot."""
    if not tag_dir.exists():
        return []
    visible: list[Path] = []
    for file_path in sorted(tag_dir.glob(f"*{POINT_FILE_SUFFIX}")):
        committed_at = int(file_path.name.split("-", 1)[0])
        if committed_at <= snapshot.micros:
            visible.append(file_path)
    return visible


def _iter_point_file(
    file_path: Path, data_class: DataClass, snapshot: Snapshot, chunk_rows: int
) -> PointStream:
    """Decode one point file lazily, one record batch at a time."""
    try:
        parquet_file = pq.ParquetFile(str(file_path))
    except (OSError, pa.ArrowException) as error:
        raise _point_file_error(file_path, error) from error
    try:
        batches = parquet_file.iter_batches(
            batch_size=chunk_rows, columns=point_schema(data_class).names
        )
        while True:
            try:
                record_batch = next(batches, None)
            except (OSError, pa.ArrowException) as error:
                raise _point_file_error(file_path, error) from error
            if record_batch is None:
                return
            visible = record_batch.filter(
                pc.less_equal(record_batch.column("committed_at"), snapshot.micros)
            )
            yield from _decode_points(visible, data_class)
    finally:
        parquet_file.close()


def _read_point_file(file_path: Path, schema: pa.Schema) -> pa.Table:
    """Read one point file and conform it to the expected schema."""
    try:
        table = pq.read_table(str(file_path))
    except (OSError, pa.ArrowException) as error:
        raise _point_file_error(file_path, error) from error
    return table.select(schema.names).cast(schema)


def _point_file_error(file_path: Path, error: Exception) -> ExportError:
    """Translate a point file read failure; IO errors are retryable."""
    if isinstance(error, OSError):
        return ExportTransientError(
            f"Failed to read point file {file_path}: {error}. "
            "Retry the stream once storage is available."
        )
    return ExportDataLossError(
        f"Corrupted point file {file_path}: {error}. Restore it from a backup."
    )


def _decode_points(record_batch: pa.RecordBatch, data_class: DataClass) -> Iterator[Point]:
    """Decode the rows of one record batch into points."""
    steps = record_batch.column("step").to_pylist()
    wall_times = record_batch.column("wall_time").to_pylist()
    values = _decode_values(record_batch, data_class)
    for step, wall_time, value in zip(steps, wall_times, values):
        yield Point(step=int(step), wall_time=float(wall_time), value=value)


def _value_columns(points: Sequence[Point], data_class: DataClass) -> dict[str, list[object]]:
    """Build value columns of one payload kind."""
    values = [point.value for point in points]
    if data_class == "scalar":
        if not all(isinstance(value, (int, float)) for value in values):
            raise ValueError("Scalar tags accept only numeric point values.")
        return {"value": [float(value) for value in values]}  # type: ignore[arg-type]
    if data_class == "tensor":
        if not all(isinstance(value, TensorValue) for value in values):
            raise ValueError("Tensor tags accept only TensorValue point values.")
        return {
            "dtype": [value.dtype for value in values],  # type: ignore[union-attr]
            "shape": [list(value.shape) for value in values],  # type: ignore[union-attr]
            "content": [value.content for value in values],  # type: ignore[union-attr]
        }
    if not all(isinstance(value, BlobSequence) for value in values):
        raise ValueError("Blob-sequence tags accept only BlobSequence point values.")
    return {"blob_ids": [list(value.blob_ids) for value in values]}  # type: ignore[union-attr]


def _decode_values(record_batch: pa.RecordBatch, data_class: DataClass) -> list[PointValue]:
    """Decode the value columns of one record batch."""
    if data_class == "scalar":
        return [float(value) for value in record_batch.column("value").to_pylist()]
    if data_class == "tensor":
        dtypes = record_batch.column("dtype").to_pylist()
        shapes = record_batch.column("shape").to_pylist()
        contents = record_batch.column("content").to_pylist()
        return [
            TensorValue(dtype=str(dtype), shape=tuple(int(dim) for dim in shape), content=content)
            for dtype, shape, content in zip(dtypes, shapes, contents)
        ]
    return [
        BlobSequence(blob_ids=tuple(str(blob_id) for blob_id in blob_ids))
        for blob_ids in record_batch.column("blob_ids").to_pylist()
    ]
