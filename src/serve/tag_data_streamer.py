"""Streaming of an experiment's time-series data.

For each run/tag pair visible at the snapshot, the tag's points are read
through one storage cursor in step order and cut into columnar batches of
bounded size. Batches of one tag are emitted consecutively; concatenating
them reconstructs the tag's full point set.
"""

from __future__ import annotations

from contextlib import closing
from itertools import islice
from typing import Iterator, Sequence

from core.errors import (
    ExportError,
    ExportInvalidArgumentError,
    ExportPermissionDeniedError,
)
from core.identifiers import validate_identifier
from core.logging_config import get_logger
from core.stream_context import StreamContext, check_active
from core.types import (
    BlobSequencePoints,
    Point,
    ReadContext,
    ScalarPoints,
    TagDataBatch,
    TagDescriptor,
    TensorPoints,
)
from store.protocols import Authorizer, ExperimentStore

_LOGGER = get_logger(__name__)


def stream_experiment_data(
    store: ExperimentStore,
    authorizer: Authorizer,
    read_context: ReadContext,
    experiment_id: str,
    points_per_batch: int,
    stream_context: StreamContext | None = None,
) -> Iterator[TagDataBatch]:
    """Validate the request and return a lazy stream of tag data batches.

    Args:
        store: Experiment store collaborator.
        authorizer: Authorization collaborator.
        read_context: Resolved snapshot and caller.
        experiment_id: Experiment to stream.
        points_per_batch: Maximum points per emitted batch.
        stream_context: Optional cancellation and deadline signal.

    Returns:
        Iterator of per-tag batches.

    Raises:
        ExportInvalidArgumentError: If the id or batch size is malformed.
        ExportNotFoundError: If the experiment does not exist at the snapshot.
        ExportPermissionDeniedError: If the caller may not read the experiment.
    """
    validate_identifier(experiment_id, "experiment id")
    if points_per_batch < 1:
        raise ExportInvalidArgumentError(
            f"Invalid batch size {points_per_batch}: expected value >= 1."
        )
    record = store.get_experiment(experiment_id, read_context.snapshot)
    if not authorizer.may_read_experiment(read_context.caller_id, record):
        raise ExportPermissionDeniedError(
            f"Caller '{read_context.caller_id}' may not read experiment '{experiment_id}'."
        )
    return _tag_batches(store, read_context, experiment_id, points_per_batch, stream_context)


def _tag_batches(
    store: ExperimentStore,
    read_context: ReadContext,
    experiment_id: str,
    points_per_batch: int,
    stream_context: StreamContext | None,
) -> Iterator[TagDataBatch]:
    """Yield batches for every tag of the experiment."""
    snapshot = read_context.snapshot
    batch_count = 0
    _LOGGER.info(
        "experiment_data_stream_started",
        experiment_id=experiment_id,
        read_time=snapshot.read_time.isoformat(),
    )
    try:
        check_active(stream_context)
        tags = store.list_tags(experiment_id, snapshot)
        for tag in tags:
            tag_batches = _single_tag_batches(
                store, read_context, experiment_id, tag, points_per_batch, stream_context
            )
            with closing(tag_batches):
                for batch in tag_batches:
                    batch_count += 1
                    yield batch
    except GeneratorExit:
        _LOGGER.info(
            "experiment_data_stream_closed",
            experiment_id=experiment_id,
            batch_count=batch_count,
        )
        raise
    except ExportError as error:
        _LOGGER.warning(
            "experiment_data_stream_aborted",
            experiment_id=experiment_id,
            batch_count=batch_count,
            error_type=type(error).__name__,
        )
        raise
    _LOGGER.info(
        "experiment_data_stream_completed",
        experiment_id=experiment_id,
        batch_count=batch_count,
    )


def _single_tag_batches(
    store: ExperimentStore,
    read_context: ReadContext,
    experiment_id: str,
    tag: TagDescriptor,
    points_per_batch: int,
    stream_context: StreamContext | None,
) -> Iterator[TagDataBatch]:
    """Yield the batches of one tag, releasing its cursor on every exit path."""
    check_active(stream_context)
    cursor = store.open_point_cursor(experiment_id, tag, read_context.snapshot)
    try:
        points = iter(cursor)
        while True:
            check_active(stream_context)
            chunk = list(islice(points, points_per_batch))
            if not chunk:
                return
            batch = build_tag_batch(tag, chunk)
            check_active(stream_context)
            yield batch
    finally:
        cursor.close()


def build_tag_batch(tag: TagDescriptor, points: Sequence[Point]) -> TagDataBatch:
    """Build a columnar batch of one payload kind from points.

    Args:
        tag: Run/tag pair and metadata.
        points: Points in canonical order.

    Returns:
        Batch whose payload kind matches the tag's data class.
    """
    steps = tuple(point.step for point in points)
    wall_times = tuple(point.wall_time for point in points)
    values = tuple(point.value for point in points)
    data_class = tag.metadata.data_class
    payloads: dict[str, object] = {}
    if data_class == "scalar":
        payloads["scalars"] = ScalarPoints(steps, wall_times, values)  # type: ignore[arg-type]
    elif data_class == "tensor":
        payloads["tensors"] = TensorPoints(steps, wall_times, values)  # type: ignore[arg-type]
    else:
        payloads["blob_sequences"] = BlobSequencePoints(
            steps, wall_times, values  # type: ignore[arg-type]
        )
    return TagDataBatch(
        run_name=tag.run_name,
        tag_name=tag.tag_name,
        tag_metadata=tag.metadata,
        **payloads,  # type: ignore[arg-type]
    )
