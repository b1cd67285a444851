"""Transport-boundary response shapes.

The engine works on canonical records; this module renders them into the
message shapes of the export protocol and back. The legacy bare-id form of
experiment listings is chosen here, never inside the enumerator.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.types import (
    BlobChunk,
    BlobSequencePoints,
    Experiment,
    ExperimentMask,
    ScalarPoints,
    TagDataBatch,
    TagMetadata,
    TensorPoints,
)


@dataclass(frozen=True)
class StreamExperimentsResponse:
    """One batch of the experiment listing.

    ``experiment_ids`` is the legacy form. When ``experiments`` is set,
    consumers ignore ``experiment_ids`` entirely.
    """

    experiment_ids: tuple[str, ...] = ()
    experiments: tuple[Experiment, ...] = ()


@dataclass(frozen=True)
class StreamExperimentDataResponse:
    """Data of one run/tag pair; exactly one payload field is set."""

    run_name: str
    tag_name: str
    tag_metadata: TagMetadata
    points: ScalarPoints | None = None
    tensors: TensorPoints | None = None
    blob_sequences: BlobSequencePoints | None = None


@dataclass(frozen=True)
class StreamBlobDataResponse:
    """One blob chunk as sent on the wire."""

    data: bytes
    offset: int
    final_chunk: bool = False
    final_crc32c: int | None = None


def render_experiments(
    batch: tuple[Experiment, ...], mask: ExperimentMask | None
) -> StreamExperimentsResponse:
    """Render an experiment batch, using bare ids when no field was requested."""
    if mask is None or mask.is_empty():
        return StreamExperimentsResponse(
            experiment_ids=tuple(item.experiment_id for item in batch)
        )
    return StreamExperimentsResponse(experiments=batch)


def experiments_from_response(response: StreamExperimentsResponse) -> tuple[Experiment, ...]:
    """Normalize either response form into experiment records."""
    if response.experiments:
        return response.experiments
    return tuple(Experiment(experiment_id=item) for item in response.experiment_ids)


def render_tag_batch(batch: TagDataBatch) -> StreamExperimentDataResponse:
    """Render a tag data batch."""
    return StreamExperimentDataResponse(
        run_name=batch.run_name,
        tag_name=batch.tag_name,
        tag_metadata=batch.tag_metadata,
        points=batch.scalars,
        tensors=batch.tensors,
        blob_sequences=batch.blob_sequences,
    )


def tag_batch_from_response(response: StreamExperimentDataResponse) -> TagDataBatch:
    """Rebuild a validated tag data batch from a response."""
    return TagDataBatch(
        run_name=response.run_name,
        tag_name=response.tag_name,
        tag_metadata=response.tag_metadata,
        scalars=response.points,
        tensors=response.tensors,
        blob_sequences=response.blob_sequences,
    )


def render_blob_chunk(chunk: BlobChunk) -> StreamBlobDataResponse:
    """Render a blob chunk."""
    return StreamBlobDataResponse(
        data=chunk.data,
        offset=chunk.offset,
        final_chunk=chunk.final_chunk,
        final_crc32c=chunk.final_crc32c,
    )


def blob_chunk_from_response(response: StreamBlobDataResponse) -> BlobChunk:
    """Rebuild a blob chunk from a response."""
    return BlobChunk(
        data=response.data,
        offset=response.offset,
        final_chunk=response.final_chunk,
        final_crc32c=response.final_crc32c,
    )
