"""Export service surface.

This module wires the snapshot resolver, enumerator, projector, and the
two streamers behind the four calls of the export protocol. Validation
runs before the returned iterator produces its first message.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterator

from core.config import ExportConfig
from core.errors import ExportPermissionDeniedError
from core.identifiers import validate_identifier
from core.stream_context import StreamContext
from core.types import Experiment, ExperimentMask, ExperimentRecord, ReadContext, utc_now
from serve.blob_chunk_streamer import stream_blob_chunks
from serve.experiment_enumerator import enumerate_experiments
from serve.field_mask import project_experiment
from serve.response_adapter import (
    StreamBlobDataResponse,
    StreamExperimentDataResponse,
    StreamExperimentsResponse,
    render_blob_chunk,
    render_experiments,
    render_tag_batch,
)
from serve.snapshot_resolver import resolve_read_context
from serve.tag_data_streamer import stream_experiment_data
from store.protocols import Authorizer, BlobSource, ExperimentStore


class ExporterService:
    """Four-call export protocol over pluggable collaborators."""

    def __init__(
        self,
        store: ExperimentStore,
        blob_source: BlobSource,
        authorizer: Authorizer,
        config: ExportConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Create the service.

        Args:
            store: Experiment store collaborator.
            blob_source: Blob byte-range collaborator.
            authorizer: Authorization collaborator.
            config: Runtime configuration with batch sizes.
            clock: Source of "now" for snapshot resolution.
        """
        self._store = store
        self._blob_source = blob_source
        self._authorizer = authorizer
        self._config = config
        self._clock = clock

    def resolve(
        self,
        caller_id: str,
        read_timestamp: datetime | None = None,
        user_id: str | None = None,
    ) -> ReadContext:
        """Resolve a read context so callers can reuse its snapshot later."""
        return resolve_read_context(
            caller_id,
            self._authorizer,
            read_timestamp,
            user_id,
            clock=self._clock,
            committed_through=self._store.committed_through(),
        )

    def stream_experiments(
        self,
        caller_id: str,
        read_timestamp: datetime | None = None,
        user_id: str | None = None,
        limit: int = 0,
        experiments_mask: ExperimentMask | None = None,
    ) -> Iterator[StreamExperimentsResponse]:
        """Stream the experiments owned by the effective user.

        Returns:
            Iterator of non-empty listing batches.
        """
        read_context = self.resolve(caller_id, read_timestamp, user_id)
        batches = enumerate_experiments(
            self._store,
            self._authorizer,
            read_context,
            batch_size=self._config.experiments_per_batch,
            limit=limit,
            mask=experiments_mask,
        )
        return _mapped(batches, lambda batch: render_experiments(batch, experiments_mask))

    def get_experiment(
        self,
        caller_id: str,
        experiment_id: str,
        experiments_mask: ExperimentMask | None = None,
        read_timestamp: datetime | None = None,
    ) -> Experiment:
        """Return one experiment projected by the mask.

        Raises:
            ExportNotFoundError: If the experiment does not exist at the snapshot.
            ExportPermissionDeniedError: If the caller may not read it.
        """
        read_context = self.resolve(caller_id, read_timestamp)
        validate_identifier(experiment_id, "experiment id")
        snapshot = read_context.snapshot
        record = self._store.get_experiment(experiment_id, snapshot)
        self._check_experiment_access(read_context, record)
        statistics = None
        if experiments_mask is not None and experiments_mask.needs_statistics():
            statistics = self._store.experiment_statistics(experiment_id, snapshot)
        return project_experiment(
            Experiment(experiment_id=experiment_id), record, experiments_mask, statistics
        )

    def stream_experiment_data(
        self,
        caller_id: str,
        experiment_id: str,
        read_timestamp: datetime | None = None,
        stream_context: StreamContext | None = None,
    ) -> Iterator[StreamExperimentDataResponse]:
        """Stream every run/tag pair's points of one experiment."""
        read_context = self.resolve(caller_id, read_timestamp)
        batches = stream_experiment_data(
            self._store,
            self._authorizer,
            read_context,
            experiment_id,
            points_per_batch=self._config.points_per_batch,
            stream_context=stream_context,
        )
        return _mapped(batches, render_tag_batch)

    def stream_blob_data(
        self,
        caller_id: str,
        blob_id: str,
        stream_context: StreamContext | None = None,
    ) -> Iterator[StreamBlobDataResponse]:
        """Stream one blob as offset-tagged chunks.

        Raises:
            ExportNotFoundError: If the blob is unknown.
            ExportPermissionDeniedError: If the caller may not read its experiment.
        """
        validate_identifier(caller_id, "caller id")
        validate_identifier(blob_id, "blob id")
        stat = self._blob_source.stat_blob(blob_id)
        if stat.experiment_id is not None:
            read_context = self.resolve(caller_id)
            record = self._store.get_experiment(stat.experiment_id, read_context.snapshot)
            self._check_experiment_access(read_context, record)
        chunks = stream_blob_chunks(
            self._blob_source, stat, self._config.blob_chunk_bytes, stream_context
        )
        return _mapped(chunks, render_blob_chunk)

    def _check_experiment_access(
        self, read_context: ReadContext, record: ExperimentRecord
    ) -> None:
        """Reject callers the authorizer does not allow to read the experiment."""
        if not self._authorizer.may_read_experiment(read_context.caller_id, record):
            raise ExportPermissionDeniedError(
                f"Caller '{read_context.caller_id}' may not read experiment "
                f"'{record.experiment_id}'."
            )


def _mapped(source: Iterator, render: Callable) -> Iterator:
    """Render each element, closing ``source`` when the consumer stops early."""
    try:
        for item in source:
            yield render(item)
    finally:
        close = getattr(source, "close", None)
        if close is not None:
            close()
