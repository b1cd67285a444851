"""Python client for the export protocol.

This module exposes a caller-side API over ``ExporterService``. A session
pins one snapshot and effective user and passes them on every call, and
failed streams are restarted from scratch on transient errors.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, TypeVar

from core.config import ExportConfig
from core.constants import DEFAULT_DOWNLOAD_WORKERS
from core.errors import ExportDataLossError, ExportTransientError
from core.logging_config import get_logger
from core.types import (
    Experiment,
    ExperimentMask,
    PointValue,
    ReadContext,
    Snapshot,
    TagDataBatch,
    TagMetadata,
    TagSeries,
)
from serve.blob_assembly import reassemble_blob, write_blob
from serve.exporter_service import ExporterService
from serve.response_adapter import (
    blob_chunk_from_response,
    experiments_from_response,
    tag_batch_from_response,
)
from store.local_authorizer import LocalAuthorizer
from store.local_blobs import LocalBlobSource
from store.local_store import LocalExportStore
from store.protocols import BlobSource
from store.s3_blobs import create_s3_blob_source

_LOGGER = get_logger(__name__)
_T = TypeVar("_T")


def build_exporter_service(config: ExportConfig) -> ExporterService:
    """Wire the reference collaborators into an export service.

    Args:
        config: Runtime configuration.

    Returns:
        Service reading from ``config.data_root`` and, when configured, S3 blobs.
    """
    blob_source: BlobSource
    if config.blob_uri:
        blob_source = create_s3_blob_source(config)
    else:
        blob_source = LocalBlobSource(config.data_root)
    store = LocalExportStore(config.data_root, blob_source=blob_source)
    authorizer = LocalAuthorizer(config.data_root, store, config.trusted_callers)
    return ExporterService(store, blob_source, authorizer, config)


class ExportClient:
    """Primary SDK entry point for export workflows."""

    def __init__(
        self,
        config: ExportConfig | None = None,
        service: ExporterService | None = None,
    ) -> None:
        """Create SDK client.

        Args:
            config: Optional runtime configuration.
            service: Optional pre-built service; built from config when omitted.
        """
        self._config = config or ExportConfig.from_env()
        self._service = service or build_exporter_service(self._config)

    def session(
        self,
        caller_id: str,
        read_timestamp: datetime | None = None,
        user_id: str | None = None,
    ) -> "ExportSession":
        """Open a session pinned to one snapshot.

        Args:
            caller_id: Authenticated caller identity.
            read_timestamp: Snapshot of an earlier session to reuse, or ``None``.
            user_id: Optional subject to act on behalf of.

        Returns:
            Session whose calls all read at the same snapshot.
        """
        read_context = self._service.resolve(caller_id, read_timestamp, user_id)
        return ExportSession(self._service, read_context, self._config.max_stream_attempts)

    def with_data_root(self, data_root: str) -> "ExportClient":
        """Clone the client with a different local data root.

        Args:
            data_root: New data root path.

        Returns:
            New SDK client instance.
        """
        resolved_root = Path(data_root).expanduser().resolve()
        return ExportClient(replace(self._config, data_root=resolved_root))


class ExportSession:
    """Caller-owned snapshot continuity across export calls."""

    def __init__(
        self,
        service: ExporterService,
        read_context: ReadContext,
        max_stream_attempts: int,
    ) -> None:
        """Bind a session to one resolved read context.

        Args:
            service: Export service to call.
            read_context: Snapshot and effective user shared by every call.
            max_stream_attempts: Attempts per call before a transient error surfaces.
        """
        self._service = service
        self._read_context = read_context
        self._max_stream_attempts = max_stream_attempts

    @property
    def snapshot(self) -> Snapshot:
        """Return the pinned snapshot."""
        return self._read_context.snapshot

    @property
    def user_id(self) -> str:
        """Return the effective user."""
        return self._read_context.user_id

    def list_experiments(
        self, limit: int = 0, mask: ExperimentMask | None = None
    ) -> list[Experiment]:
        """Collect the effective user's experiments at the snapshot."""

        def _read() -> list[Experiment]:
            responses = self._service.stream_experiments(
                self._read_context.caller_id,
                read_timestamp=self.snapshot.read_time,
                user_id=self.user_id,
                limit=limit,
                experiments_mask=mask,
            )
            return [item for response in responses for item in experiments_from_response(response)]

        return self._with_restarts(_read, "stream_experiments")

    def get_experiment(
        self, experiment_id: str, mask: ExperimentMask | None = None
    ) -> Experiment:
        """Fetch one experiment's metadata at the snapshot."""
        return self._with_restarts(
            lambda: self._service.get_experiment(
                self._read_context.caller_id,
                experiment_id,
                experiments_mask=mask,
                read_timestamp=self.snapshot.read_time,
            ),
            "get_experiment",
        )

    def read_experiment_data(self, experiment_id: str) -> list[TagSeries]:
        """Stream and aggregate every tag of an experiment at the snapshot."""

        def _read() -> list[TagSeries]:
            responses = self._service.stream_experiment_data(
                self._read_context.caller_id,
                experiment_id,
                read_timestamp=self.snapshot.read_time,
            )
            return aggregate_tag_batches(tag_batch_from_response(item) for item in responses)

        return self._with_restarts(_read, "stream_experiment_data")

    def read_blob(self, blob_id: str) -> bytes:
        """Download and verify one blob into memory."""

        def _read() -> bytes:
            responses = self._service.stream_blob_data(self._read_context.caller_id, blob_id)
            return reassemble_blob(blob_chunk_from_response(item) for item in responses)

        return self._with_restarts(_read, "stream_blob_data")

    def download_blob(self, blob_id: str, output_path: Path) -> Path:
        """Download and verify one blob to a file.

        The file is written under a temporary name and renamed only after
        verification, so a failed download never leaves a partial blob.
        """
        staging_path = output_path.with_name(output_path.name + ".partial")
        output_path.parent.mkdir(parents=True, exist_ok=True)

        def _read() -> Path:
            responses = self._service.stream_blob_data(self._read_context.caller_id, blob_id)
            try:
                with staging_path.open("wb") as handle:
                    write_blob((blob_chunk_from_response(item) for item in responses), handle)
            except BaseException:
                staging_path.unlink(missing_ok=True)
                raise
            staging_path.replace(output_path)
            return output_path

        return self._with_restarts(_read, "stream_blob_data")

    def download_blobs(
        self,
        blob_ids: Iterable[str],
        output_dir: Path,
        max_workers: int = DEFAULT_DOWNLOAD_WORKERS,
    ) -> dict[str, Path]:
        """Download several blobs in parallel threads.

        Returns:
            Mapping of blob id to written file path.
        """
        unique_ids = sorted(set(blob_ids))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                blob_id: executor.submit(self.download_blob, blob_id, output_dir / blob_id)
                for blob_id in unique_ids
            }
            return {blob_id: future.result() for blob_id, future in futures.items()}

    def _with_restarts(self, operation: Callable[[], _T], call_name: str) -> _T:
        """Run a whole read, restarting from scratch on transient failures."""
        for attempt in range(1, self._max_stream_attempts + 1):
            try:
                return operation()
            except ExportTransientError as error:
                if attempt >= self._max_stream_attempts:
                    raise
                _LOGGER.warning(
                    "stream_retry_scheduled",
                    call_name=call_name,
                    attempt=attempt,
                    max_attempts=self._max_stream_attempts,
                    error=str(error),
                )
        raise AssertionError("unreachable")


def aggregate_tag_batches(batches: Iterable[TagDataBatch]) -> list[TagSeries]:
    """Concatenate batches per run/tag pair in emission order.

    Args:
        batches: Batches from one experiment data stream.

    Returns:
        One series per run/tag pair, in first-seen order.

    Raises:
        ExportDataLossError: If one tag arrives with two payload kinds.
    """
    metadata: dict[tuple[str, str], TagMetadata] = {}
    columns: dict[tuple[str, str], tuple[list[int], list[float], list[PointValue]]] = {}
    for batch in batches:
        key = (batch.run_name, batch.tag_name)
        if key not in metadata:
            metadata[key] = batch.tag_metadata
            columns[key] = ([], [], [])
        elif metadata[key].data_class != batch.data_class:
            raise ExportDataLossError(
                f"Tag {key[0]}/{key[1]} arrived as both {metadata[key].data_class} "
                f"and {batch.data_class} data."
            )
        steps, wall_times, values = columns[key]
        points = batch.points
        steps.extend(points.steps)
        wall_times.extend(points.wall_times)
        values.extend(points.values)
    return [
        TagSeries(
            run_name=run_name,
            tag_name=tag_name,
            tag_metadata=metadata[(run_name, tag_name)],
            steps=tuple(columns[(run_name, tag_name)][0]),
            wall_times=tuple(columns[(run_name, tag_name)][1]),
            values=tuple(columns[(run_name, tag_name)][2]),
        )
        for run_name, tag_name in metadata
    ]
