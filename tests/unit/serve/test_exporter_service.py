"""Unit tests for the export service surface."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.errors import (
    ExportInvalidArgumentError,
    ExportNotFoundError,
    ExportPermissionDeniedError,
)
from core.types import ExperimentMask, Point
from serve.blob_assembly import reassemble_blob
from serve.response_adapter import blob_chunk_from_response
from store.local_writer import LocalExportWriter
from tests.store_fixtures import (
    B1_BYTES,
    build_service,
    commit_time,
    fixed_clock,
    seed_e1,
    seed_full_experiment,
)


def test_stream_experiments_without_mask_renders_legacy_ids(tmp_path: Path) -> None:
    """Listing without a mask should use the bare id form."""
    seed_e1(tmp_path)
    service = build_service(tmp_path)

    responses = list(service.stream_experiments("alice"))

    assert [response.experiment_ids for response in responses] == [("E1",)]


def test_stream_experiments_with_mask_renders_records(tmp_path: Path) -> None:
    """Listing with a mask should return populated records."""
    seed_e1(tmp_path)
    service = build_service(tmp_path)

    responses = list(service.stream_experiments("alice", experiments_mask=ExperimentMask(name=True)))

    assert responses[0].experiments[0].name == "baseline"


def test_stream_experiments_on_behalf_of_user(tmp_path: Path) -> None:
    """Trusted callers should list another user's experiments."""
    seed_e1(tmp_path)
    service = build_service(tmp_path, trusted_callers=frozenset({"exporter"}))

    responses = list(service.stream_experiments("exporter", user_id="alice"))

    assert responses[0].experiment_ids == ("E1",)


def test_reused_timestamp_hides_later_commits(tmp_path: Path) -> None:
    """Calls sharing a timestamp should not see experiments created afterwards."""
    writer = seed_e1(tmp_path)
    service = build_service(tmp_path)
    read_context = service.resolve("alice", read_timestamp=commit_time(20))
    writer.create_experiment("E2", "alice", committed_at=commit_time(40))

    pinned = list(service.stream_experiments("alice", read_context.snapshot.read_time))
    fresh = list(service.stream_experiments("alice"))

    assert [r.experiment_ids for r in pinned] == [("E1",)] and [
        r.experiment_ids for r in fresh
    ] == [("E1", "E2")]


def test_snapshot_reads_repeat_while_ingestion_continues(tmp_path: Path) -> None:
    """A snapshot picked as "now" should return the same data after later commits."""
    seed_e1(tmp_path)
    service = build_service(tmp_path)
    read_time = service.resolve("alice").snapshot.read_time
    first = list(service.stream_experiment_data("alice", "E1", read_timestamp=read_time))
    LocalExportWriter(tmp_path, clock=fixed_clock(30)).append_points(
        "E1", "train", "loss", [Point(step=9, wall_time=1009.0, value=0.1)]
    )

    second = list(service.stream_experiment_data("alice", "E1", read_timestamp=read_time))

    assert (read_time, second) == (commit_time(20), first)


def test_timestamp_past_latest_commit_is_rejected(tmp_path: Path) -> None:
    """A timestamp that later commits could still land under is not a stable snapshot."""
    seed_e1(tmp_path)
    service = build_service(tmp_path)

    with pytest.raises(ExportInvalidArgumentError):
        list(service.stream_experiment_data("alice", "E1", read_timestamp=commit_time(60)))

    assert True


def test_get_experiment_populates_statistics(tmp_path: Path) -> None:
    """Statistics fields should be computed when masked."""
    seed_full_experiment(tmp_path)
    service = build_service(tmp_path)

    experiment = service.get_experiment(
        "alice", "E1", ExperimentMask(num_tags=True, total_blob_bytes=True)
    )

    assert (experiment.num_tags, experiment.total_blob_bytes) == (3, len(B1_BYTES))


def test_get_experiment_denies_foreign_caller(tmp_path: Path) -> None:
    """Non-owners may not read experiment metadata."""
    seed_e1(tmp_path)
    service = build_service(tmp_path)

    with pytest.raises(ExportPermissionDeniedError):
        service.get_experiment("bob", "E1")

    assert True


def test_get_experiment_raises_for_unknown_id(tmp_path: Path) -> None:
    """Unknown experiments should be reported as not found."""
    seed_e1(tmp_path)

    with pytest.raises(ExportNotFoundError):
        build_service(tmp_path).get_experiment("alice", "E404")

    assert True


def test_stream_experiment_data_renders_one_payload_per_response(tmp_path: Path) -> None:
    """Each response should carry exactly one payload field."""
    seed_full_experiment(tmp_path)
    service = build_service(tmp_path, points_per_batch=1)

    responses = list(service.stream_experiment_data("alice", "E1"))
    payload_counts = {
        sum(item is not None for item in (r.points, r.tensors, r.blob_sequences))
        for r in responses
    }

    assert payload_counts == {1} and len(responses) == 4


def test_stream_blob_data_chunks_by_configured_size(tmp_path: Path) -> None:
    """Blob chunks should follow the configured chunk size and verify."""
    seed_full_experiment(tmp_path)
    service = build_service(tmp_path, blob_chunk_bytes=6)

    responses = list(service.stream_blob_data("alice", "B1"))

    assert [len(r.data) for r in responses] == [6, 4] and reassemble_blob(
        blob_chunk_from_response(r) for r in responses
    ) == B1_BYTES


def test_stream_blob_data_denies_caller_without_experiment_access(tmp_path: Path) -> None:
    """Blob reads should require access to the owning experiment."""
    seed_full_experiment(tmp_path)

    with pytest.raises(ExportPermissionDeniedError):
        build_service(tmp_path).stream_blob_data("bob", "B1")

    assert True


def test_closing_response_stream_closes_engine_stream(tmp_path: Path) -> None:
    """Abandoning a response iterator should finish the underlying stream."""
    seed_full_experiment(tmp_path)
    responses = build_service(tmp_path, points_per_batch=1).stream_experiment_data("alice", "E1")
    next(responses)

    responses.close()

    assert list(responses) == []
