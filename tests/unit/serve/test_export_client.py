"""Unit tests for the export client and sessions."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from core.errors import ExportDataLossError, ExportTransientError
from core.types import (
    ExperimentMask,
    Point,
    ReadContext,
    ScalarPoints,
    Snapshot,
    TagDataBatch,
    TagMetadata,
    TensorPoints,
)
from serve.export_client import ExportClient, ExportSession, aggregate_tag_batches
from serve.response_adapter import StreamExperimentsResponse
from tests.store_fixtures import (
    B1_BYTES,
    build_config,
    build_service,
    commit_time,
    seed_e1,
    seed_full_experiment,
)


class _FlakyService:
    """Service whose listing fails a fixed number of times."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def stream_experiments(self, caller_id: str, **kwargs: object) -> Iterator:
        self.calls += 1
        yield StreamExperimentsResponse(experiment_ids=("E1",))
        if self.calls <= self.failures:
            raise ExportTransientError("storage unavailable")
        yield StreamExperimentsResponse(experiment_ids=("E2",))


def _flaky_session(failures: int, attempts: int = 3) -> tuple[ExportSession, _FlakyService]:
    service = _FlakyService(failures)
    read_context = ReadContext(Snapshot(commit_time(60)), "alice", "alice")
    return ExportSession(service, read_context, attempts), service  # type: ignore[arg-type]


def test_session_restarts_listing_from_scratch_on_transient_error() -> None:
    """A transient failure should restart the whole stream without duplicates."""
    session, service = _flaky_session(failures=1)

    experiments = session.list_experiments()

    assert [item.experiment_id for item in experiments] == ["E1", "E2"] and service.calls == 2


def test_session_raises_after_exhausting_attempts() -> None:
    """Persistent failures should surface after the configured attempts."""
    session, service = _flaky_session(failures=5, attempts=2)

    with pytest.raises(ExportTransientError):
        session.list_experiments()

    assert service.calls == 2


def test_session_keeps_snapshot_across_calls(tmp_path: Path) -> None:
    """Later commits should stay invisible to an open session."""
    writer = seed_e1(tmp_path)
    client = ExportClient(build_config(tmp_path), build_service(tmp_path))
    session = client.session("alice", read_timestamp=commit_time(20))
    writer.append_points(
        "E1", "train", "loss", [Point(step=9, wall_time=1009.0, value=0.1)], committed_at=commit_time(40)
    )

    series = session.read_experiment_data("E1")

    assert series[0].steps == (0, 5)


def test_read_experiment_data_aggregates_batches(tmp_path: Path) -> None:
    """Small batches should be concatenated into one series per tag."""
    seed_e1(tmp_path)
    client = ExportClient(build_config(tmp_path), build_service(tmp_path, points_per_batch=1))

    series = client.session("alice").read_experiment_data("E1")

    assert [(item.tag_name, item.steps, item.values) for item in series] == [
        ("loss", (0, 5), (0.9, 0.4))
    ]


def test_get_experiment_uses_session_snapshot(tmp_path: Path) -> None:
    """Metadata reads should return the revision visible at the session snapshot."""
    writer = seed_e1(tmp_path)
    client = ExportClient(build_config(tmp_path), build_service(tmp_path))
    session = client.session("alice", read_timestamp=commit_time(20))
    writer.update_experiment("E1", name="renamed", committed_at=commit_time(40))

    experiment = session.get_experiment("E1", ExperimentMask(name=True))

    assert experiment.name == "baseline"


def test_read_blob_returns_verified_bytes(tmp_path: Path) -> None:
    """Blob reads should reassemble and verify chunks."""
    seed_full_experiment(tmp_path)
    client = ExportClient(build_config(tmp_path), build_service(tmp_path, blob_chunk_bytes=3))

    assert client.session("alice").read_blob("B1") == B1_BYTES


def test_download_blobs_writes_each_blob(tmp_path: Path) -> None:
    """Parallel downloads should write one file per distinct blob."""
    data_root = tmp_path / "data"
    writer = seed_full_experiment(data_root)
    writer.put_blob("B2", b"second", "E1", committed_at=commit_time(40))
    client = ExportClient(build_config(data_root))

    paths = client.session("alice").download_blobs(["B1", "B2", "B1"], tmp_path / "out", 2)

    assert {blob_id: path.read_bytes() for blob_id, path in paths.items()} == {
        "B1": B1_BYTES,
        "B2": b"second",
    }


def test_download_blob_leaves_no_partial_file_on_corruption(tmp_path: Path) -> None:
    """A corrupted blob should not leave a file behind."""
    data_root = tmp_path / "data"
    seed_full_experiment(data_root)
    (data_root / "blobs" / "B1" / "data").write_bytes(b"9876543210")
    session = ExportClient(build_config(data_root)).session("alice")
    output_path = tmp_path / "out" / "B1"

    with pytest.raises(ExportDataLossError):
        session.download_blob("B1", output_path)

    assert not output_path.exists() and not list(output_path.parent.iterdir())


def test_aggregate_tag_batches_rejects_kind_switch() -> None:
    """One tag arriving with two payload kinds is corruption."""
    batches = [
        TagDataBatch("train", "loss", TagMetadata(data_class="scalar"), scalars=ScalarPoints()),
        TagDataBatch("train", "loss", TagMetadata(data_class="tensor"), tensors=TensorPoints()),
    ]

    with pytest.raises(ExportDataLossError):
        aggregate_tag_batches(batches)

    assert True


def test_with_data_root_builds_client_for_new_root(tmp_path: Path) -> None:
    """Cloning with a data root should read from that root."""
    seed_e1(tmp_path / "other")
    client = ExportClient(build_config(tmp_path)).with_data_root(str(tmp_path / "other"))

    experiments = client.session("alice").list_experiments()

    assert [item.experiment_id for item in experiments] == ["E1"]
