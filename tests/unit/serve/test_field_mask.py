"""Unit tests for experiment field-mask projection."""

from __future__ import annotations

from dataclasses import fields

from core.types import Experiment, ExperimentMask, ExperimentRecord, ExperimentStatistics
from serve.field_mask import project_experiment
from tests.store_fixtures import commit_time

_RECORD = ExperimentRecord(
    experiment_id="E1",
    owner_id="alice",
    name="baseline",
    description="first sweep",
    create_time=commit_time(10),
    update_time=commit_time(20),
)
_STATISTICS = ExperimentStatistics(
    num_runs=1, num_tags=2, num_scalars=3, total_tensor_bytes=4, total_blob_bytes=5
)


def test_none_mask_returns_base_unchanged() -> None:
    """No mask should leave the input untouched."""
    base = Experiment(experiment_id="E1")

    assert project_experiment(base, _RECORD, None, _STATISTICS) is base


def test_every_masked_field_is_populated() -> None:
    """A full mask should populate every optional field."""
    mask = ExperimentMask.from_fields(item.name for item in fields(ExperimentMask))

    projected = project_experiment(Experiment(experiment_id="E1"), _RECORD, mask, _STATISTICS)

    assert all(getattr(projected, name) is not None for name in mask.selected_fields())


def test_descriptive_fields_are_populated_as_a_group() -> None:
    """Requesting one descriptive field may populate the others too."""
    projected = project_experiment(
        Experiment(experiment_id="E1"), _RECORD, ExperimentMask(name=True)
    )

    assert (projected.name, projected.update_time, projected.num_tags) == (
        "baseline",
        commit_time(20),
        None,
    )


def test_projection_never_removes_present_fields() -> None:
    """Fields already present on the input should survive any mask."""
    base = Experiment(experiment_id="E1", name="kept", num_runs=9)

    projected = project_experiment(base, _RECORD, ExperimentMask(name=True), _STATISTICS)

    assert (projected.name, projected.num_runs) == ("kept", 9)


def test_statistics_fields_require_statistics() -> None:
    """Statistics fields should stay empty when no statistics are supplied."""
    projected = project_experiment(
        Experiment(experiment_id="E1"), _RECORD, ExperimentMask(num_scalars=True)
    )

    assert projected.num_scalars is None
