"""Experiment field-mask projection.

The mask is a lower bound: every masked field is populated, and fields
already present on the input are never removed. Descriptive fields come
from one record read, so requesting any of them populates all of them.
"""

from __future__ import annotations

from dataclasses import replace

from core.types import (
    DESCRIPTIVE_FIELDS,
    STATISTICS_FIELDS,
    Experiment,
    ExperimentMask,
    ExperimentRecord,
    ExperimentStatistics,
)


def project_experiment(
    base: Experiment,
    record: ExperimentRecord,
    mask: ExperimentMask | None,
    statistics: ExperimentStatistics | None = None,
) -> Experiment:
    """Populate masked experiment fields on top of ``base``.

    Args:
        base: Experiment to extend; its populated fields are kept.
        record: Stored descriptive state at the read snapshot.
        mask: Requested fields; ``None`` behaves like an empty mask.
        statistics: Summary counts, required for statistics fields to appear.

    Returns:
        Projected experiment.
    """
    if mask is None:
        return base
    selected = set(mask.selected_fields())
    updates: dict[str, object] = {}
    if selected.intersection(DESCRIPTIVE_FIELDS):
        for name in DESCRIPTIVE_FIELDS:
            updates[name] = getattr(record, name)
    if statistics is not None:
        for name in STATISTICS_FIELDS:
            if name in selected:
                updates[name] = getattr(statistics, name)
    kept = {name: value for name, value in updates.items() if getattr(base, name) is None}
    return replace(base, **kept) if kept else base
