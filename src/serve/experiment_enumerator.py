"""Experiment enumeration for one user at a snapshot.

This module streams the experiments owned by the effective user as
non-empty batches of projected records. Order follows storage order and
is not part of the contract.
"""

from __future__ import annotations

from typing import Iterator

from core.errors import (
    ExportInvalidArgumentError,
    ExportNotFoundError,
    ExportPermissionDeniedError,
    ExportTransientError,
)
from core.logging_config import get_logger
from core.types import Experiment, ExperimentMask, ReadContext
from serve.field_mask import project_experiment
from store.protocols import Authorizer, ExperimentStore

_LOGGER = get_logger(__name__)


def enumerate_experiments(
    store: ExperimentStore,
    authorizer: Authorizer,
    read_context: ReadContext,
    batch_size: int,
    limit: int = 0,
    mask: ExperimentMask | None = None,
) -> Iterator[tuple[Experiment, ...]]:
    """Validate the request and return a lazy stream of experiment batches.

    Args:
        store: Experiment store collaborator.
        authorizer: Authorization collaborator.
        read_context: Resolved snapshot and effective user.
        batch_size: Maximum experiments per batch.
        limit: Total experiments across the stream; ``0`` means all.
        mask: Optional field mask; ``None`` populates only ids.

    Returns:
        Iterator of non-empty batches.

    Raises:
        ExportInvalidArgumentError: If limit or batch size is invalid.
        ExportPermissionDeniedError: If the caller may not read the user.
    """
    if limit < 0:
        raise ExportInvalidArgumentError(
            f"Invalid limit {limit}: expected 0 (no limit) or a positive integer."
        )
    if batch_size < 1:
        raise ExportInvalidArgumentError(f"Invalid batch size {batch_size}: expected value >= 1.")
    if not authorizer.may_read_user(read_context.caller_id, read_context.user_id):
        raise ExportPermissionDeniedError(
            f"Caller '{read_context.caller_id}' may not read experiments of user "
            f"'{read_context.user_id}'."
        )
    return _experiment_batches(store, authorizer, read_context, batch_size, limit, mask)


def _experiment_batches(
    store: ExperimentStore,
    authorizer: Authorizer,
    read_context: ReadContext,
    batch_size: int,
    limit: int,
    mask: ExperimentMask | None,
) -> Iterator[tuple[Experiment, ...]]:
    """Yield projected experiments in batches until exhausted or limited."""
    snapshot = read_context.snapshot
    batch: list[Experiment] = []
    emitted = 0
    for experiment_id in authorizer.owned_experiment_ids(read_context.user_id, snapshot):
        if limit and emitted + len(batch) >= limit:
            break
        batch.append(_load_experiment(store, experiment_id, read_context, mask))
        if len(batch) >= batch_size:
            emitted += len(batch)
            yield tuple(batch)
            batch = []
    if batch:
        emitted += len(batch)
        yield tuple(batch)
    _LOGGER.info(
        "experiments_stream_completed",
        user_id=read_context.user_id,
        experiment_count=emitted,
        limit=limit,
    )


def _load_experiment(
    store: ExperimentStore,
    experiment_id: str,
    read_context: ReadContext,
    mask: ExperimentMask | None,
) -> Experiment:
    """Build one projected experiment record."""
    base = Experiment(experiment_id=experiment_id)
    if mask is None or mask.is_empty():
        return base
    snapshot = read_context.snapshot
    try:
        record = store.get_experiment(experiment_id, snapshot)
        statistics = (
            store.experiment_statistics(experiment_id, snapshot)
            if mask.needs_statistics()
            else None
        )
    except ExportNotFoundError as error:
        raise ExportTransientError(
            f"Experiment '{experiment_id}' is owned by '{read_context.user_id}' but its "
            f"record is unreadable at {snapshot.read_time.isoformat()}. Retry the stream."
        ) from error
    return project_experiment(base, record, mask, statistics)
