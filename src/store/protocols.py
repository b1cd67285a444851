"""Collaborator contracts consumed by the export engine.

The engine reads experiments, points, and blobs through these protocols
and never touches storage formats directly. Implementations translate
their own failures into tbexport errors at this boundary.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterator, Protocol

from core.types import (
    BlobStat,
    ExperimentRecord,
    ExperimentStatistics,
    Point,
    Snapshot,
    TagDescriptor,
)


class PointCursor(Protocol):
    """Lazy, closeable iterator over one tag's points in step order."""

    def __iter__(self) -> Iterator[Point]: ...

    def close(self) -> None: ...


class ExperimentStore(Protocol):
    """Read access to experiment records and time-series data."""

    def committed_through(self) -> datetime: ...

    def get_experiment(self, experiment_id: str, snapshot: Snapshot) -> ExperimentRecord: ...

    def experiment_statistics(
        self, experiment_id: str, snapshot: Snapshot
    ) -> ExperimentStatistics: ...

    def list_tags(self, experiment_id: str, snapshot: Snapshot) -> list[TagDescriptor]: ...

    def open_point_cursor(
        self, experiment_id: str, tag: TagDescriptor, snapshot: Snapshot
    ) -> PointCursor: ...


class BlobSource(Protocol):
    """Byte-range access to immutable blobs."""

    def stat_blob(self, blob_id: str) -> BlobStat: ...

    def read_blob_range(self, blob_id: str, offset: int, length: int) -> bytes: ...


class Authorizer(Protocol):
    """Identity and ownership decisions delegated by the engine."""

    def user_exists(self, user_id: str) -> bool: ...

    def may_impersonate(self, caller_id: str, subject_id: str) -> bool: ...

    def may_read_user(self, caller_id: str, user_id: str) -> bool: ...

    def may_read_experiment(self, caller_id: str, record: ExperimentRecord) -> bool: ...

    def owned_experiment_ids(self, user_id: str, snapshot: Snapshot) -> Iterator[str]: ...
