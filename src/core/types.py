"""Shared typed models.

This module defines immutable data models used by the store, the
streaming engine, and client helpers to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Iterable, Literal, Mapping, Union

from core.constants import MICROS_PER_SECOND
from core.errors import ExportInvalidArgumentError

DataClass = Literal["scalar", "tensor", "blob_sequence"]
DATA_CLASSES: tuple[DataClass, ...] = ("scalar", "tensor", "blob_sequence")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Return the current timezone-aware UTC time."""
    return datetime.now(timezone.utc)


def datetime_to_micros(value: datetime) -> int:
    """Convert an aware datetime to integer microseconds since the epoch."""
    delta = value - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * MICROS_PER_SECOND + delta.microseconds


def micros_to_datetime(value: int) -> datetime:
    """Convert integer microseconds since the epoch to an aware UTC datetime."""
    seconds, micros = divmod(value, MICROS_PER_SECOND)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=micros)


@dataclass(frozen=True)
class Snapshot:
    """Immutable read point fixing "now" for a multi-call session.

    Attributes:
        read_time: Timezone-aware UTC instant. Data committed at or before
            this instant is visible; later commits are not.
    """

    read_time: datetime

    def __post_init__(self) -> None:
        if self.read_time.tzinfo is None:
            raise ExportInvalidArgumentError(
                f"Invalid snapshot time {self.read_time.isoformat()}: "
                "expected a timezone-aware timestamp."
            )
        object.__setattr__(self, "read_time", self.read_time.astimezone(timezone.utc))

    @property
    def micros(self) -> int:
        """Return the snapshot as microseconds since the epoch."""
        return datetime_to_micros(self.read_time)

    def includes(self, committed_at: int, deleted_at: int | None = None) -> bool:
        """Return whether an item with these commit times is visible."""
        if committed_at > self.micros:
            return False
        return deleted_at is None or deleted_at > self.micros


@dataclass(frozen=True)
class ReadContext:
    """Effective snapshot and user for one request.

    Attributes:
        snapshot: Read snapshot used by every downstream read.
        user_id: Effective user (caller, or the impersonated subject).
        caller_id: Authenticated caller identity.
    """

    snapshot: Snapshot
    user_id: str
    caller_id: str

    @property
    def is_impersonating(self) -> bool:
        """Return whether the effective user differs from the caller."""
        return self.user_id != self.caller_id


DESCRIPTIVE_FIELDS = ("name", "description", "create_time", "update_time")
STATISTICS_FIELDS = (
    "num_runs",
    "num_tags",
    "num_scalars",
    "total_tensor_bytes",
    "total_blob_bytes",
)


@dataclass(frozen=True)
class ExperimentMask:
    """Flags selecting which optional experiment fields must be populated."""

    name: bool = False
    description: bool = False
    create_time: bool = False
    update_time: bool = False
    num_runs: bool = False
    num_tags: bool = False
    num_scalars: bool = False
    total_tensor_bytes: bool = False
    total_blob_bytes: bool = False

    @classmethod
    def from_fields(cls, names: Iterable[str]) -> "ExperimentMask":
        """Build a mask from field names, ignoring unknown markers."""
        known = {item.name for item in fields(cls)}
        return cls(**{name: True for name in names if name in known})

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> "ExperimentMask":
        """Build a mask from a field->flag mapping, ignoring unknown markers."""
        return cls.from_fields(name for name, flag in payload.items() if flag is True)

    def selected_fields(self) -> tuple[str, ...]:
        """Return names of fields whose flag is set, in declaration order."""
        return tuple(item.name for item in fields(self) if getattr(self, item.name))

    def is_empty(self) -> bool:
        """Return whether no field is selected."""
        return not self.selected_fields()

    def needs_statistics(self) -> bool:
        """Return whether any selected field is computed from experiment data."""
        return any(name in STATISTICS_FIELDS for name in self.selected_fields())


@dataclass(frozen=True)
class Experiment:
    """Experiment record as returned to callers.

    Only ``experiment_id`` is guaranteed. Optional fields are ``None`` when
    not populated.
    """

    experiment_id: str
    name: str | None = None
    description: str | None = None
    create_time: datetime | None = None
    update_time: datetime | None = None
    num_runs: int | None = None
    num_tags: int | None = None
    num_scalars: int | None = None
    total_tensor_bytes: int | None = None
    total_blob_bytes: int | None = None


@dataclass(frozen=True)
class ExperimentRecord:
    """Stored descriptive experiment state visible at a snapshot.

    Attributes:
        experiment_id: Permanent server-assigned identifier.
        owner_id: Owning user identifier.
        name: Experiment name from the applicable revision.
        description: Experiment description from the applicable revision.
        create_time: Creation instant.
        update_time: Last descriptive update visible at the snapshot.
    """

    experiment_id: str
    owner_id: str
    name: str
    description: str
    create_time: datetime
    update_time: datetime


@dataclass(frozen=True)
class ExperimentStatistics:
    """Summary counts of an experiment's data at a snapshot."""

    num_runs: int
    num_tags: int
    num_scalars: int
    total_tensor_bytes: int
    total_blob_bytes: int


@dataclass(frozen=True)
class TagMetadata:
    """Fixed metadata record of a tag.

    Attributes:
        data_class: Payload kind of the tag for its whole lifetime.
        plugin_name: Name of the plugin that owns the tag.
        plugin_content: Opaque plugin-specific metadata bytes.
        display_name: Human readable tag name.
        summary_description: Free-form description.
    """

    data_class: DataClass
    plugin_name: str = ""
    plugin_content: bytes = b""
    display_name: str = ""
    summary_description: str = ""


@dataclass(frozen=True)
class TagDescriptor:
    """Run/tag pair and its metadata."""

    run_name: str
    tag_name: str
    metadata: TagMetadata


@dataclass(frozen=True)
class TensorValue:
    """Dense tensor value.

    Attributes:
        dtype: Element type name, e.g. ``float32``.
        shape: Dimension sizes.
        content: Raw little-endian element bytes.
    """

    dtype: str
    shape: tuple[int, ...]
    content: bytes


@dataclass(frozen=True)
class BlobSequence:
    """Ordered blob references held by one blob-sequence point."""

    blob_ids: tuple[str, ...] = ()


PointValue = Union[float, TensorValue, BlobSequence]


@dataclass(frozen=True)
class Point:
    """One (step, wall_time, value) triple of a tag."""

    step: int
    wall_time: float
    value: PointValue


def _check_columns(kind: str, steps: tuple, wall_times: tuple, values: tuple) -> None:
    """Validate that columnar point sequences have equal length."""
    if not len(steps) == len(wall_times) == len(values):
        raise ValueError(
            f"Invalid {kind} columns: steps={len(steps)}, wall_times={len(wall_times)}, "
            f"values={len(values)}. Columns must have equal length."
        )


@dataclass(frozen=True)
class ScalarPoints:
    """Columnar scalar points; element i across columns is one point."""

    steps: tuple[int, ...] = ()
    wall_times: tuple[float, ...] = ()
    values: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        _check_columns("scalar", self.steps, self.wall_times, self.values)

    def __len__(self) -> int:
        return len(self.steps)


@dataclass(frozen=True)
class TensorPoints:
    """Columnar tensor points; element i across columns is one point."""

    steps: tuple[int, ...] = ()
    wall_times: tuple[float, ...] = ()
    values: tuple[TensorValue, ...] = ()

    def __post_init__(self) -> None:
        _check_columns("tensor", self.steps, self.wall_times, self.values)

    def __len__(self) -> int:
        return len(self.steps)


@dataclass(frozen=True)
class BlobSequencePoints:
    """Columnar blob-sequence points; element i across columns is one point."""

    steps: tuple[int, ...] = ()
    wall_times: tuple[float, ...] = ()
    values: tuple[BlobSequence, ...] = ()

    def __post_init__(self) -> None:
        _check_columns("blob_sequence", self.steps, self.wall_times, self.values)

    def __len__(self) -> int:
        return len(self.steps)


ColumnarPoints = Union[ScalarPoints, TensorPoints, BlobSequencePoints]


@dataclass(frozen=True)
class TagDataBatch:
    """Points of one run/tag pair in exactly one payload kind.

    Exactly one of ``scalars``, ``tensors`` and ``blob_sequences`` is set,
    and it must agree with ``tag_metadata.data_class``.
    """

    run_name: str
    tag_name: str
    tag_metadata: TagMetadata
    scalars: ScalarPoints | None = None
    tensors: TensorPoints | None = None
    blob_sequences: BlobSequencePoints | None = None

    def __post_init__(self) -> None:
        payloads = {
            "scalar": self.scalars,
            "tensor": self.tensors,
            "blob_sequence": self.blob_sequences,
        }
        active = [kind for kind, payload in payloads.items() if payload is not None]
        if len(active) != 1:
            raise ValueError(
                f"Invalid batch for {self.run_name}/{self.tag_name}: expected exactly one "
                f"payload kind, got {active or 'none'}."
            )
        if active[0] != self.tag_metadata.data_class:
            raise ValueError(
                f"Invalid batch for {self.run_name}/{self.tag_name}: payload kind "
                f"{active[0]!r} does not match tag data class "
                f"{self.tag_metadata.data_class!r}."
            )

    @property
    def data_class(self) -> DataClass:
        """Return the payload kind of this batch."""
        return self.tag_metadata.data_class

    @property
    def points(self) -> ColumnarPoints:
        """Return the active columnar payload."""
        if self.scalars is not None:
            return self.scalars
        if self.tensors is not None:
            return self.tensors
        if self.blob_sequences is not None:
            return self.blob_sequences
        raise ValueError(
            f"Batch for {self.run_name}/{self.tag_name} carries no payload columns."
        )


@dataclass(frozen=True)
class TagSeries:
    """Full step-ordered point set of one tag, aggregated from batches."""

    run_name: str
    tag_name: str
    tag_metadata: TagMetadata
    steps: tuple[int, ...]
    wall_times: tuple[float, ...]
    values: tuple[PointValue, ...]


@dataclass(frozen=True)
class BlobStat:
    """Size and integrity metadata of a stored blob.

    Attributes:
        blob_id: Opaque blob identifier.
        size: Total blob length in bytes.
        crc32c: Whole-object CRC32C when the origin store supplies one.
        experiment_id: Experiment that references the blob, if known.
    """

    blob_id: str
    size: int
    crc32c: int | None = None
    experiment_id: str | None = None


@dataclass(frozen=True)
class BlobChunk:
    """Offset-tagged slice of a blob's bytes."""

    data: bytes
    offset: int
    final_chunk: bool = False
    final_crc32c: int | None = None

    def __post_init__(self) -> None:
        if self.final_crc32c is not None and not self.final_chunk:
            raise ValueError(
                f"Invalid chunk at offset {self.offset}: only the final chunk may carry "
                "a whole-object checksum."
            )
