"""Commit helpers for seeding the reference store.

This module stands in for the ingestion path that produces experiment data.
Every write records a commit time so snapshot reads can exclude it, and
publishes the committed-through mark only after its files are on disk. The
writer assumes it is the only one writing to its data root.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Sequence, cast

from core.checksum import crc32c
from core.constants import (
    BLOB_DATA_FILE_NAME,
    BLOB_META_FILE_NAME,
    BLOBS_DIR_NAME,
    EXPERIMENT_FILE_NAME,
    EXPERIMENTS_DIR_NAME,
    POINTS_DIR_NAME,
    TAGS_FILE_NAME,
    USERS_FILE_NAME,
)
from core.errors import ExportInvalidArgumentError
from core.identifiers import validate_identifier
from core.logging_config import get_logger
from core.types import (
    Point,
    TagDescriptor,
    TagMetadata,
    datetime_to_micros,
    micros_to_datetime,
    utc_now,
)
from store.catalog_io import (
    build_tag_key,
    publish_commit_mark,
    read_commit_mark,
    read_json_document,
    tag_descriptor_from_payload,
    tag_payload,
    write_json_document,
)
from store.point_table import points_to_table, write_point_file

_LOGGER = get_logger(__name__)


class LocalExportWriter:
    """Writes experiments, tags, points, and blobs with commit times."""

    def __init__(self, data_root: Path, clock: Callable[[], datetime] = utc_now) -> None:
        """Initialize the writer.

        Args:
            data_root: Root directory of the reference store.
            clock: Source of commit times when none is given explicitly.
        """
        self._data_root = data_root
        self._clock = clock

    def register_user(self, user_id: str, committed_at: datetime | None = None) -> None:
        """Add a user to the user registry."""
        validate_identifier(user_id, "user id")
        users_path = self._data_root / USERS_FILE_NAME
        payload = read_json_document(users_path) if users_path.exists() else {"users": []}
        users = cast(list[dict[str, Any]], payload["users"])
        if any(entry["user_id"] == user_id for entry in users):
            return
        commit_micros = self._commit_micros(committed_at)
        users.append({"user_id": user_id, "committed_at": commit_micros})
        write_json_document(users_path, payload)
        publish_commit_mark(self._data_root, commit_micros)

    def create_experiment(
        self,
        experiment_id: str,
        owner_id: str,
        name: str = "",
        description: str = "",
        committed_at: datetime | None = None,
    ) -> None:
        """Commit a new experiment with its initial descriptive revision.

        Raises:
            ExportInvalidArgumentError: If the experiment already exists.
        """
        validate_identifier(experiment_id, "experiment id")
        document_path = self._experiment_dir(experiment_id) / EXPERIMENT_FILE_NAME
        if document_path.exists():
            raise ExportInvalidArgumentError(
                f"Experiment '{experiment_id}' already exists. Experiment ids are permanent."
            )
        commit_micros = self._commit_micros(committed_at)
        write_json_document(
            document_path,
            {
                "experiment_id": experiment_id,
                "owner_id": owner_id,
                "committed_at": commit_micros,
                "deleted_at": None,
                "revisions": [
                    {"committed_at": commit_micros, "name": name, "description": description}
                ],
            },
        )
        publish_commit_mark(self._data_root, commit_micros)
        _LOGGER.info("experiment_committed", experiment_id=experiment_id, owner_id=owner_id)

    def update_experiment(
        self,
        experiment_id: str,
        name: str | None = None,
        description: str | None = None,
        committed_at: datetime | None = None,
    ) -> None:
        """Commit a descriptive revision; unset arguments keep prior values."""
        document_path, payload = self._load_experiment(experiment_id)
        revisions = cast(list[dict[str, Any]], payload["revisions"])
        latest = max(revisions, key=lambda item: int(item["committed_at"]))
        commit_micros = self._commit_micros(committed_at)
        revisions.append(
            {
                "committed_at": commit_micros,
                "name": latest["name"] if name is None else name,
                "description": latest["description"] if description is None else description,
            }
        )
        write_json_document(document_path, payload)
        publish_commit_mark(self._data_root, commit_micros)

    def delete_experiment(self, experiment_id: str, committed_at: datetime | None = None) -> None:
        """Commit an experiment deletion; earlier snapshots still see it."""
        document_path, payload = self._load_experiment(experiment_id)
        commit_micros = self._commit_micros(committed_at)
        payload["deleted_at"] = commit_micros
        write_json_document(document_path, payload)
        publish_commit_mark(self._data_root, commit_micros)

    def add_tag(
        self,
        experiment_id: str,
        run_name: str,
        tag_name: str,
        metadata: TagMetadata,
        committed_at: datetime | None = None,
    ) -> None:
        """Commit a run/tag pair; re-adding with the same kind is a no-op.

        Raises:
            ExportInvalidArgumentError: If the tag exists with another payload kind.
        """
        self._load_experiment(experiment_id)
        tags_path = self._experiment_dir(experiment_id) / TAGS_FILE_NAME
        payload = read_json_document(tags_path) if tags_path.exists() else {"tags": []}
        entries = cast(list[dict[str, Any]], payload["tags"])
        for entry in entries:
            existing = tag_descriptor_from_payload(entry, tags_path)
            if (existing.run_name, existing.tag_name) != (run_name, tag_name):
                continue
            if existing.metadata.data_class != metadata.data_class:
                raise ExportInvalidArgumentError(
                    f"Tag {run_name}/{tag_name} already holds {existing.metadata.data_class} "
                    f"data and cannot switch to {metadata.data_class}."
                )
            return
        descriptor = TagDescriptor(run_name=run_name, tag_name=tag_name, metadata=metadata)
        commit_micros = self._commit_micros(committed_at)
        entries.append(tag_payload(descriptor, commit_micros))
        write_json_document(tags_path, payload)
        publish_commit_mark(self._data_root, commit_micros)

    def append_points(
        self,
        experiment_id: str,
        run_name: str,
        tag_name: str,
        points: Sequence[Point],
        committed_at: datetime | None = None,
    ) -> None:
        """Commit a batch of points to an existing tag.

        Raises:
            ExportInvalidArgumentError: If the tag is unknown or values mismatch its kind.
        """
        descriptor = self._find_tag(experiment_id, run_name, tag_name)
        commit_micros = self._commit_micros(committed_at)
        try:
            table = points_to_table(points, descriptor.metadata.data_class, commit_micros)
        except ValueError as error:
            raise ExportInvalidArgumentError(
                f"Invalid points for {run_name}/{tag_name}: {error}"
            ) from error
        tag_dir = (
            self._experiment_dir(experiment_id)
            / POINTS_DIR_NAME
            / build_tag_key(run_name, tag_name)
        )
        write_point_file(tag_dir, table, commit_micros)
        publish_commit_mark(self._data_root, commit_micros)
        _LOGGER.info(
            "points_committed",
            experiment_id=experiment_id,
            run_name=run_name,
            tag_name=tag_name,
            point_count=len(points),
        )

    def put_blob(
        self,
        blob_id: str,
        data: bytes,
        experiment_id: str,
        with_checksum: bool = True,
        committed_at: datetime | None = None,
    ) -> None:
        """Store an immutable blob, optionally recording its CRC32C.

        Raises:
            ExportInvalidArgumentError: If the blob already exists.
        """
        validate_identifier(blob_id, "blob id")
        blob_dir = self._data_root / BLOBS_DIR_NAME / blob_id
        if (blob_dir / BLOB_META_FILE_NAME).exists():
            raise ExportInvalidArgumentError(f"Blob '{blob_id}' already exists. Blobs are immutable.")
        commit_micros = self._commit_micros(committed_at)
        blob_dir.mkdir(parents=True, exist_ok=True)
        (blob_dir / BLOB_DATA_FILE_NAME).write_bytes(data)
        write_json_document(
            blob_dir / BLOB_META_FILE_NAME,
            {
                "blob_id": blob_id,
                "size": len(data),
                "crc32c": crc32c(data) if with_checksum else None,
                "experiment_id": experiment_id,
                "committed_at": commit_micros,
            },
        )
        publish_commit_mark(self._data_root, commit_micros)

    def _find_tag(self, experiment_id: str, run_name: str, tag_name: str) -> TagDescriptor:
        """Return the committed descriptor of a run/tag pair."""
        tags_path = self._experiment_dir(experiment_id) / TAGS_FILE_NAME
        if tags_path.exists():
            for entry in cast(list[dict[str, Any]], read_json_document(tags_path)["tags"]):
                descriptor = tag_descriptor_from_payload(entry, tags_path)
                if (descriptor.run_name, descriptor.tag_name) == (run_name, tag_name):
                    return descriptor
        raise ExportInvalidArgumentError(
            f"Unknown tag {run_name}/{tag_name} in experiment '{experiment_id}'. "
            "Add the tag before appending points."
        )

    def _load_experiment(self, experiment_id: str) -> tuple[Path, dict[str, Any]]:
        """Return the document path and payload of an existing experiment."""
        validate_identifier(experiment_id, "experiment id")
        document_path = self._experiment_dir(experiment_id) / EXPERIMENT_FILE_NAME
        if not document_path.exists():
            raise ExportInvalidArgumentError(
                f"Unknown experiment '{experiment_id}'. Create it before writing to it."
            )
        return document_path, read_json_document(document_path)

    def _experiment_dir(self, experiment_id: str) -> Path:
        """Return the directory holding one experiment."""
        return self._data_root / EXPERIMENTS_DIR_NAME / experiment_id

    def _commit_micros(self, committed_at: datetime | None) -> int:
        """Pick a commit time strictly above the published mark.

        Clock readings at or below the mark are bumped past it. Explicit
        commit times must already be above it.

        Raises:
            ExportInvalidArgumentError: If an explicit commit time is not after the mark.
        """
        mark = read_commit_mark(self._data_root)
        if committed_at is None:
            return max(datetime_to_micros(self._clock()), mark + 1)
        commit_micros = datetime_to_micros(committed_at)
        if commit_micros <= mark:
            raise ExportInvalidArgumentError(
                f"Commit time {committed_at.isoformat()} is not after the committed-through "
                f"mark {micros_to_datetime(mark).isoformat()}. Commit with a later timestamp."
            )
        return commit_micros
