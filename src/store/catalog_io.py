"""Catalog document persistence helpers.

This module isolates JSON document IO and payload (de)serialization for
experiment, tag, blob, and user catalogs of the reference store. It keeps
store orchestration focused on snapshot visibility rules.
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
from pathlib import Path
from typing import Any, cast

from core.constants import COMMIT_MARK_FILE_NAME, HASH_ALGORITHM, TAG_KEY_LENGTH
from core.errors import ExportDataLossError, ExportTransientError
from core.types import (
    DATA_CLASSES,
    DataClass,
    ExperimentRecord,
    Snapshot,
    TagDescriptor,
    TagMetadata,
    micros_to_datetime,
)


def build_tag_key(run_name: str, tag_name: str) -> str:
    """Build a stable filesystem-safe key for a run/tag pair.

    Args:
        run_name: Run name.
        tag_name: Tag name.

    Returns:
        Hex digest prefix identifying the pair.
    """
    digest = hashlib.new(HASH_ALGORITHM, f"{run_name}\x00{tag_name}".encode("utf-8"))
    return digest.hexdigest()[:TAG_KEY_LENGTH]


def read_json_document(document_path: Path) -> dict[str, Any]:
    """Read and validate one JSON catalog document.

    Args:
        document_path: Document path.

    Returns:
        Parsed JSON object.

    Raises:
        ExportTransientError: If the document cannot be read.
        ExportDataLossError: If the document is not a JSON object.
    """
    try:
        raw_text = document_path.read_text(encoding="utf-8")
    except OSError as error:
        raise ExportTransientError(
            f"Failed to read catalog document at {document_path}: {error}. "
            "Retry the read once storage is available."
        ) from error
    try:
        payload = json.loads(raw_text)
    except json.JSONDecodeError as error:
        raise ExportDataLossError(
            f"Failed to parse catalog document at {document_path}: {error.msg}. "
            "Restore the document from a backup."
        ) from error
    if not isinstance(payload, dict):
        raise ExportDataLossError(
            f"Failed to parse catalog document at {document_path}: "
            "expected JSON object at top level. Restore the document from a backup."
        )
    return payload


def write_json_document(document_path: Path, payload: dict[str, Any]) -> None:
    """Atomically replace one JSON catalog document.

    Args:
        document_path: Document path.
        payload: JSON-safe payload.
    """
    document_path.parent.mkdir(parents=True, exist_ok=True)
    staging_path = document_path.with_name(document_path.name + ".tmp")
    staging_path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    os.replace(staging_path, document_path)


def read_commit_mark(data_root: Path) -> int:
    """Return the published committed-through mark in epoch micros.

    Every commit at or below the mark has finished writing. A store that
    never published a mark reports zero.

    Args:
        data_root: Root directory of the reference store.

    Returns:
        Committed-through mark.

    Raises:
        ExportTransientError: If the mark document cannot be read.
        ExportDataLossError: If the mark document is malformed.
    """
    mark_path = data_root / COMMIT_MARK_FILE_NAME
    if not mark_path.exists():
        return 0
    payload = read_json_document(mark_path)
    committed_through = payload.get("committed_through")
    if not isinstance(committed_through, int):
        raise ExportDataLossError(
            f"Invalid commit mark in {mark_path}: expected integer committed_through. "
            "Restore the document from a backup."
        )
    return committed_through


def publish_commit_mark(data_root: Path, commit_micros: int) -> None:
    """Advance the committed-through mark; it never moves backwards."""
    mark_path = data_root / COMMIT_MARK_FILE_NAME
    committed_through = max(read_commit_mark(data_root), commit_micros)
    write_json_document(mark_path, {"committed_through": committed_through})


def experiment_visible(payload: dict[str, Any], snapshot: Snapshot) -> bool:
    """Return whether an experiment document is live at a snapshot."""
    deleted_at = payload.get("deleted_at")
    return snapshot.includes(
        int(payload["committed_at"]), None if deleted_at is None else int(deleted_at)
    )


def experiment_record_at(payload: dict[str, Any], snapshot: Snapshot) -> ExperimentRecord | None:
    """Resolve the experiment state visible at a snapshot.

    Args:
        payload: Experiment document payload.
        snapshot: Read snapshot.

    Returns:
        Visible record, or ``None`` if the experiment is not visible.
    """
    if not experiment_visible(payload, snapshot):
        return None
    committed_at = int(payload["committed_at"])
    revisions = cast(list[dict[str, Any]], payload.get("revisions", []))
    visible = [item for item in revisions if snapshot.includes(int(item["committed_at"]))]
    latest = max(visible, key=lambda item: int(item["committed_at"]), default=None)
    update_micros = int(latest["committed_at"]) if latest else committed_at
    return ExperimentRecord(
        experiment_id=str(payload["experiment_id"]),
        owner_id=str(payload["owner_id"]),
        name=str(latest["name"]) if latest else "",
        description=str(latest["description"]) if latest else "",
        create_time=micros_to_datetime(committed_at),
        update_time=micros_to_datetime(update_micros),
    )


def tag_payload(descriptor: TagDescriptor, committed_at: int) -> dict[str, Any]:
    """Serialize a tag descriptor into a tags-document entry."""
    metadata = descriptor.metadata
    return {
        "run_name": descriptor.run_name,
        "tag_name": descriptor.tag_name,
        "tag_key": build_tag_key(descriptor.run_name, descriptor.tag_name),
        "committed_at": committed_at,
        "metadata": {
            "data_class": metadata.data_class,
            "plugin_name": metadata.plugin_name,
            "plugin_content": base64.b64encode(metadata.plugin_content).decode("ascii"),
            "display_name": metadata.display_name,
            "summary_description": metadata.summary_description,
        },
    }


def tag_descriptor_from_payload(payload: dict[str, Any], document_path: Path) -> TagDescriptor:
    """Deserialize one tags-document entry.

    Args:
        payload: Tag entry payload.
        document_path: Parent document path for error context.

    Returns:
        Typed tag descriptor.

    Raises:
        ExportDataLossError: If the entry is malformed.
    """
    metadata_payload = payload.get("metadata")
    if not isinstance(metadata_payload, dict):
        raise ExportDataLossError(
            f"Invalid tag entry in {document_path}: missing metadata object."
        )
    data_class = metadata_payload.get("data_class")
    if data_class not in DATA_CLASSES:
        raise ExportDataLossError(
            f"Invalid tag entry in {document_path}: unknown data class {data_class!r}."
        )
    metadata = TagMetadata(
        data_class=cast(DataClass, data_class),
        plugin_name=str(metadata_payload.get("plugin_name", "")),
        plugin_content=base64.b64decode(str(metadata_payload.get("plugin_content", ""))),
        display_name=str(metadata_payload.get("display_name", "")),
        summary_description=str(metadata_payload.get("summary_description", "")),
    )
    return TagDescriptor(
        run_name=str(payload["run_name"]),
        tag_name=str(payload["tag_name"]),
        metadata=metadata,
    )
