"""Local download of one experiment's exported data.

This module re-serializes streamed columnar batches into row-per-tag JSONL
files, fetches referenced blobs, and writes a manifest describing the
snapshot the files were read at.
"""

from __future__ import annotations

import base64
from dataclasses import asdict
from datetime import datetime
import json
from pathlib import Path

from core.constants import (
    DEFAULT_DOWNLOAD_WORKERS,
    DOWNLOAD_BLOB_SEQUENCES_FILE_NAME,
    DOWNLOAD_BLOBS_DIR_NAME,
    DOWNLOAD_MANIFEST_FILE_NAME,
    DOWNLOAD_METADATA_FILE_NAME,
    DOWNLOAD_SCALARS_FILE_NAME,
    DOWNLOAD_TENSORS_FILE_NAME,
)
from core.identifiers import validate_identifier
from core.logging_config import get_logger
from core.types import (
    DESCRIPTIVE_FIELDS,
    STATISTICS_FIELDS,
    BlobSequence,
    DataClass,
    Experiment,
    ExperimentMask,
    TagSeries,
    TensorValue,
    utc_now,
)
from serve.export_client import ExportSession

_LOGGER = get_logger(__name__)
_FULL_MASK = ExperimentMask.from_fields(DESCRIPTIVE_FIELDS + STATISTICS_FIELDS)
_SERIES_FILE_NAMES: dict[DataClass, str] = {
    "scalar": DOWNLOAD_SCALARS_FILE_NAME,
    "tensor": DOWNLOAD_TENSORS_FILE_NAME,
    "blob_sequence": DOWNLOAD_BLOB_SEQUENCES_FILE_NAME,
}


def download_experiment(
    session: ExportSession,
    experiment_id: str,
    output_dir: str | Path,
    max_workers: int = DEFAULT_DOWNLOAD_WORKERS,
) -> Path:
    """Download metadata, points, and blobs of one experiment.

    Args:
        session: Export session pinned to a snapshot.
        experiment_id: Experiment to download.
        output_dir: Destination root; files go under ``<output_dir>/<experiment_id>``.
        max_workers: Parallel blob download threads.

    Returns:
        Path to the written export manifest.

    Raises:
        ExportError: If any export call fails after client-side restarts.
    """
    validate_identifier(experiment_id, "experiment id")
    export_dir = Path(output_dir).expanduser().resolve() / experiment_id
    export_dir.mkdir(parents=True, exist_ok=True)
    experiment = session.get_experiment(experiment_id, _FULL_MASK)
    _write_json(export_dir / DOWNLOAD_METADATA_FILE_NAME, _experiment_payload(experiment))
    series = session.read_experiment_data(experiment_id)
    series_counts = _write_series_files(export_dir, series)
    blob_ids = _referenced_blob_ids(series)
    session.download_blobs(blob_ids, export_dir / DOWNLOAD_BLOBS_DIR_NAME, max_workers)
    manifest_path = _write_export_manifest(
        export_dir, session, experiment_id, series_counts, len(blob_ids)
    )
    _LOGGER.info(
        "experiment_downloaded",
        experiment_id=experiment_id,
        tag_count=len(series),
        blob_count=len(blob_ids),
        output_dir=str(export_dir),
    )
    return manifest_path


def _experiment_payload(experiment: Experiment) -> dict[str, object]:
    """Serialize experiment metadata with ISO-8601 timestamps."""
    payload = asdict(experiment)
    for name in ("create_time", "update_time"):
        value = payload[name]
        if isinstance(value, datetime):
            payload[name] = value.isoformat()
    return payload


def _write_series_files(export_dir: Path, series: list[TagSeries]) -> dict[str, int]:
    """Write one JSONL file per payload kind and return row counts."""
    rows: dict[DataClass, list[str]] = {data_class: [] for data_class in _SERIES_FILE_NAMES}
    for item in series:
        rows[item.tag_metadata.data_class].append(json.dumps(_series_row(item), sort_keys=True))
    counts: dict[str, int] = {}
    for data_class, file_name in _SERIES_FILE_NAMES.items():
        lines = rows[data_class]
        text = "\n".join(lines) + "\n" if lines else ""
        (export_dir / file_name).write_text(text, encoding="utf-8")
        counts[data_class] = len(lines)
    return counts


def _series_row(series: TagSeries) -> dict[str, object]:
    """Build one JSONL row holding a tag's metadata and full columns."""
    metadata = series.tag_metadata
    return {
        "run": series.run_name,
        "tag": series.tag_name,
        "plugin_name": metadata.plugin_name,
        "plugin_content": base64.b64encode(metadata.plugin_content).decode("ascii"),
        "display_name": metadata.display_name,
        "summary_description": metadata.summary_description,
        "steps": list(series.steps),
        "wall_times": list(series.wall_times),
        "values": [_value_payload(value) for value in series.values],
    }


def _value_payload(value: object) -> object:
    """Convert a point value to a JSON-safe form."""
    if isinstance(value, TensorValue):
        return {
            "dtype": value.dtype,
            "shape": list(value.shape),
            "content": base64.b64encode(value.content).decode("ascii"),
        }
    if isinstance(value, BlobSequence):
        return list(value.blob_ids)
    return value


def _referenced_blob_ids(series: list[TagSeries]) -> list[str]:
    """Collect distinct blob ids referenced by blob-sequence values."""
    blob_ids: set[str] = set()
    for item in series:
        for value in item.values:
            if isinstance(value, BlobSequence):
                blob_ids.update(value.blob_ids)
    return sorted(blob_ids)


def _write_export_manifest(
    export_dir: Path,
    session: ExportSession,
    experiment_id: str,
    series_counts: dict[str, int],
    blob_count: int,
) -> Path:
    """Write export manifest file."""
    manifest_payload = {
        "experiment_id": experiment_id,
        "user_id": session.user_id,
        "read_timestamp": session.snapshot.read_time.isoformat(),
        "generated_at": utc_now().isoformat(),
        "tag_counts": series_counts,
        "blob_count": blob_count,
        "files": [*_SERIES_FILE_NAMES.values(), DOWNLOAD_METADATA_FILE_NAME],
    }
    manifest_path = export_dir / DOWNLOAD_MANIFEST_FILE_NAME
    _write_json(manifest_path, manifest_payload)
    return manifest_path


def _write_json(path: Path, payload: dict[str, object]) -> None:
    """Write a pretty-printed JSON document."""
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
