"""Public SDK surface for tbexport.

This module provides a stable import path for export consumers.
It re-exports the client, the service, and typed request models.
"""

from __future__ import annotations

from core.config import ExportConfig
from core.errors import (
    ExportCancelledError,
    ExportDataLossError,
    ExportDeadlineExceededError,
    ExportError,
    ExportInvalidArgumentError,
    ExportNotFoundError,
    ExportPermissionDeniedError,
    ExportTransientError,
)
from core.stream_context import StreamContext
from core.types import Experiment, ExperimentMask, Snapshot, TagSeries
from serve.blob_assembly import reassemble_blob
from serve.experiment_download import download_experiment
from serve.export_client import ExportClient, ExportSession, build_exporter_service
from serve.exporter_service import ExporterService
from store.local_writer import LocalExportWriter

__all__ = [
    "Experiment",
    "ExperimentMask",
    "ExportCancelledError",
    "ExportClient",
    "ExportConfig",
    "ExportDataLossError",
    "ExportDeadlineExceededError",
    "ExportError",
    "ExportInvalidArgumentError",
    "ExportNotFoundError",
    "ExportPermissionDeniedError",
    "ExportSession",
    "ExportTransientError",
    "ExporterService",
    "LocalExportWriter",
    "Snapshot",
    "StreamContext",
    "TagSeries",
    "build_exporter_service",
    "download_experiment",
    "reassemble_blob",
]
