"""Core constants used across tbexport modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".tbexport")
EXPERIMENTS_DIR_NAME = "experiments"
BLOBS_DIR_NAME = "blobs"
POINTS_DIR_NAME = "points"
EXPERIMENT_FILE_NAME = "experiment.json"
TAGS_FILE_NAME = "tags.json"
USERS_FILE_NAME = "users.json"
COMMIT_MARK_FILE_NAME = "commits.json"
BLOB_DATA_FILE_NAME = "data"
BLOB_META_FILE_NAME = "blob.json"
POINT_FILE_SUFFIX = ".parquet"
TAG_KEY_LENGTH = 16
HASH_ALGORITHM = "sha256"
DEFAULT_EXPERIMENTS_PER_BATCH = 100
DEFAULT_POINTS_PER_BATCH = 1000
DEFAULT_BLOB_CHUNK_BYTES = 4 * 1024 * 1024
DEFAULT_MAX_STREAM_ATTEMPTS = 3
DEFAULT_DOWNLOAD_WORKERS = 4
MICROS_PER_SECOND = 1_000_000
MAX_IDENTIFIER_LENGTH = 256
DOWNLOAD_METADATA_FILE_NAME = "metadata.json"
DOWNLOAD_SCALARS_FILE_NAME = "scalars.jsonl"
DOWNLOAD_TENSORS_FILE_NAME = "tensors.jsonl"
DOWNLOAD_BLOB_SEQUENCES_FILE_NAME = "blob_sequences.jsonl"
DOWNLOAD_BLOBS_DIR_NAME = "blobs"
DOWNLOAD_MANIFEST_FILE_NAME = "export_manifest.json"
S3_BLOB_EXPERIMENT_METADATA_KEY = "experiment-id"
