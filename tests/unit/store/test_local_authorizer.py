"""Unit tests for the reference authorization collaborator."""

from __future__ import annotations

from pathlib import Path

from core.types import Snapshot
from store.local_authorizer import LocalAuthorizer
from store.local_store import LocalExportStore
from tests.store_fixtures import commit_time, seed_e1


def _authorizer(data_root: Path, trusted: frozenset[str] = frozenset()) -> LocalAuthorizer:
    return LocalAuthorizer(data_root, LocalExportStore(data_root), trusted)


def test_user_exists_reads_user_registry(tmp_path: Path) -> None:
    """Registered users should exist and others should not."""
    seed_e1(tmp_path)
    authorizer = _authorizer(tmp_path)

    assert authorizer.user_exists("bob") and not authorizer.user_exists("carol")


def test_trusted_caller_may_impersonate_any_user(tmp_path: Path) -> None:
    """Trusted callers should act on behalf of other users."""
    authorizer = _authorizer(tmp_path, frozenset({"exporter"}))

    assert authorizer.may_impersonate("exporter", "alice") and not authorizer.may_impersonate(
        "bob", "alice"
    )


def test_may_read_experiment_checks_owner(tmp_path: Path) -> None:
    """Only owners and trusted callers should read an experiment."""
    seed_e1(tmp_path)
    record = LocalExportStore(tmp_path).get_experiment("E1", Snapshot(commit_time(60)))
    authorizer = _authorizer(tmp_path)

    assert authorizer.may_read_experiment("alice", record) and not authorizer.may_read_experiment(
        "bob", record
    )


def test_owned_experiment_ids_respect_snapshot_and_owner(tmp_path: Path) -> None:
    """Owned ids should include only experiments visible at the snapshot."""
    writer = seed_e1(tmp_path)
    writer.create_experiment("E3", "bob", committed_at=commit_time(25))
    writer.create_experiment("E2", "alice", committed_at=commit_time(50))
    authorizer = _authorizer(tmp_path)

    owned = list(authorizer.owned_experiment_ids("alice", Snapshot(commit_time(30))))

    assert owned == ["E1"]
