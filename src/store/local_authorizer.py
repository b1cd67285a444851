"""Reference authorization collaborator.

Users are listed in ``users.json`` under the data root. Callers in the
configured trusted set may act on behalf of any user; everyone else may
only read their own experiments.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator, cast

from core.constants import USERS_FILE_NAME
from core.types import ExperimentRecord, Snapshot
from store.catalog_io import experiment_visible, read_json_document
from store.local_store import LocalExportStore


class LocalAuthorizer:
    """Reference ``Authorizer`` backed by the local store."""

    def __init__(
        self,
        data_root: Path,
        store: LocalExportStore,
        trusted_callers: frozenset[str] = frozenset(),
    ) -> None:
        """Initialize the authorizer.

        Args:
            data_root: Root directory holding the user registry.
            store: Store whose experiment documents decide ownership.
            trusted_callers: Callers allowed to act on behalf of any user.
        """
        self._users_path = data_root / USERS_FILE_NAME
        self._store = store
        self._trusted_callers = trusted_callers

    def user_exists(self, user_id: str) -> bool:
        """Return whether the user is registered."""
        if not self._users_path.exists():
            return False
        users = cast(list[dict[str, Any]], read_json_document(self._users_path).get("users", []))
        return any(str(entry["user_id"]) == user_id for entry in users)

    def may_impersonate(self, caller_id: str, subject_id: str) -> bool:
        """Return whether the caller may act on behalf of the subject."""
        return caller_id == subject_id or caller_id in self._trusted_callers

    def may_read_user(self, caller_id: str, user_id: str) -> bool:
        """Return whether the caller may list the user's experiments."""
        return caller_id == user_id or caller_id in self._trusted_callers

    def may_read_experiment(self, caller_id: str, record: ExperimentRecord) -> bool:
        """Return whether the caller may read one experiment."""
        return self.may_read_user(caller_id, record.owner_id)

    def owned_experiment_ids(self, user_id: str, snapshot: Snapshot) -> Iterator[str]:
        """Yield ids of experiments owned by the user at a snapshot, in storage order."""
        visible = self._store.published_snapshot(snapshot)
        for payload in self._store.iter_experiment_documents():
            if str(payload["owner_id"]) == user_id and experiment_visible(payload, visible):
                yield str(payload["experiment_id"])
