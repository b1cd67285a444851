"""Read snapshot and effective user resolution.

Every export request starts here. The resolved context is returned to the
caller, who passes the same timestamp on later calls to keep a consistent
view; the engine itself stores no session state.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from core.errors import ExportInvalidArgumentError, ExportPermissionDeniedError
from core.identifiers import validate_identifier
from core.logging_config import get_logger
from core.types import ReadContext, Snapshot, utc_now
from store.protocols import Authorizer

_LOGGER = get_logger(__name__)


def resolve_read_context(
    caller_id: str,
    authorizer: Authorizer,
    read_timestamp: datetime | None = None,
    user_id: str | None = None,
    clock: Callable[[], datetime] = utc_now,
    committed_through: datetime | None = None,
) -> ReadContext:
    """Resolve the snapshot and effective user for one request.

    Args:
        caller_id: Authenticated caller identity.
        authorizer: Authorization collaborator.
        read_timestamp: Snapshot chosen by an earlier call, or ``None`` for now.
        user_id: Optional subject to act on behalf of.
        clock: Source of "now".
        committed_through: Instant up to which every commit has finished
            writing. "Now" never passes it, so a later read at the same
            snapshot cannot observe a commit that was still in flight.

    Returns:
        Effective read context.

    Raises:
        ExportInvalidArgumentError: For malformed timestamps or unknown subjects.
        ExportPermissionDeniedError: If the caller may not impersonate the subject.
    """
    validate_identifier(caller_id, "caller id")
    snapshot = _resolve_snapshot(read_timestamp, clock, committed_through)
    effective_user = caller_id
    if user_id and user_id != caller_id:
        validate_identifier(user_id, "user id")
        if not authorizer.user_exists(user_id):
            raise ExportInvalidArgumentError(
                f"Unknown user '{user_id}'. Provide an existing user id or omit it."
            )
        if not authorizer.may_impersonate(caller_id, user_id):
            raise ExportPermissionDeniedError(
                f"Caller '{caller_id}' may not act on behalf of user '{user_id}'."
            )
        effective_user = user_id
    context = ReadContext(snapshot=snapshot, user_id=effective_user, caller_id=caller_id)
    _LOGGER.info(
        "read_context_resolved",
        caller_id=caller_id,
        user_id=effective_user,
        read_time=snapshot.read_time.isoformat(),
        supplied_timestamp=read_timestamp is not None,
    )
    return context


def _resolve_snapshot(
    read_timestamp: datetime | None,
    clock: Callable[[], datetime],
    committed_through: datetime | None,
) -> Snapshot:
    """Pick the supplied snapshot or "now"; snapshots past "now" are rejected."""
    now = clock()
    if committed_through is not None:
        now = min(now, committed_through)
    if read_timestamp is None:
        return Snapshot(read_time=now)
    if read_timestamp.tzinfo is None:
        raise ExportInvalidArgumentError(
            f"Invalid read timestamp {read_timestamp.isoformat()}: expected a "
            "timezone-aware value. Reuse the timestamp returned by the first call."
        )
    if read_timestamp > now:
        raise ExportInvalidArgumentError(
            f"Invalid read timestamp {read_timestamp.isoformat()}: it is later than the "
            "latest finished commit and would not give a stable view."
        )
    return Snapshot(read_time=read_timestamp)
