"""Log of optimistic mutations awaiting the server."""

from dataclasses import replace
from datetime import UTC, datetime

from loguru import logger

from thread_sync.core.tree.store import ThreadStore
from thread_sync.errors import ConflictError
from thread_sync.models.node import ThreadNode
from thread_sync.models.sync import MutationEntry, MutationKind, MutationStatus


class OptimisticMutationLog:
    """At most one pending mutation per correlation id.

    Rejecting an entry reverts the store to the snapshot taken at ``begin``:
    a created node is removed, a vote change gets its old vote state back.
    """

    def __init__(self, store: ThreadStore) -> None:
        self._store = store
        self._pending: dict[str, MutationEntry] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def begin(
        self,
        kind: MutationKind,
        correlation_id: str,
        *,
        snapshot: ThreadNode | None = None,
    ) -> MutationEntry:
        """Open a pending entry.

        Raises:
            ConflictError: An entry for ``correlation_id`` is still pending.
        """
        current = self._pending.get(correlation_id)
        if current is not None:
            msg = f"{current.kind} already pending for {correlation_id!r}"
            raise ConflictError(msg)
        entry = MutationEntry(
            correlation_id=correlation_id,
            kind=kind,
            applied_at=datetime.now(UTC),
            snapshot=snapshot,
        )
        self._pending[correlation_id] = entry
        logger.debug("Began {} for {}", kind, correlation_id)
        return entry

    def pending_for(self, correlation_id: str) -> MutationEntry | None:
        return self._pending.get(correlation_id)

    def confirm(self, correlation_id: str) -> MutationEntry:
        """Close an entry, keeping the store as it is."""
        entry = self._take(correlation_id)
        logger.debug("Confirmed {} for {}", entry.kind, correlation_id)
        return replace(entry, status=MutationStatus.CONFIRMED)

    def reject(self, correlation_id: str, reason: str) -> MutationEntry:
        """Close an entry and revert the store to its snapshot."""
        entry = self._take(correlation_id)
        if entry.kind == MutationKind.CREATE:
            self._store.remove(correlation_id)
        elif entry.snapshot is not None and self._store.get(correlation_id) is not None:
            self._store.revert_votes(correlation_id, entry.snapshot.vote_state)
        logger.warning("Rejected {} for {}: {}", entry.kind, correlation_id, reason)
        return replace(entry, status=MutationStatus.REJECTED, reason=reason)

    def _take(self, correlation_id: str) -> MutationEntry:
        try:
            return self._pending.pop(correlation_id)
        except KeyError:
            msg = f"No pending mutation for {correlation_id!r}"
            raise KeyError(msg) from None
