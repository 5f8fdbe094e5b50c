"""Records describing optimistic mutations and their outcomes."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from thread_sync.errors import ThreadSyncError
from thread_sync.models.node import PageWindow, ThreadNode


class MutationKind(StrEnum):
    CREATE = "create"
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"
    RETRACT_VOTE = "retract_vote"


class ChangeReason(StrEnum):
    PAGE_LOADED = "page_loaded"
    OPTIMISTIC = "optimistic"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class MutationStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class MutationEntry:
    """A locally applied change waiting for the server.

    ``snapshot`` is the node as it was before the change, or ``None`` when
    the change created the node.
    """

    correlation_id: str
    kind: MutationKind
    applied_at: datetime
    status: MutationStatus = MutationStatus.PENDING
    snapshot: ThreadNode | None = None
    reason: str | None = None


@dataclass(frozen=True)
class PageRequest:
    """Parameters for one page fetch, as issued by the window controller."""

    page_index: int
    page_size: int


@dataclass(frozen=True)
class ChangeEvent:
    """Notification sent to subscribers after each completed change."""

    reason: ChangeReason
    client_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class MutationResult:
    success: bool
    node: ThreadNode | None = None
    error: ThreadSyncError | None = None


@dataclass(frozen=True)
class PageLoadResult:
    """Outcome of a page load.

    ``applied`` is False without an error when the response arrived after the
    caller had moved to another page and was discarded.
    """

    window: PageWindow
    applied: bool
    error: ThreadSyncError | None = None
