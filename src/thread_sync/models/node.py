"""Domain models for threaded replies."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from thread_sync.config import DEFAULT_LANGUAGE


class ViewerVote(StrEnum):
    NONE = "none"
    UP = "up"
    DOWN = "down"


class VoteDirection(StrEnum):
    UP = "up"
    DOWN = "down"


class PostType(StrEnum):
    """Kinds of post a comment can hang off."""

    ISSUE = "ISSUE"
    RESPONSE = "RESPONSE"
    COMMENT = "COMMENT"


class SyncStatus(StrEnum):
    CONFIRMED = "confirmed"
    PENDING_CREATE = "pending_create"
    PENDING_VOTE = "pending_vote"
    FAILED = "failed"


@dataclass(frozen=True)
class VoteState:
    """Vote counters for one node plus the viewer's own vote."""

    upvotes: int = 0
    downvotes: int = 0
    viewer_vote: ViewerVote = ViewerVote.NONE

    def __post_init__(self) -> None:
        if self.upvotes < 0 or self.downvotes < 0:
            msg = f"vote counters must not be negative: {self.upvotes!r}/{self.downvotes!r}"
            raise ValueError(msg)


@dataclass(frozen=True)
class ThreadNode:
    """A single reply in a thread.

    ``client_id`` is the stable key. ``id`` is assigned by the server and stays
    ``None`` for optimistic nodes until the server confirms them. ``children``
    holds child client ids and is maintained by the store.
    """

    client_id: str
    id: str | None
    parent_id: str | None
    author_ref: str | None
    body: str
    created_at: datetime
    tags: tuple[str, ...] = ()
    attachment_refs: tuple[str, ...] = ()
    vote_state: VoteState = field(default_factory=VoteState)
    children: tuple[str, ...] = ()
    sync_status: SyncStatus = SyncStatus.CONFIRMED
    topic_id: str | None = None
    language: str = DEFAULT_LANGUAGE
    updated_at: datetime | None = None
    reply_depth: int | None = None

    @property
    def is_pending(self) -> bool:
        return self.sync_status in (SyncStatus.PENDING_CREATE, SyncStatus.PENDING_VOTE)


@dataclass(frozen=True)
class ReplyDraft:
    """Everything the service needs to create a reply."""

    topic_id: str
    body: str
    parent_id: str | None = None
    tags: tuple[str, ...] = ()
    attachment_refs: tuple[str, ...] = ()
    language: str = DEFAULT_LANGUAGE


@dataclass(frozen=True)
class PageResponse:
    """One page of top-level replies as returned by the service.

    ``nodes`` is flattened parent-before-child; only nodes without a parent
    count towards the page.
    """

    nodes: tuple[ThreadNode, ...]
    total_pages: int | None
    total_elements: int | None
    page_index: int | None = None
    page_size: int | None = None

    @property
    def roots(self) -> tuple[ThreadNode, ...]:
        return tuple(n for n in self.nodes if n.parent_id is None)


@dataclass(frozen=True)
class PageWindow:
    """Pagination state for one thread's top-level collection."""

    page_index: int = 0
    page_size: int = 20
    total_pages: int = 0
    total_elements: int = 0
    has_next: bool = False
    has_previous: bool = False
