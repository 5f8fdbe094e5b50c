"""Protocols for the collaborators the sync engine depends on."""

from typing import Protocol, runtime_checkable

from thread_sync.models.node import PageResponse, ReplyDraft, ThreadNode, VoteDirection


@runtime_checkable
class ThreadApiProtocol(Protocol):
    """Remote source of truth for one kind of threaded resource.

    Implementations raise ``NetworkError`` or ``AuthError`` on failure and
    ``ReconciliationError`` for payloads they cannot parse.
    """

    async def fetch_page(self, resource_id: str, page_index: int, page_size: int) -> PageResponse:
        """Fetch one page of top-level replies with their nested children."""
        ...

    async def create_reply(self, draft: ReplyDraft) -> ThreadNode:
        """Create a reply and return the server's record of it."""
        ...

    async def vote(
        self, node_id: str, direction: VoteDirection, *, retract: bool = False
    ) -> ThreadNode:
        """Cast or take back the viewer's vote and return the node with canonical counters.

        ``retract`` is set when the press takes back the viewer's current vote
        in ``direction``.
        """
        ...


@runtime_checkable
class AuthHeaderProvider(Protocol):
    """Supplies credentials for each outgoing call."""

    def headers(self) -> dict[str, str]:
        """Return the headers to attach, e.g. ``Authorization``."""
        ...


@runtime_checkable
class SessionInvalidator(Protocol):
    """Receives authentication failures; owns logout and token refresh."""

    def invalidate(self, reason: str) -> None:
        """Handle a rejected session."""
        ...
