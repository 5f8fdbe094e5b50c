"""Merge authoritative server state into the local store."""

from dataclasses import dataclass, replace
from datetime import timedelta

from loguru import logger

from thread_sync.config import CONFIRM_MATCH_WINDOW
from thread_sync.core.importer.json_reader import server_client_id
from thread_sync.core.paging.window import PageWindowController
from thread_sync.core.sync.mutation_log import OptimisticMutationLog
from thread_sync.core.tree.store import ThreadStore
from thread_sync.errors import ReconciliationError
from thread_sync.models.node import PageResponse, PageWindow, SyncStatus, ThreadNode
from thread_sync.models.sync import PageRequest


@dataclass(frozen=True)
class MergeResult:
    """What a page merge touched."""

    window: PageWindow
    root_ids: tuple[str, ...]
    client_ids: tuple[str, ...]


class ReconciliationEngine:
    """Applies server pages and confirmations to the store.

    Policy:
        * nodes are upserted, so a node already known by server id (or matched
          to a pending local reply) keeps its client id;
        * pending local replies missing from a page are left alone;
        * confirmed nodes take the server's vote counts, nodes with a vote in
          flight keep their local counts until that vote resolves;
        * a page is merged completely or not at all.
    """

    def __init__(
        self,
        store: ThreadStore,
        log: OptimisticMutationLog,
        window: PageWindowController,
        *,
        match_window: timedelta = CONFIRM_MATCH_WINDOW,
    ) -> None:
        self._store = store
        self._log = log
        self._window = window
        self._match_window = match_window

    def merge_page(self, request: PageRequest, page: PageResponse) -> MergeResult | None:
        """Merge a fetched page. Returns ``None`` if the page is stale.

        Raises:
            ReconciliationError: The page is malformed; nothing was changed.
        """
        if self._window.is_stale(request):
            logger.debug(
                "Discarding stale page {} (now on page {})",
                request.page_index,
                self._window.wanted_index,
            )
            return None

        self._window.check(request, page)
        with self._store.transaction():
            merged = [self._merge_node(node) for node in self._ordered(page.nodes)]
        window = self._window.apply(request, page)

        roots = tuple(n.client_id for n in merged if n.parent_id is None)
        logger.debug(
            "Merged page {}: {} nodes, {} top-level",
            request.page_index,
            len(merged),
            len(roots),
        )
        return MergeResult(
            window=window,
            root_ids=tuple(dict.fromkeys(roots)),
            client_ids=tuple(dict.fromkeys(n.client_id for n in merged)),
        )

    def confirm_node(self, client_id: str, server_node: ThreadNode) -> ThreadNode:
        """Adopt the server's version of a node created or voted on locally.

        Call :meth:`release_match` first when a page merge gave the node a
        different server id.
        """
        incoming = replace(server_node, client_id=client_id, sync_status=SyncStatus.CONFIRMED)
        return self._store.upsert(incoming)

    def release_match(self, client_id: str) -> ThreadNode:
        """Undo a page match that gave ``client_id`` another reply's server id.

        The id moves to the next pending reply that matches it, or to a
        record of its own when none does. Returns the record now holding it.
        """
        wrong = self._store.get(client_id)
        if wrong is None or wrong.id is None:
            msg = f"{client_id!r} holds no server id"
            raise KeyError(msg)
        owner = self._match_pending(wrong)
        target = owner.client_id if owner is not None else server_client_id(wrong.id)
        logger.warning(
            "Server reply {} was matched to {}, moving it to {}", wrong.id, client_id, target
        )
        return self._store.reassign_id(client_id, target)

    def _ordered(self, nodes: tuple[ThreadNode, ...]) -> list[ThreadNode]:
        """Order page nodes so each parent is merged before its children."""
        page_ids = {n.id for n in nodes if n.id is not None}
        placed: set[str] = set()
        ordered: list[ThreadNode] = []
        waiting = list(nodes)
        while waiting:
            still_waiting = []
            for node in waiting:
                parent = node.parent_id
                if parent is None or parent in placed or (
                    parent not in page_ids and parent in self._store
                ):
                    ordered.append(node)
                    if node.id is not None:
                        placed.add(node.id)
                elif parent not in page_ids:
                    msg = f"reply {node.id!r} refers to unknown parent {parent!r}"
                    raise ReconciliationError(msg)
                else:
                    still_waiting.append(node)
            if len(still_waiting) == len(waiting):
                msg = f"replies form a parent loop: {sorted(str(n.id) for n in waiting)!r}"
                raise ReconciliationError(msg)
            waiting = still_waiting
        return ordered

    def _merge_node(self, node: ThreadNode) -> ThreadNode:
        existing = self._store.get(node.id) if node.id is not None else None
        if existing is None:
            existing = self._match_pending(node)
            if existing is not None:
                logger.debug("Matched server reply {} to local {}", node.id, existing.client_id)
                node = replace(node, client_id=existing.client_id)

        if existing is not None and existing.sync_status == SyncStatus.PENDING_VOTE:
            node = replace(
                node,
                vote_state=existing.vote_state,
                sync_status=SyncStatus.PENDING_VOTE,
            )
        else:
            node = replace(node, sync_status=SyncStatus.CONFIRMED)
        return self._store.upsert(node)

    def _match_pending(self, node: ThreadNode) -> ThreadNode | None:
        """Find the local reply a server node most likely confirms."""
        candidates = [
            local
            for local in self._store.all()
            if local.sync_status == SyncStatus.PENDING_CREATE
            and local.id is None
            and self._log.pending_for(local.client_id) is not None
            and local.parent_id == node.parent_id
            and local.body == node.body
            and (local.author_ref is None or local.author_ref == node.author_ref)
            and abs(local.created_at - node.created_at) <= self._match_window
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda n: n.created_at)
