"""One discussion view: store, mutation log, paging and reconciliation together."""

import uuid
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import UTC, datetime

from loguru import logger

from thread_sync.config import DEFAULT_LANGUAGE, DEFAULT_PAGE_SIZE
from thread_sync.core.paging.window import PageWindowController
from thread_sync.core.sync import votes
from thread_sync.core.sync.mutation_log import OptimisticMutationLog
from thread_sync.core.sync.reconcile import ReconciliationEngine
from thread_sync.core.tree.store import ThreadStore
from thread_sync.errors import (
    AuthError,
    ConflictError,
    CycleError,
    NetworkError,
    ReconciliationError,
    ThreadSyncError,
    ValidationError,
)
from thread_sync.models.node import (
    PageWindow,
    ReplyDraft,
    SyncStatus,
    ThreadNode,
    VoteDirection,
)
from thread_sync.models.sync import (
    ChangeEvent,
    ChangeReason,
    MutationKind,
    MutationResult,
    PageLoadResult,
    PageRequest,
)
from thread_sync.protocols import SessionInvalidator, ThreadApiProtocol

Listener = Callable[[ChangeEvent], None]

_REMOTE_ERRORS = (NetworkError, AuthError, ReconciliationError)


def new_client_id() -> str:
    return f"c:{uuid.uuid4().hex}"


class ThreadSession:
    """Client-held view of one threaded resource.

    Reads never wait on the network: optimistic changes are applied to the
    store before the matching call is sent, and subscribers are told once per
    completed change.
    """

    def __init__(
        self,
        api: ThreadApiProtocol,
        resource_id: str,
        *,
        viewer_ref: str | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        invalidator: SessionInvalidator | None = None,
        language: str = DEFAULT_LANGUAGE,
    ) -> None:
        self.api = api
        self.resource_id = resource_id
        self.viewer_ref = viewer_ref
        self.language = language
        self.invalidator = invalidator

        self.store = ThreadStore()
        self.log = OptimisticMutationLog(self.store)
        self.pager = PageWindowController(page_size=page_size)
        self.reconciler = ReconciliationEngine(self.store, self.log, self.pager)

        # Top-level client ids listed on each loaded page.
        self._pages: dict[int, list[str]] = {}
        self._listeners: list[Listener] = []

    @property
    def window(self) -> PageWindow:
        return self.pager.window

    # --- Reads ---

    def get_node(self, ref: str) -> ThreadNode | None:
        return self.store.get(ref)

    def get_children(self, ref: str) -> tuple[ThreadNode, ...]:
        return self.store.get_children(ref)

    def get_page(self, page_index: int) -> tuple[ThreadNode, ...]:
        """Top-level replies of a loaded page, optimistic ones last."""
        nodes = [self.store.get(c) for c in self._pages.get(page_index, ())]
        present = [n for n in nodes if n is not None and n.parent_id is None]
        confirmed = [n for n in present if n.sync_status != SyncStatus.PENDING_CREATE]
        pending = [n for n in present if n.sync_status == SyncStatus.PENDING_CREATE]
        return tuple(confirmed + pending)

    def current_page(self) -> tuple[ThreadNode, ...]:
        return self.get_page(self.window.page_index)

    def depth(self, ref: str) -> int:
        return self.store.depth(ref)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, reason: ChangeReason, client_ids: Iterable[str]) -> None:
        event = ChangeEvent(reason=reason, client_ids=tuple(client_ids))
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Change listener {!r} failed on {}", listener, reason)

    # --- Paging ---

    async def load_page(self, page_index: int) -> PageLoadResult:
        return await self._load(self.pager.load_page(page_index))

    async def next_page(self) -> PageLoadResult:
        request = self.pager.next()
        if request is None:
            return PageLoadResult(window=self.window, applied=False)
        return await self._load(request)

    async def previous_page(self) -> PageLoadResult:
        request = self.pager.previous()
        if request is None:
            return PageLoadResult(window=self.window, applied=False)
        return await self._load(request)

    async def go_to_page(self, page_index: int) -> PageLoadResult:
        return await self._load(self.pager.go_to(page_index))

    async def refresh(self) -> PageLoadResult:
        return await self.load_page(self.pager.wanted_index)

    async def _load(self, request: PageRequest) -> PageLoadResult:
        try:
            page = await self.api.fetch_page(
                self.resource_id, request.page_index, request.page_size
            )
            merged = self.reconciler.merge_page(request, page)
        except _REMOTE_ERRORS as e:
            logger.warning("Loading page {} failed: {}", request.page_index, e)
            if isinstance(e, AuthError):
                self._invalidate(e)
            return PageLoadResult(window=self.window, applied=False, error=e)

        if merged is None:
            return PageLoadResult(window=self.window, applied=False)

        self._attach_page(request.page_index, merged.root_ids)
        self._flag_cycles(merged.client_ids)
        self._notify(ChangeReason.PAGE_LOADED, merged.client_ids)
        return PageLoadResult(window=merged.window, applied=True)

    def _flag_cycles(self, client_ids: Iterable[str]) -> None:
        """Mark merged nodes whose parent chain loops as failed."""
        for client_id in client_ids:
            try:
                self.store.depth(client_id)
            except CycleError as e:
                logger.warning("Reply {} excluded: {}", client_id, e)
                self.store.mark(client_id, SyncStatus.FAILED)

    def _attach_page(self, page_index: int, root_ids: tuple[str, ...]) -> None:
        """Record a page's roots, keeping local replies the server has not listed yet."""
        for other_index, ids in self._pages.items():
            if other_index != page_index:
                ids[:] = [c for c in ids if c not in root_ids]

        kept = []
        for client_id in self._pages.get(page_index, ()):
            node = self.store.get(client_id)
            if node is not None and node.id is None and client_id not in root_ids:
                kept.append(client_id)
        self._pages[page_index] = [*root_ids, *kept]

    # --- Mutations ---

    async def submit_reply(
        self,
        body: str,
        *,
        parent: str | None = None,
        tags: Iterable[str] = (),
        attachments: Iterable[str] = (),
        language: str | None = None,
    ) -> MutationResult:
        """Post a reply, showing it immediately as pending.

        Raises:
            ValidationError: Empty body, or the parent is unknown or unconfirmed.
        """
        if not body.strip():
            msg = "Reply body must not be empty"
            raise ValidationError(msg)

        parent_id: str | None = None
        if parent is not None:
            parent_node = self.store.get(parent)
            if parent_node is None:
                msg = f"Unknown parent reply: {parent!r}"
                raise ValidationError(msg)
            if parent_node.id is None:
                msg = f"Parent reply {parent!r} is not confirmed yet"
                raise ValidationError(msg)
            parent_id = parent_node.id

        draft = ReplyDraft(
            topic_id=self.resource_id,
            body=body,
            parent_id=parent_id,
            tags=tuple(tags),
            attachment_refs=tuple(attachments),
            language=language or self.language,
        )
        client_id = new_client_id()
        node = ThreadNode(
            client_id=client_id,
            id=None,
            parent_id=parent_id,
            author_ref=self.viewer_ref,
            body=draft.body,
            created_at=datetime.now(UTC),
            tags=draft.tags,
            attachment_refs=draft.attachment_refs,
            sync_status=SyncStatus.PENDING_CREATE,
            topic_id=self.resource_id,
            language=draft.language,
        )

        self.log.begin(MutationKind.CREATE, client_id)
        self.store.upsert(node)
        if parent_id is None:
            self._pages.setdefault(self.window.page_index, []).append(client_id)
        self._notify(ChangeReason.OPTIMISTIC, (client_id,))

        try:
            server_node = await self.api.create_reply(draft)
        except _REMOTE_ERRORS as e:
            return self._fail(client_id, e)

        confirmed = self._confirm(client_id, server_node)
        logger.info("Reply {} confirmed as {}", client_id, confirmed.id)
        return MutationResult(success=True, node=confirmed)

    async def toggle_upvote(self, ref: str) -> MutationResult:
        return await self._toggle_vote(ref, VoteDirection.UP)

    async def toggle_downvote(self, ref: str) -> MutationResult:
        return await self._toggle_vote(ref, VoteDirection.DOWN)

    async def _toggle_vote(self, ref: str, direction: VoteDirection) -> MutationResult:
        node = self.store.get(ref)
        if node is None:
            msg = f"Unknown reply: {ref!r}"
            raise ValidationError(msg)
        if node.id is None:
            msg = f"Reply {ref!r} is not confirmed yet"
            raise ValidationError(msg)

        transition = votes.toggle(node.vote_state, direction)
        try:
            self.log.begin(transition.kind, node.client_id, snapshot=node)
        except ConflictError as e:
            logger.debug("Ignoring vote on {}: {}", node.client_id, e)
            return MutationResult(success=False, node=node, error=e)

        self.store.overwrite(
            replace(node, vote_state=transition.after, sync_status=SyncStatus.PENDING_VOTE)
        )
        self._notify(ChangeReason.OPTIMISTIC, (node.client_id,))

        retract = transition.kind == MutationKind.RETRACT_VOTE
        try:
            canonical = await self.api.vote(node.id, transition.direction, retract=retract)
        except _REMOTE_ERRORS as e:
            return self._fail(node.client_id, e)

        return MutationResult(success=True, node=self._confirm(node.client_id, canonical))

    def _confirm(self, client_id: str, server_node: ThreadNode) -> ThreadNode:
        current = self.store.get(client_id)
        touched = [client_id]
        if current is not None and server_node.parent_id is None:
            # Vote responses come without parent information for nested replies.
            server_node = replace(server_node, parent_id=current.parent_id)
        if current is not None and current.id is not None and current.id != server_node.id:
            holder = self.reconciler.release_match(client_id)
            touched.append(holder.client_id)
            if holder.parent_id is None:
                for ids in self._pages.values():
                    if client_id in ids and holder.client_id not in ids:
                        ids.append(holder.client_id)
        confirmed = self.reconciler.confirm_node(client_id, server_node)
        self.log.confirm(client_id)
        self._notify(ChangeReason.CONFIRMED, touched)
        return confirmed

    def _fail(self, client_id: str, error: ThreadSyncError) -> MutationResult:
        entry = self.log.pending_for(client_id)
        current = self.store.get(client_id)
        if (
            entry is not None
            and entry.kind == MutationKind.CREATE
            and current is not None
            and current.id is not None
        ):
            # A page merge already matched this reply to a server record.
            logger.info(
                "Create call for {} failed but the reply exists as {}", client_id, current.id
            )
            self.log.confirm(client_id)
            self._notify(ChangeReason.CONFIRMED, (client_id,))
        else:
            self.log.reject(client_id, str(error))
            if self.store.get(client_id) is None:
                for ids in self._pages.values():
                    if client_id in ids:
                        ids.remove(client_id)
            self._notify(ChangeReason.REJECTED, (client_id,))

        if isinstance(error, AuthError):
            self._invalidate(error)
        return MutationResult(success=False, node=self.store.get(client_id), error=error)

    def _invalidate(self, error: AuthError) -> None:
        if self.invalidator is None:
            logger.error("Session rejected and no invalidator configured: {}", error)
            return
        self.invalidator.invalidate(str(error))
