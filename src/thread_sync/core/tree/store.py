"""In-memory ownership of the reply tree.

Nodes are kept in an arena keyed by client id. Server ids are indexed
separately so a reference may be either one. Parent/child links are explicit
and depth is derived by walking parent links with a hard bound.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace

from loguru import logger

from thread_sync.errors import CycleError
from thread_sync.models.node import SyncStatus, ThreadNode, VoteState


class ThreadStore:
    """Owns every ThreadNode of one discussion view."""

    def __init__(self) -> None:
        self._nodes: dict[str, ThreadNode] = {}
        self._by_id: dict[str, str] = {}
        self._roots: list[str] = []

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, ref: object) -> bool:
        return isinstance(ref, str) and self.resolve(ref) is not None

    def resolve(self, ref: str) -> str | None:
        """Map a server id or client id to the client id used as key."""
        if ref in self._by_id:
            return self._by_id[ref]
        if ref in self._nodes:
            return ref
        return None

    def get(self, ref: str) -> ThreadNode | None:
        client_id = self.resolve(ref)
        return self._nodes[client_id] if client_id is not None else None

    def all(self) -> Iterator[ThreadNode]:
        """Yield nodes in insertion order."""
        for client_id in list(self._nodes):
            node = self._nodes.get(client_id)
            if node is not None:
                yield node

    def roots(self) -> tuple[ThreadNode, ...]:
        return self.get_children(None)

    def upsert(self, node: ThreadNode) -> ThreadNode:
        """Insert or merge a node and return the stored record.

        Keyed by server id when present, else by client id. When the server id
        is already held under another client id, the incoming client id's
        record (if any) is folded into the existing one and the original
        client id survives.
        """
        key = self._merge_target(node)
        existing = self._nodes.get(key) if key is not None else None

        if existing is None:
            stored = replace(node, children=())
            self._nodes[stored.client_id] = stored
            if stored.id is not None:
                self._by_id[stored.id] = stored.client_id
            self._link(stored)
            return stored

        if existing.id is not None and node.id is not None and existing.id != node.id:
            msg = f"server id of {existing.client_id!r} cannot change from {existing.id!r}"
            raise ValueError(msg)

        stored = replace(node, client_id=existing.client_id, children=existing.children)
        if stored.parent_id != existing.parent_id:
            self._unlink(existing)
            self._nodes[stored.client_id] = stored
            self._link(stored)
        else:
            self._nodes[stored.client_id] = stored
        if stored.id is not None:
            self._by_id[stored.id] = stored.client_id
        return stored

    def _merge_target(self, node: ThreadNode) -> str | None:
        if node.id is not None and node.id in self._by_id:
            held = self._by_id[node.id]
            if held != node.client_id and node.client_id in self._nodes:
                # A locally created record meets the same server node loaded
                # earlier under a generated client id.
                return self._absorb(keep=node.client_id, drop=held)
            return held
        if node.client_id in self._nodes:
            return node.client_id
        return None

    def _absorb(self, *, keep: str, drop: str) -> str:
        dropped = self._nodes[drop]
        kept = self._nodes[keep]
        logger.debug("Merging duplicate record {} into {}", drop, keep)
        self._unlink(dropped)
        del self._nodes[drop]
        if dropped.id is not None:
            self._by_id[dropped.id] = keep
        extra = tuple(c for c in dropped.children if c not in kept.children)
        merged_children = kept.children + extra
        self._nodes[keep] = replace(kept, children=merged_children)
        return keep

    def reassign_id(self, from_client_id: str, to_client_id: str) -> ThreadNode:
        """Move a server id, with the server fields and children, to another record.

        The source record keeps its client id and content but loses the id.
        The target record is created when it does not exist yet.
        """
        source = self._nodes[from_client_id]
        if source.id is None:
            msg = f"{from_client_id!r} holds no server id"
            raise ValueError(msg)

        self._nodes[from_client_id] = replace(source, id=None, children=())
        target = self._nodes.get(to_client_id)
        if target is not None:
            self._unlink(target)
        moved = replace(
            source,
            client_id=to_client_id,
            children=(target.children if target is not None else ()) + source.children,
        )
        self._nodes[to_client_id] = moved
        self._by_id[source.id] = to_client_id
        self._link(moved)
        logger.debug("Moved server id {} from {} to {}", source.id, from_client_id, to_client_id)
        return moved

    def overwrite(self, node: ThreadNode) -> ThreadNode:
        """Swap the record held under ``node.client_id`` without any id merging."""
        existing = self._nodes.get(node.client_id)
        if existing is None:
            msg = f"Unknown node: {node.client_id!r}"
            raise KeyError(msg)
        stored = replace(node, children=existing.children)
        self._nodes[stored.client_id] = stored
        return stored

    def revert_votes(self, client_id: str, vote_state: VoteState) -> ThreadNode:
        """Restore a vote snapshot and mark the node confirmed again."""
        node = self._nodes[client_id]
        restored = replace(node, vote_state=vote_state, sync_status=SyncStatus.CONFIRMED)
        return self.overwrite(restored)

    def mark(self, client_id: str, status: SyncStatus) -> ThreadNode:
        return self.overwrite(replace(self._nodes[client_id], sync_status=status))

    def remove(self, client_id: str) -> list[ThreadNode]:
        """Remove a node and its descendants. Returns the removed records."""
        node = self._nodes.get(client_id)
        if node is None:
            return []
        self._unlink(node)
        removed: list[ThreadNode] = []
        todo = [client_id]
        while todo:
            current = self._nodes.pop(todo.pop(), None)
            if current is None:
                continue
            if current.id is not None and self._by_id.get(current.id) == current.client_id:
                del self._by_id[current.id]
            removed.append(current)
            todo.extend(current.children)
        return removed

    def get_children(self, parent_ref: str | None) -> tuple[ThreadNode, ...]:
        """Children of a node (or the roots for ``None``).

        Confirmed children keep insertion order; optimistic ones follow them.
        """
        if parent_ref is None:
            child_ids: tuple[str, ...] | list[str] = self._roots
        else:
            parent = self.get(parent_ref)
            if parent is None:
                return ()
            child_ids = parent.children
        children = [self._nodes[c] for c in child_ids if c in self._nodes]
        confirmed = [c for c in children if c.sync_status != SyncStatus.PENDING_CREATE]
        pending = [c for c in children if c.sync_status == SyncStatus.PENDING_CREATE]
        return tuple(confirmed + pending)

    def get_path(self, ref: str) -> tuple[ThreadNode, ...]:
        """Ancestor chain from the root down to the node itself.

        Raises:
            CycleError: The walk took more steps than there are nodes.
            KeyError: ``ref`` is unknown.
        """
        node = self.get(ref)
        if node is None:
            msg = f"Unknown node: {ref!r}"
            raise KeyError(msg)

        bound = len(self._nodes)
        chain = [node]
        while chain[-1].parent_id is not None:
            if len(chain) > bound:
                msg = f"Parent chain of {node.client_id!r} loops (exceeded {bound} steps)"
                raise CycleError(msg)
            parent = self.get(chain[-1].parent_id)
            if parent is None:
                break
            chain.append(parent)
        return tuple(reversed(chain))

    def depth(self, ref: str) -> int:
        return len(self.get_path(ref)) - 1

    @contextmanager
    def transaction(self) -> Iterator["ThreadStore"]:
        """Restore the pre-transaction state if the block raises."""
        nodes = dict(self._nodes)
        by_id = dict(self._by_id)
        roots = list(self._roots)
        try:
            yield self
        except BaseException:
            self._nodes, self._by_id, self._roots = nodes, by_id, roots
            raise

    def _link(self, node: ThreadNode) -> None:
        if node.parent_id is None:
            if node.client_id not in self._roots:
                self._roots.append(node.client_id)
            return
        parent_key = self.resolve(node.parent_id)
        if parent_key is None:
            logger.debug("Parent {} of {} is not loaded", node.parent_id, node.client_id)
            return
        parent = self._nodes[parent_key]
        if node.client_id not in parent.children:
            self._nodes[parent_key] = replace(parent, children=(*parent.children, node.client_id))

    def _unlink(self, node: ThreadNode) -> None:
        if node.parent_id is None:
            if node.client_id in self._roots:
                self._roots.remove(node.client_id)
            return
        parent_key = self.resolve(node.parent_id)
        if parent_key is None:
            return
        parent = self._nodes[parent_key]
        self._nodes[parent_key] = replace(
            parent, children=tuple(c for c in parent.children if c != node.client_id)
        )
