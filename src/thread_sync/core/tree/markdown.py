"""Render reply threads as markdown."""

import io
from collections.abc import Iterable
from datetime import datetime

from loguru import logger

from thread_sync.core.relative_time import format_compact_age
from thread_sync.core.tree.store import ThreadStore
from thread_sync.errors import CycleError
from thread_sync.models.node import SyncStatus, ThreadNode, ViewerVote


def _vote_label(node: ThreadNode) -> str:
    up = f"+{node.vote_state.upvotes}"
    down = f"-{node.vote_state.downvotes}"
    if node.vote_state.viewer_vote == ViewerVote.UP:
        up += "*"
    elif node.vote_state.viewer_vote == ViewerVote.DOWN:
        down += "*"
    return f"{up}/{down}"


def _header(node: ThreadNode, now: datetime | None) -> str:
    author = node.author_ref or "unknown"
    parts = [f"**{author}**", format_compact_age(node.created_at, now=now), _vote_label(node)]
    if node.sync_status == SyncStatus.PENDING_CREATE:
        parts.append("(sending)")
    elif node.sync_status == SyncStatus.PENDING_VOTE:
        parts.append("(vote pending)")
    if node.tags:
        parts.append(" ".join(f"#{t}" for t in node.tags))
    return " · ".join(parts)


def render_thread_as_markdown(
    store: ThreadStore,
    roots: Iterable[ThreadNode],
    *,
    max_depth: int | None = None,
    now: datetime | None = None,
) -> str:
    """Render replies and their descendants as an indented bullet list.

    Args:
        store: Store holding the replies.
        roots: Replies to start from, usually one page.
        max_depth: Max levels below each root to include (None = unlimited).
        now: Reference time for ages (defaults to the current time).

    Returns:
        Markdown string with bullet-list hierarchy.
    """
    out = io.StringIO()
    seen: set[str] = set()
    todo: list[tuple[ThreadNode, int]] = [(root, 0) for root in reversed(list(roots))]

    while todo:
        node, relative_depth = todo.pop()
        if node.client_id in seen:
            continue
        seen.add(node.client_id)

        if node.sync_status == SyncStatus.FAILED:
            continue
        try:
            store.depth(node.client_id)
        except CycleError as e:
            logger.warning("Skipping reply {}: {}", node.client_id, e)
            continue

        indent = "    " * relative_depth
        out.write(f"{indent}- {_header(node, now)}\n")
        for line in node.body.split("\n"):
            out.write(f"{indent}  {line}\n")
        for ref in node.attachment_refs:
            out.write(f"{indent}  [attachment]({ref})\n")

        children = store.get_children(node.client_id)
        if max_depth is not None and relative_depth >= max_depth:
            if children:
                noun = "reply" if len(children) == 1 else "replies"
                ref = node.id or node.client_id
                out.write(f"{indent}    - ... ({len(children)} more {noun}, id={ref})\n")
            continue

        todo.extend((child, relative_depth + 1) for child in reversed(children))

    return out.getvalue()
