"""Parse topic-reply and comment payloads into domain models, and build request payloads."""

from collections import deque
from datetime import UTC, datetime
from collections.abc import Callable
from typing import Any

from thread_sync.config import DEFAULT_LANGUAGE
from thread_sync.errors import ReconciliationError
from thread_sync.models.node import (
    PageResponse,
    PostType,
    ReplyDraft,
    SyncStatus,
    ThreadNode,
    ViewerVote,
    VoteState,
)


def server_client_id(server_id: str) -> str:
    """Client id given to nodes first seen in a server payload."""
    return f"s:{server_id}"


def parse_timestamp(value: Any, *, field: str = "createdAt") -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            msg = f"bad {field} timestamp: {value!r}"
            raise ReconciliationError(msg) from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def _optional_id(value: Any) -> str | None:
    return None if value is None else str(value)


def _wire_id(value: str | None) -> int | str | None:
    if value is None:
        return None
    return int(value) if value.isdigit() else value


def _attachment_ref(item: Any) -> str:
    if isinstance(item, dict):
        return str(item.get("url") or item.get("id") or item.get("fileName") or "")
    return str(item)


def _vote_state(raw: dict[str, Any]) -> VoteState:
    up = bool(raw.get("hasUpvoted"))
    down = bool(raw.get("hasDownvoted"))
    if up and down:
        msg = f"reply {raw.get('id')!r} is both upvoted and downvoted by the viewer"
        raise ReconciliationError(msg)
    viewer = ViewerVote.UP if up else ViewerVote.DOWN if down else ViewerVote.NONE
    try:
        return VoteState(
            upvotes=int(raw.get("upvoteCount") or 0),
            downvotes=int(raw.get("downvoteCount") or 0),
            viewer_vote=viewer,
        )
    except (TypeError, ValueError) as e:
        msg = f"bad vote counters on reply {raw.get('id')!r}: {e}"
        raise ReconciliationError(msg) from None


def parse_reply_node(raw: dict[str, Any], *, parent_id: str | None = None) -> ThreadNode:
    """Parse a single reply object, ignoring its nested children."""
    if not isinstance(raw, dict) or raw.get("id") is None:
        msg = f"reply without id: {raw!r}"
        raise ReconciliationError(msg)
    server_id = str(raw["id"])
    author = raw.get("createdBy") or {}
    updated = raw.get("updatedAt")
    explicit_parent = _optional_id(raw.get("parentReplyId"))
    return ThreadNode(
        client_id=server_client_id(server_id),
        id=server_id,
        parent_id=explicit_parent if explicit_parent is not None else parent_id,
        author_ref=_optional_id(author.get("id")) if isinstance(author, dict) else None,
        body=raw.get("description") or "",
        created_at=parse_timestamp(raw.get("createdAt")),
        tags=tuple(raw.get("tags") or ()),
        attachment_refs=tuple(_attachment_ref(a) for a in raw.get("attachments") or ()),
        vote_state=_vote_state(raw),
        sync_status=SyncStatus.CONFIRMED,
        topic_id=_optional_id(raw.get("topicId")),
        language=raw.get("language") or DEFAULT_LANGUAGE,
        updated_at=parse_timestamp(updated, field="updatedAt") if updated else None,
        reply_depth=raw.get("replyDepth"),
    )


def _flatten(
    raw: dict[str, Any],
    parse_node: Callable[..., ThreadNode],
    children_key: str,
) -> list[ThreadNode]:
    result: list[ThreadNode] = []
    todo: deque[tuple[dict[str, Any], str | None]] = deque([(raw, None)])
    while todo:
        current, parent_id = todo.popleft()
        node = parse_node(current, parent_id=parent_id)
        result.append(node)
        todo.extendleft((child, node.id) for child in reversed(current.get(children_key) or ()))
    return result


def parse_reply_tree(raw: dict[str, Any]) -> list[ThreadNode]:
    """Flatten a reply and its nested ``childReplies``, parents before children."""
    return _flatten(raw, parse_reply_node, "childReplies")


def parse_page(
    data: dict[str, Any],
    parse_tree: Callable[[dict[str, Any]], list[ThreadNode]] = parse_reply_tree,
) -> PageResponse:
    """Parse a paginated response (topic replies unless another tree parser is given).

    Pagination counts are passed through as-is (possibly ``None``); the
    window controller decides whether they are usable.
    """
    content = data.get("content") if isinstance(data, dict) else None
    if not isinstance(content, list):
        msg = "page payload has no content list"
        raise ReconciliationError(msg)

    nodes: list[ThreadNode] = []
    for raw in content:
        nodes.extend(parse_tree(raw))

    return PageResponse(
        nodes=tuple(nodes),
        total_pages=data.get("totalPages"),
        total_elements=data.get("totalElements"),
        page_index=data.get("number"),
        page_size=data.get("size"),
    )


def draft_to_payload(draft: ReplyDraft) -> dict[str, Any]:
    """Build the create-reply request body."""
    payload: dict[str, Any] = {
        "description": draft.body,
        "tags": list(draft.tags),
        "language": draft.language,
        "topicId": _wire_id(draft.topic_id),
        "attachments": [{"url": ref} for ref in draft.attachment_refs],
    }
    if draft.parent_id is not None:
        payload["parentReplyId"] = _wire_id(draft.parent_id)
    return payload


def _comment_vote_state(raw: dict[str, Any]) -> VoteState:
    """Comments only say whether the viewer voted; the non-empty counter tells which way."""
    try:
        up = int(raw.get("upvotes") or 0)
        down = int(raw.get("downvotes") or 0)
        viewer = ViewerVote.NONE
        if raw.get("hasvoted"):
            viewer = ViewerVote.UP if up > 0 else ViewerVote.DOWN if down > 0 else ViewerVote.NONE
        return VoteState(upvotes=up, downvotes=down, viewer_vote=viewer)
    except (TypeError, ValueError) as e:
        msg = f"bad vote counters on comment {raw.get('id')!r}: {e}"
        raise ReconciliationError(msg) from None


def parse_comment_node(raw: dict[str, Any], *, parent_id: str | None = None) -> ThreadNode:
    """Parse a single comment object, ignoring its nested children.

    A comment posted on another comment names that comment in ``postId``;
    top-level comments name the issue or response they belong to.
    """
    if not isinstance(raw, dict) or raw.get("id") is None:
        msg = f"comment without id: {raw!r}"
        raise ReconciliationError(msg)
    server_id = str(raw["id"])
    post_id = _optional_id(raw.get("postId"))
    on_comment = raw.get("postType") == PostType.COMMENT
    user = raw.get("user") or {}
    updated = raw.get("updatedAt")
    return ThreadNode(
        client_id=server_client_id(server_id),
        id=server_id,
        parent_id=post_id if on_comment and post_id is not None else parent_id,
        author_ref=_optional_id(user.get("id")) if isinstance(user, dict) else None,
        body=raw.get("content") or "",
        created_at=parse_timestamp(raw.get("createdAt")),
        vote_state=_comment_vote_state(raw),
        sync_status=SyncStatus.CONFIRMED,
        topic_id=None if on_comment else post_id,
        updated_at=parse_timestamp(updated, field="updatedAt") if updated else None,
    )


def parse_comment_tree(raw: dict[str, Any]) -> list[ThreadNode]:
    """Flatten a comment and its nested ``children``, parents before children."""
    return _flatten(raw, parse_comment_node, "children")


def parse_comment_page(data: dict[str, Any]) -> PageResponse:
    return parse_page(data, parse_comment_tree)


def comment_draft_to_payload(draft: ReplyDraft, post_type: PostType) -> dict[str, Any]:
    """Build the create-comment request body.

    Answers to a comment are posted on that comment rather than on the post.
    """
    if draft.parent_id is not None:
        post_id, kind = draft.parent_id, PostType.COMMENT
    else:
        post_id, kind = draft.topic_id, post_type
    return {
        "text": draft.body,
        "isPrivate": False,
        "postId": _wire_id(post_id),
        "postType": str(kind),
    }
