"""CLI for browsing and replying to topic threads and comment threads."""

import asyncio
import json
from enum import StrEnum
from typing import Annotated, Any

import typer
from loguru import logger

from thread_sync.api import CommentsApi, TokenFileAuth, TopicRepliesApi
from thread_sync.config import API_BASE_URL, DEFAULT_MAX_DEPTH, DEFAULT_PAGE_SIZE
from thread_sync.core.relative_time import format_relative_time
from thread_sync.core.tree.markdown import render_thread_as_markdown
from thread_sync.errors import ThreadSyncError, ValidationError
from thread_sync.logging_config import configure_logging
from thread_sync.models.node import PageWindow, PostType, ThreadNode
from thread_sync.models.sync import MutationResult
from thread_sync.protocols import ThreadApiProtocol
from thread_sync.session import ThreadSession

app = typer.Typer(help="thread-sync: browse, reply to and vote on discussion threads.")


class Kind(StrEnum):
    """Which discussion a thread id refers to."""

    TOPIC = "topic"
    ISSUE = "issue"
    RESPONSE = "response"


class _LogInvalidator:
    """Session invalidation for a one-shot CLI: report and let the command fail."""

    def invalidate(self, reason: str) -> None:
        logger.error("Session rejected: {}. Check your token.", reason)


def make_api(base_url: str, kind: Kind = Kind.TOPIC) -> ThreadApiProtocol:
    """Build the HTTP client. Tests patch this."""
    if kind == Kind.TOPIC:
        return TopicRepliesApi(TokenFileAuth(), base_url=base_url)
    return CommentsApi(TokenFileAuth(), post_type=PostType(kind.upper()), base_url=base_url)


def _session(topic_id: str, base_url: str, page_size: int, kind: Kind) -> ThreadSession:
    return ThreadSession(
        make_api(base_url, kind), topic_id, page_size=page_size, invalidator=_LogInvalidator()
    )


def _fail(error: ThreadSyncError) -> typer.Exit:
    logger.error("{}: {}", type(error).__name__, error)
    return typer.Exit(1)


def _returned(result: MutationResult) -> ThreadNode:
    if result.node is None:
        logger.error("The service accepted the change but returned no reply")
        raise typer.Exit(1)
    return result.node


def _window_line(window: PageWindow) -> str:
    pages = max(window.total_pages, 1)
    return (
        f"Page {window.page_index + 1} of {pages} "
        f"({window.total_elements} replies"
        f"{', more' if window.has_next else ''})"
    )


def _node_to_dict(session: ThreadSession, node: ThreadNode, depth: int | None) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": node.id,
        "client_id": node.client_id,
        "author": node.author_ref,
        "body": node.body,
        "tags": list(node.tags),
        "attachments": list(node.attachment_refs),
        "created": format_relative_time(node.created_at),
        "upvotes": node.vote_state.upvotes,
        "downvotes": node.vote_state.downvotes,
        "viewer_vote": str(node.vote_state.viewer_vote),
        "status": str(node.sync_status),
    }
    children = session.get_children(node.client_id)
    if depth is None or depth > 0:
        next_depth = None if depth is None else depth - 1
        data["children"] = [_node_to_dict(session, c, next_depth) for c in children]
    else:
        data["child_count"] = len(children)
    return data


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    configure_logging(verbose=verbose)


@app.command()
def show(
    topic_id: str = typer.Argument(..., help="Topic whose replies to show"),
    page: int = typer.Option(0, "--page", "-p", help="Page index (0-based)"),
    size: int = typer.Option(DEFAULT_PAGE_SIZE, "--size", "-s", help="Replies per page"),
    max_depth: Annotated[
        int | None,
        typer.Option("--max-depth", "-m", help="Max nesting levels to render"),
    ] = DEFAULT_MAX_DEPTH,
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    kind: Kind = typer.Option(Kind.TOPIC, "--kind", "-k", help="Kind of thread"),
    base_url: str = typer.Option(API_BASE_URL, "--base-url", help="Service base URL"),
) -> None:
    """Show one page of a topic's replies."""
    session = _session(topic_id, base_url, size, kind)
    result = asyncio.run(session.load_page(page))
    if result.error is not None:
        raise _fail(result.error)

    roots = session.current_page()
    if output_json:
        data = {
            "topic_id": topic_id,
            "page": result.window.page_index,
            "total_pages": result.window.total_pages,
            "total_elements": result.window.total_elements,
            "has_next": result.window.has_next,
            "has_previous": result.window.has_previous,
            "replies": [_node_to_dict(session, r, max_depth) for r in roots],
        }
        typer.echo(json.dumps(data, indent=2))
        return

    typer.echo(_window_line(result.window))
    typer.echo()
    md = render_thread_as_markdown(session.store, roots, max_depth=max_depth)
    typer.echo(md or "No replies yet.")


@app.command()
def reply(
    topic_id: str = typer.Argument(..., help="Topic to reply to"),
    body: str = typer.Argument(..., help="Reply text"),
    parent: Annotated[
        str | None,
        typer.Option("--parent", "-P", help="Reply id to answer (must be on the loaded page)"),
    ] = None,
    tags: Annotated[
        list[str] | None,
        typer.Option("--tag", "-t", help="Tag to attach (repeatable)"),
    ] = None,
    page: int = typer.Option(0, "--page", "-p", help="Page holding the parent reply"),
    kind: Kind = typer.Option(Kind.TOPIC, "--kind", "-k", help="Kind of thread"),
    base_url: str = typer.Option(API_BASE_URL, "--base-url", help="Service base URL"),
) -> None:
    """Post a reply to a topic or to one of its replies."""
    session = _session(topic_id, base_url, DEFAULT_PAGE_SIZE, kind)

    async def run() -> None:
        if parent is not None:
            loaded = await session.load_page(page)
            if loaded.error is not None:
                raise _fail(loaded.error)
        try:
            result = await session.submit_reply(body, parent=parent, tags=tags or ())
        except ValidationError as e:
            raise _fail(e) from None
        if result.error is not None:
            raise _fail(result.error)
        typer.echo(f"Posted reply {_returned(result).id}")

    asyncio.run(run())


@app.command()
def vote(
    topic_id: str = typer.Argument(..., help="Topic holding the reply"),
    reply_id: str = typer.Argument(..., help="Reply to vote on"),
    down: bool = typer.Option(False, "--down", "-d", help="Toggle a downvote instead"),
    page: int = typer.Option(0, "--page", "-p", help="Page holding the reply"),
    kind: Kind = typer.Option(Kind.TOPIC, "--kind", "-k", help="Kind of thread"),
    base_url: str = typer.Option(API_BASE_URL, "--base-url", help="Service base URL"),
) -> None:
    """Toggle your vote on a reply."""
    session = _session(topic_id, base_url, DEFAULT_PAGE_SIZE, kind)

    async def run() -> None:
        loaded = await session.load_page(page)
        if loaded.error is not None:
            raise _fail(loaded.error)
        try:
            if down:
                result = await session.toggle_downvote(reply_id)
            else:
                result = await session.toggle_upvote(reply_id)
        except ValidationError as e:
            raise _fail(e) from None
        if result.error is not None:
            raise _fail(result.error)
        state = _returned(result).vote_state
        typer.echo(f"Reply {reply_id}: +{state.upvotes}/-{state.downvotes} ({state.viewer_vote})")

    asyncio.run(run())
