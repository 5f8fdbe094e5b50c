"""HTTP clients for the topic-replies and comments services."""

import asyncio
import os
from pathlib import Path
from typing import Any

import requests
from loguru import logger

from thread_sync.config import (
    API_BASE_URL,
    API_TOKEN_ENV,
    API_TOKEN_FILES,
    COMMENT_SORT_DIR,
    REQUEST_TIMEOUT,
    SORT_BY,
    SORT_DIR,
)
from thread_sync.core.importer.json_reader import (
    comment_draft_to_payload,
    draft_to_payload,
    parse_comment_node,
    parse_comment_page,
    parse_page,
    parse_reply_node,
)
from thread_sync.errors import AuthError, NetworkError, ReconciliationError
from thread_sync.models.node import (
    PageResponse,
    PostType,
    ReplyDraft,
    ThreadNode,
    VoteDirection,
)
from thread_sync.protocols import AuthHeaderProvider


class StaticTokenAuth:
    """Bearer credentials from a fixed token."""

    def __init__(self, token: str) -> None:
        self.token = token

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


class TokenFileAuth:
    """Bearer credentials read from the environment or the first token file found."""

    def __init__(self, token_files: list[Path] | None = None) -> None:
        self.token_name: str
        env_token = os.environ.get(API_TOKEN_ENV)
        if env_token:
            self.token = env_token.strip()
            self.token_name = f"${API_TOKEN_ENV}"
            return

        candidates = token_files if token_files is not None else API_TOKEN_FILES
        for token_path in candidates:
            try:
                self.token = token_path.read_text(encoding="utf-8").strip()
                self.token_name = str(token_path)
                break
            except FileNotFoundError:
                pass
        else:
            msg = f"Cannot find thread-sync token file, was looking at {candidates!r}"
            raise RuntimeError(msg)

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


class ServiceApi:
    """Blocking ``requests`` client, exposed through async methods.

    Each call runs in a worker thread so the event loop never waits on the
    network. Subclasses provide the ``*_sync`` calls for one resource.
    """

    def __init__(
        self,
        auth: AuthHeaderProvider,
        *,
        base_url: str = API_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.auth = auth
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.sess = requests.Session()
        logger.debug("API ready: base_url {!r}, timeout {!r}", self.base_url, self.timeout)

    def request(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body."""
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json", **self.auth.headers()}
        logger.debug("Making request: {} {} {}", method, path, repr(params or body)[:48])
        try:
            r = self.sess.request(
                method, url, json=body, params=params, headers=headers, timeout=self.timeout
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            msg = f"{method} {path} failed: {e}"
            raise NetworkError(msg) from e

        if r.status_code == 401:
            msg = f"{method} {path} was rejected: not authenticated"
            raise AuthError(msg)
        if not r.ok:
            msg = f"{method} {path} failed: HTTP {r.status_code} {r.reason}"
            raise NetworkError(msg, status_code=r.status_code)
        try:
            return r.json()
        except ValueError as e:
            msg = f"{method} {path} returned invalid JSON"
            raise ReconciliationError(msg) from e

    def fetch_page_sync(self, resource_id: str, page_index: int, page_size: int) -> PageResponse:
        raise NotImplementedError

    def create_reply_sync(self, draft: ReplyDraft) -> ThreadNode:
        raise NotImplementedError

    def vote_sync(
        self, node_id: str, direction: VoteDirection, *, retract: bool = False
    ) -> ThreadNode:
        raise NotImplementedError

    async def fetch_page(self, resource_id: str, page_index: int, page_size: int) -> PageResponse:
        return await asyncio.to_thread(self.fetch_page_sync, resource_id, page_index, page_size)

    async def create_reply(self, draft: ReplyDraft) -> ThreadNode:
        return await asyncio.to_thread(self.create_reply_sync, draft)

    async def vote(
        self, node_id: str, direction: VoteDirection, *, retract: bool = False
    ) -> ThreadNode:
        return await asyncio.to_thread(self.vote_sync, node_id, direction, retract=retract)


class TopicRepliesApi(ServiceApi):
    """Client for replies under a topic. Votes are toggled by the service."""

    def fetch_page_sync(self, resource_id: str, page_index: int, page_size: int) -> PageResponse:
        params = {"page": page_index, "size": page_size, "sortBy": SORT_BY, "sortDir": SORT_DIR}
        data = self.request("GET", f"/api/topic-replies/topic/{resource_id}", params=params)
        return parse_page(data)

    def create_reply_sync(self, draft: ReplyDraft) -> ThreadNode:
        data = self.request("POST", "/api/topic-replies", body=draft_to_payload(draft))
        return parse_reply_node(data)

    def vote_sync(
        self, node_id: str, direction: VoteDirection, *, retract: bool = False
    ) -> ThreadNode:
        # The same call adds or takes back a vote, so ``retract`` is not needed.
        action = "upvote" if direction == VoteDirection.UP else "downvote"
        data = self.request("POST", f"/api/topic-replies/{node_id}/{action}")
        return parse_reply_node(data)


class CommentsApi(ServiceApi):
    """Client for comments on an issue or a response.

    Comments answer a comment by posting on it, and a vote is taken back with
    ``DELETE`` on the path that cast it.
    """

    def __init__(
        self,
        auth: AuthHeaderProvider,
        *,
        post_type: PostType = PostType.ISSUE,
        base_url: str = API_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        super().__init__(auth, base_url=base_url, timeout=timeout)
        self.post_type = post_type

    def fetch_page_sync(self, resource_id: str, page_index: int, page_size: int) -> PageResponse:
        params = {
            "postId": resource_id,
            "postType": str(self.post_type),
            "page": page_index,
            "size": page_size,
            "sortBy": SORT_BY,
            "sortDir": COMMENT_SORT_DIR,
        }
        data = self.request("GET", "/api/comments", params=params)
        return parse_comment_page(data)

    def create_reply_sync(self, draft: ReplyDraft) -> ThreadNode:
        body = comment_draft_to_payload(draft, self.post_type)
        data = self.request("POST", "/api/comments", body=body)
        return parse_comment_node(data, parent_id=draft.parent_id)

    def vote_sync(
        self, node_id: str, direction: VoteDirection, *, retract: bool = False
    ) -> ThreadNode:
        action = "upvote" if direction == VoteDirection.UP else "downvote"
        data = self.request("DELETE" if retract else "POST", f"/api/comments/{node_id}/{action}")
        return parse_comment_node(data)
