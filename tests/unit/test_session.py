"""Tests for ThreadSession, driven through FakeThreadApi."""

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime

import pytest

from tests.unit.fakes import FakeInvalidator, FakeThreadApi, make_node, make_page
from thread_sync.errors import AuthError, ConflictError, NetworkError, ValidationError
from thread_sync.models.node import (
    SyncStatus,
    ThreadNode,
    ViewerVote,
    VoteDirection,
    VoteState,
)
from thread_sync.models.sync import ChangeEvent, ChangeReason, MutationResult, PageLoadResult
from thread_sync.session import ThreadSession


def _ids(nodes: Iterable[ThreadNode]) -> list[str | None]:
    return [n.id for n in nodes]


def _record(session: ThreadSession) -> list[ChangeEvent]:
    events: list[ChangeEvent] = []
    session.subscribe(events.append)
    return events


class TestPaging:
    def test_first_page(self, session: ThreadSession) -> None:
        result = asyncio.run(session.load_page(0))

        assert result.applied is True
        assert result.error is None
        assert result.window.page_index == 0
        assert result.window.total_pages == 2
        assert result.window.total_elements == 25
        assert result.window.has_next is True
        assert result.window.has_previous is False
        assert _ids(session.current_page()) == ["r1", "r2"]
        assert _ids(session.get_children("r1")) == ["r1a"]

    def test_next_page_reaches_last(self, session: ThreadSession) -> None:
        async def run() -> None:
            await session.load_page(0)
            await session.next_page()

        asyncio.run(run())

        window = session.window
        assert window.page_index == 1
        assert window.has_next is False
        assert window.has_previous is True
        assert _ids(session.current_page()) == ["r21"]
        assert _ids(session.get_page(0)) == ["r1", "r2"]

    def test_next_on_last_page_is_noop(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        asyncio.run(session.load_page(1))
        calls = len(fake_api.calls)

        result = asyncio.run(session.next_page())

        assert result.applied is False
        assert result.error is None
        assert result.window.page_index == 1
        assert len(fake_api.calls) == calls

    def test_previous_on_first_page_is_noop(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        result = asyncio.run(session.previous_page())

        assert result.applied is False
        assert fake_api.calls == []

    def test_go_to_page_clamps(self, session: ThreadSession) -> None:
        async def run() -> None:
            await session.load_page(0)
            await session.go_to_page(7)

        asyncio.run(run())

        assert session.window.page_index == 1

    def test_stale_response_is_discarded(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        fake_api.add_page(2, make_page([make_node("p2")], total_elements=80, page_index=2))
        fake_api.add_page(3, make_page([make_node("p3")], total_elements=80, page_index=3))
        events = _record(session)

        async def run() -> tuple[PageLoadResult, PageLoadResult]:
            gate = fake_api.hold("fetch_page", 2)
            slow = asyncio.create_task(session.load_page(2))
            await asyncio.sleep(0)
            fast = await session.load_page(3)
            gate.set()
            return await slow, fast

        slow, fast = asyncio.run(run())

        assert fast.applied is True
        assert slow.applied is False
        assert slow.error is None
        assert session.window.page_index == 3
        assert _ids(session.current_page()) == ["p3"]
        assert session.get_node("p2") is None
        assert [e.reason for e in events] == [ChangeReason.PAGE_LOADED]

    def test_reload_is_idempotent(self, session: ThreadSession) -> None:
        async def run() -> None:
            await session.load_page(0)
            await session.refresh()

        asyncio.run(run())

        assert len(session.store) == 3
        assert _ids(session.current_page()) == ["r1", "r2"]

    def test_network_error_leaves_window(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        asyncio.run(session.load_page(0))
        fake_api.fail_next("fetch_page", NetworkError("unreachable"))

        result = asyncio.run(session.load_page(1))

        assert result.applied is False
        assert isinstance(result.error, NetworkError)
        assert session.window.page_index == 0
        assert len(session.store) == 3

    def test_auth_error_invalidates_session(
        self,
        session: ThreadSession,
        fake_api: FakeThreadApi,
        invalidator: FakeInvalidator,
    ) -> None:
        fake_api.fail_next("fetch_page", AuthError("token expired"))

        result = asyncio.run(session.load_page(0))

        assert isinstance(result.error, AuthError)
        assert invalidator.reasons == ["token expired"]
        assert len(session.store) == 0

    def test_reply_whose_parent_chain_loops_is_marked_failed(self) -> None:
        api = FakeThreadApi()
        api.add_page(0, make_page([make_node("a"), make_node("b", parent="a")], total_elements=25))
        looped = make_page([make_node("a", parent="b")], total_elements=25, page_index=1)
        session = ThreadSession(api, "t1", viewer_ref="me")
        asyncio.run(session.load_page(0))
        api.add_page(1, looped)
        events = _record(session)

        result = asyncio.run(session.load_page(1))

        assert result.applied is True
        node = session.get_node("a")
        assert node is not None
        assert node.sync_status == SyncStatus.FAILED
        assert [e.reason for e in events] == [ChangeReason.PAGE_LOADED]


class TestSubscribe:
    def test_one_event_per_page_load(self, session: ThreadSession) -> None:
        events = _record(session)

        asyncio.run(session.load_page(0))

        assert len(events) == 1
        assert events[0].reason == ChangeReason.PAGE_LOADED
        assert set(events[0].client_ids) == {"s:r1", "s:r1a", "s:r2"}

    def test_unsubscribe_stops_events(self, session: ThreadSession) -> None:
        events: list[ChangeEvent] = []
        unsubscribe = session.subscribe(events.append)
        unsubscribe()

        asyncio.run(session.load_page(0))

        assert events == []

    def test_failing_listener_does_not_block_others(self, session: ThreadSession) -> None:
        def broken(event: ChangeEvent) -> None:
            raise RuntimeError("listener bug")

        session.subscribe(broken)
        events = _record(session)

        result = asyncio.run(session.load_page(0))

        assert result.applied is True
        assert len(events) == 1


class TestSubmitReply:
    def test_confirmed_reply(self, session: ThreadSession) -> None:
        asyncio.run(session.load_page(0))
        events = _record(session)

        result = asyncio.run(session.submit_reply("hello"))

        assert result.success is True
        assert result.node is not None
        assert result.node.id == "1000"
        assert result.node.client_id.startswith("c:")
        assert result.node.sync_status == SyncStatus.CONFIRMED
        assert _ids(session.current_page()) == ["r1", "r2", "1000"]
        assert [e.reason for e in events] == [ChangeReason.OPTIMISTIC, ChangeReason.CONFIRMED]
        assert len(session.log) == 0

    def test_reply_visible_before_server_answers(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        asyncio.run(session.load_page(0))
        seen: dict[str, ThreadNode] = {}

        async def run() -> MutationResult:
            gate = fake_api.hold("create_reply")
            task = asyncio.create_task(session.submit_reply("me too", parent="r1"))
            await asyncio.sleep(0)
            seen["pending"] = session.get_children("r1")[-1]
            gate.set()
            return await task

        result = asyncio.run(run())

        pending = seen["pending"]
        assert pending.id is None
        assert pending.body == "me too"
        assert pending.author_ref == "me"
        assert pending.sync_status == SyncStatus.PENDING_CREATE

        children = session.get_children("r1")
        assert _ids(children) == ["r1a", "1000"]
        assert children[-1].client_id == pending.client_id
        assert result.node is not None
        assert result.node.parent_id == "r1"

    def test_rejected_reply_disappears(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        asyncio.run(session.load_page(0))
        events = _record(session)
        error = NetworkError("server down", status_code=503)
        fake_api.fail_next("create_reply", error)

        result = asyncio.run(session.submit_reply("hello"))

        assert result.success is False
        assert result.error is error
        assert result.node is None
        assert len(session.store) == 3
        assert _ids(session.current_page()) == ["r1", "r2"]
        assert [e.reason for e in events] == [ChangeReason.OPTIMISTIC, ChangeReason.REJECTED]
        assert len(session.log) == 0

    def test_pending_reply_survives_reload(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        asyncio.run(session.load_page(0))
        seen: dict[str, tuple[ThreadNode, ...]] = {}

        async def run() -> None:
            gate = fake_api.hold("create_reply")
            task = asyncio.create_task(session.submit_reply("new topic reply"))
            await asyncio.sleep(0)
            await session.refresh()
            seen["after_refresh"] = session.current_page()
            gate.set()
            await task

        asyncio.run(run())

        after_refresh = seen["after_refresh"]
        assert _ids(after_refresh) == ["r1", "r2", None]
        assert after_refresh[-1].sync_status == SyncStatus.PENDING_CREATE
        assert _ids(session.current_page()) == ["r1", "r2", "1000"]

    def test_create_failure_after_page_confirmed_it(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        asyncio.run(session.load_page(0))
        listed = make_node("555", body="hello", author="me", created_at=datetime.now(UTC))
        page0 = fake_api.pages[0]

        async def run() -> MutationResult:
            gate = fake_api.hold("create_reply")
            task = asyncio.create_task(session.submit_reply("hello"))
            await asyncio.sleep(0)
            fake_api.add_page(0, make_page([*page0.nodes, listed], total_elements=26))
            await session.refresh()
            fake_api.fail_next("create_reply", NetworkError("response lost"))
            gate.set()
            return await task

        result = asyncio.run(run())

        assert result.success is False
        assert isinstance(result.error, NetworkError)
        assert result.node is not None
        assert result.node.id == "555"
        assert result.node.sync_status == SyncStatus.CONFIRMED
        assert _ids(session.current_page()) == ["r1", "r2", "555"]
        assert len(session.log) == 0

    def test_twin_replies_confirmed_out_of_order(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        asyncio.run(session.load_page(0))
        page0 = fake_api.pages[0]
        events = _record(session)

        async def run() -> list[MutationResult]:
            gate = fake_api.hold("create_reply")
            first = asyncio.create_task(session.submit_reply("same text"))
            second = asyncio.create_task(session.submit_reply("same text"))
            await asyncio.sleep(0)
            # The server lists the second create before either response arrives.
            listed = make_node("1001", body="same text", author="me", created_at=datetime.now(UTC))
            fake_api.add_page(0, make_page([*page0.nodes, listed], total_elements=26))
            await session.refresh()
            gate.set()
            return list(await asyncio.gather(first, second))

        first, second = asyncio.run(run())

        assert first.success is True
        assert second.success is True
        assert first.node is not None
        assert second.node is not None
        assert first.node.id == "1000"
        assert second.node.id == "1001"
        assert first.node.client_id != second.node.client_id
        assert _ids(session.current_page()) == ["r1", "r2", "1000", "1001"]
        assert all(n.sync_status == SyncStatus.CONFIRMED for n in session.current_page())
        assert len(session.log) == 0
        confirmed = [e for e in events if e.reason == ChangeReason.CONFIRMED]
        assert len(confirmed) == 2
        assert second.node.client_id in confirmed[0].client_ids

    def test_session_without_viewer_matches_listed_reply(
        self, fake_api: FakeThreadApi
    ) -> None:
        session = ThreadSession(fake_api, "t1")
        asyncio.run(session.load_page(0))
        page0 = fake_api.pages[0]
        seen: dict[str, tuple[ThreadNode, ...]] = {}

        async def run() -> MutationResult:
            gate = fake_api.hold("create_reply")
            task = asyncio.create_task(session.submit_reply("hello"))
            await asyncio.sleep(0)
            listed = make_node("1000", body="hello", author="me", created_at=datetime.now(UTC))
            fake_api.add_page(0, make_page([*page0.nodes, listed], total_elements=26))
            await session.refresh()
            seen["after_refresh"] = session.current_page()
            gate.set()
            return await task

        result = asyncio.run(run())

        after_refresh = seen["after_refresh"]
        assert _ids(after_refresh) == ["r1", "r2", "1000"]
        assert after_refresh[-1].client_id.startswith("c:")
        assert result.success is True
        assert result.node is not None
        assert result.node.client_id == after_refresh[-1].client_id
        assert len([n for n in session.store.all() if n.body == "hello"]) == 1

    def test_empty_body_rejected(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        with pytest.raises(ValidationError, match="empty"):
            asyncio.run(session.submit_reply("   "))
        assert fake_api.calls == []

    def test_unknown_parent_rejected(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        asyncio.run(session.load_page(0))

        with pytest.raises(ValidationError, match="Unknown parent"):
            asyncio.run(session.submit_reply("hi", parent="nope"))
        assert "create_reply" not in fake_api.call_names()
        assert len(session.store) == 3

    def test_unconfirmed_parent_rejected(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        asyncio.run(session.load_page(0))

        async def run() -> None:
            gate = fake_api.hold("create_reply")
            task = asyncio.create_task(session.submit_reply("first"))
            await asyncio.sleep(0)
            pending = session.current_page()[-1]
            try:
                with pytest.raises(ValidationError, match="not confirmed"):
                    await session.submit_reply("second", parent=pending.client_id)
            finally:
                gate.set()
                await task

        asyncio.run(run())

        assert fake_api.call_names().count("create_reply") == 1

    def test_auth_error_on_create_invalidates(
        self,
        session: ThreadSession,
        fake_api: FakeThreadApi,
        invalidator: FakeInvalidator,
    ) -> None:
        fake_api.fail_next("create_reply", AuthError("session ended"))

        result = asyncio.run(session.submit_reply("hello"))

        assert isinstance(result.error, AuthError)
        assert invalidator.reasons == ["session ended"]
        assert len(session.store) == 0


class TestVotes:
    def test_upvote(self, session: ThreadSession, fake_api: FakeThreadApi) -> None:
        asyncio.run(session.load_page(0))

        result = asyncio.run(session.toggle_upvote("r2"))

        assert result.success is True
        node = session.get_node("r2")
        assert node is not None
        assert node.vote_state == VoteState(upvotes=3, downvotes=1, viewer_vote=ViewerVote.UP)
        assert node.sync_status == SyncStatus.CONFIRMED
        assert fake_api.calls[-1] == ("vote", ("r2", VoteDirection.UP, False))

    def test_second_upvote_retracts(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        async def run() -> None:
            await session.load_page(0)
            await session.toggle_upvote("r2")
            await session.toggle_upvote("r2")

        asyncio.run(run())

        node = session.get_node("r2")
        assert node is not None
        assert node.vote_state == VoteState(upvotes=2, downvotes=1)
        assert [args for name, args in fake_api.calls if name == "vote"] == [
            ("r2", VoteDirection.UP, False),
            ("r2", VoteDirection.UP, True),
        ]

    def test_downvote_replaces_upvote(self, session: ThreadSession) -> None:
        async def run() -> None:
            await session.load_page(0)
            await session.toggle_upvote("r2")
            await session.toggle_downvote("r2")

        asyncio.run(run())

        node = session.get_node("r2")
        assert node is not None
        assert node.vote_state == VoteState(upvotes=2, downvotes=2, viewer_vote=ViewerVote.DOWN)

    def test_vote_while_pending_conflicts(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        asyncio.run(session.load_page(0))
        seen: dict[str, MutationResult] = {}

        async def run() -> None:
            gate = fake_api.hold("vote", "r2")
            task = asyncio.create_task(session.toggle_upvote("r2"))
            await asyncio.sleep(0)
            seen["second"] = await session.toggle_upvote("r2")
            gate.set()
            await task

        asyncio.run(run())

        second = seen["second"]
        assert second.success is False
        assert isinstance(second.error, ConflictError)
        assert second.node is not None
        assert second.node.sync_status == SyncStatus.PENDING_VOTE
        assert fake_api.call_names().count("vote") == 1
        node = session.get_node("r2")
        assert node is not None
        assert node.vote_state.viewer_vote == ViewerVote.UP

    def test_rejected_vote_reverts(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        asyncio.run(session.load_page(0))
        events = _record(session)
        fake_api.fail_next("vote", NetworkError("timeout"))

        result = asyncio.run(session.toggle_upvote("r2"))

        assert result.success is False
        assert result.node is not None
        assert result.node.vote_state == VoteState(upvotes=2, downvotes=1)
        assert result.node.sync_status == SyncStatus.CONFIRMED
        assert [e.reason for e in events] == [ChangeReason.OPTIMISTIC, ChangeReason.REJECTED]

    def test_reload_keeps_pending_vote(
        self, session: ThreadSession, fake_api: FakeThreadApi
    ) -> None:
        asyncio.run(session.load_page(0))
        seen: dict[str, ThreadNode | None] = {}

        async def run() -> None:
            gate = fake_api.hold("vote", "r2")
            task = asyncio.create_task(session.toggle_upvote("r2"))
            await asyncio.sleep(0)
            await session.refresh()
            seen["during"] = session.get_node("r2")
            gate.set()
            await task

        asyncio.run(run())

        during = seen["during"]
        assert during.vote_state == VoteState(upvotes=3, downvotes=1, viewer_vote=ViewerVote.UP)
        assert during.sync_status == SyncStatus.PENDING_VOTE
        node = session.get_node("r2")
        assert node is not None
        assert node.sync_status == SyncStatus.CONFIRMED

    def test_vote_on_nested_reply_keeps_parent(self, session: ThreadSession) -> None:
        asyncio.run(session.load_page(0))

        asyncio.run(session.toggle_downvote("r1a"))

        assert _ids(session.get_children("r1")) == ["r1a"]
        assert session.depth("r1a") == 1

    def test_vote_on_unknown_reply(self, session: ThreadSession) -> None:
        with pytest.raises(ValidationError, match="Unknown reply"):
            asyncio.run(session.toggle_upvote("missing"))
