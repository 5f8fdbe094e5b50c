"""Tests for markdown rendering of reply threads."""

from dataclasses import replace
from datetime import timedelta

from tests.unit.fakes import BASE_TIME, make_node
from thread_sync.core.tree.markdown import render_thread_as_markdown
from thread_sync.core.tree.store import ThreadStore
from thread_sync.models.node import SyncStatus, ViewerVote

NOW = BASE_TIME + timedelta(hours=2)


def _store() -> ThreadStore:
    store = ThreadStore()
    store.upsert(
        replace(
            make_node("r1", up=3, viewer=ViewerVote.UP),
            tags=("roads",),
            attachment_refs=("https://files.example/a.png",),
        )
    )
    store.upsert(make_node("r1a", parent="r1", body="first line\nsecond line"))
    store.upsert(make_node("r1b", parent="r1a"))
    store.upsert(make_node("r2", author="u2", down=1))
    return store


def test_render_full_thread() -> None:
    store = _store()
    md = render_thread_as_markdown(store, store.roots(), now=NOW)
    assert md.splitlines() == [
        "- **u1** · 2h · +3*/-0 · #roads",
        "  reply r1",
        "  [attachment](https://files.example/a.png)",
        "    - **u1** · 2h · +0/-0",
        "      first line",
        "      second line",
        "        - **u1** · 2h · +0/-0",
        "          reply r1b",
        "- **u2** · 2h · +0/-1",
        "  reply r2",
    ]


def test_depth_limit_shows_truncation() -> None:
    store = _store()
    md = render_thread_as_markdown(store, store.roots(), max_depth=1, now=NOW)
    assert "reply r1b" not in md
    assert "        - ... (1 more reply, id=r1a)" in md.splitlines()


def test_no_truncation_for_leaves() -> None:
    store = _store()
    md = render_thread_as_markdown(store, store.roots(), max_depth=0, now=NOW)
    assert md.count("... (") == 1
    assert "id=r1)" in md


def test_pending_markers() -> None:
    store = _store()
    pending = replace(
        make_node("x", parent="r2", body="on its way", author="me"),
        client_id="c:1",
        id=None,
        sync_status=SyncStatus.PENDING_CREATE,
    )
    store.upsert(pending)
    r2 = store.get("r2")
    assert r2 is not None
    voting = store.overwrite(replace(r2, sync_status=SyncStatus.PENDING_VOTE))

    md = render_thread_as_markdown(store, [voting], now=NOW)

    assert "- **u2** · 2h · +0/-1 · (vote pending)" in md
    assert "    - **me** · 2h · +0/-0 · (sending)" in md


def test_cycle_is_skipped_and_store_left_alone() -> None:
    store = ThreadStore()
    store.upsert(make_node("a", parent="b"))
    store.upsert(make_node("b", parent="a"))

    root = store.get("a")
    assert root is not None

    md = render_thread_as_markdown(store, [root], now=NOW)

    assert md == ""
    node = store.get("a")
    assert node is not None
    assert node.sync_status == SyncStatus.CONFIRMED


def test_failed_reply_is_skipped() -> None:
    store = _store()
    store.mark("s:r2", SyncStatus.FAILED)

    md = render_thread_as_markdown(store, store.roots(), now=NOW)

    assert "reply r1" in md
    assert "reply r2" not in md


def test_empty_roots() -> None:
    assert render_thread_as_markdown(ThreadStore(), []) == ""
