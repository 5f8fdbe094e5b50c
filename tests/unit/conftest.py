"""Shared test fixtures."""

import pytest

from tests.unit.fakes import FakeInvalidator, FakeThreadApi, make_node, make_page
from thread_sync.session import ThreadSession


@pytest.fixture
def fake_api() -> FakeThreadApi:
    """Fake API serving a two-page thread: 25 top-level replies, 20 per page."""
    api = FakeThreadApi()
    page0 = [make_node("r1"), make_node("r1a", parent="r1"), make_node("r2", up=2, down=1)]
    api.add_page(0, make_page(page0, total_elements=25, page_index=0))
    api.add_page(1, make_page([make_node("r21")], total_elements=25, page_index=1))
    return api


@pytest.fixture
def invalidator() -> FakeInvalidator:
    return FakeInvalidator()


@pytest.fixture
def session(fake_api: FakeThreadApi, invalidator: FakeInvalidator) -> ThreadSession:
    return ThreadSession(fake_api, "t1", viewer_ref="me", invalidator=invalidator)
