"""Page window bookkeeping for a thread's top-level replies."""

import math

from loguru import logger

from thread_sync.config import DEFAULT_PAGE_SIZE
from thread_sync.errors import ReconciliationError
from thread_sync.models.node import PageResponse, PageWindow
from thread_sync.models.sync import PageRequest


def page_count(total_elements: int, page_size: int) -> int:
    """Number of pages needed for ``total_elements`` items."""
    if page_size <= 0:
        msg = f"page size must be positive, got {page_size!r}"
        raise ValueError(msg)
    return math.ceil(total_elements / page_size)


def make_window(
    *, page_index: int, page_size: int, total_pages: int, total_elements: int
) -> PageWindow:
    """Build a window with the navigation flags derived from the counts."""
    return PageWindow(
        page_index=page_index,
        page_size=page_size,
        total_pages=total_pages,
        total_elements=total_elements,
        has_next=page_index < total_pages - 1,
        has_previous=page_index > 0,
    )


class PageWindowController:
    """Tracks the loaded window and the page the caller currently wants.

    The window only changes through :meth:`apply`, which swaps it as a whole.
    ``load_page``/``next``/``previous``/``go_to`` record intent and return the
    request to issue; a response for any other page index is stale.
    """

    def __init__(self, *, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        if page_size <= 0:
            msg = f"page size must be positive, got {page_size!r}"
            raise ValueError(msg)
        self._window = make_window(
            page_index=0, page_size=page_size, total_pages=0, total_elements=0
        )
        self._wanted = 0

    @property
    def window(self) -> PageWindow:
        return self._window

    @property
    def wanted_index(self) -> int:
        return self._wanted

    def load_page(self, page_index: int) -> PageRequest:
        if page_index < 0:
            msg = f"page index must not be negative, got {page_index!r}"
            raise ValueError(msg)
        self._wanted = page_index
        return PageRequest(page_index=page_index, page_size=self._window.page_size)

    def next(self) -> PageRequest | None:
        """Request the following page, or ``None`` when already on the last one."""
        if not self._window.has_next:
            return None
        return self.load_page(self._window.page_index + 1)

    def previous(self) -> PageRequest | None:
        if not self._window.has_previous:
            return None
        return self.load_page(self._window.page_index - 1)

    def go_to(self, page_index: int) -> PageRequest:
        total = self._window.total_pages
        clamped = min(max(page_index, 0), total - 1) if total > 0 else 0
        if clamped != page_index:
            logger.debug("Clamped page {} to {} ({} pages)", page_index, clamped, total)
        return self.load_page(clamped)

    def is_stale(self, request: PageRequest) -> bool:
        return request.page_index != self._wanted

    def check(self, request: PageRequest, page: PageResponse) -> tuple[int, int]:
        """Return (total_pages, total_elements) after validating a page against its request.

        Counts must be present and non-negative. When the response echoes its
        page number and size, the number must be the one requested and the
        page count must agree with the element count.
        """
        if page.total_pages is None or page.total_elements is None:
            msg = "page is missing pagination metadata"
            raise ReconciliationError(msg)
        if page.total_pages < 0 or page.total_elements < 0:
            msg = f"negative page counts: {page.total_pages!r}/{page.total_elements!r}"
            raise ReconciliationError(msg)
        if page.page_index is not None and page.page_index != request.page_index:
            msg = f"asked for page {request.page_index!r}, got page {page.page_index!r}"
            raise ReconciliationError(msg)
        size = page.page_size
        expected = page.total_pages
        if size is not None and size > 0:
            expected = page_count(page.total_elements, size)
        if page.total_pages != expected:
            msg = (
                f"{page.total_pages!r} pages cannot hold {page.total_elements!r} replies "
                f"at {size!r} per page"
            )
            raise ReconciliationError(msg)
        return page.total_pages, page.total_elements

    def apply(self, request: PageRequest, page: PageResponse) -> PageWindow:
        """Replace the whole window from a fetched page's metadata."""
        total_pages, total_elements = self.check(request, page)
        self._window = make_window(
            page_index=request.page_index,
            page_size=request.page_size,
            total_pages=total_pages,
            total_elements=total_elements,
        )
        return self._window
