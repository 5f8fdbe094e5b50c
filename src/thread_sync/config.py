"""Configuration constants for thread-sync."""

import os
from datetime import timedelta
from pathlib import Path

# Base URL of the discussion service.
API_BASE_URL: str = os.environ.get("THREAD_SYNC_API_BASE_URL", "http://localhost:8080")

# Bearer token. THREAD_SYNC_TOKEN wins; otherwise the first token file found is used.
API_TOKEN_ENV: str = "THREAD_SYNC_TOKEN"
API_TOKEN_FILES: list[Path] = [
    Path("~/.config/thread-sync-token.txt").expanduser(),
    Path("~/.config/secret/thread-sync-token.txt").expanduser(),
]

# Paging. Replies are listed oldest first, like the service's topic view.
DEFAULT_PAGE_SIZE: int = 20
SORT_BY: str = "createdAt"
SORT_DIR: str = "asc"

# Comments are listed newest first.
COMMENT_SORT_DIR: str = "desc"

# Seconds before an HTTP call is abandoned and reported as a network error.
REQUEST_TIMEOUT: float = 15.0

# A server reply may be matched to a pending local reply only within this window.
CONFIRM_MATCH_WINDOW: timedelta = timedelta(minutes=5)

# Nesting shown by default when rendering a thread.
DEFAULT_MAX_DEPTH: int = 3

DEFAULT_LANGUAGE: str = "ENGLISH"
