"""Client-side sync engine for paginated, threaded topic replies and comments."""

from thread_sync.api import CommentsApi, StaticTokenAuth, TokenFileAuth, TopicRepliesApi
from thread_sync.protocols import AuthHeaderProvider, SessionInvalidator, ThreadApiProtocol
from thread_sync.session import ThreadSession

__all__ = [
    "AuthHeaderProvider",
    "CommentsApi",
    "SessionInvalidator",
    "StaticTokenAuth",
    "ThreadApiProtocol",
    "ThreadSession",
    "TokenFileAuth",
    "TopicRepliesApi",
]
