"""
Data Layer Protocol Definitions

This module defines typing.Protocol interfaces for the remote store behind the
community feed and for the local record caches the feed logic writes to.
These protocols enable dependency injection, making the feed logic testable
without a real backend.

Protocols defined:
- RecordCache: Interface shared by the feed cache and the nested reply view
- RemoteStore: Interface for CRUD, toggle, reporting and change-feed operations
"""

import enum
import itertools
from dataclasses import dataclass, field
from typing import Protocol, Optional, List, Dict, Any, Callable, Tuple

from data.models import Post, Comment, Reply, ContentReport


class ChangeType(str, enum.Enum):
    """Kinds of change pushed by the remote change feed."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeEvent:
    """A change pushed by the remote store for one record.

    ``record`` holds field values in record (not column) naming. For INSERT
    it is the full record, for UPDATE the changed fields, for DELETE at least
    the id. ``author_id`` is the author of the affected record when known.
    """
    type: ChangeType
    record: Dict[str, Any]
    author_id: Optional[str] = None
    table: str = ""

    @property
    def record_id(self) -> Optional[str]:
        value = (self.record or {}).get("id")
        return str(value) if value not in (None, "") else None


EventCallback = Callable[[ChangeEvent], None]

_handle_ids = itertools.count(1)


@dataclass
class SubscriptionHandle:
    """An open change-feed subscription.

    Returned by ``RemoteStore.subscribe_to_changes`` and owned by whoever
    subscribed; pass it back to ``RemoteStore.unsubscribe`` to release it.
    """
    table: str
    channel: Any = None
    handle_id: int = field(default_factory=lambda: next(_handle_ids))
    closed: bool = False


class RecordCache(Protocol):
    """Protocol for an ordered, id-keyed collection of records.

    The optimistic mutator only needs these operations, so it can drive the
    post feed cache, the comment cache and the nested reply view alike.
    """

    def find(self, record_id: str) -> Optional[Any]:
        ...

    def upsert(self, record: Any) -> None:
        ...

    def remove(self, record_id: str) -> Optional[Any]:
        ...

    def index_of(self, record_id: str) -> int:
        ...

    def insert_at(self, index: int, record: Any) -> None:
        ...


class RemoteStore(Protocol):
    """Protocol defining the interface to the backend service.

    All calls are coroutines; each is a suspension point for the caller.
    Implementations raise ``RemoteFailureError`` when the backend rejects a
    call or times out.
    """

    # Posts

    async def fetch_posts(self, limit: int, offset: int) -> List[Post]:
        """Fetch a page of posts, newest first (ties broken by id).

        Args:
            limit: Maximum number of posts to return.
            offset: Number of posts to skip.

        Returns:
            The page of posts with viewer like/bookmark state joined.
        """
        ...

    async def create_post(self, fields: Dict[str, Any]) -> Post:
        ...

    async def update_post(self, post_id: str, partial_fields: Dict[str, Any]) -> Post:
        ...

    async def delete_post(self, post_id: str) -> None:
        ...

    async def toggle_post_like(self, post_id: str, viewer_id: str) -> bool:
        """Toggle the viewer's like on a post.

        Returns:
            The new liked state.
        """
        ...

    async def toggle_post_bookmark(self, post_id: str, viewer_id: str) -> bool:
        """Toggle the viewer's bookmark on a post.

        Returns:
            The new bookmarked state.
        """
        ...

    async def fetch_bookmarked_posts(self, viewer_id: str) -> List[Post]:
        ...

    async def fetch_user_posts(self, user_id: str, limit: int, offset: int) -> List[Post]:
        """Fetch a page of one author's posts, newest first (ties broken by id)."""
        ...

    async def search_posts(self, query: str, limit: int, exclude_user_id: Optional[str] = None) -> List[Post]:
        ...

    # Comments and replies

    async def fetch_post_with_comments(self, post_id: str) -> Tuple[Post, List[Comment]]:
        """Fetch a post with its comments, each carrying its replies.

        Returns:
            Tuple of (post, comments) with comments oldest first.
        """
        ...

    async def create_comment(self, post_id: str, viewer_id: str, content: str) -> Comment:
        ...

    async def update_comment(self, comment_id: str, partial_fields: Dict[str, Any]) -> Comment:
        ...

    async def delete_comment(self, comment_id: str) -> None:
        ...

    async def toggle_comment_like(self, comment_id: str, viewer_id: str) -> bool:
        ...

    async def create_reply(self, comment_id: str, viewer_id: str, content: str) -> Reply:
        ...

    async def update_reply(self, reply_id: str, partial_fields: Dict[str, Any]) -> Reply:
        ...

    async def delete_reply(self, reply_id: str) -> None:
        ...

    async def toggle_reply_like(self, reply_id: str, viewer_id: str) -> bool:
        ...

    # Moderation

    async def create_report(self, reporter_id: str, content_type: str, content_id: str,
                            reason: str, description: Optional[str] = None) -> ContentReport:
        """File a report against a post, comment or reply.

        Returns:
            The stored report, status ``pending``.
        """
        ...

    # Change feed

    async def subscribe_to_changes(self, table: str, on_event: EventCallback) -> SubscriptionHandle:
        """Open a change-feed subscription for a table.

        Args:
            table: The table to watch.
            on_event: Called once per delivered ChangeEvent.

        Returns:
            A handle to pass to ``unsubscribe``.
        """
        ...

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        ...
