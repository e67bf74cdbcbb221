"""
In-Memory Remote Store

A complete in-process implementation of the RemoteStore protocol: posts,
comments, replies, likes, bookmarks and a change feed. Every write publishes
a ChangeEvent to the subscribers of the affected table, delivered on the next
event-loop iteration like a real push channel.

Several viewers can share one backing state through ``as_viewer`` so tests
and the demo can simulate other users acting on the feed.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any, Set, Tuple

from config import settings
from data.models import (
    Post, Comment, Reply, ContentReport, post_from_row, post_fields_from_row, assemble_thread,
    comment_from_row, reply_from_row, report_from_row,
)
from data.protocols import ChangeEvent, ChangeType, EventCallback, SubscriptionHandle
from utils.exceptions import RemoteFailureError
from utils.helpers import matches_query
from utils.logger import get_logger

logger = get_logger(__name__)

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


@dataclass
class _State:
    """Backing tables shared by every viewer of one in-memory store."""
    posts: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    comments: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    replies: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    profiles: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    post_likes: Set[Tuple[str, str]] = field(default_factory=set)
    bookmarks: Set[Tuple[str, str]] = field(default_factory=set)
    comment_likes: Set[Tuple[str, str]] = field(default_factory=set)
    reply_likes: Set[Tuple[str, str]] = field(default_factory=set)
    reports: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    subscribers: Dict[int, Tuple[str, EventCallback]] = field(default_factory=dict)
    ids: Any = field(default_factory=lambda: itertools.count(1))
    failures: Dict[str, Exception] = field(default_factory=dict)
    delay: float = 0.0

    def next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self.ids):04d}"

    def next_timestamp(self) -> datetime:
        return _EPOCH + timedelta(seconds=next(self.ids))


class InMemoryRemoteStore:
    """RemoteStore backed by dictionaries, bound to one viewer."""

    def __init__(self, viewer_id: str = "", delay: float = 0.0, state: Optional[_State] = None):
        """
        Initialize the store.

        Args:
            viewer_id: Viewer whose like/bookmark state is joined onto reads.
            delay: Seconds every call waits before answering.
            state: Shared backing tables (used by ``as_viewer``).
        """
        self.viewer_id = viewer_id
        self._state = state or _State(delay=delay)

    def as_viewer(self, viewer_id: str) -> "InMemoryRemoteStore":
        """Another viewer's store over the same data."""
        return InMemoryRemoteStore(viewer_id=viewer_id, state=self._state)

    # =========================================================================
    # Test and demo controls
    # =========================================================================

    def add_profile(self, user_id: str, full_name: str, avatar_url: Optional[str] = None) -> None:
        self._state.profiles[user_id] = {"id": user_id, "full_name": full_name, "avatar_url": avatar_url}

    def fail_next(self, operation: str, error: Optional[Exception] = None) -> None:
        """Make the next call to ``operation`` raise ``error`` (RemoteFailureError by default)."""
        self._state.failures[operation] = error or RemoteFailureError(f"{operation} rejected")

    def set_delay(self, delay: float) -> None:
        self._state.delay = delay

    def seed_posts(self, count: int, author_id: str, tags: Optional[List[str]] = None) -> List[str]:
        """
        Insert posts without publishing change events.

        Returns:
            List[str]: The new post ids, oldest first.
        """
        ids = []
        for n in range(count):
            row = self._new_post_row({
                "user_id": author_id,
                "title": f"Study note {n + 1}",
                "content": f"Notes and questions, part {n + 1}.",
                "tags": tags or [],
            })
            ids.append(row["id"])
        return ids

    async def _enter(self, operation: str) -> None:
        if self._state.delay:
            await asyncio.sleep(self._state.delay)
        else:
            await asyncio.sleep(0)
        error = self._state.failures.pop(operation, None)
        if error is not None:
            raise error

    # =========================================================================
    # Change feed
    # =========================================================================

    def _publish(self, table: str, change_type: ChangeType, record: Dict[str, Any], author_id: Optional[str]) -> None:
        targets = [callback for t, callback in self._state.subscribers.values() if t == table]
        if not targets:
            return
        loop = asyncio.get_running_loop()
        for callback in targets:
            event = ChangeEvent(type=change_type, record=dict(record), author_id=author_id, table=table)
            loop.call_soon(callback, event)

    async def subscribe_to_changes(self, table: str, on_event: EventCallback) -> SubscriptionHandle:
        await self._enter("subscribe_to_changes")
        handle = SubscriptionHandle(table=table)
        self._state.subscribers[handle.handle_id] = (table, on_event)
        logger.debug(f"In-memory subscription {handle.handle_id} opened on {table}")
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        self._state.subscribers.pop(handle.handle_id, None)
        handle.closed = True

    @property
    def subscriber_count(self) -> int:
        return len(self._state.subscribers)

    # =========================================================================
    # Posts
    # =========================================================================

    def _new_post_row(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        now = fields.get("created_at") or self._state.next_timestamp()
        row = {
            "id": fields.get("id") or self._state.next_id("post"),
            "user_id": fields.get("user_id") or self.viewer_id,
            "title": fields.get("title", ""),
            "content": fields.get("content", ""),
            "images": list(fields.get("images") or []),
            "tags": list(fields.get("tags") or []),
            "likes_count": 0,
            "comments_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        self._state.posts[row["id"]] = row
        return row

    def _post(self, row: Dict[str, Any]) -> Post:
        viewer = self.viewer_id
        liked = {pid for pid, uid in self._state.post_likes if uid == viewer}
        bookmarked = {pid for pid, uid in self._state.bookmarks if uid == viewer}
        return post_from_row(row, self._state.profiles, liked, bookmarked)

    def _post_row(self, post_id: str) -> Dict[str, Any]:
        row = self._state.posts.get(post_id)
        if row is None:
            raise RemoteFailureError(f"Post not found: {post_id}")
        return row

    def _post_event_fields(self, row: Dict[str, Any], columns: Optional[List[str]] = None) -> Dict[str, Any]:
        source = row if columns is None else {c: row[c] for c in ["id"] + columns}
        values = post_fields_from_row(source)
        if columns is None:
            profile = self._state.profiles.get(row["user_id"]) or {}
            values["user_name"] = profile.get("full_name") or settings.ANONYMOUS_NAME
            values["user_avatar"] = profile.get("avatar_url")
        return values

    def _ordered_rows(self) -> List[Dict[str, Any]]:
        return sorted(self._state.posts.values(), key=lambda r: (r["created_at"], r["id"]), reverse=True)

    async def fetch_posts(self, limit: int, offset: int) -> List[Post]:
        await self._enter("fetch_posts")
        rows = self._ordered_rows()[offset:offset + limit]
        return [self._post(row) for row in rows]

    async def create_post(self, fields: Dict[str, Any]) -> Post:
        await self._enter("create_post")
        row = self._new_post_row(fields)
        self._publish(settings.POSTS_TABLE, ChangeType.INSERT, self._post_event_fields(row), row["user_id"])
        return self._post(row)

    async def update_post(self, post_id: str, partial_fields: Dict[str, Any]) -> Post:
        await self._enter("update_post")
        row = self._post_row(post_id)
        editable = {k: v for k, v in partial_fields.items() if k in ("title", "content", "images", "tags")}
        row.update(editable)
        row["updated_at"] = self._state.next_timestamp()
        self._publish(settings.POSTS_TABLE, ChangeType.UPDATE,
                      self._post_event_fields(row, list(editable) + ["updated_at"]), row["user_id"])
        return self._post(row)

    async def delete_post(self, post_id: str) -> None:
        await self._enter("delete_post")
        row = self._post_row(post_id)
        del self._state.posts[post_id]
        for comment_id in [cid for cid, c in self._state.comments.items() if c["post_id"] == post_id]:
            self._drop_comment(comment_id)
        self._state.post_likes = {k for k in self._state.post_likes if k[0] != post_id}
        self._state.bookmarks = {k for k in self._state.bookmarks if k[0] != post_id}
        # Deletes carry only the key, like a default replica identity
        self._publish(settings.POSTS_TABLE, ChangeType.DELETE, {"id": post_id}, None)
        logger.debug(f"Deleted post {post_id} (author {row['user_id']})")

    async def toggle_post_like(self, post_id: str, viewer_id: str) -> bool:
        await self._enter("toggle_post_like")
        row = self._post_row(post_id)
        key = (post_id, viewer_id)
        if key in self._state.post_likes:
            self._state.post_likes.discard(key)
            row["likes_count"] = max(0, row["likes_count"] - 1)
            liked = False
        else:
            self._state.post_likes.add(key)
            row["likes_count"] += 1
            liked = True
        self._publish(settings.POSTS_TABLE, ChangeType.UPDATE,
                      self._post_event_fields(row, ["likes_count"]), row["user_id"])
        return liked

    async def toggle_post_bookmark(self, post_id: str, viewer_id: str) -> bool:
        await self._enter("toggle_post_bookmark")
        self._post_row(post_id)
        key = (post_id, viewer_id)
        if key in self._state.bookmarks:
            self._state.bookmarks.discard(key)
            return False
        self._state.bookmarks.add(key)
        return True

    async def fetch_bookmarked_posts(self, viewer_id: str) -> List[Post]:
        await self._enter("fetch_bookmarked_posts")
        marked = {pid for pid, uid in self._state.bookmarks if uid == viewer_id}
        return [self._post(row) for row in self._ordered_rows() if row["id"] in marked]

    async def fetch_user_posts(self, user_id: str, limit: int, offset: int) -> List[Post]:
        await self._enter("fetch_user_posts")
        rows = [row for row in self._ordered_rows() if row["user_id"] == user_id]
        return [self._post(row) for row in rows[offset:offset + limit]]

    async def search_posts(self, query: str, limit: int, exclude_user_id: Optional[str] = None) -> List[Post]:
        await self._enter("search_posts")
        results = []
        for row in self._ordered_rows():
            if exclude_user_id and row["user_id"] == exclude_user_id:
                continue
            # A blank query matches every post
            if query.strip() and not matches_query(query, row["title"], row["content"], row["tags"]):
                continue
            results.append(self._post(row))
            if len(results) >= limit:
                break
        return results

    # =========================================================================
    # Comments and replies
    # =========================================================================

    async def fetch_post_with_comments(self, post_id: str) -> Tuple[Post, List[Comment]]:
        await self._enter("fetch_post_with_comments")
        post = self._post(self._post_row(post_id))
        comment_rows = sorted(
            (c for c in self._state.comments.values() if c["post_id"] == post_id),
            key=lambda c: (c["created_at"], c["id"]),
        )
        comment_ids = {c["id"] for c in comment_rows}
        reply_rows = sorted(
            (r for r in self._state.replies.values() if r["comment_id"] in comment_ids),
            key=lambda r: (r["created_at"], r["id"]),
        )
        viewer = self.viewer_id
        comments = assemble_thread(
            comment_rows,
            reply_rows,
            self._state.profiles,
            {cid for cid, uid in self._state.comment_likes if uid == viewer},
            {rid for rid, uid in self._state.reply_likes if uid == viewer},
        )
        return post, comments

    def _comment_row(self, comment_id: str) -> Dict[str, Any]:
        row = self._state.comments.get(comment_id)
        if row is None:
            raise RemoteFailureError(f"Comment not found: {comment_id}")
        return row

    def _reply_row(self, reply_id: str) -> Dict[str, Any]:
        row = self._state.replies.get(reply_id)
        if row is None:
            raise RemoteFailureError(f"Reply not found: {reply_id}")
        return row

    def _drop_comment(self, comment_id: str) -> None:
        self._state.comments.pop(comment_id, None)
        for reply_id in [rid for rid, r in self._state.replies.items() if r["comment_id"] == comment_id]:
            self._state.replies.pop(reply_id, None)

    def _bump_comment_count(self, post_id: str, delta: int) -> None:
        post_row = self._state.posts.get(post_id)
        if post_row is None:
            return
        post_row["comments_count"] = max(0, post_row["comments_count"] + delta)
        self._publish(settings.POSTS_TABLE, ChangeType.UPDATE,
                      self._post_event_fields(post_row, ["comments_count"]), post_row["user_id"])

    async def create_comment(self, post_id: str, viewer_id: str, content: str) -> Comment:
        await self._enter("create_comment")
        self._post_row(post_id)
        now = self._state.next_timestamp()
        row = {
            "id": self._state.next_id("comment"),
            "post_id": post_id,
            "user_id": viewer_id,
            "content": content,
            "likes_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        self._state.comments[row["id"]] = row
        self._bump_comment_count(post_id, +1)
        return comment_from_row(row, self._state.profiles)

    async def update_comment(self, comment_id: str, partial_fields: Dict[str, Any]) -> Comment:
        await self._enter("update_comment")
        row = self._comment_row(comment_id)
        if "content" in partial_fields:
            row["content"] = partial_fields["content"]
        row["updated_at"] = self._state.next_timestamp()
        return comment_from_row(row, self._state.profiles)

    async def delete_comment(self, comment_id: str) -> None:
        await self._enter("delete_comment")
        row = self._comment_row(comment_id)
        self._drop_comment(comment_id)
        self._bump_comment_count(row["post_id"], -1)

    async def toggle_comment_like(self, comment_id: str, viewer_id: str) -> bool:
        await self._enter("toggle_comment_like")
        return self._toggle_like(self._comment_row(comment_id), self._state.comment_likes, viewer_id)

    async def create_reply(self, comment_id: str, viewer_id: str, content: str) -> Reply:
        await self._enter("create_reply")
        self._comment_row(comment_id)
        row = {
            "id": self._state.next_id("reply"),
            "comment_id": comment_id,
            "user_id": viewer_id,
            "content": content,
            "likes_count": 0,
            "created_at": self._state.next_timestamp(),
        }
        self._state.replies[row["id"]] = row
        return reply_from_row(row, self._state.profiles)

    async def update_reply(self, reply_id: str, partial_fields: Dict[str, Any]) -> Reply:
        await self._enter("update_reply")
        row = self._reply_row(reply_id)
        if "content" in partial_fields:
            row["content"] = partial_fields["content"]
        return reply_from_row(row, self._state.profiles)

    async def delete_reply(self, reply_id: str) -> None:
        await self._enter("delete_reply")
        self._reply_row(reply_id)
        self._state.replies.pop(reply_id, None)

    async def toggle_reply_like(self, reply_id: str, viewer_id: str) -> bool:
        await self._enter("toggle_reply_like")
        return self._toggle_like(self._reply_row(reply_id), self._state.reply_likes, viewer_id)

    @staticmethod
    def _toggle_like(row: Dict[str, Any], likes: Set[Tuple[str, str]], viewer_id: str) -> bool:
        key = (row["id"], viewer_id)
        if key in likes:
            likes.discard(key)
            row["likes_count"] = max(0, row["likes_count"] - 1)
            return False
        likes.add(key)
        row["likes_count"] += 1
        return True

    # =========================================================================
    # Moderation
    # =========================================================================

    async def create_report(self, reporter_id: str, content_type: str, content_id: str,
                            reason: str, description: Optional[str] = None) -> ContentReport:
        await self._enter("create_report")
        targets = {"post": self._state.posts, "comment": self._state.comments, "reply": self._state.replies}
        if content_id not in targets.get(content_type, {}):
            raise RemoteFailureError(f"Cannot report unknown {content_type} {content_id}")
        row = {
            "id": self._state.next_id("report"),
            "reporter_id": reporter_id,
            "content_type": content_type,
            "content_id": content_id,
            "reason": reason,
            "description": description,
            "status": "pending",
            "created_at": self._state.next_timestamp(),
        }
        self._state.reports[row["id"]] = row
        logger.debug(f"Report {row['id']} filed on {content_type} {content_id}")
        return report_from_row(row)

    @property
    def reports(self) -> List[ContentReport]:
        return [report_from_row(row) for row in self._state.reports.values()]
