"""
Comment Thread Module

State for one post's discussion: the post, its comments and each comment's
replies, with the same local-first mutation rules as the feed.

Only top-level comments count toward a post's ``comments`` counter; creating
or deleting a reply leaves it untouched.
"""

import asyncio
from dataclasses import replace
from typing import Optional, List, Any

from data.models import Post, Comment, Reply
from data.protocols import RemoteStore
from services.feed_cache import FeedCache
from services.optimistic import OptimisticMutator
from utils.exceptions import NotFoundError, RemoteFailureError
from utils.logger import get_logger

logger = get_logger(__name__)


class ReplyView:
    """RecordCache adapter over the replies nested inside a comment cache.

    Positions reported by ``index_of`` are positions within the parent
    comment's reply list.
    """

    def __init__(self, comments: FeedCache):
        self.comments = comments

    def _locate(self, reply_id: str):
        for comment in self.comments:
            for index, reply in enumerate(comment.replies):
                if reply.id == reply_id:
                    return comment, index
        return None, -1

    def find(self, reply_id: str) -> Optional[Reply]:
        comment, index = self._locate(reply_id)
        return comment.replies[index] if comment is not None else None

    def index_of(self, reply_id: str) -> int:
        return self._locate(reply_id)[1]

    def upsert(self, reply: Reply) -> None:
        comment, index = self._locate(reply.id)
        if comment is None:
            comment = self.comments.find(reply.comment_id)
            if comment is None:
                raise NotFoundError(reply.comment_id, f"Parent comment not found: {reply.comment_id}")
            self.comments.upsert(replace(comment, replies=comment.replies + [reply]))
            return
        replies = list(comment.replies)
        replies[index] = reply
        self.comments.upsert(replace(comment, replies=replies))

    def remove(self, reply_id: str) -> Optional[Reply]:
        comment, index = self._locate(reply_id)
        if comment is None:
            return None
        replies = list(comment.replies)
        removed = replies.pop(index)
        self.comments.upsert(replace(comment, replies=replies))
        return removed

    def insert_at(self, index: int, reply: Reply) -> None:
        if self.find(reply.id) is not None:
            self.upsert(reply)
            return
        comment = self.comments.find(reply.comment_id)
        if comment is None:
            logger.warning(f"Cannot restore reply {reply.id}: comment {reply.comment_id} is gone")
            return
        replies = list(comment.replies)
        replies.insert(max(0, min(index, len(replies))), reply)
        self.comments.upsert(replace(comment, replies=replies))


class CommentThread:
    """Comments and replies of a single post."""

    def __init__(self, post_id: str, feed_cache: FeedCache, store: RemoteStore, viewer_id: str):
        """
        Initialize the thread.

        Args:
            post_id: The post whose discussion this is.
            feed_cache: The feed cache holding the post; its comment counter is
                kept in step with top-level comment changes.
            store: The remote store.
            viewer_id: The signed-in viewer.
        """
        self.post_id = post_id
        self.feed_cache = feed_cache
        self.store = store
        self.viewer_id = viewer_id
        self.post: Optional[Post] = None
        self.comments = FeedCache()
        self.replies = ReplyView(self.comments)
        self.comment_mutator = OptimisticMutator(self.comments)
        self.reply_mutator = OptimisticMutator(self.replies)

    async def load(self) -> List[Comment]:
        """
        Fetch the post and its comments with nested replies.

        Returns:
            List[Comment]: Comments oldest first.
        """
        try:
            post, comments = await self.store.fetch_post_with_comments(self.post_id)
        except RemoteFailureError:
            raise
        except Exception as e:
            logger.error(f"Error loading thread for post {self.post_id}: {e}")
            raise RemoteFailureError(f"Failed to load comments for {self.post_id}: {e}") from e

        cached = self.feed_cache.find(self.post_id)
        if cached is not None:
            # The feed copy keeps its viewer state; counters come from the fetch
            self.feed_cache.update_fields(self.post_id, likes=post.likes, comments=post.comments,
                                          title=post.title, content=post.content,
                                          images=post.images, tags=post.tags,
                                          updated_at=post.updated_at)
        self.post = self.feed_cache.find(self.post_id) or post
        self.comments.replace_all(comments)
        logger.info(f"Loaded {len(comments)} comments for post {self.post_id}")
        return self.comments.snapshot()

    # =========================================================================
    # Comment counter
    # =========================================================================

    def _adjust_post_comments(self, delta: int) -> None:
        if self.post is not None:
            self.post = replace(self.post, comments=max(0, self.post.comments + delta))
        cached = self.feed_cache.find(self.post_id)
        if cached is not None:
            self.feed_cache.update_fields(self.post_id, comments=max(0, cached.comments + delta))

    # =========================================================================
    # Comments
    # =========================================================================

    async def add_comment(self, content: str) -> Comment:
        """
        Create a top-level comment and count it on the post.

        Returns:
            Comment: The created comment.
        """
        try:
            comment = await self.store.create_comment(self.post_id, self.viewer_id, content)
        except RemoteFailureError:
            raise
        except Exception as e:
            logger.error(f"Error creating comment on {self.post_id}: {e}")
            raise RemoteFailureError(f"Failed to create comment: {e}") from e

        self.comments.append_page([comment])
        self._adjust_post_comments(+1)
        return comment

    def edit_comment(self, comment_id: str, content: str) -> "asyncio.Task":
        return self.comment_mutator.apply_edit(
            comment_id,
            {"content": content},
            lambda: self.store.update_comment(comment_id, {"content": content}),
        )

    def delete_comment(self, comment_id: str) -> "asyncio.Task":
        """
        Remove a comment now and delete it remotely.

        The post counter drops immediately and is restored with the comment
        if the remote delete fails.

        Returns:
            asyncio.Task: Completes when the remote delete settles.
        """
        task = self.comment_mutator.apply_delete(comment_id, lambda: self.store.delete_comment(comment_id))
        self._adjust_post_comments(-1)

        async def settle():
            try:
                return await task
            except RemoteFailureError:
                self._adjust_post_comments(+1)
                raise

        return asyncio.get_running_loop().create_task(settle())

    def toggle_comment_like(self, comment_id: str) -> "asyncio.Task":
        return self.comment_mutator.apply_toggle(
            comment_id,
            "liked_by_user",
            lambda: self.store.toggle_comment_like(comment_id, self.viewer_id),
        )

    # =========================================================================
    # Replies
    # =========================================================================

    async def add_reply(self, comment_id: str, content: str) -> Reply:
        """
        Create a reply under a comment.

        Returns:
            Reply: The created reply.

        Raises:
            NotFoundError: The comment is not in this thread.
        """
        if self.comments.find(comment_id) is None:
            raise NotFoundError(comment_id)
        try:
            reply = await self.store.create_reply(comment_id, self.viewer_id, content)
        except RemoteFailureError:
            raise
        except Exception as e:
            logger.error(f"Error creating reply on {comment_id}: {e}")
            raise RemoteFailureError(f"Failed to create reply: {e}") from e

        if self.comments.find(comment_id) is not None:
            self.replies.upsert(reply)
        return reply

    def edit_reply(self, reply_id: str, content: str) -> "asyncio.Task":
        return self.reply_mutator.apply_edit(
            reply_id,
            {"content": content},
            lambda: self.store.update_reply(reply_id, {"content": content}),
        )

    def delete_reply(self, reply_id: str) -> "asyncio.Task":
        return self.reply_mutator.apply_delete(reply_id, lambda: self.store.delete_reply(reply_id))

    def toggle_reply_like(self, reply_id: str) -> "asyncio.Task":
        return self.reply_mutator.apply_toggle(
            reply_id,
            "liked_by_user",
            lambda: self.store.toggle_reply_like(reply_id, self.viewer_id),
        )

    def snapshot(self) -> List[Any]:
        return self.comments.snapshot()
