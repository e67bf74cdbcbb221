"""
Community Feed Application

This is the main entry point for the Community Feed client.
It loads the community feed page by page, keeps it in step with the
backend's change feed, and applies the viewer's likes, bookmarks, edits and
deletes locally before the backend confirms them.

Version: 1.0
"""

import sys
import asyncio
import argparse
import logging
from typing import Optional, List, Dict, Any

from config import settings
from config.validators import validate_settings, get_config_summary
from utils.logger import get_logger, setup_file_logging
from utils.exceptions import (
    CommunityFeedError, AIServiceError, ContentRejectedError, InvalidReportError, RemoteFailureError,
    SubscriptionError,
)
from utils.helpers import filter_posts_by_tags, truncate_text, unique_strings
from data.models import ContentReport, Post
from data.protocols import RemoteStore
from data.memory_store import InMemoryRemoteStore
from services.feed_cache import FeedCache
from services.paginator import Paginator
from services.reconciler import Reconciler
from services.optimistic import OptimisticMutator
from services.comment_thread import CommentThread
from services.profile_feed import ProfileFeed
from services.supabase_store import SupabaseStore
from services.ai_service import CommunityAIService

# Set up logging
logger = get_logger(__name__)


class FeedSession:
    """
    One community feed screen.

    This class wires the feed cache to its writers: the paginator loads
    pages, the reconciler applies pushed changes and the optimistic mutator
    applies the viewer's own actions.
    """

    def __init__(
        self,
        store: RemoteStore,
        viewer_id: str,
        ai_service: Optional[CommunityAIService] = None,
        page_size: Optional[int] = None,
        realtime: bool = True,
    ):
        """Initialize the session for one viewer."""
        self.store = store
        self.viewer_id = viewer_id
        self.ai_service = ai_service
        self.realtime = realtime

        self.cache = FeedCache()
        self.paginator = Paginator(self.cache, store, page_size)
        self.reconciler = Reconciler(self.cache, store, viewer_id)
        self.mutator = OptimisticMutator(self.cache)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def mount(self) -> List[Post]:
        """
        Load the first page, then open the change-feed subscription.

        A subscription failure is logged and the feed stays usable without
        live updates.

        Returns:
            List[Post]: The feed after the first page loads.
        """
        await self.paginator.load_first_page()
        if self.realtime:
            try:
                await self.reconciler.subscribe()
            except SubscriptionError as e:
                logger.warning(f"Live updates unavailable: {e}")
        return self.cache.snapshot()

    async def refresh(self) -> List[Post]:
        """Reload the feed from the first page."""
        await self.paginator.load_first_page()
        return self.cache.snapshot()

    async def load_more(self) -> List[Post]:
        """Append the next page if there is one."""
        return await self.paginator.load_next_page()

    async def teardown(self) -> None:
        """Release the subscription and empty the cache."""
        await self.reconciler.unsubscribe()
        self.cache.clear()
        self.paginator.reset()
        logger.info("Feed session torn down")

    # =========================================================================
    # Viewer actions
    # =========================================================================

    def toggle_like(self, post_id: str) -> "asyncio.Task":
        return self.mutator.apply_toggle(
            post_id,
            "liked_by_user",
            lambda: self.store.toggle_post_like(post_id, self.viewer_id),
        )

    def toggle_bookmark(self, post_id: str) -> "asyncio.Task":
        return self.mutator.apply_toggle(
            post_id,
            "bookmarked_by_user",
            lambda: self.store.toggle_post_bookmark(post_id, self.viewer_id),
        )

    def edit_post(self, post_id: str, **fields) -> "asyncio.Task":
        return self.mutator.apply_edit(
            post_id,
            fields,
            lambda: self.store.update_post(post_id, fields),
        )

    def delete_post(self, post_id: str) -> "asyncio.Task":
        return self.mutator.apply_delete(post_id, lambda: self.store.delete_post(post_id))

    async def create_post(
        self,
        title: str,
        content: str,
        tags: Optional[List[str]] = None,
        images: Optional[List[str]] = None,
    ) -> Post:
        """
        Publish a new post and show it at the top of the feed.

        When AI is enabled the content is moderated first, and tags are
        suggested if none were given.

        Args:
            title: Post title
            content: Post body
            tags: Subject tags
            images: Image URLs, in display order

        Returns:
            Post: The created post

        Raises:
            ContentRejectedError: If moderation flags the content
            RemoteFailureError: If the backend rejects the post
        """
        tags = unique_strings(tags)
        if self.ai_service:
            verdict = await asyncio.to_thread(self.ai_service.moderate_content, f"{title}\n\n{content}")
            if not verdict.get('is_appropriate', True):
                raise ContentRejectedError(verdict.get('reason') or "community guidelines")
            if not tags:
                tags = await asyncio.to_thread(self.ai_service.suggest_tags, f"{title}\n\n{content}")

        fields = {
            "user_id": self.viewer_id,
            "title": title,
            "content": content,
            "tags": tags,
            "images": list(images or []),
        }
        try:
            post = await self.store.create_post(fields)
        except RemoteFailureError:
            raise
        except Exception as e:
            logger.error(f"Error creating post: {e}")
            raise RemoteFailureError(f"Failed to create post: {e}") from e

        self.cache.upsert(post)
        logger.info(f"Published post {post.id}: {truncate_text(title, 50)}")
        return post

    async def improve_content(self, content: str) -> str:
        """AI rewrite of a draft; the draft itself when AI is disabled."""
        if not self.ai_service:
            return content
        return await asyncio.to_thread(self.ai_service.improve_post_content, content)

    async def open_thread(self, post_id: str) -> CommentThread:
        """Load the comments and replies of a post."""
        thread = CommentThread(post_id, self.cache, self.store, self.viewer_id)
        await thread.load()
        return thread

    async def open_profile(self, user_id: Optional[str] = None) -> ProfileFeed:
        """Load the first page of an author's posts (the viewer's own by default)."""
        profile = ProfileFeed(self.store, user_id or self.viewer_id, self.paginator.page_size)
        await profile.load()
        return profile

    async def load_bookmarks(self) -> List[Post]:
        return await self.store.fetch_bookmarked_posts(self.viewer_id)

    async def report_content(
        self,
        content_type: str,
        content_id: str,
        reason: str,
        description: Optional[str] = None,
    ) -> ContentReport:
        """
        Report a post, comment or reply for moderator review.

        Args:
            content_type: One of settings.REPORT_CONTENT_TYPES
            content_id: Id of the reported record
            reason: Why it is reported (see settings.REPORT_REASONS)
            description: Optional free-text details

        Returns:
            ContentReport: The filed report

        Raises:
            InvalidReportError: If the type is unknown or no reason is given
            RemoteFailureError: If the backend rejects the report
        """
        if content_type not in settings.REPORT_CONTENT_TYPES:
            raise InvalidReportError(f"Cannot report content of type {content_type!r}")
        reason = (reason or "").strip()
        if not reason:
            raise InvalidReportError("A report needs a reason")

        report = await self.store.create_report(
            self.viewer_id, content_type, content_id, reason, (description or "").strip() or None
        )
        logger.info(f"Reported {content_type} {content_id}: {reason}")
        return report

    async def search(self, query: str) -> List[Post]:
        """
        Search posts by other users.

        With AI enabled, recent posts are ranked by relevance; otherwise, or
        when ranking fails, a plain text search is used.

        Args:
            query: The search text

        Returns:
            List[Post]: Matching posts, most relevant first
        """
        query = (query or "").strip()
        if not query:
            return []

        if self.ai_service:
            try:
                candidates = await self.store.search_posts(
                    "", settings.SEARCH_CANDIDATE_LIMIT, exclude_user_id=self.viewer_id
                )
                return await asyncio.to_thread(self.ai_service.rank_posts, query, candidates)
            except (AIServiceError, RemoteFailureError) as e:
                logger.warning(f"AI search failed, falling back to text search: {e}")

        return await self.store.search_posts(
            query, settings.SEARCH_FALLBACK_LIMIT, exclude_user_id=self.viewer_id
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def visible_posts(self, selected_tags: Optional[List[str]] = None) -> List[Post]:
        """Feed snapshot, narrowed to posts carrying any selected tag."""
        return filter_posts_by_tags(self.cache.snapshot(), selected_tags)

    def available_tags(self) -> List[str]:
        """All tags present in the loaded feed, sorted."""
        return sorted(unique_strings(tag for post in self.cache for tag in post.tags))


def seed_demo_store(store: InMemoryRemoteStore, post_count: int = settings.DEMO_POST_COUNT) -> None:
    """Fill an in-memory store with profiles and posts for demo mode."""
    store.add_profile(settings.DEMO_VIEWER_ID, "Demo Viewer")
    store.add_profile("study-buddy", "Study Buddy")
    store.add_profile("quiz-master", "Quiz Master")
    subjects = ["Math", "Physics", "Chemistry", "History", "Biology"]
    for n in range(post_count):
        store.seed_posts(1, "study-buddy" if n % 2 else "quiz-master", tags=[subjects[n % len(subjects)]])


def create_feed_session(
    demo: bool = False,
    viewer_id: Optional[str] = None,
    page_size: Optional[int] = None,
    store: Optional[RemoteStore] = None,
) -> FeedSession:
    """
    Build a feed session from settings.

    Args:
        demo: Use a seeded in-memory store instead of Supabase
        viewer_id: Overrides settings.VIEWER_ID
        page_size: Overrides settings.FEED_PAGE_SIZE
        store: Use this store as is

    Returns:
        FeedSession: An unmounted session

    Raises:
        ConfigurationError: If required settings are missing
    """
    validate_settings(require_backend=not demo and store is None)
    logger.debug(f"Configuration: {get_config_summary()}")

    if store is None:
        if demo:
            viewer_id = viewer_id or settings.DEMO_VIEWER_ID
            store = InMemoryRemoteStore(viewer_id=viewer_id)
            seed_demo_store(store)
        else:
            viewer_id = viewer_id or settings.VIEWER_ID
            store = SupabaseStore(viewer_id=viewer_id)
    viewer_id = viewer_id or settings.VIEWER_ID

    ai_service = None
    if settings.ENABLE_AI:
        try:
            ai_service = CommunityAIService()
        except AIServiceError as e:
            logger.warning(f"AI features disabled: {e}")

    return FeedSession(
        store,
        viewer_id,
        ai_service=ai_service,
        page_size=page_size,
        realtime=settings.ENABLE_REALTIME,
    )


async def _simulate_activity(store: InMemoryRemoteStore, session: FeedSession) -> None:
    """Another demo user posts and likes, so live updates show in the log."""
    other = store.as_viewer("quiz-master")
    post = await other.create_post({"title": "Live: exam tips", "content": "Sleep well.", "tags": ["Study"]})
    await other.toggle_post_like(post.id, "quiz-master")
    liked = session.toggle_like(post.id) if session.cache.find(post.id) else None
    if liked is not None:
        await liked


def log_feed(posts: List[Post]) -> None:
    for post in posts:
        flags = ("L" if post.liked_by_user else "-") + ("B" if post.bookmarked_by_user else "-")
        logger.info(f"[{flags}] {post.user_name}: {truncate_text(post.title, 60)} "
                    f"({post.likes} likes, {post.comments} comments, tags={post.tags})")


async def run_session(args: argparse.Namespace) -> Dict[str, Any]:
    """
    Mount a session, load the requested pages, optionally watch live updates.

    Returns:
        Dict: Summary of what was loaded
    """
    session = create_feed_session(demo=args.demo)
    try:
        await session.mount()
        for _ in range(max(0, args.pages - 1)):
            if not session.paginator.has_more:
                break
            await session.load_more()

        if args.watch > 0:
            if isinstance(session.store, InMemoryRemoteStore):
                await _simulate_activity(session.store, session)
            logger.info(f"Watching for live updates for {args.watch} seconds")
            await asyncio.sleep(args.watch)

        posts = session.visible_posts()
        log_feed(posts)
        return {
            "posts": len(posts),
            "has_more": session.paginator.has_more,
            "tags": session.available_tags(),
        }
    finally:
        await session.teardown()
        if isinstance(session.store, SupabaseStore):
            await session.store.close()


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Community Feed Client')
    parser.add_argument('--demo', action='store_true', help='Run against a seeded in-memory backend')
    parser.add_argument('--pages', type=int, default=1, help='Number of feed pages to load')
    parser.add_argument('--watch', type=float, default=0, metavar='SECONDS',
                        help='Keep the live subscription open for this many seconds')
    parser.add_argument('--log-file', type=str, default='community_feed.log', help='Log file path')
    parser.add_argument('--log-level', type=str, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default='INFO', help='Logging level')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    args = parse_arguments(argv)

    # Set up logging
    log_level = getattr(logging, args.log_level)
    setup_file_logging(args.log_file, log_level)

    logger.info("Starting Community Feed" + (" (demo mode)" if args.demo else ""))

    try:
        summary = asyncio.run(run_session(args))
        logger.info(f"Loaded {summary['posts']} posts (more available: {summary['has_more']})")
        exit_code = 0
    except CommunityFeedError as e:
        logger.error(f"Community feed error: {e}", exc_info=True)
        exit_code = 1
    except Exception as e:
        logger.error(f"Unhandled exception in Community Feed: {e}", exc_info=True)
        exit_code = 2

    logger.info(f"Community Feed finished with exit code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
