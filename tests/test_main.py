"""
Tests for the Community Feed Main Application

Tests cover session wiring, the mount/teardown lifecycle, viewer actions
against live change events, AI-assisted posting and search, the session
factory and the command line entry point.
"""

import asyncio
import pytest
from unittest.mock import MagicMock, patch
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import FeedSession, create_feed_session, parse_arguments, main
from services.reconciler import SubscriptionState
from utils.exceptions import (
    AIServiceError, ConfigurationError, ContentRejectedError, InvalidReportError, RemoteFailureError
)

VIEWER = "viewer-1"


def make_ai_service(verdict=None, tags=None):
    ai = MagicMock()
    ai.moderate_content.return_value = verdict or {'is_appropriate': True, 'reason': None}
    ai.suggest_tags.return_value = tags or []
    ai.rank_posts.side_effect = lambda query, posts: list(reversed(posts))
    ai.improve_post_content.side_effect = lambda content: content.upper()
    return ai


# =============================================================================
# Lifecycle Tests
# =============================================================================

class TestLifecycle:
    """Tests for mount, load_more and teardown."""

    @pytest.mark.asyncio
    async def test_mount_loads_first_page_and_subscribes(self, seeded_store):
        """Mount fills the feed and leaves the subscription active."""
        session = FeedSession(seeded_store, VIEWER, page_size=20)

        posts = await session.mount()

        assert len(posts) == 20
        assert session.reconciler.state == SubscriptionState.ACTIVE
        assert seeded_store.subscriber_count == 1

    @pytest.mark.asyncio
    async def test_mount_survives_subscription_failure(self, seeded_store, capture_logs):
        """A failed subscription leaves a usable feed without live updates."""
        seeded_store.fail_next("subscribe_to_changes", ConnectionError("no websocket"))
        session = FeedSession(seeded_store, VIEWER, page_size=20)

        posts = await session.mount()

        assert len(posts) == 20
        assert session.reconciler.state == SubscriptionState.UNSUBSCRIBED
        assert any("Live updates unavailable" in r.getMessage() for r in capture_logs)

    @pytest.mark.asyncio
    async def test_load_more_and_refresh(self, seeded_store):
        session = FeedSession(seeded_store, VIEWER, page_size=20, realtime=False)
        await session.mount()

        await session.load_more()
        assert len(session.cache) == 40

        await session.refresh()
        assert len(session.cache) == 20

    @pytest.mark.asyncio
    async def test_teardown_unsubscribes_and_clears(self, seeded_store):
        """After teardown, late events no longer reach the cache."""
        session = FeedSession(seeded_store, VIEWER, page_size=20)
        await session.mount()

        await session.teardown()
        await seeded_store.as_viewer("user-2").create_post({"title": "Late"})
        await asyncio.sleep(0)

        assert len(session.cache) == 0
        assert seeded_store.subscriber_count == 0
        assert session.paginator.current_offset == 0


# =============================================================================
# Viewer Action Tests
# =============================================================================

class TestViewerActions:
    """Tests for likes, bookmarks, edits and deletes."""

    @pytest.mark.asyncio
    async def test_like_is_optimistic_and_confirmed(self, seeded_store):
        session = FeedSession(seeded_store, VIEWER, page_size=20)
        await session.mount()
        post_id = session.cache.ids()[0]

        task = session.toggle_like(post_id)
        assert session.cache.find(post_id).liked_by_user is True
        assert session.cache.find(post_id).likes == 1

        assert await task is True
        await asyncio.sleep(0)
        assert session.cache.find(post_id).likes == 1

    @pytest.mark.asyncio
    async def test_like_rolls_back_on_failure(self, seeded_store):
        session = FeedSession(seeded_store, VIEWER, page_size=20)
        await session.mount()
        post_id = session.cache.ids()[0]

        seeded_store.fail_next("toggle_post_like")
        with pytest.raises(RemoteFailureError):
            await session.toggle_like(post_id)

        assert session.cache.find(post_id).liked_by_user is False
        assert session.cache.find(post_id).likes == 0

    @pytest.mark.asyncio
    async def test_bookmark_then_load_bookmarks(self, seeded_store):
        session = FeedSession(seeded_store, VIEWER, page_size=20)
        await session.mount()
        post_id = session.cache.ids()[3]

        await session.toggle_bookmark(post_id)
        bookmarks = await session.load_bookmarks()

        assert [p.id for p in bookmarks] == [post_id]

    @pytest.mark.asyncio
    async def test_edit_and_delete_post(self, memory_store):
        session = FeedSession(memory_store, VIEWER, page_size=20)
        await session.mount()
        first = await session.create_post("Draft", "Body")
        second = await session.create_post("Keep", "Body")

        await session.edit_post(first.id, title="Final")
        await session.delete_post(second.id)
        await asyncio.sleep(0)

        assert session.cache.ids() == [first.id]
        assert session.cache.find(first.id).title == "Final"

    @pytest.mark.asyncio
    async def test_live_insert_from_another_user(self, seeded_store):
        session = FeedSession(seeded_store, VIEWER, page_size=20)
        await session.mount()

        created = await seeded_store.as_viewer("user-2").create_post({"title": "Live", "content": "x"})
        await asyncio.sleep(0)

        assert session.cache.ids()[0] == created.id
        assert len(session.cache) == 21


# =============================================================================
# Posting Tests
# =============================================================================

class TestCreatePost:
    """Tests for create_post."""

    @pytest.mark.asyncio
    async def test_created_post_appears_once_at_front(self, seeded_store):
        """The viewer's own insert event does not duplicate the post."""
        session = FeedSession(seeded_store, VIEWER, page_size=20)
        await session.mount()

        post = await session.create_post("Mine", "Notes", tags=["Bio", "Bio"])
        await asyncio.sleep(0)

        assert session.cache.ids()[0] == post.id
        assert session.cache.ids().count(post.id) == 1
        assert post.tags == ["Bio"]
        assert post.user_name == "Test Viewer"

    @pytest.mark.asyncio
    async def test_moderation_rejection(self, memory_store):
        ai = make_ai_service(verdict={'is_appropriate': False, 'reason': 'spam'})
        session = FeedSession(memory_store, VIEWER, ai_service=ai, page_size=20)
        await session.mount()

        with pytest.raises(ContentRejectedError) as exc_info:
            await session.create_post("Buy now", "Cheap pills")

        assert exc_info.value.reason == "spam"
        assert len(session.cache) == 0
        assert await memory_store.fetch_posts(20, 0) == []

    @pytest.mark.asyncio
    async def test_tags_suggested_when_missing(self, memory_store):
        ai = make_ai_service(tags=["Physics"])
        session = FeedSession(memory_store, VIEWER, ai_service=ai, page_size=20)

        post = await session.create_post("Forces", "F = ma")

        assert post.tags == ["Physics"]
        ai.suggest_tags.assert_called_once()

    @pytest.mark.asyncio
    async def test_given_tags_are_kept(self, memory_store):
        ai = make_ai_service(tags=["Physics"])
        session = FeedSession(memory_store, VIEWER, ai_service=ai, page_size=20)

        post = await session.create_post("Forces", "F = ma", tags=["Mechanics"])

        assert post.tags == ["Mechanics"]
        ai.suggest_tags.assert_not_called()

    @pytest.mark.asyncio
    async def test_improve_content(self, memory_store):
        plain = FeedSession(memory_store, VIEWER)
        assisted = FeedSession(memory_store, VIEWER, ai_service=make_ai_service())

        assert await plain.improve_content("draft") == "draft"
        assert await assisted.improve_content("draft") == "DRAFT"


# =============================================================================
# Search and Filter Tests
# =============================================================================

class TestSearchAndFilters:
    """Tests for search and tag filtering."""

    @pytest.mark.asyncio
    async def test_text_search_without_ai_excludes_viewer(self, memory_store):
        memory_store.seed_posts(3, "user-2", tags=["Algebra"])
        memory_store.seed_posts(2, VIEWER, tags=["Algebra"])
        session = FeedSession(memory_store, VIEWER)

        results = await session.search("algebra")

        assert len(results) == 3
        assert all(p.user_id != VIEWER for p in results)

    @pytest.mark.asyncio
    async def test_blank_search_returns_nothing(self, seeded_store):
        session = FeedSession(seeded_store, VIEWER)

        assert await session.search("   ") == []

    @pytest.mark.asyncio
    async def test_ai_search_ranks_recent_candidates(self, mock_settings, memory_store):
        memory_store.seed_posts(3, "user-2")
        ai = make_ai_service()
        session = FeedSession(memory_store, VIEWER, ai_service=ai)

        results = await session.search("anything")

        query, candidates = ai.rank_posts.call_args[0]
        assert query == "anything"
        assert [p.id for p in results] == [p.id for p in reversed(candidates)]

    @pytest.mark.asyncio
    async def test_ai_search_falls_back_to_text_search(self, memory_store):
        memory_store.seed_posts(2, "user-2", tags=["Geometry"])
        memory_store.seed_posts(2, "user-2", tags=["History"])
        ai = make_ai_service()
        ai.rank_posts.side_effect = AIServiceError("quota")
        session = FeedSession(memory_store, VIEWER, ai_service=ai)

        results = await session.search("geometry")

        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_visible_posts_any_selected_tag(self, memory_store):
        memory_store.seed_posts(2, "user-2", tags=["Math"])
        memory_store.seed_posts(2, "user-2", tags=["Art"])
        memory_store.seed_posts(1, "user-2", tags=["Music"])
        session = FeedSession(memory_store, VIEWER, realtime=False)
        await session.mount()

        assert len(session.visible_posts()) == 5
        assert len(session.visible_posts(["Math", "Art"])) == 4
        assert session.available_tags() == ["Art", "Math", "Music"]


class TestProfilesAndReports:
    """Tests for open_profile and report_content."""

    @pytest.mark.asyncio
    async def test_open_profile_pages_one_author(self, memory_store):
        memory_store.seed_posts(25, "user-2")
        memory_store.seed_posts(3, VIEWER)
        session = FeedSession(memory_store, VIEWER, page_size=20)

        profile = await session.open_profile("user-2")
        assert len(profile.posts) == 20
        assert profile.has_more is True

        await profile.load_more()
        assert len(profile.posts) == 25
        assert profile.has_more is False
        assert all(p.user_id == "user-2" for p in profile.posts)
        assert len(session.cache) == 0

    @pytest.mark.asyncio
    async def test_open_profile_defaults_to_viewer(self, memory_store):
        memory_store.seed_posts(2, "user-2")
        memory_store.seed_posts(3, VIEWER)
        session = FeedSession(memory_store, VIEWER)

        profile = await session.open_profile()

        assert len(profile.posts) == 3
        assert all(p.user_id == VIEWER for p in profile.posts)

    @pytest.mark.asyncio
    async def test_report_content(self, seeded_store):
        session = FeedSession(seeded_store, VIEWER, page_size=20)
        await session.mount()
        post_id = session.cache.ids()[0]

        report = await session.report_content("post", post_id, "  Other  ", "   ")

        assert report.reporter_id == VIEWER
        assert report.reason == "Other"
        assert report.description is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content_type, reason", [("profile", "Other"), ("post", "  ")])
    async def test_invalid_report_rejected(self, seeded_store, content_type, reason):
        session = FeedSession(seeded_store, VIEWER)

        with pytest.raises(InvalidReportError):
            await session.report_content(content_type, "post-0001", reason)
        assert seeded_store.reports == []


# =============================================================================
# Factory and CLI Tests
# =============================================================================

class TestFactory:
    """Tests for create_feed_session."""

    def test_demo_session_uses_seeded_memory_store(self, mock_settings):
        from data.memory_store import InMemoryRemoteStore

        session = create_feed_session(demo=True)

        assert isinstance(session.store, InMemoryRemoteStore)
        assert session.viewer_id == mock_settings.DEMO_VIEWER_ID
        assert session.ai_service is None

    def test_backend_session_requires_configuration(self, mock_settings):
        mock_settings.SUPABASE_URL = ""

        with pytest.raises(ConfigurationError):
            create_feed_session()

    def test_backend_session_uses_supabase(self, mock_settings):
        from services.supabase_store import SupabaseStore

        session = create_feed_session()

        assert isinstance(session.store, SupabaseStore)
        assert session.viewer_id == VIEWER

    def test_ai_init_failure_disables_ai(self, mock_settings):
        mock_settings.ENABLE_AI = True
        with patch('main.CommunityAIService', side_effect=AIServiceError("no models")):
            session = create_feed_session(demo=True)

        assert session.ai_service is None


class TestCommandLine:
    """Tests for argument parsing and main()."""

    def test_parse_arguments_defaults(self):
        args = parse_arguments([])

        assert args.demo is False
        assert args.pages == 1
        assert args.watch == 0
        assert args.log_level == 'INFO'

    def test_demo_run_exits_zero(self, mock_settings, tmp_path):
        log_file = tmp_path / "feed.log"

        exit_code = main(["--demo", "--pages", "2", "--log-file", str(log_file)])

        assert exit_code == 0
        assert "Loaded 40 posts" in log_file.read_text(encoding="utf-8")

    def test_configuration_error_exits_one(self, mock_settings, tmp_path):
        mock_settings.SUPABASE_ANON_KEY = ""

        exit_code = main(["--log-file", str(tmp_path / "feed.log")])

        assert exit_code == 1
