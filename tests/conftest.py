"""
Shared Test Fixtures for the Community Feed

This module provides common fixtures used across all test modules.
Fixtures include mocks for settings, logging and HTTP responses, an
in-memory remote store, and data factories for posts, comments and replies.
"""

import json
import pytest
from unittest.mock import MagicMock, patch
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

VIEWER = "viewer-1"
OTHER_USER = "user-2"


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def mock_settings():
    """
    Patch backend and feature settings with safe test values.

    Usage:
        def test_something(mock_settings):
            mock_settings.ENABLE_AI = True
            # ... test code

    Returns:
        module: The real settings module, patched for the test's duration.
    """
    from config import settings

    overrides = {
        "SUPABASE_URL": "https://test-project.supabase.co",
        "SUPABASE_ANON_KEY": "test-anon-key",
        "SUPABASE_ACCESS_TOKEN": "test-access-token",
        "VIEWER_ID": VIEWER,
        "GOOGLE_AI_API_KEY": "test-google-api-key",
        "ENABLE_AI": False,
        "ENABLE_REALTIME": True,
        "FEED_PAGE_SIZE": 20,
    }
    with patch.multiple(settings, **overrides):
        yield settings


# =============================================================================
# Logging Fixtures
# =============================================================================

@pytest.fixture
def capture_logs():
    """
    Capture log messages for assertion in tests.

    Returns:
        list: A list that will contain captured log records.
    """
    import logging

    class LogCapture(logging.Handler):
        def __init__(self):
            super().__init__()
            self.records = []

        def emit(self, record):
            self.records.append(record)

    handler = LogCapture()
    handler.setLevel(logging.DEBUG)

    app_logger = logging.getLogger("community_feed")
    original_level = app_logger.level
    app_logger.setLevel(logging.DEBUG)
    app_logger.addHandler(handler)

    yield handler.records

    app_logger.removeHandler(handler)
    app_logger.setLevel(original_level)


# =============================================================================
# HTTP Response Fixtures
# =============================================================================

@pytest.fixture
def mock_http_response():
    """
    Factory fixture for creating mock HTTP responses.

    Usage:
        def test_http_request(mock_http_response):
            response = mock_http_response(status_code=200, json_data=[{'id': 'p1'}])

    Returns:
        callable: A factory function for creating mock responses.
    """
    def _create_response(
        status_code: int = 200,
        json_data: Optional[Any] = None,
        text: str = '',
    ) -> MagicMock:
        mock_response = MagicMock()
        mock_response.status_code = status_code
        mock_response.ok = 200 <= status_code < 300

        if json_data is not None:
            mock_response.text = text or json.dumps(json_data)
            mock_response.content = mock_response.text.encode('utf-8')
            mock_response.json.return_value = json_data
        else:
            mock_response.text = text
            mock_response.content = text.encode('utf-8')
            mock_response.json.side_effect = ValueError("No JSON data")

        return mock_response

    return _create_response


# =============================================================================
# Data Model Factories
# =============================================================================

_BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def post_factory():
    """
    Factory fixture for creating Post test objects.

    Usage:
        def test_post(post_factory):
            post = post_factory("p1", likes=3, liked_by_user=True)

    Returns:
        callable: A factory function for creating Post objects.
    """
    from data.models import Post

    def _create_post(post_id: str = "p1", n: int = 0, **overrides) -> Post:
        values = {
            "id": post_id,
            "user_id": OTHER_USER,
            "user_name": "Other User",
            "title": f"Post {post_id}",
            "content": f"Content of {post_id}",
            "tags": ["Math"],
            "created_at": _BASE_TIME - timedelta(minutes=n),
        }
        values.update(overrides)
        return Post(**values)

    return _create_post


@pytest.fixture
def posts_factory(post_factory):
    """Create ``count`` posts with ids p0..pN, newest first."""
    def _create_posts(count: int, prefix: str = "p") -> List:
        return [post_factory(f"{prefix}{n}", n=n) for n in range(count)]

    return _create_posts


@pytest.fixture
def comment_factory():
    """Factory fixture for creating Comment test objects."""
    from data.models import Comment

    def _create_comment(comment_id: str = "c1", post_id: str = "p1", **overrides) -> Comment:
        values = {
            "id": comment_id,
            "post_id": post_id,
            "user_id": OTHER_USER,
            "user_name": "Other User",
            "content": f"Comment {comment_id}",
        }
        values.update(overrides)
        return Comment(**values)

    return _create_comment


@pytest.fixture
def reply_factory():
    """Factory fixture for creating Reply test objects."""
    from data.models import Reply

    def _create_reply(reply_id: str = "r1", comment_id: str = "c1", **overrides) -> Reply:
        values = {
            "id": reply_id,
            "comment_id": comment_id,
            "user_id": OTHER_USER,
            "content": f"Reply {reply_id}",
        }
        values.update(overrides)
        return Reply(**values)

    return _create_reply


@pytest.fixture
def change_event_factory():
    """Factory fixture for creating ChangeEvent objects."""
    from data.protocols import ChangeEvent, ChangeType

    def _create_event(change_type: str, record: Dict[str, Any], author_id: Optional[str] = OTHER_USER):
        return ChangeEvent(type=ChangeType(change_type), record=record, author_id=author_id,
                           table="community_posts")

    return _create_event


# =============================================================================
# Remote Store Fixtures
# =============================================================================

@pytest.fixture
def memory_store():
    """
    An in-memory remote store for the test viewer, with two profiles.

    Returns:
        InMemoryRemoteStore: Empty of posts.
    """
    from data.memory_store import InMemoryRemoteStore

    store = InMemoryRemoteStore(viewer_id=VIEWER)
    store.add_profile(VIEWER, "Test Viewer", "https://cdn.example.com/viewer.png")
    store.add_profile(OTHER_USER, "Other User")
    return store


@pytest.fixture
def seeded_store(memory_store):
    """The in-memory store holding 45 posts by another user."""
    memory_store.seed_posts(45, OTHER_USER, tags=["Math"])
    return memory_store
