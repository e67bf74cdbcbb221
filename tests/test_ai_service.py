"""
Tests for the Community AI Service

Tests model selection, tag suggestion, relevance ranking, moderation and
content improvement against a mocked Gemini client.
"""

import pytest
from types import SimpleNamespace
from unittest.mock import patch
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils.exceptions import AIServiceError


@pytest.fixture
def mock_genai():
    """Patch the Gemini client used by the AI service."""
    with patch('services.ai_service.genai') as genai:
        genai.list_models.return_value = [
            SimpleNamespace(name="models/gemini-1.0-pro"),
            SimpleNamespace(name="models/gemini-2.0-flash"),
            SimpleNamespace(name="models/gemini-2.0-flash-lite"),
        ]
        yield genai


@pytest.fixture
def ai_service(mock_genai, mock_settings):
    from services.ai_service import CommunityAIService
    return CommunityAIService()


def respond(ai_service, text=None, error=None):
    if error is not None:
        ai_service.model.generate_content.side_effect = error
    else:
        ai_service.model.generate_content.return_value = SimpleNamespace(text=text)


# =============================================================================
# Initialization Tests
# =============================================================================

class TestInitialization:
    """Tests for API key handling and model selection."""

    def test_selects_first_preferred_model(self, mock_genai, mock_settings):
        from services.ai_service import CommunityAIService

        CommunityAIService()

        mock_genai.configure.assert_called_once_with(api_key="test-google-api-key")
        mock_genai.GenerativeModel.assert_called_once_with(model_name="models/gemini-2.0-flash")

    def test_falls_back_to_first_available_model(self, mock_genai, mock_settings):
        from services.ai_service import CommunityAIService
        mock_genai.list_models.return_value = [SimpleNamespace(name="models/other-model")]

        CommunityAIService()

        mock_genai.GenerativeModel.assert_called_once_with(model_name="models/other-model")

    def test_missing_api_key_raises(self, mock_genai, mock_settings):
        from services.ai_service import CommunityAIService
        mock_settings.GOOGLE_AI_API_KEY = None

        with pytest.raises(AIServiceError):
            CommunityAIService()

    def test_no_models_raises(self, mock_genai, mock_settings):
        from services.ai_service import CommunityAIService
        mock_genai.list_models.return_value = []

        with pytest.raises(AIServiceError):
            CommunityAIService()

    def test_listing_error_is_wrapped(self, mock_genai, mock_settings):
        from services.ai_service import CommunityAIService
        mock_genai.list_models.side_effect = RuntimeError("network down")

        with pytest.raises(AIServiceError):
            CommunityAIService()


# =============================================================================
# Helper Tests
# =============================================================================

class TestSuggestTags:
    """Tests for suggest_tags."""

    def test_parses_json_array_inside_prose(self, ai_service):
        respond(ai_service, 'Sure! ```json\n["Math", "Physics", "Math", ""]\n```')

        assert ai_service.suggest_tags("Newton's laws and calculus") == ["Math", "Physics"]

    def test_caps_tag_count(self, ai_service, mock_settings):
        respond(ai_service, '["a", "b", "c", "d", "e", "f", "g"]')

        assert len(ai_service.suggest_tags("lots")) == mock_settings.MAX_SUGGESTED_TAGS

    def test_returns_empty_on_failure(self, ai_service):
        respond(ai_service, error=RuntimeError("quota"))

        assert ai_service.suggest_tags("anything") == []

    def test_returns_empty_on_unparseable_response(self, ai_service):
        respond(ai_service, "Math and Physics")

        assert ai_service.suggest_tags("anything") == []


class TestRankPosts:
    """Tests for rank_posts."""

    def test_ranked_ids_first_then_the_rest(self, ai_service, posts_factory):
        posts = posts_factory(4)
        respond(ai_service, '["p2", "p0", "unknown"]')

        ranked = ai_service.rank_posts("cells", posts)

        assert [p.id for p in ranked] == ["p2", "p0", "p1", "p3"]

    def test_snippets_are_truncated_in_prompt(self, ai_service, post_factory, mock_settings):
        respond(ai_service, '["p1"]')
        long_post = post_factory("p1", content="x" * 1000)

        ai_service.rank_posts("x", [long_post])

        prompt = ai_service.model.generate_content.call_args[0][0]
        assert "x" * mock_settings.SEARCH_SNIPPET_LENGTH in prompt
        assert "x" * (mock_settings.SEARCH_SNIPPET_LENGTH + 1) not in prompt

    def test_failure_raises_ai_service_error(self, ai_service, posts_factory):
        respond(ai_service, "I cannot rank these")

        with pytest.raises(AIServiceError):
            ai_service.rank_posts("query", posts_factory(2))

    def test_empty_candidates_skip_model(self, ai_service):
        assert ai_service.rank_posts("query", []) == []
        ai_service.model.generate_content.assert_not_called()


class TestModeration:
    """Tests for moderate_content."""

    def test_appropriate(self, ai_service):
        respond(ai_service, "APPROPRIATE")

        assert ai_service.moderate_content("Photosynthesis notes") == {'is_appropriate': True, 'reason': None}

    def test_inappropriate_with_reason(self, ai_service):
        respond(ai_service, "INAPPROPRIATE: harassment")

        result = ai_service.moderate_content("...")

        assert result['is_appropriate'] is False
        assert result['reason'] == "harassment"

    def test_fails_open(self, ai_service):
        respond(ai_service, error=RuntimeError("timeout"))

        assert ai_service.moderate_content("...")['is_appropriate'] is True


class TestImproveContent:
    """Tests for improve_post_content."""

    def test_returns_improved_text(self, ai_service):
        respond(ai_service, "  A clearer post.  ")

        assert ai_service.improve_post_content("a post") == "A clearer post."

    def test_falls_back_to_original(self, ai_service):
        respond(ai_service, error=RuntimeError("quota"))

        assert ai_service.improve_post_content("a post") == "a post"
