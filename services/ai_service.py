"""
AI Service Module

This module handles AI operations for the community feed using Google's Gemini
API. It provides subject tagging for new posts, relevance ranking for search,
content moderation and writing improvements.
"""

from typing import Optional, List, Dict, Any
import json
import re

import google.generativeai as genai

from config import settings
from data.models import Post
from utils.exceptions import AIServiceError
from utils.helpers import truncate_text, unique_strings
from utils.logger import get_logger

logger = get_logger(__name__)


def _parse_json_array(text: str) -> List[Any]:
    """
    Extract the first JSON array from a model response.

    Models often wrap JSON in prose or code fences, so the outermost
    bracketed span is parsed.

    Raises:
        ValueError: If no JSON array can be parsed
    """
    match = re.search(r'\[.*\]', text or "", re.DOTALL)
    if not match:
        raise ValueError(f"No JSON array in response: {truncate_text(text or '', 80)}")
    value = json.loads(match.group(0))
    if not isinstance(value, list):
        raise ValueError("Response JSON is not an array")
    return value


class CommunityAIService:
    """Service for community AI helpers with Google's Gemini API."""

    def __init__(self, api_key: Optional[str] = None):
        """
        Initialize the AI service with the Gemini API.

        Configures the API key and selects an appropriate model based on availability.

        Args:
            api_key: Overrides settings.GOOGLE_AI_API_KEY
        """
        api_key = api_key or settings.GOOGLE_AI_API_KEY
        if not api_key:
            raise AIServiceError("Missing required GOOGLE_AI_API_KEY")

        genai.configure(api_key=api_key)

        try:
            models_list = genai.list_models()
            available_models = [m.name for m in models_list]

            # Select a model based on preference order
            model_name = None
            for preferred in settings.DEFAULT_AI_MODELS:
                for available in available_models:
                    if preferred in available:
                        model_name = available
                        break
                if model_name:
                    break

            if not model_name and available_models:
                model_name = available_models[0]

            if not model_name:
                raise AIServiceError("No Gemini models available")

            logger.info(f"Selected AI model: {model_name}")
            self.model = genai.GenerativeModel(model_name=model_name)

        except AIServiceError:
            raise
        except Exception as e:
            logger.error(f"Error initializing Gemini AI: {e}")
            raise AIServiceError(f"Error initializing Gemini AI: {e}") from e

    def _generate(self, prompt: str) -> str:
        response = self.model.generate_content(prompt)
        return (response.text or "").strip()

    def suggest_tags(self, content: str) -> List[str]:
        """
        Suggest subject tags for a post.

        Args:
            content: The post title and body

        Returns:
            List[str]: Up to MAX_SUGGESTED_TAGS tags, empty if the AI call fails
        """
        prompt = f"""Tag this educational content with the school subjects it covers.

Content: {truncate_text(content, settings.SEARCH_SNIPPET_LENGTH * 5)}

Return ONLY a JSON array of short subject tags, for example ["Math", "Physics"]."""

        try:
            tags = _parse_json_array(self._generate(prompt))
            suggested = unique_strings(tag for tag in tags if isinstance(tag, str))
            logger.info(f"Suggested tags: {suggested[:settings.MAX_SUGGESTED_TAGS]}")
            return suggested[:settings.MAX_SUGGESTED_TAGS]
        except Exception as e:
            logger.error(f"Error suggesting tags: {e}")
            return []

    def rank_posts(self, query: str, posts: List[Post]) -> List[Post]:
        """
        Order posts by relevance to a search query.

        Posts the model ranks come first in its order; the rest follow in
        their original order.

        Args:
            query: The search text
            posts: Candidate posts

        Returns:
            List[Post]: The same posts, reordered

        Raises:
            AIServiceError: If the model call or its response fails
        """
        if not posts:
            return []

        summaries = [
            {
                "id": post.id,
                "title": post.title,
                "content": post.content[:settings.SEARCH_SNIPPET_LENGTH],
                "tags": post.tags,
            }
            for post in posts
        ]
        prompt = f"""Rank these educational posts by relevance to the search query.

Query: {query}
Posts: {json.dumps(summaries)}

Return ONLY a JSON array of post ids, most relevant first."""

        try:
            ranked_ids = [str(value) for value in _parse_json_array(self._generate(prompt))]
        except Exception as e:
            logger.error(f"Error ranking posts for '{query}': {e}")
            raise AIServiceError(f"Ranking failed: {e}") from e

        by_id: Dict[str, Post] = {post.id: post for post in posts}
        ranked = []
        for post_id in ranked_ids:
            post = by_id.pop(post_id, None)
            if post is not None:
                ranked.append(post)
        ranked.extend(post for post in posts if post.id in by_id)
        logger.info(f"AI ranked {len(posts)} posts for '{query}'")
        return ranked

    def moderate_content(self, text: str) -> Dict[str, Any]:
        """
        Check whether content follows community guidelines.

        Fails open: if the check itself cannot run, content is allowed.

        Args:
            text: The content to check

        Returns:
            Dict: ``{'is_appropriate': bool, 'reason': Optional[str]}``
        """
        prompt = f"""You are a content moderator for a student study community.
Check this content for harassment, hate, sexual content, violence, self-harm or spam.

Content: {text}

Return ONLY 'APPROPRIATE' if it follows community guidelines, otherwise 'INAPPROPRIATE: [reason]'."""

        try:
            verdict = self._generate(prompt)
        except Exception as e:
            logger.error(f"Error moderating content, allowing it: {e}")
            return {'is_appropriate': True, 'reason': None}

        if verdict.upper().startswith('INAPPROPRIATE'):
            reason = verdict.split(':', 1)[1].strip() if ':' in verdict else "community guidelines"
            logger.info(f"Content flagged: {reason}")
            return {'is_appropriate': False, 'reason': reason or "community guidelines"}

        return {'is_appropriate': True, 'reason': None}

    def improve_post_content(self, content: str) -> str:
        """
        Rewrite a post to be clearer while keeping its meaning.

        Args:
            content: The original post body

        Returns:
            str: The improved text, or the original if the AI call fails
        """
        prompt = f"""Improve this educational post so it is clearer, more engaging and more informative.
Keep the original meaning and follow community guidelines. Return only the improved post.

Post: {content}"""

        try:
            improved = self._generate(prompt)
            return improved or content
        except Exception as e:
            logger.error(f"Error improving content: {e}")
            return content
