"""
Configuration Validation for the Community Feed

This module contains configuration validation logic.
Kept separate from settings.py so settings stay a plain list of values.
"""

import logging

from utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def validate_settings(require_backend: bool = True):
    """
    Validate that all required settings are properly configured.

    Args:
        require_backend: When False, backend credentials are not required
            (demo mode runs against the in-memory store).

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    # Import settings here to avoid circular imports
    from config import settings

    errors = []

    if require_backend:
        required_vars = [
            ("SUPABASE_URL", settings.SUPABASE_URL),
            ("SUPABASE_ANON_KEY", settings.SUPABASE_ANON_KEY),
            ("VIEWER_ID", settings.VIEWER_ID),
        ]

        for var_name, var_value in required_vars:
            if not var_value:
                errors.append(f"Missing required environment variable: {var_name}")

        if settings.SUPABASE_URL and not settings.SUPABASE_URL.startswith(("http://", "https://")):
            errors.append(f"SUPABASE_URL must start with http:// or https://, got {settings.SUPABASE_URL}")

        if not settings.SUPABASE_ACCESS_TOKEN:
            logger.warning("SUPABASE_ACCESS_TOKEN is not set; requests will use the anonymous key only.")

    if settings.ENABLE_AI and not settings.GOOGLE_AI_API_KEY:
        errors.append("ENABLE_AI is true but GOOGLE_AI_API_KEY is not configured.")

    # Validate numeric settings are within reasonable bounds
    numeric_validations = [
        ("FEED_PAGE_SIZE", settings.FEED_PAGE_SIZE, 1, 100),
        ("SEARCH_CANDIDATE_LIMIT", settings.SEARCH_CANDIDATE_LIMIT, 1, 200),
        ("SEARCH_FALLBACK_LIMIT", settings.SEARCH_FALLBACK_LIMIT, 1, 200),
        ("SEARCH_SNIPPET_LENGTH", settings.SEARCH_SNIPPET_LENGTH, 20, 2000),
        ("MAX_SUGGESTED_TAGS", settings.MAX_SUGGESTED_TAGS, 1, 20),
    ]

    for name, value, min_val, max_val in numeric_validations:
        if value < min_val or value > max_val:
            errors.append(f"{name} must be between {min_val} and {max_val}, got {value}")

    # Validate timeout values are positive
    timeout_settings = [
        ("REMOTE_TIMEOUT", settings.REMOTE_TIMEOUT),
        ("REALTIME_HEARTBEAT_INTERVAL", settings.REALTIME_HEARTBEAT_INTERVAL),
        ("REALTIME_JOIN_TIMEOUT", settings.REALTIME_JOIN_TIMEOUT),
    ]

    for name, value in timeout_settings:
        if value <= 0:
            errors.append(f"{name} must be positive, got {value}")

    # Raise all errors at once
    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)

    return True


def get_config_summary() -> dict:
    """
    Returns a summary of current configuration (without sensitive values).
    Useful for logging startup state.
    """
    # Import settings here to avoid circular imports
    from config import settings

    return {
        "backend": {
            "url": settings.SUPABASE_URL[:30] + "..." if len(settings.SUPABASE_URL) > 30 else settings.SUPABASE_URL,
            "anon_key_configured": bool(settings.SUPABASE_ANON_KEY),
            "access_token_configured": bool(settings.SUPABASE_ACCESS_TOKEN),
            "realtime": settings.ENABLE_REALTIME,
        },
        "ai": {
            "enabled": settings.ENABLE_AI,
            "configured": bool(settings.GOOGLE_AI_API_KEY),
        },
        "feed_settings": {
            "page_size": settings.FEED_PAGE_SIZE,
            "search_candidates": settings.SEARCH_CANDIDATE_LIMIT,
            "remote_timeout": settings.REMOTE_TIMEOUT,
        }
    }
