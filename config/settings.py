"""
Configuration Settings for the Community Feed

This module centralizes all configuration settings for the Community Feed,
including environment variables, backend credentials, and application constants.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Determine the application root directory
APP_ROOT = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
load_dotenv(dotenv_path=os.path.join(APP_ROOT, '.env'))


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Backend (Supabase) Connection
SUPABASE_URL = os.getenv("SUPABASE_URL", "").rstrip("/")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
SUPABASE_ACCESS_TOKEN = os.getenv("SUPABASE_ACCESS_TOKEN", "")  # Signed-in user's JWT

# The signed-in viewer whose like/bookmark state is joined onto records
VIEWER_ID = os.getenv("VIEWER_ID", "")

# API Keys and Authentication
GOOGLE_AI_API_KEY = os.getenv("GOOGLE_AI_API_KEY")

# Feature Switches
ENABLE_AI = _env_flag("ENABLE_AI", "false")
ENABLE_REALTIME = _env_flag("ENABLE_REALTIME", "true")

# AI Model Settings
DEFAULT_AI_MODELS = [
    'gemini-2.0-flash',       # Good balance of capability and cost
    'gemini-2.0-flash-lite',  # If available, even more cost-effective
    'gemini-2.5-flash-lite',
    'gemini-2.5-flash'
]

# =============================================================================
# Table Names
# =============================================================================

POSTS_TABLE = "community_posts"
COMMENTS_TABLE = "post_comments"
REPLIES_TABLE = "comment_replies"
PROFILES_TABLE = "profiles"
POST_LIKES_TABLE = "post_likes"
COMMENT_LIKES_TABLE = "comment_likes"
REPLY_LIKES_TABLE = "reply_likes"
BOOKMARKS_TABLE = "post_bookmarks"
REPORTS_TABLE = "content_reports"

# =============================================================================
# Feed Settings
# =============================================================================

FEED_PAGE_SIZE = int(os.getenv("FEED_PAGE_SIZE", "20"))  # Posts per page
ANONYMOUS_NAME = "Anonymous"                             # Display name when no profile exists

# Search
SEARCH_CANDIDATE_LIMIT = 50          # Recent posts considered for AI-ranked search
SEARCH_FALLBACK_LIMIT = 20           # Results returned by plain text search
SEARCH_SNIPPET_LENGTH = 200          # Post content length sent to AI for ranking
MAX_SUGGESTED_TAGS = 5               # Tags kept from an AI suggestion

# Reporting
REPORT_CONTENT_TYPES = ("post", "comment", "reply")
REPORT_REASONS = [
    "Spam or misleading content",
    "Harassment or bullying",
    "Hate speech or discrimination",
    "Inappropriate content",
    "False information",
    "Copyright violation",
    "Other",
]

# =============================================================================
# Network Settings
# =============================================================================

REMOTE_TIMEOUT = float(os.getenv("REMOTE_TIMEOUT", "10"))  # Seconds per REST call
REALTIME_HEARTBEAT_INTERVAL = 30     # Seconds between Phoenix heartbeats
REALTIME_JOIN_TIMEOUT = 10           # Seconds to wait for phx_reply on join
REALTIME_PROTOCOL_VERSION = "1.0.0"

# Demo mode
DEMO_VIEWER_ID = "demo-viewer"
DEMO_POST_COUNT = 45
