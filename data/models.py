"""
Data Models for the Community Feed

This module contains the post, comment and reply records held by the feed
cache, and the helpers that translate backend rows into them.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable

from config import settings
from utils.helpers import as_bool, parse_timestamp, unique_strings

# Boolean toggle fields and the counter each one moves (None: no counter)
TOGGLE_COUNTERS: Dict[str, Optional[str]] = {
    "liked_by_user": "likes",
    "bookmarked_by_user": None,
}

# Backend column -> record field, where the names differ
_COLUMN_ALIASES = {
    "likes_count": "likes",
    "comments_count": "comments",
}


@dataclass
class Reply:
    """A reply to a top-level comment."""
    id: str
    comment_id: str = ""
    user_id: str = ""
    user_name: str = settings.ANONYMOUS_NAME
    user_avatar: Optional[str] = None
    content: str = ""
    likes: int = 0
    liked_by_user: bool = False
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.likes = max(0, int(self.likes or 0))
        self.liked_by_user = as_bool(self.liked_by_user)


@dataclass
class Comment:
    """A top-level comment on a post, carrying its ordered replies."""
    id: str
    post_id: str = ""
    user_id: str = ""
    user_name: str = settings.ANONYMOUS_NAME
    user_avatar: Optional[str] = None
    content: str = ""
    likes: int = 0
    liked_by_user: bool = False
    replies: List[Reply] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.likes = max(0, int(self.likes or 0))
        self.liked_by_user = as_bool(self.liked_by_user)
        self.replies = list(self.replies or [])


@dataclass
class Post:
    """A community post as materialized for display.

    Author name and avatar are denormalized onto the record at fetch time so
    the cache stays self-contained and partial updates need no lookups.
    """
    id: str
    user_id: str = ""
    user_name: str = settings.ANONYMOUS_NAME
    user_avatar: Optional[str] = None
    title: str = ""
    content: str = ""
    images: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    likes: int = 0
    comments: int = 0
    liked_by_user: bool = False
    bookmarked_by_user: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.likes = max(0, int(self.likes or 0))
        self.liked_by_user = as_bool(self.liked_by_user)
        self.comments = max(0, int(self.comments or 0))
        self.images = [url for url in (self.images or []) if url]
        self.tags = unique_strings(self.tags)
        self.bookmarked_by_user = as_bool(self.bookmarked_by_user)


POST_FIELDS = frozenset(f.name for f in fields(Post))
COMMENT_FIELDS = frozenset(f.name for f in fields(Comment))
REPLY_FIELDS = frozenset(f.name for f in fields(Reply))


def apply_fields(record: Any, updates: Dict[str, Any]) -> Any:
    """
    Return a copy of a record with the known fields in ``updates`` merged in.

    Unknown keys and ``id`` are ignored. Counters are re-clamped.

    Args:
        record: A Post, Comment or Reply
        updates: Field values to merge

    Returns:
        A new record of the same type
    """
    known = {f.name for f in fields(record)}
    changes = {k: v for k, v in updates.items() if k in known and k != "id"}
    if not changes:
        return record
    return replace(record, **changes)


def _profile_display(profiles: Optional[Dict[str, Dict[str, Any]]], user_id: str):
    profile = (profiles or {}).get(user_id) or {}
    return profile.get("full_name") or settings.ANONYMOUS_NAME, profile.get("avatar_url") or None


def _images_from_row(row: Dict[str, Any]) -> Optional[List[str]]:
    if "images" in row:
        return list(row.get("images") or [])
    if "image_urls" in row:
        return list(row.get("image_urls") or [])
    if "image_url" in row:
        return [row["image_url"]] if row.get("image_url") else []
    return None


def post_fields_from_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Translate only the columns present in a backend row into post fields.

    Used for partial updates: a field absent from the row is absent from the
    result, so the cached value is kept.

    Args:
        row: A ``community_posts`` row, possibly partial

    Returns:
        Dict[str, Any]: Post field values keyed by field name
    """
    result: Dict[str, Any] = {}
    for column, value in row.items():
        name = _COLUMN_ALIASES.get(column, column)
        if name not in POST_FIELDS or name == "images":
            continue
        if name in ("created_at", "updated_at"):
            value = parse_timestamp(value)
        elif name == "tags":
            value = list(value or [])
        elif name in ("likes", "comments"):
            value = value or 0
        result[name] = value

    images = _images_from_row(row)
    if images is not None:
        result["images"] = images
    return result


def post_from_row(
    row: Dict[str, Any],
    profiles: Optional[Dict[str, Dict[str, Any]]] = None,
    liked_ids: Optional[Iterable[str]] = None,
    bookmarked_ids: Optional[Iterable[str]] = None,
) -> Post:
    """
    Build a Post from a backend row joined with author and viewer state.

    Args:
        row: A ``community_posts`` row
        profiles: Profile rows keyed by user id
        liked_ids: Ids of posts the viewer has liked
        bookmarked_ids: Ids of posts the viewer has bookmarked

    Returns:
        Post: The materialized record
    """
    values = post_fields_from_row(row)
    values["id"] = str(row["id"])
    values["user_name"], values["user_avatar"] = _profile_display(profiles, row.get("user_id", ""))
    values["liked_by_user"] = values["id"] in set(liked_ids or [])
    values["bookmarked_by_user"] = values["id"] in set(bookmarked_ids or [])
    return Post(**values)


def post_from_fields(values: Dict[str, Any]) -> Post:
    """Build a Post from field values, ignoring unknown keys."""
    return Post(**{k: v for k, v in values.items() if k in POST_FIELDS})


def reply_from_row(
    row: Dict[str, Any],
    profiles: Optional[Dict[str, Dict[str, Any]]] = None,
    liked_ids: Optional[Iterable[str]] = None,
) -> Reply:
    user_name, user_avatar = _profile_display(profiles, row.get("user_id", ""))
    reply_id = str(row["id"])
    return Reply(
        id=reply_id,
        comment_id=str(row.get("comment_id", "")),
        user_id=row.get("user_id", ""),
        user_name=user_name,
        user_avatar=user_avatar,
        content=row.get("content", ""),
        likes=row.get("likes_count", 0),
        liked_by_user=reply_id in set(liked_ids or []),
        created_at=parse_timestamp(row.get("created_at")),
    )


def comment_from_row(
    row: Dict[str, Any],
    profiles: Optional[Dict[str, Dict[str, Any]]] = None,
    liked_ids: Optional[Iterable[str]] = None,
    replies: Optional[List[Reply]] = None,
) -> Comment:
    user_name, user_avatar = _profile_display(profiles, row.get("user_id", ""))
    comment_id = str(row["id"])
    return Comment(
        id=comment_id,
        post_id=str(row.get("post_id", "")),
        user_id=row.get("user_id", ""),
        user_name=user_name,
        user_avatar=user_avatar,
        content=row.get("content", ""),
        likes=row.get("likes_count", 0),
        liked_by_user=comment_id in set(liked_ids or []),
        replies=replies or [],
        created_at=parse_timestamp(row.get("created_at")),
        updated_at=parse_timestamp(row.get("updated_at")),
    )


def assemble_thread(
    comment_rows: List[Dict[str, Any]],
    reply_rows: List[Dict[str, Any]],
    profiles: Optional[Dict[str, Dict[str, Any]]] = None,
    liked_comment_ids: Optional[Iterable[str]] = None,
    liked_reply_ids: Optional[Iterable[str]] = None,
) -> List[Comment]:
    """
    Assemble comments with their nested replies.

    Comment order follows ``comment_rows``; each comment's replies keep the
    order of ``reply_rows``. Replies whose parent comment is not present are
    dropped. Like-state is joined independently for comments and replies.

    Args:
        comment_rows: ``post_comments`` rows for one post
        reply_rows: ``comment_replies`` rows for those comments
        profiles: Profile rows keyed by user id
        liked_comment_ids: Comment ids the viewer has liked
        liked_reply_ids: Reply ids the viewer has liked

    Returns:
        List[Comment]: Comments carrying their replies
    """
    liked_replies = set(liked_reply_ids or [])
    replies_by_comment: Dict[str, List[Reply]] = {}
    for row in reply_rows:
        reply = reply_from_row(row, profiles, liked_replies)
        replies_by_comment.setdefault(reply.comment_id, []).append(reply)

    liked_comments = set(liked_comment_ids or [])
    return [
        comment_from_row(
            row,
            profiles,
            liked_comments,
            replies_by_comment.get(str(row["id"]), []),
        )
        for row in comment_rows
    ]


@dataclass
class ContentReport:
    """A viewer's report of a post, comment or reply for moderator review."""
    id: str
    reporter_id: str = ""
    content_type: str = "post"
    content_id: str = ""
    reason: str = ""
    description: Optional[str] = None
    status: str = "pending"
    created_at: Optional[datetime] = None


def report_from_row(row: Dict[str, Any]) -> ContentReport:
    return ContentReport(
        id=str(row["id"]),
        reporter_id=row.get("reporter_id", ""),
        content_type=row.get("content_type", "post"),
        content_id=str(row.get("content_id", "")),
        reason=row.get("reason", ""),
        description=row.get("description") or None,
        status=row.get("status") or "pending",
        created_at=parse_timestamp(row.get("created_at")),
    )
