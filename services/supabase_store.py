"""
Supabase Store Module

RemoteStore implementation over a Supabase project: PostgREST for reads and
writes (via ``requests``, run off the event loop) and Supabase Realtime for
the change feed.

Like and comment counters (``likes_count``, ``comments_count``) are
maintained by database triggers; toggles only insert or delete the join
rows.
"""

import asyncio
from typing import Optional, List, Dict, Any, Iterable, Set, Tuple

import requests

from config import settings
from data.models import (
    Post, Comment, Reply, ContentReport, post_from_row, post_fields_from_row, comment_from_row,
    reply_from_row, report_from_row, assemble_thread,
)
from data.protocols import ChangeEvent, ChangeType, EventCallback, SubscriptionHandle
from services.realtime import RealtimeChannel
from utils.exceptions import RemoteFailureError, SubscriptionError
from utils.logger import get_logger

logger = get_logger(__name__)

PROFILE_COLUMNS = "id,full_name,avatar_url"


def _in_list(values: Iterable[str]) -> str:
    """PostgREST ``in`` filter value."""
    return "in.(" + ",".join(f'"{v}"' for v in values) + ")"


class SupabaseStore:
    """RemoteStore backed by Supabase REST and Realtime."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        viewer_id: Optional[str] = None,
        timeout: Optional[float] = None,
        http: Optional[requests.Session] = None,
    ):
        """
        Initialize the store.

        Args:
            url: Project URL (defaults to settings.SUPABASE_URL)
            api_key: Anon key (defaults to settings.SUPABASE_ANON_KEY)
            access_token: Signed-in user's JWT; the anon key is used when absent
            viewer_id: Viewer whose like/bookmark state is joined onto reads
            timeout: Seconds per REST call
            http: A requests session to use
        """
        self.url = (url or settings.SUPABASE_URL).rstrip("/")
        self.api_key = api_key or settings.SUPABASE_ANON_KEY
        self.access_token = access_token or settings.SUPABASE_ACCESS_TOKEN or self.api_key
        self.viewer_id = viewer_id if viewer_id is not None else settings.VIEWER_ID
        self.timeout = timeout or settings.REMOTE_TIMEOUT
        self.rest_url = f"{self.url}/rest/v1"

        self.http = http or requests.Session()
        self.http.headers.update({
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        })
        self._channels: Dict[int, RealtimeChannel] = {}

    # =========================================================================
    # REST plumbing
    # =========================================================================

    def _request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        returning: bool = False,
    ) -> Any:
        """
        Perform one PostgREST call.

        Returns:
            The decoded JSON body, or None for an empty body

        Raises:
            RemoteFailureError: On a transport error or an error status
        """
        headers = {"Prefer": "return=representation"} if returning else {}
        try:
            response = self.http.request(
                method,
                f"{self.rest_url}/{table}",
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"{method} {table} failed: {e}")
            raise RemoteFailureError(f"{method} {table} failed: {e}") from e

        if response.status_code >= 400:
            logger.error(f"{method} {table} returned {response.status_code}: {response.text}")
            raise RemoteFailureError(f"{method} {table} returned {response.status_code}: {response.text}")

        if not response.content:
            return None
        return response.json()

    async def _call(self, method: str, table: str, **kwargs) -> Any:
        return await asyncio.to_thread(self._request, method, table, **kwargs)

    def _single(self, rows: Any, what: str) -> Dict[str, Any]:
        if not rows:
            raise RemoteFailureError(f"{what} not found")
        return rows[0]

    # =========================================================================
    # Joins
    # =========================================================================

    def _profiles(self, user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        ids = sorted({uid for uid in user_ids if uid})
        if not ids:
            return {}
        rows = self._request("GET", settings.PROFILES_TABLE,
                             params={"select": PROFILE_COLUMNS, "id": _in_list(ids)})
        return {row["id"]: row for row in rows or []}

    def _viewer_marks(self, table: str, column: str, ids: Iterable[str]) -> Set[str]:
        ids = list(ids)
        if not ids or not self.viewer_id:
            return set()
        rows = self._request("GET", table, params={
            "select": column,
            "user_id": f"eq.{self.viewer_id}",
            column: _in_list(ids),
        })
        return {str(row[column]) for row in rows or []}

    def _materialize_posts(self, rows: List[Dict[str, Any]]) -> List[Post]:
        if not rows:
            return []
        ids = [str(row["id"]) for row in rows]
        profiles = self._profiles(row.get("user_id") for row in rows)
        liked = self._viewer_marks(settings.POST_LIKES_TABLE, "post_id", ids)
        bookmarked = self._viewer_marks(settings.BOOKMARKS_TABLE, "post_id", ids)
        return [post_from_row(row, profiles, liked, bookmarked) for row in rows]

    def _post_rows(self, params: Dict[str, Any]) -> List[Post]:
        query = {"select": "*", "order": "created_at.desc,id.desc"}
        query.update(params)
        rows = self._request("GET", settings.POSTS_TABLE, params=query)
        return self._materialize_posts(rows or [])

    def _toggle(self, table: str, column: str, record_id: str, viewer_id: str) -> bool:
        match = {column: f"eq.{record_id}", "user_id": f"eq.{viewer_id}"}
        existing = self._request("GET", table, params={"select": column, **match})
        if existing:
            self._request("DELETE", table, params=match)
            return False
        self._request("POST", table, json={column: record_id, "user_id": viewer_id})
        return True

    # =========================================================================
    # Posts
    # =========================================================================

    async def fetch_posts(self, limit: int, offset: int) -> List[Post]:
        return await asyncio.to_thread(self._post_rows, {"limit": limit, "offset": offset})

    async def create_post(self, fields: Dict[str, Any]) -> Post:
        def create():
            body = {
                "user_id": fields.get("user_id") or self.viewer_id,
                "title": fields.get("title", ""),
                "content": fields.get("content", ""),
                "tags": list(fields.get("tags") or []),
                "image_urls": list(fields.get("images") or []),
            }
            rows = self._request("POST", settings.POSTS_TABLE, json=body, returning=True)
            return self._materialize_posts([self._single(rows, "created post")])[0]

        post = await asyncio.to_thread(create)
        logger.info(f"Created post {post.id}")
        return post

    async def update_post(self, post_id: str, partial_fields: Dict[str, Any]) -> Post:
        def update():
            body = {k: v for k, v in partial_fields.items() if k in ("title", "content", "tags")}
            if "images" in partial_fields:
                body["image_urls"] = list(partial_fields["images"] or [])
            rows = self._request("PATCH", settings.POSTS_TABLE,
                                 params={"id": f"eq.{post_id}"}, json=body, returning=True)
            return self._materialize_posts([self._single(rows, f"Post {post_id}")])[0]

        return await asyncio.to_thread(update)

    async def delete_post(self, post_id: str) -> None:
        await self._call("DELETE", settings.POSTS_TABLE, params={"id": f"eq.{post_id}"})
        logger.info(f"Deleted post {post_id}")

    async def toggle_post_like(self, post_id: str, viewer_id: str) -> bool:
        return await asyncio.to_thread(self._toggle, settings.POST_LIKES_TABLE, "post_id", post_id, viewer_id)

    async def toggle_post_bookmark(self, post_id: str, viewer_id: str) -> bool:
        return await asyncio.to_thread(self._toggle, settings.BOOKMARKS_TABLE, "post_id", post_id, viewer_id)

    async def fetch_bookmarked_posts(self, viewer_id: str) -> List[Post]:
        def fetch():
            marks = self._request("GET", settings.BOOKMARKS_TABLE, params={
                "select": "post_id",
                "user_id": f"eq.{viewer_id}",
                "order": "created_at.desc",
            })
            ids = [str(row["post_id"]) for row in marks or []]
            if not ids:
                return []
            return self._post_rows({"id": _in_list(ids)})

        return await asyncio.to_thread(fetch)

    async def fetch_user_posts(self, user_id: str, limit: int, offset: int) -> List[Post]:
        return await asyncio.to_thread(self._post_rows, {
            "user_id": f"eq.{user_id}", "limit": limit, "offset": offset,
        })

    async def search_posts(self, query: str, limit: int, exclude_user_id: Optional[str] = None) -> List[Post]:
        params: Dict[str, Any] = {"limit": limit}
        text = query.strip()
        if text:
            # PostgREST reserves commas and parentheses inside or=()
            term = "".join(ch for ch in text if ch not in ",()")
            params["or"] = f"(title.ilike.*{term}*,content.ilike.*{term}*,tags.cs.{{{term}}})"
        if exclude_user_id:
            params["user_id"] = f"neq.{exclude_user_id}"
        return await asyncio.to_thread(self._post_rows, params)

    # =========================================================================
    # Comments and replies
    # =========================================================================

    async def fetch_post_with_comments(self, post_id: str) -> Tuple[Post, List[Comment]]:
        def fetch():
            post_rows = self._request("GET", settings.POSTS_TABLE,
                                      params={"select": "*", "id": f"eq.{post_id}"})
            post = self._materialize_posts([self._single(post_rows, f"Post {post_id}")])[0]

            comment_rows = self._request("GET", settings.COMMENTS_TABLE, params={
                "select": "*",
                "post_id": f"eq.{post_id}",
                "order": "created_at.asc,id.asc",
            }) or []
            comment_ids = [str(row["id"]) for row in comment_rows]
            reply_rows = []
            if comment_ids:
                reply_rows = self._request("GET", settings.REPLIES_TABLE, params={
                    "select": "*",
                    "comment_id": _in_list(comment_ids),
                    "order": "created_at.asc,id.asc",
                }) or []

            profiles = self._profiles(
                [row.get("user_id") for row in comment_rows] + [row.get("user_id") for row in reply_rows]
            )
            comments = assemble_thread(
                comment_rows,
                reply_rows,
                profiles,
                self._viewer_marks(settings.COMMENT_LIKES_TABLE, "comment_id", comment_ids),
                self._viewer_marks(settings.REPLY_LIKES_TABLE, "reply_id",
                                   [str(row["id"]) for row in reply_rows]),
            )
            return post, comments

        return await asyncio.to_thread(fetch)

    async def create_comment(self, post_id: str, viewer_id: str, content: str) -> Comment:
        def create():
            rows = self._request("POST", settings.COMMENTS_TABLE, returning=True, json={
                "post_id": post_id, "user_id": viewer_id, "content": content,
            })
            row = self._single(rows, "created comment")
            return comment_from_row(row, self._profiles([viewer_id]))

        return await asyncio.to_thread(create)

    async def update_comment(self, comment_id: str, partial_fields: Dict[str, Any]) -> Comment:
        def update():
            rows = self._request("PATCH", settings.COMMENTS_TABLE, returning=True,
                                 params={"id": f"eq.{comment_id}"},
                                 json={"content": partial_fields.get("content", "")})
            row = self._single(rows, f"Comment {comment_id}")
            liked = self._viewer_marks(settings.COMMENT_LIKES_TABLE, "comment_id", [comment_id])
            return comment_from_row(row, self._profiles([row.get("user_id")]), liked)

        return await asyncio.to_thread(update)

    async def delete_comment(self, comment_id: str) -> None:
        await self._call("DELETE", settings.COMMENTS_TABLE, params={"id": f"eq.{comment_id}"})

    async def toggle_comment_like(self, comment_id: str, viewer_id: str) -> bool:
        return await asyncio.to_thread(self._toggle, settings.COMMENT_LIKES_TABLE, "comment_id",
                                       comment_id, viewer_id)

    async def create_reply(self, comment_id: str, viewer_id: str, content: str) -> Reply:
        def create():
            rows = self._request("POST", settings.REPLIES_TABLE, returning=True, json={
                "comment_id": comment_id, "user_id": viewer_id, "content": content,
            })
            return reply_from_row(self._single(rows, "created reply"), self._profiles([viewer_id]))

        return await asyncio.to_thread(create)

    async def update_reply(self, reply_id: str, partial_fields: Dict[str, Any]) -> Reply:
        def update():
            rows = self._request("PATCH", settings.REPLIES_TABLE, returning=True,
                                 params={"id": f"eq.{reply_id}"},
                                 json={"content": partial_fields.get("content", "")})
            row = self._single(rows, f"Reply {reply_id}")
            liked = self._viewer_marks(settings.REPLY_LIKES_TABLE, "reply_id", [reply_id])
            return reply_from_row(row, self._profiles([row.get("user_id")]), liked)

        return await asyncio.to_thread(update)

    async def delete_reply(self, reply_id: str) -> None:
        await self._call("DELETE", settings.REPLIES_TABLE, params={"id": f"eq.{reply_id}"})

    async def toggle_reply_like(self, reply_id: str, viewer_id: str) -> bool:
        return await asyncio.to_thread(self._toggle, settings.REPLY_LIKES_TABLE, "reply_id",
                                       reply_id, viewer_id)

    # =========================================================================
    # Moderation
    # =========================================================================

    async def create_report(self, reporter_id: str, content_type: str, content_id: str,
                            reason: str, description: Optional[str] = None) -> ContentReport:
        def create():
            rows = self._request("POST", settings.REPORTS_TABLE, returning=True, json={
                "reporter_id": reporter_id,
                "content_type": content_type,
                "content_id": content_id,
                "reason": reason,
                "description": description,
            })
            return report_from_row(self._single(rows, "created report"))

        report = await asyncio.to_thread(create)
        logger.info(f"Filed report {report.id} on {content_type} {content_id}")
        return report

    # =========================================================================
    # Change feed
    # =========================================================================

    async def to_change_event(self, table: str, change: Dict[str, Any]) -> ChangeEvent:
        """
        Translate a decoded realtime row change into a ChangeEvent.

        Post rows are renamed to record fields; inserts also carry the
        author's display name and avatar.
        """
        change_type = ChangeType(change["type"])
        row = change["old_record"] if change_type == ChangeType.DELETE else change["record"]
        author_id = row.get("user_id")

        if table != settings.POSTS_TABLE:
            return ChangeEvent(type=change_type, record=dict(row), author_id=author_id, table=table)

        if change_type == ChangeType.DELETE:
            return ChangeEvent(type=change_type, record={"id": row.get("id")}, author_id=author_id, table=table)

        record = post_fields_from_row(row)
        if change_type == ChangeType.INSERT:
            profiles = await asyncio.to_thread(self._profiles, [author_id])
            profile = profiles.get(author_id) or {}
            record["user_name"] = profile.get("full_name") or settings.ANONYMOUS_NAME
            record["user_avatar"] = profile.get("avatar_url") or None
        return ChangeEvent(type=change_type, record=record, author_id=author_id, table=table)

    async def subscribe_to_changes(self, table: str, on_event: EventCallback) -> SubscriptionHandle:
        async def on_change(change: Dict[str, Any]) -> None:
            on_event(await self.to_change_event(table, change))

        channel = RealtimeChannel(
            self.url,
            self.api_key,
            table,
            on_change,
            access_token=self.access_token,
        )
        try:
            await channel.connect()
        except SubscriptionError:
            raise
        except Exception as e:
            raise SubscriptionError(f"Failed to subscribe to {table}: {e}") from e

        handle = SubscriptionHandle(table=table, channel=channel)
        self._channels[handle.handle_id] = channel
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        channel = self._channels.pop(handle.handle_id, None) or handle.channel
        handle.closed = True
        if channel is not None:
            await channel.close()

    async def close(self) -> None:
        """Close every open channel and the HTTP session."""
        for handle_id in list(self._channels):
            await self._channels.pop(handle_id).close()
        self.http.close()
