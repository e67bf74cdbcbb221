"""
Profile Feed Module

One author's posts, loaded page by page into their own cache. A profile
screen reads from it; the main feed cache is not touched.
"""

from typing import List, Optional

from data.models import Post
from data.protocols import RemoteStore
from services.feed_cache import FeedCache
from services.paginator import Paginator
from utils.logger import get_logger

logger = get_logger(__name__)


class ProfileFeed:
    """Paginated posts of a single author."""

    def __init__(self, store: RemoteStore, user_id: str, page_size: Optional[int] = None):
        self.store = store
        self.user_id = user_id
        self.cache = FeedCache()
        self.paginator = Paginator(self.cache, store, page_size, fetch_page=self._fetch_page)

    async def _fetch_page(self, limit: int, offset: int) -> List[Post]:
        return await self.store.fetch_user_posts(self.user_id, limit, offset)

    async def load(self) -> List[Post]:
        posts = await self.paginator.load_first_page()
        logger.debug(f"Profile {self.user_id}: {len(posts)} posts on first page")
        return posts

    async def load_more(self) -> List[Post]:
        return await self.paginator.load_next_page()

    @property
    def has_more(self) -> bool:
        return self.paginator.has_more

    @property
    def posts(self) -> List[Post]:
        return self.cache.snapshot()
