"""
Paginator Module

Drives offset/limit loading of posts from the remote store into a feed cache.
"""

from typing import Awaitable, Callable, List, Optional

from config import settings
from data.models import Post
from data.protocols import RemoteStore
from services.feed_cache import FeedCache
from utils.exceptions import RemoteFailureError
from utils.logger import get_logger

logger = get_logger(__name__)


class Paginator:
    """Tracks the loaded offset and whether more posts may exist.

    ``has_more`` is true when the last page came back full. A page that ends
    exactly at the end of the data still reports ``has_more``; the next load
    then returns an empty page and clears it.
    """

    def __init__(
        self,
        cache: FeedCache,
        store: RemoteStore,
        page_size: Optional[int] = None,
        fetch_page: Optional[Callable[[int, int], Awaitable[List[Post]]]] = None,
    ):
        """
        Initialize the paginator.

        Args:
            cache: The cache pages are written to.
            store: The remote store.
            page_size: Posts per page (defaults to FEED_PAGE_SIZE).
            fetch_page: ``(limit, offset)`` coroutine function; defaults to
                ``store.fetch_posts``. Profile feeds pass an author filter here.
        """
        self.cache = cache
        self.store = store
        self.fetch_page = fetch_page
        self.page_size = page_size or settings.FEED_PAGE_SIZE
        self.current_offset = 0
        self.has_more = True
        self.loading = False
        self._generation = 0

    def reset(self) -> None:
        self.current_offset = 0
        self.has_more = True
        self.loading = False
        self._generation += 1

    async def load_first_page(self) -> List[Post]:
        """
        Fetch the first page and replace the cache contents with it.

        Any next-page load still suspended when this starts is discarded.

        Returns:
            List[Post]: The fetched page.

        Raises:
            RemoteFailureError: If the fetch fails; cache and state are unchanged.
        """
        self._generation += 1
        generation = self._generation
        self.loading = True
        try:
            posts = await self._fetch(0)
        finally:
            if generation == self._generation:
                self.loading = False

        if generation != self._generation:
            logger.debug("Discarding superseded first page")
            return []

        self.cache.replace_all(posts)
        self.current_offset = 0
        self.has_more = len(posts) == self.page_size
        logger.info(f"Loaded first page: {len(posts)} posts (has_more={self.has_more})")
        return posts

    async def load_next_page(self) -> List[Post]:
        """
        Fetch the page after the last loaded one and append it.

        A no-op when there is nothing more to load or a load is in flight.

        Returns:
            List[Post]: The appended page, empty for a no-op.

        Raises:
            RemoteFailureError: If the fetch fails; nothing is appended and
                the offset is unchanged.
        """
        if not self.has_more or self.loading:
            return []

        generation = self._generation
        next_offset = self.current_offset + self.page_size
        self.loading = True
        try:
            posts = await self._fetch(next_offset)
        finally:
            if generation == self._generation:
                self.loading = False

        if generation != self._generation:
            logger.debug(f"Discarding page at offset {next_offset} after refresh")
            return []

        self.cache.append_page(posts)
        self.current_offset = next_offset
        self.has_more = len(posts) == self.page_size
        logger.info(f"Loaded page at offset {next_offset}: {len(posts)} posts (has_more={self.has_more})")
        return posts

    async def _fetch(self, offset: int) -> List[Post]:
        try:
            fetch_page = self.fetch_page or self.store.fetch_posts
            return list(await fetch_page(self.page_size, offset))
        except RemoteFailureError:
            raise
        except Exception as e:
            logger.error(f"Error fetching posts at offset {offset}: {e}")
            raise RemoteFailureError(f"Failed to fetch posts at offset {offset}: {e}") from e
