"""
Reconciler Module

Applies change events pushed by the remote store's change feed to a feed
cache. Events authored by the viewer are ignored (their effect is already
visible through the optimistic mutator), inserts are idempotent, updates are
merged field by field and deletes are unconditional.

The subscription lifecycle is:

    UNSUBSCRIBED -> SUBSCRIBING -> ACTIVE -> UNSUBSCRIBED

with at most one open channel per reconciler.
"""

import asyncio
import enum
from typing import Optional, Callable, Dict, Any

from config import settings
from data.models import post_from_fields
from data.protocols import ChangeEvent, ChangeType, RemoteStore, SubscriptionHandle
from services.feed_cache import FeedCache
from utils.exceptions import MalformedEventError, SubscriptionError
from utils.logger import get_logger

logger = get_logger(__name__)


class SubscriptionState(str, enum.Enum):
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"


class Reconciler:
    """Keeps a feed cache in step with the remote change feed."""

    def __init__(
        self,
        cache: FeedCache,
        store: RemoteStore,
        viewer_id: str,
        table: str = settings.POSTS_TABLE,
        record_factory: Callable[[Dict[str, Any]], Any] = post_from_fields,
    ):
        """
        Initialize the reconciler.

        Args:
            cache: The cache to write to.
            store: The remote store providing the change feed.
            viewer_id: The signed-in viewer; their own events are ignored.
            table: The table to subscribe to.
            record_factory: Builds a cache record from an INSERT payload.
        """
        self.cache = cache
        self.store = store
        self.viewer_id = viewer_id
        self.table = table
        self.record_factory = record_factory
        self.state = SubscriptionState.UNSUBSCRIBED
        self._handle: Optional[SubscriptionHandle] = None
        self._lock = asyncio.Lock()

    @property
    def handle(self) -> Optional[SubscriptionHandle]:
        return self._handle

    # =========================================================================
    # Event handling
    # =========================================================================

    def handle_change_event(self, event: ChangeEvent, viewer_id: Optional[str] = None) -> None:
        """
        Apply one change event to the cache.

        Never raises for a bad event: malformed events are logged and dropped
        so the change feed keeps delivering.

        Args:
            event: The pushed change.
            viewer_id: Overrides the viewer bound at construction.
        """
        viewer = self.viewer_id if viewer_id is None else viewer_id
        try:
            self._apply(event, viewer)
        except MalformedEventError as e:
            logger.warning(f"Dropping malformed change event on {self.table}: {e}")

    def _apply(self, event: ChangeEvent, viewer: str) -> None:
        if not isinstance(event, ChangeEvent):
            raise MalformedEventError(f"not a change event: {event!r}")

        record_id = event.record_id
        if record_id is None:
            raise MalformedEventError(f"{event.type} event without a record id")

        if event.author_id is not None and event.author_id == viewer:
            logger.debug(f"Ignoring self-originated {event.type} for {record_id}")
            return

        try:
            change_type = ChangeType(event.type)
        except ValueError:
            raise MalformedEventError(f"unknown change type {event.type!r} for {record_id}")

        if change_type == ChangeType.INSERT:
            if self.cache.find(record_id) is not None:
                logger.debug(f"Insert for {record_id} already cached, skipping")
                return
            try:
                record = self.record_factory({**event.record, "id": record_id})
            except (TypeError, ValueError) as e:
                raise MalformedEventError(f"insert payload for {record_id} is unusable: {e}") from e
            self.cache.upsert(record)
            logger.debug(f"Inserted {record_id} from change feed")

        elif change_type == ChangeType.UPDATE:
            if self.cache.find(record_id) is None:
                logger.debug(f"Update for uncached {record_id}, skipping")
                return
            updates = {k: v for k, v in event.record.items() if k != "id"}
            try:
                self.cache.update_fields(record_id, **updates)
            except (TypeError, ValueError) as e:
                raise MalformedEventError(f"update payload for {record_id} is unusable: {e}") from e
            logger.debug(f"Merged {sorted(updates)} into {record_id}")

        else:
            self.cache.remove(record_id)
            logger.debug(f"Removed {record_id} from change feed")

    def _on_event(self, event: ChangeEvent) -> None:
        # Late deliveries after teardown must not touch the cache
        if self.state == SubscriptionState.UNSUBSCRIBED:
            return
        self.handle_change_event(event)

    # =========================================================================
    # Subscription lifecycle
    # =========================================================================

    async def subscribe(self) -> SubscriptionHandle:
        """
        Open the change-feed subscription, replacing any open one.

        Returns:
            SubscriptionHandle: The new handle, owned by this reconciler.

        Raises:
            SubscriptionError: If the store cannot open the channel.
        """
        async with self._lock:
            if self._handle is not None:
                await self._release()

            self.state = SubscriptionState.SUBSCRIBING
            try:
                handle = await self.store.subscribe_to_changes(self.table, self._on_event)
            except SubscriptionError:
                self.state = SubscriptionState.UNSUBSCRIBED
                raise
            except Exception as e:
                self.state = SubscriptionState.UNSUBSCRIBED
                logger.error(f"Failed to subscribe to {self.table}: {e}")
                raise SubscriptionError(f"Failed to subscribe to {self.table}: {e}") from e

            self._handle = handle
            self.state = SubscriptionState.ACTIVE
            logger.info(f"Subscribed to {self.table} changes")
            return handle

    async def unsubscribe(self) -> None:
        """Release the subscription. Safe to call when not subscribed."""
        async with self._lock:
            await self._release()

    async def _release(self) -> None:
        handle, self._handle = self._handle, None
        self.state = SubscriptionState.UNSUBSCRIBED
        if handle is None:
            return
        try:
            await self.store.unsubscribe(handle)
            logger.info(f"Unsubscribed from {self.table} changes")
        except Exception as e:
            logger.error(f"Error releasing {self.table} subscription: {e}")
