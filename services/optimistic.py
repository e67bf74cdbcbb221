"""
Optimistic Mutator Module

Applies user actions (like, bookmark, edit, delete) to a cache immediately,
then runs the remote call in the background and restores the captured
values if that call fails.

Only one mutation per (record id, field) may be in flight; a second request
is rejected with BusyError rather than queued.
"""

import asyncio
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from data.models import TOGGLE_COUNTERS
from data.protocols import RecordCache
from utils.exceptions import BusyError, NotFoundError, RemoteFailureError
from utils.helpers import as_bool
from utils.logger import get_logger

logger = get_logger(__name__)

RemoteCall = Callable[[], Awaitable[Any]]

DELETE_KEY = "__delete__"
EDIT_KEY = "__edit__"


class OptimisticMutator:
    """Local-first mutations with rollback against one record cache."""

    def __init__(self, cache: RecordCache, counters: Optional[Dict[str, Optional[str]]] = None):
        """
        Initialize the mutator.

        Args:
            cache: The cache whose records are mutated.
            counters: Toggle field -> paired counter field. Defaults to
                TOGGLE_COUNTERS (likes move with liked_by_user).
        """
        self.cache = cache
        self.counters = dict(TOGGLE_COUNTERS if counters is None else counters)
        self._in_flight: Set[Tuple[str, str]] = set()
        # Records removed by a delete whose remote call has not settled
        self._pending_deletes: Dict[str, Any] = {}

    def is_busy(self, record_id: str, field: str) -> bool:
        return (record_id, field) in self._in_flight

    def _claim(self, record_id: str, field: str) -> None:
        if (record_id, field) in self._in_flight:
            raise BusyError(record_id, field)
        self._in_flight.add((record_id, field))

    def _require(self, record_id: str) -> Any:
        record = self.cache.find(record_id)
        if record is None:
            raise NotFoundError(record_id)
        return record

    # =========================================================================
    # Toggles
    # =========================================================================

    def apply_toggle(self, record_id: str, field: str, remote_call: RemoteCall) -> "asyncio.Task":
        """
        Flip a boolean field locally, then confirm it remotely.

        The cache holds the new value as soon as this returns. The remote call
        runs in a background task; if it fails, the field and its counter are
        restored to exactly their previous values and the task raises
        RemoteFailureError.

        Args:
            record_id: The record to toggle.
            field: Boolean field name, e.g. ``liked_by_user``.
            remote_call: Coroutine function performing the remote toggle.

        Returns:
            asyncio.Task: Resolves to the remote call's result.

        Raises:
            NotFoundError: The record is not cached.
            BusyError: A toggle of the same record and field is in flight.
        """
        record = self._require(record_id)
        self._claim(record_id, field)

        counter = self.counters.get(field)
        previous = {field: getattr(record, field)}
        turning_on = not as_bool(previous[field])
        updates = {field: turning_on}
        if counter:
            previous[counter] = getattr(record, counter)
            delta = 1 if turning_on else -1
            updates[counter] = max(0, previous[counter] + delta)

        try:
            self.cache.upsert(self._with(record, updates))
        except Exception:
            self._in_flight.discard((record_id, field))
            raise

        logger.debug(f"Optimistic {field}={turning_on} on {record_id}")
        return asyncio.get_running_loop().create_task(
            self._confirm(record_id, field, remote_call, previous)
        )

    async def _confirm(self, record_id: str, key: str, remote_call: RemoteCall,
                       previous: Dict[str, Any]) -> Any:
        try:
            return await remote_call()
        except RemoteFailureError as e:
            self._restore(record_id, key, previous, e)
            raise
        except Exception as e:
            self._restore(record_id, key, previous, e)
            raise RemoteFailureError(str(e) or e.__class__.__name__) from e
        finally:
            self._in_flight.discard((record_id, key))

    def _restore(self, record_id: str, key: str, previous: Dict[str, Any], error: Exception) -> None:
        current = self.cache.find(record_id)
        if current is None:
            if record_id in self._pending_deletes:
                # A delete may still fail and re-insert its snapshot
                self._pending_deletes[record_id] = self._with(self._pending_deletes[record_id], previous)
                logger.warning(f"Remote {key} on {record_id} failed, rolled back in pending delete: {error}")
                return
            logger.warning(f"Remote {key} on {record_id} failed; record no longer cached: {error}")
            return
        self.cache.upsert(self._with(current, previous))
        logger.warning(f"Remote {key} on {record_id} failed, rolled back: {error}")

    # =========================================================================
    # Edit and delete
    # =========================================================================

    def apply_edit(self, record_id: str, fields: Dict[str, Any], remote_call: RemoteCall) -> "asyncio.Task":
        """
        Merge edited fields locally, then save them remotely.

        On failure the edited fields are restored to their previous values.

        Args:
            record_id: The record to edit.
            fields: New field values.
            remote_call: Coroutine function performing the remote update.

        Returns:
            asyncio.Task: Resolves to the remote call's result.
        """
        record = self._require(record_id)
        self._claim(record_id, EDIT_KEY)

        previous = {name: getattr(record, name) for name in fields if hasattr(record, name)}
        try:
            self.cache.upsert(self._with(record, fields))
        except Exception:
            self._in_flight.discard((record_id, EDIT_KEY))
            raise

        return asyncio.get_running_loop().create_task(
            self._confirm(record_id, EDIT_KEY, remote_call, previous)
        )

    def apply_delete(self, record_id: str, remote_call: RemoteCall) -> "asyncio.Task":
        """
        Remove a record locally, then delete it remotely.

        On failure the record is re-inserted at its prior position.

        Args:
            record_id: The record to delete.
            remote_call: Coroutine function performing the remote delete.

        Returns:
            asyncio.Task: Resolves to the remote call's result.
        """
        self._require(record_id)
        self._claim(record_id, DELETE_KEY)

        index = self.cache.index_of(record_id)
        self._pending_deletes[record_id] = self.cache.remove(record_id)
        return asyncio.get_running_loop().create_task(
            self._confirm_delete(record_id, remote_call, index)
        )

    async def _confirm_delete(self, record_id: str, remote_call: RemoteCall, index: int) -> Any:
        try:
            return await remote_call()
        except RemoteFailureError as e:
            self._reinsert(record_id, index, e)
            raise
        except Exception as e:
            self._reinsert(record_id, index, e)
            raise RemoteFailureError(str(e) or e.__class__.__name__) from e
        finally:
            self._pending_deletes.pop(record_id, None)
            self._in_flight.discard((record_id, DELETE_KEY))

    def _reinsert(self, record_id: str, index: int, error: Exception) -> None:
        # The snapshot already carries rollbacks that failed while it was removed
        removed = self._pending_deletes.get(record_id)
        if removed is not None and self.cache.find(record_id) is None:
            self.cache.insert_at(index, removed)
        logger.warning(f"Remote delete of {record_id} failed, restored at {index}: {error}")

    @staticmethod
    def _with(record: Any, updates: Dict[str, Any]) -> Any:
        return replace(record, **updates)
