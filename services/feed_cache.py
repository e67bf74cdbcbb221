"""
Feed Cache Module

Holds the ordered, id-keyed records currently materialized for a screen.
The paginator establishes the order; the reconciler and the optimistic
mutator are the only writers; everything else reads a snapshot.
"""

from typing import Optional, List, Any, Iterable, Iterator

from data.models import apply_fields


class FeedCache:
    """Ordered in-memory collection of records keyed by ``id``.

    No two records share an id: ``upsert`` replaces in place and ``remove``
    deletes by exact id.
    """

    def __init__(self, records: Optional[Iterable[Any]] = None):
        self._records: List[Any] = list(records or [])

    def replace_all(self, records: Iterable[Any]) -> None:
        """Discard prior contents and install ``records`` in order."""
        self._records = list(records)

    def append_page(self, records: Iterable[Any]) -> None:
        """Append a page after the current records.

        No deduplication happens here; the paginator requests offsets strictly
        after what it already loaded.
        """
        self._records.extend(records)

    def upsert(self, record: Any) -> None:
        """Replace the record with the same id in place, or insert it at the front."""
        index = self.index_of(record.id)
        if index >= 0:
            self._records[index] = record
        else:
            self._records.insert(0, record)

    def remove(self, record_id: str) -> Optional[Any]:
        """Delete the record with this id. Absent ids are a no-op.

        Returns:
            The removed record, or None if nothing matched.
        """
        index = self.index_of(record_id)
        if index < 0:
            return None
        return self._records.pop(index)

    def find(self, record_id: str) -> Optional[Any]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def index_of(self, record_id: str) -> int:
        for index, record in enumerate(self._records):
            if record.id == record_id:
                return index
        return -1

    def insert_at(self, index: int, record: Any) -> None:
        """Insert a record at a position, clamped to the current bounds.

        If the id is already present the existing record is replaced in place
        instead.
        """
        if self.index_of(record.id) >= 0:
            self.upsert(record)
            return
        index = max(0, min(index, len(self._records)))
        self._records.insert(index, record)

    def update_fields(self, record_id: str, **updates) -> Optional[Any]:
        """Merge field values onto a cached record, keeping its position.

        Returns:
            The updated record, or None if the id is not cached.
        """
        index = self.index_of(record_id)
        if index < 0:
            return None
        self._records[index] = apply_fields(self._records[index], updates)
        return self._records[index]

    def snapshot(self) -> List[Any]:
        return list(self._records)

    def ids(self) -> List[str]:
        return [record.id for record in self._records]

    def clear(self) -> None:
        self._records = []

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._records))

    def __contains__(self, record_id: object) -> bool:
        return self.index_of(record_id) >= 0
