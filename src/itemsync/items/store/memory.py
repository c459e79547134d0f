"""In-memory record store for dry runs and tests.

Behaves like the external store where the engine can observe it: drafts are
independent copies, refs are assigned on first save, and natural-key
uniqueness within a partition is enforced at save time. Search visibility of
new records can be deferred to reproduce a lagging search index.
"""

from __future__ import annotations

import itertools

import structlog

from src.itemsync.items.errors import RecordNotFoundError, StoreError, UniquenessConflictError
from src.itemsync.items.record import ExternalRecord
from src.itemsync.items.store.adapter import RecordStore

logger = structlog.get_logger(__name__)


class InMemoryRecordStore(RecordStore):
    """Dict-backed RecordStore.

    Args:
        unique_field: Field holding the natural key.
        partition_field: Field scoping natural-key uniqueness.
        index_on_save: When False, newly created records stay invisible to
            ``find`` until ``reindex()`` is called.
    """

    def __init__(
        self,
        unique_field: str = "itemid",
        partition_field: str = "subsidiary",
        index_on_save: bool = True,
    ) -> None:
        self._unique_field = unique_field
        self._partition_field = partition_field
        self._index_on_save = index_on_save
        self._records: dict[str, ExternalRecord] = {}
        self._unindexed: set[str] = set()
        self._ids = itertools.count(1)
        self.save_count = 0

    # ── RecordStore ────────────────────────────────────────────────────────

    async def find(self, record_type: str, filters: dict[str, str]) -> list[str]:
        refs = []
        for ref, record in self._records.items():
            if ref in self._unindexed or record.record_type != record_type:
                continue
            if all(_same(record.get_value(field), value) for field, value in filters.items()):
                refs.append(ref)
        return refs

    async def create(self, record_type: str) -> ExternalRecord:
        return ExternalRecord(record_type=record_type)

    async def load(self, record_type: str, ref: str) -> ExternalRecord:
        record = self._records.get(str(ref))
        if record is None or record.record_type != record_type:
            raise RecordNotFoundError(str(ref))
        return record.copy()

    async def save(self, record: ExternalRecord) -> str:
        if not record.is_new and record.ref not in self._records:
            raise StoreError("save", f"Record '{record.ref}' does not exist")

        natural_key = record.get_value(self._unique_field)
        holder = self._holder_of(natural_key, record.get_value(self._partition_field))
        if holder is not None and holder != record.ref:
            logger.info(
                "memory_store.uniqueness_conflict",
                natural_key=natural_key,
                holder=holder,
            )
            raise UniquenessConflictError(str(natural_key))

        if record.is_new:
            record.assign_ref(str(next(self._ids)))
            if not self._index_on_save:
                self._unindexed.add(record.ref)

        self._records[record.ref] = record.copy()
        self.save_count += 1
        return record.ref

    # ── Dry-run helpers ────────────────────────────────────────────────────

    def reindex(self) -> None:
        """Make every saved record visible to ``find``."""
        self._unindexed.clear()

    def seed(self, record: ExternalRecord) -> str:
        """Insert a record directly, bypassing uniqueness (for duplicate fixtures)."""
        if record.is_new:
            record.assign_ref(str(next(self._ids)))
        self._records[record.ref] = record.copy()
        return record.ref

    def get(self, ref: str) -> ExternalRecord | None:
        record = self._records.get(str(ref))
        return record.copy() if record is not None else None

    def __len__(self) -> int:
        return len(self._records)

    def _holder_of(self, natural_key: object, partition: object) -> str | None:
        if natural_key is None:
            return None
        for ref, existing in self._records.items():
            if _same(existing.get_value(self._unique_field), natural_key) and _same(
                existing.get_value(self._partition_field), partition
            ):
                return ref
        return None


def _same(left: object, right: object) -> bool:
    if left is None or right is None:
        return left is right
    return str(left) == str(right)
