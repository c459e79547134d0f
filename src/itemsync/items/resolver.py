"""Natural-key resolution against the external store."""

from __future__ import annotations

import structlog

from src.itemsync.items.field_mapping import ReconciliationPolicy
from src.itemsync.items.store.adapter import RecordStore

logger = structlog.get_logger(__name__)


def _ref_sort_key(ref: str) -> tuple[int, int, str]:
    # Numeric refs first, lowest value wins; non-numeric refs fall back to lexical order.
    try:
        return (0, int(ref), ref)
    except ValueError:
        return (1, 0, ref)


class NaturalKeyResolver:
    """Finds the record holding a natural key within a partition.

    Store errors propagate as StoreError; a failed search is never reported
    as "not found", since that would lead the caller to create a duplicate.

    Args:
        store: External record store.
        policy: Supplies the record type and the key/partition field ids.
    """

    def __init__(self, store: RecordStore, policy: ReconciliationPolicy) -> None:
        self._store = store
        self._policy = policy

    async def resolve(self, partition: str, natural_key: str) -> str | None:
        """Return the ref holding ``natural_key`` in ``partition``, or None.

        When the store reports several matches (a transient duplicate), the
        numerically lowest ref is chosen and the ambiguity is logged. Records
        are never merged here.
        """
        refs = await self._store.find(
            self._policy.record_type,
            {
                self._policy.natural_key_destination: natural_key,
                self._policy.partition_field: partition,
            },
        )
        if not refs:
            logger.debug("resolver.not_found", natural_key=natural_key, partition=partition)
            return None

        ordered = sorted({str(ref) for ref in refs}, key=_ref_sort_key)
        chosen = ordered[0]
        if len(ordered) > 1:
            logger.warning(
                "resolver.ambiguous_match",
                natural_key=natural_key,
                partition=partition,
                refs=ordered,
                chosen=chosen,
            )
        return chosen
