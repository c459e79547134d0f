"""Merge-by-key reconciliation of a record's associated-party lines."""

from __future__ import annotations

from typing import Any

import structlog

from src.itemsync.items.record import ExternalRecord

logger = structlog.get_logger(__name__)


def _key_matches(current: Any, key_value: str) -> bool:
    # Stores hand back ids as ints or strings; 17 and "17" are the same party.
    return current is not None and str(current).strip() == key_value


class LineCollectionReconciler:
    """Keeps at most one line per key value in a sub-collection.

    Args:
        preferred_field: Line field forced True on the reconciled line.
        demote_other_preferred: When set, other lines flagged preferred are
            cleared so exactly one line is preferred.
    """

    def __init__(self, preferred_field: str | None = None, demote_other_preferred: bool = False) -> None:
        self._preferred_field = preferred_field
        self._demote_other_preferred = demote_other_preferred

    def reconcile_line(
        self,
        target: ExternalRecord,
        collection: str,
        key_field: str,
        key_value: str,
        payload: dict[str, Any],
    ) -> int:
        """Update the line for ``key_value`` in place, or append a new one.

        Present payload fields overwrite the matched line; absent ones leave
        it untouched. Extra lines already carrying the same key are removed.

        Returns:
            Index of the reconciled line.
        """
        key_value = str(key_value).strip()
        present = {field: value for field, value in payload.items() if value is not None and value != ""}

        matches = [
            index
            for index in range(target.line_count(collection))
            if _key_matches(target.get_line_value(collection, key_field, index), key_value)
        ]

        if matches:
            index = matches[0]
            for duplicate in reversed(matches[1:]):
                target.remove_line(collection, duplicate)
            if len(matches) > 1:
                logger.warning(
                    "lines.duplicates_collapsed",
                    collection=collection,
                    key=key_value,
                    removed=len(matches) - 1,
                )
            for field, value in present.items():
                target.set_line_value(collection, index, field, value)
            action = "updated"
        else:
            index = target.append_line(collection, {key_field: key_value, **present})
            action = "appended"

        if self._preferred_field:
            target.set_line_value(collection, index, self._preferred_field, True)
            if self._demote_other_preferred:
                self._demote_others(target, collection, index)

        logger.info(
            f"lines.{action}",
            collection=collection,
            key=key_value,
            line=index,
            record_id=target.ref,
        )
        return index

    def _demote_others(self, target: ExternalRecord, collection: str, keep: int) -> None:
        for index in range(target.line_count(collection)):
            if index != keep and target.get_line_value(collection, self._preferred_field, index):
                target.set_line_value(collection, index, self._preferred_field, False)
                logger.info("lines.preferred_demoted", collection=collection, line=index)
