"""In-memory draft of an external record.

The external store owns the record; this class is the working copy an upsert
or a mutation hook operates on. It mirrors the store's own draft model: scalar
attributes by field id, plus named sub-collections of line dicts.

Drafts handed out by a store are independent copies. Nothing written to a draft
reaches the store until ``RecordStore.save`` is awaited with it.
"""

from __future__ import annotations

import copy
from typing import Any


class ExternalRecord:
    """Mutable working copy of one external record.

    Args:
        record_type: Store record type (e.g. ``lotnumberedinventoryitem``).
        ref: Store-assigned reference, ``None`` for a record not yet saved.
        values: Initial scalar attribute values keyed by field id.
        lines: Initial sub-collections keyed by collection name.
    """

    def __init__(
        self,
        record_type: str,
        ref: str | None = None,
        values: dict[str, Any] | None = None,
        lines: dict[str, list[dict[str, Any]]] | None = None,
    ) -> None:
        self.record_type = record_type
        self._ref = ref
        self._values: dict[str, Any] = dict(values or {})
        self._lines: dict[str, list[dict[str, Any]]] = {
            name: [dict(entry) for entry in entries] for name, entries in (lines or {}).items()
        }

    def __repr__(self) -> str:
        return f"ExternalRecord(type={self.record_type!r}, ref={self._ref!r})"

    @property
    def ref(self) -> str | None:
        return self._ref

    @property
    def is_new(self) -> bool:
        return self._ref is None

    def assign_ref(self, ref: str) -> None:
        """Bind the store-assigned reference. A reference never changes once set."""
        if self._ref is not None and self._ref != ref:
            msg = f"Record already has ref '{self._ref}', cannot reassign to '{ref}'"
            raise ValueError(msg)
        self._ref = ref

    # ── Scalar attributes ──────────────────────────────────────────────────

    def get_value(self, field_id: str, default: Any = None) -> Any:
        return self._values.get(field_id, default)

    def set_value(self, field_id: str, value: Any) -> None:
        self._values[field_id] = value

    def has_value(self, field_id: str) -> bool:
        return field_id in self._values

    @property
    def values(self) -> dict[str, Any]:
        """Snapshot of scalar attributes."""
        return dict(self._values)

    # ── Sub-collections ────────────────────────────────────────────────────

    def line_count(self, collection: str) -> int:
        return len(self._lines.get(collection, []))

    def get_lines(self, collection: str) -> list[dict[str, Any]]:
        """Snapshot of the lines in a sub-collection (copies, safe to inspect)."""
        return [dict(entry) for entry in self._lines.get(collection, [])]

    def get_line_value(self, collection: str, field_id: str, line: int) -> Any:
        return self._lines[collection][line].get(field_id)

    def set_line_value(self, collection: str, line: int, field_id: str, value: Any) -> None:
        self._lines[collection][line][field_id] = value

    def append_line(self, collection: str, entry: dict[str, Any]) -> int:
        """Append a line and return its index."""
        entries = self._lines.setdefault(collection, [])
        entries.append(dict(entry))
        return len(entries) - 1

    def remove_line(self, collection: str, line: int) -> None:
        del self._lines[collection][line]

    @property
    def collections(self) -> list[str]:
        return list(self._lines)

    # ── Copy / serialization ───────────────────────────────────────────────

    def copy(self) -> ExternalRecord:
        return ExternalRecord(
            record_type=self.record_type,
            ref=self._ref,
            values=copy.deepcopy(self._values),
            lines=copy.deepcopy(self._lines),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self._ref,
            "type": self.record_type,
            "fields": copy.deepcopy(self._values),
            "sublists": copy.deepcopy(self._lines),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExternalRecord:
        ref = data.get("id")
        return cls(
            record_type=data.get("type", ""),
            ref=str(ref) if ref is not None else None,
            values=data.get("fields") or {},
            lines=data.get("sublists") or {},
        )
