"""Record store abstract base class -- the only interface the engine uses to reach the external store.

The store exposes a coarse search-then-write API: no atomic upsert, no
multi-record transaction, and a search index that may lag behind saves. The
upsert engine is written against exactly these four operations.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.itemsync.items.record import ExternalRecord


class RecordStore(ABC):
    """Abstract interface for external record store operations.

    Methods:
        find: Search records by exact field equality, return matching refs.
        create: Instantiate an unsaved draft of a record type.
        load: Fetch an independent draft of an existing record.
        save: Persist a draft, return its ref. May raise UniquenessConflictError.
    """

    @abstractmethod
    async def find(self, record_type: str, filters: dict[str, str]) -> list[str]:
        """Return refs of records whose fields equal every filter value."""
        ...

    @abstractmethod
    async def create(self, record_type: str) -> ExternalRecord:
        """Return a new, unsaved draft. Nothing is persisted until save."""
        ...

    @abstractmethod
    async def load(self, record_type: str, ref: str) -> ExternalRecord:
        """Return a draft of an existing record. Raises RecordNotFoundError."""
        ...

    @abstractmethod
    async def save(self, record: ExternalRecord) -> str:
        """Persist a draft and return its ref.

        Raises:
            UniquenessConflictError: Another record already holds the natural key.
            StoreError: Any other store failure.
        """
        ...

    async def health_check(self) -> bool:
        """Return True when the store is reachable."""
        return True
