"""Record store adapters.

Exports:
    RecordStore: ABC for store backends.
    InMemoryRecordStore: Dict-backed store for dry runs and tests.
    HttpRecordStore: REST-backed store over httpx.
    build_store: Construct the configured backend from Settings.
"""

from __future__ import annotations

from src.itemsync.config import Settings, StoreBackend
from src.itemsync.items.store.adapter import RecordStore
from src.itemsync.items.store.http import HttpRecordStore
from src.itemsync.items.store.memory import InMemoryRecordStore


def build_store(settings: Settings) -> RecordStore:
    """Return the RecordStore selected by ``STORE_BACKEND``."""
    if settings.STORE_BACKEND == StoreBackend.http:
        if not settings.STORE_BASE_URL:
            raise ValueError("STORE_BASE_URL is required when STORE_BACKEND=http")
        return HttpRecordStore(
            base_url=settings.STORE_BASE_URL,
            token=settings.STORE_TOKEN,
            timeout=settings.STORE_TIMEOUT,
        )
    return InMemoryRecordStore()


__all__ = [
    "HttpRecordStore",
    "InMemoryRecordStore",
    "RecordStore",
    "build_store",
]
