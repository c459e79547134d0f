"""Shared fixtures for item sync tests.

Provides:
- The default (v4) reconciliation policy
- An InMemoryRecordStore and an UpsertResolver wired to it
"""

from __future__ import annotations

import pytest

from src.itemsync.items.field_mapping import ITEM_POLICY_V4, ReconciliationPolicy
from src.itemsync.items.store.memory import InMemoryRecordStore
from src.itemsync.items.upsert import UpsertResolver


@pytest.fixture
def policy() -> ReconciliationPolicy:
    return ITEM_POLICY_V4


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def upsert_resolver(store: InMemoryRecordStore, policy: ReconciliationPolicy) -> UpsertResolver:
    return UpsertResolver(store=store, policy=policy, default_partition="2")
