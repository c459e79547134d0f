"""Unit tests for NaturalKeyResolver."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.itemsync.items.errors import StoreError
from src.itemsync.items.record import ExternalRecord
from src.itemsync.items.resolver import NaturalKeyResolver
from src.itemsync.items.store.adapter import RecordStore


def _item(natural_key, partition="2"):
    return ExternalRecord("lotnumberedinventoryitem", values={"itemid": natural_key, "subsidiary": partition})


class TestResolve:
    """resolve(partition, natural_key)."""

    @pytest.mark.asyncio
    async def test_not_found(self, store, policy):
        assert await NaturalKeyResolver(store, policy).resolve("2", "FAB-1") is None

    @pytest.mark.asyncio
    async def test_found(self, store, policy):
        ref = store.seed(_item("FAB-1"))
        assert await NaturalKeyResolver(store, policy).resolve("2", "FAB-1") == ref

    @pytest.mark.asyncio
    async def test_scoped_to_partition(self, store, policy):
        store.seed(_item("FAB-1", partition="3"))
        assert await NaturalKeyResolver(store, policy).resolve("2", "FAB-1") is None

    @pytest.mark.asyncio
    async def test_find_filters(self, policy):
        mock_store = AsyncMock(spec=RecordStore)
        mock_store.find.return_value = []

        await NaturalKeyResolver(mock_store, policy).resolve("2", "FAB-1")

        mock_store.find.assert_awaited_once_with(
            "lotnumberedinventoryitem", {"itemid": "FAB-1", "subsidiary": "2"}
        )

    @pytest.mark.asyncio
    async def test_ambiguous_picks_numerically_lowest(self, policy):
        """"9" beats "10" numerically even though "10" sorts first lexically."""
        mock_store = AsyncMock(spec=RecordStore)
        mock_store.find.return_value = ["10", "9", "250"]

        assert await NaturalKeyResolver(mock_store, policy).resolve("2", "FAB-1") == "9"

    @pytest.mark.asyncio
    async def test_ambiguous_is_deterministic(self, policy):
        mock_store = AsyncMock(spec=RecordStore)
        mock_store.find.side_effect = [["b", "a", "5"], ["5", "a", "b"]]
        resolver = NaturalKeyResolver(mock_store, policy)

        assert await resolver.resolve("2", "FAB-1") == "5"
        assert await resolver.resolve("2", "FAB-1") == "5"

    @pytest.mark.asyncio
    async def test_store_error_propagates(self, policy):
        """A failed search is never reported as not-found."""
        mock_store = AsyncMock(spec=RecordStore)
        mock_store.find.side_effect = StoreError("find", "search index unavailable")

        with pytest.raises(StoreError, match="search index unavailable"):
            await NaturalKeyResolver(mock_store, policy).resolve("2", "FAB-1")
