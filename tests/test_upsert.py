"""Tests for UpsertResolver: idempotence, partial payloads, line convergence,
conflict convergence, and required-field rejection.

Runs against InMemoryRecordStore (which enforces natural-key uniqueness at
save time like the external store does) and AsyncMock stores for failure paths.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from src.itemsync.items.errors import StoreError, UniquenessConflictError
from src.itemsync.items.field_mapping import ITEM_POLICY_V3
from src.itemsync.items.record import ExternalRecord
from src.itemsync.items.schemas import UpsertOperation
from src.itemsync.items.store.adapter import RecordStore
from src.itemsync.items.store.memory import InMemoryRecordStore
from src.itemsync.items.upsert import UpsertResolver


def _payload(**overrides):
    payload = {
        "naturalKey": "FAB-1001",
        "upcCode": "012345678905",
        "crossLinkIdA": 501,
        "crossLinkIdB": 9001,
    }
    payload.update(overrides)
    return payload


class RacingStore(InMemoryRecordStore):
    """Holds the first two searches until both have run, so both miss."""

    def __init__(self) -> None:
        super().__init__()
        self._arrived = 0
        self._both_searched = asyncio.Event()

    async def find(self, record_type, filters):
        refs = await super().find(record_type, filters)
        if self._arrived < 2:
            self._arrived += 1
            if self._arrived == 2:
                self._both_searched.set()
            await self._both_searched.wait()
        return refs


# ── Create / Update ─────────────────────────────────────────────────────────


class TestCreateAndUpdate:
    """Basic create-vs-update branching."""

    @pytest.mark.asyncio
    async def test_first_call_creates(self, upsert_resolver, store):
        result = await upsert_resolver.upsert(_payload(displayName="Belgian Linen"))

        assert result.success is True
        assert result.operation == UpsertOperation.CREATED
        assert result.record_id is not None
        assert result.natural_key == "FAB-1001"
        assert result.conflict_retried is False

        record = store.get(result.record_id)
        assert record.get_value("itemid") == "FAB-1001"
        assert record.get_value("subsidiary") == "2"
        assert record.get_value("displayname") == "Belgian Linen"
        assert record.get_value("islotitem") is True

    @pytest.mark.asyncio
    async def test_second_call_updates_same_record(self, upsert_resolver, store):
        first = await upsert_resolver.upsert(_payload())
        second = await upsert_resolver.upsert(_payload())

        assert second.success is True
        assert second.operation == UpsertOperation.UPDATED
        assert second.record_id == first.record_id
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_idempotent_state(self, upsert_resolver, store):
        """Applying the same payload twice leaves the same record state."""
        payload = _payload(cost="12.50", partyId=17, partyCode="VC-1")
        first = await upsert_resolver.upsert(payload)
        after_first = store.get(first.record_id).to_dict()

        await upsert_resolver.upsert(payload)
        after_second = store.get(first.record_id).to_dict()

        assert after_second == after_first

    @pytest.mark.asyncio
    async def test_partial_payload_leaves_other_attributes(self, upsert_resolver, store):
        first = await upsert_resolver.upsert(_payload(displayName="Belgian Linen", cost="12.50"))
        await upsert_resolver.upsert(_payload(vendorColor="Oatmeal"))

        record = store.get(first.record_id)
        assert record.get_value("displayname") == "Belgian Linen"
        assert record.get_value("cost") == Decimal("12.50")
        assert record.get_value("custitem_opms_vendor_color") == "Oatmeal"

    @pytest.mark.asyncio
    async def test_units_type_not_changed_on_update(self, upsert_resolver, store):
        first = await upsert_resolver.upsert(_payload())
        await upsert_resolver.upsert(_payload(unitsType=9))

        assert store.get(first.record_id).get_value("unitstype") == 3

    @pytest.mark.asyncio
    async def test_partition_from_payload_and_override(self, upsert_resolver, store):
        in_payload = await upsert_resolver.upsert(_payload(partition="5"))
        overridden = await upsert_resolver.upsert(_payload(partition="5"), partition="7")

        assert store.get(in_payload.record_id).get_value("subsidiary") == "5"
        assert overridden.operation == UpsertOperation.CREATED
        assert store.get(overridden.record_id).get_value("subsidiary") == "7"

    @pytest.mark.asyncio
    async def test_warnings_reported_on_success(self, upsert_resolver):
        result = await upsert_resolver.upsert(_payload(isRepeat="sometimes"))

        assert result.success is True
        assert [w.field for w in result.warnings] == ["is_repeat"]

    @pytest.mark.asyncio
    async def test_read_back_attributes(self, upsert_resolver):
        result = await upsert_resolver.upsert(_payload(displayName="Linen", partyId=17, partyCode="VC-1"))

        persisted = result.persisted_attributes
        assert persisted["itemid"] == "FAB-1001"
        assert persisted["custitem_opms_prod_id"] == 501
        assert persisted["subsidiary"] == "2"
        assert persisted["line_count"] == 1
        assert persisted["first_line"]["vendorcode"] == "VC-1"

    @pytest.mark.asyncio
    async def test_result_serializes_camel_case(self, upsert_resolver):
        result = await upsert_resolver.upsert(_payload())
        body = result.model_dump(mode="json", by_alias=True)

        assert body["recordId"] == result.record_id
        assert body["operation"] == "created"
        assert "persistedAttributes" in body


# ── Party Lines ─────────────────────────────────────────────────────────────


class TestPartyLines:
    """Line-collection convergence through the upsert path."""

    @pytest.mark.asyncio
    async def test_repeated_party_converges_to_one_line(self, upsert_resolver, store):
        for code in ("VC-1", "VC-2", "VC-3"):
            result = await upsert_resolver.upsert(_payload(partyId=17, partyCode=code))

        lines = store.get(result.record_id).get_lines("itemvendor")
        assert len(lines) == 1
        assert lines[0]["vendorcode"] == "VC-3"
        assert lines[0]["preferredvendor"] is True

    @pytest.mark.asyncio
    async def test_distinct_parties_append(self, upsert_resolver, store):
        await upsert_resolver.upsert(_payload(partyId=17, partyCode="A"))
        result = await upsert_resolver.upsert(_payload(partyId=18, partyCode="B"))

        vendors = [line["vendor"] for line in store.get(result.record_id).get_lines("itemvendor")]
        assert vendors == ["17", "18"]

    @pytest.mark.asyncio
    async def test_v3_policy_ignores_party(self, store):
        resolver = UpsertResolver(store=store, policy=ITEM_POLICY_V3)
        result = await resolver.upsert(_payload(partyId=17, partyCode="A"))

        record = store.get(result.record_id)
        assert record.line_count("itemvendor") == 0
        assert not record.has_value("usebins")


# ── Conflict Convergence ────────────────────────────────────────────────────


class TestConflictRetry:
    """Uniqueness conflict on create save -> single retry as update."""

    @pytest.mark.asyncio
    async def test_concurrent_creates_converge(self, policy):
        store = RacingStore()
        resolver = UpsertResolver(store=store, policy=policy)

        first, second = await asyncio.gather(
            resolver.upsert(_payload(displayName="From A")),
            resolver.upsert(_payload(cost="9.99")),
        )

        assert first.success and second.success
        assert len(store) == 1
        assert first.record_id == second.record_id
        assert {first.operation, second.operation} == {UpsertOperation.CREATED, UpsertOperation.UPDATED}
        assert [first.conflict_retried, second.conflict_retried].count(True) == 1

        record = store.get(first.record_id)
        assert record.get_value("displayname") == "From A"
        assert record.get_value("cost") == Decimal("9.99")

    @pytest.mark.asyncio
    async def test_conflict_with_unindexed_winner_is_terminal(self, policy):
        """Re-resolve finds nothing (search lag) -> terminal conflict, no duplicate."""
        store = InMemoryRecordStore(index_on_save=False)
        resolver = UpsertResolver(store=store, policy=policy)

        created = await resolver.upsert(_payload())
        lagged = await resolver.upsert(_payload())

        assert created.success is True
        assert lagged.success is False
        assert lagged.error_type == "uniqueness_conflict"
        assert len(store) == 1

        store.reindex()
        recovered = await resolver.upsert(_payload())
        assert recovered.operation == UpsertOperation.UPDATED
        assert recovered.record_id == created.record_id

    @pytest.mark.asyncio
    async def test_only_one_retry(self, policy):
        """A second conflict during the retry's update save is terminal."""
        mock_store = AsyncMock(spec=RecordStore)
        mock_store.find.side_effect = [[], ["42"]]
        mock_store.create.return_value = ExternalRecord("lotnumberedinventoryitem")
        mock_store.load.return_value = ExternalRecord("lotnumberedinventoryitem", ref="42")
        mock_store.save.side_effect = UniquenessConflictError("FAB-1001")

        result = await UpsertResolver(mock_store, policy).upsert(_payload())

        assert result.success is False
        assert result.error_type == "uniqueness_conflict"
        assert mock_store.save.await_count == 2

    @pytest.mark.asyncio
    async def test_update_path_conflict_is_terminal(self, policy):
        mock_store = AsyncMock(spec=RecordStore)
        mock_store.find.return_value = ["42"]
        mock_store.load.return_value = ExternalRecord("lotnumberedinventoryitem", ref="42")
        mock_store.save.side_effect = UniquenessConflictError("FAB-1001")

        result = await UpsertResolver(mock_store, policy).upsert(_payload())

        assert result.success is False
        assert mock_store.save.await_count == 1
        mock_store.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_metric_incremented(self, policy):
        from prometheus_client import REGISTRY

        metric = "itemsync_upsert_conflict_retries_total"
        before = REGISTRY.get_sample_value(metric)
        store = RacingStore()
        resolver = UpsertResolver(store=store, policy=policy)
        await asyncio.gather(resolver.upsert(_payload()), resolver.upsert(_payload()))

        assert REGISTRY.get_sample_value(metric) == before + 1


# ── Failures ────────────────────────────────────────────────────────────────


class TestFailures:
    """Failures come back as results; upsert never raises."""

    @pytest.mark.asyncio
    async def test_required_field_rejected_without_store_calls(self, policy):
        mock_store = AsyncMock(spec=RecordStore)
        payload = _payload()
        del payload["crossLinkIdB"]

        result = await UpsertResolver(mock_store, policy).upsert(payload)

        assert result.success is False
        assert result.error_type == "validation_error"
        assert result.error_field == "cross_link_id_b"
        mock_store.find.assert_not_awaited()
        mock_store.create.assert_not_awaited()
        mock_store.save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_numeric_cross_link_rejected(self, upsert_resolver, store):
        result = await upsert_resolver.upsert(_payload(crossLinkIdA="not-a-number"))

        assert result.success is False
        assert result.error_field == "cross_link_id_a"
        assert len(store) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["1e5000", "1e20000000"])
    async def test_exponent_cross_link_rejected_before_store(self, upsert_resolver, store, value):
        result = await upsert_resolver.upsert(_payload(crossLinkIdA=value))

        assert result.success is False
        assert result.error_type == "validation_error"
        assert result.error_field == "cross_link_id_a"
        assert "out of range" in result.error
        assert len(store) == 0
        result.model_dump_json()

    @pytest.mark.asyncio
    async def test_natural_key_only_names_all_missing_fields(self, policy):
        mock_store = AsyncMock(spec=RecordStore)

        result = await UpsertResolver(mock_store, policy).upsert({"naturalKey": "FAB-1001"})

        assert result.success is False
        assert result.error_type == "validation_error"
        assert result.error_field == "upc_code"
        assert "cross_link_id_a" in result.error
        assert "cross_link_id_b" in result.error
        mock_store.find.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_dict_payload(self, upsert_resolver):
        result = await upsert_resolver.upsert(["not", "a", "dict"])

        assert result.success is False
        assert result.error_type == "validation_error"

    @pytest.mark.asyncio
    async def test_store_error_passes_detail(self, policy):
        mock_store = AsyncMock(spec=RecordStore)
        mock_store.find.return_value = []
        mock_store.create.return_value = ExternalRecord("lotnumberedinventoryitem")
        mock_store.save.side_effect = StoreError("save", "INVALID_FLD_VALUE: taxschedule")

        result = await UpsertResolver(mock_store, policy).upsert(_payload())

        assert result.success is False
        assert result.error_type == "store_error"
        assert "INVALID_FLD_VALUE: taxschedule" in result.error

    @pytest.mark.asyncio
    async def test_search_failure_does_not_create(self, policy):
        mock_store = AsyncMock(spec=RecordStore)
        mock_store.find.side_effect = StoreError("find", "timeout")

        result = await UpsertResolver(mock_store, policy).upsert(_payload())

        assert result.success is False
        mock_store.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self, policy):
        mock_store = AsyncMock(spec=RecordStore)
        mock_store.find.side_effect = RuntimeError("boom")

        result = await UpsertResolver(mock_store, policy).upsert(_payload())

        assert result.success is False
        assert result.error_type == "internal_error"

    @pytest.mark.asyncio
    async def test_read_back_failure_is_warning(self, policy):
        mock_store = AsyncMock(spec=RecordStore)
        mock_store.find.return_value = []
        mock_store.create.return_value = ExternalRecord("lotnumberedinventoryitem")
        mock_store.save.return_value = "42"
        mock_store.load.side_effect = StoreError("load", "unavailable")

        result = await UpsertResolver(mock_store, policy).upsert(_payload())

        assert result.success is True
        assert result.record_id == "42"
        assert result.persisted_attributes == {}
        assert result.warnings[-1].field == "read_back"
