"""Unit tests for the versioned reconciliation policy tables."""

from __future__ import annotations

import pytest

from src.itemsync.items.field_mapping import (
    DEFAULT_POLICY,
    ITEM_POLICY_V3,
    ITEM_POLICY_V4,
    POLICIES,
    FieldType,
    get_policy,
)


class TestPolicyRegistry:
    """get_policy() lookup behavior."""

    def test_default_is_latest(self):
        assert get_policy() is DEFAULT_POLICY
        assert DEFAULT_POLICY.version == "v4"

    def test_lookup_by_version(self):
        assert get_policy("v3") is ITEM_POLICY_V3
        assert get_policy("v4") is ITEM_POLICY_V4
        assert set(POLICIES) == {"v3", "v4"}

    def test_unknown_version_raises(self):
        with pytest.raises(KeyError, match="v99"):
            get_policy("v99")


class TestItemPolicyV4:
    """Contents of the current item policy."""

    def test_required_fields(self, policy):
        names = {spec.name for spec in policy.required_fields}
        assert names == {"natural_key", "upc_code", "cross_link_id_a", "cross_link_id_b"}

    def test_key_length_limits(self, policy):
        assert policy.field("natural_key").max_length == 40
        assert policy.field("upc_code").max_length == 20

    def test_cross_link_ids_are_integers(self, policy):
        assert policy.field("cross_link_id_a").type == FieldType.INTEGER
        assert policy.field("cross_link_id_b").type == FieldType.INTEGER

    def test_primary_alias_listed_first(self, policy):
        """Primary camelCase name precedes the legacy aliases."""
        keys = policy.field("cross_link_id_a").accepted_keys
        assert keys[0] == "crossLinkIdA"
        assert keys.index("custitem_opms_product_id") < keys.index("opmsProductId")

    def test_units_type_immutable_with_default(self, policy):
        spec = policy.field("units_type")
        assert spec.immutable_on_update is True
        assert spec.create_default == 3

    def test_natural_key_destination(self, policy):
        assert policy.natural_key_destination == "itemid"
        assert policy.partition_field == "subsidiary"

    def test_line_spec_demotion_off_by_default(self, policy):
        assert policy.line is not None
        assert policy.line.collection == "itemvendor"
        assert policy.line.key_field == "vendor"
        assert policy.line.demote_other_preferred is False

    def test_watch_spec(self, policy):
        assert policy.watch.fields == ["cost", "custitem_f3_rollprice"]
        assert ("price1", "price_1_") in policy.watch.line_fields
        assert "lotnumberedinventoryitem" in policy.watch.record_types

    def test_unknown_field_raises(self, policy):
        with pytest.raises(KeyError):
            policy.field("no_such_field")


class TestItemPolicyV3:
    """The earlier contract differs only as data."""

    def test_no_party_line(self):
        assert ITEM_POLICY_V3.line is None

    def test_no_create_defaults(self):
        assert all(spec.create_default is None for spec in ITEM_POLICY_V3.fields)

    def test_v4_untouched_by_v3_derivation(self):
        assert ITEM_POLICY_V4.field("use_bins").create_default is True
