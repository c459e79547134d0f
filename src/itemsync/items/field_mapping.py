"""Reconciliation policy tables for item sync.

Defines:
- FieldSpec / LineSpec / WatchSpec: one row of the canonicalization table,
  the party-line layout, and the notifier's watched attributes.
- ReconciliationPolicy: a versioned bundle of the above. The upsert engine is
  parameterized by a policy, so behavioral differences between payload
  contract versions live here as data rather than in code.
- POLICIES / get_policy(): registry of known policy versions.

Alias order matters: the first alias of a FieldSpec is the primary name and
wins over every later (legacy) alias when several are present in one payload.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from src.itemsync.items.schemas import AttributeValue


class FieldType(str, Enum):
    """Value type of a canonical attribute."""

    STRING = "string"
    TEXT = "text"  # raw text blob (JSON, multi-line descriptions)
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"


class FieldSpec(BaseModel):
    """One canonical attribute and how it reaches the destination record."""

    name: str
    destination: str
    type: FieldType = FieldType.STRING
    aliases: list[str] = Field(default_factory=list)
    required: bool = False
    immutable_on_update: bool = False
    create_default: AttributeValue | None = None
    max_length: int | None = None

    @property
    def accepted_keys(self) -> list[str]:
        """Payload keys in precedence order (primary first)."""
        keys = list(self.aliases)
        if self.name not in keys:
            keys.append(self.name)
        return keys


class LineSpec(BaseModel):
    """Layout of the associated-party sub-collection."""

    collection: str
    key_field: str
    key_aliases: list[str]
    payload: list[FieldSpec] = Field(default_factory=list)
    preferred_field: str
    demote_other_preferred: bool = False


class WatchSpec(BaseModel):
    """Attributes whose change justifies an outbound event."""

    fields: list[str] = Field(default_factory=list)
    # (collection, field) pairs compared line by line
    line_fields: list[tuple[str, str]] = Field(default_factory=list)
    record_types: list[str] = Field(default_factory=list)
    routing_flag_field: str | None = None
    natural_key_field: str = "itemid"
    event_type: str = "item.pricing.updated"


class ReconciliationPolicy(BaseModel):
    """Versioned, table-driven reconciliation behavior for one entity type."""

    version: str
    record_type: str
    natural_key: str = "natural_key"
    partition_field: str
    fields: list[FieldSpec]
    line: LineSpec | None = None
    constants_on_create: dict[str, Any] = Field(default_factory=dict)
    read_back: list[str] = Field(default_factory=list)
    watch: WatchSpec = Field(default_factory=WatchSpec)

    def field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        msg = f"Policy {self.version} has no field '{name}'"
        raise KeyError(msg)

    @property
    def required_fields(self) -> list[FieldSpec]:
        return [spec for spec in self.fields if spec.required]

    @property
    def natural_key_destination(self) -> str:
        return self.field(self.natural_key).destination


# ── Item Policy v4 ─────────────────────────────────────────────────────────
# Lot-numbered inventory items, with native vendor line and create defaults.

_ITEM_FIELDS_V4: list[FieldSpec] = [
    # Required linking attributes
    FieldSpec(
        name="natural_key",
        destination="itemid",
        aliases=["naturalKey", "natural_key", "itemId"],
        required=True,
        max_length=40,
    ),
    FieldSpec(
        name="upc_code",
        destination="upccode",
        aliases=["upcCode", "upc_code"],
        required=True,
        max_length=20,
    ),
    FieldSpec(
        name="cross_link_id_a",
        destination="custitem_opms_prod_id",
        type=FieldType.INTEGER,
        aliases=[
            "crossLinkIdA",
            "cross_link_id_a",
            "custitem_opms_product_id",
            "custitem_opms_prod_id",
            "opmsProductId",
        ],
        required=True,
    ),
    FieldSpec(
        name="cross_link_id_b",
        destination="custitem_opms_item_id",
        type=FieldType.INTEGER,
        aliases=["crossLinkIdB", "cross_link_id_b", "custitem_opms_item_id", "opmsItemId"],
        required=True,
    ),
    # Descriptive attributes
    FieldSpec(name="display_name", destination="displayname", aliases=["displayName"]),
    FieldSpec(name="description", destination="description", type=FieldType.TEXT, max_length=4000),
    FieldSpec(
        name="purchase_description",
        destination="purchasedescription",
        type=FieldType.TEXT,
        aliases=["purchaseDescription", "purchasedescription"],
        max_length=4000,
    ),
    FieldSpec(
        name="sales_description",
        destination="salesdescription",
        type=FieldType.TEXT,
        aliases=["salesDescription", "salesdescription"],
        max_length=4000,
    ),
    FieldSpec(
        name="tax_schedule_id",
        destination="taxschedule",
        type=FieldType.INTEGER,
        aliases=["taxScheduleId"],
    ),
    FieldSpec(
        name="vertical_repeat",
        destination="custitem_vertical_repeat",
        aliases=["verticalRepeat", "vrepeat", "custitem_vertical_repeat"],
    ),
    FieldSpec(
        name="horizontal_repeat",
        destination="custitem_horizontal_repeat",
        aliases=["horizontalRepeat", "hrepeat", "custitem_horizontal_repeat"],
    ),
    FieldSpec(
        name="prop65_compliance",
        destination="custitem_prop65_compliance",
        aliases=["prop65Compliance", "custitem_prop65_compliance"],
    ),
    FieldSpec(
        name="parent_product_name",
        destination="custitem_opms_parent_product_name",
        aliases=["parentProductName", "custitem_opms_parent_product_name"],
    ),
    FieldSpec(
        name="vendor_color",
        destination="custitem_opms_vendor_color",
        aliases=["vendorColor", "custitem_opms_vendor_color"],
    ),
    FieldSpec(
        name="front_content",
        destination="custitem_opms_front_content",
        type=FieldType.TEXT,
        aliases=["frontContentJson", "custitem_opms_front_content"],
    ),
    FieldSpec(
        name="is_repeat",
        destination="custitem_is_repeat",
        type=FieldType.BOOLEAN,
        aliases=["isRepeat", "custitem_is_repeat", "custitem_opms_is_repeat"],
    ),
    FieldSpec(
        name="routing_flag",
        destination="custitemf3_lisa_item",
        type=FieldType.BOOLEAN,
        aliases=["routingFlag", "custitemf3_lisa_item"],
    ),
    # Pricing
    FieldSpec(name="cost", destination="cost", type=FieldType.DECIMAL),
    FieldSpec(
        name="roll_price",
        destination="custitem_f3_rollprice",
        type=FieldType.DECIMAL,
        aliases=["rollPrice", "custitem_f3_rollprice"],
    ),
    # Lot-numbered inventory configuration
    FieldSpec(
        name="use_bins",
        destination="usebins",
        type=FieldType.BOOLEAN,
        aliases=["useBins", "usebins"],
        create_default=True,
    ),
    FieldSpec(
        name="match_bill_to_receipt",
        destination="matchbilltoreceipt",
        type=FieldType.BOOLEAN,
        aliases=["matchBillToReceipt", "matchbilltoreceipt"],
        create_default=True,
    ),
    FieldSpec(
        name="auto_numbered",
        destination="custitem_aln_1_auto_numbered",
        type=FieldType.BOOLEAN,
        aliases=["autoNumbered", "custitem_aln_1_auto_numbered"],
        create_default=True,
    ),
    FieldSpec(
        name="units_type",
        destination="unitstype",
        type=FieldType.INTEGER,
        aliases=["unitsType", "unitstype"],
        immutable_on_update=True,
        create_default=3,  # Length
    ),
    FieldSpec(
        name="number_format",
        destination="custitem_aln_2_number_format",
        type=FieldType.INTEGER,
        aliases=["numberFormat", "custitem_aln_2_number_format"],
        create_default=1,
    ),
    FieldSpec(
        name="initial_sequence",
        destination="custitem_aln_3_initial_sequence",
        type=FieldType.INTEGER,
        aliases=["initialSequence", "custitem_aln_3_initial_sequence"],
        create_default=1,
    ),
]

_VENDOR_LINE = LineSpec(
    collection="itemvendor",
    key_field="vendor",
    key_aliases=["partyId", "party_id", "vendor"],
    payload=[
        FieldSpec(
            name="party_code",
            destination="vendorcode",
            aliases=["partyCode", "party_code", "vendorcode", "vendorCode"],
        ),
    ],
    preferred_field="preferredvendor",
)

_PRICING_WATCH = WatchSpec(
    fields=["cost", "custitem_f3_rollprice"],
    line_fields=[("price1", "price_1_")],
    record_types=["inventoryitem", "lotnumberedinventoryitem"],
    routing_flag_field="custitemf3_lisa_item",
    natural_key_field="itemid",
    event_type="item.pricing.updated",
)

ITEM_POLICY_V4 = ReconciliationPolicy(
    version="v4",
    record_type="lotnumberedinventoryitem",
    partition_field="subsidiary",
    fields=_ITEM_FIELDS_V4,
    line=_VENDOR_LINE,
    constants_on_create={
        "isserialitem": False,
        "islotitem": True,
        "lotnumberformat": "BOLT-{SEQNUM}",
    },
    read_back=[
        "itemid",
        "upccode",
        "custitem_opms_prod_id",
        "custitem_opms_item_id",
        "displayname",
        "subsidiary",
    ],
    watch=_PRICING_WATCH,
)

# ── Item Policy v3 ─────────────────────────────────────────────────────────
# Earlier contract: no vendor line, no lot-numbering defaults.

ITEM_POLICY_V3 = ITEM_POLICY_V4.model_copy(
    update={
        "version": "v3",
        "line": None,
        "fields": [
            spec.model_copy(update={"create_default": None})
            for spec in _ITEM_FIELDS_V4
        ],
        "constants_on_create": {"isserialitem": False, "islotitem": True},
    }
)

POLICIES: dict[str, ReconciliationPolicy] = {
    ITEM_POLICY_V3.version: ITEM_POLICY_V3,
    ITEM_POLICY_V4.version: ITEM_POLICY_V4,
}

DEFAULT_POLICY = ITEM_POLICY_V4


def get_policy(version: str | None = None) -> ReconciliationPolicy:
    """Look up a reconciliation policy by version (default: latest).

    Raises:
        KeyError: If the version is unknown.
    """
    if version is None:
        return DEFAULT_POLICY
    try:
        return POLICIES[version]
    except KeyError:
        msg = f"Unknown reconciliation policy version '{version}' (known: {sorted(POLICIES)})"
        raise KeyError(msg) from None
