"""Item synchronization engine.

Keeps one external record per item natural key, however many times and
however concurrently the same item is pushed, and tells the origin system
about human price edits without echoing its own writes back to it.

Exports:
    UpsertResolver: Idempotent create-or-update with conflict retry.
    NaturalKeyResolver: Partition-scoped natural-key lookup.
    AttributeReconciler: Payload canonicalization and attribute writes.
    LineCollectionReconciler: Merge-by-key of associated-party lines.
    OutboundNotifier: Origin-gated, value-diffed change events.
    ChangeEventReceiver: Receiver side of the change webhook.
    ReconciliationPolicy / get_policy: Versioned policy tables.
"""

from __future__ import annotations

from src.itemsync.items.attributes import AttributeReconciler
from src.itemsync.items.field_mapping import (
    DEFAULT_POLICY,
    POLICIES,
    ReconciliationPolicy,
    get_policy,
)
from src.itemsync.items.inbound import ChangeEventReceiver
from src.itemsync.items.lines import LineCollectionReconciler
from src.itemsync.items.notifier import OutboundNotifier, WebhookTransport
from src.itemsync.items.resolver import NaturalKeyResolver
from src.itemsync.items.upsert import UpsertResolver

__all__ = [
    "AttributeReconciler",
    "ChangeEventReceiver",
    "DEFAULT_POLICY",
    "LineCollectionReconciler",
    "NaturalKeyResolver",
    "OutboundNotifier",
    "POLICIES",
    "ReconciliationPolicy",
    "UpsertResolver",
    "WebhookTransport",
    "get_policy",
]
