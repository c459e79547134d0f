"""Pydantic schemas for item synchronization.

Defines the structured types flowing through the engine:
- Enums: SyncMode, UpsertOperation, MutationOrigin, MutationType
- Canonicalization: AttributeWarning, LinePayload, CanonicalAttributes
- Upsert boundary: UpsertResult
- Outbound notification: MutationContext, AttributeChange, ChangeEvent,
  NotificationOutcome

Boundary models (UpsertResult, ChangeEvent) serialize with camelCase aliases
because that is what the calling system exchanges on the wire.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.itemsync.items.record import ExternalRecord

AttributeValue = Union[str, int, bool, Decimal]


# ── Enums ───────────────────────────────────────────────────────────────────


class SyncMode(str, Enum):
    """Whether the target record is being created or updated."""

    CREATE = "create"
    UPDATE = "update"


class UpsertOperation(str, Enum):
    """Operation tag reported back to the caller."""

    CREATED = "created"
    UPDATED = "updated"


class MutationOrigin(str, Enum):
    """What kind of actor produced a record mutation.

    Only USER_INTERFACE is a human-interactive edit; everything else is
    programmatic, including this service's own writes (RESTLET).
    """

    USER_INTERFACE = "user_interface"
    RESTLET = "restlet"
    WEB_SERVICES = "web_services"
    CSV_IMPORT = "csv_import"
    SCHEDULED = "scheduled"
    WORKFLOW = "workflow"


class MutationType(str, Enum):
    """Kind of mutation reported by the platform hook."""

    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"


# ── Canonicalization ────────────────────────────────────────────────────────


class AttributeWarning(BaseModel):
    """A recoverable per-attribute failure. The attribute was skipped."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    field: str
    reason: str
    value: str | None = None


class LinePayload(BaseModel):
    """One associated-party line extracted from an upsert payload."""

    key_value: str
    fields: dict[str, AttributeValue] = Field(default_factory=dict)


class CanonicalAttributes(BaseModel):
    """Typed attribute set produced once at the boundary.

    Attributes:
        values: Coerced values keyed by canonical attribute name. Only
            attributes that were present, non-empty and parsable appear here.
        sources: The payload key each value was taken from.
        warnings: Per-attribute failures collected during canonicalization.
        invalid_required: Required attributes that were present but unparsable,
            with the reason; consulted by required-attribute validation.
        line: Optional party line carried by the payload.
    """

    values: dict[str, AttributeValue] = Field(default_factory=dict)
    sources: dict[str, str] = Field(default_factory=dict)
    warnings: list[AttributeWarning] = Field(default_factory=list)
    invalid_required: dict[str, str] = Field(default_factory=dict)
    line: LinePayload | None = None

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def has(self, name: str) -> bool:
        return name in self.values


# ── Upsert Boundary ─────────────────────────────────────────────────────────


class UpsertResult(BaseModel):
    """Structured verdict returned for every upsert call.

    Failures are reported here rather than raised across the public boundary.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    record_id: str | None = None
    operation: UpsertOperation | None = None
    natural_key: str | None = None
    persisted_attributes: dict[str, Any] = Field(default_factory=dict)
    warnings: list[AttributeWarning] = Field(default_factory=list)
    conflict_retried: bool = False
    error: str | None = None
    error_type: str | None = None
    error_field: str | None = None


# ── Outbound Notification ───────────────────────────────────────────────────


class MutationContext(BaseModel):
    """Everything the notifier needs about one mutation, passed explicitly.

    Replaces reading the platform's ambient "current execution context" so
    the notifier can be driven from tests and from the HTTP hook alike.

    Attributes:
        origin: Classified origin of the mutation.
        operation: Create/edit/delete.
        new_record: Record state after the mutation.
        old_record: Record state before the mutation (None for creates).
        mutation_id: Platform identifier of the mutation, if supplied; used to
            suppress duplicate triggers.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    origin: MutationOrigin
    operation: MutationType
    new_record: ExternalRecord
    old_record: ExternalRecord | None = None
    mutation_id: str | None = None

    @property
    def record_type(self) -> str:
        return self.new_record.record_type

    def current_value(self, field_id: str) -> Any:
        return self.new_record.get_value(field_id)

    def prior_value(self, field_id: str) -> Any:
        if self.old_record is None:
            return None
        return self.old_record.get_value(field_id)


class AttributeChange(BaseModel):
    """Old/new pair for one watched attribute that changed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str
    old_value: Any = None
    new_value: Any = None


class ChangeEvent(BaseModel):
    """Immutable outbound change event; one per qualifying mutation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str = "item.pricing.updated"
    record_id: str
    natural_key: str | None = None
    changed_attributes: tuple[AttributeChange, ...]
    routing_flag: bool = False
    origin: MutationOrigin = MutationOrigin.USER_INTERFACE
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON body delivered to the webhook."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ChangeEvent:
        return cls.model_validate(payload)


class NotificationOutcome(BaseModel):
    """What the notifier did with one mutation."""

    emitted: bool = False
    skip_reason: str | None = None
    event: ChangeEvent | None = None
    status_code: int | None = None
    error: str | None = None
