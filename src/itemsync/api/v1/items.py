"""REST API endpoints for item synchronization.

- POST /api/v1/items/upsert: create-or-update one item from a raw payload.
- POST /api/v1/items/mutations: platform mutation hook, drives the notifier.

The upsert endpoint always answers with an UpsertResult body; the HTTP status
reflects its error_type so callers can branch without parsing the body.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.itemsync.api.deps import get_notifier, get_upsert_resolver
from src.itemsync.items.notifier import OutboundNotifier
from src.itemsync.items.record import ExternalRecord
from src.itemsync.items.schemas import MutationContext, MutationOrigin, MutationType
from src.itemsync.items.upsert import UpsertResolver

router = APIRouter(prefix="/api/v1/items", tags=["items"])

_ERROR_STATUS = {
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "uniqueness_conflict": status.HTTP_409_CONFLICT,
    "store_error": status.HTTP_502_BAD_GATEWAY,
    "internal_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# ── Request Schemas ──────────────────────────────────────────────────────────


class RecordSnapshot(BaseModel):
    """Record state as reported by the platform hook."""

    id: str | int | None = None
    type: str
    fields: dict[str, Any] = Field(default_factory=dict)
    sublists: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)

    def to_record(self) -> ExternalRecord:
        return ExternalRecord.from_dict(self.model_dump())


class MutationRequest(BaseModel):
    """One record mutation reported by the platform."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    origin: MutationOrigin
    operation: MutationType
    new_record: RecordSnapshot
    old_record: RecordSnapshot | None = None
    mutation_id: str | None = None

    def to_context(self) -> MutationContext:
        return MutationContext(
            origin=self.origin,
            operation=self.operation,
            new_record=self.new_record.to_record(),
            old_record=self.old_record.to_record() if self.old_record is not None else None,
            mutation_id=self.mutation_id,
        )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/upsert")
async def upsert_item(
    payload: dict[str, Any] = Body(...),
    partition: str | None = Query(default=None),
    resolver: UpsertResolver = Depends(get_upsert_resolver),
) -> JSONResponse:
    """Create or update one item by natural key."""
    result = await resolver.upsert(payload, partition=partition)
    status_code = status.HTTP_200_OK if result.success else _ERROR_STATUS.get(
        result.error_type or "", status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    return JSONResponse(
        status_code=status_code,
        content=result.model_dump(mode="json", by_alias=True),
    )


@router.post("/mutations")
async def report_mutation(
    body: MutationRequest,
    notifier: OutboundNotifier = Depends(get_notifier),
) -> dict[str, Any]:
    """Run the outbound notifier for one platform mutation."""
    outcome = await notifier.notify(body.to_context())
    return outcome.model_dump(mode="json", by_alias=True)
