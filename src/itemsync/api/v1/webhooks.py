"""Inbound webhook endpoints for item change events."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Header, status
from fastapi.responses import JSONResponse

from src.itemsync.api.deps import get_receiver
from src.itemsync.items.inbound import ChangeEventReceiver, ReceiveStatus

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

_STATUS_CODES = {
    ReceiveStatus.PROCESSED: status.HTTP_200_OK,
    ReceiveStatus.SKIPPED: status.HTTP_200_OK,
    ReceiveStatus.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ReceiveStatus.INVALID: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ReceiveStatus.FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@router.post("/item-changes")
async def receive_item_change(
    payload: Any = Body(...),
    authorization: str | None = Header(default=None),
    receiver: ChangeEventReceiver = Depends(get_receiver),
) -> JSONResponse:
    """Accept one change event posted by a peer's outbound notifier."""
    result = await receiver.receive(payload, authorization)
    return JSONResponse(
        status_code=_STATUS_CODES[result.status],
        content=result.model_dump(mode="json", by_alias=True),
    )


@router.get("/item-changes/stats")
async def receiver_stats(receiver: ChangeEventReceiver = Depends(get_receiver)) -> dict[str, Any]:
    """Running counters of the change-event receiver."""
    stats = receiver.stats
    return {**stats.model_dump(mode="json", by_alias=True), "successRate": stats.success_rate}
