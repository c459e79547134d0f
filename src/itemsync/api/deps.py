"""FastAPI dependency injection for the sync engine components.

Components are built once in the application lifespan and stored on
``app.state``; these helpers fetch them per request and answer 503 when a
component was not initialized.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.itemsync.items.inbound import ChangeEventReceiver
from src.itemsync.items.notifier import OutboundNotifier
from src.itemsync.items.store.adapter import RecordStore
from src.itemsync.items.upsert import UpsertResolver


def _from_state(request: Request, name: str, label: str) -> Any:
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return component


def get_store(request: Request) -> RecordStore:
    """Retrieve the RecordStore from app.state, 503 if not available."""
    return _from_state(request, "store", "Record store")


def get_upsert_resolver(request: Request) -> UpsertResolver:
    """Retrieve the UpsertResolver from app.state, 503 if not available."""
    return _from_state(request, "upsert_resolver", "Upsert engine")


def get_notifier(request: Request) -> OutboundNotifier:
    """Retrieve the OutboundNotifier from app.state, 503 if not available."""
    return _from_state(request, "notifier", "Outbound notifier")


def get_receiver(request: Request) -> ChangeEventReceiver:
    """Retrieve the ChangeEventReceiver from app.state, 503 if not available."""
    return _from_state(request, "receiver", "Change event receiver")
