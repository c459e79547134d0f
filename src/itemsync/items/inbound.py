"""Receiver side of the item change webhook.

Accepts ChangeEvent payloads posted by the outbound notifier of a peer
deployment, checks the shared Bearer secret, and dispatches pricing changes to
a handler. Items carrying the routing flag are owned elsewhere and are skipped
without re-processing.

Exports:
    ChangeEventReceiver: Authenticates, filters and dispatches events.
    ReceiveResult: Outcome of one delivery.
    ReceiverStats: Running counters.
"""

from __future__ import annotations

import hmac
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from src.itemsync.items.schemas import ChangeEvent

logger = structlog.get_logger(__name__)

ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class ReceiveStatus(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"
    UNAUTHORIZED = "unauthorized"
    INVALID = "invalid"


class ReceiveResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: ReceiveStatus
    event_id: str | None = None
    record_id: str | None = None
    reason: str | None = None


class ReceiverStats(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    received: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    rejected: int = 0
    last_processed: datetime | None = None

    @property
    def success_rate(self) -> float:
        return (self.processed / self.received) * 100 if self.received else 0.0


class ChangeEventReceiver:
    """Validates and dispatches incoming change events.

    Args:
        secret: Shared secret expected in ``Authorization: Bearer <secret>``.
            An empty secret rejects every delivery.
        handler: Coroutine invoked with each accepted event.
        supported_event_types: Event types the handler understands.
    """

    def __init__(
        self,
        secret: str,
        handler: ChangeHandler | None = None,
        supported_event_types: tuple[str, ...] = ("item.pricing.updated",),
    ) -> None:
        self._secret = secret
        self._handler = handler
        self._supported = supported_event_types
        self._stats = ReceiverStats()

    @property
    def stats(self) -> ReceiverStats:
        return self._stats.model_copy()

    def reset_stats(self) -> None:
        self._stats = ReceiverStats()

    def authorize(self, authorization: str | None) -> bool:
        if not self._secret or not authorization:
            return False
        return hmac.compare_digest(authorization, f"Bearer {self._secret}")

    async def receive(self, payload: dict[str, Any], authorization: str | None) -> ReceiveResult:
        """Handle one delivery. Handler failures are logged and reported, not raised."""
        if not self.authorize(authorization):
            self._stats.rejected += 1
            logger.warning("receiver.unauthorized")
            return ReceiveResult(status=ReceiveStatus.UNAUTHORIZED, reason="invalid or missing bearer secret")

        self._stats.received += 1

        try:
            event = ChangeEvent.from_payload(payload)
        except PydanticValidationError as exc:
            self._stats.failed += 1
            logger.warning("receiver.invalid_payload", errors=exc.error_count())
            return ReceiveResult(status=ReceiveStatus.INVALID, reason="invalid change event payload")

        log = logger.bind(event_id=event.event_id, record_id=event.record_id, natural_key=event.natural_key)

        if event.event_type not in self._supported:
            self._stats.skipped += 1
            log.info("receiver.skipped", reason="unsupported_event_type", event_type=event.event_type)
            return self._result(ReceiveStatus.SKIPPED, event, "unsupported event type")

        if event.routing_flag:
            self._stats.skipped += 1
            log.info("receiver.skipped", reason="routing_flag_set")
            return self._result(ReceiveStatus.SKIPPED, event, "routing flag set")

        try:
            if self._handler is not None:
                await self._handler(event)
        except Exception as exc:
            self._stats.failed += 1
            log.error("receiver.handler_failed", error=str(exc), exc_info=True)
            return self._result(ReceiveStatus.FAILED, event, str(exc))

        self._stats.processed += 1
        self._stats.last_processed = datetime.now(timezone.utc)
        log.info(
            "receiver.processed",
            changed=[change.name for change in event.changed_attributes],
        )
        return self._result(ReceiveStatus.PROCESSED, event)

    @staticmethod
    def _result(status: ReceiveStatus, event: ChangeEvent, reason: str | None = None) -> ReceiveResult:
        return ReceiveResult(status=status, event_id=event.event_id, record_id=event.record_id, reason=reason)
