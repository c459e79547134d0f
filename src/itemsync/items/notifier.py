"""Change-driven outbound notifier.

Runs after a record mutation and decides whether the origin system must hear
about it. The gates, in order:

1. Classify origin: only human-interactive edits continue. Programmatic writes
   (including this service's own upserts) stop here, which is what keeps the
   two systems from re-triggering each other forever.
2. Filter operation type: edits of supported record types that carry a
   record id.
3. Diff watched attributes numerically; missing or unparsable values count as
   0, so "10" -> "10.00" is not a change.
4. Emit exactly one ChangeEvent carrying every changed attribute.

``OutboundNotifier.notify`` is fire-and-forget: every error is logged and
swallowed, and the mutation that triggered it is never affected.
"""

from __future__ import annotations

import math
from collections import OrderedDict
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
import structlog

from src.itemsync.core.monitoring import record_notification
from src.itemsync.items.attributes import MAX_INT_DIGITS, CoercionError, coerce_bool
from src.itemsync.items.errors import NotificationError
from src.itemsync.items.field_mapping import WatchSpec
from src.itemsync.items.schemas import (
    AttributeChange,
    ChangeEvent,
    MutationContext,
    MutationOrigin,
    MutationType,
    NotificationOutcome,
)

logger = structlog.get_logger(__name__)

_ZERO = Decimal(0)


def numeric_value(value: Any) -> Decimal:
    """Parse a watched value; missing or unparsable values are 0."""
    if value is None or isinstance(value, bool):
        return _ZERO
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return _ZERO
    return number if number.is_finite() else _ZERO


def _as_number(value: Decimal) -> int | float | str:
    """JSON-safe form of a compared value.

    Integral values below 10**18 become ints. Anything else becomes a float,
    or the Decimal's string form when no finite float can represent it.
    """
    if value == value.to_integral_value() and value.adjusted() < MAX_INT_DIGITS:
        return int(value)
    as_float = float(value)
    return as_float if math.isfinite(as_float) else str(value)


# ── Transport ────────────────────────────────────────────────────────────────


class WebhookTransport:
    """POSTs change events to the origin system's webhook.

    One attempt per event; non-2xx responses are returned to the caller to log.

    Args:
        url: Webhook endpoint.
        secret: Shared secret sent as a Bearer token.
        timeout: Request timeout in seconds.
        user_agent: User-Agent header value.
    """

    def __init__(self, url: str, secret: str, timeout: float = 10.0, user_agent: str = "itemsync-webhook/1.0") -> None:
        self._url = url
        self._secret = secret
        self._timeout = timeout
        self._user_agent = user_agent

    @property
    def configured(self) -> bool:
        return bool(self._url and self._secret)

    async def send(self, payload: dict[str, Any]) -> httpx.Response:
        """Deliver one payload.

        Raises:
            NotificationError: If the transport is unconfigured or the request fails.
        """
        if not self.configured:
            raise NotificationError("Webhook URL or secret is not configured")

        headers = {
            "Authorization": f"Bearer {self._secret}",
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.post(self._url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise NotificationError(f"Webhook delivery failed: {exc}") from exc


# ── Notifier ─────────────────────────────────────────────────────────────────


class OutboundNotifier:
    """Emits at most one ChangeEvent per qualifying mutation.

    Args:
        transport: Webhook transport used to deliver events.
        watch: Watched attributes and supported record types.
        dedupe_capacity: How many recent mutation ids to remember for the
            duplicate-trigger guard.
    """

    def __init__(self, transport: WebhookTransport, watch: WatchSpec, dedupe_capacity: int = 1024) -> None:
        self._transport = transport
        self._watch = watch
        self._dedupe_capacity = dedupe_capacity
        self._seen: OrderedDict[str, None] = OrderedDict()

    async def notify(self, context: MutationContext) -> NotificationOutcome:
        """Run the gates for one mutation. Never raises."""
        try:
            outcome = await self._notify(context)
        except Exception as exc:
            logger.error(
                "notifier.error",
                record_id=context.new_record.ref,
                error=str(exc),
                exc_info=True,
            )
            outcome = NotificationOutcome(skip_reason="error", error=str(exc))

        if outcome.emitted:
            label = "emitted" if outcome.error is None else "delivery_failed"
        elif outcome.event is not None:
            label = "delivery_failed"
        else:
            label = outcome.skip_reason or "skipped"
        record_notification(label)
        return outcome

    async def _notify(self, context: MutationContext) -> NotificationOutcome:
        record_id = context.new_record.ref

        if context.origin != MutationOrigin.USER_INTERFACE:
            return self._skip("programmatic_origin", record_id, origin=context.origin.value)
        if context.operation != MutationType.EDIT:
            return self._skip("unsupported_operation", record_id, operation=context.operation.value)
        if context.record_type not in self._watch.record_types:
            return self._skip("unsupported_record_type", record_id, record_type=context.record_type)
        if record_id is None:
            return self._skip("missing_record_id", record_id)
        if context.mutation_id is not None and context.mutation_id in self._seen:
            return self._skip("duplicate_mutation", record_id, mutation_id=context.mutation_id)

        changes = self.diff(context)
        if not changes:
            return self._skip("no_watched_change", record_id)

        if not self._transport.configured:
            logger.error("notifier.webhook_not_configured", record_id=record_id)
            return NotificationOutcome(skip_reason="webhook_not_configured")

        event = ChangeEvent(
            event_type=self._watch.event_type,
            record_id=record_id,
            natural_key=self._natural_key(context),
            changed_attributes=tuple(changes),
            routing_flag=self._routing_flag(context),
            origin=context.origin,
        )
        self._remember(context.mutation_id)

        logger.info(
            "notifier.emitting",
            record_id=event.record_id,
            event_id=event.event_id,
            changed=[change.name for change in changes],
            routing_flag=event.routing_flag,
        )

        try:
            response = await self._transport.send(event.to_payload())
        except NotificationError as exc:
            logger.error("notifier.delivery_failed", event_id=event.event_id, error=str(exc))
            return NotificationOutcome(event=event, error=str(exc))

        if not response.is_success:
            logger.warning(
                "notifier.non_success_response",
                event_id=event.event_id,
                status_code=response.status_code,
                body=response.text[:500],
            )
            return NotificationOutcome(
                emitted=True,
                event=event,
                status_code=response.status_code,
                error=f"Webhook returned HTTP {response.status_code}",
            )

        logger.info("notifier.emitted", event_id=event.event_id, status_code=response.status_code)
        return NotificationOutcome(emitted=True, event=event, status_code=response.status_code)

    def diff(self, context: MutationContext) -> list[AttributeChange]:
        """Compare watched attributes between prior and current state."""
        changes: list[AttributeChange] = []

        for field_id in self._watch.fields:
            old = numeric_value(context.prior_value(field_id))
            new = numeric_value(context.current_value(field_id))
            if old != new:
                changes.append(AttributeChange(name=field_id, old_value=_as_number(old), new_value=_as_number(new)))

        old_record = context.old_record
        for collection, field_id in self._watch.line_fields:
            old_count = old_record.line_count(collection) if old_record is not None else 0
            new_count = context.new_record.line_count(collection)
            for line in range(max(old_count, new_count)):
                old = numeric_value(
                    old_record.get_line_value(collection, field_id, line) if line < old_count else None
                )
                new = numeric_value(
                    context.new_record.get_line_value(collection, field_id, line) if line < new_count else None
                )
                if old != new:
                    changes.append(
                        AttributeChange(
                            name=f"{collection}[{line}].{field_id}",
                            old_value=_as_number(old),
                            new_value=_as_number(new),
                        )
                    )
        return changes

    def _natural_key(self, context: MutationContext) -> str | None:
        value = context.current_value(self._watch.natural_key_field)
        return None if value is None else str(value)

    def _routing_flag(self, context: MutationContext) -> bool:
        if self._watch.routing_flag_field is None:
            return False
        value = context.current_value(self._watch.routing_flag_field)
        if value is None or value == "":
            return False
        try:
            return coerce_bool(value)
        except CoercionError:
            return False

    def _remember(self, mutation_id: str | None) -> None:
        if mutation_id is None:
            return
        self._seen[mutation_id] = None
        while len(self._seen) > self._dedupe_capacity:
            self._seen.popitem(last=False)

    @staticmethod
    def _skip(reason: str, record_id: str | None, **details: Any) -> NotificationOutcome:
        logger.debug("notifier.skip", reason=reason, record_id=record_id, **details)
        return NotificationOutcome(skip_reason=reason)
