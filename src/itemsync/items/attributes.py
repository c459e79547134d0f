"""Attribute canonicalization and reconciliation.

The raw upsert payload is canonicalized exactly once at the boundary:
alias precedence is resolved, values are coerced to their declared types, and
recoverable failures are collected as AttributeWarning entries. Everything
downstream works with CanonicalAttributes only.

Write rules applied by ``AttributeReconciler.reconcile``:
- Set-if-present: ``None`` and ``""`` are absent, ``False`` and ``0`` are not.
- Immutable-on-update fields are written only when creating.
- Create defaults fill absent fields only when creating.
"""

from __future__ import annotations

import json
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog

from src.itemsync.items.errors import ValidationError
from src.itemsync.items.field_mapping import FieldSpec, FieldType, ReconciliationPolicy
from src.itemsync.items.record import ExternalRecord
from src.itemsync.items.schemas import (
    AttributeValue,
    AttributeWarning,
    CanonicalAttributes,
    LinePayload,
    SyncMode,
)

logger = structlog.get_logger(__name__)

TRUE_STRINGS = frozenset({"true", "1", "y", "yes"})
FALSE_STRINGS = frozenset({"false", "0", "n", "no"})

# Integer attributes hold at most 18 digits. The bound is checked on the parsed
# Decimal so exponent forms like "1e5000" never reach int().
MAX_INT_DIGITS = 18


class CoercionError(ValueError):
    """A present value could not be converted to its declared type."""


def is_absent(value: Any) -> bool:
    """True for values that set-if-present treats as not supplied."""
    return value is None or (isinstance(value, str) and value == "")


# ── Coercion ───────────────────────────────────────────────────────────────


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
    raise CoercionError(f"not a boolean: {value!r}")


def coerce_int(value: Any) -> int:
    if isinstance(value, bool):
        raise CoercionError(f"not an integer: {value!r}")
    if isinstance(value, int):
        if abs(value) >= 10**MAX_INT_DIGITS:
            raise CoercionError("integer out of range")
        return value
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise CoercionError(f"not an integer: {value!r}") from None
    if not number.is_finite() or number != number.to_integral_value():
        raise CoercionError(f"not an integer: {value!r}")
    if number.adjusted() >= MAX_INT_DIGITS:
        raise CoercionError(f"integer out of range: {value!r}")
    return int(number)


def coerce_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise CoercionError(f"not a number: {value!r}")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise CoercionError(f"not a number: {value!r}") from None
    if not number.is_finite():
        raise CoercionError(f"not a number: {value!r}")
    return number


def coerce_string(value: Any) -> str:
    if isinstance(value, bool) or isinstance(value, (dict, list)):
        raise CoercionError(f"not a string: {value!r}")
    return str(value).strip()


def coerce_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, bool):
        raise CoercionError(f"not text: {value!r}")
    return str(value)


_COERCERS = {
    FieldType.STRING: coerce_string,
    FieldType.TEXT: coerce_text,
    FieldType.INTEGER: coerce_int,
    FieldType.DECIMAL: coerce_decimal,
    FieldType.BOOLEAN: coerce_bool,
}


def coerce_value(spec: FieldSpec, value: Any) -> AttributeValue:
    """Coerce a raw payload value for ``spec``.

    Raises:
        CoercionError: If the value has the wrong type or exceeds max_length.
    """
    coerced = _COERCERS[spec.type](value)
    if spec.max_length is not None and isinstance(coerced, str) and len(coerced) > spec.max_length:
        raise CoercionError(f"exceeds {spec.max_length} characters")
    return coerced


def _pick_alias(payload: dict[str, Any], keys: list[str], name: str) -> tuple[str, Any] | None:
    """Return the first present (key, value) in precedence order."""
    present = [key for key in keys if key in payload and not is_absent(payload[key])]
    if not present:
        return None
    chosen = present[0]
    if len(present) > 1:
        logger.info(
            "attributes.alias_precedence",
            attribute=name,
            chosen=chosen,
            ignored=present[1:],
        )
    return chosen, payload[chosen]


# ── Reconciler ─────────────────────────────────────────────────────────────


class AttributeReconciler:
    """Canonicalizes upsert payloads and applies them to record drafts.

    Args:
        policy: Reconciliation policy supplying the field table.
    """

    def __init__(self, policy: ReconciliationPolicy) -> None:
        self._policy = policy

    @property
    def policy(self) -> ReconciliationPolicy:
        return self._policy

    def canonicalize(self, payload: dict[str, Any]) -> CanonicalAttributes:
        """Resolve aliases and coerce types for every known attribute.

        Unknown payload keys are ignored. Coercion failures become warnings;
        failures on required attributes are also recorded in
        ``invalid_required`` so validation can report the precise reason.
        """
        canonical = CanonicalAttributes()

        for spec in self._policy.fields:
            picked = _pick_alias(payload, spec.accepted_keys, spec.name)
            if picked is None:
                continue
            key, raw = picked
            try:
                value = coerce_value(spec, raw)
            except CoercionError as exc:
                self._warn(canonical, spec.name, str(exc), raw)
                if spec.required:
                    canonical.invalid_required[spec.name] = str(exc)
                continue
            if is_absent(value):
                continue
            canonical.values[spec.name] = value
            canonical.sources[spec.name] = key

        canonical.line = self._canonicalize_line(payload, canonical)
        return canonical

    def _canonicalize_line(
        self, payload: dict[str, Any], canonical: CanonicalAttributes
    ) -> LinePayload | None:
        line_spec = self._policy.line
        if line_spec is None:
            return None

        fields: dict[str, AttributeValue] = {}
        for spec in line_spec.payload:
            picked = _pick_alias(payload, spec.accepted_keys, spec.name)
            if picked is None:
                continue
            _, raw = picked
            try:
                fields[spec.destination] = coerce_value(spec, raw)
            except CoercionError as exc:
                self._warn(canonical, spec.name, str(exc), raw)

        picked_key = _pick_alias(payload, line_spec.key_aliases, line_spec.key_field)
        if picked_key is None:
            if fields:
                self._warn(canonical, line_spec.key_field, "party line ignored: no party id", None)
            return None

        key_value = str(picked_key[1]).strip()
        if not key_value:
            return None
        return LinePayload(key_value=key_value, fields=fields)

    @staticmethod
    def _warn(canonical: CanonicalAttributes, name: str, reason: str, raw: Any) -> None:
        logger.warning("attributes.coercion_failed", attribute=name, reason=reason)
        canonical.warnings.append(
            AttributeWarning(
                field=name,
                reason=reason,
                value=None if raw is None else str(raw),
            )
        )

    def validate_required(self, canonical: CanonicalAttributes) -> None:
        """Check required attributes before any store call.

        Raises:
            ValidationError: Naming every missing or malformed required
                attribute; ``field`` is the first in policy order.
        """
        problems: dict[str, str] = {}
        for spec in self._policy.required_fields:
            if spec.name in canonical.invalid_required:
                problems[spec.name] = canonical.invalid_required[spec.name]
            elif not canonical.has(spec.name):
                problems[spec.name] = "is required"
            elif spec.type == FieldType.INTEGER and canonical.get(spec.name) <= 0:
                problems[spec.name] = "must be a positive integer"

        if problems:
            field, reason = next(iter(problems.items()))
            raise ValidationError(field, reason, problems=problems)

    def reconcile(
        self,
        target: ExternalRecord,
        canonical: CanonicalAttributes,
        mode: SyncMode,
    ) -> list[str]:
        """Apply canonical attributes to ``target``. Only ``target`` is mutated.

        Returns:
            Destination field ids that were written.
        """
        written: list[str] = []

        for spec in self._policy.fields:
            if spec.immutable_on_update and mode == SyncMode.UPDATE:
                if canonical.has(spec.name):
                    logger.info(
                        "attributes.immutable_skipped",
                        attribute=spec.name,
                        record_id=target.ref,
                    )
                continue

            if canonical.has(spec.name):
                target.set_value(spec.destination, canonical.get(spec.name))
                written.append(spec.destination)
            elif mode == SyncMode.CREATE and spec.create_default is not None:
                target.set_value(spec.destination, spec.create_default)
                written.append(spec.destination)
                logger.debug("attributes.default_applied", attribute=spec.name)

        if mode == SyncMode.CREATE:
            for field_id, value in self._policy.constants_on_create.items():
                target.set_value(field_id, value)
                written.append(field_id)

        logger.info(
            "attributes.reconciled",
            mode=mode.value,
            record_id=target.ref,
            written=len(written),
            warnings=len(canonical.warnings),
        )
        return written
