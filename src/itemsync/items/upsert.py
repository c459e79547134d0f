"""Idempotent item upsert against a search-then-write store.

The store offers no atomic upsert, so the engine converges by construction:

    canonicalize + validate
        -> resolve natural key
        -> create draft | load existing
        -> reconcile attributes -> reconcile party line
        -> save
        -> read back

A uniqueness conflict on a create save means a concurrent writer (or a
lagging search index) got there first. The engine then re-resolves the key,
loads the winner and applies the same canonical input as an update, exactly
once. Every other store failure is terminal.

``UpsertResolver.upsert`` never raises; failures come back as an UpsertResult.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.itemsync.core.monitoring import record_upsert, upsert_conflict_retries_total
from src.itemsync.items.attributes import AttributeReconciler
from src.itemsync.items.errors import StoreError, UniquenessConflictError, ValidationError
from src.itemsync.items.field_mapping import ReconciliationPolicy
from src.itemsync.items.lines import LineCollectionReconciler
from src.itemsync.items.record import ExternalRecord
from src.itemsync.items.resolver import NaturalKeyResolver
from src.itemsync.items.schemas import (
    AttributeWarning,
    CanonicalAttributes,
    SyncMode,
    UpsertOperation,
    UpsertResult,
)
from src.itemsync.items.store.adapter import RecordStore

logger = structlog.get_logger(__name__)


class UpsertResolver:
    """Create-or-update of one item per call, parameterized by a policy.

    Args:
        store: External record store.
        policy: Versioned reconciliation policy.
        default_partition: Partition used when neither the call nor the
            payload names one.
    """

    def __init__(
        self,
        store: RecordStore,
        policy: ReconciliationPolicy,
        default_partition: str = "2",
    ) -> None:
        self._store = store
        self._policy = policy
        self._default_partition = default_partition
        self._attributes = AttributeReconciler(policy)
        self._resolver = NaturalKeyResolver(store, policy)
        self._lines: LineCollectionReconciler | None = None
        if policy.line is not None:
            self._lines = LineCollectionReconciler(
                preferred_field=policy.line.preferred_field,
                demote_other_preferred=policy.line.demote_other_preferred,
            )

    @property
    def policy(self) -> ReconciliationPolicy:
        return self._policy

    async def upsert(self, payload: dict[str, Any], partition: str | None = None) -> UpsertResult:
        """Create or update the item described by ``payload``.

        Args:
            payload: Raw attribute payload (camelCase, snake_case or legacy keys).
            partition: Partition override; else ``payload["partition"]``, else
                the configured default.

        Returns:
            UpsertResult. ``success=False`` carries ``error`` and ``error_type``.
        """
        if not isinstance(payload, dict):
            return self._failure(ValidationError("payload", "must be an object"), "validation_error")

        # Start: canonicalize once, reject before touching the store.
        canonical = self._attributes.canonicalize(payload)
        try:
            self._attributes.validate_required(canonical)
        except ValidationError as exc:
            logger.warning("upsert.validation_failed", field=exc.field, problems=exc.problems)
            return self._failure(exc, "validation_error", canonical=canonical)

        natural_key = str(canonical.get(self._policy.natural_key))
        scope = str(partition or payload.get("partition") or self._default_partition)
        log = logger.bind(natural_key=natural_key, partition=scope, policy=self._policy.version)

        try:
            ref, operation, retried = await self._write(canonical, natural_key, scope)
        except UniquenessConflictError as exc:
            log.error("upsert.conflict_unresolved", error=exc.detail)
            return self._failure(exc, "uniqueness_conflict", canonical=canonical, natural_key=natural_key)
        except StoreError as exc:
            log.error("upsert.store_error", operation=exc.operation, error=exc.detail)
            return self._failure(exc, "store_error", canonical=canonical, natural_key=natural_key)
        except Exception as exc:
            log.exception("upsert.unexpected_error")
            return self._failure(exc, "internal_error", canonical=canonical, natural_key=natural_key)

        warnings = list(canonical.warnings)
        persisted = await self._read_back(ref, warnings)

        record_upsert(operation.value, success=True)
        log.info(
            f"upsert.{operation.value}",
            record_id=ref,
            conflict_retried=retried,
            warnings=len(warnings),
        )
        return UpsertResult(
            success=True,
            record_id=ref,
            operation=operation,
            natural_key=natural_key,
            persisted_attributes=persisted,
            warnings=warnings,
            conflict_retried=retried,
        )

    # ── State machine ──────────────────────────────────────────────────────

    async def _write(
        self, canonical: CanonicalAttributes, natural_key: str, partition: str
    ) -> tuple[str, UpsertOperation, bool]:
        ref = await self._resolver.resolve(partition, natural_key)
        if ref is not None:
            return await self._update(ref, canonical), UpsertOperation.UPDATED, False

        draft = await self._store.create(self._policy.record_type)
        self._apply(draft, canonical, SyncMode.CREATE, partition)
        try:
            return await self._store.save(draft), UpsertOperation.CREATED, False
        except UniquenessConflictError:
            upsert_conflict_retries_total.inc()
            logger.warning("upsert.conflict_retry", natural_key=natural_key, partition=partition)

        winner = await self._resolver.resolve(partition, natural_key)
        if winner is None:
            logger.error("upsert.conflict_winner_missing", natural_key=natural_key, partition=partition)
            raise UniquenessConflictError(
                natural_key,
                f"Uniqueness error for '{natural_key}' but no existing record was found",
            )
        return await self._update(winner, canonical), UpsertOperation.UPDATED, True

    async def _update(self, ref: str, canonical: CanonicalAttributes) -> str:
        record = await self._store.load(self._policy.record_type, ref)
        self._apply(record, canonical, SyncMode.UPDATE)
        return await self._store.save(record)

    def _apply(
        self,
        record: ExternalRecord,
        canonical: CanonicalAttributes,
        mode: SyncMode,
        partition: str | None = None,
    ) -> None:
        self._attributes.reconcile(record, canonical, mode)
        if mode == SyncMode.CREATE and partition is not None:
            record.set_value(self._policy.partition_field, partition)

        line_spec = self._policy.line
        if self._lines is not None and line_spec is not None and canonical.line is not None:
            self._lines.reconcile_line(
                record,
                line_spec.collection,
                line_spec.key_field,
                canonical.line.key_value,
                dict(canonical.line.fields),
            )

    async def _read_back(self, ref: str, warnings: list[AttributeWarning]) -> dict[str, Any]:
        """Reload the saved record and report what the store actually holds.

        The save already succeeded, so a failed reload is reported as a
        warning rather than turning the result into a failure.
        """
        try:
            record = await self._store.load(self._policy.record_type, ref)
        except StoreError as exc:
            logger.warning("upsert.read_back_failed", record_id=ref, error=exc.detail)
            warnings.append(AttributeWarning(field="read_back", reason=exc.detail))
            return {}

        persisted = {
            field_id: record.get_value(field_id)
            for field_id in self._policy.read_back
            if record.has_value(field_id)
        }
        line_spec = self._policy.line
        if line_spec is not None:
            lines = record.get_lines(line_spec.collection)
            persisted["line_count"] = len(lines)
            if lines:
                persisted["first_line"] = lines[0]
        return persisted

    # ── Results ────────────────────────────────────────────────────────────

    def _failure(
        self,
        exc: Exception,
        error_type: str,
        canonical: CanonicalAttributes | None = None,
        natural_key: str | None = None,
    ) -> UpsertResult:
        record_upsert(None, success=False)
        return UpsertResult(
            success=False,
            natural_key=natural_key,
            warnings=list(canonical.warnings) if canonical is not None else [],
            error=str(exc),
            error_type=error_type,
            error_field=getattr(exc, "field", None),
        )
