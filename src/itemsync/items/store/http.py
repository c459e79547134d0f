"""HTTP record store adapter -- reaches the external store through its REST surface.

Uses httpx.AsyncClient created per call with an explicit timeout. Requests are
not retried here: the only automatic retry in the sync path is the upsert
engine's single retry-as-update on a uniqueness conflict.

Status mapping:
- 404 -> RecordNotFoundError
- 409 -> UniquenessConflictError
- any other non-2xx, or a transport failure -> StoreError
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from pydantic_core import to_jsonable_python

from src.itemsync.items.errors import RecordNotFoundError, StoreError, UniquenessConflictError
from src.itemsync.items.record import ExternalRecord
from src.itemsync.items.store.adapter import RecordStore

logger = structlog.get_logger(__name__)


class HttpRecordStore(RecordStore):
    """RecordStore backed by the external store's REST API.

    Args:
        base_url: Root URL of the store API (no trailing slash needed).
        token: Bearer token sent with every request.
        timeout: Per-request timeout in seconds.
        unique_field: Field holding the natural key, echoed in conflict errors.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        unique_field: str = "itemid",
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._unique_field = unique_field
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client for one call."""
        return httpx.AsyncClient(headers=self._headers, timeout=self._timeout)

    async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self._base_url}{path}"
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("http_store.transport_error", operation=operation, url=url, error=str(exc))
            raise StoreError(operation, str(exc)) from exc
        return response

    @staticmethod
    def _detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            return str(body.get("detail") or body.get("message") or body)
        return str(body)

    def _raise_for_status(
        self,
        operation: str,
        response: httpx.Response,
        ref: str | None = None,
        natural_key: Any = None,
    ) -> None:
        if response.is_success:
            return
        detail = self._detail(response)
        logger.warning(
            "http_store.error_response",
            operation=operation,
            status_code=response.status_code,
            detail=detail,
        )
        if response.status_code == 404 and ref is not None:
            raise RecordNotFoundError(ref)
        if response.status_code == 409:
            raise UniquenessConflictError(str(natural_key), detail)
        raise StoreError(operation, detail)

    # ── RecordStore ────────────────────────────────────────────────────────

    async def find(self, record_type: str, filters: dict[str, str]) -> list[str]:
        response = await self._request("find", "GET", f"/records/{record_type}", params=filters)
        self._raise_for_status("find", response)
        data = response.json()
        return [str(ref) for ref in data.get("ids", [])]

    async def create(self, record_type: str) -> ExternalRecord:
        return ExternalRecord(record_type=record_type)

    async def load(self, record_type: str, ref: str) -> ExternalRecord:
        response = await self._request("load", "GET", f"/records/{record_type}/{ref}")
        self._raise_for_status("load", response, ref=ref)
        record = ExternalRecord.from_dict(response.json())
        record.record_type = record.record_type or record_type
        return record

    async def save(self, record: ExternalRecord) -> str:
        body = to_jsonable_python(record.to_dict())
        natural_key = record.get_value(self._unique_field)
        if record.is_new:
            response = await self._request("save", "POST", f"/records/{record.record_type}", json=body)
        else:
            response = await self._request(
                "save", "PUT", f"/records/{record.record_type}/{record.ref}", json=body
            )
        self._raise_for_status("save", response, natural_key=natural_key)

        ref = str(response.json().get("id") or record.ref)
        record.assign_ref(ref)
        logger.info("http_store.saved", record_id=ref, record_type=record.record_type)
        return ref

    async def health_check(self) -> bool:
        try:
            response = await self._request("health", "GET", "/health")
        except StoreError:
            return False
        return response.is_success
