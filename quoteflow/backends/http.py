"""REST client for the quote editor API."""

from typing import Any, Dict, List, Optional, Sequence

import httpx
import structlog
from pydantic.alias_generators import to_camel

from quoteflow.backends.base import PositionsBackend
from quoteflow.config import settings
from quoteflow.exceptions import (
    ConflictError,
    EditLockError,
    NotFoundError,
    ServiceUnavailableError,
    ValidationError,
)
from quoteflow.locking.models import LockStatus
from quoteflow.positions.models import PositionRecord, PositionType, PositionUpdate

logger = structlog.get_logger()

LOCK_CONFLICT_STATUS_CODES = frozenset({409, 423})


class HttpPositionsBackend(PositionsBackend):
    """``PositionsBackend`` talking to the editor's REST endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        token: Optional[str] = None,
    ):
        self._owns_client = client is None
        if client is None:
            headers = {"Accept": "application/json"}
            token = token or settings.api_token
            if token:
                headers["Authorization"] = f"Bearer {token}"
            client = httpx.AsyncClient(
                base_url=base_url or settings.api_base_url,
                timeout=httpx.Timeout(timeout or settings.api_timeout),
                headers=headers,
            )
        self.client = client
        self.logger = logger.bind(component="http_backend")

    async def __aenter__(self) -> "HttpPositionsBackend":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        resource_id: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        try:
            response = await self.client.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            self.logger.error("Request failed", method=method, path=path, error=str(e))
            raise ServiceUnavailableError(f"{method} {path} failed: {e}") from e

        if response.is_success:
            return response

        self.logger.warning(
            "Request rejected", method=method, path=path, status_code=response.status_code
        )
        raise _error_for_response(response, resource_id)

    async def fetch_positions(self, version_id: str) -> List[PositionRecord]:
        response = await self._request(
            "GET", f"/api/quotes/versions/{version_id}/positions", version_id
        )
        return [PositionRecord.model_validate(item) for item in response.json()]

    async def reorder_positions(self, version_id: str, updates: Sequence[PositionUpdate]) -> None:
        await self._request(
            "PUT",
            f"/api/quotes/versions/{version_id}/positions/reorder",
            version_id,
            json={"positions": [update.to_api() for update in updates]},
        )

    async def save_positions(
        self, version_id: str, changes: Sequence[Dict[str, Any]]
    ) -> List[PositionRecord]:
        payload = [
            {to_camel(key): _jsonable(value) for key, value in change.items()}
            for change in changes
        ]
        response = await self._request(
            "PUT",
            f"/api/quotes/versions/{version_id}/positions/batch",
            version_id,
            json={"positions": payload},
        )
        body = _json_or_none(response)
        if isinstance(body, dict) and isinstance(body.get("positions"), list):
            return [PositionRecord.model_validate(item) for item in body["positions"]]
        return []

    async def get_lock(self, resource_type: str, resource_id: str) -> LockStatus:
        response = await self._request("GET", f"/api/{resource_type}/{resource_id}/lock", resource_id)
        return LockStatus.model_validate(response.json())

    async def acquire_lock(
        self, resource_type: str, resource_id: str, force: bool = False
    ) -> LockStatus:
        await self._request(
            "POST",
            f"/api/{resource_type}/{resource_id}/lock",
            resource_id,
            params={"force": "true"} if force else None,
        )
        return await self.get_lock(resource_type, resource_id)

    async def release_lock(self, resource_type: str, resource_id: str) -> None:
        await self._request("DELETE", f"/api/{resource_type}/{resource_id}/lock", resource_id)

    async def add_position(
        self,
        version_id: str,
        kind: PositionType,
        source_id: str,
        parent_id: Optional[str],
        index: int,
    ) -> str:
        source_key = "articleId" if kind == PositionType.ARTICLE else "blockId"
        response = await self._request(
            "POST",
            f"/api/quotes/versions/{version_id}/positions",
            version_id,
            json={
                source_key: source_id,
                "quotePositionParentId": parent_id,
                "index": index,
            },
        )
        body = _json_or_none(response) or {}
        if "id" not in body:
            raise ServiceUnavailableError("Server did not return the new position ID")
        return str(body["id"])


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _jsonable(value: Any) -> Any:
    """Decimals travel as strings, like the API's numeric columns."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _error_for_response(response: httpx.Response, resource_id: str) -> Exception:
    body = _json_or_none(response)
    if not isinstance(body, dict):
        body = {}
    message = body.get("error") or f"HTTP {response.status_code}"

    if response.status_code in LOCK_CONFLICT_STATUS_CODES:
        return EditLockError(
            message,
            resource_id,
            locked_by=body.get("lockedBy"),
            locked_at=body.get("lockedAt"),
            locked_by_name=body.get("lockedByName"),
        )
    if response.status_code == 404:
        return NotFoundError(message)
    if response.status_code in (400, 422):
        return ValidationError(message)
    if response.status_code in (401, 403):
        return ConflictError(message)
    return ServiceUnavailableError(message)
