"""HTTP adapter for a REST remote system.

Endpoints (relative to the base URL):
    POST  /entities/{entity_type}                create
    PATCH /entities/{entity_type}/{remote_id}    update
    GET   /entities/{entity_type}/{remote_id}    fetch one
    GET   /entities/{entity_type}?updated_since= list changes (paginated)

Every push carries an `Idempotency-Key` header; updates also carry the
entity's sync version in `X-Sync-Version`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx

from entitysync.adapters.base import RemoteAdapter
from entitysync.core.errors import (
    AuthenticationError,
    RemoteTimeoutError,
    TransientRemoteError,
    ValidationError,
)
from entitysync.sync.types import PushResult, RemoteChange

logger = logging.getLogger(__name__)

# Safety bound on pagination of a single fetch_deltas call
MAX_PAGES = 100


class HTTPRemoteAdapter(RemoteAdapter):
    """Remote adapter over httpx."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 20.0,
        token_provider: Callable[[], str] | None = None,
        updated_at_field: str = "updated_at",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            base_url: Base URL of the remote API.
            token: Bearer token.
            timeout: Request timeout in seconds.
            token_provider: Returns a fresh token when credentials expire.
            updated_at_field: Record key holding the change timestamp.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._token_provider = token_provider
        self._updated_at_field = updated_at_field
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPRemoteAdapter:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, translating transport failures into sync errors."""
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteTimeoutError(f"{method} {url} timed out") from e
        except httpx.TransportError as e:
            raise TransientRemoteError(f"{method} {url} failed: {e}") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Raise the sync error matching an HTTP error status."""
        status_code = response.status_code
        if status_code < 400:
            return response

        detail = _detail(response)
        if status_code in (401, 403):
            raise AuthenticationError(f"Remote rejected credentials ({status_code}): {detail}")
        if status_code in (408, 429) or status_code >= 500:
            raise TransientRemoteError(f"Remote error {status_code}: {detail}", status_code)
        if status_code == 409:
            # Version mismatch: the next attempt re-reads the remote record
            raise TransientRemoteError(f"Version conflict: {detail}", status_code)
        raise ValidationError(f"Remote rejected payload ({status_code}): {detail}")

    # === RemoteAdapter ===

    def push(
        self,
        entity_type: str,
        remote_id: str | None,
        fields: dict[str, Any],
        idempotency_key: str,
        version: int | None = None,
    ) -> PushResult:
        headers = {"Idempotency-Key": idempotency_key}
        if version is not None:
            headers["X-Sync-Version"] = str(version)

        if remote_id is None:
            response = self._request(
                "POST", f"/entities/{entity_type}", json=fields, headers=headers
            )
        else:
            response = self._request(
                "PATCH", f"/entities/{entity_type}/{remote_id}", json=fields, headers=headers
            )

        data = response.json() if response.content else {}
        new_id = data.get("id", remote_id)
        if new_id is None:
            raise ValidationError(f"Remote did not return an id for new {entity_type}")
        logger.debug("Pushed %s %s (%d fields)", entity_type, new_id, len(fields))
        return PushResult(remote_id=str(new_id), accepted_fields=sorted(fields))

    def fetch(self, entity_type: str, remote_id: str) -> dict[str, Any] | None:
        try:
            response = self._request("GET", f"/entities/{entity_type}/{remote_id}")
        except ValidationError:
            return None
        return response.json()

    def fetch_deltas(self, entity_type: str, since: datetime | None) -> list[RemoteChange]:
        params: dict[str, str] = {}
        if since is not None:
            params["updated_since"] = since.isoformat()

        changes: list[RemoteChange] = []
        for _ in range(MAX_PAGES):
            data = self._request("GET", f"/entities/{entity_type}", params=params).json()
            for record in data.get("items", []):
                changes.append(RemoteChange(
                    entity_type=entity_type,
                    payload=record,
                    changed_at=_parse_timestamp(record.get(self._updated_at_field)),
                ))
            next_page = data.get("next_page")
            if not next_page:
                break
            params["page"] = str(next_page)
        else:
            logger.warning("Stopped paginating %s deltas after %d pages", entity_type, MAX_PAGES)
        return changes

    def refresh_credentials(self) -> bool:
        if self._token_provider is None:
            return False
        self._token = self._token_provider()
        self._client.headers["Authorization"] = f"Bearer {self._token}"
        logger.info("Remote credentials refreshed")
        return True


def _detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict):
        return str(data.get("detail") or data.get("error") or data)
    return str(data)


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable timestamp: {value!r}")
        return None
