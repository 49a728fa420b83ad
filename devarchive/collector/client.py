"""HTTP client for the collector-to-server protocol."""
from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from devarchive.models import (
    CollectorRegister,
    Heartbeat,
    RunLogCreate,
    SyncRequest,
    SyncStateResponse,
    SyncStats,
)

logger = logging.getLogger("devarchive.collector")


class ApiClientError(Exception):
    """Base class for every failure raised by ApiClient."""


class TransportError(ApiClientError):
    """The request never produced an HTTP response (DNS, refused connection, timeout)."""


class ApiError(ApiClientError):
    def __init__(self, status: int, message: str, body: Any = None):
        super().__init__(f"API error {status}: {message}")
        self.status = status
        self.message = message
        self.body = body

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500


def _error_message(response: requests.Response) -> tuple[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return response.reason or f"HTTP {response.status_code}", response.text or None

    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value, body
    return response.reason or f"HTTP {response.status_code}", body


class ApiClient:
    def __init__(
        self,
        server_url: str,
        api_key: str,
        timeout: float = 60,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = server_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"X-API-Key": api_key})

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        params: Optional[dict[str, str]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, json=json_body, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        if not response.ok:
            message, body = _error_message(response)
            raise ApiError(response.status_code, message, body)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def register(self, payload: CollectorRegister) -> dict[str, Any]:
        return self._request("POST", "/api/collectors/register", json_body=payload.model_dump()) or {}

    def heartbeat(self, collector_id: str, payload: Optional[Heartbeat] = None) -> None:
        body = (payload or Heartbeat()).model_dump(exclude_none=True)
        self._request("POST", f"/api/collectors/{collector_id}/heartbeat", json_body=body)

    def get_sync_state(self, collector_id: str, host: str) -> SyncStateResponse:
        data = self._request("GET", f"/api/collectors/{collector_id}/sync-state", params={"host": host})
        return SyncStateResponse.model_validate(data or {})

    def sync(self, collector_id: str, request: SyncRequest) -> SyncStats:
        # Transcript records are shipped verbatim, so nulls inside them are kept.
        body = {key: value for key, value in request.model_dump(mode="json").items() if value is not None}
        data = self._request("POST", f"/api/collectors/{collector_id}/sync", json_body=body)
        return SyncStats.model_validate(data or {})

    def submit_logs(self, collector_id: str, logs: list[RunLogCreate]) -> int:
        data = self._request(
            "POST",
            f"/api/collectors/{collector_id}/logs",
            json_body={"logs": [log.model_dump(mode="json") for log in logs]},
        )
        return int((data or {}).get("count", 0))
